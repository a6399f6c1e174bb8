"""
Operation lifecycle states and the shared state container.

``OperationState`` values are immutable; a transition swaps the whole value,
so a reader never observes a half-written state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Tuple, Union

from ..domain.exceptions import RecipientFailure
from ..domain.models import CredentialHandle, Recipient, TimeRange


class Operation(str, Enum):
    CONNECT = "connect"
    FETCH = "fetch"
    SEND = "send"


@dataclass(frozen=True)
class Idle:
    label: ClassVar[str] = "Idle"


@dataclass(frozen=True)
class Connecting:
    operation: ClassVar[Operation] = Operation.CONNECT
    label: ClassVar[str] = "Connecting to calendar..."


@dataclass(frozen=True)
class Fetching:
    operation: ClassVar[Operation] = Operation.FETCH
    label: ClassVar[str] = "Fetching available slots..."


@dataclass(frozen=True)
class Sending:
    operation: ClassVar[Operation] = Operation.SEND
    label: ClassVar[str] = "Sending invitations..."


@dataclass(frozen=True)
class Succeeded:
    operation: Operation
    detail: str = ""

    @property
    def label(self) -> str:
        return self.detail or f"{self.operation.value} succeeded"


@dataclass(frozen=True)
class Failed:
    operation: Operation
    reason: str
    failures: Tuple[RecipientFailure, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.operation.value} failed: {self.reason}"


OperationState = Union[Idle, Connecting, Fetching, Sending, Succeeded, Failed]

IN_FLIGHT_STATES = (Connecting, Fetching, Sending)
TERMINAL_STATES = (Succeeded, Failed)


def is_in_flight(state: OperationState) -> bool:
    return isinstance(state, IN_FLIGHT_STATES)


def is_terminal(state: OperationState) -> bool:
    return isinstance(state, TERMINAL_STATES)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one delivery attempt."""
    recipient: Recipient
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SendReport:
    """Per-recipient outcomes of one batch."""
    outcomes: Tuple[DeliveryOutcome, ...]

    @property
    def delivered(self) -> Tuple[Recipient, ...]:
        return tuple(o.recipient for o in self.outcomes if o.delivered)

    @property
    def failures(self) -> Tuple[RecipientFailure, ...]:
        return tuple(
            RecipientFailure(name=o.recipient.name, email=o.recipient.email, reason=o.error)
            for o in self.outcomes
            if not o.delivered
        )

    @property
    def all_delivered(self) -> bool:
        return all(o.delivered for o in self.outcomes)


@dataclass
class AppState:
    """
    State shared between the poll/render loop and the orchestrator.

    Owned by the caller and passed by reference; only the orchestrator writes it.
    """
    operation: OperationState = field(default_factory=Idle)
    credential: Optional[CredentialHandle] = None
    free_slots: Tuple[TimeRange, ...] = ()
    availabilities: Tuple[str, ...] = ()
    last_send_report: Optional[SendReport] = None

    @property
    def connected(self) -> bool:
        return self.credential is not None


@dataclass(frozen=True)
class ControlState:
    """Which controls a front end should offer for a given state."""
    connect_enabled: bool
    fetch_enabled: bool
    send_enabled: bool
    settings_editable: bool
    show_spinner: bool
    needs_acknowledge: bool


def controls_for(
    state: OperationState,
    *,
    connected: bool,
    has_recipients: bool,
) -> ControlState:
    """Derive control enablement from the operation state. Pure."""
    idle = isinstance(state, Idle)
    return ControlState(
        connect_enabled=idle,
        fetch_enabled=idle and connected,
        send_enabled=idle and has_recipients,
        settings_editable=not is_in_flight(state),
        show_spinner=is_in_flight(state),
        needs_acknowledge=is_terminal(state),
    )

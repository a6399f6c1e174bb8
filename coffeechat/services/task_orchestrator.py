"""
Application service that runs connect/fetch/send in the background.

Only one operation runs at a time. Each ``start_*`` call returns at once with
``Started`` or ``Rejected``; the background job posts a single completion onto a
channel, and ``poll()`` (called by the owner thread every tick) applies at most
one completion to the shared ``AppState``. All writes to ``AppState`` therefore
happen on the owner thread, so no lock is needed.
"""

from __future__ import annotations

import logging
import queue
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from email.utils import formataddr
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Union

from ..config import SmtpSettings
from ..domain.exceptions import (
    BusyError,
    CoffeeChatError,
    InvalidInputError,
    NotConnectedError,
    PartialSendFailure,
)
from ..domain.models import CredentialHandle, Recipient, SlotQuery, TimeRange
from ..domain.slot_finder import compute_free_slots, format_availabilities, validate_query
from ..domain.template import EmailTemplate
from .operation_state import (
    AppState,
    Connecting,
    DeliveryOutcome,
    Failed,
    Fetching,
    Idle,
    Operation,
    OperationState,
    SendReport,
    Sending,
    Succeeded,
    is_in_flight,
    is_terminal,
)

logger = logging.getLogger(__name__)


class Authorizer(Protocol):
    def authorize(self) -> CredentialHandle:
        """Run the consent flow and return a handle to the stored token."""


class CalendarClientProtocol(Protocol):
    """Protocol describing the calendar client behaviour needed by the service."""

    def list_busy_events(
        self,
        credential: CredentialHandle,
        time_range: TimeRange,
    ) -> List[TimeRange]:
        """Return busy time ranges within ``time_range``."""


class Mailer(Protocol):
    def send(
        self,
        smtp: SmtpSettings,
        from_addr: str,
        to_addr: str,
        subject: str,
        body: str,
    ) -> None:
        """Deliver one message or raise."""


@dataclass(frozen=True)
class Started:
    operation: Operation


@dataclass(frozen=True)
class Rejected:
    operation: Operation
    error: CoffeeChatError

    @property
    def reason(self) -> str:
        return str(self.error)


StartResult = Union[Started, Rejected]


@dataclass(frozen=True)
class _Completion:
    """The single message a background job sends back."""
    state: OperationState
    credential: Optional[CredentialHandle] = None
    free_slots: Optional[Tuple[TimeRange, ...]] = None
    availabilities: Optional[Tuple[str, ...]] = None
    send_report: Optional[SendReport] = None


class TaskOrchestrator:
    """
    Serializes connect, fetch and send against a shared ``AppState``.

    Collaborators are injected as protocols so the Graph/SMTP adapters can be
    swapped for mocks in tests.
    """

    def __init__(
        self,
        state: AppState,
        authorizer: Authorizer,
        calendar_client: CalendarClientProtocol,
        mailer: Mailer,
        executor: Optional[Executor] = None,
    ) -> None:
        self._state = state
        self._authorizer = authorizer
        self._calendar_client = calendar_client
        self._mailer = mailer
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="coffeechat-task",
        )
        self._completions: "queue.SimpleQueue[_Completion]" = queue.SimpleQueue()

    @property
    def state(self) -> AppState:
        return self._state

    def start_connect(self) -> StartResult:
        """Authorize calendar access in the background."""
        rejection = self._check_idle(Operation.CONNECT)
        if rejection:
            return rejection

        return self._dispatch(Connecting(), Operation.CONNECT, self._run_connect)

    def start_fetch(self, query: SlotQuery) -> StartResult:
        """List busy events for ``query`` and compute free slots in the background."""
        rejection = self._check_idle(Operation.FETCH)
        if rejection:
            return rejection

        credential = self._state.credential
        if credential is None:
            return Rejected(
                Operation.FETCH,
                NotConnectedError("Calendar not connected. Connect before fetching slots."),
            )

        try:
            validate_query(query)
        except InvalidInputError as exc:
            return Rejected(Operation.FETCH, exc)

        return self._dispatch(Fetching(), Operation.FETCH, self._run_fetch, credential, query)

    def start_send(
        self,
        template: EmailTemplate,
        recipients: Sequence[Recipient],
        *,
        sender_name: str,
        smtp: SmtpSettings,
        availabilities: Optional[Sequence[str]] = None,
    ) -> StartResult:
        """
        Send one invitation per recipient in the background.

        ``availabilities`` defaults to the ones from the last successful fetch.
        Failed deliveries are reported, never retried.
        """
        rejection = self._check_idle(Operation.SEND)
        if rejection:
            return rejection

        batch = tuple(recipients)
        if not batch:
            return Rejected(Operation.SEND, InvalidInputError("Cannot send: no recipients added."))

        missing = smtp.missing_fields()
        if missing:
            return Rejected(
                Operation.SEND,
                InvalidInputError(f"Missing required SMTP settings: {', '.join(missing)}"),
            )

        if not isinstance(template, EmailTemplate):
            return Rejected(Operation.SEND, InvalidInputError("A message template is required."))

        slots_text = tuple(self._state.availabilities if availabilities is None else availabilities)
        if not slots_text:
            logger.warning("Sending invitations without any available slots")

        return self._dispatch(
            Sending(),
            Operation.SEND,
            self._run_send,
            template,
            batch,
            sender_name,
            smtp,
            slots_text,
        )

    def poll(self) -> OperationState:
        """
        Return the current state, applying at most one pending completion.

        Never blocks.
        """
        try:
            completion = self._completions.get_nowait()
        except queue.Empty:
            return self._state.operation

        self._apply(completion)
        return self._state.operation

    def acknowledge(self) -> bool:
        """Reset a terminal state to Idle. Returns False if there was nothing to acknowledge."""
        if not is_terminal(self._state.operation):
            return False
        self._state.operation = Idle()
        return True

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _check_idle(self, operation: Operation) -> Optional[Rejected]:
        current = self._state.operation
        if isinstance(current, Idle):
            return None

        if is_in_flight(current):
            message = f"Cannot start {operation.value}: {current.operation.value} is still running."
        else:
            message = (
                f"Cannot start {operation.value}: acknowledge the previous "
                f"{current.operation.value} result first."
            )
        logger.debug("Rejected %s while in %s", operation.value, type(current).__name__)
        return Rejected(operation, BusyError(message))

    def _dispatch(
        self,
        in_flight: OperationState,
        operation: Operation,
        job: Callable[..., _Completion],
        *args,
    ) -> StartResult:
        try:
            self._executor.submit(self._run_job, operation, job, *args)
        except RuntimeError as exc:  # executor already shut down
            return Rejected(operation, BusyError(f"Cannot start {operation.value}: {exc}"))

        # The job's completion is only applied by poll() on this thread, so
        # setting the in-flight state after submit cannot be overtaken.
        self._state.operation = in_flight
        logger.info("Started %s", operation.value)
        return Started(operation)

    def _run_job(self, operation: Operation, job: Callable[..., _Completion], *args) -> None:
        try:
            completion = job(*args)
        except CoffeeChatError as exc:
            logger.error("%s failed: %s", operation.value, exc)
            completion = _Completion(state=Failed(operation, str(exc)))
        except Exception as exc:
            logger.exception("%s failed unexpectedly", operation.value)
            completion = _Completion(state=Failed(operation, f"Unexpected error: {exc}"))

        self._completions.put(completion)

    def _apply(self, completion: _Completion) -> None:
        if completion.credential is not None:
            self._state.credential = completion.credential
        if completion.free_slots is not None:
            self._state.free_slots = completion.free_slots
            self._state.availabilities = completion.availabilities or ()
        if completion.send_report is not None:
            self._state.last_send_report = completion.send_report
        # The state swap goes last so data is in place once a terminal state is visible
        self._state.operation = completion.state
        logger.debug("Applied completion: %s", completion.state)

    def _run_connect(self) -> _Completion:
        handle = self._authorizer.authorize()
        return _Completion(
            state=Succeeded(Operation.CONNECT, "Calendar connected."),
            credential=handle,
            # A new account may see a different calendar
            free_slots=(),
            availabilities=(),
        )

    def _run_fetch(self, credential: CredentialHandle, query: SlotQuery) -> _Completion:
        busy = self._calendar_client.list_busy_events(credential, query.query_range)
        slots = compute_free_slots(busy, query)
        availabilities = format_availabilities(slots, query.timezone)
        logger.info("Fetched %d busy period(s), %d free slot(s)", len(busy), len(slots))
        return _Completion(
            state=Succeeded(Operation.FETCH, f"Found {len(slots)} free slot(s)."),
            free_slots=tuple(slots),
            availabilities=tuple(availabilities),
        )

    def _run_send(
        self,
        template: EmailTemplate,
        recipients: Tuple[Recipient, ...],
        sender_name: str,
        smtp: SmtpSettings,
        availabilities: Tuple[str, ...],
    ) -> _Completion:
        from_addr = formataddr((sender_name, smtp.from_email)) if sender_name else smtp.from_email
        outcomes: List[DeliveryOutcome] = []

        for recipient in recipients:
            try:
                subject, body = template.render(recipient.name, sender_name, availabilities)
                to_addr = formataddr((recipient.name, recipient.email))
                self._mailer.send(smtp, from_addr, to_addr, subject, body)
            except (CoffeeChatError, ValueError) as exc:
                logger.error("Error sending invitation to %s: %s", recipient.email, exc)
                outcomes.append(DeliveryOutcome(recipient=recipient, error=str(exc)))
            else:
                outcomes.append(DeliveryOutcome(recipient=recipient))

        report = SendReport(outcomes=tuple(outcomes))
        logger.info(
            "Sending finished. Success: %d, Errors: %d",
            len(report.delivered),
            len(report.failures),
        )

        if report.all_delivered:
            state: OperationState = Succeeded(
                Operation.SEND,
                f"Sent {len(report.delivered)} invitation(s).",
            )
        else:
            failure = PartialSendFailure(report.failures, total=len(recipients))
            state = Failed(Operation.SEND, str(failure), failures=failure.failures)

        return _Completion(state=state, send_report=report)

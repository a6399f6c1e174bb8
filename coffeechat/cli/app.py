"""
Main CLI application using Typer.

Every calendar or mail operation goes through the ``TaskOrchestrator``: the
command starts it, then polls on this thread while a spinner runs.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..adapters.graph_authenticator import GraphAuthenticator
from ..adapters.graph_client import GraphCalendarClient
from ..adapters.mock_graph_client import MockAuthenticator, MockCalendarClient
from ..adapters.secret_store import KeyringSecretStore
from ..adapters.smtp_mailer import SmtpMailer
from ..config import AppConfig, CalendarSettings, get_default_config_path
from ..domain.exceptions import CoffeeChatError, InvalidInputError
from ..domain.template import EmailTemplate
from ..services.operation_state import (
    AppState,
    Failed,
    OperationState,
    controls_for,
    is_in_flight,
    is_terminal,
)
from ..services.session_store import SessionSnapshot, load_snapshot, save_snapshot
from ..services.task_orchestrator import Rejected, StartResult, TaskOrchestrator

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="coffeechat",
    help="Find free calendar slots and send coffee chat invitations",
    add_completion=False,
)
recipients_app = typer.Typer(help="Manage invitation recipients.")
app.add_typer(recipients_app, name="recipients")

console = Console()

POLL_INTERVAL_SECONDS = 0.1


@dataclass
class Session:
    """Everything a command needs, built once per invocation."""
    config: AppConfig
    snapshot: SessionSnapshot
    snapshot_path: Path
    state: AppState
    orchestrator: TaskOrchestrator
    authenticator: object
    mailer: SmtpMailer

    def close(self) -> None:
        self.orchestrator.shutdown(wait=True)
        try:
            save_snapshot(self.snapshot_path, self.snapshot)
        except OSError as exc:
            logger.warning("Could not save session to %s: %s", self.snapshot_path, exc)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    if not verbose:
        logging.getLogger("msal").setLevel(logging.ERROR)


def _load_session(config_file: Optional[Path], mock: bool) -> Session:
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)

    snapshot_path = config.get_session_path()
    snapshot = load_snapshot(snapshot_path) or SessionSnapshot.from_config(config)

    store = KeyringSecretStore()
    mailer = SmtpMailer(store)

    if mock:
        authenticator = MockAuthenticator()
        calendar_client = MockCalendarClient(timezone=config.timezone)
    else:
        authenticator = GraphAuthenticator(
            client_id=config.client_id,
            tenant_id=config.tenant_id,
            secret_store=store,
            authority_url=config.get_authority_url(),
            flow=config.auth_flow,
        )
        calendar_client = GraphCalendarClient(authenticator, timezone=config.timezone)

    state = AppState(credential=authenticator.cached_credential())
    orchestrator = TaskOrchestrator(
        state=state,
        authorizer=authenticator,
        calendar_client=calendar_client,
        mailer=mailer,
    )

    return Session(
        config=config,
        snapshot=snapshot,
        snapshot_path=snapshot_path,
        state=state,
        orchestrator=orchestrator,
        authenticator=authenticator,
        mailer=mailer,
    )


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(str(error))}")
    raise typer.Exit(1)


@contextmanager
def _open_session(ctx: typer.Context) -> Iterator[Session]:
    """Load config and session; save the session again on the way out."""
    try:
        session = _load_session(ctx.obj["config_file"], ctx.obj["mock"])
    except (FileNotFoundError, ValueError, CoffeeChatError) as e:
        _fail(e)

    try:
        yield session
    except (CoffeeChatError, ValueError) as e:
        _fail(e)
    finally:
        session.close()


def _await_operation(orchestrator: TaskOrchestrator, result: StartResult) -> OperationState:
    """Poll until the started operation reaches a terminal state."""
    if isinstance(result, Rejected):
        raise result.error

    state = orchestrator.poll()
    with console.status(state.label, spinner="dots") as status:
        while not is_terminal(state):
            time.sleep(POLL_INTERVAL_SECONDS)
            state = orchestrator.poll()
            if is_in_flight(state):
                status.update(state.label)

    return state


def _report(state: OperationState) -> None:
    if isinstance(state, Failed):
        console.print(f"[bold red]✗[/bold red] {escape(state.reason)}")
    else:
        console.print(f"[green]✓ {state.label}[/green]")


def _fetch_slots(session: Session) -> OperationState:
    query = session.snapshot.calendar.build_query(session.config.timezone)
    state = _await_operation(session.orchestrator, session.orchestrator.start_fetch(query))
    _report(state)
    session.orchestrator.acknowledge()
    return state


def _print_availabilities(session: Session) -> None:
    if not session.state.availabilities:
        console.print(
            "[yellow]⚠ No free slots found.[/yellow]\n"
            "Try a shorter minimum duration, a smaller buffer or a wider daily window."
        )
        return

    console.print(f"[bold green]{len(session.state.availabilities)} availability line(s):[/bold green]\n")
    for line in session.state.availabilities:
        console.print(f"  {line}")
    console.print()


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")] = None,
    mock: Annotated[bool, typer.Option("--mock", help="Use mock calendar data and skip authentication.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")] = False,
):
    """
    Find free calendar slots and send coffee chat invitations.
    """
    _configure_logging(verbose)
    ctx.obj = {"config_file": config_file, "mock": mock}


@app.command()
def connect(ctx: typer.Context):
    """
    Authorize calendar access (opens a browser or prints a device code).
    """
    with _open_session(ctx) as session:
        if session.state.connected:
            console.print("[dim]A cached calendar token exists; refreshing it.[/dim]")
        state = _await_operation(session.orchestrator, session.orchestrator.start_connect())
        _report(state)
        session.orchestrator.acknowledge()
        if isinstance(state, Failed):
            raise typer.Exit(1)


@app.command()
def slots(
    ctx: typer.Context,
    buffer: Annotated[Optional[int], typer.Option("--buffer", "-b", help="Buffer around events in minutes (0-120).")] = None,
    start_hour: Annotated[Optional[int], typer.Option("--from", help="Daily window start hour.")] = None,
    end_hour: Annotated[Optional[int], typer.Option("--to", help="Daily window end hour.")] = None,
    days: Annotated[Optional[int], typer.Option("--days", "-d", help="How many days ahead to search.")] = None,
    min_duration: Annotated[Optional[int], typer.Option("--min-duration", "-m", help="Minimum slot length in minutes.")] = None,
):
    """
    Fetch busy events and list free slots.

    Options given here are remembered for later runs.
    """
    with _open_session(ctx) as session:
        overrides = {
            "buffer_minutes": buffer,
            "day_start_hour": start_hour,
            "day_end_hour": end_hour,
            "lookahead_days": days,
            "min_duration_minutes": min_duration,
        }
        changed = {k: v for k, v in overrides.items() if v is not None}
        if changed:
            session.snapshot.calendar = CalendarSettings(
                **{**session.snapshot.calendar.model_dump(), **changed}
            )

        settings = session.snapshot.calendar
        console.print(
            f"[bold cyan]📊 Search:[/bold cyan] next {settings.lookahead_days} days, "
            f"{settings.day_start_hour}:00-{settings.day_end_hour}:00, "
            f"buffer {settings.buffer_minutes} min, at least {settings.min_duration_minutes} min\n"
        )

        state = _fetch_slots(session)
        if isinstance(state, Failed):
            raise typer.Exit(1)
        _print_availabilities(session)


@app.command()
def send(
    ctx: typer.Context,
    no_slots: Annotated[bool, typer.Option("--no-slots", help="Send without fetching availabilities.")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
):
    """
    Send the invitation to every recipient (fetches slots first).

    Failed recipients are listed; nothing is retried automatically.
    """
    with _open_session(ctx) as session:
        snapshot = session.snapshot
        recipients = snapshot.recipient_list()
        controls = controls_for(
            session.state.operation,
            connected=session.state.connected,
            has_recipients=bool(recipients),
        )
        if not controls.send_enabled:
            raise InvalidInputError("Cannot send: no recipients added. Use 'coffeechat recipients add'.")

        if not no_slots:
            if controls.fetch_enabled:
                if isinstance(_fetch_slots(session), Failed):
                    raise typer.Exit(1)
            else:
                console.print("[yellow]⚠ Calendar not connected; sending without availabilities.[/yellow]")

        if not yes:
            typer.confirm(f"Send invitations to {len(recipients)} recipient(s)?", abort=True)

        result = session.orchestrator.start_send(
            snapshot.template(),
            recipients,
            sender_name=snapshot.sender_name,
            smtp=snapshot.smtp,
        )
        state = _await_operation(session.orchestrator, result)

        report = session.state.last_send_report
        if report:
            table = Table(title="Delivery", show_header=True, header_style="bold cyan")
            table.add_column("Recipient", style="bold yellow")
            table.add_column("E-Mail", style="dim")
            table.add_column("Result")
            for outcome in report.outcomes:
                table.add_row(
                    outcome.recipient.name,
                    outcome.recipient.email,
                    "[green]sent[/green]" if outcome.delivered else f"[red]{escape(outcome.error)}[/red]",
                )
            console.print(table)

        _report(state)
        session.orchestrator.acknowledge()
        if isinstance(state, Failed):
            raise typer.Exit(1)


@app.command()
def preview(
    ctx: typer.Context,
    to: Annotated[Optional[str], typer.Option("--to", help="Recipient email to preview for (default: first).")] = None,
    no_slots: Annotated[bool, typer.Option("--no-slots", help="Preview without fetching availabilities.")] = False,
):
    """
    Render the invitation for one recipient without sending it.
    """
    with _open_session(ctx) as session:
        recipients = session.snapshot.recipient_list()
        if to:
            recipients = [r for r in recipients if r.email.lower() == to.lower()]
        if not recipients:
            raise InvalidInputError("No matching recipient to preview.")

        if not no_slots and session.state.connected:
            _fetch_slots(session)

        subject, body = session.snapshot.template().render(
            recipients[0].name,
            session.snapshot.sender_name,
            session.state.availabilities,
        )
        console.print(Panel(Text(body), title=escape(subject), subtitle=escape(str(recipients[0]))))


@app.command()
def message(
    ctx: typer.Context,
    template: Annotated[Optional[Path], typer.Option("--template", "-t", help="Load subject and body from a template file.")] = None,
    subject: Annotated[Optional[str], typer.Option("--subject", help="Replace the subject line.")] = None,
    sender_name: Annotated[Optional[str], typer.Option("--sender", help="Name used for {sender_name}.")] = None,
):
    """
    Show or change the invitation message.
    """
    with _open_session(ctx) as session:
        snapshot = session.snapshot
        new_subject, new_body = snapshot.subject, snapshot.body
        if template:
            loaded = EmailTemplate.load(template)
            new_subject, new_body = loaded.subject_template, loaded.body_template
        if subject is not None:
            new_subject = subject

        # Validate before anything reaches the snapshot, which is saved on exit
        updated = EmailTemplate(subject_template=new_subject, body_template=new_body)
        snapshot.subject, snapshot.body = updated.subject_template, updated.body_template
        if sender_name is not None:
            snapshot.sender_name = sender_name

        console.print(Panel(Text(snapshot.body), title=escape(snapshot.subject), subtitle=escape(snapshot.sender_name) or None))


@recipients_app.command("list")
def list_recipients(ctx: typer.Context):
    """
    List all recipients.
    """
    with _open_session(ctx) as session:
        if not session.snapshot.recipients:
            console.print("[yellow]No recipients yet.[/yellow]")
            return

        table = Table(title="Recipients", show_header=True, header_style="bold cyan")
        table.add_column("Name", style="bold yellow")
        table.add_column("E-Mail", style="dim")

        for recipient in session.snapshot.recipients:
            table.add_row(recipient.name, recipient.email)

        console.print()
        console.print(table)
        console.print()


@recipients_app.command("add")
def add_recipient(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Recipient name, used for {recipient_name}.")],
    email: Annotated[str, typer.Argument(help="Recipient email address.")],
):
    """
    Add a recipient.
    """
    with _open_session(ctx) as session:
        entry = session.snapshot.add_recipient(name, email)
        console.print(f"[green]✓ Added {entry.name} <{entry.email}>[/green]")


@recipients_app.command("remove")
def remove_recipient(
    ctx: typer.Context,
    email: Annotated[str, typer.Argument(help="Email address to remove.")],
):
    """
    Remove a recipient by email.
    """
    with _open_session(ctx) as session:
        if session.snapshot.remove_recipient(email):
            console.print(f"[green]✓ Removed {email}[/green]")
        else:
            console.print(f"[yellow]No recipient with email {email}[/yellow]")


@app.command("set-password")
def set_password(ctx: typer.Context):
    """
    Store the SMTP password in the OS keychain.
    """
    with _open_session(ctx) as session:
        smtp = session.snapshot.smtp
        if not smtp.host or not smtp.username:
            raise InvalidInputError("Configure smtp.host and smtp.username first.")
        password = typer.prompt(f"Password for {smtp.username}@{smtp.host}", hide_input=True)
        session.mailer.store_password(smtp, password)
        console.print("[green]✓ Password stored in keychain.[/green]")


@app.command()
def status(ctx: typer.Context):
    """
    Show connection, message and which actions are available.
    """
    with _open_session(ctx) as session:
        snapshot = session.snapshot
        controls = controls_for(
            session.state.operation,
            connected=session.state.connected,
            has_recipients=bool(snapshot.recipients),
        )

        def flag(enabled: bool) -> str:
            return "[green]available[/green]" if enabled else "[dim]unavailable[/dim]"

        smtp = snapshot.smtp
        password_state = "stored" if smtp.host and session.mailer.has_password(smtp) else "missing"
        console.print(Panel.fit(
            f"[bold]Calendar:[/bold] {'connected' if session.state.connected else 'not connected'}\n"
            f"[bold]Recipients:[/bold] {len(snapshot.recipients)}\n"
            f"[bold]Subject:[/bold] {snapshot.subject}\n"
            f"[bold]SMTP:[/bold] {smtp.username or '-'}@{smtp.host or '-'}:{smtp.port} (password {password_state})\n\n"
            f"connect: {flag(controls.connect_enabled)}\n"
            f"slots:   {flag(controls.fetch_enabled)}\n"
            f"send:    {flag(controls.send_enabled)}",
            title="coffeechat",
        ))


@app.command()
def clear_cache(ctx: typer.Context):
    """
    Clear the calendar token cache.
    """
    with _open_session(ctx) as session:
        session.authenticator.clear_cache()
        console.print("\n[green]✓ Token cache cleared.[/green]")
        console.print("You will need to run 'coffeechat connect' again.\n")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]coffeechat[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()

"""Command-line interface for Betwise."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from betwise.api.routers.webhooks import cleanup_old_events
from betwise.auth.local import LocalAuthService
from betwise.auth.models import UserRole
from betwise.logging_config import configure_logging, get_logger
from betwise.payouts.service import PayoutError, payout_service
from betwise.referral.models import CommissionLog
from betwise.settings import settings
from betwise.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="betwise",
    help="Betwise - subscriptions, referral commissions and payouts",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("create-admin")
def create_admin(
    email: Annotated[str, typer.Argument(help="Admin email")],
    password: Annotated[str, typer.Option("--password", "-p", prompt=True, hide_input=True, help="Admin password")],
) -> None:
    """Create an admin account."""
    try:
        user = LocalAuthService().create_user(email=email, password=password, role=UserRole.ADMIN)
    except ValueError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Admin created with ID: [bold]{user.id}[/bold]")


@app.command("payouts")
def list_payouts(
    show_all: Annotated[bool, typer.Option("--all", "-a", help="Include paid and rejected requests")] = False,
) -> None:
    """List payout requests awaiting review."""
    requests = payout_service.list_requests(show_all=show_all)

    if not requests:
        console.print("[yellow]No payout requests found[/yellow]")
        return

    table = Table(title="Payout Requests")
    table.add_column("ID", style="cyan")
    table.add_column("User", style="green")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Payouts Enabled")
    table.add_column("Created At")
    table.add_column("Note")

    for request in requests:
        table.add_row(
            str(request["id"]),
            request["email"],
            f"{request['amount']:.2f} {request['currency'].upper()}",
            request["status"],
            "yes" if request["stripe_payouts_enabled"] else "no",
            request["created_at"].strftime("%Y-%m-%d %H:%M"),
            request["admin_note"] or "",
        )

    console.print(table)


@app.command("approve-payout")
def approve_payout(
    request_id: Annotated[int, typer.Argument(help="Payout request ID")],
) -> None:
    """Approve a payout request: Stripe transfer + payout."""
    console.print(f"[bold blue]Processing payout request {request_id}...[/bold blue]")

    try:
        request = payout_service.approve(request_id)
    except PayoutError as e:
        console.print(f"[bold red]✗[/bold red] Payout failed: {e}")
        raise typer.Exit(1)

    console.print("[bold green]✓[/bold green] Payout sent")
    console.print(f"  Amount: {request.amount} {request.currency.upper()}")
    console.print(f"  Transfer: {request.stripe_transfer_id}")
    console.print(f"  Payout: {request.stripe_payout_id}")


@app.command("reject-payout")
def reject_payout(
    request_id: Annotated[int, typer.Argument(help="Payout request ID")],
    note: Annotated[str, typer.Option("--note", "-n", help="Reason shown to the referrer")] = "",
) -> None:
    """Reject a payout request."""
    try:
        payout_service.reject(request_id, note=note or None)
    except PayoutError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Payout request {request_id} rejected")


@app.command("commissions")
def list_commissions(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of rows")] = 20,
) -> None:
    """Show the most recent commission logs."""
    with db.session() as session:
        logs = (
            session.query(CommissionLog)
            .order_by(CommissionLog.created_at.desc(), CommissionLog.id.desc())
            .limit(limit)
            .all()
        )

        if not logs:
            console.print("[yellow]No commissions found[/yellow]")
            return

        table = Table(title="Commissions")
        table.add_column("ID", style="cyan")
        table.add_column("Referrer", style="green")
        table.add_column("Referred")
        table.add_column("Payment", justify="right")
        table.add_column("Rate", justify="right")
        table.add_column("Amount", justify="right")
        table.add_column("Month")

        for log in logs:
            table.add_row(
                str(log.id),
                log.referrer.email,
                log.referred.email,
                str(log.payment_id),
                f"{float(log.rate_applied):.0%}",
                f"{log.amount} {settings.platform_currency.upper()}",
                log.month,
            )

        console.print(table)


@app.command("cleanup-webhook-events")
def cleanup_webhook_events(
    days: Annotated[int, typer.Option("--days", "-d", help="Keep events newer than this")] = settings.webhook_event_retention_days,
) -> None:
    """Delete old webhook idempotency records."""
    deleted = cleanup_old_events(days)
    console.print(f"[bold green]✓[/bold green] Deleted {deleted} webhook events older than {days} days")


if __name__ == "__main__":
    app()

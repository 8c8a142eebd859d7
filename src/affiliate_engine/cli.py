"""Command-line interface for the affiliate engine."""

import json
import threading
from decimal import Decimal
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from affiliate_engine.engine import AffiliateEngine
from affiliate_engine.errors import AffiliateEngineError
from affiliate_engine.logging_config import configure_logging, get_logger
from affiliate_engine.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

app = typer.Typer(
    name="affiliate-engine",
    help="Affiliate attribution and commission settlement",
    no_args_is_help=True,
)

console = Console()


def _engine() -> AffiliateEngine:
    return AffiliateEngine(db)


def _fail(exc: AffiliateEngineError) -> None:
    console.print(f"[bold red]✗[/bold red] {exc}")
    raise typer.Exit(code=1)


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("affiliate-apply")
def affiliate_apply(
    user_id: Annotated[str, typer.Option("--user", "-u", help="User ID of the applicant")],
    full_name: Annotated[str, typer.Option("--name", "-n", help="Applicant full name")],
    email: Annotated[str | None, typer.Option("--email", help="Contact email")] = None,
) -> None:
    """Create a pending affiliate application."""
    engine = _engine()
    try:
        affiliate = engine.affiliates.apply(user_id, full_name, contact_email=email)
    except AffiliateEngineError as exc:
        _fail(exc)
    console.print(f"[bold green]✓[/bold green] Affiliate [bold]{affiliate.id}[/bold] created with code [cyan]{affiliate.code}[/cyan]")
    console.print(f"  Link: {engine.affiliates.referral_link(affiliate)}")


@app.command("affiliate-approve")
def affiliate_approve(
    affiliate_id: Annotated[int, typer.Argument(help="Affiliate ID")],
) -> None:
    """Approve a pending affiliate."""
    try:
        affiliate = _engine().affiliates.approve(affiliate_id)
    except AffiliateEngineError as exc:
        _fail(exc)
    console.print(f"[bold green]✓[/bold green] Affiliate {affiliate.id} ({affiliate.code}) approved")


@app.command("click")
def record_click(
    code: Annotated[str, typer.Argument(help="Affiliate code")],
    utm_campaign: Annotated[str | None, typer.Option("--campaign", help="UTM campaign")] = None,
) -> None:
    """Record a click on a referral link."""
    try:
        click_id = _engine().record_click(code, utm_campaign=utm_campaign)
    except AffiliateEngineError as exc:
        _fail(exc)
    console.print(f"[bold green]✓[/bold green] Click recorded: [bold]{click_id}[/bold]")


@app.command("signup")
def link_signup(
    code: Annotated[str, typer.Argument(help="Affiliate code")],
    user_id: Annotated[str, typer.Argument(help="New user ID")],
) -> None:
    """Attribute a signup to the latest pending click."""
    conversion_id = _engine().link_signup(code, user_id)
    if conversion_id is None:
        console.print("[yellow]No pending click to attribute[/yellow]")
        return
    console.print(f"[bold green]✓[/bold green] Conversion created: [bold]{conversion_id}[/bold]")


@app.command("commission")
def compute_commission(
    affiliate_id: Annotated[int, typer.Option("--affiliate", "-a", help="Affiliate ID")],
    user_id: Annotated[str, typer.Option("--user", "-u", help="Referred user ID")],
    reference_id: Annotated[str, typer.Option("--reference", "-r", help="Qualifying event ID")],
    base_price: Annotated[str, typer.Option("--price", "-p", help="Base price of the event")],
    event_type: Annotated[str, typer.Option("--type", "-t", help="Event type")] = "author_registration",
) -> None:
    """Create the commission for a qualifying event."""
    engine = _engine()
    try:
        commission_id = engine.compute_commission(
            affiliate_id, user_id, event_type, reference_id, Decimal(base_price)
        )
    except AffiliateEngineError as exc:
        _fail(exc)
    console.print(f"[bold green]✓[/bold green] Commission [bold]{commission_id}[/bold] waiting")


@app.command("sweep")
def sweep(
    interval: Annotated[int | None, typer.Option("--interval", "-i", help="Repeat every N seconds")] = None,
) -> None:
    """Confirm or expire waiting commissions past their window."""
    engine = _engine()
    if interval is None:
        result = engine.run_expiration_sweep()
        console.print(
            f"[bold green]✓[/bold green] Confirmed {len(result.confirmed)}, "
            f"expired {len(result.expired)}, promoted {len(result.promoted_affiliates)}"
        )
        return

    console.print(f"[bold blue]Sweeping every {interval}s (Ctrl+C to stop)[/bold blue]")
    stop = threading.Event()
    try:
        engine.evaluator.run_periodically(stop, interval_seconds=interval)
    except KeyboardInterrupt:
        stop.set()
        console.print("[yellow]Stopped[/yellow]")


@app.command("dispatch")
def dispatch() -> None:
    """Fire qualifying events whose due time has passed."""
    result = _engine().dispatch_qualifying_events()
    console.print(
        f"[bold green]✓[/bold green] Fired {len(result.fired)} events, "
        f"{len(result.commissions)} commissions, {len(result.unattributed)} unattributed"
    )


@app.command("balance")
def balance(
    affiliate_id: Annotated[int, typer.Argument(help="Affiliate ID")],
) -> None:
    """Show an affiliate's balance."""
    try:
        snapshot = _engine().get_affiliate_balance(affiliate_id)
    except AffiliateEngineError as exc:
        _fail(exc)

    table = Table(title=f"Affiliate {affiliate_id} balance")
    table.add_column("Bucket", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_row("Available", str(snapshot.available))
    table.add_row("Pending", str(snapshot.pending))
    table.add_row("Reserved", str(snapshot.reserved))
    table.add_row("Total earnings", str(snapshot.total_earnings))
    table.add_row("Total paid", str(snapshot.total_paid))
    console.print(table)


@app.command("referrals")
def referrals(
    affiliate_id: Annotated[int, typer.Argument(help="Affiliate ID")],
) -> None:
    """List attributed users and their commission status."""
    try:
        views = _engine().list_referrals(affiliate_id)
    except AffiliateEngineError as exc:
        _fail(exc)

    if not views:
        console.print("[yellow]No referrals found[/yellow]")
        return

    table = Table(title="Referrals")
    table.add_column("User", style="cyan")
    table.add_column("Converted")
    table.add_column("Status", style="green")
    table.add_column("Days left", justify="right")
    table.add_column("Commissions", justify="right")
    for view in views:
        table.add_row(
            view.user_id,
            view.converted_at.strftime("%Y-%m-%d"),
            view.commission_status,
            str(view.days_remaining),
            str(view.commission_total),
        )
    console.print(table)


@app.command("withdraw")
def withdraw(
    affiliate_id: Annotated[int, typer.Option("--affiliate", "-a", help="Affiliate ID")],
    amount: Annotated[str, typer.Option("--amount", help="Amount to withdraw")],
    method: Annotated[str, typer.Option("--method", "-m", help="pix or transfer")] = "pix",
    details: Annotated[str, typer.Option("--details", "-d", help="Payment details as JSON")] = "{}",
) -> None:
    """Request a withdrawal against the available balance."""
    try:
        payment_details = json.loads(details)
    except json.JSONDecodeError:
        console.print("[bold red]✗[/bold red] --details must be valid JSON")
        raise typer.Exit(code=1)

    try:
        withdrawal_id = _engine().request_withdrawal_with_retry(affiliate_id, amount, method, payment_details)
    except AffiliateEngineError as exc:
        _fail(exc)
    console.print(f"[bold green]✓[/bold green] Withdrawal [bold]{withdrawal_id}[/bold] requested")


@app.command("withdrawal-advance")
def withdrawal_advance(
    withdrawal_id: Annotated[int, typer.Argument(help="Withdrawal ID")],
    status: Annotated[str, typer.Argument(help="approved, processing, paid or rejected")],
    reason: Annotated[str | None, typer.Option("--reason", help="Rejection reason")] = None,
) -> None:
    """Move a withdrawal to its next status."""
    try:
        _engine().advance_withdrawal_status(withdrawal_id, status, reason=reason)
    except AffiliateEngineError as exc:
        _fail(exc)
    except ValueError as exc:
        console.print(f"[bold red]✗[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] Withdrawal {withdrawal_id} is now [bold]{status}[/bold]")


@app.command("withdrawals")
def withdrawals(
    affiliate_id: Annotated[int, typer.Argument(help="Affiliate ID")],
) -> None:
    """List an affiliate's withdrawals."""
    rows = _engine().list_withdrawals(affiliate_id)
    if not rows:
        console.print("[yellow]No withdrawals found[/yellow]")
        return

    table = Table(title="Withdrawals")
    table.add_column("ID", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Status", style="green")
    table.add_column("Method")
    table.add_column("Requested At")
    for withdrawal in rows:
        table.add_row(
            str(withdrawal.id),
            str(withdrawal.amount),
            withdrawal.status,
            withdrawal.payment_method,
            withdrawal.requested_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


if __name__ == "__main__":
    app()

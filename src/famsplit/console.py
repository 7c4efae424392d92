"""Shared CLI plumbing: logging setup, service session and rich output."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .context import AppContext, build_context
from .exceptions import FamsplitError, SplitMismatchError
from .models import FamilyGroup, Invitation, SharedSubscription, Subscription
from .sharing.reconciler import format_currency

console = Console()


@dataclass
class CliState:
    """Global options given before the subcommand."""

    user_id: str | None = None
    email: str | None = None
    name: str | None = None
    verbose: bool = False


def setup_logging(verbose: bool = False, level_name: str = "INFO"):
    """Setup logging configuration; ``--verbose`` always wins over the level."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    # basicConfig is a no-op once handlers exist
    logging.getLogger().setLevel(level)


@contextmanager
def open_session(ctx: typer.Context) -> Iterator[AppContext]:
    """
    Build the app context for one command and report failures.

    Errors are printed and turned into exit code 1; ``--verbose`` re-raises
    them with a traceback.
    """
    state: CliState = ctx.obj or CliState()
    app_ctx = None
    try:
        overrides = {
            "user_id": state.user_id,
            "user_email": state.email,
            "user_name": state.name,
        }
        settings = load_settings(**{k: v for k, v in overrides.items() if v})
        setup_logging(state.verbose, settings.log_level)
        app_ctx = build_context(settings)
        yield app_ctx
    except SplitMismatchError as e:
        console.print(f"\n[bold red]Splits don't add up:[/bold red] {e}")
        console.print(
            f"  Expected: {format_currency(e.expected_cents)}\n"
            f"  Entered:  {format_currency(e.actual_cents)}\n"
            f"  Delta:    {format_currency(e.delta_cents)}"
        )
        if state.verbose:
            raise
        sys.exit(1)
    except (FamsplitError, ValueError) as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if state.verbose:
            raise
        sys.exit(1)
    finally:
        if app_ctx is not None:
            app_ctx.close()


# ============================================================================
# Display helpers
# ============================================================================


def display_group(group: FamilyGroup):
    """Display a family group's roster."""
    console.print(f"\n[bold]{group.name}[/bold] [dim]({group.id})[/dim]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("Email")
    table.add_column("Role", style="yellow")
    table.add_column("Permissions", style="dim")
    table.add_column("ID", style="dim")

    for member in group.members:
        table.add_row(
            member.name,
            member.email,
            member.role,
            ", ".join(member.permissions),
            member.id,
        )

    console.print(table)
    console.print(f"  Shared subscriptions: {len(group.shared_subscriptions)}")


def display_invitations(invitations: list[Invitation]):
    """Display pending invitations."""
    if not invitations:
        console.print("[dim]No pending invitations.[/dim]")
        return

    table = Table(title="Pending Invitations", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Group", style="cyan")
    table.add_column("Invited by")
    table.add_column("Sent", style="dim")

    for invitation in invitations:
        table.add_row(
            invitation.id or "",
            invitation.family_group_name,
            invitation.invited_by_name,
            invitation.created_at.strftime("%Y-%m-%d"),
        )

    console.print(table)


def display_subscriptions(subscriptions: list[Subscription], currency: str = "USD"):
    """Display a user's subscriptions."""
    if not subscriptions:
        console.print("[dim]No subscriptions yet.[/dim]")
        return

    table = Table(title="Subscriptions", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Category")
    table.add_column("Renews")
    table.add_column("Shared", justify="center")

    for subscription in subscriptions:
        table.add_row(
            subscription.id or "",
            subscription.name,
            format_currency(subscription.amount_cents, currency),
            subscription.category,
            subscription.next_renewal.isoformat(),
            "✓" if subscription.is_shared else "",
        )

    console.print(table)


def display_shared(
    shared: SharedSubscription,
    subscription: Subscription,
    status: str,
    reasons: list[str] | None = None,
    currency: str = "USD",
):
    """Display a shared subscription and the state of every split."""
    console.print(
        f"\n[bold]{subscription.name}[/bold]  "
        f"{format_currency(shared.total_cents, currency)} ({shared.split_type} split)"
    )
    console.print(f"  Next renewal: {subscription.next_renewal}  Status: {status}")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Paid", justify="center")
    table.add_column("Last paid", style="dim")

    for split in shared.splits:
        table.add_row(
            split.user_name,
            format_currency(split.amount_cents, currency),
            "[green]✓[/green]" if split.paid else "[red]✗[/red]",
            split.last_paid.strftime("%Y-%m-%d %H:%M") if split.last_paid else "—",
        )

    console.print(table)

    if shared.split_total() == shared.total_cents:
        console.print("  [green]✓ Splits match the total[/green]")
    else:
        console.print(
            f"  [red]✗ Splits total {format_currency(shared.split_total(), currency)}[/red]"
        )

    for reason in reasons or []:
        console.print(f"  [yellow]⚠️  Needs re-split: {reason}[/yellow]")


def parse_date(value: str) -> date:
    """Parse an ISO date given on the command line."""
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"'{value}' is not a YYYY-MM-DD date") from e

"""CLI for famsplit."""

import typer

from .console import (
    CliState,
    console,
    display_subscriptions,
    open_session,
    parse_date,
    setup_logging,
)
from .family.cli import app as family_app
from .mcp_server import run_server
from .sharing.cli import app as share_app
from .sharing.reconciler import format_currency, parse_currency

app = typer.Typer(
    name="famsplit",
    help="Track subscriptions and split their costs with your family",
)

subs_app = typer.Typer(name="subs", help="Record and edit your subscriptions")

app.add_typer(family_app, name="family", help="Family groups and invitations")
app.add_typer(share_app, name="share", help="Shared subscriptions and payments")
app.add_typer(subs_app, name="subs", help="Your subscriptions")


@app.callback()
def main(
    ctx: typer.Context,
    user: str | None = typer.Option(None, "--user", "-u", help="Act as this user ID"),
    email: str | None = typer.Option(None, "--email", help="Email of the acting user"),
    name: str | None = typer.Option(None, "--name", help="Display name of the acting user"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Global options shared by every command."""
    setup_logging(verbose)
    ctx.obj = CliState(user_id=user, email=email, name=name, verbose=verbose)


@subs_app.command("add")
def add_subscription(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Subscription name"),
    amount: str = typer.Argument(..., help="Price per billing cycle, e.g. 15.98"),
    renews: str = typer.Option(..., "--renews", "-r", help="Next renewal (YYYY-MM-DD)"),
    category: str = typer.Option("other", "--category", "-c", help="Category"),
    description: str | None = typer.Option(None, "--description", "-d"),
):
    """Record a subscription you pay for."""
    next_renewal = parse_date(renews)
    with open_session(ctx) as session:
        subscription = session.subscriptions.add_subscription(
            owner=session.user.id,
            name=name,
            amount_cents=parse_currency(amount),
            next_renewal=next_renewal,
            category=category,
            description=description,
        )
        console.print(
            f"\n[bold green]✓ Added {subscription.name}[/bold green] "
            f"[dim]({subscription.id})[/dim]"
        )


@subs_app.command("list")
def list_subscriptions(ctx: typer.Context):
    """List your subscriptions."""
    with open_session(ctx) as session:
        subscriptions = session.subscriptions.list_subscriptions(session.user.id)
        display_subscriptions(subscriptions, session.settings.currency)
        total = sum(s.amount_cents for s in subscriptions)
        console.print(f"  Total per billing cycle: {format_currency(total, session.settings.currency)}")


@subs_app.command("price")
def change_price(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="Subscription ID"),
    amount: str = typer.Argument(..., help="New price"),
):
    """Change a subscription's price (shared splits must then be redone)."""
    with open_session(ctx) as session:
        subscription = session.subscriptions.get_subscription(subscription_id)
        updated = session.subscriptions.update_amount(
            subscription, session.user.id, parse_currency(amount)
        )
        console.print(
            f"\n[bold green]✓ {updated.name} now costs "
            f"{format_currency(updated.amount_cents, session.settings.currency)}[/bold green]"
        )
        if session.engine.find_shared(subscription_id):
            console.print(
                "[yellow]⚠️  Its splits no longer match; run "
                f"[cyan]famsplit share update {subscription_id}[/cyan][/yellow]"
            )


@subs_app.command("delete")
def delete_subscription(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="Subscription ID"),
):
    """Delete a subscription and its split plan."""
    with open_session(ctx) as session:
        subscription = session.subscriptions.get_subscription(subscription_id)
        session.subscriptions.delete_subscription(subscription, session.user.id)
        console.print(f"\n[bold green]✓ Deleted {subscription.name}[/bold green]")


@app.command()
def mcp():
    """Start the MCP server exposing family operations as tools."""
    run_server()


if __name__ == "__main__":
    app()

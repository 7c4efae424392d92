"""CLI commands for sharing subscriptions and tracking split payments."""

import typer

from ..console import console, display_shared, open_session
from ..context import AppContext
from ..models import FamilyGroup, ProposedSplit, SplitType, Subscription
from .reconciler import equal_split, percentage_split, splits_from_amounts
from .ui import prompt_split_amounts

app = typer.Typer(
    name="share",
    help="Split subscription costs within a family group",
)


def _parse_pairs(values: list[str], option: str) -> dict[str, str]:
    """Parse repeated ``USER=VALUE`` options."""
    pairs = {}
    for value in values:
        user_id, sep, amount = value.partition("=")
        if not sep or not user_id.strip() or not amount.strip():
            raise typer.BadParameter(f"expected USER=VALUE, got '{value}'", param_hint=option)
        pairs[user_id.strip()] = amount.strip()
    return pairs


def _proposed_splits(
    session: AppContext,
    group: FamilyGroup,
    total_cents: int,
    splits: list[str],
    percents: list[str],
    equal_with: list[str] | None,
    interactive: bool,
) -> tuple[list[ProposedSplit], SplitType] | None:
    """Turn command line options into proposed splits."""
    if interactive:
        amounts = prompt_split_amounts(group.members, total_cents, session.settings.currency)
        if amounts is None:
            return None
        return (
            splits_from_amounts(amounts, total_cents, session.settings.split_tolerance),
            "fixed",
        )
    if percents:
        return percentage_split(total_cents, _parse_pairs(percents, "--percent")), "percentage"
    if splits:
        return (
            splits_from_amounts(
                _parse_pairs(splits, "--split"),
                total_cents,
                session.settings.split_tolerance,
            ),
            "fixed",
        )
    if equal_with is not None:
        user_ids = equal_with or [member.id for member in group.members]
        return equal_split(total_cents, user_ids), "equal"

    raise typer.BadParameter("give --split, --percent, --equal or --interactive")


def _show(session: AppContext, subscription: Subscription) -> None:
    shared = session.engine.find_shared(subscription.id or "")
    if shared is None:
        console.print(f"[dim]{subscription.name} is not shared.[/dim]")
        return
    group = session.memberships.get_group(shared.family_group_id)
    display_shared(
        shared,
        subscription,
        session.engine.status(shared, subscription),
        session.engine.resplit_reasons(shared, group, subscription),
        session.settings.currency,
    )


@app.command()
def create(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="Subscription ID"),
    split: list[str] = typer.Option([], "--split", "-s", help="USER=AMOUNT, repeatable"),
    percent: list[str] = typer.Option([], "--percent", "-p", help="USER=PERCENT, repeatable"),
    equal: bool = typer.Option(False, "--equal", "-e", help="Split evenly"),
    with_: list[str] = typer.Option([], "--with", help="Members for --equal (default: all)"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Enter amounts interactively"),
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group ID"),
):
    """
    Share a subscription with your family group.

    The splits must add up to the subscription price; sub-cent rounding from
    decimal input is absorbed into the largest split.
    """
    with open_session(ctx) as session:
        subscription = session.subscriptions.get_subscription(subscription_id)
        group = session.resolve_group(group_id)

        result = _proposed_splits(
            session,
            group,
            subscription.amount_cents,
            split,
            percent,
            with_ if equal else None,
            interactive,
        )
        if result is None:
            console.print("[yellow]Cancelled.[/yellow]")
            return
        proposed, split_type = result

        session.engine.share_subscription(
            subscription, group, proposed, session.user.id, split_type=split_type
        )
        console.print(f"\n[bold green]✓ Shared {subscription.name} with {group.name}[/bold green]")
        _show(session, session.subscriptions.get_subscription(subscription_id))


@app.command()
def update(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="Subscription ID"),
    split: list[str] = typer.Option([], "--split", "-s", help="USER=AMOUNT, repeatable"),
    percent: list[str] = typer.Option([], "--percent", "-p", help="USER=PERCENT, repeatable"),
    equal: bool = typer.Option(False, "--equal", "-e", help="Split evenly"),
    with_: list[str] = typer.Option([], "--with", help="Members for --equal (default: all)"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Enter amounts interactively"),
):
    """
    Re-split a shared subscription at its current price.

    Members whose amount changes go back to unpaid; members left out are
    dropped from the plan.
    """
    with open_session(ctx) as session:
        subscription = session.subscriptions.get_subscription(subscription_id)
        shared = session.engine.find_shared(subscription_id)
        if shared is None:
            console.print(f"[yellow]{subscription.name} is not shared yet.[/yellow]")
            return
        group = session.memberships.get_group(shared.family_group_id)

        result = _proposed_splits(
            session,
            group,
            subscription.amount_cents,
            split,
            percent,
            with_ if equal else None,
            interactive,
        )
        if result is None:
            console.print("[yellow]Cancelled.[/yellow]")
            return
        proposed, split_type = result

        session.engine.update_splits(
            shared, proposed, session.user.id, subscription=subscription, split_type=split_type
        )
        console.print(f"\n[bold green]✓ Updated splits for {subscription.name}[/bold green]")
        _show(session, subscription)


@app.command()
def paid(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="Subscription ID"),
    again: bool = typer.Option(
        False, "--again", help="Record a new payment even if already marked paid"
    ),
):
    """Mark your split of a shared subscription as paid."""
    with open_session(ctx) as session:
        shared = session.engine.find_shared(subscription_id)
        if shared is None:
            console.print("[yellow]That subscription is not shared.[/yellow]")
            return

        user_id = session.user.id
        if again:
            session.engine.reconcile_payment(shared, user_id, user_id)
        else:
            split = shared.get_split(user_id)
            if split is not None and split.paid:
                console.print("[dim]Already marked as paid (use --again for a new payment).[/dim]")
                return
            session.engine.mark_as_paid(shared, user_id, user_id)

        console.print("\n[bold green]✓ Payment recorded[/bold green]")
        _show(session, session.subscriptions.get_subscription(subscription_id))


@app.command()
def show(
    ctx: typer.Context,
    subscription_id: str | None = typer.Argument(None, help="Subscription ID"),
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group ID"),
):
    """Show split and payment status for one or all shared subscriptions."""
    with open_session(ctx) as session:
        if subscription_id:
            _show(session, session.subscriptions.get_subscription(subscription_id))
            return

        group = session.resolve_group(group_id)
        plans = session.engine.list_shared_for_group(group.id or "")
        if not plans:
            console.print(f"[dim]{group.name} has no shared subscriptions.[/dim]")
        for shared in plans:
            _show(session, session.subscriptions.get_subscription(shared.subscription_id))


@app.command()
def remove(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="Subscription ID"),
):
    """Stop sharing a subscription."""
    with open_session(ctx) as session:
        shared = session.engine.find_shared(subscription_id)
        if shared is None:
            console.print("[yellow]That subscription is not shared.[/yellow]")
            return
        session.engine.unshare_subscription(shared, session.user.id)
        console.print("\n[bold green]✓ Subscription is no longer shared[/bold green]")

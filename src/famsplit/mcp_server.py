"""MCP server for famsplit: exposes family cost splitting as tools for Claude."""

import logging
from dataclasses import dataclass
from datetime import date

from mcp.server.fastmcp import FastMCP

from .context import AppContext, build_context
from .exceptions import FamsplitError, SplitMismatchError
from .models import SharedSubscription, Subscription
from .sharing.reconciler import (
    equal_split,
    format_currency,
    parse_currency,
    splits_from_amounts,
)

logger = logging.getLogger(__name__)

mcp_app = FastMCP("famsplit")

WORKFLOW_INSTRUCTIONS = """\
You are helping a family split subscription costs. Follow this workflow:

1. GROUP: Call list_groups. If the user has no group, offer create_group.
   Use invite_member to invite people by email; they answer with
   list_invitations and respond_to_invitation.

2. SUBSCRIPTIONS: Call list_subscriptions to find the subscription to share,
   or add_subscription to record a new one.

3. SHARE: Propose amounts per member that add up EXACTLY to the price, then
   call share_subscription. If the tool reports a mismatch, show the user the
   delta and ask how to fix it. Never rescale amounts on your own.

4. PAYMENTS: Members call mark_as_paid for their own split.
   Use show_shared to report who has paid and which plans need a re-split.

Always show amounts with two decimals and the currency symbol.\
"""


@dataclass
class SessionState:
    """Holds the app context between MCP tool calls."""

    context: AppContext | None = None


_state = SessionState()


def _ensure_context() -> AppContext:
    """Lazily build the app context (loads .env config)."""
    if _state.context is None:
        _state.context = build_context()
    return _state.context


def _describe_shared(
    session: AppContext, shared: SharedSubscription, subscription: Subscription
) -> str:
    group = session.memberships.get_group(shared.family_group_id)
    currency = session.settings.currency
    lines = [
        f"{subscription.name} | total {format_currency(shared.total_cents, currency)} | "
        f"{session.engine.status(shared, subscription)}"
    ]
    for split in shared.splits:
        state = f"paid {split.last_paid:%Y-%m-%d}" if split.last_paid else "unpaid"
        lines.append(
            f"  - {split.user_name} ({split.user_id}): "
            f"{format_currency(split.amount_cents, currency)} | {state}"
        )
    for reason in session.engine.resplit_reasons(shared, group, subscription):
        lines.append(f"  ! needs re-split: {reason}")
    return "\n".join(lines)


def _mismatch_message(e: SplitMismatchError) -> str:
    return (
        f"Splits don't add up. Expected {format_currency(e.expected_cents)}, "
        f"got {format_currency(e.actual_cents)} (delta {format_currency(e.delta_cents)})."
    )


# ---------------------------------------------------------------------------
# MCP Tools
# ---------------------------------------------------------------------------


@mcp_app.tool()
def list_groups() -> str:
    """List the family groups you belong to, with their members."""
    try:
        session = _ensure_context()
        groups = session.memberships.list_groups_for_user(session.user.id)
        if not groups:
            return "You are not in any family group."

        lines = []
        for group in groups:
            lines.append(f"{group.name} ({group.id})")
            for member in group.members:
                lines.append(f"  - {member.name} <{member.email}> [{member.role}] id={member.id}")
        return "\n".join(lines)
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to list groups: {e}"


@mcp_app.tool()
def create_group(name: str) -> str:
    """Create a family group with yourself as admin.

    Args:
        name: Name of the new group.
    """
    try:
        session = _ensure_context()
        group = session.memberships.create_group(session.user, name)
        return f"Created family group {group.name} ({group.id})."
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to create group: {e}"


@mcp_app.tool()
def invite_member(email: str, group_id: str | None = None) -> str:
    """Invite an email address to a family group.

    Args:
        email: Address to invite.
        group_id: Group to invite to; defaults to your first group.
    """
    try:
        session = _ensure_context()
        group = session.resolve_group(group_id)
        invitation = session.memberships.invite_member(group, session.user.id, email)
        return f"Invited {invitation.invited_email} to {group.name} ({invitation.id})."
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to invite member: {e}"


@mcp_app.tool()
def list_invitations() -> str:
    """List invitations addressed to you that are still pending."""
    try:
        session = _ensure_context()
        invitations = session.memberships.list_pending_invitations(session.user.email)
        if not invitations:
            return "No pending invitations."
        return "\n".join(
            f"[{inv.id}] {inv.family_group_name} (from {inv.invited_by_name})"
            for inv in invitations
        )
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to list invitations: {e}"


@mcp_app.tool()
def respond_to_invitation(invitation_id: str, accept: bool) -> str:
    """Accept or decline an invitation.

    Args:
        invitation_id: ID from list_invitations.
        accept: True to join the group, False to decline.
    """
    try:
        session = _ensure_context()
        invitation = session.memberships.get_invitation(invitation_id)
        session.memberships.respond_to_invitation(
            invitation, session.user, "accept" if accept else "decline"
        )
        verb = "Joined" if accept else "Declined"
        return f"{verb} {invitation.family_group_name}."
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to respond to invitation: {e}"


@mcp_app.tool()
def remove_member(member_id: str, group_id: str | None = None) -> str:
    """Remove a member from a family group (admins only).

    Args:
        member_id: ID of the member to remove.
        group_id: Group to remove from; defaults to your first group.
    """
    try:
        session = _ensure_context()
        group = session.resolve_group(group_id)
        group = session.memberships.remove_member(group, session.user.id, member_id)
        flagged = session.engine.flag_orphaned(group)
        message = f"Removed {member_id} from {group.name}."
        if flagged:
            message += f" {len(flagged)} shared subscription(s) now need a re-split."
        return message
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to remove member: {e}"


@mcp_app.tool()
def change_role(member_id: str, role: str, group_id: str | None = None) -> str:
    """Promote or demote a member (admins only).

    Args:
        member_id: ID of the member.
        role: "admin" or "member".
        group_id: Group to change; defaults to your first group.
    """
    try:
        if role not in ("admin", "member"):
            return "Error: role must be 'admin' or 'member'."
        session = _ensure_context()
        group = session.resolve_group(group_id)
        session.memberships.change_role(
            group, session.user.id, member_id, "admin" if role == "admin" else "member"
        )
        return f"{member_id} is now {role}."
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to change role: {e}"


@mcp_app.tool()
def list_subscriptions() -> str:
    """List your subscriptions."""
    try:
        session = _ensure_context()
        subscriptions = session.subscriptions.list_subscriptions(session.user.id)
        if not subscriptions:
            return "No subscriptions recorded."
        return "\n".join(
            f"[{s.id}] {s.name} | {format_currency(s.amount_cents, session.settings.currency)}"
            f" | renews {s.next_renewal} | {'shared' if s.is_shared else 'personal'}"
            for s in subscriptions
        )
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to list subscriptions: {e}"


@mcp_app.tool()
def add_subscription(name: str, amount: str, next_renewal: str, category: str = "other") -> str:
    """Record a subscription you pay for.

    Args:
        name: Subscription name, e.g. "Netflix".
        amount: Price per billing cycle, e.g. "15.98".
        next_renewal: Next renewal date (YYYY-MM-DD).
        category: Optional category.
    """
    try:
        session = _ensure_context()
        subscription = session.subscriptions.add_subscription(
            owner=session.user.id,
            name=name,
            amount_cents=parse_currency(amount),
            next_renewal=date.fromisoformat(next_renewal),
            category=category,
        )
        return f"Added {subscription.name} ({subscription.id})."
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to add subscription: {e}"


@mcp_app.tool()
def share_subscription(
    subscription_id: str,
    splits: dict[str, str] | None = None,
    group_id: str | None = None,
) -> str:
    """Share a subscription with a family group.

    Args:
        subscription_id: Subscription to share.
        splits: Member ID -> amount (e.g. {"u1": "7.99"}). Omit to split
            evenly across all members.
        group_id: Group to share with; defaults to your first group.
    """
    try:
        session = _ensure_context()
        subscription = session.subscriptions.get_subscription(subscription_id)
        group = session.resolve_group(group_id)

        if splits:
            proposed = splits_from_amounts(
                splits, subscription.amount_cents, session.settings.split_tolerance
            )
            split_type = "fixed"
        else:
            proposed = equal_split(
                subscription.amount_cents, [member.id for member in group.members]
            )
            split_type = "equal"

        shared = session.engine.share_subscription(
            subscription, group, proposed, session.user.id, split_type=split_type
        )
        return _describe_shared(
            session, shared, session.subscriptions.get_subscription(subscription_id)
        )
    except SplitMismatchError as e:
        return _mismatch_message(e)
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to share subscription: {e}"


@mcp_app.tool()
def update_splits(subscription_id: str, splits: dict[str, str]) -> str:
    """Re-split a shared subscription at its current price.

    Args:
        subscription_id: Shared subscription to change.
        splits: Member ID -> amount. Members left out are dropped.
    """
    try:
        session = _ensure_context()
        subscription = session.subscriptions.get_subscription(subscription_id)
        shared = session.engine.find_shared(subscription_id)
        if shared is None:
            return f"Error: {subscription.name} is not shared."

        proposed = splits_from_amounts(
            splits, subscription.amount_cents, session.settings.split_tolerance
        )
        shared = session.engine.update_splits(
            shared, proposed, session.user.id, subscription=subscription
        )
        return _describe_shared(session, shared, subscription)
    except SplitMismatchError as e:
        return _mismatch_message(e)
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to update splits: {e}"


@mcp_app.tool()
def mark_as_paid(subscription_id: str) -> str:
    """Mark your own split of a shared subscription as paid.

    Args:
        subscription_id: The shared subscription.
    """
    try:
        session = _ensure_context()
        shared = session.engine.find_shared(subscription_id)
        if shared is None:
            return "Error: that subscription is not shared."
        user_id = session.user.id
        shared = session.engine.mark_as_paid(shared, user_id, user_id)
        return _describe_shared(
            session, shared, session.subscriptions.get_subscription(subscription_id)
        )
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to mark as paid: {e}"


@mcp_app.tool()
def show_shared(group_id: str | None = None) -> str:
    """Show every shared subscription of a group with payment status.

    Args:
        group_id: Group to show; defaults to your first group.
    """
    try:
        session = _ensure_context()
        group = session.resolve_group(group_id)
        plans = session.engine.list_shared_for_group(group.id or "")
        if not plans:
            return f"{group.name} has no shared subscriptions."
        return "\n\n".join(
            _describe_shared(
                session,
                shared,
                session.subscriptions.get_subscription(shared.subscription_id),
            )
            for shared in plans
        )
    except FamsplitError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to show shared subscriptions: {e}"


# ---------------------------------------------------------------------------
# MCP Prompt
# ---------------------------------------------------------------------------


@mcp_app.prompt()
def sharing_workflow() -> str:
    """Orchestration instructions for splitting family subscriptions."""
    return WORKFLOW_INSTRUCTIONS


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_server():
    """Start the MCP server (stdio transport)."""
    mcp_app.run(transport="stdio")

"""CLI commands for family groups and invitations."""

import typer

from ..console import (
    console,
    display_group,
    display_invitations,
    open_session,
)
from ..models import Role
from ..sharing.ui import confirm_action, select_member_interactive

app = typer.Typer(
    name="family",
    help="Create family groups, invite members and manage roles",
)


@app.command()
def create(ctx: typer.Context, name: str = typer.Argument(..., help="Group name")):
    """Create a family group with yourself as admin."""
    with open_session(ctx) as session:
        group = session.memberships.create_group(session.user, name)
        console.print(f"\n[bold green]✓ Created family group {group.name}[/bold green]")
        display_group(group)


@app.command()
def show(
    ctx: typer.Context,
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group ID"),
):
    """Show a family group's members and flag splits needing attention."""
    with open_session(ctx) as session:
        group = session.resolve_group(group_id)
        display_group(group)

        for shared in session.engine.list_shared_for_group(group.id or ""):
            orphans = session.engine.orphaned_splits(shared, group)
            if orphans:
                names = ", ".join(split.user_name for split in orphans)
                console.print(
                    f"  [yellow]⚠️  Subscription {shared.subscription_id} still "
                    f"bills former members: {names}[/yellow]"
                )


@app.command()
def invite(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Email address to invite"),
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group ID"),
):
    """Invite someone to your family group by email."""
    with open_session(ctx) as session:
        group = session.resolve_group(group_id)
        invitation = session.memberships.invite_member(group, session.user.id, email)
        console.print(
            f"\n[bold green]✓ Invited {invitation.invited_email} to "
            f"{group.name}[/bold green] [dim]({invitation.id})[/dim]"
        )


@app.command()
def invitations(ctx: typer.Context):
    """List invitations waiting for your answer."""
    with open_session(ctx) as session:
        display_invitations(
            session.memberships.list_pending_invitations(session.user.email)
        )


@app.command()
def accept(ctx: typer.Context, invitation_id: str = typer.Argument(...)):
    """Accept an invitation and join the group."""
    with open_session(ctx) as session:
        invitation = session.memberships.get_invitation(invitation_id)
        group = session.memberships.respond_to_invitation(
            invitation, session.user, "accept"
        )
        console.print(f"\n[bold green]✓ You joined {invitation.family_group_name}[/bold green]")
        if group:
            display_group(group)


@app.command()
def decline(ctx: typer.Context, invitation_id: str = typer.Argument(...)):
    """Decline an invitation."""
    with open_session(ctx) as session:
        invitation = session.memberships.get_invitation(invitation_id)
        session.memberships.respond_to_invitation(invitation, session.user, "decline")
        console.print(
            f"\n[yellow]Declined invitation to {invitation.family_group_name}[/yellow]"
        )


@app.command()
def remove(
    ctx: typer.Context,
    member_id: str | None = typer.Argument(None, help="Member ID (omit to pick)"),
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Remove a member (admins only). Their splits are flagged for re-split."""
    with open_session(ctx) as session:
        group = session.resolve_group(group_id)
        if member_id is None:
            member_id = select_member_interactive(group.members, prompt="Remove")
            if member_id is None:
                console.print("[yellow]No member selected.[/yellow]")
                return

        member = group.get_member(member_id)
        label = member.name if member else member_id
        if not yes and not confirm_action(f"Remove {label} from {group.name}?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        group = session.memberships.remove_member(group, session.user.id, member_id)
        flagged = session.engine.flag_orphaned(group)

        console.print(f"\n[bold green]✓ Removed {label}[/bold green]")
        if flagged:
            console.print(
                f"[yellow]⚠️  {len(flagged)} shared subscription(s) need a new split[/yellow]"
            )
        display_group(group)


@app.command()
def leave(
    ctx: typer.Context,
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group ID"),
):
    """Leave a family group."""
    with open_session(ctx) as session:
        group = session.resolve_group(group_id)
        group = session.memberships.leave_group(group, session.user.id)
        session.engine.flag_orphaned(group)
        console.print(f"\n[yellow]You left {group.name}[/yellow]")


@app.command()
def role(
    ctx: typer.Context,
    member_id: str = typer.Argument(..., help="Member ID"),
    new_role: str = typer.Argument(..., help="admin or member"),
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group ID"),
):
    """Promote or demote a member (admins only)."""
    if new_role not in ("admin", "member"):
        raise typer.BadParameter("role must be 'admin' or 'member'")

    with open_session(ctx) as session:
        group = session.resolve_group(group_id)
        target_role: Role = "admin" if new_role == "admin" else "member"
        group = session.memberships.change_role(
            group, session.user.id, member_id, target_role
        )
        console.print(f"\n[bold green]✓ {member_id} is now {new_role}[/bold green]")
        display_group(group)

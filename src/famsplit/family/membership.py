"""Family group lifecycle: creation, invitations and roster changes.

Every mutation is a read-modify-write of the whole group document, written
with the revision the caller read so concurrent edits fail instead of
silently overwriting each other.
"""

import logging
import re
from collections.abc import Callable
from typing import Literal

from ..exceptions import (
    AuthorizationError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..ledger import (
    FAMILY_GROUPS,
    INVITATIONS,
    ArrayContains,
    Eq,
    LedgerStore,
    from_document,
    to_document,
)
from ..models import (
    ROLE_PERMISSIONS,
    FamilyGroup,
    Invitation,
    Member,
    Role,
    User,
    group_invariant_problems,
    utcnow,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

Decision = Literal["accept", "decline"]


def normalize_email(email: str) -> str:
    """
    Normalize an email address for case-insensitive matching.

    Raises:
        ValidationError: If the address is obviously malformed
    """
    normalized = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("email", f"'{email}' is not a valid email address")
    return normalized


class MembershipManager:
    """Owns family groups, their rosters and invitations."""

    def __init__(self, store: LedgerStore):
        """Initialize the manager."""
        self.store = store

    # ========================================================================
    # Reads
    # ========================================================================

    def get_group(self, group_id: str) -> FamilyGroup:
        """Fetch a group or raise NotFoundError."""
        document = self.store.get(FAMILY_GROUPS, group_id)
        if document is None:
            raise NotFoundError("family group", group_id)
        return from_document(FamilyGroup, FAMILY_GROUPS, document)

    def list_groups_for_user(self, user_id: str) -> list[FamilyGroup]:
        """All groups the user belongs to."""
        documents = self.store.query(
            FAMILY_GROUPS, [ArrayContains("member_ids", user_id)]
        )
        return [from_document(FamilyGroup, FAMILY_GROUPS, doc) for doc in documents]

    def watch_groups(
        self, user_id: str, on_change: Callable[[list[FamilyGroup]], None]
    ) -> Callable[[], None]:
        """Push the user's groups to ``on_change`` whenever any of them changes."""
        return self.store.subscribe(
            FAMILY_GROUPS,
            [ArrayContains("member_ids", user_id)],
            lambda docs: on_change(
                [from_document(FamilyGroup, FAMILY_GROUPS, doc) for doc in docs]
            ),
        )

    def get_invitation(self, invitation_id: str) -> Invitation:
        """Fetch an invitation or raise NotFoundError."""
        document = self.store.get(INVITATIONS, invitation_id)
        if document is None:
            raise NotFoundError("invitation", invitation_id)
        return from_document(Invitation, INVITATIONS, document)

    def list_pending_invitations(self, email: str) -> list[Invitation]:
        """Pending invitations addressed to an email (case-insensitive)."""
        documents = self.store.query(
            INVITATIONS,
            [Eq("invited_email", email.strip().lower()), Eq("status", "pending")],
        )
        return [from_document(Invitation, INVITATIONS, doc) for doc in documents]

    def watch_invitations(
        self, email: str, on_change: Callable[[list[Invitation]], None]
    ) -> Callable[[], None]:
        """Push pending invitations for ``email`` whenever they change."""
        return self.store.subscribe(
            INVITATIONS,
            [Eq("invited_email", email.strip().lower()), Eq("status", "pending")],
            lambda docs: on_change(
                [from_document(Invitation, INVITATIONS, doc) for doc in docs]
            ),
        )

    # ========================================================================
    # Group creation
    # ========================================================================

    def create_group(self, creator: User, name: str) -> FamilyGroup:
        """
        Create a family group with the creator as its only admin.

        Raises:
            ValidationError: If the name is blank
        """
        name = name.strip()
        if not name:
            raise ValidationError("name", "family group name must not be empty")

        group = FamilyGroup(
            name=name,
            created_by=creator.id,
            members=[
                Member(
                    id=creator.id,
                    name=creator.name,
                    email=creator.email.lower(),
                    role="admin",
                    permissions=ROLE_PERMISSIONS["admin"],
                )
            ],
            member_ids=[creator.id],
        )
        group_id = self.store.create(FAMILY_GROUPS, to_document(group))

        logger.info(f"Created family group '{name}' ({group_id}) for {creator.id}")
        return self.get_group(group_id)

    # ========================================================================
    # Invitations
    # ========================================================================

    def invite_member(self, group: FamilyGroup, inviter: str, email: str) -> Invitation:
        """
        Invite an email address to join ``group``.

        Raises:
            PermissionDeniedError: If the inviter lacks the 'invite' permission
            ValidationError: If the email is malformed
            ConflictError: If the address is already a member or already has
                a pending invitation to this group
            NotFoundError: If the group no longer exists
        """
        if group.id is None:
            raise NotFoundError("family group", "<unsaved>")
        # permissions are checked against the stored roster, not the caller's copy
        group = self.get_group(group.id)
        if not group.has_permission(inviter, "invite"):
            raise PermissionDeniedError(inviter, "invite")

        invited_email = normalize_email(email)
        if any(member.email.lower() == invited_email for member in group.members):
            raise ConflictError(f"{invited_email} is already a member of {group.name}")

        existing = self.store.query(
            INVITATIONS,
            [
                Eq("family_group_id", group.id),
                Eq("invited_email", invited_email),
                Eq("status", "pending"),
            ],
        )
        if existing:
            raise ConflictError(
                f"{invited_email} already has a pending invitation to {group.name}"
            )

        inviter_member = group.get_member(inviter)
        assert inviter_member is not None  # has_permission implies membership

        invitation = Invitation(
            family_group_id=group.id,
            family_group_name=group.name,
            invited_email=invited_email,
            invited_by=inviter,
            invited_by_name=inviter_member.name,
        )
        invitation_id = self.store.create(INVITATIONS, to_document(invitation))

        logger.info(f"Invited {invited_email} to {group.name} ({invitation_id})")
        return self.get_invitation(invitation_id)

    def respond_to_invitation(
        self, invitation: Invitation, responder: User, decision: Decision
    ) -> FamilyGroup | None:
        """
        Accept or decline an invitation.

        Accepting adds the responder as a plain member (a no-op on the roster
        if they already belong) and returns the updated group. Declining
        returns None. Both outcomes are terminal.

        Raises:
            NotFoundError: If the invitation or its group no longer exists
            ConflictError: If the invitation was already answered
            AuthorizationError: If the responder's email doesn't match
        """
        if invitation.id is None:
            raise NotFoundError("invitation", "<unsaved>")
        if decision not in ("accept", "decline"):
            raise ValidationError("decision", f"expected accept or decline, got {decision}")

        current = self.get_invitation(invitation.id)
        if current.status != "pending":
            raise ConflictError(
                f"Invitation {current.id} was already {current.status}"
            )
        if responder.email.strip().lower() != current.invited_email:
            raise AuthorizationError(
                f"Invitation {current.id} was sent to a different email address"
            )

        group = None
        if decision == "accept":
            group = self.get_group(current.family_group_id)
            if group.is_member(responder.id):
                logger.info(f"{responder.id} already belongs to {group.name}")
            else:
                members = group.members + [
                    Member(
                        id=responder.id,
                        name=responder.name,
                        email=responder.email.lower(),
                        role="member",
                        permissions=ROLE_PERMISSIONS["member"],
                    )
                ]
                group = self._save_roster(group, members)

        self.store.update(
            INVITATIONS,
            invitation.id,
            {
                "status": "accepted" if decision == "accept" else "declined",
                "responded_at": utcnow().isoformat(),
            },
            expected_revision=current.revision,
        )

        logger.info(f"{responder.id} {decision}ed invitation {current.id}")
        return group

    # ========================================================================
    # Roster changes
    # ========================================================================

    def remove_member(self, group: FamilyGroup, actor: str, target: str) -> FamilyGroup:
        """
        Remove ``target`` from the group.

        Shared subscriptions keep the removed member's split; the split
        engine reports it as orphaned so it can be re-split.

        Raises:
            PermissionDeniedError: If the actor lacks the 'delete' permission
            NotFoundError: If the target isn't a member
            InvariantViolation: If the target is the last admin
        """
        if not group.has_permission(actor, "delete"):
            raise PermissionDeniedError(actor, "delete")
        return self._remove(group, target)

    def leave_group(self, group: FamilyGroup, user_id: str) -> FamilyGroup:
        """Remove yourself from a group (the last admin can't leave)."""
        return self._remove(group, user_id)

    def change_role(
        self, group: FamilyGroup, actor: str, target: str, new_role: Role
    ) -> FamilyGroup:
        """
        Promote or demote a member; permissions follow the role.

        Raises:
            PermissionDeniedError: If the actor isn't an admin
            NotFoundError: If the target isn't a member
            InvariantViolation: If this would demote the last admin
        """
        if not group.is_admin(actor):
            raise PermissionDeniedError(actor, "admin", "Only admins can change roles")
        if new_role not in ROLE_PERMISSIONS:
            raise ValidationError("role", f"unknown role '{new_role}'")

        member = group.get_member(target)
        if member is None:
            raise NotFoundError("member", target)
        if member.role == new_role:
            return group
        if member.role == "admin" and group.admin_count() == 1:
            raise InvariantViolation(
                f"{member.name} is the last admin of {group.name} and can't be demoted"
            )

        members = [
            m.model_copy(
                update={"role": new_role, "permissions": list(ROLE_PERMISSIONS[new_role])}
            )
            if m.id == target
            else m
            for m in group.members
        ]
        updated = self._save_roster(group, members)

        logger.info(f"Changed role of {target} in {group.name} to {new_role}")
        return updated

    def _remove(self, group: FamilyGroup, target: str) -> FamilyGroup:
        member = group.get_member(target)
        if member is None:
            raise NotFoundError("member", target)
        if member.role == "admin" and group.admin_count() == 1:
            raise InvariantViolation(
                f"{member.name} is the last admin of {group.name}; "
                f"promote another member first"
            )

        members = [m for m in group.members if m.id != target]

        updated = self._save_roster(group, members)

        logger.info(f"Removed {target} from {group.name}")
        return updated

    def _save_roster(self, group: FamilyGroup, members: list[Member]) -> FamilyGroup:
        """Write a new member list, keeping member_ids in step with it."""
        assert group.id is not None
        updated = group.model_copy(
            update={"members": members, "member_ids": [m.id for m in members]}
        )

        problems = group_invariant_problems(updated)
        if problems:
            raise InvariantViolation("; ".join(problems))

        revision = self.store.update(
            FAMILY_GROUPS,
            group.id,
            to_document(updated),
            expected_revision=group.revision,
        )
        return updated.model_copy(update={"revision": revision})

"""Tests for family groups, invitations and roster changes."""

import pytest

from famsplit.exceptions import (
    AuthorizationError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    PermissionDeniedError,
    RevisionConflictError,
    ValidationError,
)
from famsplit.family.membership import normalize_email
from famsplit.models import User


class TestCreateGroup:
    def test_creator_is_sole_admin(self, memberships, alice):
        group = memberships.create_group(alice, "  The Smiths ")

        assert group.id
        assert group.name == "The Smiths"
        assert group.created_by == "alice"
        assert group.member_ids == ["alice"]
        admin = group.get_member("alice")
        assert admin.role == "admin"
        assert set(admin.permissions) == {"view", "edit", "delete", "invite"}

    def test_blank_name(self, memberships, alice):
        with pytest.raises(ValidationError):
            memberships.create_group(alice, "   ")

    def test_listed_for_member(self, memberships, alice, bob):
        group = memberships.create_group(alice, "The Smiths")
        memberships.create_group(bob, "Bob's flat")

        assert [g.id for g in memberships.list_groups_for_user("alice")] == [group.id]


class TestInvite:
    def test_creates_pending_invitation(self, memberships, alice):
        group = memberships.create_group(alice, "The Smiths")

        invitation = memberships.invite_member(group, "alice", " Bob@Smith.Example ")

        assert invitation.status == "pending"
        assert invitation.invited_email == "bob@smith.example"
        assert invitation.family_group_name == "The Smiths"
        assert invitation.invited_by_name == "Alice Smith"
        assert [i.id for i in memberships.list_pending_invitations("BOB@smith.example")] == [
            invitation.id
        ]

    def test_duplicate_pending_invitation(self, memberships, alice):
        group = memberships.create_group(alice, "The Smiths")
        memberships.invite_member(group, "alice", "bob@smith.example")

        with pytest.raises(ConflictError):
            memberships.invite_member(group, "alice", "BOB@smith.example")

    def test_existing_member(self, memberships, family):
        with pytest.raises(ConflictError, match="already a member"):
            memberships.invite_member(family, "alice", "bob@smith.example")

    def test_requires_invite_permission(self, memberships, family):
        with pytest.raises(PermissionDeniedError) as exc:
            memberships.invite_member(family, "bob", "carol@smith.example")
        assert exc.value.permission == "invite"

    def test_outsider_cannot_invite(self, memberships, family):
        with pytest.raises(PermissionDeniedError):
            memberships.invite_member(family, "mallory", "carol@smith.example")

    def test_permission_checked_against_stored_roster(self, memberships, family):
        promoted = memberships.change_role(family, "alice", "bob", "admin")
        memberships.change_role(promoted, "alice", "bob", "member")

        # ``promoted`` still lists bob as an admin
        with pytest.raises(PermissionDeniedError):
            memberships.invite_member(promoted, "bob", "carol@smith.example")
        assert memberships.list_pending_invitations("carol@smith.example") == []

    def test_malformed_email(self, memberships, alice):
        group = memberships.create_group(alice, "The Smiths")
        with pytest.raises(ValidationError):
            memberships.invite_member(group, "alice", "not-an-email")

    def test_normalize_email(self):
        assert normalize_email("  Carol@Example.COM ") == "carol@example.com"


class TestRespondToInvitation:
    def test_accept_adds_member(self, memberships, alice, bob):
        group = memberships.create_group(alice, "The Smiths")
        invitation = memberships.invite_member(group, "alice", bob.email)

        updated = memberships.respond_to_invitation(invitation, bob, "accept")

        assert updated.member_ids == ["alice", "bob"]
        member = updated.get_member("bob")
        assert member.role == "member"
        assert member.permissions == ["view"]
        assert member.email == "bob@smith.example"

        stored = memberships.get_invitation(invitation.id)
        assert stored.status == "accepted"
        assert stored.responded_at is not None
        assert memberships.list_pending_invitations(bob.email) == []
        assert [g.id for g in memberships.list_groups_for_user("bob")] == [group.id]

    def test_decline(self, memberships, alice, bob):
        group = memberships.create_group(alice, "The Smiths")
        invitation = memberships.invite_member(group, "alice", bob.email)

        assert memberships.respond_to_invitation(invitation, bob, "decline") is None

        assert memberships.get_invitation(invitation.id).status == "declined"
        assert not memberships.get_group(group.id).is_member("bob")

    def test_accept_twice_is_rejected(self, memberships, alice, bob):
        group = memberships.create_group(alice, "The Smiths")
        invitation = memberships.invite_member(group, "alice", bob.email)
        memberships.respond_to_invitation(invitation, bob, "accept")

        with pytest.raises(ConflictError, match="already accepted"):
            memberships.respond_to_invitation(invitation, bob, "accept")
        assert memberships.get_group(group.id).member_ids == ["alice", "bob"]

    def test_declined_is_terminal(self, memberships, alice, bob):
        group = memberships.create_group(alice, "The Smiths")
        invitation = memberships.invite_member(group, "alice", bob.email)
        memberships.respond_to_invitation(invitation, bob, "decline")

        with pytest.raises(ConflictError):
            memberships.respond_to_invitation(invitation, bob, "accept")

    def test_email_must_match(self, memberships, alice, bob, carol):
        group = memberships.create_group(alice, "The Smiths")
        invitation = memberships.invite_member(group, "alice", bob.email)

        with pytest.raises(AuthorizationError):
            memberships.respond_to_invitation(invitation, carol, "accept")
        assert memberships.get_invitation(invitation.id).status == "pending"

    def test_accept_when_already_member_keeps_roster(self, memberships, family, bob):
        other = User(id="bob", display_name="Bob", email="bob.work@smith.example")
        invitation = memberships.invite_member(family, "alice", other.email)

        group = memberships.respond_to_invitation(invitation, other, "accept")

        assert group.member_ids == ["alice", "bob"]
        assert memberships.get_invitation(invitation.id).status == "accepted"

    def test_deleted_invitation(self, db, memberships, alice, bob):
        group = memberships.create_group(alice, "The Smiths")
        invitation = memberships.invite_member(group, "alice", bob.email)
        db.delete("familyInvitations", invitation.id)

        with pytest.raises(NotFoundError):
            memberships.respond_to_invitation(invitation, bob, "accept")

    def test_watch_invitations(self, memberships, alice, bob):
        snapshots = []
        unsubscribe = memberships.watch_invitations(bob.email, snapshots.append)
        group = memberships.create_group(alice, "The Smiths")
        memberships.invite_member(group, "alice", bob.email)

        assert snapshots[0] == []
        assert [i.family_group_name for i in snapshots[-1]] == ["The Smiths"]
        unsubscribe()


class TestRemoveMember:
    def test_admin_removes_member(self, memberships, family):
        group = memberships.remove_member(family, "alice", "bob")

        assert group.member_ids == ["alice"]
        assert memberships.get_group(family.id).member_ids == ["alice"]
        assert memberships.list_groups_for_user("bob") == []

    def test_requires_delete_permission(self, memberships, family):
        with pytest.raises(PermissionDeniedError):
            memberships.remove_member(family, "bob", "alice")

    def test_unknown_target(self, memberships, family):
        with pytest.raises(NotFoundError):
            memberships.remove_member(family, "alice", "zed")

    def test_last_admin_cannot_be_removed(self, memberships, family):
        with pytest.raises(InvariantViolation, match="last admin"):
            memberships.remove_member(family, "alice", "alice")
        assert memberships.get_group(family.id).member_ids == ["alice", "bob"]

    def test_member_leaves(self, memberships, family):
        group = memberships.leave_group(family, "bob")
        assert group.member_ids == ["alice"]

    def test_last_admin_cannot_leave(self, memberships, family):
        with pytest.raises(InvariantViolation):
            memberships.leave_group(family, "alice")

    def test_stale_group_is_rejected(self, memberships, family, join, carol):
        join(family, "alice", carol)

        # ``family`` was read before carol joined
        with pytest.raises(RevisionConflictError):
            memberships.remove_member(family, "alice", "bob")
        assert set(memberships.get_group(family.id).member_ids) == {"alice", "bob", "carol"}


class TestChangeRole:
    def test_promote(self, memberships, family):
        group = memberships.change_role(family, "alice", "bob", "admin")

        bob = group.get_member("bob")
        assert bob.role == "admin"
        assert set(bob.permissions) == {"view", "edit", "delete", "invite"}
        assert memberships.get_group(family.id).admin_count() == 2

    def test_demote_after_promotion(self, memberships, family):
        group = memberships.change_role(family, "alice", "bob", "admin")
        group = memberships.change_role(group, "bob", "alice", "member")

        assert group.get_member("alice").permissions == ["view"]
        assert group.admin_count() == 1

    def test_last_admin_cannot_be_demoted(self, memberships, family):
        with pytest.raises(InvariantViolation):
            memberships.change_role(family, "alice", "alice", "member")

    def test_only_admins(self, memberships, family):
        with pytest.raises(PermissionDeniedError):
            memberships.change_role(family, "bob", "bob", "admin")

    def test_same_role_is_noop(self, memberships, family):
        group = memberships.change_role(family, "alice", "bob", "member")
        assert group.revision == family.revision

    def test_unknown_member(self, memberships, family):
        with pytest.raises(NotFoundError):
            memberships.change_role(family, "alice", "zed", "admin")

"""Tests for the split engine: sharing, re-splitting and payments."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from famsplit.exceptions import (
    ConflictError,
    InvariantViolation,
    NotFoundError,
    PermissionDeniedError,
    RevisionConflictError,
    SplitMismatchError,
    ValidationError,
)
from famsplit.ledger import SHARED_SUBSCRIPTIONS
from famsplit.models import ProposedSplit
from famsplit.sharing.engine import SplitEngine


def proposed(**amounts):
    return [ProposedSplit(user_id=uid, amount_cents=cents) for uid, cents in amounts.items()]


@pytest.fixture
def shared(engine, netflix, family):
    """Netflix split evenly between Alice and Bob."""
    return engine.share_subscription(netflix, family, proposed(alice=799, bob=799), "alice")


class TestShareSubscription:
    def test_creates_unpaid_splits(self, engine, memberships, subscriptions, netflix, family):
        shared = engine.share_subscription(
            netflix, family, proposed(alice=799, bob=799), "alice"
        )

        assert shared.id
        assert shared.total_cents == 1598
        assert shared.owner_id == "alice"
        assert shared.family_group_id == family.id
        assert [(s.user_id, s.user_name, s.amount_cents) for s in shared.splits] == [
            ("alice", "Alice Smith", 799),
            ("bob", "Bob Smith", 799),
        ]
        assert all(not s.paid and s.last_paid is None for s in shared.splits)

        assert subscriptions.get_subscription(netflix.id).is_shared
        ref = memberships.get_group(family.id).get_shared_ref(netflix.id)
        assert ref.shared_subscription_id == shared.id
        assert engine.find_shared(netflix.id).id == shared.id

    def test_mismatch_leaves_store_untouched(
        self, db, engine, memberships, subscriptions, netflix, family
    ):
        with pytest.raises(SplitMismatchError) as exc:
            engine.share_subscription(netflix, family, proposed(alice=799, bob=700), "alice")

        assert exc.value.delta_cents == 99
        assert db.query(SHARED_SUBSCRIPTIONS, []) == []
        assert not subscriptions.get_subscription(netflix.id).is_shared
        assert memberships.get_group(family.id).shared_subscriptions == []

    def test_one_cent_short_is_rejected(self, engine, netflix, family):
        with pytest.raises(SplitMismatchError):
            engine.share_subscription(netflix, family, proposed(alice=799, bob=798), "alice")

    def test_non_member_split(self, engine, netflix, family):
        with pytest.raises(InvariantViolation, match="carol"):
            engine.share_subscription(
                netflix, family, proposed(alice=799, carol=799), "alice"
            )

    def test_duplicate_member(self, engine, netflix, family):
        splits = [
            ProposedSplit(user_id="alice", amount_cents=799),
            ProposedSplit(user_id="alice", amount_cents=799),
        ]
        with pytest.raises(ValidationError, match="more than once"):
            engine.share_subscription(netflix, family, splits, "alice")

    def test_negative_amount(self, engine, netflix, family):
        with pytest.raises(ValidationError):
            engine.share_subscription(
                netflix, family, proposed(alice=1698, bob=-100), "alice"
            )

    def test_no_splits(self, engine, netflix, family):
        with pytest.raises(ValidationError):
            engine.share_subscription(netflix, family, [], "alice")

    def test_zero_share_is_allowed(self, engine, netflix, family):
        shared = engine.share_subscription(netflix, family, proposed(alice=1598, bob=0), "alice")
        assert shared.get_split("bob").amount_cents == 0

    def test_member_without_edit_cannot_share(self, engine, netflix, family):
        with pytest.raises(PermissionDeniedError):
            engine.share_subscription(netflix, family, proposed(alice=799, bob=799), "bob")

    def test_owner_without_edit_can_share(self, engine, subscriptions, family):
        spotify = subscriptions.add_subscription(
            owner="bob", name="Spotify", amount_cents=1099, next_renewal=date(2030, 1, 1)
        )
        shared = engine.share_subscription(
            spotify, family, proposed(alice=550, bob=549), "bob"
        )
        assert shared.owner_id == "bob"

    def test_sharing_again_replaces_splits(self, engine, db, netflix, family, shared):
        again = engine.share_subscription(
            netflix, family, proposed(alice=1000, bob=598), "alice"
        )

        assert again.id == shared.id
        assert again.get_split("alice").amount_cents == 1000
        assert len(db.query(SHARED_SUBSCRIPTIONS, [])) == 1

    def test_other_group_conflicts(self, engine, memberships, alice, netflix, shared):
        other = memberships.create_group(alice, "Work")
        with pytest.raises(ConflictError):
            engine.share_subscription(netflix, other, proposed(alice=1598), "alice")


class TestUpdateSplits:
    def test_changed_amount_resets_payment(self, engine, shared):
        paid = engine.mark_as_paid(shared, "bob", "bob")

        updated = engine.update_splits(paid, proposed(alice=999, bob=599), "alice")

        assert updated.get_split("bob").amount_cents == 599
        assert not updated.get_split("bob").paid
        assert updated.get_split("bob").last_paid is None

    def test_unchanged_amount_keeps_payment(self, engine, shared):
        paid = engine.mark_as_paid(shared, "bob", "bob")

        updated = engine.update_splits(paid, proposed(alice=799, bob=799), "alice")

        bob = updated.get_split("bob")
        assert bob.paid
        assert bob.last_paid == paid.get_split("bob").last_paid

    def test_dropped_member(self, engine, shared):
        updated = engine.update_splits(shared, proposed(alice=1598), "alice")
        assert [s.user_id for s in updated.splits] == ["alice"]

    def test_must_match_total(self, engine, shared):
        with pytest.raises(SplitMismatchError):
            engine.update_splits(shared, proposed(alice=1598, bob=1), "alice")
        assert engine.get_shared(shared.id).get_split("alice").amount_cents == 799

    def test_stale_plan_is_rejected(self, engine, shared):
        engine.mark_as_paid(shared, "bob", "bob")

        with pytest.raises(RevisionConflictError):
            engine.update_splits(shared, proposed(alice=1000, bob=598), "alice")
        assert engine.get_shared(shared.id).get_split("bob").paid

    def test_member_without_edit(self, engine, shared):
        with pytest.raises(PermissionDeniedError):
            engine.update_splits(shared, proposed(alice=1000, bob=598), "bob")

    def test_promoted_member_can_edit(self, engine, memberships, family, shared):
        memberships.change_role(memberships.get_group(family.id), "alice", "bob", "admin")
        updated = engine.update_splits(shared, proposed(alice=1000, bob=598), "bob")
        assert updated.get_split("bob").amount_cents == 598


class TestPayments:
    def test_mark_own_split_paid(self, engine, shared):
        updated = engine.mark_as_paid(shared, "bob", "bob")

        bob = updated.get_split("bob")
        assert bob.paid
        assert bob.last_paid is not None
        assert not updated.get_split("alice").paid
        assert engine.get_shared(shared.id).get_split("bob").paid

    def test_mark_again_is_noop(self, engine, shared):
        first = engine.mark_as_paid(shared, "bob", "bob")
        second = engine.mark_as_paid(first, "bob", "bob")

        assert second.get_split("bob").last_paid == first.get_split("bob").last_paid
        assert engine.get_shared(shared.id).revision == first.revision

    def test_cannot_mark_someone_else(self, engine, shared):
        with pytest.raises(PermissionDeniedError):
            engine.mark_as_paid(shared, "bob", "alice")
        assert not engine.get_shared(shared.id).get_split("bob").paid

    def test_no_split(self, engine, shared):
        with pytest.raises(NotFoundError):
            engine.mark_as_paid(shared, "carol", "carol")

    def test_reconcile_stamps_new_payment(self, engine, shared):
        first = engine.mark_as_paid(shared, "bob", "bob")
        again = engine.reconcile_payment(first, "bob", "bob")

        assert again.get_split("bob").paid
        assert again.get_split("bob").last_paid >= first.get_split("bob").last_paid
        assert again.revision == first.revision + 1

    def test_status(self, engine, subscriptions, netflix, shared):
        subscription = subscriptions.get_subscription(netflix.id)

        assert engine.status(shared, subscription, today=date(2029, 12, 1)) == "pending"
        assert engine.status(shared, subscription, today=date(2030, 1, 2)) == "overdue"

        shared = engine.mark_as_paid(shared, "alice", "alice")
        shared = engine.mark_as_paid(shared, "bob", "bob")
        assert engine.status(shared, subscription, today=date(2030, 1, 2)) == "paid"

    def test_list_shared_for_user(self, engine, shared):
        assert [s.id for s in engine.list_shared_for_user("bob")] == [shared.id]
        assert engine.list_shared_for_user("carol") == []


class TestConsistency:
    def test_removed_member_is_orphaned(self, engine, memberships, family, shared):
        group = memberships.remove_member(memberships.get_group(family.id), "alice", "bob")

        orphans = engine.orphaned_splits(shared, group)
        assert [s.user_id for s in orphans] == ["bob"]
        # Splits stay until someone re-splits
        assert engine.get_shared(shared.id).get_split("bob") is not None

        flagged = engine.flag_orphaned(group)
        assert [s.id for s in flagged] == [shared.id]
        stored = engine.get_shared(shared.id)
        assert stored.needs_resplit
        assert "Bob Smith" in stored.resplit_reason
        assert "Bob Smith is no longer a member" in engine.resplit_reasons(stored, group)

        # Already flagged
        assert engine.flag_orphaned(group) == []

    def test_resplit_clears_flag(self, engine, memberships, family, shared):
        group = memberships.remove_member(memberships.get_group(family.id), "alice", "bob")
        engine.flag_orphaned(group)

        updated = engine.update_splits(
            engine.get_shared(shared.id), proposed(alice=1598), "alice"
        )

        assert not updated.needs_resplit
        assert updated.resplit_reason is None
        assert engine.resplit_reasons(updated, group) == []

    def test_price_change_flags_resplit(self, engine, subscriptions, family, netflix, shared):
        engine.mark_as_paid(shared, "bob", "bob")
        current = subscriptions.get_subscription(netflix.id)

        subscriptions.update_amount(current, "alice", 1798)

        stored = engine.get_shared(shared.id)
        assert stored.needs_resplit
        assert stored.total_cents == 1598
        assert "price changed from $15.98 to $17.98" in stored.resplit_reason

        current = subscriptions.get_subscription(netflix.id)
        updated = engine.update_splits(
            stored, proposed(alice=899, bob=899), "alice", subscription=current
        )
        assert updated.total_cents == 1798
        assert not updated.needs_resplit
        assert not any(s.paid for s in updated.splits)

    def test_old_total_rejected_after_price_change(self, engine, subscriptions, netflix, shared):
        current = subscriptions.get_subscription(netflix.id)
        current = subscriptions.update_amount(current, "alice", 1798)

        with pytest.raises(SplitMismatchError):
            engine.update_splits(
                engine.get_shared(shared.id),
                proposed(alice=799, bob=799),
                "alice",
                subscription=current,
            )


class TestUnshare:
    def test_unshare(self, engine, memberships, subscriptions, family, netflix, shared):
        engine.unshare_subscription(shared, "alice")

        assert engine.find_shared(netflix.id) is None
        assert not subscriptions.get_subscription(netflix.id).is_shared
        assert memberships.get_group(family.id).shared_subscriptions == []

    def test_only_owner_or_editor(self, engine, shared):
        with pytest.raises(PermissionDeniedError):
            engine.unshare_subscription(shared, "bob")


class TestNotifications:
    def test_events_are_delivered(self, db, netflix, family):
        hook = MagicMock()
        engine = SplitEngine(db, notifier=hook)

        shared = engine.share_subscription(netflix, family, proposed(alice=799, bob=799), "alice")
        engine.mark_as_paid(shared, "bob", "bob")

        events = [c.args for c in hook.on_split_state_changed.call_args_list]
        assert events == [(netflix.id, "created"), (netflix.id, "paid")]

    def test_hook_failure_does_not_roll_back(self, db, netflix, family):
        hook = MagicMock()
        hook.on_split_state_changed.side_effect = RuntimeError("push service down")
        engine = SplitEngine(db, notifier=hook)

        shared = engine.share_subscription(netflix, family, proposed(alice=799, bob=799), "alice")
        paid = engine.mark_as_paid(shared, "bob", "bob")

        assert engine.get_shared(shared.id).get_split("bob").paid
        assert paid.get_split("bob").paid

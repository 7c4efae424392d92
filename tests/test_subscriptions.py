"""Tests for SubscriptionService."""

from datetime import date

import pytest

from famsplit.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from famsplit.ledger import SHARED_SUBSCRIPTIONS
from famsplit.models import ProposedSplit


class TestAddSubscription:
    def test_add(self, subscriptions):
        sub = subscriptions.add_subscription(
            owner="alice",
            name=" Netflix ",
            amount_cents=1598,
            next_renewal=date(2030, 1, 1),
            category="Streaming",
            description="Family plan",
        )

        assert sub.id
        assert sub.name == "Netflix"
        assert sub.category == "streaming"
        assert not sub.is_shared
        assert subscriptions.get_subscription(sub.id) == sub

    @pytest.mark.parametrize("amount", [0, -100])
    def test_amount_must_be_positive(self, subscriptions, amount):
        with pytest.raises(ValidationError):
            subscriptions.add_subscription(
                owner="alice", name="Netflix", amount_cents=amount, next_renewal=date(2030, 1, 1)
            )

    def test_blank_name(self, subscriptions):
        with pytest.raises(ValidationError):
            subscriptions.add_subscription(
                owner="alice", name=" ", amount_cents=100, next_renewal=date(2030, 1, 1)
            )

    def test_list_sorted_by_renewal(self, subscriptions):
        subscriptions.add_subscription(
            owner="alice", name="Later", amount_cents=100, next_renewal=date(2030, 6, 1)
        )
        subscriptions.add_subscription(
            owner="alice", name="Sooner", amount_cents=100, next_renewal=date(2030, 2, 1)
        )
        subscriptions.add_subscription(
            owner="bob", name="Bob's", amount_cents=100, next_renewal=date(2030, 1, 1)
        )

        assert [s.name for s in subscriptions.list_subscriptions("alice")] == ["Sooner", "Later"]

    def test_missing(self, subscriptions):
        with pytest.raises(NotFoundError):
            subscriptions.get_subscription("nope")


class TestUpdateAmount:
    def test_owner_changes_price(self, subscriptions, netflix):
        updated = subscriptions.update_amount(netflix, "alice", 1798)

        assert updated.amount_cents == 1798
        assert subscriptions.get_subscription(netflix.id).amount_cents == 1798

    def test_only_owner(self, subscriptions, netflix):
        with pytest.raises(PermissionDeniedError):
            subscriptions.update_amount(netflix, "bob", 1798)

    def test_same_price_is_noop(self, subscriptions, netflix):
        assert subscriptions.update_amount(netflix, "alice", 1598).revision == netflix.revision


class TestDeleteSubscription:
    def test_delete_unshares(self, db, engine, memberships, subscriptions, family, netflix):
        engine.share_subscription(
            netflix,
            family,
            [
                ProposedSplit(user_id="alice", amount_cents=799),
                ProposedSplit(user_id="bob", amount_cents=799),
            ],
            "alice",
        )

        subscriptions.delete_subscription(subscriptions.get_subscription(netflix.id), "alice")

        assert db.query(SHARED_SUBSCRIPTIONS, []) == []
        assert memberships.get_group(family.id).shared_subscriptions == []
        with pytest.raises(NotFoundError):
            subscriptions.get_subscription(netflix.id)

    def test_only_owner(self, subscriptions, netflix):
        with pytest.raises(PermissionDeniedError):
            subscriptions.delete_subscription(netflix, "bob")

"""Shared fixtures: a temporary SQLite ledger and the Smith family."""

from datetime import date

import pytest

from famsplit.db import Database
from famsplit.family.membership import MembershipManager
from famsplit.models import User
from famsplit.sharing.engine import SplitEngine
from famsplit.subscriptions import SubscriptionService


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def memberships(db):
    return MembershipManager(db)


@pytest.fixture
def engine(db):
    return SplitEngine(db)


@pytest.fixture
def subscriptions(db, engine):
    return SubscriptionService(db, engine)


@pytest.fixture
def alice():
    return User(id="alice", display_name="Alice Smith", email="alice@smith.example")


@pytest.fixture
def bob():
    return User(id="bob", display_name="Bob Smith", email="Bob@Smith.example")


@pytest.fixture
def carol():
    return User(id="carol", display_name="Carol Smith", email="carol@smith.example")


@pytest.fixture
def join(memberships):
    """Invite a user and accept on their behalf; returns the updated group."""

    def _join(group, inviter, user):
        invitation = memberships.invite_member(group, inviter, user.email)
        return memberships.respond_to_invitation(invitation, user, "accept")

    return _join


@pytest.fixture
def family(memberships, join, alice, bob):
    """The Smiths: Alice (admin) and Bob (member)."""
    group = memberships.create_group(alice, "The Smiths")
    return join(group, alice.id, bob)


@pytest.fixture
def netflix(subscriptions, alice):
    """A $15.98 subscription owned by Alice."""
    return subscriptions.add_subscription(
        owner=alice.id,
        name="Netflix",
        amount_cents=1598,
        next_renewal=date(2030, 1, 1),
        category="streaming",
    )

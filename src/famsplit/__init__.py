"""famsplit - Split family subscription costs with exact, auditable shares."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .family import MembershipManager
from .models import (
    FamilyGroup,
    Invitation,
    Member,
    ProposedSplit,
    SharedSubscription,
    Split,
    Subscription,
    User,
)
from .sharing import SplitEngine, splits_from_amounts, to_cents
from .subscriptions import SubscriptionService

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "MembershipManager",
    "FamilyGroup",
    "Invitation",
    "Member",
    "ProposedSplit",
    "SharedSubscription",
    "Split",
    "Subscription",
    "User",
    "SplitEngine",
    "splits_from_amounts",
    "to_cents",
    "SubscriptionService",
]

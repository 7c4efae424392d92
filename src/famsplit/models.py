"""Pydantic domain models for famsplit.

Money is always held as integer cents. Decimal input is converted at the
parsing boundary (see ``famsplit.sharing.reconciler``).
"""

from datetime import UTC, date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Role = Literal["admin", "member"]
Permission = Literal["view", "edit", "delete", "invite"]
InvitationStatus = Literal["pending", "accepted", "declined"]
SplitType = Literal["equal", "percentage", "fixed"]
SplitStatus = Literal["paid", "pending", "overdue"]
SplitEvent = Literal["created", "updated", "paid"]

ALL_PERMISSIONS: tuple[Permission, ...] = ("view", "edit", "delete", "invite")
ROLE_PERMISSIONS: dict[str, list[Permission]] = {
    "admin": list(ALL_PERMISSIONS),
    "member": ["view"],
}


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# ============================================================================
# Identity
# ============================================================================


class User(BaseModel):
    """An authenticated user as reported by the identity gateway."""

    id: str
    display_name: str | None = None
    email: str

    @property
    def name(self) -> str:
        """Display name, falling back to the email address."""
        return self.display_name or self.email


# ============================================================================
# Family groups
# ============================================================================


class Member(BaseModel):
    """A user's membership record inside a family group."""

    id: str
    name: str
    email: str
    role: Role = "member"
    permissions: list[Permission] = Field(default_factory=lambda: ["view"])

    @model_validator(mode="after")
    def _role_implies_permissions(self) -> "Member":
        if self.role == "admin" and set(self.permissions) != set(ALL_PERMISSIONS):
            raise ValueError("admin members must hold every permission")
        if "view" not in self.permissions:
            raise ValueError("members must hold at least the 'view' permission")
        return self

    def can(self, permission: Permission) -> bool:
        return permission in self.permissions


class SharedSubscriptionRef(BaseModel):
    """Pointer from a family group to one of its shared subscriptions."""

    subscription_id: str
    shared_subscription_id: str


class FamilyGroup(BaseModel):
    """A named set of users who split subscription costs.

    ``member_ids`` duplicates ``members[].id`` so the store can filter groups
    with an array-contains query.
    """

    id: str | None = None
    name: str
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    members: list[Member]
    member_ids: list[str]
    shared_subscriptions: list[SharedSubscriptionRef] = Field(default_factory=list)
    revision: int = 0

    @model_validator(mode="after")
    def _check_invariants(self) -> "FamilyGroup":
        problems = group_invariant_problems(self)
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def get_member(self, user_id: str) -> Member | None:
        for member in self.members:
            if member.id == user_id:
                return member
        return None

    def is_member(self, user_id: str) -> bool:
        return self.get_member(user_id) is not None

    def has_permission(self, user_id: str, permission: Permission) -> bool:
        member = self.get_member(user_id)
        return member is not None and member.can(permission)

    def is_admin(self, user_id: str) -> bool:
        member = self.get_member(user_id)
        return member is not None and member.role == "admin"

    def admin_count(self) -> int:
        return sum(1 for member in self.members if member.role == "admin")

    def get_shared_ref(self, subscription_id: str) -> SharedSubscriptionRef | None:
        for ref in self.shared_subscriptions:
            if ref.subscription_id == subscription_id:
                return ref
        return None


def group_invariant_problems(group: FamilyGroup) -> list[str]:
    """
    Collect every broken family-group invariant.

    Returns:
        Human readable descriptions, empty when the group is consistent
    """
    problems = []
    ids = [member.id for member in group.members]

    if len(ids) != len(set(ids)):
        problems.append("member IDs must be unique")
    if set(group.member_ids) != set(ids) or len(group.member_ids) != len(ids):
        problems.append("memberIds is out of sync with members")
    if not any(member.role == "admin" for member in group.members):
        problems.append("a family group needs at least one admin")

    return problems


class Invitation(BaseModel):
    """An offer for an email address to join a family group."""

    id: str | None = None
    family_group_id: str
    family_group_name: str
    invited_email: str
    invited_by: str
    invited_by_name: str
    status: InvitationStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    responded_at: datetime | None = None
    revision: int = 0

    @field_validator("invited_email")
    @classmethod
    def _lowercase_email(cls, value: str) -> str:
        return value.strip().lower()


# ============================================================================
# Subscriptions and splits
# ============================================================================


class Subscription(BaseModel):
    """A recurring payment owned by a single user (the payer of record).

    ``is_shared`` is advisory; the presence of a SharedSubscription with a
    matching ``subscription_id`` is authoritative.
    """

    id: str | None = None
    name: str
    amount_cents: int = Field(gt=0)
    category: str = "other"
    next_renewal: date
    user_id: str
    is_shared: bool = False
    description: str | None = None
    start_date: date | None = None
    revision: int = 0


class Split(BaseModel):
    """One member's portion of a shared subscription."""

    user_id: str
    user_name: str
    amount_cents: int = Field(ge=0)
    paid: bool = False
    last_paid: datetime | None = None

    @model_validator(mode="after")
    def _paid_has_timestamp(self) -> "Split":
        if self.paid and self.last_paid is None:
            raise ValueError("a paid split must carry last_paid")
        if not self.paid and self.last_paid is not None:
            raise ValueError("an unpaid split must not carry last_paid")
        return self


class ProposedSplit(BaseModel):
    """A requested split amount, before it is attached to a shared subscription."""

    user_id: str
    amount_cents: int


class SharedSubscription(BaseModel):
    """A subscription whose cost is split among family group members."""

    id: str | None = None
    subscription_id: str
    family_group_id: str
    owner_id: str
    total_cents: int = Field(gt=0)
    split_type: SplitType = "fixed"
    splits: list[Split]
    needs_resplit: bool = False
    resplit_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    revision: int = 0

    def get_split(self, user_id: str) -> Split | None:
        for split in self.splits:
            if split.user_id == user_id:
                return split
        return None

    def split_total(self) -> int:
        return sum(split.amount_cents for split in self.splits)

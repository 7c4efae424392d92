"""Shared subscription lifecycle: split validation and payment tracking.

Payment state per split:

    Unpaid --mark_as_paid--> Paid
    Paid --amount (or total) edited by update_splits--> Unpaid

Writes span several documents (shared record, group ref, the subscription's
``is_shared`` flag) and are not atomic across them. The shared record is
written first and is the authority; ``is_shared`` is advisory.
"""

import logging
from collections.abc import Iterable
from datetime import date

from ..exceptions import (
    ConflictError,
    InvariantViolation,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..ledger import (
    FAMILY_GROUPS,
    SHARED_SUBSCRIPTIONS,
    SUBSCRIPTIONS,
    Eq,
    LedgerStore,
    from_document,
    to_document,
)
from ..models import (
    FamilyGroup,
    ProposedSplit,
    SharedSubscription,
    SharedSubscriptionRef,
    Split,
    SplitStatus,
    SplitType,
    Subscription,
    utcnow,
)
from ..notifications import NotificationHook, fire_split_event
from .reconciler import format_currency, validate_split_total

logger = logging.getLogger(__name__)


class SplitEngine:
    """Creates and maintains shared subscriptions with exact cent splits."""

    def __init__(self, store: LedgerStore, notifier: NotificationHook | None = None):
        """Initialize the engine."""
        self.store = store
        self.notifier = notifier

    # ========================================================================
    # Reads
    # ========================================================================

    def get_shared(self, shared_id: str) -> SharedSubscription:
        """Fetch a shared subscription or raise NotFoundError."""
        document = self.store.get(SHARED_SUBSCRIPTIONS, shared_id)
        if document is None:
            raise NotFoundError("shared subscription", shared_id)
        return from_document(SharedSubscription, SHARED_SUBSCRIPTIONS, document)

    def find_shared(self, subscription_id: str) -> SharedSubscription | None:
        """
        Authoritative lookup of a subscription's split plan.

        ``Subscription.is_shared`` can lag behind (or survive) this record
        after an interrupted write, so callers should trust this instead.
        """
        documents = self.store.query(
            SHARED_SUBSCRIPTIONS, [Eq("subscription_id", subscription_id)]
        )
        if not documents:
            return None
        if len(documents) > 1:
            logger.warning(
                f"Subscription {subscription_id} has {len(documents)} split plans; "
                f"using the most recently updated"
            )
        plans = [
            from_document(SharedSubscription, SHARED_SUBSCRIPTIONS, doc)
            for doc in documents
        ]
        return max(plans, key=lambda plan: plan.updated_at)

    def list_shared_for_group(self, group_id: str) -> list[SharedSubscription]:
        """Every shared subscription attached to a group."""
        documents = self.store.query(
            SHARED_SUBSCRIPTIONS, [Eq("family_group_id", group_id)]
        )
        return [
            from_document(SharedSubscription, SHARED_SUBSCRIPTIONS, doc)
            for doc in documents
        ]

    def list_shared_for_user(self, user_id: str) -> list[SharedSubscription]:
        """Shared subscriptions in which the user owes a split."""
        documents = self.store.query(SHARED_SUBSCRIPTIONS, [])
        plans = [
            from_document(SharedSubscription, SHARED_SUBSCRIPTIONS, doc)
            for doc in documents
        ]
        return [plan for plan in plans if plan.get_split(user_id) is not None]

    # ========================================================================
    # Sharing
    # ========================================================================

    def share_subscription(
        self,
        subscription: Subscription,
        group: FamilyGroup,
        proposed_splits: list[ProposedSplit],
        actor: str,
        split_type: SplitType = "fixed",
    ) -> SharedSubscription:
        """
        Attach a split plan to a subscription.

        Args:
            subscription: The subscription being shared
            group: The family group whose members pay the splits
            proposed_splits: Amount in cents per member
            actor: User performing the operation (owner or 'edit' holder)
            split_type: How the amounts were derived, kept for display

        Returns:
            The saved shared subscription, every split unpaid

        Raises:
            PermissionDeniedError: If the actor may not share it
            ValidationError: If splits are duplicated or negative
            InvariantViolation: If a split names a non-member
            SplitMismatchError: If the splits don't add up to the price
            ConflictError: If another group already shares the subscription
        """
        current = self._load_subscription(subscription.id)
        group = self._load_group(group.id)
        self._require_manage(actor, current.user_id, group)

        existing = self.find_shared(current.id or "")
        if existing is not None:
            if existing.family_group_id != group.id:
                raise ConflictError(
                    f"{current.name} is already shared with another family group"
                )
            logger.info(f"{current.name} is already shared; replacing its splits")
            return self.update_splits(
                existing, proposed_splits, actor, subscription=current, split_type=split_type
            )

        splits = self._build_splits(group, proposed_splits, current.amount_cents)
        assert current.id is not None and group.id is not None

        shared = SharedSubscription(
            subscription_id=current.id,
            family_group_id=group.id,
            owner_id=current.user_id,
            total_cents=current.amount_cents,
            split_type=split_type,
            splits=splits,
        )
        shared_id = self.store.create(SHARED_SUBSCRIPTIONS, to_document(shared))

        self._attach_ref(group.id, current.id, shared_id)
        self._set_is_shared(current.id, True)

        logger.info(
            f"Shared {current.name} ({format_currency(current.amount_cents)}) "
            f"across {len(splits)} member(s) of {group.name}"
        )
        fire_split_event(self.notifier, current.id, "created")
        return self.get_shared(shared_id)

    def update_splits(
        self,
        shared: SharedSubscription,
        new_splits: list[ProposedSplit],
        actor: str,
        subscription: Subscription | None = None,
        split_type: SplitType | None = None,
    ) -> SharedSubscription:
        """
        Replace the split amounts of a shared subscription.

        Members missing from ``new_splits`` are dropped along with their
        payment state. A member whose amount changes goes back to unpaid.
        Passing ``subscription`` re-reads its current price and adopts it as
        the new total (after a price change); a new total resets every split.

        Raises:
            PermissionDeniedError: If the actor may not edit the plan
            ValidationError: If splits are duplicated or negative
            InvariantViolation: If a split names a non-member
            SplitMismatchError: If the splits don't add up to the total
            RevisionConflictError: If the plan changed since it was read
        """
        group = self._load_group(shared.family_group_id)
        self._require_manage(actor, shared.owner_id, group)

        total_cents = shared.total_cents
        if subscription is not None:
            if subscription.id != shared.subscription_id:
                raise ValidationError(
                    "subscription", "does not belong to this shared subscription"
                )
            total_cents = self._load_subscription(subscription.id).amount_cents
        total_changed = total_cents != shared.total_cents

        rebuilt = self._build_splits(group, new_splits, total_cents)

        splits = []
        for split in rebuilt:
            prior = shared.get_split(split.user_id)
            if prior and prior.amount_cents == split.amount_cents and not total_changed:
                split = split.model_copy(
                    update={"paid": prior.paid, "last_paid": prior.last_paid}
                )
            elif prior and prior.paid:
                logger.info(f"Reset payment for {split.user_id}: amount changed")
            splits.append(split)

        dropped = {s.user_id for s in shared.splits} - {s.user_id for s in splits}
        if dropped:
            logger.info(f"Dropped splits for {', '.join(sorted(dropped))}")

        updated = shared.model_copy(
            update={
                "total_cents": total_cents,
                "splits": splits,
                "split_type": split_type or shared.split_type,
                "needs_resplit": False,
                "resplit_reason": None,
                "updated_at": utcnow(),
            }
        )
        self._write(shared, updated)

        fire_split_event(self.notifier, shared.subscription_id, "updated")
        return self.get_shared(shared.id or "")

    def unshare_subscription(self, shared: SharedSubscription, actor: str) -> None:
        """Delete a split plan, detach it from its group and clear ``is_shared``."""
        group = self._load_group(shared.family_group_id)
        self._require_manage(actor, shared.owner_id, group)
        assert shared.id is not None

        self.store.delete(SHARED_SUBSCRIPTIONS, shared.id)
        self._detach_ref(shared.family_group_id, shared.subscription_id)
        if self.store.get(SUBSCRIPTIONS, shared.subscription_id) is not None:
            self._set_is_shared(shared.subscription_id, False)

        logger.info(f"Unshared subscription {shared.subscription_id}")

    # ========================================================================
    # Payments
    # ========================================================================

    def mark_as_paid(
        self, shared: SharedSubscription, user_id: str, actor: str
    ) -> SharedSubscription:
        """
        Mark a member's split as paid.

        Only the member who owes the split may mark it. Marking an already
        paid split again is a no-op and keeps the original ``last_paid``; use
        ``reconcile_payment`` to record a new payment.

        Raises:
            NotFoundError: If the user has no split in this plan
            PermissionDeniedError: If the actor isn't that member
        """
        split = self._require_own_split(shared, user_id, actor)
        if split.paid:
            logger.debug(f"Split for {user_id} already paid; nothing to do")
            return shared

        updated = self._stamp_payment(shared, user_id)
        fire_split_event(self.notifier, shared.subscription_id, "paid")
        return updated

    def reconcile_payment(
        self, shared: SharedSubscription, user_id: str, actor: str
    ) -> SharedSubscription:
        """Record a payment, always stamping a fresh ``last_paid``."""
        self._require_own_split(shared, user_id, actor)
        updated = self._stamp_payment(shared, user_id)
        fire_split_event(self.notifier, shared.subscription_id, "paid")
        return updated

    # ========================================================================
    # Consistency checks
    # ========================================================================

    def orphaned_splits(
        self, shared: SharedSubscription, group: FamilyGroup
    ) -> list[Split]:
        """Splits owed by users who are no longer members of the group."""
        return [split for split in shared.splits if not group.is_member(split.user_id)]

    def resplit_reasons(
        self,
        shared: SharedSubscription,
        group: FamilyGroup,
        subscription: Subscription | None = None,
    ) -> list[str]:
        """Why a plan needs to be re-split; empty when it is consistent."""
        reasons = []
        if shared.needs_resplit:
            reasons.append(shared.resplit_reason or "flagged for re-split")
        for split in self.orphaned_splits(shared, group):
            reasons.append(f"{split.user_name} is no longer a member")
        if subscription is not None and subscription.amount_cents != shared.total_cents:
            reasons.append(
                f"price changed from {format_currency(shared.total_cents)} "
                f"to {format_currency(subscription.amount_cents)}"
            )
        if shared.split_total() != shared.total_cents:
            reasons.append("splits no longer add up to the total")
        return list(dict.fromkeys(reasons))

    def flag_orphaned(self, group: FamilyGroup) -> list[SharedSubscription]:
        """
        Flag every plan of ``group`` that still bills a removed member.

        Splits are left in place; the owner re-splits through
        ``update_splits``.

        Returns:
            The plans that were newly flagged
        """
        assert group.id is not None
        flagged = []
        for shared in self.list_shared_for_group(group.id):
            orphans = self.orphaned_splits(shared, group)
            if not orphans or shared.needs_resplit:
                continue
            names = ", ".join(split.user_name for split in orphans)
            updated = shared.model_copy(
                update={
                    "needs_resplit": True,
                    "resplit_reason": f"{names} left {group.name}",
                    "updated_at": utcnow(),
                }
            )
            flagged.append(self._write(shared, updated))
            logger.info(f"Flagged subscription {shared.subscription_id} for re-split")
        return flagged

    def status(
        self,
        shared: SharedSubscription,
        subscription: Subscription,
        today: date | None = None,
    ) -> SplitStatus:
        """
        Summarize payment state: paid, pending, or overdue once the renewal
        date has passed with splits still unpaid.
        """
        if all(split.paid for split in shared.splits):
            return "paid"
        if subscription.next_renewal < (today or date.today()):
            return "overdue"
        return "pending"

    # ========================================================================
    # Helpers
    # ========================================================================

    def _build_splits(
        self,
        group: FamilyGroup,
        proposed: Iterable[ProposedSplit],
        total_cents: int,
    ) -> list[Split]:
        """Validate proposed splits against the roster and total."""
        proposed = list(proposed)
        if not proposed:
            raise ValidationError("splits", "at least one split is required")

        user_ids = [split.user_id for split in proposed]
        duplicates = sorted({uid for uid in user_ids if user_ids.count(uid) > 1})
        if duplicates:
            raise ValidationError(
                "splits", f"members listed more than once: {', '.join(duplicates)}"
            )

        negative = [split.user_id for split in proposed if split.amount_cents < 0]
        if negative:
            raise ValidationError(
                "splits", f"negative amounts for: {', '.join(negative)}"
            )

        outsiders = [uid for uid in user_ids if not group.is_member(uid)]
        if outsiders:
            raise InvariantViolation(
                f"Not members of {group.name}: {', '.join(outsiders)}"
            )

        validate_split_total(total_cents, proposed)

        splits = []
        for split in proposed:
            member = group.get_member(split.user_id)
            assert member is not None
            splits.append(
                Split(
                    user_id=split.user_id,
                    user_name=member.name,
                    amount_cents=split.amount_cents,
                )
            )
        return splits

    def _require_manage(self, actor: str, owner_id: str, group: FamilyGroup) -> None:
        if actor != owner_id and not group.has_permission(actor, "edit"):
            raise PermissionDeniedError(
                actor,
                "edit",
                "Only the subscription owner or members with 'edit' can change splits",
            )

    def _require_own_split(
        self, shared: SharedSubscription, user_id: str, actor: str
    ) -> Split:
        split = shared.get_split(user_id)
        if split is None:
            raise NotFoundError("split", user_id)
        if actor != user_id:
            raise PermissionDeniedError(
                actor, "pay", "Members can only mark their own split as paid"
            )
        return split

    def _stamp_payment(self, shared: SharedSubscription, user_id: str) -> SharedSubscription:
        now = utcnow()
        splits = [
            split.model_copy(update={"paid": True, "last_paid": now})
            if split.user_id == user_id
            else split
            for split in shared.splits
        ]
        updated = shared.model_copy(update={"splits": splits, "updated_at": now})
        result = self._write(shared, updated)

        logger.info(f"{user_id} paid their split of {shared.subscription_id}")
        return result

    def _write(
        self, original: SharedSubscription, updated: SharedSubscription
    ) -> SharedSubscription:
        """Write the whole plan, failing if someone else changed it first."""
        assert original.id is not None
        revision = self.store.update(
            SHARED_SUBSCRIPTIONS,
            original.id,
            to_document(updated),
            expected_revision=original.revision,
        )
        return updated.model_copy(update={"revision": revision})

    def _load_subscription(self, subscription_id: str | None) -> Subscription:
        document = self.store.get(SUBSCRIPTIONS, subscription_id) if subscription_id else None
        if document is None:
            raise NotFoundError("subscription", str(subscription_id))
        return from_document(Subscription, SUBSCRIPTIONS, document)

    def _load_group(self, group_id: str | None) -> FamilyGroup:
        document = self.store.get(FAMILY_GROUPS, group_id) if group_id else None
        if document is None:
            raise NotFoundError("family group", str(group_id))
        return from_document(FamilyGroup, FAMILY_GROUPS, document)

    def _attach_ref(self, group_id: str, subscription_id: str, shared_id: str) -> None:
        group = self._load_group(group_id)
        refs = [r for r in group.shared_subscriptions if r.subscription_id != subscription_id]
        refs.append(
            SharedSubscriptionRef(
                subscription_id=subscription_id, shared_subscription_id=shared_id
            )
        )
        self._write_refs(group, refs)

    def _detach_ref(self, group_id: str, subscription_id: str) -> None:
        document = self.store.get(FAMILY_GROUPS, group_id)
        if document is None:
            return
        group = from_document(FamilyGroup, FAMILY_GROUPS, document)
        refs = [r for r in group.shared_subscriptions if r.subscription_id != subscription_id]
        if len(refs) != len(group.shared_subscriptions):
            self._write_refs(group, refs)

    def _write_refs(self, group: FamilyGroup, refs: list[SharedSubscriptionRef]) -> None:
        assert group.id is not None
        updated = group.model_copy(update={"shared_subscriptions": refs})
        self.store.update(
            FAMILY_GROUPS,
            group.id,
            to_document(updated),
            expected_revision=group.revision,
        )

    def _set_is_shared(self, subscription_id: str, is_shared: bool) -> None:
        current = self._load_subscription(subscription_id)
        if current.is_shared == is_shared:
            return
        updated = current.model_copy(update={"is_shared": is_shared})
        self.store.update(
            SUBSCRIPTIONS,
            subscription_id,
            to_document(updated),
            expected_revision=current.revision,
        )

"""Subscription records owned by a single user."""

import logging
from datetime import date

from .exceptions import NotFoundError, PermissionDeniedError, ValidationError
from .ledger import (
    SHARED_SUBSCRIPTIONS,
    SUBSCRIPTIONS,
    Eq,
    LedgerStore,
    from_document,
    to_document,
)
from .models import SharedSubscription, Subscription, utcnow
from .sharing.engine import SplitEngine
from .sharing.reconciler import format_currency

logger = logging.getLogger(__name__)


class SubscriptionService:
    """CRUD for subscriptions; price edits flag any split plan for re-split."""

    def __init__(self, store: LedgerStore, engine: SplitEngine | None = None):
        """Initialize the service."""
        self.store = store
        self.engine = engine or SplitEngine(store)

    def add_subscription(
        self,
        owner: str,
        name: str,
        amount_cents: int,
        next_renewal: date,
        category: str = "other",
        description: str | None = None,
        start_date: date | None = None,
    ) -> Subscription:
        """
        Record a new subscription paid by ``owner``.

        Raises:
            ValidationError: If the name is blank or the amount isn't positive
        """
        name = name.strip()
        if not name:
            raise ValidationError("name", "subscription name must not be empty")
        if amount_cents <= 0:
            raise ValidationError("amount", "amount must be greater than zero")

        subscription = Subscription(
            name=name,
            amount_cents=amount_cents,
            category=category.strip().lower() or "other",
            next_renewal=next_renewal,
            user_id=owner,
            description=description,
            start_date=start_date,
        )
        subscription_id = self.store.create(SUBSCRIPTIONS, to_document(subscription))

        logger.info(
            f"Added subscription {name} ({format_currency(amount_cents)}) for {owner}"
        )
        return self.get_subscription(subscription_id)

    def get_subscription(self, subscription_id: str) -> Subscription:
        """Fetch a subscription or raise NotFoundError."""
        document = self.store.get(SUBSCRIPTIONS, subscription_id)
        if document is None:
            raise NotFoundError("subscription", subscription_id)
        return from_document(Subscription, SUBSCRIPTIONS, document)

    def list_subscriptions(self, user_id: str) -> list[Subscription]:
        """Subscriptions owned by ``user_id``, soonest renewal first."""
        documents = self.store.query(SUBSCRIPTIONS, [Eq("user_id", user_id)])
        subscriptions = [
            from_document(Subscription, SUBSCRIPTIONS, doc) for doc in documents
        ]
        return sorted(subscriptions, key=lambda s: s.next_renewal)

    def update_amount(
        self, subscription: Subscription, actor: str, amount_cents: int
    ) -> Subscription:
        """
        Change a subscription's price.

        An existing split plan keeps its old total and is flagged for
        re-split; splits never silently follow the new price.

        Raises:
            PermissionDeniedError: If the actor isn't the owner
            ValidationError: If the amount isn't positive
        """
        self._require_owner(subscription, actor)
        if amount_cents <= 0:
            raise ValidationError("amount", "amount must be greater than zero")
        if amount_cents == subscription.amount_cents:
            return subscription

        assert subscription.id is not None
        updated = subscription.model_copy(update={"amount_cents": amount_cents})
        revision = self.store.update(
            SUBSCRIPTIONS,
            subscription.id,
            to_document(updated),
            expected_revision=subscription.revision,
        )

        shared = self.engine.find_shared(subscription.id)
        if shared is not None:
            self._flag_price_change(shared, subscription.amount_cents, amount_cents)

        logger.info(
            f"Changed price of {subscription.name} from "
            f"{format_currency(subscription.amount_cents)} to {format_currency(amount_cents)}"
        )
        return updated.model_copy(update={"revision": revision})

    def delete_subscription(self, subscription: Subscription, actor: str) -> None:
        """Delete a subscription together with its split plan."""
        self._require_owner(subscription, actor)
        assert subscription.id is not None

        shared = self.engine.find_shared(subscription.id)
        if shared is not None:
            self.engine.unshare_subscription(shared, actor)

        self.store.delete(SUBSCRIPTIONS, subscription.id)
        logger.info(f"Deleted subscription {subscription.name}")

    def _require_owner(self, subscription: Subscription, actor: str) -> None:
        if subscription.user_id != actor:
            raise PermissionDeniedError(
                actor, "edit", "Only the owner can change a subscription"
            )

    def _flag_price_change(
        self, shared: SharedSubscription, old_cents: int, new_cents: int
    ) -> None:
        assert shared.id is not None
        updated = shared.model_copy(
            update={
                "needs_resplit": True,
                "resplit_reason": (
                    f"price changed from {format_currency(old_cents)} "
                    f"to {format_currency(new_cents)}"
                ),
                "updated_at": utcnow(),
            }
        )
        self.store.update(
            SHARED_SUBSCRIPTIONS,
            shared.id,
            to_document(updated),
            expected_revision=shared.revision,
        )
        logger.info(f"Flagged split plan {shared.id} for re-split after price change")

"""Notification hook for split state changes."""

import logging
from typing import Protocol

from .models import SplitEvent

logger = logging.getLogger(__name__)


class NotificationHook(Protocol):
    """Receives split state changes, e.g. to schedule a payment reminder."""

    def on_split_state_changed(self, subscription_id: str, event: SplitEvent) -> None: ...


class LoggingNotificationHook:
    """Hook that only records events in the log."""

    def on_split_state_changed(self, subscription_id: str, event: SplitEvent) -> None:
        logger.info(f"Split state changed for subscription {subscription_id}: {event}")


def fire_split_event(
    hook: NotificationHook | None, subscription_id: str, event: SplitEvent
) -> None:
    """
    Deliver an event to the hook, fire-and-forget.

    Delivery failures are logged and never undo the operation that
    produced the event.
    """
    if hook is None:
        return
    try:
        hook.on_split_state_changed(subscription_id, event)
    except Exception:
        logger.exception(
            f"Notification hook failed for subscription {subscription_id} ({event})"
        )

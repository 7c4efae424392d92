"""Identity gateway interface and the local, settings-backed implementation."""

import logging
from collections.abc import Callable
from typing import Protocol

from .config import Settings
from .exceptions import ConfigurationError
from .models import User

logger = logging.getLogger(__name__)

IdentityListener = Callable[[User | None], None]


class IdentityGateway(Protocol):
    """Source of the caller's identity."""

    def get_current_user(self) -> User | None: ...

    def on_change(self, listener: IdentityListener) -> Callable[[], None]: ...


class ListenerRegistry:
    """Keeps identity listeners and fans out sign-in/sign-out events."""

    def __init__(self):
        self._listeners: list[IdentityListener] = []

    def add(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def emit(self, user: User | None) -> None:
        for listener in list(self._listeners):
            listener(user)


class LocalIdentityGateway:
    """Identity gateway for a single local user (CLI and tests)."""

    def __init__(self, user: User | None = None):
        self._user = user
        self._listeners = ListenerRegistry()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalIdentityGateway":
        """Build the gateway from FAMSPLIT_USER_* settings."""
        if not settings.user_id or not settings.user_email:
            raise ConfigurationError(
                "Set FAMSPLIT_USER_ID and FAMSPLIT_USER_EMAIL (or pass --user/--email)"
            )
        return cls(
            User(
                id=settings.user_id,
                display_name=settings.user_name,
                email=settings.user_email,
            )
        )

    def get_current_user(self) -> User | None:
        return self._user

    def on_change(self, listener: IdentityListener) -> Callable[[], None]:
        return self._listeners.add(listener)

    def sign_in(self, user: User) -> None:
        """Switch to ``user`` and notify listeners."""
        self._user = user
        logger.info(f"Signed in as {user.email}")
        self._listeners.emit(user)

    def sign_out(self) -> None:
        """Clear the current user and notify listeners."""
        self._user = None
        logger.info("Signed out")
        self._listeners.emit(None)


def require_user(gateway: IdentityGateway) -> User:
    """Return the current user or fail when nobody is signed in."""
    user = gateway.get_current_user()
    if user is None:
        raise ConfigurationError("No user is signed in")
    return user

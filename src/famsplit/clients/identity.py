"""Firebase Authentication REST client used as a hosted identity gateway."""

import logging
from collections.abc import Callable

import httpx

from ..exceptions import IdentityAPIError
from ..identity import IdentityListener, ListenerRegistry
from ..models import User

logger = logging.getLogger(__name__)


class FirebaseAuthClient:
    """Client for the Identity Toolkit v1 API."""

    BASE_URL = "https://identitytoolkit.googleapis.com/v1"

    def __init__(
        self,
        api_key: str,
        id_token: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client, optionally with an existing ID token."""
        self.api_key = api_key
        self.id_token = id_token
        self._listeners = ListenerRegistry()
        self._cached_user: User | None = None
        self.client = httpx.Client(
            base_url=self.BASE_URL,
            params={"key": api_key},
            headers={"Content-Type": "application/json"},
            timeout=30.0,
            transport=transport,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def _post(self, path: str, payload: dict) -> dict:
        try:
            response = self.client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                message = e.response.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                message = e.response.text or str(e)
            raise IdentityAPIError(f"Identity request {path} failed: {message}") from e
        except httpx.HTTPError as e:
            raise IdentityAPIError(f"Identity request {path} failed: {e}") from e
        data: dict = response.json()
        return data

    def sign_in_with_password(self, email: str, password: str) -> User:
        """
        Sign in with email and password.

        Returns:
            The signed-in user
        """
        data = self._post(
            "/accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        self.id_token = data["idToken"]
        self._cached_user = User(
            id=data["localId"],
            display_name=data.get("displayName") or None,
            email=data["email"],
        )
        logger.info(f"Signed in as {self._cached_user.email}")
        self._listeners.emit(self._cached_user)
        return self._cached_user

    def sign_out(self) -> None:
        """Forget the ID token and notify listeners."""
        self.id_token = None
        self._cached_user = None
        self._listeners.emit(None)

    def get_current_user(self) -> User | None:
        """Look up the user behind the current ID token."""
        if not self.id_token:
            return None
        if self._cached_user is not None:
            return self._cached_user

        data = self._post("/accounts:lookup", {"idToken": self.id_token})
        users = data.get("users", [])
        if not users:
            return None

        record = users[0]
        self._cached_user = User(
            id=record["localId"],
            display_name=record.get("displayName") or None,
            email=record["email"],
        )
        return self._cached_user

    def on_change(self, listener: IdentityListener) -> Callable[[], None]:
        return self._listeners.add(listener)

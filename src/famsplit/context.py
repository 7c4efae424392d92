"""Wiring of settings, store, identity and services for the CLI and MCP server."""

from dataclasses import dataclass

from .clients.identity import FirebaseAuthClient
from .config import Settings, load_settings
from .db import Database
from .exceptions import ConfigurationError
from .family.membership import MembershipManager
from .identity import IdentityGateway, LocalIdentityGateway, require_user
from .models import FamilyGroup, User
from .notifications import LoggingNotificationHook
from .sharing.engine import SplitEngine
from .subscriptions import SubscriptionService


@dataclass
class AppContext:
    """Everything a transport needs to run family operations."""

    settings: Settings
    db: Database
    identity: IdentityGateway
    memberships: MembershipManager
    engine: SplitEngine
    subscriptions: SubscriptionService

    @property
    def user(self) -> User:
        """The signed-in user."""
        return require_user(self.identity)

    def resolve_group(self, group_id: str | None = None) -> FamilyGroup:
        """Load ``group_id``, or the user's first group when omitted."""
        if group_id:
            return self.memberships.get_group(group_id)
        groups = self.memberships.list_groups_for_user(self.user.id)
        if not groups:
            raise ConfigurationError(
                "You don't belong to a family group yet; create one first"
            )
        return groups[0]

    def close(self):
        """Close the database and any identity HTTP client."""
        if isinstance(self.identity, FirebaseAuthClient):
            self.identity.close()
        self.db.close()


def build_context(
    settings: Settings | None = None, identity: IdentityGateway | None = None
) -> AppContext:
    """Create the services on top of the configured SQLite store."""
    settings = settings or load_settings()
    if identity is None:
        if settings.firebase_api_key and settings.firebase_id_token:
            identity = FirebaseAuthClient(
                settings.firebase_api_key, settings.firebase_id_token
            )
        else:
            identity = LocalIdentityGateway.from_settings(settings)

    db = Database(settings.database_path)
    engine = SplitEngine(db, notifier=LoggingNotificationHook())
    return AppContext(
        settings=settings,
        db=db,
        identity=identity,
        memberships=MembershipManager(db),
        engine=engine,
        subscriptions=SubscriptionService(db, engine),
    )

"""Custom exceptions for famsplit."""


class FamsplitError(Exception):
    """Base exception for all famsplit errors."""

    pass


class ConfigurationError(FamsplitError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(FamsplitError):
    """Raised when caller input is malformed (empty name, negative amount...)."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class PermissionDeniedError(FamsplitError):
    """Raised when an actor lacks the permission an operation requires."""

    def __init__(self, user_id: str, permission: str, message: str | None = None):
        self.user_id = user_id
        self.permission = permission
        super().__init__(
            message or f"User {user_id} lacks the '{permission}' permission"
        )


class AuthorizationError(FamsplitError):
    """Raised when the caller's identity does not match the resource."""

    pass


class ConflictError(FamsplitError):
    """Raised on duplicate invitations, terminal invitations or lost updates."""

    pass


class RevisionConflictError(ConflictError):
    """Raised when a document changed since it was read."""

    def __init__(self, collection: str, doc_id: str, expected: int, actual: int):
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{collection}/{doc_id} was modified concurrently "
            f"(expected revision {expected}, found {actual}); retry the operation"
        )


class NotFoundError(FamsplitError):
    """Raised when a referenced document or entry does not exist."""

    def __init__(self, kind: str, key: str, message: str | None = None):
        self.kind = kind
        self.key = key
        super().__init__(message or f"{kind} '{key}' not found")


class InvariantViolation(FamsplitError):
    """Raised when an operation would break a group or split invariant."""

    pass


class SplitMismatchError(FamsplitError):
    """Raised when split amounts don't add up to the subscription total."""

    def __init__(self, expected_cents: int, actual_cents: int):
        self.expected_cents = expected_cents
        self.actual_cents = actual_cents
        self.delta_cents = expected_cents - actual_cents
        super().__init__(
            f"Splits total ${actual_cents / 100:.2f} but the subscription costs "
            f"${expected_cents / 100:.2f} (off by ${abs(self.delta_cents) / 100:.2f})"
        )


class DocumentValidationError(FamsplitError):
    """Raised when a stored document doesn't match its schema."""

    def __init__(self, collection: str, doc_id: str, message: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Invalid document {collection}/{doc_id}: {message}")


class APIError(FamsplitError):
    """Base class for API-related errors."""

    pass


class IdentityAPIError(APIError):
    """Raised when the hosted identity provider request fails."""

    pass

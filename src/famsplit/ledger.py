"""Ledger store interface and document (de)serialization helpers."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DocumentValidationError

SUBSCRIPTIONS = "subscriptions"
FAMILY_GROUPS = "familyGroups"
INVITATIONS = "familyInvitations"
SHARED_SUBSCRIPTIONS = "sharedSubscriptions"

Document = dict[str, Any]
ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Eq:
    """Match documents whose ``field`` equals ``value``."""

    field: str
    value: Any

    def matches(self, document: Document) -> bool:
        return document.get(self.field) == self.value


@dataclass(frozen=True)
class ArrayContains:
    """Match documents whose array ``field`` contains ``value``."""

    field: str
    value: Any

    def matches(self, document: Document) -> bool:
        items = document.get(self.field)
        return isinstance(items, list) and self.value in items


Predicate = Eq | ArrayContains


def matches_all(document: Document, predicates: list[Predicate]) -> bool:
    """Check a document against every predicate."""
    return all(predicate.matches(document) for predicate in predicates)


class LedgerStore(Protocol):
    """Document store the family services are built on.

    Each document returned carries its ``id`` and ``revision``. Writes are
    atomic per document only; there are no cross-document transactions.
    """

    def get(self, collection: str, doc_id: str) -> Document | None: ...

    def query(self, collection: str, predicates: list[Predicate]) -> list[Document]: ...

    def create(self, collection: str, data: Document) -> str: ...

    def update(
        self,
        collection: str,
        doc_id: str,
        data: Document,
        expected_revision: int | None = None,
    ) -> int: ...

    def delete(self, collection: str, doc_id: str) -> None: ...

    def subscribe(
        self,
        collection: str,
        predicates: list[Predicate],
        on_change: Callable[[list[Document]], None],
    ) -> Callable[[], None]: ...


def to_document(model: BaseModel) -> Document:
    """Serialize a model for storage (``id`` and ``revision`` are store-managed)."""
    return model.model_dump(mode="json", exclude={"id", "revision"})


def from_document(model_cls: type[ModelT], collection: str, document: Document) -> ModelT:
    """
    Validate a stored document against its schema.

    Raises:
        DocumentValidationError: If the stored shape is not trustworthy
    """
    try:
        return model_cls.model_validate(document)
    except PydanticValidationError as e:
        raise DocumentValidationError(
            collection, str(document.get("id", "?")), str(e)
        ) from e

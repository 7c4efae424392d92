"""SQLite-backed ledger store for famsplit.

Documents are stored as JSON blobs keyed by ``(collection, id)`` together
with a revision counter used for optimistic concurrency.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from .exceptions import NotFoundError, RevisionConflictError
from .ledger import Document, Predicate, matches_all

logger = logging.getLogger(__name__)


class Database:
    """SQLite document store implementing the ledger store interface."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._subscribers: dict[
            int, tuple[str, list[Predicate], Callable[[list[Document]], None]]
        ] = {}
        self._next_token = 0
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                revision INTEGER NOT NULL DEFAULT 1,
                data TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, id)
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self._subscribers.clear()
        self.conn.close()

    # ========================================================================
    # Document operations
    # ========================================================================

    def get(self, collection: str, doc_id: str) -> Document | None:
        """Get a document by ID, or None if it doesn't exist."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT id, revision, data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        )
        row = cursor.fetchone()
        return self._row_to_document(row) if row else None

    def query(self, collection: str, predicates: list[Predicate]) -> list[Document]:
        """Get every document in a collection matching all predicates."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id, revision, data FROM documents
            WHERE collection = ?
            ORDER BY created_at, id
            """,
            (collection,),
        )
        documents = [self._row_to_document(row) for row in cursor.fetchall()]
        return [doc for doc in documents if matches_all(doc, predicates)]

    def create(self, collection: str, data: Document) -> str:
        """Create a document and return its new ID."""
        doc_id = uuid.uuid4().hex
        now = datetime.now().isoformat()
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO documents (collection, id, revision, data, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?, ?)
            """,
            (collection, doc_id, self._encode(data), now, now),
        )
        self.conn.commit()

        logger.debug(f"Created {collection}/{doc_id}")
        self._notify(collection)
        return doc_id

    def update(
        self,
        collection: str,
        doc_id: str,
        data: Document,
        expected_revision: int | None = None,
    ) -> int:
        """
        Merge ``data`` into a document's top-level fields.

        Args:
            collection: Collection name
            doc_id: Document ID
            data: Fields to write (a full document replaces every field)
            expected_revision: If given, the write only succeeds when the
                stored revision still matches

        Returns:
            The new revision

        Raises:
            NotFoundError: If the document doesn't exist
            RevisionConflictError: If another writer got there first
        """
        current = self.get(collection, doc_id)
        if current is None:
            raise NotFoundError(collection, doc_id)

        stored_revision = current.pop("revision")
        current.pop("id")
        if expected_revision is not None and expected_revision != stored_revision:
            raise RevisionConflictError(
                collection, doc_id, expected_revision, stored_revision
            )

        current.update({k: v for k, v in data.items() if k not in ("id", "revision")})
        cursor = self.conn.cursor()
        cursor.execute(
            """
            UPDATE documents
            SET data = ?, revision = revision + 1, updated_at = ?
            WHERE collection = ? AND id = ? AND revision = ?
            """,
            (
                self._encode(current),
                datetime.now().isoformat(),
                collection,
                doc_id,
                stored_revision,
            ),
        )
        self.conn.commit()

        if cursor.rowcount != 1:
            latest = self.get(collection, doc_id)
            raise RevisionConflictError(
                collection,
                doc_id,
                stored_revision,
                latest["revision"] if latest else -1,
            )

        logger.debug(f"Updated {collection}/{doc_id} to revision {stored_revision + 1}")
        self._notify(collection)
        return stored_revision + 1

    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""
        cursor = self.conn.cursor()
        cursor.execute(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        )
        self.conn.commit()

        if cursor.rowcount:
            logger.debug(f"Deleted {collection}/{doc_id}")
            self._notify(collection)

    # ========================================================================
    # Change notification
    # ========================================================================

    def subscribe(
        self,
        collection: str,
        predicates: list[Predicate],
        on_change: Callable[[list[Document]], None],
    ) -> Callable[[], None]:
        """
        Watch the documents of a collection matching ``predicates``.

        The callback receives the current snapshot immediately and again after
        every committed write to the collection.

        Returns:
            A callable that cancels the subscription
        """
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = (collection, list(predicates), on_change)
        on_change(self.query(collection, predicates))

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        """Push fresh snapshots to every subscriber of a collection."""
        for token, (watched, predicates, on_change) in list(self._subscribers.items()):
            if watched != collection:
                continue
            try:
                on_change(self.query(collection, predicates))
            except Exception:
                # A broken listener must not fail the write that triggered it
                logger.exception(f"Change listener {token} on {collection} failed")

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _encode(data: Document) -> str:
        return json.dumps(data, sort_keys=True)

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        document: Document = json.loads(row["data"])
        document["id"] = row["id"]
        document["revision"] = row["revision"]
        return document

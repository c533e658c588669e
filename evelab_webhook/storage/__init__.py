"""Document storage package: Firestore and in-memory backends."""

from __future__ import annotations

from evelab_webhook.storage.documents import (
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    DocumentStore,
    FirestoreDocumentStore,
    InMemoryDocumentStore,
)

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentNotFoundError",
    "DocumentStore",
    "FirestoreDocumentStore",
    "InMemoryDocumentStore",
]

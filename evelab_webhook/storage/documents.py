"""Document store layer for the EveLab webhook receiver.

Every write is addressed by a provider-supplied document id; the store never
generates ids.

Write semantics:
  merge   : create the document or merge fields into it (nested maps are
            merged, an empty map overwrites, unspecified fields are kept).
            Firestore set(merge=True).
  update  : partial update of an existing document. Raises
            DocumentNotFoundError when the document is absent and creates
            nothing.
  delete  : remove the document. Deleting an absent document is a no-op.
  close   : release the backend client on application shutdown.

All components use a Protocol-based interface so the handlers can be tested
without a live Firestore instance. Production use requires
google.cloud.firestore.AsyncClient credentials.
"""

from __future__ import annotations

import copy
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from google.cloud.firestore import AsyncClient

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Sentinel resolved by each backend to the time the write is applied."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentNotFoundError(LookupError):
    """Raised when an update targets a document that does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document {collection}/{doc_id} does not exist")


# ---------------------------------------------------------------------------
# Protocol interface
# ---------------------------------------------------------------------------


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for an async document store addressed by (collection, doc_id)."""

    async def merge(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Create the document or merge fields into it."""
        ...

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Update an existing document; raise DocumentNotFoundError if absent."""
        ...

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete the document if it exists."""
        ...

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the document fields, or None when absent."""
        ...

    async def close(self) -> None:
        """Release the backend connection."""
        ...


# ---------------------------------------------------------------------------
# Firestore backend
# ---------------------------------------------------------------------------


def _to_firestore(fields: dict[str, Any]) -> dict[str, Any]:
    from google.cloud import firestore

    return {
        key: firestore.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value
        for key, value in fields.items()
    }


@dataclass
class FirestoreDocumentStore:
    """DocumentStore backed by google.cloud.firestore.AsyncClient."""

    _client: AsyncClient

    @classmethod
    def from_project(cls, project_id: str | None = None) -> FirestoreDocumentStore:
        """Construct a store on a new AsyncClient using default credentials."""
        from google.cloud import firestore

        logger.info("Connecting Firestore AsyncClient (project=%s)", project_id or "<default>")
        return cls(_client=firestore.AsyncClient(project=project_id or None))

    def _ref(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    async def merge(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        await self._ref(collection, doc_id).set(_to_firestore(fields), merge=True)

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        from google.api_core.exceptions import NotFound

        try:
            await self._ref(collection, doc_id).update(_to_firestore(fields))
        except NotFound as exc:
            raise DocumentNotFoundError(collection, doc_id) from exc

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._ref(collection, doc_id).delete()

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        snapshot = await self._ref(collection, doc_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    async def close(self) -> None:
        # AsyncClient.close is synchronous in some releases, a coroutine in others
        result = self._client.close()
        if inspect.isawaitable(result):
            await result


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


def _resolve(fields: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        key: now if value is SERVER_TIMESTAMP else copy.deepcopy(value)
        for key, value in fields.items()
    }


def _deep_merge(target: dict[str, Any], fields: dict[str, Any]) -> None:
    for key, value in fields.items():
        # An empty map replaces the stored one, as Firestore merge does.
        if value and isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value


@dataclass
class InMemoryDocumentStore:
    """Process-local DocumentStore with Firestore write semantics.

    Used by the test suite and by EVELAB_DOCUMENT_STORE=memory for local runs.
    Contents are lost when the process exits.
    """

    collections: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        return self.collections.setdefault(collection, {})

    async def merge(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        docs = self._collection(collection)
        resolved = _resolve(fields, datetime.now(timezone.utc))
        if doc_id in docs:
            _deep_merge(docs[doc_id], resolved)
        else:
            docs[doc_id] = resolved

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise DocumentNotFoundError(collection, doc_id)
        docs[doc_id].update(_resolve(fields, datetime.now(timezone.utc)))

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collection(collection).pop(doc_id, None)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def close(self) -> None:
        pass

"""Tests for evelab_webhook.storage.

Covers:
  - InMemoryDocumentStore merge/update/delete/get semantics (Firestore-like)
  - FirestoreDocumentStore forwards to AsyncDocumentReference with the
    right arguments, translates SERVER_TIMESTAMP and NotFound
  - Both backends satisfy the DocumentStore protocol
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import run
from google.api_core.exceptions import NotFound
from google.cloud import firestore

from evelab_webhook.storage import (
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    DocumentStore,
    FirestoreDocumentStore,
    InMemoryDocumentStore,
)


def _make_firestore():
    """Return (store, client, doc_ref) with an async-mocked document reference."""
    ref = MagicMock()
    ref.set = AsyncMock()
    ref.update = AsyncMock()
    ref.delete = AsyncMock()
    ref.get = AsyncMock()
    client = MagicMock()
    client.collection.return_value.document.return_value = ref
    return FirestoreDocumentStore(_client=client), client, ref


class TestInMemoryDocumentStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryDocumentStore(), DocumentStore)

    def test_merge_creates(self):
        store = InMemoryDocumentStore()
        run(store.merge("users", "u1", {"name": "A"}))
        assert run(store.get("users", "u1")) == {"name": "A"}

    def test_merge_keeps_unspecified_fields(self):
        store = InMemoryDocumentStore()
        run(store.merge("users", "u1", {"name": "A", "email": "a@x.io"}))
        run(store.merge("users", "u1", {"name": "B"}))
        assert run(store.get("users", "u1")) == {"name": "B", "email": "a@x.io"}

    def test_merge_is_deep(self):
        store = InMemoryDocumentStore()
        run(store.merge("reports", "r1", {"scores": {"pore": 1, "acne": 2}}))
        run(store.merge("reports", "r1", {"scores": {"pore": 5}}))
        assert run(store.get("reports", "r1"))["scores"] == {"pore": 5, "acne": 2}

    def test_merge_empty_map_overwrites(self):
        store = InMemoryDocumentStore()
        run(store.merge("users", "u1", {"target": {"pore": 1}}))
        run(store.merge("users", "u1", {"target": {}}))
        assert run(store.get("users", "u1"))["target"] == {}

    def test_close_is_noop(self):
        store = InMemoryDocumentStore()
        run(store.merge("users", "u1", {"name": "A"}))
        run(store.close())
        assert run(store.get("users", "u1")) == {"name": "A"}

    def test_server_timestamp_resolved(self):
        store = InMemoryDocumentStore()
        run(store.merge("users", "u1", {"updated_at": SERVER_TIMESTAMP}))
        assert isinstance(run(store.get("users", "u1"))["updated_at"], datetime)

    def test_update_missing_raises_and_creates_nothing(self):
        store = InMemoryDocumentStore()
        with pytest.raises(DocumentNotFoundError) as exc:
            run(store.update("reports", "r1", {"images": {}}))
        assert exc.value.collection == "reports"
        assert exc.value.doc_id == "r1"
        assert run(store.get("reports", "r1")) is None

    def test_update_existing(self):
        store = InMemoryDocumentStore()
        run(store.merge("reports", "r1", {"report_id": "r1"}))
        run(store.update("reports", "r1", {"images": {"rgb": "u"}}))
        assert run(store.get("reports", "r1")) == {"report_id": "r1", "images": {"rgb": "u"}}

    def test_delete_absent_is_noop(self):
        store = InMemoryDocumentStore()
        run(store.delete("users", "nobody"))
        assert run(store.get("users", "nobody")) is None

    def test_get_returns_copy(self):
        store = InMemoryDocumentStore()
        run(store.merge("users", "u1", {"target": {"pore": 1}}))
        run(store.get("users", "u1"))["target"]["pore"] = 99
        assert run(store.get("users", "u1"))["target"] == {"pore": 1}


class TestFirestoreDocumentStore:
    def test_satisfies_protocol(self):
        store, _, _ = _make_firestore()
        assert isinstance(store, DocumentStore)

    def test_merge_uses_set_merge(self):
        store, client, ref = _make_firestore()
        run(store.merge("evelab_users", "u1", {"name": "A", "updated_at": SERVER_TIMESTAMP}))
        client.collection.assert_called_with("evelab_users")
        client.collection.return_value.document.assert_called_with("u1")
        ref.set.assert_awaited_once_with(
            {"name": "A", "updated_at": firestore.SERVER_TIMESTAMP}, merge=True
        )

    def test_update_forwards(self):
        store, _, ref = _make_firestore()
        run(store.update("evelab_reports", "r1", {"images": {"rgb": "u"}}))
        ref.update.assert_awaited_once_with({"images": {"rgb": "u"}})

    def test_update_not_found_translated(self):
        store, _, ref = _make_firestore()
        ref.update.side_effect = NotFound("No document to update")
        with pytest.raises(DocumentNotFoundError):
            run(store.update("evelab_reports", "r1", {"images": {}}))

    def test_delete_forwards(self):
        store, _, ref = _make_firestore()
        run(store.delete("evelab_users", "u1"))
        ref.delete.assert_awaited_once_with()

    def test_get_missing_returns_none(self):
        store, _, ref = _make_firestore()
        ref.get.return_value = MagicMock(exists=False)
        assert run(store.get("evelab_users", "u1")) is None

    def test_get_existing_returns_dict(self):
        store, _, ref = _make_firestore()
        snapshot = MagicMock(exists=True)
        snapshot.to_dict.return_value = {"name": "A"}
        ref.get.return_value = snapshot
        assert run(store.get("evelab_users", "u1")) == {"name": "A"}

    def test_close_sync_client(self):
        store, client, _ = _make_firestore()
        run(store.close())
        client.close.assert_called_once_with()

    def test_close_async_client(self):
        store, client, _ = _make_firestore()
        client.close = AsyncMock()
        run(store.close())
        client.close.assert_awaited_once_with()

"""Shared fixtures for the EveLab webhook receiver test suite."""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from typing import Any

import pytest
from fastapi.testclient import TestClient

from evelab_webhook.config import ErrorPolicy, Settings
from evelab_webhook.serve import create_app
from evelab_webhook.storage import InMemoryDocumentStore

TEST_SECRET = "evelab-test-secret"


def run(coro: Any) -> Any:
    return asyncio.run(coro)


def sign(sign_string: str, secret: str = TEST_SECRET) -> str:
    """Compute the EveLab signature for a canonical string."""
    return hashlib.md5((sign_string + secret).encode()).hexdigest()


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, app_secret=TEST_SECRET)


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def app(settings, store):
    return create_app(settings, store)


@pytest.fixture()
def client(app):
    """TestClient with server exceptions turned into 500s (sender perspective)."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def propagate_client(settings, store):
    """TestClient for an app running ErrorPolicy.PROPAGATE."""
    strict = settings.model_copy(update={"error_policy": ErrorPolicy.PROPAGATE})
    with TestClient(create_app(strict, store), raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def make_body():
    """Factory for signed EveLab envelopes, serialized to JSON bytes.

    The report_id form is used whenever data carries a report_id (except for
    the "test" kind), like EveLab does.
    """

    def _make(
        data_type: str,
        data: dict[str, Any],
        action_type: str = "create",
        sig_time: int | None = None,
        secret: str = TEST_SECRET,
        sig: str | None = None,
    ) -> bytes:
        ts = int(time.time()) if sig_time is None else sig_time
        if sig is None:
            if data.get("report_id") and data_type != "test":
                sig = sign(f"report_id={data['report_id']}&sig_time={ts}", secret)
            else:
                sig = sign(f"id={data.get('id')}&sig_time={ts}", secret)
        return json.dumps(
            {
                "data_type": data_type,
                "action_type": action_type,
                "source_type": "device",
                "sig": sig,
                "sig_time": ts,
                "data": data,
            }
        ).encode()

    return _make

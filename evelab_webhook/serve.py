"""EveLab webhook receiver application factory and console entry point.

Run with ``evelab-webhook`` or
``uvicorn evelab_webhook.serve:create_app --factory``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from evelab_webhook import __version__
from evelab_webhook.config import Settings
from evelab_webhook.health import router as health_router
from evelab_webhook.storage import DocumentStore, FirestoreDocumentStore, InMemoryDocumentStore
from evelab_webhook.webhooks.handlers import register_webhook_routes

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_store(settings: Settings) -> DocumentStore:
    """Create the document store selected by EVELAB_DOCUMENT_STORE."""
    if settings.document_store == "memory":
        logger.warning("Using in-memory document store; data is not persisted")
        return InMemoryDocumentStore()
    return FirestoreDocumentStore.from_project(settings.project_id)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    logger.info("Closing document store")
    await app.state.store.close()


def create_app(settings: Settings | None = None, store: DocumentStore | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        settings: Configuration; read from the environment when omitted
        store: Document store; built from settings when omitted

    Raises:
        RuntimeError: production environment still using the placeholder secret
    """
    settings = settings or Settings()
    if settings.uses_placeholder_secret:
        if settings.environment == "production":
            raise RuntimeError("EVELAB_APP_SECRET must be set in production")
        logger.warning("EVELAB_APP_SECRET not set, using placeholder secret (testing only)")

    app = FastAPI(title="EveLab Webhook Receiver", version=__version__, lifespan=_lifespan)
    app.state.settings = settings
    app.state.store = store if store is not None else build_store(settings)

    register_webhook_routes(app)
    app.include_router(health_router)
    return app


def main() -> None:
    import uvicorn

    settings = Settings()
    logging.basicConfig(level=settings.log_level.upper(), format=_LOG_FORMAT)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()

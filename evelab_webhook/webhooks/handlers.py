"""EveLab webhook HTTP handler: FastAPI route for inbound callbacks.

Request flow:
1. OPTIONS -> 204 CORS preflight; any other non-POST method -> 405
2. Parse the JSON envelope (data_type, action_type, source_type, sig, sig_time, data)
3. data_type "test" -> verify with data.id only, no freshness check
4. Freshness check on sig_time (403 "Signature expired")
5. Signature check, report_id form when present (403 "Invalid signature")
6. Map and persist by data_type; unknown kinds are ignored
7. 200 "success"

Security contract:
- No payload is processed before the signature is verified
- An envelope that cannot be parsed is answered like a bad signature
- Internal faults never surface as retry-triggering responses under
  ErrorPolicy.MASK; they are logged with traceback for alerting
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ValidationError

from evelab_webhook.config import PLACEHOLDER_SECRET, ErrorPolicy
from evelab_webhook.webhooks.mapping import apply_payload
from evelab_webhook.webhooks.verification import is_fresh, verify_signature

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhooks/evelab"
TEST_DATA_TYPE = "test"

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

_CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
_PREFLIGHT_HEADERS = {
    **_CORS_HEADERS,
    "Access-Control-Allow-Methods": "POST",
    "Access-Control-Allow-Headers": "Content-Type",
}


class WebhookEnvelope(BaseModel):
    """EveLab callback body."""

    data_type: str | None = None
    action_type: str | None = None
    source_type: str | None = None
    sig: str | None = None
    sig_time: int | None = None
    data: dict[str, Any] | None = None

    model_config = {"extra": "ignore"}


def _text(body: str, status_code: int = 200) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status_code, headers=_CORS_HEADERS)


def _log_webhook(envelope: WebhookEnvelope | None, status: str) -> None:
    """Audit log for webhook activity."""
    data = (envelope.data or {}) if envelope else {}
    logger.info(
        "WEBHOOK_AUDIT kind=%s action=%s source=%s id=%s status=%s",
        envelope.data_type if envelope else "unknown",
        envelope.action_type if envelope else "unknown",
        envelope.source_type if envelope else "unknown",
        data.get("report_id") or data.get("id") or "",
        status,
    )


async def _handle_webhook(request: Request) -> Response:
    """Handle one EveLab callback.

    Returns 204/405 for transport, 403 for authentication failures and
    200 "success" otherwise (500 only under ErrorPolicy.PROPAGATE).
    """
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=_PREFLIGHT_HEADERS)
    if request.method != "POST":
        return _text("Method Not Allowed", 405)

    start = time.time()
    settings = request.app.state.settings
    store = request.app.state.store
    secret = settings.app_secret or PLACEHOLDER_SECRET

    body = await request.body()
    try:
        envelope = WebhookEnvelope.model_validate_json(body)
    except ValidationError as e:
        logger.warning("EveLab webhook body rejected: %d validation error(s)", e.error_count())
        _log_webhook(None, "invalid_payload")
        return _text("Invalid signature", 403)

    data = envelope.data or {}
    logger.info(
        "EveLab received: %s / %s / %s",
        envelope.data_type,
        envelope.action_type,
        envelope.source_type,
    )

    # Provider integration self-test: signature only, freshness deliberately skipped
    if envelope.data_type == TEST_DATA_TYPE:
        if verify_signature(data.get("id"), envelope.sig_time, envelope.sig, secret):
            _log_webhook(envelope, "test_ok")
            return _text("success")
        _log_webhook(envelope, "test_signature_failed")
        return _text("Invalid signature", 403)

    if not is_fresh(envelope.sig_time, tolerance=settings.signature_tolerance_s):
        _log_webhook(envelope, "signature_expired")
        return _text("Signature expired", 403)

    if not verify_signature(
        data.get("id"),
        envelope.sig_time,
        envelope.sig,
        secret,
        report_id=data.get("report_id"),
    ):
        _log_webhook(envelope, "signature_failed")
        return _text("Invalid signature", 403)

    try:
        handled = await apply_payload(
            store, settings, envelope.data_type, envelope.action_type, data
        )
    except Exception:
        logger.exception(
            "EveLab processing failed: %s/%s", envelope.data_type, envelope.action_type
        )
        _log_webhook(envelope, "processing_failed")
        if settings.error_policy is ErrorPolicy.PROPAGATE:
            return _text("Internal error", 500)
        return _text("success")

    _log_webhook(envelope, "stored" if handled else "ignored")
    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s", elapsed_ms, envelope.data_type)
    return _text("success")


def register_webhook_routes(app: FastAPI) -> None:
    """Register the EveLab webhook endpoint on the FastAPI app.

    Expects ``app.state.settings`` and ``app.state.store`` to be set.
    """

    @app.api_route(WEBHOOK_PATH, methods=_ALL_METHODS, include_in_schema=False)
    async def evelab_webhook(request: Request):
        """Receive EveLab Insight callbacks (signature-verified)."""
        return await _handle_webhook(request)

    logger.info("Webhook route registered: %s", WEBHOOK_PATH)

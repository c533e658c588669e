"""EveLab payload mapping: verified payloads to Firestore documents.

Maps each data_type to a write against the document store:
  user          -> merge/delete   {users}/{data.id}
  report        -> merge/delete   {reports}/{data.report_id}
  report_image  -> update         {reports}/{data.report_id}  (images)
  report_3d     -> update         {reports}/{data.report_id}  (model_3d)

Contract:
- Ids always come from the payload; nothing here generates ids
- Source values that are absent/null are omitted, so a merge never clears
  a previously stored field
- Asset attachments are update-only: the report must already exist
- Unknown data_type -> logged and ignored
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from evelab_webhook.storage import SERVER_TIMESTAMP

if TYPE_CHECKING:
    from evelab_webhook.config import Settings
    from evelab_webhook.storage import DocumentStore

logger = logging.getLogger(__name__)

DELETE_ACTION = "delete"

# Severity degree at which a category becomes an auto-concern tag
AUTO_CONCERN_DEGREE = 3


class MalformedPayloadError(ValueError):
    """Verified payload lacks a field required to address or convert the write."""


@dataclass(frozen=True)
class ConcernCategory:
    """One skin-analysis axis of an EveLab report.

    key: name used in the stored document
    source: sub-object name in the EveLab payload
    tag: auto-concern label; graded categories (with a severity degree) have one
    in_detail: copy the sub-object verbatim into ``detail``
    """

    key: str
    source: str
    tag: str | None = None
    in_detail: bool = True

    @property
    def graded(self) -> bool:
        return self.tag is not None


CONCERN_CATEGORIES: tuple[ConcernCategory, ...] = (
    ConcernCategory("aging", "aging_degree", in_detail=False),
    ConcernCategory("pore", "pore", "모공"),
    ConcernCategory("blackhead", "blackhead", "블랙헤드"),
    ConcernCategory("wrinkle", "wrinkle", "주름"),
    ConcernCategory("speckle", "speckle", "색소침착"),
    ConcernCategory("acne", "acne", "여드름"),
    ConcernCategory("sensitive", "sensitive", "민감성"),
    ConcernCategory("dark_circle", "black_rim_of_eye", "다크서클"),
    ConcernCategory("skin_glow", "skin_glow"),
    ConcernCategory("eye_bags", "eye_bags", "눈밑지방"),
)

# preview field -> summary key
_SUMMARY_FIELDS: dict[str, str] = {
    "skin_age": "skin_age",
    "age": "actual_age",
    "skin_type": "skin_type",
    "color": "skin_color",
    "tone": "skin_tone",
}


# ── Helpers ───────────────────────────────────────────────────────────────


def _compact(mapping: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None (absent in the source payload)."""
    return {k: v for k, v in mapping.items() if v is not None}


def _sub(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def epoch_to_datetime(seconds: Any) -> datetime | None:
    """Convert EveLab epoch seconds to an aware UTC datetime (None if absent)."""
    if seconds is None:
        return None
    number = _as_number(seconds)
    if number is None:
        raise MalformedPayloadError(f"created_at is not a unix timestamp: {seconds!r}")
    return datetime.fromtimestamp(number, tz=timezone.utc)


def _doc_id(data: dict[str, Any], key: str, data_type: str) -> str:
    value = data.get(key)
    if value is None or value == "":
        raise MalformedPayloadError(f"{data_type} payload missing {key}")
    return str(value)


# ── User ──────────────────────────────────────────────────────────────────


def map_user(data: dict[str, Any]) -> dict[str, Any]:
    """Map an EveLab user payload to the user document fields."""
    fields = _compact(
        {
            "evelab_id": data.get("id"),
            "merchant_id": data.get("merchant_id"),
            "account_id": data.get("account_id"),
            "store_id": data.get("store_id"),
            "name": data.get("name"),
            "gender": data.get("gender"),
            "birthday": data.get("birthday"),
            "phone_number": data.get("phone_number"),
            "phone_cc": data.get("phone_cc"),
            "email": data.get("email"),
            "created_at": epoch_to_datetime(data.get("created_at")),
        }
    )
    fields["custom_id"] = data.get("custom_id") or None
    fields["skin_concerns"] = data.get("target") or {}
    fields["is_sensitive"] = data.get("is_irritability") == 2
    fields["updated_at"] = SERVER_TIMESTAMP
    return fields


# ── Report ────────────────────────────────────────────────────────────────


def summarize(data: dict[str, Any]) -> dict[str, Any]:
    preview = _sub(data, "preview")
    return _compact({key: preview.get(src) for src, key in _SUMMARY_FIELDS.items()})


def scores(data: dict[str, Any]) -> dict[str, Any]:
    return _compact({c.key: _sub(data, c.source).get("score") for c in CONCERN_CATEGORIES})


def severity(data: dict[str, Any]) -> dict[str, Any]:
    return _compact(
        {c.key: _sub(data, c.source).get("degree") for c in CONCERN_CATEGORIES if c.graded}
    )


def auto_concerns(data: dict[str, Any]) -> list[str]:
    """Tags of every graded category whose degree is >= AUTO_CONCERN_DEGREE, in table order."""
    tags = []
    for category in CONCERN_CATEGORIES:
        if not category.graded:
            continue
        degree = _as_number(_sub(data, category.source).get("degree"))
        if degree is not None and degree >= AUTO_CONCERN_DEGREE:
            tags.append(category.tag)
    return tags


def detail(data: dict[str, Any]) -> dict[str, Any]:
    return _compact({c.key: data.get(c.source) for c in CONCERN_CATEGORIES if c.in_detail})


def map_report(data: dict[str, Any]) -> dict[str, Any]:
    """Map an EveLab report payload to the report document fields."""
    fields = _compact(
        {
            "report_id": data.get("report_id"),
            "merchant_id": data.get("merchant_id"),
            "user_id": data.get("uid"),
            "custom_uid": data.get("custom_uid"),
            "store_id": data.get("store_id"),
            "store_name": data.get("store_name"),
            "device_id": data.get("device_id"),
            "extend": data.get("extend"),
            "created_at": epoch_to_datetime(data.get("created_at")),
        }
    )
    fields.update(
        summary=summarize(data),
        scores=scores(data),
        severity=severity(data),
        auto_concerns=auto_concerns(data),
        detail=detail(data),
        received_at=SERVER_TIMESTAMP,
    )
    return fields


# ── Handlers ──────────────────────────────────────────────────────────────


async def handle_user(
    store: DocumentStore, settings: Settings, action_type: str | None, data: dict[str, Any]
) -> None:
    doc_id = _doc_id(data, "id", "user")
    if action_type == DELETE_ACTION:
        await store.delete(settings.users_collection, doc_id)
        logger.info("EveLab user deleted: %s", doc_id)
        return

    await store.merge(settings.users_collection, doc_id, map_user(data))
    logger.info("EveLab user %s: %s", action_type, doc_id)


async def handle_report(
    store: DocumentStore, settings: Settings, action_type: str | None, data: dict[str, Any]
) -> None:
    doc_id = _doc_id(data, "report_id", "report")
    if action_type == DELETE_ACTION:
        await store.delete(settings.reports_collection, doc_id)
        logger.info("EveLab report deleted: %s", doc_id)
        return

    await store.merge(settings.reports_collection, doc_id, map_report(data))
    logger.info("EveLab report %s: %s", action_type, doc_id)


async def handle_report_image(
    store: DocumentStore, settings: Settings, action_type: str | None, data: dict[str, Any]
) -> None:
    # Resource URLs are provider-hosted (valid ~24h); only the reference is stored.
    doc_id = _doc_id(data, "report_id", "report_image")
    await store.update(
        settings.reports_collection,
        doc_id,
        {"images": data.get("resource"), "images_received_at": SERVER_TIMESTAMP},
    )
    logger.info("EveLab report images stored: %s", doc_id)


async def handle_report_3d(
    store: DocumentStore, settings: Settings, action_type: str | None, data: dict[str, Any]
) -> None:
    doc_id = _doc_id(data, "report_id", "report_3d")
    await store.update(
        settings.reports_collection,
        doc_id,
        {"model_3d": data.get("resource"), "model_3d_received_at": SERVER_TIMESTAMP},
    )
    logger.info("EveLab report 3D model stored: %s", doc_id)


DataHandler = Callable[..., Awaitable[None]]

DATA_HANDLERS: dict[str, DataHandler] = {
    "user": handle_user,
    "report": handle_report,
    "report_image": handle_report_image,
    "report_3d": handle_report_3d,
}


async def apply_payload(
    store: DocumentStore,
    settings: Settings,
    data_type: str | None,
    action_type: str | None,
    data: dict[str, Any],
) -> bool:
    """Persist a verified payload.

    Returns:
        False if data_type is not handled (ignored), True once the write is applied
    """
    handler = DATA_HANDLERS.get(data_type or "")
    if handler is None:
        logger.warning("Unknown EveLab data_type: %s, ignoring", data_type)
        return False
    await handler(store, settings, action_type, data)
    return True

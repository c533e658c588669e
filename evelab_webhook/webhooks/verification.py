"""EveLab webhook signature verification.

EveLab signs each callback with:
    md5("report_id=<report_id>&sig_time=<sig_time>" + app_secret)   (report payloads)
    md5("id=<id>&sig_time=<sig_time>" + app_secret)                 (everything else)
and sends the lowercase hex digest in the body as ``sig``.

Security contract:
- Comparison is case-insensitive and constant-time (hmac.compare_digest)
- Missing signature or sig_time -> verification fails
- sig_time must lie within +/- tolerance (default 180s) of receipt time,
  inclusive, except for the provider's "test" self-check
- MD5 is fixed by the provider's signing scheme. It is weak, but changing it
  breaks interoperability, so it is kept bit-for-bit (accepted risk).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_S = 180


def _render(value: Any) -> str:
    return "" if value is None else str(value)


def build_sign_string(candidate_id: Any, sig_time: Any, report_id: Any = None) -> str:
    """Build the canonical string EveLab signs (without the secret).

    >>> build_sign_string("u1", 1700000000)
    'id=u1&sig_time=1700000000'
    >>> build_sign_string(None, 1700000000, report_id="r9")
    'report_id=r9&sig_time=1700000000'
    """
    if report_id:
        return f"report_id={_render(report_id)}&sig_time={_render(sig_time)}"
    return f"id={_render(candidate_id)}&sig_time={_render(sig_time)}"


def compute_signature(sign_string: str, secret: str) -> str:
    """MD5 hex digest of sign_string + secret."""
    return hashlib.md5((sign_string + secret).encode("utf-8")).hexdigest()


def verify_signature(
    candidate_id: Any,
    sig_time: Any,
    signature: str | None,
    secret: str,
    report_id: Any = None,
) -> bool:
    """Verify an EveLab callback signature.

    Args:
        candidate_id: ``data.id`` of the payload (user id / test id)
        sig_time: Unix seconds sent by EveLab alongside the signature
        signature: Hex digest sent as ``sig``
        secret: Shared AppSecret from the EveLab console
        report_id: ``data.report_id``; selects the report form when truthy

    Returns:
        True if the signature matches
    """
    if not signature or sig_time is None:
        return False

    expected = compute_signature(build_sign_string(candidate_id, sig_time, report_id), secret)
    return hmac.compare_digest(
        expected.encode("utf-8"),
        signature.lower().encode("utf-8"),
    )


def is_fresh(
    sig_time: Any,
    now: int | None = None,
    tolerance: int = SIGNATURE_TOLERANCE_S,
) -> bool:
    """Check sig_time lies within ``tolerance`` seconds of now (replay/clock-skew bound)."""
    if isinstance(sig_time, bool) or not isinstance(sig_time, int):
        return False
    if now is None:
        now = int(time.time())
    if abs(now - sig_time) > tolerance:
        logger.warning("EveLab sig_time outside +/-%ds window: %s (now=%s)", tolerance, sig_time, now)
        return False
    return True

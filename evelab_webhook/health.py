"""Health API route: static liveness info."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    """Liveness probe. Does not touch the document store."""
    return {
        "status": "ok",
        "project": request.app.state.settings.project_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

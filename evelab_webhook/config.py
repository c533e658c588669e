"""EveLab webhook receiver configuration."""

from __future__ import annotations

import enum
from typing import Literal

from pydantic_settings import BaseSettings

# Placeholder accepted by the provider's sandbox. Must be replaced in production.
PLACEHOLDER_SECRET = "TEST_SECRET"


class ErrorPolicy(str, enum.Enum):
    """How internal faults during mapping/persistence are reported to the sender.

    MASK: log and answer 200 "success". The provider retries on any
        non-success answer, so internal faults must not trigger redelivery.
    PROPAGATE: log and answer 500. Local debugging only.
    """

    MASK = "mask"
    PROPAGATE = "propagate"


class Settings(BaseSettings):
    """Environment-driven settings for the webhook receiver."""

    app_secret: str = PLACEHOLDER_SECRET
    project_id: str = "lumi-chart"
    environment: str = "development"

    # Firestore collections
    users_collection: str = "evelab_users"
    reports_collection: str = "evelab_reports"
    document_store: Literal["firestore", "memory"] = "firestore"

    # Replay window around sig_time (seconds, inclusive)
    signature_tolerance_s: int = 180
    error_policy: ErrorPolicy = ErrorPolicy.MASK

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"

    model_config = {"env_prefix": "EVELAB_", "env_file": ".env", "extra": "ignore"}

    @property
    def uses_placeholder_secret(self) -> bool:
        return not self.app_secret or self.app_secret == PLACEHOLDER_SECRET

"""Configuration helpers for the generation service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once at import time; tests reload this module after
    patching the environment.
    """

    byteplus_api_key: Optional[str] = os.getenv("BYTEPLUS_API_KEY")
    byteplus_base_url: str = os.getenv(
        "BYTEPLUS_BASE_URL", "https://ark.ap-southeast.bytepluses.com/api/v3"
    )
    generation_model: str = os.getenv("GENERATION_MODEL", "seedance-1-0-pro-fast-251015")
    # Fixed-interval polling: 60 attempts x 5 seconds bounds one job at ~5 minutes.
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
    poll_max_attempts: int = int(os.getenv("POLL_MAX_ATTEMPTS", "60"))
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()

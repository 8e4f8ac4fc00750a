"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclasses.dataclass(frozen=True)
class Settings:
    """Settings shared by the HTTP layer and the intake pipeline."""

    app_env: str = "production"
    database_url: str | None = None

    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    signature_validation_enabled: bool = True
    webhook_public_url: str | None = None

    api_key: str | None = None

    mem0_api_key: str | None = None
    mem0_base_url: str = "https://api.mem0.ai"
    mem0_timeout_seconds: float = 10.0
    mem0_max_retries: int = 3
    memory_fallback_path: str | None = None

    storage_dir: str = "storage/media"
    media_timeout_seconds: float = 30.0
    media_max_bytes: int = 16 * 1024 * 1024

    rate_limit_global: str = "1000/minute"
    rate_limit_webhook: str = "100/minute"
    rate_limit_search: str = "30/minute"
    rate_limit_identity: str = "30/minute"
    rate_limit_sweep_seconds: float = 60.0

    metrics_enabled: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build :class:`Settings` from the process environment."""

    return Settings(
        app_env=os.getenv("APP_ENV", "production"),
        database_url=os.getenv("DATABASE_URL") or None,
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID") or None,
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN") or None,
        signature_validation_enabled=_env_bool(
            "TWILIO_SIGNATURE_VALIDATION_ENABLED", True
        ),
        webhook_public_url=os.getenv("WEBHOOK_PUBLIC_URL") or None,
        api_key=os.getenv("API_KEY") or None,
        mem0_api_key=os.getenv("MEM0_API_KEY") or None,
        mem0_base_url=os.getenv("MEM0_BASE_URL", "https://api.mem0.ai"),
        mem0_timeout_seconds=float(os.getenv("MEM0_TIMEOUT_SECONDS", "10")),
        mem0_max_retries=int(os.getenv("MEM0_MAX_RETRIES", "3")),
        memory_fallback_path=os.getenv("MEMORY_FALLBACK_PATH") or None,
        storage_dir=os.getenv("STORAGE_DIR", "storage/media"),
        media_timeout_seconds=float(os.getenv("MEDIA_TIMEOUT_SECONDS", "30")),
        media_max_bytes=int(os.getenv("MEDIA_MAX_BYTES", str(16 * 1024 * 1024))),
        rate_limit_global=os.getenv("RATE_LIMIT_GLOBAL", "1000/minute"),
        rate_limit_webhook=os.getenv("RATE_LIMIT_WEBHOOK", "100/minute"),
        rate_limit_search=os.getenv("RATE_LIMIT_SEARCH", "30/minute"),
        rate_limit_identity=os.getenv("RATE_LIMIT_IDENTITY", "30/minute"),
        rate_limit_sweep_seconds=float(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "60")),
        metrics_enabled=_env_bool("METRICS_ENABLED", True),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()

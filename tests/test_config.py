from recallbot.config import Settings, get_settings, reset_settings_cache


def test_defaults(monkeypatch):
    for name in (
        "APP_ENV",
        "DATABASE_URL",
        "TWILIO_SIGNATURE_VALIDATION_ENABLED",
        "MEM0_BASE_URL",
        "STORAGE_DIR",
        "RATE_LIMIT_WEBHOOK",
        "METRICS_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()

    settings = get_settings()

    assert settings.database_url is None
    assert settings.signature_validation_enabled is True
    assert settings.mem0_base_url == "https://api.mem0.ai"
    assert settings.storage_dir == "storage/media"
    assert settings.rate_limit_webhook == "100/minute"
    assert settings.metrics_enabled is True
    assert not settings.is_development


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("APP_ENV", "Development")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/recall")
    monkeypatch.setenv("TWILIO_SIGNATURE_VALIDATION_ENABLED", "false")
    monkeypatch.setenv("MEM0_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("MEM0_MAX_RETRIES", "5")
    monkeypatch.setenv("RATE_LIMIT_IDENTITY", "10/minute")
    reset_settings_cache()

    settings = get_settings()

    assert settings.is_development
    assert settings.database_url == "postgresql://u:p@db/recall"
    assert settings.signature_validation_enabled is False
    assert settings.mem0_timeout_seconds == 2.5
    assert settings.mem0_max_retries == 5
    assert settings.rate_limit_identity == "10/minute"


def test_settings_are_cached_until_reset(monkeypatch):
    monkeypatch.setenv("API_KEY", "one")
    reset_settings_cache()
    first = get_settings()
    monkeypatch.setenv("API_KEY", "two")
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().api_key == "two"


def test_settings_are_immutable():
    settings = Settings()
    try:
        settings.api_key = "x"  # type: ignore[misc]
    except AttributeError:
        pass
    else:  # pragma: no cover
        raise AssertionError("Settings should be frozen")

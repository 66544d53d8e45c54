from unittest.mock import patch

import pytest

from seo_engine.config.settings import QueueBackend, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "SEO Pipeline Engine"
    assert settings.version == "1.0.0"
    assert settings.queue_backend == QueueBackend.MEMORY
    assert settings.retry_attempts == 3
    assert settings.retry_delay_ms == 1000
    assert settings.lock_duration_ms == 30000
    assert settings.webhook_secret is None


def test_production_blocks_memory_backend():
    """The in-memory store is not allowed in production."""
    with pytest.raises(ValueError, match="QUEUE_BACKEND=memory is not allowed in production"):
        Settings(environment="production", queue_backend=QueueBackend.MEMORY)


def test_production_allows_postgres_backend():
    settings = Settings(environment="production", queue_backend=QueueBackend.POSTGRES)
    assert settings.queue_backend == QueueBackend.POSTGRES


def test_webhook_allowed_ips_parsing():
    settings = Settings(webhook_ip_allowlist=" 10.0.0.1, ,10.0.0.2 ")
    assert settings.webhook_allowed_ips == ["10.0.0.1", "10.0.0.2"]
    assert Settings(webhook_ip_allowlist="").webhook_allowed_ips == []


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        Settings(publish_concurrency=0)


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    assert isinstance(get_settings(), Settings)


@patch.dict(
    "os.environ",
    {"QUEUE_BACKEND": "postgres", "WEBHOOK_SECRET": "s3cret", "RETRY_ATTEMPTS": "5"},
)
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings()
    assert settings.queue_backend == QueueBackend.POSTGRES
    assert settings.webhook_secret == "s3cret"
    assert settings.retry_attempts == 5

"""Environment-driven settings."""

import pytest
from pydantic import ValidationError

from app.core.config import CONCURRENT_JOBS, MAX_RETRIES, POLL_INTERVAL_MS, Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DATABASE_URL", "IMPORT_POLL_INTERVAL_MS", "IMPORT_CONCURRENT_JOBS", "IMPORT_MAX_RETRIES", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def test_queue_defaults():
    settings = Settings(_env_file=None)
    assert settings.import_poll_interval_ms == POLL_INTERVAL_MS == 5000
    assert settings.import_concurrent_jobs == CONCURRENT_JOBS == 2
    assert settings.import_max_retries == MAX_RETRIES == 3
    assert settings.poll_interval_seconds == 5.0


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("IMPORT_POLL_INTERVAL_MS", "250")
    monkeypatch.setenv("IMPORT_CONCURRENT_JOBS", "4")
    monkeypatch.setenv("LOG_LEVEL", " debug ")

    settings = Settings(_env_file=None)

    assert settings.poll_interval_seconds == 0.25
    assert settings.import_concurrent_jobs == 4
    assert settings.log_level == "DEBUG"


def test_heroku_database_url_is_rewritten():
    settings = Settings(_env_file=None, database_url="postgres://u:p@db:5432/app")
    assert settings.database_url == "postgresql+psycopg://u:p@db:5432/app"


@pytest.mark.parametrize("field", ["import_concurrent_jobs", "import_max_retries", "import_poll_interval_ms"])
def test_queue_settings_must_be_positive(field):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})

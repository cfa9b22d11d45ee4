from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ingestion.db.models import Base  # noqa: E402
from ingestion.db.session import get_engine  # noqa: E402
from ingestion.settings import Settings, get_settings, reset_settings_cache  # noqa: E402


@pytest.fixture(autouse=True)
def _info_logging():
    """Run every test with INFO enabled, whatever earlier tests configured."""
    root = logging.getLogger()
    previous = root.level
    root.setLevel(logging.INFO)
    yield
    root.setLevel(previous)


@pytest.fixture()
def app_env(monkeypatch, tmp_path: Path) -> Settings:
    """Settings bound to a fresh SQLite database under tmp_path."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'alertflow.db'}")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.delenv("ENABLE_FIXTURE_FALLBACK", raising=False)
    monkeypatch.delenv("FIXTURES_DIR", raising=False)
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    reset_settings_cache()
    settings = get_settings()
    yield settings
    reset_settings_cache()


@pytest.fixture()
def db_settings(app_env: Settings) -> Settings:
    """`app_env` with every table created."""
    Base.metadata.create_all(get_engine(app_env))
    return app_env

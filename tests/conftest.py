"""Shared fixtures: a throwaway database and a test configuration."""

from pathlib import Path

import pytest

from config import Config
from database import Database


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        anthropic_api_key="test-key",
        db_path=tmp_path / "seo_intel.db",
        reports_dir=tmp_path / "reports",
        log_dir=tmp_path / "log",
        alerts_file=str(tmp_path / "alerts.jsonl"),
        provider_timeout_seconds=5,
        source_timeout_seconds=5,
    )


@pytest.fixture
def db(config: Config):
    database = Database(config.db_path)
    yield database
    database.close()

"""Root conftest — shared test configuration."""

import os

import pytest

# Ensure tests never reach real infrastructure by accident
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

from vidhub.config import Settings  # noqa: E402


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",
        media_root=str(tmp_path / "media"),
        worker_count=2,
        shutdown_timeout_seconds=0.5,
        drain_timeout_seconds=0.2,
        log_format="text",
    )

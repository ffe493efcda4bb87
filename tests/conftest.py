from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from ytlikes.app.dependencies import reset_cached_dependencies
from ytlikes.app.repositories.database import Database
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.repositories.work_record_repository import WorkRecordRepository


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return db


@pytest.fixture
def user_repository(database: Database) -> UserRepository:
    return UserRepository(database)


@pytest.fixture
def work_record_repository(database: Database) -> WorkRecordRepository:
    return WorkRecordRepository(database)


@pytest.fixture
def runtime_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Production-shaped environment pointing at a throwaway data dir."""
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "firebase-service-account.json").write_text("{}", encoding="utf-8")

    monkeypatch.setenv("YT_LIKES_DATA_DIR", str(data_dir))
    monkeypatch.setenv("YT_LIKES_ENABLE_SCHEDULER", "0")
    monkeypatch.setenv("YT_LIKES_YOUTUBE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("YT_LIKES_YOUTUBE_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("YT_LIKES_TELEMETRY_SINK", "none")
    reset_cached_dependencies()

    yield data_dir

    reset_cached_dependencies()

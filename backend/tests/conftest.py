from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from healthstore import HealthStore, SQLiteHealthDB  # noqa: E402


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "carehub-test.sqlite"
    monkeypatch.setenv("CAREHUB_DB_PATH", str(db_path))
    monkeypatch.setenv("ALLOW_ANON", "false")
    monkeypatch.setenv("CAREHUB_AUTO_MATERIALIZE", "true")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make


@pytest.fixture
def db(tmp_path) -> SQLiteHealthDB:
    return SQLiteHealthDB(str(tmp_path / "carehub-unit.sqlite"))


@pytest.fixture
def store(db) -> HealthStore:
    return HealthStore(db)


@pytest.fixture
def record_analysis(store) -> Callable[..., dict[str, Any]]:
    def _record(user_id: str, *indicators: dict[str, Any], title: str = "Blood panel", analyzed_at: str | None = None):
        return store.labs.record_analysis(
            user_id=user_id,
            title=title,
            analysis_type="blood",
            indicators=list(indicators),
            analyzed_at=analyzed_at,
        )

    return _record

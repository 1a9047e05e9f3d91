from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app

_WEBHOOK_TOKEN = "test-webhook-token"
_SIGNING_SECRET = "test-signing-secret"


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("DEMO_PLAYBACK_DATA_DIR", str(data_dir))
    monkeypatch.setenv("DEMO_PLAYBACK_WEBHOOK_TOKEN", _WEBHOOK_TOKEN)
    monkeypatch.setenv("DEMO_PLAYBACK_STORAGE_SIGNING_SECRET", _SIGNING_SECRET)
    monkeypatch.setenv("DEMO_PLAYBACK_STORAGE_BASE_URL", "https://cdn.example.test/videos/")
    monkeypatch.setenv("DEMO_PLAYBACK_TELEMETRY_ENABLED", "0")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()

from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.database import Database
from backend.app.repositories.showcase_repository import ShowcaseRepository
from backend.app.services.demo_session_service import DemoSessionRegistry
from backend.app.services.video_tracking import (
    FireAndForgetTracker,
    NoOpVideoViewTracker,
    RepositoryVideoViewTracker,
    VideoViewTracker,
)
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_showcase_repository() -> ShowcaseRepository:
    database = Database(get_settings().db_path)
    database.initialize()
    return ShowcaseRepository(database)


@lru_cache(maxsize=1)
def get_video_tracker() -> VideoViewTracker:
    settings = get_settings()
    if not settings.tracking_enabled:
        return NoOpVideoViewTracker()
    return FireAndForgetTracker(
        RepositoryVideoViewTracker(get_showcase_repository()),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_session_registry() -> DemoSessionRegistry:
    return DemoSessionRegistry.from_settings(
        get_settings(),
        tracker=get_video_tracker(),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_session_registry.cache_clear()
    get_video_tracker.cache_clear()
    get_showcase_repository.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()

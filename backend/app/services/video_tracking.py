from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from backend.app.repositories.showcase_repository import ShowcaseRepository
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("demo_playback.tracking")


class VideoViewTracker(Protocol):
    def record_video_view(self, conversation_id: str, demo_id: str, title: str) -> None:
        ...

    def record_cta_shown(self, conversation_id: str, demo_id: str, cta_url: str | None) -> None:
        ...


class NoOpVideoViewTracker:
    def record_video_view(self, conversation_id: str, demo_id: str, title: str) -> None:
        LOGGER.debug(
            "tracking disabled; video view not recorded conversation_id=%s title=%s",
            conversation_id,
            title,
        )

    def record_cta_shown(self, conversation_id: str, demo_id: str, cta_url: str | None) -> None:
        LOGGER.debug("tracking disabled; cta not recorded conversation_id=%s", conversation_id)


class RepositoryVideoViewTracker:
    def __init__(self, repository: ShowcaseRepository) -> None:
        self._repository = repository

    def record_video_view(self, conversation_id: str, demo_id: str, title: str) -> None:
        record = self._repository.append_video_shown(
            conversation_id=conversation_id,
            demo_id=demo_id,
            title=title,
        )
        LOGGER.info(
            "video view recorded conversation_id=%s demo_id=%s videos_shown=%s",
            conversation_id,
            demo_id,
            len(record.videos_shown),
        )

    def record_cta_shown(self, conversation_id: str, demo_id: str, cta_url: str | None) -> None:
        self._repository.record_cta_shown(
            conversation_id=conversation_id,
            demo_id=demo_id,
            cta_url=cta_url,
        )
        LOGGER.info("cta shown recorded conversation_id=%s demo_id=%s", conversation_id, demo_id)


class FireAndForgetTracker:
    """
    Runs another tracker on daemon threads.

    Callers never wait for persistence and never see its failures; errors are
    logged and reported as `tracking.failed` telemetry.
    """

    def __init__(
        self,
        tracker: VideoViewTracker,
        *,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._tracker = tracker
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._lock = threading.Lock()
        self._pending: set[threading.Thread] = set()

    def record_video_view(self, conversation_id: str, demo_id: str, title: str) -> None:
        self._spawn(
            "video_view",
            lambda: self._tracker.record_video_view(conversation_id, demo_id, title),
        )

    def record_cta_shown(self, conversation_id: str, demo_id: str, cta_url: str | None) -> None:
        self._spawn(
            "cta_shown",
            lambda: self._tracker.record_cta_shown(conversation_id, demo_id, cta_url),
        )

    def wait_for_pending(self, timeout_seconds: float = 5.0) -> None:
        with self._lock:
            pending = list(self._pending)
        for thread in pending:
            thread.join(timeout_seconds)

    def _spawn(self, operation: str, call: Callable[[], None]) -> None:
        thread = threading.Thread(
            target=self._run,
            args=(operation, call),
            name=f"demo-playback-tracking-{operation}",
        )
        thread.daemon = True
        with self._lock:
            self._pending.add(thread)
        thread.start()

    def _run(self, operation: str, call: Callable[[], None]) -> None:
        try:
            call()
        except Exception as exc:
            LOGGER.warning("tracking call failed operation=%s", operation, exc_info=True)
            self._telemetry.emit(
                "tracking.failed",
                operation=operation,
                error_type=type(exc).__name__,
            )
        finally:
            with self._lock:
                self._pending.discard(threading.current_thread())

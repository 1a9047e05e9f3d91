from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from time import monotonic
from typing import Any, Literal

from backend.app.config import AppSettings
from backend.app.models.playback_contracts import (
    PlaybackSession,
    SideEffect,
    TrackVideoView,
    UIPhase,
)
from backend.app.models.tool_contracts import (
    CanonicalToolCall,
    ToolCallOrigin,
    extract_title_from_args,
)
from backend.app.services.catalog_resolver import (
    CatalogResolver,
    PlayableUrlError,
    StaticVideoStorage,
    VideoCatalog,
)
from backend.app.services.playback_coordinator import PlaybackCoordinator, Transition
from backend.app.services.tool_call_deduplicator import ForwardDecision, ToolCallDeduplicator
from backend.app.services.tool_parser import parse_tool_call_from_event
from backend.app.services.video_tracking import NoOpVideoViewTracker, VideoViewTracker
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("demo_playback.sessions")

WebhookStatus = Literal["relayed", "tracked", "ignored"]


class UnknownDemoError(LookupError):
    def __init__(self, demo_id: str) -> None:
        super().__init__(f"No active session for demo: {demo_id}")
        self.demo_id = demo_id


@dataclass(frozen=True)
class SessionOutcome:
    session: PlaybackSession
    effects: list[SideEffect] = field(default_factory=list)
    call: CanonicalToolCall | None = None
    origin: ToolCallOrigin | None = None
    decision: ForwardDecision | None = None


@dataclass(frozen=True)
class WebhookOutcome:
    status: WebhookStatus
    demo_id: str | None = None
    tool_name: str | None = None
    broadcast_event: str | None = None


class DemoSession:
    """
    One demo experience: its catalog, its playback state and its inbound guards.

    App messages and webhook broadcasts both enter through the same lock, so the
    coordinator only ever sees one event at a time per demo.
    """

    def __init__(
        self,
        demo_id: str,
        *,
        catalog: VideoCatalog,
        resolver: CatalogResolver,
        coordinator: PlaybackCoordinator,
        deduplicator: ToolCallDeduplicator,
        tracker: VideoViewTracker,
        telemetry: TelemetryClient,
        conversation_id: str | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.demo_id = demo_id
        self.conversation_id = conversation_id
        self.catalog = catalog
        self.resolver = resolver
        self._coordinator = coordinator
        self._deduplicator = deduplicator
        self._tracker = tracker
        self._telemetry = telemetry.bind(demo_id=demo_id)
        self._clock = clock
        self._lock = threading.Lock()
        self._state = PlaybackSession(phase=UIPhase.CONVERSATION)

    @property
    def state(self) -> PlaybackSession:
        with self._lock:
            return self._state

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            state = self._state
        return {
            "demo_id": self.demo_id,
            "conversation_id": self.conversation_id,
            "titles": list(self.catalog.titles),
            **state.snapshot(now=self._clock()),
        }

    def receive_app_message(
        self,
        event: Any,
        *,
        current_position_seconds: float | None = None,
    ) -> SessionOutcome:
        inbound = self._deduplicator.normalize_inbound(event)
        call = inbound.call
        if call.is_empty:
            return SessionOutcome(session=self.state, call=call)

        decision = self._deduplicator.should_forward(call, origin=inbound.origin)
        if not decision.forwarded:
            self._telemetry.emit(
                "toolcall.deduplicated",
                tool_name=call.tool_name,
                origin=inbound.origin,
                reason=decision.reason,
            )
            return SessionOutcome(
                session=self.state,
                call=call,
                origin=inbound.origin,
                decision=decision,
            )

        self._telemetry.emit("toolcall.forwarded", tool_name=call.tool_name, origin=inbound.origin)
        return self.apply_tool_call(
            call,
            current_position_seconds=current_position_seconds,
            origin=inbound.origin,
            decision=decision,
        )

    def apply_tool_call(
        self,
        call: CanonicalToolCall,
        *,
        current_position_seconds: float | None = None,
        origin: ToolCallOrigin | None = None,
        decision: ForwardDecision | None = None,
    ) -> SessionOutcome:
        def transition(session: PlaybackSession, now: float) -> Transition:
            if call.tool_name == "fetch_video" and session.is_suppressed(now):
                self._telemetry.emit(
                    "playback.suppressed",
                    tool_name=call.tool_name,
                    suppress_reason=session.suppress_reason,
                )
            return self._coordinator.handle_tool_call(
                call.tool_name,
                call.tool_args,
                session,
                now=now,
                catalog=self.catalog,
                current_position_seconds=current_position_seconds,
            )

        session, effects = self._transition(call.tool_name or "none", transition)
        return SessionOutcome(
            session=session,
            effects=effects,
            call=call,
            origin=origin,
            decision=decision,
        )

    def receive_broadcast(
        self,
        event_name: str,
        payload: Mapping[str, Any] | None,
    ) -> SessionOutcome:
        def transition(session: PlaybackSession, now: float) -> Transition:
            return self._coordinator.handle_broadcast(
                event_name,
                dict(payload or {}),
                session,
                now=now,
                catalog=self.catalog,
            )

        session, effects = self._transition(f"broadcast:{event_name}", transition)
        return SessionOutcome(session=session, effects=effects)

    def handle_video_ended(self) -> SessionOutcome:
        session, effects = self._transition(
            "video_ended",
            lambda session, _now: self._coordinator.handle_video_ended(session),
        )
        return SessionOutcome(session=session, effects=effects)

    def dismiss_alert(self) -> SessionOutcome:
        session, effects = self._transition(
            "dismiss_alert",
            lambda session, _now: self._coordinator.dismiss_alert(session),
        )
        return SessionOutcome(session=session, effects=effects)

    def _transition(
        self,
        trigger: str,
        step: Callable[[PlaybackSession, float], Transition],
    ) -> Transition:
        with self._lock:
            previous = self._state
            session, effects = step(previous, self._clock())
            self._state = session

        if effects:
            self._telemetry.emit(
                "playback.transition",
                trigger=trigger,
                from_phase=previous.phase.value,
                to_phase=session.phase.value,
                effect_count=len(effects),
                video_title=session.current_video_title,
            )
        self._dispatch_tracking(effects)
        return session, effects

    def _dispatch_tracking(self, effects: Iterable[SideEffect]) -> None:
        for effect in effects:
            if not isinstance(effect, TrackVideoView):
                continue
            if self.conversation_id is None:
                LOGGER.debug(
                    "video view not tracked; session has no conversation id demo_id=%s",
                    self.demo_id,
                )
                continue
            try:
                self._tracker.record_video_view(self.conversation_id, self.demo_id, effect.title)
            except Exception:
                LOGGER.warning("video view tracking failed demo_id=%s", self.demo_id, exc_info=True)


class DemoSessionRegistry:
    def __init__(
        self,
        *,
        tracker: VideoViewTracker | None = None,
        telemetry: TelemetryClient | None = None,
        storage_base_url: str,
        storage_signing_secret: str | None = None,
        signed_url_ttl_seconds: int = 3_600,
        suppression_window_seconds: float = 1.5,
        cta_reveal_delay_seconds: float = 0.1,
        dedup_window_seconds: float = 1.5,
        text_fallback_enabled: bool = False,
        nested_search_max_depth: int = 6,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._tracker: VideoViewTracker = tracker or NoOpVideoViewTracker()
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._storage_base_url = storage_base_url
        self._storage_signing_secret = storage_signing_secret
        self._signed_url_ttl_seconds = signed_url_ttl_seconds
        self._suppression_window_seconds = suppression_window_seconds
        self._cta_reveal_delay_seconds = cta_reveal_delay_seconds
        self._dedup_window_seconds = dedup_window_seconds
        self._text_fallback_enabled = text_fallback_enabled
        self._nested_search_max_depth = nested_search_max_depth
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, DemoSession] = {}

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        *,
        tracker: VideoViewTracker | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> DemoSessionRegistry:
        return cls(
            tracker=tracker,
            telemetry=telemetry,
            storage_base_url=settings.storage_base_url,
            storage_signing_secret=settings.storage_signing_secret,
            signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
            suppression_window_seconds=settings.suppression_window_ms / 1000,
            cta_reveal_delay_seconds=settings.cta_reveal_delay_ms / 1000,
            dedup_window_seconds=settings.dedup_window_ms / 1000,
            text_fallback_enabled=settings.text_fallback_active,
            nested_search_max_depth=settings.nested_search_max_depth,
        )

    @property
    def text_fallback_enabled(self) -> bool:
        return self._text_fallback_enabled

    @property
    def nested_search_max_depth(self) -> int:
        return self._nested_search_max_depth

    def start_session(
        self,
        demo_id: str,
        *,
        titles: Iterable[str],
        storage_references: Mapping[str, str] | None = None,
        conversation_id: str | None = None,
    ) -> DemoSession:
        """Create (or replace) the session for `demo_id` with a fresh playback state."""
        catalog = VideoCatalog(titles)
        storage = StaticVideoStorage(
            storage_references or {},
            base_url=self._storage_base_url,
            signing_secret=self._storage_signing_secret,
        )
        resolver = CatalogResolver(storage, signed_url_ttl_seconds=self._signed_url_ttl_seconds)
        session = DemoSession(
            demo_id,
            catalog=catalog,
            resolver=resolver,
            coordinator=PlaybackCoordinator(
                resolver,
                suppression_window_seconds=self._suppression_window_seconds,
                cta_reveal_delay_seconds=self._cta_reveal_delay_seconds,
            ),
            deduplicator=ToolCallDeduplicator(
                window_seconds=self._dedup_window_seconds,
                text_fallback_enabled=self._text_fallback_enabled,
                max_depth=self._nested_search_max_depth,
                clock=self._clock,
            ),
            tracker=self._tracker,
            telemetry=self._telemetry,
            conversation_id=conversation_id,
            clock=self._clock,
        )
        with self._lock:
            replaced = demo_id in self._sessions
            self._sessions[demo_id] = session
        LOGGER.info(
            "demo session started demo_id=%s titles=%s replaced=%s",
            demo_id,
            len(catalog),
            replaced,
        )
        return session

    def get(self, demo_id: str) -> DemoSession | None:
        with self._lock:
            return self._sessions.get(demo_id)

    def require(self, demo_id: str) -> DemoSession:
        session = self.get(demo_id)
        if session is None:
            raise UnknownDemoError(demo_id)
        return session

    def end_session(self, demo_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(demo_id, None) is not None

    def find_by_conversation(self, conversation_id: str) -> DemoSession | None:
        with self._lock:
            for session in self._sessions.values():
                if session.conversation_id == conversation_id:
                    return session
        return None

    def receive_webhook(self, event: Any) -> WebhookOutcome:
        """
        Handle a server-side conversation webhook.

        Video showcases and CTA displays are tracked against the conversation,
        then relayed to the owning session as broadcasts. Other tools only
        travel on the realtime path and are ignored here.
        """
        call = parse_tool_call_from_event(
            event,
            text_fallback_enabled=False,
            max_depth=self._nested_search_max_depth,
        )
        if call.tool_name not in {"fetch_video", "show_trial_cta"}:
            LOGGER.debug("webhook ignored tool=%s", call.tool_name)
            return WebhookOutcome(status="ignored", tool_name=call.tool_name)

        conversation_id = _read_conversation_id(event)
        if conversation_id is None:
            LOGGER.warning("webhook tool call without conversation id tool=%s", call.tool_name)
            return WebhookOutcome(status="ignored", tool_name=call.tool_name)

        session = self.find_by_conversation(conversation_id)
        if session is None:
            LOGGER.warning(
                "webhook for unknown conversation conversation_id=%s tool=%s",
                conversation_id,
                call.tool_name,
            )
            return WebhookOutcome(status="ignored", tool_name=call.tool_name)

        if call.tool_name == "show_trial_cta":
            args = call.tool_args or {}
            cta_url = args.get("cta_button_url")
            self._safely_track(
                "cta_shown",
                self._tracker.record_cta_shown,
                conversation_id,
                session.demo_id,
                cta_url if isinstance(cta_url, str) else None,
            )
            session.receive_broadcast("show_trial_cta", args)
            return WebhookOutcome(
                status="relayed",
                demo_id=session.demo_id,
                tool_name=call.tool_name,
                broadcast_event="show_trial_cta",
            )

        resolved = session.resolver.resolve_title(
            session.catalog,
            extract_title_from_args(call.tool_args),
        )
        if resolved is None:
            LOGGER.warning(
                "webhook fetch_video title not in catalog demo_id=%s",
                session.demo_id,
            )
            return WebhookOutcome(
                status="ignored",
                demo_id=session.demo_id,
                tool_name=call.tool_name,
            )

        self._safely_track(
            "video_view",
            self._tracker.record_video_view,
            conversation_id,
            session.demo_id,
            resolved.title,
        )
        try:
            url = session.resolver.playable_url_for(resolved.title)
        except PlayableUrlError:
            LOGGER.warning(
                "webhook could not produce playable url demo_id=%s title=%s",
                session.demo_id,
                resolved.title,
                exc_info=True,
            )
            return WebhookOutcome(
                status="tracked",
                demo_id=session.demo_id,
                tool_name=call.tool_name,
            )

        session.receive_broadcast("play_video", {"url": url, "title": resolved.title})
        return WebhookOutcome(
            status="relayed",
            demo_id=session.demo_id,
            tool_name=call.tool_name,
            broadcast_event="play_video",
        )

    def _safely_track(
        self,
        operation: str,
        call: Callable[..., None],
        *args: Any,
    ) -> None:
        try:
            call(*args)
        except Exception as exc:
            LOGGER.warning("webhook tracking failed operation=%s", operation, exc_info=True)
            self._telemetry.emit(
                "tracking.failed",
                operation=operation,
                error_type=type(exc).__name__,
            )


def _read_conversation_id(event: Any) -> str | None:
    if not isinstance(event, Mapping):
        return None
    candidates = [event.get("conversation_id")]
    data = event.get("data")
    if isinstance(data, Mapping):
        candidates.append(data.get("conversation_id"))
    properties = event.get("properties")
    if isinstance(properties, Mapping):
        candidates.append(properties.get("conversation_id"))
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None

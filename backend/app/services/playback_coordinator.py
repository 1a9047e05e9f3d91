from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from backend.app.models.playback_contracts import (
    Alert,
    CloseVideo,
    CtaOverrides,
    HideAlert,
    HideCta,
    LoadVideo,
    Pause,
    PlaybackSession,
    Play,
    Seek,
    ShowAlert,
    ShowCta,
    SideEffect,
    SuppressReason,
    TrackVideoView,
    UIPhase,
)
from backend.app.models.tool_contracts import extract_title_from_args
from backend.app.services.catalog_resolver import (
    CatalogResolver,
    PlayableUrlError,
    VideoCatalog,
    VideoResolutionError,
)
from backend.app.services.tool_arguments import strip_wrapping_quotes

LOGGER = logging.getLogger("demo_playback.playback")

DEFAULT_SUPPRESSION_WINDOW_SECONDS = 1.5
DEFAULT_CTA_REVEAL_DELAY_SECONDS = 0.1

Transition = tuple[PlaybackSession, list[SideEffect]]


class PlaybackCoordinator:
    """
    Playback state machine driven by canonical tool calls.

    Every handler takes the current `PlaybackSession` and returns the next
    one together with the side effects the UI must apply. Sessions are never
    mutated in place, and every returned session is renderable.
    """

    def __init__(
        self,
        resolver: CatalogResolver,
        *,
        suppression_window_seconds: float = DEFAULT_SUPPRESSION_WINDOW_SECONDS,
        cta_reveal_delay_seconds: float = DEFAULT_CTA_REVEAL_DELAY_SECONDS,
    ) -> None:
        self._resolver = resolver
        self._suppression_window_seconds = suppression_window_seconds
        self._cta_reveal_delay_seconds = cta_reveal_delay_seconds

    def handle_tool_call(
        self,
        tool_name: str | None,
        args: dict[str, Any] | None,
        session: PlaybackSession,
        *,
        now: float,
        catalog: VideoCatalog,
        current_position_seconds: float | None = None,
    ) -> Transition:
        if tool_name == "fetch_video":
            return self._fetch_video(args, session, now=now, catalog=catalog)
        if tool_name == "pause_video":
            return self._pause_video(session, now=now, position=current_position_seconds)
        if tool_name == "play_video":
            return self._play_video(session, now=now)
        if tool_name == "close_video":
            return self._close_video(session, now=now)
        if tool_name == "next_video":
            return self._next_video(session, catalog=catalog)
        if tool_name == "show_trial_cta":
            return self._show_trial_cta(args, session)

        LOGGER.info("ignoring unsupported tool call tool=%s", tool_name)
        return session, []

    def handle_broadcast(
        self,
        event_name: str,
        payload: dict[str, Any] | None,
        session: PlaybackSession,
        *,
        now: float,
        catalog: VideoCatalog,
    ) -> Transition:
        """Apply an event relayed from the webhook path (higher latency, may be stale)."""
        payload = payload if isinstance(payload, dict) else {}
        if event_name == "play_video":
            return self._play_broadcast_url(payload, session, now=now, catalog=catalog)
        if event_name == "show_trial_cta":
            return self._show_trial_cta(payload, session)

        LOGGER.info("ignoring unsupported broadcast event=%s", event_name)
        return session, []

    def handle_video_ended(self, session: PlaybackSession) -> Transition:
        ended = replace(
            session,
            phase=UIPhase.CONVERSATION,
            current_video_title=None,
            current_video_index=None,
            playing_video_url=None,
            paused_position_seconds=0.0,
            show_cta=True,
        )
        return ended, [ShowCta()]

    def dismiss_alert(self, session: PlaybackSession) -> Transition:
        if session.alert is None:
            return session, []
        return replace(session, alert=None), [HideAlert()]

    def _fetch_video(
        self,
        args: dict[str, Any] | None,
        session: PlaybackSession,
        *,
        now: float,
        catalog: VideoCatalog,
    ) -> Transition:
        if session.is_suppressed(now):
            LOGGER.warning(
                "suppressing fetch_video due to recent %s",
                session.suppress_reason or "suppression window",
            )
            return session, []

        raw_title = extract_title_from_args(args)
        if not isinstance(raw_title, str) or not raw_title.strip():
            LOGGER.warning("fetch_video without a usable title; ignoring")
            return session, []
        requested = strip_wrapping_quotes(raw_title)

        current = session.current_video_title
        if (
            session.has_loaded_video
            and current is not None
            and requested.casefold() == current.casefold()
        ):
            # Same video re-requested: resume in place instead of resetting the source.
            effects: list[SideEffect] = []
            if session.paused_position_seconds > 0:
                effects.append(Seek(position_seconds=session.paused_position_seconds))
            effects.append(Play())
            return session, effects

        return self._load_title(requested, session, catalog=catalog)

    def _next_video(self, session: PlaybackSession, *, catalog: VideoCatalog) -> Transition:
        current = session.current_video_title
        if current is None:
            LOGGER.warning("next_video called but no video is currently identified; ignoring")
            return session, []

        next_title = catalog.next_title(current)
        if next_title is None:
            LOGGER.warning("current video not found in catalog; cannot advance title=%s", current)
            return session, []
        return self._load_title(next_title, session, catalog=catalog)

    def _load_title(
        self,
        requested: str,
        session: PlaybackSession,
        *,
        catalog: VideoCatalog,
    ) -> Transition:
        try:
            resolved = self._resolver.require_title(catalog, requested)
        except VideoResolutionError as exc:
            LOGGER.warning("video lookup failed title=%s", exc.title)
            return self._with_alert(session, f'Could not find a video titled "{exc.title}".')

        try:
            url = self._resolver.playable_url_for(resolved.title)
        except PlayableUrlError:
            LOGGER.warning("playable url resolution failed title=%s", resolved.title, exc_info=True)
            return self._with_alert(session, "Could not generate a playable URL for this video.")

        effects: list[SideEffect] = []
        if session.show_cta:
            effects.append(HideCta())
        if session.alert is not None:
            effects.append(HideAlert())
        effects.extend(
            [
                LoadVideo(url=url, title=resolved.title, index=resolved.index),
                Play(),
                TrackVideoView(title=resolved.title),
            ]
        )

        loaded = replace(
            session,
            phase=UIPhase.VIDEO_PLAYING,
            current_video_title=resolved.title,
            current_video_index=resolved.index,
            playing_video_url=url,
            paused_position_seconds=0.0,
            show_cta=False,
            alert=None,
        )
        return loaded, effects

    def _pause_video(
        self,
        session: PlaybackSession,
        *,
        now: float,
        position: float | None,
    ) -> Transition:
        if session.phase is not UIPhase.VIDEO_PLAYING:
            LOGGER.info("pause_video ignored outside video playback phase=%s", session.phase)
            return session, []

        paused_at = session.paused_position_seconds
        if position is not None and position >= 0:
            paused_at = float(position)
        paused = self._open_window(
            replace(session, paused_position_seconds=paused_at),
            now=now,
            reason="pause",
        )
        return paused, [Pause()]

    def _play_video(self, session: PlaybackSession, *, now: float) -> Transition:
        if session.phase is not UIPhase.VIDEO_PLAYING:
            LOGGER.info("play_video ignored outside video playback phase=%s", session.phase)
            return session, []

        effects: list[SideEffect] = []
        if session.paused_position_seconds > 0:
            effects.append(Seek(position_seconds=session.paused_position_seconds))
        effects.append(Play())
        return self._open_window(session, now=now, reason="resume"), effects

    def _close_video(self, session: PlaybackSession, *, now: float) -> Transition:
        closed = self._open_window(
            replace(
                session,
                phase=UIPhase.CONVERSATION,
                current_video_title=None,
                current_video_index=None,
                playing_video_url=None,
                paused_position_seconds=0.0,
                show_cta=True,
                alert=None,
            ),
            now=now,
            reason="close",
        )
        return closed, [
            HideAlert(),
            CloseVideo(),
            ShowCta(delay_seconds=self._cta_reveal_delay_seconds),
        ]

    def _show_trial_cta(self, args: Any, session: PlaybackSession) -> Transition:
        effects: list[SideEffect] = []
        if session.has_loaded_video or session.phase is UIPhase.VIDEO_PLAYING:
            session = replace(
                session,
                phase=UIPhase.CONVERSATION,
                current_video_title=None,
                current_video_index=None,
                playing_video_url=None,
                paused_position_seconds=0.0,
            )
            effects.append(CloseVideo())

        overrides = CtaOverrides.from_mapping(args)
        if overrides is not None:
            session = replace(session, cta_overrides=overrides)
        effects.append(ShowCta(overrides=overrides))
        return replace(session, show_cta=True), effects

    def _play_broadcast_url(
        self,
        payload: dict[str, Any],
        session: PlaybackSession,
        *,
        now: float,
        catalog: VideoCatalog,
    ) -> Transition:
        url = payload.get("url")
        if not isinstance(url, str) or not url.strip():
            LOGGER.warning("play_video broadcast without url; ignoring")
            return session, []
        url = url.strip()

        if session.is_suppressed(now):
            LOGGER.warning(
                "suppressing play_video broadcast due to recent %s",
                session.suppress_reason or "suppression window",
            )
            return session, []

        resolved = self._resolver.resolve_title(catalog, payload.get("title"))
        if session.playing_video_url == url or (
            resolved is not None
            and session.has_loaded_video
            and resolved.title == session.current_video_title
        ):
            LOGGER.info("play_video broadcast matches the loaded video; not reloading")
            return session, []

        effects: list[SideEffect] = []
        if session.show_cta:
            effects.append(HideCta())
        effects.extend(
            [
                LoadVideo(
                    url=url,
                    title=resolved.title if resolved else None,
                    index=resolved.index if resolved else None,
                ),
                Play(),
            ]
        )
        loaded = replace(
            session,
            phase=UIPhase.VIDEO_PLAYING,
            current_video_title=resolved.title if resolved else None,
            current_video_index=resolved.index if resolved else None,
            playing_video_url=url,
            paused_position_seconds=0.0,
            show_cta=False,
        )
        return loaded, effects

    def _open_window(
        self,
        session: PlaybackSession,
        *,
        now: float,
        reason: SuppressReason,
    ) -> PlaybackSession:
        return replace(
            session,
            suppress_until=now + self._suppression_window_seconds,
            suppress_reason=reason,
        )

    def _with_alert(self, session: PlaybackSession, message: str) -> Transition:
        alert = Alert(type="error", message=message)
        return replace(session, alert=alert), [ShowAlert(alert=alert)]

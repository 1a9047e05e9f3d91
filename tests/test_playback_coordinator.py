from __future__ import annotations

from dataclasses import replace

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
    TrackVideoView,
    UIPhase,
    serialize_effect,
)
from backend.app.services.catalog_resolver import CatalogResolver, StaticVideoStorage, VideoCatalog
from backend.app.services.playback_coordinator import PlaybackCoordinator

_TITLES = ("Intro to Widgets", "Deep Dive", "Pricing")
_CATALOG = VideoCatalog(_TITLES)


def _url(title: str) -> str:
    return f"https://videos.example.test/{title.lower().replace(' ', '-')}.mp4"


def _coordinator(references: dict[str, str] | None = None) -> PlaybackCoordinator:
    storage = StaticVideoStorage(
        references if references is not None else {title: _url(title) for title in _TITLES},
        base_url="https://cdn.example.test",
        signing_secret=None,
    )
    return PlaybackCoordinator(
        CatalogResolver(storage),
        suppression_window_seconds=1.5,
        cta_reveal_delay_seconds=0.1,
    )


def _conversation() -> PlaybackSession:
    return PlaybackSession(phase=UIPhase.CONVERSATION)


def _playing(title: str = "Intro to Widgets", *, paused_at: float = 0.0) -> PlaybackSession:
    return PlaybackSession(
        phase=UIPhase.VIDEO_PLAYING,
        current_video_title=title,
        current_video_index=_CATALOG.index_of(title),
        playing_video_url=_url(title),
        paused_position_seconds=paused_at,
    )


def test_fetch_new_title_loads_and_plays() -> None:
    coordinator = _coordinator()
    session = replace(_conversation(), show_cta=True)

    result, effects = coordinator.handle_tool_call(
        "fetch_video",
        {"title": "deep dive"},
        session,
        now=10.0,
        catalog=_CATALOG,
    )

    assert result.phase is UIPhase.VIDEO_PLAYING
    assert result.current_video_title == "Deep Dive"
    assert result.current_video_index == 1
    assert result.playing_video_url == _url("Deep Dive")
    assert result.paused_position_seconds == 0.0
    assert result.show_cta is False
    assert effects == [
        HideCta(),
        LoadVideo(url=_url("Deep Dive"), title="Deep Dive", index=1),
        Play(),
        TrackVideoView(title="Deep Dive"),
    ]


def test_fetch_same_title_resumes_from_saved_offset() -> None:
    coordinator = _coordinator()
    session = _playing(paused_at=42.5)

    result, effects = coordinator.handle_tool_call(
        "fetch_video",
        {"title": "'INTRO to widgets'"},
        session,
        now=10.0,
        catalog=_CATALOG,
    )

    assert result == session
    assert effects == [Seek(position_seconds=42.5), Play()]


def test_fetch_same_title_at_start_only_plays() -> None:
    result, effects = _coordinator().handle_tool_call(
        "fetch_video",
        {"title": "Intro to Widgets"},
        _playing(),
        now=10.0,
        catalog=_CATALOG,
    )

    assert result.paused_position_seconds == 0.0
    assert effects == [Play()]


def test_fetch_unknown_title_shows_alert_and_keeps_state() -> None:
    session = _playing()

    result, effects = _coordinator().handle_tool_call(
        "fetch_video",
        {"title": "Roadmap"},
        session,
        now=10.0,
        catalog=_CATALOG,
    )

    alert = Alert(type="error", message='Could not find a video titled "Roadmap".')
    assert effects == [ShowAlert(alert=alert)]
    assert result == replace(session, alert=alert)


def test_fetch_without_playable_url_shows_alert() -> None:
    coordinator = _coordinator(references={})

    result, effects = coordinator.handle_tool_call(
        "fetch_video",
        {"title": "Pricing"},
        _conversation(),
        now=10.0,
        catalog=_CATALOG,
    )

    assert result.phase is UIPhase.CONVERSATION
    assert result.alert == Alert(
        type="error",
        message="Could not generate a playable URL for this video.",
    )
    assert [effect.kind for effect in effects] == ["show_alert"]


def test_fetch_with_blank_title_is_ignored() -> None:
    session = _conversation()

    result, effects = _coordinator().handle_tool_call(
        "fetch_video",
        {"title": "  "},
        session,
        now=10.0,
        catalog=_CATALOG,
    )

    assert result == session
    assert effects == []


def test_successful_fetch_clears_existing_alert() -> None:
    session = replace(_conversation(), alert=Alert(type="error", message="old"))

    result, effects = _coordinator().handle_tool_call(
        "fetch_video",
        {"title": "Pricing"},
        session,
        now=10.0,
        catalog=_CATALOG,
    )

    assert result.alert is None
    assert effects[0] == HideAlert()


def test_pause_captures_position_and_opens_window() -> None:
    result, effects = _coordinator().handle_tool_call(
        "pause_video",
        {},
        _playing(),
        now=10.0,
        catalog=_CATALOG,
        current_position_seconds=12.25,
    )

    assert effects == [Pause()]
    assert result.paused_position_seconds == 12.25
    assert result.suppress_until == 11.5
    assert result.suppress_reason == "pause"
    assert result.is_suppressed(11.4)
    assert not result.is_suppressed(11.5)


def test_pause_outside_playback_is_a_no_op() -> None:
    session = _conversation()

    assert _coordinator().handle_tool_call(
        "pause_video", {}, session, now=10.0, catalog=_CATALOG
    ) == (session, [])


def test_play_seeks_to_saved_offset_and_opens_window() -> None:
    result, effects = _coordinator().handle_tool_call(
        "play_video",
        {},
        _playing(paused_at=30.0),
        now=20.0,
        catalog=_CATALOG,
    )

    assert effects == [Seek(position_seconds=30.0), Play()]
    assert result.paused_position_seconds == 30.0
    assert result.suppress_reason == "resume"
    assert result.suppress_until == 21.5


def test_fetch_inside_suppression_window_is_dropped() -> None:
    coordinator = _coordinator()
    paused, _ = coordinator.handle_tool_call(
        "pause_video", {}, _playing(), now=10.0, catalog=_CATALOG, current_position_seconds=5.0
    )

    during, dropped = coordinator.handle_tool_call(
        "fetch_video", {"title": "Deep Dive"}, paused, now=11.0, catalog=_CATALOG
    )
    after, loaded = coordinator.handle_tool_call(
        "fetch_video", {"title": "Deep Dive"}, paused, now=11.6, catalog=_CATALOG
    )

    assert dropped == []
    assert during == paused
    assert after.current_video_title == "Deep Dive"
    assert any(isinstance(effect, LoadVideo) for effect in loaded)


def test_close_resets_and_reveals_cta_after_delay() -> None:
    session = replace(_playing(paused_at=8.0), alert=Alert(type="error", message="x"))

    result, effects = _coordinator().handle_tool_call(
        "close_video", {}, session, now=50.0, catalog=_CATALOG
    )

    assert result.phase is UIPhase.CONVERSATION
    assert result.current_video_title is None
    assert result.current_video_index is None
    assert result.playing_video_url is None
    assert result.paused_position_seconds == 0.0
    assert result.alert is None
    assert result.show_cta is True
    assert result.suppress_reason == "close"
    assert result.suppress_until == 51.5
    assert effects == [HideAlert(), CloseVideo(), ShowCta(delay_seconds=0.1)]


def test_fetch_right_after_close_is_suppressed() -> None:
    coordinator = _coordinator()
    closed, _ = coordinator.handle_tool_call(
        "close_video", {}, _playing(), now=50.0, catalog=_CATALOG
    )

    result, effects = coordinator.handle_tool_call(
        "fetch_video", {"title": "Intro to Widgets"}, closed, now=50.5, catalog=_CATALOG
    )

    assert effects == []
    assert result.phase is UIPhase.CONVERSATION


def test_next_video_advances_and_wraps() -> None:
    coordinator = _coordinator()

    advanced, effects = coordinator.handle_tool_call(
        "next_video", {}, _playing("Deep Dive"), now=5.0, catalog=_CATALOG
    )
    wrapped, _ = coordinator.handle_tool_call(
        "next_video", {}, _playing("Pricing"), now=5.0, catalog=_CATALOG
    )

    assert advanced.current_video_title == "Pricing"
    assert advanced.current_video_index == 2
    assert LoadVideo(url=_url("Pricing"), title="Pricing", index=2) in effects
    assert wrapped.current_video_title == "Intro to Widgets"
    assert wrapped.current_video_index == 0


def test_next_video_without_current_title_is_a_no_op() -> None:
    session = _conversation()

    assert _coordinator().handle_tool_call(
        "next_video", {}, session, now=5.0, catalog=_CATALOG
    ) == (session, [])


def test_show_trial_cta_closes_video_silently_and_applies_overrides() -> None:
    session = _playing(paused_at=3.0)

    result, effects = _coordinator().handle_tool_call(
        "show_trial_cta",
        {"cta_title": "Start free", "cta_button_url": "https://example.test/trial", "x": 1},
        session,
        now=5.0,
        catalog=_CATALOG,
    )

    overrides = CtaOverrides(cta_title="Start free", cta_button_url="https://example.test/trial")
    assert effects == [CloseVideo(), ShowCta(overrides=overrides)]
    assert result.phase is UIPhase.CONVERSATION
    assert result.current_video_title is None
    assert result.show_cta is True
    assert result.cta_overrides == overrides
    assert result.suppress_until == session.suppress_until
    assert result.suppress_reason is None


def test_show_trial_cta_in_conversation_only_reveals_cta() -> None:
    result, effects = _coordinator().handle_tool_call(
        "show_trial_cta", {}, _conversation(), now=5.0, catalog=_CATALOG
    )

    assert effects == [ShowCta()]
    assert result.show_cta is True
    assert result.cta_overrides is None


def test_unknown_tool_is_ignored() -> None:
    session = _playing()

    assert _coordinator().handle_tool_call(
        "book_meeting", {}, session, now=5.0, catalog=_CATALOG
    ) == (session, [])


def test_play_video_broadcast_loads_new_url() -> None:
    result, effects = _coordinator().handle_broadcast(
        "play_video",
        {"url": "https://videos.example.test/pricing.mp4", "title": "Pricing"},
        _conversation(),
        now=5.0,
        catalog=_CATALOG,
    )

    assert result.phase is UIPhase.VIDEO_PLAYING
    assert result.current_video_index == 2
    assert effects == [
        LoadVideo(url="https://videos.example.test/pricing.mp4", title="Pricing", index=2),
        Play(),
    ]


def test_play_video_broadcast_for_loaded_title_does_not_reload() -> None:
    session = _playing("Pricing")

    result, effects = _coordinator().handle_broadcast(
        "play_video",
        {"url": "https://cdn.example.test/pricing.mp4?signature=other", "title": "Pricing"},
        session,
        now=5.0,
        catalog=_CATALOG,
    )

    assert result == session
    assert effects == []


def test_play_video_broadcast_respects_suppression_window() -> None:
    session = replace(_conversation(), suppress_until=6.0, suppress_reason="close")

    result, effects = _coordinator().handle_broadcast(
        "play_video",
        {"url": "https://videos.example.test/pricing.mp4"},
        session,
        now=5.0,
        catalog=_CATALOG,
    )

    assert result == session
    assert effects == []


def test_show_trial_cta_broadcast_uses_payload_overrides() -> None:
    result, effects = _coordinator().handle_broadcast(
        "show_trial_cta",
        {"cta_message": "Two weeks free"},
        _conversation(),
        now=5.0,
        catalog=_CATALOG,
    )

    assert result.cta_overrides == CtaOverrides(cta_message="Two weeks free")
    assert effects == [ShowCta(overrides=CtaOverrides(cta_message="Two weeks free"))]


def test_video_end_returns_to_conversation_with_cta() -> None:
    result, effects = _coordinator().handle_video_ended(_playing(paused_at=99.0))

    assert result.phase is UIPhase.CONVERSATION
    assert result.paused_position_seconds == 0.0
    assert result.show_cta is True
    assert effects == [ShowCta()]


def test_dismiss_alert() -> None:
    session = replace(_conversation(), alert=Alert(type="error", message="x"))

    result, effects = _coordinator().dismiss_alert(session)

    assert result.alert is None
    assert effects == [HideAlert()]
    assert _coordinator().dismiss_alert(result) == (result, [])


def test_serialized_effects_carry_kind() -> None:
    assert serialize_effect(Seek(position_seconds=4.0)) == {"position_seconds": 4.0, "kind": "seek"}
    assert serialize_effect(Play()) == {"kind": "play"}

from __future__ import annotations

from typing import Any

from backend.app.models.tool_contracts import CanonicalToolCall
from backend.app.services.tool_call_deduplicator import ToolCallDeduplicator, dedup_key


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _fetch(title: str) -> CanonicalToolCall:
    return CanonicalToolCall(tool_name="fetch_video", tool_args={"title": title})


def _tool_call_message(name: str, arguments: Any) -> dict[str, Any]:
    return {
        "event_type": "conversation.toolcall",
        "properties": {"name": name, "arguments": arguments},
    }


def test_dedup_key_normalizes_fetch_title_only() -> None:
    key = dedup_key("fetch_video", {"title": "  Intro To Widgets "})

    assert key == "fetch_video:intro to widgets"
    assert dedup_key("pause_video", {"title": "ignored"}) == "pause_video:"
    assert dedup_key("next_video", None) == "next_video:"


def test_duplicate_within_window_is_dropped() -> None:
    clock = _FakeClock()
    deduplicator = ToolCallDeduplicator(window_seconds=1.5, clock=clock)

    first = deduplicator.should_forward(_fetch("Intro"), origin="structured")
    clock.now += 0.5
    second = deduplicator.should_forward(_fetch(" intro "), origin="transcript")

    assert first.forwarded is True
    assert second.forwarded is False
    assert second.reason == "duplicate"
    assert second.key == "fetch_video:intro"


def test_duplicate_after_window_is_forwarded() -> None:
    clock = _FakeClock()
    deduplicator = ToolCallDeduplicator(window_seconds=1.5, clock=clock)

    deduplicator.should_forward(_fetch("Intro"), origin="structured")
    clock.now += 1.5

    assert deduplicator.should_forward(_fetch("Intro"), origin="structured").forwarded is True


def test_different_key_within_window_is_forwarded() -> None:
    clock = _FakeClock()
    deduplicator = ToolCallDeduplicator(clock=clock)

    deduplicator.should_forward(_fetch("Intro"), origin="structured")
    clock.now += 0.1
    decision = deduplicator.should_forward(
        CanonicalToolCall(tool_name="pause_video", tool_args={}),
        origin="structured",
    )

    assert decision.forwarded is True


def test_empty_call_is_never_forwarded() -> None:
    deduplicator = ToolCallDeduplicator(clock=_FakeClock())

    decision = deduplicator.should_forward(CanonicalToolCall(tool_name=None, tool_args=None))

    assert decision.forwarded is False
    assert decision.reason == "empty"


def test_utterance_yields_to_recent_structured_call() -> None:
    clock = _FakeClock()
    deduplicator = ToolCallDeduplicator(clock=clock)

    deduplicator.should_forward(_fetch("Intro"), origin="structured")
    clock.now += 0.3
    decision = deduplicator.should_forward(
        CanonicalToolCall(tool_name="pause_video", tool_args={}),
        origin="utterance",
    )

    assert decision.forwarded is False
    assert decision.reason == "structured_preferred"


def test_utterance_forwarded_when_no_recent_structured_call() -> None:
    clock = _FakeClock()
    deduplicator = ToolCallDeduplicator(clock=clock)

    deduplicator.should_forward(_fetch("Intro"), origin="structured")
    clock.now += 2.0
    decision = deduplicator.should_forward(
        CanonicalToolCall(tool_name="pause_video", tool_args={}),
        origin="utterance",
    )

    assert decision.forwarded is True


def test_reset_forgets_previous_forward() -> None:
    deduplicator = ToolCallDeduplicator(clock=_FakeClock())

    deduplicator.should_forward(_fetch("Intro"), origin="structured")
    deduplicator.reset()

    assert deduplicator.should_forward(_fetch("Intro"), origin="structured").forwarded is True


def test_normalize_inbound_prefers_nested_data_payload() -> None:
    deduplicator = ToolCallDeduplicator(clock=_FakeClock())
    message = {
        "type": "app-message",
        "data": _tool_call_message("fetch_video", '{"title": "Nested"}'),
    }

    inbound = deduplicator.normalize_inbound(message)

    assert inbound.call.tool_name == "fetch_video"
    assert inbound.call.tool_args == {"title": "Nested"}
    assert inbound.origin == "structured"


def test_normalize_inbound_reads_last_tool_call_of_untyped_transcript_data() -> None:
    deduplicator = ToolCallDeduplicator(clock=_FakeClock())
    message = {
        "event_type": "application.transcription_ready",
        "data": {
            "transcript": [
                {
                    "role": "assistant",
                    "tool_calls": [
                        {"function": {"name": "fetch_video", "arguments": '{"title": "Intro"}'}}
                    ],
                },
                {"role": "user", "content": "Actually, the pricing one"},
                {
                    "role": "assistant",
                    "tool_calls": [
                        {
                            "function": {
                                "name": "fetch_video",
                                "arguments": '{"title": "Pricing"}',
                            }
                        }
                    ],
                },
            ]
        },
    }

    inbound = deduplicator.normalize_inbound(message)

    assert inbound.call.tool_args == {"title": "Pricing"}
    assert inbound.origin == "transcript"


def test_normalize_inbound_falls_back_to_outer_event() -> None:
    deduplicator = ToolCallDeduplicator(clock=_FakeClock())
    message = {
        "event_type": "conversation.toolcall",
        "properties": {"name": "close_video", "arguments": "{}"},
        "data": {"irrelevant": True},
    }

    inbound = deduplicator.normalize_inbound(message)

    assert inbound.call.tool_name == "close_video"


def test_normalize_inbound_utterance_requires_text_fallback() -> None:
    message = {"event_type": "conversation.utterance", "properties": {"speech": "pause"}}

    disabled = ToolCallDeduplicator(clock=_FakeClock()).normalize_inbound(message)
    enabled = ToolCallDeduplicator(
        clock=_FakeClock(),
        text_fallback_enabled=True,
    ).normalize_inbound(message)

    assert disabled.call.is_empty
    assert disabled.origin is None
    assert enabled.call.tool_name == "pause_video"
    assert enabled.origin == "utterance"

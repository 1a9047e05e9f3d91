from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from backend.app.telemetry import (
    StructuredLogTelemetrySink,
    TelemetryClient,
    build_telemetry_client,
    strip_url_query,
)


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_telemetry_client_redacts_conversation_content() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "toolcall.forwarded",
        tool_name="fetch_video",
        speech="please play the pricing video",
        transcript=[{"role": "user"}],
        webhook_token="abc",
        url_signature="deadbeef",
        effect_count=3,
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "toolcall.forwarded"
    assert attributes["tool_name"] == "fetch_video"
    assert attributes["effect_count"] == 3
    assert attributes["speech"] == "[redacted]"
    assert attributes["transcript"] == "[redacted]"
    assert attributes["webhook_token"] == "[redacted]"
    assert attributes["url_signature"] == "[redacted]"


def test_url_attributes_lose_their_signed_query() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "playback.transition",
        playing_video_url="https://cdn.example.test/v/intro.mp4?expires=1&signature=abc",
    )

    assert sink.events[0][1]["playing_video_url"] == "https://cdn.example.test/v/intro.mp4"


def test_bound_attributes_are_added_to_every_event() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink).bind(demo_id="demo-1")

    client.emit("playback.transition", to_phase="VIDEO_PLAYING")
    client.emit("toolcall.deduplicated", demo_id="override")

    assert sink.events[0][1] == {"demo_id": "demo-1", "to_phase": "VIDEO_PLAYING"}
    assert sink.events[1][1]["demo_id"] == "override"


def test_long_strings_are_truncated_and_objects_summarized() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit("playback.transition", video_title="x" * 500, extra=object())

    attributes = sink.events[0][1]
    assert attributes["video_title"] == "x" * 160 + "..."
    assert attributes["extra"] == "object"


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.bind(demo_id="demo-1").emit("toolcall.forwarded", tool_name="pause_video")
    assert sink.events == []


def test_build_telemetry_client_sinks() -> None:
    assert build_telemetry_client(enabled=True, sink="none").enabled is False
    assert build_telemetry_client(enabled=False, sink="log").enabled is False

    client = build_telemetry_client(enabled=True, sink="log")
    assert client.enabled is True
    assert isinstance(client.sink, StructuredLogTelemetrySink)


def test_strip_url_query_keeps_relative_paths() -> None:
    assert strip_url_query("demos/intro.mp4?signature=abc") == "demos/intro.mp4"

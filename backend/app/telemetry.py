from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol
from urllib.parse import urlsplit, urlunsplit

import structlog

TELEMETRY_LOGGER_NAME = "demo_playback.telemetry"

# Attribute keys containing any of these are never emitted verbatim.
_SENSITIVE_ATTRIBUTE_TOKENS: frozenset[str] = frozenset(
    {
        "authorization",
        "payload",
        "secret",
        "signature",
        "speech",
        "token",
        "transcript",
        "utterance",
    }
)
_MAX_STRING_LENGTH = 160

AttributeValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info(
            "telemetry",
            telemetry_event=event_name,
            **dict(attributes),
        )


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink
    base_attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def bind(self, **attributes: Any) -> TelemetryClient:
        """Return a client that adds `attributes` to every event (e.g. the demo id)."""
        merged = {**self.base_attributes, **attributes}
        return TelemetryClient(enabled=self.enabled, sink=self.sink, base_attributes=merged)

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(
            event_name=event_name,
            attributes=sanitize_attributes({**self.base_attributes, **attributes}),
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, AttributeValue]:
    sanitized: dict[str, AttributeValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(token in key for token in _SENSITIVE_ATTRIBUTE_TOKENS):
            sanitized[key] = "[redacted]"
            continue
        if key.endswith("url") and isinstance(raw_value, str):
            sanitized[key] = _sanitize_value(strip_url_query(raw_value))
            continue
        sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def strip_url_query(url: str) -> str:
    """Drop query and fragment so signed playback URLs never reach the logs."""
    parts = urlsplit(url.strip())
    if not parts.scheme:
        return parts.path
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _sanitize_value(value: Any) -> AttributeValue:
    if value is None:
        return None
    if isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return str(type(value).__name__)

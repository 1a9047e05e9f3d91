from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from time import monotonic
from typing import Any

from backend.app.models.tool_contracts import (
    EMPTY_TOOL_CALL,
    CanonicalToolCall,
    ToolCallOrigin,
)
from backend.app.services.tool_parser import (
    DEFAULT_NESTED_SEARCH_MAX_DEPTH,
    classify_event,
    resolve_source,
)

LOGGER = logging.getLogger("demo_playback.dedup")

DEFAULT_DEDUP_WINDOW_SECONDS = 1.5


def dedup_key(tool_name: str, tool_args: Mapping[str, Any] | None) -> str:
    arg_key = ""
    if tool_name == "fetch_video" and tool_args is not None:
        title = tool_args.get("title")
        if isinstance(title, str):
            arg_key = title.strip().lower()
    return f"{tool_name}:{arg_key}"


@dataclass(frozen=True)
class InboundToolCall:
    call: CanonicalToolCall
    origin: ToolCallOrigin | None


@dataclass(frozen=True)
class ForwardDecision:
    forwarded: bool
    key: str
    reason: str | None = None


@dataclass(frozen=True)
class _ForwardRecord:
    key: str
    at: float
    origin: ToolCallOrigin | None


class ToolCallDeduplicator:
    """
    Drops near-duplicate tool calls arriving from independent producers.

    One logical user action can surface as a structured tool-call message and
    again as a transcript-embedded copy; only the first inside the window is
    forwarded. Structured producers win over the utterance heuristic.
    """

    def __init__(
        self,
        *,
        window_seconds: float = DEFAULT_DEDUP_WINDOW_SECONDS,
        text_fallback_enabled: bool = False,
        max_depth: int = DEFAULT_NESTED_SEARCH_MAX_DEPTH,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._window_seconds = window_seconds
        self._text_fallback_enabled = text_fallback_enabled
        self._max_depth = max_depth
        self._clock = clock
        self._lock = Lock()
        self._last_forward: _ForwardRecord | None = None
        self._last_structured_at: float | None = None

    def normalize_inbound(self, message: Any) -> InboundToolCall:
        """
        Parse the nested payload first, then the outer event on shape drift.

        The nested payload must carry a recognised event type of its own; the
        untyped deep search only runs over the outer event.
        """
        candidates: list[Any] = []
        if isinstance(message, Mapping) and isinstance(message.get("data"), Mapping):
            candidates.append(message["data"])
        candidates.append(message)

        for candidate in candidates:
            try:
                source = classify_event(
                    candidate,
                    max_depth=self._max_depth,
                    nested_search=candidate is message,
                )
                if source is None:
                    continue
                call = resolve_source(source, text_fallback_enabled=self._text_fallback_enabled)
            except Exception:
                LOGGER.warning("inbound message parsing failed", exc_info=True)
                continue
            if not call.is_empty:
                return InboundToolCall(call=call, origin=source.origin)
        return InboundToolCall(call=EMPTY_TOOL_CALL, origin=None)

    def should_forward(
        self,
        call: CanonicalToolCall,
        *,
        origin: ToolCallOrigin | None = None,
    ) -> ForwardDecision:
        if call.tool_name is None:
            return ForwardDecision(forwarded=False, key="", reason="empty")

        key = dedup_key(call.tool_name, call.tool_args)
        now = self._clock()

        with self._lock:
            last = self._last_forward
            if last is not None and last.key == key and now - last.at < self._window_seconds:
                LOGGER.warning("suppressing duplicate tool call within window key=%s", key)
                return ForwardDecision(forwarded=False, key=key, reason="duplicate")

            if (
                origin == "utterance"
                and self._last_structured_at is not None
                and now - self._last_structured_at < self._window_seconds
            ):
                LOGGER.info(
                    "suppressing utterance-derived tool call; structured call is authoritative "
                    "key=%s",
                    key,
                )
                return ForwardDecision(forwarded=False, key=key, reason="structured_preferred")

            self._last_forward = _ForwardRecord(key=key, at=now, origin=origin)
            if origin != "utterance":
                self._last_structured_at = now
            return ForwardDecision(forwarded=True, key=key)

    def reset(self) -> None:
        with self._lock:
            self._last_forward = None
            self._last_structured_at = None

from __future__ import annotations

import json
import logging
import re
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from backend.app.models.tool_contracts import (
    EMPTY_TOOL_CALL,
    CanonicalToolCall,
    LegacyCall,
    NestedCall,
    StructuredCall,
    ToolCallSource,
    ToolName,
    TranscriptCall,
    UtteranceCall,
    extract_title_from_args,
)
from backend.app.services.tool_arguments import (
    canonicalize_tool_name,
    coerce_arguments,
    is_tool_alias,
    strip_wrapping_quotes,
)
from backend.app.services.utterance_commands import (
    extract_command_from_speech,
    map_utterance_to_canonical_tool,
    normalize_speech,
)

LOGGER = logging.getLogger("demo_playback.tool_parser")

DEFAULT_NESTED_SEARCH_MAX_DEPTH = 6

_MISSING = object()
_POLITE_WORDS = re.compile(
    r"\b(?:please|kindly|can you|could you|would you|will you|the|this|that)\b"
)

_NAME_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "name"),
    ("data", "function", "name"),
    ("name",),
    ("function", "name"),
    ("data", "properties", "name"),
    ("data", "properties", "function", "name"),
    ("properties", "name"),
    ("properties", "function", "name"),
)
_ARGS_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "arguments"),
    ("data", "args"),
    ("data", "function", "arguments"),
    ("arguments",),
    ("args",),
    ("function", "arguments"),
    ("data", "properties", "arguments"),
    ("data", "properties", "args"),
    ("data", "properties", "function", "arguments"),
    ("properties", "arguments"),
    ("properties", "args"),
    ("properties", "function", "arguments"),
)
_DIRECT_NAME_PATHS: tuple[tuple[str, ...], ...] = (("name",), ("function", "name"))
_DIRECT_ARGS_PATHS: tuple[tuple[str, ...], ...] = (
    ("arguments",),
    ("args",),
    ("function", "arguments"),
)
_SPEECH_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "speech"),
    ("data", "properties", "speech"),
    ("speech",),
    ("properties", "speech"),
)


def normalize_event_type(raw_type: Any) -> str:
    if not isinstance(raw_type, str):
        return ""
    return re.sub(r"[.\-]", "_", raw_type.strip().lower())


def is_tool_call_type(normalized_type: str) -> bool:
    return (
        normalized_type in {"conversation_toolcall", "conversation_tool_call"}
        or normalized_type.endswith("_toolcall")
        or "tool_call" in normalized_type
    )


def is_transcription_type(normalized_type: str) -> bool:
    return "transcription" in normalized_type


def is_utterance_type(normalized_type: str) -> bool:
    return "utterance" in normalized_type


def read_event_type(event: Mapping[str, Any]) -> str:
    data = _as_mapping(event.get("data"))
    for candidate in (
        event.get("event_type"),
        event.get("type"),
        data.get("event_type"),
        data.get("type"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return normalize_event_type(candidate)
    return ""


def classify_event(
    event: Any,
    *,
    max_depth: int = DEFAULT_NESTED_SEARCH_MAX_DEPTH,
    nested_search: bool = True,
) -> ToolCallSource | None:
    """Decide which producer shape an inbound event has."""
    payload = _coerce_event(event)
    if payload is None:
        return None

    normalized_type = read_event_type(payload)

    if normalized_type == "tool_call":
        name = _first_present(payload, _DIRECT_NAME_PATHS)
        if name is not _MISSING:
            return LegacyCall(name=name, raw_args=_first_present(payload, _DIRECT_ARGS_PATHS))

    if is_tool_call_type(normalized_type):
        name = _first_present(payload, _NAME_PATHS)
        raw_args = _first_present(payload, _ARGS_PATHS)
        if name is _MISSING:
            found = _find_function_object(payload.get("data"), max_depth=max_depth)
            if found is not None:
                name, nested_args = found
                if raw_args is _MISSING:
                    raw_args = nested_args
        if name is _MISSING:
            return None
        return StructuredCall(name=name, raw_args=raw_args)

    if is_transcription_type(normalized_type):
        return _classify_transcript(payload)

    if is_utterance_type(normalized_type):
        speech = _first_present(payload, _SPEECH_PATHS)
        if not isinstance(speech, str):
            return None
        return UtteranceCall(speech=speech)

    if not nested_search:
        return None
    found = _search_nested_tool_call(payload, max_depth=max_depth)
    if found is None:
        return None
    name, raw_args = found
    return NestedCall(name=name, raw_args=raw_args)


def parse_tool_call_from_event(
    event: Any,
    *,
    text_fallback_enabled: bool = False,
    max_depth: int = DEFAULT_NESTED_SEARCH_MAX_DEPTH,
) -> CanonicalToolCall:
    """
    Normalize any inbound conversation event into a canonical tool call.

    Never raises: malformed or unrecognised events yield the empty call.
    """
    try:
        source = classify_event(event, max_depth=max_depth)
        if source is None:
            return EMPTY_TOOL_CALL
        return resolve_source(source, text_fallback_enabled=text_fallback_enabled)
    except Exception:
        LOGGER.warning("tool call parsing failed; treating event as empty", exc_info=True)
        return EMPTY_TOOL_CALL


def resolve_source(
    source: ToolCallSource,
    *,
    text_fallback_enabled: bool = False,
) -> CanonicalToolCall:
    if isinstance(source, UtteranceCall):
        if not text_fallback_enabled:
            LOGGER.debug("utterance text fallback disabled; ignoring utterance event")
            return EMPTY_TOOL_CALL
        call = extract_command_from_speech(source.speech)
    else:
        tool_name = canonicalize_tool_name(source.name)
        if tool_name is None:
            if source.name is not None:
                LOGGER.debug("unknown tool name ignored name=%s", source.name)
            return EMPTY_TOOL_CALL
        if is_tool_alias(source.name):
            args: dict[str, Any] = {}
        else:
            args = coerce_arguments(_none_if_missing(source.raw_args), tool_name)
        call = CanonicalToolCall(tool_name=tool_name, tool_args=args)

    return reinterpret_command_title(call)


def reinterpret_command_title(call: CanonicalToolCall) -> CanonicalToolCall:
    """Turn `fetch_video` whose "title" is really a control word into that control."""
    if call.tool_name != "fetch_video":
        return call
    control_tool = command_from_title(extract_title_from_args(call.tool_args))
    if control_tool is None:
        return call
    LOGGER.info("fetch_video title reinterpreted as control command tool=%s", control_tool)
    return CanonicalToolCall(tool_name=control_tool, tool_args={})


def command_from_title(title: str | None) -> ToolName | None:
    """Politeness words are dropped; negated phrasing never becomes a command."""
    if not title or not isinstance(title, str):
        return None
    normalized = normalize_speech(strip_wrapping_quotes(title))
    sanitized = " ".join(_POLITE_WORDS.sub(" ", normalized).split())
    if not sanitized:
        return None
    return canonicalize_tool_name(sanitized) or map_utterance_to_canonical_tool(sanitized)


def _classify_transcript(payload: Mapping[str, Any]) -> TranscriptCall | None:
    transcript = _as_mapping(payload.get("data")).get("transcript")
    if not isinstance(transcript, list):
        return None
    for message in reversed(transcript):
        if not isinstance(message, Mapping) or message.get("role") != "assistant":
            continue
        tool_calls = message.get("tool_calls")
        if not isinstance(tool_calls, list) or not tool_calls:
            continue
        tool_call = _as_mapping(tool_calls[-1])
        function = _as_mapping(tool_call.get("function"))
        return TranscriptCall(name=function.get("name"), raw_args=function.get("arguments"))
    return None


def _search_nested_tool_call(root: Any, *, max_depth: int) -> tuple[Any, Any] | None:
    """
    Breadth-first search for a `{name, arguments}`-shaped object.

    Compatibility shim for producers that wrap the tool call at arbitrary
    depth. Only names that map to a known tool count as a hit.
    """
    for node in _walk_mappings(root, max_depth=max_depth):
        name = node.get("name")
        if canonicalize_tool_name(name) is not None and ("arguments" in node or "args" in node):
            return name, node.get("arguments", node.get("args"))
        function = node.get("function")
        if isinstance(function, Mapping) and canonicalize_tool_name(function.get("name")):
            return function.get("name"), function.get("arguments")
    return None


def _find_function_object(root: Any, *, max_depth: int) -> tuple[Any, Any] | None:
    for node in _walk_mappings(root, max_depth=max_depth):
        function = node.get("function")
        if isinstance(function, Mapping) and isinstance(function.get("name"), str):
            return function["name"], function.get("arguments", _MISSING)
    return None


def _walk_mappings(root: Any, *, max_depth: int) -> Iterable[Mapping[str, Any]]:
    queue: deque[tuple[Any, int]] = deque([(root, 0)])
    while queue:
        node, depth = queue.popleft()
        if isinstance(node, Mapping):
            yield node
            children: Iterable[Any] = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        if depth >= max_depth:
            continue
        for child in children:
            if isinstance(child, (Mapping, list)):
                queue.append((child, depth + 1))


def _first_present(payload: Mapping[str, Any], paths: Iterable[tuple[str, ...]]) -> Any:
    for path in paths:
        value = _read_path(payload, path)
        if value is not _MISSING and value is not None:
            return value
    return _MISSING


def _read_path(payload: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    current: Any = payload
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


def _coerce_event(event: Any) -> Mapping[str, Any] | None:
    if isinstance(event, Mapping):
        return event
    if isinstance(event, str | bytes):
        try:
            decoded = json.loads(event)
        except ValueError:
            return None
        return decoded if isinstance(decoded, Mapping) else None
    return None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    return {}


def _none_if_missing(value: Any) -> Any:
    return None if value is _MISSING else value

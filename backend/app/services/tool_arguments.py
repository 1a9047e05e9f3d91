from __future__ import annotations

import json
import re
from typing import Any

from backend.app.models.tool_contracts import (
    CANONICAL_TOOLS,
    TITLE_ARG_KEYS,
    TITLE_TOOLS,
    ToolName,
)

_KEY_VALUE_PATTERN = re.compile(r"""([A-Za-z_][A-Za-z0-9_]*)\s*[:=]\s*(["'])(.+?)\2""")
_WRAPPING_QUOTES = ("\"", "'")

_TOOL_ALIASES: dict[str, ToolName] = {
    "pause": "pause_video",
    "hold": "pause_video",
    "hold on": "pause_video",
    "pause video": "pause_video",
    "pause the video": "pause_video",
    "resume": "play_video",
    "play": "play_video",
    "continue": "play_video",
    "unpause": "play_video",
    "start": "play_video",
    "start video": "play_video",
    "resume video": "play_video",
    "play video": "play_video",
    "play the video": "play_video",
    "next": "next_video",
    "skip": "next_video",
    "skip video": "next_video",
    "next video": "next_video",
    "close": "close_video",
    "exit": "close_video",
    "stop": "close_video",
    "stop video": "close_video",
    "end video": "close_video",
    "hide video": "close_video",
    "close video": "close_video",
    "close the video": "close_video",
}


def canonicalize_tool_name(name: Any) -> ToolName | None:
    """Map a canonical tool name or one of its short aliases to the canonical name."""
    if not isinstance(name, str):
        return None
    normalized = " ".join(name.strip().lower().split())
    if not normalized:
        return None
    if normalized in CANONICAL_TOOLS:
        return normalized  # type: ignore[return-value]
    return _TOOL_ALIASES.get(normalized)


def is_tool_alias(name: Any) -> bool:
    if not isinstance(name, str):
        return False
    return " ".join(name.strip().lower().split()) in _TOOL_ALIASES


def strip_wrapping_quotes(value: str) -> str:
    stripped = value.strip()
    if stripped[:1] in _WRAPPING_QUOTES:
        stripped = stripped[1:]
    if stripped[-1:] in _WRAPPING_QUOTES:
        stripped = stripped[:-1]
    return stripped.strip()


def coerce_arguments(raw_args: Any, tool_name: ToolName) -> dict[str, Any]:
    """
    Turn whatever the producer sent as arguments into a dict.

    Cascade, first success wins:
    1. dicts are used as-is;
    2. strict JSON (a JSON string becomes the title);
    3. `key:"value"` pairs;
    4. the whole string as a bare title, for title-taking tools only.
    Blank input and anything unusable become `{}`.
    """
    if isinstance(raw_args, dict):
        return dict(raw_args)
    if not isinstance(raw_args, str):
        return {}

    text = raw_args.strip()
    if not text:
        return {}

    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    else:
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, str):
            return _title_args(strip_wrapping_quotes(parsed), tool_name)
        if parsed is None or isinstance(parsed, bool | list):
            return {}
        # Bare numbers ("2024") fall through to the title fallback.

    pairs = _KEY_VALUE_PATTERN.findall(text)
    if pairs:
        args: dict[str, Any] = {key: value for key, _, value in pairs}
        if "title" not in args:
            for alias in TITLE_ARG_KEYS:
                if alias in args:
                    args["title"] = args[alias]
                    break
        return args

    return _title_args(strip_wrapping_quotes(text), tool_name)


def _title_args(title: str, tool_name: ToolName) -> dict[str, Any]:
    if tool_name not in TITLE_TOOLS or not title:
        return {}
    return {"title": title}

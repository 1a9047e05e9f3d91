"""
Best-effort extraction of playback commands from free-form agent speech.

This is a compensating heuristic for conversations where the platform emits
an utterance but no structured tool call. Structured calls stay authoritative;
see `ToolCallDeduplicator` for how the two paths are arbitrated.
"""

from __future__ import annotations

import logging
import re

from backend.app.models.tool_contracts import (
    EMPTY_TOOL_CALL,
    CanonicalToolCall,
    ToolName,
)
from backend.app.services.tool_arguments import (
    canonicalize_tool_name,
    coerce_arguments,
    is_tool_alias,
)

LOGGER = logging.getLogger("demo_playback.utterance")

_FUNCTION_CALL_PATTERN = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(([^)]*)\)")
_COMMAND_KEYWORDS = (
    r"pause|hold|close|exit|stop|end|hide|play|resume|continue|unpause|start|next|skip"
)
# A negation marker followed by a command keyword within two intervening tokens.
_NEGATION_PATTERN = re.compile(
    rf"\b(?:don't|dont|do not|not yet|not|never|no)\s+"
    rf"(?:[\w']+\s+){{0,2}}?(?:{_COMMAND_KEYWORDS})\b"
)
_TRAILING_PUNCTUATION = re.compile(r"[.!?]+$")

# Checked in order; the first family that matches wins.
_KEYWORD_FAMILIES: tuple[tuple[ToolName, re.Pattern[str]], ...] = (
    ("pause_video", re.compile(r"\b(?:pause|hold on)\b")),
    (
        "play_video",
        re.compile(r"\b(?:resume|play|continue|unpause)\b|\bstart\s+(?:the\s+)?video\b"),
    ),
    ("next_video", re.compile(r"\b(?:next|skip)\b")),
    (
        "close_video",
        re.compile(r"\b(?:close|exit)\b|\b(?:stop|end|hide)\s+(?:the\s+)?video\b"),
    ),
)


def normalize_speech(speech: str) -> str:
    text = speech.replace("’", "'").strip().lower()
    text = _TRAILING_PUNCTUATION.sub("", text)
    return " ".join(text.split())


def has_negated_command(text: str) -> bool:
    return _NEGATION_PATTERN.search(text) is not None


def map_utterance_to_canonical_tool(speech: str | None) -> ToolName | None:
    """Map a spoken phrase to a control tool, ignoring negated commands."""
    if not speech or not isinstance(speech, str):
        return None
    text = normalize_speech(speech)

    direct = canonicalize_tool_name(text)
    if direct is not None:
        return direct

    if has_negated_command(text):
        return None

    for tool_name, pattern in _KEYWORD_FAMILIES:
        if pattern.search(text):
            return tool_name
    return None


def extract_command_from_speech(speech: str | None) -> CanonicalToolCall:
    if not speech or not isinstance(speech, str):
        return EMPTY_TOOL_CALL

    match = _FUNCTION_CALL_PATTERN.search(speech)
    if match is not None:
        raw_name, raw_args = match.group(1), match.group(2)
        tool_name = canonicalize_tool_name(raw_name)
        if tool_name is not None:
            if tool_name in {"fetch_video", "show_trial_cta"} and not is_tool_alias(raw_name):
                # Unquoted or malformed content is still accepted as a literal title.
                args = coerce_arguments(raw_args, tool_name)
            else:
                args = {}
            LOGGER.debug("utterance function-call syntax matched tool=%s", tool_name)
            return CanonicalToolCall(tool_name=tool_name, tool_args=args)

    tool_name = map_utterance_to_canonical_tool(speech)
    if tool_name is None:
        return EMPTY_TOOL_CALL
    LOGGER.debug("utterance keyword matched tool=%s", tool_name)
    return CanonicalToolCall(tool_name=tool_name, tool_args={})

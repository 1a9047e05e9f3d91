from __future__ import annotations

import pytest

from backend.app.models.tool_contracts import EMPTY_TOOL_CALL
from backend.app.services.utterance_commands import (
    extract_command_from_speech,
    has_negated_command,
    map_utterance_to_canonical_tool,
)


@pytest.mark.parametrize(
    ("speech", "expected"),
    [
        ("Pause.", "pause_video"),
        ("Hold on a second, I'll pause the video.", "pause_video"),
        ("Okay, resuming now. Let me resume the video.", "play_video"),
        ("Let's continue where we left off!", "play_video"),
        ("I'll start the video for you", "play_video"),
        ("Sure, let me skip to the next one", "next_video"),
        ("I'll close the video now", "close_video"),
        ("Let me stop the video here", "close_video"),
        ("Exit", "close_video"),
    ],
)
def test_keyword_families_map_to_control_tools(speech: str, expected: str) -> None:
    assert map_utterance_to_canonical_tool(speech) == expected


@pytest.mark.parametrize(
    "speech",
    [
        "Don't pause the video yet",
        "We will not close it",
        "Let's not skip this part",
        "I never stop learning",
        "Welcome to the product tour!",
        "",
    ],
)
def test_negated_or_unrelated_speech_maps_to_nothing(speech: str) -> None:
    assert map_utterance_to_canonical_tool(speech) is None


def test_negation_allows_two_intervening_words() -> None:
    assert has_negated_command("do not ever really pause")
    assert not has_negated_command("no worries, i will pause it")


def test_pause_family_wins_over_later_families() -> None:
    assert map_utterance_to_canonical_tool("Pause, then we can play the next one") == "pause_video"


def test_typographic_apostrophe_negation_is_recognized() -> None:
    assert map_utterance_to_canonical_tool("I won’t… don’t close the video") is None


def test_function_call_syntax_with_quoted_title() -> None:
    call = extract_command_from_speech('Calling fetch_video("Intro to Widgets") now')

    assert call.tool_name == "fetch_video"
    assert call.tool_args == {"title": "Intro to Widgets"}


def test_function_call_syntax_with_unquoted_title() -> None:
    call = extract_command_from_speech("fetch_video(Intro to Widgets)")

    assert call.tool_args == {"title": "Intro to Widgets"}


def test_function_call_syntax_for_control_tool_has_empty_args() -> None:
    call = extract_command_from_speech("close_video()")

    assert call.tool_name == "close_video"
    assert call.tool_args == {}


def test_unknown_function_call_falls_back_to_keywords() -> None:
    call = extract_command_from_speech("print(x) and then pause")

    assert call.tool_name == "pause_video"


def test_no_command_yields_empty_call() -> None:
    assert extract_command_from_speech("This product saves you hours.") == EMPTY_TOOL_CALL
    assert extract_command_from_speech(None) == EMPTY_TOOL_CALL

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

ToolName = Literal[
    "fetch_video",
    "pause_video",
    "play_video",
    "next_video",
    "close_video",
    "show_trial_cta",
]

CANONICAL_TOOLS: frozenset[str] = frozenset(get_args(ToolName))

# Tools whose single positional argument is a video title.
TITLE_TOOLS: frozenset[str] = frozenset({"fetch_video"})

TITLE_ARG_KEYS: tuple[str, ...] = ("title", "video_title", "videoName", "video_name")

ToolCallOrigin = Literal["structured", "transcript", "utterance", "legacy", "nested"]


@dataclass(frozen=True)
class CanonicalToolCall:
    tool_name: ToolName | None
    tool_args: dict[str, Any] | None

    def __post_init__(self) -> None:
        if self.tool_name is None and self.tool_args is not None:
            raise ValueError("tool_args must be None when tool_name is None")

    @property
    def is_empty(self) -> bool:
        return self.tool_name is None

    def as_dict(self) -> dict[str, Any]:
        return {"toolName": self.tool_name, "toolArgs": self.tool_args}


EMPTY_TOOL_CALL = CanonicalToolCall(tool_name=None, tool_args=None)


def extract_title_from_args(args: Any) -> str | None:
    if not args:
        return None
    if isinstance(args, str):
        return args
    if isinstance(args, dict):
        for key in TITLE_ARG_KEYS:
            value = args.get(key)
            if value is not None:
                return value if isinstance(value, str) else None
    return None


# Shapes produced by the event classifier. Each carries the raw name and the
# raw (uncoerced) arguments exactly as the producer emitted them.


@dataclass(frozen=True)
class StructuredCall:
    name: Any
    raw_args: Any
    origin: ToolCallOrigin = "structured"


@dataclass(frozen=True)
class TranscriptCall:
    name: Any
    raw_args: Any
    origin: ToolCallOrigin = "transcript"


@dataclass(frozen=True)
class UtteranceCall:
    speech: str
    origin: ToolCallOrigin = "utterance"


@dataclass(frozen=True)
class LegacyCall:
    name: Any
    raw_args: Any
    origin: ToolCallOrigin = "legacy"


@dataclass(frozen=True)
class NestedCall:
    name: Any
    raw_args: Any
    origin: ToolCallOrigin = "nested"


ToolCallSource = StructuredCall | TranscriptCall | UtteranceCall | LegacyCall | NestedCall


class ToolParameter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    description: str


class ToolCatalogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: ToolName
    description: str
    parameters: dict[str, ToolParameter] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    def as_function_definition(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {
                        key: parameter.model_dump() for key, parameter in self.parameters.items()
                    },
                    "required": list(self.required),
                },
            },
        }


TOOL_CATALOG: tuple[ToolCatalogEntry, ...] = (
    ToolCatalogEntry(
        name="fetch_video",
        description=(
            "Display and play a demo video by title. Use this to show product videos "
            "during the demo."
        ),
        parameters={
            "title": ToolParameter(
                type="string",
                description="The exact title of the video to fetch and display",
            )
        },
        required=["title"],
    ),
    ToolCatalogEntry(name="pause_video", description="Pause the currently playing video"),
    ToolCatalogEntry(name="play_video", description="Resume playing a paused video"),
    ToolCatalogEntry(
        name="next_video",
        description="Skip to the next video in the demo sequence",
    ),
    ToolCatalogEntry(
        name="close_video",
        description="Close the video player and return to the conversation",
    ),
    ToolCatalogEntry(
        name="show_trial_cta",
        description="Show the call-to-action banner to start a trial",
        parameters={
            "cta_title": ToolParameter(type="string", description="Optional banner title"),
            "cta_message": ToolParameter(type="string", description="Optional banner message"),
            "cta_button_text": ToolParameter(
                type="string", description="Optional button label"
            ),
            "cta_button_url": ToolParameter(
                type="string", description="Optional button destination URL"
            ),
        },
    ),
)

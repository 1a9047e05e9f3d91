from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Literal

SuppressReason = Literal["close", "pause", "resume"]
AlertType = Literal["error", "info", "success"]

CTA_OVERRIDE_KEYS: tuple[str, ...] = (
    "cta_title",
    "cta_message",
    "cta_button_text",
    "cta_button_url",
)


class UIPhase(StrEnum):
    IDLE = "IDLE"
    CONVERSATION = "CONVERSATION"
    VIDEO_PLAYING = "VIDEO_PLAYING"


@dataclass(frozen=True)
class Alert:
    type: AlertType
    message: str


@dataclass(frozen=True)
class CtaOverrides:
    cta_title: str | None = None
    cta_message: str | None = None
    cta_button_text: str | None = None
    cta_button_url: str | None = None

    @classmethod
    def from_mapping(cls, values: Any) -> CtaOverrides | None:
        if not isinstance(values, dict):
            return None
        picked = {
            key: value.strip()
            for key in CTA_OVERRIDE_KEYS
            if isinstance((value := values.get(key)), str) and value.strip()
        }
        if not picked:
            return None
        return cls(**picked)


@dataclass(frozen=True)
class PlaybackSession:
    """Single owned playback state of one demo experience."""

    phase: UIPhase = UIPhase.IDLE
    current_video_title: str | None = None
    current_video_index: int | None = None
    playing_video_url: str | None = None
    paused_position_seconds: float = 0.0
    suppress_until: float = 0.0
    suppress_reason: SuppressReason | None = None
    show_cta: bool = False
    cta_overrides: CtaOverrides | None = None
    alert: Alert | None = None

    @property
    def has_loaded_video(self) -> bool:
        return self.current_video_title is not None and self.playing_video_url is not None

    def is_suppressed(self, now: float) -> bool:
        return now < self.suppress_until

    def snapshot(self, *, now: float | None = None) -> dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        if now is not None:
            data["suppression_active"] = self.is_suppressed(now)
        return data


# Side effects requested by the coordinator. The UI (or the API caller)
# applies them in order; `TrackVideoView` is fire-and-forget.


@dataclass(frozen=True)
class LoadVideo:
    url: str
    title: str | None
    index: int | None
    kind: str = field(default="load_video", init=False)


@dataclass(frozen=True)
class Play:
    kind: str = field(default="play", init=False)


@dataclass(frozen=True)
class Pause:
    kind: str = field(default="pause", init=False)


@dataclass(frozen=True)
class Seek:
    position_seconds: float
    kind: str = field(default="seek", init=False)


@dataclass(frozen=True)
class CloseVideo:
    kind: str = field(default="close_video", init=False)


@dataclass(frozen=True)
class ShowCta:
    delay_seconds: float = 0.0
    overrides: CtaOverrides | None = None
    kind: str = field(default="show_cta", init=False)


@dataclass(frozen=True)
class HideCta:
    kind: str = field(default="hide_cta", init=False)


@dataclass(frozen=True)
class ShowAlert:
    alert: Alert
    kind: str = field(default="show_alert", init=False)


@dataclass(frozen=True)
class HideAlert:
    kind: str = field(default="hide_alert", init=False)


@dataclass(frozen=True)
class TrackVideoView:
    title: str
    kind: str = field(default="track_video_view", init=False)


SideEffect = (
    LoadVideo
    | Play
    | Pause
    | Seek
    | CloseVideo
    | ShowCta
    | HideCta
    | ShowAlert
    | HideAlert
    | TrackVideoView
)


def serialize_effect(effect: SideEffect) -> dict[str, Any]:
    return asdict(effect)

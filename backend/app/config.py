from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".demo-playback"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "toolcall_text_fallback",
    "e2e_test_mode",
    "tracking_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{DEMO_PLAYBACK_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    This class is the single source of truth for config options:
    - what each option controls,
    - where it comes from (`DEMO_PLAYBACK_*`),
    - and what its default is.
    """

    model_config = SettingsConfigDict(
        env_prefix="DEMO_PLAYBACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # Tool-call parsing.
    toolcall_text_fallback: bool = Field(
        default=False,
        description=(
            "Parse playback commands out of free-form utterances when the platform event "
            "carries no structured tool call."
        ),
    )
    e2e_test_mode: bool = Field(
        default=False,
        description="End-to-end test mode. Also enables the utterance text fallback.",
    )
    nested_search_max_depth: int = Field(
        default=6,
        ge=1,
        le=16,
        description="Maximum depth of the recursive search for arbitrarily wrapped tool calls.",
    )

    # Playback coordination windows.
    suppression_window_ms: int = Field(
        default=1_500,
        ge=100,
        le=10_000,
        description="How long fetch_video is ignored after a local pause, resume, or close.",
    )
    dedup_window_ms: int = Field(
        default=1_500,
        ge=100,
        le=10_000,
        description="Interval during which an identical forwarded tool call is dropped.",
    )
    cta_reveal_delay_ms: int = Field(
        default=100,
        ge=0,
        le=5_000,
        description="Delay before the CTA banner is revealed after a video is closed.",
    )

    # Storage collaborator.
    storage_base_url: str = Field(
        default="http://127.0.0.1:8000/storage/demo-videos",
        description="Base URL used when signing storage references into playable URLs.",
    )
    storage_signing_secret: str | None = Field(
        default=None,
        description="HMAC secret for signed video URLs. Signing fails when unset.",
    )
    signed_url_ttl_seconds: int = Field(
        default=3_600,
        ge=60,
        le=86_400,
        description="Lifetime of signed video URLs.",
    )

    # Webhook ingress and tracking.
    webhook_token: str | None = Field(
        default=None,
        description="Shared token expected in the `t` query parameter of webhook calls.",
    )
    tracking_enabled: bool = Field(
        default=True,
        description="Record video views and CTA impressions for analytics.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @property
    def text_fallback_active(self) -> bool:
        return self.toolcall_text_fallback or self.e2e_test_mode

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("DEMO_PLAYBACK_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("DEMO_PLAYBACK_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("storage_base_url", mode="before")
    @classmethod
    def _normalize_storage_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("DEMO_PLAYBACK_STORAGE_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("DEMO_PLAYBACK_STORAGE_BASE_URL must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("storage_signing_secret", "webhook_token", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)

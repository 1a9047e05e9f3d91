from __future__ import annotations

import hmac
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.config import AppSettings
from backend.app.dependencies import get_session_registry, get_settings
from backend.app.models.playback_contracts import serialize_effect
from backend.app.models.tool_contracts import (
    TOOL_CATALOG,
    CanonicalToolCall,
    ToolCallOrigin,
    ToolCatalogEntry,
    ToolName,
)
from backend.app.services.demo_session_service import (
    DemoSession,
    DemoSessionRegistry,
    SessionOutcome,
    UnknownDemoError,
)
from backend.app.services.tool_parser import parse_tool_call_from_event

router = APIRouter()


class ParsedToolCall(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    tool_name: ToolName | None = Field(default=None, alias="toolName")
    tool_args: dict[str, Any] | None = Field(default=None, alias="toolArgs")

    @classmethod
    def from_call(cls, call: CanonicalToolCall) -> ParsedToolCall:
        return cls(tool_name=call.tool_name, tool_args=call.tool_args)


class SessionStartRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    titles: list[str] = Field(default_factory=list)
    storage_references: dict[str, str] = Field(default_factory=dict)
    conversation_id: str | None = None


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    demo_id: str
    conversation_id: str | None
    titles: list[str]
    phase: Literal["IDLE", "CONVERSATION", "VIDEO_PLAYING"]
    current_video_title: str | None
    current_video_index: int | None
    playing_video_url: str | None
    paused_position_seconds: float
    suppress_until: float
    suppress_reason: str | None
    suppression_active: bool
    show_cta: bool
    cta_overrides: dict[str, str | None] | None
    alert: dict[str, str] | None


class AppEventRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event: Any
    current_position_seconds: float | None = Field(default=None, ge=0)


class SessionEventResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    forwarded: bool
    reason: str | None = None
    origin: ToolCallOrigin | None = None
    call: ParsedToolCall | None = None
    effects: list[dict[str, Any]] = Field(default_factory=list)
    session: SessionSnapshot


class WebhookResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["relayed", "tracked", "ignored"]
    demo_id: str | None = None
    tool_name: str | None = None
    broadcast_event: str | None = None


def _event_response(
    session: DemoSession,
    outcome: SessionOutcome,
    *,
    forwarded: bool,
) -> SessionEventResponse:
    decision = outcome.decision
    reason = decision.reason if decision is not None else None
    if outcome.call is not None and outcome.call.is_empty:
        reason = "empty"
    return SessionEventResponse(
        forwarded=forwarded,
        reason=reason,
        origin=outcome.origin,
        call=ParsedToolCall.from_call(outcome.call) if outcome.call is not None else None,
        effects=[serialize_effect(effect) for effect in outcome.effects],
        session=SessionSnapshot.model_validate(session.snapshot()),
    )


@router.get(
    "/tools", response_model=list[ToolCatalogEntry], tags=["tools"], operation_id="list_tools"
)
def list_tools() -> list[ToolCatalogEntry]:
    return list(TOOL_CATALOG)


@router.post(
    "/tools/parse",
    response_model=ParsedToolCall,
    tags=["tools"],
    operation_id="parse_tool_call",
)
def parse_tool_call(
    event: Annotated[Any, Body()],
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> ParsedToolCall:
    call = parse_tool_call_from_event(
        event,
        text_fallback_enabled=settings.text_fallback_active,
        max_depth=settings.nested_search_max_depth,
    )
    return ParsedToolCall.from_call(call)


@router.put(
    "/demos/{demo_id}/session",
    response_model=SessionSnapshot,
    tags=["sessions"],
    operation_id="start_demo_session",
)
def start_demo_session(
    demo_id: str,
    request: SessionStartRequest,
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
) -> SessionSnapshot:
    session = registry.start_session(
        demo_id,
        titles=request.titles,
        storage_references=request.storage_references,
        conversation_id=request.conversation_id,
    )
    return SessionSnapshot.model_validate(session.snapshot())


@router.get(
    "/demos/{demo_id}/session",
    response_model=SessionSnapshot,
    tags=["sessions"],
    operation_id="get_demo_session",
)
def get_demo_session(
    demo_id: str,
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
) -> SessionSnapshot:
    session = registry.require(demo_id)
    return SessionSnapshot.model_validate(session.snapshot())


@router.delete(
    "/demos/{demo_id}/session",
    status_code=204,
    tags=["sessions"],
    operation_id="end_demo_session",
)
def end_demo_session(
    demo_id: str,
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
) -> None:
    if not registry.end_session(demo_id):
        raise UnknownDemoError(demo_id)


@router.post(
    "/demos/{demo_id}/events",
    response_model=SessionEventResponse,
    tags=["sessions"],
    operation_id="receive_app_message",
)
def receive_app_message(
    demo_id: str,
    request: AppEventRequest,
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
) -> SessionEventResponse:
    session = registry.require(demo_id)
    context_tokens = bind_contextvars(demo_id=demo_id)
    try:
        outcome = session.receive_app_message(
            request.event,
            current_position_seconds=request.current_position_seconds,
        )
    finally:
        reset_contextvars(**context_tokens)
    forwarded = outcome.decision is not None and outcome.decision.forwarded
    return _event_response(session, outcome, forwarded=forwarded)


@router.post(
    "/demos/{demo_id}/broadcasts/{event_name}",
    response_model=SessionEventResponse,
    tags=["sessions"],
    operation_id="receive_broadcast",
)
def receive_broadcast(
    demo_id: str,
    event_name: str,
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
    payload: Annotated[dict[str, Any] | None, Body()] = None,
) -> SessionEventResponse:
    session = registry.require(demo_id)
    outcome = session.receive_broadcast(event_name, payload)
    return _event_response(session, outcome, forwarded=bool(outcome.effects))


@router.post(
    "/demos/{demo_id}/player/ended",
    response_model=SessionEventResponse,
    tags=["sessions"],
    operation_id="video_ended",
)
def video_ended(
    demo_id: str,
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
) -> SessionEventResponse:
    session = registry.require(demo_id)
    outcome = session.handle_video_ended()
    return _event_response(session, outcome, forwarded=True)


@router.post(
    "/demos/{demo_id}/alert/dismiss",
    response_model=SessionEventResponse,
    tags=["sessions"],
    operation_id="dismiss_alert",
)
def dismiss_alert(
    demo_id: str,
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
) -> SessionEventResponse:
    session = registry.require(demo_id)
    outcome = session.dismiss_alert()
    return _event_response(session, outcome, forwarded=bool(outcome.effects))


@router.post(
    "/webhooks/conversation",
    response_model=WebhookResponse,
    tags=["webhooks"],
    operation_id="conversation_webhook",
)
def conversation_webhook(
    event: Annotated[dict[str, Any], Body()],
    settings: Annotated[AppSettings, Depends(get_settings)],
    registry: Annotated[DemoSessionRegistry, Depends(get_session_registry)],
    t: Annotated[str | None, Query()] = None,
) -> WebhookResponse:
    expected = settings.webhook_token
    if expected is None:
        raise HTTPException(status_code=503, detail="Webhook token is not configured.")
    if t is None or not hmac.compare_digest(t, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook token.")

    outcome = registry.receive_webhook(event)
    return WebhookResponse(
        status=outcome.status,
        demo_id=outcome.demo_id,
        tool_name=outcome.tool_name,
        broadcast_event=outcome.broadcast_event,
    )

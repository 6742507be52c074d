"""
Voice API.

Text-in entry point to the pipeline plus read/write access to history, the
live context, preferences, usage statistics and emitted events.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from logging_setup import get_logger, Component
from observability.event_store import event_store
from voice_commerce.errors import PreferencesValidationError
from voice_commerce.models import CommandResult
from voice_commerce.pipeline import VoiceCommandPipeline

router = APIRouter(prefix="/voice", tags=["voice"])
logger = get_logger(Component.CONTROL_API)


def get_pipeline(request: Request) -> VoiceCommandPipeline:
    return request.app.state.pipeline


class CommandRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Utterance as recognized")
    confidence: float = Field(1.0, ge=0.0, le=1.0, description="Recognizer confidence")


class SuggestionOut(BaseModel):
    text: str
    intent: str
    similarity: float


class ExecutionOut(BaseModel):
    success: bool
    message: str
    action: str
    data: Dict[str, Any] = Field(default_factory=dict)


class CommandOut(BaseModel):
    id: str
    original_text: str
    normalized_text: str
    language: str
    intent: Optional[str] = None
    entities: Dict[str, Any] = Field(default_factory=dict)
    confidence: float
    category: Optional[str] = None
    pattern: Optional[str] = None
    dialect: bool = False
    suggestions: List[SuggestionOut] = Field(default_factory=list)
    execution: Optional[ExecutionOut] = None
    processing_ms: int = 0
    timestamp: str

    @classmethod
    def from_result(cls, result: CommandResult) -> "CommandOut":
        execution = result.execution
        return cls(
            id=result.id,
            original_text=result.original_text,
            normalized_text=result.normalized_text,
            language=result.language,
            intent=result.intent,
            entities=result.entities,
            confidence=result.confidence,
            category=result.category,
            pattern=result.pattern,
            dialect=result.dialect,
            suggestions=[SuggestionOut(text=s.text, intent=s.intent, similarity=s.similarity) for s in result.suggestions],
            execution=ExecutionOut(
                success=execution.success,
                message=execution.message,
                action=execution.action,
                data=execution.data,
            ) if execution else None,
            processing_ms=result.processing_ms,
            timestamp=result.timestamp.isoformat(),
        )


def _parse_ts(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        # "+" in a query string may arrive as a space
        cleaned = value.replace(" ", "+").replace("Z", "+00:00")
        if "+" not in cleaned and "-" not in cleaned[-6:]:
            cleaned += "+00:00"
        return datetime.fromisoformat(cleaned)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} timestamp: {value}")


@router.post("/commands", response_model=CommandOut)
async def process_command(req: CommandRequest, pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> CommandOut:
    result = await pipeline.process_command(req.text, req.confidence)
    return CommandOut.from_result(result)


@router.get("/history", response_model=List[CommandOut])
async def get_history(
    limit: int = Query(50, ge=1, le=50),
    pipeline: VoiceCommandPipeline = Depends(get_pipeline),
) -> List[CommandOut]:
    """Processed commands, most recent first."""
    return [CommandOut.from_result(r) for r in pipeline.history[:limit]]


@router.get("/context")
async def get_context(pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> dict:
    context = pipeline.live_context
    return {"context": context.to_dict() if context else None}


@router.delete("/context")
async def clear_context(pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> dict:
    previous = pipeline.context.clear(reason="api")
    return {"cleared": previous.type.value if previous else None}


@router.get("/preferences")
async def get_preferences(pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> dict:
    return pipeline.preferences.export()


@router.patch("/preferences")
async def update_preferences(changes: Dict[str, Any], pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> dict:
    """Partial update (camelCase or snake_case keys); 422 with field errors when invalid."""
    result = pipeline.preferences.update(changes)
    if not result.ok:
        raise HTTPException(status_code=422, detail={"errors": [e.to_dict() for e in result.errors]})
    return pipeline.preferences.export()


@router.post("/preferences/import")
async def import_preferences(document: Dict[str, Any], pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> dict:
    """Replace preferences with an exported record (any schema version) or a bare preferences mapping."""
    try:
        pipeline.preferences.import_(document)
    except PreferencesValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": [err.to_dict() for err in e.errors]}) from e
    logger.info("Preferences imported over API", schema_version=document.get("schemaVersion"))
    return pipeline.preferences.export()


@router.post("/preferences/flush")
async def flush_preferences(pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> dict:
    written = await pipeline.preferences.flush()
    return {"written": written}


@router.post("/preferences/reset")
async def reset_preferences(
    keep_statistics: bool = Query(False),
    pipeline: VoiceCommandPipeline = Depends(get_pipeline),
) -> dict:
    pipeline.preferences.reset(keep_statistics=keep_statistics)
    logger.info("Preferences reset over API", keep_statistics=keep_statistics)
    return pipeline.preferences.export()


@router.get("/statistics")
async def get_statistics(pipeline: VoiceCommandPipeline = Depends(get_pipeline)) -> dict:
    return pipeline.preferences.usage_statistics()


@router.get("/events")
async def get_events(
    event_type: Optional[str] = Query(None, description="Event type, or a family prefix ending in '.'"),
    component: Optional[str] = Query(None),
    since: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    until: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    correlation_id: Optional[str] = Query(None, description="Command id; selects the events of one command"),
    pipeline: VoiceCommandPipeline = Depends(get_pipeline),
) -> dict:
    events = event_store.query(
        session_id=pipeline.session_id,
        event_type=event_type,
        component=component,
        since=_parse_ts(since, "since"),
        until=_parse_ts(until, "until"),
        limit=limit,
        correlation_id=correlation_id,
    )
    return {"session_id": pipeline.session_id, "events": events, "count": len(events)}

from __future__ import annotations

import json
from collections import Counter

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from deepresearch.agents.research_engine import DeepResearchEngine, get_engine
from deepresearch.models.errors import (
    ReportGenerationError,
    ReportNotFoundError,
    SessionNotFoundError,
    UnsupportedExportFormatError,
)
from deepresearch.models.research import SessionDetail, VerificationStatus
from deepresearch.models.schemas import (
    DeepDiveRequest,
    ResearchStartRequest,
    ResearchStartResponse,
)
from deepresearch.services import logger as log_service

router = APIRouter(prefix="/api/research", tags=["research"])

SESSION_NOT_FOUND = "Research session not found"


async def _require_session(engine: DeepResearchEngine, session_id: str) -> SessionDetail:
    detail = await engine.get_session(session_id)
    if detail is None:
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND)
    return detail


def _parse_last_event_id(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@router.post("/start", response_model=ResearchStartResponse, status_code=201)
async def start_research(
    request: ResearchStartRequest,
    engine: DeepResearchEngine = Depends(get_engine),
):
    """Start a research session in the background and return it immediately."""
    config = request.config.to_config() if request.config else None
    session = await engine.start_research(
        request.query,
        request.project_id,
        config=config,
        user_id=request.user_id,
    )
    log_service.log_event(
        event_type="research_started",
        message="Research session started",
        session_id=session.id,
        query=request.query[:100],
    )
    return ResearchStartResponse(
        session_id=session.id,
        query=session.query,
        status=session.status.value,
        config=session.config.to_dict(),
        created_at=session.created_at,
    )


@router.get("/sessions")
async def list_sessions(
    project_id: str,
    user_id: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    engine: DeepResearchEngine = Depends(get_engine),
):
    sessions = await engine.list_sessions(project_id, user_id=user_id, limit=limit, offset=offset)
    return {
        "data": [s.to_dict() for s in sessions],
        "count": len(sessions),
        "pagination": {"limit": limit, "offset": offset},
    }


@router.get("/{session_id}")
async def get_session(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    detail = await _require_session(engine, session_id)
    return {"data": detail.to_dict()}


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    if not await engine.delete_session(session_id):
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND)
    return Response(status_code=204)


@router.get("/{session_id}/stream")
async def stream_research(
    session_id: str,
    request: Request,
    last_event_id: int | None = None,
    engine: DeepResearchEngine = Depends(get_engine),
):
    """SSE endpoint that replays and follows a session's events."""
    await _require_session(engine, session_id)
    cursor = last_event_id
    if cursor is None:
        cursor = _parse_last_event_id(request.headers.get("last-event-id"))

    async def event_generator():
        yield {
            "event": "connected",
            "data": json.dumps({"message": "Connected to research stream"}),
        }
        try:
            async for event in engine.stream_research(session_id, cursor):
                yield {
                    "event": event.event.value,
                    "id": str(event.id),
                    "data": json.dumps(event.to_dict(), default=str),
                }
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Research stream failed",
                session_id=session_id,
                error=str(e),
            )
            yield {"event": "error", "data": json.dumps({"error": str(e)})}
            return
        yield {
            "event": "complete",
            "data": json.dumps({"message": "Research stream completed"}),
        }

    return EventSourceResponse(event_generator())


@router.post("/{session_id}/deep-dive", status_code=202)
async def deep_dive(
    session_id: str,
    request: DeepDiveRequest,
    engine: DeepResearchEngine = Depends(get_engine),
):
    try:
        await engine.deep_dive(session_id, request.question)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND)
    return {
        "data": {
            "message": "Deep dive started",
            "session_id": session_id,
            "question": request.question,
        }
    }


@router.get("/{session_id}/facts")
async def get_facts(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    detail = await _require_session(engine, session_id)
    facts = sorted(detail.facts, key=lambda f: f.confidence, reverse=True)
    by_status = Counter(VerificationStatus(f.verification_status).value for f in facts)
    return {
        "data": [f.to_dict() for f in facts],
        "count": len(facts),
        "stats": {status.value: by_status.get(status.value, 0) for status in VerificationStatus},
    }


@router.get("/{session_id}/graph")
async def get_graph(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    detail = await _require_session(engine, session_id)
    nodes = detail.knowledge_graph
    return {
        "data": {
            "nodes": [n.to_dict() for n in nodes],
            "stats": {
                "total_nodes": len(nodes),
                "by_type": dict(Counter(n.entity_type for n in nodes)),
            },
        }
    }


@router.get("/{session_id}/contradictions")
async def get_contradictions(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    detail = await _require_session(engine, session_id)
    contradictions = await engine.list_contradictions(session_id)
    contradicted = [
        f for f in detail.facts if f.verification_status == VerificationStatus.CONTRADICTED
    ]
    return {
        "data": [c.to_dict() for c in contradictions],
        "facts": [f.to_dict() for f in contradicted],
        "count": len(contradictions),
    }


@router.get("/{session_id}/sources")
async def get_sources(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    detail = await _require_session(engine, session_id)
    sources = sorted(detail.sources, key=lambda s: s.credibility.overall, reverse=True)
    scores = [s.credibility.overall for s in sources]
    return {
        "data": [s.to_dict() for s in sources],
        "count": len(sources),
        "stats": {
            "average_credibility": sum(scores) / len(scores) if scores else 0.0,
            "high_credibility": sum(1 for v in scores if v >= 0.8),
            "medium_credibility": sum(1 for v in scores if 0.5 <= v < 0.8),
            "low_credibility": sum(1 for v in scores if v < 0.5),
        },
    }


@router.get("/{session_id}/follow-ups")
async def get_follow_ups(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    detail = await _require_session(engine, session_id)
    return {
        "data": [q.question for q in detail.follow_ups],
        "count": len(detail.follow_ups),
    }


@router.get("/{session_id}/report")
async def get_report(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    detail = await _require_session(engine, session_id)
    if detail.report is None:
        raise HTTPException(status_code=404, detail="Report not generated yet")
    return {"data": detail.report.to_dict()}


@router.post("/{session_id}/report")
async def generate_report(session_id: str, engine: DeepResearchEngine = Depends(get_engine)):
    try:
        report, created = await engine.ensure_report(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND)
    except ReportGenerationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return JSONResponse(status_code=201 if created else 200, content={"data": report.to_dict()})


@router.get("/{session_id}/export/{export_format}")
async def export_report(
    session_id: str,
    export_format: str,
    engine: DeepResearchEngine = Depends(get_engine),
):
    try:
        body, content_type = await engine.export_report(session_id, export_format)
    except UnsupportedExportFormatError as e:
        raise HTTPException(status_code=501 if e.known else 400, detail=str(e))
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND)
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not generated yet")

    return Response(
        content=body,
        media_type=content_type,
        headers={
            "Content-Disposition": f'attachment; filename="research-report.{export_format.lower()}"'
        },
    )

"""HTTP front end for the Pilot chat orchestrator."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import Response
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..orchestrator.loop import ChatOrchestrator, LoopState
from ..tools.catalog import ToolCatalog
from .types import ChatRequest, ChatResponse, CreateSessionRequest
from .ui import detect_language, suggestions_for, ui_payload

logger = logging.getLogger(__name__)


def _json_response(status: int, payload: dict[str, Any]) -> Response:
    data = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
    return Response(
        content=data,
        status_code=status,
        media_type="application/json; charset=utf-8",
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


async def _read_json_dict(request: Request, *, required: bool = False) -> tuple[dict[str, Any] | None, Response | None]:
    raw = await request.body()
    if not raw:
        if required:
            return None, _json_response(400, {"error": "missing_body"})
        return {}, None
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return None, _json_response(400, {"error": "invalid_json"})
    if not isinstance(decoded, dict):
        return None, _json_response(400, {"error": "invalid_json", "message": "Body must be a JSON object"})
    return decoded, None


def _validation_response(err: ValidationError) -> Response:
    details = [
        f"[{'.'.join(str(p) for p in e.get('loc', ())) or '(root)'}] {e.get('msg', '')}" for e in err.errors()
    ]
    return _json_response(400, {"error": "invalid_request", "details": details})


def create_app(orchestrator: ChatOrchestrator, catalog: ToolCatalog | None = None) -> FastAPI:
    """Create the FastAPI app serving the chat endpoints."""
    tools = catalog if catalog is not None else orchestrator.catalog

    app = FastAPI(title="Pilot Chat")
    app.state.orchestrator = orchestrator

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code == 404:
            return _json_response(404, {"error": "not_found"})
        return _json_response(exc.status_code, {"error": "http_error", "status": exc.status_code, "message": str(exc.detail)})

    @app.get("/api/health")
    async def api_health() -> Response:
        return _json_response(200, {"status": "ok"})

    @app.get("/api/tools")
    async def api_tools() -> Response:
        return _json_response(200, {"items": tools.to_json_schemas(), "total": len(tools)})

    @app.post("/api/chat/sessions")
    async def api_create_session(request: Request) -> Response:
        body, err = await _read_json_dict(request)
        if err is not None:
            return err
        try:
            payload = CreateSessionRequest.model_validate(body)
        except ValidationError as exc:
            return _validation_response(exc)
        session_id = payload.session_id or orchestrator.new_session_id()
        return _json_response(201, {"sessionId": session_id})

    @app.post("/api/chat")
    async def api_chat(request: Request) -> Response:
        body, err = await _read_json_dict(request, required=True)
        if err is not None:
            return err
        try:
            payload = ChatRequest.model_validate(body)
        except ValidationError as exc:
            return _validation_response(exc)

        session_id = payload.session_id or orchestrator.new_session_id()
        outcome = await run_in_threadpool(
            orchestrator.run_turn, session_id, payload.message, context=payload.context
        )
        logger.info("Chat turn for %s ended in %s", session_id, outcome.state.value)

        ui_type, ui_data = ui_payload(outcome)
        response = ChatResponse(
            session_id=session_id,
            text=outcome.text,
            ui_type=ui_type,
            ui_data=ui_data,
            suggestions=suggestions_for(ui_type, payload.locale),
            is_partial=outcome.state is not LoopState.DONE,
            detected_language=detect_language(outcome.text),
        )
        return _json_response(200, response.model_dump(by_alias=True))

    @app.delete("/api/chat/{session_id}")
    async def api_clear_session(session_id: str) -> Response:
        await run_in_threadpool(orchestrator.clear_session, session_id)
        return _json_response(200, {"sessionId": session_id, "cleared": True})

    return app

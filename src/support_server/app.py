"""FastAPI entry for the support server."""

from __future__ import annotations

import os
from typing import Any, Literal

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .errors import ConfigError, ErrorCode, SupportError, to_api_response
from .executor import (
    MessageRequest,
    MessageResponse,
    SessionInfo,
    StartSessionRequest,
    StartSessionResponse,
    get_runtime,
    handle_message,
    handle_start,
    session_info,
)
from .logging import configure_logging, get_logger
from .runtime import SupportRuntime
from .settings import get_settings

app = FastAPI(title="Support Orchestration Server", version="0.1.0")
logger = get_logger("app")


@app.on_event("startup")
def log_startup_config() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "support_server_config",
        extra={
            "extra": {
                "openai_model": settings.openai_model,
                "mock_llm": settings.mock_llm,
                "tool_api_base_url": settings.tool_api_base_url,
                "config_path": settings.config_path,
                "trace_level": settings.trace_level,
                "env_mock_llm": os.environ.get("SUPPORT_MAS_MOCK_LLM"),
                "env_tool_api_base_url": os.environ.get("SUPPORT_MAS_TOOL_API_BASE_URL"),
            }
        },
    )


def _status_for(exc: SupportError) -> int:
    if exc.code is ErrorCode.SESSION_NOT_FOUND:
        return 404
    if exc.code is ErrorCode.SESSION_RATE_LIMITED:
        return 429
    if isinstance(exc, ConfigError):
        return 500
    return 400


@app.exception_handler(SupportError)
async def support_error_handler(request: Request, exc: SupportError) -> JSONResponse:
    status = _status_for(exc)
    headers = {}
    retry_after = exc.details.get("retry_after_s")
    if status == 429 and retry_after is not None:
        headers["Retry-After"] = str(int(retry_after) + 1)
    logger.info(
        "request_failed",
        extra={"extra": {"path": request.url.path, "status": status, "code": exc.code.value}},
    )
    return JSONResponse(status_code=status, content=to_api_response(exc), headers=headers)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/config")
def config_info(runtime: SupportRuntime = Depends(get_runtime)) -> dict[str, Any]:
    config = runtime.config
    return {
        "name": config.name,
        "version": config.version,
        "brand": config.brand.name,
        "fallback_agent": config.fallback_agent,
        "agents": [{"id": a.id, "name": a.name, "tools": list(a.tools)} for a in runtime.orchestrator.all_agents()],
        "routing_rules": len(config.routing),
    }


@app.post("/session/start")
def start_session(
    payload: StartSessionRequest, runtime: SupportRuntime = Depends(get_runtime)
) -> StartSessionResponse:
    return handle_start(payload, runtime)


@app.post("/session/{session_id}/message")
async def post_message(
    session_id: str, payload: MessageRequest, runtime: SupportRuntime = Depends(get_runtime)
) -> MessageResponse:
    return await handle_message(session_id, payload, runtime)


@app.get("/session/{session_id}/trace")
def get_trace(
    session_id: str,
    format: Literal["text", "json"] = "text",
    runtime: SupportRuntime = Depends(get_runtime),
):
    trace = runtime.get_trace(session_id, format)
    if format == "text":
        return PlainTextResponse(str(trace))
    return trace


@app.get("/session/{session_id}/summary")
def get_summary(session_id: str, runtime: SupportRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return runtime.get_session_summary(session_id)


@app.get("/sessions")
def list_sessions(runtime: SupportRuntime = Depends(get_runtime)) -> list[SessionInfo]:
    return [session_info(s) for s in runtime.active_sessions()]

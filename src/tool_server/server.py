"""FastAPI app for the mock tool backend.

Exposes one POST endpoint per catalog entry, answering with the tool protocol
envelope from in-memory demo data.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .catalog import list_tools as list_catalog
from .logging import get_logger
from .schemas import ToolFailure, ToolListing, ToolParamOut, ToolResponse
from .settings import get_settings
from .store import get_store
from .tools import get_tool_by_endpoint, get_tool_handler

logger = get_logger("server")

app = FastAPI(title="Support Mock Tool Server", version="0.1.0")


@app.on_event("startup")
def log_startup_config() -> None:
    settings = get_settings()
    logger.info(
        "tool_server_config",
        extra={
            "extra": {
                "tool_count": len(list_catalog()),
                "failing_endpoints": settings.failing_endpoints,
            }
        },
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/tools")
def list_tools() -> list[ToolListing]:
    return [
        ToolListing(
            handle=tool.handle,
            description=tool.description,
            endpoint=tool.endpoint,
            method=tool.method,
            params=[
                ToolParamOut(
                    name=p.name,
                    type=p.type,
                    required=p.required,
                    description=p.description,
                    enum=list(p.enum) if p.enum else None,
                )
                for p in tool.params
            ],
        )
        for tool in list_catalog()
    ]


@app.post("/{endpoint:path}")
async def call_tool(endpoint: str, request: Request) -> Any:
    trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
    start = time.time()
    path = f"/{endpoint}"

    tool = get_tool_by_endpoint(path)
    handler = get_tool_handler(tool.handle) if tool else None
    if tool is None or handler is None:
        raise HTTPException(status_code=404, detail=f"Unknown tool endpoint: {path}")

    if path in get_settings().failing_endpoints:
        logger.info("tool_forced_failure", extra={"extra": {"trace_id": trace_id, "tool": tool.handle}})
        return JSONResponse(status_code=503, content={"error": "Service unavailable"})

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    try:
        data = handler(payload, get_store())
        response = ToolResponse(success=True, data=data)
        error_code = None
    except ToolFailure as exc:
        response = ToolResponse(success=False, error=exc.message)
        error_code = exc.code
    except (KeyError, TypeError, ValueError) as exc:
        response = ToolResponse(success=False, error=f"Invalid parameters: {exc}")
        error_code = "INVALID_ARGUMENT"

    logger.info(
        "tool_call",
        extra={
            "extra": {
                "trace_id": trace_id,
                "tool": tool.handle,
                "latency_ms": int((time.time() - start) * 1000),
                "ok": response.success,
                "error_code": error_code,
            }
        },
    )
    return response


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tool_server.server:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()

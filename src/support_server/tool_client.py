"""Unified tool calling layer.

Validates a call against the catalog, then performs it over HTTP behind the
tool circuit breaker and a bounded retry. Every failure comes back as a
``ToolResult`` with ``success=False``; nothing here raises to the agent loop.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Collection

import httpx

from tool_server.catalog import ToolDefinition, get_tool, tool_schema

from .errors import CircuitOpenError, ConfigError, ErrorCode, SupportError, ToolError, ValidationError, is_retryable
from .logging import get_logger
from .resilience import CircuitBreaker, RetryPolicy, Sleep, with_retry
from .state import ToolResult

logger = get_logger("tool_client")

INPROC = "inproc"
INPROC_BASE_URL = "http://tool-server.local"

_PY_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def _retry_tool_error(exc: BaseException) -> bool:
    # 429 is surfaced to the caller with its Retry-After instead of hammering the API.
    return is_retryable(exc) and getattr(exc, "code", None) is not ErrorCode.TOOL_RATE_LIMITED


def validate_params(tool: ToolDefinition, params: dict[str, Any]) -> SupportError | None:
    for param in tool.params:
        if param.name not in params:
            if param.required:
                return ValidationError.missing_field(param.name, f"{tool.handle} parameters")
            continue
        value = params[param.name]
        if param.type in ("number", "string", "array", "object") and isinstance(value, bool):
            return ValidationError.invalid_type(param.name, param.type, "boolean")
        if not isinstance(value, _PY_TYPES[param.type]):
            return ValidationError.invalid_type(param.name, param.type, type(value).__name__)
        if param.enum and value not in param.enum:
            return ValidationError.invalid_value(param.name, list(param.enum))
    return None


def _retry_after(resp: httpx.Response) -> float | None:
    value = resp.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}: {resp.text[:100]}"
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {resp.status_code}"


class ToolClient:
    def __init__(
        self,
        base_url: str,
        breaker: CircuitBreaker,
        *,
        timeout_s: float = 30.0,
        max_attempts: int = 2,
        retry_delay_s: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._breaker = breaker
        self._timeout_s = timeout_s
        self._transport = transport
        self._sleep = sleep
        self._policy = RetryPolicy(
            max_attempts=max_attempts,
            initial_delay_s=retry_delay_s,
            retry_on=_retry_tool_error,
        )

    @classmethod
    def from_settings(cls, settings: Any, breaker: CircuitBreaker) -> "ToolClient":
        base_url = settings.tool_api_base_url
        transport = None
        # Allow in-process calls for tests or local debugging.
        if base_url == INPROC:
            from tool_server.server import app as tool_app

            transport = httpx.ASGITransport(app=tool_app)
            base_url = INPROC_BASE_URL
        return cls(
            base_url,
            breaker,
            timeout_s=settings.tool_timeout_s,
            max_attempts=settings.tool_max_attempts,
            transport=transport,
        )

    @staticmethod
    def schemas_for(handles: Collection[str]) -> list[dict[str, Any]]:
        schemas = []
        for handle in handles:
            tool = get_tool(handle)
            if tool is not None:
                schemas.append(tool_schema(tool))
        return schemas

    async def execute(
        self,
        handle: str,
        params: dict[str, Any],
        *,
        allowed: Collection[str] | None = None,
        agent_id: str | None = None,
        trace_id: str | None = None,
    ) -> ToolResult:
        tool = get_tool(handle)
        if tool is None:
            return self._failure(ToolError.not_found(handle))
        if allowed is not None and handle not in allowed:
            return self._failure(ConfigError.tool_not_mapped(handle, agent_id or "unknown"), retryable=False)

        invalid = validate_params(tool, params)
        if invalid is not None:
            return self._failure(invalid)

        start = time.time()
        try:
            data = await self._breaker.call(
                handle,
                lambda: with_retry(lambda: self._post(tool, params, trace_id), self._policy, sleep=self._sleep, label=handle),
            )
        except CircuitOpenError as exc:
            logger.info("tool_circuit_open", extra={"extra": {"trace_id": trace_id, "tool": handle}})
            return ToolResult(
                success=False,
                error=f"Rate limited: {exc.message}",
                retryable=True,
                suggestion=exc.suggestion,
            )
        except SupportError as exc:
            logger.info(
                "tool_call_failed",
                extra={
                    "extra": {
                        "trace_id": trace_id,
                        "tool": handle,
                        "latency_ms": int((time.time() - start) * 1000),
                        "code": exc.code.value,
                        "error": exc.message,
                    }
                },
            )
            return self._failure(exc)

        logger.info(
            "tool_call",
            extra={
                "extra": {
                    "trace_id": trace_id,
                    "tool": handle,
                    "latency_ms": int((time.time() - start) * 1000),
                }
            },
        )
        return ToolResult(success=True, data=data)

    async def _post(self, tool: ToolDefinition, params: dict[str, Any], trace_id: str | None) -> Any:
        url = f"{self._base_url}{tool.endpoint}"
        headers = {"x-trace-id": trace_id} if trace_id else {}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s, transport=self._transport, trust_env=False
            ) as client:
                resp = await client.post(url, json=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise ToolError.timeout(tool.handle, self._timeout_s) from exc
        except httpx.RequestError as exc:
            raise ToolError.network_error(tool.handle, str(exc) or type(exc).__name__) from exc

        if resp.status_code == 429:
            raise ToolError.rate_limited(tool.handle, _retry_after(resp))
        if resp.status_code >= 500:
            raise ToolError.execution_failed(tool.handle, _error_text(resp), retryable=True)
        if resp.status_code >= 400:
            raise ToolError.execution_failed(tool.handle, _error_text(resp), retryable=False)

        try:
            body = resp.json()
        except ValueError as exc:
            raise ToolError.execution_failed(tool.handle, "response is not valid JSON", retryable=False) from exc
        if not isinstance(body, dict):
            raise ToolError.execution_failed(tool.handle, "response is not a JSON object", retryable=False)
        if not body.get("success"):
            error = body.get("error") or body.get("message") or "Unknown error from tool"
            raise ToolError.execution_failed(tool.handle, str(error), retryable=False)
        return body.get("data")

    @staticmethod
    def _failure(exc: SupportError, retryable: bool | None = None) -> ToolResult:
        return ToolResult(
            success=False,
            error=exc.message,
            retryable=exc.retryable if retryable is None else retryable,
            suggestion=exc.suggestion,
        )

"""Typed errors for the support engine.

Every error carries two flags the rest of the engine relies on:

- ``recoverable``: processing can continue with a fallback.
- ``retryable``: the same operation may be attempted again.

The retry executor uses ``is_retryable`` as its default predicate, and the HTTP
layer turns any ``SupportError`` into a JSON body via ``to_api_response``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    # Session (1xxx)
    SESSION_NOT_FOUND = "E1001"
    SESSION_RATE_LIMITED = "E1002"

    # Tool (2xxx)
    TOOL_NOT_FOUND = "E2001"
    TOOL_EXECUTION_FAILED = "E2002"
    TOOL_TIMEOUT = "E2003"
    TOOL_RATE_LIMITED = "E2004"
    TOOL_NETWORK_ERROR = "E2005"

    # Routing (3xxx)
    ROUTING_NO_AGENT = "E3001"
    ROUTING_CONFIDENCE_LOW = "E3002"

    # Escalation (4xxx)
    ESCALATION_SUMMARY_FAILED = "E4001"

    # Validation (5xxx)
    VALIDATION_MISSING_FIELD = "E5001"
    VALIDATION_INVALID_TYPE = "E5002"
    VALIDATION_INVALID_VALUE = "E5003"

    # LLM (6xxx)
    LLM_API_KEY_MISSING = "E6001"
    LLM_REQUEST_FAILED = "E6002"
    LLM_RESPONSE_INVALID = "E6003"
    LLM_TOOL_PARSE_FAILED = "E6004"

    # Config (7xxx)
    CONFIG_INVALID = "E7001"
    CONFIG_AGENT_NOT_FOUND = "E7002"
    CONFIG_TOOL_NOT_MAPPED = "E7003"

    # Storage (8xxx)
    STORAGE_WRITE_FAILED = "E8001"

    # Resilience (9xxx)
    CIRCUIT_OPEN = "E9001"


class SupportError(RuntimeError):
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        recoverable: bool = False,
        retryable: bool = False,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"[{code.value}] {message}")
        self.code = code
        self.message = message
        self.recoverable = recoverable
        self.retryable = retryable
        self.suggestion = suggestion
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "retryable": self.retryable,
            "suggestion": self.suggestion,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class SessionError(SupportError):
    @classmethod
    def not_found(cls, session_id: str) -> "SessionError":
        return cls(
            ErrorCode.SESSION_NOT_FOUND,
            f"Session not found: {session_id}",
            suggestion="Start a new session with POST /session/start.",
            details={"session_id": session_id},
        )

    @classmethod
    def rate_limited(cls, session_id: str, retry_after_s: float) -> "SessionError":
        return cls(
            ErrorCode.SESSION_RATE_LIMITED,
            f"Too many messages for session {session_id}",
            recoverable=True,
            retryable=True,
            suggestion=f"Wait {int(retry_after_s) + 1} seconds before sending another message.",
            details={"session_id": session_id, "retry_after_s": retry_after_s},
        )


class ToolError(SupportError):
    def __init__(self, code: ErrorCode, message: str, tool_handle: str, **kwargs: Any) -> None:
        details = kwargs.pop("details", None) or {}
        details.setdefault("tool", tool_handle)
        super().__init__(code, message, details=details, **kwargs)
        self.tool_handle = tool_handle

    @classmethod
    def not_found(cls, tool_handle: str) -> "ToolError":
        return cls(
            ErrorCode.TOOL_NOT_FOUND,
            f"Unknown tool: {tool_handle}",
            tool_handle,
            suggestion="Use one of the tools listed in the request.",
        )

    @classmethod
    def execution_failed(cls, tool_handle: str, error: str, *, retryable: bool = True) -> "ToolError":
        return cls(
            ErrorCode.TOOL_EXECUTION_FAILED,
            f"Tool execution failed: {error}",
            tool_handle,
            recoverable=True,
            retryable=retryable,
            suggestion="Check API availability and retry." if retryable else None,
        )

    @classmethod
    def timeout(cls, tool_handle: str, timeout_s: float) -> "ToolError":
        return cls(
            ErrorCode.TOOL_TIMEOUT,
            f"Tool call timed out after {timeout_s:g}s",
            tool_handle,
            recoverable=True,
            retryable=True,
            suggestion="API is slow. Retry or escalate if it persists.",
        )

    @classmethod
    def rate_limited(cls, tool_handle: str, retry_after_s: float | None = None) -> "ToolError":
        wait = f"Retry after {retry_after_s:g}s" if retry_after_s else "Please wait."
        return cls(
            ErrorCode.TOOL_RATE_LIMITED,
            f"Rate limited. {wait}",
            tool_handle,
            recoverable=True,
            retryable=True,
            suggestion=f"Wait {retry_after_s or 60:g} seconds before retrying.",
            details={"retry_after_s": retry_after_s},
        )

    @classmethod
    def network_error(cls, tool_handle: str, error: str) -> "ToolError":
        return cls(
            ErrorCode.TOOL_NETWORK_ERROR,
            f"Network error: {error}",
            tool_handle,
            recoverable=True,
            retryable=True,
            suggestion="Check network connectivity and the API endpoint.",
        )


class RoutingError(SupportError):
    @classmethod
    def no_agent(cls, intent: str) -> "RoutingError":
        return cls(
            ErrorCode.ROUTING_NO_AGENT,
            f"No agent found for intent: {intent}",
            recoverable=True,
            suggestion="Falling back to the fallback agent.",
        )

    @classmethod
    def low_confidence(cls, session_id: str, confidence: float) -> "RoutingError":
        return cls(
            ErrorCode.ROUTING_CONFIDENCE_LOW,
            f"Routing confidence too low: {confidence:.2f}",
            recoverable=True,
            suggestion="Ask the customer for clarification.",
            details={"session_id": session_id},
        )


class EscalationError(SupportError):
    @classmethod
    def summary_failed(cls, session_id: str, reason: str) -> "EscalationError":
        return cls(
            ErrorCode.ESCALATION_SUMMARY_FAILED,
            f"Failed to build escalation summary: {reason}",
            recoverable=True,
            retryable=True,
            suggestion="Escalation proceeding with minimal summary.",
            details={"session_id": session_id},
        )


class ValidationError(SupportError):
    @classmethod
    def missing_field(cls, field: str, location: str) -> "ValidationError":
        return cls(
            ErrorCode.VALIDATION_MISSING_FIELD,
            f"Missing required field: {field}",
            recoverable=True,
            retryable=True,
            suggestion=f"Provide '{field}' in {location}.",
        )

    @classmethod
    def invalid_type(cls, field: str, expected: str, received: str) -> "ValidationError":
        return cls(
            ErrorCode.VALIDATION_INVALID_TYPE,
            f"Invalid type for {field}. Expected {expected}, got {received}",
            recoverable=True,
            retryable=True,
            suggestion=f"Ensure '{field}' is of type {expected}.",
        )

    @classmethod
    def invalid_value(cls, field: str, allowed: list[str]) -> "ValidationError":
        return cls(
            ErrorCode.VALIDATION_INVALID_VALUE,
            f"Invalid value for {field}. Must be one of: {', '.join(allowed)}",
            recoverable=True,
            retryable=True,
            suggestion=f"Use one of: {', '.join(allowed)}.",
        )


class LLMError(SupportError):
    @classmethod
    def api_key_missing(cls) -> "LLMError":
        return cls(
            ErrorCode.LLM_API_KEY_MISSING,
            "No LLM API key configured",
            suggestion="Set OPENAI_API_KEY or enable SUPPORT_MAS_MOCK_LLM.",
        )

    @classmethod
    def request_failed(cls, provider: str, error: str) -> "LLMError":
        return cls(
            ErrorCode.LLM_REQUEST_FAILED,
            f"{provider} request failed: {error}",
            recoverable=True,
            retryable=True,
            suggestion="Check provider status and retry.",
        )

    @classmethod
    def response_invalid(cls, reason: str) -> "LLMError":
        return cls(
            ErrorCode.LLM_RESPONSE_INVALID,
            f"Invalid LLM response: {reason}",
            recoverable=True,
            retryable=True,
            suggestion="Retry request. May be a transient issue.",
        )

    @classmethod
    def tool_parse_failed(cls, raw: str) -> "LLMError":
        return cls(
            ErrorCode.LLM_TOOL_PARSE_FAILED,
            "Failed to parse tool call arguments from LLM response",
            recoverable=True,
            retryable=True,
            suggestion="Retry. The model may have produced a malformed tool call.",
            details={"raw": raw[:200]},
        )


class ConfigError(SupportError):
    @classmethod
    def invalid(cls, reason: str) -> "ConfigError":
        return cls(
            ErrorCode.CONFIG_INVALID,
            f"Invalid support configuration: {reason}",
            suggestion="Fix the configuration and restart the server.",
        )

    @classmethod
    def agent_not_found(cls, agent_id: str) -> "ConfigError":
        return cls(
            ErrorCode.CONFIG_AGENT_NOT_FOUND,
            f"Agent not found in config: {agent_id}",
            suggestion="Check the agents section of the configuration.",
            details={"agent_id": agent_id},
        )

    @classmethod
    def tool_not_mapped(cls, tool_handle: str, agent_id: str) -> "ConfigError":
        return cls(
            ErrorCode.CONFIG_TOOL_NOT_MAPPED,
            f"Tool '{tool_handle}' is not available for agent '{agent_id}'",
            suggestion="Use only the tools offered in this conversation.",
            details={"tool": tool_handle, "agent_id": agent_id},
        )


class StorageError(SupportError):
    @classmethod
    def write_failed(cls, path: str, error: str) -> "StorageError":
        return cls(
            ErrorCode.STORAGE_WRITE_FAILED,
            f"Failed to write {path}: {error}",
            recoverable=True,
            retryable=True,
            suggestion="Check file permissions and disk space.",
        )


class CircuitOpenError(SupportError):
    def __init__(self, service_id: str, reset_timeout_s: float) -> None:
        super().__init__(
            ErrorCode.CIRCUIT_OPEN,
            f"Circuit open for {service_id}. Service temporarily unavailable.",
            recoverable=True,
            retryable=True,
            suggestion=f"Wait {reset_timeout_s:g}s before retrying.",
            details={"service_id": service_id, "retry_after_s": reset_timeout_s},
        )
        self.service_id = service_id


def is_recoverable(exc: BaseException) -> bool:
    return isinstance(exc, SupportError) and exc.recoverable


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SupportError) and exc.retryable


def user_message(exc: BaseException) -> str:
    """Customer-safe text for an error."""
    if isinstance(exc, SessionError):
        if exc.code is ErrorCode.SESSION_NOT_FOUND:
            return "Your session has expired. Please start a new conversation."
        if exc.code is ErrorCode.SESSION_RATE_LIMITED:
            return "You're sending messages a little too quickly. Please wait a moment."
    if isinstance(exc, ToolError):
        return "We encountered a technical issue. Please try again in a moment."
    if isinstance(exc, LLMError):
        return "Our assistant is temporarily unavailable. Please try again shortly."
    return "An unexpected error occurred. Please try again."


def to_api_response(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, SupportError):
        return {
            "success": False,
            "error": str(exc),
            "code": exc.code.value,
            "message": user_message(exc),
            "recoverable": is_recoverable(exc),
            "suggestion": exc.suggestion,
        }
    return {"success": False, "error": str(exc) or "Unknown error", "message": user_message(exc)}

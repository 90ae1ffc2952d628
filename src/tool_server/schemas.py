"""Wire models for the tool protocol.

Every tool endpoint answers HTTP 200 with ``{success, data}`` or
``{success: false, error}``; transport failures are left to HTTP status codes.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ToolFailure(RuntimeError):
    """Logical failure raised by a tool handler (order not found, bad state)."""

    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class ToolResponse(BaseModel):
    success: bool
    data: Any | None = None
    error: str | None = None


class ToolParamOut(BaseModel):
    name: str
    type: str
    required: bool
    description: str
    enum: list[str] | None = None


class ToolListing(BaseModel):
    handle: str
    description: str
    endpoint: str
    method: str
    params: list[ToolParamOut]

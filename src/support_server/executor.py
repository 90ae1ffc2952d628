"""Protocol adapter for incoming requests.

Keep this layer thin so protocol changes do not affect the runtime.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field

from .runtime import SupportRuntime, build_runtime
from .settings import get_settings
from .state import Session


class StartSessionRequest(BaseModel):
    customer_email: str = Field(..., min_length=3)
    first_name: str = ""
    last_name: str = ""
    external_customer_id: str = ""


class StartSessionResponse(BaseModel):
    session_id: str


class MessageRequest(BaseModel):
    message: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    session_id: str
    message: str
    escalated: bool
    escalation_summary: dict[str, Any] | None = None
    agent: str | None = None
    intent: str | None = None


class SessionInfo(BaseModel):
    session_id: str
    customer_email: str
    status: str
    message_count: int
    current_agent: str
    escalated: bool
    last_activity: str


@lru_cache(maxsize=1)
def get_runtime() -> SupportRuntime:
    # One runtime per process; memory and circuits live as long as the server.
    return build_runtime(get_settings())


def handle_start(payload: StartSessionRequest, runtime: SupportRuntime) -> StartSessionResponse:
    session_id = runtime.start_session(
        payload.customer_email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        external_customer_id=payload.external_customer_id,
    )
    return StartSessionResponse(session_id=session_id)


async def handle_message(session_id: str, payload: MessageRequest, runtime: SupportRuntime) -> MessageResponse:
    result = await runtime.handle_message(session_id, payload.message)
    return MessageResponse(
        session_id=result.session_id,
        message=result.message,
        escalated=result.escalated,
        escalation_summary=result.escalation_summary,
        agent=result.agent,
        intent=result.intent,
    )


def session_info(session: Session) -> SessionInfo:
    return SessionInfo(
        session_id=session.id,
        customer_email=session.customer.email,
        status=session.status.value,
        message_count=len(session.messages),
        current_agent=session.context.current_agent,
        escalated=session.context.escalated,
        last_activity=session.last_activity,
    )

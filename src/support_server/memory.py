"""In-memory session store.

The store is the single owner of session state. One instance is created per
process by the runtime and injected into the orchestrator and the executor.
"""

from __future__ import annotations

import re
import uuid
from typing import Any

from .errors import SessionError
from .logging import get_logger
from .state import (
    BoundedLog,
    CustomerInfo,
    Message,
    Role,
    Session,
    SessionContext,
    SessionStatus,
    ToolCallRecord,
    ToolResult,
)

logger = get_logger("memory")

# "#1234", "#NP1234567", "NP1234567"; never a slice of a longer digit run.
ORDER_NUMBER_RE = re.compile(r"(?:#NP|#|NP)\d{4,10}(?!\d)", re.IGNORECASE)

MAX_ORDER_NUMBERS = 20
MAX_INTENT_HISTORY = 100
MAX_PREVIOUS_AGENTS = 100


def normalize_order_number(raw: str) -> str:
    value = raw.upper()
    return value if value.startswith("#") else f"#{value}"


def extract_order_numbers(text: str) -> list[str]:
    """Return normalized order numbers in first-seen order, without duplicates."""
    found: list[str] = []
    for match in ORDER_NUMBER_RE.findall(text):
        normalized = normalize_order_number(match)
        if normalized not in found:
            found.append(normalized)
    return found


class MemoryStore:
    def __init__(
        self,
        *,
        max_order_numbers: int = MAX_ORDER_NUMBERS,
        max_intent_history: int = MAX_INTENT_HISTORY,
        max_previous_agents: int = MAX_PREVIOUS_AGENTS,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._max_order_numbers = max_order_numbers
        self._max_intent_history = max_intent_history
        self._max_previous_agents = max_previous_agents

    def start_session(self, customer: CustomerInfo) -> str:
        session_id = f"session_{uuid.uuid4().hex[:12]}"
        context = SessionContext(
            mentioned_order_numbers=BoundedLog(self._max_order_numbers),
            intent_history=BoundedLog(self._max_intent_history),
            previous_agents=BoundedLog(self._max_previous_agents),
        )
        self._sessions[session_id] = Session(id=session_id, customer=customer, context=context)
        logger.info(
            "session_started",
            extra={"extra": {"session_id": session_id, "customer_email": customer.email}},
        )
        return session_id

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionError.not_found(session_id)
        return session

    def add_message(self, session_id: str, role: Role, content: str) -> Message:
        session = self.require_session(session_id)
        message = Message(role=role, content=content)
        session.messages.append(message)
        session.touch()
        if role is Role.CUSTOMER:
            # Extraction is best effort and must never lose the message.
            try:
                self._extract_entities(session, content)
            except Exception as exc:  # noqa: BLE001
                logger.info(
                    "entity_extraction_failed",
                    extra={"extra": {"session_id": session_id, "error": str(exc)}},
                )
        return message

    def record_tool_call(
        self,
        session_id: str,
        tool_handle: str,
        params: dict[str, Any],
        result: ToolResult,
    ) -> ToolCallRecord:
        session = self.require_session(session_id)
        record = ToolCallRecord(tool_handle=tool_handle, params=dict(params), result=result)
        session.tool_calls.append(record)
        session.touch()
        self._cache_tool_result(session.context, tool_handle, result)
        return record

    def escalate(self, session_id: str, reason: str, summary: dict[str, Any]) -> None:
        session = self.require_session(session_id)
        if session.context.escalated:
            return
        session.status = SessionStatus.ESCALATED
        session.context.escalated = True
        session.context.escalation_reason = reason
        session.context.escalation_summary = summary
        session.touch()
        logger.info("session_escalated", extra={"extra": {"session_id": session_id, "reason": reason}})

    def is_escalated(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return bool(session and session.context.escalated)

    def set_current_agent(self, session_id: str, agent_id: str) -> None:
        context = self.require_session(session_id).context
        if context.current_agent and context.current_agent != agent_id:
            if not context.previous_agents.append(context.current_agent):
                logger.info(
                    "bounded_log_full",
                    extra={"extra": {"session_id": session_id, "log": "previous_agents"}},
                )
        context.current_agent = agent_id

    def record_intent(self, session_id: str, intent: str) -> None:
        context = self.require_session(session_id).context
        context.intents_seen.add(intent)
        if not context.intent_history.append(intent):
            logger.info(
                "bounded_log_full",
                extra={"extra": {"session_id": session_id, "log": "intent_history"}},
            )

    def failed_tool_calls(self, session_id: str) -> int:
        session = self.require_session(session_id)
        return sum(1 for call in session.tool_calls if not call.result.success)

    def distinct_intents(self, session_id: str) -> int:
        return len(self.require_session(session_id).context.intents_seen)

    def get_conversation_history(self, session_id: str) -> str:
        session = self._sessions.get(session_id)
        if session is None:
            return ""
        lines = []
        for message in session.messages:
            speaker = "Customer" if message.role is Role.CUSTOMER else "Agent"
            lines.append(f"{speaker}: {message.content}")
        return "\n\n".join(lines)

    def get_session_summary(self, session_id: str) -> dict[str, Any]:
        session = self.require_session(session_id)
        context = session.context
        return {
            "session_id": session.id,
            "customer": session.customer.to_dict(),
            "status": session.status.value,
            "message_count": len(session.messages),
            "tool_call_count": len(session.tool_calls),
            "intents": context.intent_history.to_list(),
            "mentioned_orders": context.mentioned_order_numbers.to_list(),
            "current_agent": context.current_agent,
            "started_at": session.started_at,
            "last_activity": session.last_activity,
        }

    def active_sessions(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.status is SessionStatus.ACTIVE]

    def clear(self) -> None:
        self._sessions.clear()

    def _extract_entities(self, session: Session, content: str) -> None:
        orders = session.context.mentioned_order_numbers
        for number in extract_order_numbers(content):
            if number in orders:
                continue
            if not orders.append(number):
                logger.info(
                    "bounded_log_full",
                    extra={"extra": {"session_id": session.id, "log": "mentioned_order_numbers"}},
                )
                break

    @staticmethod
    def _cache_tool_result(context: SessionContext, tool_handle: str, result: ToolResult) -> None:
        if not result.success or not result.data:
            return
        if tool_handle == "shopify_get_customer_orders" and isinstance(result.data, dict):
            context.order_history = result.data.get("orders")
        elif tool_handle == "skio_get_subscription_status":
            context.subscription_status = result.data
        elif tool_handle == "shopify_get_order_details":
            context.current_order = result.data

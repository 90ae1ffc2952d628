"""Agent tool-use loop for one turn.

Design goals:
- Keep tool execution out of the LLM prompt by returning structured data.
- Bound cost: at most ``max_iterations`` tool rounds per turn.
- Never raise on LLM trouble; the customer gets a degraded reply instead.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

from .config import AgentConfig, BrandContext
from .errors import SupportError
from .llm import ChatMessage, LLMClient, LLMReply, ToolRequest, assistant_tool_message, parse_reply
from .logging import get_logger
from .memory import MemoryStore
from .prompts import DEGRADED_MESSAGE, ITERATION_CAP_MESSAGE, build_system_prompt
from .resilience import RetryPolicy, Sleep, with_retry
from .state import Role, Session, ToolCallRecord
from .tool_client import ToolClient
from .trace import Tracer

logger = get_logger("agent")

LLM_ROLES = {Role.CUSTOMER: "user", Role.AGENT: "assistant", Role.SYSTEM: "system"}


@dataclass
class AgentResponse:
    message: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    capped: bool = False
    degraded: bool = False


def build_messages(agent: AgentConfig, session: Session, brand: BrandContext, message: str) -> list[ChatMessage]:
    """System prompt, prior history, then the new customer message."""
    history = session.messages
    # The runtime records the customer message before execution; do not send it twice.
    if history and history[-1].role is Role.CUSTOMER and history[-1].content == message:
        history = history[:-1]
    messages: list[ChatMessage] = [{"role": "system", "content": build_system_prompt(agent, session, brand)}]
    for past in history:
        messages.append({"role": LLM_ROLES[past.role], "content": past.content})
    messages.append({"role": "user", "content": message})
    return messages


class AgentExecutor:
    def __init__(
        self,
        llm: LLMClient,
        tools: ToolClient,
        memory: MemoryStore,
        tracer: Tracer,
        brand: BrandContext,
        *,
        max_iterations: int = 5,
        llm_attempts: int = 2,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._llm = llm
        self._tools = tools
        self._memory = memory
        self._tracer = tracer
        self._brand = brand
        self._max_iterations = max_iterations
        self._llm_policy = RetryPolicy(max_attempts=llm_attempts, initial_delay_s=0.2)
        self._sleep = sleep

    async def execute(self, agent: AgentConfig, session_id: str, message: str) -> AgentResponse:
        session = self._memory.require_session(session_id)
        span_id = self._tracer.start_span(session_id, f"agent:{agent.id}", {"agent": agent.id})
        try:
            response = await self._run(agent, session, message)
        finally:
            self._tracer.end_span(span_id)

        self._memory.add_message(session_id, Role.AGENT, response.message)
        self._tracer.trace_message(session_id, Role.AGENT.value, response.message)
        return response

    async def _run(self, agent: AgentConfig, session: Session, message: str) -> AgentResponse:
        messages = build_messages(agent, session, self._brand, message)
        schemas = self._tools.schemas_for(agent.tools)
        response = AgentResponse(message="")

        reply = await self._ask(session.id, messages, schemas)
        if reply is None:
            response.message, response.degraded = DEGRADED_MESSAGE, True
            return response

        while isinstance(reply, ToolRequest):
            if response.iterations >= self._max_iterations:
                logger.info(
                    "tool_iteration_cap",
                    extra={"extra": {"session_id": session.id, "agent": agent.id, "cap": self._max_iterations}},
                )
                response.message, response.capped = ITERATION_CAP_MESSAGE, True
                return response
            response.iterations += 1

            messages.append(assistant_tool_message(reply))
            for call in reply.calls:
                result = await self._tools.execute(
                    call.name,
                    call.arguments,
                    allowed=agent.tools,
                    agent_id=agent.id,
                    trace_id=session.id,
                )
                record = self._memory.record_tool_call(session.id, call.name, call.arguments, result)
                self._tracer.trace_tool_call(session.id, call.name, call.arguments, result)
                response.tool_calls.append(record)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": json.dumps(result.to_dict(), ensure_ascii=False, default=str),
                    }
                )

            reply = await self._ask(session.id, messages, schemas)
            if reply is None:
                response.message, response.degraded = DEGRADED_MESSAGE, True
                return response

        response.message = reply.content
        return response

    async def _ask(
        self, session_id: str, messages: list[ChatMessage], schemas: list[dict[str, Any]]
    ) -> LLMReply | None:
        async def attempt() -> LLMReply:
            return parse_reply(await self._llm.chat(messages, schemas or None))

        try:
            return await with_retry(attempt, self._llm_policy, sleep=self._sleep, label="llm")
        except Exception as exc:  # noqa: BLE001
            code = exc.code.value if isinstance(exc, SupportError) else None
            logger.info(
                "llm_error",
                extra={"extra": {"session_id": session_id, "code": code, "error": str(exc)}},
            )
            self._tracer.trace_error(session_id, f"LLM failure: {exc}", {"code": code})
            return None

"""Runtime facade: one call per customer message.

Pipeline per message: escalation gate -> record message -> escalation check ->
routing -> agent turn -> post-turn escalation check -> response.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Literal

from .agent import AgentExecutor
from .config import SupportConfig, load_config
from .errors import SessionError, StorageError
from .intents import IntentClassifier
from .llm import FallbackLLMClient, HeuristicLLMClient, LLMClient, OpenAIChatClient
from .logging import get_logger
from .memory import MemoryStore
from .orchestrator import ESCALATED_MESSAGE, Orchestrator
from .resilience import ResilienceRegistry, Sleep
from .settings import SupportSettings
from .state import CustomerInfo, Role, Session
from .tool_client import ToolClient
from .trace import Tracer

logger = get_logger("runtime")


@dataclass
class MessageResponse:
    session_id: str
    message: str
    escalated: bool
    escalation_summary: dict[str, Any] | None = None
    agent: str | None = None
    intent: str | None = None


class SupportRuntime:
    def __init__(
        self,
        config: SupportConfig,
        llm: LLMClient,
        tools: ToolClient,
        resilience: ResilienceRegistry,
        *,
        memory: MemoryStore | None = None,
        tracer: Tracer | None = None,
        classifier: IntentClassifier | None = None,
        max_iterations: int = 5,
        llm_attempts: int = 2,
        trace_dir: str | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self.resilience = resilience
        self.memory = memory or MemoryStore(
            max_order_numbers=config.memory.max_order_numbers,
            max_intent_history=config.memory.max_intent_history,
            max_previous_agents=config.memory.max_previous_agents,
        )
        self.tracer = tracer or Tracer()
        self._orchestrator = Orchestrator(config, self.memory, self.tracer, classifier)
        self._executor = AgentExecutor(
            llm,
            tools,
            self.memory,
            self.tracer,
            config.brand,
            max_iterations=max_iterations,
            llm_attempts=llm_attempts,
            sleep=sleep,
        )
        self._trace_dir = trace_dir
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def config(self) -> SupportConfig:
        return self._config

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    def start_session(
        self,
        customer_email: str,
        first_name: str = "",
        last_name: str = "",
        external_customer_id: str = "",
    ) -> str:
        customer = CustomerInfo(
            email=customer_email,
            first_name=first_name,
            last_name=last_name,
            external_id=external_customer_id,
        )
        session_id = self.memory.start_session(customer)
        self.tracer.init_session(session_id)
        return session_id

    async def handle_message(self, session_id: str, text: str) -> MessageResponse:
        self.memory.require_session(session_id)
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = self.memory.require_session(session_id)
            if session.context.escalated:
                return self._already_escalated(session, text)

            limiter = self.resilience.session_limiter
            if not limiter.is_allowed(session_id):
                raise SessionError.rate_limited(session_id, limiter.reset_after(session_id))

            span_id = self.tracer.start_span(session_id, "handle_message", {"length": len(text)})
            try:
                return await self._process(session_id, text)
            finally:
                self.tracer.end_span(span_id)
                self._persist_trace(session_id)

    async def _process(self, session_id: str, text: str) -> MessageResponse:
        self.memory.add_message(session_id, Role.CUSTOMER, text)
        self.tracer.trace_message(session_id, Role.CUSTOMER.value, text)

        pre = self._orchestrator.check_escalation(session_id, text)
        if pre.escalated:
            return MessageResponse(
                session_id=session_id,
                message=pre.customer_message or ESCALATED_MESSAGE,
                escalated=True,
                escalation_summary=pre.summary,
            )

        routing = self._orchestrator.route(session_id, text)
        reply = await self._executor.execute(routing.target_agent, session_id, text)

        post = self._orchestrator.check_escalation(session_id, text, reply.message)
        if post.escalated:
            return MessageResponse(
                session_id=session_id,
                message=post.customer_message or reply.message,
                escalated=True,
                escalation_summary=post.summary,
                agent=routing.target_agent.id,
                intent=routing.intent.primary,
            )
        return MessageResponse(
            session_id=session_id,
            message=reply.message,
            escalated=False,
            agent=routing.target_agent.id,
            intent=routing.intent.primary,
        )

    def _already_escalated(self, session: Session, text: str) -> MessageResponse:
        # Terminal state: the trace records what arrived, the session itself is left untouched.
        self.tracer.trace_message(session.id, Role.CUSTOMER.value, text)
        logger.info("message_on_escalated_session", extra={"extra": {"session_id": session.id}})
        return MessageResponse(
            session_id=session.id,
            message=ESCALATED_MESSAGE,
            escalated=True,
            escalation_summary=session.context.escalation_summary,
        )

    def _persist_trace(self, session_id: str) -> None:
        if not self._trace_dir:
            return
        try:
            self.tracer.write_trace(session_id, self._trace_dir)
        except StorageError as exc:
            logger.info("trace_persist_failed", extra={"extra": {"session_id": session_id, **exc.to_dict()}})

    def get_trace(self, session_id: str, fmt: Literal["text", "json"] = "text") -> str | dict[str, Any]:
        self.memory.require_session(session_id)
        if fmt == "json":
            return self.tracer.export_trace(session_id) or {}
        return self.tracer.format_trace(session_id)

    def get_session_summary(self, session_id: str) -> dict[str, Any]:
        summary = self.memory.get_session_summary(session_id)
        context = self.memory.require_session(session_id).context
        summary["escalated"] = context.escalated
        summary["escalation_reason"] = context.escalation_reason
        return summary

    def active_sessions(self) -> list[Session]:
        return self.memory.active_sessions()

    def reset(self) -> None:
        self.memory.clear()
        self.tracer.clear()
        self.resilience.reset()
        self._locks.clear()


def build_llm(settings: SupportSettings, resilience: ResilienceRegistry) -> FallbackLLMClient:
    provider: LLMClient
    if settings.mock_llm or not settings.openai_api_key:
        provider = HeuristicLLMClient()
    else:
        provider = OpenAIChatClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.temperature,
            timeout_s=settings.openai_timeout_s,
        )
    logger.info("llm_provider", extra={"extra": {"provider": provider.name, "mock_llm": settings.mock_llm}})
    return FallbackLLMClient([provider], resilience.llm_breaker)


def build_runtime(settings: SupportSettings) -> SupportRuntime:
    config = load_config(settings.config_path)
    resilience = ResilienceRegistry.from_settings(settings)
    return SupportRuntime(
        config,
        build_llm(settings, resilience),
        ToolClient.from_settings(settings, resilience.tool_breaker),
        resilience,
        tracer=Tracer(level=settings.trace_level),
        max_iterations=settings.max_tool_iterations,
        llm_attempts=settings.llm_max_attempts,
        trace_dir=settings.trace_dir if settings.trace_persist else None,
    )

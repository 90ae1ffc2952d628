from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from support_server.config import default_config
from support_server.llm import ChatResult, RawToolCall
from support_server.memory import MemoryStore
from support_server.resilience import CircuitBreaker, CircuitBreakerConfig, RateLimiter, ResilienceRegistry
from support_server.runtime import SupportRuntime
from support_server.state import CustomerInfo
from support_server.tool_client import ToolClient
from support_server.trace import Tracer
from tool_server.store import reset_store


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedLLM:
    """Replays canned replies in order; an Exception entry is raised instead."""

    name = "scripted"

    def __init__(self, replies: list[ChatResult | Exception]) -> None:
        self._replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages, tools=None) -> ChatResult:
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        if not self._replies:
            return ChatResult(content="Is there anything else I can help with?")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def text(content: str) -> ChatResult:
    return ChatResult(content=content)


def tool_call(name: str, arguments: dict[str, Any], call_id: str = "call_1") -> ChatResult:
    return ChatResult(content=None, tool_calls=[RawToolCall(id=call_id, name=name, arguments=json.dumps(arguments))])


def tool_backend(routes: dict[str, Any]) -> httpx.MockTransport:
    """Mock tool API: path -> JSON body, or path -> httpx.Response."""

    def handler(request: httpx.Request) -> httpx.Response:
        answer = routes.get(request.url.path)
        if answer is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    return httpx.MockTransport(handler)


@pytest.fixture(autouse=True)
def _fresh_demo_store():
    reset_store()
    yield
    reset_store()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def memory() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def tracer(clock: FakeClock) -> Tracer:
    return Tracer(clock=clock)


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(email="customer@example.com", first_name="Ada", last_name="Lovelace", external_id="cust_1")


@pytest.fixture
def registry(clock: FakeClock) -> ResilienceRegistry:
    return ResilienceRegistry(
        tool_breaker=CircuitBreaker(CircuitBreakerConfig(failure_threshold=3, reset_timeout_s=15), name="tools", clock=clock),
        llm_breaker=CircuitBreaker(CircuitBreakerConfig(failure_threshold=5), name="llm", clock=clock),
        session_limiter=RateLimiter(30, 60, clock=clock),
    )


@pytest.fixture
def make_runtime(registry: ResilienceRegistry, sleep: RecordingSleep, clock: FakeClock):
    def build(llm, routes: dict[str, Any] | None = None, **kwargs: Any) -> SupportRuntime:
        tools = ToolClient(
            "http://tools.test",
            registry.tool_breaker,
            transport=tool_backend(routes or {}),
            sleep=sleep,
        )
        return SupportRuntime(
            default_config(),
            llm,
            tools,
            registry,
            tracer=Tracer(clock=clock),
            sleep=sleep,
            **kwargs,
        )

    return build

"""LLM capability boundary.

Provider adapters return a raw ``ChatResult``. ``parse_reply`` turns it into a
``TextReply`` or a ``ToolRequest`` once, decoding tool arguments at that point,
so the executor never inspects raw provider payloads.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from openai import AsyncOpenAI

from .errors import LLMError
from .logging import get_logger
from .resilience import CircuitBreaker, FallbackHandler, with_fallback_chain

logger = get_logger("llm")

ChatMessage = dict[str, Any]


@dataclass(frozen=True)
class RawToolCall:
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ChatResult:
    content: str | None
    tool_calls: list[RawToolCall] = field(default_factory=list)


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class TextReply:
    content: str


@dataclass(frozen=True)
class ToolRequest:
    calls: list[ToolInvocation]
    content: str | None = None


LLMReply = Union[TextReply, ToolRequest]


class LLMClient(Protocol):
    name: str

    async def chat(self, messages: list[ChatMessage], tools: list[dict[str, Any]] | None = None) -> ChatResult: ...


def parse_reply(result: ChatResult) -> LLMReply:
    if result.tool_calls:
        calls = []
        for raw in result.tool_calls:
            try:
                arguments = json.loads(raw.arguments or "{}")
            except ValueError as exc:
                raise LLMError.tool_parse_failed(raw.arguments) from exc
            if not isinstance(arguments, dict):
                raise LLMError.tool_parse_failed(raw.arguments)
            calls.append(ToolInvocation(id=raw.id, name=raw.name, arguments=arguments))
        return ToolRequest(calls=calls, content=result.content or None)
    if not result.content or not result.content.strip():
        raise LLMError.response_invalid("empty content and no tool calls")
    return TextReply(content=result.content)


def assistant_tool_message(request: ToolRequest) -> ChatMessage:
    """Assistant turn that must precede the matching tool results."""
    return {
        "role": "assistant",
        "content": request.content or "",
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments, ensure_ascii=False)},
            }
            for call in request.calls
        ],
    }


class OpenAIChatClient:
    def __init__(self, api_key: str, model: str, temperature: float = 0.2, timeout_s: float = 20.0) -> None:
        self.name = f"openai:{model}"
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout_s)
        self._model = model
        self._temperature = temperature

    async def chat(self, messages: list[ChatMessage], tools: list[dict[str, Any]] | None = None) -> ChatResult:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except Exception as exc:  # noqa: BLE001
            raise LLMError.request_failed(self.name, str(exc)) from exc
        if not response.choices:
            raise LLMError.response_invalid("no choices returned")
        message = response.choices[0].message
        return ChatResult(
            content=message.content,
            tool_calls=[
                RawToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments or "{}")
                for call in (message.tool_calls or [])
            ],
        )


class FallbackLLMClient:
    """Tries providers in order, each behind its own circuit."""

    def __init__(self, providers: list[LLMClient], breaker: CircuitBreaker) -> None:
        if not providers:
            raise LLMError.api_key_missing()
        self._providers = providers
        self._breaker = breaker
        self.name = providers[0].name
        self.current_provider = providers[0].name

    async def chat(self, messages: list[ChatMessage], tools: list[dict[str, Any]] | None = None) -> ChatResult:
        handlers = [
            FallbackHandler(name=p.name, execute=self._guarded(p, messages, tools)) for p in self._providers
        ]
        outcome = await with_fallback_chain(handlers)
        self.current_provider = outcome.used_handler
        return outcome.result

    def _guarded(self, provider: LLMClient, messages: list[ChatMessage], tools: list[dict[str, Any]] | None):
        async def run() -> ChatResult:
            return await self._breaker.call(provider.name, lambda: provider.chat(messages, tools))

        return run


_ORDER_RE = re.compile(r"(?:#NP|#|NP)\d{4,10}(?!\d)", re.IGNORECASE)
_EMAIL_RE = re.compile(r"Customer email:\s*(\S+@\S+)")


class HeuristicLLMClient:
    """Offline stand-in used in mock mode: no network, deterministic replies."""

    name = "heuristic"

    def __init__(self) -> None:
        self._counter = 0

    async def chat(self, messages: list[ChatMessage], tools: list[dict[str, Any]] | None = None) -> ChatResult:
        last = messages[-1] if messages else {}
        if last.get("role") == "tool":
            return ChatResult(content=self._summarize_tool(last))

        text = str(last.get("content") or "")
        available = {t["function"]["name"] for t in tools or []}
        order = _ORDER_RE.search(text)
        if order and "shopify_get_order_details" in available:
            number = order.group(0).upper()
            return self._call("shopify_get_order_details", {"orderId": number if number.startswith("#") else f"#{number}"})

        email = self._customer_email(messages)
        if "subscription" in text.lower() and email and "skio_get_subscription_status" in available:
            return self._call("skio_get_subscription_status", {"email": email})

        return ChatResult(
            content=(
                "Thanks for reaching out! Could you share a few more details, "
                "such as your order number, so I can look into this for you?"
            )
        )

    def _call(self, name: str, arguments: dict[str, Any]) -> ChatResult:
        self._counter += 1
        return ChatResult(
            content=None,
            tool_calls=[RawToolCall(id=f"call_{self._counter}", name=name, arguments=json.dumps(arguments))],
        )

    @staticmethod
    def _customer_email(messages: list[ChatMessage]) -> str | None:
        for message in messages:
            if message.get("role") == "system":
                match = _EMAIL_RE.search(str(message.get("content") or ""))
                if match:
                    return match.group(1)
        return None

    @staticmethod
    def _summarize_tool(message: ChatMessage) -> str:
        try:
            payload = json.loads(message.get("content") or "{}")
        except ValueError:
            payload = {}
        if not payload.get("success"):
            return (
                "I wasn't able to complete that lookup "
                f"({payload.get('error') or 'unknown error'}). Could you double-check the details?"
            )
        data = payload.get("data") or {}
        if isinstance(data, dict) and "name" in data and "status" in data:
            tracking = data.get("trackingUrl")
            suffix = f" You can track it here: {tracking}" if tracking else ""
            return f"Your order {data['name']} is currently {data['status']}.{suffix}"
        if isinstance(data, dict) and "subscriptionId" in data:
            return (
                f"Your subscription {data['subscriptionId']} is {data.get('status')}, "
                f"next billing date {data.get('nextBillingDate')}."
            )
        return "All done! Is there anything else I can help you with?"

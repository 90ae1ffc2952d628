import json

import pytest

from support_server.errors import CircuitOpenError, ErrorCode, LLMError
from support_server.llm import (
    ChatResult,
    FallbackLLMClient,
    HeuristicLLMClient,
    RawToolCall,
    TextReply,
    ToolRequest,
    assistant_tool_message,
    parse_reply,
)
from support_server.resilience import CircuitBreaker, CircuitBreakerConfig
from tool_server.catalog import get_tool, tool_schema


def test_parse_text_reply():
    assert parse_reply(ChatResult(content="Hello")) == TextReply(content="Hello")


def test_parse_tool_request_decodes_arguments():
    reply = parse_reply(
        ChatResult(content=None, tool_calls=[RawToolCall(id="c1", name="shopify_get_order_details", arguments='{"orderId": "#1001"}')])
    )
    assert isinstance(reply, ToolRequest)
    assert reply.calls[0].arguments == {"orderId": "#1001"}
    message = assistant_tool_message(reply)
    assert message["role"] == "assistant"
    assert json.loads(message["tool_calls"][0]["function"]["arguments"]) == {"orderId": "#1001"}


@pytest.mark.parametrize("arguments", ["{not json", "[1, 2]"])
def test_parse_rejects_bad_arguments(arguments):
    with pytest.raises(LLMError) as excinfo:
        parse_reply(ChatResult(content=None, tool_calls=[RawToolCall(id="c", name="x", arguments=arguments)]))
    assert excinfo.value.code is ErrorCode.LLM_TOOL_PARSE_FAILED
    assert excinfo.value.retryable is True


def test_parse_rejects_empty_reply():
    with pytest.raises(LLMError) as excinfo:
        parse_reply(ChatResult(content="  "))
    assert excinfo.value.code is ErrorCode.LLM_RESPONSE_INVALID


class FlakyProvider:
    def __init__(self, name, error=None):
        self.name = name
        self.error = error
        self.calls = 0

    async def chat(self, messages, tools=None):
        self.calls += 1
        if self.error:
            raise self.error
        return ChatResult(content=f"from {self.name}")


@pytest.mark.asyncio
async def test_fallback_client_moves_to_next_provider(clock):
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1), clock=clock)
    primary = FlakyProvider("primary", LLMError.request_failed("primary", "500"))
    backup = FlakyProvider("backup")
    client = FallbackLLMClient([primary, backup], breaker)

    assert (await client.chat([])).content == "from backup"
    assert client.current_provider == "backup"

    # Primary circuit is now open and is skipped without a call.
    await client.chat([])
    assert primary.calls == 1
    assert backup.calls == 2


@pytest.mark.asyncio
async def test_fallback_client_reraises_last_error(clock):
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1), clock=clock)
    client = FallbackLLMClient([FlakyProvider("only", LLMError.request_failed("only", "500"))], breaker)
    with pytest.raises(LLMError):
        await client.chat([])
    with pytest.raises(CircuitOpenError):
        await client.chat([])


def test_fallback_client_needs_a_provider():
    with pytest.raises(LLMError) as excinfo:
        FallbackLLMClient([], CircuitBreaker())
    assert excinfo.value.code is ErrorCode.LLM_API_KEY_MISSING


@pytest.mark.asyncio
async def test_heuristic_client_requests_order_lookup_then_summarizes():
    llm = HeuristicLLMClient()
    tools = [tool_schema(get_tool("shopify_get_order_details"))]
    first = await llm.chat([{"role": "user", "content": "where is np1234567"}], tools)
    (call,) = first.tool_calls
    assert call.name == "shopify_get_order_details"
    assert json.loads(call.arguments) == {"orderId": "#NP1234567"}

    tool_message = {
        "role": "tool",
        "tool_call_id": call.id,
        "content": json.dumps({"success": True, "data": {"name": "#NP1234567", "status": "FULFILLED"}}),
    }
    second = await llm.chat([tool_message], tools)
    assert second.content == "Your order #NP1234567 is currently FULFILLED."


@pytest.mark.asyncio
async def test_heuristic_client_subscription_uses_prompt_email():
    llm = HeuristicLLMClient()
    tools = [tool_schema(get_tool("skio_get_subscription_status"))]
    messages = [
        {"role": "system", "content": "CUSTOMER:\nCustomer email: customer@example.com"},
        {"role": "user", "content": "What's my subscription status?"},
    ]
    reply = await llm.chat(messages, tools)
    assert json.loads(reply.tool_calls[0].arguments) == {"email": "customer@example.com"}


@pytest.mark.asyncio
async def test_heuristic_client_asks_for_details():
    reply = await HeuristicLLMClient().chat([{"role": "user", "content": "hello"}], None)
    assert reply.tool_calls == []
    assert "order number" in reply.content

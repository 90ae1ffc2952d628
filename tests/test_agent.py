import json

import pytest

from conftest import ScriptedLLM, text, tool_backend, tool_call
from support_server.agent import AgentExecutor, build_messages
from support_server.config import default_config
from support_server.errors import LLMError
from support_server.llm import ChatResult, RawToolCall
from support_server.prompts import DEGRADED_MESSAGE, ITERATION_CAP_MESSAGE
from support_server.state import Role
from support_server.tool_client import ToolClient

CONFIG = default_config()
ORDER_AGENT = CONFIG.get_agent("order-status-agent")
ORDER = {"id": "gid://shopify/Order/1001", "name": "#1001", "status": "DELIVERED"}


@pytest.fixture
def session_id(memory, tracer, customer):
    session_id = memory.start_session(customer)
    tracer.init_session(session_id)
    return session_id


@pytest.fixture
def build(memory, tracer, registry, sleep):
    def make(llm, routes=None, **kwargs):
        tools = ToolClient("http://tools.test", registry.tool_breaker, transport=tool_backend(routes or {}), sleep=sleep)
        return AgentExecutor(llm, tools, memory, tracer, CONFIG.brand, sleep=sleep, **kwargs)

    return make


@pytest.mark.asyncio
async def test_plain_reply_is_recorded(build, memory, tracer, session_id):
    llm = ScriptedLLM([text("Happy to help!")])
    memory.add_message(session_id, Role.CUSTOMER, "hi")

    response = await build(llm).execute(ORDER_AGENT, session_id, "hi")

    assert response.message == "Happy to help!"
    assert response.iterations == 0
    last = memory.require_session(session_id).messages[-1]
    assert (last.role, last.content) == (Role.AGENT, "Happy to help!")
    trace = tracer.get_trace(session_id)
    assert trace.timeline[-1].data["role"] == "agent"
    assert trace.spans[0].name == "agent:order-status-agent"

    sent = llm.calls[0]
    assert sent["messages"][0]["role"] == "system"
    assert [m["role"] for m in sent["messages"]] == ["system", "user"]
    assert {t["function"]["name"] for t in sent["tools"]} == set(ORDER_AGENT.tools)


@pytest.mark.asyncio
async def test_tool_round_trip(build, memory, tracer, session_id):
    llm = ScriptedLLM([
        tool_call("shopify_get_order_details", {"orderId": "#1001"}),
        text("Your order #1001 was delivered."),
    ])
    routes = {"/shopify/get_order_details": {"success": True, "data": ORDER}}

    response = await build(llm, routes).execute(ORDER_AGENT, session_id, "Where is #1001?")

    assert response.message == "Your order #1001 was delivered."
    assert response.iterations == 1
    assert [c.tool_handle for c in response.tool_calls] == ["shopify_get_order_details"]
    session = memory.require_session(session_id)
    assert session.context.current_order == ORDER
    assert session.tool_calls[0].result.success is True
    assert tracer.get_trace(session_id).summary.successful_tool_calls == 1

    followup = llm.calls[1]["messages"]
    assistant, tool_message = followup[-2], followup[-1]
    assert assistant["tool_calls"][0]["function"]["name"] == "shopify_get_order_details"
    assert tool_message["tool_call_id"] == "call_1"
    assert json.loads(tool_message["content"]) == {"success": True, "data": ORDER}


@pytest.mark.asyncio
async def test_disallowed_tool_is_reported_back_to_llm(build, memory, session_id):
    llm = ScriptedLLM([
        tool_call("skio_cancel_subscription", {"subscriptionId": "sub_001", "cancellationReasons": []}),
        text("I can't do that here."),
    ])
    response = await build(llm).execute(ORDER_AGENT, session_id, "cancel my sub")
    assert response.message == "I can't do that here."
    record = memory.require_session(session_id).tool_calls[0]
    assert record.result.success is False
    assert "not available for agent 'order-status-agent'" in record.result.error


@pytest.mark.asyncio
async def test_iteration_cap(build, memory, session_id):
    llm = ScriptedLLM([tool_call("shopify_get_order_details", {"orderId": "#1001"}, f"call_{i}") for i in range(5)])
    routes = {"/shopify/get_order_details": {"success": True, "data": ORDER}}

    response = await build(llm, routes, max_iterations=2).execute(ORDER_AGENT, session_id, "loop")

    assert response.capped is True
    assert response.message == ITERATION_CAP_MESSAGE
    assert response.iterations == 2
    assert len(memory.require_session(session_id).tool_calls) == 2
    assert memory.require_session(session_id).messages[-1].content == ITERATION_CAP_MESSAGE


@pytest.mark.asyncio
async def test_malformed_reply_is_retried_once(build, sleep, session_id):
    llm = ScriptedLLM([
        ChatResult(content=None, tool_calls=[RawToolCall(id="c", name="shopify_get_order_details", arguments="{oops")]),
        text("Recovered."),
    ])
    response = await build(llm).execute(ORDER_AGENT, session_id, "hi")
    assert response.message == "Recovered."
    assert len(llm.calls) == 2
    assert len(sleep.delays) == 1


@pytest.mark.asyncio
async def test_persistent_llm_failure_degrades(build, tracer, session_id):
    llm = ScriptedLLM([LLMError.request_failed("scripted", "503"), LLMError.request_failed("scripted", "503")])

    response = await build(llm).execute(ORDER_AGENT, session_id, "hi")

    assert response.degraded is True
    assert response.message == DEGRADED_MESSAGE
    errors = [e for e in tracer.get_trace(session_id).timeline if e.type == "error"]
    assert len(errors) == 1
    assert errors[0].data["context"]["code"] == "E6002"


def test_build_messages_includes_context_and_history(memory, customer):
    session_id = memory.start_session(customer)
    memory.add_message(session_id, Role.CUSTOMER, "Where is #1001?")
    memory.add_message(session_id, Role.AGENT, "It was delivered.")
    memory.add_message(session_id, Role.CUSTOMER, "And the tracking link?")
    session = memory.require_session(session_id)

    messages = build_messages(ORDER_AGENT, session, CONFIG.brand, "And the tracking link?")

    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[-1]["content"] == "And the tracking link?"
    system = messages[0]["content"]
    assert "Customer email: customer@example.com" in system
    assert "ORDERS MENTIONED: #1001" in system
    assert "Do not share orders from other customers" in system

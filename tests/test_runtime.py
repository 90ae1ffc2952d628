import json

import pytest

from conftest import ScriptedLLM, text, tool_call
from support_server.errors import ErrorCode, LLMError, SessionError
from support_server.llm import HeuristicLLMClient
from support_server.orchestrator import ESCALATED_MESSAGE, REASON_HUMAN_REQUEST, REASON_TOOL_FAILURES
from support_server.resilience import RateLimiter
from support_server.state import ToolResult

ORDER = {"id": "gid://shopify/Order/NP1234567", "name": "#1234567", "status": "FULFILLED"}


def _events(runtime, session_id, kind):
    return [e for e in runtime.tracer.get_trace(session_id).timeline if e.type == kind]


@pytest.mark.asyncio
async def test_order_status_message(make_runtime):
    runtime = make_runtime(
        HeuristicLLMClient(),
        {"/shopify/get_order_details": {"success": True, "data": ORDER}},
    )
    session_id = runtime.start_session("customer@example.com", "Ada", "Lovelace", "cust_1")

    response = await runtime.handle_message(session_id, "Where is my order #1234567?")

    assert response.escalated is False
    assert response.intent == "ORDER_STATUS"
    assert response.agent == "order-status-agent"
    assert response.message == "Your order #1234567 is currently FULFILLED."
    context = runtime.memory.require_session(session_id).context
    assert context.mentioned_order_numbers.to_list() == ["#1234567"]
    assert context.current_order == ORDER


@pytest.mark.asyncio
async def test_subscription_cancel_routes_to_subscription_agent(make_runtime):
    llm = ScriptedLLM([text("I can help with that. Which subscription?")])
    runtime = make_runtime(llm)
    session_id = runtime.start_session("customer@example.com")

    response = await runtime.handle_message(session_id, "I want to cancel my subscription")

    assert response.intent == "SUBSCRIPTION_CANCEL"
    assert response.agent == "subscription-management-agent"
    assert response.message == "I can help with that. Which subscription?"
    offered = {t["function"]["name"] for t in llm.calls[0]["tools"]}
    assert "skio_cancel_subscription" in offered
    assert "shopify_refund_order" not in offered


@pytest.mark.asyncio
async def test_human_request_escalates_and_stays_escalated(make_runtime):
    llm = ScriptedLLM([])
    runtime = make_runtime(llm)
    session_id = runtime.start_session("customer@example.com", "Ada", "Lovelace")

    first = await runtime.handle_message(session_id, "I want to speak to a human")
    assert first.escalated is True
    assert "escalated" in first.message
    assert first.escalation_summary["customer"] == {
        "email": "customer@example.com",
        "name": "Ada Lovelace",
        "external_id": "",
    }
    assert first.escalation_summary["reason"] == REASON_HUMAN_REQUEST
    routing_before = len(_events(runtime, session_id, "routing"))
    messages_before = len(runtime.memory.require_session(session_id).messages)

    second = await runtime.handle_message(session_id, "Hello?")
    assert second.escalated is True
    assert second.message == ESCALATED_MESSAGE
    assert second.escalation_summary == first.escalation_summary
    assert len(_events(runtime, session_id, "routing")) == routing_before
    assert len(runtime.memory.require_session(session_id).messages) == messages_before
    assert llm.calls == []


@pytest.mark.asyncio
async def test_recorded_tool_failures_escalate_next_message(make_runtime):
    llm = ScriptedLLM([])
    runtime = make_runtime(llm)
    session_id = runtime.start_session("customer@example.com")
    for _ in range(2):
        runtime.memory.record_tool_call(
            session_id, "shopify_get_order_details", {"orderId": "#1001"}, ToolResult(success=False, error="down")
        )

    response = await runtime.handle_message(session_id, "Any update on this?")

    assert response.escalated is True
    assert response.escalation_summary["reason"] == REASON_TOOL_FAILURES
    assert llm.calls == []


@pytest.mark.asyncio
async def test_tool_failures_during_turn_escalate_after_reply(make_runtime):
    llm = ScriptedLLM([
        tool_call("shopify_get_order_details", {"orderId": "#1001"}, "c1"),
        tool_call("shopify_get_order_details", {"orderId": "#1001"}, "c2"),
        text("Sorry, I couldn't look that up."),
    ])
    runtime = make_runtime(llm, {"/shopify/get_order_details": {"success": False, "error": "Order not found"}})
    session_id = runtime.start_session("customer@example.com")

    response = await runtime.handle_message(session_id, "Where is my order #1001?")

    assert response.escalated is True
    assert response.agent == "order-status-agent"
    assert response.escalation_summary["reason"] == REASON_TOOL_FAILURES
    assert response.escalation_summary["attempted_resolution"] == "order-status-agent"
    assert runtime.memory.failed_tool_calls(session_id) == 2


@pytest.mark.asyncio
async def test_unknown_session(make_runtime):
    runtime = make_runtime(ScriptedLLM([]))
    with pytest.raises(SessionError) as excinfo:
        await runtime.handle_message("session_missing", "hi")
    assert excinfo.value.code is ErrorCode.SESSION_NOT_FOUND


@pytest.mark.asyncio
async def test_session_rate_limit(make_runtime, registry, clock):
    registry.session_limiter = RateLimiter(1, 60, clock=clock)
    runtime = make_runtime(ScriptedLLM([]))
    session_id = runtime.start_session("customer@example.com")

    await runtime.handle_message(session_id, "hi")
    with pytest.raises(SessionError) as excinfo:
        await runtime.handle_message(session_id, "hi again")
    assert excinfo.value.code is ErrorCode.SESSION_RATE_LIMITED
    assert excinfo.value.details["retry_after_s"] == pytest.approx(60)


@pytest.mark.asyncio
async def test_traces_and_summary(make_runtime, tmp_path):
    runtime = make_runtime(ScriptedLLM([text("Hello!")]), trace_dir=str(tmp_path))
    session_id = runtime.start_session("customer@example.com")
    await runtime.handle_message(session_id, "hello, I have a question")

    report = runtime.get_trace(session_id, "text")
    assert f"SESSION TRACE: {session_id}" in report
    assert "Escalated: No" in report

    exported = runtime.get_trace(session_id, "json")
    assert exported["summary"]["message_count"] == 2
    assert [s["name"] for s in exported["spans"]] == ["agent:general-support-agent", "handle_message"]

    written = json.loads((tmp_path / f"{session_id}.json").read_text(encoding="utf-8"))
    assert written["session_id"] == session_id

    summary = runtime.get_session_summary(session_id)
    assert summary["escalated"] is False
    assert summary["current_agent"] == "general-support-agent"
    assert summary["message_count"] == 2
    assert [s.id for s in runtime.active_sessions()] == [session_id]


@pytest.mark.asyncio
async def test_llm_outage_degrades_instead_of_raising(make_runtime):
    runtime = make_runtime(ScriptedLLM([LLMError.request_failed("scripted", "down")] * 2))
    session_id = runtime.start_session("customer@example.com")
    response = await runtime.handle_message(session_id, "hello")
    assert response.escalated is False
    assert "trouble" in response.message

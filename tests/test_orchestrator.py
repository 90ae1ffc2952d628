import pytest

from support_server.config import AgentConfig, BrandContext, RoutingRule, SupportConfig, default_config
from support_server.memory import MemoryStore
from support_server.orchestrator import (
    ESCALATED_MESSAGE,
    REASON_CANNOT_PROCEED,
    REASON_HUMAN_REQUEST,
    REASON_MULTI_INTENT,
    REASON_TOOL_FAILURES,
    Orchestrator,
)
from support_server.state import Role, ToolResult


@pytest.fixture
def orchestrator(memory, tracer):
    return Orchestrator(default_config(), memory, tracer)


@pytest.fixture
def session_id(memory, tracer, customer):
    session_id = memory.start_session(customer)
    tracer.init_session(session_id)
    return session_id


def _events(tracer, session_id, kind):
    return [e for e in tracer.get_trace(session_id).timeline if e.type == kind]


def test_routes_order_status(orchestrator, memory, tracer, session_id):
    result = orchestrator.route(session_id, "Where is my order #1234567?")
    assert result.target_agent.id == "order-status-agent"
    assert result.intent.primary == "ORDER_STATUS"
    assert result.rule == "order-status"
    assert result.confidence == pytest.approx(0.7)
    assert result.decision.action == "proceed"

    context = memory.require_session(session_id).context
    assert context.current_agent == "order-status-agent"
    assert context.intent_history.to_list() == ["ORDER_STATUS"]
    (event,) = _events(tracer, session_id, "routing")
    assert event.data == {"from": "none", "to": "order-status-agent", "reason": "ORDER_STATUS"}


def test_routing_event_only_when_agent_changes(orchestrator, memory, tracer, session_id):
    orchestrator.route(session_id, "Where is my order?")
    orchestrator.route(session_id, "Where is my order now?")
    assert len(_events(tracer, session_id, "routing")) == 1

    result = orchestrator.route(session_id, "I need a refund")
    assert result.target_agent.id == "refund-processing-agent"
    assert result.continued is False
    routing = _events(tracer, session_id, "routing")
    assert [e.data["to"] for e in routing] == ["order-status-agent", "refund-processing-agent"]
    assert memory.require_session(session_id).context.previous_agents.to_list() == ["order-status-agent"]


def test_unmatched_message_goes_to_general_support(orchestrator, session_id):
    result = orchestrator.route(session_id, "hmm")
    assert result.intent.primary == "GENERAL_INQUIRY"
    assert result.target_agent.id == "general-support-agent"
    assert result.rule == "general-inquiry"


def test_same_topic_follow_up_stays_with_agent(orchestrator, tracer, session_id):
    first = orchestrator.route(session_id, "Please pause my subscription")
    assert first.target_agent.id == "subscription-management-agent"

    second = orchestrator.route(session_id, "Actually I want to cancel my subscription")
    assert second.intent.primary == "SUBSCRIPTION_CANCEL"
    assert second.target_agent.id == "subscription-management-agent"
    assert len(_events(tracer, session_id, "routing")) == 1


@pytest.mark.parametrize(
    ("opening", "switch", "intent", "agent"),
    [
        ("I want to cancel my subscription", "Please cancel my order #1234567", "CANCEL_ORDER", "order-cancellation-agent"),
        (
            "What is my subscription status?",
            "Where is my order #1234567? order status please",
            "ORDER_STATUS",
            "order-status-agent",
        ),
        ("Please cancel my order #1234567", "I want to cancel my subscription", "SUBSCRIPTION_CANCEL", "subscription-management-agent"),
    ],
)
def test_topic_switch_changes_agent(orchestrator, session_id, opening, switch, intent, agent):
    orchestrator.route(session_id, opening)

    result = orchestrator.route(session_id, switch)

    assert result.intent.primary == intent
    assert result.target_agent.id == agent
    assert result.continued is False


def test_continuity_overrides_competing_rule(memory, tracer, session_id):
    agents = [
        AgentConfig(id="subs", name="Subscriptions", system_prompt="Subscriptions.", triggers=["subscription"]),
        AgentConfig(id="billing", name="Billing", system_prompt="Billing."),
        AgentConfig(id="fallback", name="Fallback", system_prompt="Anything."),
    ]
    config = SupportConfig(
        name="test",
        brand=BrandContext(name="Test"),
        agents=agents,
        routing=[
            RoutingRule(intent_id="subscription-inquiry", target_agent="subs", keywords=["subscription status"]),
            RoutingRule(intent_id="billing", target_agent="billing", keywords=["billing", "date", "billing date"]),
        ],
        fallback_agent="fallback",
    )
    orchestrator = Orchestrator(config, memory, tracer)
    assert orchestrator.route(session_id, "subscription status").target_agent.id == "subs"

    result = orchestrator.route(session_id, "when is my subscription billing date")

    assert result.rule == "billing"
    assert result.target_agent.id == "subs"
    assert result.continued is True


def test_rule_below_min_confidence_is_never_selected(memory, tracer, session_id):
    agents = [
        AgentConfig(id="tracking", name="Tracking", system_prompt="Track orders."),
        AgentConfig(id="orders", name="Orders", system_prompt="General orders."),
        AgentConfig(id="fallback", name="Fallback", system_prompt="Anything."),
    ]
    config = SupportConfig(
        name="test",
        brand=BrandContext(name="Test"),
        agents=agents,
        routing=[
            RoutingRule(intent_id="order-status", target_agent="tracking", keywords=["where is my order"], min_confidence=0.9),
            RoutingRule(intent_id="orders", target_agent="orders", keywords=["order"], min_confidence=0.1),
        ],
        fallback_agent="fallback",
    )
    result = Orchestrator(config, memory, tracer).route(session_id, "Where is my order?")
    assert result.target_agent.id == "orders"
    assert result.confidence == pytest.approx(0.2)

    unmatched = Orchestrator(config, memory, tracer).route(session_id, "nothing here")
    assert unmatched.target_agent.id == "fallback"
    assert unmatched.rule is None
    assert unmatched.decision.action == "escalate"


def test_explicit_human_request_escalates(orchestrator, memory, tracer, session_id):
    memory.add_message(session_id, Role.CUSTOMER, "I want to speak to a human")
    result = orchestrator.check_escalation(session_id, "I want to speak to a human")

    assert result.escalated is True
    assert result.reason == REASON_HUMAN_REQUEST
    assert result.customer_message == orchestrator.config.escalation.customer_message
    assert result.summary["customer"]["email"] == "customer@example.com"
    assert result.summary["issue_type"] == "unknown"
    assert memory.is_escalated(session_id)
    assert len(_events(tracer, session_id, "escalation")) == 1


def test_already_escalated_returns_fixed_message(orchestrator, memory, tracer, session_id):
    orchestrator.check_escalation(session_id, "get me a manager")
    before = len(tracer.get_trace(session_id).timeline)

    result = orchestrator.check_escalation(session_id, "Hello?")
    assert result.escalated is True
    assert result.customer_message == ESCALATED_MESSAGE
    assert result.reason == REASON_HUMAN_REQUEST
    assert len(tracer.get_trace(session_id).timeline) == before


def test_no_trigger_does_not_escalate(orchestrator, memory, session_id):
    result = orchestrator.check_escalation(session_id, "Where is my order #1234567?")
    assert result.escalated is False
    assert not memory.is_escalated(session_id)


def test_distinct_intents_escalate(orchestrator, memory, session_id):
    for intent in ("ORDER_STATUS", "REFUND_REQUEST", "PRODUCT_INQUIRY"):
        memory.record_intent(session_id, intent)
    result = orchestrator.check_escalation(session_id, "ok")
    assert result.reason == REASON_MULTI_INTENT
    assert result.summary["issue_type"] == "ORDER_STATUS"


def test_failed_tools_escalate(orchestrator, memory, session_id):
    for _ in range(2):
        memory.record_tool_call(
            session_id, "shopify_get_order_details", {"orderId": "#1"}, ToolResult(success=False, error="down")
        )
    result = orchestrator.check_escalation(session_id, "any news?")
    assert result.reason == REASON_TOOL_FAILURES
    assert result.summary["tool_calls"] == [
        {"tool": "shopify_get_order_details", "success": False},
        {"tool": "shopify_get_order_details", "success": False},
    ]


def test_explicit_request_outranks_tool_failures(orchestrator, memory, session_id):
    for _ in range(2):
        memory.record_tool_call(session_id, "shopify_get_order_details", {}, ToolResult(success=False))
    assert orchestrator.check_escalation(session_id, "let me talk to a supervisor").reason == REASON_HUMAN_REQUEST


def test_agent_handoff_phrase_escalates(orchestrator, session_id):
    result = orchestrator.check_escalation(session_id, "thanks", "I'm escalating this to our billing team.")
    assert result.reason == REASON_CANNOT_PROCEED


def test_summary_keeps_last_three_messages_truncated(orchestrator, memory, session_id):
    for i in range(4):
        memory.add_message(session_id, Role.CUSTOMER, f"{i}" * 150)
    result = orchestrator.check_escalation(session_id, "a real person please")
    previews = result.summary["conversation_summary"]
    assert [p["preview"][0] for p in previews] == ["1", "2", "3"]
    assert all(len(p["preview"]) == 100 for p in previews)
    assert result.summary["message_count"] == 4


def test_summary_failure_still_escalates(orchestrator, memory, tracer, session_id, monkeypatch):
    def broken(session, reason):
        raise KeyError("boom")

    monkeypatch.setattr(orchestrator, "_build_summary", broken)
    result = orchestrator.check_escalation(session_id, "human please")
    assert result.escalated is True
    assert set(result.summary) == {"session_id", "customer", "reason"}
    assert memory.is_escalated(session_id)
    assert len(_events(tracer, session_id, "error")) == 1


def test_agent_lookup(orchestrator):
    assert orchestrator.get_agent("refund-processing-agent").name
    assert orchestrator.get_agent("nobody") is None
    assert len(orchestrator.all_agents()) == 8


def test_multi_intent_trigger_ignores_history_cap(tracer, customer):
    memory = MemoryStore(max_intent_history=1)
    session_id = memory.start_session(customer)
    tracer.init_session(session_id)
    for intent in ("ORDER_STATUS", "REFUND_REQUEST", "PRODUCT_INQUIRY"):
        memory.record_intent(session_id, intent)

    result = Orchestrator(default_config(), memory, tracer).check_escalation(session_id, "ok")

    assert result.reason == REASON_MULTI_INTENT

"""Agent and routing configuration.

The configuration is produced offline from brand workflow manuals and ticket
history. At runtime it is read-only: either loaded from a JSON document or the
built-in e-commerce default below.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from tool_server.catalog import get_tool

from .errors import ConfigError
from .intents import INTENT_CATEGORIES, intent_id
from .logging import get_logger
from .resilience import ConfidenceThresholds

logger = get_logger("config")


class _Model(BaseModel):
    # Accept both snake_case and the camelCase emitted by the config generator.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class BrandContext(_Model):
    name: str
    tone: str = "friendly, professional, empathetic"
    policies: list[str] = Field(default_factory=list)


class AgentConfig(_Model):
    id: str
    name: str
    description: str = ""
    system_prompt: str
    tools: list[str] = Field(default_factory=list)
    triggers: list[str] = Field(default_factory=list)
    boundaries: list[str] = Field(default_factory=list)
    escalation_conditions: list[str] = Field(default_factory=list)


class RoutingRule(_Model):
    intent_id: str
    target_agent: str
    keywords: list[str] = Field(default_factory=list)
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)


class EscalationConfig(_Model):
    keywords: list[str] = Field(
        default_factory=lambda: ["human", "real person", "manager", "supervisor", "live agent"]
    )
    trigger_phrases: list[str] = Field(
        default_factory=lambda: ["speak to", "talk to", "transfer to", "transfer me"]
    )
    handoff_phrases: list[str] = Field(
        default_factory=lambda: [
            "escalating this to",
            "escalate this to",
            "transfer you to",
            "transferring you to",
            "connect you with a human",
            "hand this over to",
        ]
    )
    distinct_intent_threshold: int = Field(default=3, ge=1)
    failed_tool_threshold: int = Field(default=2, ge=1)
    customer_message: str = (
        "I've escalated your request to a member of our support team. "
        "A specialist will follow up with you shortly."
    )
    summary_fields: list[str] = Field(
        default_factory=lambda: ["customer", "issue_type", "tool_calls", "mentioned_orders", "conversation_summary"]
    )


class MemoryLimits(_Model):
    """Caps for the per-session logs.

    Entries past a cap are dropped, so the summary intent list stops growing
    once ``max_intent_history`` is reached. Distinct-intent counting is not capped.
    """

    max_order_numbers: int = Field(default=20, ge=1)
    max_intent_history: int = Field(default=100, ge=1)
    max_previous_agents: int = Field(default=100, ge=1)


class ConfidenceConfig(_Model):
    proceed: float = 0.3
    clarify: float = 0.2
    fallback: float = 0.1

    def thresholds(self) -> ConfidenceThresholds:
        return ConfidenceThresholds(proceed=self.proceed, clarify=self.clarify, fallback=self.fallback)


class SupportConfig(_Model):
    name: str
    version: str = "1.0.0"
    brand: BrandContext
    agents: list[AgentConfig]
    routing: list[RoutingRule]
    fallback_agent: str
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    memory: MemoryLimits = Field(default_factory=MemoryLimits)
    confidence: ConfidenceConfig = Field(default_factory=ConfidenceConfig)

    @model_validator(mode="after")
    def _check_references(self) -> "SupportConfig":
        if not self.agents:
            raise ValueError("at least one agent is required")
        agent_ids = {agent.id for agent in self.agents}
        if len(agent_ids) != len(self.agents):
            raise ValueError("agent ids must be unique")
        if self.fallback_agent not in agent_ids:
            raise ValueError(f"fallback agent '{self.fallback_agent}' is not defined")
        for rule in self.routing:
            if rule.target_agent not in agent_ids:
                raise ValueError(f"routing rule '{rule.intent_id}' targets unknown agent '{rule.target_agent}'")
        for agent in self.agents:
            for handle in agent.tools:
                if get_tool(handle) is None:
                    raise ValueError(f"agent '{agent.id}' references unknown tool '{handle}'")
        return self

    def get_agent(self, agent_id: str) -> AgentConfig:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        raise ConfigError.agent_not_found(agent_id)


def load_config(path: str | Path | None = None) -> SupportConfig:
    """Load a configuration document, or the default when no path is given."""
    if path is None:
        return default_config()
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError.invalid(f"cannot read {path}: {exc}") from exc
    try:
        config = SupportConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise ConfigError.invalid(f"{path}: {exc.error_count()} error(s): {exc.errors()[0]['msg']}") from exc
    logger.info(
        "config_loaded",
        extra={"extra": {"path": str(path), "agents": len(config.agents), "rules": len(config.routing)}},
    )
    return config


def _agent_prompt(role: str, brand: str, description: str) -> str:
    return (
        f"You are a {role} specialist for {brand}.\n\n"
        f"YOUR ROLE: {description}\n\n"
        "COMMUNICATION STYLE:\n"
        "- Be friendly and empathetic\n"
        "- Confirm actions before and after taking them\n"
        "- If unsure, ask clarifying questions\n"
        "- Never guess or make up information"
    )


def default_config(brand_name: str = "Demo Store") -> SupportConfig:
    """Built-in e-commerce configuration used when no document is configured."""
    agents = [
        AgentConfig(
            id="order-status-agent",
            name="Order Status",
            description="Look up order status and tracking information.",
            system_prompt=_agent_prompt("order status", brand_name, "Look up order status and tracking information."),
            tools=["shopify_get_customer_orders", "shopify_get_order_details"],
            triggers=["status", "tracking", "delivery"],
            boundaries=["Do not share orders from other customers"],
            escalation_conditions=["Cannot find order", "Customer disputes delivery"],
        ),
        AgentConfig(
            id="order-cancellation-agent",
            name="Order Cancellation",
            description="Cancel an order if it has not shipped yet.",
            system_prompt=_agent_prompt("order cancellation", brand_name, "Cancel an order if it has not shipped yet."),
            tools=["shopify_get_order_details", "shopify_cancel_order"],
            triggers=["unfulfilled", "unshipped"],
            boundaries=["Only cancel if status is UNFULFILLED"],
            escalation_conditions=["Order already shipped and customer insists"],
        ),
        AgentConfig(
            id="return-request-agent",
            name="Return Request",
            description="Create a return for eligible orders.",
            system_prompt=_agent_prompt("returns", brand_name, "Create a return for eligible orders."),
            tools=["shopify_get_order_details", "shopify_create_return"],
            triggers=["return", "exchange"],
            boundaries=["Check the return window policy"],
            escalation_conditions=["Outside return window", "Damage claim"],
        ),
        AgentConfig(
            id="refund-processing-agent",
            name="Refund Processing",
            description="Process a refund to the original payment method or store credit.",
            system_prompt=_agent_prompt(
                "refunds", brand_name, "Process a refund to the original payment method or store credit."
            ),
            tools=["shopify_get_order_details", "shopify_refund_order", "shopify_create_store_credit"],
            triggers=["refund"],
            boundaries=["Verify refund amount matches the order"],
            escalation_conditions=["Partial refund dispute", "Fraud suspected"],
        ),
        AgentConfig(
            id="subscription-management-agent",
            name="Subscription Management",
            description="Check, pause, skip, or cancel a subscription.",
            system_prompt=_agent_prompt(
                "subscription", brand_name, "Check, pause, skip, or cancel a subscription."
            ),
            tools=[
                "skio_get_subscription_status",
                "skio_pause_subscription",
                "skio_unpause_subscription",
                "skio_skip_next_order_subscription",
                "skio_cancel_subscription",
            ],
            triggers=["subscription", "pause", "skip", "unsubscribe"],
            boundaries=["Confirm the action before executing it", "Only show the customer's own subscription"],
            escalation_conditions=["Customer wants refund of past charges", "Billing dispute"],
        ),
        AgentConfig(
            id="address-update-agent",
            name="Address Update",
            description="Update the shipping address on unfulfilled orders.",
            system_prompt=_agent_prompt(
                "shipping address", brand_name, "Update the shipping address on unfulfilled orders."
            ),
            tools=["shopify_get_order_details", "shopify_update_order_shipping_address"],
            triggers=["shipping address"],
            boundaries=["Only update if the order has not shipped"],
            escalation_conditions=["Order already shipped", "International address issues"],
        ),
        AgentConfig(
            id="product-information-agent",
            name="Product Information",
            description="Provide product details and recommendations.",
            system_prompt=_agent_prompt(
                "product information", brand_name, "Provide product details and recommendations."
            ),
            tools=[
                "shopify_get_product_details",
                "shopify_get_product_recommendations",
                "shopify_get_collection_recommendations",
                "shopify_get_related_knowledge_source",
            ],
            triggers=["product information"],
            boundaries=["Use verified product information only"],
            escalation_conditions=["Medical or health claims", "Ingredient sensitivity"],
        ),
        AgentConfig(
            id="general-support-agent",
            name="General Support",
            description="Handle general inquiries and identify what the customer needs.",
            system_prompt=(
                f"You are a General Support agent for {brand_name}.\n\n"
                "YOUR ROLE: Handle general inquiries and identify what the customer needs.\n\n"
                "If the customer has a specific request (order issue, subscription change, refund), "
                "gather the details a specialist will need.\n\n"
                "Always maintain conversation context and never contradict previous statements."
            ),
            tools=["shopify_get_related_knowledge_source", "shopify_get_product_details"],
            triggers=["general question", "unclear intent"],
            escalation_conditions=["Cannot determine customer need", "Customer frustrated"],
        ),
    ]

    targets = {
        "ESCALATION_REQUEST": "general-support-agent",
        "SUBSCRIPTION_CANCEL": "subscription-management-agent",
        "SUBSCRIPTION_PAUSE": "subscription-management-agent",
        "SUBSCRIPTION_INQUIRY": "subscription-management-agent",
        "REFUND_REQUEST": "refund-processing-agent",
        "RETURN_REQUEST": "return-request-agent",
        "CANCEL_ORDER": "order-cancellation-agent",
        "ORDER_STATUS": "order-status-agent",
        "SHIPPING_ADDRESS": "address-update-agent",
        "PRODUCT_INQUIRY": "product-information-agent",
        "DISCOUNT_REQUEST": "general-support-agent",
        "GENERAL_INQUIRY": "general-support-agent",
    }
    routing = [
        RoutingRule(intent_id=intent_id(c.name), target_agent=targets[c.name], keywords=list(c.keywords))
        for c in INTENT_CATEGORIES
    ]

    return SupportConfig(
        name=f"{brand_name.lower().replace(' ', '-')}-support",
        brand=BrandContext(
            name=brand_name,
            policies=[
                "Returns accepted within 30 days of delivery",
                "Orders can be cancelled until they ship",
            ],
        ),
        agents=agents,
        routing=routing,
        fallback_agent="general-support-agent",
    )

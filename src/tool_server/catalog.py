"""Tool catalog (single source of truth).

The support server validates calls against these definitions and the mock tool
server exposes one endpoint per entry, so both sides import from here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ParamType = Literal["string", "number", "boolean", "array", "object"]


@dataclass(frozen=True)
class ToolParam:
    name: str
    type: ParamType
    required: bool
    description: str
    enum: tuple[str, ...] | None = None


@dataclass(frozen=True)
class ToolDefinition:
    handle: str
    description: str
    endpoint: str
    params: tuple[ToolParam, ...] = field(default_factory=tuple)
    method: str = "POST"

    @property
    def category(self) -> str:
        return self.handle.split("_", 1)[0]

    def required_params(self) -> list[str]:
        return [p.name for p in self.params if p.required]


def _p(name: str, type_: ParamType, description: str, *, required: bool = True, enum: tuple[str, ...] | None = None) -> ToolParam:
    return ToolParam(name=name, type=type_, required=required, description=description, enum=enum)


SHOPIFY_TOOLS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        handle="shopify_add_tags",
        description="Add tags to an order, draft order, customer, product, or article.",
        endpoint="/shopify/add_tags",
        params=(
            _p("id", "string", "Shopify resource GID"),
            _p("tags", "array", "Tags to add"),
        ),
    ),
    ToolDefinition(
        handle="shopify_cancel_order",
        description="Cancel an order with reason and refund options.",
        endpoint="/shopify/cancel_order",
        params=(
            _p("orderId", "string", "Order GID"),
            _p(
                "reason",
                "string",
                "Cancellation reason",
                enum=("CUSTOMER", "DECLINED", "FRAUD", "INVENTORY", "OTHER", "STAFF"),
            ),
            _p("notifyCustomer", "boolean", "Notify customer"),
            _p("restock", "boolean", "Restock inventory"),
            _p("staffNote", "string", "Internal note"),
            _p("refundMode", "string", "Refund method", enum=("ORIGINAL", "STORE_CREDIT")),
            _p("storeCredit", "object", "Store credit options"),
        ),
    ),
    ToolDefinition(
        handle="shopify_create_discount_code",
        description="Create a discount code for the customer.",
        endpoint="/shopify/create_discount_code",
        params=(
            _p("type", "string", "percentage (0-1) or fixed"),
            _p("value", "number", "Discount value"),
            _p("duration", "number", "Validity in hours"),
            _p("productIds", "array", "Product GIDs or empty for order-wide"),
        ),
    ),
    ToolDefinition(
        handle="shopify_create_return",
        description="Create a return for an order.",
        endpoint="/shopify/create_return",
        params=(_p("orderId", "string", "Order GID"),),
    ),
    ToolDefinition(
        handle="shopify_create_store_credit",
        description="Credit store credit to a customer.",
        endpoint="/shopify/create_store_credit",
        params=(
            _p("id", "string", "Customer or StoreCreditAccount GID"),
            _p("creditAmount", "object", "Amount and currency"),
            _p("expiresAt", "string", "ISO8601 expiry or null", required=False),
        ),
    ),
    ToolDefinition(
        handle="shopify_get_collection_recommendations",
        description="Get collection recommendations from keywords.",
        endpoint="/shopify/get_collection_recommendations",
        params=(_p("queryKeys", "array", "Keywords for what the customer wants"),),
    ),
    ToolDefinition(
        handle="shopify_get_customer_orders",
        description="Get customer orders with pagination.",
        endpoint="/shopify/get_customer_orders",
        params=(
            _p("email", "string", "Customer email"),
            _p("after", "string", 'Cursor or "null"'),
            _p("limit", "number", "Max 250"),
        ),
    ),
    ToolDefinition(
        handle="shopify_get_order_details",
        description="Get order details by order number.",
        endpoint="/shopify/get_order_details",
        params=(_p("orderId", "string", "Order identifier starting with #"),),
    ),
    ToolDefinition(
        handle="shopify_get_product_details",
        description="Get product info by id, name, or key feature.",
        endpoint="/shopify/get_product_details",
        params=(
            _p("queryType", "string", "How to interpret queryKey", enum=("id", "name", "key feature")),
            _p("queryKey", "string", "Lookup key"),
        ),
    ),
    ToolDefinition(
        handle="shopify_get_product_recommendations",
        description="Get product recommendations from keywords.",
        endpoint="/shopify/get_product_recommendations",
        params=(_p("queryKeys", "array", "Keywords for intent"),),
    ),
    ToolDefinition(
        handle="shopify_get_related_knowledge_source",
        description="Get FAQs, PDFs, blogs and pages related to a question.",
        endpoint="/shopify/get_related_knowledge_source",
        params=(
            _p("question", "string", "Customer question"),
            _p("specificToProductId", "string", "Product GID or null"),
        ),
    ),
    ToolDefinition(
        handle="shopify_refund_order",
        description="Refund an order.",
        endpoint="/shopify/refund_order",
        params=(
            _p("orderId", "string", "Order GID"),
            _p("refundMethod", "string", "Refund destination", enum=("ORIGINAL_PAYMENT_METHODS", "STORE_CREDIT")),
        ),
    ),
    ToolDefinition(
        handle="shopify_update_order_shipping_address",
        description="Update an order's shipping address.",
        endpoint="/shopify/update_order_shipping_address",
        params=(
            _p("orderId", "string", "Order GID"),
            _p("shippingAddress", "object", "Full address object"),
        ),
    ),
)

SKIO_TOOLS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        handle="skio_cancel_subscription",
        description="Cancel a subscription.",
        endpoint="/skio/cancel-subscription",
        params=(
            _p("subscriptionId", "string", "Subscription ID"),
            _p("cancellationReasons", "array", "Reasons for cancellation"),
        ),
    ),
    ToolDefinition(
        handle="skio_get_subscription_status",
        description="Get subscription status for a customer.",
        endpoint="/skio/get-subscription-status",
        params=(_p("email", "string", "Customer email"),),
    ),
    ToolDefinition(
        handle="skio_pause_subscription",
        description="Pause a subscription until a date.",
        endpoint="/skio/pause-subscription",
        params=(
            _p("subscriptionId", "string", "Subscription ID"),
            _p("pausedUntil", "string", "Date YYYY-MM-DD"),
        ),
    ),
    ToolDefinition(
        handle="skio_skip_next_order_subscription",
        description="Skip the next subscription order.",
        endpoint="/skio/skip-next-order-subscription",
        params=(_p("subscriptionId", "string", "Subscription ID"),),
    ),
    ToolDefinition(
        handle="skio_unpause_subscription",
        description="Unpause a paused subscription.",
        endpoint="/skio/unpause-subscription",
        params=(_p("subscriptionId", "string", "Subscription ID"),),
    ),
)

TOOLS: dict[str, ToolDefinition] = {tool.handle: tool for tool in SHOPIFY_TOOLS + SKIO_TOOLS}


def get_tool(handle: str) -> ToolDefinition | None:
    return TOOLS.get(handle)


def list_tools(category: str | None = None) -> list[ToolDefinition]:
    tools = list(TOOLS.values())
    if category is not None:
        tools = [tool for tool in tools if tool.category == category]
    return tools


def tool_schema(tool: ToolDefinition) -> dict[str, Any]:
    """OpenAI function-tool schema for one catalog entry."""
    properties: dict[str, Any] = {}
    for param in tool.params:
        prop: dict[str, Any] = {"type": param.type, "description": param.description}
        if param.type == "array":
            prop["items"] = {}
        if param.enum:
            prop["enum"] = list(param.enum)
        properties[param.name] = prop
    return {
        "type": "function",
        "function": {
            "name": tool.handle,
            "description": tool.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": tool.required_params(),
            },
        },
    }

"""Handler registry for the mock tool server."""

from __future__ import annotations

from typing import Any, Callable

from ..catalog import ToolDefinition, list_tools
from ..store import DemoStore
from . import shopify, skio

ToolHandler = Callable[[dict[str, Any], DemoStore], Any]

TOOL_HANDLERS: dict[str, ToolHandler] = {
    "shopify_add_tags": shopify.add_tags,
    "shopify_cancel_order": shopify.cancel_order,
    "shopify_create_discount_code": shopify.create_discount_code,
    "shopify_create_return": shopify.create_return,
    "shopify_create_store_credit": shopify.create_store_credit,
    "shopify_get_collection_recommendations": shopify.get_collection_recommendations,
    "shopify_get_customer_orders": shopify.get_customer_orders,
    "shopify_get_order_details": shopify.get_order_details,
    "shopify_get_product_details": shopify.get_product_details,
    "shopify_get_product_recommendations": shopify.get_product_recommendations,
    "shopify_get_related_knowledge_source": shopify.get_related_knowledge_source,
    "shopify_refund_order": shopify.refund_order,
    "shopify_update_order_shipping_address": shopify.update_order_shipping_address,
    "skio_cancel_subscription": skio.cancel_subscription,
    "skio_get_subscription_status": skio.get_subscription_status,
    "skio_pause_subscription": skio.pause_subscription,
    "skio_skip_next_order_subscription": skio.skip_next_order,
    "skio_unpause_subscription": skio.unpause_subscription,
}

ENDPOINTS: dict[str, ToolDefinition] = {tool.endpoint: tool for tool in list_tools()}


def get_tool_handler(handle: str) -> ToolHandler | None:
    return TOOL_HANDLERS.get(handle)


def get_tool_by_endpoint(endpoint: str) -> ToolDefinition | None:
    return ENDPOINTS.get(endpoint)

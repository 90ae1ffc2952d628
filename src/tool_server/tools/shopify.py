"""Mock Shopify tools backed by the demo store."""

from __future__ import annotations

from typing import Any

from ..schemas import ToolFailure
from ..store import DemoStore


def get_customer_orders(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    limit = int(params.get("limit") or 10)
    if limit < 1 or limit > 250:
        raise ToolFailure("INVALID_ARGUMENT", "limit must be between 1 and 250")
    return {"orders": store.orders[:limit], "hasNextPage": len(store.orders) > limit, "endCursor": None}


def get_order_details(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    order_id = str(params.get("orderId") or "")
    order = store.find_order(order_id)
    if order is None:
        raise ToolFailure("NOT_FOUND", f"Order {order_id} not found")
    return order


def cancel_order(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    order = store.find_order(str(params["orderId"]))
    if order is None:
        raise ToolFailure("NOT_FOUND", f"Order {params['orderId']} not found")
    if order["status"] in {"DELIVERED", "FULFILLED"}:
        raise ToolFailure("INVALID_STATE", f"Order {order['name']} has already shipped")
    order["status"] = "CANCELLED"
    return {"cancelled": True, "orderId": order["id"]}


def refund_order(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    return {"refunded": True, "orderId": params["orderId"], "refundMethod": params["refundMethod"]}


def create_return(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    return {"returnId": f"return_{store.next_id()}", "orderId": params["orderId"]}


def update_order_shipping_address(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    order = store.find_order(str(params["orderId"]))
    if order is None:
        raise ToolFailure("NOT_FOUND", f"Order {params['orderId']} not found")
    order["shippingAddress"] = params["shippingAddress"]
    return {"updated": True, "orderId": order["id"]}


def create_discount_code(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    return {"code": f"DISCOUNT_LF_{store.next_id():06d}"}


def create_store_credit(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    return {
        "storeCreditAccountId": f"gid://shopify/StoreCreditAccount/{store.next_id()}",
        "credited": params["creditAmount"],
        "newBalance": params["creditAmount"],
    }


def add_tags(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    return {"added": list(params["tags"])}


def get_product_details(params: dict[str, Any], store: DemoStore) -> list[dict[str, Any]]:
    key = str(params["queryKey"]).lower()
    if params["queryType"] == "id":
        matches = [p for p in store.products if p["id"].lower() == key]
    else:
        matches = [p for p in store.products if key in p["title"].lower() or key in p["description"].lower()]
    if not matches:
        raise ToolFailure("NOT_FOUND", "Product not found")
    return matches


def get_product_recommendations(params: dict[str, Any], store: DemoStore) -> list[dict[str, Any]]:
    return [{k: p[k] for k in ("id", "title", "handle")} for p in store.products]


def get_collection_recommendations(params: dict[str, Any], store: DemoStore) -> list[dict[str, Any]]:
    return [
        {"id": "gid://shopify/Collection/1", "title": "Sleep Collection", "handle": "sleep"},
        {"id": "gid://shopify/Collection/2", "title": "Wellness Collection", "handle": "wellness"},
    ]


def get_related_knowledge_source(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    return {
        "faqs": [
            {
                "question": "How do I use the patches?",
                "answer": "Apply to clean, dry skin 30 minutes before bedtime.",
            }
        ],
        "pdfs": [],
        "blogArticles": [],
        "pages": [],
    }

"""In-memory demo data served by the mock tool backend."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

DEMO_ORDERS: list[dict[str, Any]] = [
    {
        "id": "gid://shopify/Order/1001",
        "name": "#1001",
        "createdAt": "2026-02-01T10:00:00Z",
        "status": "DELIVERED",
        "trackingUrl": "https://tracking.example.com/abc123",
        "items": [{"title": "Sleep Patches", "quantity": 2}],
    },
    {
        "id": "gid://shopify/Order/1002",
        "name": "#1002",
        "createdAt": "2026-02-05T14:30:00Z",
        "status": "FULFILLED",
        "trackingUrl": "https://tracking.example.com/xyz789",
        "items": [{"title": "Calm Patches", "quantity": 1}],
    },
    {
        "id": "gid://shopify/Order/1003",
        "name": "#1003",
        "createdAt": "2026-02-07T09:00:00Z",
        "status": "UNFULFILLED",
        "trackingUrl": None,
        "items": [{"title": "Focus Patches", "quantity": 3}],
    },
    {
        "id": "gid://shopify/Order/NP1234567",
        "name": "#NP1234567",
        "createdAt": "2026-02-01T10:00:00Z",
        "status": "FULFILLED",
        "trackingUrl": "https://track.example.com/123456",
        "items": [{"title": "Sleep Patches", "quantity": 2}],
    },
]

DEMO_SUBSCRIPTIONS: list[dict[str, Any]] = [
    {
        "id": "sub_001",
        "status": "ACTIVE",
        "nextBillingDate": "2026-02-15",
        "email": "customer@example.com",
    },
]

DEMO_PRODUCTS: list[dict[str, Any]] = [
    {
        "id": "gid://shopify/Product/1",
        "title": "Sleep Patches",
        "handle": "sleep-patches",
        "description": "Natural sleep patches for kids",
    },
    {
        "id": "gid://shopify/Product/2",
        "title": "Calm Patches",
        "handle": "calm-patches",
        "description": "Calming patches for busy days",
    },
]


@dataclass
class DemoStore:
    orders: list[dict[str, Any]] = field(default_factory=lambda: copy.deepcopy(DEMO_ORDERS))
    subscriptions: list[dict[str, Any]] = field(default_factory=lambda: copy.deepcopy(DEMO_SUBSCRIPTIONS))
    products: list[dict[str, Any]] = field(default_factory=lambda: copy.deepcopy(DEMO_PRODUCTS))
    counter: int = 0

    def find_order(self, order_id: str) -> dict[str, Any] | None:
        key = order_id.replace("#", "").upper()
        for order in self.orders:
            if order["name"].replace("#", "").upper() == key or order["id"].upper().endswith(f"/{key}"):
                return order
        return None

    def find_subscription(self, subscription_id: str) -> dict[str, Any] | None:
        return next((s for s in self.subscriptions if s["id"] == subscription_id), None)

    def next_id(self) -> int:
        self.counter += 1
        return self.counter


_STORE = DemoStore()


def get_store() -> DemoStore:
    return _STORE


def reset_store() -> None:
    global _STORE
    _STORE = DemoStore()

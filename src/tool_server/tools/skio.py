"""Mock Skio subscription tools backed by the demo store."""

from __future__ import annotations

from typing import Any

from ..schemas import ToolFailure
from ..store import DemoStore


def _subscription(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    sub = store.find_subscription(str(params["subscriptionId"]))
    if sub is None:
        raise ToolFailure("NOT_FOUND", f"Subscription {params['subscriptionId']} not found")
    return sub


def get_subscription_status(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    email = params.get("email")
    sub = next((s for s in store.subscriptions if s["email"] == email), None)
    if sub is None:
        sub = store.subscriptions[0]
    return {"status": sub["status"], "subscriptionId": sub["id"], "nextBillingDate": sub["nextBillingDate"]}


def cancel_subscription(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    sub = _subscription(params, store)
    sub["status"] = "CANCELLED"
    return {"cancelled": True, "subscriptionId": sub["id"]}


def pause_subscription(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    sub = _subscription(params, store)
    if sub["status"] != "ACTIVE":
        raise ToolFailure("INVALID_STATE", f"Subscription {sub['id']} is {sub['status']}")
    sub["status"] = "PAUSED"
    return {"paused": True, "subscriptionId": sub["id"], "pausedUntil": params["pausedUntil"]}


def unpause_subscription(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    sub = _subscription(params, store)
    if sub["status"] != "PAUSED":
        raise ToolFailure("INVALID_STATE", f"Subscription {sub['id']} is not paused")
    sub["status"] = "ACTIVE"
    return {"unpaused": True, "subscriptionId": sub["id"]}


def skip_next_order(params: dict[str, Any], store: DemoStore) -> dict[str, Any]:
    sub = _subscription(params, store)
    return {"skipped": True, "subscriptionId": sub["id"]}

"""Keyword intent classifier.

Categories are a static table compiled once at import. Each matched keyword
scores its word count, so multi-word phrases outweigh single words; ties go to
the category with the higher static priority.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

GENERAL_INQUIRY = "GENERAL_INQUIRY"


@dataclass(frozen=True)
class IntentCategory:
    name: str
    keywords: tuple[str, ...]
    priority: int
    workflow: str

    @property
    def max_score(self) -> int:
        return sum(len(k.split()) for k in self.keywords)


@dataclass(frozen=True)
class IntentClassification:
    primary: str
    secondary: list[str] = field(default_factory=list)
    confidence: float = 0.0
    extracted_entities: dict[str, str] = field(default_factory=dict)


class IntentClassifier(Protocol):
    def classify(self, text: str) -> IntentClassification: ...


INTENT_CATEGORIES: tuple[IntentCategory, ...] = (
    IntentCategory(
        "ESCALATION_REQUEST",
        (
            "speak to human",
            "talk to human",
            "real person",
            "speak to manager",
            "talk to manager",
            "human agent",
            "live agent",
            "customer service representative",
            "speak to supervisor",
            "talk to supervisor",
            "transfer to supervisor",
            "transfer me to",
            "transfer to agent",
        ),
        15,
        "escalation",
    ),
    IntentCategory(
        "SUBSCRIPTION_CANCEL",
        (
            "cancel subscription",
            "stop subscription",
            "unsubscribe",
            "cancel my subscription",
            "end subscription",
            "terminate subscription",
        ),
        10,
        "subscription-cancellation",
    ),
    IntentCategory(
        "SUBSCRIPTION_PAUSE",
        (
            "pause subscription",
            "pause my subscription",
            "skip next",
            "skip order",
            "skip subscription",
            "delay subscription",
            "hold subscription",
            "skip my next",
        ),
        10,
        "subscription-pause",
    ),
    IntentCategory(
        "SUBSCRIPTION_INQUIRY",
        ("subscription status", "billing date", "next subscription", "when is my subscription"),
        5,
        "subscription-management",
    ),
    IntentCategory(
        "REFUND_REQUEST",
        ("refund", "money back", "get refund", "want refund", "need refund", "full refund"),
        8,
        "refund-processing",
    ),
    IntentCategory(
        "RETURN_REQUEST",
        ("return", "send back", "exchange", "wrong item", "defective", "return order"),
        7,
        "return-processing",
    ),
    IntentCategory(
        "CANCEL_ORDER",
        ("cancel order", "cancel my order", "dont want order", "cancel the order"),
        6,
        "order-cancellation",
    ),
    IntentCategory(
        "ORDER_STATUS",
        (
            "where is my order",
            "order status",
            "status of order",
            "tracking",
            "shipped",
            "delivery status",
            "when arrive",
            "what is the status",
            "order tracking",
            "track my order",
        ),
        3,
        "order-tracking",
    ),
    IntentCategory(
        "SHIPPING_ADDRESS",
        ("change address", "update address", "wrong address", "shipping address", "new address"),
        4,
        "address-update",
    ),
    IntentCategory(
        "PRODUCT_INQUIRY",
        ("product", "how to use", "ingredient", "recommend", "which patch"),
        2,
        "product-information",
    ),
    IntentCategory(
        "DISCOUNT_REQUEST",
        ("discount", "coupon", "code", "promo", "deal"),
        2,
        "discount-handling",
    ),
    IntentCategory(
        GENERAL_INQUIRY,
        ("question", "help", "information", "tell me"),
        1,
        "general-support",
    ),
)

_ENTITY_PATTERNS: dict[str, re.Pattern[str]] = {
    "order_number": re.compile(r"#?\d{6,10}|np\d{6,10}", re.IGNORECASE),
    "email": re.compile(r"[\w.-]+@[\w.-]+\.\w+"),
    "date": re.compile(r"\d{1,2}[/-]\d{1,2}[/-]\d{2,4}"),
    "amount": re.compile(r"\$\d+\.?\d*"),
}


def intent_id(category: str) -> str:
    """Routing-rule form of a category name: ``ORDER_STATUS`` -> ``order-status``."""
    return category.lower().replace("_", "-")


def extract_entities(text: str) -> dict[str, str]:
    entities: dict[str, str] = {}
    for name, pattern in _ENTITY_PATTERNS.items():
        match = pattern.search(text)
        if match:
            entities[name] = match.group(0)
    return entities


class KeywordIntentClassifier:
    def __init__(self, categories: tuple[IntentCategory, ...] = INTENT_CATEGORIES) -> None:
        self._categories = {c.name: c for c in categories}

    def classify(self, text: str) -> IntentClassification:
        lowered = text.lower()
        scored = []
        for category in self._categories.values():
            score = sum(len(k.split()) for k in category.keywords if k in lowered)
            scored.append((score, category.priority, category.name))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)

        top_score, _, top_name = scored[0]
        entities = extract_entities(text)
        if top_score == 0:
            return IntentClassification(primary=GENERAL_INQUIRY, extracted_entities=entities)

        secondary = [name for score, _, name in scored[1:4] if score > 0]
        max_score = self._categories[top_name].max_score
        return IntentClassification(
            primary=top_name,
            secondary=secondary,
            confidence=top_score / max_score if max_score else 0.0,
            extracted_entities=entities,
        )

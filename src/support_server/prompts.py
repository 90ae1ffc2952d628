"""Prompt assembly and fixed customer-facing messages.

Keep prompts here so agent logic remains clean and testable.
"""

from __future__ import annotations

import json
from typing import Any

from .config import AgentConfig, BrandContext
from .state import Session

ITERATION_CAP_MESSAGE = (
    "I'm sorry, I wasn't able to finish handling your request. "
    "Could you tell me a bit more so I can try again, or ask for a team member?"
)

DEGRADED_MESSAGE = (
    "I'm sorry, our assistant is having trouble right now. "
    "Please try again in a moment, or ask to speak with a team member."
)

GUIDELINES = (
    "GUIDELINES:\n"
    "- Use the available tools to look up facts; never invent order or subscription details.\n"
    "- Confirm with the customer before taking an irreversible action.\n"
    "- If a tool fails, explain briefly and suggest a next step.\n"
    "- Never contradict what was said earlier in this conversation."
)


def _compact(value: Any, limit: int = 600) -> str:
    text = json.dumps(value, ensure_ascii=False, default=str)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def build_system_prompt(agent: AgentConfig, session: Session, brand: BrandContext) -> str:
    """Agent prompt plus live session context."""
    customer = session.customer
    context = session.context
    sections = [
        agent.system_prompt.strip(),
        f"BRAND: {brand.name} (tone: {brand.tone})",
        (
            "CUSTOMER:\n"
            f"Customer name: {customer.full_name or 'unknown'}\n"
            f"Customer email: {customer.email}\n"
            f"Customer id: {customer.external_id or 'unknown'}"
        ),
    ]

    if len(context.mentioned_order_numbers):
        sections.append("ORDERS MENTIONED: " + ", ".join(context.mentioned_order_numbers))
    if context.current_order is not None:
        sections.append("CURRENT ORDER: " + _compact(context.current_order))
    if context.order_history:
        sections.append(f"ORDER HISTORY ({len(context.order_history)} orders): " + _compact(context.order_history))
    if context.subscription_status is not None:
        sections.append("SUBSCRIPTION: " + _compact(context.subscription_status))

    if agent.boundaries:
        sections.append("BOUNDARIES (never violate):\n" + "\n".join(f"- {b}" for b in agent.boundaries))
    if brand.policies:
        sections.append("POLICIES:\n" + "\n".join(f"- {p}" for p in brand.policies))
    sections.append(GUIDELINES)
    return "\n\n".join(sections)

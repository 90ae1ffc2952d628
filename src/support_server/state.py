"""Session state containers owned by the memory store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Iterator, TypeVar

T = TypeVar("T")


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Role(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class CustomerInfo:
    email: str
    first_name: str = ""
    last_name: str = ""
    external_id: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, str]:
        return {"email": self.email, "name": self.full_name, "external_id": self.external_id}


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    timestamp: str = field(default_factory=now_utc_iso)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call, shared by the tool client and the memory log."""

    success: bool
    data: Any | None = None
    error: str | None = None
    retryable: bool | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.retryable is not None:
            payload["retryable"] = self.retryable
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion
        return payload


@dataclass(frozen=True)
class ToolCallRecord:
    tool_handle: str
    params: dict[str, Any]
    result: ToolResult
    timestamp: str = field(default_factory=now_utc_iso)


class BoundedLog(Generic[T]):
    """Append-only list with a hard cap; appends past the cap are refused."""

    def __init__(self, cap: int) -> None:
        self.cap = cap
        self._items: list[T] = []
        self.dropped = 0

    def append(self, item: T) -> bool:
        if len(self._items) >= self.cap:
            self.dropped += 1
            return False
        self._items.append(item)
        return True

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def to_list(self) -> list[T]:
        return list(self._items)


@dataclass
class SessionContext:
    mentioned_order_numbers: BoundedLog[str]
    intent_history: BoundedLog[str]
    previous_agents: BoundedLog[str]
    order_history: list[Any] | None = None
    subscription_status: Any | None = None
    current_order: Any | None = None
    current_agent: str = ""
    escalated: bool = False
    escalation_reason: str | None = None
    escalation_summary: dict[str, Any] | None = None
    # Distinct intents seen, kept apart from the capped history.
    intents_seen: set[str] = field(default_factory=set)


@dataclass
class Session:
    id: str
    customer: CustomerInfo
    context: SessionContext
    status: SessionStatus = SessionStatus.ACTIVE
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    started_at: str = field(default_factory=now_utc_iso)
    last_activity: str = field(default_factory=now_utc_iso)

    def touch(self) -> None:
        self.last_activity = now_utc_iso()

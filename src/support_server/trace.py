"""Per-session trace timeline for replaying what the engine did.

The timeline is authoritative. The summary is updated on every append, and
both output formats (text report and JSON export) are derived from it.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal

from .errors import StorageError
from .logging import get_logger
from .state import ToolResult

logger = get_logger("trace")

EventType = Literal["message", "tool_call", "routing", "escalation", "error"]
TraceLevel = Literal["minimal", "standard", "verbose"]

PREVIEW_CHARS = 100


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class TraceEvent:
    id: str
    session_id: str
    timestamp: str
    type: EventType
    data: dict[str, Any]


@dataclass
class TraceSpan:
    id: str
    session_id: str
    name: str
    start_time: str
    end_time: str | None = None
    event_ids: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class TraceSummary:
    message_count: int = 0
    tool_call_count: int = 0
    successful_tool_calls: int = 0
    failed_tool_calls: int = 0
    escalated: bool = False
    duration_ms: int = 0
    agents: list[str] = field(default_factory=list)


@dataclass
class SessionTrace:
    session_id: str
    spans: list[TraceSpan] = field(default_factory=list)
    timeline: list[TraceEvent] = field(default_factory=list)
    summary: TraceSummary = field(default_factory=TraceSummary)


class Tracer:
    def __init__(self, level: TraceLevel = "standard", clock: Callable[[], float] = time.time) -> None:
        self.level = level
        self._clock = clock
        self._traces: dict[str, SessionTrace] = {}
        self._active_spans: dict[str, TraceSpan] = {}
        self._first_ts: dict[str, float] = {}

    def init_session(self, session_id: str) -> SessionTrace:
        trace = SessionTrace(session_id=session_id)
        self._traces[session_id] = trace
        self._first_ts.pop(session_id, None)
        return trace

    def get_trace(self, session_id: str) -> SessionTrace | None:
        return self._traces.get(session_id)

    def start_span(self, session_id: str, name: str, attributes: dict[str, Any] | None = None) -> str:
        span = TraceSpan(
            id=f"span_{uuid.uuid4().hex[:10]}",
            session_id=session_id,
            name=name,
            start_time=_iso(self._clock()),
            attributes=dict(attributes or {}),
        )
        self._active_spans[span.id] = span
        return span.id

    def end_span(self, span_id: str) -> None:
        span = self._active_spans.pop(span_id, None)
        if span is None:
            return
        span.end_time = _iso(self._clock())
        trace = self._traces.get(span.session_id)
        if trace is not None:
            trace.spans.append(span)

    def trace_message(self, session_id: str, role: str, content: str) -> TraceEvent:
        event = self._append(
            session_id,
            "message",
            {"role": role, "content": self._preview(content), "length": len(content)},
        )
        self._summary(session_id).message_count += 1
        return event

    def trace_tool_call(
        self,
        session_id: str,
        tool_handle: str,
        params: dict[str, Any],
        result: ToolResult,
        latency_ms: int | None = None,
    ) -> TraceEvent:
        event = self._append(
            session_id,
            "tool_call",
            {
                "tool": tool_handle,
                "params": params if self.level == "verbose" else {"keys": sorted(params)},
                "success": result.success,
                "has_data": result.data is not None,
                "error": result.error,
                "latency_ms": latency_ms,
            },
        )
        summary = self._summary(session_id)
        summary.tool_call_count += 1
        if result.success:
            summary.successful_tool_calls += 1
        else:
            summary.failed_tool_calls += 1
        return event

    def trace_routing(self, session_id: str, from_agent: str, to_agent: str, reason: str) -> TraceEvent:
        event = self._append(session_id, "routing", {"from": from_agent, "to": to_agent, "reason": reason})
        agents = self._summary(session_id).agents
        if to_agent not in agents:
            agents.append(to_agent)
        return event

    def trace_escalation(self, session_id: str, reason: str, summary: dict[str, Any]) -> TraceEvent:
        event = self._append(
            session_id,
            "escalation",
            {
                "reason": reason,
                "summary": summary if self.level == "verbose" else {"keys": sorted(summary)},
            },
        )
        self._summary(session_id).escalated = True
        return event

    def trace_error(self, session_id: str, error: str, context: dict[str, Any] | None = None) -> TraceEvent:
        return self._append(session_id, "error", {"error": error, "context": context or {}})

    def format_trace(self, session_id: str) -> str:
        trace = self._traces.get(session_id)
        if trace is None:
            return "No trace found"
        summary = trace.summary
        rule = "=" * 60
        lines = [
            rule,
            f"SESSION TRACE: {session_id}",
            rule,
            "",
            "SUMMARY:",
            f"  Messages: {summary.message_count}",
            (
                f"  Tool Calls: {summary.tool_call_count} "
                f"({summary.successful_tool_calls} ok, {summary.failed_tool_calls} failed)"
            ),
            f"  Escalated: {'YES' if summary.escalated else 'No'}",
            f"  Agents: {' -> '.join(summary.agents)}",
            f"  Duration: {summary.duration_ms}ms",
            "",
            "TIMELINE:",
        ]
        for event in trace.timeline:
            clock = event.timestamp.split("T")[1].split(".")[0].rstrip("Z")
            lines.append(f"  [{clock}] {event.type.upper()}{_describe(event)}")
        lines.extend(["", rule])
        return "\n".join(lines)

    def export_trace(self, session_id: str) -> dict[str, Any] | None:
        trace = self._traces.get(session_id)
        return asdict(trace) if trace is not None else None

    def write_trace(self, session_id: str, trace_dir: str) -> Path:
        payload = self.export_trace(session_id)
        path = Path(trace_dir) / f"{session_id}.json"
        try:
            os.makedirs(trace_dir, exist_ok=True)
            path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError.write_failed(str(path), str(exc)) from exc
        return path

    def clear(self) -> None:
        self._traces.clear()
        self._active_spans.clear()
        self._first_ts.clear()

    def _preview(self, content: str) -> str:
        return content if self.level == "verbose" else content[:PREVIEW_CHARS]

    def _trace(self, session_id: str) -> SessionTrace:
        trace = self._traces.get(session_id)
        if trace is None:
            trace = self.init_session(session_id)
        return trace

    def _summary(self, session_id: str) -> TraceSummary:
        return self._trace(session_id).summary

    def _append(self, session_id: str, event_type: EventType, data: dict[str, Any]) -> TraceEvent:
        now = self._clock()
        trace = self._trace(session_id)
        event = TraceEvent(
            id=f"evt_{uuid.uuid4().hex[:10]}",
            session_id=session_id,
            timestamp=_iso(now),
            type=event_type,
            data=data,
        )
        trace.timeline.append(event)
        first = self._first_ts.setdefault(session_id, now)
        trace.summary.duration_ms = int((now - first) * 1000)
        for span in self._active_spans.values():
            if span.session_id == session_id:
                span.event_ids.append(event.id)
        if self.level != "minimal":
            logger.info(
                "trace_event",
                extra={"extra": {"session_id": session_id, "type": event_type}},
            )
        return event


def _describe(event: TraceEvent) -> str:
    data = event.data
    if event.type == "message":
        return f": {data['role']} - \"{str(data['content'])[:40]}\""
    if event.type == "tool_call":
        return f": {data['tool']} -> {'ok' if data['success'] else 'failed'}"
    if event.type == "routing":
        return f": {data['from']} -> {data['to']} ({data['reason']})"
    if event.type == "escalation":
        return f": {data['reason']}"
    return f": {data['error']}"

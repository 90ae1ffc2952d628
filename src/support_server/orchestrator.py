"""Message routing and escalation decisions.

Per message the runtime asks the orchestrator two things: should this session
be handed to a human now, and if not, which agent should answer. Both answers
are written to the memory store and the tracer here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import AgentConfig, RoutingRule, SupportConfig
from .errors import EscalationError, RoutingError
from .intents import IntentClassification, IntentClassifier, KeywordIntentClassifier, intent_id
from .logging import get_logger
from .memory import MemoryStore
from .resilience import ConfidenceDecision, evaluate_confidence
from .state import Session
from .trace import Tracer

logger = get_logger("orchestrator")

ESCALATED_MESSAGE = "This issue has been escalated to our team. A specialist will respond shortly."

REASON_HUMAN_REQUEST = "customer explicitly requested human agent"
REASON_MULTI_INTENT = "complex issue requiring multiple intents"
REASON_TOOL_FAILURES = "multiple tool failures during session"
REASON_CANNOT_PROCEED = "agent cannot safely proceed"

PREVIEW_CHARS = 100
KEYWORD_WEIGHT = 0.2
PRIMARY_WEIGHT = 0.5
SECONDARY_WEIGHT = 0.2
MIN_STEM_CHARS = 4


@dataclass(frozen=True)
class RoutingResult:
    target_agent: AgentConfig
    intent: IntentClassification
    confidence: float
    decision: ConfidenceDecision
    rule: str | None = None
    continued: bool = False


@dataclass(frozen=True)
class EscalationResult:
    escalated: bool
    reason: str | None = None
    customer_message: str | None = None
    summary: dict[str, Any] | None = None


def _shares_stem(a: str, b: str) -> bool:
    if a == b:
        return True
    shorter, longer = sorted((a, b), key=len)
    return len(shorter) >= MIN_STEM_CHARS and longer.startswith(shorter)


class Orchestrator:
    def __init__(
        self,
        config: SupportConfig,
        memory: MemoryStore,
        tracer: Tracer,
        classifier: IntentClassifier | None = None,
    ) -> None:
        self.config = config
        self._memory = memory
        self._tracer = tracer
        self._classifier = classifier or KeywordIntentClassifier()
        self._agents = {agent.id: agent for agent in config.agents}
        self._fallback = self._agents[config.fallback_agent]
        self._thresholds = config.confidence.thresholds()

    def get_agent(self, agent_id: str) -> AgentConfig | None:
        return self._agents.get(agent_id)

    def all_agents(self) -> list[AgentConfig]:
        return list(self._agents.values())

    def check_escalation(self, session_id: str, message: str, agent_response: str | None = None) -> EscalationResult:
        session = self._memory.require_session(session_id)
        context = session.context
        if context.escalated:
            return EscalationResult(
                escalated=True,
                reason=context.escalation_reason,
                customer_message=ESCALATED_MESSAGE,
                summary=context.escalation_summary,
            )

        reason = self._escalation_reason(session, message, agent_response)
        if reason is None:
            return EscalationResult(escalated=False)

        summary = self._safe_summary(session, reason)
        self._memory.escalate(session_id, reason, summary)
        self._tracer.trace_escalation(session_id, reason, summary)
        return EscalationResult(
            escalated=True,
            reason=reason,
            customer_message=self.config.escalation.customer_message,
            summary=summary,
        )

    def route(self, session_id: str, message: str) -> RoutingResult:
        session = self._memory.require_session(session_id)
        intent = self._classifier.classify(message)
        lowered = message.lower()

        target = self._fallback
        chosen_rule: str | None = None
        best_score = 0.0
        for rule in self.config.routing:
            score = self._rule_score(lowered, intent, rule)
            # A rule under its own floor never wins, whatever its raw score.
            if score > best_score and score >= rule.min_confidence:
                best_score = score
                target = self._agents[rule.target_agent]
                chosen_rule = rule.intent_id
        if chosen_rule is None:
            logger.info("routing_fallback", extra={"extra": RoutingError.no_agent(intent.primary).to_dict()})

        continued = False
        previous = session.context.current_agent
        current = self._agents.get(previous) if previous else None
        if current is not None and current.id != target.id and self._is_related(intent, current):
            target = current
            continued = True

        if previous != target.id:
            self._tracer.trace_routing(session_id, previous or "none", target.id, intent.primary)
        self._memory.set_current_agent(session_id, target.id)
        self._memory.record_intent(session_id, intent.primary)

        confidence = best_score or intent.confidence
        decision = evaluate_confidence(confidence, self._thresholds)
        if decision.action != "proceed":
            logger.info(
                "routing_low_confidence",
                extra={"extra": RoutingError.low_confidence(session_id, confidence).to_dict()},
            )
        logger.info(
            "routed",
            extra={
                "extra": {
                    "session_id": session_id,
                    "intent": intent.primary,
                    "secondary": intent.secondary,
                    "agent": target.id,
                    "rule": chosen_rule,
                    "continued": continued,
                    "confidence": round(confidence, 3),
                    "decision": decision.action,
                }
            },
        )
        return RoutingResult(
            target_agent=target,
            intent=intent,
            confidence=confidence,
            decision=decision,
            rule=chosen_rule,
            continued=continued,
        )

    def _rule_score(self, lowered: str, intent: IntentClassification, rule: RoutingRule) -> float:
        score = KEYWORD_WEIGHT * sum(1 for k in rule.keywords if k.lower() in lowered)
        if intent_id(intent.primary) == rule.intent_id:
            score += PRIMARY_WEIGHT
        if any(intent_id(s) == rule.intent_id for s in intent.secondary):
            score += SECONDARY_WEIGHT
        return min(score, 1.0)

    @staticmethod
    def _is_related(intent: IntentClassification, agent: AgentConfig) -> bool:
        intent_words = intent.primary.lower().split("_")
        trigger_words = [w for trigger in agent.triggers for w in trigger.lower().split()]
        return any(_shares_stem(i, t) for i in intent_words for t in trigger_words)

    def _escalation_reason(self, session: Session, message: str, agent_response: str | None) -> str | None:
        rules = self.config.escalation
        lowered = message.lower()
        if any(k in lowered for k in rules.keywords) or any(t in lowered for t in rules.trigger_phrases):
            return REASON_HUMAN_REQUEST
        if len(session.context.intents_seen) >= rules.distinct_intent_threshold:
            return REASON_MULTI_INTENT
        if sum(1 for call in session.tool_calls if not call.result.success) >= rules.failed_tool_threshold:
            return REASON_TOOL_FAILURES
        if agent_response and any(p in agent_response.lower() for p in rules.handoff_phrases):
            return REASON_CANNOT_PROCEED
        return None

    def _safe_summary(self, session: Session, reason: str) -> dict[str, Any]:
        try:
            return self._build_summary(session, reason)
        except Exception as exc:  # noqa: BLE001
            error = EscalationError.summary_failed(session.id, str(exc))
            logger.info("escalation_summary_failed", extra={"extra": error.to_dict()})
            self._tracer.trace_error(session.id, error.message, {"code": error.code.value})
            return {
                "session_id": session.id,
                "customer": session.customer.to_dict(),
                "reason": reason,
            }

    def _build_summary(self, session: Session, reason: str) -> dict[str, Any]:
        context = session.context
        intents = context.intent_history
        return {
            "session_id": session.id,
            "customer": session.customer.to_dict(),
            "reason": reason,
            "issue_type": intents[0] if len(intents) else "unknown",
            "message_count": len(session.messages),
            "tool_calls": [
                {"tool": call.tool_handle, "success": call.result.success} for call in session.tool_calls
            ],
            "mentioned_orders": context.mentioned_order_numbers.to_list(),
            "attempted_resolution": context.current_agent or None,
            "conversation_summary": [
                {"role": m.role.value, "preview": m.content[:PREVIEW_CHARS]} for m in session.messages[-3:]
            ],
        }

"""Fault-tolerance primitives: retry, circuit breaker, rate limiter,
confidence thresholds and fallback chains.

Nothing in here knows about sessions or tools. Breakers and limiters are keyed
by an opaque string (tool handle, provider name, session id). Clocks and sleep
are injectable so tests can drive time explicitly.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Literal, TypeVar

from .errors import CircuitOpenError, is_retryable
from .logging import get_logger

logger = get_logger("resilience")

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


# Retry


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_s: float = 0.1
    max_delay_s: float = 5.0
    backoff_multiplier: float = 2.0
    retry_on: Callable[[BaseException], bool] = is_retryable


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Call ``fn`` until it succeeds, the predicate refuses, or attempts run out.

    The last error is re-raised unchanged.
    """
    policy = policy or RetryPolicy()
    delay = policy.initial_delay_s
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not policy.retry_on(exc):
                raise
            logger.info(
                "retry_scheduled",
                extra={
                    "extra": {
                        "label": label,
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "delay_s": delay,
                        "error": str(exc),
                    }
                },
            )
            await sleep(delay)
            delay = min(delay * policy.backoff_multiplier, policy.max_delay_s)
            attempt += 1


# Circuit breaker


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout_s: float = 30.0
    monitoring_window_s: float = 60.0


@dataclass
class CircuitStats:
    state: CircuitState
    last_state_change: float
    recent_failures: list[float] = field(default_factory=list)
    successes_in_half_open: int = 0
    total_failures: int = 0


class CircuitBreaker:
    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        name: str = "circuit",
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock
        self._circuits: dict[str, CircuitStats] = {}

    def can_execute(self, service_id: str) -> bool:
        circuit = self._circuit(service_id)
        if circuit.state is CircuitState.CLOSED or circuit.state is CircuitState.HALF_OPEN:
            return True
        now = self._clock()
        if now - circuit.last_state_change >= self.config.reset_timeout_s:
            self._transition(service_id, circuit, CircuitState.HALF_OPEN, now)
            circuit.successes_in_half_open = 0
            return True
        return False

    def record_success(self, service_id: str) -> None:
        circuit = self._circuit(service_id)
        if circuit.state is not CircuitState.HALF_OPEN:
            return
        circuit.successes_in_half_open += 1
        if circuit.successes_in_half_open >= self.config.success_threshold:
            self._transition(service_id, circuit, CircuitState.CLOSED, self._clock())
            circuit.recent_failures.clear()
            circuit.successes_in_half_open = 0

    def record_failure(self, service_id: str) -> None:
        circuit = self._circuit(service_id)
        now = self._clock()
        window = self.config.monitoring_window_s
        circuit.recent_failures = [t for t in circuit.recent_failures if now - t < window]
        circuit.recent_failures.append(now)
        circuit.total_failures += 1

        if circuit.state is CircuitState.HALF_OPEN:
            self._transition(service_id, circuit, CircuitState.OPEN, now)
            circuit.successes_in_half_open = 0
        elif circuit.state is CircuitState.CLOSED:
            if len(circuit.recent_failures) >= self.config.failure_threshold:
                self._transition(service_id, circuit, CircuitState.OPEN, now)

    async def call(self, service_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        if not self.can_execute(service_id):
            raise CircuitOpenError(service_id, self.config.reset_timeout_s)
        try:
            result = await fn()
        except Exception:
            self.record_failure(service_id)
            raise
        self.record_success(service_id)
        return result

    def get_state(self, service_id: str) -> CircuitStats:
        circuit = self._circuit(service_id)
        return replace(circuit, recent_failures=list(circuit.recent_failures))

    def all_states(self) -> dict[str, CircuitStats]:
        return {service_id: self.get_state(service_id) for service_id in self._circuits}

    def reset(self, service_id: str) -> None:
        self._circuits.pop(service_id, None)

    def reset_all(self) -> None:
        self._circuits.clear()

    def _circuit(self, service_id: str) -> CircuitStats:
        circuit = self._circuits.get(service_id)
        if circuit is None:
            circuit = CircuitStats(state=CircuitState.CLOSED, last_state_change=self._clock())
            self._circuits[service_id] = circuit
        return circuit

    def _transition(self, service_id: str, circuit: CircuitStats, state: CircuitState, now: float) -> None:
        logger.info(
            "circuit_transition",
            extra={
                "extra": {
                    "breaker": self.name,
                    "service_id": service_id,
                    "from": circuit.state.value,
                    "to": state.value,
                    "recent_failures": len(circuit.recent_failures),
                }
            },
        )
        circuit.state = state
        circuit.last_state_change = now


# Rate limiter


class RateLimiter:
    """Sliding-window counter; stale timestamps are pruned on each check."""

    def __init__(self, max_requests: int = 60, window_s: float = 60.0, *, clock: Clock = time.monotonic) -> None:
        self.max_requests = max_requests
        self.window_s = window_s
        self._clock = clock
        self._requests: dict[str, list[float]] = {}

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        timestamps = self._prune(key, now)
        if len(timestamps) >= self.max_requests:
            return False
        self._requests.setdefault(key, timestamps).append(now)
        return True

    def remaining(self, key: str) -> int:
        return max(0, self.max_requests - len(self._prune(key, self._clock())))

    def reset_after(self, key: str) -> float:
        """Seconds until the oldest request in the window expires."""
        now = self._clock()
        timestamps = self._prune(key, now)
        if not timestamps:
            return 0.0
        return max(0.0, timestamps[0] + self.window_s - now)

    def reset(self) -> None:
        self._requests.clear()

    def _prune(self, key: str, now: float) -> list[float]:
        if key not in self._requests:
            return []
        window_start = now - self.window_s
        timestamps = [t for t in self._requests[key] if t > window_start]
        if timestamps:
            self._requests[key] = timestamps
        else:
            del self._requests[key]
        return timestamps


# Confidence thresholds

ConfidenceAction = Literal["proceed", "clarify", "fallback", "escalate"]


@dataclass(frozen=True)
class ConfidenceThresholds:
    proceed: float = 0.3
    clarify: float = 0.2
    fallback: float = 0.1


@dataclass(frozen=True)
class ConfidenceDecision:
    action: ConfidenceAction
    confidence: float
    reason: str


def evaluate_confidence(confidence: float, thresholds: ConfidenceThresholds | None = None) -> ConfidenceDecision:
    thresholds = thresholds or ConfidenceThresholds()
    if confidence >= thresholds.proceed:
        return ConfidenceDecision("proceed", confidence, "confidence sufficient for routing")
    if confidence >= thresholds.clarify:
        return ConfidenceDecision("clarify", confidence, "low confidence, ask customer for clarification")
    if confidence >= thresholds.fallback:
        return ConfidenceDecision("fallback", confidence, "very low confidence, use fallback agent")
    return ConfidenceDecision("escalate", confidence, "confidence too low, consider escalation")


# Fallback chain


def _always(_: BaseException | None) -> bool:
    return True


@dataclass(frozen=True)
class FallbackHandler(Generic[T]):
    name: str
    execute: Callable[[], Awaitable[T]]
    should_try: Callable[[BaseException | None], bool] = _always


@dataclass(frozen=True)
class FallbackOutcome(Generic[T]):
    result: T
    used_handler: str


async def with_fallback_chain(
    handlers: list[FallbackHandler[T]],
    *,
    timeout_s: float | None = None,
) -> FallbackOutcome[T]:
    """Try handlers in order and return the first success.

    When every handler fails the last error is re-raised.
    """
    last_error: BaseException | None = None
    for handler in handlers:
        if not handler.should_try(last_error):
            continue
        try:
            if timeout_s is not None:
                result = await asyncio.wait_for(handler.execute(), timeout=timeout_s)
            else:
                result = await handler.execute()
        except Exception as exc:  # noqa: BLE001
            logger.info(
                "fallback_handler_failed",
                extra={"extra": {"handler": handler.name, "error": str(exc) or type(exc).__name__}},
            )
            last_error = exc
            continue
        logger.info("fallback_handler_succeeded", extra={"extra": {"handler": handler.name}})
        return FallbackOutcome(result=result, used_handler=handler.name)

    if last_error is not None:
        raise last_error
    raise RuntimeError("All fallback handlers failed")


# Process-wide registry


@dataclass
class ResilienceRegistry:
    tool_breaker: CircuitBreaker
    llm_breaker: CircuitBreaker
    session_limiter: RateLimiter

    @classmethod
    def from_settings(cls, settings: Any, *, clock: Clock = time.monotonic) -> "ResilienceRegistry":
        return cls(
            tool_breaker=CircuitBreaker(
                CircuitBreakerConfig(
                    failure_threshold=settings.tool_failure_threshold,
                    success_threshold=settings.circuit_success_threshold,
                    reset_timeout_s=settings.tool_reset_timeout_s,
                    monitoring_window_s=settings.circuit_monitoring_window_s,
                ),
                name="tools",
                clock=clock,
            ),
            llm_breaker=CircuitBreaker(
                CircuitBreakerConfig(
                    failure_threshold=settings.llm_failure_threshold,
                    success_threshold=settings.circuit_success_threshold,
                    reset_timeout_s=settings.llm_reset_timeout_s,
                    monitoring_window_s=settings.circuit_monitoring_window_s,
                ),
                name="llm",
                clock=clock,
            ),
            session_limiter=RateLimiter(
                settings.session_rate_limit,
                settings.session_rate_window_s,
                clock=clock,
            ),
        )

    def reset(self) -> None:
        self.tool_breaker.reset_all()
        self.llm_breaker.reset_all()
        self.session_limiter.reset()

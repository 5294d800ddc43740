"""Retry, retry-budget and circuit-breaker handling for external service calls.

Every outbound call (search providers, rerank, LLM, event store) goes through
``ReliabilityManager.execute_with_retry``. State is kept per service name and
is the only mutable state shared between concurrent pipeline runs, so each
service's state is guarded by its own ``asyncio.Lock``.

The circuit breaker is a plain finite-state machine: ``admit`` and
``next_state`` are pure functions over ``CircuitSnapshot`` and take ``now``
explicitly, so they can be exercised without a real clock.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from attendry.config import settings
from attendry.errors import (
    AuthenticationError,
    CircuitOpenError,
    RequestTimeoutError,
    SchemaValidationError,
    ServiceError,
    UpstreamClientError,
    classify_error,
)

T = TypeVar("T")


# --- Configuration ---


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1
    timeout: float | None = None  # per-attempt deadline, None = rely on the client's own timeout


SERVICE_RETRY_CONFIGS: dict[str, RetryConfig] = {
    "cse": RetryConfig(max_retries=3, base_delay=1.0, max_delay=10.0, backoff_multiplier=2.0, jitter=0.25),
    "firecrawl": RetryConfig(max_retries=2, base_delay=2.0, max_delay=15.0, backoff_multiplier=2.5, jitter=0.25),
    "llm": RetryConfig(max_retries=2, base_delay=1.5, max_delay=8.0, backoff_multiplier=2.0, jitter=0.25),
    "voyage": RetryConfig(max_retries=1, base_delay=1.0, max_delay=5.0, backoff_multiplier=2.0, jitter=0.1),
    "supabase": RetryConfig(max_retries=2, base_delay=0.5, max_delay=5.0, backoff_multiplier=2.0, jitter=0.1),
}


def compute_delay(config: RetryConfig, retry_index: int, rng: Callable[[], float] = random.random) -> float:
    """Backoff before retry ``retry_index`` (0-based), jittered by ``±jitter``."""
    raw = min(config.max_delay, config.base_delay * (config.backoff_multiplier ** retry_index))
    spread = (2.0 * rng() - 1.0) * config.jitter
    return max(0.0, raw * (1.0 + spread))


# --- Circuit breaker FSM ---


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CallOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    AUTH_FAILURE = "auth_failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CircuitPolicy:
    failure_threshold: float = 5.0
    cooldown: float = 30.0
    timeout_weight: float = 0.5


@dataclass(frozen=True)
class CircuitSnapshot:
    state: CircuitState = CircuitState.CLOSED
    failure_weight: float = 0.0
    opened_at: float | None = None
    trial_in_flight: bool = False


def admit(snapshot: CircuitSnapshot, now: float, policy: CircuitPolicy) -> tuple[bool, CircuitSnapshot]:
    """Decide whether a call may proceed, moving OPEN to HALF_OPEN after the cooldown."""
    if snapshot.state == CircuitState.CLOSED:
        return True, snapshot
    if snapshot.state == CircuitState.OPEN:
        opened_at = snapshot.opened_at if snapshot.opened_at is not None else now
        if now - opened_at < policy.cooldown:
            return False, snapshot
        return True, replace(snapshot, state=CircuitState.HALF_OPEN, trial_in_flight=True)
    # HALF_OPEN admits a single trial call at a time.
    if snapshot.trial_in_flight:
        return False, snapshot
    return True, replace(snapshot, trial_in_flight=True)


def next_state(
    snapshot: CircuitSnapshot,
    outcome: CallOutcome,
    now: float,
    policy: CircuitPolicy,
) -> CircuitSnapshot:
    """Transition the breaker after a call finished with ``outcome``."""
    if outcome == CallOutcome.CANCELLED:
        return replace(snapshot, trial_in_flight=False)

    if outcome == CallOutcome.SUCCESS:
        return CircuitSnapshot()

    if outcome == CallOutcome.AUTH_FAILURE or snapshot.state == CircuitState.HALF_OPEN:
        return CircuitSnapshot(
            state=CircuitState.OPEN,
            failure_weight=max(snapshot.failure_weight, policy.failure_threshold),
            opened_at=now,
        )

    if snapshot.state == CircuitState.OPEN:
        # Late result from a call admitted before the breaker opened.
        return snapshot

    weight = policy.timeout_weight if outcome == CallOutcome.TIMEOUT else 1.0
    failure_weight = snapshot.failure_weight + weight
    if failure_weight >= policy.failure_threshold:
        return CircuitSnapshot(state=CircuitState.OPEN, failure_weight=failure_weight, opened_at=now)
    return replace(snapshot, failure_weight=failure_weight)


def outcome_for(error: ServiceError) -> CallOutcome:
    if isinstance(error, AuthenticationError):
        return CallOutcome.AUTH_FAILURE
    if isinstance(error, RequestTimeoutError):
        return CallOutcome.TIMEOUT
    # A definitive client error means the service answered; it is not degraded.
    if isinstance(error, (UpstreamClientError, SchemaValidationError)):
        return CallOutcome.SUCCESS
    return CallOutcome.FAILURE


# --- Retry budget ---


class RetryBudget:
    """Caps retries for one service inside a sliding time window."""

    def __init__(self, max_retries: int, window: float):
        self.max_retries = max_retries
        self.window = window
        self._spent: deque[float] = deque()

    def _expire(self, now: float) -> None:
        while self._spent and now - self._spent[0] >= self.window:
            self._spent.popleft()

    def remaining(self, now: float) -> int:
        self._expire(now)
        return max(0, self.max_retries - len(self._spent))

    def try_consume(self, now: float) -> bool:
        if self.remaining(now) <= 0:
            return False
        self._spent.append(now)
        return True


# --- Results ---


class RetryPhase(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class RetryMetrics:
    service: str
    operation: str
    phase: RetryPhase = RetryPhase.IDLE
    attempts: int = 0
    total_delay: float = 0.0
    duration_ms: int = 0
    error_type: str | None = None
    budget_exhausted: bool = False
    circuit_state: CircuitState = CircuitState.CLOSED

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    @property
    def succeeded(self) -> bool:
        return self.phase == RetryPhase.SUCCEEDED


@dataclass
class RetryResult(Generic[T]):
    data: T
    metrics: RetryMetrics


@dataclass(frozen=True)
class RetryState:
    """Read-only view of one service's reliability state."""

    service: str
    attempt_count: int
    budget_remaining: int
    circuit_state: CircuitState
    last_failure_at: float | None


@dataclass
class _ServiceState:
    budget: RetryBudget
    circuit: CircuitSnapshot = field(default_factory=CircuitSnapshot)
    attempt_count: int = 0
    last_failure_at: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


# --- Manager ---


class ReliabilityManager:
    """Executes async operations with retries, a retry budget and a circuit breaker per service."""

    def __init__(
        self,
        *,
        configs: dict[str, RetryConfig] | None = None,
        policy: CircuitPolicy | None = None,
        budget_max_retries: int | None = None,
        budget_window: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self._configs = dict(SERVICE_RETRY_CONFIGS)
        if configs:
            self._configs.update(configs)
        self._policy = policy or CircuitPolicy(
            failure_threshold=settings.circuit_failure_threshold,
            cooldown=settings.circuit_cooldown_s,
            timeout_weight=settings.circuit_timeout_weight,
        )
        self._budget_max_retries = (
            budget_max_retries if budget_max_retries is not None else settings.retry_budget_max_retries
        )
        self._budget_window = budget_window if budget_window is not None else settings.retry_budget_window_s
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._services: dict[str, _ServiceState] = {}
        self._recent: deque[RetryMetrics] = deque(maxlen=200)

    def config_for(self, service: str) -> RetryConfig:
        return self._configs.get(service, RetryConfig())

    def _state(self, service: str) -> _ServiceState:
        state = self._services.get(service)
        if state is None:
            state = _ServiceState(budget=RetryBudget(self._budget_max_retries, self._budget_window))
            self._services[service] = state
        return state

    def snapshot(self, service: str) -> RetryState:
        state = self._state(service)
        return RetryState(
            service=service,
            attempt_count=state.attempt_count,
            budget_remaining=state.budget.remaining(self._clock()),
            circuit_state=state.circuit.state,
            last_failure_at=state.last_failure_at,
        )

    def reset(self, service: str) -> None:
        """Forget all state for ``service`` (closes its circuit, refills its budget)."""
        self._services.pop(service, None)
        logger.info(f"Reliability state reset for service={service}")

    def recent_metrics(self) -> list[RetryMetrics]:
        return list(self._recent)

    async def execute_with_retry(
        self,
        service: str,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
    ) -> RetryResult[T]:
        """Run ``fn`` with retries; raise the classified error once retries are exhausted."""
        config = config or self.config_for(service)
        state = self._state(service)
        metrics = RetryMetrics(service=service, operation=operation)
        started = self._clock()
        retry_index = 0

        try:
            while True:
                metrics.phase = RetryPhase.ATTEMPTING
                async with state.lock:
                    allowed, state.circuit = admit(state.circuit, self._clock(), self._policy)
                    metrics.circuit_state = state.circuit.state
                if not allowed:
                    metrics.phase = RetryPhase.EXHAUSTED
                    metrics.error_type = CircuitOpenError.__name__
                    logger.warning(f"Circuit open for {service}.{operation}; call short-circuited")
                    raise CircuitOpenError(f"circuit open for {service}", service=service)

                metrics.attempts += 1
                async with state.lock:
                    state.attempt_count += 1

                try:
                    if config.timeout is not None:
                        data = await asyncio.wait_for(fn(), timeout=config.timeout)
                    else:
                        data = await fn()
                except asyncio.CancelledError:
                    async with state.lock:
                        state.circuit = next_state(state.circuit, CallOutcome.CANCELLED, self._clock(), self._policy)
                    raise
                except Exception as exc:
                    error = classify_error(exc, service)
                    now = self._clock()
                    async with state.lock:
                        state.circuit = next_state(state.circuit, outcome_for(error), now, self._policy)
                        state.last_failure_at = now
                        metrics.circuit_state = state.circuit.state
                    metrics.error_type = type(error).__name__

                    can_retry = error.retryable and retry_index < config.max_retries
                    if can_retry:
                        async with state.lock:
                            can_retry = state.budget.try_consume(now)
                        if not can_retry:
                            metrics.budget_exhausted = True
                            logger.warning(f"Retry budget exhausted for {service}; not retrying {operation}")

                    if not can_retry:
                        metrics.phase = RetryPhase.EXHAUSTED
                        logger.warning(
                            f"{service}.{operation} failed after {metrics.attempts} attempt(s): "
                            f"{type(error).__name__}: {error}"
                        )
                        if error is exc:
                            raise
                        raise error from exc

                    metrics.phase = RetryPhase.BACKOFF
                    delay = compute_delay(config, retry_index, self._rng)
                    metrics.total_delay += delay
                    logger.debug(
                        f"{service}.{operation} attempt {metrics.attempts} failed ({type(error).__name__}); "
                        f"retrying in {delay:.2f}s"
                    )
                    await self._sleep(delay)
                    retry_index += 1
                    continue

                async with state.lock:
                    state.circuit = next_state(state.circuit, CallOutcome.SUCCESS, self._clock(), self._policy)
                    metrics.circuit_state = state.circuit.state
                metrics.phase = RetryPhase.SUCCEEDED
                metrics.error_type = None
                return RetryResult(data=data, metrics=metrics)
        finally:
            metrics.duration_ms = int((self._clock() - started) * 1000)
            self._recent.append(metrics)

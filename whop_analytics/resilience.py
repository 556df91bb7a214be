"""
Failure handling for calls to the Whop API.

A CircuitBreaker stops a sync from hammering Whop while it is failing;
retry_with_backoff re-runs transient failures when WHOP_RETRY_ATTEMPTS
asks for it (the default policy is a single attempt).
"""
import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Any, Optional, Dict

from whop_analytics.exceptions import WhopConnectionError
from whop_analytics.observability import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    max_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_requests: int = 1


class CircuitOpenError(WhopConnectionError):
    """Whop calls are being short-circuited after repeated failures."""


class CircuitBreaker:
    """
    Consecutive-failure breaker around one upstream.

    After `failure_threshold` failures in a row the breaker opens and every
    call is refused. Once `recovery_timeout` has passed the next caller moves
    it to half-open, where `half_open_requests` probes are let through; a
    probe's success closes it again, a failure re-opens it.
    """

    def __init__(self, config: Optional[CircuitBreakerConfig] = None, name: str = "whop"):
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: float = 0
        self.probes_sent = 0
        self._lock = asyncio.Lock()

    def _move_to(self, state: CircuitState) -> None:
        if state is self.state:
            return
        log = logger.warning if state is CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.name}' {self.state.value} -> {state.value}",
            extra={"circuit": self.name, "failures": self.failure_count}
        )
        self.state = state
        if state is CircuitState.OPEN:
            self.opened_at = time.monotonic()
        elif state is CircuitState.HALF_OPEN:
            self.probes_sent = 0

    def _seconds_until_probe(self) -> float:
        return max(0.0, self.config.recovery_timeout - (time.monotonic() - self.opened_at))

    async def can_execute(self) -> bool:
        async with self._lock:
            if self.state is CircuitState.CLOSED:
                return True
            if self.state is CircuitState.OPEN:
                if self._seconds_until_probe() > 0:
                    return False
                self._move_to(CircuitState.HALF_OPEN)
                return True
            if self.probes_sent >= self.config.half_open_requests:
                return False
            self.probes_sent += 1
            return True

    async def ensure_closed(self, operation: str) -> None:
        """Raise CircuitOpenError if `operation` may not be attempted now."""
        if not await self.can_execute():
            raise CircuitOpenError(
                f"Circuit breaker is open, {operation} rejected",
                retry_after=int(self._seconds_until_probe()) or None,
            )

    async def record_success(self) -> None:
        async with self._lock:
            self.failure_count = 0
            self._move_to(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            self.failure_count += 1
            if self.state is CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN)
            elif self.state is CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
                self._move_to(CircuitState.OPEN)

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def snapshot(self) -> Dict[str, Any]:
        """State for the health endpoint."""
        info: Dict[str, Any] = {"state": self.state.value, "failures": self.failure_count}
        if self.state is CircuitState.OPEN:
            info["retryInSeconds"] = round(self._seconds_until_probe(), 1)
        return info


def backoff_delay(attempt: int, config: RetryConfig, error: Optional[BaseException] = None) -> float:
    """
    Delay before retry number `attempt` (1-based).

    A `retry_after` hint carried by the error wins over the computed delay
    when it is longer; both are capped at max_delay.
    """
    delay = config.base_delay * config.exponential_base ** (attempt - 1)
    delay *= 1 + config.jitter * random.random()
    hint = getattr(error, "retry_after", None)
    if hint:
        delay = max(delay, float(hint))
    return min(delay, config.max_delay)


async def retry_with_backoff(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    **kwargs
) -> Any:
    """
    Await func(*args, **kwargs), retrying `retryable_exceptions` up to
    config.max_attempts times in total. The last error is re-raised.
    """
    config = config or RetryConfig()
    attempt = 1
    while True:
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= config.max_attempts:
                if config.max_attempts > 1:
                    logger.error(f"Giving up after {attempt} attempts: {e}")
                raise
            delay = backoff_delay(attempt, config, e)
            logger.warning(
                f"Attempt {attempt}/{config.max_attempts} failed, retrying in {delay:.2f}s",
                extra={"attempt": attempt, "error": str(e)}
            )
            await asyncio.sleep(delay)
            attempt += 1

"""Retry and circuit-breaking for outbound identity-provider calls."""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Awaitable, Callable, TypeVar

import httpx

from app.core.logging import DOMAIN_IDENTITY, get_domain_logger
from app.core.settings import settings

logger = get_domain_logger(__name__, DOMAIN_IDENTITY)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})


def is_transient_error(exc: BaseException) -> bool:
    """Network failures and gateway/rate-limit responses are worth another attempt; 4xx lookups are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in TRANSIENT_STATUS_CODES
    return isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError))


async def retry_with_backoff(
    async_func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay_seconds: float = 0.5,
    should_retry: Callable[[BaseException], bool] = is_transient_error,
    label: str = "call",
) -> T:
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            return await async_func()
        except Exception as exc:
            if attempt == attempts - 1 or not should_retry(exc):
                raise
            delay = base_delay_seconds * (2**attempt)
            logger.warning(
                "Transient failure, retrying | call=%s attempt=%s/%s delay_s=%.2f error=%s",
                label,
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    name: str
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 30.0
    half_open_max_calls: int = 1
    state: CircuitState = field(default=CircuitState.CLOSED)
    failure_count: int = field(default=0)
    last_failure_time: float = field(default=0.0)
    half_open_calls: int = field(default=0)
    _lock: Lock = field(default_factory=Lock)

    def retry_after_seconds(self) -> float:
        if self.state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.recovery_timeout_seconds - (time.time() - self.last_failure_time))

    def can_execute(self) -> bool:
        with self._lock:
            if self.state == CircuitState.CLOSED:
                return True
            if self.state == CircuitState.OPEN:
                if time.time() - self.last_failure_time < self.recovery_timeout_seconds:
                    return False
                self.state = CircuitState.HALF_OPEN
                self.half_open_calls = 0
                logger.info("Circuit half-open, allowing a trial call | breaker=%s", self.name)
            if self.half_open_calls < self.half_open_max_calls:
                self.half_open_calls += 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self.state != CircuitState.CLOSED:
                logger.info("Circuit closed | breaker=%s", self.name)
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.half_open_calls = 0

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()
            if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                if self.state != CircuitState.OPEN:
                    logger.warning(
                        "Circuit opened | breaker=%s failures=%s cooldown_s=%s",
                        self.name,
                        self.failure_count,
                        self.recovery_timeout_seconds,
                    )
                self.state = CircuitState.OPEN
                self.half_open_calls = 0

    def status(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "retry_after_seconds": round(self.retry_after_seconds(), 1),
        }


_registry: dict[str, CircuitBreaker] = {}
_registry_lock = Lock()


def get_breaker(name: str) -> CircuitBreaker:
    with _registry_lock:
        if name not in _registry:
            _registry[name] = CircuitBreaker(
                name=name,
                failure_threshold=settings.identity_provider_breaker_threshold,
                recovery_timeout_seconds=settings.identity_provider_breaker_recovery_seconds,
            )
        return _registry[name]


def get_breakers_status() -> dict[str, dict]:
    return {name: breaker.status() for name, breaker in _registry.items()}


def reset_breakers() -> None:
    with _registry_lock:
        _registry.clear()

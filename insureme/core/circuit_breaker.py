"""
Circuit breaker for calls to M-Pesa

While Daraja is down, STK pushes and status queries fail at once with
CircuitBreakerOpenError (503) instead of holding a USSD round-trip open
until the gateway drops it.

    closed     -> open        failure_threshold consecutive failures
    open       -> half_open   first call after timeout_seconds
    half_open  -> closed      success_threshold successes
    half_open  -> open        any failure
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ParamSpec, TypeVar

from insureme.core.config import settings
from insureme.core.exceptions import CircuitBreakerOpenError
from insureme.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

MPESA_SERVICE = "mpesa"


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    # Trial calls let through while half-open
    half_open_max_calls: int = 3


class CircuitBreaker:
    """
    Per-service breaker. Use ``get_instance`` so that the provider, the
    readiness check and the admin endpoint all see the same counters.
    """

    _registry: dict[str, "CircuitBreaker"] = {}
    _registry_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._trial_calls = 0
        self._opened_at = 0.0

    # ── Registry ──

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        with cls._registry_lock:
            breaker = cls._registry.get(service_name)
            if breaker is None:
                breaker = cls._registry[service_name] = cls(service_name, config)
            return breaker

    @classmethod
    def all_instances(cls) -> list["CircuitBreaker"]:
        with cls._registry_lock:
            return list(cls._registry.values())

    @classmethod
    def reset_all(cls) -> None:
        """Forget every registered breaker"""
        with cls._registry_lock:
            cls._registry.clear()

    # ── State ──

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state is CircuitState.HALF_OPEN

    def get_retry_after(self) -> float:
        if self._state is not CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def snapshot(self) -> dict:
        return {
            "service": self.service_name,
            "state": self._state.value,
            "failure_count": self._failures,
            "success_count": self._successes,
            "half_open_calls": self._trial_calls,
            "retry_after_seconds": round(self.get_retry_after(), 2),
        }

    def _move_to(self, new_state: CircuitState) -> None:
        # caller holds self._lock
        if new_state is self._state:
            return
        old_state, self._state = self._state, new_state

        if new_state is CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state is CircuitState.HALF_OPEN:
            self._successes = 0
            self._trial_calls = 0
        else:
            self._failures = 0
            self._successes = 0

        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            f"{self.service_name} circuit {old_state.value} -> {new_state.value}",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "failure_count": self._failures,
            }
        )

    # ── Accounting ──

    async def can_execute(self) -> bool:
        with self._lock:
            if self._state is CircuitState.OPEN:
                if self.get_retry_after() > 0:
                    return False
                self._move_to(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._trial_calls >= self.config.half_open_max_calls:
                    return False
                self._trial_calls += 1
            return True

    async def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)
            else:
                self._failures = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failures += 1
            logger.warning(
                f"{self.service_name} call failed",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._failures,
                    "threshold": self.config.failure_threshold,
                    "error_type": type(error).__name__ if error else None,
                    "error": str(error) if error else None,
                }
            )
            if (
                self._state is CircuitState.HALF_OPEN
                or self._failures >= self.config.failure_threshold
            ):
                self._move_to(CircuitState.OPEN)

    async def execute(
        self,
        func: Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs
    ) -> T:
        """
        Run ``func`` (sync or async) under the breaker.

        Raises:
            CircuitBreakerOpenError: the call was not attempted
        """
        if not await self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                result = await result
        except Exception as e:
            await self.record_failure(e)
            raise

        await self.record_success()
        return result


def get_mpesa_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance(
        MPESA_SERVICE,
        CircuitBreakerConfig(
            failure_threshold=settings.MPESA_BREAKER_FAILURE_THRESHOLD,
            success_threshold=2,
            timeout_seconds=settings.MPESA_BREAKER_RESET_SECONDS,
        )
    )

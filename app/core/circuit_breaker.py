"""
Circuit Breaker

Guards the catalog and Messenger HTTP calls so a failing upstream is not
hammered by every chat turn. One breaker instance exists per service name.
"""
import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, TypeVar, ParamSpec
from dataclasses import dataclass, field

from app.core.logging import get_logger
from app.core.exceptions import CatalogClientError, CircuitBreakerOpenError

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3
    # Exceptions that pass through without counting as an upstream failure
    ignored_exceptions: tuple[type[BaseException], ...] = field(default_factory=tuple)


@dataclass
class CircuitBreakerState:
    """State tracking for circuit breaker"""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0
    half_open_calls: int = 0


class CircuitBreaker:
    """
    Circuit breaker for external service protection.

    States:
    - CLOSED: Normal operation, tracking failures
    - OPEN: Service is failing, block all requests
    - HALF_OPEN: Letting a few probe calls through
    """

    _instances: dict[str, "CircuitBreaker"] = {}

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitBreakerState()
        # Everything runs on one event loop; the lock only orders state changes
        # across awaits inside execute().
        self._lock = asyncio.Lock()

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        """Get or create circuit breaker instance for a service"""
        breaker = cls._instances.get(service_name)
        if breaker is None:
            breaker = cls(service_name, config)
            cls._instances[service_name] = breaker
        return breaker

    @classmethod
    def reset_all(cls) -> None:
        """Reset all circuit breakers (for testing)"""
        cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def is_closed(self) -> bool:
        return self._state.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state.state == CircuitState.OPEN

    def _should_attempt_reset(self) -> bool:
        if self._state.state != CircuitState.OPEN:
            return False
        return time.monotonic() - self._state.last_failure_time >= self.config.timeout_seconds

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state.state
        self._state.state = new_state

        if new_state == CircuitState.HALF_OPEN:
            self._state.half_open_calls = 0
            self._state.success_count = 0

        if new_state == CircuitState.CLOSED:
            self._state.failure_count = 0
            self._state.success_count = 0

        logger.info(
            f"Circuit breaker '{self.service_name}' transitioned",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value
            }
        )

    async def record_success(self) -> None:
        async with self._lock:
            if self._state.state == CircuitState.HALF_OPEN:
                self._state.success_count += 1
                if self._state.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state.state == CircuitState.CLOSED:
                self._state.failure_count = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        async with self._lock:
            self._state.failure_count += 1
            self._state.last_failure_time = time.monotonic()

            logger.warning(
                f"Circuit breaker '{self.service_name}' recorded failure",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._state.failure_count,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None
                }
            )

            if self._state.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state.failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def can_execute(self) -> bool:
        """Check if a request can be executed"""
        async with self._lock:
            if self._state.state == CircuitState.CLOSED:
                return True

            if self._state.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._state.half_open_calls = 1
                    return True
                return False

            if self._state.half_open_calls < self.config.half_open_max_calls:
                self._state.half_open_calls += 1
                return True
            return False

    def get_retry_after(self) -> float:
        """Get seconds until circuit might close"""
        if self._state.state != CircuitState.OPEN:
            return 0.0
        remaining = self.config.timeout_seconds - (time.monotonic() - self._state.last_failure_time)
        return max(0.0, remaining)

    async def execute(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs
    ) -> T:
        """
        Run a coroutine function under circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open
        """
        if not await self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = await func(*args, **kwargs)
        except self.config.ignored_exceptions:
            await self.record_success()
            raise
        except Exception as e:
            await self.record_failure(e)
            raise

        await self.record_success()
        return result


def get_catalog_circuit_breaker() -> CircuitBreaker:
    """Breaker for the WooCommerce REST API"""
    return CircuitBreaker.get_instance(
        "woocommerce",
        CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=2,
            timeout_seconds=30.0,
            ignored_exceptions=(CatalogClientError,),
        )
    )


def get_messenger_circuit_breaker() -> CircuitBreaker:
    """Breaker for the Facebook Graph API send endpoint"""
    return CircuitBreaker.get_instance(
        "messenger",
        CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=2,
            timeout_seconds=60.0
        )
    )

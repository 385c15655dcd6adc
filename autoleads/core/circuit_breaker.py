"""
Circuit Breaker for the LLM and media endpoints

An outage of either service should degrade the intake flow (parser fallback, template
copy, "resend or skip") instead of making every admin wait out a timeout on every message.

Only failures that look like an outage count toward opening the circuit. A single bad
attachment URL (404, file too large) is the sender's problem, not the CDN's.
"""
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, ParamSpec, TypeVar, Union

from autoleads.core.config import settings
from autoleads.core.exceptions import CircuitBreakerOpenError
from autoleads.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def _every_error(exc: Exception) -> bool:
    return True


class CircuitState(Enum):
    CLOSED = "closed"        # calls pass, failures are counted
    OPEN = "open"            # calls rejected until the recovery window passes
    HALF_OPEN = "half_open"  # a few probe calls decide whether to close again


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3
    # decides whether an exception counts as a service failure
    is_failure: Callable[[Exception], bool] = field(default=_every_error)


class CircuitBreaker:
    """
    Per-service breaker. All state changes happen between awaits on the event loop,
    so no lock is taken around them.
    """

    _instances: dict[str, "CircuitBreaker"] = {}

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probe_successes = 0
        self._probe_calls = 0
        self._opened_at = 0.0

    @classmethod
    def get_instance(cls, service_name: str, config: CircuitBreakerConfig | None = None) -> "CircuitBreaker":
        """Process-wide breaker for a service; config applies on first creation only"""
        breaker = cls._instances.get(service_name)
        if breaker is None:
            breaker = cls._instances[service_name] = cls(service_name, config)
        return breaker

    @classmethod
    def reset_all(cls) -> None:
        cls._instances.clear()

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

    @property
    def retry_after(self) -> float:
        """Seconds until an open circuit lets a probe through; 0 when not open"""
        if self._state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self.config.timeout_seconds - (time.monotonic() - self._opened_at))

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._probe_calls = 0
        self._probe_successes = 0
        if new_state is CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state is CircuitState.CLOSED:
            self._failures = 0

        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.service_name}' {old_state.value} -> {new_state.value}",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "failures": self._failures,
            }
        )

    def allow_request(self) -> bool:
        if self._state is CircuitState.CLOSED:
            return True

        if self._state is CircuitState.OPEN:
            if self.retry_after > 0:
                return False
            self._transition_to(CircuitState.HALF_OPEN)

        if self._probe_calls < self.config.half_open_max_calls:
            self._probe_calls += 1
            return True
        return False

    def record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._probe_successes += 1
            if self._probe_successes >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        else:
            self._failures = 0

    def record_failure(self, error: Exception) -> None:
        self._failures += 1
        logger.debug(
            f"Circuit '{self.service_name}' counted a failure",
            extra_data={
                "service": self.service_name,
                "failures": self._failures,
                "threshold": self.config.failure_threshold,
                "error_type": type(error).__name__,
            }
        )
        if self._state is CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
            self._transition_to(CircuitState.OPEN)

    async def execute(
        self,
        func: Callable[P, Union[T, Awaitable[T]]],
        *args: P.args,
        **kwargs: P.kwargs
    ) -> T:
        """
        Run func under the breaker.

        Raises:
            CircuitBreakerOpenError: the circuit is open (func is not called).
        """
        if not self.allow_request():
            raise CircuitBreakerOpenError(self.service_name, self.retry_after)

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            if self.config.is_failure(e):
                self.record_failure(e)
            else:
                # the service answered; the request itself was bad
                self.record_success()
            raise

        self.record_success()
        return result


def get_llm_circuit_breaker() -> CircuitBreaker:
    """Shared by text generation and vision calls"""
    return CircuitBreaker.get_instance(
        "llm",
        CircuitBreakerConfig(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            timeout_seconds=settings.LLM_CIRCUIT_RECOVERY_SECONDS,
        )
    )


def get_media_circuit_breaker(is_failure: Callable[[Exception], bool] = _every_error) -> CircuitBreaker:
    """Breaker for attachment downloads, kept apart from the LLM one"""
    return CircuitBreaker.get_instance(
        "media",
        CircuitBreakerConfig(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            timeout_seconds=settings.MEDIA_CIRCUIT_RECOVERY_SECONDS,
            is_failure=is_failure,
        )
    )

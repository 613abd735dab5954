"""
Circuit breakers around provider submissions, using the pybreaker library.
State lives in Redis (shared by API processes and workers) or in process
memory, depending on settings.circuit_breaker_storage.
"""
import logging
from datetime import datetime, timezone

import pybreaker
import redis

from creditjobs.core.config import settings
from creditjobs.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Redis-backed storage for circuit breaker state (distributed-friendly)."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self._state_key = f"cb:{name}:state"
        self._counter_key = f"cb:{name}:counter"
        self._opened_at_key = f"cb:{name}:opened_at"

    @property
    def state(self) -> str:
        state = self.client.get(self._state_key)
        return state or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self.client.set(self._state_key, value, ex=settings.cb_open_seconds * 2)

    @property
    def counter(self) -> int:
        count = self.client.get(self._counter_key)
        return int(count) if count else 0

    def increment_counter(self) -> None:
        self.client.incr(self._counter_key)
        self.client.expire(self._counter_key, settings.cb_open_seconds)

    def reset_counter(self) -> None:
        self.client.delete(self._counter_key)

    @property
    def success_counter(self) -> int:
        return 0

    def increment_success_counter(self) -> None:
        pass

    def reset_success_counter(self) -> None:
        pass

    @property
    def opened_at(self):
        raw = self.client.get(self._opened_at_key)
        return datetime.fromtimestamp(float(raw), tz=timezone.utc) if raw else None

    @opened_at.setter
    def opened_at(self, value) -> None:
        self.client.set(self._opened_at_key, str(value.timestamp()), ex=settings.cb_open_seconds * 2)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        new_name = getattr(new_state, "name", str(new_state))
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", str(old_state)),
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def _storage_for(name: str) -> pybreaker.CircuitBreakerStorage:
    if settings.circuit_breaker_storage == "redis":
        return RedisCircuitBreakerStorage(name)
    return pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)


def get_circuit_breaker(name: str) -> pybreaker.CircuitBreaker:
    """Get or create a circuit breaker by name."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            state_storage=_storage_for(name),
            listeners=[CircuitBreakerListener(name)],
            name=name,
        )
    return _breakers[name]


def provider_breaker(provider_name: str) -> pybreaker.CircuitBreaker:
    return get_circuit_breaker(f"provider:{provider_name}")

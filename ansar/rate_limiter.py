"""Per-service sliding-window rate limiting for outbound API calls."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .config import config
from .errors import RateLimitQueueFullError

logger = config.get_logger(__name__)

T = TypeVar("T")

ANTHROPIC_SERVICE = "anthropic"
OPENAI_SERVICE = "openai"
STORE_SERVICE = "store"


@dataclass
class RateLimitRule:
    """Quota for one service key."""

    max_requests: int
    window_seconds: float
    queue_limit: int | None = None


@dataclass
class _ServiceState:
    rule: RateLimitRule
    calls: deque[float] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    waiting: int = 0


class RateLimiter:
    """Paces calls per service key; distinct keys never wait on each other."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize an empty limiter.

        Args:
            clock: Monotonic time source, in seconds.
        """
        self._clock = clock
        self._services: dict[str, _ServiceState] = {}

    @classmethod
    def with_defaults(cls) -> "RateLimiter":
        """Build a limiter with the model API and document store quotas.

        Returns:
            RateLimiter with ``anthropic``, ``openai`` and ``store`` registered.
        """
        limiter = cls()
        limiter.register(
            ANTHROPIC_SERVICE, max_requests=3, window_seconds=1.0, queue_limit=10
        )
        limiter.register(
            OPENAI_SERVICE, max_requests=3, window_seconds=1.0, queue_limit=10
        )
        limiter.register(
            STORE_SERVICE, max_requests=50, window_seconds=1.0, queue_limit=100
        )
        return limiter

    def register(
        self,
        service_key: str,
        *,
        max_requests: int,
        window_seconds: float,
        queue_limit: int | None = None,
    ) -> None:
        """Register or replace the quota for ``service_key``."""
        rule = RateLimitRule(max_requests, window_seconds, queue_limit)
        self._services[service_key] = _ServiceState(rule=rule)

    async def throttle(self, service_key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once ``service_key`` has quota left in its window.

        Returns:
            The result of ``fn``.

        Raises:
            RateLimitQueueFullError: If the key already has ``queue_limit``
                callers waiting.
        """
        state = self._services.get(service_key)
        if state is None:
            logger.warning(
                "No rate limit configured for %s, executing immediately", service_key
            )
            return await fn()

        await self._acquire(service_key, state)
        return await fn()

    async def _acquire(self, service_key: str, state: _ServiceState) -> None:
        rule = state.rule
        if state.lock.locked() or not self._has_capacity(state):
            if rule.queue_limit is not None and state.waiting >= rule.queue_limit:
                raise RateLimitQueueFullError(service_key)

        state.waiting += 1
        try:
            async with state.lock:
                while not self._has_capacity(state):
                    wait = rule.window_seconds - (self._clock() - state.calls[0])
                    logger.debug(
                        "Rate limit reached for %s, waiting %.3fs", service_key, wait
                    )
                    await asyncio.sleep(max(wait, 0.0))
                state.calls.append(self._clock())
        finally:
            state.waiting -= 1

    def _has_capacity(self, state: _ServiceState) -> bool:
        now = self._clock()
        while state.calls and now - state.calls[0] >= state.rule.window_seconds:
            state.calls.popleft()
        return len(state.calls) < state.rule.max_requests

    def remaining(self, service_key: str) -> int:
        """Count calls still allowed in the current window.

        Returns:
            Remaining quota, or 0 for an unregistered key.
        """
        state = self._services.get(service_key)
        if state is None:
            return 0
        self._has_capacity(state)
        return max(0, state.rule.max_requests - len(state.calls))

    def queue_length(self, service_key: str) -> int:
        """Count callers currently waiting for quota.

        Returns:
            Number of waiting callers.
        """
        state = self._services.get(service_key)
        return state.waiting if state is not None else 0

    def reset(self, service_key: str | None = None) -> None:
        """Forget recorded calls for one key, or for every key."""
        if service_key is None:
            states = list(self._services.values())
        else:
            state = self._services.get(service_key)
            states = [state] if state is not None else []
        for state in states:
            state.calls.clear()

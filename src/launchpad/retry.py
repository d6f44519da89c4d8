"""
Bounded-attempt retry with exponential backoff.

Used to harden one-shot calls (RPC probing, signer probing, account/fee
lookups) against transient failures. Non-recoverable errors propagate on the
first attempt, unwrapped.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

import launchpad.constants as C
from launchpad.errors import RECOVERABLE_CODES, LaunchpadError, NetworkError

log = logging.getLogger("launchpad.retry")

T = TypeVar("T")

OnRetry = Callable[[int, float, BaseException], None]

_TRANSIENT_SIGNATURES = ("network", "timeout", "timed out", "fetch", "connection", "econnrefused")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    max_attempts: int = C.RETRY_MAX_ATTEMPTS
    initial_delay: float = C.RETRY_INITIAL_DELAY  # seconds
    max_delay: float = C.RETRY_MAX_DELAY
    backoff_multiplier: float = C.RETRY_BACKOFF_MULTIPLIER

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    @classmethod
    def from_dict(cls, d: dict | None) -> "RetryConfig":
        d = d or {}
        return cls(
            max_attempts=int(d.get("max_attempts", C.RETRY_MAX_ATTEMPTS)),
            initial_delay=float(d.get("initial_delay", C.RETRY_INITIAL_DELAY)),
            max_delay=float(d.get("max_delay", C.RETRY_MAX_DELAY)),
            backoff_multiplier=float(d.get("backoff_multiplier", C.RETRY_BACKOFF_MULTIPLIER)),
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


DEFAULT_RETRY_CONFIG = RetryConfig()


class RetryError(Exception):
    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")


def is_recoverable(exc: BaseException) -> bool:
    if isinstance(exc, LaunchpadError):
        return exc.code in RECOVERABLE_CODES
    if isinstance(exc, (NetworkError, TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    lowered = str(exc).lower()
    return any(sig in lowered for sig in _TRANSIENT_SIGNATURES)


class RetryScheduler:
    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        on_retry: OnRetry | None = None,
    ) -> T:
        config = config or DEFAULT_RETRY_CONFIG
        for attempt in range(1, config.max_attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not is_recoverable(e):
                    raise
                if attempt == config.max_attempts:
                    log.warning("Giving up after %s attempts: %s", attempt, e)
                    raise RetryError(attempt, e) from e
                delay = config.delay_for(attempt)
                log.info(
                    "Attempt %s/%s failed (%s: %s) - retrying in %.2fs",
                    attempt, config.max_attempts, e.__class__.__name__, e, delay,
                )
                if on_retry is not None:
                    on_retry(attempt, delay, e)
                await self._sleep(delay)
        raise AssertionError("unreachable")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: OnRetry | None = None,
) -> T:
    return await RetryScheduler().execute(operation, config, on_retry)

"""
Retry/Backoff Policy
====================
Runs one directional swap with bounded retries and classifies every failure.

Per attempt:
- success                -> reset the consecutive-failure streak, count a success
- rate limited (429)     -> wait retry_delay, retry up to max_retries times
- expired                -> wait 3s, retry up to max_retries times
- anything else          -> give up at once; a streak longer than the
                            threshold puts every worker in a 30s cooldown

Nothing is ever raised out of execute(): the caller gets a TradeOutcome.
"""

import time
import asyncio
import threading
from enum import Enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .utils import FailureKind, get_logger, format_duration

logger = get_logger(__name__)

RATE_LIMIT_PATTERNS = ("429", "rate limit", "rate-limit", "ratelimit", "too many requests")
EXPIRY_PATTERNS = ("expired", "block height exceeded", "blockhash not found")

EXPIRY_RETRY_DELAY = 3.0
FAILURE_THRESHOLD = 5
COOLDOWN_SECONDS = 30.0


class AttemptState(Enum):
    """Where a swap attempt ended up."""
    ATTEMPTING = "attempting"
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"
    OTHER_FAILURE = "other_failure"
    SUCCEEDED = "succeeded"
    ABANDONED = "abandoned"


def classify_failure(error: BaseException) -> FailureKind:
    """
    Classify a swap failure.

    A structured kind on the error wins. Otherwise the message is inspected:
    rate-limit patterns first, expiry second, everything else is OTHER.
    """
    kind = getattr(error, "kind", None)
    if isinstance(kind, FailureKind):
        return kind

    message = str(error).lower()
    if any(pattern in message for pattern in RATE_LIMIT_PATTERNS):
        return FailureKind.RATE_LIMITED
    if any(pattern in message for pattern in EXPIRY_PATTERNS):
        return FailureKind.EXPIRED
    return FailureKind.OTHER


class FailureCounters:
    """
    Process-wide success/failure counters shared by every worker.

    Only used to decide when to throttle; exact interleaving of updates
    across workers does not matter.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self.consecutive_failures = 0
        self.total_successes = 0
        self.total_failures = 0
        self.cooldowns = 0
        self._cooldown_until = 0.0

    def record_success(self):
        with self._lock:
            self.consecutive_failures = 0
            self.total_successes += 1

    def record_failure(self) -> int:
        """Count a generic failure and return the new streak length."""
        with self._lock:
            self.consecutive_failures += 1
            self.total_failures += 1
            return self.consecutive_failures

    def start_cooldown(self, seconds: float):
        """Reset the streak and hold every worker until the cooldown ends."""
        with self._lock:
            self.consecutive_failures = 0
            self.cooldowns += 1
            self._cooldown_until = max(self._cooldown_until, self._clock() + seconds)

    def cooldown_remaining(self) -> float:
        with self._lock:
            return max(0.0, self._cooldown_until - self._clock())

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "consecutive_failures": self.consecutive_failures,
                "total_successes": self.total_successes,
                "total_failures": self.total_failures,
                "cooldowns": self.cooldowns,
            }


@dataclass
class TradeOutcome:
    """Result of one directional swap after retries."""
    state: AttemptState
    tx_id: Optional[str] = None
    kind: Optional[FailureKind] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state is AttemptState.SUCCEEDED

    @property
    def abandoned(self) -> bool:
        return self.state is AttemptState.ABANDONED


class RetryPolicy:
    """
    Bounded retry loop around a single swap.

    The swap callable is invoked with no arguments, so whatever amount the
    caller bound into it is reused unchanged on every retry.
    """

    def __init__(
        self,
        counters: FailureCounters,
        max_retries: int = 3,
        retry_delay: float = 10.0,
        expiry_delay: float = EXPIRY_RETRY_DELAY,
        failure_threshold: int = FAILURE_THRESHOLD,
        cooldown: float = COOLDOWN_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.counters = counters
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.expiry_delay = expiry_delay
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._sleep = sleep

    @classmethod
    def from_config(cls, config, counters: FailureCounters, **kwargs) -> "RetryPolicy":
        return cls(
            counters,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay_seconds,
            **kwargs
        )

    async def wait_for_cooldown(self):
        """Sit out whatever is left of a cooldown another worker started."""
        remaining = self.counters.cooldown_remaining()
        if remaining > 0:
            logger.info(f"[COOLDOWN] Waiting {format_duration(remaining)} before next attempt")
            await self._sleep(remaining)

    async def _escalate(self, streak: int):
        if streak <= self.failure_threshold:
            return
        logger.error(
            f"[COOLDOWN] {streak} consecutive failures, pausing trading for "
            f"{format_duration(self.cooldown)}"
        )
        self.counters.start_cooldown(self.cooldown)
        await self._sleep(self.cooldown)

    async def execute(self, swap: Callable[[], Awaitable[str]], label: str = "swap") -> TradeOutcome:
        """
        Run swap() until it succeeds or the attempt is abandoned.

        Rate-limited and expired failures are attempted at most
        max_retries + 1 times in total.
        """
        last_error: Optional[str] = None
        last_kind: Optional[FailureKind] = None

        for attempt in range(self.max_retries + 1):
            await self.wait_for_cooldown()
            try:
                tx_id = await swap()
            except Exception as e:
                last_error = str(e)
                last_kind = classify_failure(e)
            else:
                self.counters.record_success()
                return TradeOutcome(AttemptState.SUCCEEDED, tx_id=tx_id, attempts=attempt + 1)

            if last_kind is FailureKind.OTHER:
                logger.error(f"Error performing {label}: {last_error}")
                streak = self.counters.record_failure()
                await self._escalate(streak)
                return TradeOutcome(
                    AttemptState.ABANDONED, kind=last_kind, attempts=attempt + 1, error=last_error
                )

            if last_kind is FailureKind.RATE_LIMITED:
                delay = self.retry_delay
                logger.warning(f"[RATE LIMITED] {label} throttled, waiting {format_duration(delay)}")
            else:
                delay = self.expiry_delay
                logger.warning(f"[EXPIRED] {label} transaction expired, waiting {format_duration(delay)}")
            await self._sleep(delay)

            if attempt < self.max_retries:
                logger.info(f"[RETRY] {label} attempt {attempt + 2}/{self.max_retries + 1}")

        logger.error(
            f"Giving up on {label} after {self.max_retries + 1} attempts "
            f"({last_kind.value if last_kind else 'unknown'}): {last_error}"
        )
        return TradeOutcome(
            AttemptState.ABANDONED, kind=last_kind, attempts=self.max_retries + 1, error=last_error
        )

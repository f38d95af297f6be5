"""
Guest rate limiter.

Tracks conversion timestamps per client and enforces a sliding-window quota
(by default 2 conversions per 6 hours) for callers that are not logged in.

The default implementation keeps its buckets in process memory. In a
multi-instance deployment every instance has its own buckets, so a guest can
exceed the quota by hitting a different instance; back the RateLimiter
interface with a shared store to close that gap.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ..exceptions import RateLimitedError

logger = logging.getLogger(__name__)

# Used when the request carries no forwarded address. Every such client shares
# this one bucket.
FALLBACK_CLIENT_ID = "127.0.0.1"

DEFAULT_QUOTA = 2
DEFAULT_WINDOW_MS = 6 * 60 * 60 * 1000


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a quota check."""

    allowed: bool
    remaining: int


def _now_ms() -> int:
    return int(time.time() * 1000)


def client_id_from_headers(forwarded_for: str | None) -> str:
    """Derive the rate-limit identity from an X-Forwarded-For header value."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return FALLBACK_CLIENT_ID


def format_limit_message(quota: int, window_ms: int) -> str:
    """Human-readable rejection text. Must keep the 'exceeded the limit' phrase."""
    hours = window_ms / (60 * 60 * 1000)
    hours_text = f"{hours:g}"
    noun = "conversion" if quota == 1 else "conversions"
    return (
        f"You have exceeded the limit of {quota} {noun} per {hours_text} hours "
        "for guest users. Please log in or upgrade to Pro for unlimited conversions."
    )


class RateLimiter(ABC):
    """Contract for guest quota backends."""

    @abstractmethod
    def check(self, client_id: str) -> RateLimitDecision:
        """Return whether client_id may start another conversion."""

    @abstractmethod
    def record(self, client_id: str) -> None:
        """Record one successful conversion for client_id."""

    @property
    @abstractmethod
    def limit_message(self) -> str:
        """Message carried by RateLimitedError when check() denies."""

    def enforce(self, client_id: str) -> RateLimitDecision:
        """Check the quota and raise RateLimitedError when it is used up."""
        decision = self.check(client_id)
        if not decision.allowed:
            logger.info("Rate limit reached for client %s", client_id)
            raise RateLimitedError(self.limit_message)
        return decision


class InMemoryRateLimiter(RateLimiter):
    """
    Sliding-window limiter backed by a dict of client id -> timestamps (ms).

    Timestamps are kept in insertion order, which is chronological order.
    Entries older than the window are pruned on every check() and record();
    record() also drops every other bucket whose window has fully expired.
    All reads and updates run under one limiter-wide lock.
    """

    def __init__(
        self,
        quota: int = DEFAULT_QUOTA,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], int] = _now_ms,
    ):
        if quota < 0:
            raise ValueError("quota must be >= 0")
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        self.quota = quota
        self.window_ms = window_ms
        self._clock = clock
        self._usage: dict[str, list[int]] = {}
        self._lock = threading.Lock()

    @property
    def limit_message(self) -> str:
        return format_limit_message(self.quota, self.window_ms)

    def _prune(self, client_id: str, now: int) -> list[int]:
        recent = [ts for ts in self._usage.get(client_id, []) if now - ts < self.window_ms]
        if recent:
            self._usage[client_id] = recent
        else:
            self._usage.pop(client_id, None)
        return recent

    def _sweep(self, now: int) -> None:
        # Newest timestamp is last; a bucket whose newest entry expired is empty.
        expired = [
            client_id
            for client_id, stamps in self._usage.items()
            if now - stamps[-1] >= self.window_ms
        ]
        for client_id in expired:
            del self._usage[client_id]
        if expired:
            logger.debug("Dropped %d expired rate-limit bucket(s)", len(expired))

    def check(self, client_id: str) -> RateLimitDecision:
        with self._lock:
            recent = self._prune(client_id, self._clock())
            if len(recent) < self.quota:
                return RateLimitDecision(allowed=True, remaining=self.quota - len(recent))
            return RateLimitDecision(allowed=False, remaining=0)

    def record(self, client_id: str) -> None:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            recent = self._prune(client_id, now)
            if len(recent) < self.quota:
                recent.append(now)
                self._usage[client_id] = recent
                logger.debug(
                    "Recorded conversion for %s (%d/%d in window)",
                    client_id,
                    len(recent),
                    self.quota,
                )

    def usage(self, client_id: str) -> list[int]:
        """Snapshot of the stored timestamps for client_id."""
        with self._lock:
            return list(self._usage.get(client_id, []))

    @property
    def tracked_clients(self) -> int:
        """Number of clients with at least one stored timestamp."""
        with self._lock:
            return len(self._usage)


# Singleton instance for convenience
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        from ..config import get_settings

        settings = get_settings()
        _rate_limiter = InMemoryRateLimiter(
            quota=settings.rate_limit_quota,
            window_ms=int(settings.rate_limit_window_hours * 60 * 60 * 1000),
        )
    return _rate_limiter

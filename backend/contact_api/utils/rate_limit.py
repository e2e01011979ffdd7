import abc
import asyncio
import ipaddress
import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

from fastapi import Request

from contact_api.core.config import get_settings

logger = logging.getLogger(__name__)

_MAX_BUCKETS = 50_000
_PRUNE_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class RateLimitEntry:
    count: int
    window_reset_at: float  # monotonic seconds


@dataclass(frozen=True)
class RateLimitDecision:
    admitted: bool
    remaining: int
    reset_at: float  # wall-clock epoch seconds
    retry_after_seconds: Optional[int] = None


class RateLimitStore(abc.ABC):
    """Counter storage. ``increment`` must be atomic per key.

    A shared store (e.g. INCR + EXPIRE on a key-value server) can replace the
    in-memory one for multi-instance deployments.
    """

    @abc.abstractmethod
    def increment(self, key: str, window_seconds: float, now: float) -> RateLimitEntry:
        """Start a fresh window (count=1) if none is live for ``key``, else bump the count."""

    @abc.abstractmethod
    def peek(self, key: str, now: float) -> Optional[RateLimitEntry]:
        """Current live entry for ``key`` without mutating it."""

    @abc.abstractmethod
    def sweep(self, now: float) -> int:
        """Delete entries whose window has elapsed; returns how many were removed."""

    @abc.abstractmethod
    def reset(self) -> None:
        ...


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(
        self,
        *,
        max_buckets: int = _MAX_BUCKETS,
        prune_interval_seconds: int = _PRUNE_INTERVAL_SECONDS,
    ) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = Lock()
        self._max_buckets = max_buckets
        self._prune_interval_seconds = max(1, int(prune_interval_seconds))
        self._last_prune_at = 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def increment(self, key: str, window_seconds: float, now: float) -> RateLimitEntry:
        with self._lock:
            # Lazy prune keeps memory bounded even if the background sweep is not running.
            if len(self._entries) > self._max_buckets or (now - self._last_prune_at) >= self._prune_interval_seconds:
                self._prune_stale(now)
                self._last_prune_at = now

            entry = self._entries.get(key)
            if entry is None or now >= entry.window_reset_at:
                entry = RateLimitEntry(count=1, window_reset_at=now + window_seconds)
            else:
                entry = RateLimitEntry(count=entry.count + 1, window_reset_at=entry.window_reset_at)
            self._entries[key] = entry
            return entry

    def peek(self, key: str, now: float) -> Optional[RateLimitEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now >= entry.window_reset_at:
                return None
            return entry

    def sweep(self, now: float) -> int:
        with self._lock:
            removed = self._prune_stale(now)
            self._last_prune_at = now
            return removed

    def _prune_stale(self, now: float) -> int:
        """Remove expired windows (called under lock)."""
        stale_keys = [key for key, entry in self._entries.items() if now >= entry.window_reset_at]
        for key in stale_keys:
            del self._entries[key]
        return len(stale_keys)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._last_prune_at = 0.0


class FixedWindowRateLimiter:
    """Admit at most ``max_requests`` per source address per fixed window."""

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        *,
        max_requests: int = 5,
        window_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.store = store or InMemoryRateLimitStore()
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._wall_clock = wall_clock

    @staticmethod
    def _key(source_address: str) -> str:
        return f"contact:ip:{source_address or 'unknown'}"

    def check_and_admit(self, source_address: str) -> RateLimitDecision:
        now = self._clock()
        entry = self.store.increment(self._key(source_address), self.window_seconds, now)
        reset_at = self._wall_clock() + max(0.0, entry.window_reset_at - now)

        if entry.count > self.max_requests:
            retry_after = max(1, math.ceil(entry.window_reset_at - now))
            return RateLimitDecision(
                admitted=False,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=retry_after,
            )
        return RateLimitDecision(
            admitted=True,
            remaining=self.max_requests - entry.count,
            reset_at=reset_at,
        )

    def admitted_count(self, source_address: str) -> int:
        """Requests counted for ``source_address`` in the live window (0 if none)."""
        entry = self.store.peek(self._key(source_address), self._clock())
        return entry.count if entry else 0

    def sweep(self) -> int:
        return self.store.sweep(self._clock())

    def reset(self) -> None:
        self.store.reset()


async def _rate_limit_sweep_loop(limiter: FixedWindowRateLimiter, *, interval_seconds: int) -> None:
    error_sleep = max(10, min(60, interval_seconds))
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            removed = limiter.sweep()
            if removed:
                logger.debug("Rate limit sweep removed %s expired entries", removed)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Rate limit sweep worker error")
            await asyncio.sleep(error_sleep)


def start_rate_limit_sweeper(limiter: FixedWindowRateLimiter, interval_seconds: int = 300) -> asyncio.Task:
    interval = int(max(5, min(3600, interval_seconds or 300)))
    return asyncio.create_task(_rate_limit_sweep_loop(limiter, interval_seconds=interval))


def _ip_in_allowlist(ip: str, allowlist: list[str]) -> bool:
    if not ip:
        return False
    if ip in allowlist:
        return True
    try:
        ip_obj = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if ip_obj in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def is_trusted_proxy_peer(request: Request, trusted_proxy_cidrs: Optional[list[str]] = None) -> bool:
    """Return True when the direct peer IP is in trusted proxy CIDRs."""
    peer_ip = request.client.host if request.client else None
    trusted = trusted_proxy_cidrs
    if trusted is None:
        trusted = get_settings().trusted_proxy_cidrs
    if not (peer_ip and trusted):
        return False
    return _ip_in_allowlist(peer_ip, trusted)


def get_client_ip(request: Request, trusted_proxy_cidrs: Optional[list[str]] = None) -> Optional[str]:
    """Extract client IP from request.

    SECURITY: ``X-Real-IP`` and ``X-Forwarded-For`` are trusted only when
    the direct peer (``request.client.host``) is in ``TRUSTED_PROXY_CIDRS``.
    Otherwise forwarded headers are ignored to prevent spoofing.
    """
    peer_ip = request.client.host if request.client else None

    if is_trusted_proxy_peer(request, trusted_proxy_cidrs):
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # Rightmost IP is the one added by the first trusted reverse proxy.
            parts = [p.strip() for p in forwarded.split(",") if p.strip()]
            if parts:
                return parts[-1]

    return peer_ip

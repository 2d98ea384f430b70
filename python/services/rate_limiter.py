"""
Fixed-window rate limiting for the HTTP API

A RateLimitPolicy is built from the rate_limits section of config.yaml and
injected into RateLimitMiddleware. Each request path resolves to one group
(the most specific pattern wins); counters are kept per (group, client).
Clients are identified by their peer address; X-Forwarded-For is only read
when that peer is a configured trusted proxy.
"""

import fnmatch
import ipaddress
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from config_manager import RateLimitConfig, RateLimitGroupConfig

logger = logging.getLogger(__name__)


# Path patterns per group, most specific first
GROUP_PATTERNS: List[Tuple[str, List[str]]] = [
    ('document-processing', [
        '/api/documents/*/process',
        '/api/documents/*/trash',
        '/api/documents/*/restore',
    ]),
    ('metadata', [
        '/api/documents/*/metadata',
        '/api/metadata/*',
    ]),
    ('document-history', [
        '/api/documents/*/history',
        '/api/documents/*/history/*',
    ]),
    ('documents', [
        '/api/documents',
        '/api/documents/*',
    ]),
    ('api', [
        '/api/*',
    ]),
]


def is_trusted_proxy(host: str, trusted_proxies: Iterable[str]) -> bool:
    """True if host equals a trusted entry or falls in a trusted CIDR range."""
    trusted_proxies = list(trusted_proxies)
    if host in trusted_proxies:
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    for entry in trusted_proxies:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def resolve_client_ip(
    peer: str,
    forwarded_for: Optional[str],
    trusted_proxies: Iterable[str]
) -> str:
    """
    Address to rate limit a request by.

    X-Forwarded-For is ignored unless the direct peer is trusted. When it is,
    the rightmost hop that is not itself a trusted proxy is the client.
    """
    trusted_proxies = list(trusted_proxies)
    if not forwarded_for or not is_trusted_proxy(peer, trusted_proxies):
        return peer

    hops = [hop.strip() for hop in forwarded_for.split(',') if hop.strip()]
    for hop in reversed(hops):
        if not is_trusted_proxy(hop, trusted_proxies):
            return hop
    return hops[0] if hops else peer


@dataclass
class RateLimitResult:
    """Outcome of one rate limit check"""
    group: str
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        headers = {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': str(self.reset_at),
        }
        if not self.allowed:
            headers['Retry-After'] = str(self.retry_after)
        return headers


class RateLimitPolicy:
    """Thread-safe fixed-window counters keyed by (group, client)."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def trusted_proxies(self) -> List[str]:
        return self.config.trusted_proxies

    def resolve_group(self, path: str) -> Optional[str]:
        """Map a request path to its rate limit group, None if unlimited."""
        path = path.rstrip('/') or '/'
        for group, patterns in GROUP_PATTERNS:
            if group not in self.config.groups:
                continue
            for pattern in patterns:
                if fnmatch.fnmatchcase(path, pattern):
                    return group
        return None

    def _limits(self, group: str) -> RateLimitGroupConfig:
        return self.config.groups[group]

    def _evict_expired(self, now: float) -> None:
        """Drop counters whose window has ended. Caller holds the lock."""
        if now < self._next_sweep:
            return
        expired = []
        for (group, client_key), (start, _count) in self._windows.items():
            limits = self.config.groups.get(group)
            if limits is None or start + limits.window_seconds <= now:
                expired.append((group, client_key))
        for key in expired:
            del self._windows[key]
        windows = [limits.window_seconds for limits in self.config.groups.values()]
        self._next_sweep = now + min(windows, default=60)

    def hit(self, group: str, client_key: str) -> RateLimitResult:
        """Count one request for client_key in group and report the outcome."""
        limits = self._limits(group)
        now = self._clock()
        window_start = int(now // limits.window_seconds) * limits.window_seconds
        reset_at = window_start + limits.window_seconds

        with self._lock:
            self._evict_expired(now)
            key = (group, client_key)
            start, count = self._windows.get(key, (window_start, 0))
            if start != window_start:
                count = 0
            if count >= limits.max_requests:
                self._windows[key] = (window_start, count)
                return RateLimitResult(
                    group=group,
                    allowed=False,
                    limit=limits.max_requests,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(1, int(reset_at - now))
                )
            count += 1
            self._windows[key] = (window_start, count)

        return RateLimitResult(
            group=group,
            allowed=True,
            limit=limits.max_requests,
            remaining=limits.max_requests - count,
            reset_at=reset_at
        )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_sweep = 0.0

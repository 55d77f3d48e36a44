import threading
import time
from collections import defaultdict, deque
from typing import Iterable, Tuple

from fastapi import Request

from postsync_api.exceptions import RateLimitError


class InMemoryRateLimiter:
    """
    Fixed-window in-memory rate limiter keyed by scope and client IP.
    Limits are per process; behind several workers each keeps its own count.
    """

    def __init__(self, trust_proxy_headers: bool = False, trusted_proxy_ips: Iterable[str] = ()) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self.trust_proxy_headers = trust_proxy_headers
        self.trusted_proxy_ips = frozenset(trusted_proxy_ips)

    def allow(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        now = time.time()
        cutoff = now - window_seconds

        with self._lock:
            events = self._events[key]
            while events and events[0] <= cutoff:
                events.popleft()

            if len(events) >= limit:
                retry_after = int(max(1, window_seconds - (now - events[0])))
                return False, retry_after

            events.append(now)
            return True, 0

    def _should_trust_proxy_headers(self, request: Request) -> bool:
        if not self.trust_proxy_headers or not self.trusted_proxy_ips:
            return False
        remote_host = request.client.host if request.client and request.client.host else ""
        return remote_host in self.trusted_proxy_ips

    def client_ip(self, request: Request) -> str:
        if self._should_trust_proxy_headers(request):
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()
            real_ip = request.headers.get("x-real-ip")
            if real_ip:
                return real_ip.strip()

        if request.client and request.client.host:
            return request.client.host
        return "unknown"

    def enforce(self, request: Request, scope: str, limit: int, window_seconds: int) -> None:
        key = f"{scope}:{self.client_ip(request)}"
        allowed, retry_after = self.allow(key=key, limit=limit, window_seconds=window_seconds)
        if not allowed:
            raise RateLimitError(retry_after)

"""In-memory rate limiting middleware.

Limits (per client IP):
  POST /vault/share  → 10 requests/minute (access-code guessing)
  GET  /vault/share  → 60 requests/minute
  /approver/*        → 30 requests/minute

Counters live in process memory, so limits hold per instance.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

# (method or "*", path prefix, max_requests, window_seconds)
_IP_RULES: list[tuple[str, str, int, int]] = [
    ("POST", "/vault/share", 10, 60),
    ("GET", "/vault/share", 60, 60),
    ("*", "/approver/", 30, 60),
]


class _SlidingWindow:
    """Simple sliding-window counter store.

    Keys whose hits have all aged out are swept at most once per
    ``sweep_interval`` seconds, so one-off clients do not accumulate.
    """

    def __init__(self, sweep_interval: float = 60.0) -> None:
        # key -> list of timestamps
        self._hits: dict[str, list[float]] = {}
        self._max_window = 0
        self._sweep_interval = sweep_interval
        self._last_sweep = time.monotonic()

    def is_allowed(self, key: str, max_requests: int, window: int) -> bool:
        now = time.monotonic()
        self._max_window = max(self._max_window, window)
        if now - self._last_sweep >= self._sweep_interval:
            self._sweep(now)

        cutoff = now - window
        hits = [t for t in self._hits.get(key, ()) if t > cutoff]
        if len(hits) >= max_requests:
            if hits:
                self._hits[key] = hits
            else:
                self._hits.pop(key, None)
            return False
        hits.append(now)
        self._hits[key] = hits
        return True

    def _sweep(self, now: float) -> None:
        cutoff = now - self._max_window
        for key in [k for k, hits in self._hits.items() if hits[-1] <= cutoff]:
            del self._hits[key]
        self._last_sweep = now


_ip_window = _SlidingWindow()


def match_rule(method: str, path: str) -> tuple[str, int, int] | None:
    """Return (prefix, max_requests, window) of the first rule covering a request."""
    for rule_method, prefix, max_req, window in _IP_RULES:
        if rule_method not in ("*", method):
            continue
        if path.startswith(prefix):
            return prefix, max_req, window
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        from codeprism.config import settings
        if not settings.is_production:
            return await call_next(request)

        rule = match_rule(request.method, request.url.path)
        if rule is not None:
            prefix, max_req, window = rule
            client_ip = request.client.host if request.client else "unknown"
            key = f"ip:{client_ip}:{request.method}:{prefix}"
            if not _ip_window.is_allowed(key, max_req, window):
                return _rate_limit_response(request)

        return await call_next(request)


def _rate_limit_response(request: Request) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Rate limit exceeded. Please try again later.",
            "request_id": request_id,
        },
        headers={"Retry-After": "60"},
    )

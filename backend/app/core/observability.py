r"""backend\app\core\observability.py

Request middleware (auth, rate limiting, access logs) and Prometheus metrics
for the HTTP surface and the reminder sweep.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Deque, Dict

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

if TYPE_CHECKING:  # pragma: no cover
    from ..models.schemas import SweepReport

LOGGER = logging.getLogger(__name__)

_REQUEST_COUNTER = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
_LATENCY_HISTOGRAM = Histogram(
    "http_request_latency_seconds", "Request latency", ["method", "path"]
)
_SWEEP_RUNS = Counter("reminder_sweeps_total", "Reminder sweeps by final status", ["status"])
_SWEEP_OUTCOMES = Counter(
    "reminder_sweep_outcomes_total", "Per-customer sweep outcomes", ["outcome"]
)
_SWEEP_DURATION = Histogram(
    "reminder_sweep_duration_seconds",
    "Wall time of a reminder sweep",
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, float("inf")),
)


def record_sweep(report: "SweepReport", duration_seconds: float) -> None:
    """Export a finished sweep to Prometheus."""

    _SWEEP_RUNS.labels(report.status).inc()
    for outcome, count in report.counts.items():
        if count:
            _SWEEP_OUTCOMES.labels(outcome).inc(count)
    _SWEEP_DURATION.observe(max(duration_seconds, 0.0))


class SlidingWindowRateLimiter:
    """Per-client sliding one-minute window.

    Clients with no request inside ``idle_ttl_seconds`` are evicted, so the
    map holds at most the clients seen recently.
    """

    def __init__(
        self,
        per_minute: int = 60,
        window_seconds: float = 60.0,
        idle_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.per_minute = int(per_minute)
        self.window_seconds = float(window_seconds)
        self.idle_ttl_seconds = max(float(idle_ttl_seconds), self.window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[str, Deque[float]] = {}
        self._last_purge = clock()

    @property
    def enabled(self) -> bool:
        return self.per_minute > 0

    def allow(self, key: str) -> bool:
        """Record a hit for ``key`` and return whether it is within the limit."""
        if not self.enabled:
            return True
        now = self._clock()
        with self._lock:
            self._purge_idle(now)
            window = self._buckets.setdefault(key, deque())
            while window and now - window[0] > self.window_seconds:
                window.popleft()
            if len(window) >= self.per_minute:
                return False
            window.append(now)
            return True

    def _purge_idle(self, now: float) -> None:
        if now - self._last_purge < self.idle_ttl_seconds:
            return
        stale = [
            key
            for key, window in self._buckets.items()
            if not window or now - window[-1] > self.idle_ttl_seconds
        ]
        for key in stale:
            del self._buckets[key]
        self._last_purge = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


class TokenAndRateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware enforcing auth, rate limiting, logging, and Prometheus metrics."""

    exempt_prefixes: tuple[str, ...] = (
        "/api/v1/health",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
    )

    def __init__(
        self,
        app: ASGIApp,
        token: str | None = None,
        limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        super().__init__(app)
        self.token = token
        self.limiter = limiter or SlidingWindowRateLimiter(per_minute=0)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        method = request.method
        client_ip = request.client.host if request.client else "unknown"
        request_id = (
            request.headers.get("x-request-id")
            or request.headers.get("request-id")
            or str(uuid.uuid4())
        )

        start_perf = time.perf_counter()
        start_wall = time.time()

        def _finalize(response: Response) -> Response:
            latency = time.perf_counter() - start_perf
            status_code = getattr(response, "status_code", 500)
            route = request.scope.get("route")
            path_label = getattr(route, "path", path)

            _REQUEST_COUNTER.labels(method, path_label, str(status_code)).inc()
            _LATENCY_HISTOGRAM.labels(method, path_label).observe(latency)

            customer_id = request.path_params.get("customer_id") if request.path_params else None
            log_payload = {
                "timestamp": datetime.fromtimestamp(start_wall, tz=timezone.utc).isoformat(),
                "path": path,
                "method": method,
                "status": status_code,
                "latency_ms": int(latency * 1000),
                "request_id": request_id,
                "client_ip": client_ip,
                "customer_id": customer_id,
            }
            LOGGER.info(json.dumps(log_payload))
            return response

        # Token authentication
        if self.token and not path.startswith(self.exempt_prefixes):
            auth_header = request.headers.get("authorization", "")
            if auth_header != f"Bearer {self.token}":
                return _finalize(PlainTextResponse("Unauthorized", status_code=401))

        # Rate limiting per client IP
        if not path.startswith(self.exempt_prefixes) and not self.limiter.allow(client_ip):
            return _finalize(PlainTextResponse("Too Many Requests", status_code=429))

        try:
            response = await call_next(request)
        except Exception:
            # Record the failed request before propagating.
            _finalize(PlainTextResponse("Internal Server Error", status_code=500))
            raise

        return _finalize(response)


def metrics_endpoint() -> Response:
    """Return Prometheus metrics payload."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

"""
Prometheus-style metrics endpoint.
"""
import time
from typing import Callable

from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from chathook.core.config import get_settings
from chathook.core.logging import get_logger
from chathook.services.broadcast import get_connection_manager

logger = get_logger(__name__)

router = APIRouter(tags=["Metrics"])

INGEST_OUTCOMES = ("inserted", "updated", "duplicates", "errors")

# Simple in-memory metrics storage
_metrics = {
    "http_requests_total": {},  # {(method, path, status): count}
    "http_request_duration_seconds": {},  # {(method, path): [durations]}
    "ingest_entries_total": {outcome: 0 for outcome in INGEST_OUTCOMES},
    "startup_time": None,
}


def record_request(method: str, path: str, status_code: int, duration: float) -> None:
    """Record an HTTP request metric."""
    key = (method, path, str(status_code))
    _metrics["http_requests_total"][key] = _metrics["http_requests_total"].get(key, 0) + 1

    durations = _metrics["http_request_duration_seconds"].setdefault((method, path), [])
    durations.append(duration)

    # Keep only the last 1000 durations
    if len(durations) > 1000:
        _metrics["http_request_duration_seconds"][(method, path)] = durations[-1000:]


def record_ingest(**counts: int) -> None:
    """Add webhook entry outcomes (inserted, updated, duplicates, errors)."""
    for outcome, count in counts.items():
        if outcome in _metrics["ingest_entries_total"] and count:
            _metrics["ingest_entries_total"][outcome] += count


def set_startup_time() -> None:
    """Record application startup time."""
    _metrics["startup_time"] = time.time()


def reset_metrics() -> None:
    _metrics["http_requests_total"].clear()
    _metrics["http_request_duration_seconds"].clear()
    _metrics["ingest_entries_total"] = {outcome: 0 for outcome in INGEST_OUTCOMES}


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template keeps conversation keys out of the label set
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)

        record_request(
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration=duration,
        )

        return response


def generate_prometheus_metrics() -> str:
    """Generate Prometheus-format metrics output."""
    settings = get_settings()
    lines = []

    lines.append("# HELP app_info Application information")
    lines.append("# TYPE app_info gauge")
    lines.append(f'app_info{{version="{settings.app_version}"}} 1')
    lines.append("")

    if _metrics["startup_time"]:
        lines.append("# HELP app_start_time_seconds Unix timestamp when the app started")
        lines.append("# TYPE app_start_time_seconds gauge")
        lines.append(f'app_start_time_seconds {_metrics["startup_time"]:.3f}')
        lines.append("")

    lines.append("# HELP http_requests_total Total number of HTTP requests")
    lines.append("# TYPE http_requests_total counter")
    for (method, path, status), count in _metrics["http_requests_total"].items():
        lines.append(f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}')
    lines.append("")

    lines.append("# HELP http_request_duration_seconds HTTP request duration in seconds")
    lines.append("# TYPE http_request_duration_seconds summary")
    for (method, path), durations in _metrics["http_request_duration_seconds"].items():
        if durations:
            lines.append(f'http_request_duration_seconds_sum{{method="{method}",path="{path}"}} {sum(durations):.6f}')
            lines.append(f'http_request_duration_seconds_count{{method="{method}",path="{path}"}} {len(durations)}')
    lines.append("")

    lines.append("# HELP ingest_entries_total Webhook payload entries by outcome")
    lines.append("# TYPE ingest_entries_total counter")
    for outcome, count in _metrics["ingest_entries_total"].items():
        lines.append(f'ingest_entries_total{{outcome="{outcome}"}} {count}')
    lines.append("")

    lines.append("# HELP websocket_connections Live WebSocket connections")
    lines.append("# TYPE websocket_connections gauge")
    lines.append(f"websocket_connections {get_connection_manager().connection_count}")

    return "\n".join(lines)


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Returns metrics in Prometheus exposition format.",
    response_class=Response,
)
async def metrics() -> Response:
    """Prometheus-style metrics endpoint."""
    content = generate_prometheus_metrics()
    return Response(
        content=content,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )

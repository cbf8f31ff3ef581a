from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

journal_entries_created_count = Counter(
    "journal_entries_created_count",
    "Total journal entries created (single posting and CSV import)",
    ["source"],
)

journal_entries_approved_count = Counter(
    "journal_entries_approved_count",
    "Total journal entries approved",
)

journal_entries_deleted_count = Counter(
    "journal_entries_deleted_count",
    "Total draft journal entries deleted",
)

journal_entry_failures_count = Counter(
    "journal_entry_failures_count",
    "Total rejected journal entry operations by reason",
    ["reason"],
)

journal_import_rows_count = Counter(
    "journal_import_rows_count",
    "Total CSV import rows by outcome",
    ["outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_journal_entries_created(source: str, count: int = 1) -> None:
    if count > 0:
        journal_entries_created_count.labels(source=source).inc(count)


def observe_journal_entry_approved() -> None:
    journal_entries_approved_count.inc()


def observe_journal_entry_deleted() -> None:
    journal_entries_deleted_count.inc()


def observe_journal_entry_failure(reason: str) -> None:
    journal_entry_failures_count.labels(reason=reason).inc()


def observe_journal_import_rows(outcome: str, count: int) -> None:
    if count > 0:
        journal_import_rows_count.labels(outcome=outcome).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

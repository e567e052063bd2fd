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

crm_validation_violations_total = Counter(
    "crm_validation_violations_total",
    "Mutations rejected by the invariant validator",
    ["kind", "entity"],
)

crm_stage_transitions_total = Counter(
    "crm_stage_transitions_total",
    "Opportunity stage transitions by direction",
    ["direction"],
)

principal_activity_refresh_total = Counter(
    "principal_activity_refresh_total",
    "Principal activity summary refreshes by status",
    ["status"],
)

principal_activity_refresh_duration_seconds = Histogram(
    "principal_activity_refresh_duration_seconds",
    "Principal activity summary refresh duration in seconds",
)

principal_activity_refresh_over_budget_total = Counter(
    "principal_activity_refresh_over_budget_total",
    "Refreshes that exceeded the latency budget",
)

principal_activity_inconsistencies_total = Counter(
    "principal_activity_inconsistencies_total",
    "Dangling references excluded during aggregation",
    ["reason"],
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


def observe_validation_violation(kind: str, entity: str) -> None:
    crm_validation_violations_total.labels(kind=kind, entity=entity).inc()


def observe_stage_transition(direction: str) -> None:
    crm_stage_transitions_total.labels(direction=direction).inc()


def observe_refresh(status: str, duration: float, *, over_budget: bool = False) -> None:
    principal_activity_refresh_total.labels(status=status).inc()
    principal_activity_refresh_duration_seconds.observe(duration)
    if over_budget:
        principal_activity_refresh_over_budget_total.inc()


def observe_aggregation_inconsistency(reason: str, count: int = 1) -> None:
    if count > 0:
        principal_activity_inconsistencies_total.labels(reason=reason).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

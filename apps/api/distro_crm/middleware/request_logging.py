from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from distro_crm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("distro_crm.request")

# Health and metrics scrapes are counted in metrics but logged at DEBUG only.
_QUIET_PATHS = frozenset({"/health", "/metrics"})


def _request_fields(request: Request, status_code: int, started: float) -> dict[str, object]:
    fields: dict[str, object] = {
        "method": request.method,
        "path": resolve_http_path_label(request),
        "status_code": status_code,
        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
    }
    principal_id = request.path_params.get("principal_id")
    if principal_id is not None:
        fields["principal_id"] = str(principal_id)
    return fields


def _observe(fields: dict[str, object]) -> None:
    observe_http_request(
        method=str(fields["method"]),
        path=str(fields["path"]),
        status=int(fields["status_code"]),  # type: ignore[arg-type]
        duration=float(fields["duration_ms"]) / 1000,  # type: ignore[arg-type]
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = _request_fields(request, 500, started)
            _observe(fields)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        # The route, and with it the path label, is only known once the app has matched it.
        fields = _request_fields(request, response.status_code, started)
        _observe(fields)
        level = logging.DEBUG if fields["path"] in _QUIET_PATHS else logging.INFO
        logger.log(level, "http.request", extra=fields)
        return response

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from distro_crm.api.routes import router as api_router
from distro_crm.core.config import get_settings
from distro_crm.core.events import InternalEvent, event_bus
from distro_crm.logging import configure_logging
from distro_crm.middleware.correlation_id import CorrelationIdMiddleware
from distro_crm.middleware.request_logging import RequestLoggingMiddleware
from distro_crm.otel import configure_tracing, request_span_hook
from distro_crm.reporting.principal_activity.tasks import register_summary_refresh_subscriber


configure_logging()
logger = logging.getLogger("distro_crm.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        register_summary_refresh_subscriber()
        logger.info("summary_refresh_subscriber_registered", extra={"event_name": "crm.*"})
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Distro CRM API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

configure_tracing("distro-crm-api", enabled=get_settings().otel_enabled)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=request_span_hook)

from celery import Celery
from celery.signals import worker_process_init

from distro_crm.core.config import get_settings
from distro_crm.logging import configure_logging
from distro_crm.otel import configure_tracing

settings = get_settings()

celery_app = Celery(
    "distro_crm",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["distro_crm.reporting.principal_activity.tasks"],
)
celery_app.conf.beat_schedule = {
    "refresh-principal-activity-summary": {
        "task": "distro_crm.tasks.refresh_principal_activity_summary",
        "schedule": float(settings.summary_refresh_interval_seconds),
    },
}
celery_app.conf.task_acks_late = True


@worker_process_init.connect
def _init_worker_process(**_: object) -> None:
    configure_logging()
    configure_tracing("distro-crm-worker", enabled=get_settings().otel_enabled)

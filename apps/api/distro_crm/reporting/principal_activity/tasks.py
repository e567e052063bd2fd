from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from kombu.exceptions import OperationalError

from distro_crm.core.celery_app import celery_app
from distro_crm.core.config import get_settings
from distro_crm.core.database import SessionLocal
from distro_crm.core.events import InternalEvent, event_bus
from distro_crm.crm.errors import RefreshFailure
from distro_crm.events import SUMMARY_SOURCE_EVENTS
from distro_crm.reporting.principal_activity.service import principal_activity_service

logger = logging.getLogger("distro_crm.reporting.principal_activity")

# Coalesces bursts of mutations into one refresh shortly after they commit.
MUTATION_REFRESH_COUNTDOWN_SECONDS = 5


@celery_app.task(
    name="distro_crm.tasks.refresh_principal_activity_summary",
    autoretry_for=(RefreshFailure,),
    retry_backoff=True,
    max_retries=3,
)
def refresh_principal_activity_summary(as_of: str | None = None, trigger: str = "scheduled") -> dict[str, Any]:
    reference_time = datetime.fromisoformat(as_of) if as_of else None
    with SessionLocal() as session:
        result = principal_activity_service.refresh(session, reference_time, trigger=trigger)
    return result.model_dump(mode="json")


def _on_summary_source_event(event: InternalEvent) -> None:
    if not get_settings().auto_refresh_on_mutation:
        return
    try:
        refresh_principal_activity_summary.apply_async(
            kwargs={"trigger": "mutation"},
            countdown=MUTATION_REFRESH_COUNTDOWN_SECONDS,
        )
    except OperationalError:
        # The scheduled refresh still catches up; a broker outage must not fail the write.
        logger.warning("principal_activity.refresh_enqueue_failed", exc_info=True, extra={"event_name": event.name})


def register_summary_refresh_subscriber() -> None:
    event_bus.subscribe_many(SUMMARY_SOURCE_EVENTS, _on_summary_source_event)


def unregister_summary_refresh_subscriber() -> None:
    for event_name in SUMMARY_SOURCE_EVENTS:
        event_bus.unsubscribe(event_name, _on_summary_source_event)

from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from distro_crm.context import get_correlation_id
from distro_crm.core.events import event_bus

# Mutation events that invalidate the principal activity summary.
SUMMARY_SOURCE_EVENTS = [
    "crm.organization.created",
    "crm.organization.updated",
    "crm.organization.deleted",
    "crm.organization.restored",
    "crm.contact.created",
    "crm.contact.updated",
    "crm.contact.deleted",
    "crm.contact.restored",
    "crm.opportunity.created",
    "crm.opportunity.updated",
    "crm.opportunity.stage_changed",
    "crm.opportunity.deleted",
    "crm.opportunity.restored",
    "crm.interaction.created",
    "crm.interaction.updated",
    "crm.interaction.deleted",
    "crm.interaction.restored",
    "crm.product.created",
    "crm.product.updated",
    "crm.product.deleted",
    "crm.product.restored",
    "crm.product_principal.created",
    "crm.product_principal.updated",
    "crm.product_principal.deleted",
    "crm.product_principal.restored",
]

PUBLISHED_EVENTS_LIMIT = 5000

published_events: deque[dict[str, Any]] = deque(maxlen=PUBLISHED_EVENTS_LIMIT)


def build_envelope(event_type: str, actor_user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "version": 1,
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)

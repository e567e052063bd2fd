"""In-process audit trail for CRM mutations.

Each entry keeps the before/after read models and the list of fields that
changed, so an operator can see what a create, update, delete or restore did
without diffing the snapshots by hand.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from distro_crm.context import get_correlation_id

logger = logging.getLogger("distro_crm.audit")

# Bookkeeping columns that move on every write.
_IGNORED_FIELDS = frozenset({"updated_at"})

# Oldest entries fall off once the in-process trail is full.
AUDIT_TRAIL_LIMIT = 5000

audit_entries: deque[dict[str, Any]] = deque(maxlen=AUDIT_TRAIL_LIMIT)


def changed_fields(before: dict[str, Any] | None, after: dict[str, Any] | None) -> list[str]:
    before = before or {}
    after = after or {}
    keys = (set(before) | set(after)) - _IGNORED_FIELDS
    return sorted(key for key in keys if before.get(key) != after.get(key))


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": before,
        "after": after,
        "changed_fields": changed_fields(before, after),
        "correlation_id": correlation_id or get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.debug("audit.recorded", extra={"entity": entity_type, "entity_id": entity_id, "status": action})
    return entry


def entries_for(entity_type: str, entity_id: str) -> list[dict[str, Any]]:
    return [
        entry
        for entry in audit_entries
        if entry["entity_type"] == entity_type and entry["entity_id"] == entity_id
    ]

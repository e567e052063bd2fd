from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class ViolationKind(str, Enum):
    ROLE_EXCLUSIVITY = "ROLE_EXCLUSIVITY"
    DISTRIBUTOR_HIERARCHY = "DISTRIBUTOR_HIERARCHY"
    UNIQUENESS = "UNIQUENESS"
    SINGLETON = "SINGLETON"
    DATE_ORDER = "DATE_ORDER"
    REFERENTIAL = "REFERENTIAL"
    TEMPORAL = "TEMPORAL"
    RANGE = "RANGE"
    STAGE_CONSISTENCY = "STAGE_CONSISTENCY"
    REQUIRED = "REQUIRED"
    TERRITORY = "TERRITORY"


# Conflicts with another persisted row rather than a malformed payload.
CONFLICT_KINDS = frozenset({ViolationKind.UNIQUENESS, ViolationKind.SINGLETON})


@dataclass(frozen=True, slots=True)
class Violation:
    kind: ViolationKind
    entity: str
    field: str
    detail: str
    reference: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["kind"] = self.kind.value
        return payload


class ValidationViolation(Exception):
    def __init__(self, violation: Violation) -> None:
        super().__init__(violation.detail)
        self.violation = violation

    @property
    def is_conflict(self) -> bool:
        return self.violation.kind in CONFLICT_KINDS


class EntityNotFoundError(Exception):
    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class RefreshFailure(Exception):
    """Summary refresh could not complete; the previous snapshot is still served."""

    retryable = True

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause

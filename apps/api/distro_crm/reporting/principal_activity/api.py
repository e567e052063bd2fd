from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from distro_crm.api.errors import domain_error_response
from distro_crm.core.database import get_db
from distro_crm.crm.errors import EntityNotFoundError, RefreshFailure
from distro_crm.reporting.principal_activity.schemas import (
    ActivityStatusName,
    DistributorRelationshipRead,
    PrincipalActivityStatsRead,
    PrincipalActivitySummaryRead,
    ProductPerformanceRead,
    RefreshResultRead,
    SummaryRefreshRunRead,
    TimelineEntryRead,
)
from distro_crm.reporting.principal_activity.service import principal_activity_service


router = APIRouter(prefix="/api/reports/principal-activity", tags=["reports.principal_activity"])


@router.post("/refresh", response_model=RefreshResultRead)
def refresh_summary(
    request: Request,
    as_of: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
) -> RefreshResultRead | JSONResponse:
    try:
        return principal_activity_service.refresh(db, as_of, trigger="api")
    except RefreshFailure as exc:
        return domain_error_response(request, exc, code="principal_activity_refresh_failed")


@router.get("", response_model=list[PrincipalActivitySummaryRead])
def list_summaries(
    activity_status: ActivityStatusName | None = Query(default=None, alias="status"),
    limit: int | None = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[PrincipalActivitySummaryRead]:
    return principal_activity_service.list_summaries(db, activity_status=activity_status, limit=limit, offset=offset)


@router.get("/stats", response_model=PrincipalActivityStatsRead)
def get_stats(db: Session = Depends(get_db)) -> PrincipalActivityStatsRead:
    return principal_activity_service.get_stats(db)


@router.get("/runs/latest", response_model=SummaryRefreshRunRead)
def get_latest_run(db: Session = Depends(get_db)) -> SummaryRefreshRunRead | Response:
    run = principal_activity_service.latest_run(db)
    if run is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return run


@router.get("/relationships", response_model=list[DistributorRelationshipRead])
def list_distributor_relationships(db: Session = Depends(get_db)) -> list[DistributorRelationshipRead]:
    return principal_activity_service.distributor_relationships(db)


@router.get("/product-performance", response_model=list[ProductPerformanceRead])
def list_product_performance(
    principal_id: uuid.UUID | None = Query(default=None),
    as_of: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ProductPerformanceRead]:
    return principal_activity_service.product_performance(db, principal_id=principal_id, as_of=as_of)


@router.get("/{principal_id}", response_model=PrincipalActivitySummaryRead)
def get_summary(
    request: Request,
    principal_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> PrincipalActivitySummaryRead | JSONResponse:
    try:
        return principal_activity_service.get_summary(db, principal_id)
    except EntityNotFoundError as exc:
        return domain_error_response(request, exc, code="principal_activity_not_found")


@router.get("/{principal_id}/timeline", response_model=list[TimelineEntryRead])
def get_timeline(
    request: Request,
    principal_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[TimelineEntryRead] | JSONResponse:
    try:
        return principal_activity_service.timeline(db, principal_id, limit=limit)
    except EntityNotFoundError as exc:
        return domain_error_response(request, exc, code="principal_activity_timeline_failed")

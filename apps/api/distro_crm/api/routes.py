from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from distro_crm.core.auth import METRICS_READ_ROLE, AuthUser, get_current_user
from distro_crm.core.config import get_settings
from distro_crm.metrics import generate_metrics_payload, metrics_content_type
from distro_crm.crm.api import (
    contacts_router,
    interactions_router,
    opportunities_router,
    organizations_router,
    product_principals_router,
    products_router,
)
from distro_crm.reporting.principal_activity.api import router as principal_activity_router

router = APIRouter()
router.include_router(organizations_router)
router.include_router(contacts_router)
router.include_router(opportunities_router)
router.include_router(interactions_router)
router.include_router(products_router)
router.include_router(product_principals_router)
router.include_router(principal_activity_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not user.has_role(METRICS_READ_ROLE):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {METRICS_READ_ROLE}")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from distro_crm.api.errors import domain_error_response
from distro_crm.context import get_correlation_id
from distro_crm.core.auth import AuthUser, get_current_user as get_auth_user
from distro_crm.core.database import get_db
from distro_crm.crm.errors import EntityNotFoundError, ValidationViolation
from distro_crm.crm.schemas import (
    ContactCreate,
    ContactRead,
    ContactUpdate,
    InteractionCreate,
    InteractionRead,
    InteractionUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityStageTransition,
    OpportunityTransitionRead,
    OpportunityUpdate,
    OrganizationCreate,
    OrganizationRead,
    OrganizationUpdate,
    ProductCreate,
    ProductPrincipalCreate,
    ProductPrincipalRead,
    ProductPrincipalUpdate,
    ProductRead,
    ProductUpdate,
    TerritoryOverlapRead,
)
from distro_crm.crm.service import (
    ActorUser,
    contact_service,
    interaction_service,
    opportunity_service,
    organization_service,
    product_principal_service,
    product_service,
)

organizations_router = APIRouter(prefix="/api/crm", tags=["crm.organizations"])
contacts_router = APIRouter(prefix="/api/crm", tags=["crm.contacts"])
opportunities_router = APIRouter(prefix="/api/crm", tags=["crm.opportunities"])
interactions_router = APIRouter(prefix="/api/crm", tags=["crm.interactions"])
products_router = APIRouter(prefix="/api/crm", tags=["crm.products"])
product_principals_router = APIRouter(prefix="/api/crm", tags=["crm.product_principals"])

CrmError = (ValidationViolation, EntityNotFoundError)


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return ActorUser(user_id=auth_user.sub, correlation_id=correlation_id)


# organizations


@organizations_router.get("/organizations", response_model=list[OrganizationRead])
def list_organizations(
    is_principal: bool | None = Query(default=None),
    is_distributor: bool | None = Query(default=None),
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[OrganizationRead]:
    return organization_service.list_organizations(
        db,
        is_principal=is_principal,
        is_distributor=is_distributor,
        include_retired=include_retired,
    )


@organizations_router.post("/organizations", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED)
def create_organization(
    request: Request,
    dto: OrganizationCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OrganizationRead | JSONResponse:
    try:
        return organization_service.create(db, user, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_organization_create_failed")


@organizations_router.get("/organizations/{organization_id}", response_model=OrganizationRead)
def get_organization(
    request: Request,
    organization_id: uuid.UUID,
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> OrganizationRead | JSONResponse:
    try:
        return organization_service.get(db, organization_id, include_retired=include_retired)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_organization_get_failed")


@organizations_router.patch("/organizations/{organization_id}", response_model=OrganizationRead)
def patch_organization(
    request: Request,
    organization_id: uuid.UUID,
    dto: OrganizationUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OrganizationRead | JSONResponse:
    try:
        return organization_service.update(db, user, organization_id, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_organization_update_failed")


@organizations_router.delete("/organizations/{organization_id}", response_model=None)
def delete_organization(
    request: Request,
    organization_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        organization_service.soft_delete(db, user, organization_id)
        return {"status": "deleted"}
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_organization_delete_failed")


@organizations_router.post("/organizations/{organization_id}/restore", response_model=OrganizationRead)
def restore_organization(
    request: Request,
    organization_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OrganizationRead | JSONResponse:
    try:
        return organization_service.restore(db, user, organization_id)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_organization_restore_failed")


@organizations_router.get("/organizations/{organization_id}/clients", response_model=list[OrganizationRead])
def list_distributor_clients(
    request: Request,
    organization_id: uuid.UUID,
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[OrganizationRead] | JSONResponse:
    try:
        return organization_service.list_distributor_clients(db, organization_id, include_retired=include_retired)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_distributor_clients_failed")


# contacts


@contacts_router.get("/contacts", response_model=list[ContactRead])
def list_contacts(
    organization_id: uuid.UUID | None = Query(default=None),
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[ContactRead]:
    if organization_id is not None:
        return contact_service.list_for_organization(db, organization_id, include_retired=include_retired)
    return contact_service.list_records(db, include_retired=include_retired)


@contacts_router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.create(db, user, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_contact_create_failed")


@contacts_router.get("/contacts/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: uuid.UUID,
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.get(db, contact_id, include_retired=include_retired)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_contact_get_failed")


@contacts_router.patch("/contacts/{contact_id}", response_model=ContactRead)
def patch_contact(
    request: Request,
    contact_id: uuid.UUID,
    dto: ContactUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.update(db, user, contact_id, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_contact_update_failed")


@contacts_router.delete("/contacts/{contact_id}", response_model=None)
def delete_contact(
    request: Request,
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        contact_service.soft_delete(db, user, contact_id)
        return {"status": "deleted"}
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_contact_delete_failed")


@contacts_router.post("/contacts/{contact_id}/restore", response_model=ContactRead)
def restore_contact(
    request: Request,
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.restore(db, user, contact_id)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_contact_restore_failed")


# opportunities


@opportunities_router.get("/opportunities", response_model=list[OpportunityRead])
def list_opportunities(
    organization_id: uuid.UUID | None = Query(default=None),
    principal_id: uuid.UUID | None = Query(default=None),
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[OpportunityRead]:
    return opportunity_service.list_opportunities(
        db,
        organization_id=organization_id,
        principal_id=principal_id,
        include_retired=include_retired,
    )


@opportunities_router.post("/opportunities", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    request: Request,
    dto: OpportunityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.create(db, user, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_opportunity_create_failed")


@opportunities_router.get("/opportunities/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.get(db, opportunity_id, include_retired=include_retired)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_opportunity_get_failed")


@opportunities_router.patch("/opportunities/{opportunity_id}", response_model=OpportunityRead)
def patch_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: OpportunityUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.update(db, user, opportunity_id, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_opportunity_update_failed")


@opportunities_router.post(
    "/opportunities/{opportunity_id}/transition",
    response_model=OpportunityTransitionRead,
)
def transition_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: OpportunityStageTransition,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityTransitionRead | JSONResponse:
    try:
        return opportunity_service.transition(db, user, opportunity_id, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_opportunity_transition_failed")


@opportunities_router.delete("/opportunities/{opportunity_id}", response_model=None)
def delete_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        opportunity_service.soft_delete(db, user, opportunity_id)
        return {"status": "deleted"}
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_opportunity_delete_failed")


@opportunities_router.post("/opportunities/{opportunity_id}/restore", response_model=OpportunityRead)
def restore_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.restore(db, user, opportunity_id)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_opportunity_restore_failed")


# interactions


@interactions_router.get("/interactions", response_model=list[InteractionRead])
def list_interactions(
    opportunity_id: uuid.UUID | None = Query(default=None),
    principal_id: uuid.UUID | None = Query(default=None),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[InteractionRead]:
    return interaction_service.list_interactions(
        db,
        opportunity_id=opportunity_id,
        principal_id=principal_id,
        start=start,
        end=end,
        include_retired=include_retired,
    )


@interactions_router.post("/interactions", response_model=InteractionRead, status_code=status.HTTP_201_CREATED)
def create_interaction(
    request: Request,
    dto: InteractionCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.create(db, user, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_interaction_create_failed")


@interactions_router.get("/interactions/{interaction_id}", response_model=InteractionRead)
def get_interaction(
    request: Request,
    interaction_id: uuid.UUID,
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.get(db, interaction_id, include_retired=include_retired)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_interaction_get_failed")


@interactions_router.patch("/interactions/{interaction_id}", response_model=InteractionRead)
def patch_interaction(
    request: Request,
    interaction_id: uuid.UUID,
    dto: InteractionUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.update(db, user, interaction_id, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_interaction_update_failed")


@interactions_router.delete("/interactions/{interaction_id}", response_model=None)
def delete_interaction(
    request: Request,
    interaction_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        interaction_service.soft_delete(db, user, interaction_id)
        return {"status": "deleted"}
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_interaction_delete_failed")


@interactions_router.post("/interactions/{interaction_id}/restore", response_model=InteractionRead)
def restore_interaction(
    request: Request,
    interaction_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.restore(db, user, interaction_id)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_interaction_restore_failed")


# products


@products_router.get("/products", response_model=list[ProductRead])
def list_products(
    include_retired: bool = Query(default=False),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[ProductRead]:
    return product_service.list_records(db, include_retired=include_retired, limit=limit, offset=offset)


@products_router.post("/products", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    request: Request,
    dto: ProductCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ProductRead | JSONResponse:
    try:
        return product_service.create(db, user, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_create_failed")


@products_router.get("/products/{product_id}", response_model=ProductRead)
def get_product(
    request: Request,
    product_id: uuid.UUID,
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> ProductRead | JSONResponse:
    try:
        return product_service.get(db, product_id, include_retired=include_retired)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_get_failed")


@products_router.patch("/products/{product_id}", response_model=ProductRead)
def patch_product(
    request: Request,
    product_id: uuid.UUID,
    dto: ProductUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ProductRead | JSONResponse:
    try:
        return product_service.update(db, user, product_id, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_update_failed")


@products_router.delete("/products/{product_id}", response_model=None)
def delete_product(
    request: Request,
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        product_service.soft_delete(db, user, product_id)
        return {"status": "deleted"}
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_delete_failed")


@products_router.post("/products/{product_id}/restore", response_model=ProductRead)
def restore_product(
    request: Request,
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ProductRead | JSONResponse:
    try:
        return product_service.restore(db, user, product_id)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_restore_failed")


@products_router.get("/products/{product_id}/territory-overlaps", response_model=list[TerritoryOverlapRead])
def list_territory_overlaps(
    request: Request,
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> list[TerritoryOverlapRead] | JSONResponse:
    try:
        return product_principal_service.territory_overlaps(db, product_id)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_territory_overlaps_failed")


# product / principal associations


@product_principals_router.get("/product-principals", response_model=list[ProductPrincipalRead])
def list_product_principals(
    product_id: uuid.UUID | None = Query(default=None),
    principal_id: uuid.UUID | None = Query(default=None),
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[ProductPrincipalRead]:
    return product_principal_service.list_associations(
        db,
        product_id=product_id,
        principal_id=principal_id,
        include_retired=include_retired,
    )


@product_principals_router.post(
    "/product-principals",
    response_model=ProductPrincipalRead,
    status_code=status.HTTP_201_CREATED,
)
def create_product_principal(
    request: Request,
    dto: ProductPrincipalCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ProductPrincipalRead | JSONResponse:
    try:
        return product_principal_service.create(db, user, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_principal_create_failed")


@product_principals_router.get("/product-principals/{association_id}", response_model=ProductPrincipalRead)
def get_product_principal(
    request: Request,
    association_id: uuid.UUID,
    include_retired: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> ProductPrincipalRead | JSONResponse:
    try:
        return product_principal_service.get(db, association_id, include_retired=include_retired)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_principal_get_failed")


@product_principals_router.patch("/product-principals/{association_id}", response_model=ProductPrincipalRead)
def patch_product_principal(
    request: Request,
    association_id: uuid.UUID,
    dto: ProductPrincipalUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ProductPrincipalRead | JSONResponse:
    try:
        return product_principal_service.update(db, user, association_id, dto)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_principal_update_failed")


@product_principals_router.delete("/product-principals/{association_id}", response_model=None)
def delete_product_principal(
    request: Request,
    association_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        product_principal_service.soft_delete(db, user, association_id)
        return {"status": "deleted"}
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_principal_delete_failed")


@product_principals_router.post(
    "/product-principals/{association_id}/restore",
    response_model=ProductPrincipalRead,
)
def restore_product_principal(
    request: Request,
    association_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ProductPrincipalRead | JSONResponse:
    try:
        return product_principal_service.restore(db, user, association_id)
    except CrmError as exc:
        return domain_error_response(request, exc, code="crm_product_principal_restore_failed")

# api/routes/tenants.py
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.database import get_db
from api.middleware.auth import get_current_profile
from api.models.profile import Profile
from api.schemas.tenant import (
    BootstrapResponse,
    ClinicCreate,
    EntitlementResponse,
    ReconciliationResponse,
    SupplierCreate,
)
from api.services import bootstrap_service, plans
from api.services.bootstrap_service import BootstrapResult, ClinicDetails, SupplierDetails

router = APIRouter()


def _to_response(result: BootstrapResult) -> BootstrapResponse:
    tenant = result.tenant
    name = None
    if tenant is not None:
        name = tenant.name if result.tenant_kind == plans.TENANT_CLINIC else tenant.company_name
    rec = result.reconciliation
    return BootstrapResponse(
        entitled=result.entitled,
        tenant_kind=result.tenant_kind,
        tenant_id=str(tenant.id) if tenant is not None else None,
        tenant_name=name,
        plan=result.entitlement.plan if result.entitlement else None,
        reconciled=result.reconciled,
        reconciliation=(
            ReconciliationResponse(subscriptions=rec.subscriptions, payments=rec.payments)
            if rec
            else None
        ),
    )


@router.get("/entitlement", response_model=EntitlementResponse)
async def get_entitlement(
    tenant_kind: str = Query(plans.TENANT_CLINIC),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller may create a tenant of the given kind yet."""
    ent = await bootstrap_service.check_entitlement(db, profile.user_id, tenant_kind)
    return EntitlementResponse(
        entitled=ent.entitled,
        tenant_kind=tenant_kind,
        source=ent.source,
        plan=ent.plan,
        subscription_id=str(ent.subscription_id) if ent.subscription_id else None,
        payment_id=str(ent.payment_id) if ent.payment_id else None,
    )


async def _bootstrap(db, profile, tenant_kind, details, response: Response) -> BootstrapResponse:
    bootstrap_service.assert_bootstrap_allowed(profile)
    result = await bootstrap_service.bootstrap_tenant(db, profile, tenant_kind, details)
    if not result.entitled:
        response.status_code = status.HTTP_200_OK
    return _to_response(result)


@router.post("/clinics", response_model=BootstrapResponse, status_code=status.HTTP_201_CREATED)
async def create_clinic(
    body: ClinicCreate,
    response: Response,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """
    Create the caller's clinic. A caller without an approved payment gets
    200 with entitled=false and nothing is created.
    """
    return await _bootstrap(
        db, profile, plans.TENANT_CLINIC, ClinicDetails(**body.model_dump()), response
    )


@router.post("/suppliers", response_model=BootstrapResponse, status_code=status.HTTP_201_CREATED)
async def create_supplier(
    body: SupplierCreate,
    response: Response,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await _bootstrap(
        db, profile, plans.TENANT_SUPPLIER, SupplierDetails(**body.model_dump()), response
    )

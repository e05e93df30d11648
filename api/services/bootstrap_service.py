"""
Tenant bootstrap: first clinic/supplier creation for an entitled user.

  entitlement check → create tenant → link profile
  → reattach the user's orphaned approved subscriptions/payments.

Tenant creation and profile linking share the request transaction. The
orphan reattachment runs in a SAVEPOINT: if it fails it is rolled back on its
own, logged, and reported as reconciled=False while the tenant stays.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.models.clinic import Clinic
from api.models.manual_payment import ManualPayment
from api.models.profile import Profile
from api.models.subscription import Subscription
from api.models.supplier import Supplier
from api.services import plans
from api.services.errors import PersistenceError, TenantAlreadyExistsError, ValidationError

logger = structlog.get_logger()

# Functional role given to the user who bootstraps the tenant
OWNER_ROLES = {
    plans.TENANT_CLINIC: "dentist",
    plans.TENANT_SUPPLIER: "supplier",
}


@dataclass
class Entitlement:
    entitled: bool
    source: Optional[str] = None  # "subscription" | "payment"
    plan: Optional[str] = None
    subscription_id: Optional[uuid.UUID] = None
    payment_id: Optional[uuid.UUID] = None


@dataclass
class ClinicDetails:
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None


@dataclass
class SupplierDetails:
    company_name: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass
class ReconciliationResult:
    subscriptions: int = 0
    payments: int = 0


@dataclass
class BootstrapResult:
    entitled: bool
    tenant_kind: Optional[str] = None
    tenant: Optional[Union[Clinic, Supplier]] = None
    entitlement: Optional[Entitlement] = None
    reconciled: bool = False
    reconciliation: Optional[ReconciliationResult] = None


def assert_bootstrap_allowed(profile: Profile) -> None:
    """Guard run before bootstrap: a profile gets at most one tenant."""
    if profile.clinic_id is not None or profile.supplier_id is not None:
        raise TenantAlreadyExistsError(
            "Your account is already linked to a clinic or supplier"
        )


async def check_entitlement(
    session: AsyncSession, user_id: uuid.UUID, tenant_kind: str
) -> Entitlement:
    """
    A user is entitled when they own an approved subscription linked to one
    of their approved payments, or an approved payment on its own.

    Only rows bought for tenant_kind count: a clinic payment never entitles
    a supplier, since the two price tables differ.
    """
    if tenant_kind not in plans.TENANT_KINDS:
        raise ValidationError(f"Unknown tenant kind: {tenant_kind}")
    try:
        sub_result = await session.execute(
            select(Subscription)
            .join(ManualPayment, ManualPayment.subscription_id == Subscription.id)
            .where(
                ManualPayment.user_id == user_id,
                ManualPayment.status == "approved",
                Subscription.status == "approved",
                ManualPayment.tenant_kind == tenant_kind,
                Subscription.tenant_kind == tenant_kind,
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        subscription = sub_result.scalars().first()
        if subscription is not None:
            return Entitlement(
                entitled=True,
                source="subscription",
                plan=subscription.plan,
                subscription_id=subscription.id,
            )

        pay_result = await session.execute(
            select(ManualPayment)
            .where(
                ManualPayment.user_id == user_id,
                ManualPayment.status == "approved",
                ManualPayment.tenant_kind == tenant_kind,
            )
            .order_by(ManualPayment.created_at.desc())
            .limit(1)
        )
        payment = pay_result.scalars().first()
    except SQLAlchemyError as e:
        logger.error("entitlement_check_failed", user_id=str(user_id), error=str(e))
        raise PersistenceError("Could not check subscription status") from e

    if payment is not None:
        return Entitlement(
            entitled=True,
            source="payment",
            plan=payment.plan or plans.infer_plan_from_amount(payment.amount_iqd, tenant_kind),
            payment_id=payment.id,
        )
    return Entitlement(entitled=False)


async def reattach_orphans(
    session: AsyncSession,
    user_id: uuid.UUID,
    tenant_kind: str,
    tenant_id: uuid.UUID,
) -> ReconciliationResult:
    """
    Point the user's approved rows that have no tenant at tenant_id.

    Scoped to user_id and tenant_kind: another user's orphans, and rows
    bought for the other tenant kind, are never claimed. Running it twice
    finds nothing the second time.
    """
    is_clinic = tenant_kind == plans.TENANT_CLINIC
    target = {"clinic_id": tenant_id} if is_clinic else {"supplier_id": tenant_id}

    sub_result = await session.execute(
        update(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.clinic_id.is_(None),
            Subscription.supplier_id.is_(None),
            Subscription.status == "approved",
            Subscription.tenant_kind == tenant_kind,
        )
        .values(**target)
        .execution_options(synchronize_session="evaluate")
    )
    pay_result = await session.execute(
        update(ManualPayment)
        .where(
            ManualPayment.user_id == user_id,
            ManualPayment.clinic_id.is_(None),
            ManualPayment.supplier_id.is_(None),
            ManualPayment.status == "approved",
            ManualPayment.tenant_kind == tenant_kind,
        )
        .values(**target)
        .execution_options(synchronize_session="evaluate")
    )
    return ReconciliationResult(
        subscriptions=sub_result.rowcount or 0,
        payments=pay_result.rowcount or 0,
    )


def _build_tenant(
    tenant_kind: str,
    profile: Profile,
    details: Union[ClinicDetails, SupplierDetails],
    plan: Optional[str],
) -> Union[Clinic, Supplier]:
    if tenant_kind == plans.TENANT_CLINIC:
        if not isinstance(details, ClinicDetails) or not details.name.strip():
            raise ValidationError("Clinic name is required")
        return Clinic(
            name=details.name.strip(),
            address=details.address,
            phone=details.phone,
            email=details.email,
            website=details.website or None,
            subscription_status="active",
            subscription_plan=plan or plans.PLAN_TIERS[0],
        )
    if tenant_kind == plans.TENANT_SUPPLIER:
        if not isinstance(details, SupplierDetails) or not details.company_name.strip():
            raise ValidationError("Company name is required")
        return Supplier(
            user_id=profile.user_id,
            company_name=details.company_name.strip(),
            contact_name=details.contact_name,
            phone=details.phone,
            email=details.email or profile.email,
            address=details.address,
        )
    raise ValidationError(f"Unknown tenant kind: {tenant_kind}")


async def bootstrap_tenant(
    session: AsyncSession,
    profile: Profile,
    tenant_kind: str,
    details: Union[ClinicDetails, SupplierDetails],
) -> BootstrapResult:
    """
    Create the caller's tenant when they are entitled.

    Not being entitled is a normal outcome (entitled=False), not an error,
    and creates nothing.
    """
    entitlement = await check_entitlement(session, profile.user_id, tenant_kind)
    if not entitlement.entitled:
        logger.info("tenant_bootstrap_not_entitled", user_id=str(profile.user_id))
        return BootstrapResult(entitled=False, tenant_kind=tenant_kind, entitlement=entitlement)

    tenant = _build_tenant(tenant_kind, profile, details, entitlement.plan)
    try:
        session.add(tenant)
        await session.flush()
        if tenant_kind == plans.TENANT_CLINIC:
            profile.clinic_id = tenant.id
        else:
            profile.supplier_id = tenant.id
        profile.role = OWNER_ROLES[tenant_kind]
        await session.flush()
    except SQLAlchemyError as e:
        logger.error(
            "tenant_bootstrap_failed",
            user_id=str(profile.user_id),
            tenant_kind=tenant_kind,
            error=str(e),
        )
        raise PersistenceError("Could not create your account") from e

    reconciliation = None
    reconciled = False
    try:
        async with session.begin_nested():
            reconciliation = await reattach_orphans(
                session, profile.user_id, tenant_kind, tenant.id
            )
        reconciled = True
    except SQLAlchemyError as e:
        logger.error(
            "orphan_reconciliation_failed",
            user_id=str(profile.user_id),
            tenant_id=str(tenant.id),
            error=str(e),
        )

    logger.info(
        "tenant_bootstrapped",
        user_id=str(profile.user_id),
        tenant_kind=tenant_kind,
        tenant_id=str(tenant.id),
        entitlement_source=entitlement.source,
        reconciled=reconciled,
        reattached_subscriptions=reconciliation.subscriptions if reconciliation else 0,
        reattached_payments=reconciliation.payments if reconciliation else 0,
    )
    return BootstrapResult(
        entitled=True,
        tenant_kind=tenant_kind,
        tenant=tenant,
        entitlement=entitlement,
        reconciled=reconciled,
        reconciliation=reconciliation,
    )

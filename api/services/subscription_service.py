"""
Subscription status resolution, upgrade quotes and plan feature limits.

"Current plan" for a tenant is always re-derived from the subscriptions
table; nothing here caches entitlement between calls.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.database import utcnow
from api.models.manual_payment import ManualPayment
from api.models.profile import Profile
from api.models.subscription import Subscription
from api.models.subscription_feature import SubscriptionFeature
from api.services import plans
from api.services.errors import PersistenceError, ValidationError

logger = structlog.get_logger()

INACTIVE_STATUSES = ("pending", "rejected")

DEFAULT_FEATURES = (
    ("max_patients", True, 50),
    ("max_staff", True, 2),
    ("max_appointments_per_month", True, 100),
)


@dataclass
class SubscriptionSummary:
    subscribed: bool
    plan: Optional[str] = None
    subscription_end: Optional[datetime] = None
    payment_method: Optional[str] = None


@dataclass
class UpgradeQuote:
    tenant_kind: str
    current_plan: Optional[str]
    target_plan: str
    is_current: bool
    is_upgrade: bool
    amount_iqd: int
    amount_usd: Decimal


@dataclass
class FeatureRule:
    feature_name: str
    is_enabled: bool
    feature_limit: Optional[int] = None


@dataclass
class PlanFeatures:
    plan: str
    features: list[FeatureRule] = field(default_factory=list)

    def get(self, feature_name: str) -> Optional[FeatureRule]:
        for rule in self.features:
            if rule.feature_name == feature_name:
                return rule
        return None

    def has_access(self, feature_name: str) -> bool:
        rule = self.get(feature_name)
        return bool(rule and rule.is_enabled)


def tenant_column(model, tenant_kind: str):
    """clinic_id or supplier_id column of a subscription/payment model."""
    if tenant_kind == plans.TENANT_CLINIC:
        return model.clinic_id
    if tenant_kind == plans.TENANT_SUPPLIER:
        return model.supplier_id
    raise ValidationError(f"Unknown tenant kind: {tenant_kind}")


def tenant_id_for_profile(profile: Profile, tenant_kind: str) -> Optional[uuid.UUID]:
    if tenant_kind == plans.TENANT_CLINIC:
        return profile.clinic_id
    if tenant_kind == plans.TENANT_SUPPLIER:
        return profile.supplier_id
    raise ValidationError(f"Unknown tenant kind: {tenant_kind}")


async def resolve_active_subscription(
    session: AsyncSession,
    tenant_kind: str,
    tenant_id: Optional[uuid.UUID],
) -> Optional[Subscription]:
    """
    Most recently created subscription of the tenant whose status is neither
    pending nor rejected. Rows sharing a created_at have no defined order.
    """
    if tenant_id is None:
        return None

    column = tenant_column(Subscription, tenant_kind)
    try:
        result = await session.execute(
            select(Subscription)
            .where(
                column == tenant_id,
                Subscription.status.not_in(INACTIVE_STATUSES),
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
    except SQLAlchemyError as e:
        logger.error("subscription_resolve_failed", tenant_id=str(tenant_id), error=str(e))
        raise PersistenceError("Could not load subscription status") from e
    return result.scalars().first()


async def get_subscription_summary(
    session: AsyncSession,
    tenant_kind: str,
    tenant_id: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> SubscriptionSummary:
    """
    Subscribed means the resolved subscription's period has not ended yet.
    A lapsed period reports subscribed=False with no plan.
    """
    subscription = await resolve_active_subscription(session, tenant_kind, tenant_id)
    if subscription is None:
        return SubscriptionSummary(subscribed=False)
    if plans.period_lapsed(subscription.current_period_end, now or utcnow()):
        return SubscriptionSummary(subscribed=False)
    return SubscriptionSummary(
        subscribed=True,
        plan=subscription.plan,
        subscription_end=subscription.current_period_end,
        payment_method=subscription.payment_method,
    )


async def quote_upgrade(
    session: AsyncSession,
    tenant_kind: str,
    tenant_id: Optional[uuid.UUID],
    target_plan: str,
) -> UpgradeQuote:
    """Price to move the tenant to target_plan given its resolved current plan."""
    if target_plan not in plans.PLAN_TIERS:
        raise ValidationError(f"Unknown plan tier: {target_plan}")

    subscription = await resolve_active_subscription(session, tenant_kind, tenant_id)
    current_plan = subscription.plan if subscription else None
    is_upgrade = plans.can_upgrade(tenant_kind, current_plan, target_plan)

    if is_upgrade:
        amount = plans.upgrade_price(tenant_kind, current_plan, target_plan)
    else:
        amount = plans.plan_price(tenant_kind, target_plan)

    return UpgradeQuote(
        tenant_kind=tenant_kind,
        current_plan=current_plan,
        target_plan=target_plan,
        is_current=current_plan == target_plan,
        is_upgrade=is_upgrade,
        amount_iqd=amount,
        amount_usd=plans.to_reference_currency(amount),
    )


async def effective_plan_for_profile(session: AsyncSession, profile: Profile) -> str:
    """
    Plan used for feature gating.

    Tenants use their resolved subscription. A user without a tenant yet is
    graded by the amount of their latest approved payment.

    A tenant bootstrapped from an approved payment alone has no subscription
    row, so it grades basic here and reads subscribed=False from
    get_subscription_summary until a subscription for it is approved. This
    is intended: the bootstrap plan only labels the tenant.
    """
    if profile.clinic_id or profile.supplier_id:
        kind = plans.TENANT_CLINIC if profile.clinic_id else plans.TENANT_SUPPLIER
        subscription = await resolve_active_subscription(
            session, kind, tenant_id_for_profile(profile, kind)
        )
        return subscription.plan if subscription else plans.PLAN_TIERS[0]

    result = await session.execute(
        select(ManualPayment)
        .where(
            ManualPayment.user_id == profile.user_id,
            ManualPayment.status == "approved",
        )
        .order_by(ManualPayment.created_at.desc())
        .limit(1)
    )
    payment = result.scalars().first()
    if payment is None:
        return plans.PLAN_TIERS[0]
    return payment.plan or plans.infer_plan_from_amount(payment.amount_iqd, payment.tenant_kind)


async def get_plan_features(session: AsyncSession, profile: Profile) -> PlanFeatures:
    plan = await effective_plan_for_profile(session, profile)
    result = await session.execute(
        select(SubscriptionFeature)
        .where(SubscriptionFeature.plan == plan)
        .order_by(SubscriptionFeature.feature_name)
    )
    rows = list(result.scalars().all())

    if not rows:
        logger.warning("plan_features_missing", plan=plan)
        return PlanFeatures(
            plan=plan,
            features=[FeatureRule(name, enabled, limit) for name, enabled, limit in DEFAULT_FEATURES],
        )

    return PlanFeatures(
        plan=plan,
        features=[
            FeatureRule(r.feature_name, bool(r.is_enabled), r.feature_limit) for r in rows
        ],
    )


def check_limit_reached(features: PlanFeatures, feature_name: str, current_count: int) -> bool:
    """True only when the feature has a limit and current_count has reached it."""
    rule = features.get(feature_name)
    if rule is None or not rule.feature_limit:
        return False
    return current_count >= rule.feature_limit

# api/routes/subscriptions.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.database import get_db
from api.middleware.auth import get_current_profile
from api.models.profile import Profile
from api.schemas.subscription import (
    FeatureRuleResponse,
    PlanFeaturesResponse,
    SubscriptionStatusResponse,
    UpgradeQuoteResponse,
)
from api.services import plans, subscription_service
from api.services.errors import ValidationError

router = APIRouter()


def _tenant_kind(value: str) -> str:
    if value not in plans.TENANT_KINDS:
        raise ValidationError(f"Unknown tenant kind: {value}")
    return value


@router.get("/current", response_model=SubscriptionStatusResponse)
async def get_current_subscription(
    tenant_kind: str = Query(plans.TENANT_CLINIC),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Subscription status of the caller's tenant, re-read on every call."""
    kind = _tenant_kind(tenant_kind)
    tenant_id = subscription_service.tenant_id_for_profile(profile, kind)
    summary = await subscription_service.get_subscription_summary(db, kind, tenant_id)
    return SubscriptionStatusResponse(
        tenant_kind=kind,
        tenant_id=str(tenant_id) if tenant_id else None,
        subscribed=summary.subscribed,
        plan=summary.plan,
        subscription_end=(
            summary.subscription_end.isoformat() if summary.subscription_end else None
        ),
        payment_method=summary.payment_method,
    )


@router.get("/upgrade-quote", response_model=UpgradeQuoteResponse)
async def get_upgrade_quote(
    target_plan: str = Query(...),
    tenant_kind: str = Query(plans.TENANT_CLINIC),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    kind = _tenant_kind(tenant_kind)
    quote = await subscription_service.quote_upgrade(
        db, kind, subscription_service.tenant_id_for_profile(profile, kind), target_plan
    )
    return UpgradeQuoteResponse(
        tenant_kind=quote.tenant_kind,
        current_plan=quote.current_plan,
        target_plan=quote.target_plan,
        is_current=quote.is_current,
        is_upgrade=quote.is_upgrade,
        amount_iqd=quote.amount_iqd,
        amount_usd=float(quote.amount_usd),
    )


@router.get("/features", response_model=PlanFeaturesResponse)
async def get_features(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    features = await subscription_service.get_plan_features(db, profile)
    return PlanFeaturesResponse(
        plan=features.plan,
        features=[
            FeatureRuleResponse(
                feature_name=f.feature_name,
                is_enabled=f.is_enabled,
                feature_limit=f.feature_limit,
            )
            for f in features.features
        ],
    )

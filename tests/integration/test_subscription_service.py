"""
Subscription status resolution, upgrade quotes and feature limits.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from api.models.subscription_feature import SubscriptionFeature
from api.services.bootstrap_service import ClinicDetails, bootstrap_tenant
from api.services.errors import ValidationError
from api.services.subscription_service import (
    check_limit_reached,
    get_plan_features,
    get_subscription_summary,
    quote_upgrade,
    resolve_active_subscription,
)
from tests.factories import (
    make_clinic,
    make_payment,
    make_profile,
    make_subscription,
    make_supplier,
    ts,
)


# ---------------------------------------------------------------------------
# resolve_active_subscription
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolver_skips_newer_pending_and_rejected_rows(async_session):
    clinic = await make_clinic(async_session)
    approved = await make_subscription(
        async_session, clinic_id=clinic.id, status="approved", created_at=ts(1)
    )
    await make_subscription(async_session, clinic_id=clinic.id, status="rejected", created_at=ts(2))
    await make_subscription(async_session, clinic_id=clinic.id, status="pending", created_at=ts(3))

    resolved = await resolve_active_subscription(async_session, "clinic", clinic.id)

    assert resolved is not None
    assert resolved.id == approved.id


@pytest.mark.asyncio
async def test_resolver_picks_most_recent_approved(async_session):
    clinic = await make_clinic(async_session)
    await make_subscription(async_session, clinic_id=clinic.id, status="approved", created_at=ts(1))
    latest = await make_subscription(
        async_session, clinic_id=clinic.id, status="approved", plan="enterprise", created_at=ts(5)
    )

    resolved = await resolve_active_subscription(async_session, "clinic", clinic.id)
    assert resolved.id == latest.id


@pytest.mark.asyncio
async def test_subscription_status_has_no_expired_value(async_session):
    clinic = await make_clinic(async_session)
    with pytest.raises(IntegrityError):
        await make_subscription(async_session, clinic_id=clinic.id, status="expired")


@pytest.mark.asyncio
async def test_resolver_with_only_pending_rows_returns_none(async_session):
    clinic = await make_clinic(async_session)
    await make_subscription(async_session, clinic_id=clinic.id, status="pending")

    assert await resolve_active_subscription(async_session, "clinic", clinic.id) is None


@pytest.mark.asyncio
async def test_resolver_without_tenant_returns_none(async_session):
    assert await resolve_active_subscription(async_session, "clinic", None) is None


@pytest.mark.asyncio
async def test_resolver_keeps_tenant_classes_apart(async_session):
    owner = await make_profile(async_session, role="supplier")
    supplier = await make_supplier(async_session, owner.user_id)
    clinic = await make_clinic(async_session)
    sub = await make_subscription(
        async_session, supplier_id=supplier.id, status="approved", amount_iqd=20_000
    )

    assert (await resolve_active_subscription(async_session, "supplier", supplier.id)).id == sub.id
    assert await resolve_active_subscription(async_session, "clinic", clinic.id) is None


@pytest.mark.asyncio
async def test_resolver_rejects_unknown_tenant_kind(async_session):
    clinic = await make_clinic(async_session)
    with pytest.raises(ValidationError):
        await resolve_active_subscription(async_session, "hospital", clinic.id)


@pytest.mark.asyncio
async def test_summary(async_session):
    clinic = await make_clinic(async_session)
    await make_subscription(async_session, clinic_id=clinic.id, status="approved", plan="premium")

    summary = await get_subscription_summary(async_session, "clinic", clinic.id)
    assert summary.subscribed is True
    assert summary.plan == "premium"
    assert summary.payment_method == "zain_cash"

    empty = await get_subscription_summary(async_session, "clinic", None)
    assert empty.subscribed is False
    assert empty.plan is None


@pytest.mark.asyncio
async def test_summary_of_lapsed_period_is_not_subscribed(async_session):
    clinic = await make_clinic(async_session)
    await make_subscription(
        async_session, clinic_id=clinic.id, status="approved",
        current_period_end=datetime(2020, 2, 1, tzinfo=timezone.utc),
    )

    summary = await get_subscription_summary(async_session, "clinic", clinic.id)

    assert summary.subscribed is False
    assert summary.plan is None
    assert summary.subscription_end is None


@pytest.mark.asyncio
async def test_summary_of_running_period(async_session):
    clinic = await make_clinic(async_session)
    end = datetime(2025, 2, 1, tzinfo=timezone.utc)
    await make_subscription(
        async_session, clinic_id=clinic.id, status="approved", current_period_end=end
    )

    now = datetime(2025, 1, 15, tzinfo=timezone.utc)
    summary = await get_subscription_summary(async_session, "clinic", clinic.id, now=now)
    assert summary.subscribed is True
    assert summary.plan == "basic"

    after = await get_subscription_summary(
        async_session, "clinic", clinic.id, now=datetime(2025, 2, 2, tzinfo=timezone.utc)
    )
    assert after.subscribed is False


# ---------------------------------------------------------------------------
# quote_upgrade
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_quote_upgrade_charges_difference(async_session):
    clinic = await make_clinic(async_session)
    await make_subscription(async_session, clinic_id=clinic.id, status="approved", plan="basic")

    quote = await quote_upgrade(async_session, "clinic", clinic.id, "enterprise")

    assert quote.current_plan == "basic"
    assert quote.is_upgrade is True
    assert quote.amount_iqd == 20_000
    assert quote.amount_usd == Decimal("15.20")


@pytest.mark.asyncio
async def test_quote_for_current_plan_is_full_price(async_session):
    clinic = await make_clinic(async_session)
    await make_subscription(async_session, clinic_id=clinic.id, status="approved", plan="premium")

    quote = await quote_upgrade(async_session, "clinic", clinic.id, "premium")

    assert quote.is_current is True
    assert quote.is_upgrade is False
    assert quote.amount_iqd == 20_000


@pytest.mark.asyncio
async def test_quote_without_subscription_is_full_price(async_session):
    quote = await quote_upgrade(async_session, "supplier", None, "premium")
    assert quote.current_plan is None
    assert quote.amount_iqd == 40_000


@pytest.mark.asyncio
async def test_quote_unknown_plan(async_session):
    with pytest.raises(ValidationError):
        await quote_upgrade(async_session, "clinic", None, "platinum")


# ---------------------------------------------------------------------------
# Plan features
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_features_fall_back_to_defaults(async_session):
    profile = await make_profile(async_session)

    features = await get_plan_features(async_session, profile)

    assert features.plan == "basic"
    assert features.get("max_patients").feature_limit == 50
    assert features.has_access("max_staff")
    assert check_limit_reached(features, "max_patients", 50) is True
    assert check_limit_reached(features, "max_patients", 49) is False


@pytest.mark.asyncio
async def test_features_follow_resolved_clinic_plan(async_session):
    clinic = await make_clinic(async_session)
    profile = await make_profile(async_session, clinic_id=clinic.id)
    await make_subscription(async_session, clinic_id=clinic.id, status="approved", plan="enterprise")
    async_session.add_all([
        SubscriptionFeature(plan="enterprise", feature_name="max_patients", is_enabled=True, feature_limit=None),
        SubscriptionFeature(plan="enterprise", feature_name="analytics", is_enabled=True, feature_limit=None),
        SubscriptionFeature(plan="basic", feature_name="analytics", is_enabled=False, feature_limit=None),
    ])
    await async_session.flush()

    features = await get_plan_features(async_session, profile)

    assert features.plan == "enterprise"
    assert features.has_access("analytics")
    assert check_limit_reached(features, "max_patients", 10_000) is False
    assert check_limit_reached(features, "unknown_feature", 1) is False


@pytest.mark.asyncio
async def test_features_for_user_without_tenant_use_approved_payment(async_session):
    profile = await make_profile(async_session)
    await make_payment(async_session, profile.user_id, status="approved", plan="premium", amount_iqd=20_000)
    await make_payment(async_session, profile.user_id, status="pending", plan="enterprise", created_at=ts(9))

    features = await get_plan_features(async_session, profile)
    assert features.plan == "premium"


@pytest.mark.asyncio
async def test_features_for_supplier_payment_use_supplier_prices(async_session):
    profile = await make_profile(async_session)
    await make_payment(
        async_session, profile.user_id, status="approved", plan=None,
        amount_iqd=40_000, tenant_kind="supplier",
    )

    features = await get_plan_features(async_session, profile)
    assert features.plan == "premium"


@pytest.mark.asyncio
async def test_payment_only_bootstrap_grades_basic(async_session):
    profile = await make_profile(async_session)
    await make_payment(async_session, profile.user_id, status="approved", plan="premium", amount_iqd=20_000)

    result = await bootstrap_tenant(async_session, profile, "clinic", ClinicDetails(name="Smile"))
    assert result.tenant.subscription_plan == "premium"

    # No subscription row backs the tenant until one is approved for it
    features = await get_plan_features(async_session, profile)
    summary = await get_subscription_summary(async_session, "clinic", result.tenant.id)
    assert features.plan == "basic"
    assert summary.subscribed is False

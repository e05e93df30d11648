"""
Payment review against a real (SQLite) session: approval activates the
newest pending subscription, rejection needs a reason, a payment is
reviewed at most once, and reviewers are limited to their scope.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from api.models.manual_payment import ManualPayment
from api.models.subscription import Subscription
from api.services.errors import (
    AuthorizationGap,
    NotFoundError,
    PaymentStateError,
    PersistenceError,
    ValidationError,
)
from api.services.payment_service import (
    approve_payment,
    get_proof_url,
    list_payments_for_review,
    reject_payment,
    review_payment,
)
from tests.factories import make_clinic, make_payment, make_profile, make_subscription, ts

NOW = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)


async def _clinic_setup(session):
    clinic = await make_clinic(session)
    admin = await make_profile(session, role="admin", clinic_id=clinic.id)
    payer = await make_profile(session, role="dentist", clinic_id=clinic.id)
    return clinic, admin, payer


# ---------------------------------------------------------------------------
# Approve
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_approve_activates_newest_pending_subscription(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    older = await make_subscription(async_session, clinic_id=clinic.id, created_at=ts(1))
    newer = await make_subscription(
        async_session, clinic_id=clinic.id, plan="premium", created_at=ts(2)
    )
    payment = await make_payment(
        async_session, payer.user_id, clinic_id=clinic.id, plan="premium", amount_iqd=20_000
    )

    result = await approve_payment(async_session, admin, payment.id, now=NOW)

    assert result.subscription_activated
    assert result.subscription.id == newer.id
    assert newer.status == "approved"
    assert newer.current_period_start == NOW
    assert newer.current_period_end == datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert older.status == "pending"

    assert payment.status == "approved"
    assert payment.reviewed_by == admin.id
    assert payment.reviewed_at == NOW
    assert payment.subscription_id == newer.id

    assert clinic.subscription_status == "active"
    assert clinic.subscription_plan == "premium"


@pytest.mark.asyncio
async def test_failed_activation_leaves_payment_pending_after_rollback(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    sub = await make_subscription(async_session, clinic_id=clinic.id)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)
    await async_session.commit()
    payment_id, sub_id = payment.id, sub.id

    with patch(
        "api.services.payment_service.find_pending_subscription",
        AsyncMock(side_effect=SQLAlchemyError("deadlock detected")),
    ):
        with pytest.raises(PersistenceError) as exc_info:
            await approve_payment(async_session, admin, payment_id, now=NOW)

    assert exc_info.value.detail["error"]["details"] == {"payment_id": str(payment_id)}
    await async_session.rollback()

    payment_status = (
        await async_session.execute(
            select(ManualPayment.status).where(ManualPayment.id == payment_id)
        )
    ).scalar_one()
    sub_status = (
        await async_session.execute(select(Subscription.status).where(Subscription.id == sub_id))
    ).scalar_one()
    assert payment_status == "pending"
    assert sub_status == "pending"


@pytest.mark.asyncio
async def test_approve_without_pending_subscription_approves_payment_only(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)

    result = await approve_payment(async_session, admin, payment.id, now=NOW)

    assert payment.status == "approved"
    assert result.subscription is None
    assert not result.subscription_activated


@pytest.mark.asyncio
async def test_approve_without_tenant_by_super_admin(async_session):
    reviewer = await make_profile(async_session, role="admin", system_role="super_admin")
    payer = await make_profile(async_session)
    payment = await make_payment(async_session, payer.user_id)

    result = await approve_payment(async_session, reviewer, payment.id, now=NOW)

    assert payment.status == "approved"
    assert result.subscription is None


@pytest.mark.asyncio
async def test_second_approval_is_refused(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)
    await approve_payment(async_session, admin, payment.id, now=NOW)

    with pytest.raises(PaymentStateError):
        await approve_payment(async_session, admin, payment.id, now=NOW)


@pytest.mark.asyncio
async def test_rejected_payment_cannot_be_approved(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id, status="rejected")

    with pytest.raises(PaymentStateError):
        await approve_payment(async_session, admin, payment.id, now=NOW)


@pytest.mark.asyncio
async def test_approve_unknown_payment(async_session):
    admin = await make_profile(async_session, system_role="super_admin")
    with pytest.raises(NotFoundError):
        await approve_payment(async_session, admin, uuid.uuid4())


# ---------------------------------------------------------------------------
# Reject
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reject_without_reason_leaves_payment_pending(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)

    with pytest.raises(ValidationError):
        await reject_payment(async_session, admin, payment.id, "  ")

    assert payment.status == "pending"
    assert payment.reviewed_by is None


@pytest.mark.asyncio
async def test_reject_records_reason(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    sub = await make_subscription(async_session, clinic_id=clinic.id)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)

    result = await reject_payment(async_session, admin, payment.id, " Screenshot unreadable ", now=NOW)

    assert result.payment.status == "rejected"
    assert payment.rejection_reason == "Screenshot unreadable"
    assert payment.reviewed_by == admin.id
    assert sub.status == "pending"


@pytest.mark.asyncio
async def test_review_payment_dispatches_and_rejects_unknown_decision(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)

    with pytest.raises(ValidationError):
        await review_payment(async_session, admin, payment.id, "maybe")

    result = await review_payment(async_session, admin, payment.id, "reject", reason="Wrong amount")
    assert result.payment.status == "rejected"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dentist_cannot_approve(async_session):
    clinic, _, payer = await _clinic_setup(async_session)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)

    with pytest.raises(AuthorizationGap):
        await approve_payment(async_session, payer, payment.id)
    assert payment.status == "pending"


@pytest.mark.asyncio
async def test_admin_of_other_clinic_cannot_approve(async_session):
    clinic, _, payer = await _clinic_setup(async_session)
    other_clinic = await make_clinic(async_session, name="Other Clinic")
    other_admin = await make_profile(async_session, role="admin", clinic_id=other_clinic.id)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)

    with pytest.raises(AuthorizationGap):
        await approve_payment(async_session, other_admin, payment.id)


# ---------------------------------------------------------------------------
# Listing / proof access
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_for_review_is_scoped_to_admin_clinic(async_session):
    clinic, admin, payer = await _clinic_setup(async_session)
    other_clinic = await make_clinic(async_session, name="Other Clinic")
    await make_payment(async_session, payer.user_id, clinic_id=clinic.id, created_at=ts(1))
    await make_payment(async_session, payer.user_id, clinic_id=clinic.id, status="approved", created_at=ts(2))
    await make_payment(async_session, payer.user_id, clinic_id=other_clinic.id)
    await make_payment(async_session, payer.user_id)

    rows, total = await list_payments_for_review(async_session, admin)
    assert total == 2
    assert [p.status for p in rows] == ["approved", "pending"]

    pending, pending_total = await list_payments_for_review(async_session, admin, status="pending")
    assert pending_total == 1
    assert pending[0].status == "pending"

    super_admin = await make_profile(async_session, system_role="super_admin")
    _, all_total = await list_payments_for_review(async_session, super_admin)
    assert all_total == 4


@pytest.mark.asyncio
async def test_list_for_review_denied_to_non_admin(async_session):
    payer = await make_profile(async_session)
    with pytest.raises(AuthorizationGap):
        await list_payments_for_review(async_session, payer)


@pytest.mark.asyncio
async def test_proof_url_for_payer_and_reviewer_only(async_session, storage):
    clinic, admin, payer = await _clinic_setup(async_session)
    stranger = await make_profile(async_session)
    payment = await make_payment(async_session, payer.user_id, clinic_id=clinic.id)

    assert await get_proof_url(async_session, storage, payer, payment.id) == "https://storage.test/signed"
    assert await get_proof_url(async_session, storage, admin, payment.id) == "https://storage.test/signed"
    storage.get_presigned_url.assert_called_with(payment.screenshot_url, 3600)

    with pytest.raises(AuthorizationGap):
        await get_proof_url(async_session, storage, stranger, payment.id)

"""
Manual (local) subscription payments: submission and admin review.

Submission:
  validate → upload proof image → insert manual_payment (pending)
  → insert companion subscription (pending) when the payer already has a tenant.

Review:
  approve → payment approved → newest pending subscription of the payment's
            tenant activated for one billing period (if any).
  reject  → payment rejected with a mandatory reason.

Functions use the caller's session and only flush; get_db() owns the commit,
so every review is all-or-nothing.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.config import settings
from api.database import utcnow
from api.models.clinic import Clinic
from api.models.manual_payment import ManualPayment
from api.models.profile import Profile
from api.models.subscription import Subscription
from api.schemas.common import page_offset
from api.services import plans
from api.services.errors import (
    AuthorizationGap,
    NotFoundError,
    PaymentStateError,
    PersistenceError,
    UploadError,
    ValidationError,
)
from api.services.storage import StorageClient
from api.services.subscription_service import tenant_column, tenant_id_for_profile

logger = structlog.get_logger()

ALLOWED_PROOF_TYPES = {"image/jpeg", "image/png", "image/webp"}
DEFAULT_PROOF_EXT = "png"


@dataclass
class ProofImage:
    content: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass
class PaymentSubmission:
    tenant_kind: str
    plan: str
    payment_method: str
    sender_name: str
    sender_phone: str
    price: Union[str, int]
    proof: Optional[ProofImage] = None
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class SubmissionResult:
    payment: ManualPayment
    subscription: Optional[Subscription] = None


@dataclass
class ReviewResult:
    payment: ManualPayment
    subscription: Optional[Subscription] = None

    @property
    def subscription_activated(self) -> bool:
        return self.subscription is not None


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def _validate_submission(submission: PaymentSubmission) -> int:
    """Check every payer-supplied field; return the parsed amount."""
    missing = []
    if not (submission.sender_name or "").strip():
        missing.append("sender_name")
    if not (submission.sender_phone or "").strip():
        missing.append("sender_phone")
    if submission.proof is None or not submission.proof.content:
        missing.append("proof")
    if missing:
        raise ValidationError(
            "Missing required payment fields", details={"missing": missing}
        )

    if submission.tenant_kind not in plans.TENANT_KINDS:
        raise ValidationError(f"Unknown tenant kind: {submission.tenant_kind}")
    if submission.plan not in plans.PLAN_TIERS:
        raise ValidationError(f"Unknown plan tier: {submission.plan}")
    if submission.payment_method not in plans.PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {submission.payment_method}")

    proof = submission.proof
    if proof.content_type and proof.content_type not in ALLOWED_PROOF_TYPES:
        raise ValidationError(
            f"Unsupported proof type: {proof.content_type}",
            details={"allowed": sorted(ALLOWED_PROOF_TYPES)},
        )
    if len(proof.content) > settings.PAYMENT_PROOF_MAX_BYTES:
        raise ValidationError(
            f"Proof image too large. Max size: {settings.PAYMENT_PROOF_MAX_BYTES // (1024 * 1024)} MB"
        )

    if isinstance(submission.price, int):
        amount = submission.price
    else:
        try:
            amount = plans.parse_display_price(submission.price)
        except ValueError as e:
            raise ValidationError(str(e)) from e
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    return amount


def build_proof_key(payer_id: uuid.UUID, filename: Optional[str]) -> str:
    """{payerId}/{nanosecond timestamp}.{ext}"""
    ext = (
        filename.rsplit(".", 1)[-1].lower()
        if filename and "." in filename
        else DEFAULT_PROOF_EXT
    )
    return f"{payer_id}/{time.time_ns()}.{ext}"


async def submit_manual_payment(
    session: AsyncSession,
    storage: StorageClient,
    payer: Profile,
    submission: PaymentSubmission,
) -> SubmissionResult:
    """
    Record a proof-of-payment submission.

    Validation happens before any write. A failed upload aborts before the
    payment row exists; a failed insert leaves the uploaded blob in place.
    Resubmission creates another pending row.
    """
    amount = _validate_submission(submission)
    proof = submission.proof

    key = build_proof_key(payer.user_id, proof.filename)
    try:
        await asyncio.to_thread(
            storage.upload,
            proof.content,
            key,
            proof.content_type or f"image/{DEFAULT_PROOF_EXT}",
        )
    except Exception as e:
        logger.error("payment_proof_upload_failed", user_id=str(payer.user_id), error=str(e))
        raise UploadError("Failed to upload proof of payment") from e

    tenant_id = tenant_id_for_profile(payer, submission.tenant_kind)
    is_clinic = submission.tenant_kind == plans.TENANT_CLINIC

    payment = ManualPayment(
        user_id=payer.user_id,
        clinic_id=tenant_id if is_clinic else None,
        supplier_id=None if is_clinic else tenant_id,
        tenant_kind=submission.tenant_kind,
        plan=submission.plan,
        payment_method=submission.payment_method,
        amount_iqd=amount,
        screenshot_url=key,
        sender_name=submission.sender_name.strip(),
        sender_phone=submission.sender_phone.strip(),
        transaction_reference=submission.transaction_reference or None,
        notes=submission.notes or None,
        status="pending",
    )

    subscription = None
    try:
        session.add(payment)
        if tenant_id is not None:
            subscription = Subscription(
                clinic_id=tenant_id if is_clinic else None,
                supplier_id=None if is_clinic else tenant_id,
                user_id=payer.user_id,
                tenant_kind=submission.tenant_kind,
                plan=submission.plan,
                status="pending",
                amount_iqd=amount,
                amount_usd=plans.to_reference_currency(amount),
                payment_method=submission.payment_method,
            )
            session.add(subscription)
            await session.flush()
            payment.subscription_id = subscription.id
        await session.flush()
    except SQLAlchemyError as e:
        logger.error(
            "manual_payment_insert_failed",
            user_id=str(payer.user_id),
            proof_key=key,
            error=str(e),
        )
        raise PersistenceError("Could not record payment") from e

    logger.info(
        "manual_payment_submitted",
        payment_id=str(payment.id),
        user_id=str(payer.user_id),
        tenant_kind=submission.tenant_kind,
        tenant_id=str(tenant_id) if tenant_id else None,
        plan=submission.plan,
        amount_iqd=amount,
        companion_subscription=subscription is not None,
    )
    return SubmissionResult(payment=payment, subscription=subscription)


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


def _payment_tenant(payment: ManualPayment) -> tuple[Optional[str], Optional[uuid.UUID]]:
    if payment.clinic_id is not None:
        return plans.TENANT_CLINIC, payment.clinic_id
    if payment.supplier_id is not None:
        return plans.TENANT_SUPPLIER, payment.supplier_id
    return None, None


def can_review(reviewer: Profile, payment: Optional[ManualPayment] = None) -> bool:
    """Super admins review everything; clinic admins only their own clinic."""
    if reviewer.is_super_admin:
        return True
    if reviewer.role != "admin" or reviewer.clinic_id is None:
        return False
    return payment is None or payment.clinic_id == reviewer.clinic_id


def _assert_can_review(reviewer: Profile, payment: Optional[ManualPayment] = None) -> None:
    if not can_review(reviewer, payment):
        logger.warning(
            "payment_review_denied",
            reviewer_id=str(reviewer.id),
            payment_id=str(payment.id) if payment else None,
        )
        raise AuthorizationGap("You are not allowed to review this payment")


async def _load_payment_for_update(
    session: AsyncSession, payment_id: uuid.UUID
) -> ManualPayment:
    try:
        result = await session.execute(
            select(ManualPayment)
            .where(ManualPayment.id == payment_id)
            .with_for_update()
        )
    except SQLAlchemyError as e:
        logger.error("manual_payment_load_failed", payment_id=str(payment_id), error=str(e))
        raise PersistenceError("Could not load payment") from e
    payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def _assert_pending(payment: ManualPayment) -> None:
    if payment.status != "pending":
        raise PaymentStateError(
            f"Payment already {payment.status}",
            details={"status": payment.status},
        )


async def find_pending_subscription(
    session: AsyncSession,
    tenant_kind: str,
    tenant_id: uuid.UUID,
) -> Optional[Subscription]:
    """Newest pending subscription of the tenant."""
    result = await session.execute(
        select(Subscription)
        .where(
            tenant_column(Subscription, tenant_kind) == tenant_id,
            Subscription.status == "pending",
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
        .with_for_update()
    )
    return result.scalars().first()


async def approve_payment(
    session: AsyncSession,
    reviewer: Profile,
    payment_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> ReviewResult:
    """
    Approve a pending payment and activate the tenant's newest pending
    subscription for one billing period.

    A payment without a tenant, or whose tenant has no pending subscription,
    is approved on its own; bootstrap reconciles it later.
    """
    now = now or utcnow()
    payment = await _load_payment_for_update(session, payment_id)
    _assert_can_review(reviewer, payment)
    _assert_pending(payment)

    payment.status = "approved"
    payment.reviewed_by = reviewer.id
    payment.reviewed_at = now
    payment.rejection_reason = None
    try:
        await session.flush()
    except SQLAlchemyError as e:
        logger.error("manual_payment_approve_failed", payment_id=str(payment.id), error=str(e))
        raise PersistenceError("Could not approve payment") from e

    tenant_kind, tenant_id = _payment_tenant(payment)
    if tenant_id is None:
        logger.info(
            "manual_payment_approved",
            payment_id=str(payment.id),
            reviewer_id=str(reviewer.id),
            subscription_activated=False,
            reason="no_tenant",
        )
        return ReviewResult(payment=payment)

    try:
        subscription = await find_pending_subscription(session, tenant_kind, tenant_id)
        if subscription is not None:
            start, end = plans.billing_period(now)
            subscription.status = "approved"
            subscription.current_period_start = start
            subscription.current_period_end = end
            payment.subscription_id = subscription.id

            if tenant_kind == plans.TENANT_CLINIC:
                clinic = await session.get(Clinic, tenant_id)
                if clinic is not None:
                    clinic.subscription_status = "active"
                    clinic.subscription_plan = subscription.plan
        await session.flush()
    except SQLAlchemyError as e:
        # The request transaction rolls back the payment approval as well
        logger.error(
            "subscription_activation_failed",
            payment_id=str(payment.id),
            tenant_id=str(tenant_id),
            error=str(e),
        )
        raise PersistenceError(
            "Could not activate subscription; payment approval was not saved",
            details={"payment_id": str(payment.id)},
        ) from e

    if subscription is not None:
        logger.info(
            "subscription_activated",
            subscription_id=str(subscription.id),
            tenant_kind=tenant_kind,
            tenant_id=str(tenant_id),
            plan=subscription.plan,
            period_end=subscription.current_period_end.isoformat(),
        )
    logger.info(
        "manual_payment_approved",
        payment_id=str(payment.id),
        reviewer_id=str(reviewer.id),
        subscription_activated=subscription is not None,
    )
    return ReviewResult(payment=payment, subscription=subscription)


async def reject_payment(
    session: AsyncSession,
    reviewer: Profile,
    payment_id: uuid.UUID,
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> ReviewResult:
    """Reject a pending payment. A blank reason is refused before any read or write."""
    if not (reason or "").strip():
        raise ValidationError("A rejection reason is required")

    now = now or utcnow()
    payment = await _load_payment_for_update(session, payment_id)
    _assert_can_review(reviewer, payment)
    _assert_pending(payment)

    payment.status = "rejected"
    payment.reviewed_by = reviewer.id
    payment.reviewed_at = now
    payment.rejection_reason = reason.strip()
    try:
        await session.flush()
    except SQLAlchemyError as e:
        logger.error("manual_payment_reject_failed", payment_id=str(payment.id), error=str(e))
        raise PersistenceError("Could not reject payment") from e

    logger.info(
        "manual_payment_rejected",
        payment_id=str(payment.id),
        reviewer_id=str(reviewer.id),
    )
    return ReviewResult(payment=payment)


async def review_payment(
    session: AsyncSession,
    reviewer: Profile,
    payment_id: uuid.UUID,
    decision: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReviewResult:
    if decision == "approve":
        return await approve_payment(session, reviewer, payment_id, now=now)
    if decision == "reject":
        return await reject_payment(session, reviewer, payment_id, reason, now=now)
    raise ValidationError(f"Unknown decision: {decision}")


# ---------------------------------------------------------------------------
# Listing / proof access
# ---------------------------------------------------------------------------


async def list_payments_for_review(
    session: AsyncSession,
    reviewer: Profile,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[ManualPayment], int]:
    """Payments in the reviewer's scope, newest first. Returns (rows, total)."""
    _assert_can_review(reviewer)

    q = select(ManualPayment)
    count_q = select(func.count(ManualPayment.id))
    if not reviewer.is_super_admin:
        q = q.where(ManualPayment.clinic_id == reviewer.clinic_id)
        count_q = count_q.where(ManualPayment.clinic_id == reviewer.clinic_id)
    if status:
        q = q.where(ManualPayment.status == status)
        count_q = count_q.where(ManualPayment.status == status)

    total = (await session.execute(count_q)).scalar() or 0
    result = await session.execute(
        q.order_by(ManualPayment.created_at.desc()).offset(page_offset(page, limit)).limit(limit)
    )
    return list(result.scalars().all()), total


async def get_proof_url(
    session: AsyncSession,
    storage: StorageClient,
    viewer: Profile,
    payment_id: uuid.UUID,
) -> str:
    """Time-limited download URL for a payment's proof image."""
    payment = await session.get(ManualPayment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    if payment.user_id != viewer.user_id:
        _assert_can_review(viewer, payment)

    try:
        return await asyncio.to_thread(
            storage.get_presigned_url,
            payment.screenshot_url,
            settings.PROOF_URL_EXPIRES_IN,
        )
    except Exception as e:
        logger.error("proof_url_failed", key=payment.screenshot_url, error=str(e))
        raise NotFoundError("Proof image not available") from e

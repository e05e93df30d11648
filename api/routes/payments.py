# api/routes/payments.py
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.config import settings
from api.database import get_db
from api.middleware.auth import get_current_profile
from api.middleware.authorization import require_roles
from api.models.manual_payment import ManualPayment
from api.models.profile import Profile
from api.schemas.common import PaginatedResponse, build_pagination
from api.schemas.payment import (
    ManualPaymentResponse,
    PaymentRejectRequest,
    PaymentReviewResponse,
    PaymentSubmissionResponse,
    ProofUrlResponse,
)
from api.services import payment_service
from api.services.payment_service import PaymentSubmission, ProofImage, ReviewResult
from api.services.storage import StorageClient, get_proof_storage

router = APIRouter()


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _to_response(p: ManualPayment) -> ManualPaymentResponse:
    return ManualPaymentResponse(
        id=str(p.id),
        user_id=str(p.user_id),
        tenant_kind=p.tenant_kind,
        clinic_id=str(p.clinic_id) if p.clinic_id else None,
        supplier_id=str(p.supplier_id) if p.supplier_id else None,
        subscription_id=str(p.subscription_id) if p.subscription_id else None,
        plan=p.plan,
        payment_method=p.payment_method,
        amount_iqd=p.amount_iqd,
        screenshot_url=p.screenshot_url,
        sender_name=p.sender_name,
        sender_phone=p.sender_phone,
        transaction_reference=p.transaction_reference,
        notes=p.notes,
        status=p.status,
        reviewed_by=str(p.reviewed_by) if p.reviewed_by else None,
        reviewed_at=_iso(p.reviewed_at),
        rejection_reason=p.rejection_reason,
        created_at=_iso(p.created_at) or "",
    )


def _review_response(result: ReviewResult) -> PaymentReviewResponse:
    sub = result.subscription
    return PaymentReviewResponse(
        payment=_to_response(result.payment),
        subscription_activated=result.subscription_activated,
        subscription_id=str(sub.id) if sub else None,
        period_end=_iso(sub.current_period_end) if sub else None,
    )


@router.post("", response_model=PaymentSubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_payment(
    tenant_kind: str = Form(...),
    plan: str = Form(...),
    payment_method: str = Form(...),
    price: str = Form(...),
    sender_name: str = Form(""),
    sender_phone: str = Form(""),
    transaction_reference: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    proof: Optional[UploadFile] = File(None),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
    storage: StorageClient = Depends(get_proof_storage),
):
    """Submit proof of a manual payment for a plan. The payment starts pending."""
    image = None
    if proof is not None:
        image = ProofImage(
            content=await proof.read(),
            filename=proof.filename,
            content_type=proof.content_type,
        )

    result = await payment_service.submit_manual_payment(
        db,
        storage,
        profile,
        PaymentSubmission(
            tenant_kind=tenant_kind,
            plan=plan,
            payment_method=payment_method,
            sender_name=sender_name,
            sender_phone=sender_phone,
            price=price,
            proof=image,
            transaction_reference=transaction_reference,
            notes=notes,
        ),
    )
    return PaymentSubmissionResponse(
        payment=_to_response(result.payment),
        subscription_id=str(result.subscription.id) if result.subscription else None,
    )


@router.get("", response_model=PaginatedResponse[ManualPaymentResponse])
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    payment_status: str = Query(None, alias="status"),
    profile: Profile = Depends(get_current_profile),
    _auth: None = Depends(require_roles("admin", "super_admin")),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await payment_service.list_payments_for_review(
        db, profile, status=payment_status, page=page, limit=limit
    )
    return PaginatedResponse(
        data=[_to_response(p) for p in rows],
        pagination=build_pagination(page, limit, total),
    )


@router.get("/{payment_id}/proof", response_model=ProofUrlResponse)
async def get_payment_proof(
    payment_id: uuid.UUID,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
    storage: StorageClient = Depends(get_proof_storage),
):
    url = await payment_service.get_proof_url(db, storage, profile, payment_id)
    return ProofUrlResponse(
        payment_id=str(payment_id),
        url=url,
        expires_in=settings.PROOF_URL_EXPIRES_IN,
    )


@router.post("/{payment_id}/approve", response_model=PaymentReviewResponse)
async def approve_payment(
    payment_id: uuid.UUID,
    profile: Profile = Depends(get_current_profile),
    _auth: None = Depends(require_roles("admin", "super_admin")),
    db: AsyncSession = Depends(get_db),
):
    result = await payment_service.approve_payment(db, profile, payment_id)
    return _review_response(result)


@router.post("/{payment_id}/reject", response_model=PaymentReviewResponse)
async def reject_payment(
    payment_id: uuid.UUID,
    body: PaymentRejectRequest,
    profile: Profile = Depends(get_current_profile),
    _auth: None = Depends(require_roles("admin", "super_admin")),
    db: AsyncSession = Depends(get_db),
):
    result = await payment_service.reject_payment(db, profile, payment_id, body.reason)
    return _review_response(result)

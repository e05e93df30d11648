from typing import Optional
from pydantic import BaseModel


class ManualPaymentResponse(BaseModel):
    id: str
    user_id: str
    tenant_kind: str
    clinic_id: Optional[str] = None
    supplier_id: Optional[str] = None
    subscription_id: Optional[str] = None
    plan: Optional[str] = None
    payment_method: str
    amount_iqd: int
    screenshot_url: str
    sender_name: str
    sender_phone: str
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: str

    model_config = {"from_attributes": True}


class PaymentSubmissionResponse(BaseModel):
    payment: ManualPaymentResponse
    subscription_id: Optional[str] = None


class PaymentRejectRequest(BaseModel):
    reason: Optional[str] = None


class PaymentReviewResponse(BaseModel):
    payment: ManualPaymentResponse
    subscription_activated: bool
    subscription_id: Optional[str] = None
    period_end: Optional[str] = None


class ProofUrlResponse(BaseModel):
    payment_id: str
    url: str
    expires_in: int

from typing import Optional
from pydantic import BaseModel, Field


class ClinicCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None


class SupplierCreate(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=255)
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class EntitlementResponse(BaseModel):
    entitled: bool
    tenant_kind: str
    source: Optional[str] = None
    plan: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_id: Optional[str] = None


class ReconciliationResponse(BaseModel):
    subscriptions: int = 0
    payments: int = 0


class BootstrapResponse(BaseModel):
    entitled: bool
    tenant_kind: str
    tenant_id: Optional[str] = None
    tenant_name: Optional[str] = None
    plan: Optional[str] = None
    reconciled: bool = False
    reconciliation: Optional[ReconciliationResponse] = None

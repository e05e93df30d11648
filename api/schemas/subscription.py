from typing import List, Optional
from pydantic import BaseModel


class SubscriptionStatusResponse(BaseModel):
    tenant_kind: str
    tenant_id: Optional[str] = None
    subscribed: bool
    plan: Optional[str] = None
    subscription_end: Optional[str] = None
    payment_method: Optional[str] = None


class UpgradeQuoteResponse(BaseModel):
    tenant_kind: str
    current_plan: Optional[str] = None
    target_plan: str
    is_current: bool
    is_upgrade: bool
    amount_iqd: int
    amount_usd: float


class FeatureRuleResponse(BaseModel):
    feature_name: str
    is_enabled: bool
    feature_limit: Optional[int] = None


class PlanFeaturesResponse(BaseModel):
    plan: str
    features: List[FeatureRuleResponse] = []

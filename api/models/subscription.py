import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    DateTime,
    ForeignKey,
    Uuid,
    CheckConstraint,
    Index,
    desc,
)
from sqlalchemy.orm import Mapped, mapped_column

from api.database import Base
from api.database import utcnow


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    clinic_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("clinics.id")
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id")
    )
    # Payer identity; scopes orphan reconciliation
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    # Tenant kind the period was bought for; fixes the price table
    tenant_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    amount_iqd: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "NOT (clinic_id IS NOT NULL AND supplier_id IS NOT NULL)",
            name="chk_subscription_single_tenant",
        ),
        CheckConstraint(
            "plan IN ('basic','premium','enterprise')",
            name="chk_subscription_plan",
        ),
        CheckConstraint(
            "tenant_kind IN ('clinic','supplier')",
            name="chk_subscription_tenant_kind",
        ),
        CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name="chk_subscription_status",
        ),
        Index("idx_subscriptions_clinic", "clinic_id", desc("created_at")),
        Index("idx_subscriptions_supplier", "supplier_id", desc("created_at")),
        Index("idx_subscriptions_user", "user_id"),
    )

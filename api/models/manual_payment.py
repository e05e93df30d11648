import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Text,
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


class ManualPayment(Base):
    __tablename__ = "manual_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    clinic_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("clinics.id")
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id")
    )
    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("subscriptions.id")
    )
    # Recorded at submission so tenantless payments stay bound to one price table
    tenant_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    plan: Mapped[Optional[str]] = mapped_column(String(20))
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_iqd: Mapped[int] = mapped_column(Integer, nullable=False)
    screenshot_url: Mapped[str] = mapped_column(Text, nullable=False)
    sender_name: Mapped[str] = mapped_column(String(200), nullable=False)
    sender_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_reference: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount_iqd >= 0", name="chk_manual_payment_amount"),
        CheckConstraint(
            "payment_method IN ('qi_card','zain_cash','bank_transfer','other')",
            name="chk_manual_payment_method",
        ),
        CheckConstraint(
            "tenant_kind IN ('clinic','supplier')",
            name="chk_manual_payment_tenant_kind",
        ),
        CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name="chk_manual_payment_status",
        ),
        Index("idx_manual_payments_user", "user_id"),
        Index("idx_manual_payments_status", "status", desc("created_at")),
        Index("idx_manual_payments_clinic", "clinic_id"),
    )

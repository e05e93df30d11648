import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Text, Uuid, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from api.database import Base, utcnow


class Clinic(Base):
    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    website: Mapped[Optional[str]] = mapped_column(String(255))
    # Denormalized cache of the current entitlement
    subscription_status: Mapped[str] = mapped_column(String(20), default="inactive")
    subscription_plan: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_status IN ('inactive','active')",
            name="chk_clinic_subscription_status",
        ),
        Index("idx_clinics_name", "name"),
    )

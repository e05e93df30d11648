import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Uuid, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from api.database import Base
from api.database import utcnow


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), unique=True, nullable=False
    )
    email: Mapped[Optional[str]] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    clinic_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("clinics.id")
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id")
    )
    role: Mapped[str] = mapped_column(String(20), default="dentist")
    system_role: Mapped[str] = mapped_column(String(20), default="user")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    @property
    def is_super_admin(self) -> bool:
        return self.system_role == "super_admin"

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin','dentist','assistant','receptionist','patient','supplier')",
            name="chk_profile_role",
        ),
        CheckConstraint(
            "system_role IN ('super_admin','support','user')",
            name="chk_profile_system_role",
        ),
        Index("idx_profiles_clinic", "clinic_id"),
    )

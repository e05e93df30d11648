import uuid
from typing import Optional

from sqlalchemy import String, Boolean, Integer, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from api.database import Base


class SubscriptionFeature(Base):
    __tablename__ = "subscription_features"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    feature_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    # NULL means unlimited
    feature_limit: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint("plan", "feature_name", name="uq_subscription_feature"),
    )

from __future__ import annotations
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base, utcnow
from app.models.enums import ReferralStatus


class Referral(Base):
    """Immutable record that a referrer's code was used by a referred user."""
    __tablename__ = "referrals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True, nullable=False)
    referrer_user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    referred_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    referred_external_user_id: Mapped[str] = mapped_column(String, nullable=False)
    ref_code_used: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ReferralStatus.COMPLETED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # The storage layer, not application code, rejects a second referral for the same referred user
    __table_args__ = (
        UniqueConstraint("tenant_id", "referred_external_user_id", name="uq_referrals_tenant_referred_external"),
    )

    def __repr__(self):
        return f"<Referral(id={self.id}, referred='{self.referred_external_user_id}')>"

from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base, JSONType, utcnow
from app.models.enums import TenantStatus


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TenantStatus.ACTIVE.value)
    webhook_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # Overrides the process-wide WEBHOOK_SIGNING_SECRET when set
    webhook_secret: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # Reward rules, referral cap and share link settings
    referral_settings: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}')>"

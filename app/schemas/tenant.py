from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field


class WebhookConfigUpdate(BaseModel):
    # Required but nullable: null clears the destination
    webhookUrl: Optional[str] = Field(..., max_length=2048)


class TenantWebhookOut(BaseModel):
    id: uuid.UUID
    slug: str
    webhookUrl: Optional[str] = None
    updatedAt: datetime

    @classmethod
    def from_model(cls, tenant) -> "TenantWebhookOut":
        return cls(id=tenant.id, slug=tenant.slug, webhookUrl=tenant.webhook_url, updatedAt=tenant.updated_at)


class TenantWebhookResponse(BaseModel):
    tenant: TenantWebhookOut


class EventOut(BaseModel):
    id: uuid.UUID
    type: str
    payload: Dict[str, Any]
    createdAt: datetime

    @classmethod
    def from_model(cls, event) -> "EventOut":
        return cls(id=event.id, type=event.type, payload=event.payload or {}, createdAt=event.created_at)


class EventListResponse(BaseModel):
    events: List[EventOut]
    total: int
    limit: int
    offset: int

from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel


class ReplayRequest(BaseModel):
    eventId: uuid.UUID


class ReplayResponse(BaseModel):
    deliveryId: uuid.UUID


class WebhookTestResponse(BaseModel):
    eventId: uuid.UUID
    deliveryId: uuid.UUID


class WebhookDeliveryOut(BaseModel):
    id: uuid.UUID
    eventId: uuid.UUID
    url: str
    status: str
    attemptCount: int
    lastAttemptAt: Optional[datetime] = None
    nextAttemptAt: Optional[datetime] = None
    lastError: Optional[str] = None
    lastStatusCode: Optional[int] = None
    createdAt: datetime

    @classmethod
    def from_model(cls, delivery) -> "WebhookDeliveryOut":
        return cls(
            id=delivery.id,
            eventId=delivery.event_id,
            url=delivery.url,
            status=delivery.status,
            attemptCount=delivery.attempt_count,
            lastAttemptAt=delivery.last_attempt_at,
            nextAttemptAt=delivery.next_attempt_at,
            lastError=delivery.last_error,
            lastStatusCode=delivery.last_status_code,
            createdAt=delivery.created_at,
        )


class DevReceiverResponse(BaseModel):
    received: bool
    signatureValid: bool
    eventId: Optional[str] = None
    eventType: Optional[str] = None


class HealthResponse(BaseModel):
    status: str

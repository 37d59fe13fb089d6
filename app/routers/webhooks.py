from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app import schemas, services
from app.db.session import get_db
from app.dependencies import ApiKeyContext, require_scope
from app.models.enums import ApiScope, WebhookDeliveryStatus

router = APIRouter()


@router.post("/replay", response_model=schemas.ReplayResponse, status_code=status.HTTP_201_CREATED)
async def replay_webhook(
    replay_in: schemas.ReplayRequest,
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.WEBHOOKS_REPLAY, ApiScope.ADMIN)),
):
    """Schedule a new delivery for an existing event."""
    delivery = await services.webhook_service.replay_event(db, tenant_id=context.tenant_id, event_id=replay_in.eventId)
    return schemas.ReplayResponse(deliveryId=delivery.id)


@router.post("/test", response_model=schemas.WebhookTestResponse, status_code=status.HTTP_201_CREATED)
async def send_test_webhook(
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.ADMIN)),
):
    """Queue a ``webhook.test`` event to the tenant's configured URL."""
    event, delivery = await services.webhook_service.send_test_event(db, tenant_id=context.tenant_id)
    return schemas.WebhookTestResponse(eventId=event.id, deliveryId=delivery.id)


@router.get("/deliveries", response_model=List[schemas.WebhookDeliveryOut])
async def list_webhook_deliveries(
    delivery_status: Optional[WebhookDeliveryStatus] = Query(None, alias="status"),
    event_id: Optional[uuid.UUID] = Query(None, alias="eventId"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.READ)),
):
    deliveries = await services.webhook_service.list_deliveries(
        db, tenant_id=context.tenant_id, status=delivery_status, event_id=event_id, limit=limit
    )
    return [schemas.WebhookDeliveryOut.from_model(d) for d in deliveries]

import json
import logging
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.exceptions import EventNotFoundError, TenantNotFoundError, WebhookNotConfiguredError
from app.db.base_class import utcnow
from app.models.enums import EventType, WebhookDeliveryStatus
from app.models.event import DomainEvent
from app.models.webhook_delivery import WebhookDelivery

logger = logging.getLogger(__name__)


def build_event_body(event: DomainEvent) -> str:
    """Serialized once per attempt; the signature is computed over exactly this string."""
    body: Dict[str, Any] = {
        "id": str(event.id),
        "type": event.type,
        "tenantId": str(event.tenant_id),
        "timestamp": event.created_at.isoformat(),
        "data": event.payload or {},
    }
    return json.dumps(body, separators=(",", ":"), default=str)


async def enqueue_for_event(
    db: AsyncSession, *, tenant_id: uuid.UUID, event_id: uuid.UUID
) -> Optional[WebhookDelivery]:
    """Creates a pending delivery if the tenant has a webhook URL. Flushes only."""
    webhook_url = await crud.crud_tenant.get_webhook_url(db, tenant_id=tenant_id)
    if not webhook_url:
        logger.debug(f"Tenant {tenant_id} has no webhook URL; event {event_id} not enqueued")
        return None
    return await crud.webhook_delivery.create_pending(db, tenant_id=tenant_id, event_id=event_id, url=webhook_url)


async def enqueue_after_commit(
    db: AsyncSession, *, tenant_id: uuid.UUID, event_id: uuid.UUID
) -> Optional[WebhookDelivery]:
    """
    Enqueues delivery for an event whose transaction already committed.
    Any failure here is logged and swallowed; the committed state stands.
    """
    try:
        delivery = await enqueue_for_event(db, tenant_id=tenant_id, event_id=event_id)
        await db.commit()
    except Exception:
        logger.exception(f"Failed to enqueue webhook for event {event_id} (tenant {tenant_id})")
        await db.rollback()
        return None
    if delivery is not None:
        logger.info(f"Enqueued webhook delivery {delivery.id} for event {event_id}")
    return delivery


async def replay_event(db: AsyncSession, *, tenant_id: uuid.UUID, event_id: uuid.UUID) -> WebhookDelivery:
    """
    Schedules a fresh delivery for an existing event. Prior delivery rows,
    including exhausted ones, are left as they are.
    """
    event = await crud.event.get(db, tenant_id=tenant_id, id=event_id)
    if not event:
        raise EventNotFoundError()

    webhook_url = await crud.crud_tenant.get_webhook_url(db, tenant_id=tenant_id)
    if not webhook_url:
        raise WebhookNotConfiguredError()

    delivery = await crud.webhook_delivery.create_pending(db, tenant_id=tenant_id, event_id=event.id, url=webhook_url)
    await crud.event.append(
        db,
        tenant_id=tenant_id,
        type=EventType.WEBHOOK_REPLAY_REQUESTED,
        payload={"eventId": str(event.id), "eventType": event.type, "deliveryId": str(delivery.id)},
    )
    await db.commit()
    logger.info(f"Replay of event {event.id} scheduled as delivery {delivery.id}")
    return delivery


async def send_test_event(db: AsyncSession, *, tenant_id: uuid.UUID) -> Tuple[DomainEvent, WebhookDelivery]:
    tenant = await crud.crud_tenant.get_tenant(db, tenant_id=tenant_id)
    if not tenant:
        raise TenantNotFoundError()
    if not tenant.webhook_url:
        raise WebhookNotConfiguredError()

    event = await crud.event.append(
        db,
        tenant_id=tenant_id,
        type=EventType.WEBHOOK_TEST,
        payload={
            "tenantSlug": tenant.slug,
            "timestamp": utcnow().isoformat(),
            "message": "This is a test webhook",
        },
    )
    delivery = await crud.webhook_delivery.create_pending(db, tenant_id=tenant_id, event_id=event.id, url=tenant.webhook_url)
    await db.commit()
    logger.info(f"Test webhook event {event.id} queued as delivery {delivery.id} for tenant {tenant.slug}")
    return event, delivery


async def list_deliveries(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    status: Optional[WebhookDeliveryStatus] = None,
    event_id: Optional[uuid.UUID] = None,
    limit: int = 50,
) -> List[WebhookDelivery]:
    return await crud.webhook_delivery.list_for_tenant(
        db, tenant_id=tenant_id, status=status, event_id=event_id, limit=limit
    )

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.base import CRUDTenantScoped
from app.db.base_class import utcnow
from app.models.enums import WebhookDeliveryStatus
from app.models.webhook_delivery import WebhookDelivery


class CRUDWebhookDelivery(CRUDTenantScoped[WebhookDelivery]):
    async def create_pending(
        self, db: AsyncSession, *, tenant_id: uuid.UUID, event_id: uuid.UUID, url: str
    ) -> WebhookDelivery:
        """New attempt-series, due immediately. Replays always come through here too."""
        delivery = WebhookDelivery(
            tenant_id=tenant_id,
            event_id=event_id,
            url=url,
            status=WebhookDeliveryStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=utcnow(),
        )
        db.add(delivery)
        await db.flush()
        return delivery

    async def claim_due(
        self, db: AsyncSession, *, now: datetime, batch_size: int, leased_until: datetime
    ) -> List[WebhookDelivery]:
        """
        Locks up to ``batch_size`` due rows, skipping rows another dispatcher
        holds, and sets their next_attempt_at to ``leased_until`` so they stay
        invisible to other pollers after this transaction commits. That value
        doubles as the lease token checked by :meth:`get_leased` and
        :meth:`finish_attempt`.
        """
        statement = (
            select(WebhookDelivery)
            .where(
                WebhookDelivery.status == WebhookDeliveryStatus.PENDING.value,
                WebhookDelivery.next_attempt_at <= now,
            )
            .order_by(WebhookDelivery.next_attempt_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        result = await db.execute(statement)
        deliveries = list(result.scalars().all())
        for delivery in deliveries:
            delivery.next_attempt_at = leased_until
        await db.flush()
        return deliveries

    async def get_by_id(self, db: AsyncSession, *, delivery_id: uuid.UUID) -> Optional[WebhookDelivery]:
        result = await db.execute(select(WebhookDelivery).where(WebhookDelivery.id == delivery_id))
        return result.scalar_one_or_none()

    async def get_leased(
        self, db: AsyncSession, *, delivery_id: uuid.UUID, leased_until: datetime
    ) -> Optional[WebhookDelivery]:
        """The row, only while it is still pending under this lease."""
        statement = select(WebhookDelivery).where(
            WebhookDelivery.id == delivery_id,
            WebhookDelivery.status == WebhookDeliveryStatus.PENDING.value,
            WebhookDelivery.next_attempt_at == leased_until,
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def finish_attempt(
        self,
        db: AsyncSession,
        *,
        delivery_id: uuid.UUID,
        leased_until: datetime,
        claimed_attempt_count: int,
        values: Dict[str, Any],
    ) -> bool:
        """
        Writes the outcome of one attempt if the row is still held under the
        lease it was claimed with. False means another dispatcher took it over
        and nothing was written.
        """
        statement = (
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery_id,
                WebhookDelivery.status == WebhookDeliveryStatus.PENDING.value,
                WebhookDelivery.attempt_count == claimed_attempt_count,
                WebhookDelivery.next_attempt_at == leased_until,
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(statement)
        return result.rowcount == 1

    async def list_for_tenant(
        self,
        db: AsyncSession,
        *,
        tenant_id: uuid.UUID,
        status: Optional[WebhookDeliveryStatus] = None,
        event_id: Optional[uuid.UUID] = None,
        limit: int = 50,
    ) -> List[WebhookDelivery]:
        statement = select(WebhookDelivery).where(WebhookDelivery.tenant_id == tenant_id)
        if status is not None:
            statement = statement.where(WebhookDelivery.status == status.value)
        if event_id is not None:
            statement = statement.where(WebhookDelivery.event_id == event_id)
        statement = statement.order_by(WebhookDelivery.created_at.desc()).limit(limit)
        result = await db.execute(statement)
        return list(result.scalars().all())


webhook_delivery = CRUDWebhookDelivery(WebhookDelivery)

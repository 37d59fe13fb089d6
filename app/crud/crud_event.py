from typing import Any, Dict, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.base import CRUDTenantScoped
from app.models.event import DomainEvent
from app.models.enums import EventType


class CRUDEvent(CRUDTenantScoped[DomainEvent]):
    async def append(
        self, db: AsyncSession, *, tenant_id: uuid.UUID, type: EventType, payload: Optional[Dict[str, Any]] = None
    ) -> DomainEvent:
        """Appends an event to the log. Flushes, the caller owns the commit."""
        event = DomainEvent(tenant_id=tenant_id, type=type.value, payload=payload or {})
        db.add(event)
        await db.flush()
        return event


event = CRUDEvent(DomainEvent)

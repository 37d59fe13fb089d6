from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app import schemas, services
from app.db.session import get_db
from app.dependencies import ApiKeyContext, require_scope
from app.models.enums import ApiScope

router = APIRouter()


@router.get("/events", response_model=schemas.EventListResponse)
async def list_events(
    event_type: Optional[str] = Query(None, alias="type", max_length=64),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.ADMIN)),
):
    """Browse the event log, e.g. to find the id to pass to ``POST /webhooks/replay``."""
    events, total = await services.tenant_service.list_events(
        db, tenant_id=context.tenant_id, event_type=event_type, limit=limit, offset=offset
    )
    return schemas.EventListResponse(
        events=[schemas.EventOut.from_model(e) for e in events],
        total=total,
        limit=limit,
        offset=offset,
    )

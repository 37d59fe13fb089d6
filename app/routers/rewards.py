import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app import schemas, services
from app.db.session import get_db
from app.dependencies import ApiKeyContext, require_scope
from app.models.enums import ApiScope

router = APIRouter()


@router.post("/{entry_id}/reverse", response_model=schemas.LedgerEntry, status_code=status.HTTP_201_CREATED)
async def reverse_reward(
    entry_id: uuid.UUID,
    reverse_in: schemas.ReverseRewardRequest,
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.ADMIN)),
):
    """Append an offsetting entry for a reward. Repeating the call returns the same reversal."""
    reversal = await services.ledger_service.reverse_entry(
        db,
        tenant_id=context.tenant_id,
        entry_id=entry_id,
        reason=reverse_in.reason,
        performed_by=reverse_in.performedBy or context.label,
    )
    return schemas.LedgerEntry.from_model(reversal)

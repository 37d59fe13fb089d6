from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app import schemas, services
from app.db.session import get_db
from app.dependencies import ApiKeyContext, get_rate_limiter, require_scope
from app.models.enums import ApiScope
from app.services.rate_limiter import RateLimiter

router = APIRouter()


@router.post("/upsert", response_model=schemas.UserUpsertResponse, status_code=status.HTTP_201_CREATED)
async def upsert_user(
    user_in: schemas.UserUpsertRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.WRITE)),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Create or update an end user and return their referral link."""
    result = await services.user_service.upsert_user(
        db,
        tenant_id=context.tenant_id,
        external_user_id=user_in.externalUserId,
        email=user_in.email,
        subscription_tier=user_in.subscriptionTier,
        rate_limiter=rate_limiter,
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return schemas.UserUpsertResponse(
        user=schemas.UserOut.from_model(result.user),
        referralLink=result.referral_link,
        created=result.created,
    )


@router.get("/{external_user_id}/rewards", response_model=schemas.UserRewardsResponse)
async def get_user_rewards(
    external_user_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.READ)),
):
    """Ledger balance (summed on read) and the most recent entries for a user."""
    return await services.ledger_service.get_user_rewards(
        db, tenant_id=context.tenant_id, external_user_id=external_user_id, limit=limit, offset=offset
    )

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app import schemas, services
from app.db.session import get_db
from app.dependencies import ApiKeyContext, get_rate_limiter, require_scope
from app.models.enums import ApiScope
from app.services.rate_limiter import RateLimiter
from app.utils.request import get_client_ip

router = APIRouter()


@router.post(
    "/claim",
    response_model=schemas.ClaimResponse,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"model": schemas.ClaimResponse, "description": "Referral already processed"}},
)
async def claim_referral(
    claim_in: schemas.ClaimRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.WRITE)),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Claim a referral code for a referred user.

    Returns 201 with the granted rewards the first time, and 200 with
    ``alreadyProcessed=true`` and null rewards for every repeat.
    """
    result = await services.claim_service.claim_referral(
        db,
        tenant_id=context.tenant_id,
        referral_code=claim_in.referralCode,
        referred_user_id=claim_in.referredUserId,
        client_ip=get_client_ip(request),
        rate_limiter=rate_limiter,
    )
    if result.already_processed:
        response.status_code = status.HTTP_200_OK
    return result.to_response()

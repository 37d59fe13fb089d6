from fastapi import APIRouter

from app import schemas
from app.core.config import settings

from . import referrals
from . import users
from . import rewards
from . import webhooks
from . import tenant
from . import admin
from . import dev

# Every authenticated route can answer with the error envelope
ERROR_RESPONSES = {
    status_code: {"model": schemas.ErrorResponse}
    for status_code in (400, 401, 403, 404, 409, 429)
}

api_router = APIRouter()

api_router.include_router(referrals.router, prefix="/referrals", tags=["referrals"], responses=ERROR_RESPONSES)
api_router.include_router(users.router, prefix="/users", tags=["users"], responses=ERROR_RESPONSES)
api_router.include_router(rewards.router, prefix="/rewards", tags=["rewards"], responses=ERROR_RESPONSES)
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"], responses=ERROR_RESPONSES)
api_router.include_router(tenant.router, prefix="/tenant", tags=["tenant"], responses=ERROR_RESPONSES)
api_router.include_router(admin.router, prefix="/admin", tags=["admin"], responses=ERROR_RESPONSES)

# Unauthenticated signature checker for local webhook testing
if settings.ENABLE_DEV_ENDPOINTS:
    api_router.include_router(dev.router, prefix="/dev", tags=["dev"])

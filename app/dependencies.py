from dataclasses import dataclass, field
from typing import List, Optional
import uuid

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud, security
from app.core.exceptions import InsufficientScopeError, InvalidApiKeyError, MissingApiKeyError
from app.db.session import AsyncSessionLocal, get_db
from app.models.enums import ApiScope, TenantStatus
from app.services.rate_limiter import DatabaseRateLimiter, RateLimiter


api_key_scheme = HTTPBearer(auto_error=False, description="Tenant API key")

_rate_limiter = DatabaseRateLimiter(AsyncSessionLocal)


@dataclass
class ApiKeyContext:
    tenant_id: uuid.UUID
    api_key_id: uuid.UUID
    label: str
    scopes: List[str] = field(default_factory=list)


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


async def get_api_key_context(
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(api_key_scheme),
) -> ApiKeyContext:
    """Resolves the calling tenant from ``Authorization: Bearer <api key>``."""
    if credentials is None or not credentials.credentials:
        raise MissingApiKeyError()

    api_key = await crud.crud_api_key.get_active_by_hash(db, key_hash=security.hash_api_key(credentials.credentials))
    if api_key is None:
        raise InvalidApiKeyError()

    tenant = await crud.crud_tenant.get_tenant(db, tenant_id=api_key.tenant_id)
    if tenant is None or tenant.status != TenantStatus.ACTIVE.value:
        raise InvalidApiKeyError("The tenant for this API key is not active")

    return ApiKeyContext(
        tenant_id=api_key.tenant_id,
        api_key_id=api_key.id,
        label=api_key.label,
        scopes=list(api_key.scopes or []),
    )


def require_scope(*scopes: ApiScope):
    """Dependency factory; the key must hold at least one of ``scopes``."""
    async def scope_checker(context: ApiKeyContext = Depends(get_api_key_context)) -> ApiKeyContext:
        if not security.has_any_scope(context.scopes, scopes):
            raise InsufficientScopeError(
                f"This endpoint requires one of: {', '.join(s.value for s in scopes)}",
                details={"required": [s.value for s in scopes], "granted": context.scopes},
            )
        return context
    return scope_checker

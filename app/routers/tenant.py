from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app import schemas, services
from app.db.session import get_db
from app.dependencies import ApiKeyContext, require_scope
from app.models.enums import ApiScope

router = APIRouter()


@router.get("/webhook", response_model=schemas.TenantWebhookResponse)
async def get_webhook_config(
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.READ)),
):
    tenant = await services.tenant_service.get_tenant_or_404(db, tenant_id=context.tenant_id)
    return schemas.TenantWebhookResponse(tenant=schemas.TenantWebhookOut.from_model(tenant))


@router.put("/webhook", response_model=schemas.TenantWebhookResponse)
async def update_webhook_config(
    config_in: schemas.WebhookConfigUpdate,
    db: AsyncSession = Depends(get_db),
    context: ApiKeyContext = Depends(require_scope(ApiScope.ADMIN)),
):
    """Set the https destination for this tenant's webhooks, or clear it with ``null``."""
    tenant = await services.tenant_service.update_webhook_url(
        db, tenant_id=context.tenant_id, webhook_url=config_in.webhookUrl
    )
    return schemas.TenantWebhookResponse(tenant=schemas.TenantWebhookOut.from_model(tenant))

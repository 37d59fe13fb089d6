import logging
from typing import List, Optional, Tuple
from urllib.parse import urlparse
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.config import settings
from app.core.exceptions import InvalidWebhookUrlError, TenantNotFoundError
from app.models.event import DomainEvent
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)

LOCAL_HOSTNAMES = ("localhost", "127.0.0.1", "0.0.0.0")


def is_local_hostname(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    hostname = hostname.lower()
    return hostname in LOCAL_HOSTNAMES or hostname.endswith(".localhost")


def validate_webhook_url(url: Optional[str]) -> Optional[str]:
    """
    Returns the URL to store. ``None`` clears the destination. Only https is
    accepted, and local hosts are refused in production unless
    ALLOW_LOCAL_WEBHOOKS is set.
    """
    if url is None:
        return None
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        raise InvalidWebhookUrlError("Invalid URL format")
    if not parsed.scheme or not parsed.netloc or not parsed.hostname:
        raise InvalidWebhookUrlError("Invalid URL format")
    if parsed.scheme.lower() != "https":
        raise InvalidWebhookUrlError("Webhook URL must use HTTPS")
    if (
        settings.ENVIRONMENT.lower() == "production"
        and not settings.ALLOW_LOCAL_WEBHOOKS
        and is_local_hostname(parsed.hostname)
    ):
        raise InvalidWebhookUrlError("Localhost URLs are not allowed in production")
    return url


async def get_tenant_or_404(db: AsyncSession, *, tenant_id: uuid.UUID) -> Tenant:
    tenant = await crud.crud_tenant.get_tenant(db, tenant_id=tenant_id)
    if not tenant:
        raise TenantNotFoundError()
    return tenant


async def update_webhook_url(db: AsyncSession, *, tenant_id: uuid.UUID, webhook_url: Optional[str]) -> Tenant:
    webhook_url = validate_webhook_url(webhook_url)
    tenant = await get_tenant_or_404(db, tenant_id=tenant_id)
    tenant.webhook_url = webhook_url
    await db.commit()
    await db.refresh(tenant)
    if webhook_url:
        logger.info(f"Webhook URL for tenant {tenant.slug} set to {webhook_url}")
    else:
        logger.info(f"Webhook URL for tenant {tenant.slug} cleared")
    return tenant


async def list_events(
    db: AsyncSession, *, tenant_id: uuid.UUID, event_type: Optional[str] = None, limit: int = 50, offset: int = 0
) -> Tuple[List[DomainEvent], int]:
    """One page of the tenant's event log, newest first, plus the total matching count."""
    filters = {"type": event_type} if event_type else None
    events = await crud.event.get_multi(db, tenant_id=tenant_id, skip=offset, limit=limit, filters=filters)
    total = await crud.event.count(db, tenant_id=tenant_id, filters=filters)
    return events, total

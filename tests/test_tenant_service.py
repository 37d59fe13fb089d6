import uuid

import pytest

from app import crud
from app.core.config import settings
from app.core.exceptions import InvalidWebhookUrlError, TenantNotFoundError
from app.models.enums import EventType
from app.services import tenant_service


@pytest.mark.parametrize(
    "url",
    ["https://hooks.example.com/referrals", "https://localhost:8443/hook", "  https://example.com  "],
)
def test_accepts_https_urls(url):
    assert tenant_service.validate_webhook_url(url) == url.strip()


def test_none_clears_url():
    assert tenant_service.validate_webhook_url(None) is None


@pytest.mark.parametrize(
    "url, message",
    [
        ("http://hooks.example.com/referrals", "Webhook URL must use HTTPS"),
        ("ftp://hooks.example.com", "Webhook URL must use HTTPS"),
        ("not a url", "Invalid URL format"),
        ("https://", "Invalid URL format"),
    ],
)
def test_rejects_bad_urls(url, message):
    with pytest.raises(InvalidWebhookUrlError) as exc_info:
        tenant_service.validate_webhook_url(url)
    assert exc_info.value.message == message
    assert exc_info.value.code == "INVALID_WEBHOOK_URL"


@pytest.mark.parametrize(
    "url", ["https://localhost/hook", "https://127.0.0.1/hook", "https://0.0.0.0/hook", "https://app.localhost/hook"]
)
def test_local_hosts_refused_in_production(url, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    with pytest.raises(InvalidWebhookUrlError):
        tenant_service.validate_webhook_url(url)

    monkeypatch.setattr(settings, "ALLOW_LOCAL_WEBHOOKS", True)
    assert tenant_service.validate_webhook_url(url) == url


async def test_update_webhook_url(db, tenant):
    updated = await tenant_service.update_webhook_url(
        db, tenant_id=tenant.id, webhook_url="https://new.example.com/hook"
    )
    assert updated.webhook_url == "https://new.example.com/hook"
    assert await crud.crud_tenant.get_webhook_url(db, tenant_id=tenant.id) == "https://new.example.com/hook"

    cleared = await tenant_service.update_webhook_url(db, tenant_id=tenant.id, webhook_url=None)
    assert cleared.webhook_url is None


async def test_invalid_url_leaves_tenant_unchanged(db, tenant):
    with pytest.raises(InvalidWebhookUrlError):
        await tenant_service.update_webhook_url(db, tenant_id=tenant.id, webhook_url="http://insecure.example.com")
    assert await crud.crud_tenant.get_webhook_url(db, tenant_id=tenant.id) == tenant.webhook_url


async def test_unknown_tenant(db):
    with pytest.raises(TenantNotFoundError):
        await tenant_service.get_tenant_or_404(db, tenant_id=uuid.uuid4())


async def test_list_events_filters_and_pages(db, tenant):
    for n in range(3):
        await crud.event.append(db, tenant_id=tenant.id, type=EventType.REFERRAL_CLAIMED, payload={"n": n})
    await crud.event.append(db, tenant_id=tenant.id, type=EventType.WEBHOOK_TEST, payload={})
    await db.commit()

    events, total = await tenant_service.list_events(db, tenant_id=tenant.id)
    assert total == 4
    assert len(events) == 4

    claimed, claimed_total = await tenant_service.list_events(
        db, tenant_id=tenant.id, event_type="referral.claimed", limit=2, offset=0
    )
    assert claimed_total == 3
    assert len(claimed) == 2
    assert all(e.type == "referral.claimed" for e in claimed)

    rest, _ = await tenant_service.list_events(db, tenant_id=tenant.id, event_type="referral.claimed", limit=2, offset=2)
    assert len(rest) == 1
    assert {e.id for e in claimed}.isdisjoint({e.id for e in rest})

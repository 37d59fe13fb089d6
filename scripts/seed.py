import argparse
import asyncio

from faker import Faker
from sqlalchemy import select

# Make sure paths are correct for script execution
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from app.db.session import AsyncSessionLocal, engine
from app.models import ApiKey, Tenant, User
from app.models.enums import ApiScope, SubscriptionTier, TenantStatus
from app.security import generate_api_key, hash_api_key
from app.services.tenant_service import validate_webhook_url
from app.utils.referral_code import generate_referral_code

faker = Faker()

DEMO_TENANT_SLUG = "demo"
DEMO_REFERRER_ID = "u1"
DEMO_REFERRER_CODE = "REF123"


async def seed(webhook_url: str | None, extra_users: int) -> None:
    webhook_url = validate_webhook_url(webhook_url)
    async with AsyncSessionLocal() as db:
        tenant = (await db.execute(select(Tenant).where(Tenant.slug == DEMO_TENANT_SLUG))).scalar_one_or_none()
        if tenant is None:
            tenant = Tenant(
                slug=DEMO_TENANT_SLUG,
                name="Demo Tenant",
                status=TenantStatus.ACTIVE.value,
                webhook_url=webhook_url,
                referral_settings={
                    "referral_reward_free": 100,
                    "referral_reward_pro": 200,
                    "referral_reward_power_pro": 300,
                    "onboarding_bonus": 0,
                    "currency": "AUD",
                },
            )
            db.add(tenant)
            await db.flush()
            print(f"Created tenant '{tenant.slug}' ({tenant.id})")
        else:
            print(f"Tenant '{tenant.slug}' already exists ({tenant.id})")
            if webhook_url:
                tenant.webhook_url = webhook_url

        raw_key = generate_api_key()
        db.add(ApiKey(
            tenant_id=tenant.id,
            key_hash=hash_api_key(raw_key),
            label="seed",
            scopes=[ApiScope.READ.value, ApiScope.WRITE.value, ApiScope.ADMIN.value],
        ))

        referrer = (await db.execute(
            select(User).where(User.tenant_id == tenant.id, User.external_user_id == DEMO_REFERRER_ID)
        )).scalar_one_or_none()
        if referrer is None:
            db.add(User(
                tenant_id=tenant.id,
                external_user_id=DEMO_REFERRER_ID,
                email=faker.email(),
                plan=SubscriptionTier.PRO.value,
                referral_code=DEMO_REFERRER_CODE,
            ))
            print(f"Created referrer '{DEMO_REFERRER_ID}' (pro) with code {DEMO_REFERRER_CODE}")

        for _ in range(extra_users):
            db.add(User(
                tenant_id=tenant.id,
                external_user_id=f"user_{faker.unique.uuid4()[:8]}",
                email=faker.unique.email(),
                plan=faker.random_element([t.value for t in SubscriptionTier]),
                referral_code=generate_referral_code(),
            ))

        await db.commit()

    await engine.dispose()
    print("--- Seed complete ---")
    print(f"API key (shown once): {raw_key}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed a demo tenant, API key and referrer.")
    parser.add_argument("--webhook-url", type=str, default=None, help="Webhook URL for the demo tenant.")
    parser.add_argument("--extra-users", type=int, default=0, help="Number of random users to add.")
    args = parser.parse_args()
    asyncio.run(seed(args.webhook_url, args.extra_users))

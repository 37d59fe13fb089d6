from decimal import Decimal
import uuid

import pytest
from sqlalchemy import select

from app.core.exceptions import InvalidRequestError, LedgerEntryNotFoundError, UserNotFoundError
from app.models import DomainEvent, RewardLedgerEntry
from app.models.enums import EventType, RewardSource
from app.services import ledger_service
from app.services.ledger_service import RewardCategory, reward_idempotency_key


async def _grant(db, tenant, user, amount, key="k1", currency="AUD"):
    inserted = await ledger_service.insert_if_absent(
        db,
        tenant_id=tenant.id,
        user_id=user.id,
        idempotency_key=key,
        reward_json={"type": "credit", "amount": amount, "currency": currency},
        source=RewardSource.REFERRAL_REWARD,
    )
    await db.commit()
    return inserted


def test_idempotency_key_is_deterministic():
    key = reward_idempotency_key("r1", "u1", RewardCategory.REFERRAL_REWARD)
    assert key == "ref_reward_r1_u1"
    assert key == reward_idempotency_key("r1", "u1", RewardCategory.REFERRAL_REWARD)
    assert reward_idempotency_key("r1", "u2", RewardCategory.ONBOARDING_BONUS) == "onboard_r1_u2"


async def test_duplicate_key_is_a_noop(db, tenant, referrer):
    assert await _grant(db, tenant, referrer, 200) is True
    assert await _grant(db, tenant, referrer, 200) is False

    rows = (await db.execute(select(RewardLedgerEntry))).scalars().all()
    assert len(rows) == 1


async def test_sum_is_computed_from_entries(db, tenant, referrer):
    await _grant(db, tenant, referrer, 200, key="a")
    await _grant(db, tenant, referrer, 100, key="b")

    total = await ledger_service.sum_by_user(db, tenant_id=tenant.id, user_id=referrer.id)
    assert total.total == Decimal("300")
    assert total.currency == "AUD"


async def test_sum_for_user_without_entries_uses_default_currency(db, tenant, referrer):
    total = await ledger_service.sum_by_user(db, tenant_id=tenant.id, user_id=referrer.id, default_currency="NZD")
    assert total.total == Decimal("0")
    assert total.currency == "NZD"


async def test_totals_by_user_splits_currencies(db, tenant, referrer):
    await _grant(db, tenant, referrer, 100, key="a", currency="AUD")
    await _grant(db, tenant, referrer, 50, key="b", currency="AUD")
    await _grant(db, tenant, referrer, 10, key="c", currency="USD")

    totals = {t.currency: t.total for t in await ledger_service.totals_by_user(db, tenant_id=tenant.id, user_id=referrer.id)}
    assert totals == {"AUD": Decimal("150"), "USD": Decimal("10")}
    primary = await ledger_service.sum_by_user(db, tenant_id=tenant.id, user_id=referrer.id)
    assert primary.currency == "AUD"


async def test_user_rewards_lists_entries(db, tenant, referrer):
    await _grant(db, tenant, referrer, 200, key="a")
    rewards = await ledger_service.get_user_rewards(db, tenant_id=tenant.id, external_user_id="u1")
    assert rewards.total == 200.0
    assert rewards.currency == "AUD"
    assert [e.idempotencyKey for e in rewards.entries] == ["a"]

    with pytest.raises(UserNotFoundError):
        await ledger_service.get_user_rewards(db, tenant_id=tenant.id, external_user_id="nobody")


async def test_reverse_entry_appends_negative_row_once(db, tenant, referrer):
    await _grant(db, tenant, referrer, 200, key="a")
    original = (await db.execute(select(RewardLedgerEntry))).scalar_one()

    reversal = await ledger_service.reverse_entry(db, tenant_id=tenant.id, entry_id=original.id, reason="fraud")
    again = await ledger_service.reverse_entry(db, tenant_id=tenant.id, entry_id=original.id, reason="fraud")

    assert reversal.id == again.id
    assert reversal.amount == Decimal("-200")
    assert reversal.idempotency_key == f"reversal_{original.id}_{referrer.id}"
    total = await ledger_service.sum_by_user(db, tenant_id=tenant.id, user_id=referrer.id)
    assert total.total == Decimal("0")

    events = (await db.execute(select(DomainEvent).where(DomainEvent.type == EventType.REWARD_REVERSED.value))).scalars().all()
    assert len(events) == 1


async def test_reversal_of_reversal_is_rejected(db, tenant, referrer):
    await _grant(db, tenant, referrer, 200, key="a")
    original = (await db.execute(select(RewardLedgerEntry))).scalar_one()
    reversal = await ledger_service.reverse_entry(db, tenant_id=tenant.id, entry_id=original.id, reason="oops")

    with pytest.raises(InvalidRequestError):
        await ledger_service.reverse_entry(db, tenant_id=tenant.id, entry_id=reversal.id, reason="undo")


async def test_reverse_unknown_entry(db, tenant):
    with pytest.raises(LedgerEntryNotFoundError):
        await ledger_service.reverse_entry(db, tenant_id=tenant.id, entry_id=uuid.uuid4(), reason="x")

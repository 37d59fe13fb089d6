"""
Reward ledger operations.

The ledger is append-only. Every write goes through ``insert_if_absent`` with
a key from :func:`reward_idempotency_key`, and every balance is a fresh SUM
over the entries. Nothing here caches or mutates a total.
"""
from dataclasses import dataclass
from decimal import Decimal
import enum
import logging
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud, schemas
from app.core.exceptions import InvalidRequestError, LedgerEntryNotFoundError, UserNotFoundError
from app.models.enums import EventType, RewardSource
from app.models.reward_ledger import RewardLedgerEntry
from app.services import webhook_service
from app.services.reward_rules import normalize_reward_rules

logger = logging.getLogger(__name__)


class RewardCategory(str, enum.Enum):
    REFERRAL_REWARD = "ref_reward"
    ONBOARDING_BONUS = "onboard"
    REVERSAL = "reversal"


def reward_idempotency_key(subject_id: Any, user_id: Any, category: RewardCategory) -> str:
    """
    Deterministic ledger key for one grant.

    ``subject_id`` is the referral id for grants and the reversed entry id for
    reversals. The same inputs always produce the same key, which is what
    makes a repeated grant collide on the (tenant, key, user) constraint.
    """
    return f"{category.value}_{subject_id}_{user_id}"


@dataclass(frozen=True)
class LedgerTotal:
    total: Decimal
    currency: str


async def insert_if_absent(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    idempotency_key: str,
    reward_json: Dict[str, Any],
    source: RewardSource,
) -> bool:
    """``reward_json`` must carry ``amount`` and ``currency``. Returns False on key collision."""
    inserted = await crud.crud_ledger.insert_if_absent(
        db,
        tenant_id=tenant_id,
        user_id=user_id,
        idempotency_key=idempotency_key,
        source=source.value,
        amount=Decimal(str(reward_json["amount"])),
        currency=reward_json["currency"],
        reward_json=reward_json,
    )
    if not inserted:
        logger.info(f"Ledger key '{idempotency_key}' already granted for user {user_id}; skipped")
    return inserted


async def sum_by_user(
    db: AsyncSession, *, tenant_id: uuid.UUID, user_id: uuid.UUID, default_currency: Optional[str] = None
) -> LedgerTotal:
    """
    Total of every entry for the user. Users hold a single currency in
    practice; if several are present the one with the most entries wins and
    ``totals_by_user`` gives the full breakdown.
    """
    totals = await crud.crud_ledger.totals_by_user(db, tenant_id=tenant_id, user_id=user_id)
    if not totals:
        return LedgerTotal(total=Decimal("0"), currency=default_currency or normalize_reward_rules(None).currency)
    if len(totals) > 1:
        logger.warning(f"User {user_id} holds ledger entries in {len(totals)} currencies")
    primary = max(totals, key=lambda t: t.entry_count)
    return LedgerTotal(total=primary.total, currency=primary.currency)


async def totals_by_user(db: AsyncSession, *, tenant_id: uuid.UUID, user_id: uuid.UUID) -> List[LedgerTotal]:
    totals = await crud.crud_ledger.totals_by_user(db, tenant_id=tenant_id, user_id=user_id)
    return [LedgerTotal(total=t.total, currency=t.currency) for t in totals]


async def get_user_rewards(
    db: AsyncSession, *, tenant_id: uuid.UUID, external_user_id: str, limit: int = 50, offset: int = 0
) -> schemas.UserRewardsResponse:
    user = await crud.crud_user.get_by_external_id(db, tenant_id=tenant_id, external_user_id=external_user_id)
    if not user:
        raise UserNotFoundError(f"User '{external_user_id}' not found")

    tenant = await crud.crud_tenant.get_tenant(db, tenant_id=tenant_id)
    default_currency = normalize_reward_rules(tenant.referral_settings if tenant else None).currency
    balance = await sum_by_user(db, tenant_id=tenant_id, user_id=user.id, default_currency=default_currency)
    entries = await crud.crud_ledger.list_by_user(
        db, tenant_id=tenant_id, user_id=user.id, limit=limit, offset=offset
    )
    return schemas.UserRewardsResponse(
        externalUserId=user.external_user_id,
        total=float(balance.total),
        currency=balance.currency,
        entries=[schemas.LedgerEntry.from_model(entry) for entry in entries],
    )


async def reverse_entry(
    db: AsyncSession, *, tenant_id: uuid.UUID, entry_id: uuid.UUID, reason: str, performed_by: Optional[str] = None
) -> RewardLedgerEntry:
    """
    Appends a negative entry offsetting ``entry_id``. Reversing the same entry
    twice returns the first reversal; the original row is never touched.
    """
    original = await crud.crud_ledger.get_entry(db, tenant_id=tenant_id, entry_id=entry_id)
    if not original:
        raise LedgerEntryNotFoundError(f"Ledger entry {entry_id} not found")
    if original.source == RewardSource.MANUAL_REVERSAL.value or original.amount <= 0:
        raise InvalidRequestError("Only positive reward grants can be reversed")

    key = reward_idempotency_key(original.id, original.user_id, RewardCategory.REVERSAL)
    reward_json = {
        "type": "debit",
        "amount": float(-original.amount),
        "currency": original.currency,
        "description": f"Reversal: {reason}",
        "reversedEntryId": str(original.id),
        "performedBy": performed_by,
    }
    inserted = await insert_if_absent(
        db,
        tenant_id=tenant_id,
        user_id=original.user_id,
        idempotency_key=key,
        reward_json=reward_json,
        source=RewardSource.MANUAL_REVERSAL,
    )
    event = None
    if inserted:
        event = await crud.event.append(
            db,
            tenant_id=tenant_id,
            type=EventType.REWARD_REVERSED,
            payload={
                "entryId": str(original.id),
                "userId": str(original.user_id),
                "amount": reward_json["amount"],
                "currency": original.currency,
                "reason": reason,
            },
        )
    user_id = original.user_id
    await db.commit()

    if event is not None:
        logger.info(f"Reversed ledger entry {original.id} ({original.amount} {original.currency}): {reason}")
        await webhook_service.enqueue_after_commit(db, tenant_id=tenant_id, event_id=event.id)
    # Read after the enqueue, which may have rolled back and expired loaded rows
    return await crud.crud_ledger.get_by_idempotency_key(db, tenant_id=tenant_id, user_id=user_id, idempotency_key=key)

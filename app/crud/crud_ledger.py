from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.base import dialect_insert
from app.models.reward_ledger import RewardLedgerEntry


@dataclass(frozen=True)
class CurrencyTotal:
    currency: str
    total: Decimal
    entry_count: int


async def insert_if_absent(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    idempotency_key: str,
    source: str,
    amount: Decimal,
    currency: str,
    reward_json: Dict[str, Any],
) -> bool:
    """
    Writes one ledger entry unless (tenant, idempotency_key, user) already exists.

    A collision is not an error: it returns False and leaves the ledger
    untouched. This is the double-grant guard, not an auxiliary check.
    """
    statement = (
        dialect_insert(db, RewardLedgerEntry)
        .values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            user_id=user_id,
            source=source,
            idempotency_key=idempotency_key,
            amount=amount,
            currency=currency,
            reward_json=reward_json,
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "idempotency_key", "user_id"])
        .returning(RewardLedgerEntry.id)
    )
    result = await db.execute(statement)
    return result.scalar_one_or_none() is not None


async def totals_by_user(db: AsyncSession, *, tenant_id: uuid.UUID, user_id: uuid.UUID) -> List[CurrencyTotal]:
    statement = (
        select(
            RewardLedgerEntry.currency,
            func.coalesce(func.sum(RewardLedgerEntry.amount), 0),
            func.count(RewardLedgerEntry.id),
        )
        .where(RewardLedgerEntry.tenant_id == tenant_id, RewardLedgerEntry.user_id == user_id)
        .group_by(RewardLedgerEntry.currency)
        .order_by(RewardLedgerEntry.currency)
    )
    result = await db.execute(statement)
    return [
        CurrencyTotal(currency=currency, total=Decimal(str(total)), entry_count=int(count))
        for currency, total, count in result.all()
    ]


async def get_entry(db: AsyncSession, *, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[RewardLedgerEntry]:
    statement = select(RewardLedgerEntry).where(
        RewardLedgerEntry.tenant_id == tenant_id, RewardLedgerEntry.id == entry_id
    )
    result = await db.execute(statement)
    return result.scalar_one_or_none()


async def get_by_idempotency_key(
    db: AsyncSession, *, tenant_id: uuid.UUID, user_id: uuid.UUID, idempotency_key: str
) -> Optional[RewardLedgerEntry]:
    statement = select(RewardLedgerEntry).where(
        RewardLedgerEntry.tenant_id == tenant_id,
        RewardLedgerEntry.user_id == user_id,
        RewardLedgerEntry.idempotency_key == idempotency_key,
    )
    result = await db.execute(statement)
    return result.scalar_one_or_none()


async def list_by_user(
    db: AsyncSession, *, tenant_id: uuid.UUID, user_id: uuid.UUID, limit: int = 50, offset: int = 0
) -> List[RewardLedgerEntry]:
    statement = (
        select(RewardLedgerEntry)
        .where(RewardLedgerEntry.tenant_id == tenant_id, RewardLedgerEntry.user_id == user_id)
        .order_by(RewardLedgerEntry.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(statement)
    return list(result.scalars().all())

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field


class LedgerEntry(BaseModel):
    id: uuid.UUID
    source: str
    idempotencyKey: str
    amount: float
    currency: str
    reward: Dict[str, Any]
    createdAt: datetime

    @classmethod
    def from_model(cls, entry) -> "LedgerEntry":
        return cls(
            id=entry.id,
            source=entry.source,
            idempotencyKey=entry.idempotency_key,
            amount=float(entry.amount),
            currency=entry.currency,
            reward=entry.reward_json or {},
            createdAt=entry.created_at,
        )


class UserRewardsResponse(BaseModel):
    externalUserId: str
    total: float
    currency: str
    entries: List[LedgerEntry]


class ReverseRewardRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    performedBy: Optional[str] = Field(None, max_length=255)

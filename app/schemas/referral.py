from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings
from app.schemas.common import RewardAmount


class ClaimRequest(BaseModel):
    referralCode: str = Field(..., min_length=1, max_length=settings.MAX_REFERRAL_CODE_LENGTH)
    referredUserId: str = Field(..., min_length=1, max_length=settings.MAX_EXTERNAL_USER_ID_LENGTH)

    @field_validator("referralCode", "referredUserId")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class ReferralOut(BaseModel):
    id: uuid.UUID
    referrerUserId: str  # referrer's external id, not the internal row id
    referredExternalUserId: str
    refCodeUsed: str
    status: str
    createdAt: datetime


class ClaimRewards(BaseModel):
    referrerReward: Optional[RewardAmount] = None
    referredReward: Optional[RewardAmount] = None


class ClaimResponse(BaseModel):
    referral: ReferralOut
    rewards: ClaimRewards
    alreadyProcessed: bool

from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, Field

from app.core.config import settings


class UserUpsertRequest(BaseModel):
    externalUserId: str = Field(..., min_length=1, max_length=settings.MAX_EXTERNAL_USER_ID_LENGTH)
    email: Optional[str] = Field(None, max_length=320)
    subscriptionTier: Optional[str] = None


class UserOut(BaseModel):
    id: uuid.UUID
    externalUserId: str
    email: Optional[str] = None
    plan: str
    referralCode: str
    createdAt: datetime

    @classmethod
    def from_model(cls, user) -> "UserOut":
        return cls(
            id=user.id,
            externalUserId=user.external_user_id,
            email=user.email,
            plan=user.plan,
            referralCode=user.referral_code,
            createdAt=user.created_at,
        )


class UserUpsertResponse(BaseModel):
    user: UserOut
    referralLink: str
    created: bool

# flake8: noqa
from .common import ErrorBody, ErrorResponse, RewardAmount
from .referral import ClaimRequest, ReferralOut, ClaimRewards, ClaimResponse
from .user import UserUpsertRequest, UserOut, UserUpsertResponse
from .ledger import LedgerEntry, UserRewardsResponse, ReverseRewardRequest
from .webhook import (
    ReplayRequest, ReplayResponse, WebhookTestResponse, WebhookDeliveryOut,
    DevReceiverResponse, HealthResponse
)
from .tenant import WebhookConfigUpdate, TenantWebhookOut, TenantWebhookResponse, EventOut, EventListResponse

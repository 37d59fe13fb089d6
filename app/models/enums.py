from __future__ import annotations
import enum


class TenantStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class SubscriptionTier(str, enum.Enum):
    # Ordered lowest first; unknown tiers fall back to the first member
    FREE = "free"
    PRO = "pro"
    POWER_PRO = "power_pro"


class ReferralStatus(str, enum.Enum):
    COMPLETED = "completed"


class RewardSource(str, enum.Enum):
    REFERRAL_REWARD = "referral_reward"
    ONBOARDING_BONUS = "onboarding_bonus"
    MANUAL_REVERSAL = "manual_reversal"


class WebhookDeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class EventType(str, enum.Enum):
    REFERRAL_CLAIMED = "referral.claimed"
    WEBHOOK_TEST = "webhook.test"
    WEBHOOK_REPLAY_REQUESTED = "webhook.replay_requested"
    WEBHOOK_SENT = "webhook.sent"
    WEBHOOK_FAILED = "webhook.failed"
    WEBHOOK_EXHAUSTED = "webhook.exhausted"
    REWARD_REVERSED = "reward.reversed"


class ApiScope(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"
    WEBHOOKS_REPLAY = "webhooks:replay"

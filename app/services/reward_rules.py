"""
Reward rule evaluation.

Pure functions only: a tenant's ``referral_settings`` JSON plus the referrer's
subscription tier go in, reward amounts and a currency come out. Configuration
is normalized field by field, so a tenant with a partially filled or malformed
settings blob still gets the documented defaults for whatever is missing.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from app.models.enums import SubscriptionTier

DEFAULT_CURRENCY = "AUD"


@dataclass(frozen=True)
class RewardRules:
    onboarding_bonus: Decimal = Decimal("0")
    referral_reward_free: Decimal = Decimal("100")
    referral_reward_pro: Decimal = Decimal("200")
    referral_reward_power_pro: Decimal = Decimal("300")
    currency: str = DEFAULT_CURRENCY

    def amount_for_tier(self, tier: SubscriptionTier) -> Decimal:
        if tier == SubscriptionTier.PRO:
            return self.referral_reward_pro
        if tier == SubscriptionTier.POWER_PRO:
            return self.referral_reward_power_pro
        return self.referral_reward_free


DEFAULT_REWARD_RULES = RewardRules()


@dataclass(frozen=True)
class RewardDecision:
    referrer_amount: Decimal
    referred_amount: Decimal
    currency: str
    referrer_tier: SubscriptionTier

    @property
    def grants_referrer(self) -> bool:
        return self.referrer_amount > 0

    @property
    def grants_referred(self) -> bool:
        return self.referred_amount > 0


def _coerce_amount(value: Any, default: Decimal) -> Decimal:
    # bool is an int subclass; "true" is not an amount
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return default
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return default
    if not amount.is_finite():
        return default
    return amount


def normalize_reward_rules(raw_rules: Optional[Mapping[str, Any]]) -> RewardRules:
    if not raw_rules or not isinstance(raw_rules, Mapping):
        return DEFAULT_REWARD_RULES

    currency = raw_rules.get("currency")
    if not isinstance(currency, str) or not currency.strip():
        currency = DEFAULT_REWARD_RULES.currency

    return RewardRules(
        onboarding_bonus=_coerce_amount(raw_rules.get("onboarding_bonus"), DEFAULT_REWARD_RULES.onboarding_bonus),
        referral_reward_free=_coerce_amount(raw_rules.get("referral_reward_free"), DEFAULT_REWARD_RULES.referral_reward_free),
        referral_reward_pro=_coerce_amount(raw_rules.get("referral_reward_pro"), DEFAULT_REWARD_RULES.referral_reward_pro),
        referral_reward_power_pro=_coerce_amount(
            raw_rules.get("referral_reward_power_pro"), DEFAULT_REWARD_RULES.referral_reward_power_pro
        ),
        currency=currency.strip(),
    )


def normalize_subscription_tier(tier: Optional[str]) -> SubscriptionTier:
    """Maps free-form plan names onto a known tier; anything unknown is the lowest tier."""
    if not tier or not isinstance(tier, str):
        return SubscriptionTier.FREE
    normalized = tier.strip().lower()
    if normalized == "pro":
        return SubscriptionTier.PRO
    if normalized in ("power_pro", "powerpro"):
        return SubscriptionTier.POWER_PRO
    return SubscriptionTier.FREE


def evaluate(tenant_rules: Optional[Mapping[str, Any]], referrer_tier: Optional[str]) -> RewardDecision:
    """
    Computes both sides of a referral reward.

    A zero (or negative) amount means no ledger entry is written for that
    side; callers check ``grants_referrer`` / ``grants_referred``.
    """
    rules = normalize_reward_rules(tenant_rules)
    tier = normalize_subscription_tier(referrer_tier)
    return RewardDecision(
        referrer_amount=rules.amount_for_tier(tier),
        referred_amount=rules.onboarding_bonus,
        currency=rules.currency,
        referrer_tier=tier,
    )

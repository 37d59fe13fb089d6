from decimal import Decimal

import pytest

from app.models.enums import SubscriptionTier
from app.services.reward_rules import evaluate, normalize_reward_rules, normalize_subscription_tier


def test_defaults_when_tenant_has_no_rules():
    decision = evaluate(None, "free")
    assert decision.referrer_amount == Decimal("100")
    assert decision.referred_amount == Decimal("0")
    assert decision.currency == "AUD"
    assert decision.grants_referrer
    assert not decision.grants_referred


@pytest.mark.parametrize(
    "tier, expected",
    [
        ("pro", Decimal("200")),
        ("  PRO ", Decimal("200")),
        ("power_pro", Decimal("300")),
        ("PowerPro", Decimal("300")),
        ("enterprise", Decimal("100")),
        (None, Decimal("100")),
    ],
)
def test_referrer_amount_follows_tier(tier, expected):
    assert evaluate({}, tier).referrer_amount == expected


def test_unknown_tier_maps_to_lowest():
    assert normalize_subscription_tier("gold") == SubscriptionTier.FREE
    assert normalize_subscription_tier("") == SubscriptionTier.FREE


def test_malformed_fields_fall_back_individually():
    rules = normalize_reward_rules({
        "referral_reward_free": "lots",
        "referral_reward_pro": True,
        "referral_reward_power_pro": 450,
        "onboarding_bonus": 25.5,
        "currency": "   ",
    })
    assert rules.referral_reward_free == Decimal("100")
    assert rules.referral_reward_pro == Decimal("200")
    assert rules.referral_reward_power_pro == Decimal("450")
    assert rules.onboarding_bonus == Decimal("25.5")
    assert rules.currency == "AUD"


def test_non_mapping_settings_use_defaults():
    assert normalize_reward_rules(["not", "a", "dict"]).referral_reward_pro == Decimal("200")


def test_zero_amount_means_no_grant():
    decision = evaluate({"referral_reward_pro": 0, "onboarding_bonus": 10, "currency": "USD"}, "pro")
    assert not decision.grants_referrer
    assert decision.grants_referred
    assert decision.currency == "USD"


def test_negative_amount_is_kept_and_grants_nothing():
    rules = normalize_reward_rules({"referral_reward_free": -50, "onboarding_bonus": -1})
    assert rules.referral_reward_free == Decimal("-50")
    assert rules.onboarding_bonus == Decimal("-1")

    decision = evaluate({"referral_reward_free": -50, "onboarding_bonus": -1}, "free")
    assert not decision.grants_referrer
    assert not decision.grants_referred

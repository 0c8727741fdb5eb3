# -*- coding: utf-8 -*-
"""Subscription plans and usage limits.

Callers consult :func:`check_limit` before invoking facade writes; the
persistence layer itself never enforces a plan.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple
import math

from .models import SubscriptionTier

UNLIMITED = math.inf


@dataclass(frozen=True)
class PlanLimits:
    dreams_per_month: float
    interpretations_per_month: float
    pattern_analysis: bool
    data_export: bool
    advanced_insights: bool


@dataclass(frozen=True)
class Plan:
    tier: SubscriptionTier
    name: str
    price: int
    price_id: Optional[str]
    features: Tuple[str, ...]
    limits: PlanLimits


SUBSCRIPTION_PLANS: Dict[SubscriptionTier, Plan] = {
    SubscriptionTier.FREE: Plan(
        tier=SubscriptionTier.FREE,
        name="Free",
        price=0,
        price_id=None,
        features=(
            "5 dreams per month",
            "3 AI interpretations per month",
            "Basic pattern tracking",
            "Local data storage",
        ),
        limits=PlanLimits(5, 3, False, False, False),
    ),
    SubscriptionTier.PRO: Plan(
        tier=SubscriptionTier.PRO,
        name="Pro",
        price=5,
        price_id="price_pro_monthly",
        features=(
            "Unlimited dreams",
            "Unlimited AI interpretations",
            "Advanced pattern tracking",
            "Encrypted cloud storage",
            "Data export",
        ),
        limits=PlanLimits(UNLIMITED, UNLIMITED, True, True, False),
    ),
    SubscriptionTier.PREMIUM: Plan(
        tier=SubscriptionTier.PREMIUM,
        name="Premium",
        price=15,
        price_id="price_premium_monthly",
        features=(
            "Everything in Pro",
            "Personalized AI coaching",
            "Advanced dream insights",
            "Priority support",
            "Early access to new features",
        ),
        limits=PlanLimits(UNLIMITED, UNLIMITED, True, True, True),
    ),
}


def get_plan(tier) -> Optional[Plan]:
    try:
        return SUBSCRIPTION_PLANS[SubscriptionTier(tier)]
    except ValueError:
        return None

def get_usage_limits(tier) -> PlanLimits:
    """Limits for *tier*; unknown tiers get the free plan's limits."""
    plan = get_plan(tier)
    return (plan or SUBSCRIPTION_PLANS[SubscriptionTier.FREE]).limits

def check_limit(tier, action: str, usage: Optional[Mapping[str, int]] = None) -> bool:
    """Return True if *tier* allows *action* given current monthly *usage*.

    ``usage`` keys: ``dreams_this_month``, ``interpretations_this_month``.
    Unknown tiers and actions are denied.
    """
    plan = get_plan(tier)
    if plan is None:
        return False
    usage = usage or {}
    limits = plan.limits
    if action == "create_dream":
        return usage.get("dreams_this_month", 0) < limits.dreams_per_month
    if action == "get_interpretation":
        return usage.get("interpretations_this_month", 0) < limits.interpretations_per_month
    if action == "pattern_analysis":
        return limits.pattern_analysis
    if action == "data_export":
        return limits.data_export
    if action == "advanced_insights":
        return limits.advanced_insights
    return False

def usage_percentage(current: int, limit: float) -> int:
    """Usage as a 0-100 percentage; unlimited plans report 0."""
    if limit == UNLIMITED or limit <= 0:
        return 0
    return min(100, round(current / limit * 100))

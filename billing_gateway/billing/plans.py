"""Plan catalogue and tier classification.

Plan tiers:
- FREE:    single user, no billing
- STARTER: up to 50 users per organization
- PRO:     up to 100 users, analytics and API access
- SCALE:   unlimited users, priority support

Every tier except FREE is paid. Limits use None for "unlimited".
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class PlanCode(str, enum.Enum):
    FREE = "FREE"
    STARTER = "STARTER"
    PRO = "PRO"
    SCALE = "SCALE"


class SubscriptionStatus(str, enum.Enum):
    FREE = "FREE"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class BillingCycle(str, enum.Enum):
    MONTHLY = "MONTHLY"
    ANNUAL = "ANNUAL"


ANNUAL_BILLING_DISCOUNT = 0.2
MONTHS_PER_YEAR = 12
DEFAULT_BILLING_PERIOD_DAYS = 30
DEFAULT_ANNUAL_BILLING_PERIOD_DAYS = 365


@dataclass(frozen=True)
class PlanLimits:
    max_organizations: int | None = None
    max_users: int | None = None
    max_projects: int | None = None
    max_monthly_usage: int | None = None


@dataclass(frozen=True)
class PlanDefinition:
    code: PlanCode
    name: str
    description: str
    monthly_price_cents: int
    limits: PlanLimits = field(default_factory=PlanLimits)
    features: tuple[str, ...] = ()


PLANS: dict[PlanCode, PlanDefinition] = {
    PlanCode.FREE: PlanDefinition(
        code=PlanCode.FREE,
        name="Free",
        description="For a single organization getting started.",
        monthly_price_cents=0,
        limits=PlanLimits(max_users=1),
    ),
    PlanCode.STARTER: PlanDefinition(
        code=PlanCode.STARTER,
        name="Starter",
        description="Up to 50 users per organization.",
        monthly_price_cents=5_000,
        limits=PlanLimits(max_users=50),
        features=("team_invites", "bulk_product_actions"),
    ),
    PlanCode.PRO: PlanDefinition(
        code=PlanCode.PRO,
        name="Pro",
        description="Up to 100 users per organization.",
        monthly_price_cents=10_000,
        limits=PlanLimits(max_users=100),
        features=("team_invites", "bulk_product_actions", "advanced_analytics", "api_access"),
    ),
    PlanCode.SCALE: PlanDefinition(
        code=PlanCode.SCALE,
        name="Scale",
        description="Unlimited users per organization.",
        monthly_price_cents=40_000,
        features=(
            "team_invites",
            "bulk_product_actions",
            "advanced_analytics",
            "api_access",
            "priority_support",
        ),
    ),
}

PLAN_SEQUENCE: list[PlanCode] = [PlanCode.FREE, PlanCode.STARTER, PlanCode.PRO, PlanCode.SCALE]


def get_plan_definition(plan_code: PlanCode) -> PlanDefinition:
    return PLANS[plan_code]


def is_paid_plan(plan_code: PlanCode) -> bool:
    return plan_code != PlanCode.FREE


def to_plan_code(value: str | None) -> PlanCode:
    """Coerce a stored value to a PlanCode; unknown values become FREE."""
    if value is None:
        return PlanCode.FREE
    try:
        return PlanCode(value.strip().upper())
    except ValueError:
        return PlanCode.FREE


def to_subscription_status(value: str | None) -> SubscriptionStatus | None:
    if value is None:
        return None
    try:
        return SubscriptionStatus(value.strip().upper())
    except ValueError:
        return None


def annual_pricing(monthly_price_cents: int) -> tuple[int, int]:
    """Return (annual_total_cents, monthly_equivalent_cents) after the annual discount."""
    annual_total = round(monthly_price_cents * MONTHS_PER_YEAR * (1 - ANNUAL_BILLING_DISCOUNT))
    return annual_total, round(annual_total / MONTHS_PER_YEAR)


def plan_charge_cents(monthly_price_cents: int, cycle: BillingCycle) -> int:
    if cycle == BillingCycle.ANNUAL:
        return annual_pricing(monthly_price_cents)[0]
    return monthly_price_cents


def billing_period_days(cycle: BillingCycle) -> int:
    if cycle == BillingCycle.ANNUAL:
        return DEFAULT_ANNUAL_BILLING_PERIOD_DAYS
    return DEFAULT_BILLING_PERIOD_DAYS


def is_unlimited(limit: int | None) -> bool:
    return limit is None

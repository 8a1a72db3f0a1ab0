"""Effective-plan resolution for an organization's subscription snapshot.

resolve_effective_plan() is pure and total:
- no snapshot                                   -> FREE, unpaid
- TRIALING with trial plan and trial_ends_at > now -> trial plan
- ACTIVE/PAST_DUE with current_period_end > now  -> stored plan
- anything else (expired trial, lapsed period, CANCELED, EXPIRED,
  inconsistent fields)                            -> FREE, unpaid

The result depends on wall-clock time and is recomputed on every
tenant-context build.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from billing_gateway.billing.plans import PlanCode, SubscriptionStatus, is_paid_plan

_PERIOD_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE})


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Persisted subscription state for one organization (read-only here).

    ``trial_plan_code`` only matters while TRIALING; ``current_period_end``
    only while ACTIVE or PAST_DUE.
    """

    organization_id: str
    plan_code: PlanCode = PlanCode.FREE
    status: SubscriptionStatus = SubscriptionStatus.FREE
    trial_plan_code: PlanCode | None = None
    trial_used_at: datetime | None = None
    trial_ends_at: datetime | None = None
    current_period_end: datetime | None = None


@dataclass(frozen=True)
class EffectivePlan:
    plan_code: PlanCode
    is_paid: bool


FREE_PLAN = EffectivePlan(plan_code=PlanCode.FREE, is_paid=False)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_after(deadline: datetime | None, now: datetime) -> bool:
    return deadline is not None and as_utc(deadline) > now


def resolve_effective_plan(
    snapshot: SubscriptionSnapshot | None,
    now: datetime | None = None,
) -> EffectivePlan:
    """Map a subscription snapshot and the current time to the plan in force."""
    if snapshot is None:
        return FREE_PLAN
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)

    if (
        snapshot.status == SubscriptionStatus.TRIALING
        and snapshot.trial_plan_code is not None
        and _is_after(snapshot.trial_ends_at, now)
    ):
        return EffectivePlan(
            plan_code=snapshot.trial_plan_code,
            is_paid=is_paid_plan(snapshot.trial_plan_code),
        )

    if snapshot.status in _PERIOD_STATUSES and _is_after(snapshot.current_period_end, now):
        return EffectivePlan(
            plan_code=snapshot.plan_code,
            is_paid=is_paid_plan(snapshot.plan_code),
        )

    return FREE_PLAN


def is_blocked_after_expired_trial(
    snapshot: SubscriptionSnapshot | None,
    now: datetime | None = None,
) -> bool:
    """True when the organization used its trial and has no paid period in force.

    Unlike resolve_effective_plan, an ACTIVE paid subscription with no
    period end counts as paid access here. Nothing blocks until the trial
    has been used.
    """
    if snapshot is None or snapshot.trial_used_at is None or snapshot.trial_ends_at is None:
        return False
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    if _is_after(snapshot.trial_ends_at, now):
        return False
    return not _has_paid_access(snapshot, now)


def _has_paid_access(snapshot: SubscriptionSnapshot, now: datetime) -> bool:
    if not is_paid_plan(snapshot.plan_code):
        return False
    if snapshot.status == SubscriptionStatus.ACTIVE:
        return snapshot.current_period_end is None or _is_after(snapshot.current_period_end, now)
    if snapshot.status == SubscriptionStatus.PAST_DUE:
        return _is_after(snapshot.current_period_end, now)
    return False

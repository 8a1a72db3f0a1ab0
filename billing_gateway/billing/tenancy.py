"""Tenant context: the organization's subscription snapshot and effective plan.

Built per request. The effective plan is resolved on every build from the
latest persisted snapshot; nothing here is cached across requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row

from billing_gateway.billing.plans import SubscriptionStatus, to_plan_code, to_subscription_status
from billing_gateway.billing.resolver import (
    EffectivePlan,
    SubscriptionSnapshot,
    is_blocked_after_expired_trial,
    resolve_effective_plan,
)

logger = logging.getLogger(__name__)


class SubscriptionRepository(Protocol):
    def get_snapshot(self, organization_id: str) -> SubscriptionSnapshot | None: ...


def snapshot_from_row(row: dict[str, Any]) -> SubscriptionSnapshot:
    """Build a snapshot from an ``owner_subscriptions`` row.

    Unknown plan codes read as FREE; an unknown status reads as FREE too,
    which resolves to the unpaid tier.
    """
    trial_plan = row.get("trial_plan_code")
    return SubscriptionSnapshot(
        organization_id=str(row["organization_id"]),
        plan_code=to_plan_code(row.get("plan_code")),
        status=to_subscription_status(row.get("status")) or SubscriptionStatus.FREE,
        trial_plan_code=to_plan_code(trial_plan) if trial_plan else None,
        trial_used_at=row.get("trial_used_at"),
        trial_ends_at=row.get("trial_ends_at"),
        current_period_end=row.get("current_period_end"),
    )


class PostgresSubscriptionRepository:
    """Reads subscription snapshots from ``owner_subscriptions``."""

    def __init__(self, database_url: str):
        self._database_url = database_url

    def _get_conn(self) -> psycopg.Connection:
        return psycopg.connect(self._database_url, autocommit=True, row_factory=dict_row)

    def get_snapshot(self, organization_id: str) -> SubscriptionSnapshot | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT organization_id, plan_code, trial_plan_code, status,
                          trial_used_at, trial_ends_at, current_period_end
                   FROM owner_subscriptions
                   WHERE organization_id = %s""",
                (organization_id,),
            ).fetchone()
        if row is None:
            return None
        return snapshot_from_row(row)


@dataclass(frozen=True)
class TenantContext:
    organization_id: str
    snapshot: SubscriptionSnapshot | None
    effective_plan: EffectivePlan
    blocked_after_trial: bool = False


def build_tenant_context(
    organization_id: str,
    repository: SubscriptionRepository,
    now: datetime | None = None,
) -> TenantContext:
    """Load the latest snapshot and resolve the plan in force at ``now``."""
    now = now or datetime.now(timezone.utc)
    snapshot = repository.get_snapshot(organization_id)
    effective = resolve_effective_plan(snapshot, now)
    logger.debug(
        "Tenant %s effective plan %s (paid=%s)",
        organization_id,
        effective.plan_code.value,
        effective.is_paid,
    )
    return TenantContext(
        organization_id=organization_id,
        snapshot=snapshot,
        effective_plan=effective,
        blocked_after_trial=is_blocked_after_expired_trial(snapshot, now),
    )

"""Subscription lifecycle"""
from datetime import datetime

import pytest

from app.core.errors import ConflictError, InternalError, NotFoundError
from app.models.subscription import SubscriptionStatus
from app.services.billing.subscriptions import (
    activate_subscription,
    add_months,
    cancel_subscription,
    create_free_subscription,
    get_organization_subscription,
    period_end_for,
    provision_organization,
)


def test_add_months_simple():
    assert add_months(datetime(2025, 1, 15, 9, 30), 1) == datetime(2025, 2, 15, 9, 30)
    assert add_months(datetime(2025, 11, 1), 3) == datetime(2026, 2, 1)


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2024, 2, 29), 12) == datetime(2025, 2, 28)


def test_period_end_for_interval():
    start = datetime(2025, 3, 10)
    assert period_end_for(start, "monthly") == datetime(2025, 4, 10)
    assert period_end_for(start, "yearly") == datetime(2026, 3, 10)


def test_provision_organization_starts_on_free_plan(db, plans):
    org = provision_organization(db, "New Org")

    subscription = get_organization_subscription(db, org.id)
    assert subscription.plan_id == plans["free"].id
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.billing_interval == "monthly"
    assert subscription.current_period_end.year >= subscription.current_period_start.year + 99
    assert subscription.cancel_at_period_end is False


def test_create_free_subscription_twice_conflicts(db, org):
    with pytest.raises(ConflictError):
        create_free_subscription(db, org.id)


def test_create_free_subscription_requires_seeded_plan(db, bare_org):
    with pytest.raises(InternalError) as exc:
        create_free_subscription(db, bare_org.id)
    assert "seed" in exc.value.message


def test_get_subscription_none_for_unprovisioned_org(db, bare_org):
    assert get_organization_subscription(db, bare_org.id) is None


def test_activate_subscription_moves_free_org_to_paid_plan(db, org, plans):
    subscription = activate_subscription(db, org.id, plans["starter"].id, "monthly")

    assert subscription.plan_id == plans["starter"].id
    assert subscription.plan.name == "Starter"
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.current_period_end == add_months(subscription.current_period_start, 1)
    assert db.query(type(subscription)).count() == 1


def test_activate_subscription_creates_row_when_missing(db, bare_org, plans):
    subscription = activate_subscription(db, bare_org.id, plans["professional"].id, "yearly")

    assert subscription.org_id == bare_org.id
    assert subscription.billing_interval == "yearly"
    assert subscription.current_period_end == add_months(subscription.current_period_start, 12)


def test_activate_subscription_twice_restarts_period(db, org, plans):
    first = activate_subscription(db, org.id, plans["starter"].id, "monthly")
    first_start = first.current_period_start

    second = activate_subscription(db, org.id, plans["starter"].id, "monthly")
    assert second.id == first.id
    assert second.current_period_start >= first_start
    assert second.current_period_end == add_months(second.current_period_start, 1)


def test_activate_clears_pending_cancellation(db, org, plans):
    activate_subscription(db, org.id, plans["starter"].id, "monthly")
    cancel_subscription(db, org.id, immediate=False)

    subscription = activate_subscription(db, org.id, plans["professional"].id, "monthly")
    assert subscription.cancel_at_period_end is False
    assert subscription.canceled_at is None
    assert subscription.effective_cancellation_at is None


def test_activate_rejects_unknown_interval(db, org, plans):
    with pytest.raises(ValueError):
        activate_subscription(db, org.id, plans["starter"].id, "weekly")


def test_cancel_at_period_end_keeps_plan(db, org, plans):
    activate_subscription(db, org.id, plans["starter"].id, "monthly")

    subscription = cancel_subscription(db, org.id, immediate=False)
    assert subscription.plan_id == plans["starter"].id
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.cancel_at_period_end is True
    assert subscription.canceled_at is not None
    assert subscription.effective_cancellation_at == subscription.current_period_end


def test_cancel_immediately_downgrades_to_free(db, org, plans):
    activate_subscription(db, org.id, plans["starter"].id, "monthly")

    subscription = cancel_subscription(db, org.id, immediate=True)
    assert subscription.plan_id == plans["free"].id
    assert subscription.status == SubscriptionStatus.CANCELED.value
    assert subscription.cancel_at_period_end is False
    assert subscription.effective_cancellation_at == subscription.canceled_at


def test_cancel_without_subscription(db, bare_org):
    with pytest.raises(NotFoundError):
        cancel_subscription(db, bare_org.id)


def test_cancel_immediately_requires_seeded_free_plan(db, org, plans):
    activate_subscription(db, org.id, plans["starter"].id, "monthly")
    plans["free"].is_active = False
    db.commit()

    with pytest.raises(InternalError):
        cancel_subscription(db, org.id, immediate=True)

    db.rollback()
    assert get_organization_subscription(db, org.id).plan_id == plans["starter"].id

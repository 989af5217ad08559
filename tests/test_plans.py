"""Plan catalog"""
import uuid

import pytest

from app.core.errors import NotFoundError
from app.models.subscription_plan import SubscriptionPlan, UNLIMITED
from app.services.billing.plans import (
    DEFAULT_PLANS,
    get_free_plan,
    get_plan,
    list_active_plans,
    price_for,
    seed_plans,
)


def test_seed_creates_default_tiers(db, plans):
    assert set(plans) == {"free", "starter", "professional", "enterprise"}
    assert plans["starter"].price_monthly == 2900
    assert plans["starter"].price_yearly == 27900
    assert plans["enterprise"].max_seats == UNLIMITED


def test_seed_is_idempotent(db, plans):
    seed_plans(db)
    assert db.query(SubscriptionPlan).count() == len(DEFAULT_PLANS)


def test_seed_updates_existing_plan_in_place(db, plans):
    starter = plans["starter"]
    starter.price_monthly = 1
    db.commit()

    seed_plans(db)
    db.refresh(starter)
    assert starter.price_monthly == 2900


def test_list_active_plans_cheapest_first_and_hides_inactive(db, plans):
    plans["professional"].is_active = False
    db.commit()

    listed = list_active_plans(db)
    assert [p.type for p in listed] == ["free", "starter", "enterprise"]


def test_get_plan_unknown_id(db, plans):
    with pytest.raises(NotFoundError) as exc:
        get_plan(db, uuid.uuid4())
    assert exc.value.message == "Subscription plan not found"
    assert exc.value.status_code == 404


def test_get_free_plan(db, plans):
    assert get_free_plan(db).id == plans["free"].id


def test_get_free_plan_missing(db):
    assert get_free_plan(db) is None


def test_price_for_interval(plans):
    assert price_for(plans["professional"], "monthly") == 7900
    assert price_for(plans["professional"], "yearly") == 75900
    with pytest.raises(ValueError):
        price_for(plans["professional"], "weekly")

"""Tests for subscription credit, skip and vendor accounting (no DB required)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import uuid
from datetime import timedelta

import pytest

from errors import (
    DomainError, InsufficientCredits, InvalidStateTransition, NoSkipCredits,
    VendorSwitchNotAllowed,
)
from models.user_subscription import UserSubscription
from services import timezone
from services.subscriptions import subscription_analytics


def make_sub(**overrides) -> UserSubscription:
    now = timezone.now()
    fields = dict(
        user_id=uuid.uuid4(),
        plan_id=uuid.uuid4(),
        status="active",
        credits_granted=30,
        skip_credit_available=6,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=10),
        original_price=3000,
        final_price=3000,
        meal_timing={"lunch": {"enabled": True, "time": "12:30"}, "dinner": {"enabled": False}},
    )
    fields.update(overrides)
    return UserSubscription(**fields)


# ── Status ─────────────────────────────────────────────────

def test_defaults_for_new_subscription():
    sub = make_sub(status="pending")
    assert sub.credits_used == 0
    assert sub.skip_credit_granted == 6
    assert sub.vendors_assigned_history == []
    assert not sub.is_active()


def test_is_active_requires_future_end_date():
    sub = make_sub()
    assert sub.is_active()
    assert not sub.is_active(timezone.now() + timedelta(days=11))
    assert sub.is_expired(timezone.now() + timedelta(days=11))


def test_days_remaining_rounds_up_and_goes_negative():
    now = timezone.now()
    sub = make_sub(end_date=now + timedelta(days=2, hours=1))
    assert sub.get_days_remaining(now) == 3
    lapsed = make_sub(end_date=now - timedelta(days=2))
    assert lapsed.get_days_remaining(now) == -2


def test_activate_only_from_pending():
    sub = make_sub(status="pending")
    sub.activate()
    assert sub.status == "active"
    assert sub.payment_completed_at is not None
    sub.activate()  # repeat is a no-op
    assert sub.status == "active"

    cancelled = make_sub(status="cancelled")
    with pytest.raises(InvalidStateTransition):
        cancelled.activate()


def test_cancel_and_expire():
    sub = make_sub()
    sub.cancel("moved city", refund_amount=500)
    assert sub.status == "cancelled"
    assert sub.cancellation_reason == "moved city"
    with pytest.raises(InvalidStateTransition):
        sub.cancel("again")

    active = make_sub()
    active.mark_expired()
    assert active.status == "expired"


def test_renew_extends_and_records_history():
    sub = make_sub()
    new_end = timezone.to_local(sub.end_date) + timedelta(days=30)
    txn = uuid.uuid4()
    sub.renew(new_end, txn)
    assert sub.end_date == new_end
    assert sub.renewal_history[-1]["transaction_id"] == str(txn)

    with pytest.raises(DomainError):
        sub.renew(timezone.to_local(sub.start_date) - timedelta(days=1), txn)


# ── Credits ────────────────────────────────────────────────

def test_use_credits_within_balance():
    sub = make_sub(credits_used=28)
    assert sub.get_remaining_credits() == 2
    assert sub.can_use_credits(2)
    assert sub.use_credits(2) == 0
    assert sub.credits_used == 30


def test_use_credits_over_balance_rejected():
    sub = make_sub(credits_used=28)
    with pytest.raises(InsufficientCredits):
        sub.use_credits(3)
    assert sub.credits_used == 28


def test_use_credits_must_be_positive():
    with pytest.raises(DomainError):
        make_sub().use_credits(0)


def test_use_credits_requires_active():
    sub = make_sub(status="pending")
    with pytest.raises(InsufficientCredits):
        sub.use_credits(1)


# ── Skips ──────────────────────────────────────────────────

def test_every_second_skip_extends_by_one_day():
    sub = make_sub()
    original_end = timezone.to_local(sub.end_date)

    assert sub.skip_meal() is False
    assert sub.skip_credit_available == 5
    assert timezone.to_local(sub.end_date) == original_end

    assert sub.skip_meal() is True
    assert sub.skip_credit_available == 4
    assert timezone.to_local(sub.end_date) == original_end + timedelta(days=1)

    assert sub.skip_meal() is False
    assert sub.skip_credit_available == 3
    assert sub.skip_credit_used == 3
    assert timezone.to_local(sub.end_date) == original_end + timedelta(days=1)


def test_skip_without_credits_rejected():
    sub = make_sub(skip_credit_available=0)
    with pytest.raises(NoSkipCredits):
        sub.skip_meal()


def test_daily_meal_count():
    assert make_sub().get_daily_meal_count() == 1
    both = make_sub(meal_timing={"lunch": {"enabled": True}, "dinner": {"enabled": True}})
    assert both.get_daily_meal_count() == 2
    assert make_sub(meal_timing={}).get_daily_meal_count() == 0


# ── Vendor ─────────────────────────────────────────────────

def test_first_assignment_has_no_history():
    sub = make_sub()
    vendor = uuid.uuid4()
    sub.assign_vendor(vendor, "home_chef", uuid.uuid4())
    assert sub.current_vendor_id == vendor
    assert sub.is_vendor_assigned
    assert sub.vendors_assigned_history == []


def test_vendor_switch_is_one_time():
    sub = make_sub()
    first, second = uuid.uuid4(), uuid.uuid4()
    sub.assign_vendor(first, "home_chef", None)
    assert sub.can_switch_vendor()

    sub.use_vendor_switch()
    sub.assign_vendor(second, "food_vendor", None)

    assert sub.current_vendor_id == second
    assert sub.vendors_assigned_history[-1]["vendor_id"] == str(first)
    assert sub.vendors_assigned_history[-1]["reason"] == "vendor_switch"
    assert not sub.can_switch_vendor()
    with pytest.raises(VendorSwitchNotAllowed):
        sub.use_vendor_switch()


def test_admin_reassignment_recorded_without_switch():
    sub = make_sub()
    sub.assign_vendor(uuid.uuid4(), "home_chef", None)
    sub.assign_vendor(uuid.uuid4(), "home_chef", None)
    assert sub.vendors_assigned_history[-1]["reason"] == "admin_reassignment"
    assert not sub.vendor_switch_used


def test_switch_needs_an_assigned_vendor():
    sub = make_sub()
    assert not sub.can_switch_vendor()
    with pytest.raises(VendorSwitchNotAllowed):
        sub.use_vendor_switch()


# ── Analytics ──────────────────────────────────────────────

def test_analytics_figures():
    now = timezone.now()
    sub = make_sub(credits_used=15, end_date=now + timedelta(days=4, hours=2))
    sub.skip_meal(now)
    data = subscription_analytics(sub, now)
    assert data["remaining_days"] == 5
    assert data["remaining_credits"] == 15
    assert data["total_meals_expected"] == 5
    assert data["credits_used_percentage"] == 50.0
    assert data["skip_credits_used_percentage"] == round(1 / 6 * 100, 2)


def test_analytics_clamps_lapsed_days():
    sub = make_sub(end_date=timezone.now() - timedelta(days=3))
    assert subscription_analytics(sub)["remaining_days"] == 0

"""Tests for purchase pricing and plan price helpers."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from models.subscription_plan import SubscriptionPlan
from services.pricing import calculate_purchase_quote


def make_plan(**overrides) -> SubscriptionPlan:
    fields = dict(
        plan_name="Weekly Thali",
        duration="weekly",
        meals_per_plan=14,
        original_price=1400,
        discounted_price=1190,
        category="universal",
    )
    fields.update(overrides)
    return SubscriptionPlan(**fields)


def test_plan_price_only():
    quote = calculate_purchase_quote(1190)
    assert quote.original_amount == 1190
    assert quote.final_amount == 1190
    assert quote.delivery_fee == 0


def test_delivery_fee_added():
    quote = calculate_purchase_quote(1190, delivery_fee=35)
    assert quote.original_amount == 1225
    assert quote.final_amount == 1225


def test_free_delivery_waives_fee():
    quote = calculate_purchase_quote(1190, delivery_fee=35, free_delivery=True)
    assert quote.delivery_fee == 0
    assert quote.final_amount == 1190


def test_promo_discount_applied():
    """final = original - discount."""
    quote = calculate_purchase_quote(1000, promo_discount=150, delivery_fee=20)
    assert quote.original_amount == 1020
    assert quote.promo_discount == 150
    assert quote.final_amount == 870
    assert quote.final_amount == quote.original_amount - quote.promo_discount


def test_discount_never_exceeds_plan_price():
    quote = calculate_purchase_quote(500, promo_discount=800, delivery_fee=40)
    assert quote.promo_discount == 500
    assert quote.final_amount == 40


def test_negative_discount_ignored():
    assert calculate_purchase_quote(500, promo_discount=-50).final_amount == 500


def test_plan_duration_days():
    assert make_plan(duration="daily").duration_days == 1
    assert make_plan(duration="weekly").duration_days == 7
    assert make_plan(duration="monthly").duration_days == 30
    assert make_plan(duration="custom", custom_duration_days=10).duration_days == 10


def test_plan_discount_helpers():
    plan = make_plan()
    assert plan.calculate_credits() == 14
    assert plan.get_discount_amount() == 210
    assert plan.get_discount_percentage() == 15.0


def test_plan_meal_window():
    plan = make_plan(
        is_lunch_available=True, lunch_window_start="11:00", lunch_window_end="15:00",
        is_dinner_available=False, dinner_window_start="18:00", dinner_window_end="22:00",
    )
    assert plan.meal_window("lunch") == (True, "11:00", "15:00")
    assert plan.meal_window("dinner")[0] is False

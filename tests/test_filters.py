"""Tests for the admin subscription filter builder."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import uuid
from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy.dialects import postgresql

from schemas import AdminSubscriptionQuery
from services.filters import (
    Predicate, InvalidFilter, build_subscription_filter, validate_predicates,
    needs_plan_join, needs_user_join, to_clauses, sort_clause,
)


def compile_clause(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


def test_empty_query_has_no_predicates():
    assert build_subscription_filter(AdminSubscriptionQuery()) == []


def test_status_groups_expand():
    newer = build_subscription_filter(AdminSubscriptionQuery(status="newer"))
    assert newer == [Predicate("status", "in", ("pending", "active"))]
    older = build_subscription_filter(AdminSubscriptionQuery(status="older"))
    assert older[0].value == ("completed", "cancelled", "expired")
    single = build_subscription_filter(AdminSubscriptionQuery(status="active"))
    assert single == [Predicate("status", "eq", "active")]


def test_vendor_assignment_filter():
    assigned = build_subscription_filter(AdminSubscriptionQuery(vendor_assigned="assigned"))
    unassigned = build_subscription_filter(AdminSubscriptionQuery(vendor_assigned="unassigned"))
    assert assigned == [Predicate("is_vendor_assigned", "eq", True)]
    assert unassigned == [Predicate("is_vendor_assigned", "eq", False)]


def test_unknown_vendor_assignment_value_fails_validation():
    with pytest.raises(ValidationError):
        AdminSubscriptionQuery(vendor_assigned="maybe")


def test_date_and_price_ranges():
    predicates = build_subscription_filter(AdminSubscriptionQuery(
        date_from=date(2024, 1, 1), date_to=date(2024, 1, 31), price_min=100, price_max=5000,
    ))
    ops = {(p.field, p.op) for p in predicates}
    assert ops == {
        ("created_at", "gte"), ("created_at", "lte"),
        ("final_price", "gte"), ("final_price", "lte"),
    }
    end = next(p.value for p in predicates if p.field == "created_at" and p.op == "lte")
    assert (end.hour, end.minute, end.second) == (23, 59, 59)


def test_plan_category_needs_join():
    predicates = build_subscription_filter(AdminSubscriptionQuery(category="home_chef_specific"))
    assert needs_plan_join(predicates)
    assert not needs_user_join(predicates)
    assert "subscription_plans.category" in compile_clause(to_clauses(predicates)[0])


def test_search_spans_user_plan_and_address():
    predicates = build_subscription_filter(AdminSubscriptionQuery(search="  andheri "))
    assert predicates == [Predicate("search", "ilike", "andheri")]
    assert needs_plan_join(predicates) and needs_user_join(predicates)
    sql = compile_clause(to_clauses(predicates)[0])
    assert "users.email" in sql
    assert "subscription_plans.plan_name" in sql
    assert "user_subscriptions.delivery_address" in sql


def test_plan_and_vendor_ids():
    plan_id, vendor_id = uuid.uuid4(), uuid.uuid4()
    predicates = build_subscription_filter(AdminSubscriptionQuery(plan_id=plan_id, vendor_id=vendor_id))
    assert Predicate("plan_id", "eq", plan_id) in predicates
    assert Predicate("current_vendor_id", "eq", vendor_id) in predicates


def test_unknown_field_rejected():
    with pytest.raises(InvalidFilter):
        validate_predicates([Predicate("user_id", "eq", "x")])


def test_operator_not_allowed_for_field():
    with pytest.raises(InvalidFilter):
        to_clauses([Predicate("status", "gte", "active")])


def test_in_requires_sequence():
    with pytest.raises(InvalidFilter):
        validate_predicates([Predicate("status", "in", "active")])


def test_sort_clause():
    assert "DESC" in compile_clause(sort_clause("created_at", "desc"))
    assert "ASC" in compile_clause(sort_clause("final_price", "asc"))
    with pytest.raises(InvalidFilter):
        sort_clause("user_id", "asc")

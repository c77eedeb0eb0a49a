"""Tests for vendor-assignment requests and queue ordering."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from errors import DomainError, InvalidStateTransition, NotFound
from models.subscription_plan import SubscriptionPlan, vendor_types_for_category
from models.user_subscription import UserSubscription
from models.vendor_assignment_request import VendorAssignmentRequest, PRIORITY_WEIGHTS
from models.vendor_profile import VendorProfile
from routers.subscriptions import request_vendor_switch
from routers.vendors import customer_detail
from schemas import VendorSwitchBody
from services import timezone
from services.subscriptions import get_user_subscription, get_vendor_customer, vendor_customer_statement
from services.vendor_assignments import (
    apply_vendor_assignment, get_request, pending_queue_statement, requested_vendor_type,
    requests_statement,
)


def make_request(request_type="initial_assignment", **overrides) -> VendorAssignmentRequest:
    fields = dict(
        user_subscription_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        request_type=request_type,
        reason="initial_purchase" if request_type == "initial_assignment" else "vendor_switch_request",
        requested_vendor_type="home_chef",
    )
    fields.update(overrides)
    return VendorAssignmentRequest(**fields)


def make_sub(category="home_chef_specific") -> UserSubscription:
    now = timezone.now()
    sub = UserSubscription(
        user_id=uuid.uuid4(),
        plan_id=uuid.uuid4(),
        status="active",
        credits_granted=30,
        start_date=now,
        end_date=now + timedelta(days=30),
        original_price=3000,
        final_price=3000,
    )
    sub.plan = SubscriptionPlan(
        plan_name="Monthly Veg", duration="monthly", meals_per_plan=30,
        original_price=3500, discounted_price=3000, category=category,
    )
    return sub


def make_vendor(vendor_type="home_chef", **overrides) -> VendorProfile:
    fields = dict(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        business_name="Asha's Kitchen",
        vendor_type=vendor_type,
        is_verified=True,
        is_available=True,
        rating=4.5,
        daily_capacity=40,
    )
    fields.update(overrides)
    return VendorProfile(**fields)


# ── Model ──────────────────────────────────────────────────

def test_default_priorities():
    initial = make_request("initial_assignment")
    switch = make_request("vendor_switch")
    assert initial.status == "pending"
    assert initial.priority == "high"
    assert initial.priority_weight == PRIORITY_WEIGHTS["high"]
    assert switch.priority == "medium"
    assert switch.priority_weight == 2


def test_priority_weights_order_by_urgency():
    ordered = sorted(PRIORITY_WEIGHTS, key=PRIORITY_WEIGHTS.get, reverse=True)
    assert ordered == ["urgent", "high", "medium", "low"]


def test_update_priority_keeps_weight_in_sync():
    request = make_request()
    request.update_priority("urgent")
    assert request.priority == "urgent"
    assert request.priority_weight == 4
    with pytest.raises(ValueError):
        request.update_priority("critical")


def test_approve_and_reject_record_processing():
    admin, vendor = uuid.uuid4(), uuid.uuid4()
    approved = make_request()
    approved.approve(admin, vendor, "nearest kitchen")
    assert approved.status == "approved"
    assert approved.processed_by == admin
    assert approved.new_vendor_id == vendor
    assert approved.is_processed()

    rejected = make_request("vendor_switch")
    rejected.reject(admin, "no other vendor in zone")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "no other vendor in zone"
    assert rejected.is_vendor_switch()


def test_complete_after_approval():
    request = make_request()
    request.approve(uuid.uuid4(), uuid.uuid4())
    request.complete()
    assert request.status == "completed"


# ── Queue ──────────────────────────────────────────────────

def test_queue_sorted_by_weight_then_age():
    sql = str(pending_queue_statement().compile(dialect=postgresql.dialect()))
    assert "ORDER BY vendor_assignment_requests.priority_weight DESC, vendor_assignment_requests.requested_at ASC" in sql


def test_queue_filters():
    sql = str(pending_queue_statement("vendor_switch", min_priority="high").compile(dialect=postgresql.dialect()))
    assert "vendor_assignment_requests.request_type" in sql
    assert "vendor_assignment_requests.priority_weight >=" in sql


def test_all_requests_listing_filters_any_status():
    start = timezone.start_of_day()
    sql = str(requests_statement(status="completed", user_id=uuid.uuid4(), start=start).compile(dialect=postgresql.dialect()))
    assert "vendor_assignment_requests.status =" in sql
    assert "vendor_assignment_requests.user_id =" in sql
    assert "vendor_assignment_requests.requested_at >=" in sql
    assert "ORDER BY vendor_assignment_requests.requested_at DESC" in sql


def test_all_requests_listing_unfiltered():
    sql = str(requests_statement().compile(dialect=postgresql.dialect()))
    assert "WHERE" not in sql


def test_requested_vendor_type_for_category():
    assert requested_vendor_type("home_chef_specific") == "home_chef"
    assert requested_vendor_type("food_vendor_specific") == "food_vendor"
    assert requested_vendor_type("universal") == "any"
    assert requested_vendor_type("both_options") == "any"
    assert vendor_types_for_category("both_options") == ("home_chef", "food_vendor")


# ── Assignment ─────────────────────────────────────────────

def test_initial_assignment_sets_vendor_and_approves():
    request, sub, vendor = make_request(), make_sub(), make_vendor()
    admin = uuid.uuid4()
    apply_vendor_assignment(request, sub, vendor, admin, "closest")

    assert sub.current_vendor_id == vendor.id
    assert sub.current_vendor_type == "home_chef"
    assert not sub.vendor_switch_used
    assert request.status == "approved"
    assert request.new_vendor_id == vendor.id


def test_switch_assignment_consumes_switch():
    sub = make_sub()
    old = make_vendor()
    apply_vendor_assignment(make_request(), sub, old, uuid.uuid4())

    new = make_vendor()
    apply_vendor_assignment(make_request("vendor_switch"), sub, new, uuid.uuid4())

    assert sub.current_vendor_id == new.id
    assert sub.vendor_switch_used
    assert sub.vendors_assigned_history[-1]["reason"] == "vendor_switch"

    with pytest.raises(DomainError):
        apply_vendor_assignment(make_request("vendor_switch"), sub, make_vendor(), uuid.uuid4())


def test_processed_request_cannot_be_assigned_again():
    request, sub = make_request(), make_sub()
    apply_vendor_assignment(request, sub, make_vendor(), uuid.uuid4())
    with pytest.raises(InvalidStateTransition):
        apply_vendor_assignment(request, sub, make_vendor(), uuid.uuid4())


def test_vendor_type_must_match_plan():
    with pytest.raises(DomainError):
        apply_vendor_assignment(make_request(), make_sub("home_chef_specific"), make_vendor("food_vendor"), uuid.uuid4())


def test_unavailable_vendor_rejected():
    with pytest.raises(DomainError):
        apply_vendor_assignment(make_request(), make_sub(), make_vendor(is_available=False), uuid.uuid4())


# ── Row locks ──────────────────────────────────────────────

class CapturingSession:
    def __init__(self, row):
        self.row = row
        self.statements = []

    async def execute(self, statement):
        self.statements.append(statement)
        result = MagicMock()
        result.scalar_one_or_none.return_value = self.row
        return result


def locks_and_refreshes(statement) -> bool:
    sql = str(statement.compile(dialect=postgresql.dialect()))
    return "FOR UPDATE" in sql and statement.get_execution_options().get("populate_existing") is True


@pytest.mark.asyncio
async def test_locked_subscription_load_refreshes_session_state():
    sub = make_sub()
    db = CapturingSession(sub)
    assert await get_user_subscription(db, uuid.uuid4(), for_update=True) is sub
    assert locks_and_refreshes(db.statements[0])

    await get_user_subscription(db, uuid.uuid4())
    assert not locks_and_refreshes(db.statements[1])


@pytest.mark.asyncio
async def test_locked_request_load_refreshes_session_state():
    request = make_request()
    db = CapturingSession(request)
    assert await get_request(db, uuid.uuid4(), for_update=True) is request
    assert locks_and_refreshes(db.statements[0])


@pytest.mark.asyncio
async def test_switch_request_locks_subscription_first():
    sub = make_sub()
    apply_vendor_assignment(make_request(), sub, make_vendor(), uuid.uuid4())
    user = MagicMock(id=sub.user_id)
    db = MagicMock(commit=AsyncMock())
    loader = AsyncMock(return_value=sub)
    created = MagicMock(id=uuid.uuid4(), status="pending", priority="medium")

    with patch("routers.subscriptions.get_user_subscription", loader), \
         patch("routers.subscriptions.create_switch_request", AsyncMock(return_value=created)) as factory:
        result = await request_vendor_switch(uuid.uuid4(), VendorSwitchBody(reason="late"), db, user)

    assert loader.await_args.kwargs["for_update"] is True
    factory.assert_awaited_once_with(db, sub, sub.plan, "late")
    assert result["priority"] == "medium"


# ── Vendor customer view ───────────────────────────────────

def test_customer_lookup_scoped_to_vendor():
    sql = str(vendor_customer_statement(uuid.uuid4(), uuid.uuid4()).compile(dialect=postgresql.dialect()))
    assert "user_subscriptions.current_vendor_id =" in sql
    assert "user_subscriptions.id =" in sql


@pytest.mark.asyncio
async def test_other_vendors_customer_reads_as_not_found():
    result = MagicMock()
    result.first.return_value = None
    db = MagicMock(execute=AsyncMock(return_value=result))
    with pytest.raises(NotFound):
        await get_vendor_customer(db, uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_vendor_customer_detail():
    sub = make_sub()
    customer = MagicMock(phone="9800000000", email="asha@example.com")
    customer.name = "Asha"
    vendor = make_vendor()
    with patch("routers.vendors.get_vendor_customer", AsyncMock(return_value=(sub, customer))) as lookup:
        body = await customer_detail(sub.id, MagicMock(), vendor)
    lookup.assert_awaited_once()
    assert lookup.await_args.args[1] == vendor.id
    assert body["customer"]["name"] == "Asha"
    assert body["analytics"]["remaining_credits"] == sub.get_remaining_credits()

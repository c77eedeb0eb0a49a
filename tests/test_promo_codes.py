"""Tests for promo code rules (mocked DB session)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import string
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from errors import AlreadyExists, DomainError, NotFound, PromoCodeInvalid
from models.promo_code import PromoCode
from models.subscription_plan import SubscriptionPlan
from routers.promo_codes import validate_promo
from schemas import DiscountType, PlanCategory, PromoValidateRequest
from services import timezone
from services.promo_codes import (
    bulk_create_promo_codes, create_promo_code, delete_promo_code, generate_code,
    promo_code_statement, toggle_promo_code, update_promo_code, usage_summary, use_promo_code,
)


def make_promo(**overrides) -> PromoCode:
    now = timezone.now()
    fields = dict(
        id=uuid.uuid4(),
        code="WELCOME20",
        description="20% off the first plan",
        discount_type="percentage",
        discount_value=20,
        min_order_value=500,
        max_discount=300,
        usage_limit=100,
        used_count=0,
        user_usage_limit=1,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
        applicable_plan_ids=[],
        applicable_categories=[],
        is_active=True,
    )
    fields.update(overrides)
    return PromoCode(**fields)


def make_plan(category="universal") -> SubscriptionPlan:
    return SubscriptionPlan(
        id=uuid.uuid4(), plan_name="Monthly", duration="monthly", meals_per_plan=30,
        original_price=3500, discounted_price=3000, category=category,
    )


# ── Model ──────────────────────────────────────────────────

def test_percentage_discount():
    assert make_promo(max_discount=None).calculate_discount(1000) == (200.0, None)


def test_percentage_discount_capped():
    assert make_promo().calculate_discount(3000) == (300.0, None)


def test_flat_discount_capped_by_order_value():
    promo = make_promo(discount_type="flat", discount_value=700, min_order_value=0)
    assert promo.calculate_discount(500) == (500.0, None)


def test_minimum_order_value():
    discount, error = make_promo().calculate_discount(400)
    assert discount == 0.0
    assert error == "Minimum order value of ₹500 required"


def test_expired_or_exhausted_code_invalid():
    now = timezone.now()
    expired = make_promo(valid_until=now - timedelta(hours=1))
    assert not expired.is_valid()
    assert expired.calculate_discount(1000) == (0.0, "Promo code is not valid")

    exhausted = make_promo(used_count=100)
    assert not exhausted.is_valid()


def test_applicability():
    plan_id = uuid.uuid4()
    assert make_promo().is_applicable_to_plan(plan_id, "universal")
    assert make_promo(applicable_plan_ids=[plan_id]).is_applicable_to_plan(plan_id, "universal")
    assert not make_promo(applicable_plan_ids=[uuid.uuid4()]).is_applicable_to_plan(plan_id, "universal")
    assert not make_promo(applicable_categories=["home_chef_specific"]).is_applicable_to_plan(plan_id, "universal")


def test_increment_usage():
    promo = make_promo()
    promo.increment_usage()
    assert promo.used_count == 1


# ── Service ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_validate_and_apply_success():
    promo, plan = make_promo(), make_plan()
    with patch("services.promo_codes.find_valid_promo_code", AsyncMock(return_value=promo)), \
         patch("services.promo_codes.get_user_promo_usage", AsyncMock(return_value=0)):
        from services.promo_codes import validate_and_apply_promo_code
        result = await validate_and_apply_promo_code(AsyncMock(), "welcome20", uuid.uuid4(), 1000, plan)
    assert result.discount_amount == 200.0
    assert result.final_amount == 800.0


@pytest.mark.asyncio
async def test_unknown_code_rejected():
    with patch("services.promo_codes.find_valid_promo_code", AsyncMock(return_value=None)):
        from services.promo_codes import validate_and_apply_promo_code
        with pytest.raises(PromoCodeInvalid, match="Invalid or expired promo code"):
            await validate_and_apply_promo_code(AsyncMock(), "NOPE", uuid.uuid4(), 1000, make_plan())


@pytest.mark.asyncio
async def test_per_user_limit_enforced():
    with patch("services.promo_codes.find_valid_promo_code", AsyncMock(return_value=make_promo())), \
         patch("services.promo_codes.get_user_promo_usage", AsyncMock(return_value=1)):
        from services.promo_codes import validate_and_apply_promo_code
        with pytest.raises(PromoCodeInvalid, match="usage limit"):
            await validate_and_apply_promo_code(AsyncMock(), "WELCOME20", uuid.uuid4(), 1000, make_plan())


@pytest.mark.asyncio
async def test_category_restriction_enforced():
    promo = make_promo(applicable_categories=["home_chef_specific"])
    with patch("services.promo_codes.find_valid_promo_code", AsyncMock(return_value=promo)):
        from services.promo_codes import validate_and_apply_promo_code
        with pytest.raises(PromoCodeInvalid, match="not applicable"):
            await validate_and_apply_promo_code(AsyncMock(), "WELCOME20", uuid.uuid4(), 1000, make_plan())


# ── Admin ──────────────────────────────────────────────────

def admin_session(existing=None, promo=None):
    """Session whose code lookups return `existing` and whose get() returns `promo`."""
    result = MagicMock()
    result.first.return_value = existing
    result.scalars.return_value.all.return_value = []
    db = MagicMock()
    db.execute = AsyncMock(return_value=result)
    db.get = AsyncMock(return_value=promo)
    db.commit = AsyncMock()
    db.delete = AsyncMock()
    return db


def promo_fields(**overrides) -> dict:
    now = timezone.now()
    fields = dict(
        description="Monsoon offer",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=15,
        min_order_value=0,
        max_discount=None,
        usage_limit=50,
        user_usage_limit=1,
        valid_from=now,
        valid_until=now + timedelta(days=10),
        applicable_plan_ids=[],
        applicable_categories=[PlanCategory.HOME_CHEF_SPECIFIC],
        is_active=True,
    )
    fields.update(overrides)
    return fields


def test_generated_codes_are_uppercase_alphanumeric():
    code = generate_code()
    assert len(code) == 8
    assert all(c in string.ascii_uppercase + string.digits for c in code)


def test_usable_state_filter():
    sql = str(promo_code_statement(state="usable").compile(dialect=postgresql.dialect()))
    assert "promo_codes.used_count < promo_codes.usage_limit" in sql
    assert "promo_codes.is_active" in sql


def test_exhausted_state_filter():
    sql = str(promo_code_statement(state="exhausted").compile(dialect=postgresql.dialect()))
    assert "promo_codes.used_count >= promo_codes.usage_limit" in sql


def test_usage_summary():
    now = timezone.now()
    summary = usage_summary(make_promo(used_count=25, valid_until=now + timedelta(days=3)), now)
    assert summary["remaining_uses"] == 75
    assert summary["usage_percentage"] == 25.0
    assert summary["is_valid"]
    assert summary["is_expiring"]
    assert not usage_summary(make_promo(valid_until=now + timedelta(days=30)), now)["is_expiring"]


@pytest.mark.asyncio
async def test_create_normalises_code():
    db = admin_session()
    promo = await create_promo_code(db, promo_fields(code="monsoon15"))
    assert promo.code == "MONSOON15"
    assert promo.discount_type == "percentage"
    assert promo.applicable_categories == ["home_chef_specific"]
    assert promo.used_count == 0
    db.add.assert_called_once_with(promo)
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_create_duplicate_code_rejected():
    db = admin_session(existing=(uuid.uuid4(),))
    with pytest.raises(AlreadyExists):
        await create_promo_code(db, promo_fields(code="MONSOON15"))
    db.add.assert_not_called()


@pytest.mark.asyncio
async def test_bulk_create_generates_distinct_codes():
    db = admin_session()
    promos = await bulk_create_promo_codes(db, promo_fields(), 5)
    assert len({p.code for p in promos}) == 5
    db.add_all.assert_called_once_with(promos)


@pytest.mark.asyncio
async def test_used_code_cannot_be_deleted():
    db = admin_session(promo=make_promo(used_count=3))
    with pytest.raises(DomainError, match="deactivate it instead"):
        await delete_promo_code(db, uuid.uuid4())
    db.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_unused_code_deleted():
    promo = make_promo()
    db = admin_session(promo=promo)
    await delete_promo_code(db, promo.id)
    db.delete.assert_awaited_once_with(promo)


@pytest.mark.asyncio
async def test_toggle_status():
    promo = make_promo(is_active=True)
    db = admin_session(promo=promo)
    assert (await toggle_promo_code(db, promo.id)).is_active is False
    assert (await toggle_promo_code(db, promo.id)).is_active is True


@pytest.mark.asyncio
async def test_update_keeps_validity_window_ordered():
    promo = make_promo()
    db = admin_session(promo=promo)
    with pytest.raises(DomainError, match="valid_until must be after valid_from"):
        await update_promo_code(db, promo.id, {"valid_until": promo.valid_from - timedelta(days=1)})
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_usage_limit_below_used_count_rejected():
    promo = make_promo(used_count=10)
    db = admin_session(promo=promo)
    with pytest.raises(DomainError, match="usage_limit"):
        await update_promo_code(db, promo.id, {"usage_limit": 5})


@pytest.mark.asyncio
async def test_missing_promo_code():
    with pytest.raises(NotFound):
        await toggle_promo_code(admin_session(promo=None), uuid.uuid4())


@pytest.mark.asyncio
async def test_validate_endpoint_previews_discount():
    plan = make_plan()
    plan.is_active = True
    db = MagicMock()
    db.get = AsyncMock(return_value=plan)
    user = MagicMock(id=uuid.uuid4())
    with patch("services.promo_codes.find_valid_promo_code", AsyncMock(return_value=make_promo())), \
         patch("services.promo_codes.get_user_promo_usage", AsyncMock(return_value=0)):
        body = await validate_promo(PromoValidateRequest(code="welcome20", plan_id=plan.id), db, user)
    assert body["original_amount"] == 3000.0
    assert body["discount_amount"] == 300.0
    assert body["final_amount"] == 2700.0


@pytest.mark.asyncio
async def test_redemption_reloads_locked_row():
    promo = make_promo(used_count=4)
    result = MagicMock()
    result.scalar_one_or_none.return_value = promo
    db = MagicMock(execute=AsyncMock(return_value=result))
    await use_promo_code(db, promo.id)

    statement = db.execute.await_args.args[0]
    assert "FOR UPDATE" in str(statement.compile(dialect=postgresql.dialect()))
    assert statement.get_execution_options()["populate_existing"] is True
    assert promo.used_count == 5

"""Promo code validation, usage tracking and admin management."""

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import AlreadyExists, DomainError, NotFound, PromoCodeInvalid
from models.promo_code import PromoCode
from models.subscription_plan import SubscriptionPlan
from models.user_subscription import UserSubscription
from services import timezone

logger = logging.getLogger(__name__)


@dataclass
class PromoResult:
    promo_code: PromoCode
    discount_amount: float
    final_amount: float


async def find_valid_promo_code(db: AsyncSession, code: str) -> PromoCode | None:
    now = timezone.now()
    result = await db.execute(
        select(PromoCode).where(
            PromoCode.code == code.strip().upper(),
            PromoCode.is_active == True,
            PromoCode.valid_from <= now,
            PromoCode.valid_until >= now,
        )
    )
    return result.scalar_one_or_none()


async def get_user_promo_usage(db: AsyncSession, user_id: uuid.UUID, promo_code_id: uuid.UUID) -> int:
    """Subscriptions (not cancelled) this user bought with the code."""
    return (await db.execute(
        select(func.count(UserSubscription.id)).where(
            UserSubscription.user_id == user_id,
            UserSubscription.promo_code_id == promo_code_id,
            UserSubscription.status != "cancelled",
        )
    )).scalar() or 0


async def validate_and_apply_promo_code(
    db: AsyncSession,
    code: str,
    user_id: uuid.UUID,
    order_value: float,
    plan: SubscriptionPlan,
) -> PromoResult:
    """Raises PromoCodeInvalid with a customer-facing message."""
    promo = await find_valid_promo_code(db, code)
    if not promo:
        raise PromoCodeInvalid("Invalid or expired promo code")

    if not promo.is_applicable_to_plan(plan.id, plan.category):
        raise PromoCodeInvalid("Promo code not applicable to this subscription")

    usage = await get_user_promo_usage(db, user_id, promo.id)
    if usage >= promo.user_usage_limit:
        raise PromoCodeInvalid("Promo code usage limit exceeded for this user")

    discount, error = promo.calculate_discount(order_value)
    if error:
        raise PromoCodeInvalid(error)

    logger.info("Promo %s applied for user %s: -%.2f", promo.code, user_id, discount)
    return PromoResult(
        promo_code=promo,
        discount_amount=discount,
        final_amount=round(order_value - discount, 2),
    )


async def use_promo_code(db: AsyncSession, promo_code_id: uuid.UUID):
    """Count one redemption. Row lock keeps concurrent purchases from overshooting usage_limit."""
    promo = (await db.execute(
        select(PromoCode).where(PromoCode.id == promo_code_id).with_for_update()
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if promo is None:
        logger.warning("Promo code %s vanished before redemption", promo_code_id)
        return
    promo.increment_usage()


# ── Admin ──────────────────────────────────────────────────

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_code(length: int = 8) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def state_clauses(state: str, now: datetime) -> list:
    """usable: active, in its window, uses left. expired: past valid_until. exhausted: no uses left."""
    if state == "usable":
        return [
            PromoCode.is_active == True,
            PromoCode.valid_from <= now,
            PromoCode.valid_until >= now,
            PromoCode.used_count < PromoCode.usage_limit,
        ]
    if state == "expired":
        return [PromoCode.valid_until < now]
    if state == "exhausted":
        return [PromoCode.used_count >= PromoCode.usage_limit]
    raise ValueError(f"Unknown promo state: {state}")


def promo_code_statement(
    is_active: bool | None = None,
    discount_type: str | None = None,
    state: str | None = None,
    search: str | None = None,
    now: datetime | None = None,
):
    query = select(PromoCode)
    if is_active is not None:
        query = query.where(PromoCode.is_active == is_active)
    if discount_type:
        query = query.where(PromoCode.discount_type == discount_type)
    if state:
        query = query.where(*state_clauses(state, now or timezone.now()))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(PromoCode.code.ilike(pattern), PromoCode.description.ilike(pattern)))
    return query.order_by(PromoCode.created_at.desc())


async def get_promo_code(db: AsyncSession, promo_id: uuid.UUID) -> PromoCode:
    promo = await db.get(PromoCode, promo_id)
    if not promo:
        raise NotFound("Promo code not found")
    return promo


async def _check_plans_exist(db: AsyncSession, plan_ids: list[uuid.UUID]):
    if not plan_ids:
        return
    found = set((await db.execute(
        select(SubscriptionPlan.id).where(SubscriptionPlan.id.in_(plan_ids))
    )).scalars().all())
    missing = [str(p) for p in plan_ids if p not in found]
    if missing:
        raise DomainError("Some plan ids are invalid", data={"invalid_plan_ids": missing})


def _normalise(fields: dict) -> dict:
    fields = dict(fields)
    if fields.get("code"):
        fields["code"] = fields["code"].strip().upper()
    for key in ("valid_from", "valid_until"):
        if fields.get(key) is not None:
            fields[key] = timezone.to_local(fields[key])
    if fields.get("applicable_categories") is not None:
        fields["applicable_categories"] = [str(getattr(c, "value", c)) for c in fields["applicable_categories"]]
    if fields.get("discount_type") is not None:
        fields["discount_type"] = str(getattr(fields["discount_type"], "value", fields["discount_type"]))
    return fields


async def _code_taken(db: AsyncSession, code: str, exclude_id: uuid.UUID | None = None) -> bool:
    query = select(PromoCode.id).where(PromoCode.code == code)
    if exclude_id:
        query = query.where(PromoCode.id != exclude_id)
    return (await db.execute(query)).first() is not None


async def create_promo_code(db: AsyncSession, fields: dict) -> PromoCode:
    fields = _normalise(fields)
    if await _code_taken(db, fields["code"]):
        raise AlreadyExists(f"Promo code {fields['code']} already exists")
    await _check_plans_exist(db, fields.get("applicable_plan_ids") or [])
    promo = PromoCode(used_count=0, **fields)
    db.add(promo)
    await db.commit()
    logger.info("Promo code %s created", promo.code)
    return promo


async def bulk_create_promo_codes(db: AsyncSession, fields: dict, count: int) -> list[PromoCode]:
    """count codes sharing the same rules, each with a fresh random code."""
    fields = _normalise(fields)
    await _check_plans_exist(db, fields.get("applicable_plan_ids") or [])
    codes: set[str] = set()
    while len(codes) < count:
        candidates = {generate_code() for _ in range(count - len(codes))} - codes
        taken = set((await db.execute(
            select(PromoCode.code).where(PromoCode.code.in_(candidates))
        )).scalars().all())
        codes |= candidates - taken
    promos = [PromoCode(code=code, used_count=0, **fields) for code in sorted(codes)]
    db.add_all(promos)
    await db.commit()
    logger.info("Bulk created %d promo codes", len(promos))
    return promos


async def update_promo_code(db: AsyncSession, promo_id: uuid.UUID, changes: dict) -> PromoCode:
    promo = await get_promo_code(db, promo_id)
    changes = _normalise(changes)
    if changes.get("code") and await _code_taken(db, changes["code"], exclude_id=promo.id):
        raise AlreadyExists(f"Promo code {changes['code']} already exists")
    if changes.get("applicable_plan_ids"):
        await _check_plans_exist(db, changes["applicable_plan_ids"])

    valid_from = changes.get("valid_from") or promo.valid_from
    valid_until = changes.get("valid_until") or promo.valid_until
    if timezone.to_local(valid_until) <= timezone.to_local(valid_from):
        raise DomainError("valid_until must be after valid_from")
    discount_type = changes.get("discount_type") or promo.discount_type
    discount_value = changes.get("discount_value") or promo.discount_value
    if discount_type == "percentage" and float(discount_value) > 100:
        raise DomainError("percentage discount cannot exceed 100")
    if changes.get("usage_limit") is not None and changes["usage_limit"] < (promo.used_count or 0):
        raise DomainError("usage_limit cannot be below the current used count")

    for key, value in changes.items():
        setattr(promo, key, value)
    await db.commit()
    return promo


async def delete_promo_code(db: AsyncSession, promo_id: uuid.UUID):
    promo = await get_promo_code(db, promo_id)
    if promo.used_count:
        raise DomainError("Promo code has been used; deactivate it instead")
    await db.delete(promo)
    await db.commit()
    logger.info("Promo code %s deleted", promo.code)


async def toggle_promo_code(db: AsyncSession, promo_id: uuid.UUID) -> PromoCode:
    promo = await get_promo_code(db, promo_id)
    promo.is_active = not promo.is_active
    await db.commit()
    logger.info("Promo code %s %s", promo.code, "activated" if promo.is_active else "deactivated")
    return promo


def usage_summary(promo: PromoCode, now: datetime | None = None, expiring_days: int = 7) -> dict:
    now = now or timezone.now()
    used = promo.used_count or 0
    valid_until = timezone.to_local(promo.valid_until)
    return {
        "used_count": used,
        "usage_limit": promo.usage_limit,
        "remaining_uses": max(promo.usage_limit - used, 0),
        "usage_percentage": round(used / promo.usage_limit * 100, 2) if promo.usage_limit else 0.0,
        "is_valid": promo.is_valid(now),
        "is_expiring": now <= valid_until <= now + timedelta(days=expiring_days),
    }


async def promo_code_stats(db: AsyncSession, promo_id: uuid.UUID) -> dict:
    promo = await get_promo_code(db, promo_id)
    row = (await db.execute(
        select(
            func.count(UserSubscription.id).label("subscriptions"),
            func.count(func.distinct(UserSubscription.user_id)).label("users"),
            func.coalesce(func.sum(UserSubscription.discount_applied), 0).label("discount"),
            func.coalesce(func.sum(UserSubscription.final_price), 0).label("revenue"),
        ).where(
            UserSubscription.promo_code_id == promo.id,
            UserSubscription.status != "cancelled",
        )
    )).one()
    return {
        "promo_code": promo,
        "usage": usage_summary(promo),
        "subscriptions": row.subscriptions,
        "unique_users": row.users,
        "total_discount_given": float(row.discount),
        "revenue_generated": float(row.revenue),
    }


async def find_expiring_promo_codes(db: AsyncSession, days: int = 7) -> list[PromoCode]:
    now = timezone.now()
    result = await db.execute(
        select(PromoCode).where(
            PromoCode.is_active == True,
            PromoCode.valid_until >= now,
            PromoCode.valid_until <= now + timedelta(days=days),
        ).order_by(PromoCode.valid_until.asc())
    )
    return list(result.scalars().all())


async def deactivate_expired_promo_codes(db: AsyncSession, now: datetime | None = None) -> int:
    result = await db.execute(
        update(PromoCode)
        .where(PromoCode.is_active == True, PromoCode.valid_until < (now or timezone.now()))
        .values(is_active=False)
    )
    await db.commit()
    return result.rowcount or 0

"""Promo code lookup for customers and promo management for admins."""

import logging
import math
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from deps import get_current_user, require_admin
from errors import NotFound
from models.subscription_plan import SubscriptionPlan
from models.user import User
from schemas import (
    PromoCodeCreate, PromoCodeBulkCreate, PromoCodeUpdate, PromoCodeResponse,
    PromoCodeQuery, PromoValidateRequest,
)
from services.promo_codes import (
    validate_and_apply_promo_code, promo_code_statement, get_promo_code,
    create_promo_code, bulk_create_promo_codes, update_promo_code, delete_promo_code,
    toggle_promo_code, promo_code_stats, find_expiring_promo_codes, usage_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/validate")
async def validate_promo(
    data: PromoValidateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Preview the discount a code gives on a plan before checkout."""
    plan = await db.get(SubscriptionPlan, data.plan_id)
    if not plan or not plan.is_active:
        raise NotFound("Plan not found")
    order_value = data.order_value or float(plan.discounted_price)
    result = await validate_and_apply_promo_code(db, data.code, user.id, order_value, plan)
    return {
        "valid": True,
        "code": result.promo_code.code,
        "description": result.promo_code.description,
        "original_amount": order_value,
        "discount_amount": result.discount_amount,
        "final_amount": result.final_amount,
    }


# ── Admin ──────────────────────────────────────────────────

@admin_router.get("")
async def list_promo_codes(
    query: Annotated[PromoCodeQuery, Query()],
    db: AsyncSession = Depends(get_db),
):
    statement = promo_code_statement(
        is_active=query.is_active,
        discount_type=query.discount_type.value if query.discount_type else None,
        state=query.state,
        search=query.search,
    )
    total = (await db.execute(select(func.count()).select_from(statement.subquery()))).scalar() or 0
    result = await db.execute(statement.offset((query.page - 1) * query.limit).limit(query.limit))
    return {
        "items": [
            {**PromoCodeResponse.model_validate(p).model_dump(), "usage": usage_summary(p)}
            for p in result.scalars().all()
        ],
        "total": total,
        "page": query.page,
        "limit": query.limit,
        "pages": math.ceil(total / query.limit) if total else 0,
    }


@admin_router.post("", response_model=PromoCodeResponse, status_code=201)
async def create_promo(data: PromoCodeCreate, db: AsyncSession = Depends(get_db)):
    return await create_promo_code(db, data.model_dump())


@admin_router.get("/expiring", response_model=list[PromoCodeResponse])
async def expiring_promos(days: int = Query(7, ge=1, le=90), db: AsyncSession = Depends(get_db)):
    return await find_expiring_promo_codes(db, days)


@admin_router.post("/bulk-create", response_model=list[PromoCodeResponse], status_code=201)
async def bulk_create_promos(data: PromoCodeBulkCreate, db: AsyncSession = Depends(get_db)):
    return await bulk_create_promo_codes(db, data.model_dump(exclude={"count"}), data.count)


@admin_router.get("/{promo_id}", response_model=PromoCodeResponse)
async def get_promo(promo_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await get_promo_code(db, promo_id)


@admin_router.put("/{promo_id}", response_model=PromoCodeResponse)
async def update_promo(promo_id: uuid.UUID, data: PromoCodeUpdate, db: AsyncSession = Depends(get_db)):
    return await update_promo_code(db, promo_id, data.model_dump(exclude_unset=True))


@admin_router.delete("/{promo_id}")
async def delete_promo(promo_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await delete_promo_code(db, promo_id)
    return {"message": "Promo code deleted"}


@admin_router.patch("/{promo_id}/toggle-status", response_model=PromoCodeResponse)
async def toggle_promo(promo_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await toggle_promo_code(db, promo_id)


@admin_router.get("/{promo_id}/stats")
async def promo_stats(promo_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    stats = await promo_code_stats(db, promo_id)
    stats["promo_code"] = PromoCodeResponse.model_validate(stats["promo_code"])
    return stats

"""Vendor-facing views of the customers assigned to them."""

import math
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from deps import get_current_vendor
from models.user import User
from models.user_subscription import UserSubscription
from models.vendor_profile import VendorProfile
from schemas import SubscriptionStatus
from services.subscriptions import get_vendor_customer, subscription_analytics

router = APIRouter()


@router.get("/me/customers")
async def list_customers(
    status: SubscriptionStatus | None = SubscriptionStatus.ACTIVE,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    vendor: VendorProfile = Depends(get_current_vendor),
):
    """Subscriptions currently assigned to the calling vendor."""
    query = (
        select(UserSubscription, User)
        .join(User, UserSubscription.user_id == User.id)
        .where(UserSubscription.current_vendor_id == vendor.id)
    )
    if status:
        query = query.where(UserSubscription.status == status.value)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(User.name.ilike(pattern) | User.phone.ilike(pattern))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    rows = await db.execute(
        query.order_by(UserSubscription.start_date.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = []
    for sub, user in rows:
        items.append({
            "subscription_id": str(sub.id),
            "customer": {"name": user.name, "phone": user.phone},
            "status": sub.status,
            "plan": sub.plan_snapshot,
            "meal_timing": sub.meal_timing,
            "delivery_address": sub.delivery_address,
            "remaining_credits": sub.get_remaining_credits(),
            "start_date": sub.start_date,
            "end_date": sub.end_date,
            "assigned_at": sub.vendor_assigned_at,
        })
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


@router.get("/me/analytics")
async def customer_analytics(
    db: AsyncSession = Depends(get_db),
    vendor: VendorProfile = Depends(get_current_vendor),
):
    timing = UserSubscription.meal_timing
    row = (await db.execute(
        select(
            func.count(UserSubscription.id).label("total"),
            func.sum(case((UserSubscription.status == "active", 1), else_=0)).label("active"),
            func.coalesce(func.sum(UserSubscription.credits_used), 0).label("meals_delivered"),
            func.coalesce(func.sum(UserSubscription.final_price), 0).label("revenue"),
            func.sum(case((timing["lunch"]["enabled"].astext == "true", 1), else_=0)).label("lunch"),
            func.sum(case((timing["dinner"]["enabled"].astext == "true", 1), else_=0)).label("dinner"),
        ).where(UserSubscription.current_vendor_id == vendor.id)
    )).one()

    return {
        "vendor_id": str(vendor.id),
        "total_customers": row.total or 0,
        "active_customers": row.active or 0,
        "meals_delivered": int(row.meals_delivered or 0),
        "revenue": float(row.revenue or 0),
        "meal_timing": {"lunch": row.lunch or 0, "dinner": row.dinner or 0},
    }


@router.get("/me/customers/{subscription_id}")
async def customer_detail(
    subscription_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    vendor: VendorProfile = Depends(get_current_vendor),
):
    sub, user = await get_vendor_customer(db, vendor.id, subscription_id)
    return {
        "subscription_id": str(sub.id),
        "customer": {"name": user.name, "phone": user.phone, "email": user.email},
        "status": sub.status,
        "plan": sub.plan_snapshot,
        "meal_timing": sub.meal_timing,
        "delivery_address": sub.delivery_address,
        "start_date": sub.start_date,
        "end_date": sub.end_date,
        "assigned_at": sub.vendor_assigned_at,
        "analytics": subscription_analytics(sub),
    }

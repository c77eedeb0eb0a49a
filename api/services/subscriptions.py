"""UserSubscription queries, expiry sweep and derived analytics."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import select, update, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFound
from models.user import User
from models.user_subscription import UserSubscription
from services import timezone

logger = logging.getLogger(__name__)


async def get_user_subscription(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
    for_update: bool = False,
) -> UserSubscription:
    """Load one subscription (optionally scoped to its owner). Raises NotFound."""
    query = select(UserSubscription).where(UserSubscription.id == subscription_id)
    if user_id is not None:
        query = query.where(UserSubscription.user_id == user_id)
    if for_update:
        # Credit and skip updates are read-modify-write on one row; refresh
        # anything the session already loaded so the lock sees current values
        query = query.with_for_update().execution_options(populate_existing=True)
    sub = (await db.execute(query)).scalar_one_or_none()
    if not sub:
        raise NotFound("Subscription not found")
    return sub


async def find_active_by_user(db: AsyncSession, user_id: uuid.UUID) -> list[UserSubscription]:
    now = timezone.now()
    result = await db.execute(
        select(UserSubscription)
        .where(
            UserSubscription.user_id == user_id,
            UserSubscription.status == "active",
            UserSubscription.end_date >= now,
        )
        .order_by(UserSubscription.end_date.desc())
    )
    return list(result.scalars().all())


async def find_expiring(db: AsyncSession, days: int = 3) -> list[UserSubscription]:
    """Active, non-renewing subscriptions ending within `days`."""
    now = timezone.now()
    result = await db.execute(
        select(UserSubscription).where(
            UserSubscription.status == "active",
            UserSubscription.end_date >= now,
            UserSubscription.end_date <= timezone.add_days(days, now),
            UserSubscription.auto_renew == False,
        ).order_by(UserSubscription.end_date)
    )
    return list(result.scalars().all())


async def expire_overdue_subscriptions(db: AsyncSession, now: datetime | None = None) -> int:
    """Persist the expired state for active subscriptions past end_date. Returns rows changed."""
    now = now or timezone.now()
    result = await db.execute(
        update(UserSubscription)
        .where(UserSubscription.status == "active", UserSubscription.end_date < now)
        .values(status="expired", updated_at=now)
    )
    await db.commit()
    count = result.rowcount or 0
    logger.info("Expiry sweep marked %d subscriptions expired", count)
    return count


async def get_revenue_stats(db: AsyncSession, start: datetime, end: datetime) -> dict:
    row = (await db.execute(
        select(
            func.coalesce(func.sum(UserSubscription.final_price), 0).label("revenue"),
            func.count(UserSubscription.id).label("count"),
            func.avg(UserSubscription.final_price).label("avg_price"),
        ).where(
            UserSubscription.created_at >= start,
            UserSubscription.created_at <= end,
            UserSubscription.status != "cancelled",
        )
    )).one()
    return {
        "total_revenue": float(row.revenue or 0),
        "total_subscriptions": row.count or 0,
        "average_price": round(float(row.avg_price), 2) if row.avg_price is not None else 0.0,
    }


def summary_columns():
    """Aggregate columns shared by the admin and vendor summaries."""
    return (
        func.coalesce(func.sum(UserSubscription.final_price), 0).label("total_revenue"),
        func.count(UserSubscription.id).label("total_subscriptions"),
        func.sum(case((UserSubscription.status == "active", 1), else_=0)).label("active_subscriptions"),
        func.sum(case((UserSubscription.status == "pending", 1), else_=0)).label("pending_subscriptions"),
        func.sum(case((UserSubscription.is_vendor_assigned == True, 1), else_=0)).label("assigned_vendors"),
        func.sum(case((UserSubscription.is_vendor_assigned == False, 1), else_=0)).label("unassigned_vendors"),
        func.avg(UserSubscription.final_price).label("average_price"),
    )


def subscription_analytics(sub: UserSubscription, now: datetime | None = None) -> dict:
    """Usage figures shown on the subscription detail screen."""
    remaining_days = max(sub.get_days_remaining(now), 0)
    daily_meals = sub.get_daily_meal_count()
    granted = sub.credits_granted or 0
    skip_granted = sub.skip_credit_granted or 0
    skip_spent = skip_granted - (sub.skip_credit_available or 0)
    return {
        "remaining_days": remaining_days,
        "remaining_credits": sub.get_remaining_credits(),
        "daily_meal_count": daily_meals,
        "total_meals_expected": remaining_days * daily_meals,
        "credits_used_percentage": round((sub.credits_used or 0) / granted * 100, 2) if granted else 0.0,
        "skip_credits_used_percentage": round(skip_spent / skip_granted * 100, 2) if skip_granted else 0.0,
        "can_switch_vendor": sub.can_switch_vendor(now),
    }


def vendor_customer_statement(vendor_id: uuid.UUID, subscription_id: uuid.UUID):
    return (
        select(UserSubscription, User)
        .join(User, UserSubscription.user_id == User.id)
        .where(UserSubscription.id == subscription_id, UserSubscription.current_vendor_id == vendor_id)
    )


async def get_vendor_customer(
    db: AsyncSession, vendor_id: uuid.UUID, subscription_id: uuid.UUID,
) -> tuple[UserSubscription, User]:
    """A subscription the vendor currently serves; other vendors' customers read as not found."""
    row = (await db.execute(vendor_customer_statement(vendor_id, subscription_id))).first()
    if not row:
        raise NotFound("Customer not found")
    return row[0], row[1]

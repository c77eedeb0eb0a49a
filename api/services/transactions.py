"""
Transaction history and payment statistics.

Date filters are whole local days: start_date from 00:00, end_date through
23:59:59.999 in settings.timezone.
"""

import logging
import uuid
from datetime import date, datetime

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import NotFound
from models.subscription_plan import SubscriptionPlan
from models.transaction import Transaction, PAYMENT_STATUSES
from services import timezone

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "created_at": Transaction.created_at,
    "final_amount": Transaction.final_amount,
    "status": Transaction.status,
    "processed_at": Transaction.processed_at,
}

GROUPINGS = ("day", "week", "month")


def created_between(start: date | None, end: date | None) -> list:
    clauses = []
    if start:
        clauses.append(Transaction.created_at >= timezone.start_of_day(start))
    if end:
        clauses.append(Transaction.created_at <= timezone.end_of_day(end))
    return clauses


def transaction_statement(
    status: str | None = None,
    payment_method: str | None = None,
    type: str | None = None,
    start: date | None = None,
    end: date | None = None,
    search: str | None = None,
    user_id: uuid.UUID | None = None,
    subscription_id: uuid.UUID | None = None,
):
    query = select(Transaction)
    if status:
        query = query.where(Transaction.status == status)
    if payment_method:
        query = query.where(Transaction.payment_method == payment_method)
    if type:
        query = query.where(Transaction.type == type)
    if user_id:
        query = query.where(Transaction.user_id == user_id)
    if subscription_id:
        query = query.where(Transaction.user_subscription_id == subscription_id)
    query = query.where(*created_between(start, end))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            Transaction.transaction_id.ilike(pattern),
            Transaction.gateway_order_id.ilike(pattern),
            Transaction.gateway_payment_id.ilike(pattern),
        ))
    return query


def sort_order(sort_by: str = "created_at", direction: str = "desc"):
    column = SORT_FIELDS[sort_by]
    return column.asc() if direction == "asc" else column.desc()


async def paginate(db: AsyncSession, query, page: int, limit: int, order) -> tuple[list[Transaction], int]:
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(query.order_by(order).offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


def summarize_by_status(rows) -> dict:
    """(status, count, amount) rows -> per-status totals plus an overall total."""
    summary = {status: {"count": 0, "amount": 0.0} for status in PAYMENT_STATUSES}
    summary["total"] = {"count": 0, "amount": 0.0}
    for status, count, amount in rows:
        summary[status] = {"count": count, "amount": float(amount or 0)}
        summary["total"]["count"] += count
        summary["total"]["amount"] += float(amount or 0)
    summary["total"]["amount"] = round(summary["total"]["amount"], 2)
    return summary


def growth_percentage(current: float, previous: float) -> float:
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 2)


async def status_totals(db: AsyncSession, *where) -> dict:
    rows = await db.execute(
        select(Transaction.status, func.count(Transaction.id), func.coalesce(func.sum(Transaction.final_amount), 0))
        .where(*where)
        .group_by(Transaction.status)
    )
    return summarize_by_status(rows.all())


async def failure_reasons(db: AsyncSession, *where) -> list[dict]:
    rows = await db.execute(
        select(
            Transaction.failure_reason,
            func.count(Transaction.id).label("count"),
            func.coalesce(func.sum(Transaction.final_amount), 0).label("amount"),
        )
        .where(Transaction.status == "failed", *where)
        .group_by(Transaction.failure_reason)
        .order_by(func.count(Transaction.id).desc())
    )
    return [
        {"reason": reason or "unknown", "count": count, "total_amount": float(amount)}
        for reason, count, amount in rows.all()
    ]


def revenue_bucket(group_by: str):
    """Local-time bucket for the revenue series."""
    return func.date_trunc(group_by, func.timezone(settings.timezone, Transaction.created_at))


async def get_transaction_stats(db: AsyncSession, start: datetime, end: datetime, group_by: str = "day") -> dict:
    if group_by not in GROUPINGS:
        raise ValueError(f"group_by must be one of {', '.join(GROUPINGS)}")
    in_range = (Transaction.created_at >= start, Transaction.created_at <= end)
    paid = (Transaction.status == "success", *in_range)

    overview = await status_totals(db, *in_range)

    bucket = revenue_bucket(group_by).label("period")
    series = await db.execute(
        select(
            bucket,
            func.sum(Transaction.final_amount).label("revenue"),
            func.count(Transaction.id).label("transactions"),
            func.avg(Transaction.final_amount).label("average"),
            func.sum(Transaction.discount_amount).label("discount"),
        ).where(*paid).group_by(bucket).order_by(bucket)
    )

    methods = await db.execute(
        select(
            Transaction.payment_method,
            func.count(Transaction.id),
            func.sum(Transaction.final_amount),
        ).where(*paid).group_by(Transaction.payment_method)
    )

    breakdown = await db.execute(
        select(
            SubscriptionPlan.category,
            SubscriptionPlan.duration,
            func.count(Transaction.id).label("count"),
            func.sum(Transaction.final_amount).label("revenue"),
            func.avg(Transaction.final_amount).label("average"),
        )
        .join(SubscriptionPlan, Transaction.plan_id == SubscriptionPlan.id)
        .where(*paid)
        .group_by(SubscriptionPlan.category, SubscriptionPlan.duration)
        .order_by(func.sum(Transaction.final_amount).desc())
    )

    previous = await status_totals(
        db, Transaction.created_at >= start - (end - start), Transaction.created_at < start,
    )

    recent = await db.execute(
        select(Transaction).where(*in_range).order_by(Transaction.created_at.desc()).limit(10)
    )

    return {
        "overview": overview,
        "revenue": [
            {
                "period": period.date().isoformat(),
                "revenue": float(revenue or 0),
                "transactions": count,
                "average_amount": round(float(average or 0), 2),
                "discount": float(discount or 0),
            }
            for period, revenue, count, average, discount in series.all()
        ],
        "payment_methods": [
            {"payment_method": method, "count": count, "amount": float(amount or 0)}
            for method, count, amount in methods.all()
        ],
        "plan_breakdown": [
            {
                "category": category,
                "duration": duration,
                "count": count,
                "revenue": float(revenue or 0),
                "average_amount": round(float(average or 0), 2),
            }
            for category, duration, count, revenue, average in breakdown.all()
        ],
        "failure_analysis": await failure_reasons(db, *in_range),
        "recent": list(recent.scalars().all()),
        "growth_percentage": growth_percentage(overview["success"]["amount"], previous["success"]["amount"]),
        "date_range": {
            "start": timezone.format_local(start, "datetime"),
            "end": timezone.format_local(end, "datetime"),
        },
    }


async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Transaction:
    query = select(Transaction).where(Transaction.id == transaction_id)
    if user_id is not None:
        query = query.where(Transaction.user_id == user_id)
    txn = (await db.execute(query)).scalar_one_or_none()
    if not txn:
        raise NotFound("Transaction not found")
    return txn


async def user_summary(db: AsyncSession, user_id: uuid.UUID) -> dict:
    """Per-status counts and amounts over all of a user's transactions."""
    summary = await status_totals(db, Transaction.user_id == user_id)
    return {
        "total_transactions": summary["total"]["count"],
        "successful": summary["success"],
        "failed": summary["failed"],
        "pending": summary["pending"],
        "refunded": summary["refunded"],
        "total_spent": summary["success"]["amount"],
    }

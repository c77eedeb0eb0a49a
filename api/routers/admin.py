"""Admin dashboard — subscription search, revenue and maintenance."""

import logging
import math
import uuid
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db.database import get_db
from deps import require_admin
from models.subscription_plan import SubscriptionPlan
from models.user import User
from models.user_subscription import UserSubscription
from schemas import (
    AdminSubscriptionQuery, TransactionResponse, UserSubscriptionResponse, VendorAssignmentResponse,
)
from services import timezone
from services.filters import (
    InvalidFilter, build_subscription_filter, needs_plan_join, needs_user_join,
    to_clauses, sort_clause,
)
from services.purchase_workflow import get_purchase_detail, recover_purchase
from services.subscriptions import (
    expire_overdue_subscriptions, find_expiring, get_revenue_stats, summary_columns,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


def _filtered(statement, query: AdminSubscriptionQuery):
    try:
        predicates = build_subscription_filter(query)
        clauses = to_clauses(predicates)
    except InvalidFilter as e:
        raise HTTPException(status_code=400, detail=str(e))
    if needs_plan_join(predicates):
        statement = statement.join(SubscriptionPlan, UserSubscription.plan_id == SubscriptionPlan.id)
    if needs_user_join(predicates):
        statement = statement.join(User, UserSubscription.user_id == User.id)
    return statement.where(*clauses)


@router.get("/subscriptions")
async def search_subscriptions(
    query: Annotated[AdminSubscriptionQuery, Query()],
    db: AsyncSession = Depends(get_db),
):
    statement = _filtered(select(UserSubscription), query)
    try:
        order = sort_clause(query.sort_by, query.sort_order)
    except InvalidFilter as e:
        raise HTTPException(status_code=400, detail=str(e))

    total = (await db.execute(select(func.count()).select_from(statement.subquery()))).scalar() or 0
    result = await db.execute(
        statement.order_by(order).offset((query.page - 1) * query.limit).limit(query.limit)
    )
    return {
        "items": [UserSubscriptionResponse.model_validate(s) for s in result.scalars().all()],
        "total": total,
        "page": query.page,
        "limit": query.limit,
        "pages": math.ceil(total / query.limit) if total else 0,
    }


@router.get("/subscriptions/stats")
async def subscription_stats(
    query: Annotated[AdminSubscriptionQuery, Query()],
    db: AsyncSession = Depends(get_db),
):
    """Summary over the same filters as the search."""
    row = (await db.execute(_filtered(select(*summary_columns()), query))).one()
    by_status = await db.execute(
        _filtered(select(UserSubscription.status, func.count(UserSubscription.id)), query)
        .group_by(UserSubscription.status)
    )
    return {
        "total_revenue": float(row.total_revenue or 0),
        "total_subscriptions": row.total_subscriptions or 0,
        "active_subscriptions": row.active_subscriptions or 0,
        "pending_subscriptions": row.pending_subscriptions or 0,
        "assigned_vendors": row.assigned_vendors or 0,
        "unassigned_vendors": row.unassigned_vendors or 0,
        "average_price": round(float(row.average_price), 2) if row.average_price is not None else 0.0,
        "by_status": {status: count for status, count in by_status},
    }


@router.get("/revenue")
async def revenue(
    start: date | None = None,
    end: date | None = None,
    db: AsyncSession = Depends(get_db),
):
    start_at = timezone.start_of_day(start) if start else timezone.start_of_day(timezone.add_days(-30))
    end_at = timezone.end_of_day(end) if end else timezone.now()
    return await get_revenue_stats(db, start_at, end_at)


@router.get("/subscriptions/expiring", response_model=list[UserSubscriptionResponse])
async def expiring_subscriptions(days: int | None = None, db: AsyncSession = Depends(get_db)):
    return await find_expiring(db, days or settings.expiry_warning_days)


@router.post("/subscriptions/sweep-expired")
async def sweep_expired(db: AsyncSession = Depends(get_db)):
    """Mark active subscriptions past their end date as expired."""
    return {"expired": await expire_overdue_subscriptions(db)}


@router.post("/purchases/{transaction_id}/verify-payment-status")
async def verify_payment_status(transaction_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Finish a purchase whose client verification or webhook never arrived."""
    result = await recover_purchase(db, transaction_id)
    logger.info("Admin recovery for transaction %s: %s", transaction_id, result["workflow_step"])
    return result


@router.get("/purchases/{subscription_id}")
async def purchase_detail(subscription_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    detail = await get_purchase_detail(db, subscription_id)
    user, txn = detail["user"], detail["transaction"]
    return {
        **detail,
        "subscription": UserSubscriptionResponse.model_validate(detail["subscription"]),
        "user": {"id": user.id, "name": user.name, "email": user.email, "phone": user.phone} if user else None,
        "transaction": TransactionResponse.model_validate(txn) if txn else None,
        "vendor_requests": [VendorAssignmentResponse.model_validate(r) for r in detail["vendor_requests"]],
    }

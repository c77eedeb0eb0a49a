"""Payment history for customers and the admin transaction views."""

import logging
import math
import uuid
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from deps import get_current_user, require_admin
from models.subscription_plan import SubscriptionPlan
from models.user import User
from models.user_subscription import UserSubscription
from schemas import TransactionQuery, TransactionResponse, UserSubscriptionResponse
from services import timezone
from services.transactions import (
    created_between, failure_reasons, get_transaction, get_transaction_stats, paginate, sort_order,
    transaction_statement, user_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])


def _page(items, total: int, query: TransactionQuery) -> dict:
    return {
        "items": [TransactionResponse.model_validate(t) for t in items],
        "total": total,
        "page": query.page,
        "limit": query.limit,
        "pages": math.ceil(total / query.limit) if total else 0,
    }


def _statement(query: TransactionQuery, user_id: uuid.UUID | None = None):
    return transaction_statement(
        status=query.status,
        payment_method=query.payment_method,
        type=query.type,
        start=query.start_date,
        end=query.end_date,
        search=query.search,
        user_id=user_id or query.user_id,
        subscription_id=query.subscription_id,
    )


@router.get("/me")
async def my_transactions(
    query: Annotated[TransactionQuery, Query()],
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items, total = await paginate(
        db, _statement(query, user_id=user.id), query.page, query.limit,
        sort_order(query.sort_by, query.sort_order),
    )
    body = _page(items, total, query)
    body["stats"] = await user_summary(db, user.id)
    return body


@router.get("/me/{transaction_id}", response_model=TransactionResponse)
async def my_transaction(
    transaction_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await get_transaction(db, transaction_id, user_id=user.id)


# ── Admin ──────────────────────────────────────────────────

@admin_router.get("")
async def list_transactions(
    query: Annotated[TransactionQuery, Query()],
    db: AsyncSession = Depends(get_db),
):
    items, total = await paginate(
        db, _statement(query), query.page, query.limit, sort_order(query.sort_by, query.sort_order),
    )
    return _page(items, total, query)


@admin_router.get("/failed")
async def failed_transactions(
    query: Annotated[TransactionQuery, Query()],
    db: AsyncSession = Depends(get_db),
):
    """Failed payments with the most common failure reasons."""
    statement = _statement(query.model_copy(update={"status": "failed"}))
    items, total = await paginate(db, statement, query.page, query.limit, sort_order(query.sort_by, query.sort_order))
    body = _page(items, total, query)
    body["failure_reasons"] = await failure_reasons(db, *created_between(query.start_date, query.end_date))
    return body


@admin_router.get("/stats")
async def transaction_stats(
    start: date | None = None,
    end: date | None = None,
    group_by: str = Query(default="day", pattern="^(day|week|month)$"),
    db: AsyncSession = Depends(get_db),
):
    start_at = timezone.start_of_day(start) if start else timezone.start_of_day(timezone.add_days(-30))
    end_at = timezone.end_of_day(end) if end else timezone.now()
    if end_at < start_at:
        raise HTTPException(status_code=400, detail="end must not be before start")
    stats = await get_transaction_stats(db, start_at, end_at, group_by)
    stats["recent"] = [TransactionResponse.model_validate(t) for t in stats["recent"]]
    return stats


@admin_router.get("/{transaction_id}")
async def transaction_detail(transaction_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    txn = await get_transaction(db, transaction_id)
    user = await db.get(User, txn.user_id)
    plan = await db.get(SubscriptionPlan, txn.plan_id)
    sub = await db.get(UserSubscription, txn.user_subscription_id) if txn.user_subscription_id else None
    return {
        "transaction": TransactionResponse.model_validate(txn),
        "user": {"id": user.id, "name": user.name, "email": user.email, "phone": user.phone} if user else None,
        "plan": {"id": plan.id, "plan_name": plan.plan_name, "category": plan.category, "duration": plan.duration} if plan else None,
        "subscription": UserSubscriptionResponse.model_validate(sub) if sub else None,
    }

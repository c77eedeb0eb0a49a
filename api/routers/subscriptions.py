"""Customer subscription endpoints: purchase, usage and lifecycle."""

import logging
import math
import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db.database import get_db
from deps import get_current_user
from errors import DomainError
from models.user import User
from models.user_subscription import UserSubscription
from schemas import (
    PurchaseInitiate, PaymentVerify, UserSubscriptionResponse, CancelRequest,
    VendorSwitchBody, UseCreditsRequest, SubscriptionStatus,
)
from services import timezone
from services.purchase_workflow import initiate_purchase, verify_payment
from services.subscriptions import get_user_subscription, subscription_analytics
from services.vendor_assignments import create_switch_request, find_by_subscription

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/purchase", status_code=201)
async def purchase_subscription(
    data: PurchaseInitiate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Start a purchase; the client completes checkout with the returned order id."""
    return await initiate_purchase(db, user, data)


@router.post("/verify-payment")
async def verify_subscription_payment(
    data: PaymentVerify,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await verify_payment(db, user.id, data)


@router.get("/")
async def list_my_subscriptions(
    status: SubscriptionStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    base = select(UserSubscription).where(UserSubscription.user_id == user.id)
    if status:
        base = base.where(UserSubscription.status == status.value)

    total = (await db.execute(
        select(func.count()).select_from(base.subquery())
    )).scalar() or 0
    result = await db.execute(
        base.order_by(UserSubscription.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "items": [UserSubscriptionResponse.model_validate(s) for s in result.scalars().all()],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


@router.get("/{subscription_id}")
async def get_my_subscription(
    subscription_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    sub = await get_user_subscription(db, subscription_id, user.id)
    requests = await find_by_subscription(db, sub.id)
    return {
        "subscription": UserSubscriptionResponse.model_validate(sub),
        "plan": sub.plan_snapshot,
        "analytics": subscription_analytics(sub),
        "vendor_requests": [
            {"id": str(r.id), "request_type": r.request_type, "status": r.status, "requested_at": r.requested_at}
            for r in requests
        ],
    }


@router.post("/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: uuid.UUID,
    data: CancelRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Cancel an active subscription within the cancellation window after payment."""
    sub = await get_user_subscription(db, subscription_id, user.id, for_update=True)
    if sub.status != "active":
        raise DomainError("Only active subscriptions can be cancelled")

    paid_at = timezone.to_local(sub.payment_completed_at or sub.created_at)
    if timezone.now() - paid_at > timedelta(hours=settings.cancellation_window_hours):
        raise DomainError(
            f"Subscriptions can only be cancelled within {settings.cancellation_window_hours} hours of purchase"
        )

    sub.cancel(data.reason, refund_amount=float(sub.final_price))
    await db.commit()
    logger.info("Subscription %s cancelled by user %s", sub.id, user.id)
    return {"subscription_id": str(sub.id), "status": sub.status, "refund_amount": float(sub.refund_amount)}


@router.post("/{subscription_id}/vendor-switch", status_code=201)
async def request_vendor_switch(
    subscription_id: uuid.UUID,
    data: VendorSwitchBody,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    # Row lock serialises the pending-switch check with concurrent requests
    sub = await get_user_subscription(db, subscription_id, user.id, for_update=True)
    request = await create_switch_request(db, sub, sub.plan, data.reason)
    await db.commit()
    return {"request_id": str(request.id), "status": request.status, "priority": request.priority}


@router.post("/{subscription_id}/skip")
async def skip_meal(
    subscription_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    sub = await get_user_subscription(db, subscription_id, user.id, for_update=True)
    extended = sub.skip_meal()
    await db.commit()
    return {
        "skip_credit_available": sub.skip_credit_available,
        "skip_credit_used": sub.skip_credit_used,
        "end_date": sub.end_date,
        "extended": extended,
    }


@router.post("/{subscription_id}/use-credits")
async def use_credits(
    subscription_id: uuid.UUID,
    data: UseCreditsRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    sub = await get_user_subscription(db, subscription_id, user.id, for_update=True)
    remaining = sub.use_credits(data.credits)
    await db.commit()
    return {"credits_used": sub.credits_used, "remaining_credits": remaining}

"""
Subscription purchase — initiation, payment verification and the resumable workflow.

Flow:
  1. initiate_purchase: validate plan, delivery zone, meals, promo → gateway order,
     pending Transaction + UserSubscription, workflow at "initiated"
  2. verify_payment (client) or a payment.captured webhook → resume_workflow
  3. resume_workflow runs the remaining steps from the persisted step:
       payment_verified → subscription_activated → vendor_requested → notified → completed
     Each step commits together with its step marker, so a crash between
     steps leaves the row at the last finished step and a rerun picks up there.

A failed payment attempt only marks the transaction failed. The gateway
order stays open, so the customer can pay again on it and a later capture
still completes the purchase.
"""

import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    DomainError, InvalidDeliveryZone, InvalidStateTransition, NotFound,
    PaymentVerificationFailed,
)
from models.purchase_workflow import PurchaseWorkflow
from models.subscription_plan import SubscriptionPlan
from models.transaction import Transaction
from models.user import User
from models.user_subscription import UserSubscription
from services import notifications, payment_gateway, timezone
from services.locks import LockUnavailable, hold_lock
from services.pricing import calculate_purchase_quote
from services.promo_codes import use_promo_code, validate_and_apply_promo_code
from services.subscriptions import find_active_by_user, subscription_analytics
from services.vendor_assignments import create_initial_assignment_request, find_by_subscription
from services.zones import validate_delivery

logger = logging.getLogger(__name__)


def validate_meal_timing(plan: SubscriptionPlan, meal_timing: dict) -> list[str]:
    """Errors for meal selections the plan does not allow; empty when valid."""
    errors = []
    enabled = 0
    for meal in ("lunch", "dinner"):
        slot = meal_timing.get(meal) or {}
        if not slot.get("enabled"):
            continue
        enabled += 1
        available, start, end = plan.meal_window(meal)
        if not available:
            errors.append(f"{meal.capitalize()} is not available for this plan")
            continue
        at = slot.get("time")
        if not at:
            errors.append(f"{meal.capitalize()} time is required")
        elif not (start <= at <= end):
            errors.append(f"{meal.capitalize()} time must be between {start} and {end}")
    if enabled == 0:
        errors.append("At least one meal must be enabled")
    return errors


def subscription_period(start, duration_days: int, now: datetime | None = None) -> tuple[datetime, datetime]:
    """(start of first day, end of last day) for a plan lasting `duration_days` days."""
    now = now or timezone.now()
    start_at = timezone.start_of_day(start or now)
    if start_at < timezone.start_of_day(now):
        raise DomainError("Start date cannot be in the past")
    end_at = timezone.end_of_day(start_at + timedelta(days=duration_days - 1))
    return start_at, end_at


async def initiate_purchase(db: AsyncSession, user: User, data) -> dict:
    """Create the gateway order and the pending purchase records."""
    plan = await db.get(SubscriptionPlan, data.plan_id)
    if not plan or not plan.can_purchase():
        raise NotFound("Subscription plan not found or inactive")

    address = data.delivery_address.model_dump()
    delivery = await validate_delivery(db, address, plan.category, float(plan.discounted_price))
    if not delivery.is_valid:
        raise InvalidDeliveryZone(
            "Delivery not available to this address",
            errors=delivery.errors,
            suggested_zones=delivery.suggested_zones,
        )

    if await find_active_by_user(db, user.id):
        raise DomainError("You already have an active subscription")

    meal_timing = data.meal_timing.model_dump()
    meal_errors = validate_meal_timing(plan, meal_timing)
    if meal_errors:
        raise DomainError("Invalid meal timing", data={"errors": meal_errors})

    promo = None
    if data.promo_code:
        promo = await validate_and_apply_promo_code(
            db, data.promo_code, user.id, float(plan.discounted_price), plan,
        )

    start_date, end_date = subscription_period(data.start_date, plan.duration_days)
    quote = calculate_purchase_quote(
        float(plan.discounted_price),
        promo.discount_amount if promo else 0,
        delivery.delivery_fee or 0,
        bool(plan.free_delivery),
    )

    subscription_id = uuid.uuid4()
    order = await payment_gateway.create_order(
        quote.final_amount,
        receipt=f"sub_{subscription_id.hex[:20]}",
        notes={"user_id": str(user.id), "plan_id": str(plan.id), "subscription_id": str(subscription_id)},
    )

    sub = UserSubscription(
        id=subscription_id,
        user_id=user.id,
        plan_id=plan.id,
        credits_granted=plan.calculate_credits(),
        skip_credit_available=plan.user_skip_meal_per_plan or 0,
        start_date=start_date,
        end_date=end_date,
        original_price=quote.original_amount,
        discount_applied=quote.promo_discount,
        final_price=quote.final_amount,
        promo_code_id=promo.promo_code.id if promo else None,
        delivery_address=address,
        meal_timing=meal_timing,
        plan_snapshot={
            "plan_name": plan.plan_name,
            "category": plan.category,
            "duration_days": plan.duration_days,
            "meals_per_plan": plan.meals_per_plan,
            "price": float(plan.discounted_price),
        },
    )
    txn = Transaction(
        id=uuid.uuid4(),
        transaction_id=order["id"],
        user_id=user.id,
        plan_id=plan.id,
        user_subscription_id=sub.id,
        original_amount=quote.original_amount,
        discount_amount=quote.promo_discount,
        final_amount=quote.final_amount,
        payment_method=data.payment_method,
        gateway_order_id=order["id"],
        promo_code=promo.promo_code.code if promo else None,
    )
    db.add(sub)
    db.add(txn)
    # user_subscriptions rows insert before transactions; link back once both exist
    await db.flush()
    sub.transaction_id = txn.id

    workflow = PurchaseWorkflow(
        user_id=user.id,
        transaction_id=txn.id,
        user_subscription_id=sub.id,
    )
    db.add(workflow)
    await db.commit()

    logger.info(
        "Purchase initiated: user=%s plan=%s subscription=%s order=%s amount=%.2f",
        user.id, plan.id, sub.id, order["id"], quote.final_amount,
    )
    return {
        "subscription_id": str(sub.id),
        "transaction_id": str(txn.id),
        "order": {
            "id": order["id"],
            "amount": order.get("amount"),
            "currency": order.get("currency"),
        },
        "pricing": asdict(quote),
        "delivery": delivery.to_dict(),
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
    }


# ── Workflow steps ─────────────────────────────────────────

async def _step_payment_verified(db: AsyncSession, wf: PurchaseWorkflow, payment_id: str | None):
    txn = wf.transaction
    if not txn.is_successful():
        txn.mark_as_success(payment_id, credits_added=wf.user_subscription.credits_granted)
    wf.advance_to("payment_verified")


async def _step_subscription_activated(db: AsyncSession, wf: PurchaseWorkflow, payment_id: str | None):
    sub = wf.user_subscription
    sub.activate()
    plan = sub.plan or await db.get(SubscriptionPlan, sub.plan_id)
    plan.increment_purchases()
    if sub.promo_code_id:
        await use_promo_code(db, sub.promo_code_id)
    wf.advance_to("subscription_activated")


async def _step_vendor_requested(db: AsyncSession, wf: PurchaseWorkflow, payment_id: str | None):
    sub = wf.user_subscription
    plan = sub.plan or await db.get(SubscriptionPlan, sub.plan_id)
    request = await create_initial_assignment_request(db, sub, plan)
    wf.vendor_request_id = request.id
    wf.advance_to("vendor_requested")


async def _step_notified(db: AsyncSession, wf: PurchaseWorkflow, payment_id: str | None):
    sub = wf.user_subscription
    user = await db.get(User, wf.user_id)
    plan = sub.plan or await db.get(SubscriptionPlan, sub.plan_id)
    if user is not None:
        sent = await notifications.notify_purchase_success(user, sub, plan)
        if not sent:
            logger.warning("Purchase notification for subscription %s not delivered", sub.id)
    wf.advance_to("notified")


async def _step_completed(db: AsyncSession, wf: PurchaseWorkflow, payment_id: str | None):
    wf.advance_to("completed")


STEP_HANDLERS = (
    ("payment_verified", _step_payment_verified),
    ("subscription_activated", _step_subscription_activated),
    ("vendor_requested", _step_vendor_requested),
    ("notified", _step_notified),
    ("completed", _step_completed),
)


async def resume_workflow(db: AsyncSession, wf: PurchaseWorkflow, payment_id: str | None = None) -> PurchaseWorkflow:
    """Run every step the workflow has not reached yet. Safe to call repeatedly."""
    if wf.is_completed():
        return wf

    workflow_id = wf.id
    try:
        async with hold_lock(f"purchase:{workflow_id}"):
            wf.attempts = (wf.attempts or 0) + 1
            for step, handler in STEP_HANDLERS:
                if wf.has_reached(step):
                    continue
                try:
                    await handler(db, wf, payment_id)
                    await db.commit()
                except Exception as e:
                    await db.rollback()
                    await db.execute(
                        update(PurchaseWorkflow)
                        .where(PurchaseWorkflow.id == workflow_id)
                        .values(last_error=f"{step}: {e}")
                    )
                    await db.commit()
                    logger.warning("Purchase workflow %s stopped at %s: %s", workflow_id, step, e)
                    raise
                logger.info("Purchase workflow %s reached %s", workflow_id, step)
    except LockUnavailable:
        raise InvalidStateTransition("Purchase is already being processed")
    return wf


async def get_workflow_by_order(db: AsyncSession, gateway_order_id: str, user_id: uuid.UUID | None = None) -> PurchaseWorkflow:
    query = (
        select(PurchaseWorkflow)
        .join(Transaction, PurchaseWorkflow.transaction_id == Transaction.id)
        .where(Transaction.gateway_order_id == gateway_order_id)
    )
    if user_id is not None:
        query = query.where(Transaction.user_id == user_id)
    wf = (await db.execute(query)).scalar_one_or_none()
    if not wf:
        raise NotFound("Transaction not found")
    return wf


async def record_payment_failure(db: AsyncSession, wf: PurchaseWorkflow, reason: str) -> bool:
    """
    Mark an unpaid purchase's transaction failed. The workflow and the pending
    subscription are left alone so a later successful attempt can finish them.
    Returns False when the purchase is already paid.
    """
    txn = wf.transaction
    if txn.is_successful() or wf.has_reached("payment_verified"):
        logger.info("Ignoring payment failure for paid purchase %s: %s", wf.id, reason)
        return False
    txn.mark_as_failed(reason)
    await db.commit()
    logger.info("Payment attempt failed for purchase %s: %s", wf.id, reason)
    return True


def _result(wf: PurchaseWorkflow) -> dict:
    sub = wf.user_subscription
    return {
        "subscription_id": str(sub.id),
        "status": sub.status,
        "workflow_step": wf.step,
        "vendor_request_id": str(wf.vendor_request_id) if wf.vendor_request_id else None,
        "start_date": sub.start_date.isoformat(),
        "end_date": sub.end_date.isoformat(),
    }


async def verify_payment(db: AsyncSession, user_id: uuid.UUID, data) -> dict:
    """Client-side confirmation after checkout."""
    wf = await get_workflow_by_order(db, data.razorpay_order_id, user_id)

    if wf.is_completed():
        return _result(wf)

    # Already confirmed by the gateway; finish the remaining steps.
    if wf.has_reached("payment_verified"):
        await resume_workflow(db, wf)
        return _result(wf)

    if not payment_gateway.verify_payment_signature(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature,
    ):
        await record_payment_failure(db, wf, "Payment verification failed")
        raise PaymentVerificationFailed("Payment verification failed")

    await resume_workflow(db, wf, data.razorpay_payment_id)
    return _result(wf)


async def handle_gateway_event(db: AsyncSession, event: str, payload: dict) -> str:
    """Apply one verified webhook event. Returns a short outcome label."""
    if event == "payment.captured":
        entity = payload.get("payment", {}).get("entity", {})
        wf = await get_workflow_by_order(db, entity.get("order_id"))
        wf.transaction.webhook_data = payload
        await db.commit()
        if wf.is_completed():
            return wf.step
        await resume_workflow(db, wf, entity.get("id"))
        return "processed"

    if event == "payment.failed":
        entity = payload.get("payment", {}).get("entity", {})
        wf = await get_workflow_by_order(db, entity.get("order_id"))
        wf.transaction.webhook_data = payload
        if await record_payment_failure(db, wf, entity.get("error_description") or "Payment failed"):
            return "failed"
        await db.commit()
        return "ignored"

    if event == "refund.processed":
        entity = payload.get("refund", {}).get("entity", {})
        txn = (await db.execute(
            select(Transaction).where(Transaction.gateway_payment_id == entity.get("payment_id"))
        )).scalar_one_or_none()
        if not txn:
            raise NotFound("Transaction not found")
        txn.mark_as_refunded({
            "refund_id": entity.get("id"),
            "amount": (entity.get("amount") or 0) / 100,
            "processed_at": timezone.now().isoformat(),
        })
        await db.commit()
        return "refunded"

    logger.info("Ignoring gateway event %s", event)
    return "ignored"


async def recover_purchase(db: AsyncSession, transaction_id: uuid.UUID) -> dict:
    """Admin recovery: ask the gateway whether a stuck order was paid and finish it if so."""
    wf = (await db.execute(
        select(PurchaseWorkflow).where(PurchaseWorkflow.transaction_id == transaction_id)
    )).scalar_one_or_none()
    if not wf:
        raise NotFound("Purchase not found")

    payment_id = None
    if not wf.has_reached("payment_verified"):
        payment = await payment_gateway.fetch_captured_payment(wf.transaction.gateway_order_id)
        if payment is None:
            return {**_result(wf), "payment_status": "awaiting_payment"}
        payment_id = payment.get("id")

    await resume_workflow(db, wf, payment_id)
    return {**_result(wf), "payment_status": wf.transaction.status}


async def get_purchase_detail(db: AsyncSession, subscription_id: uuid.UUID) -> dict:
    """Everything support needs to look at one purchase."""
    sub = await db.get(UserSubscription, subscription_id)
    if not sub:
        raise NotFound("Subscription not found")
    wf = (await db.execute(
        select(PurchaseWorkflow).where(PurchaseWorkflow.user_subscription_id == sub.id)
    )).scalar_one_or_none()
    if wf is not None:
        txn = wf.transaction
    else:
        txn = await db.get(Transaction, sub.transaction_id) if sub.transaction_id else None
    return {
        "subscription": sub,
        "user": await db.get(User, sub.user_id),
        "transaction": txn,
        "workflow": {
            "step": wf.step,
            "attempts": wf.attempts,
            "last_error": wf.last_error,
            "completed_at": wf.completed_at,
        } if wf else None,
        "vendor_requests": await find_by_subscription(db, sub.id),
        "analytics": subscription_analytics(sub),
    }

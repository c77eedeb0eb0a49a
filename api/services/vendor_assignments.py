"""
Vendor assignment queue — creating requests, queue views and admin actions.

Queues are ordered by priority_weight (urgent > high > medium > low), then
oldest request first.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from errors import InvalidStateTransition, NotFound, DomainError
from models.subscription_plan import SubscriptionPlan, vendor_types_for_category
from models.user_subscription import UserSubscription
from models.vendor_assignment_request import VendorAssignmentRequest, PRIORITY_WEIGHTS
from models.vendor_profile import VendorProfile
from services import timezone
from services.zones import find_zones_by_pincode

logger = logging.getLogger(__name__)


def queue_order():
    return (
        VendorAssignmentRequest.priority_weight.desc(),
        VendorAssignmentRequest.requested_at.asc(),
    )


def pending_queue_statement(
    request_type: str | None = None,
    priority: str | None = None,
    zone_id: uuid.UUID | None = None,
    min_priority: str | None = None,
):
    query = select(VendorAssignmentRequest).where(VendorAssignmentRequest.status == "pending")
    if request_type:
        query = query.where(VendorAssignmentRequest.request_type == request_type)
    if priority:
        query = query.where(VendorAssignmentRequest.priority == priority)
    if min_priority:
        query = query.where(VendorAssignmentRequest.priority_weight >= PRIORITY_WEIGHTS[min_priority])
    if zone_id:
        query = query.where(VendorAssignmentRequest.delivery_zone_id == zone_id)
    return query.order_by(*queue_order())


def requests_statement(
    status: str | None = None,
    request_type: str | None = None,
    priority: str | None = None,
    zone_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """Every request in any status, newest first."""
    query = select(VendorAssignmentRequest)
    if status:
        query = query.where(VendorAssignmentRequest.status == status)
    if request_type:
        query = query.where(VendorAssignmentRequest.request_type == request_type)
    if priority:
        query = query.where(VendorAssignmentRequest.priority == priority)
    if zone_id:
        query = query.where(VendorAssignmentRequest.delivery_zone_id == zone_id)
    if user_id:
        query = query.where(VendorAssignmentRequest.user_id == user_id)
    if start:
        query = query.where(VendorAssignmentRequest.requested_at >= start)
    if end:
        query = query.where(VendorAssignmentRequest.requested_at <= end)
    return query.order_by(VendorAssignmentRequest.requested_at.desc())


async def find_pending_requests(db: AsyncSession, request_type: str | None = None) -> list[VendorAssignmentRequest]:
    return list((await db.execute(pending_queue_statement(request_type))).scalars().all())


async def find_urgent_requests(db: AsyncSession) -> list[VendorAssignmentRequest]:
    """Pending requests at high priority or above."""
    return list((await db.execute(pending_queue_statement(min_priority="high"))).scalars().all())


async def find_by_zone(db: AsyncSession, zone_id: uuid.UUID) -> list[VendorAssignmentRequest]:
    return list((await db.execute(pending_queue_statement(zone_id=zone_id))).scalars().all())


async def find_by_subscription(db: AsyncSession, subscription_id: uuid.UUID) -> list[VendorAssignmentRequest]:
    result = await db.execute(
        select(VendorAssignmentRequest)
        .where(VendorAssignmentRequest.user_subscription_id == subscription_id)
        .order_by(VendorAssignmentRequest.requested_at.desc())
    )
    return list(result.scalars().all())


async def find_recent_requests(db: AsyncSession, days: int = 7) -> list[VendorAssignmentRequest]:
    cutoff = timezone.add_days(-days)
    result = await db.execute(
        select(VendorAssignmentRequest)
        .where(VendorAssignmentRequest.requested_at >= cutoff)
        .order_by(VendorAssignmentRequest.requested_at.desc())
    )
    return list(result.scalars().all())


async def get_request(db: AsyncSession, request_id: uuid.UUID, for_update: bool = False) -> VendorAssignmentRequest:
    query = select(VendorAssignmentRequest).where(VendorAssignmentRequest.id == request_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    request = (await db.execute(query)).scalar_one_or_none()
    if not request:
        raise NotFound("Assignment request not found")
    return request


async def _zone_for_subscription(db: AsyncSession, sub: UserSubscription) -> uuid.UUID | None:
    zones = await find_zones_by_pincode(db, (sub.delivery_address or {}).get("zip_code"))
    return zones[0].id if zones else None


async def create_initial_assignment_request(
    db: AsyncSession,
    sub: UserSubscription,
    plan: SubscriptionPlan,
) -> VendorAssignmentRequest:
    """One initial-assignment request per subscription; returns the existing one on repeat calls."""
    existing = (await db.execute(
        select(VendorAssignmentRequest).where(
            VendorAssignmentRequest.user_subscription_id == sub.id,
            VendorAssignmentRequest.request_type == "initial_assignment",
        )
    )).scalar_one_or_none()
    if existing:
        return existing

    request = VendorAssignmentRequest(
        id=uuid.uuid4(),
        user_subscription_id=sub.id,
        user_id=sub.user_id,
        request_type="initial_assignment",
        reason="initial_purchase",
        description="Initial vendor assignment needed for new subscription purchase",
        requested_vendor_type=requested_vendor_type(plan.category),
        delivery_zone_id=await _zone_for_subscription(db, sub),
    )
    db.add(request)
    logger.info("Initial assignment request %s queued for subscription %s", request.id, sub.id)
    return request


async def create_switch_request(
    db: AsyncSession,
    sub: UserSubscription,
    plan: SubscriptionPlan,
    description: str | None = None,
) -> VendorAssignmentRequest:
    if not sub.can_switch_vendor():
        raise DomainError("Vendor switch not available for this subscription")

    open_switch = (await db.execute(
        select(func.count(VendorAssignmentRequest.id)).where(
            VendorAssignmentRequest.user_subscription_id == sub.id,
            VendorAssignmentRequest.request_type == "vendor_switch",
            VendorAssignmentRequest.status == "pending",
        )
    )).scalar() or 0
    if open_switch:
        raise DomainError("A vendor switch request is already pending")

    request = VendorAssignmentRequest(
        id=uuid.uuid4(),
        user_subscription_id=sub.id,
        user_id=sub.user_id,
        request_type="vendor_switch",
        current_vendor_id=sub.current_vendor_id,
        reason="vendor_switch_request",
        description=description or "User requested vendor change",
        requested_vendor_type=requested_vendor_type(plan.category),
        delivery_zone_id=await _zone_for_subscription(db, sub),
    )
    db.add(request)
    logger.info("Vendor switch request %s queued for subscription %s", request.id, sub.id)
    return request


def requested_vendor_type(category: str) -> str:
    types = vendor_types_for_category(category)
    return types[0] if len(types) == 1 else "any"


async def find_available_vendors(db: AsyncSession, category: str) -> list[VendorProfile]:
    """Verified, available vendors whose type can serve the plan category, best rated first."""
    result = await db.execute(
        select(VendorProfile)
        .where(
            VendorProfile.is_verified == True,
            VendorProfile.is_available == True,
            VendorProfile.vendor_type.in_(vendor_types_for_category(category)),
        )
        .order_by(VendorProfile.rating.desc(), VendorProfile.daily_capacity.desc())
    )
    return list(result.scalars().all())


def apply_vendor_assignment(
    request: VendorAssignmentRequest,
    sub: UserSubscription,
    vendor: VendorProfile,
    admin_id: uuid.UUID,
    admin_notes: str | None = None,
):
    """
    Put `vendor` on the subscription and approve the request.

    For switch requests the one-time switch is consumed first, so the
    outgoing vendor is archived with reason "vendor_switch".
    """
    if not request.is_pending():
        raise InvalidStateTransition("Request has already been processed")
    if not vendor.is_available or not vendor.is_verified:
        raise DomainError("Vendor is not available for assignment")
    if vendor.vendor_type not in vendor_types_for_category(sub.plan.category if sub.plan else "universal"):
        raise DomainError("Vendor type does not match the subscription plan")

    if request.is_vendor_switch():
        sub.use_vendor_switch()
    sub.assign_vendor(vendor.id, vendor.vendor_type, admin_id)
    request.approve(admin_id, vendor.id, admin_notes)


async def get_request_stats(db: AsyncSession, start: datetime, end: datetime) -> dict:
    overall = await db.execute(
        select(
            VendorAssignmentRequest.status,
            VendorAssignmentRequest.request_type,
            func.count(VendorAssignmentRequest.id),
        )
        .where(VendorAssignmentRequest.requested_at.between(start, end))
        .group_by(VendorAssignmentRequest.status, VendorAssignmentRequest.request_type)
    )
    pending = await db.execute(
        select(
            VendorAssignmentRequest.request_type,
            VendorAssignmentRequest.priority,
            func.count(VendorAssignmentRequest.id),
        )
        .where(VendorAssignmentRequest.status == "pending")
        .group_by(VendorAssignmentRequest.request_type, VendorAssignmentRequest.priority)
    )
    hours = func.extract("epoch", VendorAssignmentRequest.processed_at - VendorAssignmentRequest.requested_at) / 3600
    processing = (await db.execute(
        select(func.avg(hours), func.min(hours), func.max(hours), func.count(VendorAssignmentRequest.id))
        .where(and_(
            VendorAssignmentRequest.status.in_(["approved", "completed"]),
            VendorAssignmentRequest.processed_at.between(start, end),
        ))
    )).one()

    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "overall": [
            {"status": status, "request_type": rtype, "count": count}
            for status, rtype, count in overall
        ],
        "pending": [
            {"request_type": rtype, "priority": priority, "count": count}
            for rtype, priority, count in pending
        ],
        "processing_time_hours": {
            "average": round(float(processing[0]), 2) if processing[0] is not None else None,
            "min": round(float(processing[1]), 2) if processing[1] is not None else None,
            "max": round(float(processing[2]), 2) if processing[2] is not None else None,
            "processed": processing[3] or 0,
        },
    }


async def find_by_user(db: AsyncSession, user_id: uuid.UUID) -> list[VendorAssignmentRequest]:
    result = await db.execute(
        select(VendorAssignmentRequest)
        .where(VendorAssignmentRequest.user_id == user_id)
        .order_by(VendorAssignmentRequest.requested_at.desc())
    )
    return list(result.scalars().all())

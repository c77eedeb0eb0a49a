"""Admin vendor-assignment queue."""

import logging
import math
import uuid
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from deps import require_admin
from errors import InvalidStateTransition, NotFound
from models.user import User
from models.vendor_profile import VendorProfile
from schemas import (
    VendorAssignmentResponse, AssignVendorBody, RejectBody, PriorityUpdate,
    VendorResponse, VendorRequestQuery, RequestType, RequestPriority,
)
from services import timezone
from services.notifications import notify_vendor_assigned
from services.subscriptions import get_user_subscription
from services.vendor_assignments import (
    pending_queue_statement, requests_statement, find_pending_requests, find_urgent_requests,
    find_by_zone, find_by_user, find_recent_requests, get_request,
    find_available_vendors, apply_vendor_assignment, get_request_stats,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/")
async def list_pending_requests(
    request_type: RequestType | None = None,
    priority: RequestPriority | None = None,
    zone_id: uuid.UUID | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Pending queue, most urgent and then oldest first."""
    query = pending_queue_statement(
        request_type.value if request_type else None,
        priority.value if priority else None,
        zone_id,
    )
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return {
        "items": [VendorAssignmentResponse.model_validate(r) for r in result.scalars().all()],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


@router.get("/all")
async def list_all_requests(
    query: Annotated[VendorRequestQuery, Query()],
    db: AsyncSession = Depends(get_db),
):
    """History across all statuses; dates are whole local days."""
    statement = requests_statement(
        status=query.status,
        request_type=query.request_type.value if query.request_type else None,
        priority=query.priority.value if query.priority else None,
        zone_id=query.zone_id,
        user_id=query.user_id,
        start=timezone.start_of_day(query.date_from) if query.date_from else None,
        end=timezone.end_of_day(query.date_to) if query.date_to else None,
    )
    total = (await db.execute(select(func.count()).select_from(statement.subquery()))).scalar() or 0
    result = await db.execute(statement.offset((query.page - 1) * query.limit).limit(query.limit))
    return {
        "items": [VendorAssignmentResponse.model_validate(r) for r in result.scalars().all()],
        "total": total,
        "page": query.page,
        "limit": query.limit,
        "pages": math.ceil(total / query.limit) if total else 0,
    }


@router.get("/initial", response_model=list[VendorAssignmentResponse])
async def list_initial_requests(db: AsyncSession = Depends(get_db)):
    return await find_pending_requests(db, "initial_assignment")


@router.get("/switches", response_model=list[VendorAssignmentResponse])
async def list_switch_requests(db: AsyncSession = Depends(get_db)):
    return await find_pending_requests(db, "vendor_switch")


@router.get("/urgent", response_model=list[VendorAssignmentResponse])
async def list_urgent_requests(db: AsyncSession = Depends(get_db)):
    return await find_urgent_requests(db)


@router.get("/recent", response_model=list[VendorAssignmentResponse])
async def list_recent_requests(days: int = Query(7, ge=1, le=90), db: AsyncSession = Depends(get_db)):
    return await find_recent_requests(db, days)


@router.get("/stats")
async def request_stats(
    start: date | None = None,
    end: date | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Defaults to the last 30 days."""
    start_at = timezone.start_of_day(start) if start else timezone.start_of_day(timezone.add_days(-30))
    end_at = timezone.end_of_day(end) if end else timezone.now()
    return await get_request_stats(db, start_at, end_at)


@router.get("/zone/{zone_id}", response_model=list[VendorAssignmentResponse])
async def list_zone_requests(zone_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await find_by_zone(db, zone_id)


@router.get("/user/{user_id}", response_model=list[VendorAssignmentResponse])
async def list_user_requests(user_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await find_by_user(db, user_id)


@router.get("/{request_id}")
async def get_request_detail(request_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    request = await get_request(db, request_id)
    sub = request.user_subscription
    return {
        "request": VendorAssignmentResponse.model_validate(request),
        "subscription": {
            "id": str(sub.id),
            "status": sub.status,
            "plan": sub.plan_snapshot,
            "delivery_address": sub.delivery_address,
            "meal_timing": sub.meal_timing,
            "current_vendor_id": str(sub.current_vendor_id) if sub.current_vendor_id else None,
            "vendor_switch_used": sub.vendor_switch_used,
        },
        "zone": request.delivery_zone.summary() if request.delivery_zone else None,
    }


@router.get("/{request_id}/available-vendors", response_model=list[VendorResponse])
async def available_vendors(request_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    request = await get_request(db, request_id)
    sub = request.user_subscription
    vendors = await find_available_vendors(db, sub.plan.category)
    return [v for v in vendors if v.id != sub.current_vendor_id]


@router.post("/{request_id}/assign")
async def assign_vendor(
    request_id: uuid.UUID,
    data: AssignVendorBody,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    request = await get_request(db, request_id, for_update=True)
    sub = await get_user_subscription(db, request.user_subscription_id, for_update=True)
    vendor = await db.get(VendorProfile, data.vendor_id)
    if not vendor:
        raise NotFound("Vendor not found")

    apply_vendor_assignment(request, sub, vendor, admin.id, data.admin_notes)
    await db.commit()
    logger.info(
        "Vendor %s assigned to subscription %s via request %s by %s",
        vendor.id, sub.id, request.id, admin.id,
    )

    customer = await db.get(User, sub.user_id)
    if customer:
        await notify_vendor_assigned(customer, sub, vendor)
    return {
        "request": VendorAssignmentResponse.model_validate(request),
        "subscription_id": str(sub.id),
        "vendor_id": str(vendor.id),
    }


@router.post("/{request_id}/reject", response_model=VendorAssignmentResponse)
async def reject_request(
    request_id: uuid.UUID,
    data: RejectBody,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    request = await get_request(db, request_id, for_update=True)
    if not request.is_pending():
        raise InvalidStateTransition("Request has already been processed")
    request.reject(admin.id, data.rejection_reason, data.admin_notes)
    await db.commit()
    logger.info("Request %s rejected by %s", request.id, admin.id)
    return request


@router.patch("/{request_id}/priority", response_model=VendorAssignmentResponse)
async def update_request_priority(
    request_id: uuid.UUID,
    data: PriorityUpdate,
    db: AsyncSession = Depends(get_db),
):
    request = await get_request(db, request_id, for_update=True)
    if not request.is_pending():
        raise InvalidStateTransition("Only pending requests can be reprioritised")
    try:
        request.update_priority(data.priority.value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await db.commit()
    return request


@router.post("/{request_id}/complete", response_model=VendorAssignmentResponse)
async def complete_request(request_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    request = await get_request(db, request_id, for_update=True)
    if request.status != "approved":
        raise InvalidStateTransition("Only approved requests can be completed")
    request.complete()
    await db.commit()
    return request

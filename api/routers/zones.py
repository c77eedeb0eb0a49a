"""Delivery zone management and serviceability checks."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from deps import require_admin
from models.location_zone import LocationZone
from schemas import ZoneCreate, ZoneUpdate, ZoneResponse, DeliveryCheckRequest
from services.zones import (
    find_zones_by_pincode, check_service_availability, validate_delivery,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/", response_model=ZoneResponse, status_code=201)
async def create_zone(
    data: ZoneCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
):
    try:
        zone = LocationZone(**data.model_dump(mode="json"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.add(zone)
    await db.commit()
    await db.refresh(zone)
    logger.info("Zone %s created by %s", zone.zone_name, admin.id)
    return zone


@router.get("/", response_model=list[ZoneResponse])
async def list_zones(
    city: str | None = None,
    active_only: bool = True,
    db: AsyncSession = Depends(get_db),
):
    query = select(LocationZone).order_by(LocationZone.priority.desc(), LocationZone.zone_name)
    if active_only:
        query = query.where(LocationZone.is_active == True)
    if city:
        query = query.where(LocationZone.city.ilike(city))
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/check")
async def check_pincode(
    pincode: str = Query(..., min_length=6, max_length=6),
    vendor_type: str | None = Query(None, pattern="^(home_chef|food_vendor)$"),
    db: AsyncSession = Depends(get_db),
):
    """Is there any active zone serving this pincode right now?"""
    zones = await find_zones_by_pincode(db, pincode)
    return {
        "pincode": pincode,
        "available": await check_service_availability(db, pincode, vendor_type),
        "zones": [z.summary() for z in zones],
    }


@router.post("/validate-delivery")
async def validate_delivery_address(data: DeliveryCheckRequest, db: AsyncSession = Depends(get_db)):
    """Check an address against the zones for a plan category, with the delivery fee."""
    result = await validate_delivery(
        db, data.delivery_address.model_dump(), data.category.value, data.order_value,
    )
    return result.to_dict()


@router.get("/{zone_id}", response_model=ZoneResponse)
async def get_zone(zone_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    zone = await db.get(LocationZone, zone_id)
    if not zone:
        raise HTTPException(status_code=404, detail="Zone not found")
    return zone


@router.patch("/{zone_id}", response_model=ZoneResponse)
async def update_zone(
    zone_id: uuid.UUID,
    data: ZoneUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
):
    zone = await db.get(LocationZone, zone_id)
    if not zone:
        raise HTTPException(status_code=404, detail="Zone not found")

    try:
        for key, value in data.model_dump(mode="json", exclude_unset=True).items():
            setattr(zone, key, value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await db.commit()
    await db.refresh(zone)
    logger.info("Zone %s updated by %s", zone.zone_name, admin.id)
    return zone

"""
Delivery-zone matching for subscription purchases.

Flow:
  1. Pincode must be a 6-digit string
  2. Candidate zones = active zones covering the pincode, highest priority first
  3. Keep zones that serve the plan category (operating hours ignored;
     subscription deliveries start on a future date)
  4. Highest-priority survivor validates the address and prices delivery
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.location_zone import LocationZone, normalize_pincode

logger = logging.getLogger(__name__)


@dataclass
class DeliveryValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    zone: LocationZone | None = None
    delivery_fee: float | None = None
    distance_km: float | None = None
    suggested_zones: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "zone": self.zone.summary() if self.zone else None,
            "delivery_fee": self.delivery_fee,
            "distance_km": self.distance_km,
            "suggested_zones": self.suggested_zones,
        }


def extract_pincode(address) -> str | None:
    if not isinstance(address, dict):
        return None
    return normalize_pincode(address.get("zip_code"))


async def find_zones_by_pincode(db: AsyncSession, pincode) -> list[LocationZone]:
    """Active zones covering the pincode, highest priority first."""
    value = normalize_pincode(pincode)
    if value is None:
        return []
    result = await db.execute(
        select(LocationZone)
        .where(LocationZone.pincodes.contains([value]), LocationZone.is_active == True)
        .order_by(LocationZone.priority.desc(), LocationZone.created_at)
    )
    return list(result.scalars().all())


async def check_service_availability(db: AsyncSession, pincode, vendor_type: str | None = None) -> bool:
    zones = await find_zones_by_pincode(db, pincode)
    return any(zone.is_service_available(vendor_type) for zone in zones)


def validate_delivery_for_subscription(
    address,
    category: str,
    zones: list[LocationZone],
    order_value: float = 0.0,
) -> DeliveryValidation:
    """
    Decide whether a subscription of `category` can be delivered to `address`.

    `zones` is the raw result of the pincode lookup; it is echoed back as
    `suggested_zones` when nothing qualifies.
    """
    pincode = extract_pincode(address)
    if pincode is None:
        return DeliveryValidation(is_valid=False, errors=["A valid 6-digit pincode is required"])

    candidates = [z for z in zones if z.is_active and z.is_pincode_supported(pincode)]
    candidates.sort(key=lambda z: z.priority or 0, reverse=True)

    valid_zones = [
        z for z in candidates
        if z.is_service_available(None, skip_operating_hours=True)
        and z.is_subscription_category_supported(category)
    ]

    if not valid_zones:
        if candidates:
            error = f"Service not available for {category} subscriptions in this area"
        else:
            error = "Service not available in this area"
        logger.info("Delivery rejected for pincode %s (%s): %s", pincode, category, error)
        return DeliveryValidation(
            is_valid=False,
            errors=[error],
            suggested_zones=[z.summary() for z in zones],
        )

    zone = valid_zones[0]
    check = zone.validate_delivery_address(address)
    if not check["is_valid"]:
        logger.info("Address rejected by zone %s: %s", zone.zone_name, check["errors"])
        return DeliveryValidation(
            is_valid=False,
            errors=check["errors"],
            zone=zone,
            distance_km=check["distance_km"],
        )

    distance = check["distance_km"] or 0.0
    return DeliveryValidation(
        is_valid=True,
        zone=zone,
        distance_km=check["distance_km"],
        delivery_fee=zone.calculate_delivery_fee(distance, order_value),
    )


async def validate_delivery(
    db: AsyncSession,
    address,
    category: str,
    order_value: float = 0.0,
) -> DeliveryValidation:
    zones = await find_zones_by_pincode(db, extract_pincode(address))
    return validate_delivery_for_subscription(address, category, zones, order_value)

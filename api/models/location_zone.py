"""LocationZone ORM model: serviceable area, vendor-type support and delivery fee rules."""

import math
import re
import uuid
from datetime import datetime, time
from decimal import Decimal

from sqlalchemy import String, Integer, Numeric, Boolean, DateTime, Index
from sqlalchemy.dialects.postgresql import ARRAY, ENUM as PgEnum, JSONB
from sqlalchemy.orm import Mapped, mapped_column, validates

from db.database import Base
from services import timezone

PINCODE_RE = re.compile(r"^[0-9]{6}$")
EARTH_RADIUS_KM = 6371

SERVICE_TYPE_VENDOR_TYPES = {
    "vendor_only": ("food_vendor",),
    "home_chef_only": ("home_chef",),
    "both": ("home_chef", "food_vendor"),
}

# Plan category -> vendor types a zone must support. "universal" is handled separately.
CATEGORY_VENDOR_TYPES = {
    "home_chef": {"home_chef"},
    "home_chef_specific": {"home_chef"},
    "food_vendor": {"food_vendor"},
    "food_vendor_specific": {"food_vendor"},
    "both_options": {"home_chef", "food_vendor"},
}

DEFAULT_OPERATING_HOURS = {"start": "06:00", "end": "23:00"}
DEFAULT_DELIVERY_FEE = {"base_charge": 0.0, "per_km_charge": 0.0, "free_delivery_above": None}


def _is_number(value) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def calculate_distance(coord1: dict | None, coord2: dict | None) -> float:
    """
    Haversine distance in km between two {"lat", "lng"} points, rounded to 2 decimals.
    Returns inf for malformed input so radius checks reject.
    """
    if not coord1 or not coord2:
        return math.inf
    if not all(_is_number(c.get(k)) for c in (coord1, coord2) for k in ("lat", "lng")):
        return math.inf

    lat1, lng1 = float(coord1["lat"]), float(coord1["lng"])
    lat2, lng2 = float(coord2["lat"]), float(coord2["lng"])
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 2)


def normalize_pincode(pincode) -> str | None:
    """Return the pincode as a 6-digit string, or None when it is not one."""
    if pincode is None:
        return None
    value = str(pincode).strip()
    return value if PINCODE_RE.match(value) else None


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class LocationZone(Base):
    __tablename__ = "location_zones"
    __table_args__ = (
        Index("ix_location_zones_pincodes", "pincodes", postgresql_using="gin"),
        Index("ix_location_zones_city_active", "city", "is_active"),
        Index("ix_location_zones_active_priority", "is_active", "priority"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    zone_name: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[str] = mapped_column(String(50), nullable=False)
    state: Mapped[str | None] = mapped_column(String(50))
    country: Mapped[str] = mapped_column(String(50), default="India")
    pincodes: Mapped[list[str]] = mapped_column(ARRAY(String(6)), default=list)
    service_type: Mapped[str] = mapped_column(
        PgEnum("vendor_only", "home_chef_only", "both", name="zone_service_type"),
        default="both",
    )
    center_lat: Mapped[float] = mapped_column(Numeric(10, 7), nullable=False)
    center_lng: Mapped[float] = mapped_column(Numeric(10, 7), nullable=False)
    service_radius_km: Mapped[float] = mapped_column(Numeric(5, 2), default=10)
    operating_hours: Mapped[dict] = mapped_column(JSONB, default=lambda: dict(DEFAULT_OPERATING_HOURS))
    delivery_fee: Mapped[dict] = mapped_column(JSONB, default=lambda: dict(DEFAULT_DELIVERY_FEE))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now, onupdate=timezone.now)

    @validates("pincodes")
    def _dedupe_pincodes(self, key, pincodes):
        cleaned: list[str] = []
        for raw in pincodes or []:
            pincode = normalize_pincode(raw)
            if pincode is None:
                raise ValueError(f"Invalid pincode: {raw!r}")
            if pincode not in cleaned:
                cleaned.append(pincode)
        return cleaned

    # ── Derived state ──────────────────────────────────────

    @property
    def supported_vendor_types(self) -> tuple[str, ...]:
        return SERVICE_TYPE_VENDOR_TYPES.get(self.service_type or "both", ())

    @property
    def center(self) -> dict:
        return {"lat": float(self.center_lat), "lng": float(self.center_lng)}

    def summary(self) -> dict:
        return {
            "id": str(self.id) if self.id else None,
            "zone_name": self.zone_name,
            "city": self.city,
            "service_type": self.service_type,
            "supported_vendor_types": list(self.supported_vendor_types),
            "priority": self.priority or 0,
        }

    # ── Rules ──────────────────────────────────────────────

    def is_pincode_supported(self, pincode) -> bool:
        value = normalize_pincode(pincode)
        return value is not None and value in (self.pincodes or [])

    def is_within_operating_hours(self, at: datetime | None = None) -> bool:
        hours = self.operating_hours or DEFAULT_OPERATING_HOURS
        start = _parse_hhmm(hours.get("start", DEFAULT_OPERATING_HOURS["start"]))
        end = _parse_hhmm(hours.get("end", DEFAULT_OPERATING_HOURS["end"]))
        current = timezone.to_local(at or timezone.now()).time()
        if start <= end:
            return start <= current <= end
        # Window wraps past midnight
        return current >= start or current <= end

    def is_service_available(
        self,
        vendor_type: str | None = None,
        skip_operating_hours: bool = False,
        at: datetime | None = None,
    ) -> bool:
        if not self.is_active:
            return False
        if vendor_type and vendor_type not in self.supported_vendor_types:
            return False
        if not skip_operating_hours and not self.is_within_operating_hours(at):
            return False
        return True

    def is_subscription_category_supported(self, category: str) -> bool:
        supported = set(self.supported_vendor_types)
        if category == "universal":
            return bool(supported)
        required = CATEGORY_VENDOR_TYPES.get(category)
        if not required:
            return False
        return required <= supported

    def is_in_service_radius(self, coordinates: dict | None) -> bool:
        return calculate_distance(self.center, coordinates) <= float(self.service_radius_km or 0)

    def validate_delivery_address(self, address) -> dict:
        """
        Check an address against this zone.

        The address carries `zip_code` and optionally GeoJSON-style
        `coordinates: {"type": "Point", "coordinates": [lng, lat]}`.

        Returns:
            {"is_valid": bool, "errors": [...], "distance_km": float | None}
        """
        errors: list[str] = []
        distance_km = None

        if not isinstance(address, dict):
            return {"is_valid": False, "errors": ["Invalid delivery address format"], "distance_km": None}

        zip_code = address.get("zip_code")
        if not zip_code:
            errors.append("Zip code is required")
        elif not self.is_pincode_supported(zip_code):
            errors.append("Delivery not available to this pincode")

        geo = address.get("coordinates")
        if geo:
            points = geo.get("coordinates") if isinstance(geo, dict) else None
            if not isinstance(points, (list, tuple)) or len(points) != 2:
                errors.append("Invalid coordinates format")
            else:
                lng, lat = points
                if not _is_number(lat) or not _is_number(lng):
                    errors.append("Invalid coordinate values")
                elif not (-90 <= lat <= 90 and -180 <= lng <= 180):
                    errors.append("Coordinates out of valid range")
                else:
                    distance_km = calculate_distance(self.center, {"lat": lat, "lng": lng})
                    if distance_km > float(self.service_radius_km or 0):
                        errors.append("Delivery address is outside service area")

        return {"is_valid": not errors, "errors": errors, "distance_km": distance_km}

    def calculate_delivery_fee(self, distance_km: float, order_value: float = 0.0) -> float:
        fee = {**DEFAULT_DELIVERY_FEE, **(self.delivery_fee or {})}
        free_above = fee.get("free_delivery_above")
        if free_above is not None and order_value >= float(free_above):
            return 0.0
        total = float(fee.get("base_charge") or 0) + distance_km * float(fee.get("per_km_charge") or 0)
        return round(total, 2)

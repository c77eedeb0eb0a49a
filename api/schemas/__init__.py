"""Pydantic schemas for API request/response models."""

from __future__ import annotations
import re
import uuid
from datetime import datetime, date
from enum import Enum
from pydantic import BaseModel, Field, field_validator, model_validator

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ── Enums ──────────────────────────────────────────────────

class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    COMPLETED = "completed"


class PlanCategory(str, Enum):
    UNIVERSAL = "universal"
    FOOD_VENDOR_SPECIFIC = "food_vendor_specific"
    HOME_CHEF_SPECIFIC = "home_chef_specific"
    BOTH_OPTIONS = "both_options"


class PlanDuration(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class VendorType(str, Enum):
    HOME_CHEF = "home_chef"
    FOOD_VENDOR = "food_vendor"


class ServiceType(str, Enum):
    VENDOR_ONLY = "vendor_only"
    HOME_CHEF_ONLY = "home_chef_only"
    BOTH = "both"


class RequestType(str, Enum):
    INITIAL_ASSIGNMENT = "initial_assignment"
    VENDOR_SWITCH = "vendor_switch"


class RequestPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


# ── Delivery Address ───────────────────────────────────────

class GeoPoint(BaseModel):
    type: str = "Point"
    # [lng, lat]; range checks happen in zone validation so the customer gets a zone error
    coordinates: list = []


class DeliveryAddress(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str
    landmark: str | None = None
    coordinates: GeoPoint | None = None


# ── Zone Schemas ───────────────────────────────────────────

class OperatingHours(BaseModel):
    start: str = "06:00"
    end: str = "23:00"

    @field_validator("start", "end")
    @classmethod
    def check_hhmm(cls, v: str) -> str:
        if not HHMM_RE.match(v):
            raise ValueError("time must be HH:MM")
        return v


class DeliveryFeeConfig(BaseModel):
    base_charge: float = Field(default=0, ge=0)
    per_km_charge: float = Field(default=0, ge=0)
    free_delivery_above: float | None = Field(default=None, ge=0)


class ZoneCreate(BaseModel):
    zone_name: str = Field(min_length=1, max_length=100)
    city: str
    state: str
    country: str = "India"
    pincodes: list[str] = Field(min_length=1)
    service_type: ServiceType = ServiceType.BOTH
    center_lat: float = Field(ge=-90, le=90)
    center_lng: float = Field(ge=-180, le=180)
    service_radius_km: float = Field(gt=0)
    operating_hours: OperatingHours = OperatingHours()
    delivery_fee: DeliveryFeeConfig = DeliveryFeeConfig()
    priority: int = 1
    is_active: bool = True


class ZoneUpdate(BaseModel):
    zone_name: str | None = None
    pincodes: list[str] | None = None
    service_type: ServiceType | None = None
    service_radius_km: float | None = Field(default=None, gt=0)
    operating_hours: OperatingHours | None = None
    delivery_fee: DeliveryFeeConfig | None = None
    priority: int | None = None
    is_active: bool | None = None


class ZoneResponse(BaseModel):
    id: uuid.UUID
    zone_name: str
    city: str
    state: str
    country: str
    pincodes: list[str]
    service_type: str
    supported_vendor_types: list[str]
    center_lat: float
    center_lng: float
    service_radius_km: float
    operating_hours: dict
    delivery_fee: dict
    priority: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class DeliveryCheckRequest(BaseModel):
    delivery_address: DeliveryAddress
    category: PlanCategory
    order_value: float = Field(default=0, ge=0)


# ── Plan Schemas ───────────────────────────────────────────

class PlanCreate(BaseModel):
    plan_name: str = Field(min_length=1, max_length=100)
    duration: PlanDuration
    custom_duration_days: int | None = Field(default=None, gt=0)
    meals_per_plan: int = Field(gt=0)
    user_skip_meal_per_plan: int = Field(default=0, ge=0)
    original_price: float = Field(gt=0)
    discounted_price: float = Field(gt=0)
    category: PlanCategory
    free_delivery: bool = False
    description: str | None = Field(default=None, max_length=500)
    features: list[str] = []
    terms: str | None = None
    is_lunch_available: bool = True
    lunch_window_start: str = "11:00"
    lunch_window_end: str = "15:00"
    is_dinner_available: bool = True
    dinner_window_start: str = "18:00"
    dinner_window_end: str = "22:00"

    @field_validator("lunch_window_start", "lunch_window_end", "dinner_window_start", "dinner_window_end")
    @classmethod
    def check_hhmm(cls, v: str) -> str:
        if not HHMM_RE.match(v):
            raise ValueError("time must be HH:MM")
        return v

    @model_validator(mode="after")
    def check_prices(self):
        if self.discounted_price > self.original_price:
            raise ValueError("discounted_price cannot exceed original_price")
        if self.duration == PlanDuration.CUSTOM and not self.custom_duration_days:
            raise ValueError("custom_duration_days is required for custom plans")
        return self


class PlanResponse(BaseModel):
    id: uuid.UUID
    plan_name: str
    duration: str
    duration_days: int
    meals_per_plan: int
    user_skip_meal_per_plan: int
    original_price: float
    discounted_price: float
    category: str
    free_delivery: bool
    description: str | None
    features: list[str]
    is_lunch_available: bool
    lunch_window_start: str
    lunch_window_end: str
    is_dinner_available: bool
    dinner_window_start: str
    dinner_window_end: str
    is_active: bool
    current_purchases: int

    class Config:
        from_attributes = True


# ── Purchase Schemas ───────────────────────────────────────

class MealSlot(BaseModel):
    enabled: bool = False
    time: str | None = None

    @field_validator("time")
    @classmethod
    def check_hhmm(cls, v: str | None) -> str | None:
        if v is not None and not HHMM_RE.match(v):
            raise ValueError("time must be HH:MM")
        return v


class MealTiming(BaseModel):
    lunch: MealSlot = MealSlot()
    dinner: MealSlot = MealSlot()


class PurchaseInitiate(BaseModel):
    plan_id: uuid.UUID
    delivery_address: DeliveryAddress
    meal_timing: MealTiming
    start_date: date | None = None
    promo_code: str | None = Field(default=None, max_length=20)
    payment_method: str = "upi"


class PaymentVerify(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


# ── User Subscription Schemas ──────────────────────────────

class UserSubscriptionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID
    status: str
    credits_granted: int
    credits_used: int
    skip_credit_granted: int
    skip_credit_available: int
    skip_credit_used: int
    start_date: datetime
    end_date: datetime
    original_price: float
    discount_applied: float
    final_price: float
    delivery_address: dict
    meal_timing: dict
    current_vendor_id: uuid.UUID | None
    current_vendor_type: str | None
    is_vendor_assigned: bool
    vendor_switch_used: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class VendorSwitchBody(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class UseCreditsRequest(BaseModel):
    credits: int = Field(default=1, gt=0)


# ── Vendor Assignment Schemas ──────────────────────────────

class VendorAssignmentResponse(BaseModel):
    id: uuid.UUID
    user_subscription_id: uuid.UUID
    user_id: uuid.UUID
    request_type: str
    current_vendor_id: uuid.UUID | None
    reason: str
    description: str | None
    requested_vendor_type: str
    status: str
    priority: str
    delivery_zone_id: uuid.UUID | None
    requested_at: datetime
    processed_at: datetime | None
    processed_by: uuid.UUID | None
    new_vendor_id: uuid.UUID | None
    admin_notes: str | None
    rejection_reason: str | None

    class Config:
        from_attributes = True


class AssignVendorBody(BaseModel):
    vendor_id: uuid.UUID
    admin_notes: str | None = Field(default=None, max_length=500)


class RejectBody(BaseModel):
    rejection_reason: str = Field(min_length=1, max_length=300)
    admin_notes: str | None = Field(default=None, max_length=500)


class PriorityUpdate(BaseModel):
    priority: RequestPriority


class VendorResponse(BaseModel):
    id: uuid.UUID
    business_name: str
    vendor_type: str
    is_verified: bool
    is_available: bool
    rating: float
    daily_capacity: int

    class Config:
        from_attributes = True


# ── Admin Schemas ──────────────────────────────────────────

class AdminSubscriptionQuery(BaseModel):
    search: str | None = None
    status: str | None = None
    vendor_assigned: str | None = Field(default=None, pattern="^(assigned|unassigned)$")
    date_from: date | None = None
    date_to: date | None = None
    price_min: float | None = Field(default=None, ge=0)
    price_max: float | None = Field(default=None, ge=0)
    plan_id: uuid.UUID | None = None
    vendor_id: uuid.UUID | None = None
    category: str | None = Field(default=None, pattern="^(universal|food_vendor_specific|home_chef_specific|both_options)$")
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: str = "created_at"
    sort_order: str = Field(default="desc", pattern="^(asc|desc)$")


class VendorRequestQuery(BaseModel):
    status: str | None = Field(default=None, pattern="^(pending|approved|rejected|completed)$")
    request_type: RequestType | None = None
    priority: RequestPriority | None = None
    zone_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    date_from: date | None = None
    date_to: date | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


# ── Transaction Schemas ────────────────────────────────────

class TransactionResponse(BaseModel):
    id: uuid.UUID
    transaction_id: str
    user_id: uuid.UUID
    plan_id: uuid.UUID
    user_subscription_id: uuid.UUID | None
    type: str
    original_amount: float
    discount_amount: float
    final_amount: float
    currency: str
    payment_method: str
    gateway_order_id: str
    gateway_payment_id: str | None
    status: str
    promo_code: str | None
    failure_reason: str | None
    refund_details: dict | None
    processed_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionQuery(BaseModel):
    status: str | None = Field(default=None, pattern="^(pending|success|failed|refunded)$")
    payment_method: str | None = None
    type: str | None = Field(default=None, pattern="^(purchase|refund|cancellation)$")
    start_date: date | None = None
    end_date: date | None = None
    search: str | None = Field(default=None, max_length=64)
    user_id: uuid.UUID | None = None
    subscription_id: uuid.UUID | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: str = Field(default="created_at", pattern="^(created_at|final_amount|status|processed_at)$")
    sort_order: str = Field(default="desc", pattern="^(asc|desc)$")


# ── Promo Code Schemas ─────────────────────────────────────

class PromoCodeFields(BaseModel):
    description: str = Field(min_length=1, max_length=500)
    discount_type: DiscountType
    discount_value: float = Field(gt=0)
    min_order_value: float = Field(default=0, ge=0)
    max_discount: float | None = Field(default=None, gt=0)
    usage_limit: int = Field(ge=1)
    user_usage_limit: int = Field(default=1, ge=1)
    valid_from: datetime
    valid_until: datetime
    applicable_plan_ids: list[uuid.UUID] = []
    applicable_categories: list[PlanCategory] = []
    is_active: bool = True

    @model_validator(mode="after")
    def check_rules(self):
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return self


class PromoCodeCreate(PromoCodeFields):
    code: str = Field(pattern="^[A-Za-z0-9]{3,20}$")


class PromoCodeBulkCreate(PromoCodeFields):
    count: int = Field(default=1, ge=1, le=100)


class PromoCodeUpdate(BaseModel):
    code: str | None = Field(default=None, pattern="^[A-Za-z0-9]{3,20}$")
    description: str | None = Field(default=None, min_length=1, max_length=500)
    discount_type: DiscountType | None = None
    discount_value: float | None = Field(default=None, gt=0)
    min_order_value: float | None = Field(default=None, ge=0)
    max_discount: float | None = Field(default=None, gt=0)
    usage_limit: int | None = Field(default=None, ge=1)
    user_usage_limit: int | None = Field(default=None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    applicable_plan_ids: list[uuid.UUID] | None = None
    applicable_categories: list[PlanCategory] | None = None
    is_active: bool | None = None


class PromoCodeResponse(BaseModel):
    id: uuid.UUID
    code: str
    description: str
    discount_type: str
    discount_value: float
    min_order_value: float
    max_discount: float | None
    usage_limit: int
    used_count: int
    user_usage_limit: int
    valid_from: datetime
    valid_until: datetime
    applicable_plan_ids: list[uuid.UUID]
    applicable_categories: list[str]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PromoCodeQuery(BaseModel):
    is_active: bool | None = None
    discount_type: DiscountType | None = None
    state: str | None = Field(default=None, pattern="^(usable|expired|exhausted)$")
    search: str | None = Field(default=None, max_length=50)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class PromoValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=20)
    plan_id: uuid.UUID
    order_value: float | None = Field(default=None, gt=0)


class PaginatedResponse(BaseModel):
    items: list
    total: int
    page: int
    limit: int
    pages: int

"""
UserSubscription ORM model: a customer's purchased plan.

Holds meal credits, skip credits, the assigned vendor and lifecycle status.
Accounting methods mutate the instance only; the caller commits the session.
"""

import math
import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    String, Integer, Numeric, Boolean, DateTime, ForeignKey, Text,
    CheckConstraint, Index,
)
from sqlalchemy.dialects.postgresql import ENUM as PgEnum, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.database import Base
from errors import (
    DomainError, InsufficientCredits, InvalidStateTransition, NoSkipCredits,
    VendorSwitchNotAllowed,
)
from services import timezone

SUBSCRIPTION_STATUSES = ("pending", "active", "cancelled", "expired", "completed")

# Two skipped meals buy one extra day on the subscription.
SKIPS_PER_EXTENSION_DAY = 2


def _iso(value) -> str | None:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, datetime) else str(value)


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        CheckConstraint("credits_used <= credits_granted", name="ck_user_subscriptions_credits"),
        CheckConstraint("end_date > start_date", name="ck_user_subscriptions_dates"),
        CheckConstraint("skip_credit_available >= 0", name="ck_user_subscriptions_skips"),
        Index("ix_user_subscriptions_user_status", "user_id", "status"),
        Index("ix_user_subscriptions_end_status", "end_date", "status"),
        Index("ix_user_subscriptions_vendor", "current_vendor_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    plan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscription_plans.id"), nullable=False, index=True)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("transactions.id", use_alter=True, name="fk_user_subscriptions_transaction"),
    )
    status: Mapped[str] = mapped_column(
        PgEnum(*SUBSCRIPTION_STATUSES, name="user_subscription_status"),
        default="pending",
    )

    # Credits
    credits_granted: Mapped[int] = mapped_column(Integer, nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, default=0)
    skip_credit_granted: Mapped[int] = mapped_column(Integer, default=0)
    skip_credit_available: Mapped[int] = mapped_column(Integer, default=0)
    skip_credit_used: Mapped[int] = mapped_column(Integer, default=0)

    # Period
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=False)

    # Pricing
    original_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    discount_applied: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    final_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    promo_code_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("promo_codes.id"))

    # Delivery & meals
    delivery_address: Mapped[dict] = mapped_column(JSONB, default=dict)
    meal_timing: Mapped[dict] = mapped_column(JSONB, default=dict)
    plan_snapshot: Mapped[dict | None] = mapped_column(JSONB)

    # Vendor
    current_vendor_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("vendor_profiles.id"))
    current_vendor_type: Mapped[str | None] = mapped_column(String(20))
    vendor_assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    vendor_assigned_by: Mapped[uuid.UUID | None] = mapped_column()
    is_vendor_assigned: Mapped[bool] = mapped_column(Boolean, default=False)
    vendor_switch_used: Mapped[bool] = mapped_column(Boolean, default=False)
    vendor_switch_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    vendors_assigned_history: Mapped[list] = mapped_column(JSONB, default=list)

    renewal_history: Mapped[list] = mapped_column(JSONB, default=list)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    refund_amount: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    payment_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now, onupdate=timezone.now)

    # Relationships
    plan = relationship("SubscriptionPlan", lazy="selectin")

    def __init__(self, **kwargs):
        kwargs.setdefault("status", "pending")
        kwargs.setdefault("credits_used", 0)
        kwargs.setdefault("skip_credit_available", 0)
        kwargs.setdefault("skip_credit_granted", kwargs["skip_credit_available"])
        kwargs.setdefault("skip_credit_used", 0)
        kwargs.setdefault("is_vendor_assigned", False)
        kwargs.setdefault("vendor_switch_used", False)
        kwargs.setdefault("vendors_assigned_history", [])
        kwargs.setdefault("renewal_history", [])
        kwargs.setdefault("discount_applied", 0)
        kwargs.setdefault("start_date", timezone.now())
        super().__init__(**kwargs)

    # ── Status ─────────────────────────────────────────────

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or timezone.now()
        return self.status == "active" and now <= timezone.to_local(self.end_date)

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or timezone.now()
        return now > timezone.to_local(self.end_date)

    def get_days_remaining(self, now: datetime | None = None) -> int:
        """Whole days left, rounded up. Negative once the subscription has lapsed."""
        now = now or timezone.now()
        delta = timezone.to_local(self.end_date) - now
        return math.ceil(delta.total_seconds() / 86400)

    def activate(self, now: datetime | None = None):
        if self.status == "active":
            return
        if self.status != "pending":
            raise InvalidStateTransition(f"Cannot activate a {self.status} subscription")
        self.status = "active"
        self.payment_completed_at = self.payment_completed_at or now or timezone.now()

    def cancel(self, reason: str, refund_amount: float = 0, now: datetime | None = None):
        if self.status in ("cancelled", "expired", "completed"):
            raise InvalidStateTransition(f"Subscription is already {self.status}")
        self.status = "cancelled"
        self.cancelled_at = now or timezone.now()
        self.cancellation_reason = reason
        self.refund_amount = refund_amount

    def mark_expired(self):
        if self.status == "active":
            self.status = "expired"

    def renew(self, new_end_date: datetime, transaction_id: uuid.UUID, now: datetime | None = None):
        if new_end_date <= timezone.to_local(self.start_date):
            raise DomainError("New end date must be after the start date")
        self.end_date = new_end_date
        self.renewal_history = [
            *(self.renewal_history or []),
            {
                "renewed_at": _iso(now or timezone.now()),
                "new_end_date": _iso(new_end_date),
                "transaction_id": str(transaction_id),
            },
        ]

    # ── Credits ────────────────────────────────────────────

    def get_remaining_credits(self) -> int:
        return max(0, (self.credits_granted or 0) - (self.credits_used or 0))

    def can_use_credits(self, credits: int, now: datetime | None = None) -> bool:
        return self.is_active(now) and self.get_remaining_credits() >= credits

    def use_credits(self, credits: int, now: datetime | None = None) -> int:
        """Consume meal credits. Returns the remaining balance."""
        if credits <= 0:
            raise DomainError("Credits to use must be positive")
        if not self.can_use_credits(credits, now):
            raise InsufficientCredits("Insufficient credits or subscription not active")
        self.credits_used = (self.credits_used or 0) + credits
        return self.get_remaining_credits()

    def skip_meal(self, now: datetime | None = None) -> bool:
        """
        Spend one skip credit.

        Every second cumulative skip pushes end_date out by one day; an odd
        skip waits for its pair. Returns True when this call extended the
        subscription.
        """
        if not self.skip_credit_available or not self.is_active(now):
            raise NoSkipCredits("No skip credits available or subscription not active")

        self.skip_credit_available -= 1
        self.skip_credit_used = (self.skip_credit_used or 0) + 1

        if self.skip_credit_used % SKIPS_PER_EXTENSION_DAY == 0:
            self.end_date = timezone.to_local(self.end_date) + timedelta(days=1)
            return True
        return False

    def get_daily_meal_count(self) -> int:
        timing = self.meal_timing or {}
        return sum(1 for meal in ("lunch", "dinner") if (timing.get(meal) or {}).get("enabled"))

    # ── Vendor ─────────────────────────────────────────────

    def assign_vendor(
        self,
        vendor_id: uuid.UUID,
        vendor_type: str,
        assigned_by: uuid.UUID | None,
        now: datetime | None = None,
    ):
        now = now or timezone.now()
        if self.current_vendor_id is not None:
            archived = {
                "vendor_id": str(self.current_vendor_id),
                "vendor_type": self.current_vendor_type,
                "assigned_at": _iso(self.vendor_assigned_at),
                "assigned_by": str(self.vendor_assigned_by) if self.vendor_assigned_by else None,
                "deassigned_at": _iso(now),
                "reason": "vendor_switch" if self.vendor_switch_used else "admin_reassignment",
            }
            self.vendors_assigned_history = [*(self.vendors_assigned_history or []), archived]

        self.current_vendor_id = vendor_id
        self.current_vendor_type = vendor_type
        self.vendor_assigned_at = now
        self.vendor_assigned_by = assigned_by
        self.is_vendor_assigned = True

    def can_switch_vendor(self, now: datetime | None = None) -> bool:
        return (
            not self.vendor_switch_used
            and self.is_active(now)
            and bool(self.is_vendor_assigned)
            and self.current_vendor_id is not None
        )

    def use_vendor_switch(self, now: datetime | None = None):
        """Consume the one vendor switch a subscription is allowed."""
        if not self.can_switch_vendor(now):
            raise VendorSwitchNotAllowed("Vendor switch not available for this subscription")
        self.vendor_switch_used = True
        self.vendor_switch_used_at = now or timezone.now()

"""SubscriptionPlan ORM model: purchasable meal plan."""

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, Numeric, Boolean, DateTime, Text, Index
from sqlalchemy.dialects.postgresql import ARRAY, ENUM as PgEnum
from sqlalchemy.orm import Mapped, mapped_column

from db.database import Base
from services import timezone

PLAN_CATEGORIES = ("universal", "food_vendor_specific", "home_chef_specific", "both_options")

DURATION_DAYS = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
}

VENDOR_TYPES = ("home_chef", "food_vendor")


def vendor_types_for_category(category: str) -> tuple[str, ...]:
    """Vendor types that can fulfil a plan of this category."""
    if category == "home_chef_specific":
        return ("home_chef",)
    if category == "food_vendor_specific":
        return ("food_vendor",)
    return VENDOR_TYPES


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"
    __table_args__ = (
        Index("ix_subscription_plans_category_active", "category", "is_active"),
        Index("ix_subscription_plans_active_price", "is_active", "discounted_price"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    plan_name: Mapped[str] = mapped_column(String(100), nullable=False)
    duration: Mapped[str] = mapped_column(
        PgEnum("daily", "weekly", "monthly", "custom", name="plan_duration"), nullable=False,
    )
    custom_duration_days: Mapped[int | None] = mapped_column(Integer)
    meals_per_plan: Mapped[int] = mapped_column(Integer, nullable=False)
    user_skip_meal_per_plan: Mapped[int] = mapped_column(Integer, default=0)
    original_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    discounted_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    category: Mapped[str] = mapped_column(PgEnum(*PLAN_CATEGORIES, name="plan_category"), nullable=False)
    free_delivery: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[str | None] = mapped_column(String(500))
    features: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    terms: Mapped[str | None] = mapped_column(Text)

    # Meal windows ("HH:MM")
    is_lunch_available: Mapped[bool] = mapped_column(Boolean, default=True)
    lunch_window_start: Mapped[str] = mapped_column(String(5), default="11:00")
    lunch_window_end: Mapped[str] = mapped_column(String(5), default="15:00")
    is_dinner_available: Mapped[bool] = mapped_column(Boolean, default=True)
    dinner_window_start: Mapped[str] = mapped_column(String(5), default="18:00")
    dinner_window_end: Mapped[str] = mapped_column(String(5), default="22:00")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    current_purchases: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now, onupdate=timezone.now)

    @property
    def duration_days(self) -> int:
        if self.duration == "custom":
            return self.custom_duration_days or 1
        return DURATION_DAYS[self.duration]

    def can_purchase(self) -> bool:
        return bool(self.is_active)

    def calculate_credits(self) -> int:
        return self.meals_per_plan

    def get_discount_amount(self) -> float:
        return round(float(self.original_price) - float(self.discounted_price), 2)

    def get_discount_percentage(self) -> float:
        if not self.original_price:
            return 0.0
        return round(self.get_discount_amount() / float(self.original_price) * 100, 2)

    def meal_window(self, meal: str) -> tuple[bool, str, str]:
        """(available, start, end) for "lunch" or "dinner"."""
        if meal == "lunch":
            return bool(self.is_lunch_available), self.lunch_window_start, self.lunch_window_end
        return bool(self.is_dinner_available), self.dinner_window_start, self.dinner_window_end

    def increment_purchases(self):
        self.current_purchases = (self.current_purchases or 0) + 1

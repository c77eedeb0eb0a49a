"""PromoCode ORM model: percentage or flat discounts on plan purchases."""

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, Numeric, Boolean, DateTime, CheckConstraint
from sqlalchemy.dialects.postgresql import ARRAY, ENUM as PgEnum, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.database import Base
from services import timezone


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint("valid_until > valid_from", name="ck_promo_codes_validity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    discount_type: Mapped[str] = mapped_column(
        PgEnum("percentage", "flat", name="promo_discount_type"), nullable=False,
    )
    discount_value: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    min_order_value: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    max_discount: Mapped[float | None] = mapped_column(Numeric(10, 2))
    usage_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    user_usage_limit: Mapped[int] = mapped_column(Integer, default=1)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    applicable_plan_ids: Mapped[list[uuid.UUID]] = mapped_column(ARRAY(UUID(as_uuid=True)), default=list)
    applicable_categories: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or timezone.now()
        return (
            bool(self.is_active)
            and timezone.to_local(self.valid_from) <= now <= timezone.to_local(self.valid_until)
            and (self.used_count or 0) < self.usage_limit
        )

    def calculate_discount(self, order_value: float, now: datetime | None = None) -> tuple[float, str | None]:
        """Returns (discount, error). Discount is capped by max_discount and the order value."""
        if not self.is_valid(now):
            return 0.0, "Promo code is not valid"
        if order_value < float(self.min_order_value or 0):
            return 0.0, f"Minimum order value of ₹{float(self.min_order_value):g} required"

        if self.discount_type == "percentage":
            discount = order_value * float(self.discount_value) / 100
            if self.max_discount and discount > float(self.max_discount):
                discount = float(self.max_discount)
        else:
            discount = float(self.discount_value)

        return round(min(discount, order_value), 2), None

    def is_applicable_to_plan(self, plan_id: uuid.UUID, category: str) -> bool:
        if self.applicable_plan_ids:
            return plan_id in self.applicable_plan_ids
        if self.applicable_categories:
            return category in self.applicable_categories
        return True

    def increment_usage(self):
        self.used_count = (self.used_count or 0) + 1

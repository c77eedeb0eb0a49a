"""Transaction ORM model: one payment attempt against the gateway."""

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, Numeric, DateTime, ForeignKey, Text, CheckConstraint, Index
from sqlalchemy.dialects.postgresql import ENUM as PgEnum, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from db.database import Base
from services import timezone

PAYMENT_STATUSES = ("pending", "success", "failed", "refunded")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("final_amount = original_amount - discount_amount", name="ck_transactions_final_amount"),
        CheckConstraint("discount_amount <= original_amount", name="ck_transactions_discount"),
        Index("ix_transactions_user_status", "user_id", "status"),
        Index("ix_transactions_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    plan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscription_plans.id"), nullable=False)
    user_subscription_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("user_subscriptions.id"))
    type: Mapped[str] = mapped_column(
        PgEnum("purchase", "refund", "cancellation", name="transaction_type"), default="purchase",
    )
    original_amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    discount_amount: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    final_amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    payment_method: Mapped[str] = mapped_column(String(20), default="upi")
    payment_gateway: Mapped[str] = mapped_column(String(20), default="razorpay")
    gateway_order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(PgEnum(*PAYMENT_STATUSES, name="payment_status"), default="pending")
    promo_code: Mapped[str | None] = mapped_column(String(20))
    credits_added: Mapped[int] = mapped_column(Integer, default=0)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    refund_details: Mapped[dict | None] = mapped_column(JSONB)
    webhook_data: Mapped[dict | None] = mapped_column(JSONB)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now, onupdate=timezone.now)

    def __init__(self, **kwargs):
        kwargs.setdefault("status", "pending")
        kwargs.setdefault("discount_amount", 0)
        if kwargs.get("transaction_id"):
            kwargs["transaction_id"] = kwargs["transaction_id"].upper()
        super().__init__(**kwargs)

    def is_successful(self) -> bool:
        return self.status == "success"

    def mark_as_success(self, gateway_payment_id: str | None, credits_added: int = 0):
        self.status = "success"
        self.gateway_payment_id = gateway_payment_id or self.gateway_payment_id
        self.credits_added = credits_added
        self.failure_reason = None
        self.processed_at = timezone.now()

    def mark_as_failed(self, reason: str):
        self.status = "failed"
        self.failure_reason = reason
        self.processed_at = timezone.now()

    def mark_as_refunded(self, refund_details: dict):
        self.status = "refunded"
        self.refund_details = refund_details
        self.processed_at = timezone.now()

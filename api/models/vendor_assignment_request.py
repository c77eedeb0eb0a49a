"""VendorAssignmentRequest ORM model: admin queue item for initial vendor assignment and switches."""

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import ENUM as PgEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.database import Base
from services import timezone

REQUEST_TYPES = ("initial_assignment", "vendor_switch")
REQUEST_STATUSES = ("pending", "approved", "rejected", "completed")
REQUEST_REASONS = (
    "initial_purchase",
    "poor_food_quality",
    "late_delivery",
    "vendor_unavailable",
    "dietary_restrictions",
    "customer_preference",
    "vendor_switch_request",
    "admin_reassignment",
    "other",
)

# Queue order is by this weight (descending), never by the label.
PRIORITY_WEIGHTS = {
    "urgent": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}

DEFAULT_PRIORITY = {
    "initial_assignment": "high",
    "vendor_switch": "medium",
}


class VendorAssignmentRequest(Base):
    __tablename__ = "vendor_assignment_requests"
    __table_args__ = (
        Index("ix_var_queue", "status", "request_type", "priority_weight", "requested_at"),
        Index("ix_var_processed", "processed_by", "processed_at"),
        Index("ix_var_zone_status", "delivery_zone_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("user_subscriptions.id"), nullable=False, index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(
        PgEnum(*REQUEST_TYPES, name="vendor_request_type"), nullable=False,
    )
    current_vendor_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("vendor_profiles.id"))
    reason: Mapped[str] = mapped_column(PgEnum(*REQUEST_REASONS, name="vendor_request_reason"), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    requested_vendor_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum(*REQUEST_STATUSES, name="vendor_request_status"), default="pending",
    )
    priority: Mapped[str] = mapped_column(
        PgEnum(*PRIORITY_WEIGHTS, name="vendor_request_priority"), nullable=False,
    )
    priority_weight: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_zone_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("location_zones.id"))
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processed_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"))
    new_vendor_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("vendor_profiles.id"))
    admin_notes: Mapped[str | None] = mapped_column(String(500))
    rejection_reason: Mapped[str | None] = mapped_column(String(300))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now, onupdate=timezone.now)

    # Relationships
    user_subscription = relationship("UserSubscription", lazy="selectin")
    delivery_zone = relationship("LocationZone", lazy="selectin")

    def __init__(self, **kwargs):
        kwargs.setdefault("status", "pending")
        kwargs.setdefault("priority", DEFAULT_PRIORITY.get(kwargs.get("request_type"), "medium"))
        kwargs["priority_weight"] = PRIORITY_WEIGHTS[kwargs["priority"]]
        kwargs.setdefault("requested_at", timezone.now())
        super().__init__(**kwargs)

    # Transitions are not guarded here; admin endpoints check is_pending() first.

    def approve(self, processed_by: uuid.UUID, new_vendor_id: uuid.UUID, admin_notes: str | None = None):
        self.status = "approved"
        self.processed_at = timezone.now()
        self.processed_by = processed_by
        self.new_vendor_id = new_vendor_id
        self.admin_notes = admin_notes

    def reject(self, processed_by: uuid.UUID, rejection_reason: str, admin_notes: str | None = None):
        self.status = "rejected"
        self.processed_at = timezone.now()
        self.processed_by = processed_by
        self.rejection_reason = rejection_reason
        self.admin_notes = admin_notes

    def complete(self):
        self.status = "completed"

    def update_priority(self, priority: str):
        if priority not in PRIORITY_WEIGHTS:
            raise ValueError(f"Unknown priority: {priority}")
        self.priority = priority
        self.priority_weight = PRIORITY_WEIGHTS[priority]

    def is_pending(self) -> bool:
        return self.status == "pending"

    def is_processed(self) -> bool:
        return self.status in ("approved", "rejected", "completed")

    def is_initial_assignment(self) -> bool:
        return self.request_type == "initial_assignment"

    def is_vendor_switch(self) -> bool:
        return self.request_type == "vendor_switch"

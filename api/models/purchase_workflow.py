"""PurchaseWorkflow ORM model: persisted progress of one subscription purchase."""

import uuid
from datetime import datetime

from sqlalchemy import Integer, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import ENUM as PgEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.database import Base
from services import timezone

# Forward order of the purchase steps. Payment failures stay on the transaction.
WORKFLOW_STEPS = (
    "initiated",
    "payment_verified",
    "subscription_activated",
    "vendor_requested",
    "notified",
    "completed",
)


class PurchaseWorkflow(Base):
    __tablename__ = "purchase_workflows"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    transaction_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("transactions.id"), nullable=False, unique=True)
    user_subscription_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("user_subscriptions.id"), nullable=False)
    vendor_request_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("vendor_assignment_requests.id"))
    step: Mapped[str] = mapped_column(
        PgEnum(*WORKFLOW_STEPS, name="purchase_workflow_step"), default="initiated", index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=timezone.now, onupdate=timezone.now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    transaction = relationship("Transaction", lazy="selectin")
    user_subscription = relationship("UserSubscription", lazy="selectin")

    def __init__(self, **kwargs):
        kwargs.setdefault("step", "initiated")
        kwargs.setdefault("attempts", 0)
        super().__init__(**kwargs)

    def is_completed(self) -> bool:
        return self.step == "completed"

    def has_reached(self, step: str) -> bool:
        return WORKFLOW_STEPS.index(self.step) >= WORKFLOW_STEPS.index(step)

    def advance_to(self, step: str):
        """Move forward to `step`. Re-entering a step already passed is a no-op."""
        if self.has_reached(step):
            return
        self.step = step
        self.last_error = None
        if step == "completed":
            self.completed_at = timezone.now()

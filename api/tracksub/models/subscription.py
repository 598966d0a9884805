import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Numeric, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tracksub.core.database import Base

BILLING_CYCLES = ("monthly", "yearly")
SUBSCRIPTION_STATUSES = ("active", "inactive", "cancelled")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    billing_cycle: Mapped[str] = mapped_column(String(20))  # monthly | yearly
    start_date: Mapped[date] = mapped_column(Date)
    next_payment_date: Mapped[date] = mapped_column(Date, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    category: Mapped[str] = mapped_column(String(50), default="Other")
    status: Mapped[str] = mapped_column(String(20), default="active")  # active | inactive | cancelled
    # Charge date the last reminder was sent for
    last_notified_for: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped["User"] = relationship(back_populates="subscriptions")

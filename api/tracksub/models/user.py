import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tracksub.core.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    notification_days: Mapped[int] = mapped_column(Integer, default=7)
    plan: Mapped[str] = mapped_column(String(20), default="free")  # free | pro

    # Bank feed linkage
    financial_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    financial_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)  # Fernet-encrypted
    financial_sync_month: Mapped[str | None] = mapped_column(String(7), nullable=True)  # YYYY-MM
    financial_sync_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    financial_last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    calendar_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    subscriptions: Mapped[list["Subscription"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def is_pro(self) -> bool:
        return self.plan == "pro"

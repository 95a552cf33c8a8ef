import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import String, DateTime, ForeignKey, Numeric, JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class PaymentPurpose(str, Enum):
    ACCESS_KEY = "ACCESS_KEY"
    BOOKING = "BOOKING"
    ORDER = "ORDER"


class Payment(Base):
    """A gateway-verified transaction. Written once, never updated."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider: Mapped[str] = mapped_column(String(50), default="paystack")
    reference: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="NGN")
    status: Mapped[str] = mapped_column(String(30))
    purpose: Mapped[str] = mapped_column(String(20), index=True)
    # Booking or order id declared when the payment was verified
    target_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    gateway_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Payment {self.reference} {self.purpose} {self.amount} {self.currency}>"

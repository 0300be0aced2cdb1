"""
Webhook Delivery Model

Ledger of outbound webhook deliveries. One live row per (lead, partner);
every attempt upserts it in place.
"""
import enum
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from leadflow.models.base import Base, TimestampMixin


RESPONSE_BODY_LIMIT = 1000


class DeliveryStatus(str, enum.Enum):
    """Delivery status enum."""
    SUCCESS = "success"
    FAILED = "failed"
    PERMANENTLY_FAILED = "permanently_failed"


class WebhookDelivery(Base, TimestampMixin):
    """Latest delivery outcome plus running attempt count for a lead/partner pair."""
    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        UniqueConstraint("lead_id", "partner_id", name="uq_webhook_deliveries_lead_partner"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    partner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DeliveryStatus.FAILED.value, index=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self):
        return (
            f"<WebhookDelivery(lead_id={self.lead_id}, partner_id={self.partner_id}, "
            f"status={self.status}, attempts={self.attempts})>"
        )

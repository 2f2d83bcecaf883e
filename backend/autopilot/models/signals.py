"""Early dispute signals - network alerts and marketplace inquiries."""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from datetime import datetime

from autopilot.models.base import Base


class DisputeAlert(Base):
    __tablename__ = "dispute_alerts"
    __table_args__ = (UniqueConstraint("merchant_id", "dedupe_key", name="uq_dispute_alert_dedupe"),)

    id = Column(String(255), primary_key=True)
    merchant_id = Column(String(255), nullable=False, index=True)
    dispute_id = Column(String(255), nullable=True)
    dedupe_key = Column(String(255), nullable=False)
    source = Column(String(100), default="")
    created_at = Column(DateTime, default=datetime.utcnow)


class DisputeInquiry(Base):
    __tablename__ = "dispute_inquiries"
    __table_args__ = (UniqueConstraint("merchant_id", "dedupe_key", name="uq_dispute_inquiry_dedupe"),)

    id = Column(String(255), primary_key=True)
    merchant_id = Column(String(255), nullable=False, index=True)
    dispute_id = Column(String(255), nullable=True)
    dedupe_key = Column(String(255), nullable=False)
    source = Column(String(100), default="")
    created_at = Column(DateTime, default=datetime.utcnow)

"""Dispute model - durable state for one processor dispute id."""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, JSON, Text, Boolean
from datetime import datetime

from autopilot.models.base import Base


class Dispute(Base):
    """One row per processor dispute id (natural key, immutable)."""
    __tablename__ = "disputes"

    id = Column(String(255), primary_key=True)
    merchant_id = Column(String(255), nullable=True, index=True)
    processor_account_id = Column(String(255), nullable=True, index=True)
    charge_id = Column(String(255), nullable=True)

    # Processor-owned fields
    reason = Column(String(100), default="")
    amount = Column(BigInteger, default=0)  # minor currency units
    currency = Column(String(10), default="")
    status = Column(String(64), default="")  # opaque processor status
    due_by = Column(BigInteger, nullable=True)  # epoch seconds
    dispute_created_at = Column(BigInteger, nullable=True)  # epoch seconds, write-once

    # Engine-owned fields
    submitted = Column(Boolean, default=False)
    deflected = Column(Boolean, default=False)
    deflection_reason = Column(Text, nullable=True)
    deflected_at = Column(String(64), nullable=True)
    evidence_score = Column(Integer, default=0)
    manual_review_required = Column(Boolean, default=False)
    evidence_summary = Column(JSON, default=list)
    submission_attempts = Column(JSON, default=list)  # [{"at", "success", "message"}, ...] newest last, max 20

    # Human triage
    workflow_status = Column(String(50), default="new")
    owner = Column(String(255), nullable=True)
    next_action_at = Column(String(64), nullable=True)
    internal_notes = Column(Text, nullable=True)

    # In-flight claims (epoch seconds) serializing submissions and refunds
    submission_pending_since = Column(BigInteger, nullable=True)
    deflection_pending_since = Column(BigInteger, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

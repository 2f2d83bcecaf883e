"""Merchant models - connected processor accounts and their automation policy."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey, Boolean, Float
from sqlalchemy.orm import relationship
from datetime import datetime

from autopilot.models.base import Base


class Merchant(Base):
    """Connected merchant account with its auto-submit policy."""
    __tablename__ = "merchants"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    processor_account_id = Column(String(255), nullable=False, unique=True, index=True)
    access_token = Column(Text, nullable=False, default="")

    # Auto-submit policy
    auto_submit_enabled = Column(Boolean, default=False)
    auto_submit_reasons = Column(JSON, default=list)  # empty list = every reason allowed
    min_evidence_score = Column(Integer, default=70)
    manual_review_amount_threshold = Column(Integer, default=100000)  # minor currency units
    submission_delay_minutes = Column(Integer, default=0)

    # Dispute-rate monitoring
    monthly_dispute_alert_threshold_pct = Column(Float, default=0.75)
    monthly_transaction_count = Column(Integer, default=0)

    # Used only inside evidence text
    statement_descriptor = Column(String(255), default="")
    support_email = Column(String(255), default="")
    support_phone = Column(String(64), default="")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    evidence_profile = relationship(
        "MerchantEvidenceProfile",
        back_populates="merchant",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class MerchantEvidenceProfile(Base):
    """1:1 with Merchant - static evidence templates used verbatim."""
    __tablename__ = "merchant_evidence_profiles"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String(255), ForeignKey("merchants.id"), nullable=False, unique=True)

    product_description_template = Column(Text, default="")
    terms_url = Column(String(500), default="")
    refund_policy_url = Column(String(500), default="")
    cancellation_policy_url = Column(String(500), default="")
    onboarding_proof_template = Column(Text, default="")
    delivery_proof_template = Column(Text, default="")
    support_policy_template = Column(Text, default="")
    shipping_carrier = Column(String(100), default="")

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    merchant = relationship("Merchant", back_populates="evidence_profile")

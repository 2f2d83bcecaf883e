from autopilot.models.base import Base
from autopilot.models.merchant import Merchant, MerchantEvidenceProfile
from autopilot.models.dispute import Dispute
from autopilot.models.signals import DisputeAlert, DisputeInquiry

__all__ = [
    "Base",
    "Merchant", "MerchantEvidenceProfile",
    "Dispute",
    "DisputeAlert", "DisputeInquiry",
]

"""Merchant API routes - registration, policy settings, evidence profile, optimizer."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from autopilot.api.deps import get_service
from autopilot.config import get_settings
from autopilot.services.automation import DisputeAutomationService
from autopilot.services.types import Merchant

router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class MerchantCreate(BaseModel):
    id: str
    name: str
    processor_account_id: str
    access_token: str = ""


class MerchantSettingsUpdate(BaseModel):
    auto_submit_enabled: Optional[bool] = None
    auto_submit_reasons: Optional[List[str]] = None
    min_evidence_score: Optional[int] = Field(default=None, ge=0, le=100)
    manual_review_amount_threshold: Optional[int] = Field(default=None, ge=0)
    submission_delay_minutes: Optional[int] = Field(default=None, ge=0)
    monthly_dispute_alert_threshold_pct: Optional[float] = Field(default=None, ge=0)
    monthly_transaction_count: Optional[int] = Field(default=None, ge=0)
    statement_descriptor: Optional[str] = None
    support_email: Optional[str] = None
    support_phone: Optional[str] = None


class EvidenceProfileUpdate(BaseModel):
    product_description_template: Optional[str] = None
    terms_url: Optional[str] = None
    refund_policy_url: Optional[str] = None
    cancellation_policy_url: Optional[str] = None
    onboarding_proof_template: Optional[str] = None
    delivery_proof_template: Optional[str] = None
    support_policy_template: Optional[str] = None
    shipping_carrier: Optional[str] = None


class MerchantResponse(BaseModel):
    id: str
    name: str
    processor_account_id: str
    connected: bool
    created_at: str
    settings: Dict[str, Any]
    evidence_profile: Dict[str, Any]


class OptimizeReasonsRequest(BaseModel):
    min_cases: Optional[int] = Field(default=None, ge=1)
    min_win_rate_pct: Optional[float] = Field(default=None, ge=0, le=100)


class OptimizeReasonsResponse(BaseModel):
    merchant_id: str
    allowed_reasons: List[str]
    risky_reasons: List[str]
    stats: List[Dict[str, Any]]
    fell_back: bool


def _to_merchant_response(merchant: Merchant) -> MerchantResponse:
    # The access token never leaves the service.
    return MerchantResponse(
        id=merchant.id,
        name=merchant.name,
        processor_account_id=merchant.processor_account_id,
        connected=bool(merchant.access_token),
        created_at=merchant.created_at,
        settings=merchant.policy.as_dict(),
        evidence_profile=merchant.evidence_profile.as_dict(),
    )


# ============================================================================
# Merchants
# ============================================================================

@router.get("", response_model=List[MerchantResponse])
async def list_merchants(service: DisputeAutomationService = Depends(get_service)):
    """List connected merchants."""
    return [_to_merchant_response(m) for m in await service.list_merchants()]


@router.post("", response_model=MerchantResponse)
async def register_merchant(data: MerchantCreate, service: DisputeAutomationService = Depends(get_service)):
    """Register or refresh a connected processor account."""
    merchant = await service.register_merchant(
        merchant_id=data.id,
        name=data.name,
        processor_account_id=data.processor_account_id,
        access_token=data.access_token,
    )
    return _to_merchant_response(merchant)


@router.patch("/{merchant_id}/settings", response_model=MerchantResponse)
async def update_merchant_settings(
    merchant_id: str,
    data: MerchantSettingsUpdate,
    service: DisputeAutomationService = Depends(get_service),
):
    """Update the auto-submit policy."""
    merchant = await service.update_settings(merchant_id, data.model_dump(exclude_none=True))
    if not merchant:
        raise HTTPException(status_code=404, detail="merchant_not_found")
    return _to_merchant_response(merchant)


@router.patch("/{merchant_id}/evidence-profile", response_model=MerchantResponse)
async def update_merchant_evidence_profile(
    merchant_id: str,
    data: EvidenceProfileUpdate,
    service: DisputeAutomationService = Depends(get_service),
):
    """Update the evidence templates."""
    merchant = await service.update_evidence_profile(merchant_id, data.model_dump(exclude_none=True))
    if not merchant:
        raise HTTPException(status_code=404, detail="merchant_not_found")
    return _to_merchant_response(merchant)


@router.post("/{merchant_id}/optimize-reasons", response_model=OptimizeReasonsResponse)
async def optimize_merchant_reasons(
    merchant_id: str,
    data: Optional[OptimizeReasonsRequest] = None,
    service: DisputeAutomationService = Depends(get_service),
):
    """Rewrite the auto-submit allow-list from historical win rates."""
    settings = get_settings()
    data = data or OptimizeReasonsRequest()
    result = await service.optimize_reasons(
        merchant_id,
        min_cases=data.min_cases if data.min_cases is not None else settings.optimizer_min_cases,
        min_win_rate_pct=(
            data.min_win_rate_pct if data.min_win_rate_pct is not None else settings.optimizer_min_win_rate_pct
        ),
    )
    if result is None:
        raise HTTPException(status_code=404, detail="merchant_not_found")
    return OptimizeReasonsResponse(merchant_id=merchant_id, **result.as_dict())

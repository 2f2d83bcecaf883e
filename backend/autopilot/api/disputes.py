"""Dispute API routes - queue, readiness, retry, deflection, triage, metrics, signals."""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from autopilot.api.deps import get_service
from autopilot.services.automation import DisputeAutomationService
from autopilot.services.types import ActionOutcome

router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class AttemptResponse(BaseModel):
    at: str
    success: bool
    message: str


class DisputeResponse(BaseModel):
    id: str
    merchant_id: Optional[str]
    processor_account_id: Optional[str]
    charge_id: Optional[str]
    reason: str
    amount: int
    currency: str
    status: str
    due_by: Optional[int]
    created_at: Optional[int]
    updated_at: str
    submitted: bool
    deflected: bool
    deflection_reason: Optional[str]
    deflected_at: Optional[str]
    evidence_score: int
    manual_review_required: bool
    evidence_summary: List[str]
    submission_attempts: List[AttemptResponse]
    workflow_status: str
    owner: Optional[str]
    next_action_at: Optional[str]
    internal_notes: Optional[str]


class ReadinessResponse(BaseModel):
    ready: bool
    reason_code: str
    priority: int


class QueueItemResponse(DisputeResponse):
    readiness: ReadinessResponse


class QueueResponse(BaseModel):
    items: List[QueueItemResponse]
    ready_count: int
    blocked_counts: Dict[str, int]


class ActionResponse(BaseModel):
    ok: bool
    message: str
    dispute_id: Optional[str] = None
    detail: Optional[str] = None


class WorkflowUpdate(BaseModel):
    workflow_status: Optional[str] = None
    owner: Optional[str] = None
    next_action_at: Optional[str] = None
    internal_notes: Optional[str] = None


class DeflectRequest(BaseModel):
    reason: str = ""


class SignalCreate(BaseModel):
    merchant_id: str
    dedupe_key: str = Field(min_length=1)
    dispute_id: Optional[str] = None
    source: str = ""


class SignalResponse(BaseModel):
    id: str
    merchant_id: str
    dedupe_key: str
    dispute_id: Optional[str]
    source: str
    created_at: str
    duplicate: bool


def _action_response(outcome: ActionOutcome) -> ActionResponse:
    if outcome.not_found:
        raise HTTPException(status_code=404, detail="dispute_not_found")
    return ActionResponse(**outcome.as_dict())


# ============================================================================
# Disputes
# ============================================================================

@router.get("/disputes", response_model=List[DisputeResponse])
async def list_disputes(
    merchant_id: Optional[str] = Query(default=None, alias="merchantId"),
    service: DisputeAutomationService = Depends(get_service),
):
    """List disputes, most recently updated first."""
    return [DisputeResponse(**record.as_dict()) for record in await service.list_disputes(merchant_id)]


@router.get("/disputes/queue", response_model=QueueResponse)
async def dispute_queue(
    merchant_id: Optional[str] = Query(default=None, alias="merchantId"),
    service: DisputeAutomationService = Depends(get_service),
):
    """Open disputes ranked by priority, with counts per blocking reason."""
    view = await service.queue(merchant_id)
    return QueueResponse(**view.as_dict())


@router.get("/disputes/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(dispute_id: str, service: DisputeAutomationService = Depends(get_service)):
    record = await service.get_dispute(dispute_id)
    if not record:
        raise HTTPException(status_code=404, detail="dispute_not_found")
    return DisputeResponse(**record.as_dict())


@router.get("/disputes/{dispute_id}/readiness", response_model=ReadinessResponse)
async def get_dispute_readiness(dispute_id: str, service: DisputeAutomationService = Depends(get_service)):
    result = await service.readiness(dispute_id)
    if result is None:
        raise HTTPException(status_code=404, detail="dispute_not_found")
    return ReadinessResponse(**result.as_dict())


@router.patch("/disputes/{dispute_id}/workflow", response_model=DisputeResponse)
async def update_dispute_workflow(
    dispute_id: str,
    data: WorkflowUpdate,
    service: DisputeAutomationService = Depends(get_service),
):
    """Update human triage fields (never touches processor status)."""
    record = await service.update_workflow(dispute_id, data.model_dump(exclude_unset=True))
    if not record:
        raise HTTPException(status_code=404, detail="dispute_not_found")
    return DisputeResponse(**record.as_dict())


@router.post("/disputes/{dispute_id}/retry-submit", response_model=ActionResponse)
async def retry_submit(dispute_id: str, service: DisputeAutomationService = Depends(get_service)):
    """Manual retry: re-check readiness and submit when ready."""
    return _action_response(await service.retry(dispute_id))


@router.post("/disputes/{dispute_id}/deflect", response_model=ActionResponse)
async def deflect_dispute(
    dispute_id: str,
    data: Optional[DeflectRequest] = None,
    service: DisputeAutomationService = Depends(get_service),
):
    """Refund the disputed charge and stop automating this dispute."""
    data = data or DeflectRequest()
    return _action_response(await service.deflect(dispute_id, data.reason))


@router.post("/disputes:sweep")
async def sweep_disputes(
    merchant_id: Optional[str] = Query(default=None, alias="merchantId"),
    enqueue: bool = False,
    service: DisputeAutomationService = Depends(get_service),
):
    """Retry every open, unsubmitted dispute now, or hand the sweep to a worker."""
    if enqueue:
        from autopilot.workers.tasks import sweep_disputes as sweep_task
        task = sweep_task.delay(merchant_id)
        return {"queued": True, "task_id": task.id}
    report = await service.sweep(merchant_id)
    return report.as_dict()


# ============================================================================
# Metrics and early signals
# ============================================================================

@router.get("/metrics")
async def get_metrics(
    merchant_id: Optional[str] = Query(default=None, alias="merchantId"),
    service: DisputeAutomationService = Depends(get_service),
):
    return {"metrics": await service.metrics(merchant_id)}


@router.post("/alerts", response_model=SignalResponse)
async def ingest_alert(data: SignalCreate, service: DisputeAutomationService = Depends(get_service)):
    """Record a card-network alert; repeated dedupe keys are ignored."""
    signal, created = await service.ingest_signal(
        "alert", data.merchant_id, data.dedupe_key, dispute_id=data.dispute_id, source=data.source
    )
    return SignalResponse(**signal.as_dict(), duplicate=not created)


@router.post("/inquiries", response_model=SignalResponse)
async def ingest_inquiry(data: SignalCreate, service: DisputeAutomationService = Depends(get_service)):
    """Record a marketplace/BNPL inquiry; repeated dedupe keys are ignored."""
    signal, created = await service.ingest_signal(
        "inquiry", data.merchant_id, data.dedupe_key, dispute_id=data.dispute_id, source=data.source
    )
    return SignalResponse(**signal.as_dict(), duplicate=not created)

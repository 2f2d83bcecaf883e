"""Merge processor dispute lifecycle events into durable dispute records.

The merge is field-by-field on purpose. Fields the processor owns are taken
from the event; fields the engine or an operator owns are carried over:

- ``created_at`` is write-once.
- ``deflected``, ``deflection_reason`` and ``deflected_at`` are sticky.
- ``submitted`` never goes back from True to False.
- triage fields (workflow status, owner, next action, notes) are never
  carried by events and always survive a merge.
- ``submission_attempts`` only grows, capped at the most recent 20.
- in-flight submission and refund claims are engine state and survive
  every merge.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from autopilot.services.evidence import BuiltEvidence, compute_evidence
from autopilot.services.readiness import delay_window_active
from autopilot.services.types import (
    ChargeContext,
    DisputeEvent,
    DisputeRecord,
    EvidenceProfile,
    MerchantPolicy,
    SubmissionAttempt,
    append_attempt,
    claim_active,
    classify_status,
    now_epoch,
    now_iso,
)


AUTO_SUBMITTED_MESSAGE = "Auto-submitted successfully."
PENDING_REVIEW_MESSAGE = "Evidence updated; pending review."
NO_EVIDENCE_UPDATE_MESSAGE = "No evidence update sent"

# Gates that rule out talking to the processor, in the order they are reported.
EVIDENCE_UPDATE_BLOCKERS = (
    ("dispute_open", "closed"),
    ("not_already_submitted", "already_submitted"),
    ("not_deflected", "deflected"),
    ("no_submission_in_flight", "submission_in_progress"),
)


@dataclass
class ReconcileResult:
    record: DisputeRecord
    should_auto_submit: bool
    payload: Dict[str, Any]
    built: BuiltEvidence
    gates: Dict[str, bool] = field(default_factory=dict)


def auto_submit_gates(
    event: DisputeEvent,
    existing: Optional[DisputeRecord],
    policy: MerchantPolicy,
    score: int,
    manual_review_required: bool,
    now: int,
) -> Dict[str, bool]:
    created_at = event.created_at if event.created_at is not None else (existing.created_at if existing else None)
    return {
        "dispute_open": not classify_status(event.status).is_terminal,
        "not_already_submitted": not (existing is not None and existing.submitted),
        "not_deflected": not (existing is not None and existing.deflected),
        "no_submission_in_flight": not (existing is not None and claim_active(existing.submission_pending_since, now)),
        "auto_submit_enabled": policy.auto_submit_enabled,
        "reason_allowed": policy.reason_allowed(event.reason),
        "score_meets_threshold": score >= policy.min_evidence_score,
        "below_manual_review_amount": not manual_review_required,
        "delay_window_elapsed": not delay_window_active(created_at, policy.submission_delay_minutes, now),
    }


def merge_open_record(fresh: DisputeRecord, existing: Optional[DisputeRecord]) -> DisputeRecord:
    """Overlay a record rebuilt from a created/updated event onto the stored one."""
    if existing is None:
        return fresh
    return DisputeRecord(
        id=fresh.id,
        reason=fresh.reason,
        amount=fresh.amount,
        currency=fresh.currency,
        status=fresh.status,
        merchant_id=fresh.merchant_id or existing.merchant_id,
        processor_account_id=fresh.processor_account_id or existing.processor_account_id,
        charge_id=fresh.charge_id or existing.charge_id,
        due_by=fresh.due_by,
        created_at=existing.created_at if existing.created_at is not None else fresh.created_at,
        updated_at=fresh.updated_at,
        submitted=existing.submitted or fresh.submitted,
        deflected=existing.deflected,
        deflection_reason=existing.deflection_reason,
        deflected_at=existing.deflected_at,
        evidence_score=fresh.evidence_score,
        manual_review_required=fresh.manual_review_required,
        evidence_summary=list(fresh.evidence_summary),
        submission_attempts=list(existing.submission_attempts),
        workflow_status=existing.workflow_status,
        owner=existing.owner,
        next_action_at=existing.next_action_at,
        internal_notes=existing.internal_notes,
        submission_pending_since=existing.submission_pending_since,
        deflection_pending_since=existing.deflection_pending_since,
    )


def merge_closed_record(
    event: DisputeEvent,
    existing: Optional[DisputeRecord],
    processor_account_id: Optional[str] = None,
    merchant_id: Optional[str] = None,
    at: Optional[str] = None,
) -> DisputeRecord:
    """Terminal merge: a closed event carries no evidence context."""
    stamp = at or now_iso()
    if existing is None:
        return DisputeRecord(
            id=event.id,
            reason=event.reason,
            amount=event.amount,
            currency=event.currency,
            status=event.status,
            merchant_id=merchant_id,
            processor_account_id=processor_account_id,
            charge_id=event.charge_id,
            due_by=event.due_by,
            created_at=event.created_at,
            updated_at=stamp,
            submitted=True,
        )
    return DisputeRecord(
        id=event.id,
        reason=event.reason or existing.reason,
        amount=event.amount,
        currency=event.currency or existing.currency,
        status=event.status,
        merchant_id=existing.merchant_id or merchant_id,
        processor_account_id=processor_account_id or existing.processor_account_id,
        charge_id=event.charge_id or existing.charge_id,
        due_by=event.due_by,
        created_at=existing.created_at if existing.created_at is not None else event.created_at,
        updated_at=stamp,
        submitted=True,
        deflected=existing.deflected,
        deflection_reason=existing.deflection_reason,
        deflected_at=existing.deflected_at,
        evidence_score=existing.evidence_score,
        manual_review_required=existing.manual_review_required,
        evidence_summary=list(existing.evidence_summary),
        submission_attempts=list(existing.submission_attempts),
        workflow_status=existing.workflow_status,
        owner=existing.owner,
        next_action_at=existing.next_action_at,
        internal_notes=existing.internal_notes,
        submission_pending_since=existing.submission_pending_since,
        deflection_pending_since=existing.deflection_pending_since,
    )


def reconcile(
    event: DisputeEvent,
    existing: Optional[DisputeRecord],
    policy: Optional[MerchantPolicy],
    profile: Optional[EvidenceProfile],
    charge: Optional[ChargeContext] = None,
    now: Optional[int] = None,
    merchant_id: Optional[str] = None,
    processor_account_id: Optional[str] = None,
) -> ReconcileResult:
    """Score evidence for a created/updated event and decide on auto-submission.

    The returned record is merged with ``existing`` but does not yet carry the
    attempt for this event; :func:`complete_reconcile` adds it once the
    submission collaborator has answered.
    """
    policy = (policy or MerchantPolicy()).normalized()
    now = now_epoch() if now is None else int(now)

    built = compute_evidence(
        event,
        profile,
        charge,
        statement_descriptor=policy.statement_descriptor,
        support_email=policy.support_email,
        support_phone=policy.support_phone,
    )
    manual_review_required = event.amount >= policy.manual_review_amount_threshold
    gates = auto_submit_gates(event, existing, policy, built.score, manual_review_required, now)
    should_auto_submit = all(gates.values())

    payload = dict(built.payload)
    payload["submit"] = should_auto_submit

    fresh = DisputeRecord(
        id=event.id,
        reason=event.reason,
        amount=event.amount,
        currency=event.currency,
        status=event.status,
        merchant_id=merchant_id,
        processor_account_id=processor_account_id,
        charge_id=event.charge_id,
        due_by=event.due_by,
        created_at=event.created_at,
        updated_at=now_iso(),
        submitted=False,
        evidence_score=built.score,
        manual_review_required=manual_review_required,
        evidence_summary=list(built.summary),
    )
    return ReconcileResult(
        record=merge_open_record(fresh, existing),
        should_auto_submit=should_auto_submit,
        payload=payload,
        built=built,
        gates=gates,
    )


def evidence_update_blocker(gates: Dict[str, bool]) -> Optional[str]:
    """Reason the processor must not receive an evidence update at all, if any."""
    for gate, reason in EVIDENCE_UPDATE_BLOCKERS:
        if not gates.get(gate, True):
            return reason
    return None


def complete_reconcile(
    result: ReconcileResult,
    current: Optional[DisputeRecord],
    submit_error: Optional[str] = None,
    at: Optional[str] = None,
    skipped: Optional[str] = None,
) -> DisputeRecord:
    """Re-merge onto the latest stored record and log the outcome of the evidence update."""
    stamp = at or now_iso()
    merged = merge_open_record(result.record, current)
    if result.should_auto_submit:
        # This reconcile holds the submission claim; release it.
        merged = replace(merged, submission_pending_since=None)
    if skipped:
        attempt = SubmissionAttempt(at=stamp, success=False, message=f"{NO_EVIDENCE_UPDATE_MESSAGE} ({skipped})")
        return replace(merged, submission_attempts=append_attempt(merged.submission_attempts, attempt))
    if submit_error:
        attempt = SubmissionAttempt(at=stamp, success=False, message=submit_error)
        return replace(merged, submission_attempts=append_attempt(merged.submission_attempts, attempt))
    message = AUTO_SUBMITTED_MESSAGE if result.should_auto_submit else PENDING_REVIEW_MESSAGE
    attempt = SubmissionAttempt(at=stamp, success=True, message=message)
    return replace(
        merged,
        submitted=merged.submitted or result.should_auto_submit,
        submission_attempts=append_attempt(merged.submission_attempts, attempt),
    )


def record_attempt(record: DisputeRecord, success: bool, message: str, at: Optional[str] = None) -> DisputeRecord:
    attempt = SubmissionAttempt(at=at or now_iso(), success=success, message=message)
    return replace(record, submission_attempts=append_attempt(record.submission_attempts, attempt), updated_at=attempt.at)

"""Dispute automation service: ties the decision engine to the store and the processor."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from autopilot.config import get_settings
from autopilot.services.metrics import compute_metrics
from autopilot.services.optimizer import (
    DEFAULT_MIN_CASES,
    DEFAULT_MIN_WIN_RATE_PCT,
    OptimizationResult,
    optimize_reasons,
    reason_outcomes,
)
from autopilot.services.processor import ProcessorClient, StripeProcessorClient
from autopilot.services.readiness import QueueView, ReadinessResult, build_queue, evaluate_readiness
from autopilot.services.reconciler import (
    ReconcileResult,
    complete_reconcile,
    evidence_update_blocker,
    merge_closed_record,
    reconcile,
    record_attempt,
)
from autopilot.services.store import DisputeStore
from autopilot.services.types import (
    ActionOutcome,
    ChargeContext,
    DisputeEvent,
    DisputeRecord,
    EventType,
    EvidenceProfile,
    Merchant,
    MerchantPolicy,
    ReadinessReason,
    SignalRecord,
    claim_active,
    now_epoch,
    now_iso,
)


logger = logging.getLogger(__name__)

ProcessorFactory = Callable[[Optional[Merchant]], ProcessorClient]

EVENT_TYPE_MAP = {
    "charge.dispute.created": EventType.created,
    "charge.dispute.updated": EventType.updated,
    "charge.dispute.closed": EventType.closed,
}

MANUAL_RETRY_SUCCESS_MESSAGE = "Manual retry submission successful."
TRIAGE_FIELDS = ("workflow_status", "owner", "next_action_at", "internal_notes")
SUBMISSION_IN_PROGRESS = "submission_in_progress"
DEFLECTION_IN_PROGRESS = "deflection_in_progress"
BLOCKED_MESSAGES = {reason.value for reason in ReadinessReason if reason != ReadinessReason.ready} | {SUBMISSION_IN_PROGRESS}


def parse_event_type(value: Optional[str]) -> Optional[EventType]:
    key = str(value or "").strip()
    if key in EVENT_TYPE_MAP:
        return EVENT_TYPE_MAP[key]
    try:
        return EventType(key)
    except ValueError:
        return None


def default_merchant_policy() -> MerchantPolicy:
    settings = get_settings()
    return MerchantPolicy(
        auto_submit_enabled=settings.default_auto_submit_enabled,
        auto_submit_reasons=settings.default_reason_allow_list(),
        min_evidence_score=settings.default_min_evidence_score,
        manual_review_amount_threshold=settings.default_manual_review_amount_threshold,
        submission_delay_minutes=settings.default_submission_delay_minutes,
        monthly_dispute_alert_threshold_pct=settings.default_monthly_dispute_alert_threshold_pct,
    ).normalized()


def stripe_processor_for(merchant: Optional[Merchant]) -> ProcessorClient:
    # Connected merchants act with their own token; otherwise the platform key.
    token = merchant.access_token if merchant and merchant.access_token else None
    return StripeProcessorClient(token)


def manual_retry_payload(at: str) -> Dict[str, Any]:
    return {
        "evidence": {"uncategorized_text": f"Retry submission from portal at {at}"},
        "submit": True,
    }


def _error_text(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


@dataclass
class SweepReport:
    processed: int = 0
    submitted: int = 0
    blocked: int = 0
    failed: int = 0
    outcomes: List[ActionOutcome] = field(default_factory=list)

    def add(self, outcome: ActionOutcome) -> None:
        self.processed += 1
        self.outcomes.append(outcome)
        if outcome.ok:
            self.submitted += 1
        elif outcome.message in BLOCKED_MESSAGES:
            self.blocked += 1
        else:
            self.failed += 1

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "submitted": self.submitted,
            "blocked": self.blocked,
            "failed": self.failed,
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
        }


class DisputeAutomationService:
    def __init__(
        self,
        store: DisputeStore,
        processor_factory: ProcessorFactory = stripe_processor_for,
        default_policy: Optional[MerchantPolicy] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._store = store
        self._processor_factory = processor_factory
        self._default_policy = default_policy or default_merchant_policy()
        self._clock = clock or now_epoch

    def _policy(self, merchant: Optional[Merchant]) -> MerchantPolicy:
        return (merchant.policy if merchant else self._default_policy).normalized()

    async def _merchant_for(self, record: DisputeRecord) -> Optional[Merchant]:
        if record.merchant_id:
            merchant = await self._store.get_merchant(record.merchant_id)
            if merchant:
                return merchant
        if record.processor_account_id:
            return await self._store.get_merchant_by_account(record.processor_account_id)
        return None

    # ------------------------------------------------------------------
    # Inbound lifecycle events
    # ------------------------------------------------------------------

    async def handle_event(
        self,
        event_type: str,
        dispute_object: Dict[str, Any],
        processor_account_id: Optional[str] = None,
    ) -> Optional[DisputeRecord]:
        kind = parse_event_type(event_type)
        if kind is None:
            logger.debug("Ignoring unsupported event type %s", event_type)
            return None
        event = DisputeEvent.from_processor_object(dispute_object)
        if not event.id:
            logger.warning("Dropping %s event without a dispute id", event_type)
            return None

        merchant = await self._store.get_merchant_by_account(processor_account_id) if processor_account_id else None
        merchant_id = merchant.id if merchant else None

        if kind == EventType.closed:
            record = await self._store.update_dispute(
                event.id,
                lambda current: merge_closed_record(event, current, processor_account_id, merchant_id),
            )
            logger.info("Dispute %s closed with status %s", event.id, event.status)
            return record

        processor: Optional[ProcessorClient] = None
        try:
            processor = self._processor_factory(merchant)
        except Exception as exc:
            logger.error("No processor client for dispute %s: %s", event.id, exc)

        charge: Optional[ChargeContext] = None
        if processor is not None and event.charge_id:
            try:
                charge = await processor.get_charge(event.charge_id)
            except Exception as exc:
                # Evidence is still built; customer fields just score zero.
                logger.warning("Charge lookup failed for dispute %s: %s", event.id, exc)

        now = self._clock()
        policy = self._policy(merchant)
        profile = merchant.evidence_profile if merchant else EvidenceProfile()
        staged: Dict[str, ReconcileResult] = {}

        def _stage(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            result = reconcile(
                event,
                current,
                policy,
                profile,
                charge=charge,
                now=now,
                merchant_id=merchant_id,
                processor_account_id=processor_account_id,
            )
            staged["result"] = result
            if result.should_auto_submit:
                return replace(result.record, submission_pending_since=now)
            return None

        await self._store.update_dispute(event.id, _stage)
        result = staged["result"]

        skipped = evidence_update_blocker(result.gates)
        submit_error: Optional[str] = None
        if skipped:
            logger.info("No evidence update for dispute %s: %s", event.id, skipped)
        elif processor is None:
            submit_error = "Processor client unavailable"
        else:
            try:
                await processor.submit_evidence(event.id, result.payload)
            except Exception as exc:
                submit_error = _error_text(exc)
                logger.warning("Evidence update failed for dispute %s: %s", event.id, submit_error)

        record = await self._store.update_dispute(
            event.id,
            lambda current: complete_reconcile(result, current, submit_error=submit_error, skipped=skipped),
        )
        logger.info(
            "Reconciled dispute %s (%s): score=%s auto_submit=%s",
            event.id,
            kind.value,
            result.built.score,
            result.should_auto_submit and submit_error is None,
        )
        return record

    # ------------------------------------------------------------------
    # Readiness, retry, sweep
    # ------------------------------------------------------------------

    async def readiness(self, dispute_id: str) -> Optional[ReadinessResult]:
        record = await self._store.get_dispute(dispute_id)
        if record is None:
            return None
        merchant = await self._merchant_for(record)
        return evaluate_readiness(record, self._policy(merchant), self._clock())

    async def queue(self, merchant_id: Optional[str] = None) -> QueueView:
        records = await self._store.list_disputes(merchant_id)
        policies: Dict[Optional[str], MerchantPolicy] = {None: self._default_policy}
        for merchant in await self._store.list_merchants():
            policies[merchant.id] = merchant.policy
        return build_queue(records, policies, self._clock())

    async def retry(self, dispute_id: str) -> ActionOutcome:
        record = await self._store.get_dispute(dispute_id)
        if record is None:
            return ActionOutcome(ok=False, message="not_found", dispute_id=dispute_id)
        merchant = await self._merchant_for(record)
        policy = self._policy(merchant)
        now = self._clock()
        blocked: Dict[str, str] = {}

        def _claim(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            if current is None:
                blocked["message"] = "not_found"
                return None
            readiness = evaluate_readiness(current, policy, now)
            if not readiness.ready:
                blocked["message"] = readiness.reason_code.value
                return None
            if claim_active(current.submission_pending_since, now):
                blocked["message"] = SUBMISSION_IN_PROGRESS
                return None
            return replace(current, submission_pending_since=now)

        await self._store.update_dispute(dispute_id, _claim)
        if blocked:
            return ActionOutcome(ok=False, message=blocked["message"], dispute_id=dispute_id)

        at = now_iso()
        try:
            processor = self._processor_factory(merchant)
            await processor.submit_evidence(dispute_id, manual_retry_payload(at))
        except Exception as exc:
            message = _error_text(exc)
            logger.warning("Retry submission failed for dispute %s: %s", dispute_id, message)

            def _release(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
                if current is None:
                    return None
                return record_attempt(replace(current, submission_pending_since=None), False, message, at=at)

            await self._store.update_dispute(dispute_id, _release)
            return ActionOutcome(ok=False, message=message, dispute_id=dispute_id, detail="submit_failed")

        def _mark_submitted(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            if current is None:
                return None
            submitted = replace(current, submitted=True, submission_pending_since=None)
            return record_attempt(submitted, True, MANUAL_RETRY_SUCCESS_MESSAGE, at=at)

        await self._store.update_dispute(dispute_id, _mark_submitted)
        logger.info("Submitted evidence for dispute %s on retry", dispute_id)
        return ActionOutcome(ok=True, message="submitted", dispute_id=dispute_id)

    async def sweep(self, merchant_id: Optional[str] = None) -> SweepReport:
        """Retry every open, unsubmitted dispute; one failure never stops the rest."""
        report = SweepReport()
        records = await self._store.list_disputes(merchant_id)
        candidates = [r for r in records if r.is_open and not r.submitted and not r.deflected]
        for record in sorted(candidates, key=lambda r: r.id):
            try:
                outcome = await self.retry(record.id)
            except Exception as exc:
                logger.exception("Sweep failed on dispute %s", record.id)
                outcome = ActionOutcome(ok=False, message=_error_text(exc), dispute_id=record.id, detail="error")
            report.add(outcome)
        logger.info(
            "Sweep finished: processed=%s submitted=%s blocked=%s failed=%s",
            report.processed,
            report.submitted,
            report.blocked,
            report.failed,
        )
        return report

    # ------------------------------------------------------------------
    # Deflection
    # ------------------------------------------------------------------

    async def deflect(self, dispute_id: str, reason: str = "") -> ActionOutcome:
        record = await self._store.get_dispute(dispute_id)
        if record is None:
            return ActionOutcome(ok=False, message="not_found", dispute_id=dispute_id)
        if record.deflected:
            return ActionOutcome(ok=True, message="already_deflected", dispute_id=dispute_id)

        merchant = await self._merchant_for(record)
        now = self._clock()
        claim: Dict[str, Any] = {}

        def _claim(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            if current is None:
                claim["message"] = "not_found"
            elif current.deflected:
                claim["message"] = "already_deflected"
            elif not current.is_open:
                claim["message"] = "closed"
            elif not current.charge_id:
                claim["message"] = "missing_charge"
            elif claim_active(current.deflection_pending_since, now):
                claim["message"] = DEFLECTION_IN_PROGRESS
            else:
                claim["charge_id"] = current.charge_id
                return replace(current, deflection_pending_since=now)
            return None

        await self._store.update_dispute(dispute_id, _claim)
        if "charge_id" not in claim:
            message = claim["message"]
            return ActionOutcome(ok=message == "already_deflected", message=message, dispute_id=dispute_id)

        reason_text = str(reason or "").strip() or "Proactive refund to resolve dispute."
        try:
            processor = self._processor_factory(merchant)
            refund_id = await processor.create_refund(
                claim["charge_id"],
                {"dispute_id": dispute_id, "reason": reason_text},
            )
        except Exception as exc:
            message = _error_text(exc)
            logger.warning("Refund failed for dispute %s: %s", dispute_id, message)

            def _release(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
                if current is None:
                    return None
                return record_attempt(replace(current, deflection_pending_since=None), False, message)

            await self._store.update_dispute(dispute_id, _release)
            return ActionOutcome(ok=False, message=message, dispute_id=dispute_id, detail="refund_failed")

        at = now_iso()

        def _mark_deflected(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            if current is None:
                return None
            return replace(
                current,
                deflected=True,
                deflection_reason=reason_text,
                deflected_at=at,
                deflection_pending_since=None,
                updated_at=at,
            )

        await self._store.update_dispute(dispute_id, _mark_deflected)
        logger.info("Deflected dispute %s with refund %s", dispute_id, refund_id)
        return ActionOutcome(ok=True, message="deflected", dispute_id=dispute_id, detail=refund_id)

    # ------------------------------------------------------------------
    # Policy optimizer
    # ------------------------------------------------------------------

    async def optimize_reasons(
        self,
        merchant_id: str,
        min_cases: int = DEFAULT_MIN_CASES,
        min_win_rate_pct: float = DEFAULT_MIN_WIN_RATE_PCT,
    ) -> Optional[OptimizationResult]:
        merchant = await self._store.get_merchant(merchant_id)
        if merchant is None:
            return None
        records = await self._store.list_disputes(merchant_id)
        result = optimize_reasons(
            reason_outcomes(records),
            merchant.policy.auto_submit_reasons,
            min_cases=min_cases,
            min_win_rate_pct=min_win_rate_pct,
        )
        merchant.policy = replace(merchant.policy, auto_submit_reasons=list(result.allowed_reasons))
        await self._store.upsert_merchant(merchant)
        logger.info(
            "Optimized reasons for merchant %s: allowed=%s risky=%s fell_back=%s",
            merchant_id,
            result.allowed_reasons,
            result.risky_reasons,
            result.fell_back,
        )
        return result

    # ------------------------------------------------------------------
    # Merchants, triage, signals, metrics
    # ------------------------------------------------------------------

    async def list_merchants(self) -> List[Merchant]:
        return await self._store.list_merchants()

    async def get_dispute(self, dispute_id: str) -> Optional[DisputeRecord]:
        return await self._store.get_dispute(dispute_id)

    async def list_disputes(self, merchant_id: Optional[str] = None) -> List[DisputeRecord]:
        records = await self._store.list_disputes(merchant_id)
        return sorted(records, key=lambda r: r.updated_at, reverse=True)

    async def register_merchant(
        self,
        merchant_id: str,
        name: str,
        processor_account_id: str,
        access_token: str = "",
    ) -> Merchant:
        existing = await self._store.get_merchant(merchant_id)
        if existing:
            existing.name = name or existing.name
            existing.processor_account_id = processor_account_id
            if access_token:
                existing.access_token = access_token
            return await self._store.upsert_merchant(existing)
        merchant = Merchant(
            id=merchant_id,
            name=name or merchant_id,
            processor_account_id=processor_account_id,
            access_token=access_token,
            created_at=now_iso(),
            policy=replace(self._default_policy, auto_submit_reasons=list(self._default_policy.auto_submit_reasons)),
            evidence_profile=EvidenceProfile(),
        )
        return await self._store.upsert_merchant(merchant)

    async def update_settings(self, merchant_id: str, changes: Dict[str, Any]) -> Optional[Merchant]:
        merchant = await self._store.get_merchant(merchant_id)
        if merchant is None:
            return None
        merchant.policy = MerchantPolicy.from_dict({**merchant.policy.as_dict(), **changes})
        return await self._store.upsert_merchant(merchant)

    async def update_evidence_profile(self, merchant_id: str, changes: Dict[str, Any]) -> Optional[Merchant]:
        merchant = await self._store.get_merchant(merchant_id)
        if merchant is None:
            return None
        merchant.evidence_profile = EvidenceProfile.from_dict({**merchant.evidence_profile.as_dict(), **changes})
        return await self._store.upsert_merchant(merchant)

    async def update_workflow(self, dispute_id: str, changes: Dict[str, Any]) -> Optional[DisputeRecord]:
        updates = {key: value for key, value in changes.items() if key in TRIAGE_FIELDS}

        def _apply(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            if current is None:
                return None
            return replace(current, **updates)

        if await self._store.get_dispute(dispute_id) is None:
            return None
        return await self._store.update_dispute(dispute_id, _apply)

    async def ingest_signal(
        self,
        kind: str,
        merchant_id: str,
        dedupe_key: str,
        dispute_id: Optional[str] = None,
        source: str = "",
    ) -> tuple[SignalRecord, bool]:
        prefix = "alrt" if kind == "alert" else "inq"
        signal = SignalRecord(
            id=f"{prefix}_{uuid.uuid4().hex[:24]}",
            merchant_id=merchant_id,
            dedupe_key=dedupe_key,
            created_at=now_iso(),
            dispute_id=dispute_id,
            source=source,
        )
        if kind == "alert":
            created = await self._store.add_alert(signal)
        else:
            created = await self._store.add_inquiry(signal)
        return signal, created

    async def metrics(self, merchant_id: Optional[str] = None) -> Dict[str, Any]:
        disputes = await self._store.list_disputes(merchant_id)
        alerts = await self._store.list_alerts(merchant_id)
        inquiries = await self._store.list_inquiries(merchant_id)
        if merchant_id is not None:
            merchant = await self._store.get_merchant(merchant_id)
            policy = self._policy(merchant)
        else:
            merchants = await self._store.list_merchants()
            policy = replace(
                self._default_policy,
                monthly_transaction_count=sum(m.policy.monthly_transaction_count for m in merchants),
            )
        return compute_metrics(disputes, alerts, inquiries, policy=policy, now=self._clock())

"""SQLAlchemy-backed record store."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.models.base import async_session_maker
from autopilot.models.dispute import Dispute
from autopilot.models.merchant import Merchant as MerchantRow, MerchantEvidenceProfile
from autopilot.models.signals import DisputeAlert, DisputeInquiry
from autopilot.services.store import DisputeMutator
from autopilot.services.types import (
    DisputeRecord,
    EvidenceProfile,
    Merchant,
    MerchantPolicy,
    SignalRecord,
    SubmissionAttempt,
    append_attempt,
)


PROFILE_FIELDS = (
    "product_description_template",
    "terms_url",
    "refund_policy_url",
    "cancellation_policy_url",
    "onboarding_proof_template",
    "delivery_proof_template",
    "support_policy_template",
    "shipping_carrier",
)

POLICY_FIELDS = (
    "auto_submit_enabled",
    "auto_submit_reasons",
    "min_evidence_score",
    "manual_review_amount_threshold",
    "submission_delay_minutes",
    "monthly_dispute_alert_threshold_pct",
    "monthly_transaction_count",
    "statement_descriptor",
    "support_email",
    "support_phone",
)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def merchant_from_row(row: MerchantRow) -> Merchant:
    policy = MerchantPolicy.from_dict({name: getattr(row, name) for name in POLICY_FIELDS})
    profile_row = row.evidence_profile
    profile = EvidenceProfile.from_dict(
        {name: getattr(profile_row, name) for name in PROFILE_FIELDS} if profile_row else {}
    )
    return Merchant(
        id=row.id,
        name=row.name,
        processor_account_id=row.processor_account_id,
        access_token=row.access_token or "",
        created_at=_iso(row.created_at),
        policy=policy,
        evidence_profile=profile,
    )


def dispute_from_row(row: Dispute) -> DisputeRecord:
    return DisputeRecord(
        id=row.id,
        reason=row.reason or "",
        amount=int(row.amount or 0),
        currency=row.currency or "",
        status=row.status or "",
        merchant_id=row.merchant_id,
        processor_account_id=row.processor_account_id,
        charge_id=row.charge_id,
        due_by=row.due_by,
        created_at=row.dispute_created_at,
        updated_at=_iso(row.updated_at),
        submitted=bool(row.submitted),
        deflected=bool(row.deflected),
        deflection_reason=row.deflection_reason,
        deflected_at=row.deflected_at,
        evidence_score=int(row.evidence_score or 0),
        manual_review_required=bool(row.manual_review_required),
        evidence_summary=list(row.evidence_summary or []),
        submission_attempts=[SubmissionAttempt.from_dict(item) for item in (row.submission_attempts or [])],
        workflow_status=row.workflow_status or "new",
        owner=row.owner,
        next_action_at=row.next_action_at,
        internal_notes=row.internal_notes,
        submission_pending_since=row.submission_pending_since,
        deflection_pending_since=row.deflection_pending_since,
    )


def _apply_dispute(row: Dispute, record: DisputeRecord) -> None:
    row.merchant_id = record.merchant_id
    row.processor_account_id = record.processor_account_id
    row.charge_id = record.charge_id
    row.reason = record.reason
    row.amount = record.amount
    row.currency = record.currency
    row.status = record.status
    row.due_by = record.due_by
    row.dispute_created_at = record.created_at
    row.submitted = record.submitted
    row.deflected = record.deflected
    row.deflection_reason = record.deflection_reason
    row.deflected_at = record.deflected_at
    row.evidence_score = record.evidence_score
    row.manual_review_required = record.manual_review_required
    row.evidence_summary = list(record.evidence_summary)
    row.submission_attempts = [attempt.as_dict() for attempt in record.submission_attempts]
    row.workflow_status = record.workflow_status
    row.owner = record.owner
    row.next_action_at = record.next_action_at
    row.internal_notes = record.internal_notes
    row.submission_pending_since = record.submission_pending_since
    row.deflection_pending_since = record.deflection_pending_since
    row.updated_at = datetime.utcnow()


def _signal_from_row(row) -> SignalRecord:
    return SignalRecord(
        id=row.id,
        merchant_id=row.merchant_id,
        dedupe_key=row.dedupe_key,
        created_at=_iso(row.created_at),
        dispute_id=row.dispute_id,
        source=row.source or "",
    )


class SqlStore:
    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_maker = session_maker or async_session_maker

    async def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        async with self._session_maker() as session:
            row = await session.get(MerchantRow, merchant_id)
            return merchant_from_row(row) if row else None

    async def get_merchant_by_account(self, processor_account_id: str) -> Optional[Merchant]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(MerchantRow).where(MerchantRow.processor_account_id == processor_account_id)
            )
            row = result.scalar_one_or_none()
            return merchant_from_row(row) if row else None

    async def list_merchants(self) -> List[Merchant]:
        async with self._session_maker() as session:
            result = await session.execute(select(MerchantRow).order_by(MerchantRow.created_at.desc()))
            return [merchant_from_row(row) for row in result.scalars().all()]

    async def upsert_merchant(self, merchant: Merchant) -> Merchant:
        async with self._session_maker() as session:
            async with session.begin():
                row = await session.get(MerchantRow, merchant.id, with_for_update=True)
                if row is None:
                    row = MerchantRow(id=merchant.id, created_at=_parse_dt(merchant.created_at) or datetime.utcnow())
                    session.add(row)
                row.name = merchant.name
                row.processor_account_id = merchant.processor_account_id
                row.access_token = merchant.access_token
                policy = merchant.policy.normalized()
                for name in POLICY_FIELDS:
                    setattr(row, name, getattr(policy, name))
                if row.evidence_profile is None:
                    row.evidence_profile = MerchantEvidenceProfile(merchant_id=merchant.id)
                for name in PROFILE_FIELDS:
                    setattr(row.evidence_profile, name, getattr(merchant.evidence_profile, name))
            return merchant_from_row(row)

    async def get_dispute(self, dispute_id: str) -> Optional[DisputeRecord]:
        async with self._session_maker() as session:
            row = await session.get(Dispute, dispute_id)
            return dispute_from_row(row) if row else None

    async def list_disputes(self, merchant_id: Optional[str] = None) -> List[DisputeRecord]:
        query = select(Dispute).order_by(Dispute.updated_at.desc())
        if merchant_id is not None:
            query = query.where(Dispute.merchant_id == merchant_id)
        async with self._session_maker() as session:
            result = await session.execute(query)
            return [dispute_from_row(row) for row in result.scalars().all()]

    async def upsert_dispute(self, record: DisputeRecord) -> DisputeRecord:
        updated = await self.update_dispute(record.id, lambda _current: record)
        return updated or record

    async def update_dispute(self, dispute_id: str, mutate: DisputeMutator) -> Optional[DisputeRecord]:
        try:
            return await self._update_dispute_once(dispute_id, mutate)
        except IntegrityError:
            # A concurrent insert of the same id won; the retry locks the stored row.
            return await self._update_dispute_once(dispute_id, mutate)

    async def _update_dispute_once(self, dispute_id: str, mutate: DisputeMutator) -> Optional[DisputeRecord]:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(Dispute).where(Dispute.id == dispute_id).with_for_update()
                )
                row = result.scalar_one_or_none()
                current = dispute_from_row(row) if row else None
                updated = mutate(current)
                if updated is None:
                    return current
                if row is None:
                    row = Dispute(id=dispute_id)
                    session.add(row)
                _apply_dispute(row, updated)
            return dispute_from_row(row)

    async def append_attempt(self, dispute_id: str, attempt: SubmissionAttempt) -> Optional[DisputeRecord]:
        def _append(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            if current is None:
                return None
            return replace(current, submission_attempts=append_attempt(current.submission_attempts, attempt))

        return await self.update_dispute(dispute_id, _append)

    async def _add_signal(self, model, signal: SignalRecord) -> bool:
        async with self._session_maker() as session:
            existing = await session.execute(
                select(model).where(model.merchant_id == signal.merchant_id, model.dedupe_key == signal.dedupe_key)
            )
            if existing.scalar_one_or_none() is not None:
                return False
            session.add(
                model(
                    id=signal.id,
                    merchant_id=signal.merchant_id,
                    dispute_id=signal.dispute_id,
                    dedupe_key=signal.dedupe_key,
                    source=signal.source,
                    created_at=_parse_dt(signal.created_at) or datetime.utcnow(),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                # Lost a race with a concurrent delivery of the same key.
                await session.rollback()
                return False
            return True

    async def _list_signals(self, model, merchant_id: Optional[str]) -> List[SignalRecord]:
        query = select(model).order_by(model.created_at.desc())
        if merchant_id is not None:
            query = query.where(model.merchant_id == merchant_id)
        async with self._session_maker() as session:
            result = await session.execute(query)
            return [_signal_from_row(row) for row in result.scalars().all()]

    async def add_alert(self, alert: SignalRecord) -> bool:
        return await self._add_signal(DisputeAlert, alert)

    async def add_inquiry(self, inquiry: SignalRecord) -> bool:
        return await self._add_signal(DisputeInquiry, inquiry)

    async def list_alerts(self, merchant_id: Optional[str] = None) -> List[SignalRecord]:
        return await self._list_signals(DisputeAlert, merchant_id)

    async def list_inquiries(self, merchant_id: Optional[str] = None) -> List[SignalRecord]:
        return await self._list_signals(DisputeInquiry, merchant_id)

"""Domain types shared by the decision engine, the stores and the API."""
from __future__ import annotations

import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


MAX_SUBMISSION_ATTEMPTS = 20

# A submission or refund claim older than this is treated as abandoned.
CLAIM_TTL_SECONDS = 600


class StatusKind(str, Enum):
    won = "won"
    lost = "lost"
    other = "other"


class EventType(str, Enum):
    created = "created"
    updated = "updated"
    closed = "closed"


class ReadinessReason(str, Enum):
    closed = "closed"
    already_submitted = "already_submitted"
    deflected = "deflected"
    auto_submit_disabled = "auto_submit_disabled"
    reason_not_allowed = "reason_not_allowed"
    manual_review_required = "manual_review_required"
    submission_delay_window_active = "submission_delay_window_active"
    score_below_threshold = "score_below_threshold"
    ready = "ready"


@dataclass(frozen=True)
class DisputeStatus:
    """Processor status string plus the only classification decisions rely on."""

    raw: str
    kind: StatusKind

    @property
    def is_terminal(self) -> bool:
        return self.kind in {StatusKind.won, StatusKind.lost}


def classify_status(raw: Optional[str]) -> DisputeStatus:
    value = str(raw or "").strip()
    lowered = value.lower()
    if lowered == "won":
        return DisputeStatus(raw=value, kind=StatusKind.won)
    if lowered == "lost":
        return DisputeStatus(raw=value, kind=StatusKind.lost)
    return DisputeStatus(raw=value, kind=StatusKind.other)


def now_epoch() -> int:
    return int(time.time())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def iso_from_epoch(epoch: int) -> str:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).isoformat()


def claim_active(since: Optional[int], now: int, ttl_seconds: int = CLAIM_TTL_SECONDS) -> bool:
    return since is not None and now - int(since) < ttl_seconds


def _non_negative_int(value: Any, default: int = 0) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default


def _non_negative_float(value: Any, default: float = 0.0) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return default


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class MerchantPolicy:
    auto_submit_enabled: bool = False
    auto_submit_reasons: List[str] = field(default_factory=list)
    min_evidence_score: int = 70
    manual_review_amount_threshold: int = 100000
    submission_delay_minutes: int = 0
    monthly_dispute_alert_threshold_pct: float = 0.75
    monthly_transaction_count: int = 0
    statement_descriptor: str = ""
    support_email: str = ""
    support_phone: str = ""

    def normalized(self) -> "MerchantPolicy":
        reasons: List[str] = []
        for reason in self.auto_submit_reasons or []:
            token = str(reason or "").strip()
            if token and token not in reasons:
                reasons.append(token)
        return MerchantPolicy(
            auto_submit_enabled=bool(self.auto_submit_enabled),
            auto_submit_reasons=reasons,
            min_evidence_score=min(100, _non_negative_int(self.min_evidence_score)),
            manual_review_amount_threshold=_non_negative_int(self.manual_review_amount_threshold),
            submission_delay_minutes=_non_negative_int(self.submission_delay_minutes),
            monthly_dispute_alert_threshold_pct=_non_negative_float(self.monthly_dispute_alert_threshold_pct),
            monthly_transaction_count=_non_negative_int(self.monthly_transaction_count),
            statement_descriptor=str(self.statement_descriptor or "").strip(),
            support_email=str(self.support_email or "").strip(),
            support_phone=str(self.support_phone or "").strip(),
        )

    def reason_allowed(self, reason: Optional[str]) -> bool:
        # An empty allow-list means every reason is allowed.
        if not self.auto_submit_reasons:
            return True
        return str(reason or "") in self.auto_submit_reasons

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: (list(getattr(self, f.name)) if f.name == "auto_submit_reasons" else getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MerchantPolicy":
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known}).normalized()


@dataclass
class EvidenceProfile:
    product_description_template: str = ""
    terms_url: str = ""
    refund_policy_url: str = ""
    cancellation_policy_url: str = ""
    onboarding_proof_template: str = ""
    delivery_proof_template: str = ""
    support_policy_template: str = ""
    shipping_carrier: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EvidenceProfile":
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v or "") for k, v in data.items() if k in known})


@dataclass
class Merchant:
    id: str
    name: str
    processor_account_id: str
    access_token: str = ""
    created_at: str = ""
    policy: MerchantPolicy = field(default_factory=MerchantPolicy)
    evidence_profile: EvidenceProfile = field(default_factory=EvidenceProfile)


@dataclass(frozen=True)
class SubmissionAttempt:
    at: str
    success: bool
    message: str

    def as_dict(self) -> Dict[str, Any]:
        return {"at": self.at, "success": self.success, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionAttempt":
        return cls(
            at=str(data.get("at") or ""),
            success=bool(data.get("success")),
            message=str(data.get("message") or ""),
        )


def append_attempt(
    attempts: List[SubmissionAttempt],
    attempt: SubmissionAttempt,
    cap: int = MAX_SUBMISSION_ATTEMPTS,
) -> List[SubmissionAttempt]:
    """Return a new list with ``attempt`` appended, trimmed from the oldest end."""
    combined = list(attempts) + [attempt]
    if len(combined) > cap:
        combined = combined[len(combined) - cap:]
    return combined


@dataclass
class DisputeRecord:
    id: str
    reason: str = ""
    amount: int = 0
    currency: str = ""
    status: str = ""
    merchant_id: Optional[str] = None
    processor_account_id: Optional[str] = None
    charge_id: Optional[str] = None
    due_by: Optional[int] = None
    created_at: Optional[int] = None
    updated_at: str = ""
    submitted: bool = False
    deflected: bool = False
    deflection_reason: Optional[str] = None
    deflected_at: Optional[str] = None
    evidence_score: int = 0
    manual_review_required: bool = False
    evidence_summary: List[str] = field(default_factory=list)
    submission_attempts: List[SubmissionAttempt] = field(default_factory=list)
    workflow_status: str = "new"
    owner: Optional[str] = None
    next_action_at: Optional[str] = None
    internal_notes: Optional[str] = None
    submission_pending_since: Optional[int] = None
    deflection_pending_since: Optional[int] = None

    @property
    def status_info(self) -> DisputeStatus:
        return classify_status(self.status)

    @property
    def is_open(self) -> bool:
        return not self.status_info.is_terminal

    def as_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["evidence_summary"] = list(self.evidence_summary)
        data["submission_attempts"] = [attempt.as_dict() for attempt in self.submission_attempts]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DisputeRecord":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["evidence_summary"] = [str(item) for item in (data.get("evidence_summary") or [])]
        values["submission_attempts"] = [
            item if isinstance(item, SubmissionAttempt) else SubmissionAttempt.from_dict(item)
            for item in (data.get("submission_attempts") or [])
        ]
        return cls(**values)


@dataclass
class DisputeEvent:
    """Dispute lifecycle payload as delivered by the processor."""

    id: str
    reason: str = ""
    amount: int = 0
    currency: str = ""
    status: str = ""
    due_by: Optional[int] = None
    created_at: Optional[int] = None
    charge_id: Optional[str] = None

    @classmethod
    def from_processor_object(cls, obj: Dict[str, Any]) -> "DisputeEvent":
        obj = obj if isinstance(obj, dict) else {}
        charge = obj.get("charge")
        if isinstance(charge, dict):
            charge = charge.get("id")
        evidence_details = obj.get("evidence_details") if isinstance(obj.get("evidence_details"), dict) else {}
        due_by = evidence_details.get("due_by") if evidence_details else obj.get("due_by")
        return cls(
            id=str(obj.get("id") or ""),
            reason=str(obj.get("reason") or ""),
            amount=_non_negative_int(obj.get("amount")),
            currency=str(obj.get("currency") or ""),
            status=str(obj.get("status") or ""),
            due_by=_optional_int(due_by),
            created_at=_optional_int(obj.get("created", obj.get("created_at"))),
            charge_id=str(charge) if charge else None,
        )


@dataclass
class ChargeContext:
    billing_email: str = ""
    billing_name: str = ""
    statement_descriptor: str = ""


@dataclass
class ActionOutcome:
    ok: bool
    message: str
    dispute_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def not_found(self) -> bool:
        return not self.ok and self.message == "not_found"

    def as_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "message": self.message, "dispute_id": self.dispute_id, "detail": self.detail}


@dataclass
class SignalRecord:
    """Early dispute signal: a network alert or a marketplace inquiry."""

    id: str
    merchant_id: str
    dedupe_key: str
    created_at: str = ""
    dispute_id: Optional[str] = None
    source: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

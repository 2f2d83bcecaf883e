"""Auto-submit readiness gates and queue priority for open disputes."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from autopilot.services.types import (
    DisputeRecord,
    MerchantPolicy,
    ReadinessReason,
    now_epoch,
)


# Priority reported for blocked disputes: how urgent it is to unblock them.
BLOCKED_PRIORITY = {
    ReadinessReason.closed: 0,
    ReadinessReason.already_submitted: 0,
    ReadinessReason.deflected: 0,
    ReadinessReason.auto_submit_disabled: 20,
    ReadinessReason.reason_not_allowed: 25,
    ReadinessReason.manual_review_required: 95,
    ReadinessReason.submission_delay_window_active: 60,
    ReadinessReason.score_below_threshold: 85,
}

NO_DUE_DATE_URGENCY = 50
OVERDUE_URGENCY = 100
DUE_URGENCY_BANDS = (
    (4 * 3600, 98),
    (24 * 3600, 90),
    (48 * 3600, 80),
)
DISTANT_DUE_URGENCY = 65
AMOUNT_URGENCY_DIVISOR = 5000
AMOUNT_URGENCY_CAP = 25


@dataclass
class ReadinessResult:
    ready: bool
    reason_code: ReadinessReason
    priority: int

    def as_dict(self) -> Dict[str, Any]:
        return {"ready": self.ready, "reason_code": self.reason_code.value, "priority": self.priority}


@dataclass
class QueueItem:
    dispute: DisputeRecord
    readiness: ReadinessResult

    def as_dict(self) -> Dict[str, Any]:
        return {**self.dispute.as_dict(), "readiness": self.readiness.as_dict()}


@dataclass
class QueueView:
    items: List[QueueItem] = field(default_factory=list)
    blocked_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def ready_count(self) -> int:
        return sum(1 for item in self.items if item.readiness.ready)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.as_dict() for item in self.items],
            "ready_count": self.ready_count,
            "blocked_counts": dict(self.blocked_counts),
        }


def delay_window_active(created_at: Optional[int], delay_minutes: int, now: int) -> bool:
    window = max(0, int(delay_minutes or 0)) * 60
    if window <= 0 or created_at is None:
        return False
    return now - int(created_at) < window


def due_urgency(due_by: Optional[int], now: int) -> int:
    if due_by is None:
        return NO_DUE_DATE_URGENCY
    seconds_left = int(due_by) - now
    if seconds_left <= 0:
        return OVERDUE_URGENCY
    for limit, urgency in DUE_URGENCY_BANDS:
        if seconds_left <= limit:
            return urgency
    return DISTANT_DUE_URGENCY


def amount_urgency(amount: int) -> int:
    # Half-up rounding, so 2500 minor units already counts as one point.
    points = int(math.floor(max(0, int(amount or 0)) / AMOUNT_URGENCY_DIVISOR + 0.5))
    return min(AMOUNT_URGENCY_CAP, points)


def ready_priority(record: DisputeRecord, now: int) -> int:
    return min(100, due_urgency(record.due_by, now) + amount_urgency(record.amount))


def _blocked(reason: ReadinessReason) -> ReadinessResult:
    return ReadinessResult(ready=False, reason_code=reason, priority=BLOCKED_PRIORITY[reason])


def evaluate_readiness(
    record: DisputeRecord,
    policy: Optional[MerchantPolicy],
    now: Optional[int] = None,
) -> ReadinessResult:
    """Apply the readiness rules in order; the first blocking rule wins."""
    policy = (policy or MerchantPolicy()).normalized()
    now = now_epoch() if now is None else int(now)

    if record.status_info.is_terminal:
        return _blocked(ReadinessReason.closed)
    if record.submitted:
        return _blocked(ReadinessReason.already_submitted)
    if record.deflected:
        return _blocked(ReadinessReason.deflected)
    if not policy.auto_submit_enabled:
        return _blocked(ReadinessReason.auto_submit_disabled)
    if not policy.reason_allowed(record.reason):
        return _blocked(ReadinessReason.reason_not_allowed)
    if record.manual_review_required:
        return _blocked(ReadinessReason.manual_review_required)
    if delay_window_active(record.created_at, policy.submission_delay_minutes, now):
        return _blocked(ReadinessReason.submission_delay_window_active)
    if record.evidence_score < policy.min_evidence_score:
        return _blocked(ReadinessReason.score_below_threshold)
    return ReadinessResult(ready=True, reason_code=ReadinessReason.ready, priority=ready_priority(record, now))


def build_queue(
    records: Iterable[DisputeRecord],
    policies: Mapping[Optional[str], MerchantPolicy],
    now: Optional[int] = None,
) -> QueueView:
    """Rank open disputes by descending priority and tally blocking reasons."""
    now = now_epoch() if now is None else int(now)
    items: List[QueueItem] = []
    blocked_counts: Dict[str, int] = {}
    for record in records:
        if not record.is_open:
            continue
        policy = policies.get(record.merchant_id) or policies.get(None)
        result = evaluate_readiness(record, policy, now)
        items.append(QueueItem(dispute=record, readiness=result))
        if not result.ready:
            key = result.reason_code.value
            blocked_counts[key] = blocked_counts.get(key, 0) + 1

    far_future = 2 ** 62
    items.sort(
        key=lambda item: (
            -item.readiness.priority,
            item.dispute.due_by if item.dispute.due_by is not None else far_future,
            item.dispute.id,
        )
    )
    return QueueView(items=items, blocked_counts=blocked_counts)

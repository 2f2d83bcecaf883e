"""Aggregate dispute metrics per merchant."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from autopilot.services.reconciler import AUTO_SUBMITTED_MESSAGE
from autopilot.services.types import (
    DisputeRecord,
    MerchantPolicy,
    SignalRecord,
    StatusKind,
    now_epoch,
)


MONTH_SECONDS = 30 * 24 * 3600


def _pct(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator * 100.0 / denominator, 2)


def compute_metrics(
    disputes: Iterable[DisputeRecord],
    alerts: Iterable[SignalRecord] = (),
    inquiries: Iterable[SignalRecord] = (),
    policy: Optional[MerchantPolicy] = None,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    now = now_epoch() if now is None else int(now)
    policy = (policy or MerchantPolicy()).normalized()
    records: List[DisputeRecord] = list(disputes)

    won = sum(1 for r in records if r.status_info.kind == StatusKind.won)
    lost = sum(1 for r in records if r.status_info.kind == StatusKind.lost)
    open_records = [r for r in records if r.is_open]
    auto_submitted = sum(
        1 for r in records if any(a.success and a.message == AUTO_SUBMITTED_MESSAGE for a in r.submission_attempts)
    )
    recent = sum(1 for r in records if r.created_at is not None and now - r.created_at <= MONTH_SECONDS)
    monthly_rate = _pct(recent, policy.monthly_transaction_count)

    return {
        "total_disputes": len(records),
        "open_disputes": len(open_records),
        "submitted": sum(1 for r in records if r.submitted),
        "auto_submitted": auto_submitted,
        "manual_review_required": sum(1 for r in open_records if r.manual_review_required),
        "deflected": sum(1 for r in records if r.deflected),
        "won": won,
        "lost": lost,
        "win_rate_pct": _pct(won, won + lost),
        "amount_at_risk": sum(r.amount for r in open_records if not r.deflected),
        "alerts": len(list(alerts)),
        "inquiries": len(list(inquiries)),
        "disputes_last_30_days": recent,
        "monthly_dispute_rate_pct": monthly_rate,
        "monthly_dispute_alert_threshold_pct": policy.monthly_dispute_alert_threshold_pct,
        "dispute_rate_alert": policy.monthly_transaction_count > 0
        and monthly_rate >= policy.monthly_dispute_alert_threshold_pct,
    }

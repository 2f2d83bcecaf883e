from autopilot.services.metrics import compute_metrics
from autopilot.services.reconciler import AUTO_SUBMITTED_MESSAGE, PENDING_REVIEW_MESSAGE
from autopilot.services.types import DisputeRecord, MerchantPolicy, SignalRecord, SubmissionAttempt


NOW = 1_700_000_000


def test_compute_metrics_aggregates_dispute_state():
    records = [
        DisputeRecord(
            id="dp_1",
            amount=5000,
            status="needs_response",
            created_at=NOW - 86400,
            submitted=True,
            submission_attempts=[SubmissionAttempt(at="a", success=True, message=AUTO_SUBMITTED_MESSAGE)],
        ),
        DisputeRecord(id="dp_2", amount=3000, status="needs_response", created_at=NOW - 86400, manual_review_required=True),
        DisputeRecord(id="dp_3", amount=7000, status="under_review", created_at=NOW - 86400, deflected=True),
        DisputeRecord(
            id="dp_4",
            amount=2000,
            status="won",
            created_at=NOW - 90 * 86400,
            submission_attempts=[SubmissionAttempt(at="a", success=True, message=PENDING_REVIEW_MESSAGE)],
        ),
        DisputeRecord(id="dp_5", amount=2000, status="lost", created_at=None),
    ]
    alerts = [SignalRecord(id="alrt_1", merchant_id="m_1", dedupe_key="k1")]
    policy = MerchantPolicy(monthly_transaction_count=400, monthly_dispute_alert_threshold_pct=0.75)

    metrics = compute_metrics(records, alerts=alerts, policy=policy, now=NOW)

    assert metrics["total_disputes"] == 5
    assert metrics["open_disputes"] == 3
    assert metrics["submitted"] == 1
    assert metrics["auto_submitted"] == 1
    assert metrics["manual_review_required"] == 1
    assert metrics["deflected"] == 1
    assert metrics["won"] == 1
    assert metrics["lost"] == 1
    assert metrics["win_rate_pct"] == 50.0
    assert metrics["amount_at_risk"] == 8000
    assert metrics["alerts"] == 1
    assert metrics["inquiries"] == 0
    assert metrics["disputes_last_30_days"] == 3
    assert metrics["monthly_dispute_rate_pct"] == 0.75
    assert metrics["dispute_rate_alert"] is True


def test_compute_metrics_without_transaction_volume_never_alerts():
    metrics = compute_metrics([DisputeRecord(id="dp_1", created_at=NOW)], now=NOW)
    assert metrics["monthly_dispute_rate_pct"] == 0.0
    assert metrics["dispute_rate_alert"] is False
    assert metrics["win_rate_pct"] == 0.0

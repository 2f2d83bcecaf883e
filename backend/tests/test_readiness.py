from autopilot.services.readiness import (
    amount_urgency,
    build_queue,
    due_urgency,
    evaluate_readiness,
)
from autopilot.services.types import DisputeRecord, MerchantPolicy, ReadinessReason


NOW = 1_700_000_000


def _policy(**overrides):
    values = dict(
        auto_submit_enabled=True,
        auto_submit_reasons=[],
        min_evidence_score=70,
        manual_review_amount_threshold=100000,
        submission_delay_minutes=0,
    )
    values.update(overrides)
    return MerchantPolicy(**values)


def _record(**overrides):
    values = dict(
        id="dp_1",
        reason="fraudulent",
        amount=1000,
        currency="usd",
        status="needs_response",
        evidence_score=80,
        created_at=NOW - 3600,
    )
    values.update(overrides)
    return DisputeRecord(**values)


def test_ready_dispute_without_due_date():
    result = evaluate_readiness(_record(amount=0), _policy(), NOW)
    assert result.ready is True
    assert result.reason_code == ReadinessReason.ready
    assert result.priority == 50


def test_rules_apply_in_order_with_fixed_priorities():
    cases = [
        (_record(status="won"), _policy(), ReadinessReason.closed, 0),
        (_record(status="LOST"), _policy(), ReadinessReason.closed, 0),
        (_record(submitted=True), _policy(), ReadinessReason.already_submitted, 0),
        (_record(deflected=True), _policy(), ReadinessReason.deflected, 0),
        (_record(), _policy(auto_submit_enabled=False), ReadinessReason.auto_submit_disabled, 20),
        (_record(), _policy(auto_submit_reasons=["duplicate"]), ReadinessReason.reason_not_allowed, 25),
        (_record(manual_review_required=True), _policy(), ReadinessReason.manual_review_required, 95),
        (_record(), _policy(submission_delay_minutes=120), ReadinessReason.submission_delay_window_active, 60),
        (_record(evidence_score=40), _policy(), ReadinessReason.score_below_threshold, 85),
    ]
    for record, policy, reason, priority in cases:
        result = evaluate_readiness(record, policy, NOW)
        assert result.ready is False
        assert result.reason_code == reason
        assert result.priority == priority


def test_manual_review_precedes_low_score():
    result = evaluate_readiness(_record(manual_review_required=True, evidence_score=0), _policy(), NOW)
    assert result.reason_code == ReadinessReason.manual_review_required


def test_empty_allow_list_allows_every_reason():
    result = evaluate_readiness(_record(reason="anything_new"), _policy(auto_submit_reasons=[]), NOW)
    assert result.ready is True


def test_delay_window_ignored_without_created_at():
    result = evaluate_readiness(_record(created_at=None), _policy(submission_delay_minutes=60), NOW)
    assert result.ready is True


def test_delay_window_elapsed():
    result = evaluate_readiness(_record(created_at=NOW - 3601), _policy(submission_delay_minutes=60), NOW)
    assert result.ready is True


def test_due_urgency_bands():
    assert due_urgency(None, NOW) == 50
    assert due_urgency(NOW, NOW) == 100
    assert due_urgency(NOW - 10, NOW) == 100
    assert due_urgency(NOW + 4 * 3600, NOW) == 98
    assert due_urgency(NOW + 4 * 3600 + 1, NOW) == 90
    assert due_urgency(NOW + 24 * 3600, NOW) == 90
    assert due_urgency(NOW + 48 * 3600, NOW) == 80
    assert due_urgency(NOW + 72 * 3600, NOW) == 65


def test_amount_urgency_rounds_half_up_and_caps():
    assert amount_urgency(0) == 0
    assert amount_urgency(2499) == 0
    assert amount_urgency(2500) == 1
    assert amount_urgency(12500) == 3
    assert amount_urgency(10_000_000) == 25


def test_priority_is_capped_at_one_hundred():
    record = _record(due_by=NOW - 1, amount=50000)
    assert evaluate_readiness(record, _policy(manual_review_amount_threshold=10**9), NOW).priority == 100


def test_overdue_outranks_distant_regardless_of_amount():
    overdue = _record(id="dp_overdue", due_by=NOW - 1, amount=0)
    distant = _record(id="dp_distant", due_by=NOW + 72 * 3600, amount=99000)
    queue = build_queue([distant, overdue], {None: _policy()}, NOW)
    assert [item.dispute.id for item in queue.items] == ["dp_overdue", "dp_distant"]
    assert queue.items[0].readiness.priority == 100
    assert queue.items[1].readiness.priority == 65 + 20


def test_queue_skips_closed_and_counts_blocked_reasons():
    records = [
        _record(id="dp_a"),
        _record(id="dp_b", status="won"),
        _record(id="dp_c", merchant_id="m_1"),
        _record(id="dp_d", merchant_id="m_1", evidence_score=10),
        _record(id="dp_e", submitted=True),
    ]
    policies = {None: _policy(), "m_1": _policy(auto_submit_enabled=False)}
    queue = build_queue(records, policies, NOW)
    assert "dp_b" not in {item.dispute.id for item in queue.items}
    assert queue.ready_count == 1
    assert queue.blocked_counts == {"auto_submit_disabled": 2, "already_submitted": 1}


def test_queue_ties_break_on_due_date_then_id():
    records = [
        _record(id="dp_2", due_by=None, amount=0),
        _record(id="dp_1", due_by=None, amount=0),
        _record(id="dp_3", evidence_score=10),
        _record(id="dp_0", evidence_score=10, due_by=NOW + 10 * 86400),
    ]
    queue = build_queue(records, {None: _policy()}, NOW)
    assert [item.dispute.id for item in queue.items] == ["dp_0", "dp_3", "dp_1", "dp_2"]


def test_queue_as_dict_shape():
    queue = build_queue([_record()], {None: _policy()}, NOW)
    data = queue.as_dict()
    assert data["ready_count"] == 1
    assert data["items"][0]["id"] == "dp_1"
    assert data["items"][0]["readiness"] == {"ready": True, "reason_code": "ready", "priority": 50}

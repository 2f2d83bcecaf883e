from dataclasses import replace

from autopilot.services.reconciler import (
    AUTO_SUBMITTED_MESSAGE,
    PENDING_REVIEW_MESSAGE,
    complete_reconcile,
    evidence_update_blocker,
    merge_closed_record,
    reconcile,
)
from autopilot.services.types import (
    ChargeContext,
    DisputeEvent,
    DisputeRecord,
    EvidenceProfile,
    MerchantPolicy,
    SubmissionAttempt,
)


NOW = 1_700_000_000

PROFILE = EvidenceProfile(
    product_description_template="Pro subscription",
    terms_url="https://shop.test/terms",
    refund_policy_url="https://shop.test/refunds",
    cancellation_policy_url="https://shop.test/cancel",
    delivery_proof_template="Account accessed 30 times",
    support_policy_template="Support reachable 24/7",
)
CHARGE = ChargeContext(billing_email="jane@example.com", billing_name="Jane", statement_descriptor="SHOP")


def _policy(**overrides):
    values = dict(
        auto_submit_enabled=True,
        auto_submit_reasons=["fraudulent"],
        min_evidence_score=70,
        manual_review_amount_threshold=100000,
        submission_delay_minutes=0,
    )
    values.update(overrides)
    return MerchantPolicy(**values)


def _event(**overrides):
    values = dict(
        id="dp_1",
        reason="fraudulent",
        amount=5000,
        currency="usd",
        status="needs_response",
        due_by=NOW + 86400,
        created_at=NOW - 7200,
        charge_id="ch_1",
    )
    values.update(overrides)
    return DisputeEvent(**values)


def _run(event, existing=None, policy=None, submit_error=None):
    result = reconcile(event, existing, policy or _policy(), PROFILE, charge=CHARGE, now=NOW, merchant_id="m_1")
    return result, complete_reconcile(result, existing, submit_error=submit_error, at="2024-01-01T00:00:00+00:00")


def test_created_event_auto_submits_when_every_gate_passes():
    result, record = _run(_event())
    assert result.should_auto_submit is True
    assert all(result.gates.values())
    assert result.payload["submit"] is True
    assert record.submitted is True
    assert record.evidence_score == 90
    assert record.merchant_id == "m_1"
    assert record.submission_attempts[-1].message == AUTO_SUBMITTED_MESSAGE
    assert record.submission_attempts[-1].success is True


def test_blocked_gate_keeps_evidence_as_draft():
    result, record = _run(_event(reason="duplicate"))
    assert result.gates["reason_allowed"] is False
    assert result.should_auto_submit is False
    assert result.payload["submit"] is False
    assert record.submitted is False
    assert record.submission_attempts[-1].message == PENDING_REVIEW_MESSAGE


def test_manual_review_flag_follows_amount_threshold():
    result, record = _run(_event(amount=100000))
    assert record.manual_review_required is True
    assert result.gates["below_manual_review_amount"] is False
    assert result.should_auto_submit is False

    _, below = _run(_event(amount=99999))
    assert below.manual_review_required is False


def test_delay_window_uses_event_creation_time():
    result, _ = _run(_event(created_at=NOW - 60), policy=_policy(submission_delay_minutes=10))
    assert result.gates["delay_window_elapsed"] is False
    result, _ = _run(_event(created_at=NOW - 601), policy=_policy(submission_delay_minutes=10))
    assert result.gates["delay_window_elapsed"] is True


def test_created_at_is_write_once():
    existing = DisputeRecord(id="dp_1", status="needs_response", created_at=NOW - 99999)
    _, record = _run(_event(created_at=NOW - 10), existing=existing)
    assert record.created_at == NOW - 99999


def test_deflection_and_triage_fields_survive_updates():
    existing = DisputeRecord(
        id="dp_1",
        status="needs_response",
        deflected=True,
        deflection_reason="refunded",
        deflected_at="2024-01-02T00:00:00+00:00",
        workflow_status="in_progress",
        owner="ops@shop.test",
        internal_notes="call customer",
    )
    result, record = _run(_event(status="under_review"), existing=existing)
    assert result.gates["not_deflected"] is False
    assert result.should_auto_submit is False
    assert record.status == "under_review"
    assert record.deflected is True
    assert record.deflection_reason == "refunded"
    assert record.deflected_at == "2024-01-02T00:00:00+00:00"
    assert record.workflow_status == "in_progress"
    assert record.owner == "ops@shop.test"
    assert record.internal_notes == "call customer"


def test_submitted_never_goes_back_to_false():
    existing = DisputeRecord(id="dp_1", status="needs_response", submitted=True)
    result, record = _run(_event(reason="duplicate"), existing=existing)
    assert result.gates["not_already_submitted"] is False
    assert record.submitted is True


def test_submit_error_records_failed_attempt_without_submitting():
    _, record = _run(_event(), submit_error="card_declined: upstream timeout")
    assert record.submitted is False
    assert record.submission_attempts[-1].success is False
    assert record.submission_attempts[-1].message == "card_declined: upstream timeout"


def test_replaying_update_is_idempotent_except_for_attempts():
    policy = _policy(auto_submit_enabled=False)
    _, first = _run(_event(), policy=policy)
    _, second = _run(_event(), existing=first, policy=policy)
    assert second.evidence_score == first.evidence_score
    assert second.submitted == first.submitted
    assert second.evidence_summary == first.evidence_summary
    assert len(second.submission_attempts) == len(first.submission_attempts) + 1


def test_attempt_history_is_capped_at_twenty():
    attempts = [SubmissionAttempt(at=str(i), success=True, message=f"m{i}") for i in range(20)]
    existing = DisputeRecord(id="dp_1", status="needs_response", submission_attempts=attempts)
    _, record = _run(_event(), existing=existing, policy=_policy(auto_submit_enabled=False))
    assert len(record.submission_attempts) == 20
    assert record.submission_attempts[0].message == "m1"
    assert record.submission_attempts[-1].message == PENDING_REVIEW_MESSAGE


def test_complete_reconcile_merges_onto_latest_stored_record():
    existing = DisputeRecord(id="dp_1", status="needs_response")
    result = reconcile(_event(), existing, _policy(auto_submit_enabled=False), PROFILE, now=NOW)
    # A deflection lands between the evidence call and the write.
    current = replace(existing, deflected=True, deflection_reason="refund", deflected_at="x")
    record = complete_reconcile(result, current)
    assert record.deflected is True
    assert record.deflection_reason == "refund"


def test_closed_event_forces_submitted_and_keeps_evidence_context():
    existing = DisputeRecord(
        id="dp_1",
        reason="fraudulent",
        status="under_review",
        merchant_id="m_1",
        created_at=NOW - 5000,
        evidence_score=90,
        manual_review_required=True,
        evidence_summary=["Applied fraud playbook"],
        submission_attempts=[SubmissionAttempt(at="a", success=True, message="ok")],
        deflected=True,
        deflection_reason="refund",
        deflected_at="b",
        owner="ops",
    )
    event = DisputeEvent(id="dp_1", reason="fraudulent", amount=5000, status="won", created_at=NOW)
    record = merge_closed_record(event, existing, processor_account_id="acct_1", merchant_id="m_other", at="c")
    assert record.status == "won"
    assert record.submitted is True
    assert record.merchant_id == "m_1"
    assert record.created_at == NOW - 5000
    assert record.evidence_score == 90
    assert record.manual_review_required is True
    assert record.evidence_summary == ["Applied fraud playbook"]
    assert len(record.submission_attempts) == 1
    assert record.deflected is True
    assert record.deflected_at == "b"
    assert record.owner == "ops"
    assert record.updated_at == "c"


def test_closed_event_without_prior_record_creates_minimal_terminal_record():
    event = DisputeEvent(id="dp_9", reason="duplicate", amount=700, currency="eur", status="lost", created_at=NOW)
    record = merge_closed_record(event, None, processor_account_id="acct_1", merchant_id="m_1")
    assert record.id == "dp_9"
    assert record.status == "lost"
    assert record.submitted is True
    assert record.is_open is False
    assert record.evidence_score == 0
    assert record.submission_attempts == []
    assert record.created_at == NOW


def test_evidence_update_blocker_names_first_failing_gate():
    assert evidence_update_blocker({"dispute_open": True, "reason_allowed": False}) is None
    assert evidence_update_blocker({"dispute_open": False, "not_already_submitted": False}) == "closed"
    assert evidence_update_blocker({"not_already_submitted": False, "not_deflected": False}) == "already_submitted"
    assert evidence_update_blocker({"not_deflected": False}) == "deflected"
    assert evidence_update_blocker({"no_submission_in_flight": False}) == "submission_in_progress"


def test_submission_in_flight_blocks_auto_submit_until_claim_expires():
    existing = DisputeRecord(id="dp_1", status="needs_response", submission_pending_since=NOW - 60)
    result = reconcile(_event(), existing, _policy(), PROFILE, charge=CHARGE, now=NOW)
    assert result.gates["no_submission_in_flight"] is False
    assert result.should_auto_submit is False
    assert evidence_update_blocker(result.gates) == "submission_in_progress"

    stale = replace(existing, submission_pending_since=NOW - 601)
    result = reconcile(_event(), stale, _policy(), PROFILE, charge=CHARGE, now=NOW)
    assert result.gates["no_submission_in_flight"] is True
    assert result.should_auto_submit is True


def test_skipped_update_records_attempt_and_keeps_state():
    existing = DisputeRecord(id="dp_1", status="needs_response", submitted=True, evidence_score=40)
    result = reconcile(_event(), existing, _policy(), PROFILE, charge=CHARGE, now=NOW)
    skipped = evidence_update_blocker(result.gates)
    record = complete_reconcile(result, existing, skipped=skipped, at="2024-01-01T00:00:00+00:00")
    assert skipped == "already_submitted"
    assert record.submitted is True
    assert record.submission_attempts[-1].success is False
    assert record.submission_attempts[-1].message == "No evidence update sent (already_submitted)"


def test_pending_claims_survive_merges():
    existing = DisputeRecord(
        id="dp_1",
        status="needs_response",
        submission_pending_since=NOW - 10,
        deflection_pending_since=NOW - 5,
    )
    result = reconcile(_event(), existing, _policy(auto_submit_enabled=False), PROFILE, now=NOW)
    assert result.record.submission_pending_since == NOW - 10
    assert result.record.deflection_pending_since == NOW - 5
    closed = merge_closed_record(_event(status="lost"), existing)
    assert closed.deflection_pending_since == NOW - 5


def test_merchant_support_contact_reaches_evidence_payload():
    policy = _policy(support_email="help@shop.test", support_phone="+1 555 0100")
    result, _ = _run(_event(), policy=policy)
    text = result.payload["evidence"]["uncategorized_text"]
    assert text.split("\n")[-1] == "Support contact: help@shop.test / +1 555 0100"

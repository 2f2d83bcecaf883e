from autopilot.services.optimizer import ReasonStats, optimize_reasons, reason_outcomes
from autopilot.services.types import DisputeRecord


def _records(reason, won, lost):
    records = [DisputeRecord(id=f"{reason}_w{i}", reason=reason, status="won") for i in range(won)]
    records += [DisputeRecord(id=f"{reason}_l{i}", reason=reason, status="lost") for i in range(lost)]
    return records


def test_reason_outcomes_ignore_open_disputes():
    records = _records("fraudulent", 2, 1) + [DisputeRecord(id="dp_open", reason="fraudulent", status="needs_response")]
    outcomes = reason_outcomes(records)
    assert outcomes["fraudulent"].won == 2
    assert outcomes["fraudulent"].lost == 1
    assert outcomes["fraudulent"].win_rate_pct == 66.67


def test_losing_reason_is_removed_and_others_added():
    outcomes = reason_outcomes(_records("fraudulent", 1, 4) + _records("duplicate", 3, 1))
    result = optimize_reasons(outcomes, ["fraudulent", "product_not_received"])
    assert result.risky_reasons == ["fraudulent"]
    assert result.allowed_reasons == ["duplicate", "product_not_received"]
    assert result.fell_back is False


def test_only_reason_risky_falls_back_to_current_list():
    outcomes = reason_outcomes(_records("fraudulent", 1, 4))
    result = optimize_reasons(outcomes, ["fraudulent"], min_cases=3, min_win_rate_pct=30)
    assert result.risky_reasons == ["fraudulent"]
    assert result.allowed_reasons == ["fraudulent"]
    assert result.fell_back is True


def test_fallback_keeps_empty_current_list():
    outcomes = reason_outcomes(_records("fraudulent", 0, 5))
    result = optimize_reasons(outcomes, [])
    assert result.allowed_reasons == []
    assert result.fell_back is True


def test_too_few_cases_are_never_risky():
    outcomes = {"fraudulent": ReasonStats(reason="fraudulent", won=0, lost=2)}
    result = optimize_reasons(outcomes, [], min_cases=3)
    assert result.risky_reasons == []
    assert result.allowed_reasons == ["fraudulent"]


def test_no_history_keeps_current_list():
    result = optimize_reasons({}, ["duplicate", "fraudulent"])
    assert result.allowed_reasons == ["duplicate", "fraudulent"]
    assert result.risky_reasons == []
    assert result.stats == []


def test_result_as_dict():
    outcomes = reason_outcomes(_records("duplicate", 3, 0))
    data = optimize_reasons(outcomes, []).as_dict()
    assert data["allowed_reasons"] == ["duplicate"]
    assert data["stats"] == [{"reason": "duplicate", "won": 3, "lost": 0, "cases": 3, "win_rate_pct": 100.0}]

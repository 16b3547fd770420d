from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from callpolicy.factories.compliance import ComplianceEngine
from callpolicy.models import PolicyConfig

LA = ZoneInfo("America/Los_Angeles")
MORNING = datetime(2025, 3, 4, 10, 0, tzinfo=LA)


@pytest.fixture
def engine():
    return ComplianceEngine(PolicyConfig())


def test_clean_case_is_allowed(engine, case):
    out = engine.evaluate(case, "OPENING", now=MORNING)
    assert out.allowed
    assert out.forced_transition is None
    assert out.risk_level == "LOW"


def test_outside_call_window_blocks(engine, case):
    late = datetime(2025, 3, 4, 22, 30, tzinfo=LA)
    out = engine.evaluate(case, "OPENING", now=late)
    assert not out.allowed
    assert any("window" in reason.lower() for reason in out.blocked_reasons)


def test_attempt_limits(engine, case):
    out = engine.evaluate(case.model_copy(update={"attempt_count_today": 3}), "OPENING", now=MORNING)
    assert not out.allowed
    out = engine.evaluate(case.model_copy(update={"attempt_count_total": 7}), "OPENING", now=MORNING)
    assert not out.allowed


def test_dnc_forces_do_not_call(engine, case):
    out = engine.evaluate(case.model_copy(update={"dnc": True}), "NEGOTIATION", now=MORNING)
    assert not out.allowed
    assert out.forced_transition == "DO_NOT_CALL"
    assert out.risk_level == "HIGH"


def test_wrong_party_overrides_dispute(engine, case):
    flagged = case.model_copy(update={"disputed": True, "wrong_party": True})
    out = engine.evaluate(flagged, "OPENING", now=MORNING)
    assert out.forced_transition == "WRONG_PARTY_FLOW"
    assert engine.evaluate(flagged, "WRONG_PARTY_FLOW", now=MORNING).forced_transition is None


def test_dispute_not_forced_once_in_flow(engine, case):
    disputed = case.model_copy(update={"disputed": True})
    assert engine.evaluate(disputed, "OPENING", now=MORNING).forced_transition == "DISPUTE_FLOW"
    assert engine.evaluate(disputed, "DISPUTE_FLOW", now=MORNING).forced_transition is None


def test_declined_consent_blocks_gated_states(engine, case):
    declined = case.model_copy(update={"recording_consent": False})
    assert engine.evaluate(declined, "OPENING", now=MORNING).allowed
    assert not engine.evaluate(declined, "NEGOTIATION", now=MORNING).allowed


def test_prohibited_phrase_in_proposed_text(engine, case):
    out = engine.evaluate(case, "NEGOTIATION", proposed_text="You could go to jail for this.", now=MORNING)
    assert not out.allowed
    assert any("jail" in reason for reason in out.blocked_reasons)


def test_required_templates(engine, case):
    assert engine.required_templates(case, "DISCLOSURE") == ["MINI_MIRANDA"]
    assert engine.required_templates(case, "CONSENT_RECORDING") == ["RECORDING_CONSENT"]


def test_unknown_timezone_skips_window_check(engine, case):
    odd = case.model_copy(update={"timezone": "Mars/Olympus_Mons"})
    ok, _ = engine.check_call_window(odd, MORNING)
    assert ok


def test_validate_response_flags_aggressive_language(engine):
    ok, issues = engine.validate_response("You must pay immediately.")
    assert not ok
    assert len(issues) == 2
    assert engine.validate_response("Would a payment plan help?") == (True, [])


def test_dnc_outranks_other_flags(engine, case):
    flagged = case.model_copy(update={"dnc": True, "disputed": True, "wrong_party": True})
    assert engine.evaluate(flagged, "OPENING", now=MORNING).forced_transition == "DO_NOT_CALL"


@pytest.mark.parametrize("state", ["DO_NOT_CALL", "WRONG_PARTY_FLOW", "DISPUTE_FLOW", "END_CALL"])
def test_no_forced_branch_once_on_a_branch(engine, case, state):
    flagged = case.model_copy(update={"dnc": True, "disputed": True, "wrong_party": True})
    assert engine.evaluate(flagged, state, now=MORNING).forced_transition is None

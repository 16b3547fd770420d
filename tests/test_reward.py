import pytest

from callpolicy.factories.reward import RewardEngine, determine_terminal_reason
from callpolicy.models import ObservationState


def obs(state="OPENING", **kwargs):
    base = dict(
        dialogue_state=state,
        turn_count=1,
        time_in_state=1,
        debt_bucket="MEDIUM",
        days_past_due_bucket="90",
        prior_attempts=0,
    )
    base.update(kwargs)
    return ObservationState(**base)


@pytest.fixture
def engine():
    return RewardEngine()


def test_milestones_granted_once(engine):
    prev = obs("DEBT_CONTEXT")
    nxt = obs("NEGOTIATION", disclosure_complete=True, identity_verified=True)
    first = engine.calculate_shaping(prev, "PROCEED", nxt, [])
    assert first == pytest.approx(0.1 + 0.1 + 0.2)

    # Leaving and re-entering earns nothing new
    again = engine.calculate_shaping(obs("PAYMENT_SETUP"), "EMPATHIZE", nxt, [])
    assert again == pytest.approx(0.0)


def test_offer_accepted_requires_offer_action(engine):
    prev = obs("NEGOTIATION")
    nxt = obs("PAYMENT_SETUP")
    reward = engine.calculate_shaping(prev, "OFFER_PLAN", nxt, ["AGREEMENT"])
    assert reward == pytest.approx(0.2 + 0.3)

    # Back to negotiation and accepting a second offer earns no further bonus
    engine.calculate_shaping(nxt, "CONFIRM_PLAN", prev, [])
    assert engine.calculate_shaping(prev, "OFFER_PLAN", nxt, ["AGREEMENT"]) == pytest.approx(0.0)


def test_agreement_without_offer_only_willingness(engine):
    reward = engine.calculate_shaping(obs("NEGOTIATION"), "EMPATHIZE", obs("PAYMENT_SETUP"), ["AGREEMENT"])
    assert reward == pytest.approx(0.2)


def test_repeated_action_penalty(engine):
    engine.calculate_shaping(obs(), "ASK_CLARIFY", obs(), [])
    assert engine.calculate_shaping(obs(), "ASK_CLARIFY", obs(), []) == pytest.approx(-0.1)
    assert engine.calculate_shaping(obs(), "HANDLE_PUSHBACK", obs(), []) == pytest.approx(0.0)


def test_reset_clears_tracker(engine):
    engine.calculate_shaping(obs("DEBT_CONTEXT"), "PROCEED", obs("NEGOTIATION"), [])
    engine.reset()
    assert engine.calculate_shaping(obs("DEBT_CONTEXT"), "PROCEED", obs("NEGOTIATION"), []) == pytest.approx(0.2)


def test_hangup_penalty_depends_on_disclosure(engine):
    assert engine.calculate_terminal("BORROWER_HANGUP", obs()) == pytest.approx(-0.5)
    assert engine.calculate_terminal("BORROWER_HANGUP", obs(disclosure_complete=True)) == pytest.approx(-0.3)
    assert engine.calculate_terminal(None, obs()) == 0.0


def test_breakdown_sums(engine):
    breakdown = engine.calculate(obs("WRAPUP"), "PROCEED", obs("END_CALL"), [], "PAYMENT_SETUP_COMPLETE")
    assert breakdown.terminal == pytest.approx(1.0)
    assert breakdown.turn_penalty == pytest.approx(-0.05)
    assert breakdown.total == pytest.approx(breakdown.shaping + breakdown.terminal + breakdown.turn_penalty)


@pytest.mark.parametrize(
    "kwargs,expected",
    [
        (dict(compliance_violation=True, hangup=True), "COMPLIANCE_VIOLATION"),
        (dict(max_turns_reached=True, hangup=True), "MAX_TURNS_REACHED"),
        (dict(hangup=True), "BORROWER_HANGUP"),
        (dict(signals=["STOP_CONTACT"]), "BORROWER_HANGUP"),
    ],
)
def test_terminal_reason_precedence(kwargs, expected):
    signals = kwargs.pop("signals", [])
    max_turns = kwargs.pop("max_turns_reached", False)
    assert determine_terminal_reason(obs("END_CALL"), signals, max_turns, **kwargs) == expected


@pytest.mark.parametrize(
    "slots,expected",
    [
        ({"payment_link_sent": True, "agreement_reached": True}, "PAYMENT_SETUP_COMPLETE"),
        ({"callback_scheduled": True}, "CALLBACK_SCHEDULED"),
        ({"agreement_reached": True}, "PROMISE_TO_PAY"),
        ({}, "END_CALL_REACHED"),
    ],
)
def test_end_call_outcome_from_slots(slots, expected):
    assert determine_terminal_reason(obs("END_CALL"), [], False, slots=slots) == expected


def test_special_state_outcomes():
    assert determine_terminal_reason(obs("ESCALATE_HUMAN"), [], False) == "ESCALATE_HUMAN"
    assert determine_terminal_reason(obs("DO_NOT_CALL"), [], False) == "BORROWER_HANGUP"
    assert determine_terminal_reason(obs("PAYMENT_SETUP"), [], False) == "PAYMENT_SETUP_COMPLETE"

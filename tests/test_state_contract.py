import pytest

from callpolicy.factories.state_contract import (
    STATE_ALLOWED_ACTIONS,
    DialogueStateMachine,
    forced_target,
    is_valid_transition,
    legal_actions,
)
from callpolicy.models import ALL_ACTIONS, ALL_STATES, MAIN_FLOW_ORDER, SPECIAL_STATES


def test_every_state_has_nonempty_legal_actions():
    assert set(STATE_ALLOWED_ACTIONS) == set(ALL_STATES)
    for state in ALL_STATES:
        actions = legal_actions(state)
        assert actions
        assert set(actions) <= set(ALL_ACTIONS)


def test_legal_actions_returns_copy():
    actions = legal_actions("OPENING")
    actions.append("ESCALATE")
    assert "ESCALATE" not in legal_actions("OPENING")


def test_unknown_state_raises():
    with pytest.raises(KeyError):
        legal_actions("NOT_A_STATE")


def test_state_counts():
    assert len(MAIN_FLOW_ORDER) == 9
    assert len(SPECIAL_STATES) == 5
    assert MAIN_FLOW_ORDER[-1] == "END_CALL"


@pytest.mark.parametrize(
    "src,dst,expected",
    [
        ("OPENING", "DISCLOSURE", True),
        ("OPENING", "DEBT_CONTEXT", False),
        ("NEGOTIATION", "DEBT_CONTEXT", False),
        ("NEGOTIATION", "NEGOTIATION", True),
        ("OPENING", "DISPUTE_FLOW", True),
        ("DISPUTE_FLOW", "END_CALL", True),
        ("ESCALATE_HUMAN", "OPENING", True),
    ],
)
def test_is_valid_transition(src, dst, expected):
    assert is_valid_transition(src, dst) is expected


def test_forced_target_first_signal_wins():
    assert forced_target(["AGREEMENT", "DISPUTE", "HOSTILITY"]) == "DISPUTE_FLOW"
    assert forced_target(["AGREEMENT", "REFUSAL"]) is None
    assert forced_target(["STOP_CONTACT"]) == "DO_NOT_CALL"


def test_standard_transition_follows_main_flow():
    fsm = DialogueStateMachine()
    result = fsm.standard_transition()
    assert (result.previous_state, result.new_state) == ("OPENING", "DISCLOSURE")
    assert not result.forced
    fsm.standard_transition()
    assert fsm.current_state == "CONSENT_RECORDING"


def test_standard_transition_applies_forced_signal():
    fsm = DialogueStateMachine()
    result = fsm.standard_transition(["HOSTILITY"])
    assert result.forced
    assert fsm.current_state == "ESCALATE_HUMAN"
    assert "HOSTILITY" in result.reason


def test_end_call_has_no_next_state():
    fsm = DialogueStateMachine()
    fsm.force_transition("END_CALL", "test")
    result = fsm.standard_transition()
    assert result.new_state == "END_CALL"
    assert fsm.is_terminal()


def test_force_transition_records_history_and_reset_clears():
    fsm = DialogueStateMachine()
    fsm.force_transition("WRONG_PARTY_FLOW", "Forced by signal: WRONG_PARTY")
    fsm.set_slot("identity_verified", True)
    assert fsm.context.state_history == ["OPENING", "WRONG_PARTY_FLOW"]
    fsm.reset()
    assert fsm.current_state == "OPENING"
    assert fsm.get_slot("identity_verified") is None

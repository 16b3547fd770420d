import pytest

from callpolicy.errors import ContractViolation, EpisodeDoneError, IllegalActionError
from callpolicy.factories.borrower import FALLBACK_REPLY
from callpolicy.factories.environment import FALLBACK_UTTERANCE
from callpolicy.factories.persona_forge import get_persona
from callpolicy.factories.policy_learner import create_learner
from callpolicy.models import EnvironmentConfig
from training.runner import run_episode

from fakes import EchoBorrower, FailingBorrower, FailingGenerator, FixedGenerator


def play(env, actions):
    return [env.step(action) for action in actions]


def test_reset_returns_initial_observation(make_env, cooperative):
    env = make_env()
    observation = env.reset(cooperative)
    assert observation.dialogue_state == "OPENING"
    assert observation.turn_count == 0
    assert env.persona == cooperative
    assert env.compliance.allowed
    assert not env.done


def test_payment_path_ends_with_payment_setup_complete(make_env, cooperative):
    env = make_env()
    env.reset(cooperative)
    results = play(env, ["PROCEED", "PROCEED", "PROCEED", "PROCEED", "OFFER_PLAN", "SEND_PAYMENT_LINK", "PROCEED"])

    states = [r.info.to_state for r in results]
    assert states == [
        "DISCLOSURE", "CONSENT_RECORDING", "DEBT_CONTEXT", "NEGOTIATION", "PAYMENT_SETUP", "WRAPUP", "END_CALL",
    ]
    assert [r.done for r in results] == [False] * 6 + [True]
    assert results[-1].info.terminal_reason == "PAYMENT_SETUP_COMPLETE"
    assert all(r.info.terminal_reason is None for r in results[:-1])
    assert "AGREEMENT" in results[4].info.detected_signals
    assert env.fsm.get_slot("payment_link_sent") is True
    assert env.fsm.get_slot("agreement_reached") is True
    assert results[3].observation.disclosure_complete

    trajectory = env.trajectory()
    assert trajectory.length == 7
    assert trajectory.outcome == "PAYMENT_SETUP_COMPLETE"
    assert trajectory.total_return == pytest.approx(sum(r.reward for r in results))


def test_reward_breakdown_matches_total(make_env, cooperative):
    env = make_env()
    env.reset(cooperative)
    for result in play(env, ["PROCEED", "PROCEED", "PROCEED"]):
        b = result.info.reward_breakdown
        assert result.reward == pytest.approx(b.shaping + b.terminal + b.turn_penalty)


def test_callback_path(make_env):
    env = make_env()
    env.reset(get_persona("hardship_cooperative"))
    results = play(env, ["PROCEED", "PROCEED", "PROCEED", "PROCEED", "REQUEST_CALLBACK"])
    assert results[-1].info.to_state == "CALLBACK_SCHEDULED"
    assert env.fsm.get_slot("callback_scheduled") is True

    final = env.step("SUMMARIZE")
    assert final.done
    assert final.info.terminal_reason == "CALLBACK_SCHEDULED"


def test_dispute_signal_forces_dispute_flow(make_env):
    env = make_env()
    env.reset(get_persona("neutral_disputing"))
    results = play(env, ["PROCEED", "PROCEED", "PROCEED", "PROCEED"])
    assert results[-1].info.to_state == "DISPUTE_FLOW"
    assert results[-1].info.was_forced
    assert env.legal_actions() == ["ACKNOWLEDGE_DISPUTE", "EMPATHIZE", "PROCEED"]


def test_illegal_action_raises_and_is_not_coerced(make_env, cooperative):
    env = make_env()
    env.reset(cooperative)
    with pytest.raises(IllegalActionError) as excinfo:
        env.step("OFFER_PLAN")
    assert excinfo.value.state == "OPENING"
    assert isinstance(excinfo.value, ContractViolation)
    assert env.turn_count == 0
    assert env.fsm.current_state == "OPENING"


def test_step_after_done_raises(make_env, cooperative):
    env = make_env(counterparty=EchoBorrower("I'm hanging up.", hangup=True))
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.done
    with pytest.raises(EpisodeDoneError):
        env.step("SUMMARIZE")


def test_hangup_before_disclosure(make_env, cooperative):
    env = make_env(counterparty=EchoBorrower("I'm hanging up.", hangup=True))
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.info.to_state == "END_CALL"
    assert result.info.terminal_reason == "BORROWER_HANGUP"
    assert result.reward == pytest.approx(-0.5 - 0.05)


def test_stop_contact_goes_to_do_not_call(make_env, cooperative):
    env = make_env(counterparty=EchoBorrower("Stop calling me.", signal="STOP_CONTACT"))
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.info.to_state == "DO_NOT_CALL"
    assert result.done
    assert result.info.terminal_reason == "BORROWER_HANGUP"


def test_dispute_flag_preempts_chosen_action(make_env, cooperative):
    env = make_env(case_overrides={"disputed": True})
    env.reset(cooperative)
    assert env.compliance.forced_transition == "DISPUTE_FLOW"

    result = env.step("PROCEED")
    assert result.info.preempted
    assert result.info.to_state == "DISPUTE_FLOW"
    assert result.info.agent_utterance == ""
    assert env.conversation_history == []
    assert not result.done
    assert env.compliance.forced_transition is None


def test_dnc_case_ends_in_do_not_call(make_env, cooperative):
    env = make_env(case_overrides={"dnc": True})
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.info.to_state == "DO_NOT_CALL"
    assert result.done
    assert result.info.risk_level == "HIGH"


def test_attempt_limit_is_a_compliance_violation(make_env, cooperative):
    env = make_env(case_overrides={"attempt_count_today": 3})
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.done
    assert result.info.terminal_reason == "COMPLIANCE_VIOLATION"
    assert result.info.blocked_reasons


def test_prohibited_phrase_ends_call(make_env, cooperative):
    env = make_env(generator=FixedGenerator("Pay now or you could go to jail."), counterparty=EchoBorrower())
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.done
    assert result.info.terminal_reason == "COMPLIANCE_VIOLATION"
    assert result.info.borrower_response == ""
    assert result.reward == pytest.approx(-1.0 - 0.05)


def test_generator_failure_uses_fallback_line(make_env, cooperative):
    env = make_env(generator=FailingGenerator(), counterparty=EchoBorrower())
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.info.agent_utterance == FALLBACK_UTTERANCE
    assert result.info.to_state == "DISCLOSURE"


def test_counterparty_failure_uses_fallback_reply(make_env, cooperative):
    env = make_env(counterparty=FailingBorrower())
    env.reset(cooperative)
    result = env.step("PROCEED")
    assert result.info.borrower_response == FALLBACK_REPLY
    assert not result.done


def test_max_turns(make_env, cooperative):
    env = make_env(counterparty=EchoBorrower(), config=EnvironmentConfig(max_turns_per_episode=3))
    env.reset(cooperative)
    results = play(env, ["ASK_CLARIFY", "HANDLE_PUSHBACK", "ASK_CLARIFY"])
    assert results[-1].done
    assert results[-1].info.terminal_reason == "MAX_TURNS_REACHED"
    assert results[-1].info.reward_breakdown.terminal == pytest.approx(-0.2)


def test_compliance_can_be_disabled(make_env, cooperative):
    env = make_env(case_overrides={"dnc": True}, config=EnvironmentConfig(enforce_compliance=False))
    env.reset(cooperative)
    assert env.step("PROCEED").info.to_state == "DISCLOSURE"


def test_same_seed_same_episode(make_env, cooperative):
    outcomes = []
    for _ in range(2):
        env = make_env(seed=11)
        metrics = run_episode(env, create_learner("random", seed=5), train=False, persona=cooperative)
        outcomes.append((metrics.outcome, metrics.length, round(metrics.total_return, 6), list(env.action_history)))
    assert outcomes[0] == outcomes[1]


def test_reset_starts_fresh_episode(make_env, cooperative):
    env = make_env(counterparty=EchoBorrower("I'm hanging up.", hangup=True))
    env.reset(cooperative)
    env.step("PROCEED")
    observation = env.reset(cooperative)
    assert observation.dialogue_state == "OPENING"
    assert env.transitions == []
    assert not env.done


def test_disputed_wrong_party_case_settles_in_wrong_party_flow(make_env, cooperative):
    env = make_env(counterparty=EchoBorrower(), case_overrides={"disputed": True, "wrong_party": True})
    env.reset(cooperative)
    first = env.step("PROCEED")
    assert first.info.preempted
    assert first.info.to_state == "WRONG_PARTY_FLOW"
    assert env.compliance.forced_transition is None

    second = env.step("PROCEED")
    assert not second.info.preempted
    assert second.info.to_state == "END_CALL"
    assert second.done
    assert "DISPUTE_FLOW" not in env.fsm.context.state_history


def test_dnc_takes_precedence_over_dispute(make_env, cooperative):
    env = make_env(case_overrides={"dnc": True, "disputed": True})
    env.reset(cooperative)
    assert env.compliance.forced_transition == "DO_NOT_CALL"
    result = env.step("PROCEED")
    assert result.info.to_state == "DO_NOT_CALL"
    assert result.done
    assert "DISPUTE_FLOW" not in env.fsm.context.state_history


def test_aggressive_language_is_recorded(make_env, cooperative, caplog):
    env = make_env(generator=FixedGenerator("You must pay immediately."), counterparty=EchoBorrower())
    env.reset(cooperative)
    with caplog.at_level("WARNING", logger="callpolicy.factories.environment"):
        result = env.step("PROCEED")
    assert not result.done
    assert len(result.info.language_issues) == 2
    assert "aggressive language" in caplog.text


def test_run_episode_keeps_trajectory(make_env, cooperative):
    env = make_env()
    metrics = run_episode(env, create_learner("fixed"), train=False, persona=cooperative)
    assert metrics.trajectory is not None
    assert len(metrics.trajectory.transitions) == metrics.length
    assert metrics.trajectory.outcome == metrics.outcome

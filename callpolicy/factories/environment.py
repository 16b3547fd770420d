"""
DebtCollectionEnv: reset/step orchestrator for policy training.

Composes the dialogue state machine, compliance engine, reward engine and
state projector with two injected collaborators: an utterance generator
and a counterparty simulator.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, time
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np

from callpolicy.errors import EpisodeDoneError, IllegalActionError
from callpolicy.factories.borrower import CounterpartySimulator, FALLBACK_REPLY
from callpolicy.factories.compliance import ComplianceEngine
from callpolicy.factories.persona_forge import sample_persona
from callpolicy.factories.reward import RewardEngine, determine_terminal_reason
from callpolicy.factories.state_contract import DialogueStateMachine
from callpolicy.factories.state_projector import StateProjector
from callpolicy.factories.utterances import AgentContext, UtteranceGenerator
from callpolicy.models import (
    BorrowerResponse,
    CaseData,
    ComplianceOutput,
    EnvironmentConfig,
    ObservationState,
    Persona,
    StepResult,
    Trajectory,
    Transition,
    TransitionInfo,
)

logger = logging.getLogger(__name__)

FALLBACK_UTTERANCE = "Could you tell me a bit more about that?"

# Actions that move the main flow forward when chosen in a state.
ADVANCING_ACTIONS: Dict[str, List[str]] = {
    "OPENING": ["PROCEED"],
    "DISCLOSURE": ["IDENTIFY_SELF", "PROCEED"],
    "IDENTITY_VERIFICATION": ["CONFIRM_IDENTITY"],
    "CONSENT_RECORDING": ["PROCEED"],
    "DEBT_CONTEXT": ["PROCEED"],
    "PAYMENT_SETUP": ["SEND_PAYMENT_LINK", "PROCEED"],
    "WRAPUP": ["PROCEED"],
    "CALLBACK_SCHEDULED": ["SUMMARIZE", "PROCEED"],
    "DISPUTE_FLOW": ["PROCEED"],
    "WRONG_PARTY_FLOW": ["PROCEED"],
    "DO_NOT_CALL": ["ACKNOWLEDGE_DNC", "PROCEED"],
    "ESCALATE_HUMAN": ["ESCALATE", "PROCEED"],
}

CALLBACK_SIGNALS = ("CALLBACK_REQUEST", "INCONVENIENT_TIME")
AGREEMENT_STATES = ("NEGOTIATION", "PAYMENT_SETUP")
POSITIVE_REPLY_RE = re.compile(r"yes|agree|okay|deal|sounds good", re.IGNORECASE)


class DebtCollectionEnv:
    """
    Gym-style environment for one simulated call at a time.

    Args:
        case: Debtor case facts
        utterance_generator: Turns (action, state, context) into agent text
        counterparty: Simulated borrower
        config: Episode limits, reward constants and compliance rules
        compliance: Compliance engine (built from config.policy when omitted)
        seed: Seed for persona sampling when reset() gets no persona
    """

    def __init__(
        self,
        case: CaseData,
        utterance_generator: UtteranceGenerator,
        counterparty: CounterpartySimulator,
        config: Optional[EnvironmentConfig] = None,
        compliance: Optional[ComplianceEngine] = None,
        seed: Optional[int] = None,
    ):
        self.case = case
        self.utterance_generator = utterance_generator
        self.counterparty = counterparty
        self.config = config or EnvironmentConfig()
        self.compliance_engine = compliance or ComplianceEngine(self.config.policy)
        self.reward_engine = RewardEngine(self.config.reward)
        self.fsm = DialogueStateMachine()
        self.rng = np.random.default_rng(seed)

        self.persona: Optional[Persona] = None
        self.conversation_history: List[Dict[str, str]] = []
        self.signal_history: List[str] = []
        self.action_history: List[str] = []
        self.turn_count = 0
        self.transitions: List[Transition] = []
        self.current_state = StateProjector.initial_state(case)
        self.compliance: Optional[ComplianceOutput] = None
        self.done = False

    def reset(self, persona: Optional[Persona] = None) -> ObservationState:
        """Start a new episode and return the initial observation."""
        self.persona = persona or sample_persona(self.rng)
        self.counterparty.reset(self.persona)
        self.fsm.reset()
        self.reward_engine.reset()

        self.conversation_history = []
        self.signal_history = []
        self.action_history = []
        self.turn_count = 0
        self.transitions = []
        self.done = False

        self.current_state = StateProjector.initial_state(self.case)
        self.compliance = self._evaluate_compliance()
        return self.current_state

    def legal_actions(self) -> List[str]:
        return self.fsm.legal_actions()

    def step(self, action: str) -> StepResult:
        """
        Advance the call by one agent turn.

        Raises:
            EpisodeDoneError: the episode already ended
            IllegalActionError: action not legal in the current state
        """
        if self.done:
            raise EpisodeDoneError()

        state_before = self.fsm.current_state
        allowed = self.legal_actions()
        if action not in allowed:
            raise IllegalActionError(action, state_before, allowed)

        prev_observation = self.current_state
        compliance = self.compliance or self._evaluate_compliance()
        self.action_history.append(action)
        self.turn_count += 1

        info = TransitionInfo(
            from_state=state_before,
            to_state=state_before,
            reason="No transition",
            risk_level=compliance.risk_level,
            required_templates=list(compliance.required_templates),
            blocked_reasons=list(compliance.blocked_reasons),
        )
        signals: List[str] = []
        hangup = False
        violation = False

        if compliance.forced_transition:
            # Compliance pre-empts the chosen action for this turn
            result = self.fsm.force_transition(
                compliance.forced_transition, "Compliance: " + "; ".join(compliance.blocked_reasons or ["case flags"])
            )
            info.was_forced = True
            info.preempted = True
            info.reason = result.reason
        elif not compliance.allowed:
            self.fsm.force_transition("END_CALL", "Compliance block")
            violation = True
            info.was_forced = True
            info.preempted = True
            info.reason = "Compliance block: " + "; ".join(compliance.blocked_reasons)
        else:
            utterance = self._generate_utterance(action, state_before)
            info.agent_utterance = utterance
            self.conversation_history.append({"role": "agent", "text": utterance})

            ok, reason = self.compliance_engine.check_prohibited_phrases(utterance)
            if not ok:
                self.fsm.force_transition("END_CALL", reason)
                violation = True
                info.was_forced = True
                info.reason = reason
                info.blocked_reasons.append(reason)
            else:
                _, issues = self.compliance_engine.validate_response(utterance)
                if issues:
                    logger.warning("Outbound utterance flagged in %s: %s", state_before, "; ".join(issues))
                    info.language_issues = issues
                reply = self._counterparty_reply(utterance)
                info.borrower_response = reply.text
                self.conversation_history.append({"role": "borrower", "text": reply.text})
                if reply.detected_signal:
                    signals.append(reply.detected_signal)
                    self.signal_history.append(reply.detected_signal)
                hangup = reply.should_hangup
                self._resolve_transition(action, signals, hangup, info)
                self._update_slots(action, reply.text, state_before, signals, hangup)

        info.to_state = self.fsm.current_state
        info.detected_signals = list(signals)
        if self.fsm.current_state in ("DEBT_CONTEXT", "NEGOTIATION"):
            self.fsm.set_slot("disclosure_complete", True)

        observation = StateProjector.project(
            self.fsm.context,
            self.case,
            self.conversation_history,
            self.signal_history,
            self.action_history,
            self.turn_count,
        )
        self.current_state = observation

        max_turns_reached = self.turn_count >= self.config.max_turns_per_episode
        self.done = self.fsm.is_terminal() or max_turns_reached or hangup or violation

        terminal_reason = None
        if self.done:
            terminal_reason = determine_terminal_reason(
                observation,
                signals,
                max_turns_reached,
                slots=self.fsm.context.slots,
                hangup=hangup,
                compliance_violation=violation,
            )
        info.terminal_reason = terminal_reason

        breakdown = self.reward_engine.calculate(prev_observation, action, observation, signals, terminal_reason)
        info.reward_breakdown = breakdown

        self.transitions.append(Transition(
            state=prev_observation,
            action=action,
            reward=breakdown.total,
            next_state=observation,
            done=self.done,
            info=info,
        ))

        self.compliance = None if self.done else self._evaluate_compliance()
        return StepResult(observation=observation, reward=breakdown.total, done=self.done, info=info)

    def trajectory(self) -> Trajectory:
        total = sum(t.reward for t in self.transitions)
        outcome = "END_CALL_REACHED"
        if self.transitions and self.transitions[-1].info.terminal_reason:
            outcome = self.transitions[-1].info.terminal_reason
        return Trajectory(
            transitions=list(self.transitions),
            total_return=total,
            length=len(self.transitions),
            outcome=outcome,
            persona=self.persona,
        )

    def _resolve_transition(self, action: str, signals: List[str], hangup: bool, info: TransitionInfo) -> None:
        """Hangup, then forced signal, then callback routing, then the advancing table."""
        state = self.fsm.current_state
        if hangup:
            result = self.fsm.force_transition("END_CALL", "Borrower hangup")
            info.was_forced = True
            info.reason = result.reason
            return

        target = self.fsm.check_forced_transition(signals)
        if target:
            result = self.fsm.force_transition(target, f"Forced by signal: {', '.join(signals)}")
            info.was_forced = True
            info.reason = result.reason
            return

        if action == "REQUEST_CALLBACK" and any(s in CALLBACK_SIGNALS for s in signals):
            result = self.fsm.force_transition("CALLBACK_SCHEDULED", "Callback agreed")
            self.fsm.set_slot("callback_scheduled", True)
            info.was_forced = True
            info.reason = result.reason
            return

        if action in ADVANCING_ACTIONS.get(state, []) or "AGREEMENT" in signals:
            result = self.fsm.standard_transition(signals)
            info.was_forced = result.forced
            info.reason = result.reason

    def _update_slots(
        self,
        action: str,
        reply_text: str,
        state_before: str,
        signals: List[str],
        hangup: bool,
    ) -> None:
        if action == "CONFIRM_IDENTITY":
            self.fsm.set_slot("identity_verified", True)

        if action in ("OFFER_PLAN", "COUNTER_OFFER"):
            self.fsm.set_slot("offers_made", int(self.fsm.get_slot("offers_made", 0)) + 1)

        if "AGREEMENT" in signals and state_before in AGREEMENT_STATES:
            self.fsm.set_slot("agreement_reached", True)

        if (
            action == "SEND_PAYMENT_LINK"
            and state_before == "PAYMENT_SETUP"
            and not hangup
            and "REFUSAL" not in signals
        ):
            self.fsm.set_slot("payment_link_sent", True)

        self.fsm.set_slot("last_response_positive", bool(POSITIVE_REPLY_RE.search(reply_text)))

    def _generate_utterance(self, action: str, state: str) -> str:
        context = AgentContext(
            case=self.case,
            conversation_history=list(self.conversation_history),
            slots=dict(self.fsm.context.slots),
        )
        try:
            text = self.utterance_generator.generate(action, state, context)
        except Exception as exc:  # collaborator failures never abort a step
            logger.warning("Utterance generator failed for %s:%s (%s)", state, action, exc)
            return FALLBACK_UTTERANCE
        return text or FALLBACK_UTTERANCE

    def _counterparty_reply(self, utterance: str) -> BorrowerResponse:
        try:
            return self.counterparty.respond(utterance)
        except Exception as exc:  # collaborator failures never abort a step
            logger.warning("Counterparty simulator failed (%s)", exc)
            return BorrowerResponse(text=FALLBACK_REPLY, patience_remaining=0.0)

    def _call_instant(self) -> Optional[datetime]:
        if not self.config.call_time:
            return None
        try:
            tz = ZoneInfo(self.case.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return None
        hours, minutes = (int(x) for x in self.config.call_time.split(":"))
        return datetime.combine(datetime.now(tz).date(), time(hours, minutes), tzinfo=tz)

    def _evaluate_compliance(self) -> ComplianceOutput:
        if not self.config.enforce_compliance:
            return ComplianceOutput(allowed=True)
        return self.compliance_engine.evaluate(self.case, self.fsm.current_state, now=self._call_instant())


def create_environment(
    case: CaseData,
    utterance_generator: UtteranceGenerator,
    counterparty: CounterpartySimulator,
    config: Optional[EnvironmentConfig] = None,
    seed: Optional[int] = None,
) -> DebtCollectionEnv:
    return DebtCollectionEnv(case, utterance_generator, counterparty, config=config, seed=seed)


__all__ = ["DebtCollectionEnv", "create_environment", "ADVANCING_ACTIONS", "FALLBACK_UTTERANCE"]

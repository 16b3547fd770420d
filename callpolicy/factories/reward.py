"""
Reward: shaping, terminal and per-turn rewards for the collection-call MDP.
Milestone bonuses are granted at most once per episode.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from callpolicy.models import ObservationState, RewardBreakdown, RewardConfig

OFFER_ACTIONS = ("OFFER_PLAN", "COUNTER_OFFER")
PARTIAL_SUCCESS_REASONS = ("PAYMENT_SETUP_COMPLETE", "PROMISE_TO_PAY", "CALLBACK_SCHEDULED")


@dataclass
class RewardTracker:
    """Per-episode record of granted milestones and the previous action."""

    identity_verified: bool = False
    disclosure_complete: bool = False
    entered_negotiation: bool = False
    willingness_signal: bool = False
    offer_accepted: bool = False
    last_action: Optional[str] = None


def determine_terminal_reason(
    state: ObservationState,
    signals: Iterable[str],
    max_turns_reached: bool,
    *,
    slots: Optional[Mapping[str, object]] = None,
    hangup: bool = False,
    compliance_violation: bool = False,
) -> str:
    """
    Resolve why an episode ended, using one ordered precedence list.

    Args:
        state: Observation after the final step
        signals: Signals detected on the final step
        max_turns_reached: Whether the turn budget ran out
        slots: Dialogue slots (used to resolve END_CALL outcomes)
        hangup: Whether the counterparty hung up
        compliance_violation: Whether the call was stopped for compliance

    Returns:
        TerminalReason value
    """
    signals = list(signals)
    slots = slots or {}

    if compliance_violation:
        return "COMPLIANCE_VIOLATION"
    if max_turns_reached:
        return "MAX_TURNS_REACHED"
    if hangup or "STOP_CONTACT" in signals:
        return "BORROWER_HANGUP"

    dialogue_state = state.dialogue_state
    if dialogue_state == "PAYMENT_SETUP":
        return "PAYMENT_SETUP_COMPLETE"
    if dialogue_state == "CALLBACK_SCHEDULED":
        return "CALLBACK_SCHEDULED"
    if dialogue_state == "ESCALATE_HUMAN":
        return "ESCALATE_HUMAN"
    if dialogue_state in ("DO_NOT_CALL", "DISPUTE_FLOW", "WRONG_PARTY_FLOW"):
        return "BORROWER_HANGUP"
    if dialogue_state == "END_CALL":
        if slots.get("payment_link_sent"):
            return "PAYMENT_SETUP_COMPLETE"
        if slots.get("callback_scheduled"):
            return "CALLBACK_SCHEDULED"
        if slots.get("agreement_reached"):
            return "PROMISE_TO_PAY"
    return "END_CALL_REACHED"


class RewardEngine:
    """Computes decomposed step rewards."""

    def __init__(self, config: Optional[RewardConfig] = None):
        self.config = config or RewardConfig()
        self.tracker = RewardTracker()

    def reset(self) -> None:
        self.tracker = RewardTracker()

    def calculate_shaping(
        self,
        prev: ObservationState,
        action: str,
        next_state: ObservationState,
        signals: Iterable[str],
        tracker: Optional[RewardTracker] = None,
    ) -> float:
        """
        Sum milestone bonuses and the repetition penalty for one step.

        Args:
            prev: Observation before the action
            action: Action taken
            next_state: Observation after the action
            signals: Signals detected in the reply
            tracker: Milestone tracker (defaults to the engine's own)

        Returns:
            Shaping reward
        """
        tracker = tracker if tracker is not None else self.tracker
        shaping = self.config.shaping
        signals = list(signals)
        reward = 0.0

        if next_state.identity_verified and not prev.identity_verified and not tracker.identity_verified:
            reward += shaping.identity_verified
            tracker.identity_verified = True

        if next_state.disclosure_complete and not prev.disclosure_complete and not tracker.disclosure_complete:
            reward += shaping.disclosure_complete
            tracker.disclosure_complete = True

        if (
            next_state.dialogue_state == "NEGOTIATION"
            and prev.dialogue_state != "NEGOTIATION"
            and not tracker.entered_negotiation
        ):
            reward += shaping.entered_negotiation
            tracker.entered_negotiation = True

        if "AGREEMENT" in signals and not tracker.willingness_signal:
            reward += shaping.willingness_signal
            tracker.willingness_signal = True

        if "AGREEMENT" in signals and action in OFFER_ACTIONS and not tracker.offer_accepted:
            reward += shaping.offer_accepted
            tracker.offer_accepted = True

        if tracker.last_action is not None and action == tracker.last_action:
            reward += shaping.repeated_action
        tracker.last_action = action

        return reward

    def calculate_terminal(self, reason: Optional[str], state: ObservationState) -> float:
        """Terminal reward for a finished episode (0 when not terminal)."""
        if reason is None:
            return 0.0

        terminal = self.config.terminal
        if reason == "BORROWER_HANGUP":
            if state.disclosure_complete:
                return terminal.hangup_after_disclosure
            return terminal.hangup_before_disclosure

        lookup = {
            "PAYMENT_SETUP_COMPLETE": terminal.payment_setup_complete,
            "PROMISE_TO_PAY": terminal.promise_to_pay,
            "CALLBACK_SCHEDULED": terminal.callback_scheduled,
            "COMPLIANCE_VIOLATION": terminal.compliance_violation,
            "ESCALATE_HUMAN": terminal.escalate_human,
            "MAX_TURNS_REACHED": terminal.max_turns_reached,
            "END_CALL_REACHED": terminal.end_call_reached,
        }
        return lookup[reason]

    def calculate_turn_penalty(self) -> float:
        return self.config.per_turn

    def calculate(
        self,
        prev: ObservationState,
        action: str,
        next_state: ObservationState,
        signals: Iterable[str],
        terminal_reason: Optional[str] = None,
    ) -> RewardBreakdown:
        shaping = self.calculate_shaping(prev, action, next_state, signals)
        terminal = self.calculate_terminal(terminal_reason, next_state)
        turn_penalty = self.calculate_turn_penalty()
        return RewardBreakdown(
            shaping=shaping,
            terminal=terminal,
            turn_penalty=turn_penalty,
            total=shaping + terminal + turn_penalty,
        )


__all__ = [
    "RewardEngine",
    "RewardTracker",
    "determine_terminal_reason",
    "OFFER_ACTIONS",
    "PARTIAL_SUCCESS_REASONS",
]

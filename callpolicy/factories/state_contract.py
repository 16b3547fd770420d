"""
State Contract: dialogue states, legal actions and guarded transitions.
Provides the finite-state machine that owns a call's DialogueContext.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from callpolicy.models import (
    MAIN_FLOW_ORDER,
    SPECIAL_STATES,
    TERMINAL_STATES,
    SlotValue,
)

logger = logging.getLogger(__name__)

INITIAL_STATE = "OPENING"

STATE_ALLOWED_ACTIONS: Dict[str, List[str]] = {
    "OPENING": ["PROCEED", "ASK_CLARIFY", "HANDLE_PUSHBACK"],
    "DISCLOSURE": ["IDENTIFY_SELF", "ASK_CLARIFY", "PROCEED"],
    "IDENTITY_VERIFICATION": ["ASK_VERIFICATION", "CONFIRM_IDENTITY", "ASK_CLARIFY"],
    "CONSENT_RECORDING": ["PROCEED", "ASK_CLARIFY", "HANDLE_PUSHBACK"],
    "DEBT_CONTEXT": ["PROCEED", "EMPATHIZE", "ASK_CLARIFY"],
    "NEGOTIATION": [
        "EMPATHIZE",
        "OFFER_PLAN",
        "COUNTER_OFFER",
        "REQUEST_CALLBACK",
        "HANDLE_PUSHBACK",
        "PROCEED",
    ],
    "PAYMENT_SETUP": ["CONFIRM_PLAN", "SEND_PAYMENT_LINK", "ASK_CLARIFY", "PROCEED"],
    "WRAPUP": ["SUMMARIZE", "PROCEED"],
    "CALLBACK_SCHEDULED": ["SUMMARIZE", "PROCEED"],
    "DISPUTE_FLOW": ["ACKNOWLEDGE_DISPUTE", "EMPATHIZE", "PROCEED"],
    "WRONG_PARTY_FLOW": ["APOLOGIZE", "PROCEED"],
    "DO_NOT_CALL": ["ACKNOWLEDGE_DNC", "PROCEED"],
    "ESCALATE_HUMAN": ["ESCALATE", "PROCEED"],
    "END_CALL": ["SUMMARIZE"],
}

# Identity verification is opt-in; the standard flow goes straight to consent.
STANDARD_NEXT: Dict[str, Optional[str]] = {
    "OPENING": "DISCLOSURE",
    "DISCLOSURE": "CONSENT_RECORDING",
    "IDENTITY_VERIFICATION": "CONSENT_RECORDING",
    "CONSENT_RECORDING": "DEBT_CONTEXT",
    "DEBT_CONTEXT": "NEGOTIATION",
    "NEGOTIATION": "PAYMENT_SETUP",
    "PAYMENT_SETUP": "WRAPUP",
    "WRAPUP": "END_CALL",
    "END_CALL": None,
    "DISPUTE_FLOW": "END_CALL",
    "WRONG_PARTY_FLOW": "END_CALL",
    "DO_NOT_CALL": "END_CALL",
    "ESCALATE_HUMAN": "END_CALL",
    "CALLBACK_SCHEDULED": "END_CALL",
}

SIGNAL_FORCED_TRANSITIONS: Dict[str, Optional[str]] = {
    "STOP_CONTACT": "DO_NOT_CALL",
    "DISPUTE": "DISPUTE_FLOW",
    "WRONG_PARTY": "WRONG_PARTY_FLOW",
    "ATTORNEY_REPRESENTED": "END_CALL",
    "INCONVENIENT_TIME": None,
    "CALLBACK_REQUEST": None,
    "AGREEMENT": None,
    "REFUSAL": None,
    "CONFUSION": None,
    "HOSTILITY": "ESCALATE_HUMAN",
}


def legal_actions(state: str) -> List[str]:
    """
    Look up the legal actions for a dialogue state.

    Args:
        state: Dialogue state name

    Returns:
        Copy of the whitelist (never empty)
    """
    try:
        return list(STATE_ALLOWED_ACTIONS[state])
    except KeyError:
        raise KeyError(f"Unknown dialogue state: {state}") from None


def is_special_state(state: str) -> bool:
    return state in SPECIAL_STATES


def is_terminal_state(state: str) -> bool:
    return state in TERMINAL_STATES


def main_flow_index(state: str) -> int:
    """Position in the main flow, or -1 for special states."""
    return MAIN_FLOW_ORDER.index(state) if state in MAIN_FLOW_ORDER else -1


def is_valid_transition(from_state: str, to_state: str) -> bool:
    """
    Check transition legality.

    Special targets, self-loops and exits from special states are always
    allowed; main-flow moves must go exactly one step forward.
    """
    if is_special_state(to_state):
        return True
    if to_state == from_state:
        return True
    if is_special_state(from_state):
        return True
    return main_flow_index(to_state) == main_flow_index(from_state) + 1


def standard_next(state: str) -> Optional[str]:
    return STANDARD_NEXT.get(state)


def forced_target(signals: Iterable[str]) -> Optional[str]:
    """First signal with a forced target wins."""
    for signal in signals:
        target = SIGNAL_FORCED_TRANSITIONS.get(signal)
        if target:
            return target
    return None


@dataclass
class DialogueContext:
    """Mutable per-call context. Only the state machine writes to it."""

    current_state: str = INITIAL_STATE
    state_history: List[str] = field(default_factory=lambda: [INITIAL_STATE])
    slots: Dict[str, SlotValue] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    previous_state: str
    new_state: str
    reason: str
    forced: bool = False


class DialogueStateMachine:
    """Finite-state machine over DialogueContext."""

    def __init__(self, initial_state: str = INITIAL_STATE):
        self.initial_state = initial_state
        self.context = DialogueContext(
            current_state=initial_state, state_history=[initial_state]
        )

    @property
    def current_state(self) -> str:
        return self.context.current_state

    def legal_actions(self) -> List[str]:
        return legal_actions(self.context.current_state)

    def is_terminal(self) -> bool:
        return is_terminal_state(self.context.current_state)

    def check_forced_transition(self, signals: Iterable[str]) -> Optional[str]:
        return forced_target(signals)

    def force_transition(self, target: str, reason: str) -> TransitionResult:
        """
        Jump to any state without validation.

        Used for signal and compliance jumps, which may leave any state.
        """
        previous = self.context.current_state
        self.context.current_state = target
        self.context.state_history.append(target)
        logger.debug("Forced transition %s -> %s (%s)", previous, target, reason)
        return TransitionResult(previous, target, reason, forced=True)

    def standard_transition(self, signals: Iterable[str] = ()) -> TransitionResult:
        """Apply a forced signal target, else the standard next state, else nothing."""
        previous = self.context.current_state
        if previous == "END_CALL":
            return TransitionResult(previous, previous, "Already in terminal state")

        signals = list(signals)
        target = forced_target(signals)
        if target:
            trigger = next(s for s in signals if SIGNAL_FORCED_TRANSITIONS.get(s))
            return self.force_transition(target, f"Forced by signal: {trigger}")

        nxt = standard_next(previous)
        if nxt:
            self.context.current_state = nxt
            self.context.state_history.append(nxt)
            return TransitionResult(previous, nxt, "Standard flow progression")

        return TransitionResult(previous, previous, "No transition available")

    def set_slot(self, name: str, value: SlotValue) -> None:
        self.context.slots[name] = value

    def get_slot(self, name: str, default: Optional[SlotValue] = None) -> Optional[SlotValue]:
        return self.context.slots.get(name, default)

    def reset(self) -> None:
        self.context = DialogueContext(
            current_state=self.initial_state, state_history=[self.initial_state]
        )


__all__ = [
    "STATE_ALLOWED_ACTIONS",
    "STANDARD_NEXT",
    "SIGNAL_FORCED_TRANSITIONS",
    "DialogueContext",
    "DialogueStateMachine",
    "TransitionResult",
    "legal_actions",
    "is_valid_transition",
    "is_special_state",
    "is_terminal_state",
    "main_flow_index",
    "standard_next",
    "forced_target",
]

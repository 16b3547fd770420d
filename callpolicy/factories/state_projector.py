"""
StateProjector: derives bounded observations from raw call history.
Produces the canonical StateKey for tabular learners and the numeric
feature vector for the contextual bandit.
"""
import re
from typing import Dict, List, Optional, Sequence

import numpy as np

from callpolicy.factories.state_contract import DialogueContext
from callpolicy.models import ALL_STATES, CaseData, ObservationState

# Bump whenever a ceiling or key field changes; persisted Q-tables carry it.
STATE_KEY_VERSION = 1

TURN_CEILING = 20
TIME_IN_STATE_CEILING = 5
PRIOR_ATTEMPTS_CEILING = 5
OBJECTIONS_CEILING = 3
OFFERS_CEILING = 3

POSITIVE_KEYWORDS = [
    "yes", "okay", "sure", "i can", "i will", "agree",
    "understand", "thank", "appreciate", "pay", "help",
]
NEGATIVE_KEYWORDS = [
    "no", "can't", "cannot", "won't", "refuse", "never", "stop",
    "harass", "scam", "fraud", "lawyer", "sue", "angry", "upset", "ridiculous",
]

OBJECTION_SIGNALS = ("REFUSAL", "DISPUTE", "HOSTILITY")
OFFER_ACTIONS = ("OFFER_PLAN", "COUNTER_OFFER")
POSITIVE_SIGNALS = ("AGREEMENT",)
NEGATIVE_SIGNALS = ("REFUSAL", "DISPUTE", "HOSTILITY", "STOP_CONTACT")

DEBT_BUCKETS = ("LOW", "MEDIUM", "HIGH")
DPD_BUCKETS = ("30", "60", "90", "120+")
SENTIMENTS = ("POSITIVE", "NEUTRAL", "NEGATIVE")

FEATURE_DIM = len(ALL_STATES) + 5 + 2 + len(DEBT_BUCKETS) + len(DPD_BUCKETS) + len(SENTIMENTS) + 2 + 1

_KEY_STATE_RE = re.compile(r"^fsm:(\w+)")


class StateProjector:
    """Pure projections from call history to observations and keys."""

    @staticmethod
    def debt_bucket(amount: float) -> str:
        if amount < 1000:
            return "LOW"
        if amount < 5000:
            return "MEDIUM"
        return "HIGH"

    @staticmethod
    def days_past_due_bucket(days: int) -> str:
        if days < 60:
            return "30"
        if days < 90:
            return "60"
        if days < 120:
            return "90"
        return "120+"

    @staticmethod
    def time_in_state(history: Sequence[str]) -> int:
        """Run length of the current state at the tail of the history."""
        if not history:
            return 0
        current = history[-1]
        count = 0
        for state in reversed(history):
            if state != current:
                break
            count += 1
        return count

    @staticmethod
    def analyze_sentiment(text: Optional[str]) -> str:
        """
        Keyword vote on a counterparty message.

        Args:
            text: Latest counterparty message

        Returns:
            POSITIVE, NEGATIVE or NEUTRAL (needs a margin above one)
        """
        if not text:
            return "NEUTRAL"
        lowered = text.lower()
        positive = sum(1 for word in POSITIVE_KEYWORDS if word in lowered)
        negative = sum(1 for word in NEGATIVE_KEYWORDS if word in lowered)
        if positive > negative + 1:
            return "POSITIVE"
        if negative > positive + 1:
            return "NEGATIVE"
        return "NEUTRAL"

    @staticmethod
    def initial_state(case: CaseData) -> ObservationState:
        return ObservationState(
            dialogue_state="OPENING",
            turn_count=0,
            time_in_state=1,
            debt_bucket=StateProjector.debt_bucket(case.amount_due),
            days_past_due_bucket=StateProjector.days_past_due_bucket(case.days_past_due),
            prior_attempts=case.attempt_count_total,
            identity_verified=False,
            disclosure_complete=False,
            last_signal=None,
            sentiment="NEUTRAL",
            objections_raised=0,
            offers_made=0,
        )

    @staticmethod
    def project(
        context: DialogueContext,
        case: CaseData,
        messages: Sequence[Dict[str, str]],
        signal_history: Sequence[str],
        action_history: Sequence[str],
        turn_count: int,
    ) -> ObservationState:
        """
        Build the observation for the current turn.

        Args:
            context: Dialogue context owned by the state machine
            case: Debtor case facts
            messages: Conversation so far as {"role", "text"} dicts
            signal_history: All detected signals this episode
            action_history: All actions taken this episode
            turn_count: Steps taken this episode

        Returns:
            Fresh ObservationState
        """
        last_borrower = next(
            (m["text"] for m in reversed(messages) if m.get("role") == "borrower"),
            None,
        )
        history = context.state_history
        disclosure = bool(context.slots.get("disclosure_complete")) or any(
            s in ("DEBT_CONTEXT", "NEGOTIATION") for s in history
        )
        return ObservationState(
            dialogue_state=context.current_state,
            turn_count=turn_count,
            time_in_state=StateProjector.time_in_state(history),
            debt_bucket=StateProjector.debt_bucket(case.amount_due),
            days_past_due_bucket=StateProjector.days_past_due_bucket(case.days_past_due),
            prior_attempts=case.attempt_count_total,
            identity_verified=context.slots.get("identity_verified") is True,
            disclosure_complete=disclosure,
            last_signal=signal_history[-1] if signal_history else None,
            sentiment=StateProjector.analyze_sentiment(last_borrower),
            objections_raised=sum(1 for s in signal_history if s in OBJECTION_SIGNALS),
            offers_made=sum(1 for a in action_history if a in OFFER_ACTIONS),
        )

    @staticmethod
    def discretize(state: ObservationState) -> str:
        """Canonical StateKey with unbounded counters clamped."""
        parts = [
            f"fsm:{state.dialogue_state}",
            f"turn:{min(state.turn_count, TURN_CEILING)}",
            f"tis:{min(state.time_in_state, TIME_IN_STATE_CEILING)}",
            f"debt:{state.debt_bucket}",
            f"dpd:{state.days_past_due_bucket}",
            f"prior:{min(state.prior_attempts, PRIOR_ATTEMPTS_CEILING)}",
            f"id:{int(state.identity_verified)}",
            f"disc:{int(state.disclosure_complete)}",
            f"sig:{state.last_signal or 'none'}",
            f"sent:{state.sentiment}",
            f"obj:{min(state.objections_raised, OBJECTIONS_CEILING)}",
            f"off:{min(state.offers_made, OFFERS_CEILING)}",
        ]
        return "|".join(parts)

    @staticmethod
    def parse_state_from_key(key: str) -> Optional[str]:
        """Dialogue state embedded in a StateKey, or None if unparseable."""
        match = _KEY_STATE_RE.match(key)
        if not match or match.group(1) not in ALL_STATES:
            return None
        return match.group(1)

    @staticmethod
    def encode_features(state: ObservationState) -> np.ndarray:
        """Fixed-length numeric encoding used by linear learners."""
        features: List[float] = [1.0 if state.dialogue_state == s else 0.0 for s in ALL_STATES]

        features.extend([
            min(state.turn_count, TURN_CEILING) / TURN_CEILING,
            min(state.time_in_state, TIME_IN_STATE_CEILING) / TIME_IN_STATE_CEILING,
            min(state.prior_attempts, PRIOR_ATTEMPTS_CEILING) / PRIOR_ATTEMPTS_CEILING,
            min(state.objections_raised, OBJECTIONS_CEILING) / OBJECTIONS_CEILING,
            min(state.offers_made, OFFERS_CEILING) / OFFERS_CEILING,
        ])

        features.append(1.0 if state.identity_verified else 0.0)
        features.append(1.0 if state.disclosure_complete else 0.0)

        features.extend(1.0 if state.debt_bucket == b else 0.0 for b in DEBT_BUCKETS)
        features.extend(1.0 if state.days_past_due_bucket == b else 0.0 for b in DPD_BUCKETS)
        features.extend(1.0 if state.sentiment == s else 0.0 for s in SENTIMENTS)

        features.append(1.0 if state.last_signal in POSITIVE_SIGNALS else 0.0)
        features.append(1.0 if state.last_signal in NEGATIVE_SIGNALS else 0.0)

        features.append(1.0)  # bias
        return np.asarray(features, dtype=np.float64)


__all__ = ["StateProjector", "FEATURE_DIM", "STATE_KEY_VERSION"]

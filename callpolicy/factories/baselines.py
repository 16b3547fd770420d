"""
Baselines: non-learning reference policies.
"""
from typing import Any, Dict, Sequence

from callpolicy.factories.policy_learner import Learner
from callpolicy.factories.state_contract import STATE_ALLOWED_ACTIONS
from callpolicy.models import ObservationState


class RandomPolicy(Learner):
    """Uniform choice over legal actions."""

    name = "random"

    def select_action(self, state: ObservationState, legal: Sequence[str]) -> str:
        return legal[int(self.rng.integers(len(legal)))]


class FixedScriptPolicy(Learner):
    """Always the first legal action: a rigid call script."""

    name = "fixed"

    def select_action(self, state: ObservationState, legal: Sequence[str]) -> str:
        return legal[0]

    def get_policy(self) -> Dict[str, Any]:
        policy = super().get_policy()
        policy["greedy_actions"] = {s: actions[0] for s, actions in STATE_ALLOWED_ACTIONS.items()}
        return policy


class HeuristicPolicy(Learner):
    """Hand-written rules keyed on observation fields."""

    name = "heuristic"

    def select_action(self, state: ObservationState, legal: Sequence[str]) -> str:
        preferred = self._preferred(state)
        return preferred if preferred in legal else legal[0]

    @staticmethod
    def _preferred(state: ObservationState) -> str:
        dialogue_state = state.dialogue_state

        if dialogue_state == "NEGOTIATION":
            # Acknowledge objections before pushing an offer
            if state.objections_raised > 0:
                return "EMPATHIZE"
            if state.sentiment == "POSITIVE":
                return "OFFER_PLAN"
            if state.offers_made > 0:
                return "COUNTER_OFFER"
            return "OFFER_PLAN"

        if dialogue_state == "IDENTITY_VERIFICATION":
            if state.last_signal == "AGREEMENT":
                return "CONFIRM_IDENTITY"
            return "ASK_VERIFICATION"

        if dialogue_state == "PAYMENT_SETUP":
            return "SEND_PAYMENT_LINK"

        if dialogue_state == "DISPUTE_FLOW":
            return "ACKNOWLEDGE_DISPUTE" if state.time_in_state <= 1 else "PROCEED"

        return STATE_ALLOWED_ACTIONS[dialogue_state][0]


__all__ = ["RandomPolicy", "FixedScriptPolicy", "HeuristicPolicy"]

"""Exceptions raised by the policy-training core."""


class ContractViolation(RuntimeError):
    """Fatal misuse of the environment contract. Never retried."""


class IllegalActionError(ContractViolation):
    """Action is not in the legal set for the current dialogue state."""

    def __init__(self, action: str, state: str, allowed: list[str]):
        self.action = action
        self.state = state
        self.allowed = list(allowed)
        super().__init__(
            f"Action {action} not allowed in state {state}. Allowed: {', '.join(allowed)}"
        )


class EpisodeDoneError(ContractViolation):
    """step() was called after the episode ended."""

    def __init__(self):
        super().__init__("Episode is done. Call reset() to start a new episode.")


class LearnerStateError(ValueError):
    """Persisted learner state could not be restored."""

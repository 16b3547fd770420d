"""
Policy Learner: action-selection strategies trained against the call environment.
Provides the common Learner interface, a linear contextual bandit and
tabular Q-learning. Baseline policies live in baselines.py.
"""
import json
import logging
import math
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from callpolicy.errors import LearnerStateError
from callpolicy.factories.state_contract import legal_actions
from callpolicy.factories.state_projector import FEATURE_DIM, STATE_KEY_VERSION, StateProjector
from callpolicy.models import ALL_ACTIONS, ALL_STATES, ObservationState

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = 1


def argmax(values: Dict[str, float], legal: Sequence[str]) -> str:
    """Best legal action; ties keep the earliest action in `legal`."""
    best = legal[0]
    best_value = values.get(best, 0.0)
    for action in legal[1:]:
        value = values.get(action, 0.0)
        if value > best_value:
            best, best_value = action, value
    return best


def epsilon_greedy(
    values: Dict[str, float],
    legal: Sequence[str],
    epsilon: float,
    rng: np.random.Generator,
) -> str:
    """
    Epsilon-greedy selection over legal actions.

    Args:
        values: Action -> estimated value
        legal: Legal actions for the current state
        epsilon: Exploration probability
        rng: Random generator owned by the learner

    Returns:
        Selected action
    """
    if epsilon > 0 and rng.random() < epsilon:
        return legal[int(rng.integers(len(legal)))]
    return argmax(values, legal)


def softmax_select(
    values: Dict[str, float],
    legal: Sequence[str],
    temperature: float,
    rng: np.random.Generator,
) -> str:
    """Boltzmann selection over legal actions."""
    logits = np.array([values.get(a, 0.0) for a in legal], dtype=np.float64) / max(temperature, 1e-8)
    logits -= logits.max()
    probs = np.exp(logits)
    probs /= probs.sum()
    return legal[int(rng.choice(len(legal), p=probs))]


def _rng_state(rng: np.random.Generator) -> Dict[str, Any]:
    return rng.bit_generator.state


def _restore_rng(state: Any) -> np.random.Generator:
    rng = np.random.default_rng()
    try:
        rng.bit_generator.state = state
    except (TypeError, ValueError, KeyError) as exc:
        raise LearnerStateError(f"Invalid random generator state: {exc}") from exc
    return rng


def _finite(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise LearnerStateError(f"Field {field_name!r} must be a finite number, got {value!r}")
    return float(value)


class Learner(ABC):
    """
    Common interface for action-selection strategies.

    Mutation (update/load/reset) is serialized through a per-learner lock
    so a learner has a single writer even when shared across environments.
    """

    name = "learner"

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.rng = np.random.default_rng(seed)
        self.episodes_trained = 0
        self.last_updated: Optional[str] = None
        self.training = True
        self._lock = threading.Lock()

    @abstractmethod
    def select_action(self, state: ObservationState, legal: Sequence[str]) -> str:
        """Pick one of `legal` for the observation."""

    def update(
        self,
        state: ObservationState,
        action: str,
        reward: float,
        next_state: Optional[ObservationState],
        done: bool,
    ) -> None:
        with self._lock:
            self._update(state, action, reward, next_state, done)
            if done:
                self.episodes_trained += 1
            self.last_updated = datetime.now().isoformat()

    def _update(self, state, action, reward, next_state, done) -> None:
        """Learning rule. Baselines only count episodes."""

    def get_policy(self) -> Dict[str, Any]:
        return {
            "greedy_actions": {},
            "parameters": {},
            "episodes_trained": self.episodes_trained,
            "last_updated": self.last_updated,
        }

    def save(self) -> str:
        payload = {
            "type": self.name,
            "version": PAYLOAD_VERSION,
            "state_key_version": STATE_KEY_VERSION,
            "episodes_trained": self.episodes_trained,
            "last_updated": self.last_updated,
            "rng": _rng_state(self.rng),
        }
        payload.update(self._save_body())
        return json.dumps(payload)

    def load(self, data: str) -> None:
        """
        Restore state from save() output.

        The whole payload is validated before anything is assigned; on
        failure LearnerStateError is raised and the learner is unchanged.
        """
        try:
            payload = json.loads(data)
        except (TypeError, json.JSONDecodeError) as exc:
            raise LearnerStateError(f"Learner state is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise LearnerStateError("Learner state must be a JSON object")
        if payload.get("type") != self.name:
            raise LearnerStateError(
                f"Learner state type {payload.get('type')!r} does not match {self.name!r}"
            )
        if payload.get("version") != PAYLOAD_VERSION:
            raise LearnerStateError(f"Unsupported learner state version {payload.get('version')!r}")

        episodes = payload.get("episodes_trained")
        if isinstance(episodes, bool) or not isinstance(episodes, int) or episodes < 0:
            raise LearnerStateError("Field 'episodes_trained' must be a non-negative integer")
        last_updated = payload.get("last_updated")
        if last_updated is not None and not isinstance(last_updated, str):
            raise LearnerStateError("Field 'last_updated' must be a string or null")

        rng = _restore_rng(payload.get("rng"))
        body = self._parse_body(payload)

        with self._lock:
            self.episodes_trained = episodes
            self.last_updated = last_updated
            self.rng = rng
            self._apply_body(body)

    def _save_body(self) -> Dict[str, Any]:
        return {}

    def _parse_body(self, payload: Dict[str, Any]) -> Any:
        return None

    def _apply_body(self, body: Any) -> None:
        pass

    def reset(self) -> None:
        with self._lock:
            self.rng = np.random.default_rng(self.seed)
            self.episodes_trained = 0
            self.last_updated = None
            self._reset_body()

    def _reset_body(self) -> None:
        pass


class BanditConfig(BaseModel):
    epsilon: float = Field(default=0.1, ge=0, le=1)
    learning_rate: float = Field(default=0.01, gt=0)
    initial_value: float = 0.0
    init_noise: float = Field(default=0.01, ge=0)


class ContextualBandit(Learner):
    """
    Linear contextual bandit: one weight vector per action.

    Predicts the immediate reward of each action from StateProjector
    features and updates with a one-step stochastic gradient (no
    bootstrapping from the next state).
    """

    name = "bandit"

    def __init__(self, config: Optional[BanditConfig] = None, seed: Optional[int] = None, **overrides):
        super().__init__(seed)
        base = config or BanditConfig()
        self.config = type(base)(**{**base.model_dump(), **overrides})
        self.weights: Dict[str, np.ndarray] = self._initial_weights()

    def _initial_weights(self) -> Dict[str, np.ndarray]:
        weights = {}
        for action in ALL_ACTIONS:
            w = np.full(FEATURE_DIM, self.config.initial_value, dtype=np.float64)
            if self.config.init_noise > 0:
                w += self.rng.normal(0.0, self.config.init_noise, FEATURE_DIM)
            weights[action] = w
        return weights

    def predict(self, state: ObservationState, action: str) -> float:
        features = StateProjector.encode_features(state)
        return float(np.dot(self.weights[action], features))

    def action_values(self, state: ObservationState, legal: Sequence[str]) -> Dict[str, float]:
        features = StateProjector.encode_features(state)
        return {a: float(np.dot(self.weights[a], features)) for a in legal}

    def select_action(self, state: ObservationState, legal: Sequence[str]) -> str:
        epsilon = self.config.epsilon if self.training else 0.0
        return epsilon_greedy(self.action_values(state, legal), legal, epsilon, self.rng)

    def _update(self, state, action, reward, next_state, done) -> None:
        features = StateProjector.encode_features(state)
        prediction = float(np.dot(self.weights[action], features))
        self.weights[action] = self.weights[action] + self.config.learning_rate * (reward - prediction) * features

    def set_config(self, **updates) -> None:
        self.config = type(self.config)(**{**self.config.model_dump(), **updates})

    def get_policy(self) -> Dict[str, Any]:
        greedy = {}
        for dialogue_state in ALL_STATES:
            sample = ObservationState(
                dialogue_state=dialogue_state,
                turn_count=0,
                time_in_state=1,
                debt_bucket="MEDIUM",
                days_past_due_bucket="90",
                prior_attempts=0,
            )
            legal = legal_actions(dialogue_state)
            greedy[dialogue_state] = argmax(self.action_values(sample, legal), legal)
        return {
            "greedy_actions": greedy,
            "parameters": {a: w.tolist() for a, w in self.weights.items()},
            "episodes_trained": self.episodes_trained,
            "last_updated": self.last_updated,
        }

    def _save_body(self) -> Dict[str, Any]:
        return {
            "config": self.config.model_dump(),
            "feature_dim": FEATURE_DIM,
            "weights": {a: [float(x) for x in w] for a, w in self.weights.items()},
        }

    def _parse_body(self, payload: Dict[str, Any]) -> Any:
        if payload.get("feature_dim") != FEATURE_DIM:
            raise LearnerStateError(
                f"Feature dimension mismatch: expected {FEATURE_DIM}, got {payload.get('feature_dim')!r}"
            )
        try:
            config = BanditConfig(**payload.get("config", {}))
        except (TypeError, ValueError) as exc:
            raise LearnerStateError(f"Invalid bandit config: {exc}") from exc

        raw = payload.get("weights")
        if not isinstance(raw, dict) or set(raw) != set(ALL_ACTIONS):
            raise LearnerStateError("Field 'weights' must map every action to a vector")
        weights = {}
        for action, vector in raw.items():
            if not isinstance(vector, list) or len(vector) != FEATURE_DIM:
                raise LearnerStateError(f"Weight vector for {action} must have {FEATURE_DIM} entries")
            weights[action] = np.array(
                [_finite(x, f"weights.{action}") for x in vector], dtype=np.float64
            )
        return config, weights

    def _apply_body(self, body: Any) -> None:
        self.config, self.weights = body

    def _reset_body(self) -> None:
        self.weights = self._initial_weights()


class QLearningConfig(BaseModel):
    alpha: float = Field(default=0.1, gt=0, le=1)
    gamma: float = Field(default=0.95, ge=0, le=1)
    epsilon: float = Field(default=0.1, ge=0, le=1)
    initial_q: float = 0.0
    exploration: Literal["epsilon_greedy", "softmax"] = "epsilon_greedy"
    temperature: float = Field(default=1.0, gt=0)


class QLearner(Learner):
    """
    Tabular Q-learning over discretized StateKeys.

    Legal actions for a bootstrapped next state are recovered from the
    dialogue state embedded in its key, never from a live session.
    """

    name = "qlearning"

    def __init__(self, config: Optional[QLearningConfig] = None, seed: Optional[int] = None, **overrides):
        super().__init__(seed)
        base = config or QLearningConfig()
        self.config = type(base)(**{**base.model_dump(), **overrides})
        self.q_table: Dict[str, Dict[str, float]] = {}
        self.visit_counts: Dict[str, Dict[str, int]] = {}

    def _legal_for_key(self, key: str) -> List[str]:
        dialogue_state = StateProjector.parse_state_from_key(key)
        if dialogue_state is None:
            return []
        return legal_actions(dialogue_state)

    def get_q(self, key: str, action: str) -> float:
        return self.q_table.get(key, {}).get(action, self.config.initial_q)

    def get_q_values(self, state: ObservationState) -> Dict[str, float]:
        key = StateProjector.discretize(state)
        return {a: self.get_q(key, a) for a in legal_actions(state.dialogue_state)}

    def get_max_q(self, key: str) -> float:
        actions = self._legal_for_key(key)
        if not actions:
            return 0.0
        return max(self.get_q(key, a) for a in actions)

    def select_action(self, state: ObservationState, legal: Sequence[str]) -> str:
        key = StateProjector.discretize(state)
        values = {a: self.get_q(key, a) for a in legal}
        if not self.training:
            return argmax(values, legal)
        if self.config.exploration == "softmax":
            return softmax_select(values, legal, self.config.temperature, self.rng)
        return epsilon_greedy(values, legal, self.config.epsilon, self.rng)

    def _update(self, state, action, reward, next_state, done) -> None:
        key = StateProjector.discretize(state)
        if done or next_state is None:
            target = reward
        else:
            target = reward + self.config.gamma * self.get_max_q(StateProjector.discretize(next_state))

        row = self.q_table.setdefault(
            key, {a: self.config.initial_q for a in self._legal_for_key(key)}
        )
        current = row.get(action, self.config.initial_q)
        row[action] = current + self.config.alpha * (target - current)

        visits = self.visit_counts.setdefault(key, {})
        visits[action] = visits.get(action, 0) + 1

    def set_config(self, **updates) -> None:
        self.config = type(self.config)(**{**self.config.model_dump(), **updates})

    def get_table_size(self) -> int:
        return len(self.q_table)

    def get_visit_count(self, state: ObservationState, action: str) -> int:
        return self.visit_counts.get(StateProjector.discretize(state), {}).get(action, 0)

    def get_policy(self) -> Dict[str, Any]:
        greedy = {}
        for key, row in self.q_table.items():
            legal = self._legal_for_key(key) or list(row)
            greedy[key] = argmax(row, legal)
        return {
            "greedy_actions": greedy,
            "parameters": {k: dict(v) for k, v in self.q_table.items()},
            "episodes_trained": self.episodes_trained,
            "last_updated": self.last_updated,
        }

    def _save_body(self) -> Dict[str, Any]:
        return {
            "config": self.config.model_dump(),
            "q_table": self.q_table,
            "visit_counts": self.visit_counts,
        }

    def _parse_body(self, payload: Dict[str, Any]) -> Any:
        if payload.get("state_key_version") != STATE_KEY_VERSION:
            raise LearnerStateError(
                f"Q-table was built with state key version {payload.get('state_key_version')!r}, "
                f"expected {STATE_KEY_VERSION}"
            )
        try:
            config = QLearningConfig(**payload.get("config", {}))
        except (TypeError, ValueError) as exc:
            raise LearnerStateError(f"Invalid Q-learning config: {exc}") from exc

        raw_table = payload.get("q_table")
        raw_visits = payload.get("visit_counts", {})
        if not isinstance(raw_table, dict) or not isinstance(raw_visits, dict):
            raise LearnerStateError("Fields 'q_table' and 'visit_counts' must be objects")

        table: Dict[str, Dict[str, float]] = {}
        for key, row in raw_table.items():
            if StateProjector.parse_state_from_key(key) is None or not isinstance(row, dict):
                raise LearnerStateError(f"Malformed Q-table entry {key!r}")
            for action, value in row.items():
                if action not in ALL_ACTIONS:
                    raise LearnerStateError(f"Unknown action {action!r} in Q-table")
            table[key] = {a: _finite(v, f"q_table[{key}].{a}") for a, v in row.items()}

        visits: Dict[str, Dict[str, int]] = {}
        for key, row in raw_visits.items():
            if not isinstance(row, dict):
                raise LearnerStateError(f"Malformed visit count entry {key!r}")
            counts = {}
            for action, count in row.items():
                if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                    raise LearnerStateError(f"Invalid visit count for {key!r}/{action!r}")
                counts[action] = count
            visits[key] = counts
        return config, table, visits

    def _apply_body(self, body: Any) -> None:
        self.config, self.q_table, self.visit_counts = body

    def _reset_body(self) -> None:
        self.q_table = {}
        self.visit_counts = {}


def create_learner(kind: str, seed: Optional[int] = None, **config) -> Learner:
    """
    Build a learner by name.

    Args:
        kind: random | fixed | heuristic | bandit | qlearning
        seed: Seed for the learner's random generator
        **config: Overrides for BanditConfig / QLearningConfig fields

    Returns:
        Learner instance
    """
    from callpolicy.factories.baselines import FixedScriptPolicy, HeuristicPolicy, RandomPolicy

    kind = kind.lower()
    if kind == "bandit":
        return ContextualBandit(seed=seed, **config)
    if kind in ("qlearning", "q-learning", "q"):
        return QLearner(seed=seed, **config)
    if kind == "random":
        return RandomPolicy(seed=seed)
    if kind in ("fixed", "fixed_script"):
        return FixedScriptPolicy(seed=seed)
    if kind == "heuristic":
        return HeuristicPolicy(seed=seed)
    raise ValueError(f"Unknown learner kind: {kind}")


__all__ = [
    "Learner",
    "BanditConfig",
    "ContextualBandit",
    "QLearningConfig",
    "QLearner",
    "argmax",
    "epsilon_greedy",
    "softmax_select",
    "create_learner",
]

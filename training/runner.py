"""
Episode runner: drives learners through the environment, evaluates them
with exploration off and produces learning curves.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from callpolicy.factories.environment import DebtCollectionEnv
from callpolicy.factories.metrics import EpisodeMetrics, MetricsAggregator
from callpolicy.factories.policy_learner import Learner
from callpolicy.models import CurvePoint, Persona, TrainingConfig, Trajectory

logger = logging.getLogger(__name__)


class EvaluationResult(BaseModel):
    episodes: List[EpisodeMetrics] = Field(default_factory=list)
    metrics: Dict = Field(default_factory=dict)


class TrainingResult(BaseModel):
    learner_name: str
    train_episodes: List[EpisodeMetrics] = Field(default_factory=list)
    learning_curve: List[CurvePoint] = Field(default_factory=list)
    final_metrics: Dict = Field(default_factory=dict)


def run_episode(
    env: DebtCollectionEnv,
    learner: Learner,
    train: bool = True,
    persona: Optional[Persona] = None,
    episode: int = 0,
) -> EpisodeMetrics:
    """
    Play one episode to completion.

    Args:
        env: Environment (reset here)
        learner: Action-selection strategy
        train: Update the learner after every transition
        persona: Counterparty persona (sampled by the environment when omitted)
        episode: Index recorded in the returned metrics

    Returns:
        EpisodeMetrics for the finished episode
    """
    observation = env.reset(persona)
    done = False
    while not done:
        action = learner.select_action(observation, env.legal_actions())
        result = env.step(action)
        if train:
            learner.update(
                observation,
                action,
                result.reward,
                None if result.done else result.observation,
                result.done,
            )
        observation = result.observation
        done = result.done

    trajectory: Trajectory = env.trajectory()
    return EpisodeMetrics(
        episode=episode,
        total_return=trajectory.total_return,
        length=trajectory.length,
        outcome=trajectory.outcome,
        persona=trajectory.persona,
        trajectory=trajectory,
    )


def run_evaluation(
    env: DebtCollectionEnv,
    learner: Learner,
    n_episodes: int,
    personas: Optional[Sequence[Persona]] = None,
) -> EvaluationResult:
    """Greedy evaluation: no updates, exploration off, personas round-robin."""
    previous = learner.training
    learner.training = False
    episodes: List[EpisodeMetrics] = []
    try:
        for i in range(n_episodes):
            persona = personas[i % len(personas)] if personas else None
            episodes.append(run_episode(env, learner, train=False, persona=persona, episode=i))
    finally:
        learner.training = previous
    return EvaluationResult(episodes=episodes, metrics=MetricsAggregator.compute_metrics(episodes))


def train_and_evaluate(
    env: DebtCollectionEnv,
    learner: Learner,
    config: Optional[TrainingConfig] = None,
) -> TrainingResult:
    """
    Train for config.num_episodes with periodic evaluation snapshots.

    Args:
        env: Environment
        learner: Learner to train in place
        config: Episode counts and intervals

    Returns:
        TrainingResult with training episodes, learning curve and final metrics
    """
    config = config or TrainingConfig()
    personas = config.personas
    train_episodes: List[EpisodeMetrics] = []
    curve: List[CurvePoint] = []

    for i in range(config.num_episodes):
        persona = personas[i % len(personas)] if personas else None
        train_episodes.append(run_episode(env, learner, train=True, persona=persona, episode=i))
        done_count = i + 1

        if done_count % config.log_interval == 0:
            recent = [ep.total_return for ep in train_episodes[-config.log_interval:]]
            logger.info(
                "[%s] episode %d/%d mean return (last %d): %.3f",
                learner.name,
                done_count,
                config.num_episodes,
                len(recent),
                float(np.mean(recent)),
            )

        if done_count % config.eval_interval == 0:
            window = train_episodes[-config.eval_interval:]
            point = CurvePoint(
                episode=done_count,
                train_return=float(np.mean([ep.total_return for ep in window])),
            )
            if config.eval_episodes > 0:
                snapshot = run_evaluation(env, learner, config.eval_episodes, personas)
                point.eval_return = snapshot.metrics["mean_return"]
                point.eval_success_rate = snapshot.metrics["success_rate"]
            curve.append(point)

    if config.eval_episodes > 0:
        final = run_evaluation(env, learner, 2 * config.eval_episodes, personas).metrics
    else:
        final = MetricsAggregator.compute_metrics(train_episodes)

    logger.info("[%s] final mean return %.3f, success rate %.1f%%",
                learner.name, final["mean_return"], 100 * final["success_rate"])
    return TrainingResult(
        learner_name=learner.name,
        train_episodes=train_episodes,
        learning_curve=curve,
        final_metrics=final,
    )


def run_baseline(
    env: DebtCollectionEnv,
    learner: Learner,
    n_episodes: int,
    personas: Optional[Sequence[Persona]] = None,
) -> Dict:
    """Metrics for a non-learning policy over n_episodes."""
    return run_evaluation(env, learner, n_episodes, personas).metrics


def compare_learners(
    env: DebtCollectionEnv,
    learners: Sequence[Learner],
    config: Optional[TrainingConfig] = None,
) -> Dict[str, TrainingResult]:
    """Train and evaluate each learner from scratch on the same environment."""
    results: Dict[str, TrainingResult] = {}
    for learner in learners:
        learner.reset()
        logger.info("Training %s", learner.name)
        results[learner.name] = train_and_evaluate(env, learner, config)
    return results


def run_experiments(
    env: DebtCollectionEnv,
    learners: Sequence[Learner],
    config: Optional[TrainingConfig] = None,
) -> Dict[str, Dict]:
    """Final metrics per learner, keyed by learner name."""
    return {name: result.final_metrics for name, result in compare_learners(env, learners, config).items()}


__all__ = [
    "EvaluationResult",
    "TrainingResult",
    "run_episode",
    "run_evaluation",
    "train_and_evaluate",
    "run_baseline",
    "compare_learners",
    "run_experiments",
]

"""
Named training experiments used by the CLI.

Builds the environment (scripted counterparty by default, OpenAI-backed
collaborators on request), runs baselines and learners and persists the
results.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from callpolicy.config import Settings, load_settings
from callpolicy.factories.borrower import BorrowerSimulator, ScriptedBorrower
from callpolicy.factories.environment import DebtCollectionEnv
from callpolicy.factories.llm_client import ResponsesClient
from callpolicy.factories.metrics import MetricsAggregator
from callpolicy.factories.persona_forge import preset_personas
from callpolicy.factories.policy_learner import Learner, create_learner
from callpolicy.factories.utterances import LLMUtteranceGenerator, TemplateUtteranceGenerator
from callpolicy.models import CaseData, EnvironmentConfig, EpisodeRecord, TrainingConfig, create_test_case

from .persistence import (
    append_episode_records,
    load_learner_state,
    new_experiment_id,
    save_experiment,
)
from .runner import TrainingResult, run_baseline, train_and_evaluate

logger = logging.getLogger(__name__)

BASELINE_KINDS = ("random", "fixed", "heuristic")
CONTINUE_EPSILON = 0.1

DEFAULT_LEARNER_CONFIGS: Dict[str, Dict[str, float]] = {
    "bandit": {"epsilon": 0.15},
    "qlearning": {"alpha": 0.1, "gamma": 0.95, "epsilon": 0.15},
}


def build_environment(
    *,
    use_llm: bool = False,
    seed: Optional[int] = None,
    case: Optional[CaseData] = None,
    config: Optional[EnvironmentConfig] = None,
    settings: Optional[Settings] = None,
) -> DebtCollectionEnv:
    """
    Assemble an environment with template or LLM collaborators.

    Args:
        use_llm: Use OpenAI-backed utterances and borrower simulator
        seed: Seed for templates, simulator and persona sampling
        case: Debtor case (defaults to create_test_case())
        config: Environment configuration
        settings: Process settings (loaded from the environment when omitted)

    Returns:
        DebtCollectionEnv
    """
    case = case or create_test_case()
    templates = TemplateUtteranceGenerator(seed=seed)

    if use_llm:
        settings = settings or load_settings()
        agent_client = ResponsesClient(
            api_key=settings.openai_api_key,
            model=settings.agent_model,
            temperature=settings.agent_temperature,
        )
        borrower_client = ResponsesClient(
            api_key=settings.openai_api_key,
            model=settings.borrower_model,
            temperature=settings.borrower_temperature,
        )
        generator = LLMUtteranceGenerator(agent_client, fallback=templates)
        counterparty = BorrowerSimulator(borrower_client, seed=seed)
    else:
        generator = templates
        counterparty = ScriptedBorrower(seed=seed)

    return DebtCollectionEnv(case, generator, counterparty, config=config, seed=seed)


def _learner_config(kind: str, learning_rate: Optional[float], epsilon: Optional[float]) -> Dict[str, float]:
    overrides = dict(DEFAULT_LEARNER_CONFIGS.get(kind, {}))
    if learning_rate is not None:
        overrides["alpha" if kind == "qlearning" else "learning_rate"] = learning_rate
    if epsilon is not None:
        overrides["epsilon"] = epsilon
    return overrides


def _episode_records(experiment_id: str, result: TrainingResult) -> List[EpisodeRecord]:
    return [
        EpisodeRecord(
            episode_id=f"{experiment_id}-{ep.episode}",
            total_return=ep.total_return,
            length=ep.length,
            outcome=ep.outcome,
            persona=ep.persona,
            transitions=[t.model_dump(mode="json") for t in ep.trajectory.transitions] if ep.trajectory else [],
        )
        for ep in result.train_episodes
    ]


def run_baseline_experiment(
    env: DebtCollectionEnv,
    n_episodes: int,
    *,
    seed: Optional[int] = None,
    base: Optional[Path] = None,
) -> Dict[str, Dict[str, Any]]:
    """Evaluate the random, fixed-script and heuristic policies on the preset personas."""
    personas = preset_personas()
    results: Dict[str, Dict[str, Any]] = {}
    for kind in BASELINE_KINDS:
        learner = create_learner(kind, seed=seed)
        metrics = run_baseline(env, learner, n_episodes, personas)
        logger.info("%s", MetricsAggregator.format_metrics(metrics, title=f"Baseline: {kind}"))
        results[kind] = metrics

    save_experiment(
        new_experiment_id("baseline"),
        config={"learner": "baselines", "episodes": n_episodes, "seed": seed},
        metrics=results,
        base=base,
    )
    return results


def run_learning_experiment(
    kind: str,
    env: DebtCollectionEnv,
    training: TrainingConfig,
    *,
    learning_rate: Optional[float] = None,
    epsilon: Optional[float] = None,
    continue_from: Optional[str] = None,
    base: Optional[Path] = None,
) -> Tuple[str, Learner, TrainingResult]:
    """
    Train a bandit or Q-learner and persist the run.

    Args:
        kind: bandit | qlearning
        env: Environment
        training: Episode counts and intervals
        learning_rate: Bandit lr or Q-learning alpha override
        epsilon: Exploration override
        continue_from: Experiment id whose learner state seeds this run
        base: Results root override

    Returns:
        (experiment id, trained learner, training result)
    """
    if kind not in DEFAULT_LEARNER_CONFIGS:
        raise ValueError(f"Not a learning policy: {kind}")
    overrides = _learner_config(kind, learning_rate, epsilon)
    learner = create_learner(kind, seed=training.seed, **overrides)

    if continue_from:
        learner.load(load_learner_state(continue_from, base))
        # load() restores the saved config; explicit overrides win over it
        updates = {"epsilon": epsilon if epsilon is not None else CONTINUE_EPSILON}
        if learning_rate is not None:
            updates["alpha" if kind == "qlearning" else "learning_rate"] = learning_rate
        learner.set_config(**updates)
        logger.info("Continuing %s from %s (%d episodes trained)", kind, continue_from, learner.episodes_trained)

    if training.personas is None:
        training = training.model_copy(update={"personas": preset_personas()})

    result = train_and_evaluate(env, learner, training)
    logger.info("%s", MetricsAggregator.format_metrics(result.final_metrics, title=f"Final: {kind}"))

    experiment_id = new_experiment_id(kind)
    save_experiment(
        experiment_id,
        config={
            "learner": kind,
            "learner_config": learner.config.model_dump(),
            "num_episodes": training.num_episodes,
            "eval_episodes": training.eval_episodes,
            "seed": training.seed,
            "continue_from": continue_from,
        },
        metrics=result.final_metrics,
        learning_curve=[point.model_dump() for point in result.learning_curve],
        learner_state=learner.save(),
        base=base,
    )
    append_episode_records(_episode_records(experiment_id, result), base=base)
    return experiment_id, learner, result


def run_comparison(
    env: DebtCollectionEnv,
    training: TrainingConfig,
    *,
    base: Optional[Path] = None,
) -> Dict[str, Dict[str, Any]]:
    """Baselines plus both learners, with improvement over the random policy."""
    eval_episodes = max(2 * training.eval_episodes, 1)
    summary = run_baseline_experiment(env, eval_episodes, seed=training.seed, base=base)
    for kind in ("bandit", "qlearning"):
        _, _, result = run_learning_experiment(kind, env, training, base=base)
        summary[kind] = result.final_metrics

    baseline = summary["random"]
    for name, metrics in summary.items():
        if name != "random":
            metrics["improvement_vs_random"] = MetricsAggregator.compare_metrics(metrics, baseline)
    return summary


__all__ = [
    "build_environment",
    "run_baseline_experiment",
    "run_learning_experiment",
    "run_comparison",
    "DEFAULT_LEARNER_CONFIGS",
]

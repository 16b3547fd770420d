#!/usr/bin/env python3
"""
Train and compare collection-call policies.

Usage:
    python scripts/train.py all --quick
    python scripts/train.py qlearning --episodes 1000 --epsilon 0.2
    python scripts/train.py bandit --continue-from bandit_20250101_120000_000000
    python scripts/train.py list
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure project root is on sys.path when executed as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from callpolicy.config import configure_logging, load_settings
from callpolicy.factories.metrics import MetricsAggregator
from callpolicy.models import TrainingConfig
from training.experiment import (
    build_environment,
    run_baseline_experiment,
    run_comparison,
    run_learning_experiment,
)
from training.persistence import list_experiments

QUICK_EPISODES = 100
QUICK_EVAL_EPISODES = 10


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Train debt-collection call policies")
    parser.add_argument(
        "command",
        choices=["all", "baseline", "bandit", "qlearning", "compare", "list"],
        help="What to run",
    )
    parser.add_argument("--quick", action="store_true", help="Short run for smoke testing")
    parser.add_argument("--episodes", type=int, default=500, help="Training episodes")
    parser.add_argument("--eval-episodes", type=int, default=20, help="Episodes per evaluation snapshot")
    parser.add_argument("--no-eval", action="store_true", help="Skip periodic evaluation")
    parser.add_argument("--learning-rate", type=float, help="Q-learning alpha or bandit learning rate")
    parser.add_argument("--epsilon", type=float, help="Exploration rate")
    parser.add_argument("--continue-from", type=str, help="Experiment id to resume learner state from")
    parser.add_argument("--seed", type=int, help="Random seed")
    parser.add_argument("--llm", action="store_true", help="Use OpenAI-backed agent and borrower")
    parser.add_argument("--log-level", type=str, help="Logging level (default from CALLPOLICY_LOG_LEVEL)")
    return parser.parse_args(argv)


def _training_config(args: argparse.Namespace) -> TrainingConfig:
    episodes = QUICK_EPISODES if args.quick else args.episodes
    eval_episodes = 0 if args.no_eval else (QUICK_EVAL_EPISODES if args.quick else args.eval_episodes)
    interval = max(1, min(50, episodes // 10))
    return TrainingConfig(
        num_episodes=episodes,
        eval_interval=interval,
        eval_episodes=eval_episodes,
        log_interval=interval,
        seed=args.seed,
    )


def _print_listing() -> None:
    experiments = list_experiments()
    if not experiments:
        print("(No saved experiments)")
        return
    for item in experiments:
        mean_return = item.get("mean_return")
        success = item.get("success_rate")
        print(
            f"{item['experiment_id']:<45} {str(item.get('learner')):<10} "
            f"return={'-' if mean_return is None else f'{mean_return:.3f}'} "
            f"success={'-' if success is None else f'{success:.1%}'}"
        )


def main(argv=None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(args.log_level or settings.log_level)

    if args.command == "list":
        _print_listing()
        return

    training = _training_config(args)
    env = build_environment(use_llm=args.llm, seed=args.seed, settings=settings)

    if args.command == "baseline":
        results = run_baseline_experiment(env, max(2 * training.eval_episodes, QUICK_EVAL_EPISODES), seed=args.seed)
        for name, metrics in results.items():
            print(MetricsAggregator.format_metrics(metrics, title=f"Baseline: {name}"))
        return

    if args.command in ("bandit", "qlearning"):
        experiment_id, _, result = run_learning_experiment(
            args.command,
            env,
            training,
            learning_rate=args.learning_rate,
            epsilon=args.epsilon,
            continue_from=args.continue_from,
        )
        print(MetricsAggregator.format_metrics(result.final_metrics, title=f"{args.command} ({experiment_id})"))
        return

    summary = run_comparison(env, training)
    print("=== Comparison Summary ===")
    for name, metrics in summary.items():
        print(MetricsAggregator.format_metrics(metrics, title=name))
        improvement = metrics.get("improvement_vs_random")
        if improvement:
            print(f"  vs random: return {improvement['mean_return']:+.1f}%, "
                  f"success {improvement['success_rate']:+.1f}%")


if __name__ == "__main__":
    main()

import json

import pytest

from callpolicy.errors import LearnerStateError
from callpolicy.factories.metrics import EpisodeMetrics, MetricsAggregator
from callpolicy.factories.persona_forge import get_persona, preset_personas
from callpolicy.factories.policy_learner import create_learner
from callpolicy.models import TrainingConfig
from training import persistence
from training.experiment import build_environment, run_baseline_experiment, run_learning_experiment
from training.runner import (
    compare_learners,
    run_episode,
    run_evaluation,
    train_and_evaluate,
)


def episode(outcome, total_return, persona="cooperative_stable", length=5):
    return EpisodeMetrics(total_return=total_return, length=length, outcome=outcome, persona=get_persona(persona))


def test_compute_metrics():
    metrics = MetricsAggregator.compute_metrics([
        episode("PAYMENT_SETUP_COMPLETE", 1.0),
        episode("PROMISE_TO_PAY", 0.5),
        episode("BORROWER_HANGUP", -0.5),
        episode("ESCALATE_HUMAN", 0.0),
    ])
    assert metrics["n_episodes"] == 4
    assert metrics["mean_return"] == pytest.approx(0.25)
    assert metrics["std_return"] == pytest.approx(0.5590169943749475)
    assert metrics["success_rate"] == pytest.approx(0.25)
    assert metrics["partial_success_rate"] == pytest.approx(0.5)
    assert metrics["hangup_rate"] == pytest.approx(0.25)
    assert metrics["escalation_rate"] == pytest.approx(0.25)
    assert sum(metrics["outcome_distribution"].values()) == pytest.approx(1.0)


def test_empty_metrics():
    metrics = MetricsAggregator.compute_metrics([])
    assert metrics["n_episodes"] == 0
    assert metrics["mean_return"] == 0.0


def test_group_by_persona_and_temperament():
    episodes = [
        episode("PAYMENT_SETUP_COMPLETE", 1.0, "cooperative_stable"),
        episode("BORROWER_HANGUP", -0.5, "hostile_struggling"),
        episode("BORROWER_HANGUP", -0.3, "hostile_disputing"),
    ]
    by_persona = MetricsAggregator.group_by(episodes, "persona")
    assert by_persona["cooperative_stable"]["success_rate"] == 1.0
    by_temperament = MetricsAggregator.group_by(episodes, "temperament")
    assert by_temperament["HOSTILE"]["count"] == 2
    assert by_temperament["HOSTILE"]["mean_return"] == pytest.approx(-0.4)
    with pytest.raises(ValueError):
        MetricsAggregator.group_by(episodes, "mood")


def test_rolling_average_and_compare():
    assert MetricsAggregator.rolling_average([1.0, 3.0, 5.0], window=2) == [1.0, 2.0, 4.0]
    improvement = MetricsAggregator.compare_metrics({"mean_return": 1.5}, {"mean_return": -0.5})
    assert improvement["mean_return"] == pytest.approx(400.0)
    assert improvement["success_rate"] == 0.0


def test_format_metrics_mentions_outcomes():
    text = MetricsAggregator.format_metrics(
        MetricsAggregator.compute_metrics([episode("PROMISE_TO_PAY", 0.5)]), title="Demo"
    )
    assert "=== Demo ===" in text
    assert "PROMISE_TO_PAY" in text


def test_run_episode_terminates_and_trains():
    env = build_environment(seed=0)
    learner = create_learner("qlearning", seed=0)
    metrics = run_episode(env, learner, train=True, persona=get_persona("cooperative_stable"))
    assert 1 <= metrics.length <= 30
    assert learner.episodes_trained == 1
    assert learner.get_table_size() > 0


def test_evaluation_does_not_update_and_restores_training_flag():
    env = build_environment(seed=0)
    learner = create_learner("qlearning", seed=0)
    result = run_evaluation(env, learner, 4, preset_personas())
    assert learner.get_table_size() == 0
    assert learner.training
    assert len(result.episodes) == 4
    assert [ep.persona.name for ep in result.episodes] == [p.name for p in preset_personas()[:4]]


def test_train_and_evaluate_builds_curve():
    env = build_environment(seed=1)
    learner = create_learner("bandit", seed=1)
    config = TrainingConfig(num_episodes=20, eval_interval=10, eval_episodes=2, log_interval=10, seed=1)
    result = train_and_evaluate(env, learner, config)
    assert len(result.train_episodes) == 20
    assert [p.episode for p in result.learning_curve] == [10, 20]
    assert result.learning_curve[0].eval_return is not None
    assert result.final_metrics["n_episodes"] == 4


def test_train_without_eval_uses_training_metrics():
    env = build_environment(seed=1)
    config = TrainingConfig(num_episodes=5, eval_interval=5, eval_episodes=0, log_interval=5)
    result = train_and_evaluate(env, create_learner("random", seed=1), config)
    assert result.final_metrics["n_episodes"] == 5
    assert result.learning_curve[0].eval_return is None


def test_compare_learners_resets_first():
    env = build_environment(seed=2)
    q = create_learner("qlearning", seed=2)
    q.update(
        env.reset(get_persona("cooperative_stable")), "PROCEED", 1.0, None, True
    )
    config = TrainingConfig(num_episodes=3, eval_interval=3, eval_episodes=0, log_interval=3)
    results = compare_learners(env, [q, create_learner("fixed")], config)
    assert set(results) == {"qlearning", "fixed"}
    assert q.episodes_trained == 3


def test_persistence_round_trip(tmp_path):
    env = build_environment(seed=3)
    config = TrainingConfig(num_episodes=4, eval_interval=2, eval_episodes=1, log_interval=2, seed=3)
    experiment_id, learner, _ = run_learning_experiment("qlearning", env, config, base=tmp_path)

    saved = persistence.load_experiment(experiment_id, base=tmp_path)
    assert saved["config"]["learner"] == "qlearning"
    assert len(saved["learning_curve"]) == 2
    assert persistence.list_experiments(base=tmp_path)[0]["experiment_id"] == experiment_id
    episodes = persistence.load_episodes_df(base=tmp_path)
    assert len(episodes) == 4
    for _, row in episodes.iterrows():
        assert len(row["transitions"]) == row["length"] > 0
        assert row["transitions"][-1]["done"] is True
        assert row["transitions"][-1]["info"]["terminal_reason"] == row["outcome"]

    restored = create_learner("qlearning")
    restored.load(persistence.load_learner_state(experiment_id, base=tmp_path))
    assert restored.get_policy()["greedy_actions"] == learner.get_policy()["greedy_actions"]


def test_continue_training_resets_epsilon(tmp_path):
    env = build_environment(seed=4)
    config = TrainingConfig(num_episodes=2, eval_interval=2, eval_episodes=0, log_interval=2, seed=4)
    first_id, _, _ = run_learning_experiment("bandit", env, config, epsilon=0.5, base=tmp_path)
    _, learner, _ = run_learning_experiment("bandit", env, config, continue_from=first_id, base=tmp_path)
    assert learner.config.epsilon == pytest.approx(0.1)
    assert learner.episodes_trained == 4


def test_continue_training_keeps_explicit_learning_rate(tmp_path):
    env = build_environment(seed=4)
    config = TrainingConfig(num_episodes=2, eval_interval=2, eval_episodes=0, log_interval=2, seed=4)
    first_id, _, _ = run_learning_experiment("qlearning", env, config, base=tmp_path)
    _, learner, _ = run_learning_experiment(
        "qlearning", env, config, learning_rate=0.3, continue_from=first_id, base=tmp_path
    )
    assert learner.config.alpha == pytest.approx(0.3)
    assert learner.config.epsilon == pytest.approx(0.1)


def test_unknown_experiment(tmp_path):
    with pytest.raises(KeyError):
        persistence.load_experiment("missing", base=tmp_path)


def test_corrupt_saved_state_is_rejected(tmp_path):
    persistence.save_experiment(
        "broken", config={"learner": "qlearning"}, metrics={}, learner_state=json.dumps({"type": "qlearning"}),
        base=tmp_path,
    )
    with pytest.raises(LearnerStateError):
        create_learner("qlearning").load(persistence.load_learner_state("broken", base=tmp_path))


def test_results_dir_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("CALLPOLICY_RESULTS_DIR", str(tmp_path / "custom"))
    assert persistence.results_dir() == tmp_path / "custom"


def test_baseline_experiment(tmp_path):
    env = build_environment(seed=5)
    results = run_baseline_experiment(env, 8, seed=5, base=tmp_path)
    assert set(results) == {"random", "fixed", "heuristic"}
    assert all(r["n_episodes"] == 8 for r in results.values())


def test_learning_experiment_rejects_baseline_kind(tmp_path):
    with pytest.raises(ValueError):
        run_learning_experiment("random", build_environment(seed=0), TrainingConfig(), base=tmp_path)

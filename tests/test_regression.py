import pytest

from callpolicy.factories.persona_forge import preset_personas
from callpolicy.factories.policy_learner import create_learner
from callpolicy.models import TrainingConfig
from training.experiment import DEFAULT_LEARNER_CONFIGS, build_environment
from training.runner import run_evaluation, train_and_evaluate

EVAL_EPISODES = 1000


@pytest.mark.slow
def test_learned_policy_beats_baselines():
    personas = preset_personas()
    env = build_environment(seed=42)

    random_return = run_evaluation(env, create_learner("random", seed=42), EVAL_EPISODES, personas).metrics["mean_return"]
    fixed_return = run_evaluation(env, create_learner("fixed", seed=42), EVAL_EPISODES, personas).metrics["mean_return"]

    q = create_learner("qlearning", seed=42, **DEFAULT_LEARNER_CONFIGS["qlearning"])
    config = TrainingConfig(num_episodes=1500, eval_interval=500, eval_episodes=0, log_interval=500, personas=personas, seed=42)
    train_and_evaluate(env, q, config)
    q_return = run_evaluation(env, q, EVAL_EPISODES, personas).metrics["mean_return"]

    assert random_return < fixed_return < q_return

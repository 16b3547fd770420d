import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "train.py"


@pytest.fixture
def train_module(tmp_path, monkeypatch):
    monkeypatch.setenv("CALLPOLICY_RESULTS_DIR", str(tmp_path))
    spec = importlib.util.spec_from_file_location("train_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_parse_args_defaults(train_module):
    args = train_module.parse_args(["qlearning"])
    assert args.episodes == 500
    assert args.eval_episodes == 20
    assert not args.llm


def test_quick_config(train_module):
    config = train_module._training_config(train_module.parse_args(["bandit", "--quick", "--no-eval"]))
    assert config.num_episodes == train_module.QUICK_EPISODES
    assert config.eval_episodes == 0


def test_list_with_no_experiments(train_module, capsys):
    train_module.main(["list"])
    assert "No saved experiments" in capsys.readouterr().out


def test_short_qlearning_run_is_listed(train_module, tmp_path, capsys):
    train_module.main(["qlearning", "--episodes", "10", "--eval-episodes", "1", "--seed", "0", "--log-level", "WARNING"])
    assert list((tmp_path / "experiments").glob("qlearning_*.json"))
    train_module.main(["list"])
    assert "qlearning" in capsys.readouterr().out


def test_rejects_unknown_command(train_module):
    with pytest.raises(SystemExit):
        train_module.parse_args(["sarsa"])

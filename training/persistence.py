"""
Persistence utilities for training runs: experiment summaries, episode
records and serialized learner state under the results directory.
"""
from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from callpolicy.models import EpisodeRecord

EXPERIMENTS_DIRNAME = "experiments"
EPISODES_FILENAME = "episodes.jsonl"


def results_dir(base: Optional[Path] = None) -> Path:
    """Results root: explicit base, else CALLPOLICY_RESULTS_DIR, else ./results."""
    if base is not None:
        return Path(base)
    return Path(os.getenv("CALLPOLICY_RESULTS_DIR", "results"))


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def new_experiment_id(name: str) -> str:
    return f"{name}_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"


def save_experiment(
    experiment_id: str,
    *,
    config: Dict[str, Any],
    metrics: Dict[str, Any],
    learning_curve: Optional[List[Dict[str, Any]]] = None,
    learner_state: Optional[str] = None,
    base: Optional[Path] = None,
) -> Path:
    """
    Write experiments/<id>.json.

    Args:
        experiment_id: Identifier (file stem)
        config: Run configuration
        metrics: Final metrics
        learning_curve: Serialized CurvePoints
        learner_state: Learner.save() output
        base: Results root override

    Returns:
        Path of the written file
    """
    target = _ensure_dir(results_dir(base) / EXPERIMENTS_DIRNAME) / f"{experiment_id}.json"
    payload = {
        "experiment_id": experiment_id,
        "created_at": datetime.now().isoformat(),
        "config": config,
        "metrics": metrics,
        "learning_curve": learning_curve or [],
        "learner_state": learner_state,
    }
    with target.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2, default=str)
    return target


def append_episode_records(records: Iterable[EpisodeRecord], base: Optional[Path] = None) -> int:
    """Append records to episodes.jsonl; returns how many were written."""
    rows = list(records)
    if not rows:
        return 0
    path = _ensure_dir(results_dir(base)) / EPISODES_FILENAME
    with path.open("a", encoding="utf-8") as handle:
        for record in rows:
            handle.write(record.model_dump_json() + "\n")
    return len(rows)


def load_episodes_df(base: Optional[Path] = None) -> pd.DataFrame:
    """Load persisted episode records as a DataFrame (empty when none)."""
    path = results_dir(base) / EPISODES_FILENAME
    if not path.exists():
        return pd.DataFrame()

    rows: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return pd.DataFrame(rows)


def list_experiments(base: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Summaries of saved experiments, newest first."""
    folder = results_dir(base) / EXPERIMENTS_DIRNAME
    if not folder.exists():
        return []

    summaries = []
    for path in folder.glob("*.json"):
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        metrics = data.get("metrics") or {}
        summaries.append({
            "experiment_id": data.get("experiment_id", path.stem),
            "created_at": data.get("created_at"),
            "learner": (data.get("config") or {}).get("learner"),
            "mean_return": metrics.get("mean_return"),
            "success_rate": metrics.get("success_rate"),
        })
    return sorted(summaries, key=lambda s: s.get("created_at") or "", reverse=True)


def load_experiment(experiment_id: str, base: Optional[Path] = None) -> Dict[str, Any]:
    path = results_dir(base) / EXPERIMENTS_DIRNAME / f"{experiment_id}.json"
    if not path.exists():
        raise KeyError(f"Unknown experiment id: {experiment_id}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def load_learner_state(experiment_id: str, base: Optional[Path] = None) -> str:
    """Serialized learner state saved with an experiment."""
    state = load_experiment(experiment_id, base).get("learner_state")
    if not state:
        raise KeyError(f"Experiment {experiment_id} has no saved learner state")
    return state


__all__ = [
    "results_dir",
    "new_experiment_id",
    "save_experiment",
    "append_episode_records",
    "load_episodes_df",
    "list_experiments",
    "load_experiment",
    "load_learner_state",
]

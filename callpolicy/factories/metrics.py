"""
Metrics: aggregates episode outcomes into training KPIs.
Success is a completed payment setup; partial success also counts a
promise to pay and a scheduled callback.
"""
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel

from callpolicy.factories.reward import PARTIAL_SUCCESS_REASONS
from callpolicy.models import Persona, Trajectory

SUCCESS_REASON = "PAYMENT_SETUP_COMPLETE"


class EpisodeMetrics(BaseModel):
    """Summary of one finished episode."""

    episode: int = 0
    total_return: float
    length: int
    outcome: str
    persona: Optional[Persona] = None
    trajectory: Optional[Trajectory] = None


class MetricsAggregator:
    """Computes aggregate metrics from episode summaries."""

    @staticmethod
    def to_frame(episodes: Sequence[EpisodeMetrics]) -> pd.DataFrame:
        rows = []
        for ep in episodes:
            persona = ep.persona
            rows.append({
                "episode": ep.episode,
                "total_return": ep.total_return,
                "length": ep.length,
                "outcome": ep.outcome,
                "persona": (persona.name or "custom") if persona else "unknown",
                "temperament": persona.temperament if persona else "unknown",
                "willingness": persona.willingness if persona else "unknown",
            })
        return pd.DataFrame(
            rows,
            columns=["episode", "total_return", "length", "outcome", "persona", "temperament", "willingness"],
        )

    @staticmethod
    def compute_metrics(episodes: Sequence[EpisodeMetrics]) -> Dict[str, Any]:
        """
        Aggregate a batch of episodes.

        Args:
            episodes: Episode summaries

        Returns:
            Dictionary with mean/std return, success rates, mean length,
            hangup and escalation rates and the outcome distribution
        """
        if not episodes:
            return MetricsAggregator._empty_metrics()

        df = MetricsAggregator.to_frame(episodes)
        outcomes = df["outcome"]
        return {
            "n_episodes": len(df),
            "mean_return": float(df["total_return"].mean()),
            # population std, matching np.std
            "std_return": float(np.std(df["total_return"].to_numpy())),
            "success_rate": float((outcomes == SUCCESS_REASON).mean()),
            "partial_success_rate": float(outcomes.isin(PARTIAL_SUCCESS_REASONS).mean()),
            "mean_length": float(df["length"].mean()),
            "hangup_rate": float((outcomes == "BORROWER_HANGUP").mean()),
            "escalation_rate": float((outcomes == "ESCALATE_HUMAN").mean()),
            "outcome_distribution": MetricsAggregator.outcome_distribution(episodes),
        }

    @staticmethod
    def _empty_metrics() -> Dict[str, Any]:
        return {
            "n_episodes": 0,
            "mean_return": 0.0,
            "std_return": 0.0,
            "success_rate": 0.0,
            "partial_success_rate": 0.0,
            "mean_length": 0.0,
            "hangup_rate": 0.0,
            "escalation_rate": 0.0,
            "outcome_distribution": {},
        }

    @staticmethod
    def outcome_distribution(episodes: Sequence[EpisodeMetrics]) -> Dict[str, float]:
        if not episodes:
            return {}
        counts = pd.Series([ep.outcome for ep in episodes]).value_counts(normalize=True)
        return {str(k): float(v) for k, v in counts.items()}

    @staticmethod
    def group_by(episodes: Sequence[EpisodeMetrics], key: str = "persona") -> Dict[str, Dict[str, float]]:
        """
        Per-group return, success rate and episode count.

        Args:
            episodes: Episode summaries
            key: persona | temperament | willingness

        Returns:
            {group: {"mean_return", "success_rate", "count"}}
        """
        if key not in ("persona", "temperament", "willingness"):
            raise ValueError(f"Unknown grouping key: {key}")
        if not episodes:
            return {}

        df = MetricsAggregator.to_frame(episodes)
        df["success"] = (df["outcome"] == SUCCESS_REASON).astype(float)
        stats = df.groupby(key).agg(
            mean_return=("total_return", "mean"),
            success_rate=("success", "mean"),
            count=("total_return", "count"),
        ).round(3)
        return {
            str(group): {
                "mean_return": float(row["mean_return"]),
                "success_rate": float(row["success_rate"]),
                "count": int(row["count"]),
            }
            for group, row in stats.iterrows()
        }

    @staticmethod
    def rolling_average(values: Sequence[float], window: int = 50) -> List[float]:
        """Trailing mean; early points average whatever is available."""
        if not values:
            return []
        series = pd.Series(list(values), dtype=float)
        return series.rolling(window=max(1, window), min_periods=1).mean().tolist()

    @staticmethod
    def format_metrics(metrics: Dict[str, Any], title: Optional[str] = None) -> str:
        lines = []
        if title:
            lines.append(f"=== {title} ===")
        lines.extend([
            f"Episodes:        {metrics.get('n_episodes', 0)}",
            f"Mean return:     {metrics.get('mean_return', 0.0):.3f} (std {metrics.get('std_return', 0.0):.3f})",
            f"Success rate:    {metrics.get('success_rate', 0.0):.1%}",
            f"Partial success: {metrics.get('partial_success_rate', 0.0):.1%}",
            f"Mean length:     {metrics.get('mean_length', 0.0):.1f}",
            f"Hangup rate:     {metrics.get('hangup_rate', 0.0):.1%}",
            f"Escalation rate: {metrics.get('escalation_rate', 0.0):.1%}",
        ])
        distribution = metrics.get("outcome_distribution") or {}
        if distribution:
            lines.append("Outcomes:")
            for outcome, share in sorted(distribution.items(), key=lambda kv: -kv[1]):
                lines.append(f"  {outcome:<24} {share:.1%}")
        return "\n".join(lines)

    @staticmethod
    def compare_metrics(treatment: Dict[str, Any], baseline: Dict[str, Any]) -> Dict[str, float]:
        """
        Percentage improvement of treatment over baseline per scalar metric.

        A zero baseline yields 0.0 for that metric.
        """
        improvements = {}
        for key in ("mean_return", "success_rate", "partial_success_rate", "mean_length", "hangup_rate"):
            base = float(baseline.get(key, 0.0))
            treat = float(treatment.get(key, 0.0))
            if base == 0:
                improvements[key] = 0.0
            else:
                improvements[key] = (treat - base) / abs(base) * 100
        return improvements


__all__ = ["EpisodeMetrics", "MetricsAggregator", "SUCCESS_REASON"]

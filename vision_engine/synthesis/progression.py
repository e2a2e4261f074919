"""Progression of a subject's scores across sessions."""

from datetime import datetime
from typing import Any, Dict, List, Sequence

import numpy as np

PROGRESSION_METRICS = (
    "championship_readiness",
    "overall_score",
    "synchronization",
    "mental_toughness",
    "consistency",
)
TREND_WINDOW = 5
IMPROVING_RATIO = 1.05
DECLINING_RATIO = 0.95


def classify_trend(values: Sequence[float]) -> str:
    """
    Compare the mean of the most recent sessions with the earlier ones.

    The recent window is the last TREND_WINDOW values, or the later half of
    a shorter series.

    Returns:
        "improving", "declining", "stable", or "insufficient_data" with
        fewer than two values.
    """
    if len(values) < 2:
        return "insufficient_data"
    window = min(TREND_WINDOW, len(values) // 2)
    baseline = float(np.mean(values[:-window]))
    recent = float(np.mean(values[-window:]))
    if recent > baseline * IMPROVING_RATIO:
        return "improving"
    if recent < baseline * DECLINING_RATIO:
        return "declining"
    return "stable"


def calculate_progression(sessions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Metric deltas and trends over a subject's completed sessions.

    Args:
        sessions: Dicts with "created_at" (datetime) and "scores"
            (composite scores dict).

    Returns:
        Dict with session_count and a per-metric breakdown of first, last,
        average, improvement percentage and trend.
    """
    ordered = sorted(
        (s for s in sessions if s.get("scores")),
        key=lambda s: s.get("created_at") or datetime.min,
    )
    metrics = {}

    for name in PROGRESSION_METRICS:
        values = [float(s["scores"][name]) for s in ordered if s["scores"].get(name) is not None]
        if not values:
            continue
        first, last = values[0], values[-1]
        metrics[name] = {
            "first": round(first, 2),
            "last": round(last, 2),
            "average": round(float(np.mean(values)), 2),
            "improvement_pct": round((last - first) / first * 100.0, 2) if first else 0.0,
            "trend": classify_trend(values),
        }

    return {"session_count": len(ordered), "metrics": metrics}

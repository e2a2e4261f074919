"""Timeline alignment, critical moments, composite scores and insights."""

from vision_engine.synthesis.engine import (
    CompositeScores,
    CriticalMoment,
    SynthesisResult,
    TimelineRow,
    calculate_championship_readiness,
    calculate_synchronization,
    identify_critical_moments,
    synchronize_timelines,
    synthesize,
)
from vision_engine.synthesis.insights import Insight, generate_insights
from vision_engine.synthesis.progression import calculate_progression

__all__ = [
    "CompositeScores",
    "CriticalMoment",
    "Insight",
    "SynthesisResult",
    "TimelineRow",
    "calculate_championship_readiness",
    "calculate_progression",
    "calculate_synchronization",
    "generate_insights",
    "identify_critical_moments",
    "synchronize_timelines",
    "synthesize",
]

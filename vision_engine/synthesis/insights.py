"""Deterministic sport-specific insight rules."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Sequence, Tuple

PRIORITY_ORDER = ("critical", "high", "medium", "low")


@dataclass
class Insight:
    """A canned recommendation produced by a matching rule."""
    rule_id: str
    category: str
    priority: str
    insight: str
    recommendation: str
    metric: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class InsightRule:
    """
    Threshold rule over one flattened session metric.

    Attributes:
        rule_id: Stable identifier.
        metric: Key in the metrics produced by build_insight_metrics().
        comparator: "below" (value < threshold) or "at_least" (value >= threshold).
        sports: Sports the rule applies to; empty means all.
        session_types: Session types the rule applies to; empty means all.
    """
    rule_id: str
    category: str
    priority: str
    metric: str
    comparator: str
    threshold: float
    insight: str
    recommendation: str
    sports: Tuple[str, ...] = ()
    session_types: Tuple[str, ...] = ()

    def applies_to(self, sport: str, session_type: str) -> bool:
        return (not self.sports or sport in self.sports) and (
            not self.session_types or session_type in self.session_types
        )

    def matches(self, value: float) -> bool:
        if self.comparator == "below":
            return value < self.threshold
        return value >= self.threshold


INSIGHT_RULES: Tuple[InsightRule, ...] = (
    # Composure
    InsightRule(
        "composure_game_pressure", "mental", "critical", "composure", "below", 60,
        "Composure breaks down under live game pressure",
        "Rehearse a fixed pre-performance routine in simulated game situations",
        session_types=("game",),
    ),
    InsightRule(
        "composure_low", "mental", "high", "composure", "below", 60,
        "Facial composure is unsettled through the session",
        "Add breathing resets between repetitions and track composure trends",
    ),
    InsightRule(
        "pressure_response_low", "mental", "high", "pressure_response", "below", 50,
        "Visible stress stays high during the movement",
        "Introduce progressive pressure drills with scoring consequences",
    ),
    InsightRule(
        "resilience_low", "mental", "medium", "mental_resilience", "below", 60,
        "Stress spikes are rarely followed by recovery",
        "Practice a reset cue after mistakes and review recovery moments on video",
    ),
    InsightRule(
        "vulnerability_repeated", "mental", "high", "vulnerability_moments", "at_least", 3,
        "Mechanics and confidence break down together several times",
        "Identify the triggers of these moments and rehearse them in isolation",
    ),
    # Technique
    InsightRule(
        "consistency_low", "technique", "high", "bio_consistency", "below", 70,
        "Joint angles vary widely between repetitions",
        "Use repetition blocks with video feedback to groove a consistent pattern",
    ),
    InsightRule(
        "efficiency_low", "technique", "medium", "bio_efficiency", "below", 75,
        "Movement is jerky through the tracked segment",
        "Slow-tempo drills emphasizing smooth acceleration and deceleration",
    ),
    InsightRule(
        "synchronization_low", "integration", "medium", "synchronization", "below", 70,
        "Mental state and physical execution drift apart",
        "Pair a breathing cue with a mechanical checkpoint in each repetition",
    ),
    # Baseball
    InsightRule(
        "baseball_power", "power", "high", "bio_power", "below", 50,
        "Rotational power through contact is limited",
        "Hip-shoulder separation work and rotational medicine-ball throws",
        sports=("baseball",),
    ),
    InsightRule(
        "baseball_timing", "timing", "medium", "bio_timing", "below", 60,
        "Load-to-contact rhythm is inconsistent",
        "Tee work to a fixed-tempo count from load through stride",
        sports=("baseball",),
    ),
    # Football
    InsightRule(
        "football_release_pressure", "mental", "critical", "pressure_response", "below", 60,
        "Release mechanics degrade when pressure arrives",
        "Throw against a simulated pass rush with a release clock",
        sports=("football",), session_types=("game",),
    ),
    InsightRule(
        "football_timing", "timing", "high", "bio_timing", "below", 60,
        "Drop-back to release timing varies between snaps",
        "Three- and five-step drop drills to a consistent release count",
        sports=("football",),
    ),
    # Basketball
    InsightRule(
        "basketball_repeatability", "technique", "high", "bio_consistency", "below", 80,
        "Shot mechanics are not repeatable",
        "Form shooting close to the rim before extending range",
        sports=("basketball",),
    ),
    InsightRule(
        "basketball_focus", "focus", "medium", "concentration", "below", 60,
        "Focus fades during the shooting motion",
        "Free-throw routine with a fixed visual target and count",
        sports=("basketball",),
    ),
    # Strengths and development
    InsightRule(
        "clutch_strength", "strength", "low", "clutch_moments", "at_least", 1,
        "Stays composed at moments of peak stress",
        "Keep exposing the athlete to high-leverage situations",
    ),
    InsightRule(
        "championship_ready", "strength", "low", "championship_readiness", "at_least", 85,
        "Performance profile meets championship standards",
        "Maintain current training load and monitor for fatigue",
    ),
    InsightRule(
        "historical_baseline", "development", "low", "championship_readiness", "below", 70,
        "Archived session sits below competitive readiness",
        "Use this session as a baseline and compare against recent footage",
        session_types=("historical",),
    ),
)


def build_insight_metrics(bio_summary, beh_summary, composites, moments: Sequence) -> Dict[str, float]:
    """Flatten summaries, composites and moment counts to one 0-100 metric map."""
    return {
        "bio_consistency": 100.0 * bio_summary.consistency_score,
        "bio_efficiency": 100.0 * bio_summary.efficiency_score,
        "bio_power": 100.0 * bio_summary.power_score,
        "bio_timing": 100.0 * bio_summary.timing_score,
        "composure": 100.0 * beh_summary.composure_resilience.final_score,
        "confidence": 100.0 * beh_summary.confidence_level,
        "concentration": 100.0 * beh_summary.concentration_level,
        "pressure_response": 100.0 * beh_summary.pressure_response,
        "mental_resilience": 100.0 * beh_summary.mental_resilience,
        "synchronization": composites.synchronization,
        "championship_readiness": composites.championship_readiness,
        "clutch_moments": float(sum(1 for m in moments if m.moment_type == "clutch_performance")),
        "vulnerability_moments": float(sum(1 for m in moments if m.moment_type == "vulnerability")),
    }


def generate_insights(
    bio_summary,
    beh_summary,
    composites,
    moments: Sequence,
    sport: str,
    session_type: str,
    rules: Sequence[InsightRule] = INSIGHT_RULES,
) -> List[Insight]:
    """
    Evaluate the rule table against a session.

    Returns:
        Matching insights sorted by priority (critical first), ties kept in
        rule order.
    """
    metrics = build_insight_metrics(bio_summary, beh_summary, composites, moments)
    insights = []

    for rule in rules:
        if not rule.applies_to(sport, session_type):
            continue
        value = metrics[rule.metric]
        if rule.matches(value):
            insights.append(Insight(
                rule_id=rule.rule_id,
                category=rule.category,
                priority=rule.priority,
                insight=rule.insight,
                recommendation=rule.recommendation,
                metric=rule.metric,
                value=round(value, 2),
            ))

    insights.sort(key=lambda i: PRIORITY_ORDER.index(i.priority))
    return insights

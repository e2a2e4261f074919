"""Tests for the insight rule table."""

from types import SimpleNamespace

import pytest

from vision_engine.synthesis.insights import INSIGHT_RULES, InsightRule, generate_insights


def session(level=0.95, composure=0.9, pressure_response=0.95, readiness=90.0, moments=("clutch_performance",)):
    bio = SimpleNamespace(
        consistency_score=level,
        efficiency_score=level,
        power_score=level,
        timing_score=level,
    )
    beh = SimpleNamespace(
        composure_resilience=SimpleNamespace(final_score=composure),
        confidence_level=level,
        concentration_level=level,
        pressure_response=pressure_response,
        mental_resilience=level,
    )
    composites = SimpleNamespace(synchronization=90.0, championship_readiness=readiness)
    return bio, beh, composites, [SimpleNamespace(moment_type=m) for m in moments]


def rule_ids(insights):
    return [i.rule_id for i in insights]


class TestGenerateInsights:

    def test_strong_session(self):
        insights = generate_insights(*session(), "baseball", "training")
        assert rule_ids(insights) == ["clutch_strength", "championship_ready"]
        assert insights[0].value == 1.0

    def test_critical_first(self):
        insights = generate_insights(*session(composure=0.5, moments=()), "baseball", "game")
        assert rule_ids(insights)[:2] == ["composure_game_pressure", "composure_low"]
        assert insights[0].priority == "critical"
        assert insights[0].value == pytest.approx(50.0)

    def test_session_type_filter(self):
        training = generate_insights(*session(composure=0.5, moments=()), "baseball", "training")
        assert "composure_game_pressure" not in rule_ids(training)
        assert "composure_low" in rule_ids(training)

    def test_sport_filter(self):
        args = session(pressure_response=0.55, moments=())
        assert "football_release_pressure" in rule_ids(generate_insights(*args, "football", "game"))
        assert "football_release_pressure" not in rule_ids(generate_insights(*args, "baseball", "game"))
        assert "football_release_pressure" not in rule_ids(generate_insights(*args, "football", "training"))

    def test_weak_baseball_mechanics(self):
        insights = generate_insights(*session(level=0.4, readiness=50.0, moments=()), "baseball", "training")
        ids = rule_ids(insights)
        for expected in ("consistency_low", "efficiency_low", "baseball_power", "baseball_timing", "resilience_low"):
            assert expected in ids
        assert "basketball_repeatability" not in ids

    def test_historical_baseline(self):
        ids = rule_ids(generate_insights(*session(readiness=65.0, moments=()), "basketball", "historical"))
        assert "historical_baseline" in ids

    def test_deterministic(self):
        args = session(level=0.6, composure=0.55)
        assert generate_insights(*args, "baseball", "game") == generate_insights(*args, "baseball", "game")


class TestInsightRule:

    def test_comparators(self):
        below = InsightRule("r1", "c", "low", "m", "below", 50, "i", "r")
        at_least = InsightRule("r2", "c", "low", "m", "at_least", 50, "i", "r")
        assert below.matches(49.9) and not below.matches(50)
        assert at_least.matches(50) and not at_least.matches(49.9)

    def test_applies_to(self):
        rule = InsightRule("r", "c", "low", "m", "below", 1, "i", "r", sports=("football",))
        assert rule.applies_to("football", "training")
        assert not rule.applies_to("baseball", "training")

    def test_rule_ids_unique(self):
        ids = [rule.rule_id for rule in INSIGHT_RULES]
        assert len(ids) == len(set(ids))

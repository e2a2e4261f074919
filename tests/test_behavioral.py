"""Tests for the behavioral stream and the composure metric."""

import pytest

from fakes import FakeFaceExtractor, face_record, run_analyzer
from vision_engine.analysis.behavioral import (
    EXPRESSIONS,
    BehavioralAnalyzer,
    BehavioralFrame,
    BehavioralSummary,
    calculate_composure,
    calculate_composure_resilience,
    calculate_mental_resilience,
    calculate_stress_recovery,
    composure_grade,
    expression_scores,
    facial_indicators,
    pressure_windows,
)
from vision_engine.analysis.config import get_analysis_config

BASEBALL = get_analysis_config("baseball", "training")


def beh_frame(n, t, stress=0.2, composure=0.8, confidence=0.6, motion=0.005):
    expressions = {name: 0.5 for name in EXPRESSIONS}
    expressions.update(stress=stress, composure=composure, confidence=confidence)
    return BehavioralFrame(
        frame_number=n,
        timestamp_seconds=t,
        expressions=expressions,
        stability=1.0,
        landmark_motion=motion,
        confidence=0.9,
        valid=True,
    )


class TestComposureResilience:

    @pytest.mark.parametrize("variance, pressure, expected", [(5, 80, 90.0), (25, 80, 50.0), (10, 30, 85.0)])
    def test_reference_values(self, variance, pressure, expected):
        assert calculate_composure_resilience(variance, pressure) == pytest.approx(expected, abs=0.5)

    def test_monotone_in_variance(self):
        scores = [calculate_composure_resilience(v, 50) for v in (0, 5, 10, 20, 40, 60)]
        assert scores == sorted(scores, reverse=True)
        assert len(set(scores)) == len(scores)

    def test_pressure_increases_penalty(self):
        assert calculate_composure_resilience(10, 0) > calculate_composure_resilience(10, 100)

    def test_bounds(self):
        assert calculate_composure_resilience(0, 100) == 100.0
        assert calculate_composure_resilience(1000, 100) == 0.0
        assert calculate_composure_resilience(10, 500) == calculate_composure_resilience(10, 100)

    def test_grades(self):
        assert composure_grade(0.95) == "Elite Championship Composure"
        assert composure_grade(0.75) == "Good Composure"
        assert composure_grade(0.4) == "Needs Composure Development"


class TestFacialIndicators:

    def test_neutral_face(self):
        indicators = facial_indicators(face_record(0, 0.0))
        assert indicators["scale"] == pytest.approx(0.14)
        for name, value in indicators.items():
            if name != "scale":
                assert 0.0 <= value <= 1.0, name

    def test_missing_region(self):
        record = face_record(0, 0.0, regions=["left_eye", "right_eye", "mouth"])
        assert facial_indicators(record) is None

    def test_composure_without_stillness(self):
        indicators = facial_indicators(face_record(0, 0.0))
        scores = expression_scores(indicators, stillness=None)
        assert set(scores) == set(EXPRESSIONS)
        assert scores["composure"] == pytest.approx(indicators["facial_balance"], abs=1e-4)


class TestStressSignals:

    def test_recovered_stress_event(self):
        assert calculate_stress_recovery([0.9] * 6 + [0.3] * 4) == (1.0, 1, 1)

    def test_unrecovered_stress_event(self):
        assert calculate_stress_recovery([0.9] * 10) == (0.0, 1, 0)

    def test_no_events(self):
        assert calculate_stress_recovery([0.2] * 10) == (0.5, 0, 0)
        assert calculate_stress_recovery([0.9, 0.9]) == (0.5, 0, 0)

    def test_mental_resilience(self):
        assert calculate_mental_resilience([0.8, 0.3]) == 1.0
        assert calculate_mental_resilience([0.8, 0.8]) == 0.5
        assert calculate_mental_resilience([0.2, 0.3]) == 0.5


class TestPressureWindows:

    def test_regular_windows_without_pressure(self):
        frames = [beh_frame(i, i / 10) for i in range(70)]
        windows, detected = pressure_windows(frames, 3.0, 0.6)
        assert not detected
        assert len(windows) == 3
        assert windows[0] == (0.0, 3.0)

    def test_windows_anchor_on_stress(self):
        stressed = {10, 20, 50}
        frames = [beh_frame(i, i / 10, stress=0.8 if i in stressed else 0.2) for i in range(70)]
        windows, detected = pressure_windows(frames, 3.0, 0.6)
        assert detected
        assert windows == [(1.0, 4.0), (5.0, 8.0)]

    def test_calm_steady_stream(self):
        frames = [beh_frame(i, i / 10) for i in range(30)]
        result = calculate_composure(frames, BASEBALL.behavioral)

        assert result.window_composure == pytest.approx(0.93)
        assert result.emotional_control == pytest.approx(1.0)
        assert result.stress_recovery == 0.5
        assert result.final_score == pytest.approx(0.8755, abs=1e-3)
        assert result.grade == "Excellent Composure"
        assert result.windows[0]["variance"] == pytest.approx(5.0)


class TestBehavioralAnalyzer:

    def test_run(self):
        result = run_analyzer(BehavioralAnalyzer, FakeFaceExtractor(), BASEBALL, range(0, 22, 2))
        first, second = result.frames[0], result.frames[1]

        assert result.frames_valid == 11
        assert first.landmark_motion is None
        assert first.stability is None
        assert second.landmark_motion == pytest.approx(0.001)
        assert second.stability == pytest.approx(1.0)

        summary = result.summary
        assert summary.emotional_stability == pytest.approx(1.0)
        assert 0.0 <= summary.composure_resilience.final_score <= 1.0
        assert summary.micro_expressions["stress"]["frequency"] >= 0.0

    def test_low_confidence_is_gap(self):
        class Blurry(FakeFaceExtractor):
            def build(self, frame_number, timestamp_seconds):
                return face_record(frame_number, timestamp_seconds, confidence=0.2)

        result = run_analyzer(BehavioralAnalyzer, Blurry(), BASEBALL, range(3))
        assert result.frames_valid == 0
        assert result.summary.overall_score == pytest.approx(0.15 * 0.5)

    def test_summary_round_trip(self):
        result = run_analyzer(BehavioralAnalyzer, FakeFaceExtractor(), BASEBALL, range(0, 40, 2))
        restored = BehavioralSummary.from_dict(result.summary.to_dict())
        assert restored == result.summary
        assert restored.character_score == result.summary.overall_score

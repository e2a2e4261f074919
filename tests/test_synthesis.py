"""Tests for timeline alignment, critical moments and composite scores."""

import math

import pytest

from fakes import FakeFaceExtractor, FakePoseExtractor, InMemorySampler, run_analyzer
from vision_engine.analysis.behavioral import EXPRESSIONS, BehavioralAnalyzer, BehavioralFrame
from vision_engine.analysis.biomechanics import BiomechanicalAnalyzer, BiomechanicalFrame
from vision_engine.analysis.config import get_analysis_config
from vision_engine.errors import SynthesisError
from vision_engine.sampling.sampler import StreamKind
from vision_engine.synthesis.engine import (
    NO_SAMPLE,
    calculate_championship_readiness,
    calculate_mental_toughness,
    calculate_synchronization,
    identify_critical_moments,
    readiness_level,
    synchronize_timelines,
    synthesize,
)
from vision_engine.synthesis.insights import PRIORITY_ORDER

FPS = 30.0
CLIP_SECONDS = 20.0


def bio_frame(n, efficiency=0.8, phase="load", valid=True, fps=FPS):
    return BiomechanicalFrame(
        frame_number=n,
        timestamp_seconds=n / fps,
        joint_angles={"hip_rotation": 40.0} if valid else {},
        movement_phase=phase if valid else "no_detection",
        confidence=0.9 if valid else 0.0,
        valid=valid,
        efficiency=efficiency if valid else None,
    )


def beh_frame(n, stress=0.2, composure=0.5, confidence=0.6, determination=0.5, valid=True, fps=FPS):
    expressions = {name: 0.5 for name in EXPRESSIONS}
    expressions.update(stress=stress, composure=composure, confidence=confidence, determination=determination)
    return BehavioralFrame(
        frame_number=n,
        timestamp_seconds=n / fps,
        expressions=expressions if valid else {},
        stability=1.0 if valid else None,
        confidence=0.9,
        valid=valid,
    )


def score_curve(timestamp_seconds):
    """Slow swing over the clip shared by both streams."""
    return 0.6 + 0.3 * math.sin(2 * math.pi * timestamp_seconds / CLIP_SECONDS)


class CurveBiomechanicalAnalyzer(BiomechanicalAnalyzer):
    def process_record(self, record):
        frame = super().process_record(record)
        if frame.efficiency is not None:
            frame.efficiency = score_curve(frame.timestamp_seconds)
        return frame


class CurveBehavioralAnalyzer(BehavioralAnalyzer):
    def process_record(self, record):
        frame = super().process_record(record)
        if frame.valid:
            frame.expressions["composure"] = score_curve(frame.timestamp_seconds)
        return frame


class TestSynchronizeTimelines:

    def test_row_per_frame_number(self):
        rows = synchronize_timelines([bio_frame(n) for n in (0, 2, 4)], [beh_frame(n) for n in (1, 3, 5)], FPS)

        assert [r.frame_number for r in rows] == list(range(6))
        assert rows[3].timestamp_seconds == pytest.approx(0.1)
        assert rows[0].bio_present and not rows[0].beh_present
        assert rows[5].beh_present and not rows[5].bio_present

    def test_placeholders(self):
        rows = synchronize_timelines([bio_frame(0)], [beh_frame(2)], FPS)
        gap = rows[1]

        assert not gap.bio_present and not gap.beh_present
        assert gap.efficiency == 0.0
        assert gap.movement_phase == NO_SAMPLE
        assert gap.joint_angles == {}
        assert gap.expressions == {name: 0.0 for name in EXPRESSIONS}
        assert gap.stability is None

    def test_invalid_frame_is_gap(self):
        rows = synchronize_timelines([bio_frame(0), bio_frame(1, valid=False), bio_frame(2)], [], FPS)
        assert [r.bio_present for r in rows] == [True, False, True]
        assert rows[1].movement_phase == NO_SAMPLE

    def test_no_interpolation(self):
        rows = synchronize_timelines([bio_frame(0, efficiency=0.2), bio_frame(4, efficiency=1.0)], [], FPS)
        assert [r.efficiency for r in rows] == [0.2, 0.0, 0.0, 0.0, 1.0]

    def test_empty_inputs(self):
        assert synchronize_timelines([], [], FPS) == []

    def test_invalid_fps(self):
        with pytest.raises(ValueError):
            synchronize_timelines([bio_frame(0)], [], 0)


class TestCriticalMoments:

    def test_clutch_run_spans_gap(self):
        beh = [
            beh_frame(n, stress=0.8, composure=0.8) if 10 <= n <= 14 else beh_frame(n)
            for n in range(20) if n != 12
        ]
        moments = identify_critical_moments(synchronize_timelines([], beh, FPS))

        assert len(moments) == 1
        moment = moments[0]
        assert moment.moment_type == "clutch_performance"
        assert (moment.start_frame, moment.end_frame) == (10, 14)
        assert moment.frame_count == 4
        assert moment.values == {"stress": 0.8, "composure": 0.8}

    def test_non_qualifying_row_ends_run(self):
        clutch = {10, 11, 13}
        beh = [beh_frame(n, stress=0.8, composure=0.8) if n in clutch else beh_frame(n) for n in range(20)]
        moments = identify_critical_moments(synchronize_timelines([], beh, FPS))

        assert [(m.start_frame, m.end_frame) for m in moments] == [(10, 11), (13, 13)]

    def test_vulnerability_needs_both_streams(self):
        bio = [bio_frame(n, efficiency=0.5) for n in range(6)]
        beh = [beh_frame(n, confidence=0.3 + 0.01 * n) for n in range(3)]
        moments = identify_critical_moments(synchronize_timelines(bio, beh, FPS))

        assert len(moments) == 1
        assert moments[0].moment_type == "vulnerability"
        assert (moments[0].start_frame, moments[0].end_frame) == (0, 2)
        assert moments[0].values == {"efficiency": 0.5, "confidence": 0.3}

    def test_excellence_sorted_by_start(self):
        bio = [bio_frame(n, efficiency=0.95 if n >= 5 else 0.8) for n in range(10)]
        beh = [beh_frame(n, confidence=0.95 if n < 3 else 0.6) for n in range(10)]
        moments = identify_critical_moments(synchronize_timelines(bio, beh, FPS))

        assert [(m.trigger, m.start_frame) for m in moments] == [
            ("behavioral_confidence", 0),
            ("biomechanical_efficiency", 5),
        ]


class TestCompositeScores:

    def test_championship_readiness(self):
        score = calculate_championship_readiness(90, 88, 87, 85, 92)
        assert score == pytest.approx(88.5)
        assert readiness_level(score) == "championship_ready"

    def test_readiness_levels(self):
        assert readiness_level(80) == "competitive"
        assert readiness_level(60) == "developing"
        assert readiness_level(59.9) == "foundation"

    def test_synchronization_of_matching_curves(self):
        def curve(t):
            return 0.5 + 0.3 * math.sin(t)

        bio = [bio_frame(n, efficiency=curve(n / FPS)) for n in range(0, 601, 3)]
        beh = [beh_frame(n, composure=curve(n / FPS)) for n in range(0, 601, 5)]
        assert calculate_synchronization(bio, beh) > 0.99

    def test_synchronization_of_opposite_curves(self):
        bio = [bio_frame(n, efficiency=1.0) for n in range(10)]
        beh = [beh_frame(n, composure=0.0) for n in range(10)]
        assert calculate_synchronization(bio, beh) == 0.0

    def test_synchronization_insufficient_data(self):
        assert calculate_synchronization([bio_frame(0)], [beh_frame(n) for n in range(5)]) == 0.0

    def test_mental_toughness_under_pressure(self):
        frames = [beh_frame(0, stress=0.8, composure=0.6, determination=0.4), beh_frame(1, composure=0.9)]
        assert calculate_mental_toughness(frames) == pytest.approx(50.0)

    def test_mental_toughness_without_pressure(self):
        frames = [beh_frame(0, composure=0.6), beh_frame(1, composure=0.8)]
        assert calculate_mental_toughness(frames) == pytest.approx(70.0)


class TestSynthesize:

    @pytest.fixture
    def streams(self):
        config = get_analysis_config("baseball", "training")
        bio = run_analyzer(BiomechanicalAnalyzer, FakePoseExtractor(), config, range(60))
        beh = run_analyzer(BehavioralAnalyzer, FakeFaceExtractor(), config, range(0, 60, 2))
        return bio, beh

    def test_missing_summary(self, streams):
        bio, beh = streams
        with pytest.raises(SynthesisError):
            synthesize(bio.frames, beh.frames, FPS, None, beh.summary, "baseball", "training")

    def test_full_session(self, streams):
        bio, beh = streams
        result = synthesize(bio.frames, beh.frames, FPS, bio.summary, beh.summary, "baseball", "training")

        assert len(result.timeline) == 60
        assert result.timeline_statistics() == {
            "total_rows": 60,
            "biomechanics_rows": 60,
            "behavioral_rows": 30,
            "aligned_rows": 30,
            "coverage": 1.0,
        }

        scores = result.composite_scores
        for value in (scores.championship_readiness, scores.overall_score, scores.synchronization):
            assert 0.0 <= value <= 100.0
        assert scores.elite_ready == (scores.championship_readiness >= 85.0)
        assert scores.improvement_potential <= 95.0

        priorities = [PRIORITY_ORDER.index(i.priority) for i in result.insights]
        assert priorities == sorted(priorities)

    def test_timeline_window(self, streams):
        bio, beh = streams
        result = synthesize(bio.frames, beh.frames, FPS, bio.summary, beh.summary, "baseball", "training")

        window = result.timeline_window(10)
        assert len(window) == 10
        assert window[0]["frame_number"] == 0
        assert window[-1]["frame_number"] == 59
        assert len(result.timeline_window(0)) == 60


class TestEndToEndSynchronization:

    def test_matching_curves_over_full_clip(self):
        sampler = InMemorySampler()
        config = get_analysis_config("baseball", "training")
        streams = {
            StreamKind.BIOMECHANICS: (CurveBiomechanicalAnalyzer, FakePoseExtractor()),
            StreamKind.BEHAVIORAL: (CurveBehavioralAnalyzer, FakeFaceExtractor()),
        }

        results = {}
        for kind, (analyzer_cls, extractor) in streams.items():
            plan = sampler.plan(CLIP_SECONDS, kind, FPS)
            analyzer = analyzer_cls(extractor, config)
            results[kind] = analyzer.run(sampler.extract("clip.mp4", plan), total=len(plan))
        bio = results[StreamKind.BIOMECHANICS]
        beh = results[StreamKind.BEHAVIORAL]

        assert sampler.get_adaptive_stride(CLIP_SECONDS, StreamKind.BIOMECHANICS) == 1
        assert bio.frames_analyzed == 600
        assert beh.frames_analyzed == 300
        assert [f.efficiency for f in bio.frames[:2]] == [None, None]
        assert all(f.valid for f in bio.frames + beh.frames)

        assert calculate_synchronization(bio.frames, beh.frames) == pytest.approx(1.0, abs=0.01)

        result = synthesize(bio.frames, beh.frames, FPS, bio.summary, beh.summary, "baseball", "training")
        assert result.composite_scores.synchronization == pytest.approx(100.0, abs=1.0)
        assert len(result.timeline) == 600

"""Tests for the biomechanical stream."""

import pytest

from fakes import FakePoseExtractor, pose_record, run_analyzer, samples
from vision_engine.analysis.biomechanics import (
    BiomechanicalAnalyzer,
    BiomechanicalFrame,
    BiomechanicalSummary,
    calculate_consistency,
    calculate_efficiency,
    calculate_power_metrics,
    calculate_timing_metrics,
    classify_phase,
    compute_joint_angles,
)
from vision_engine.analysis.config import get_analysis_config
from vision_engine.errors import FatalStreamError

BASEBALL = get_analysis_config("baseball", "training")
BASEBALL_RULES = BASEBALL.biomechanics.phase_rules


def frame(n, t, phase="setup", angles=None, point=None):
    return BiomechanicalFrame(
        frame_number=n,
        timestamp_seconds=t,
        joint_angles=angles or {},
        movement_phase=phase,
        confidence=0.9,
        valid=True,
        tracked_point=point,
    )


class TestPhaseClassification:

    def test_first_matching_rule_wins(self):
        assert classify_phase({"hip_rotation": 45.0, "elbow_angle": 120.0}, BASEBALL_RULES) == "load"

    def test_combined_bounds(self):
        assert classify_phase({"hip_rotation": 100.0, "elbow_angle": 60.0}, BASEBALL_RULES) == "contact"
        assert classify_phase({"hip_rotation": 100.0, "elbow_angle": 150.0}, BASEBALL_RULES) == "follow_through"

    def test_no_match_is_transition(self):
        assert classify_phase({}, BASEBALL_RULES) == "transition"
        assert classify_phase({"hip_rotation": 100.0}, BASEBALL_RULES) == "transition"


class TestJointAngles:

    def test_standing_pose(self):
        angles = compute_joint_angles(pose_record(0, 0.0), ("hip_rotation", "knee_flexion", "shoulder_tilt"))
        assert angles["hip_rotation"] == pytest.approx(43.6, abs=0.1)
        assert angles["knee_flexion"] > 170.0
        assert angles["shoulder_tilt"] == pytest.approx(0.0, abs=1e-6)

    def test_missing_regions_are_omitted(self):
        record = pose_record(0, 0.0)
        del record.regions["elbow"]
        angles = compute_joint_angles(record, ("elbow_angle", "hip_rotation"))
        assert "elbow_angle" not in angles
        assert "hip_rotation" in angles


class TestAggregates:

    def test_consistency_of_constant_angles(self):
        frames = [frame(i, i / 30, angles={"hip_rotation": 40.0}) for i in range(5)]
        assert calculate_consistency(frames, ("hip_rotation",)) == pytest.approx(1.0)

    def test_consistency_drops_with_spread(self):
        frames = [frame(i, i / 30, angles={"hip_rotation": 40.0 + 30.0 * (i % 2)}) for i in range(6)]
        assert calculate_consistency(frames, ("hip_rotation",)) == pytest.approx(1 - 15.0 / 180.0)

    def test_efficiency_of_smooth_motion(self):
        frames = [frame(i, i / 30, point=(0.1 * i, 0.5, 0.0)) for i in range(5)]
        assert calculate_efficiency(frames) == pytest.approx(1.0)

    def test_efficiency_needs_three_points(self):
        frames = [frame(i, i / 30, point=(0.1 * i, 0.5, 0.0)) for i in range(2)]
        assert calculate_efficiency(frames) == 0.5

    def test_power_without_power_phase(self):
        frames = [frame(i, i / 30, phase="load", angles={"hip_rotation": 40.0 + i, "elbow_angle": 90.0}) for i in range(5)]
        power = calculate_power_metrics(frames, "contact", ("hip_rotation", "elbow_angle"))
        assert power["power_score"] == 0.0
        assert power["power_phase_observed"] is False
        assert power["kinetic_chain_efficiency"] == 1.0

    def test_power_in_power_phase(self):
        frames = [
            frame(i, i / 10, phase="contact", angles={"hip_rotation": 90.0 + 36.0 * i}, point=(0.3 * i, 0.5, 0.0))
            for i in range(3)
        ]
        power = calculate_power_metrics(frames, "contact", ("hip_rotation", "elbow_angle"))
        assert power["rotation_velocity"] == pytest.approx(360.0)
        assert power["peak_segment_velocity"] == pytest.approx(3.0)
        assert power["power_score"] == pytest.approx(0.8)

    def test_timing_runs_do_not_merge_across_other_phases(self):
        frames = [frame(i, i / 10, phase="setup") for i in range(5)]
        frames.append(frame(5, 0.5, phase="transition"))
        frames += [frame(i, i / 10, phase="setup") for i in range(6, 10)]

        timing = calculate_timing_metrics(frames, BASEBALL.biomechanics.phases)

        assert timing["phase_durations"]["setup"] == pytest.approx(0.9)
        assert timing["rhythm_consistency"] == 0.5
        assert timing["tempo"] == pytest.approx(2.0)

    def test_timing_rhythm_of_even_phases(self):
        frames = [frame(i, i / 10, phase="load" if i < 3 else "stride") for i in range(6)]
        timing = calculate_timing_metrics(frames, BASEBALL.biomechanics.phases)
        assert timing["rhythm_consistency"] == pytest.approx(1.0)

    def test_timing_empty(self):
        assert calculate_timing_metrics([], BASEBALL.biomechanics.phases)["timing_score"] == 0.0


class TestBiomechanicalAnalyzer:

    def test_run(self):
        extractor = FakePoseExtractor(skip_frames={3})
        result = run_analyzer(BiomechanicalAnalyzer, extractor, BASEBALL, range(10))

        assert result.frames_analyzed == 10
        assert result.frames_valid == 9
        assert extractor.cleaned_up

        gap = result.frames[3]
        assert not gap.valid
        assert gap.movement_phase == "no_detection"

        summary = result.summary
        assert summary.phase_distribution == {"load": 100.0}
        assert summary.efficiency_score == pytest.approx(1.0, abs=0.01)
        assert summary.consistency_score == pytest.approx(1.0, abs=0.01)
        assert 0.0 <= summary.overall_score <= 1.0

    def test_frame_efficiency_uses_previous_valid_frames(self):
        result = run_analyzer(BiomechanicalAnalyzer, FakePoseExtractor(), BASEBALL, range(4))
        assert result.frames[0].efficiency is None
        assert result.frames[1].efficiency is None
        assert result.frames[2].efficiency == pytest.approx(1.0)

    def test_out_of_order_frames(self):
        analyzer = BiomechanicalAnalyzer(FakePoseExtractor(), BASEBALL)
        with pytest.raises(FatalStreamError):
            analyzer.run(samples([0, 2, 1]))

    def test_extractor_errors_become_gaps(self):
        class Flaky(FakePoseExtractor):
            def build(self, frame_number, timestamp_seconds):
                if frame_number == 1:
                    raise RuntimeError("inference failed")
                return super().build(frame_number, timestamp_seconds)

        result = run_analyzer(BiomechanicalAnalyzer, Flaky(), BASEBALL, range(3))
        assert [f.valid for f in result.frames] == [True, False, True]

    def test_summary_round_trip(self):
        result = run_analyzer(BiomechanicalAnalyzer, FakePoseExtractor(), BASEBALL, range(6))
        restored = BiomechanicalSummary.from_dict(result.summary.to_dict())
        assert restored == result.summary
        assert BiomechanicalFrame.from_dict(result.frames[2].to_dict()) == result.frames[2]

"""Tests for landmark records and angle math."""

import numpy as np
import pytest

from vision_engine.landmarks.base import LandmarkPoint, LandmarkRecord, joint_angle
from vision_engine.landmarks.mediapipe_face import FACIAL_REGIONS
from vision_engine.landmarks.mediapipe_pose import POSE_REGIONS


class TestJointAngle:

    def test_right_angle(self):
        assert joint_angle((1, 0, 0), (0, 0, 0), (0, 1, 0)) == pytest.approx(90.0)

    def test_straight_line(self):
        assert joint_angle((-1, 0, 0), (0, 0, 0), (2, 0, 0)) == pytest.approx(180.0)

    def test_three_dimensional(self):
        assert joint_angle((1, 0, 0), (0, 0, 0), (0, 0, 1)) == pytest.approx(90.0)

    def test_missing_point(self):
        assert joint_angle(None, (0, 0, 0), (1, 0, 0)) is None

    def test_zero_length_segment(self):
        assert joint_angle((0, 0, 0), (0, 0, 0), (1, 0, 0)) is None


class TestLandmarkRecord:

    def test_no_detection(self):
        record = LandmarkRecord.no_detection(12, 0.4)
        assert not record.detected
        assert record.confidence == 0.0
        assert record.point("wrist") is None
        assert record.region_array("wrist").shape == (0, 3)

    def test_region_access(self):
        record = LandmarkRecord(
            frame_number=0,
            timestamp_seconds=0.0,
            regions={"wrist": [LandmarkPoint(0.1, 0.2), LandmarkPoint(0.3, 0.4, 0.5)]},
            confidence=0.8,
        )
        assert record.point("wrist", 1).z == 0.5
        assert record.point("wrist", 2) is None
        np.testing.assert_allclose(record.region_array("wrist")[0], [0.1, 0.2, 0.0])
        assert record.to_dict()["regions"]["wrist"][1] == [0.3, 0.4, 0.5, 1.0]


class TestRegionTables:

    def test_pose_regions_are_left_right_pairs(self):
        for name, indices in POSE_REGIONS.items():
            if name != "head":
                assert len(indices) == 2

    def test_facial_regions_cover_required_set(self):
        assert {"left_eye", "right_eye", "left_eyebrow", "right_eyebrow", "mouth", "jaw", "nose"} <= set(FACIAL_REGIONS)

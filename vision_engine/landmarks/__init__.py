"""Landmark extraction adapters over external pose and face models."""

from vision_engine.landmarks.base import (
    LandmarkExtractor,
    LandmarkPoint,
    LandmarkRecord,
    joint_angle,
)
from vision_engine.landmarks.mediapipe_face import MediaPipeFaceExtractor
from vision_engine.landmarks.mediapipe_pose import MediaPipePoseExtractor

__all__ = [
    "LandmarkExtractor",
    "LandmarkPoint",
    "LandmarkRecord",
    "joint_angle",
    "MediaPipeFaceExtractor",
    "MediaPipePoseExtractor",
]

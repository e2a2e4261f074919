"""MediaPipe Pose Landmarker adapter for the biomechanical stream."""

import logging
from typing import Dict, List, Tuple

import numpy as np

from vision_engine.landmarks.base import (
    LandmarkExtractor,
    LandmarkPoint,
    LandmarkRecord,
    fetch_model,
)

logger = logging.getLogger(__name__)

MODEL_URLS = {
    0: "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_lite/float16/1/pose_landmarker_lite.task",
    1: "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_full/float16/1/pose_landmarker_full.task",
    2: "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_heavy/float16/1/pose_landmarker_heavy.task",
}

# Region -> (left index, right index) in the 33-point pose topology.
# Head is the nose only.
POSE_REGIONS: Dict[str, Tuple[int, ...]] = {
    "head": (0,),
    "shoulder": (11, 12),
    "elbow": (13, 14),
    "wrist": (15, 16),
    "hip": (23, 24),
    "knee": (25, 26),
    "ankle": (27, 28),
}


class MediaPipePoseExtractor(LandmarkExtractor):
    """
    Body landmark extractor using the MediaPipe Tasks Pose Landmarker.

    Produces paired (left, right) regions. Overall confidence is the mean
    visibility of the region points.
    """

    def __init__(
        self,
        min_detection_confidence: float = 0.5,
        model_complexity: int = 1,
    ):
        """
        Initialize the MediaPipe pose extractor.

        Args:
            min_detection_confidence: Minimum confidence for pose detection.
            model_complexity: Model complexity (0=lite, 1=full, 2=heavy).
        """
        super().__init__(min_detection_confidence)
        self.model_complexity = model_complexity
        self._landmarker = None
        self._mp = None

    @property
    def name(self) -> str:
        return "mediapipe_pose"

    @property
    def region_names(self) -> List[str]:
        return list(POSE_REGIONS)

    def initialize(self) -> None:
        """Initialize the MediaPipe Pose Landmarker."""
        if self._is_initialized:
            return

        import mediapipe as mp
        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        self._mp = mp
        url = MODEL_URLS.get(self.model_complexity, MODEL_URLS[1])
        model_path = fetch_model(url, url.rsplit("/", 1)[-1])

        options = vision.PoseLandmarkerOptions(
            base_options=python.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.IMAGE,
            num_poses=1,
            min_pose_detection_confidence=self.min_detection_confidence,
            output_segmentation_masks=False,
        )

        self._landmarker = vision.PoseLandmarker.create_from_options(options)
        self._is_initialized = True
        logger.info("MediaPipe Pose Landmarker initialized")

    def extract(
        self,
        frame: np.ndarray,
        frame_number: int,
        timestamp_seconds: float,
    ) -> LandmarkRecord:
        if not self._is_initialized:
            self.initialize()

        import cv2

        frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=frame_rgb)
        detection_result = self._landmarker.detect(mp_image)

        if not detection_result.pose_landmarks:
            logger.debug(f"No pose detected in frame {frame_number}")
            return LandmarkRecord.no_detection(frame_number, timestamp_seconds)

        landmarks = detection_result.pose_landmarks[0]
        regions = {}
        visibilities = []

        for region, indices in POSE_REGIONS.items():
            points = []
            for idx in indices:
                lm = landmarks[idx]
                visibility = float(getattr(lm, "visibility", 1.0) or 0.0)
                points.append(LandmarkPoint(x=lm.x, y=lm.y, z=lm.z, visibility=visibility))
                visibilities.append(visibility)
            regions[region] = points

        return LandmarkRecord(
            frame_number=frame_number,
            timestamp_seconds=timestamp_seconds,
            regions=regions,
            confidence=float(np.mean(visibilities)) if visibilities else 0.0,
        )

    def cleanup(self) -> None:
        """Clean up MediaPipe resources."""
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        self._is_initialized = False
        logger.debug("MediaPipe Pose Landmarker resources cleaned up")

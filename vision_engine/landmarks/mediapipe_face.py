"""MediaPipe Face Landmarker adapter for the behavioral stream."""

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

MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)

# Indices into the 478-point face mesh.
FACIAL_REGIONS: Dict[str, Tuple[int, ...]] = {
    "left_eye": (33, 133, 157, 158, 159, 160, 161, 173),
    "right_eye": (362, 263, 387, 388, 389, 390, 391, 398),
    "left_eyebrow": (46, 53, 52, 65, 55, 70, 63, 105, 66, 107),
    "right_eyebrow": (276, 283, 282, 295, 285, 300, 293, 334, 296, 336),
    "mouth": (61, 84, 17, 314, 405, 320, 307, 375, 321, 308, 324, 318, 402, 317, 14, 87, 178, 88, 95),
    "jaw": (172, 136, 150, 149, 176, 148, 152, 377, 400, 378, 379, 365, 397, 288, 361, 340),
    "nose": (1, 2, 5, 4, 19, 20, 94, 125, 235, 236, 3),
}


class MediaPipeFaceExtractor(LandmarkExtractor):
    """
    Facial landmark extractor using the MediaPipe Tasks Face Landmarker.

    The face mesh carries no per-point visibility, so confidence is the
    fraction of region points that fall inside the frame.
    """

    def __init__(self, min_detection_confidence: float = 0.5):
        super().__init__(min_detection_confidence)
        self._landmarker = None
        self._mp = None

    @property
    def name(self) -> str:
        return "mediapipe_face"

    @property
    def region_names(self) -> List[str]:
        return list(FACIAL_REGIONS)

    def initialize(self) -> None:
        """Initialize the MediaPipe Face Landmarker."""
        if self._is_initialized:
            return

        import mediapipe as mp
        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        self._mp = mp
        model_path = fetch_model(MODEL_URL, "face_landmarker.task")

        options = vision.FaceLandmarkerOptions(
            base_options=python.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.IMAGE,
            num_faces=1,
            min_face_detection_confidence=self.min_detection_confidence,
        )

        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        self._is_initialized = True
        logger.info("MediaPipe Face Landmarker initialized")

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

        if not detection_result.face_landmarks:
            logger.debug(f"No face detected in frame {frame_number}")
            return LandmarkRecord.no_detection(frame_number, timestamp_seconds)

        landmarks = detection_result.face_landmarks[0]
        regions = {}
        in_frame = 0
        total = 0

        for region, indices in FACIAL_REGIONS.items():
            points = []
            for idx in indices:
                lm = landmarks[idx]
                inside = 0.0 <= lm.x <= 1.0 and 0.0 <= lm.y <= 1.0
                points.append(LandmarkPoint(x=lm.x, y=lm.y, z=lm.z, visibility=1.0 if inside else 0.0))
                in_frame += int(inside)
                total += 1
            regions[region] = points

        return LandmarkRecord(
            frame_number=frame_number,
            timestamp_seconds=timestamp_seconds,
            regions=regions,
            confidence=in_frame / total if total else 0.0,
        )

    def cleanup(self) -> None:
        """Clean up MediaPipe resources."""
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        self._is_initialized = False
        logger.debug("MediaPipe Face Landmarker resources cleaned up")

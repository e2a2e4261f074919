"""Abstract base class for landmark extractors."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import requests

logger = logging.getLogger(__name__)

MODEL_CACHE_DIR = Path.home() / ".cache" / "mediapipe"


@dataclass
class LandmarkPoint:
    """
    A single detected landmark.

    Attributes:
        x: Normalized X coordinate (0-1 of frame width).
        y: Normalized Y coordinate (0-1 of frame height).
        z: Depth relative to the model origin.
        visibility: Detection visibility/confidence (0-1).
    """
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    def to_array(self) -> np.ndarray:
        """Convert to numpy array [x, y, z]."""
        return np.array([self.x, self.y, self.z], dtype=float)


@dataclass
class LandmarkRecord:
    """
    Extractor output for one frame.

    Attributes:
        frame_number: Source frame index.
        timestamp_seconds: Frame timestamp.
        regions: Named regions, each an ordered list of points.
        confidence: Overall confidence (0-1).
        detected: False for the "no detection" sentinel.
    """
    frame_number: int
    timestamp_seconds: float
    regions: Dict[str, List[LandmarkPoint]] = field(default_factory=dict)
    confidence: float = 0.0
    detected: bool = True

    @classmethod
    def no_detection(cls, frame_number: int, timestamp_seconds: float) -> "LandmarkRecord":
        """Sentinel record for a frame without a usable detection."""
        return cls(
            frame_number=frame_number,
            timestamp_seconds=timestamp_seconds,
            regions={},
            confidence=0.0,
            detected=False,
        )

    def region(self, name: str) -> List[LandmarkPoint]:
        """Points of a region, empty when the region is missing."""
        return self.regions.get(name, [])

    def point(self, region: str, index: int = 0) -> Optional[LandmarkPoint]:
        """Get one point of a region by position."""
        points = self.regions.get(region)
        if not points or index >= len(points):
            return None
        return points[index]

    def region_array(self, name: str) -> np.ndarray:
        """
        Get a region as an array.

        Returns:
            Array of shape (N, 3), empty (0, 3) when the region is missing.
        """
        points = self.regions.get(name)
        if not points:
            return np.zeros((0, 3))
        return np.stack([p.to_array() for p in points])

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "frame_number": self.frame_number,
            "timestamp_seconds": self.timestamp_seconds,
            "confidence": self.confidence,
            "detected": self.detected,
            "regions": {
                name: [[p.x, p.y, p.z, p.visibility] for p in points]
                for name, points in self.regions.items()
            },
        }


def joint_angle(
    a: Optional[Sequence[float]],
    b: Optional[Sequence[float]],
    c: Optional[Sequence[float]],
) -> Optional[float]:
    """
    Calculate the 3D angle at point b formed by points a-b-c.

    Args:
        a: First point (x, y, z).
        b: Vertex point.
        c: Third point.

    Returns:
        Angle in degrees, or None if a point is missing or a segment has
        zero length.
    """
    if a is None or b is None or c is None:
        return None

    ba = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
    bc = np.asarray(c, dtype=float) - np.asarray(b, dtype=float)

    norm = np.linalg.norm(ba) * np.linalg.norm(bc)
    if norm == 0:
        return None

    cosine_angle = np.clip(np.dot(ba, bc) / norm, -1.0, 1.0)
    return float(np.degrees(np.arccos(cosine_angle)))


class LandmarkExtractor(ABC):
    """
    Abstract base class for landmark extractors.

    An extractor is a pure function of (frame, timestamp): it keeps no
    cross-frame state, so one instance may be reused across frames and
    each stream owns its own instance.
    """

    def __init__(self, min_detection_confidence: float = 0.5):
        """
        Initialize the extractor.

        Args:
            min_detection_confidence: Minimum confidence for a detection.
        """
        self.min_detection_confidence = min_detection_confidence
        self._is_initialized = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the extractor."""
        pass

    @property
    @abstractmethod
    def region_names(self) -> List[str]:
        """Region names this extractor produces."""
        pass

    @abstractmethod
    def initialize(self) -> None:
        """
        Load the underlying model.

        This should be called before processing any frames.
        """
        pass

    @abstractmethod
    def extract(
        self,
        frame: np.ndarray,
        frame_number: int,
        timestamp_seconds: float,
    ) -> LandmarkRecord:
        """
        Extract landmarks from one frame.

        Args:
            frame: Input frame (BGR format from OpenCV).
            frame_number: Frame index for result tracking.
            timestamp_seconds: Frame timestamp.

        Returns:
            LandmarkRecord, or the no-detection sentinel.
        """
        pass

    def cleanup(self) -> None:
        """
        Clean up resources.

        Override this method to release any resources held by the model.
        """
        self._is_initialized = False

    def __enter__(self):
        """Context manager entry."""
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.cleanup()
        return False


def fetch_model(url: str, filename: str) -> str:
    """
    Download a MediaPipe task model into the local cache once.

    Args:
        url: Model download URL.
        filename: File name inside the cache directory.

    Returns:
        Local path to the model file.
    """
    MODEL_CACHE_DIR.mkdir(parents=True, exist_ok=True)
    model_path = MODEL_CACHE_DIR / filename

    if not model_path.exists():
        logger.info(f"Downloading MediaPipe model from {url}...")
        temp_path = model_path.with_suffix(".part")
        response = requests.get(url, stream=True, timeout=60)
        response.raise_for_status()
        with open(temp_path, "wb") as f:
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    f.write(chunk)
        temp_path.rename(model_path)
        logger.info(f"Model downloaded to {model_path}")

    return str(model_path)

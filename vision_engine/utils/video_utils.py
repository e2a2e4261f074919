"""OpenCV helpers: probe a clip and read a planned set of frames."""

import logging
from dataclasses import dataclass
from typing import Generator, Iterable, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class VideoInfo:
    """Container properties reported by the decoder."""
    path: str
    width: int
    height: int
    fps: float
    frame_count: int

    @property
    def duration_seconds(self) -> float:
        return self.frame_count / self.fps if self.fps > 0 else 0.0


def get_video_info(video_path: str) -> Optional[VideoInfo]:
    """
    Probe a video file.

    Args:
        video_path: Local path of the clip.

    Returns:
        VideoInfo, or None if OpenCV cannot open the file.
    """
    cap = cv2.VideoCapture(video_path)
    try:
        if not cap.isOpened():
            logger.error(f"Could not open video: {video_path}")
            return None
        return VideoInfo(
            path=video_path,
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=float(cap.get(cv2.CAP_PROP_FPS) or 0.0),
            frame_count=int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        )
    finally:
        cap.release()


class VideoProcessor:
    """
    Reads sampled frames from one clip.

    Frames are decoded sequentially while the requested numbers are
    contiguous; the decoder seeks only when the next requested frame is
    not the one it would read next.
    """

    def __init__(self, video_path: str):
        self.video_path = str(video_path)
        self._cap = None

    def open(self) -> None:
        """
        Raises:
            IOError: If OpenCV cannot open the file.
        """
        if self._cap is not None:
            return
        cap = cv2.VideoCapture(self.video_path)
        if not cap.isOpened():
            cap.release()
            raise IOError(f"Could not open video: {self.video_path}")
        self._cap = cap
        logger.debug(f"Opened video: {self.video_path}")

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def iter_frames_at(
        self,
        frame_numbers: Iterable[int],
    ) -> Generator[Tuple[int, Optional[np.ndarray]], None, None]:
        """
        Decode the given frames in the order supplied.

        Args:
            frame_numbers: Non-decreasing frame numbers.

        Yields:
            (frame_number, BGR image), with None for frames that fail to decode.
        """
        self.open()
        position = 0
        for frame_number in frame_numbers:
            if frame_number != position:
                self._cap.set(cv2.CAP_PROP_POS_FRAMES, frame_number)
                position = frame_number

            ok, image = self._cap.read()
            position += 1
            yield frame_number, image if ok else None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

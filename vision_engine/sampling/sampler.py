"""Adaptive frame sampler.

Each stream kind has its own stride table and frame cap, which is why the
biomechanical and behavioral streams end up with different frame-number
domains. Frame numbers are source video frame indices, so both domains are
comparable once the synthesis stage lays them over one timeline.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Generator, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from vision_engine.errors import DecodeError
from vision_engine.utils.video_utils import VideoProcessor

logger = logging.getLogger(__name__)


class StreamKind(str, Enum):
    """The two independent analysis streams."""
    BIOMECHANICS = "biomechanics"
    BEHAVIORAL = "behavioral"


@dataclass(frozen=True)
class SamplingPolicy:
    """
    Stride table for one stream kind.

    Attributes:
        rules: (max_duration_seconds, stride) pairs in ascending duration.
            Durations past the last rule reuse its stride.
        max_frames: Upper bound on planned frames.
    """
    rules: Tuple[Tuple[float, int], ...]
    max_frames: int

    def stride_for(self, duration_seconds: float) -> int:
        for max_duration, stride in self.rules:
            if duration_seconds <= max_duration:
                return stride
        return self.rules[-1][1]


DEFAULT_POLICIES: Dict[StreamKind, SamplingPolicy] = {
    StreamKind.BIOMECHANICS: SamplingPolicy(
        rules=((30, 1), (60, 2), (180, 3), (600, 5)),
        max_frames=1800,
    ),
    # Facial signals change slower than ballistic limb motion.
    StreamKind.BEHAVIORAL: SamplingPolicy(
        rules=((30, 2), (60, 3), (180, 5), (600, 8)),
        max_frames=900,
    ),
}


@dataclass(frozen=True)
class FramePlanEntry:
    """One planned frame: source index and its timestamp."""
    frame_number: int
    timestamp_seconds: float


@dataclass
class FrameSample:
    """
    A decoded frame handed to an analyzer.

    Attributes:
        frame_number: Source frame index.
        timestamp_seconds: frame_number / fps.
        image: Decoded BGR frame.
    """
    frame_number: int
    timestamp_seconds: float
    image: np.ndarray


class FrameSampler:
    """
    Plans and decodes the frames a stream analyzes.

    Example:
        sampler = FrameSampler()
        plan = sampler.plan(42.0, StreamKind.BIOMECHANICS, fps=30.0)
        for sample in sampler.extract("clip.mp4", plan):
            ...
    """

    def __init__(self, policies: Optional[Dict[StreamKind, SamplingPolicy]] = None):
        """
        Initialize the sampler.

        Args:
            policies: Per-stream sampling policies. Missing kinds use defaults.
        """
        self.policies = dict(DEFAULT_POLICIES)
        if policies:
            self.policies.update(policies)

    def get_adaptive_stride(self, duration_seconds: float, stream_kind: StreamKind) -> int:
        """Base stride for a clip of the given duration."""
        return self.policies[StreamKind(stream_kind)].stride_for(duration_seconds)

    def plan(
        self,
        duration_seconds: float,
        stream_kind: StreamKind,
        fps: float = 30.0,
    ) -> List[FramePlanEntry]:
        """
        Decide which frames a stream analyzes.

        The stride comes from the duration table. If the strided count would
        still exceed the cap, the stride is widened so the plan spans the
        whole clip without exceeding it.

        Args:
            duration_seconds: Video duration.
            stream_kind: Stream the plan is for.
            fps: Source frame rate.

        Returns:
            Entries in strictly increasing frame-number order.

        Raises:
            ValueError: On negative or non-finite duration or non-positive fps.
        """
        if not math.isfinite(duration_seconds) or duration_seconds < 0:
            raise ValueError(f"Invalid duration: {duration_seconds}")
        if fps <= 0:
            raise ValueError(f"Invalid fps: {fps}")

        policy = self.policies[StreamKind(stream_kind)]
        total_frames = int(duration_seconds * fps)
        if total_frames <= 0:
            return []

        stride = policy.stride_for(duration_seconds)
        if math.ceil(total_frames / stride) > policy.max_frames:
            stride = math.ceil(total_frames / policy.max_frames)

        frame_numbers = range(0, total_frames, stride)[: policy.max_frames]
        logger.debug(
            f"Planned {len(frame_numbers)} {StreamKind(stream_kind).value} frames "
            f"(stride={stride}, duration={duration_seconds:.1f}s)"
        )

        return [FramePlanEntry(n, n / fps) for n in frame_numbers]

    def extract(
        self,
        video_ref: str,
        plan: Sequence[FramePlanEntry],
    ) -> Generator[FrameSample, None, None]:
        """
        Lazily decode the planned frames.

        Each call decodes anew; the returned generator cannot be restarted.
        Unreadable individual frames are skipped.

        Args:
            video_ref: Local path of the video.
            plan: Output of plan().

        Yields:
            FrameSample per readable planned frame.

        Raises:
            DecodeError: If the video cannot be opened or no planned frame
                decodes.
        """
        timestamps = {entry.frame_number: entry.timestamp_seconds for entry in plan}
        decoded = 0

        for frame_number, image in self._read_frames(video_ref, [e.frame_number for e in plan]):
            if image is None:
                logger.warning(f"Could not read frame {frame_number} of {video_ref}")
                continue
            decoded += 1
            yield FrameSample(frame_number, timestamps[frame_number], image)

        if plan and decoded == 0:
            raise DecodeError(f"No frames could be decoded from {video_ref}", video_ref)

    def _read_frames(
        self,
        video_ref: str,
        frame_numbers: Iterable[int],
    ) -> Generator[Tuple[int, Optional[np.ndarray]], None, None]:
        processor = VideoProcessor(video_ref)
        try:
            processor.open()
        except IOError as e:
            raise DecodeError(str(e), video_ref) from e

        with processor:
            yield from processor.iter_frames_at(frame_numbers)

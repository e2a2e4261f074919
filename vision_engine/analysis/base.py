"""Shared frame loop for the two stream analyzers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from tqdm import tqdm

from vision_engine.analysis.config import AnalysisConfig
from vision_engine.errors import FatalStreamError
from vision_engine.landmarks.base import LandmarkExtractor, LandmarkRecord
from vision_engine.sampling.sampler import FrameSample, StreamKind
from vision_engine.utils.logging_config import StreamProgress

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.5


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a value into [low, high]."""
    return float(max(low, min(high, value)))


@dataclass
class StreamResult:
    """
    Outcome of one analyzer run.

    Attributes:
        stream: Stream that produced the result.
        frames: Per-frame metric frames in frame-number order.
        summary: Aggregate summary object with to_dict().
        frames_analyzed: Number of frames processed.
        frames_valid: Number of frames used for aggregation.
    """
    stream: StreamKind
    frames: List[Any] = field(default_factory=list)
    summary: Any = None
    frames_analyzed: int = 0
    frames_valid: int = 0

    def frame_dicts(self) -> List[Dict[str, Any]]:
        return [frame.to_dict() for frame in self.frames]


class StreamAnalyzer(ABC):
    """
    Base class for the biomechanical and behavioral analyzers.

    Runs the extractor over sampled frames in order, reduces each landmark
    record to a metric frame immediately and aggregates at the end. Landmark
    records and frame buffers are dropped as soon as they are reduced.
    """

    stream_kind: StreamKind

    def __init__(
        self,
        extractor: LandmarkExtractor,
        config: AnalysisConfig,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        show_progress: bool = False,
    ):
        """
        Initialize the analyzer.

        Args:
            extractor: Landmark extractor owned by this analyzer.
            config: Resolved analysis configuration.
            min_confidence: Frames below this confidence become gaps.
            show_progress: Whether to show a tqdm progress bar.
        """
        self.extractor = extractor
        self.config = config
        self.min_confidence = min_confidence
        self.show_progress = show_progress

    @abstractmethod
    def reset(self) -> None:
        """Clear per-run state before a new run."""
        pass

    @abstractmethod
    def process_record(self, record: LandmarkRecord) -> Any:
        """Reduce one landmark record to a metric frame."""
        pass

    @abstractmethod
    def summarize(self, frames: List[Any]) -> Any:
        """Aggregate metric frames into the stream summary."""
        pass

    def is_valid(self, record: LandmarkRecord) -> bool:
        return record.detected and record.confidence >= self.min_confidence

    def extract_landmarks(self, sample: FrameSample) -> LandmarkRecord:
        """
        Run the extractor on one sample.

        Extractor failures are absorbed as "no detection".
        """
        try:
            return self.extractor.extract(
                sample.image, sample.frame_number, sample.timestamp_seconds
            )
        except Exception as e:
            logger.warning(
                f"{self.extractor.name} failed on frame {sample.frame_number}: {e}"
            )
            return LandmarkRecord.no_detection(sample.frame_number, sample.timestamp_seconds)

    def run(
        self,
        samples: Iterable[FrameSample],
        checkpoint: Optional[Callable[[], None]] = None,
        total: int = 0,
    ) -> StreamResult:
        """
        Analyze a stream of samples.

        Args:
            samples: Frame samples in non-decreasing frame-number order.
            checkpoint: Called before every frame. Raises to abort the run
                (timeout or cancellation).
            total: Expected frame count for progress reporting.

        Returns:
            StreamResult with the per-frame series and summary.

        Raises:
            FatalStreamError: If samples arrive out of order.
        """
        self.reset()
        frames = []
        last_frame_number = -1
        progress = StreamProgress(logger, self.stream_kind.value, total)
        pbar = tqdm(total=total, desc=f"{self.stream_kind.value}") if self.show_progress else None

        self.extractor.initialize()
        try:
            for sample in samples:
                if checkpoint is not None:
                    checkpoint()

                if sample.frame_number < last_frame_number:
                    raise FatalStreamError(
                        f"Frame {sample.frame_number} arrived after {last_frame_number}"
                    )
                last_frame_number = sample.frame_number

                record = self.extract_landmarks(sample)
                frame = self.process_record(record)
                frames.append(frame)

                progress.frame_done(frame.valid)
                if pbar:
                    pbar.update(1)
        finally:
            if pbar:
                pbar.close()
            self.extractor.cleanup()

        progress.finish()
        summary = self.summarize(frames)
        valid = progress.valid
        logger.info(f"{self.stream_kind.value} stream overall score: {summary.overall_score:.3f}")

        return StreamResult(
            stream=self.stream_kind,
            frames=frames,
            summary=summary,
            frames_analyzed=len(frames),
            frames_valid=valid,
        )

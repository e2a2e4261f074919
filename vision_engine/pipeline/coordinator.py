"""Pipeline coordinator for dual-stream session analysis."""

import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from vision_engine.analysis.base import StreamAnalyzer, StreamResult
from vision_engine.analysis.behavioral import BehavioralAnalyzer, BehavioralFrame, BehavioralSummary
from vision_engine.analysis.biomechanics import BiomechanicalAnalyzer, BiomechanicalFrame, BiomechanicalSummary
from vision_engine.analysis.config import get_analysis_config
from vision_engine.database.models import AnalysisSession, SessionStatus, StreamStatus
from vision_engine.database.operations import STREAMS, DatabaseOperations
from vision_engine.database.schema import get_session_factory, init_db
from vision_engine.errors import (
    FatalStreamError,
    ReportExistsError,
    SessionCancelled,
    StreamTimeoutError,
    SynthesisError,
    TransientStreamError,
)
from vision_engine.landmarks.base import LandmarkExtractor
from vision_engine.landmarks.mediapipe_face import MediaPipeFaceExtractor
from vision_engine.landmarks.mediapipe_pose import MediaPipePoseExtractor
from vision_engine.pipeline.events import EventKind, StreamEvent, StreamEventBus, WorkMessage
from vision_engine.pipeline.fetcher import VideoFetcher
from vision_engine.pipeline.ingestion import ValidationLimits, validate_ingestion_payload
from vision_engine.sampling.sampler import FrameSampler, StreamKind
from vision_engine.synthesis.engine import SynthesisResult, synthesize
from vision_engine.synthesis.progression import calculate_progression
from vision_engine.utils.logging_config import get_logger

logger = get_logger(__name__)

ANALYZERS = {
    StreamKind.BIOMECHANICS: BiomechanicalAnalyzer,
    StreamKind.BEHAVIORAL: BehavioralAnalyzer,
}

DEFAULT_EXTRACTORS: Dict[StreamKind, Callable[[], LandmarkExtractor]] = {
    StreamKind.BIOMECHANICS: MediaPipePoseExtractor,
    StreamKind.BEHAVIORAL: MediaPipeFaceExtractor,
}

CANCEL_CHECK_INTERVAL = 30  # frames between database cancellation checks
WATCH_POLL_SECONDS = 5.0

CompletionListener = Callable[[str, str, Dict[str, Any]], None]


@dataclass
class PipelineConfig:
    """
    Configuration for the analysis pipeline.

    Attributes:
        database_url: Database connection URL.
        work_dir: Directory for fetched videos.
        max_retries: Maximum attempts per stream for transient failures.
        backoff_base: First retry delay in seconds, doubled per attempt.
        backoff_max: Upper bound of the retry delay.
        timeout_multiplier: Stream budget as a multiple of video duration.
        min_stream_timeout: Lower bound of the per-attempt stream budget.
        safety_timeout: Longest a session watcher waits for both streams.
        max_workers: Stream worker threads.
        chunk_size: Frames per persisted frame chunk.
        min_landmark_confidence: Frames below this confidence become gaps.
        report_timeline_rows: Timeline rows kept in the final report.
        show_progress: Whether to show tqdm progress bars.
        validation: Ingestion limits.
    """
    database_url: str = "sqlite:///data/vision_engine.db"
    work_dir: str = "data/videos"
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    timeout_multiplier: float = 2.0
    min_stream_timeout: float = 60.0
    safety_timeout: float = 3600.0
    max_workers: int = 4
    chunk_size: int = 100
    min_landmark_confidence: float = 0.5
    report_timeline_rows: int = 300
    show_progress: bool = False
    validation: ValidationLimits = field(default_factory=ValidationLimits)

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "PipelineConfig":
        """Build from the YAML config sections; missing keys keep defaults."""
        pipeline = cfg.get("pipeline") or {}
        config = cls(
            database_url=(cfg.get("database") or {}).get("url", cls.database_url),
            work_dir=(cfg.get("storage") or {}).get("work_dir", cls.work_dir),
            validation=ValidationLimits.from_dict(cfg.get("validation") or {}),
        )
        for key in (
            "max_retries", "backoff_base", "backoff_max", "timeout_multiplier",
            "min_stream_timeout", "safety_timeout", "max_workers", "chunk_size",
            "min_landmark_confidence", "report_timeline_rows", "show_progress",
        ):
            if key in pipeline:
                setattr(config, key, type(getattr(config, key))(pipeline[key]))
        return config


class PipelineCoordinator:
    """
    Runs the two analysis streams of a session and dispatches synthesis.

    Stream state lives in the database and changes only through
    compare-and-set updates, so duplicate or late notifications are safe.
    Each session gets a watcher that waits on the session's event channel
    and dispatches synthesis once both streams are completed.

    Example:
        with PipelineCoordinator(PipelineConfig()) as coordinator:
            accepted = coordinator.ingest(payload)
            coordinator.wait(accepted["session_id"])
            report = coordinator.get_report(accepted["session_id"])
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        extractor_factories: Optional[Dict[StreamKind, Callable[[], LandmarkExtractor]]] = None,
        sampler: Optional[FrameSampler] = None,
        fetcher: Optional[VideoFetcher] = None,
        event_bus: Optional[StreamEventBus] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the coordinator.

        Args:
            config: Pipeline configuration. Uses defaults if not provided.
            extractor_factories: Extractor factory per stream. A fresh
                extractor is built for every stream attempt.
            sampler: Frame sampler.
            fetcher: Video fetcher.
            event_bus: Event channels shared with stream workers.
            sleep: Used for retry backoff.
        """
        self.config = config or PipelineConfig()
        self.extractor_factories = dict(DEFAULT_EXTRACTORS)
        if extractor_factories:
            self.extractor_factories.update(extractor_factories)
        self.sampler = sampler or FrameSampler()
        self.event_bus = event_bus or StreamEventBus()
        self._fetcher = fetcher
        self._sleep = sleep

        # Initialize components (lazy loading)
        self._db_ops: Optional[DatabaseOperations] = None
        self._engine = None

        self._workers = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="stream"
        )
        self._watchers = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="watcher"
        )
        self._stop_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()
        self._listeners: List[CompletionListener] = []

    @property
    def db_ops(self) -> DatabaseOperations:
        """Get or create the database operations instance."""
        if self._db_ops is None:
            self._engine = init_db(self.config.database_url)
            self._db_ops = DatabaseOperations(get_session_factory(self._engine))
        return self._db_ops

    @property
    def fetcher(self) -> VideoFetcher:
        """Get or create the video fetcher."""
        if self._fetcher is None:
            Path(self.config.work_dir).mkdir(parents=True, exist_ok=True)
            self._fetcher = VideoFetcher(
                download_dir=self.config.work_dir,
                show_progress=self.config.show_progress,
            )
        return self._fetcher

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Register a callback receiving (session_id, subject_id, composite_scores)."""
        self._listeners.append(listener)

    # ==================== Ingestion ====================

    def ingest(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate an upload notification and start both streams.

        Args:
            payload: Upload notification body.

        Returns:
            Acceptance dict with session_id and estimated processing time.

        Raises:
            ValidationError: If the payload is invalid. No session is created.
        """
        metadata = validate_ingestion_payload(payload, self.config.validation)
        analysis_config = get_analysis_config(metadata.sport, metadata.session_type)

        record = self.db_ops.create_session(
            subject_id=metadata.subject_id,
            video_ref=metadata.video_ref,
            sport=metadata.sport,
            session_type=metadata.session_type,
            fps=metadata.fps,
            duration_seconds=metadata.duration_seconds,
            width=metadata.width,
            height=metadata.height,
            video_format=metadata.video_format,
            public_id=metadata.public_id,
        )
        session_id = record.session_id

        with self._lock:
            self._stop_events[session_id] = threading.Event()
        # Subscribe before dispatch so no completion event is missed.
        channel = self.event_bus.subscribe(session_id)

        for kind in (StreamKind.BIOMECHANICS, StreamKind.BEHAVIORAL):
            message = WorkMessage(
                session_id=session_id,
                subject_id=metadata.subject_id,
                video_ref=metadata.video_ref,
                fps=metadata.fps,
                duration_seconds=metadata.duration_seconds,
                stream=kind,
                analysis_config=analysis_config,
            )
            self._workers.submit(self._run_stream, message)
        self._watchers.submit(self._watch, session_id, channel)

        logger.info(
            f"Accepted session {session_id} for subject {metadata.subject_id} "
            f"({metadata.sport}/{metadata.session_type}, {metadata.duration_seconds:.1f}s)"
        )

        return {
            "valid": True,
            "session_id": session_id,
            "status": record.status.value,
            "estimated_processing_seconds": metadata.estimated_processing_seconds,
        }

    # ==================== Stream Work ====================

    def stream_timeout(self, duration_seconds: float) -> float:
        """Wall-clock budget for one stream attempt."""
        return max(self.config.min_stream_timeout, self.config.timeout_multiplier * duration_seconds)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.config.backoff_base * (2 ** (attempt - 1)), self.config.backoff_max)

    def _run_stream(self, message: WorkMessage) -> None:
        """Run one stream to a terminal state, retrying transient failures."""
        session_id = message.session_id
        stream = message.stream.value

        if not self.db_ops.start_stream(session_id, stream):
            logger.info(f"Stream {stream} of session {session_id} not started (already handled)")
            return
        self._publish(session_id, EventKind.STARTED, stream)

        attempt = 0
        while True:
            attempt += 1
            if not self.db_ops.record_attempt(session_id, stream):
                logger.info(f"Stream {stream} of session {session_id} is no longer processing")
                return

            try:
                result = self._analyze(message)

            except SessionCancelled as e:
                self.db_ops.fail_stream(session_id, stream, str(e))
                self._publish(session_id, EventKind.CANCELLED, stream, str(e))
                return

            except TransientStreamError as e:
                if attempt >= self.config.max_retries:
                    error = f"{e} (after {attempt} attempts)"
                    self.db_ops.fail_stream(session_id, stream, error)
                    self._publish(session_id, EventKind.FAILED, stream, error)
                    return
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Stream {stream} of session {session_id} failed "
                    f"(attempt {attempt}/{self.config.max_retries}), retrying in {delay:.1f}s: {e}"
                )
                self._sleep(delay)
                continue

            except FatalStreamError as e:
                self.db_ops.fail_stream(session_id, stream, str(e))
                self._publish(session_id, EventKind.FAILED, stream, str(e))
                return

            except Exception as e:
                logger.exception(f"Unexpected error in stream {stream} of session {session_id}")
                error = f"{type(e).__name__}: {e}"
                self.db_ops.fail_stream(session_id, stream, error)
                self._publish(session_id, EventKind.FAILED, stream, error)
                return

            completed = self.db_ops.complete_stream(
                session_id,
                stream,
                summary=result.summary.to_dict(),
                frames=result.frame_dicts(),
                overall_score=result.summary.overall_score,
                frames_analyzed=result.frames_analyzed,
                frames_valid=result.frames_valid,
                chunk_size=self.config.chunk_size,
            )
            if completed:
                self._publish(session_id, EventKind.COMPLETED, stream)
            else:
                logger.info(f"Results of stream {stream} for session {session_id} discarded")
            return

    def _analyze(self, message: WorkMessage) -> StreamResult:
        """
        One attempt of a stream: fetch, plan, decode and analyze.

        Raises:
            StreamTimeoutError: If the attempt exceeds its budget.
            SessionCancelled: If the session is cancelled meanwhile.
        """
        session_id = message.session_id
        deadline = time.monotonic() + self.stream_timeout(message.duration_seconds)
        stop_event = self._stop_events.get(session_id)
        frames_seen = 0

        def checkpoint() -> None:
            nonlocal frames_seen
            if time.monotonic() > deadline:
                raise StreamTimeoutError(
                    f"{message.stream.value} stream exceeded "
                    f"{self.stream_timeout(message.duration_seconds):.0f}s"
                )
            if stop_event is not None and stop_event.is_set():
                raise SessionCancelled("Session was cancelled")
            if frames_seen % CANCEL_CHECK_INTERVAL == 0 and self.db_ops.is_stopped(session_id):
                raise SessionCancelled("Session was cancelled")
            frames_seen += 1

        checkpoint()
        local_path = self.fetcher.fetch(message.video_ref, name=session_id)
        plan = self.sampler.plan(message.duration_seconds, message.stream, message.fps)

        analyzer: StreamAnalyzer = ANALYZERS[message.stream](
            self.extractor_factories[message.stream](),
            message.analysis_config,
            min_confidence=self.config.min_landmark_confidence,
            show_progress=self.config.show_progress,
        )
        return analyzer.run(
            self.sampler.extract(local_path, plan),
            checkpoint=checkpoint,
            total=len(plan),
        )

    def _publish(self, session_id: str, kind: EventKind, stream: str, error: Optional[str] = None) -> None:
        self.event_bus.publish(StreamEvent(session_id=session_id, kind=kind, stream=stream, error=error))

    # ==================== Synthesis Dispatch ====================

    def _watch(self, session_id: str, channel: "queue.Queue[StreamEvent]") -> None:
        """
        Wait for both streams of a session, then settle it.

        An error while settling is logged and the session is re-read on the
        next event or poll, so the safety timeout still applies.
        """
        deadline = time.monotonic() + self.config.safety_timeout
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._expire(session_id)
                    return
                try:
                    event = channel.get(timeout=min(remaining, WATCH_POLL_SECONDS))
                except queue.Empty:
                    event = None
                if event is not None and event.kind is EventKind.STARTED:
                    continue
                try:
                    if self.handle_stream_event(session_id):
                        return
                except Exception:
                    logger.exception(f"Could not settle session {session_id}, will retry")
        except Exception:
            logger.exception(f"Watcher for session {session_id} failed")
        finally:
            self.event_bus.unsubscribe(session_id)
            with self._lock:
                self._stop_events.pop(session_id, None)

    def _expire(self, session_id: str) -> None:
        error = f"Streams did not finish within {self.config.safety_timeout:.0f}s"
        self._signal_stop(session_id)
        for stream in STREAMS:
            self.db_ops.fail_stream(session_id, stream, error)
        self.db_ops.fail_session(session_id, error)

    def _signal_stop(self, session_id: str) -> None:
        with self._lock:
            stop_event = self._stop_events.pop(session_id, None)
        if stop_event is not None:
            stop_event.set()

    def handle_stream_event(self, session_id: str) -> bool:
        """
        Re-read the session after a stream notification and settle it.

        Safe to call any number of times, concurrently and from outside the
        watcher: a failed stream fails the session, and when both streams are
        completed exactly one caller wins the dispatch compare-and-set and
        runs synthesis. A stream failure leaves the sibling stream running to
        its own terminal state.

        Returns:
            True once the session needs nothing more from the caller.
        """
        record = self.db_ops.get_session(session_id)
        if record is None:
            logger.warning(f"Notification for unknown session {session_id}")
            return True
        if record.status is not SessionStatus.PENDING:
            return True

        for stream in STREAMS:
            if record.stream_status(stream) is StreamStatus.FAILED:
                error = f"{stream} stream failed: {record.stream_error(stream)}"
                self.db_ops.fail_session(session_id, error, failed_stream=stream)
                return True

        if all(record.stream_status(s) is StreamStatus.COMPLETED for s in STREAMS):
            if self.db_ops.try_mark_synthesis_dispatched(session_id):
                self.run_synthesis(session_id)
            return True

        return False

    def run_synthesis(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Synthesize a dispatched session and store its final report.

        Any error from loading the stream results through storing the report
        fails the session; the stream summaries stay in place.

        Returns:
            The report, or None if synthesis failed or a report exists.
        """
        try:
            record = self.db_ops.get_session(session_id)
            bio_data = self.db_ops.get_summary(session_id, StreamKind.BIOMECHANICS.value)
            beh_data = self.db_ops.get_summary(session_id, StreamKind.BEHAVIORAL.value)
            bio_summary = BiomechanicalSummary.from_dict(bio_data) if bio_data else None
            beh_summary = BehavioralSummary.from_dict(beh_data) if beh_data else None
            bio_frames = [
                BiomechanicalFrame.from_dict(f)
                for f in self.db_ops.get_frames(session_id, StreamKind.BIOMECHANICS.value)
            ]
            beh_frames = [
                BehavioralFrame.from_dict(f)
                for f in self.db_ops.get_frames(session_id, StreamKind.BEHAVIORAL.value)
            ]
            result = synthesize(
                bio_frames,
                beh_frames,
                record.fps,
                bio_summary,
                beh_summary,
                record.sport,
                record.session_type,
            )
            report = self.build_report(record, result, bio_summary, beh_summary)
            composites = result.composite_scores
            self.db_ops.save_report(
                session_id,
                report,
                championship_readiness=composites.championship_readiness,
                overall_score=composites.overall_score,
            )
        except ReportExistsError as e:
            logger.warning(str(e))
            return None
        except SynthesisError as e:
            self._fail_synthesis(session_id, str(e))
            return None
        except Exception as e:
            logger.exception(f"Synthesis of session {session_id} failed")
            self._fail_synthesis(session_id, f"Synthesis failed: {type(e).__name__}: {e}")
            return None

        logger.info(
            f"Session {session_id} completed: readiness={composites.championship_readiness:.1f} "
            f"({composites.readiness_level})"
        )
        self._notify(session_id, record.subject_id, composites.to_dict())
        return report

    def _fail_synthesis(self, session_id: str, error: str) -> None:
        self.db_ops.fail_session(session_id, error, from_statuses=(SessionStatus.ANALYZING,))

    def build_report(
        self,
        record: AnalysisSession,
        result: SynthesisResult,
        bio_summary: BiomechanicalSummary,
        beh_summary: BehavioralSummary,
    ) -> Dict[str, Any]:
        """Assemble the final report document."""
        return {
            "session_id": record.session_id,
            "subject_id": record.subject_id,
            "sport": record.sport,
            "session_type": record.session_type,
            "video": {
                "ref": record.video_ref,
                "public_id": record.public_id,
                "fps": record.fps,
                "duration_seconds": record.duration_seconds,
                "width": record.width,
                "height": record.height,
                "format": record.video_format,
            },
            "composite_scores": result.composite_scores.to_dict(),
            "biomechanics": bio_summary.to_dict(),
            "behavioral": beh_summary.to_dict(),
            "critical_moments": [m.to_dict() for m in result.critical_moments],
            "insights": [i.to_dict() for i in result.insights],
            "timeline_statistics": result.timeline_statistics(),
            "timeline": result.timeline_window(self.config.report_timeline_rows),
            "generated_at": datetime.utcnow().isoformat(),
        }

    def _notify(self, session_id: str, subject_id: str, composites: Dict[str, Any]) -> None:
        for listener in self._listeners:
            try:
                listener(session_id, subject_id, composites)
            except Exception:
                logger.exception(f"Completion listener failed for session {session_id}")

    # ==================== Control and Read API ====================

    def cancel(self, session_id: str) -> bool:
        """
        Cancel a session whose synthesis has not been dispatched.

        Running stream workers stop at their next frame.

        Returns:
            True if the session was cancelled by this call.
        """
        cancelled = self.db_ops.cancel_session(session_id)
        if cancelled:
            self._signal_stop(session_id)
            self.event_bus.publish(StreamEvent(session_id=session_id, kind=EventKind.CANCELLED))
        return cancelled

    def get_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        record = self.db_ops.get_session(session_id)
        return record.to_dict() if record else None

    def get_report(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.db_ops.get_report(session_id)

    def get_subject_history(self, subject_id: str, days: Optional[int] = 30) -> Dict[str, Any]:
        """
        Sessions of a subject and their progression.

        Args:
            subject_id: Subject to look up.
            days: Look-back window; None for all sessions.

        Returns:
            Dict with the sessions (oldest first) and a progression summary.
        """
        since = datetime.utcnow() - timedelta(days=days) if days is not None else None
        sessions = self.db_ops.get_subject_sessions(subject_id, since)
        progression = calculate_progression(sessions)

        for entry in sessions:
            entry["created_at"] = entry["created_at"].isoformat() if entry["created_at"] else None

        return {
            "subject_id": subject_id,
            "days": days,
            "sessions": sessions,
            "progression": progression,
        }

    def wait(self, session_id: str, timeout: Optional[float] = None, poll_interval: float = 0.05) -> Optional[Dict[str, Any]]:
        """
        Block until the session is completed or failed.

        Returns:
            The final status dict, or the current one on timeout.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            status = self.get_status(session_id)
            if status is None or SessionStatus(status["status"]).is_terminal:
                return status
            if deadline is not None and time.monotonic() >= deadline:
                return status
            time.sleep(poll_interval)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release resources."""
        self._workers.shutdown(wait=wait)
        self._watchers.shutdown(wait=wait)
        if self._fetcher is not None:
            self._fetcher.close()
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._db_ops = None
        logger.debug("Pipeline coordinator shut down")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.shutdown()
        return False

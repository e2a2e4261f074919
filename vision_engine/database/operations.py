"""Database operations for analysis sessions.

Every status change is a single conditional UPDATE whose WHERE clause
encodes the allowed source state. The affected row count tells the caller
whether its transition won, so no in-process lock guards session state and
workers in other processes can share the same database.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from vision_engine.database.models import (
    AnalysisSession,
    FinalReportRecord,
    SessionStatus,
    StreamFrameChunk,
    StreamStatus,
    StreamSummaryRecord,
)
from vision_engine.database.schema import session_scope
from vision_engine.errors import ReportExistsError, VisionEngineError

logger = logging.getLogger(__name__)

STREAMS = ("biomechanics", "behavioral")
DEFAULT_CHUNK_SIZE = 100


def _stream_name(stream: Any) -> str:
    name = str(getattr(stream, "value", stream))
    if name not in STREAMS:
        raise ValueError(f"Unknown stream: {stream}")
    return name


def _status_column(stream: str):
    return getattr(AnalysisSession, f"{stream}_status")


class DatabaseOperations:
    """
    Database operations handler for analysis sessions.

    Each method runs in its own short transaction.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize database operations.

        Args:
            session_factory: Factory producing SQLAlchemy sessions.
        """
        self.session_factory = session_factory

    def _conditional_update(self, *criteria, **values) -> bool:
        values["updated_at"] = datetime.utcnow()
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(AnalysisSession)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ==================== Session Operations ====================

    def create_session(
        self,
        subject_id: str,
        video_ref: str,
        sport: str,
        session_type: str,
        fps: float,
        duration_seconds: float,
        width: Optional[int] = None,
        height: Optional[int] = None,
        video_format: Optional[str] = None,
        public_id: Optional[str] = None,
    ) -> AnalysisSession:
        """
        Create a new session with both streams pending.

        Returns:
            Created AnalysisSession instance.
        """
        record = AnalysisSession(
            subject_id=subject_id,
            video_ref=video_ref,
            public_id=public_id,
            sport=sport,
            session_type=session_type,
            fps=fps,
            duration_seconds=duration_seconds,
            width=width,
            height=height,
            video_format=video_format,
            biomechanics_status=StreamStatus.PENDING,
            behavioral_status=StreamStatus.PENDING,
            status=SessionStatus.PENDING,
        )
        with session_scope(self.session_factory) as session:
            session.add(record)
        logger.debug(f"Created session: {record}")
        return record

    def get_session(self, session_id: str) -> Optional[AnalysisSession]:
        """Get a session by its id."""
        with session_scope(self.session_factory) as session:
            return session.get(AnalysisSession, session_id)

    def is_stopped(self, session_id: str) -> bool:
        """True if the session was cancelled or does not exist."""
        with session_scope(self.session_factory) as session:
            row = session.execute(
                select(AnalysisSession.cancelled)
                .where(AnalysisSession.session_id == session_id)
            ).first()
            if row is None:
                return True
            return bool(row.cancelled)

    def fail_session(
        self,
        session_id: str,
        error: str,
        failed_stream: Optional[str] = None,
        from_statuses: Sequence[SessionStatus] = (SessionStatus.PENDING,),
    ) -> bool:
        """
        Mark the session failed.

        Args:
            session_id: Session to fail.
            error: Message exposed to readers.
            failed_stream: Stream whose failure caused this, if any.
            from_statuses: Statuses the session may be failed from.

        Returns:
            True if this call performed the transition.
        """
        changed = self._conditional_update(
            AnalysisSession.session_id == session_id,
            AnalysisSession.status.in_(from_statuses),
            status=SessionStatus.FAILED,
            failed_stream=failed_stream,
            error_message=error,
            completed_at=datetime.utcnow(),
        )
        if changed:
            logger.info(f"Session {session_id} failed: {error}")
        return changed

    def cancel_session(self, session_id: str) -> bool:
        """
        Cancel a session that has not dispatched synthesis.

        Fails the session and every stream not yet terminal in one
        transaction.

        Returns:
            True if the session was cancelled by this call.
        """
        now = datetime.utcnow()
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(AnalysisSession)
                .where(
                    AnalysisSession.session_id == session_id,
                    AnalysisSession.status == SessionStatus.PENDING,
                    AnalysisSession.synthesis_dispatched.is_(False),
                )
                .values(
                    cancelled=True,
                    status=SessionStatus.FAILED,
                    error_message="Session cancelled",
                    updated_at=now,
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            for stream in STREAMS:
                column = _status_column(stream)
                session.execute(
                    update(AnalysisSession)
                    .where(
                        AnalysisSession.session_id == session_id,
                        column.in_((StreamStatus.PENDING, StreamStatus.PROCESSING)),
                    )
                    .values({column.key: StreamStatus.FAILED, f"{stream}_error": "Session cancelled"})
                    .execution_options(synchronize_session=False)
                )

        logger.info(f"Session {session_id} cancelled")
        return True

    def try_mark_synthesis_dispatched(self, session_id: str) -> bool:
        """
        Compare-and-set guarding synthesis dispatch.

        Succeeds only while both streams are completed, synthesis has not
        been dispatched and the session is still pending. Moves the session
        to analyzing.

        Returns:
            True for exactly one caller per session.
        """
        return self._conditional_update(
            AnalysisSession.session_id == session_id,
            AnalysisSession.biomechanics_status == StreamStatus.COMPLETED,
            AnalysisSession.behavioral_status == StreamStatus.COMPLETED,
            AnalysisSession.synthesis_dispatched.is_(False),
            AnalysisSession.cancelled.is_(False),
            AnalysisSession.status == SessionStatus.PENDING,
            synthesis_dispatched=True,
            status=SessionStatus.ANALYZING,
        )

    # ==================== Stream Operations ====================

    def start_stream(self, session_id: str, stream: str) -> bool:
        """Move a stream pending -> processing."""
        stream = _stream_name(stream)
        column = _status_column(stream)
        return self._conditional_update(
            AnalysisSession.session_id == session_id,
            column == StreamStatus.PENDING,
            AnalysisSession.cancelled.is_(False),
            **{column.key: StreamStatus.PROCESSING},
        )

    def record_attempt(self, session_id: str, stream: str, error: Optional[str] = None) -> bool:
        """Count an attempt of a processing stream and keep its last error."""
        stream = _stream_name(stream)
        column = _status_column(stream)
        attempts = getattr(AnalysisSession, f"{stream}_attempts")
        values = {attempts.key: attempts + 1}
        if error is not None:
            values[f"{stream}_error"] = error
        return self._conditional_update(
            AnalysisSession.session_id == session_id,
            column == StreamStatus.PROCESSING,
            **values,
        )

    def fail_stream(self, session_id: str, stream: str, error: str) -> bool:
        """Move a non-terminal stream to failed."""
        stream = _stream_name(stream)
        column = _status_column(stream)
        changed = self._conditional_update(
            AnalysisSession.session_id == session_id,
            column.in_((StreamStatus.PENDING, StreamStatus.PROCESSING)),
            **{column.key: StreamStatus.FAILED, f"{stream}_error": error},
        )
        if changed:
            logger.warning(f"Stream {stream} of session {session_id} failed: {error}")
        return changed

    def complete_stream(
        self,
        session_id: str,
        stream: str,
        summary: Dict[str, Any],
        frames: List[Dict[str, Any]],
        overall_score: float,
        frames_analyzed: int,
        frames_valid: int,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> bool:
        """
        Persist a stream's results and move it processing -> completed.

        The status change, summary and frame chunks are written in one
        transaction; nothing is written if the transition loses.

        Returns:
            True if the stream was completed by this call.
        """
        stream = _stream_name(stream)
        column = _status_column(stream)

        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(AnalysisSession)
                .where(
                    AnalysisSession.session_id == session_id,
                    column == StreamStatus.PROCESSING,
                )
                .values({column.key: StreamStatus.COMPLETED, f"{stream}_error": None, "updated_at": datetime.utcnow()})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                return False

            record = StreamSummaryRecord(
                session_id=session_id,
                stream=stream,
                overall_score=overall_score,
                frames_analyzed=frames_analyzed,
                frames_valid=frames_valid,
            )
            record.set_summary(summary)
            session.add(record)

            for index, start in enumerate(range(0, len(frames), chunk_size)):
                batch = frames[start:start + chunk_size]
                chunk = StreamFrameChunk(
                    session_id=session_id,
                    stream=stream,
                    chunk_index=index,
                    start_frame=batch[0]["frame_number"],
                    end_frame=batch[-1]["frame_number"],
                    frame_count=len(batch),
                )
                chunk.set_frames(batch)
                session.add(chunk)

        logger.debug(f"Stored {stream} results for session {session_id}: {len(frames)} frames")
        return True

    def get_summary(self, session_id: str, stream: str) -> Optional[Dict[str, Any]]:
        """Get a stream summary, or None if the stream has not completed."""
        stream = _stream_name(stream)
        with session_scope(self.session_factory) as session:
            record = session.scalar(
                select(StreamSummaryRecord).where(
                    StreamSummaryRecord.session_id == session_id,
                    StreamSummaryRecord.stream == stream,
                )
            )
            return record.get_summary() if record else None

    def get_frames(self, session_id: str, stream: str) -> List[Dict[str, Any]]:
        """Reassemble a stream's per-frame series from its chunks."""
        stream = _stream_name(stream)
        with session_scope(self.session_factory) as session:
            chunks = session.scalars(
                select(StreamFrameChunk)
                .where(
                    StreamFrameChunk.session_id == session_id,
                    StreamFrameChunk.stream == stream,
                )
                .order_by(StreamFrameChunk.chunk_index)
            ).all()
            frames = []
            for chunk in chunks:
                frames.extend(chunk.get_frames())
            return frames

    # ==================== Report Operations ====================

    def save_report(
        self,
        session_id: str,
        report: Dict[str, Any],
        championship_readiness: float,
        overall_score: float,
    ) -> FinalReportRecord:
        """
        Write the final report and complete the session.

        Raises:
            ReportExistsError: If the session already has a report.
            VisionEngineError: If the session is not analyzing.
        """
        now = datetime.utcnow()
        record = FinalReportRecord(
            session_id=session_id,
            championship_readiness=championship_readiness,
            overall_score=overall_score,
        )
        record.set_report(report)

        try:
            with session_scope(self.session_factory) as session:
                existing = session.scalar(
                    select(FinalReportRecord.report_id).where(FinalReportRecord.session_id == session_id)
                )
                if existing is not None:
                    raise ReportExistsError(f"Session {session_id} already has a report")

                result = session.execute(
                    update(AnalysisSession)
                    .where(
                        AnalysisSession.session_id == session_id,
                        AnalysisSession.status == SessionStatus.ANALYZING,
                    )
                    .values(status=SessionStatus.COMPLETED, updated_at=now, completed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise VisionEngineError(f"Session {session_id} is not analyzing")

                session.add(record)
        except IntegrityError as e:
            raise ReportExistsError(f"Session {session_id} already has a report") from e

        logger.info(f"Stored final report for session {session_id}")
        return record

    def get_report(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get the final report of a session."""
        with session_scope(self.session_factory) as session:
            record = session.scalar(
                select(FinalReportRecord).where(FinalReportRecord.session_id == session_id)
            )
            return record.get_report() if record else None

    # ==================== History Operations ====================

    def get_subject_sessions(
        self,
        subject_id: str,
        since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Sessions of a subject with their composite scores, oldest first.

        Args:
            subject_id: Subject to look up.
            since: Only sessions created at or after this time.

        Returns:
            Session status dicts with "scores" (None until completed).
        """
        with session_scope(self.session_factory) as session:
            query = (
                select(AnalysisSession, FinalReportRecord)
                .select_from(AnalysisSession)
                .outerjoin(FinalReportRecord, FinalReportRecord.session_id == AnalysisSession.session_id)
                .where(AnalysisSession.subject_id == subject_id)
                .order_by(AnalysisSession.created_at)
            )
            if since is not None:
                query = query.where(AnalysisSession.created_at >= since)

            history = []
            for record, report in session.execute(query).all():
                entry = record.to_dict()
                entry["created_at"] = record.created_at
                entry["scores"] = report.get_report().get("composite_scores") if report else None
                history.append(entry)
            return history

    # ==================== Statistics and Utility ====================

    def get_database_stats(self) -> Dict[str, int]:
        """
        Get statistics about the database contents.

        Returns:
            Dictionary with counts per table and per session status.
        """
        with session_scope(self.session_factory) as session:
            stats = {
                "sessions": session.scalar(select(func.count(AnalysisSession.session_id))),
                "stream_summaries": session.scalar(select(func.count(StreamSummaryRecord.summary_id))),
                "frame_chunks": session.scalar(select(func.count(StreamFrameChunk.chunk_id))),
                "final_reports": session.scalar(select(func.count(FinalReportRecord.report_id))),
            }
            for status in SessionStatus:
                stats[f"sessions_{status.value}"] = session.scalar(
                    select(func.count(AnalysisSession.session_id)).where(AnalysisSession.status == status)
                )
            return stats

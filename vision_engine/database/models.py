"""SQLAlchemy models for analysis sessions and their results."""

import enum
import json
import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class StreamStatus(enum.Enum):
    """Per-stream lifecycle. Moves forward only."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamStatus.COMPLETED, StreamStatus.FAILED)


class SessionStatus(enum.Enum):
    """Overall session lifecycle."""
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


def _new_session_id() -> str:
    return str(uuid.uuid4())


class AnalysisSession(Base):
    """
    One ingested video and its analysis lifecycle.

    Only status, error and report-related fields change after creation.

    Attributes:
        session_id: UUID of the session.
        subject_id: Athlete the video belongs to.
        video_ref: Source reference (URL or path) from ingestion.
        sport: Sport of the session.
        session_type: training, game or historical.
        biomechanics_status: Status of the biomechanical stream.
        behavioral_status: Status of the behavioral stream.
        status: Overall status.
        synthesis_dispatched: Set exactly once by the dispatch compare-and-set.
        cancelled: Set when the session is cancelled before dispatch.
    """
    __tablename__ = "analysis_sessions"

    session_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_session_id)
    subject_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    video_ref: Mapped[str] = mapped_column(String(1000), nullable=False)
    public_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sport: Mapped[str] = mapped_column(String(30), nullable=False)
    session_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Video metadata
    fps: Mapped[float] = mapped_column(Float, nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    video_format: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Stream state
    biomechanics_status: Mapped[StreamStatus] = mapped_column(Enum(StreamStatus), default=StreamStatus.PENDING, nullable=False)
    behavioral_status: Mapped[StreamStatus] = mapped_column(Enum(StreamStatus), default=StreamStatus.PENDING, nullable=False)
    biomechanics_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    behavioral_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    biomechanics_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    behavioral_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Session state
    status: Mapped[SessionStatus] = mapped_column(Enum(SessionStatus), default=SessionStatus.PENDING, nullable=False, index=True)
    synthesis_dispatched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    failed_stream: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    summaries: Mapped[List["StreamSummaryRecord"]] = relationship("StreamSummaryRecord", back_populates="session", cascade="all, delete-orphan")
    frame_chunks: Mapped[List["StreamFrameChunk"]] = relationship("StreamFrameChunk", back_populates="session", cascade="all, delete-orphan")
    report: Mapped[Optional["FinalReportRecord"]] = relationship("FinalReportRecord", back_populates="session", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_session_subject_created", "subject_id", "created_at"),
    )

    def stream_status(self, stream: str) -> StreamStatus:
        return getattr(self, f"{stream}_status")

    def stream_error(self, stream: str) -> Optional[str]:
        return getattr(self, f"{stream}_error")

    def to_dict(self) -> dict:
        """Status view exposed by the read API."""
        return {
            "session_id": self.session_id,
            "subject_id": self.subject_id,
            "video_ref": self.video_ref,
            "sport": self.sport,
            "session_type": self.session_type,
            "fps": self.fps,
            "duration_seconds": self.duration_seconds,
            "status": self.status.value,
            "streams": {
                "biomechanics": {
                    "status": self.biomechanics_status.value,
                    "attempts": self.biomechanics_attempts,
                    "error": self.biomechanics_error,
                },
                "behavioral": {
                    "status": self.behavioral_status.value,
                    "attempts": self.behavioral_attempts,
                    "error": self.behavioral_error,
                },
            },
            "synthesis_dispatched": self.synthesis_dispatched,
            "cancelled": self.cancelled,
            "failed_stream": self.failed_stream,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<AnalysisSession(session_id={self.session_id}, subject={self.subject_id}, "
            f"status={self.status.value}, bio={self.biomechanics_status.value}, "
            f"beh={self.behavioral_status.value})>"
        )


class StreamSummaryRecord(Base):
    """Aggregate summary of one completed stream."""
    __tablename__ = "stream_summaries"

    summary_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_sessions.session_id"), nullable=False, index=True)
    stream: Mapped[str] = mapped_column(String(20), nullable=False)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False)
    frames_analyzed: Mapped[int] = mapped_column(Integer, nullable=False)
    frames_valid: Mapped[int] = mapped_column(Integer, nullable=False)
    summary_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    session: Mapped["AnalysisSession"] = relationship("AnalysisSession", back_populates="summaries")

    __table_args__ = (
        UniqueConstraint("session_id", "stream", name="uq_summary_session_stream"),
    )

    def get_summary(self) -> dict:
        """Parse summary from JSON."""
        return json.loads(self.summary_json)

    def set_summary(self, summary: dict) -> None:
        """Set summary as JSON."""
        self.summary_json = json.dumps(summary)

    def __repr__(self) -> str:
        return f"<StreamSummaryRecord(session={self.session_id}, stream={self.stream}, overall={self.overall_score:.3f})>"


class StreamFrameChunk(Base):
    """
    A contiguous chunk of one stream's per-frame metric series.

    Chunks are append-only and only bound row size.
    """
    __tablename__ = "stream_frame_chunks"

    chunk_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_sessions.session_id"), nullable=False)
    stream: Mapped[str] = mapped_column(String(20), nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_frame: Mapped[int] = mapped_column(Integer, nullable=False)
    end_frame: Mapped[int] = mapped_column(Integer, nullable=False)
    frame_count: Mapped[int] = mapped_column(Integer, nullable=False)
    frames_json: Mapped[str] = mapped_column(Text, nullable=False)

    session: Mapped["AnalysisSession"] = relationship("AnalysisSession", back_populates="frame_chunks")

    __table_args__ = (
        UniqueConstraint("session_id", "stream", "chunk_index", name="uq_chunk_session_stream_index"),
        Index("idx_chunk_session_stream", "session_id", "stream"),
    )

    def get_frames(self) -> List[dict]:
        """Parse frames from JSON."""
        return json.loads(self.frames_json)

    def set_frames(self, frames: List[dict]) -> None:
        """Set frames as JSON."""
        self.frames_json = json.dumps(frames)


class FinalReportRecord(Base):
    """The immutable final report of a session. At most one per session."""
    __tablename__ = "final_reports"

    report_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_sessions.session_id"), nullable=False, unique=True)
    championship_readiness: Mapped[float] = mapped_column(Float, nullable=False)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False)
    report_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    session: Mapped["AnalysisSession"] = relationship("AnalysisSession", back_populates="report")

    def get_report(self) -> Any:
        """Parse report from JSON."""
        return json.loads(self.report_json)

    def set_report(self, report: dict) -> None:
        """Set report as JSON."""
        self.report_json = json.dumps(report)

    def __repr__(self) -> str:
        return f"<FinalReportRecord(session={self.session_id}, readiness={self.championship_readiness:.1f})>"

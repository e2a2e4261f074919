"""Persistence for sessions, stream results and final reports."""

from vision_engine.database.models import (
    AnalysisSession,
    Base,
    FinalReportRecord,
    SessionStatus,
    StreamFrameChunk,
    StreamStatus,
    StreamSummaryRecord,
)
from vision_engine.database.operations import DatabaseOperations
from vision_engine.database.schema import get_engine, get_session_factory, init_db, session_scope

__all__ = [
    "AnalysisSession",
    "Base",
    "DatabaseOperations",
    "FinalReportRecord",
    "SessionStatus",
    "StreamFrameChunk",
    "StreamStatus",
    "StreamSummaryRecord",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]

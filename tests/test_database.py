"""Tests for conditional state transitions and result storage."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from vision_engine.database.models import SessionStatus, StreamStatus
from vision_engine.errors import ReportExistsError, VisionEngineError

STREAMS = ("biomechanics", "behavioral")


def new_session(db_ops, subject_id="ath42"):
    return db_ops.create_session(
        subject_id=subject_id,
        video_ref="/videos/clip.mp4",
        sport="baseball",
        session_type="training",
        fps=30.0,
        duration_seconds=2.0,
    ).session_id


def frames(count):
    return [{"frame_number": n, "valid": True} for n in range(count)]


def complete(db_ops, session_id, stream, count=4, chunk_size=100):
    assert db_ops.start_stream(session_id, stream)
    return db_ops.complete_stream(
        session_id, stream, {"overall_score": 0.8}, frames(count), 0.8, count, count, chunk_size=chunk_size
    )


class TestStreamTransitions:

    def test_new_session(self, db_ops):
        record = db_ops.get_session(new_session(db_ops))
        assert record.status is SessionStatus.PENDING
        assert record.biomechanics_status is StreamStatus.PENDING
        assert record.behavioral_status is StreamStatus.PENDING
        assert not record.synthesis_dispatched

    def test_forward_only(self, db_ops):
        sid = new_session(db_ops)

        assert not db_ops.complete_stream(sid, "biomechanics", {}, frames(1), 0.5, 1, 1)
        assert db_ops.start_stream(sid, "biomechanics")
        assert not db_ops.start_stream(sid, "biomechanics")
        assert db_ops.complete_stream(sid, "biomechanics", {}, frames(1), 0.5, 1, 1)
        assert not db_ops.start_stream(sid, "biomechanics")
        assert db_ops.get_session(sid).biomechanics_status is StreamStatus.COMPLETED

    def test_single_terminal_transition(self, db_ops):
        sid = new_session(db_ops)
        complete(db_ops, sid, "biomechanics")

        assert not db_ops.fail_stream(sid, "biomechanics", "late failure")
        assert not db_ops.complete_stream(sid, "biomechanics", {}, frames(1), 0.5, 1, 1)
        assert db_ops.get_summary(sid, "biomechanics") == {"overall_score": 0.8}

    def test_attempts(self, db_ops):
        sid = new_session(db_ops)
        assert not db_ops.record_attempt(sid, "behavioral")

        db_ops.start_stream(sid, "behavioral")
        assert db_ops.record_attempt(sid, "behavioral")
        assert db_ops.record_attempt(sid, "behavioral", error="Connection reset")

        record = db_ops.get_session(sid)
        assert record.behavioral_attempts == 2
        assert record.behavioral_error == "Connection reset"

    def test_unknown_stream(self, db_ops):
        with pytest.raises(ValueError):
            db_ops.start_stream(new_session(db_ops), "audio")

    def test_frame_chunks(self, db_ops):
        sid = new_session(db_ops)
        complete(db_ops, sid, "behavioral", count=7, chunk_size=3)

        assert db_ops.get_frames(sid, "behavioral") == frames(7)
        assert db_ops.get_frames(sid, "biomechanics") == []
        assert db_ops.get_database_stats()["frame_chunks"] == 3


class TestSessionTransitions:

    def test_synthesis_guard_requires_both_streams(self, db_ops):
        sid = new_session(db_ops)
        complete(db_ops, sid, "biomechanics")
        assert not db_ops.try_mark_synthesis_dispatched(sid)

        complete(db_ops, sid, "behavioral")
        assert db_ops.try_mark_synthesis_dispatched(sid)
        assert not db_ops.try_mark_synthesis_dispatched(sid)
        assert db_ops.get_session(sid).status is SessionStatus.ANALYZING

    def test_synthesis_guard_is_exclusive(self, db_ops):
        sid = new_session(db_ops)
        for stream in STREAMS:
            complete(db_ops, sid, stream)

        barrier = threading.Barrier(8)

        def contend(_):
            barrier.wait()
            return db_ops.try_mark_synthesis_dispatched(sid)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(contend, range(8)))

        assert results.count(True) == 1

    def test_cancel_before_dispatch(self, db_ops):
        sid = new_session(db_ops)
        complete(db_ops, sid, "biomechanics")
        db_ops.start_stream(sid, "behavioral")

        assert db_ops.cancel_session(sid)
        record = db_ops.get_session(sid)
        assert record.cancelled
        assert record.status is SessionStatus.FAILED
        assert record.biomechanics_status is StreamStatus.COMPLETED
        assert record.behavioral_status is StreamStatus.FAILED
        assert db_ops.is_stopped(sid)
        assert not db_ops.cancel_session(sid)

    def test_cancel_after_dispatch(self, db_ops):
        sid = new_session(db_ops)
        for stream in STREAMS:
            complete(db_ops, sid, stream)
        db_ops.try_mark_synthesis_dispatched(sid)

        assert not db_ops.cancel_session(sid)
        assert not db_ops.is_stopped(sid)

    def test_cancelled_session_blocks_dispatch(self, db_ops):
        sid = new_session(db_ops)
        db_ops.cancel_session(sid)
        assert not db_ops.start_stream(sid, "biomechanics")
        assert not db_ops.try_mark_synthesis_dispatched(sid)

    def test_fail_session_once(self, db_ops):
        sid = new_session(db_ops)
        assert db_ops.fail_session(sid, "boom", failed_stream="behavioral")
        assert not db_ops.fail_session(sid, "boom again")

        record = db_ops.get_session(sid)
        assert record.failed_stream == "behavioral"
        assert record.error_message == "boom"
        assert not db_ops.is_stopped(sid)

    def test_unknown_session_is_stopped(self, db_ops):
        assert db_ops.is_stopped("missing")


class TestReports:

    def _analyzing(self, db_ops, subject_id="ath42"):
        sid = new_session(db_ops, subject_id)
        for stream in STREAMS:
            complete(db_ops, sid, stream)
        assert db_ops.try_mark_synthesis_dispatched(sid)
        return sid

    def test_report_requires_analyzing(self, db_ops):
        sid = new_session(db_ops)
        with pytest.raises(VisionEngineError, match="not analyzing"):
            db_ops.save_report(sid, {"session_id": sid}, 80.0, 75.0)
        assert db_ops.get_report(sid) is None

    def test_single_report(self, db_ops):
        sid = self._analyzing(db_ops)
        db_ops.save_report(sid, {"session_id": sid}, 80.0, 75.0)

        record = db_ops.get_session(sid)
        assert record.status is SessionStatus.COMPLETED
        assert record.completed_at is not None
        assert db_ops.get_report(sid) == {"session_id": sid}

        with pytest.raises(ReportExistsError):
            db_ops.save_report(sid, {"session_id": sid, "again": True}, 80.0, 75.0)
        assert db_ops.get_report(sid) == {"session_id": sid}

    def test_subject_sessions(self, db_ops):
        done = self._analyzing(db_ops)
        db_ops.save_report(done, {"composite_scores": {"championship_readiness": 80.0}}, 80.0, 75.0)
        pending = new_session(db_ops)
        new_session(db_ops, subject_id="someone_else")

        history = db_ops.get_subject_sessions("ath42")
        assert [entry["session_id"] for entry in history] == [done, pending]
        assert history[0]["scores"] == {"championship_readiness": 80.0}
        assert history[1]["scores"] is None
        assert isinstance(history[0]["created_at"], datetime)

        assert db_ops.get_subject_sessions("ath42", since=datetime.utcnow() + timedelta(days=1)) == []

    def test_stats(self, db_ops):
        sid = self._analyzing(db_ops)
        db_ops.save_report(sid, {}, 80.0, 75.0)
        new_session(db_ops)

        stats = db_ops.get_database_stats()
        assert stats["sessions"] == 2
        assert stats["final_reports"] == 1
        assert stats["stream_summaries"] == 2
        assert stats["sessions_completed"] == 1
        assert stats["sessions_pending"] == 1

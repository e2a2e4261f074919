"""Per-session stream event channels."""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from vision_engine.analysis.config import AnalysisConfig
from vision_engine.sampling.sampler import StreamKind

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StreamEvent:
    """A stream status change published to the session channel."""
    session_id: str
    kind: EventKind
    stream: Optional[str] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)


class StreamEventBus:
    """
    Explicit event channels, one queue per subscribed session.

    Events for a session without a subscriber are dropped; the session
    record remains the source of truth and the watcher re-reads it.
    """

    def __init__(self):
        self._channels: Dict[str, "queue.Queue[StreamEvent]"] = {}
        self._lock = threading.Lock()

    def subscribe(self, session_id: str) -> "queue.Queue[StreamEvent]":
        with self._lock:
            return self._channels.setdefault(session_id, queue.Queue())

    def unsubscribe(self, session_id: str) -> None:
        with self._lock:
            self._channels.pop(session_id, None)

    def publish(self, event: StreamEvent) -> None:
        with self._lock:
            channel = self._channels.get(event.session_id)
        if channel is None:
            logger.debug(f"No subscriber for {event.kind.value} event of {event.session_id}")
            return
        channel.put(event)


@dataclass
class WorkMessage:
    """One unit of stream work dispatched for a session."""
    session_id: str
    subject_id: str
    video_ref: str
    fps: float
    duration_seconds: float
    stream: StreamKind
    analysis_config: AnalysisConfig

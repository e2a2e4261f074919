"""Ingestion, stream dispatch and synthesis coordination."""

from vision_engine.pipeline.coordinator import PipelineConfig, PipelineCoordinator
from vision_engine.pipeline.events import EventKind, StreamEvent, StreamEventBus, WorkMessage
from vision_engine.pipeline.fetcher import VideoFetcher
from vision_engine.pipeline.ingestion import ValidationLimits, VideoMetadata, validate_ingestion_payload

__all__ = [
    "EventKind",
    "PipelineConfig",
    "PipelineCoordinator",
    "StreamEvent",
    "StreamEventBus",
    "ValidationLimits",
    "VideoFetcher",
    "VideoMetadata",
    "WorkMessage",
    "validate_ingestion_payload",
]

"""Utility modules for the analysis engine."""

from vision_engine.utils.logging_config import LoggingSettings, StreamProgress, get_logger, setup_logging
from vision_engine.utils.video_utils import VideoInfo, VideoProcessor, get_video_info

__all__ = [
    "LoggingSettings",
    "setup_logging",
    "get_logger",
    "StreamProgress",
    "VideoInfo",
    "VideoProcessor",
    "get_video_info",
]

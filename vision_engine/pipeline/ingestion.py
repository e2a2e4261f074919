"""Validation of inbound video notifications."""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from vision_engine.analysis.config import SUPPORTED_SESSION_TYPES, SUPPORTED_SPORTS
from vision_engine.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30.0
DEFAULT_SPORT = "baseball"
DEFAULT_SESSION_TYPE = "training"
SUBJECT_TAG_PREFIX = "player_"


@dataclass
class ValidationLimits:
    """
    Limits applied to inbound videos.

    Attributes:
        formats: Accepted container formats.
        max_duration_seconds: Longest accepted clip.
        min_resolution: Minimum of width and height, in pixels.
    """
    formats: Tuple[str, ...] = ("mp4", "mov", "avi", "webm")
    max_duration_seconds: float = 600.0
    min_resolution: int = 720

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationLimits":
        limits = cls()
        if "formats" in data:
            limits.formats = tuple(str(f).lower() for f in data["formats"])
        if "max_duration_seconds" in data:
            limits.max_duration_seconds = float(data["max_duration_seconds"])
        if "min_resolution" in data:
            limits.min_resolution = int(data["min_resolution"])
        return limits


@dataclass
class VideoMetadata:
    """Validated metadata of an inbound video."""
    video_ref: str
    subject_id: str
    sport: str
    session_type: str
    video_format: str
    duration_seconds: float
    width: int
    height: int
    fps: float
    public_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @property
    def estimated_processing_seconds(self) -> float:
        return 2.0 * self.duration_seconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _number(payload: Dict[str, Any], key: str, errors: List[str]) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        errors.append(f"Missing {key}")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number):
        errors.append(f"Invalid {key}: {value!r}")
        return None
    return number


def _subject_id(payload: Dict[str, Any], custom: Dict[str, Any]) -> Optional[str]:
    if custom.get("player_id"):
        return str(custom["player_id"])
    for tag in payload.get("tags") or []:
        if isinstance(tag, str) and tag.startswith(SUBJECT_TAG_PREFIX) and len(tag) > len(SUBJECT_TAG_PREFIX):
            return tag[len(SUBJECT_TAG_PREFIX):]
    return None


def validate_ingestion_payload(
    payload: Dict[str, Any],
    limits: Optional[ValidationLimits] = None,
) -> VideoMetadata:
    """
    Validate an upload notification and extract video metadata.

    All problems are collected before raising so the caller gets the full
    list in one response.

    Args:
        payload: Notification body (public_id, secure_url, resource_type,
            format, duration, width, height, frame_rate, tags, context).
        limits: Validation limits; defaults when omitted.

    Returns:
        VideoMetadata for a valid payload.

    Raises:
        ValidationError: If anything is wrong with the payload.
    """
    limits = limits or ValidationLimits()
    errors: List[str] = []

    if not isinstance(payload, dict):
        raise ValidationError(["Payload must be an object"])

    if payload.get("resource_type", "video") != "video":
        errors.append(f"Unsupported resource type: {payload.get('resource_type')}")

    video_ref = payload.get("secure_url") or payload.get("url")
    if not video_ref:
        errors.append("Missing video URL")

    video_format = str(payload.get("format") or "").lower()
    if video_format not in limits.formats:
        errors.append(
            f"Unsupported format: {video_format or 'unknown'}. Supported: {', '.join(limits.formats)}"
        )

    duration = _number(payload, "duration", errors)
    if duration is not None:
        if duration <= 0:
            errors.append("Duration must be positive")
        elif duration > limits.max_duration_seconds:
            errors.append(
                f"Video too long: {duration:.0f}s. Maximum: {limits.max_duration_seconds:.0f}s"
            )

    width = _number(payload, "width", errors)
    height = _number(payload, "height", errors)
    if width is not None and height is not None and min(width, height) < limits.min_resolution:
        errors.append(
            f"Resolution too low: {int(width)}x{int(height)}. Minimum: {limits.min_resolution}p"
        )

    fps = payload.get("frame_rate") or DEFAULT_FPS
    try:
        fps = float(fps)
        if not math.isfinite(fps) or fps <= 0:
            raise ValueError
    except (TypeError, ValueError):
        errors.append(f"Invalid frame_rate: {payload.get('frame_rate')!r}")
        fps = DEFAULT_FPS

    custom = ((payload.get("context") or {}).get("custom") or {})
    subject_id = _subject_id(payload, custom)
    if not subject_id:
        errors.append("Missing subject id (context.custom.player_id or a player_ tag)")

    sport = str(custom.get("sport") or DEFAULT_SPORT).lower()
    if sport not in SUPPORTED_SPORTS:
        errors.append(f"Unsupported sport: {sport}")

    session_type = str(custom.get("session_type") or DEFAULT_SESSION_TYPE).lower()
    if session_type not in SUPPORTED_SESSION_TYPES:
        errors.append(f"Unsupported session type: {session_type}")

    if errors:
        logger.warning(f"Rejected ingestion payload {payload.get('public_id')}: {errors}")
        raise ValidationError(errors)

    return VideoMetadata(
        video_ref=video_ref,
        subject_id=subject_id,
        sport=sport,
        session_type=session_type,
        video_format=video_format,
        duration_seconds=duration,
        width=int(width),
        height=int(height),
        fps=fps,
        public_id=payload.get("public_id"),
        tags=list(payload.get("tags") or []),
    )

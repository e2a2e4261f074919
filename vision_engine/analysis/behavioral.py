"""Behavioral stream: facial micro-expressions, stability and composure.

All indicators are geometric measurements on the face mesh, expressed
relative to the inter-ocular distance so they do not depend on how large
the face is in the frame.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from vision_engine.analysis.base import StreamAnalyzer, clamp
from vision_engine.analysis.config import BehavioralConfig, focus_region_names
from vision_engine.landmarks.base import LandmarkRecord
from vision_engine.sampling.sampler import StreamKind

logger = logging.getLogger(__name__)

EXPRESSIONS = ("confidence", "stress", "concentration", "determination", "composure")
REQUIRED_REGIONS = (
    "left_eye", "right_eye", "left_eyebrow", "right_eyebrow", "mouth", "jaw", "nose",
)

CHARACTER_WEIGHTS = {
    "confidence": 0.25,
    "pressure_response": 0.25,
    "emotional_stability": 0.2,
    "concentration": 0.15,
    "mental_resilience": 0.15,
}
COMPOSURE_WEIGHTS = {
    "window_composure": 0.35,
    "emotional_control": 0.25,
    "stress_recovery": 0.2,
    "consistency": 0.2,
}

EYE_OPEN_RATIO = 0.35
MOTION_SCALE = 50.0
DEFORMATION_SCALE = 10.0
# Mean landmark motion (normalized image units) -> composure variance units.
MOTION_VARIANCE_SCALE = 1000.0

STRESS_EVENT_LEVEL = 0.7
STRESS_RECOVERY_LEVEL = 0.5
ROLLING_FRAMES = 5
# Position of landmark 152 (chin) in the jaw region.
CHIN_INDEX = 6
EXPRESSION_FREQUENCY_LEVEL = 0.6

COMPOSURE_GRADES = (
    (0.9, "Elite Championship Composure"),
    (0.8, "Excellent Composure"),
    (0.7, "Good Composure"),
    (0.6, "Developing Composure"),
)


def calculate_composure_resilience(variance: float, pressure_level: float) -> float:
    """
    Composure of one window on a 0-100 scale.

    Higher landmark variance means less composure; the penalty grows with
    the pressure of the window.

    Args:
        variance: Landmark motion variance of the window.
        pressure_level: Pressure of the window, 0-100.

    Returns:
        Score in [0, 100], monotonically decreasing in variance.
    """
    pressure = clamp(pressure_level, 0.0, 100.0)
    return clamp(100.0 - max(variance, 0.0) * (1.2 + 0.01 * pressure), 0.0, 100.0)


def composure_grade(score: float) -> str:
    for threshold, label in COMPOSURE_GRADES:
        if score >= threshold:
            return label
    return "Needs Composure Development"


def _xy(record: LandmarkRecord, region: str) -> np.ndarray:
    return record.region_array(region)[:, :2]


def _aspect_ratio(points: np.ndarray) -> float:
    width = float(np.ptp(points[:, 0]))
    return float(np.ptp(points[:, 1])) / width if width > 0 else 0.0


def facial_indicators(record: LandmarkRecord) -> Optional[Dict[str, float]]:
    """
    Geometric indicators of one face.

    Returns:
        Indicator values in [0, 1], or None when a required region is
        missing or the face has no measurable scale.
    """
    regions = {name: _xy(record, name) for name in REQUIRED_REGIONS}
    if any(len(points) == 0 for points in regions.values()):
        return None

    left_eye_c = regions["left_eye"].mean(axis=0)
    right_eye_c = regions["right_eye"].mean(axis=0)
    scale = float(np.linalg.norm(left_eye_c - right_eye_c))
    if scale <= 0:
        return None

    ear_left = _aspect_ratio(regions["left_eye"])
    ear_right = _aspect_ratio(regions["right_eye"])
    eye_openness = clamp((ear_left + ear_right) / 2.0 / EYE_OPEN_RATIO)

    mouth = regions["mouth"]
    lip_compression = clamp(1.0 - _aspect_ratio(mouth) / 0.6)
    corner_l, corner_r = mouth[np.argmin(mouth[:, 0])], mouth[np.argmax(mouth[:, 0])]
    mouth_symmetry = clamp(1.0 - abs(corner_l[1] - corner_r[1]) / (0.25 * scale))

    # Last listed brow points are the inner ends.
    brow_gap = float(np.linalg.norm(regions["left_eyebrow"][-1] - regions["right_eyebrow"][-1])) / scale
    brow_furrow = clamp((0.7 - brow_gap) / 0.4)

    brow_height = (
        (left_eye_c[1] - regions["left_eyebrow"][:, 1].mean())
        + (right_eye_c[1] - regions["right_eyebrow"][:, 1].mean())
    ) / 2.0 / scale
    brow_lowering = clamp((0.45 - brow_height) / 0.3)

    chin = regions["jaw"][min(CHIN_INDEX, len(regions["jaw"]) - 1)]
    jaw_drop = (chin[1] - mouth[:, 1].mean()) / scale
    jaw_tension = clamp((0.9 - jaw_drop) / 0.4)
    jaw_set = clamp(1.0 - 4.0 * abs(chin[0] - regions["nose"][0][0]) / scale)

    return {
        "eye_openness": eye_openness,
        "eye_narrowing": 1.0 - eye_openness,
        "facial_balance": clamp(1.0 - abs(ear_left - ear_right) / 0.15),
        "mouth_symmetry": mouth_symmetry,
        "lip_compression": lip_compression,
        "lip_press": 0.8 * lip_compression,
        "brow_furrow": brow_furrow,
        "brow_lowering": brow_lowering,
        "jaw_tension": jaw_tension,
        "jaw_set": jaw_set,
        "scale": scale,
    }


def expression_scores(indicators: Dict[str, float], stillness: Optional[float]) -> Dict[str, float]:
    """Average indicators into the five micro-expression scores."""
    composure_parts = [indicators["facial_balance"]]
    if stillness is not None:
        composure_parts.append(stillness)

    scores = {
        "confidence": np.mean([indicators["mouth_symmetry"], indicators["jaw_set"], indicators["eye_openness"]]),
        "stress": np.mean([indicators["brow_furrow"], indicators["lip_compression"], indicators["jaw_tension"]]),
        "concentration": np.mean([indicators["brow_lowering"], indicators["eye_narrowing"]]),
        "determination": np.mean([indicators["lip_press"], indicators["jaw_tension"]]),
        "composure": np.mean(composure_parts),
    }
    return {name: round(clamp(float(value)), 4) for name, value in scores.items()}


@dataclass
class BehavioralFrame:
    """
    Per-frame behavioral metrics.

    Attributes:
        frame_number: Source frame index.
        timestamp_seconds: Frame timestamp.
        expressions: Micro-expression scores in [0, 1].
        stability: 1 - non-rigid deformation of focus regions since the
            previous valid frame. None on the first valid frame.
        landmark_motion: Mean focus-point displacement since the previous
            valid frame. None on the first valid frame.
        confidence: Extractor confidence.
        valid: Whether the frame counts toward the summary.
    """
    frame_number: int
    timestamp_seconds: float
    expressions: Dict[str, float] = field(default_factory=dict)
    stability: Optional[float] = None
    landmark_motion: Optional[float] = None
    confidence: float = 0.0
    valid: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BehavioralFrame":
        return cls(**data)


@dataclass
class ComposureResilience:
    """The behavioral stream's signature metric and its components."""
    final_score: float
    window_composure: float
    emotional_control: float
    stress_recovery: float
    consistency: float
    grade: str
    pressure_windows_detected: bool = False
    stress_events: int = 0
    recoveries: int = 0
    windows: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BehavioralSummary:
    """Aggregate metrics of a completed behavioral stream."""
    confidence_level: float
    concentration_level: float
    determination_level: float
    emotional_stability: float
    pressure_response: float
    mental_resilience: float
    composure_resilience: ComposureResilience
    overall_score: float
    micro_expressions: Dict[str, Dict[str, float]] = field(default_factory=dict)
    championship_indicators: Dict[str, bool] = field(default_factory=dict)
    frames_analyzed: int = 0
    frames_valid: int = 0

    @property
    def character_score(self) -> float:
        return self.overall_score

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BehavioralSummary":
        data = dict(data)
        data["composure_resilience"] = ComposureResilience(**data["composure_resilience"])
        return cls(**data)


def _mean(values: List[float], default: float = 0.0) -> float:
    return float(np.mean(values)) if values else default


def summarize_expressions(valid: List[BehavioralFrame]) -> Dict[str, Dict[str, float]]:
    summary = {}
    for name in EXPRESSIONS:
        values = np.array([f.expressions[name] for f in valid])
        if len(values) == 0:
            continue
        summary[name] = {
            "average": round(float(values.mean()), 4),
            "max": round(float(values.max()), 4),
            "min": round(float(values.min()), 4),
            "variance": round(float(values.var()), 5),
            "frequency": round(float((values > EXPRESSION_FREQUENCY_LEVEL).mean()), 4),
        }
    return summary


def calculate_mental_resilience(stress: List[float]) -> float:
    """0.5 baseline plus credit for each high-stress frame followed by a drop."""
    events = sum(1 for s in stress if s > STRESS_EVENT_LEVEL)
    if not events:
        return 0.5
    recoveries = sum(
        1 for prev, cur in zip(stress, stress[1:])
        if prev > STRESS_EVENT_LEVEL and cur < STRESS_RECOVERY_LEVEL
    )
    return clamp(0.5 + 0.5 * recoveries / events)


def calculate_stress_recovery(stress: List[float]) -> Tuple[float, int, int]:
    """
    Fraction of stress events followed later in the stream by a calm frame.

    A stress event is a maximal run of positions where the rolling
    5-frame stress average exceeds 0.7.

    Returns:
        (score, stress_events, recoveries). Score is 0.5 without events.
    """
    if len(stress) < ROLLING_FRAMES:
        return 0.5, 0, 0

    values = np.asarray(stress, dtype=float)
    rolling = np.convolve(values, np.ones(ROLLING_FRAMES) / ROLLING_FRAMES, mode="valid")
    above = rolling > STRESS_EVENT_LEVEL

    # calm_after[i]: some frame at index >= i is below the recovery level.
    calm = values < STRESS_RECOVERY_LEVEL
    calm_after = np.flip(np.logical_or.accumulate(np.flip(calm)))

    events = 0
    recoveries = 0
    i = 0
    while i < len(above):
        if not above[i]:
            i += 1
            continue
        j = i
        while j + 1 < len(above) and above[j + 1]:
            j += 1
        events += 1
        last_frame = j + ROLLING_FRAMES - 1
        if last_frame + 1 < len(values) and calm_after[last_frame + 1]:
            recoveries += 1
        i = j + 1

    if not events:
        return 0.5, 0, 0
    return recoveries / events, events, recoveries


def pressure_windows(
    valid: List[BehavioralFrame],
    window_seconds: float,
    threshold: float,
) -> Tuple[List[Tuple[float, float]], bool]:
    """
    Composure windows anchored on high-stress frames.

    Each frame whose stress exceeds the threshold opens a window unless it
    falls inside the previous one. Without any such frame the stream is
    cut into consecutive windows of the same length.

    Returns:
        ([(start, end), ...], pressure_detected)
    """
    windows: List[Tuple[float, float]] = []
    for frame in valid:
        if frame.expressions["stress"] <= threshold:
            continue
        t = frame.timestamp_seconds
        if windows and t < windows[-1][1]:
            continue
        windows.append((t, t + window_seconds))

    if windows or not valid:
        return windows, bool(windows)

    start = valid[0].timestamp_seconds
    span = valid[-1].timestamp_seconds - start
    count = int(math.floor(span / window_seconds)) + 1
    return [
        (start + i * window_seconds, start + (i + 1) * window_seconds)
        for i in range(count)
    ], False


def calculate_composure(valid: List[BehavioralFrame], config: BehavioralConfig) -> ComposureResilience:
    """Composure & Resilience over the valid frames of a stream."""
    windows, detected = pressure_windows(
        valid, config.composure_window_seconds, config.pressure_threshold
    )

    window_results = []
    for start, end in windows:
        members = [f for f in valid if start <= f.timestamp_seconds < end]
        motions = [f.landmark_motion for f in members if f.landmark_motion is not None]
        if not motions:
            continue
        variance = float(np.mean(motions)) * MOTION_VARIANCE_SCALE
        pressure = 100.0 * _mean([f.expressions["stress"] for f in members])
        window_results.append({
            "start_seconds": round(start, 3),
            "end_seconds": round(end, 3),
            "frames": len(members),
            "variance": round(variance, 4),
            "pressure_level": round(pressure, 2),
            "composure": round(calculate_composure_resilience(variance, pressure), 3),
        })

    stabilities = [f.stability for f in valid if f.stability is not None]
    if window_results:
        weights = np.array([1.0 + w["pressure_level"] / 100.0 for w in window_results])
        scores = np.array([w["composure"] for w in window_results])
        window_composure = float(np.dot(weights, scores) / weights.sum()) / 100.0
    else:
        window_composure = _mean(stabilities)

    series = {
        name: np.array([f.expressions[name] for f in valid])
        for name in ("confidence", "stress", "composure")
    }
    if valid:
        variances = [float(values.var()) for values in series.values()]
        emotional_control = clamp(1.0 - math.sqrt(float(np.mean(variances))))
        consistency = clamp(1.0 - float(series["composure"].std()))
    else:
        emotional_control = 0.0
        consistency = 0.0

    stress_recovery, events, recoveries = calculate_stress_recovery(list(series["stress"]))

    final = clamp(
        COMPOSURE_WEIGHTS["window_composure"] * window_composure
        + COMPOSURE_WEIGHTS["emotional_control"] * emotional_control
        + COMPOSURE_WEIGHTS["stress_recovery"] * stress_recovery
        + COMPOSURE_WEIGHTS["consistency"] * consistency
    )

    return ComposureResilience(
        final_score=round(final, 4),
        window_composure=round(window_composure, 4),
        emotional_control=round(emotional_control, 4),
        stress_recovery=round(stress_recovery, 4),
        consistency=round(consistency, 4),
        grade=composure_grade(final),
        pressure_windows_detected=detected,
        stress_events=events,
        recoveries=recoveries,
        windows=window_results,
    )


class BehavioralAnalyzer(StreamAnalyzer):
    """Analyzer for the facial stream."""

    stream_kind = StreamKind.BEHAVIORAL

    def reset(self) -> None:
        self._previous: Optional[Dict[str, np.ndarray]] = None
        self._focus = focus_region_names(self.config.behavioral)

    def _motion(self, record: LandmarkRecord, scale: float) -> Tuple[Optional[float], Optional[float]]:
        current = {name: _xy(record, name) for name in self._focus}
        previous, self._previous = self._previous, current
        if previous is None:
            return None, None

        displacements = []
        centroid_shifts = []
        for name, points in current.items():
            before = previous.get(name)
            if before is None or len(before) != len(points) or len(points) == 0:
                continue
            displacements.append(np.linalg.norm(points - before, axis=1))
            centroid_shifts.append(points.mean(axis=0) - before.mean(axis=0))

        if not displacements:
            return None, None

        motion = float(np.concatenate(displacements).mean())
        shifts = np.array(centroid_shifts)
        # Spread of region shifts around the common head shift.
        deformation = float(np.linalg.norm(shifts - shifts.mean(axis=0), axis=1).mean()) / scale
        return motion, clamp(1.0 - DEFORMATION_SCALE * deformation)

    def process_record(self, record: LandmarkRecord) -> BehavioralFrame:
        frame = BehavioralFrame(
            frame_number=record.frame_number,
            timestamp_seconds=record.timestamp_seconds,
            confidence=record.confidence,
        )
        if not self.is_valid(record):
            return frame

        indicators = facial_indicators(record)
        if indicators is None:
            return frame

        motion, stability = self._motion(record, indicators["scale"])
        stillness = clamp(1.0 - MOTION_SCALE * motion) if motion is not None else None

        frame.valid = True
        frame.expressions = expression_scores(indicators, stillness)
        frame.landmark_motion = round(motion, 6) if motion is not None else None
        frame.stability = round(stability, 4) if stability is not None else None
        return frame

    def summarize(self, frames: List[BehavioralFrame]) -> BehavioralSummary:
        valid = [f for f in frames if f.valid]
        levels = {
            name: _mean([f.expressions[name] for f in valid]) for name in EXPRESSIONS
        }
        emotional_stability = _mean([f.stability for f in valid if f.stability is not None])
        pressure_response = 1.0 - levels["stress"] if valid else 0.0
        mental_resilience = calculate_mental_resilience([f.expressions["stress"] for f in valid])
        composure = calculate_composure(valid, self.config.behavioral)

        character = (
            CHARACTER_WEIGHTS["confidence"] * levels["confidence"]
            + CHARACTER_WEIGHTS["pressure_response"] * pressure_response
            + CHARACTER_WEIGHTS["emotional_stability"] * emotional_stability
            + CHARACTER_WEIGHTS["concentration"] * levels["concentration"]
            + CHARACTER_WEIGHTS["mental_resilience"] * mental_resilience
        )

        return BehavioralSummary(
            confidence_level=round(levels["confidence"], 4),
            concentration_level=round(levels["concentration"], 4),
            determination_level=round(levels["determination"], 4),
            emotional_stability=round(emotional_stability, 4),
            pressure_response=round(pressure_response, 4),
            mental_resilience=round(mental_resilience, 4),
            composure_resilience=composure,
            overall_score=round(clamp(character), 4),
            micro_expressions=summarize_expressions(valid),
            championship_indicators={
                "elite_confidence": levels["confidence"] > 0.8,
                "pressure_performer": pressure_response > 0.85,
                "emotional_control": emotional_stability > 0.8,
                "laser_focus": levels["concentration"] > 0.85,
            },
            frames_analyzed=len(frames),
            frames_valid=len(valid),
        )

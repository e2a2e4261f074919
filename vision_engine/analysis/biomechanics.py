"""Biomechanical stream: joint angles, movement phases and motion quality."""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from vision_engine.analysis.base import StreamAnalyzer, clamp
from vision_engine.analysis.config import PhaseRule
from vision_engine.landmarks.base import LandmarkRecord, joint_angle
from vision_engine.sampling.sampler import StreamKind

logger = logging.getLogger(__name__)

WEIGHTS = {"consistency": 0.3, "efficiency": 0.3, "power": 0.2, "timing": 0.2}

JERK_SCALE = 10.0
SEGMENT_VELOCITY_REFERENCE = 3.0  # frame widths per second
HIP_VELOCITY_REFERENCE = 360.0  # degrees per second
KINETIC_CHAIN_RATIO = 1.2
TEMPO_REFERENCE = 5.0  # phase changes per second

TRANSITION = "transition"
NO_DETECTION = "no_detection"

LEFT, RIGHT = 0, 1


def _point(record: LandmarkRecord, region: str, side: int = RIGHT) -> Optional[np.ndarray]:
    point = record.point(region, side)
    if point is None:
        point = record.point(region, LEFT)
    return point.to_array() if point is not None else None


def _midpoint(record: LandmarkRecord, region: str) -> Optional[np.ndarray]:
    left, right = record.point(region, LEFT), record.point(region, RIGHT)
    if left is None or right is None:
        return None
    return (left.to_array() + right.to_array()) / 2.0


def _hip_rotation(record: LandmarkRecord) -> Optional[float]:
    left, right = record.point("hip", LEFT), record.point("hip", RIGHT)
    if left is None or right is None:
        return None
    spine = (left.to_array() + right.to_array()) / 2.0
    spine[1] -= 0.1
    return joint_angle(left.to_array(), spine, right.to_array())


def _shoulder_tilt(record: LandmarkRecord) -> Optional[float]:
    left, right = _point(record, "shoulder", LEFT), _point(record, "shoulder", RIGHT)
    if left is None or right is None:
        return None
    angle = joint_angle(right, left, left + np.array([1.0, 0.0, 0.0]))
    if angle is None:
        return None
    return min(angle, 180.0 - angle)


def _release_angle(record: LandmarkRecord) -> Optional[float]:
    shoulder = _point(record, "shoulder")
    if shoulder is None:
        return None
    # Image y grows downward, so "straight up" is -y.
    return joint_angle(_point(record, "wrist"), shoulder, shoulder + np.array([0.0, -1.0, 0.0]))


def _stride_length(record: LandmarkRecord) -> Optional[float]:
    return joint_angle(_point(record, "ankle", LEFT), _midpoint(record, "hip"), _point(record, "ankle", RIGHT))


ANGLE_FUNCTIONS: Dict[str, Callable[[LandmarkRecord], Optional[float]]] = {
    "hip_rotation": _hip_rotation,
    "shoulder_tilt": _shoulder_tilt,
    "elbow_angle": lambda r: joint_angle(_point(r, "shoulder"), _point(r, "elbow"), _point(r, "wrist")),
    "knee_flexion": lambda r: joint_angle(_point(r, "hip"), _point(r, "knee"), _point(r, "ankle")),
    "throwing_angle": lambda r: joint_angle(_point(r, "hip"), _point(r, "shoulder"), _point(r, "elbow")),
    "release_angle": _release_angle,
    "stride_length": _stride_length,
}


def compute_joint_angles(record: LandmarkRecord, angle_names: Tuple[str, ...]) -> Dict[str, float]:
    """Compute the named joint angles that the record supports."""
    angles = {}
    for name in angle_names:
        value = ANGLE_FUNCTIONS[name](record)
        if value is not None:
            angles[name] = round(value, 3)
    return angles


def classify_phase(angles: Dict[str, float], rules: Tuple[PhaseRule, ...]) -> str:
    """
    Classify a movement phase from joint angles.

    Args:
        angles: Joint angles of one frame.
        rules: Ordered decision table; first full match wins.

    Returns:
        Phase name, or "transition" when no rule matches.
    """
    for phase, bounds in rules:
        if all(
            name in angles and low <= angles[name] < high
            for name, low, high in bounds
        ):
            return phase
    return TRANSITION


@dataclass
class BiomechanicalFrame:
    """
    Per-frame biomechanical metrics.

    Attributes:
        frame_number: Source frame index.
        timestamp_seconds: Frame timestamp.
        joint_angles: Named joint angles in degrees.
        movement_phase: Phase label, or "no_detection" for gaps.
        confidence: Extractor confidence.
        valid: Whether the frame counts toward the summary.
        tracked_point: Position of the tracked landmark.
        efficiency: 1 - k * jerk over the last three valid frames.
    """
    frame_number: int
    timestamp_seconds: float
    joint_angles: Dict[str, float] = field(default_factory=dict)
    movement_phase: str = NO_DETECTION
    confidence: float = 0.0
    valid: bool = False
    tracked_point: Optional[Tuple[float, float, float]] = None
    efficiency: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BiomechanicalFrame":
        data = dict(data)
        if data.get("tracked_point") is not None:
            data["tracked_point"] = tuple(data["tracked_point"])
        return cls(**data)


@dataclass
class BiomechanicalSummary:
    """Aggregate metrics of a completed biomechanical stream."""
    consistency_score: float
    efficiency_score: float
    power_metrics: Dict[str, Any]
    timing_metrics: Dict[str, Any]
    overall_score: float
    phase_distribution: Dict[str, float] = field(default_factory=dict)
    keypoint_visibility: Dict[str, float] = field(default_factory=dict)
    improvement_areas: List[Dict[str, Any]] = field(default_factory=list)
    frames_analyzed: int = 0
    frames_valid: int = 0

    @property
    def power_score(self) -> float:
        return self.power_metrics.get("power_score", 0.0)

    @property
    def timing_score(self) -> float:
        return self.timing_metrics.get("timing_score", 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BiomechanicalSummary":
        return cls(**data)


def calculate_consistency(valid: List[BiomechanicalFrame], angle_names: Tuple[str, ...]) -> float:
    """1 - normalized std of each angle, averaged over angles."""
    scores = []
    for name in angle_names:
        values = [f.joint_angles[name] for f in valid if name in f.joint_angles]
        if len(values) >= 2:
            scores.append(1.0 - float(np.std(values)) / 180.0)
    if not scores:
        return 0.0
    return clamp(float(np.mean(scores)))


def calculate_efficiency(valid: List[BiomechanicalFrame]) -> float:
    """Inverse mean jerk of the tracked point; 0.5 with too little data."""
    points = [f.tracked_point for f in valid if f.tracked_point is not None]
    if len(points) < 3:
        return 0.5
    p = np.asarray(points, dtype=float)
    jerk = np.linalg.norm(p[2:] - 2.0 * p[1:-1] + p[:-2], axis=1)
    return clamp(1.0 - JERK_SCALE * float(np.mean(jerk)))


def calculate_power_metrics(
    valid: List[BiomechanicalFrame],
    power_phase: str,
    kinetic_chain: Tuple[str, str],
) -> Dict[str, Any]:
    """
    Peak segment velocity and rotation velocity inside the power phase.

    Velocities are taken between consecutive valid frames and attributed to
    the later frame. The score is 0 when the power phase is never observed.
    """
    proximal, distal = kinetic_chain
    peak_velocity = 0.0
    rotation_velocity = 0.0
    power_pairs = 0
    chain_pairs = 0
    chain_hits = 0

    for prev, cur in zip(valid, valid[1:]):
        dt = cur.timestamp_seconds - prev.timestamp_seconds
        if dt <= 0:
            continue

        if all(name in f.joint_angles for f in (prev, cur) for name in kinetic_chain):
            chain_pairs += 1
            d_prox = abs(cur.joint_angles[proximal] - prev.joint_angles[proximal])
            d_dist = abs(cur.joint_angles[distal] - prev.joint_angles[distal])
            if d_prox > KINETIC_CHAIN_RATIO * d_dist:
                chain_hits += 1

        if cur.movement_phase != power_phase:
            continue
        power_pairs += 1

        if cur.tracked_point is not None and prev.tracked_point is not None:
            displacement = np.linalg.norm(np.subtract(cur.tracked_point, prev.tracked_point))
            peak_velocity = max(peak_velocity, float(displacement) / dt)
        if proximal in cur.joint_angles and proximal in prev.joint_angles:
            delta = abs(cur.joint_angles[proximal] - prev.joint_angles[proximal])
            rotation_velocity = max(rotation_velocity, delta / dt)

    kinetic_chain_efficiency = chain_hits / chain_pairs if chain_pairs else 0.0

    if power_pairs:
        power_score = (
            0.4 * min(1.0, rotation_velocity / HIP_VELOCITY_REFERENCE)
            + 0.4 * min(1.0, peak_velocity / SEGMENT_VELOCITY_REFERENCE)
            + 0.2 * kinetic_chain_efficiency
        )
    else:
        power_score = 0.0

    return {
        "power_phase": power_phase,
        "power_phase_observed": power_pairs > 0,
        "peak_segment_velocity": round(peak_velocity, 4),
        "rotation_velocity": round(rotation_velocity, 3),
        "kinetic_chain_efficiency": round(kinetic_chain_efficiency, 4),
        "power_score": clamp(power_score),
    }


def calculate_timing_metrics(valid: List[BiomechanicalFrame], phases: Tuple[str, ...]) -> Dict[str, Any]:
    """
    Per-phase durations, rhythm consistency and tempo.

    A run is a maximal sequence of consecutive valid frames in the same
    sport phase; its duration extends one sampling interval past its last
    frame.
    """
    empty = {
        "phase_durations": {},
        "rhythm_consistency": 0.0,
        "tempo": 0.0,
        "timing_score": 0.0,
    }
    if not valid:
        return empty

    timestamps = np.array([f.timestamp_seconds for f in valid])
    steps = np.diff(timestamps)
    steps = steps[steps > 0]
    interval = float(np.median(steps)) if len(steps) else 0.0

    runs: List[Tuple[str, float, float]] = []
    prev_t = None
    for frame in valid:
        phase = frame.movement_phase
        if phase not in phases:
            prev_t = None
            continue
        if runs and prev_t is not None and runs[-1][0] == phase:
            runs[-1] = (phase, runs[-1][1], frame.timestamp_seconds)
        else:
            runs.append((phase, frame.timestamp_seconds, frame.timestamp_seconds))
        prev_t = frame.timestamp_seconds

    phase_durations: Dict[str, float] = {}
    for phase, start, end in runs:
        phase_durations[phase] = phase_durations.get(phase, 0.0) + (end - start + interval)

    durations = list(phase_durations.values())
    mean = float(np.mean(durations)) if durations else 0.0
    if len(durations) >= 2 and mean > 0:
        rhythm = clamp(1.0 - float(np.std(durations)) / mean)
    else:
        rhythm = 0.5 if durations else 0.0

    total_duration = float(timestamps[-1] - timestamps[0]) + interval
    tempo = len(runs) / total_duration if total_duration > 0 else 0.0

    return {
        "phase_durations": {k: round(v, 4) for k, v in phase_durations.items()},
        "rhythm_consistency": round(rhythm, 4),
        "tempo": round(tempo, 4),
        "timing_score": clamp(0.6 * rhythm + 0.4 * min(1.0, tempo / TEMPO_REFERENCE)),
    }


def identify_improvement_areas(consistency: float, efficiency: float) -> List[Dict[str, Any]]:
    areas = []
    if consistency < 0.7:
        areas.append({
            "area": "movement_consistency",
            "priority": "high",
            "current_score": round(consistency, 3),
            "target_score": 0.8,
            "description": "Joint angles vary widely between repetitions",
        })
    if efficiency < 0.75:
        areas.append({
            "area": "movement_efficiency",
            "priority": "medium",
            "current_score": round(efficiency, 3),
            "target_score": 0.85,
            "description": "Motion of the tracked segment is jerky",
        })
    return areas


class BiomechanicalAnalyzer(StreamAnalyzer):
    """Analyzer for the skeletal stream."""

    stream_kind = StreamKind.BIOMECHANICS

    def reset(self) -> None:
        self._history: List[np.ndarray] = []
        self._visibility: Dict[str, List[float]] = {}

    def process_record(self, record: LandmarkRecord) -> BiomechanicalFrame:
        settings = self.config.biomechanics
        frame = BiomechanicalFrame(
            frame_number=record.frame_number,
            timestamp_seconds=record.timestamp_seconds,
            confidence=record.confidence,
        )
        if not record.detected:
            return frame

        for region in settings.keypoints:
            points = record.region(region)
            if points:
                self._visibility.setdefault(region, []).append(
                    float(np.mean([p.visibility for p in points]))
                )

        frame.joint_angles = compute_joint_angles(record, settings.critical_angles)
        if not self.is_valid(record):
            return frame

        frame.valid = True
        frame.movement_phase = classify_phase(frame.joint_angles, settings.phase_rules)

        tracked = _point(record, settings.tracked_point)
        if tracked is not None:
            frame.tracked_point = tuple(float(v) for v in tracked)
            if len(self._history) == 2:
                jerk = np.linalg.norm(tracked - 2.0 * self._history[1] + self._history[0])
                frame.efficiency = clamp(1.0 - JERK_SCALE * float(jerk))
            self._history = (self._history + [tracked])[-2:]

        return frame

    def summarize(self, frames: List[BiomechanicalFrame]) -> BiomechanicalSummary:
        settings = self.config.biomechanics
        valid = [f for f in frames if f.valid]

        consistency = calculate_consistency(valid, settings.critical_angles)
        efficiency = calculate_efficiency(valid)
        power = calculate_power_metrics(valid, settings.power_phase, settings.kinetic_chain)
        timing = calculate_timing_metrics(valid, settings.phases)

        overall = (
            WEIGHTS["consistency"] * consistency
            + WEIGHTS["efficiency"] * efficiency
            + WEIGHTS["power"] * power["power_score"]
            + WEIGHTS["timing"] * timing["timing_score"]
        )

        counts = Counter(f.movement_phase for f in valid)
        distribution = {
            phase: round(100.0 * count / len(valid), 2) for phase, count in counts.items()
        } if valid else {}

        return BiomechanicalSummary(
            consistency_score=round(consistency, 4),
            efficiency_score=round(efficiency, 4),
            power_metrics=power,
            timing_metrics=timing,
            overall_score=round(clamp(overall), 4),
            phase_distribution=distribution,
            keypoint_visibility={
                region: round(float(np.mean(values)), 4)
                for region, values in self._visibility.items()
            },
            improvement_areas=identify_improvement_areas(consistency, efficiency),
            frames_analyzed=len(frames),
            frames_valid=len(valid),
        )

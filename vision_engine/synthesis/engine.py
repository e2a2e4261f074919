"""Synthesis of the two stream outputs into one session report.

The merged timeline covers every frame number from 0 to the highest frame
number seen in either stream. A stream contributes a row value only when it
has a valid metric frame at exactly that frame number; otherwise the row
carries the stream placeholder with its ``present`` flag cleared. Values
are never interpolated between samples.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from vision_engine.analysis.base import clamp
from vision_engine.analysis.behavioral import EXPRESSIONS, BehavioralFrame, BehavioralSummary
from vision_engine.analysis.biomechanics import BiomechanicalFrame, BiomechanicalSummary
from vision_engine.errors import SynthesisError
from vision_engine.synthesis.insights import Insight, generate_insights

logger = logging.getLogger(__name__)

NO_SAMPLE = "no_sample"

READINESS_WEIGHTS = {
    "biomechanics": 0.3,
    "behavioral": 0.3,
    "synchronization": 0.2,
    "mental_toughness": 0.1,
    "consistency": 0.1,
}
ELITE_READINESS = 85.0

ELITE_THRESHOLDS = {
    "efficiency": 85.0,
    "consistency": 90.0,
    "power": 80.0,
    "composure": 75.0,
    "confidence": 80.0,
    "resilience": 70.0,
}

CLUTCH_STRESS = 0.7
CLUTCH_COMPOSURE = 0.75
EXCELLENCE_LEVEL = 0.9
VULNERABLE_EFFICIENCY = 0.6
VULNERABLE_CONFIDENCE = 0.5
PRESSURE_STRESS = 0.6
SYNC_GRID_POINTS = 100


@dataclass
class TimelineRow:
    """
    One frame number of the merged timeline.

    Placeholder values: a missing biomechanical frame has ``efficiency``
    0.0, phase "no_sample" and no joint angles; a missing behavioral frame
    has every expression at 0.0 and no stability. Check ``bio_present`` and
    ``beh_present`` before reading values.
    """
    frame_number: int
    timestamp_seconds: float
    bio_present: bool = False
    efficiency: Optional[float] = 0.0
    movement_phase: str = NO_SAMPLE
    joint_angles: Dict[str, float] = field(default_factory=dict)
    beh_present: bool = False
    expressions: Dict[str, float] = field(default_factory=lambda: {name: 0.0 for name in EXPRESSIONS})
    stability: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CriticalMoment:
    """A coalesced frame range flagged by a moment detector."""
    moment_type: str
    trigger: str
    start_frame: int
    end_frame: int
    start_seconds: float
    end_seconds: float
    frame_count: int
    values: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CompositeScores:
    """Session-level composite scores, 0-100."""
    championship_readiness: float
    overall_score: float
    synchronization: float
    mental_toughness: float
    consistency: float
    improvement_potential: float
    readiness_level: str
    elite_ready: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SynthesisResult:
    """Output of synthesize()."""
    timeline: List[TimelineRow]
    critical_moments: List[CriticalMoment]
    composite_scores: CompositeScores
    insights: List[Insight]

    def timeline_statistics(self) -> Dict[str, Any]:
        total = len(self.timeline)
        bio = sum(1 for r in self.timeline if r.bio_present)
        beh = sum(1 for r in self.timeline if r.beh_present)
        both = sum(1 for r in self.timeline if r.bio_present and r.beh_present)
        return {
            "total_rows": total,
            "biomechanics_rows": bio,
            "behavioral_rows": beh,
            "aligned_rows": both,
            "coverage": round(sum(1 for r in self.timeline if r.bio_present or r.beh_present) / total, 4) if total else 0.0,
        }

    def timeline_window(self, max_rows: int) -> List[Dict[str, Any]]:
        """Rows with at least one stream present, evenly thinned to max_rows."""
        rows = [r for r in self.timeline if r.bio_present or r.beh_present]
        if len(rows) > max_rows > 0:
            indices = np.linspace(0, len(rows) - 1, max_rows).round().astype(int)
            rows = [rows[i] for i in indices]
        return [r.to_dict() for r in rows]


def synchronize_timelines(
    bio_frames: Sequence[BiomechanicalFrame],
    beh_frames: Sequence[BehavioralFrame],
    fps: float,
) -> List[TimelineRow]:
    """
    Merge both streams onto one frame-number timeline.

    Args:
        bio_frames: Biomechanical metric frames.
        beh_frames: Behavioral metric frames.
        fps: Source frame rate, used for row timestamps.

    Returns:
        Exactly max(frame_number) + 1 rows, one per frame number. Empty when
        both inputs are empty.
    """
    if fps <= 0:
        raise ValueError(f"Invalid fps: {fps}")

    bio = {f.frame_number: f for f in bio_frames}
    beh = {f.frame_number: f for f in beh_frames}
    if not bio and not beh:
        return []

    last_frame = max(list(bio) + list(beh))
    rows = []

    for frame_number in range(last_frame + 1):
        row = TimelineRow(frame_number=frame_number, timestamp_seconds=frame_number / fps)

        b = bio.get(frame_number)
        if b is not None and b.valid:
            row.bio_present = True
            row.efficiency = b.efficiency
            row.movement_phase = b.movement_phase
            row.joint_angles = dict(b.joint_angles)

        h = beh.get(frame_number)
        if h is not None and h.valid:
            row.beh_present = True
            row.expressions = dict(h.expressions)
            row.stability = h.stability

        rows.append(row)

    return rows


@dataclass(frozen=True)
class MomentDetector:
    """
    Scans the timeline for one kind of critical moment.

    Rows where ``relevant`` is false (the stream the detector reads is
    absent) are skipped without ending a run.
    """
    moment_type: str
    trigger: str
    relevant: Callable[[TimelineRow], bool]
    qualifies: Callable[[TimelineRow], bool]
    metrics: Callable[[TimelineRow], Dict[str, float]]
    extreme: Callable = max


MOMENT_DETECTORS = (
    MomentDetector(
        moment_type="clutch_performance",
        trigger="high_stress_high_composure",
        relevant=lambda r: r.beh_present,
        qualifies=lambda r: r.expressions["stress"] > CLUTCH_STRESS and r.expressions["composure"] > CLUTCH_COMPOSURE,
        metrics=lambda r: {"stress": r.expressions["stress"], "composure": r.expressions["composure"]},
    ),
    MomentDetector(
        moment_type="excellence",
        trigger="biomechanical_efficiency",
        relevant=lambda r: r.bio_present and r.efficiency is not None,
        qualifies=lambda r: r.efficiency >= EXCELLENCE_LEVEL,
        metrics=lambda r: {"efficiency": r.efficiency},
    ),
    MomentDetector(
        moment_type="excellence",
        trigger="behavioral_confidence",
        relevant=lambda r: r.beh_present,
        qualifies=lambda r: r.expressions["confidence"] >= EXCELLENCE_LEVEL,
        metrics=lambda r: {"confidence": r.expressions["confidence"]},
    ),
    MomentDetector(
        moment_type="vulnerability",
        trigger="low_efficiency_low_confidence",
        relevant=lambda r: r.bio_present and r.beh_present and r.efficiency is not None,
        qualifies=lambda r: r.efficiency < VULNERABLE_EFFICIENCY and r.expressions["confidence"] < VULNERABLE_CONFIDENCE,
        metrics=lambda r: {"efficiency": r.efficiency, "confidence": r.expressions["confidence"]},
        extreme=min,
    ),
)


def _close_run(detector: MomentDetector, run: List[TimelineRow]) -> CriticalMoment:
    samples = [detector.metrics(r) for r in run]
    values = {
        name: round(float(detector.extreme(s[name] for s in samples)), 4)
        for name in samples[0]
    }
    return CriticalMoment(
        moment_type=detector.moment_type,
        trigger=detector.trigger,
        start_frame=run[0].frame_number,
        end_frame=run[-1].frame_number,
        start_seconds=round(run[0].timestamp_seconds, 4),
        end_seconds=round(run[-1].timestamp_seconds, 4),
        frame_count=len(run),
        values=values,
    )


def identify_critical_moments(
    timeline: Sequence[TimelineRow],
    detectors: Sequence[MomentDetector] = MOMENT_DETECTORS,
) -> List[CriticalMoment]:
    """
    Find coalesced critical moments in the merged timeline.

    Args:
        timeline: Output of synchronize_timelines().
        detectors: Moment detectors to run.

    Returns:
        Moments ordered by start frame.
    """
    moments = []
    for detector in detectors:
        run: List[TimelineRow] = []
        for row in timeline:
            if not detector.relevant(row):
                continue
            if detector.qualifies(row):
                run.append(row)
            elif run:
                moments.append(_close_run(detector, run))
                run = []
        if run:
            moments.append(_close_run(detector, run))

    moments.sort(key=lambda m: (m.start_frame, m.moment_type, m.trigger))
    return moments


def _normalized_curve(times: np.ndarray, values: np.ndarray, grid: np.ndarray) -> Optional[np.ndarray]:
    span = times[-1] - times[0]
    if span <= 0:
        return None
    return np.interp(grid, (times - times[0]) / span, values)


def calculate_synchronization(
    bio_frames: Sequence[BiomechanicalFrame],
    beh_frames: Sequence[BehavioralFrame],
    grid_points: int = SYNC_GRID_POINTS,
) -> float:
    """
    How closely physical execution and mental state track each other.

    Both curves (biomechanical efficiency and behavioral composure) are
    mapped to normalized time [0, 1] and resampled on a common grid.

    Returns:
        1 - mean absolute difference, in [0, 1]. 0.0 when either stream has
        fewer than two usable frames.
    """
    bio = [(f.timestamp_seconds, f.efficiency) for f in bio_frames if f.valid and f.efficiency is not None]
    beh = [(f.timestamp_seconds, f.expressions["composure"]) for f in beh_frames if f.valid]
    if len(bio) < 2 or len(beh) < 2:
        logger.warning("Not enough aligned data for synchronization score")
        return 0.0

    grid = np.linspace(0.0, 1.0, grid_points)
    bio_t, bio_v = (np.asarray(x, dtype=float) for x in zip(*bio))
    beh_t, beh_v = (np.asarray(x, dtype=float) for x in zip(*beh))
    bio_curve = _normalized_curve(bio_t, bio_v, grid)
    beh_curve = _normalized_curve(beh_t, beh_v, grid)
    if bio_curve is None or beh_curve is None:
        return 0.0

    return clamp(1.0 - float(np.mean(np.abs(bio_curve - beh_curve))))


def calculate_championship_readiness(
    biomechanics_overall: float,
    behavioral_overall: float,
    synchronization: float,
    mental_toughness: float,
    consistency: float,
) -> float:
    """Weighted readiness on the 0-100 scale of its inputs."""
    return round(
        READINESS_WEIGHTS["biomechanics"] * biomechanics_overall
        + READINESS_WEIGHTS["behavioral"] * behavioral_overall
        + READINESS_WEIGHTS["synchronization"] * synchronization
        + READINESS_WEIGHTS["mental_toughness"] * mental_toughness
        + READINESS_WEIGHTS["consistency"] * consistency,
        2,
    )


def calculate_mental_toughness(beh_frames: Sequence[BehavioralFrame]) -> float:
    """
    Composure and determination held under stress, 0-100.

    Falls back to mean composure when no frame is under pressure.
    """
    valid = [f for f in beh_frames if f.valid]
    pressured = [f for f in valid if f.expressions["stress"] > PRESSURE_STRESS]
    if pressured:
        values = [(f.expressions["composure"] + f.expressions["determination"]) / 2.0 for f in pressured]
    else:
        values = [f.expressions["composure"] for f in valid]
    return round(100.0 * float(np.mean(values)), 2) if values else 0.0


def calculate_improvement_potential(
    bio_summary: BiomechanicalSummary,
    beh_summary: BehavioralSummary,
) -> float:
    """Headroom against elite thresholds, capped at 95."""
    current = {
        "efficiency": 100.0 * bio_summary.efficiency_score,
        "consistency": 100.0 * bio_summary.consistency_score,
        "power": 100.0 * bio_summary.power_score,
        "composure": 100.0 * beh_summary.composure_resilience.final_score,
        "confidence": 100.0 * beh_summary.confidence_level,
        "resilience": 100.0 * beh_summary.mental_resilience,
    }
    gaps = [max(0.0, ELITE_THRESHOLDS[k] - v) for k, v in current.items()]
    return round(min(95.0, 50.0 + float(np.mean(gaps)) * 0.75), 2)


def readiness_level(score: float) -> str:
    if score >= ELITE_READINESS:
        return "championship_ready"
    if score >= 75.0:
        return "competitive"
    if score >= 60.0:
        return "developing"
    return "foundation"


def calculate_composite_scores(
    bio_summary: BiomechanicalSummary,
    beh_summary: BehavioralSummary,
    synchronization: float,
    beh_frames: Sequence[BehavioralFrame],
) -> CompositeScores:
    """Composite scores from both summaries and the synchronization score."""
    bio_overall = 100.0 * bio_summary.overall_score
    beh_overall = 100.0 * beh_summary.overall_score
    sync = 100.0 * synchronization
    toughness = calculate_mental_toughness(beh_frames)
    consistency = 100.0 * (
        bio_summary.consistency_score + beh_summary.composure_resilience.consistency
    ) / 2.0

    readiness = calculate_championship_readiness(bio_overall, beh_overall, sync, toughness, consistency)

    return CompositeScores(
        championship_readiness=readiness,
        overall_score=round(0.4 * bio_overall + 0.4 * beh_overall + 0.2 * sync, 2),
        synchronization=round(sync, 2),
        mental_toughness=toughness,
        consistency=round(consistency, 2),
        improvement_potential=calculate_improvement_potential(bio_summary, beh_summary),
        readiness_level=readiness_level(readiness),
        elite_ready=readiness >= ELITE_READINESS,
    )


def synthesize(
    bio_frames: Sequence[BiomechanicalFrame],
    beh_frames: Sequence[BehavioralFrame],
    fps: float,
    bio_summary: Optional[BiomechanicalSummary],
    beh_summary: Optional[BehavioralSummary],
    sport: str,
    session_type: str,
) -> SynthesisResult:
    """
    Merge both streams and derive session-level results.

    Raises:
        SynthesisError: If a summary is missing or any step fails.
    """
    if bio_summary is None or beh_summary is None:
        raise SynthesisError("Both stream summaries are required for synthesis")

    try:
        timeline = synchronize_timelines(bio_frames, beh_frames, fps)
        moments = identify_critical_moments(timeline)
        synchronization = calculate_synchronization(bio_frames, beh_frames)
        composites = calculate_composite_scores(bio_summary, beh_summary, synchronization, beh_frames)
        insights = generate_insights(bio_summary, beh_summary, composites, moments, sport, session_type)
    except Exception as e:
        raise SynthesisError(f"Synthesis failed: {e}") from e

    logger.info(
        f"Synthesis: {len(timeline)} timeline rows, {len(moments)} critical moments, "
        f"readiness={composites.championship_readiness:.1f}"
    )

    return SynthesisResult(
        timeline=timeline,
        critical_moments=moments,
        composite_scores=composites,
        insights=insights,
    )

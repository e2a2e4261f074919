"""Static per-(sport, session type) analysis configuration."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple

from vision_engine.errors import ValidationError

SUPPORTED_SPORTS = ("baseball", "football", "basketball")
SUPPORTED_SESSION_TYPES = ("training", "game", "historical")

# A phase rule is (phase, ((angle, low, high), ...)). An angle bound
# matches when low <= value < high. Rules are tried in order and the first
# rule whose bounds all match wins; no match means "transition".
PhaseRule = Tuple[str, Tuple[Tuple[str, float, float], ...]]


@dataclass(frozen=True)
class BiomechanicsConfig:
    """
    Biomechanical stream settings for one sport.

    Attributes:
        keypoints: Pose regions tracked for visibility reporting.
        phases: Ordered movement phases of the sport.
        critical_angles: Joint angles computed per frame.
        phase_rules: Decision table mapping angles to phases.
        power_phase: Phase in which peak segment velocity is measured.
        tracked_point: Region whose (right side) point drives jerk and velocity.
        kinetic_chain: (proximal, distal) angle pair for sequencing efficiency.
    """
    keypoints: Tuple[str, ...]
    phases: Tuple[str, ...]
    critical_angles: Tuple[str, ...]
    phase_rules: Tuple[PhaseRule, ...]
    power_phase: str
    tracked_point: str = "wrist"
    kinetic_chain: Tuple[str, str] = ("hip_rotation", "elbow_angle")


@dataclass(frozen=True)
class BehavioralConfig:
    """
    Behavioral stream settings for one sport and session type.

    Attributes:
        focus_regions: Facial region groups that drive motion and stability.
        micro_expression_window_ms: Expression smoothing window.
        pressure_events: Tags of events that create pressure in the sport.
        composure_window_seconds: Length of each composure window.
        pressure_threshold: Stress level that anchors a pressure window.
    """
    focus_regions: Tuple[str, ...]
    micro_expression_window_ms: int
    pressure_events: Tuple[str, ...]
    composure_window_seconds: float = 3.0
    pressure_threshold: float = 0.6


@dataclass(frozen=True)
class AnalysisConfig:
    """Resolved configuration carried by both work messages of a session."""
    sport: str
    session_type: str
    biomechanics: BiomechanicsConfig
    behavioral: BehavioralConfig

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Region groups used by focus_regions.
FOCUS_REGION_GROUPS: Dict[str, Tuple[str, ...]] = {
    "eyes": ("left_eye", "right_eye"),
    "brow": ("left_eyebrow", "right_eyebrow"),
    "mouth": ("mouth",),
    "jaw": ("jaw",),
    "nose": ("nose",),
}

_BIOMECHANICS: Dict[str, BiomechanicsConfig] = {
    "baseball": BiomechanicsConfig(
        keypoints=("shoulder", "elbow", "wrist", "hip", "knee", "ankle"),
        phases=("setup", "load", "stride", "contact", "follow_through"),
        critical_angles=("hip_rotation", "shoulder_tilt", "elbow_angle"),
        phase_rules=(
            ("setup", (("hip_rotation", 0, 30),)),
            ("load", (("hip_rotation", 30, 60),)),
            ("stride", (("hip_rotation", 60, 90),)),
            ("contact", (("hip_rotation", 90, 181), ("elbow_angle", 0, 90))),
            ("follow_through", (("hip_rotation", 90, 181), ("elbow_angle", 90, 181))),
        ),
        power_phase="contact",
        kinetic_chain=("hip_rotation", "elbow_angle"),
    ),
    "football": BiomechanicsConfig(
        keypoints=("head", "shoulder", "elbow", "wrist", "hip", "knee", "ankle"),
        phases=("stance", "drop_back", "release", "follow_through"),
        critical_angles=("throwing_angle", "hip_rotation", "stride_length"),
        phase_rules=(
            ("stance", (("throwing_angle", 0, 30),)),
            ("drop_back", (("throwing_angle", 30, 90), ("stride_length", 0, 25))),
            ("release", (("throwing_angle", 90, 181),)),
            ("follow_through", (("throwing_angle", 30, 90), ("stride_length", 25, 181))),
        ),
        power_phase="release",
        kinetic_chain=("hip_rotation", "throwing_angle"),
    ),
    "basketball": BiomechanicsConfig(
        keypoints=("shoulder", "elbow", "wrist", "hip", "knee", "ankle"),
        phases=("setup", "dip", "rise", "release", "follow_through"),
        critical_angles=("elbow_angle", "release_angle", "knee_flexion"),
        phase_rules=(
            ("dip", (("knee_flexion", 0, 140),)),
            ("rise", (("knee_flexion", 140, 160),)),
            ("setup", (("knee_flexion", 160, 181), ("elbow_angle", 0, 90))),
            ("release", (("knee_flexion", 160, 181), ("elbow_angle", 90, 181), ("release_angle", 0, 45))),
            ("follow_through", (("knee_flexion", 160, 181), ("elbow_angle", 90, 181), ("release_angle", 45, 181))),
        ),
        power_phase="release",
        kinetic_chain=("knee_flexion", "elbow_angle"),
    ),
}

_BEHAVIORAL: Dict[str, Dict[str, Any]] = {
    "baseball": {
        "focus_regions": ("eyes", "jaw", "brow"),
        "micro_expression_window_ms": 200,
        "pressure_events": ("pitch_release", "contact", "result"),
    },
    "football": {
        "focus_regions": ("eyes", "jaw", "mouth"),
        "micro_expression_window_ms": 150,
        "pressure_events": ("snap", "pressure", "release"),
    },
    "basketball": {
        "focus_regions": ("eyes", "brow", "mouth"),
        "micro_expression_window_ms": 100,
        "pressure_events": ("shot_attempt", "free_throw", "pressure_situation"),
    },
}

# Game footage anchors pressure windows at a lower stress level.
_PRESSURE_THRESHOLDS = {
    "training": 0.6,
    "game": 0.55,
    "historical": 0.6,
}


def get_analysis_config(sport: str, session_type: str) -> AnalysisConfig:
    """
    Resolve the analysis configuration for a sport and session type.

    Args:
        sport: One of SUPPORTED_SPORTS.
        session_type: One of SUPPORTED_SESSION_TYPES.

    Returns:
        Immutable AnalysisConfig. Equal inputs give equal outputs.

    Raises:
        ValidationError: If the sport or session type is unsupported.
    """
    errors = []
    if sport not in SUPPORTED_SPORTS:
        errors.append(f"Unsupported sport: {sport}")
    if session_type not in SUPPORTED_SESSION_TYPES:
        errors.append(f"Unsupported session type: {session_type}")
    if errors:
        raise ValidationError(errors)

    return AnalysisConfig(
        sport=sport,
        session_type=session_type,
        biomechanics=_BIOMECHANICS[sport],
        behavioral=BehavioralConfig(
            pressure_threshold=_PRESSURE_THRESHOLDS[session_type],
            **_BEHAVIORAL[sport],
        ),
    )


def focus_region_names(config: BehavioralConfig) -> Tuple[str, ...]:
    """Expand focus region groups into extractor region names."""
    names = []
    for group in config.focus_regions:
        names.extend(FOCUS_REGION_GROUPS.get(group, (group,)))
    return tuple(names)

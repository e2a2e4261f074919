"""Biomechanical and behavioral stream analyzers."""

from vision_engine.analysis.base import StreamAnalyzer, StreamResult
from vision_engine.analysis.behavioral import (
    BehavioralAnalyzer,
    BehavioralFrame,
    BehavioralSummary,
    calculate_composure_resilience,
)
from vision_engine.analysis.biomechanics import (
    BiomechanicalAnalyzer,
    BiomechanicalFrame,
    BiomechanicalSummary,
)
from vision_engine.analysis.config import AnalysisConfig, get_analysis_config

__all__ = [
    "AnalysisConfig",
    "BehavioralAnalyzer",
    "BehavioralFrame",
    "BehavioralSummary",
    "BiomechanicalAnalyzer",
    "BiomechanicalFrame",
    "BiomechanicalSummary",
    "StreamAnalyzer",
    "StreamResult",
    "calculate_composure_resilience",
    "get_analysis_config",
]

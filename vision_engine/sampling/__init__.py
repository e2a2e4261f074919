"""Adaptive frame sampling for the analysis streams."""

from vision_engine.sampling.sampler import (
    FramePlanEntry,
    FrameSample,
    FrameSampler,
    SamplingPolicy,
    StreamKind,
)

__all__ = [
    "FramePlanEntry",
    "FrameSample",
    "FrameSampler",
    "SamplingPolicy",
    "StreamKind",
]

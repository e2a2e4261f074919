"""Dual-stream performance video analysis engine.

Ingests a performance video, runs biomechanical and behavioral analysis
streams concurrently, and synthesizes a session report.
"""

__version__ = "0.1.0"

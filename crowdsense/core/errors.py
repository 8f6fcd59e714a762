"""Error kinds raised by the analysis pipeline.

An empty crowd is not an error: it is a valid `AnalysisResult` with
`crowd_count == 0`.
"""

from __future__ import annotations


class CrowdAnalysisError(RuntimeError):
    """Base class for analysis failures."""


class ModelUnavailable(CrowdAnalysisError):
    """A detection model failed to load. Not retried internally."""


class SimulatedDetectionFailure(CrowdAnalysisError):
    """Injected, seed-derived detector fault. Callers may retry."""


class InvalidSource(CrowdAnalysisError, ValueError):
    """The frame source is empty, zero-sized or could not be opened."""


class AnalysisCancelled(CrowdAnalysisError):
    """The caller cancelled a video analysis between frames."""

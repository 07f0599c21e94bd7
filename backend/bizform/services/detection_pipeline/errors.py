"""
Detection Pipeline Errors
=========================

Error kinds raised inside the detection stages. None of these is allowed to
reach the caller of a detection pass: the stage that catches one degrades to
a best-effort result and records a diagnostic on the summary.

- DataLoadError: a pattern document is missing, unreadable or malformed
- PatternCompileError: one regular expression in a pattern document is invalid
- GeometryUnavailable: the host could not report an element's position
- TimeoutAborted: a pass exceeded its wall-clock or size bound
"""

from typing import Optional


class DetectionError(Exception):
    """Base class for all detection pipeline errors."""


class DataLoadError(DetectionError):
    """A pattern document could not be loaded."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class PatternCompileError(DetectionError):
    """A single pattern string failed to compile."""

    def __init__(self, category: str, pattern: str, reason: str):
        super().__init__(f"Invalid pattern for '{category}': {pattern!r} ({reason})")
        self.category = category
        self.pattern = pattern
        self.reason = reason


class GeometryUnavailable(DetectionError):
    """The hosting collaborator could not report a rectangle."""


class TimeoutAborted(DetectionError):
    """A detection pass exceeded one of its bounds."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"Pass aborted during {stage}: {reason}")
        self.stage = stage
        self.reason = reason

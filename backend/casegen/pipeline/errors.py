"""Error taxonomy for the case generation pipeline.

Stage-local errors (format, shape, count, upstream) abort the whole run.
CatalogExhausted is the only recoverable condition and never leaves the
reconciler.
"""

from __future__ import annotations


class CaseGenerationError(Exception):
    """Base class for every pipeline failure."""


class StageError(CaseGenerationError):
    """A failure scoped to one pipeline stage."""

    def __init__(self, message: str, stage: str = ""):
        super().__init__(message)
        self.stage = stage


class UnrecoverableFormat(StageError):
    """Generation output could not be repaired into a JSON object."""

    def __init__(self, message: str, tail: str = "", stage: str = ""):
        super().__init__(message, stage=stage)
        self.tail = tail


class ShapeMismatch(StageError):
    """Parsed stage output is missing a field or has the wrong type."""

    def __init__(self, message: str, field: str = "", stage: str = ""):
        super().__init__(message, stage=stage)
        self.field = field


class CountMismatch(StageError):
    """A batch or the assembled entity list has the wrong cardinality."""

    def __init__(self, message: str, expected: int = 0, actual: int = 0, stage: str = ""):
        super().__init__(message, stage=stage)
        self.expected = expected
        self.actual = actual


class UpstreamCallFailure(StageError):
    """Network or service error calling the generation service or catalog."""


class CatalogExhausted(CaseGenerationError):
    """No unclaimed catalog record is left for an entity."""

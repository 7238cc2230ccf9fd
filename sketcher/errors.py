"""
ParaCore - Sketcher exceptions
==============================

Two tiers:
- SketchError and its subclasses are user-actionable (bad selection,
  degenerate geometry). Operations turn them into failed OperationResults.
- InvariantViolation marks a bug in the core. It derives from
  AssertionError and is never caught by the core.
"""


class SketchError(Exception):
    """Base class for user-actionable sketch errors."""


class ConstraintError(SketchError):
    """A constraint cannot be created for the given entities or geometry."""


class SingularMatrixError(SketchError):
    """A pivot of the banded elimination is numerically zero."""

    def __init__(self, row: int, pivot: float):
        super().__init__(f"Singular pivot {pivot:.3g} at row {row}")
        self.row = row
        self.pivot = pivot


class InvariantViolation(AssertionError):
    """Programmer error inside the core."""


def ssassert(condition, message: str) -> None:
    """Raises InvariantViolation when the condition does not hold."""
    if not condition:
        raise InvariantViolation(message)

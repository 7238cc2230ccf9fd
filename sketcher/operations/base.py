"""
ParaCore - Base Classes for Sketch Operations
=============================================

Interactive operations (tangent arc, split) share one result type and
one calling convention: construct with the sketch, call execute().
A refused operation leaves the sketch as it was.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, TYPE_CHECKING
from enum import Enum, auto

if TYPE_CHECKING:
    from sketcher.sketch import Sketch


class ResultStatus(Enum):
    SUCCESS = auto()
    NO_TARGET = auto()  # Nothing usable selected
    NO_INTERSECTIONS = auto()
    ERROR = auto()  # Geometry made the operation impossible


@dataclass
class OperationResult:
    """
    Outcome of a sketch operation.

    `data` carries the handles the operation created; `details` holds
    what a caller may want to show (iteration counts, the split point).
    """
    status: ResultStatus
    message: str = ""
    data: Any = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is ResultStatus.ERROR

    @classmethod
    def ok(cls, message: str = "", data: Any = None, **details) -> 'OperationResult':
        return cls(ResultStatus.SUCCESS, message, data, details)

    @classmethod
    def no_target(cls, message: str = "Nothing to operate on") -> 'OperationResult':
        return cls(ResultStatus.NO_TARGET, message)

    @classmethod
    def no_intersections(cls, message: str = "No intersections") -> 'OperationResult':
        return cls(ResultStatus.NO_INTERSECTIONS, message)

    @classmethod
    def error(cls, message: str, **details) -> 'OperationResult':
        return cls(ResultStatus.ERROR, message, None, details)


class SketchOperation(ABC):
    """An operation bound to one sketch; `last_result` is the outcome of the latest execute()."""

    def __init__(self, sketch: 'Sketch'):
        self.sketch = sketch
        self._last_result: Optional[OperationResult] = None

    @property
    def last_result(self) -> Optional[OperationResult]:
        return self._last_result

    @abstractmethod
    def execute(self, *args, **kwargs) -> OperationResult:
        ...

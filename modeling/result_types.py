"""
ParaCore - Result Types for Regeneration

Each regenerated group reports one of:
- SUCCESS: solved, loops closed, solid built and combined
- WARNING: regenerated, but the solve was not clean, or the boolean failed,
  or the loops are broken
- EMPTY: nothing to do (clean and unchanged)
- ERROR: the group could not be regenerated at all

Usage:
    from modeling.result_types import RegenerationResult

    result = document.regenerate()
    for r in result.failures:
        print(r.group, r.message, r.warnings)
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from loguru import logger

from sketcher.handles import Handle


class ResultStatus(Enum):
    SUCCESS = auto()
    WARNING = auto()
    EMPTY = auto()
    ERROR = auto()


@dataclass
class GroupResult:
    """
    Result of regenerating one group.

    `solve` is the group's SolveResult (None when the solve was skipped),
    `poly_error` its loop status, `pruned` the constraints dropped because
    they referenced entities that no longer exist. A group whose warnings
    list is non-empty stays dirty.
    """
    group: Optional[Handle] = None
    status: ResultStatus = ResultStatus.SUCCESS
    message: str = ""
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    solve: Any = None
    poly_error: Any = None
    boolean_failed: bool = False
    skipped: bool = False
    pruned: List[Handle] = field(default_factory=list)

    @classmethod
    def unchanged(cls, group: Handle, message: str, solve: Any = None,
                  poly_error: Any = None) -> "GroupResult":
        """Clean group whose predecessors did not change; kept as it was."""
        return cls(group=group, status=ResultStatus.EMPTY, message=message, skipped=True,
                   solve=solve, poly_error=poly_error)

    @classmethod
    def error(cls, message: str, exception: Exception = None,
              group: Optional[Handle] = None) -> "GroupResult":
        details = {}
        if exception is not None:
            details["exception_type"] = type(exception).__name__
            details["exception_message"] = str(exception)
        return cls(group=group, status=ResultStatus.ERROR, message=message, details=details)

    def warn(self, text: str) -> None:
        self.warnings.append(text)
        if self.status is ResultStatus.SUCCESS:
            self.status = ResultStatus.WARNING

    @property
    def is_success(self) -> bool:
        """True when the group was regenerated, with or without warnings."""
        return self.status in (ResultStatus.SUCCESS, ResultStatus.WARNING)

    @property
    def is_error(self) -> bool:
        return self.status == ResultStatus.ERROR

    @property
    def is_empty(self) -> bool:
        return self.status == ResultStatus.EMPTY

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def log(self, context: str = "") -> "GroupResult":
        """Logs the result at the level its status calls for. Returns self."""
        prefix = f"[{context}] " if context else ""

        if self.status == ResultStatus.SUCCESS:
            logger.success(f"{prefix}{self.message}")

        elif self.status == ResultStatus.WARNING:
            logger.warning(f"{prefix}{self.message}")
            for warn in self.warnings:
                logger.warning(f"{prefix}  - {warn}")

        elif self.status == ResultStatus.EMPTY:
            logger.debug(f"{prefix}{self.message}")

        elif self.status == ResultStatus.ERROR:
            logger.error(f"{prefix}{self.message}")
            if "exception_type" in self.details:
                logger.error(f"{prefix}  Exception: {self.details['exception_type']}: "
                             f"{self.details.get('exception_message', '')}")

        return self

    def to_report_dict(self) -> Dict[str, Any]:
        report = {
            "group": repr(self.group),
            "status": self.status.name,
            "message": self.message,
            "solve": self.solve.status.name if self.solve is not None else None,
            "dof": self.solve.dof if self.solve is not None else None,
            "poly_error": self.poly_error.name if self.poly_error is not None else None,
            "boolean_failed": self.boolean_failed,
            "skipped": self.skipped,
        }
        if self.warnings:
            report["warnings"] = self.warnings
        if self.pruned:
            report["pruned"] = [repr(h) for h in self.pruned]
        return report


@dataclass
class RegenerationResult:
    """Per-group results of one regeneration pass, in regeneration order."""
    results: List[GroupResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(not r.is_error and not r.has_warnings for r in self.results)

    @property
    def failures(self) -> List[GroupResult]:
        return [r for r in self.results if r.is_error or r.has_warnings]

    def for_group(self, h: Handle) -> Optional[GroupResult]:
        for r in self.results:
            if r.group == h:
                return r
        return None

    @property
    def regenerated(self) -> List[Handle]:
        return [r.group for r in self.results if not r.skipped]

    def counts(self) -> Dict[ResultStatus, int]:
        return dict(Counter(r.status for r in self.results))

    def summary(self) -> str:
        n = self.counts()
        return (f"{len(self.regenerated)} regenerated, {n.get(ResultStatus.EMPTY, 0)} unchanged, "
                f"{n.get(ResultStatus.WARNING, 0)} with warnings, {n.get(ResultStatus.ERROR, 0)} failed")

    def log(self) -> "RegenerationResult":
        if not self.results:
            logger.debug("[Regeneration] Nothing to regenerate")
        elif any(r.is_error for r in self.results):
            logger.error(f"[Regeneration] {self.summary()}")
        elif self.failures:
            logger.warning(f"[Regeneration] {self.summary()}")
        else:
            logger.success(f"[Regeneration] {self.summary()}")
        return self

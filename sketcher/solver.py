"""
ParaCore Sketcher - Constraint Solver
=====================================

Newton-Raphson over the free params of one group. Each iteration takes the
minimum-norm step dx = J^T z with (J J^T) z = r, solved with the banded
elimination when J J^T fits the band and with scipy's least squares
otherwise. After the iteration the Jacobian rank decides between a
well-posed, an under- and an overconstrained system.

Params owned by earlier groups are read as constants.
"""

import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

import numpy as np
import scipy.linalg
from loguru import logger

from config.feature_flags import is_enabled
from config.tolerances import Tolerances, solver_converged
from sketcher.banded import BandedMatrix
from sketcher.constraint_equations import generate_equations
from sketcher.errors import SingularMatrixError
from sketcher.expr import Equation, Expr
from sketcher.handles import Handle

if TYPE_CHECKING:
    from sketcher.sketch import Sketch


class SolveStatus(Enum):
    CONVERGED = auto()
    UNDERCONSTRAINED = auto()
    OVERCONSTRAINED = auto()
    INCONSISTENT = auto()
    NOT_CONVERGED = auto()
    TIMED_OUT = auto()
    TOO_MANY_UNKNOWNS = auto()

    @property
    def is_ok(self) -> bool:
        return self in (SolveStatus.CONVERGED, SolveStatus.UNDERCONSTRAINED)


@dataclass
class SolverOptions:
    """Per-solve switches; the group flags of the same name map onto these."""
    relax_constraints: bool = False
    all_dims_reference: bool = False
    allow_redundant: bool = False
    suppress_dof_calculation: bool = False
    max_iterations: int = Tolerances.SOLVER_MAX_ITERATIONS
    timeout: Optional[float] = Tolerances.SOLVER_TIMEOUT
    find_to_fix_timeout: Optional[float] = Tolerances.SOLVER_FIND_TO_FIX_TIMEOUT


@dataclass
class SolveResult:
    status: SolveStatus
    dof: Optional[int] = None
    redundant: List[Handle] = field(default_factory=list)
    unsatisfied: List[Handle] = field(default_factory=list)
    degenerate: List[Handle] = field(default_factory=list)
    iterations: int = 0
    rank: int = 0
    unknowns: int = 0
    equations: int = 0
    max_residual: float = 0.0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.status.is_ok

    def describe(self) -> str:
        text = self.status.name.lower()
        if self.dof is not None:
            text += f", {self.dof} DOF"
        if self.redundant:
            text += f", {len(self.redundant)} redundant"
        if self.unsatisfied:
            text += f", {len(self.unsatisfied)} unsatisfied"
        if self.degenerate:
            text += f", {len(self.degenerate)} without gradient"
        return text


def rank_of(jacobian: np.ndarray) -> int:
    """
    Rank by Gram-Schmidt over row-normalized rows. A row whose remainder
    has squared magnitude below SOLVER_RANK_MAG is dependent.
    """
    basis: List[np.ndarray] = []
    for row in jacobian:
        mag = float(np.linalg.norm(row))
        if mag == 0.0 or not np.isfinite(mag):
            continue
        r = row / mag
        for b in basis:
            r = r - np.dot(r, b) * b
        rm = float(np.dot(r, r))
        if rm < Tolerances.SOLVER_RANK_MAG:
            continue
        basis.append(r / np.sqrt(rm))
    return len(basis)


class System:
    """
    One solve of one group.

    The equation list is built once: constraint equations tagged with their
    constraint, then entity equations, then the group's own equations
    (passed in as `extra_equations`).
    """

    def __init__(self, sketch: 'Sketch', group: Handle,
                 extra_equations: Optional[List[Equation]] = None,
                 options: Optional[SolverOptions] = None):
        self.sketch = sketch
        self.group = group
        self.options = options or SolverOptions()
        self.rows: List[Tuple[Optional[Handle], Equation]] = []
        self._collect_equations(extra_equations or [])
        self.unknowns: List[Handle] = self._collect_unknowns()
        self.values: Dict[Handle, float] = {p.h: p.val for p in sketch.params}
        self._jacobian: Optional[List[List[Tuple[int, Expr]]]] = None
        self._deadline: Optional[float] = None
        self._degenerate_rows: Set[int] = set()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _collect_equations(self, extra: List[Equation]) -> None:
        sk, opts = self.sketch, self.options
        if not opts.relax_constraints:
            for c in sk.constraints:
                if c.group != self.group or c.reference:
                    continue
                if opts.all_dims_reference and c.is_dimension():
                    continue
                for eq in generate_equations(sk, c):
                    self.rows.append((c.h, eq))
        for e in sk.entities:
            if e.group != self.group:
                continue
            for eq in e.generate_equations(sk):
                self.rows.append((None, eq))
        for eq in extra:
            self.rows.append((None, eq))

    def _collect_unknowns(self) -> List[Handle]:
        owned = [p.h for p in self.sketch.params if p.h.owner == self.group.owner and not p.known]
        owned_set = set(owned)
        order: List[Handle] = []
        seen = set()
        for _, eq in self.rows:
            for h in sorted(eq.e.params()):
                if h in owned_set and h not in seen:
                    seen.add(h)
                    order.append(h)
        # Params that no equation mentions still count as freedoms
        order.extend(h for h in owned if h not in seen)
        return order

    def _build_jacobian(self) -> None:
        col = {h: j for j, h in enumerate(self.unknowns)}
        jac = []
        for _, eq in self.rows:
            entries = []
            for h in eq.e.params():
                j = col.get(h)
                if j is not None:
                    entries.append((j, eq.e.partial_wrt(h)))
            jac.append(entries)
        self._jacobian = jac

    # ------------------------------------------------------------------
    # Numerics
    # ------------------------------------------------------------------

    def _residuals(self, rows: Optional[List[int]] = None) -> np.ndarray:
        idx = range(len(self.rows)) if rows is None else rows
        return np.array([self.rows[i][1].e.eval(self.values) for i in idx], dtype=float)

    def _jacobian_num(self, rows: Optional[List[int]] = None) -> np.ndarray:
        idx = list(range(len(self.rows))) if rows is None else rows
        jn = np.zeros((len(idx), len(self.unknowns)))
        for r, i in enumerate(idx):
            for j, d in self._jacobian[i]:
                jn[r, j] = d.eval(self.values)
        return jn

    def _newton_step(self, jn: np.ndarray, r: np.ndarray) -> np.ndarray:
        if is_enabled("solver_banded_solve"):
            a = jn @ jn.T
            band = BandedMatrix(a, r)
            if band.fits():
                try:
                    return jn.T @ band.solve()
                except SingularMatrixError as e:
                    if is_enabled("solver_debug"):
                        logger.debug(f"[Solver] Banded solve failed ({e}), using least squares")
        dx, *_ = scipy.linalg.lstsq(jn, r)
        return dx

    def _timed_out(self) -> bool:
        return self._deadline is not None and time.perf_counter() > self._deadline

    def _newton(self) -> Tuple[bool, bool, int]:
        """Returns (converged, diverged, iterations)."""
        for it in range(self.options.max_iterations + 1):
            r = self._residuals()
            if not np.all(np.isfinite(r)):
                return False, True, it
            if solver_converged(r):
                return True, False, it
            if it == self.options.max_iterations or self._timed_out():
                return False, False, it
            jn = self._jacobian_num()
            if not np.all(np.isfinite(jn)):
                return False, True, it
            dx = self._newton_step(jn, r)
            if not np.all(np.isfinite(dx)):
                return False, True, it
            for j, h in enumerate(self.unknowns):
                self.values[h] -= dx[j]
            if is_enabled("solver_debug"):
                logger.debug(f"[Solver] iteration {it}: max |r| = {np.max(np.abs(r)):.3e}")
        return False, False, self.options.max_iterations

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _constraint_rows(self) -> Dict[Handle, List[int]]:
        by_constraint: Dict[Handle, List[int]] = {}
        for i, (ch, _) in enumerate(self.rows):
            if ch is not None:
                by_constraint.setdefault(ch, []).append(i)
        return by_constraint

    def _find_redundant(self) -> Tuple[List[Handle], bool]:
        """Constraints whose removal makes the Jacobian full rank."""
        redundant = []
        limit = self.options.find_to_fix_timeout
        start = time.perf_counter()
        all_rows = range(len(self.rows))
        for ch, rows in self._constraint_rows().items():
            if limit is not None and time.perf_counter() - start > limit:
                logger.warning(f"[Solver] Redundancy search timed out after {limit:.1f}s")
                return redundant, True
            dropped = set(rows) | self._degenerate_rows
            keep = [i for i in all_rows if i not in dropped]
            if rank_of(self._jacobian_num(keep)) == len(keep):
                redundant.append(ch)
        return redundant, False

    def _row_constraints(self, rows) -> List[Handle]:
        found: List[Handle] = []
        for i in sorted(rows):
            ch = self.rows[i][0]
            if ch is not None and ch not in found:
                found.append(ch)
        return found

    def _unsatisfied(self) -> List[Handle]:
        r = self._residuals()
        bad = []
        for (ch, _), ri in zip(self.rows, r):
            if ch is not None and ch not in bad and not abs(ri) < Tolerances.SOLVER_UNSATISFIED:
                bad.append(ch)
        return bad

    def _write_back(self) -> None:
        for h in self.unknowns:
            self.sketch.params.get(h).val = float(self.values[h])

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def solve(self) -> SolveResult:
        n, m = len(self.unknowns), len(self.rows)
        if n > Tolerances.SOLVER_MAX_UNKNOWNS:
            logger.warning(f"[Solver] {n} unknowns exceed the limit of {Tolerances.SOLVER_MAX_UNKNOWNS}")
            return SolveResult(SolveStatus.TOO_MANY_UNKNOWNS, unknowns=n, equations=m)

        if self.options.timeout is not None:
            self._deadline = time.perf_counter() + self.options.timeout

        self._build_jacobian()
        converged, diverged, iterations = self._newton()
        self._write_back()

        result = SolveResult(SolveStatus.NOT_CONVERGED, iterations=iterations, unknowns=n, equations=m)
        r = self._residuals()
        if m:
            result.max_residual = float(np.max(np.abs(r))) if np.all(np.isfinite(r)) else float("inf")

        if not converged and self._timed_out():
            result.status = SolveStatus.TIMED_OUT
            result.timed_out = True
            logger.warning(f"[Solver] Group {self.group!r} timed out after {iterations} iterations")
            return result

        jn = self._jacobian_num() if m else np.zeros((0, n))
        finite = np.all(np.isfinite(jn), axis=1)
        self._degenerate_rows = set(np.flatnonzero(~finite).tolist())
        result.degenerate = self._row_constraints(self._degenerate_rows)
        if self._degenerate_rows:
            logger.debug(f"[Solver] Group {self.group!r}: no gradient for "
                         f"{[str(h) for h in result.degenerate]}, left out of the rank")
        rank = rank_of(jn[finite])
        result.rank = rank
        full_rank = rank == int(np.count_nonzero(finite))

        if not full_rank and not (converged and self.options.allow_redundant):
            result.status = SolveStatus.OVERCONSTRAINED
            if is_enabled("solver_find_redundant"):
                result.redundant, result.timed_out = self._find_redundant()
            logger.warning(f"[Solver] Group {self.group!r} overconstrained: "
                           f"{[str(h) for h in result.redundant]}")
        elif converged:
            if not self.options.suppress_dof_calculation:
                result.dof = n - rank
            result.status = SolveStatus.CONVERGED if not result.dof else SolveStatus.UNDERCONSTRAINED
        elif diverged:
            result.status = SolveStatus.NOT_CONVERGED
        else:
            result.unsatisfied = self._unsatisfied()
            result.status = SolveStatus.INCONSISTENT if result.unsatisfied else SolveStatus.NOT_CONVERGED

        if is_enabled("solver_debug") or not result.success:
            logger.debug(f"[Solver] Group {self.group!r}: {result.describe()} "
                         f"({n} unknowns, {m} equations, {iterations} iterations)")
        return result


def solve(sketch: 'Sketch', group: Handle, extra_equations: Optional[List[Equation]] = None,
          options: Optional[SolverOptions] = None) -> SolveResult:
    """Solves the params of `group` in place."""
    return System(sketch, group, extra_equations, options).solve()

"""
Solver tests: convergence, degrees of freedom, redundancy detection and
the per-solve options.
"""

import numpy as np
import pytest

from config.feature_flags import set_flag
from config.tolerances import Tolerances
from sketcher.constraints import ConstraintType as CT
from sketcher.errors import ConstraintError
from sketcher.requests import RequestType
from sketcher.solver import SolveStatus, SolverOptions, rank_of

from paracore_test_utils import add_line

pytestmark = [pytest.mark.solver]


def _anchored_line(doc, g, end=(8.0, 1.0)):
    """Line with its start dragged in place and drawn roughly horizontal."""
    sk = doc.sketch
    wp = doc.workplane_of(g)
    line = add_line(doc, g, (0.0, 0.0), end)
    sk.constrain(CT.WHERE_DRAGGED, g.h, workplane=wp, pt_a=line.point(0))
    return line


def _fully_constrained(doc, g):
    sk = doc.sketch
    wp = doc.workplane_of(g)
    line = _anchored_line(doc, g)
    sk.constrain(CT.HORIZONTAL, g.h, workplane=wp, entity_a=line.main_entity())
    dist = sk.constrain(CT.PT_PT_DISTANCE, g.h, workplane=wp, pt_a=line.point(0),
                        pt_b=line.point(1), value=10.0)
    return line, dist


def test_fully_constrained_line_converges_with_zero_dof(doc, sketch_xy):
    line, _ = _fully_constrained(doc, sketch_xy)

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.CONVERGED
    assert result.dof == 0
    assert result.redundant == []
    np.testing.assert_allclose(doc.point_num(line.point(0)), [0, 0, 0], atol=1e-9)
    np.testing.assert_allclose(doc.point_num(line.point(1)), [10, 0, 0], atol=1e-6)
    assert sketch_xy.solved is result


def test_same_result_without_banded_solve(doc, sketch_xy):
    set_flag("solver_banded_solve", False)
    line, _ = _fully_constrained(doc, sketch_xy)

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.CONVERGED
    np.testing.assert_allclose(doc.point_num(line.point(1)), [10, 0, 0], atol=1e-6)


def test_underconstrained_reports_dof(doc, sketch_xy):
    _anchored_line(doc, sketch_xy)

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.UNDERCONSTRAINED
    assert result.success
    assert result.dof == 2


def test_suppressed_dof_calculation(doc, sketch_xy):
    _anchored_line(doc, sketch_xy)

    result = doc.solve_group(sketch_xy, SolverOptions(suppress_dof_calculation=True))

    assert result.status is SolveStatus.CONVERGED
    assert result.dof is None


def test_overconstrained_names_redundant_constraints(doc, sketch_xy):
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    line, dist = _fully_constrained(doc, sketch_xy)
    sk.point_force_to(line.point(1), (10.0, 0.0, 0.0))
    again = sk.constrain(CT.PT_PT_DISTANCE, sketch_xy.h, workplane=wp, pt_a=line.point(0),
                         pt_b=line.point(1), value=10.0)

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.OVERCONSTRAINED
    assert not result.success
    assert set(result.redundant) == {dist.h, again.h}

    # Dropping either duplicate leaves a well-posed system
    sk.delete_constraint(again.h)
    result = doc.solve_group(sketch_xy)
    assert result.status is SolveStatus.CONVERGED
    assert result.dof == 0


def test_redundancy_search_can_be_disabled(doc, sketch_xy):
    set_flag("solver_find_redundant", False)
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    line, _ = _fully_constrained(doc, sketch_xy)
    sk.point_force_to(line.point(1), (10.0, 0.0, 0.0))
    sk.constrain(CT.PT_PT_DISTANCE, sketch_xy.h, workplane=wp, pt_a=line.point(0),
                 pt_b=line.point(1), value=10.0)

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.OVERCONSTRAINED
    assert result.redundant == []


def test_allow_redundant_accepts_consistent_duplicates(doc, sketch_xy):
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    line, _ = _fully_constrained(doc, sketch_xy)
    sk.point_force_to(line.point(1), (10.0, 0.0, 0.0))
    sk.constrain(CT.PT_PT_DISTANCE, sketch_xy.h, workplane=wp, pt_a=line.point(0),
                 pt_b=line.point(1), value=10.0)

    result = doc.solve_group(sketch_xy, SolverOptions(allow_redundant=True))

    assert result.status is SolveStatus.CONVERGED
    assert result.dof == 0


def test_group_flag_maps_onto_solver_option(doc, sketch_xy):
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    line, _ = _fully_constrained(doc, sketch_xy)
    sk.point_force_to(line.point(1), (10.0, 0.0, 0.0))
    sk.constrain(CT.PT_PT_DISTANCE, sketch_xy.h, workplane=wp, pt_a=line.point(0),
                 pt_b=line.point(1), value=10.0)
    sketch_xy.allow_redundant = True

    assert doc.solve_group(sketch_xy).status is SolveStatus.CONVERGED


def test_relaxed_constraints_leave_params_free(doc, sketch_xy):
    line, _ = _fully_constrained(doc, sketch_xy)

    result = doc.solve_group(sketch_xy, SolverOptions(relax_constraints=True))

    assert result.equations == 0
    assert result.dof == 4
    np.testing.assert_allclose(doc.point_num(line.point(1)), [8, 1, 0], atol=1e-12)


def test_all_dims_reference_skips_dimensions(doc, sketch_xy):
    _fully_constrained(doc, sketch_xy)

    result = doc.solve_group(sketch_xy, SolverOptions(all_dims_reference=True))

    assert result.status is SolveStatus.UNDERCONSTRAINED
    assert result.dof == 1


def test_too_many_unknowns(doc, sketch_xy, monkeypatch):
    monkeypatch.setattr(Tolerances, "SOLVER_MAX_UNKNOWNS", 2)
    line = _anchored_line(doc, sketch_xy)
    before = doc.point_num(line.point(1))

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.TOO_MANY_UNKNOWNS
    np.testing.assert_allclose(doc.point_num(line.point(1)), before)


def test_params_of_earlier_groups_are_constants(doc, sketch_xy):
    # The references group owns the origin; solving the sketch must not move it
    line, _ = _fully_constrained(doc, sketch_xy)
    doc.solve_group(sketch_xy)
    np.testing.assert_allclose(doc.point_num(doc.origin), [0, 0, 0])


def test_rank_of():
    j = np.array([[1.0, 0.0, 0.0],
                  [0.0, 1.0, 0.0],
                  [2.0, 2.0, 0.0]])
    assert rank_of(j) == 2
    assert rank_of(np.zeros((2, 3))) == 0
    assert rank_of(np.eye(4)) == 4


def _coincident_with_zero_distance(doc, g):
    """Two datum points made coincident, plus a distance dimension edited down to zero."""
    sk = doc.sketch
    wp = doc.workplane_of(g)
    p = sk.add_request(RequestType.DATUM_POINT, g.h, wp)
    q = sk.add_request(RequestType.DATUM_POINT, g.h, wp)
    sk.point_force_to(p.point(0), (0.0, 0.0, 0.0))
    sk.point_force_to(q.point(0), (3.0, 0.0, 0.0))
    dist = sk.constrain(CT.PT_PT_DISTANCE, g.h, workplane=wp, pt_a=p.point(0), pt_b=q.point(0),
                        value=3.0)
    dist.value = 0.0
    sk.point_force_to(q.point(0), (0.0, 0.0, 0.0))
    sk.constrain_coincident(g.h, p.point(0), q.point(0))
    return p, q, dist


def test_zero_distance_between_coincident_points_is_not_overconstrained(doc, sketch_xy):
    p, q, dist = _coincident_with_zero_distance(doc, sketch_xy)

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.UNDERCONSTRAINED
    assert result.success
    assert (result.unknowns, result.equations) == (4, 3)
    assert result.rank == 2
    assert result.dof == 2
    assert result.redundant == []
    assert result.degenerate == [dist.h]
    assert "without gradient" in result.describe()
    np.testing.assert_allclose(doc.point_num(q.point(0)), doc.point_num(p.point(0)), atol=1e-12)


def test_degenerate_row_does_not_hide_real_redundancy(doc, sketch_xy):
    sk = doc.sketch
    p, q, dist = _coincident_with_zero_distance(doc, sketch_xy)
    again = sk.constrain_coincident(sketch_xy.h, q.point(0), p.point(0))

    result = doc.solve_group(sketch_xy)

    assert result.status is SolveStatus.OVERCONSTRAINED
    assert result.degenerate == [dist.h]
    assert dist.h not in result.redundant
    assert again.h in result.redundant


def test_zero_distance_dimension_is_refused(doc, sketch_xy):
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    line = add_line(doc, sketch_xy, (0.0, 0.0), (5.0, 0.0))

    with pytest.raises(ConstraintError, match="coincident"):
        sk.constrain(CT.PT_PT_DISTANCE, sketch_xy.h, workplane=wp, pt_a=line.point(0),
                     pt_b=line.point(1), value=0.0)


def test_rank_of_finite_rows_only():
    j = np.array([[1.0, 0.0],
                  [np.nan, 0.0],
                  [0.0, 1.0]])
    finite = np.all(np.isfinite(j), axis=1)
    assert rank_of(j[finite]) == int(np.count_nonzero(finite)) == 2

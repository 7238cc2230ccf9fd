"""
ParaCore - Centralized tolerance configuration
==============================================

All numeric tolerances and iteration caps in one place.

Tolerance philosophy:
- Geometry (LENGTH_EPS): 1e-6 - two points closer than this are the same point
- Solver convergence: LENGTH_EPS / 100 - residuals must be far below what is visible
- Rank test: 1e-4 - rows are normalized first, so this is a relative measure
- Kernel (build123d): 1e-4 - fuzzy boolean tolerance of the solid kernel

Usage:
    from config.tolerances import Tolerances

    eps = Tolerances.LENGTH_EPS

    # or via convenience functions
    from config.tolerances import solver_converge_tolerance
    tol = solver_converge_tolerance()
"""

import math


class Tolerances:
    """
    Central tolerance constants for ParaCore.

    Categories:
    - LENGTH_*/ANGLE_*: geometric comparisons
    - SOLVER_*: Newton iteration, rank test, linear solve
    - TANGENT_ARC_*: corner rounding iteration
    - CURVE_*: bezier conversion, intersection search
    - LOOP_*: polygon loop assembly
    - KERNEL_*/TESSELLATION_*: solid kernel adapter
    """

    # =========================================================================
    # Geometry
    # =========================================================================

    # Smallest meaningful length
    LENGTH_EPS = 1e-6

    # Angular comparisons (radians)
    ANGLE_EPS = 1e-6

    # Lengths below this are treated as a zero vector (direction constraints)
    LENGTH_DEGENERATE = 1e-9

    # =========================================================================
    # Nonlinear solver
    # =========================================================================

    # Every residual must fall below this to count as converged
    SOLVER_CONVERGE = LENGTH_EPS / 1e2

    # Residuals above this after a failed solve mark a constraint as unsatisfied
    SOLVER_UNSATISFIED = LENGTH_EPS * 10

    # Gram-Schmidt rank test on row-normalized Jacobian
    SOLVER_RANK_MAG = 1e-4

    # Smallest acceptable pivot in the banded elimination
    SOLVER_PIVOT = 1e-12

    # Newton iteration cap per solve
    SOLVER_MAX_ITERATIONS = 50

    # Problems with more unknowns than this are refused
    SOLVER_MAX_UNKNOWNS = 2048

    # Half bandwidths of the banded linear solve (two dense trailing columns)
    SOLVER_BAND_LEFT = 8
    SOLVER_BAND_RIGHT = 8

    # Default wall-clock limits (seconds); None disables
    SOLVER_TIMEOUT = None
    SOLVER_FIND_TO_FIX_TIMEOUT = 5.0

    # =========================================================================
    # Tangent arc (corner rounding)
    # =========================================================================

    # Radius ramp iterations, then polishing iterations at full radius
    TANGENT_ARC_ITERATIONS = 1000
    TANGENT_ARC_POLISH_ITERATIONS = 20

    # Last-step change of either curve parameter must stay below this
    TANGENT_ARC_STABLE = 1e-3

    # Curve parameters must end inside (T_MIN, T_MAX)
    TANGENT_ARC_T_MIN = 0.01
    TANGENT_ARC_T_MAX = 0.99

    # Upper bound for the automatic radius (model units)
    TANGENT_ARC_AUTO_LIMIT = 200.0

    # =========================================================================
    # Curves
    # =========================================================================

    # Arcs are converted to rational quadratics of at most this sweep
    CURVE_MAX_BEZIER_SWEEP = math.pi / 2

    # Samples per bezier when seeding intersections
    CURVE_INTERSECTION_SAMPLES = 64

    # Newton refinement of an intersection
    CURVE_INTERSECTION_ITERATIONS = 30

    # Parameter margin that separates interior points from curve ends
    CURVE_PARAM_MARGIN = 1e-6

    # Closest-point iteration
    CURVE_CLOSEST_ITERATIONS = 30

    # =========================================================================
    # Loop assembly
    # =========================================================================

    # Chord tolerance when polylining arcs, circles and cubics
    LOOP_CHORD_TOLERANCE = 0.01

    # Upper bound of segments per curve
    LOOP_MAX_SEGMENTS = 128

    # =========================================================================
    # Solid kernel (build123d)
    # =========================================================================

    KERNEL_FUZZY = 1e-4

    # Linear deflection for mesh generation
    TESSELLATION_QUALITY = 0.01


# =============================================================================
# Convenience functions
# =============================================================================

def is_zero_length(length: float) -> bool:
    return abs(length) < Tolerances.LENGTH_EPS


def points_coincident(a, b) -> bool:
    """True if two numeric points (sequences of 3 floats) coincide."""
    return math.dist(a, b) < Tolerances.LENGTH_EPS


def solver_converged(residuals) -> bool:
    """True if every residual is finite and below the convergence tolerance."""
    return all(math.isfinite(r) and abs(r) < Tolerances.SOLVER_CONVERGE for r in residuals)


# =============================================================================
# Tolerance validation (debugging)
# =============================================================================

def validate_tolerances():
    """
    Checks that the tolerances are mutually consistent.
    Useful in tests and debugging.
    """
    issues = []

    if Tolerances.SOLVER_CONVERGE >= Tolerances.LENGTH_EPS:
        issues.append(
            f"SOLVER_CONVERGE ({Tolerances.SOLVER_CONVERGE}) not below LENGTH_EPS ({Tolerances.LENGTH_EPS})")

    if not (0.0 < Tolerances.TANGENT_ARC_T_MIN < Tolerances.TANGENT_ARC_T_MAX < 1.0):
        issues.append("TANGENT_ARC_T_MIN/T_MAX must satisfy 0 < min < max < 1")

    if Tolerances.SOLVER_BAND_LEFT < 0 or Tolerances.SOLVER_BAND_RIGHT < 0:
        issues.append("Band widths must not be negative")

    return issues


# Validate on import (warning only)
_validation_issues = validate_tolerances()
if _validation_issues:
    from loguru import logger
    for issue in _validation_issues:
        logger.warning(f"Tolerance validation: {issue}")

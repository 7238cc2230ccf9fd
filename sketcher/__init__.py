"""
ParaCore Sketcher Module
"""

from .errors import SketchError, ConstraintError, SingularMatrixError, InvariantViolation, ssassert

from .handles import Handle, HandleKind, IdList, group_handle

from .expr import Expr, ExprVector, ExprQuaternion, Equation

from .entities import Param, Entity, EntityType

from .requests import Request, RequestType

from .constraints import Constraint, ConstraintType, CurveEnd, TangentEnds, AngleSense

from .constraint_equations import generate_equations, validate_constraint, improve_initial_guess, measure

from .solver import System, SolverOptions, SolveResult, SolveStatus, solve

from .sketch import Sketch

"""
ParaCore - Sketch Operations Module
===================================

Interactive sketch operations with a common calling convention.

Usage:
    from sketcher.operations import SplitOperation

    op = SplitOperation(sketch)
    result = op.execute([line_a, line_b], hint=click_point)

    if result.success:
        ...
    else:
        print(result.message)
"""

from .base import OperationResult, ResultStatus, SketchOperation
from .split import SplitOperation
from .tangent_arc import RadiusPolicy, TangentArcFit, TangentArcOperation

__all__ = [
    # Core
    'OperationResult',
    'ResultStatus',
    'SketchOperation',
    # Tangent arc
    'RadiusPolicy',
    'TangentArcFit',
    'TangentArcOperation',
    # Split
    'SplitOperation',
]

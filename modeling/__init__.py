"""
ParaCore - 3D Modeling
Group history, regeneration pipeline and the solid-kernel seam.
"""

from modeling.group import (
    CombineAs, CopyAs, EntityMap, Group, GroupType, PolyError, Predef, RemapRole, Subtype,
)
from modeling.kernel import Build123dKernel, KernelError, Mesh, SolidKernel
from modeling.loops import PolyLoops, assemble_loops
from modeling.result_types import GroupResult, RegenerationResult, ResultStatus
from modeling.regeneration import Regenerator, solve_group, solver_options_for
from modeling.document import Document

__all__ = [
    "CombineAs", "CopyAs", "EntityMap", "Group", "GroupType", "PolyError", "Predef",
    "RemapRole", "Subtype",
    "Build123dKernel", "KernelError", "Mesh", "SolidKernel",
    "PolyLoops", "assemble_loops",
    "GroupResult", "RegenerationResult", "ResultStatus",
    "Regenerator", "solve_group", "solver_options_for",
    "Document",
]

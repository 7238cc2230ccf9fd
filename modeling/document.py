"""
Document - Sketch store, group history and solid kernel in one place

Every document starts with a references group: the origin and the XY,
YZ and ZX workplanes, whose params are never solved.

Usage:
    doc = Document()
    g = doc.new_sketch("XY")
    line = doc.sketch.add_request(RequestType.LINE_SEGMENT, g.h, doc.workplane_of(g))
    ...
    ext = doc.add_extrude(g, depth=5.0)
    result = doc.regenerate()
"""

import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from config.version import APP_NAME, VERSION_STRING
from modeling.group import CombineAs, Group, GroupType, Predef, Subtype
from modeling.kernel import Build123dKernel, SolidKernel
from modeling.regeneration import Regenerator, solve_group
from modeling.result_types import RegenerationResult
from sketcher.entities import Entity
from sketcher.errors import SketchError
from sketcher.geometry import Quaternion, vec
from sketcher.handles import Handle, group_handle
from sketcher.operations import OperationResult, RadiusPolicy, SplitOperation, TangentArcOperation
from sketcher.requests import RequestType
from sketcher.sketch import Sketch
from sketcher.solver import SolveResult, SolverOptions

# (u, v) of each reference workplane
REFERENCE_PLANES = {
    "XY": (vec(1, 0, 0), vec(0, 1, 0)),
    "YZ": (vec(0, 1, 0), vec(0, 0, 1)),
    "ZX": (vec(0, 0, 1), vec(1, 0, 0)),
}


class Document:
    """A sketch store, its groups, and the kernel their solids are built with."""

    def __init__(self, name: str = "Doc", kernel: Optional[SolidKernel] = None):
        self.name = name
        self.sketch = Sketch()
        self.kernel = kernel if kernel is not None else Build123dKernel()
        self.regenerator = Regenerator(self.sketch, self.kernel)
        self._next_group = 1
        self.origin: Optional[Handle] = None
        self.workplanes: Dict[str, Handle] = {}
        self.references = self._create_references()
        self.regenerate_from(self.references.h)
        logger.debug(f"[Document] {APP_NAME} {VERSION_STRING}: new document '{name}' on {type(self.kernel).__name__}")

    # =========================================================================
    # Groups
    # =========================================================================

    def _new_group(self, type: GroupType, name: Optional[str] = None, **kwargs) -> Group:
        n = self._next_group
        self._next_group += 1
        g = Group(group_handle(n), type, name=name or f"g{n:03d}-{type.name.lower()}", order=n, **kwargs)
        self.sketch.groups.add(g)
        logger.debug(f"[Document] New group {g.describe()}")
        return g

    def _create_references(self) -> Group:
        sk = self.sketch
        g = self._new_group(GroupType.DRAWING_3D, "#references", params_known=True)
        origin = sk.add_request(RequestType.DATUM_POINT, g.h)
        sk.point_force_to(origin.point(0), vec())
        self.origin = origin.point(0)
        for name, (u, v) in REFERENCE_PLANES.items():
            req = sk.add_request(RequestType.WORKPLANE, g.h)
            wp = sk.entity(req.main_entity())
            sk.point_force_to(wp.point[0], vec())
            sk.entity(wp.normal).normal_force_to(sk, Quaternion.from_uv(u, v))
            self.workplanes[name] = wp.h
        return g

    @property
    def groups(self) -> List[Group]:
        """Groups in regeneration order."""
        return self.regenerator.ordered_groups()

    def group(self, h: Handle) -> Group:
        return self.sketch.groups.get(h)

    def workplane_of(self, group) -> Handle:
        g = self._as_group(group)
        if g.type is not GroupType.DRAWING_WORKPLANE:
            raise SketchError(f"{g.describe()} is not drawn in a workplane")
        return g.workplane_h()

    def _as_group(self, group) -> Group:
        return group if isinstance(group, Group) else self.sketch.groups.get(group)

    @property
    def running_shell(self) -> Any:
        """Solid at the end of the history."""
        groups = self.groups
        return groups[-1].running_shell if groups else None

    # =========================================================================
    # Sketch groups
    # =========================================================================

    def new_sketch_3d(self, name: Optional[str] = None) -> Group:
        return self._new_group(GroupType.DRAWING_3D, name)

    def new_sketch(self, base: str = "XY", origin: Optional[Handle] = None,
                   name: Optional[str] = None) -> Group:
        """Sketch group in a workplane parallel to a reference plane, through `origin`."""
        if base not in REFERENCE_PLANES:
            raise SketchError(f"Unknown reference plane {base!r}")
        u, v = REFERENCE_PLANES[base]
        return self.new_sketch_in_workplane(origin=origin, q=Quaternion.from_uv(u, v), name=name)

    def new_sketch_in_workplane(self, origin: Optional[Handle] = None, q: Optional[Quaternion] = None,
                                normal: Optional[Handle] = None, lines: Optional[Sequence[Handle]] = None,
                                swap_uv: bool = False, negate_u: bool = False, negate_v: bool = False,
                                name: Optional[str] = None) -> Group:
        """
        Sketch group in a new workplane through `origin`, oriented by two
        line segments, by an existing normal, or by the quaternion `q`.
        The workplane exists once this returns.
        """
        predef = Predef(origin=origin if origin is not None else self.origin,
                        swap_uv=swap_uv, negate_u=negate_u, negate_v=negate_v)
        if lines is not None:
            if len(lines) != 2:
                raise SketchError("A workplane needs exactly two line segments")
            subtype = Subtype.WORKPLANE_BY_LINE_SEGMENTS
            predef.entity_b, predef.entity_c = lines
        elif normal is not None:
            subtype = Subtype.WORKPLANE_BY_POINT_NORMAL
            predef.entity_b = normal
        else:
            subtype = Subtype.WORKPLANE_BY_POINT_ORTHO
            predef.q = q if q is not None else Quaternion.identity()
        g = self._new_group(GroupType.DRAWING_WORKPLANE, name, subtype=subtype, predef=predef)
        self.regenerate_from(g.h)
        return g

    # =========================================================================
    # Solid groups
    # =========================================================================

    def _solid_source(self, source) -> Group:
        src = self._as_group(source)
        if src.type is not GroupType.DRAWING_WORKPLANE:
            raise SketchError(f"{src.describe()} is not a workplane sketch")
        return src

    def add_extrude(self, source, depth: float = 10.0, two_sided: bool = False,
                    combine_as: CombineAs = CombineAs.UNION, name: Optional[str] = None) -> Group:
        """Extrusion of a workplane sketch, locked to the workplane normal."""
        src = self._solid_source(source)
        wp = src.workplane_h()
        n = self.sketch.entity(wp).workplane_normal(self.sketch).normal_num(self.sketch).rotation_n()
        return self._new_group(
            GroupType.EXTRUDE, name, op_a=src.h, combine_as=combine_as,
            subtype=Subtype.TWO_SIDED if two_sided else Subtype.ONE_SIDED,
            predef=Predef(entity_b=wp), initial_vector=tuple(n * depth))

    def add_lathe(self, source, origin: Handle, axis: Handle,
                  combine_as: CombineAs = CombineAs.UNION, name: Optional[str] = None) -> Group:
        """Full revolution of a sketch about the line through `origin` along `axis`."""
        src = self._solid_source(source)
        return self._new_group(GroupType.LATHE, name, op_a=src.h, combine_as=combine_as,
                               predef=Predef(origin=origin, entity_b=axis))

    def add_revolve(self, source, origin: Handle, axis: Handle, angle: float = 30.0,
                    two_sided: bool = False, combine_as: CombineAs = CombineAs.UNION,
                    name: Optional[str] = None) -> Group:
        """Partial revolution; `angle` in degrees per side."""
        src = self._solid_source(source)
        return self._new_group(
            GroupType.REVOLVE, name, op_a=src.h, combine_as=combine_as,
            subtype=Subtype.TWO_SIDED if two_sided else Subtype.ONE_SIDED,
            predef=Predef(origin=origin, entity_b=axis), initial_angle=math.radians(angle))

    def add_translate(self, source, copies: int, offset=(10.0, 0.0, 0.0), two_sided: bool = False,
                      skip_first: bool = False, workplane: Optional[Handle] = None,
                      name: Optional[str] = None) -> Group:
        """Step-and-repeat translation; `workplane` keeps the step parallel to it."""
        src = self._as_group(source)
        return self._new_group(
            GroupType.TRANSLATE, name, op_a=src.h, copies=copies, skip_first=skip_first,
            subtype=Subtype.TWO_SIDED if two_sided else Subtype.ONE_SIDED,
            predef=Predef(entity_b=workplane), initial_vector=tuple(float(c) for c in offset))

    def add_rotate(self, source, copies: int, origin: Handle, axis: Handle, angle: float = 30.0,
                   two_sided: bool = False, skip_first: bool = False,
                   name: Optional[str] = None) -> Group:
        """Step-and-repeat rotation; `angle` in degrees per step."""
        src = self._as_group(source)
        return self._new_group(
            GroupType.ROTATE, name, op_a=src.h, copies=copies, skip_first=skip_first,
            subtype=Subtype.TWO_SIDED if two_sided else Subtype.ONE_SIDED,
            predef=Predef(origin=origin, entity_b=axis), initial_angle=math.radians(angle))

    def add_linked(self, entities: List[Entity], shell: Any = None,
                   combine_as: CombineAs = CombineAs.ASSEMBLE, name: Optional[str] = None) -> Group:
        """Imported geometry: numeric entities and the solid they came with."""
        return self._new_group(GroupType.LINKED, name, imp_entities=list(entities),
                               imp_shell=shell, combine_as=combine_as)

    # =========================================================================
    # Solving and regeneration
    # =========================================================================

    def solve_group(self, group, options: Optional[SolverOptions] = None) -> SolveResult:
        """Solves one group in place, without regenerating anything."""
        g = self._as_group(group)
        result = solve_group(self.sketch, g, options)
        logger.info(f"[Document] Solved {g.describe()}: {result.describe()}")
        return result

    def regenerate_from(self, group: Optional[Handle] = None) -> RegenerationResult:
        h = group.h if isinstance(group, Group) else group
        return self.regenerator.regenerate_from(h)

    def regenerate(self) -> RegenerationResult:
        """Regenerates from the first dirty group."""
        return self.regenerator.regenerate_from(None)

    # =========================================================================
    # Interactive operations
    # =========================================================================

    def fit_tangent_arc(self, point: Handle, radius_policy: Optional[RadiusPolicy] = None,
                        modify_original: Optional[bool] = None) -> OperationResult:
        return TangentArcOperation(self.sketch).execute(point, radius_policy, modify_original)

    def split_entities(self, selection: Sequence[Handle], hint=None) -> OperationResult:
        return SplitOperation(self.sketch).execute(selection, hint)

    def point_num(self, h: Handle) -> np.ndarray:
        return self.sketch.point_num(h)


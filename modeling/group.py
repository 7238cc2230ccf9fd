"""
ParaCore Modeling - Groups
==========================

A group is one step of the model history: a sketch (in 3D or in a
workplane), or an operation on an earlier group (extrude, lathe, revolve,
step-and-repeat, linked import). Each group owns the entities and params
it derives from its source, under handles that stay the same from one
regeneration to the next.

Derived entities get their handles from the group's EntityMap:
(source entity, role, copy number) -> stable index.
"""

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import numpy as np
from loguru import logger

from sketcher.entities import Entity, EntityType, Param
from sketcher.errors import InvariantViolation, SketchError
from sketcher.expr import Equation, Expr, ExprQuaternion, ExprVector
from sketcher.geometry import Quaternion, magnitude, unit, vec
from sketcher.handles import Handle

if TYPE_CHECKING:
    from sketcher.sketch import Sketch
    from sketcher.solver import SolveResult


class GroupType(Enum):
    DRAWING_3D = 5000
    DRAWING_WORKPLANE = 5001
    EXTRUDE = 5100
    LATHE = 5101
    REVOLVE = 5102
    ROTATE = 5200
    TRANSLATE = 5201
    LINKED = 5300


class Subtype(Enum):
    WORKPLANE_BY_POINT_ORTHO = 6000
    WORKPLANE_BY_LINE_SEGMENTS = 6001
    WORKPLANE_BY_POINT_NORMAL = 6002
    ONE_SIDED = 7000
    TWO_SIDED = 7001


class CombineAs(Enum):
    UNION = 0
    DIFFERENCE = 1
    ASSEMBLE = 2
    INTERSECTION = 3


class CopyAs(Enum):
    NUMERIC = auto()
    N_TRANS = auto()
    N_ROT_AA = auto()
    N_ROT_TRANS = auto()


class RemapRole(Enum):
    COPY = 0
    LAST = 1000
    TOP = 1001
    BOTTOM = 1002
    PT_TO_LINE = 1003
    LINE_TO_FACE = 1004
    LATHE_START = 1006
    LATHE_END = 1007
    PT_TO_ARC = 1008
    PT_TO_NORMAL = 1009
    LATHE_ARC_CENTER = 1010
    LATHE_RADIUS = 1011


class PolyError(Enum):
    GOOD = auto()
    NOT_CLOSED = auto()
    NOT_COPLANAR = auto()
    SELF_INTERSECTING = auto()
    ZERO_LEN_EDGE = auto()


# Groups that produce a solid of their own
SOLID_TYPES = frozenset((
    GroupType.EXTRUDE, GroupType.LATHE, GroupType.REVOLVE,
    GroupType.TRANSLATE, GroupType.ROTATE, GroupType.LINKED,
))
STEP_AND_REPEAT_TYPES = frozenset((GroupType.TRANSLATE, GroupType.ROTATE))


class EntityMap:
    """Assigns each (source, role, copy) triple a stable index, in order of first use."""

    def __init__(self):
        self._map: Dict[Tuple[Optional[Handle], RemapRole, int], int] = {}

    def index(self, source: Optional[Handle], role: RemapRole, copy: int = 0) -> int:
        key = (source, role, copy)
        idx = self._map.get(key)
        if idx is None:
            idx = len(self._map)
            self._map[key] = idx
        return idx

    def __len__(self) -> int:
        return len(self._map)


@dataclass
class Predef:
    """Construction inputs of a group, fixed when the group is created."""
    q: Quaternion = field(default_factory=Quaternion.identity)
    origin: Optional[Handle] = None
    entity_b: Optional[Handle] = None
    entity_c: Optional[Handle] = None
    swap_uv: bool = False
    negate_u: bool = False
    negate_v: bool = False


@dataclass
class Group:
    h: Handle
    type: GroupType
    name: str = ""
    order: int = 0
    subtype: Subtype = Subtype.ONE_SIDED
    op_a: Optional[Handle] = None
    op_b: Optional[Handle] = None
    copies: int = 1
    skip_first: bool = False
    combine_as: CombineAs = CombineAs.UNION
    predef: Predef = field(default_factory=Predef)

    suppress: bool = False
    relax_constraints: bool = False
    allow_redundant: bool = False
    suppress_dof_calculation: bool = False
    all_dims_reference: bool = False
    # Params of this group are never solved for
    params_known: bool = False

    # Initial translation (extrude, translate) or center/axis guess (rotate)
    initial_vector: Tuple[float, float, float] = (0.0, 0.0, 10.0)
    initial_angle: float = math.radians(30)

    # Linked import: numeric entities and the solid they came with
    imp_entities: List[Entity] = field(default_factory=list)
    imp_shell: Any = None

    remap: EntityMap = field(default_factory=EntityMap)
    clean: bool = False
    last_signature: Optional[tuple] = None

    solved: Optional['SolveResult'] = None
    poly_loops: List[np.ndarray] = field(default_factory=list)
    loop_normal: np.ndarray = field(default_factory=vec)
    poly_error: PolyError = PolyError.GOOD
    poly_error_at: Optional[np.ndarray] = None
    boolean_failed: bool = False
    this_shell: Any = None
    running_shell: Any = None
    this_mesh: Any = None
    running_mesh: Any = None
    tag: int = 0

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def param_h(self, i: int) -> Handle:
        return self.h.group_param(i)

    def remap_h(self, source: Optional[Handle], role: RemapRole, copy: int = 0) -> Handle:
        return self.h.remap_entity(self.remap.index(source, role, copy))

    def workplane_h(self) -> Handle:
        """The workplane a DRAWING_WORKPLANE group defines."""
        return self.h.group_entity(0)

    def is_solid(self) -> bool:
        return self.type in SOLID_TYPES

    def is_step_and_repeat(self) -> bool:
        return self.type in STEP_AND_REPEAT_TYPES

    def dependencies(self) -> List[Handle]:
        deps = [g for g in (self.op_a, self.op_b) if g is not None]
        for h in (self.predef.origin, self.predef.entity_b, self.predef.entity_c):
            if h is not None and h.group not in deps and h.group != self.h:
                deps.append(h.group)
        return deps

    def describe(self) -> str:
        return f"{self.name or self.type.name.lower()} [{self.h!r}]"

    # ------------------------------------------------------------------
    # Entity and param generation
    # ------------------------------------------------------------------

    def _add_param(self, sk: 'Sketch', i: int, v: float) -> Handle:
        h = self.param_h(i)
        sk.params.add(Param(h, float(v), known=self.params_known))
        return h

    def _add_params(self, sk: 'Sketch', values) -> Tuple[Handle, ...]:
        return tuple(self._add_param(sk, i, v) for i, v in enumerate(values))

    def _source_entities(self, sk: 'Sketch') -> List[Entity]:
        return [e for e in sk.entities if e.group == self.op_a]

    def sides(self) -> Tuple[int, int]:
        if self.subtype is Subtype.TWO_SIDED:
            return -1, 1
        return 0, 1

    def generate(self, sk: 'Sketch') -> None:
        """Adds the entities and params this group derives from its sources."""
        t = self.type
        if t is GroupType.DRAWING_3D:
            return
        if t is GroupType.DRAWING_WORKPLANE:
            self._generate_workplane(sk)
            return

        if t is GroupType.EXTRUDE:
            params = self._add_params(sk, self.initial_vector) + (None,) * 4
            ai, af = self.sides()
            pt = None
            for e in self._source_entities(sk):
                if e.is_point():
                    pt = e.h
                self.copy_entity(sk, e, ai, RemapRole.BOTTOM, 0, params, CopyAs.N_TRANS)
                self.copy_entity(sk, e, af, RemapRole.TOP, 0, params, CopyAs.N_TRANS)
                self.make_extrusion_lines(sk, e)
            self.make_extrusion_top_bottom_faces(sk, pt)
            return

        if t in (GroupType.LATHE, GroupType.REVOLVE):
            axis_pos = sk.point_num(self._require(self.predef.origin, "axis origin"))
            axis_dir = sk.entity(self._require(self.predef.entity_b, "axis")).vector_num(sk)
            if magnitude(axis_dir) == 0.0:
                raise SketchError("Revolution axis has zero length")
            if t is GroupType.LATHE:
                for e in self._source_entities(sk):
                    self.copy_entity(sk, e, 0, RemapRole.LATHE_START, 0, None, CopyAs.NUMERIC)
                    self.copy_entity(sk, e, 0, RemapRole.LATHE_END, 0, None, CopyAs.NUMERIC)
                    self.make_lathe_circles(sk, e, axis_pos, axis_dir, full=True)
                return
            params = self._add_params(sk, (*axis_pos, self.initial_angle, *unit(axis_dir)))
            ai, af = self.sides()
            pt = None
            for e in self._source_entities(sk):
                if e.is_point():
                    pt = e.h
                self.copy_entity(sk, e, ai, RemapRole.LATHE_START, 0, params, CopyAs.N_ROT_AA)
                self.copy_entity(sk, e, af, RemapRole.LATHE_END, 0, params, CopyAs.N_ROT_AA)
                self.make_lathe_circles(sk, e, axis_pos, axis_dir, full=False)
            self.make_revolve_end_faces(sk, pt, params, ai, af)
            return

        if t in STEP_AND_REPEAT_TYPES:
            if t is GroupType.TRANSLATE:
                params = self._add_params(sk, self.initial_vector) + (None,) * 4
                copy_as = CopyAs.N_TRANS
            else:
                center = (sk.point_num(self.predef.origin) if self.predef.origin is not None
                          else vec(*self.initial_vector))
                axis = (unit(sk.entity(self.predef.entity_b).vector_num(sk))
                        if self.predef.entity_b is not None else unit(vec(*self.initial_vector)))
                params = self._add_params(sk, (*center, self.initial_angle, *axis))
                copy_as = CopyAs.N_ROT_AA
            for a, times in self.step_copies():
                last = a == self._step_count() - 1
                role, copy = (RemapRole.LAST, 0) if last else (RemapRole.COPY, a)
                for e in self._source_entities(sk):
                    self.copy_entity(sk, e, times, role, copy, params, copy_as)
            return

        if t is GroupType.LINKED:
            params = self._add_params(sk, (0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0))
            for e in self.imp_entities:
                self.copy_entity(sk, e, 0, RemapRole.COPY, 0, params, CopyAs.N_ROT_TRANS, live=False)
            return

        raise InvariantViolation(f"Unexpected group type {t}")

    def _require(self, h: Optional[Handle], what: str) -> Handle:
        if h is None:
            raise SketchError(f"{self.describe()} needs an {what}")
        return h

    def _step_count(self) -> int:
        n = self.copies
        if self.subtype is Subtype.ONE_SIDED and self.skip_first:
            n += 1
        return n

    def step_copies(self) -> List[Tuple[int, int]]:
        """(copy number, times applied) of each step-and-repeat copy."""
        n = self._step_count()
        a0 = 1 if self.subtype is Subtype.ONE_SIDED and self.skip_first else 0
        out = []
        for a in range(a0, n):
            if self.subtype is Subtype.ONE_SIDED:
                times = a
            else:
                # Two-sided copies are spread symmetrically around the original
                times = a * 2 - (n - 1)
            out.append((a, times))
        return out

    def _generate_workplane(self, sk: 'Sketch') -> None:
        p = self.predef
        if self.subtype is Subtype.WORKPLANE_BY_LINE_SEGMENTS:
            u = unit(sk.entity(self._require(p.entity_b, "first line")).vector_num(sk))
            v = sk.entity(self._require(p.entity_c, "second line")).vector_num(sk)
            n = np.cross(u, v)
            if magnitude(n) == 0.0:
                raise SketchError("Workplane lines are parallel")
            v = unit(np.cross(n, u))
            if p.swap_uv:
                u, v = v, u
            if p.negate_u:
                u = -u
            if p.negate_v:
                v = -v
            q = Quaternion.from_uv(u, v)
        elif self.subtype is Subtype.WORKPLANE_BY_POINT_ORTHO:
            q = p.q
        elif self.subtype is Subtype.WORKPLANE_BY_POINT_NORMAL:
            q = sk.entity(self._require(p.entity_b, "normal")).normal_num(sk)
        else:
            raise InvariantViolation(f"Unexpected workplane subtype {self.subtype}")

        origin = sk.point_num(self._require(p.origin, "origin point"))
        point = Entity(self.h.group_entity(2), EntityType.POINT_N_COPY, self.h,
                       num_point=origin, construction=True)
        normal = Entity(self.h.group_entity(1), EntityType.NORMAL_N_COPY, self.h, num_normal=q)
        normal.point[0] = point.h
        wp = Entity(self.h.group_entity(0), EntityType.WORKPLANE, self.h, normal=normal.h)
        wp.point[0] = point.h
        sk.entities.add(normal)
        sk.entities.add(point)
        sk.entities.add(wp)

    def copy_entity(self, sk: 'Sketch', ep: Entity, times_applied: int, role: RemapRole, copy: int,
                    params: Optional[Tuple[Optional[Handle], ...]], copy_as: CopyAs,
                    live: bool = True) -> Optional[Entity]:
        """
        Adds a copy of `ep` under a remapped handle. Source geometry is
        frozen numerically; only the transform params stay symbolic.
        `live` reads the source's current numeric values from the sketch,
        otherwise its stored numeric payload is used (linked imports).
        """
        if ep.is_workplane():
            return None
        en = Entity(self.remap_h(ep.h, role, copy), ep.type, self.h,
                    times_applied=times_applied, construction=ep.construction)
        if params is not None:
            en.param = list(params)

        if ep.is_point():
            en.type = {
                CopyAs.N_TRANS: EntityType.POINT_N_TRANS,
                CopyAs.NUMERIC: EntityType.POINT_N_COPY,
                CopyAs.N_ROT_AA: EntityType.POINT_N_ROT_AA,
                CopyAs.N_ROT_TRANS: EntityType.POINT_N_ROT_TRANS,
            }[copy_as]
            en.num_point = ep.point_num(sk) if live else np.array(ep.num_point, dtype=float)
        elif ep.is_normal():
            en.type = {
                CopyAs.N_TRANS: EntityType.NORMAL_N_COPY,
                CopyAs.NUMERIC: EntityType.NORMAL_N_COPY,
                CopyAs.N_ROT_AA: EntityType.NORMAL_N_ROT_AA,
                CopyAs.N_ROT_TRANS: EntityType.NORMAL_N_ROT,
            }[copy_as]
            en.num_normal = ep.normal_num(sk) if live else ep.num_normal
            if ep.point[0] is not None:
                en.point[0] = self.remap_h(ep.point[0], role, copy)
        elif ep.is_distance():
            en.type = EntityType.DISTANCE_N_COPY
            en.num_distance = ep.distance_num(sk) if live else ep.num_distance
        elif ep.is_face():
            if copy_as is CopyAs.NUMERIC:
                # A frozen face has no point entity to hang on; not copied
                return None
            en.type = {
                CopyAs.N_TRANS: EntityType.FACE_N_TRANS,
                CopyAs.N_ROT_AA: EntityType.FACE_N_ROT_AA,
                CopyAs.N_ROT_TRANS: EntityType.FACE_N_ROT_TRANS,
            }[copy_as]
            if live:
                en.num_point = ep.face_point_num(sk)
                en.num_normal = Quaternion.from_vector(ep.face_normal_num(sk))
            else:
                en.num_point, en.num_normal = ep.num_point, ep.num_normal
        else:
            for i in range(ep.point_count()):
                en.point[i] = self.remap_h(ep.point[i], role, copy)
            if ep.normal is not None:
                en.normal = self.remap_h(ep.normal, role, copy)
            if ep.distance is not None:
                en.distance = self.remap_h(ep.distance, role, copy)
        sk.entities.add(en)
        return en

    def make_extrusion_lines(self, sk: 'Sketch', ep: Entity) -> None:
        if ep.is_point():
            # A point sweeps a line segment
            en = Entity(self.remap_h(ep.h, RemapRole.PT_TO_LINE), EntityType.LINE_SEGMENT, self.h,
                        construction=ep.construction)
            en.point[0] = self.remap_h(ep.h, RemapRole.TOP)
            en.point[1] = self.remap_h(ep.h, RemapRole.BOTTOM)
            sk.entities.add(en)
        elif ep.type is EntityType.LINE_SEGMENT:
            # A line sweeps a plane face containing the line and the extrusion direction
            a = sk.point_num(ep.point[0])
            b = sk.point_num(ep.point[1])
            en = Entity(self.remap_h(ep.h, RemapRole.LINE_TO_FACE), EntityType.FACE_XPROD, self.h,
                        construction=ep.construction, num_point=a,
                        num_normal=Quaternion.from_vector(b - a))
            en.param[:3] = [self.param_h(0), self.param_h(1), self.param_h(2)]
            sk.entities.add(en)

    def _source_normal(self, sk: 'Sketch') -> np.ndarray:
        src = sk.groups.get(self.op_a)
        n = src.loop_normal
        if magnitude(n) == 0.0 and src.type is GroupType.DRAWING_WORKPLANE:
            n = sk.entity(src.workplane_h()).workplane_normal(sk).normal_num(sk).rotation_n()
        return n

    def make_extrusion_top_bottom_faces(self, sk: 'Sketch', pt: Optional[Handle]) -> None:
        if pt is None:
            return
        n = self._source_normal(sk)
        for role, sign in ((RemapRole.TOP, 1.0), (RemapRole.BOTTOM, -1.0)):
            en = Entity(self.remap_h(None, role), EntityType.FACE_NORMAL_PT, self.h,
                        num_normal=Quaternion.from_vector(n * sign))
            en.point[0] = self.remap_h(pt, role)
            sk.entities.add(en)

    def make_revolve_end_faces(self, sk: 'Sketch', pt: Optional[Handle], params, ai: int, af: int) -> None:
        if pt is None:
            return
        n = self._source_normal(sk)
        src = sk.point_num(pt)
        for role, sign, times in ((RemapRole.LATHE_END, 1.0, af), (RemapRole.LATHE_START, -1.0, ai)):
            en = Entity(self.remap_h(None, role), EntityType.FACE_N_ROT_AA, self.h,
                        num_point=src, num_normal=Quaternion.from_vector(n * sign),
                        times_applied=times)
            en.param = list(params)
            en.point[0] = self.remap_h(pt, role)
            sk.entities.add(en)

    def make_lathe_circles(self, sk: 'Sketch', ep: Entity, axis_pos: np.ndarray, axis_dir: np.ndarray,
                           full: bool) -> None:
        """A point swept around the axis: a full circle (lathe) or an arc between the end copies."""
        if not ep.is_point():
            return
        p = ep.point_num(sk)
        k = float(np.dot(p - axis_pos, axis_dir) / np.dot(axis_dir, axis_dir))
        c = axis_pos + axis_dir * k
        r = magnitude(p - c)
        if r < 1e-9:
            # Points on the axis do not sweep anything
            return
        n = unit(axis_dir)
        u = unit(p - c)
        v = np.cross(n, u)

        center = Entity(self.remap_h(ep.h, RemapRole.LATHE_ARC_CENTER), EntityType.POINT_N_COPY,
                        self.h, num_point=c, construction=True)
        normal = Entity(self.remap_h(ep.h, RemapRole.PT_TO_NORMAL), EntityType.NORMAL_N_COPY,
                        self.h, num_normal=Quaternion.from_uv(u, v))
        normal.point[0] = center.h
        sk.entities.add(center)
        sk.entities.add(normal)

        curve = Entity(self.remap_h(ep.h, RemapRole.PT_TO_ARC), EntityType.ARC_OF_CIRCLE, self.h,
                       construction=ep.construction, normal=normal.h)
        curve.point[0] = center.h
        if full:
            curve.type = EntityType.CIRCLE
            dist = Entity(self.remap_h(ep.h, RemapRole.LATHE_RADIUS), EntityType.DISTANCE_N_COPY,
                          self.h, num_distance=r)
            sk.entities.add(dist)
            curve.distance = dist.h
        else:
            curve.point[1] = self.remap_h(ep.h, RemapRole.LATHE_START)
            curve.point[2] = self.remap_h(ep.h, RemapRole.LATHE_END)
        sk.entities.add(curve)

    # ------------------------------------------------------------------
    # Equations
    # ------------------------------------------------------------------

    def generate_equations(self, sk: 'Sketch') -> List[Equation]:
        """Equations that tie the group's own params to its inputs."""
        eqs: List[Equation] = []

        def add(e: Expr) -> None:
            eqs.append(Equation(self.h.group_equation(len(eqs)), e))

        t = self.type
        if t is GroupType.LINKED:
            q = ExprQuaternion.from_params(*(self.param_h(i) for i in range(3, 7)))
            add(q.magnitude() - 1.0)
        elif t in (GroupType.ROTATE, GroupType.REVOLVE):
            if self.predef.origin is None or self.predef.entity_b is None:
                return eqs
            # Center and axis are pinned; the angle (param 3) is free
            orig = sk.entity(self.predef.origin).point_exprs(sk)
            for i, oc in enumerate(orig.components()):
                add(oc - Expr.param(self.param_h(i)))
            axis = unit(sk.entity(self.predef.entity_b).vector_num(sk))
            for i in range(3):
                add(Expr.const(axis[i]) - Expr.param(self.param_h(4 + i)))
        elif t is GroupType.EXTRUDE:
            if self.predef.entity_b is not None:
                # Extrusion direction locked to the workplane normal
                q = sk.entity(self.predef.entity_b).workplane_normal(sk).normal_exprs(sk)
                ext = ExprVector.from_params(*(self.param_h(i) for i in range(3)))
                add(q.rotation_u().dot(ext))
                add(q.rotation_v().dot(ext))
        elif t is GroupType.TRANSLATE:
            if self.predef.entity_b is not None:
                n = sk.entity(self.predef.entity_b).workplane_normal(sk).normal_exprs_n(sk)
                add(ExprVector.from_params(*(self.param_h(i) for i in range(3))).dot(n))
        return eqs

    # ------------------------------------------------------------------
    # Numeric transforms for the solid kernel
    # ------------------------------------------------------------------

    def _pv(self, sk: 'Sketch', i: int) -> float:
        return sk.params.get(self.param_h(i)).val

    def extrusion_vector(self, sk: 'Sketch') -> np.ndarray:
        return vec(self._pv(sk, 0), self._pv(sk, 1), self._pv(sk, 2))

    def rotation_axis(self, sk: 'Sketch') -> Tuple[np.ndarray, np.ndarray, float]:
        """(center, unit axis, angle per step) of a revolve or rotate group."""
        center = vec(self._pv(sk, 0), self._pv(sk, 1), self._pv(sk, 2))
        axis = unit(vec(self._pv(sk, 4), self._pv(sk, 5), self._pv(sk, 6)))
        return center, axis, self._pv(sk, 3)

    def copy_transform(self, sk: 'Sketch', times: int) -> Tuple[np.ndarray, Quaternion]:
        """(translation, rotation) that maps the source onto copy `times`: p' = q(p) + t."""
        if self.type is GroupType.TRANSLATE:
            return self.extrusion_vector(sk) * times, Quaternion.identity()
        if self.type is GroupType.ROTATE:
            center, axis, angle = self.rotation_axis(sk)
            q = Quaternion.from_axis_angle(axis, angle * times)
            return center - q.rotate(center), q
        if self.type is GroupType.LINKED:
            q = Quaternion(*(self._pv(sk, i) for i in range(3, 7))).normalized()
            return vec(self._pv(sk, 0), self._pv(sk, 1), self._pv(sk, 2)), q
        raise InvariantViolation(f"No copy transform for {self.type}")

    def output_signature(self, sk: 'Sketch') -> tuple:
        """Numeric fingerprint of everything this group exposes to later groups."""
        vals = tuple(round(p.val, 9) for p in sk.params if p.h.owner == self.h.owner)
        ents = tuple(e.h for e in sk.entities if e.group == self.h)
        return vals, ents, self.boolean_failed, self.poly_error

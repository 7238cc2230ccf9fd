"""
ParaCore Sketcher - Parameters and entities
===========================================

Entities form a closed set of kinds (EntityType). Every accessor takes the
sketch explicitly and dispatches exhaustively on the kind. Unknown kinds
are programmer errors.

Copied entities (the *_N_* kinds) store their source geometry numerically;
only the transform of the owning group is symbolic.

Param layout of the transformed kinds:
    *_N_TRANS:      param[0..2] translation
    *_N_ROT_TRANS:  param[0..2] translation, param[3..6] quaternion
    *_N_ROT_AA:     param[0..2] rotation center, param[3] angle per step,
                    param[4..6] axis
"""

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np

from config.tolerances import Tolerances
from sketcher.errors import InvariantViolation, ssassert
from sketcher.expr import Equation, Expr, ExprQuaternion, ExprVector
from sketcher.geometry import Quaternion, normal_basis, unit, vec
from sketcher.handles import Handle

if TYPE_CHECKING:
    from sketcher.sketch import Sketch


@dataclass
class Param:
    h: Handle
    val: float = 0.0
    known: bool = False
    tag: int = 0


class EntityType(Enum):
    POINT_IN_3D = auto()
    POINT_IN_2D = auto()
    POINT_N_TRANS = auto()
    POINT_N_ROT_TRANS = auto()
    POINT_N_ROT_AA = auto()
    POINT_N_COPY = auto()

    NORMAL_IN_3D = auto()
    NORMAL_IN_2D = auto()
    NORMAL_N_COPY = auto()
    NORMAL_N_ROT = auto()
    NORMAL_N_ROT_AA = auto()

    WORKPLANE = auto()
    LINE_SEGMENT = auto()
    CUBIC = auto()
    CIRCLE = auto()
    ARC_OF_CIRCLE = auto()

    DISTANCE = auto()
    DISTANCE_N_COPY = auto()

    FACE_NORMAL_PT = auto()
    FACE_XPROD = auto()
    FACE_N_TRANS = auto()
    FACE_N_ROT_TRANS = auto()
    FACE_N_ROT_AA = auto()


POINT_TYPES = frozenset((
    EntityType.POINT_IN_3D, EntityType.POINT_IN_2D, EntityType.POINT_N_TRANS,
    EntityType.POINT_N_ROT_TRANS, EntityType.POINT_N_ROT_AA, EntityType.POINT_N_COPY,
))
NORMAL_TYPES = frozenset((
    EntityType.NORMAL_IN_3D, EntityType.NORMAL_IN_2D, EntityType.NORMAL_N_COPY,
    EntityType.NORMAL_N_ROT, EntityType.NORMAL_N_ROT_AA,
))
FACE_TYPES = frozenset((
    EntityType.FACE_NORMAL_PT, EntityType.FACE_XPROD, EntityType.FACE_N_TRANS,
    EntityType.FACE_N_ROT_TRANS, EntityType.FACE_N_ROT_AA,
))
CURVE_TYPES = frozenset((
    EntityType.LINE_SEGMENT, EntityType.CUBIC, EntityType.CIRCLE, EntityType.ARC_OF_CIRCLE,
))


@dataclass
class Entity:
    h: Handle
    type: EntityType
    group: Handle
    workplane: Optional[Handle] = None
    point: List[Optional[Handle]] = field(default_factory=lambda: [None] * 4)
    normal: Optional[Handle] = None
    distance: Optional[Handle] = None
    param: List[Optional[Handle]] = field(default_factory=lambda: [None] * 7)
    num_point: np.ndarray = field(default_factory=vec)
    num_normal: Quaternion = field(default_factory=Quaternion.identity)
    num_distance: float = 0.0
    times_applied: int = 0
    construction: bool = False
    tag: int = 0

    # ------------------------------------------------------------------
    # Kind predicates
    # ------------------------------------------------------------------

    def is_point(self) -> bool:
        return self.type in POINT_TYPES

    def is_normal(self) -> bool:
        return self.type in NORMAL_TYPES

    def is_face(self) -> bool:
        return self.type in FACE_TYPES

    def is_workplane(self) -> bool:
        return self.type is EntityType.WORKPLANE

    def is_distance(self) -> bool:
        return self.type in (EntityType.DISTANCE, EntityType.DISTANCE_N_COPY)

    def is_circle(self) -> bool:
        return self.type in (EntityType.CIRCLE, EntityType.ARC_OF_CIRCLE)

    def is_curve(self) -> bool:
        return self.type in CURVE_TYPES

    def has_vector(self) -> bool:
        return self.type is EntityType.LINE_SEGMENT or self.is_normal()

    def point_count(self) -> int:
        return {
            EntityType.LINE_SEGMENT: 2,
            EntityType.CUBIC: 4,
            EntityType.CIRCLE: 1,
            EntityType.ARC_OF_CIRCLE: 3,
            EntityType.WORKPLANE: 1,
            EntityType.FACE_NORMAL_PT: 1,
        }.get(self.type, 0)

    def endpoints(self) -> List[Handle]:
        """Points where another curve can attach."""
        if self.type is EntityType.LINE_SEGMENT:
            return [self.point[0], self.point[1]]
        if self.type is EntityType.ARC_OF_CIRCLE:
            return [self.point[1], self.point[2]]
        if self.type is EntityType.CUBIC:
            return [self.point[0], self.point[3]]
        return []

    def _trans_exprs(self) -> ExprVector:
        return ExprVector.from_params(self.param[0], self.param[1], self.param[2])

    def _axis_angle_exprs(self) -> ExprQuaternion:
        axis = ExprVector.from_params(self.param[4], self.param[5], self.param[6])
        theta = Expr.param(self.param[3]) * float(self.times_applied)
        return ExprQuaternion.from_axis_angle(axis, theta)

    def _rot_exprs(self) -> ExprQuaternion:
        return ExprQuaternion.from_params(self.param[3], self.param[4], self.param[5], self.param[6])

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    def point_exprs(self, sk: 'Sketch') -> ExprVector:
        t = self.type
        if t is EntityType.POINT_IN_3D:
            return ExprVector.from_params(self.param[0], self.param[1], self.param[2])
        if t is EntityType.POINT_IN_2D:
            wp = sk.entity(self.workplane)
            q = sk.entity(wp.normal).normal_exprs(sk)
            origin = sk.entity(wp.point[0]).point_exprs(sk)
            u = Expr.param(self.param[0])
            v = Expr.param(self.param[1])
            return origin.plus(q.rotation_u().scaled_by(u)).plus(q.rotation_v().scaled_by(v))
        orig = ExprVector.from_num(self.num_point)
        if t is EntityType.POINT_N_TRANS:
            return orig.plus(self._trans_exprs().scaled_by(float(self.times_applied)))
        if t is EntityType.POINT_N_ROT_TRANS:
            return self._rot_exprs().rotate(orig).plus(self._trans_exprs())
        if t is EntityType.POINT_N_ROT_AA:
            trans = self._trans_exprs()
            return self._axis_angle_exprs().rotate(orig.minus(trans)).plus(trans)
        if t is EntityType.POINT_N_COPY:
            return orig
        raise InvariantViolation(f"point_exprs on {t}")

    def point_exprs_in_workplane(self, sk: 'Sketch', wrkpl: Handle) -> Tuple[Expr, Expr]:
        if self.type is EntityType.POINT_IN_2D and self.workplane == wrkpl:
            return Expr.param(self.param[0]), Expr.param(self.param[1])
        wp = sk.entity(wrkpl)
        q = sk.entity(wp.normal).normal_exprs(sk)
        d = self.point_exprs(sk).minus(sk.entity(wp.point[0]).point_exprs(sk))
        return d.dot(q.rotation_u()), d.dot(q.rotation_v())

    def point_num(self, sk: 'Sketch') -> np.ndarray:
        if self.type is EntityType.POINT_IN_3D:
            return vec(*(sk.params.get(h).val for h in self.param[:3]))
        return self.point_exprs(sk).eval(sk.values)

    def point_force_to(self, sk: 'Sketch', p: np.ndarray) -> None:
        t = self.type
        if t is EntityType.POINT_IN_3D:
            for h, c in zip(self.param[:3], p):
                sk.params.get(h).val = float(c)
        elif t is EntityType.POINT_IN_2D:
            wp = sk.entity(self.workplane)
            origin = sk.entity(wp.point[0]).point_num(sk)
            q = sk.entity(wp.normal).normal_num(sk)
            d = np.asarray(p, dtype=float) - origin
            sk.params.get(self.param[0]).val = float(np.dot(d, q.rotation_u()))
            sk.params.get(self.param[1]).val = float(np.dot(d, q.rotation_v()))
        elif t is EntityType.POINT_N_TRANS:
            if self.times_applied == 0:
                return
            trans = (np.asarray(p) - self.num_point) / self.times_applied
            for h, c in zip(self.param[:3], trans):
                sk.params.get(h).val = float(c)
        elif t is EntityType.POINT_N_ROT_TRANS:
            q = Quaternion(*(sk.params.get(h).val for h in self.param[3:7]))
            trans = np.asarray(p) - q.rotate(self.num_point)
            for h, c in zip(self.param[:3], trans):
                sk.params.get(h).val = float(c)
        elif t is EntityType.POINT_N_ROT_AA:
            # Only the angle is forced; center and axis stay put
            if self.times_applied == 0:
                return
            offset = vec(*(sk.params.get(h).val for h in self.param[:3]))
            axis = vec(*(sk.params.get(h).val for h in self.param[4:7]))
            u, v = normal_basis(axis)
            po, numo = np.asarray(p) - offset, self.num_point - offset
            thetaf = math.atan2(np.dot(v, po), np.dot(u, po)) - math.atan2(np.dot(v, numo), np.dot(u, numo))
            angle = sk.params.get(self.param[3])
            thetai = angle.val * self.times_applied
            dtheta = math.remainder(thetaf - thetai, 2 * math.pi)
            angle.val = (thetai + dtheta) / self.times_applied
        elif t is EntityType.POINT_N_COPY:
            pass
        else:
            raise InvariantViolation(f"point_force_to on {t}")

    # ------------------------------------------------------------------
    # Normals and workplanes
    # ------------------------------------------------------------------

    def normal_exprs(self, sk: 'Sketch') -> ExprQuaternion:
        t = self.type
        if t is EntityType.NORMAL_IN_3D:
            return ExprQuaternion.from_params(*self.param[:4])
        if t is EntityType.NORMAL_IN_2D:
            wp = sk.entity(self.workplane)
            return sk.entity(wp.normal).normal_exprs(sk)
        num = ExprQuaternion.from_num(self.num_normal)
        if t is EntityType.NORMAL_N_COPY:
            return num
        if t is EntityType.NORMAL_N_ROT:
            return self._rot_exprs().times(num)
        if t is EntityType.NORMAL_N_ROT_AA:
            return self._axis_angle_exprs().times(num)
        raise InvariantViolation(f"normal_exprs on {t}")

    def normal_exprs_u(self, sk: 'Sketch') -> ExprVector:
        return self.normal_exprs(sk).rotation_u()

    def normal_exprs_v(self, sk: 'Sketch') -> ExprVector:
        return self.normal_exprs(sk).rotation_v()

    def normal_exprs_n(self, sk: 'Sketch') -> ExprVector:
        return self.normal_exprs(sk).rotation_n()

    def normal_num(self, sk: 'Sketch') -> Quaternion:
        if self.type is EntityType.NORMAL_N_COPY:
            return self.num_normal
        q = self.normal_exprs(sk)
        return Quaternion(*(c.eval(sk.values) for c in (q.w, q.vx, q.vy, q.vz)))

    def normal_force_to(self, sk: 'Sketch', q: Quaternion) -> None:
        if self.type is EntityType.NORMAL_IN_3D:
            for h, c in zip(self.param[:4], q):
                sk.params.get(h).val = float(c)
        # Copied and workplane normals follow their sources

    def workplane_normal(self, sk: 'Sketch') -> 'Entity':
        ssassert(self.is_workplane(), f"{self.h!r} is not a workplane")
        return sk.entity(self.normal)

    def workplane_origin_exprs(self, sk: 'Sketch') -> ExprVector:
        ssassert(self.is_workplane(), f"{self.h!r} is not a workplane")
        return sk.entity(self.point[0]).point_exprs(sk)

    # ------------------------------------------------------------------
    # Distances and circles
    # ------------------------------------------------------------------

    def distance_expr(self, sk: 'Sketch') -> Expr:
        if self.type is EntityType.DISTANCE:
            return Expr.param(self.param[0])
        if self.type is EntityType.DISTANCE_N_COPY:
            return Expr.const(self.num_distance)
        raise InvariantViolation(f"distance_expr on {self.type}")

    def distance_num(self, sk: 'Sketch') -> float:
        return self.distance_expr(sk).eval(sk.values)

    def distance_force_to(self, sk: 'Sketch', d: float) -> None:
        if self.type is EntityType.DISTANCE:
            sk.params.get(self.param[0]).val = float(d)

    def circle_radius_expr(self, sk: 'Sketch') -> Expr:
        if self.type is EntityType.CIRCLE:
            return sk.entity(self.distance).distance_expr(sk)
        if self.type is EntityType.ARC_OF_CIRCLE:
            return distance_expr(sk, self.workplane, self.point[0], self.point[1])
        raise InvariantViolation(f"circle_radius_expr on {self.type}")

    def circle_radius_num(self, sk: 'Sketch') -> float:
        if self.type is EntityType.CIRCLE:
            return abs(sk.entity(self.distance).distance_num(sk))
        return float(np.linalg.norm(sk.point_num(self.point[1]) - sk.point_num(self.point[0])))

    def arc_angles(self, sk: 'Sketch') -> Tuple[float, float, float]:
        """(theta_start, theta_finish, dtheta) in the arc's normal frame, dtheta in (0, 2*pi]."""
        ssassert(self.type is EntityType.ARC_OF_CIRCLE, f"arc_angles on {self.type}")
        q = sk.entity(self.normal).normal_num(sk)
        u, v = q.rotation_u(), q.rotation_v()
        c = sk.point_num(self.point[0])
        pa = sk.point_num(self.point[1]) - c
        pb = sk.point_num(self.point[2]) - c
        thetaa = math.atan2(np.dot(pa, v), np.dot(pa, u))
        thetab = math.atan2(np.dot(pb, v), np.dot(pb, u))
        dtheta = (thetab - thetaa) % (2 * math.pi)
        # Coincident endpoints mean a full circle, not an empty arc
        if dtheta < 1e-6:
            dtheta += 2 * math.pi
        return thetaa, thetab, dtheta

    # ------------------------------------------------------------------
    # Vectors (lines and normals)
    # ------------------------------------------------------------------

    def vector_exprs(self, sk: 'Sketch') -> ExprVector:
        if self.type is EntityType.LINE_SEGMENT:
            return sk.entity(self.point[1]).point_exprs(sk).minus(sk.entity(self.point[0]).point_exprs(sk))
        if self.is_normal():
            return self.normal_exprs_n(sk)
        raise InvariantViolation(f"vector_exprs on {self.type}")

    def vector_exprs_in_workplane(self, sk: 'Sketch', wrkpl: Optional[Handle]) -> ExprVector:
        if wrkpl is None:
            return self.vector_exprs(sk)
        q = sk.entity(sk.entity(wrkpl).normal).normal_exprs(sk)
        ev = self.vector_exprs(sk)
        return ExprVector(ev.dot(q.rotation_u()), ev.dot(q.rotation_v()), Expr.const(0.0))

    def vector_num(self, sk: 'Sketch') -> np.ndarray:
        return self.vector_exprs(sk).eval(sk.values)

    def cubic_start_tangent_exprs(self, sk: 'Sketch') -> ExprVector:
        return sk.entity(self.point[1]).point_exprs(sk).minus(sk.entity(self.point[0]).point_exprs(sk))

    def cubic_finish_tangent_exprs(self, sk: 'Sketch') -> ExprVector:
        return sk.entity(self.point[3]).point_exprs(sk).minus(sk.entity(self.point[2]).point_exprs(sk))

    # ------------------------------------------------------------------
    # Faces
    # ------------------------------------------------------------------

    def face_normal_exprs(self, sk: 'Sketch') -> ExprVector:
        t = self.type
        n = ExprVector.from_num(self.num_normal.vector())
        if t is EntityType.FACE_NORMAL_PT:
            return ExprVector.from_num(unit(self.num_normal.vector()))
        if t is EntityType.FACE_XPROD:
            return self._trans_exprs().cross(n).with_magnitude(1.0)
        if t is EntityType.FACE_N_TRANS:
            return n
        if t is EntityType.FACE_N_ROT_TRANS:
            return self._rot_exprs().rotate(n)
        if t is EntityType.FACE_N_ROT_AA:
            return self._axis_angle_exprs().rotate(n)
        raise InvariantViolation(f"face_normal_exprs on {t}")

    def face_point_exprs(self, sk: 'Sketch') -> ExprVector:
        t = self.type
        orig = ExprVector.from_num(self.num_point)
        if t is EntityType.FACE_NORMAL_PT:
            return sk.entity(self.point[0]).point_exprs(sk)
        if t is EntityType.FACE_XPROD:
            return orig
        if t is EntityType.FACE_N_TRANS:
            return orig.plus(self._trans_exprs().scaled_by(float(self.times_applied)))
        if t is EntityType.FACE_N_ROT_TRANS:
            return self._rot_exprs().rotate(orig).plus(self._trans_exprs())
        if t is EntityType.FACE_N_ROT_AA:
            trans = self._trans_exprs()
            return self._axis_angle_exprs().rotate(orig.minus(trans)).plus(trans)
        raise InvariantViolation(f"face_point_exprs on {t}")

    def face_normal_num(self, sk: 'Sketch') -> np.ndarray:
        return unit(self.face_normal_exprs(sk).eval(sk.values))

    def face_point_num(self, sk: 'Sketch') -> np.ndarray:
        return self.face_point_exprs(sk).eval(sk.values)

    # ------------------------------------------------------------------
    # Implicit equations
    # ------------------------------------------------------------------

    def generate_equations(self, sk: 'Sketch') -> List[Equation]:
        """Equations an entity imposes on its own params."""
        if self.type is EntityType.NORMAL_IN_3D:
            q = self.normal_exprs(sk)
            return [Equation(self.h.entity_equation(0), q.magnitude() - 1.0)]
        if self.type is EntityType.ARC_OF_CIRCLE:
            # Copied arcs are rigid already
            if sk.entity(self.point[0]).type is not EntityType.POINT_IN_2D:
                return []
            # Start and finish constrained coincident: the radius equation would be redundant
            for c in sk.constraints:
                if (c.group == self.group and c.is_coincidence()
                        and {c.pt_a, c.pt_b} == {self.point[1], self.point[2]}):
                    return []
            ra = distance_expr(sk, self.workplane, self.point[0], self.point[1])
            rb = distance_expr(sk, self.workplane, self.point[0], self.point[2])
            return [Equation(self.h.entity_equation(0), ra - rb)]
        return []


def distance_expr(sk: 'Sketch', wrkpl: Optional[Handle], pa: Handle, pb: Handle) -> Expr:
    """Distance between two points, measured in the workplane if one is given."""
    a = sk.entity(pa)
    b = sk.entity(pb)
    if wrkpl is None:
        return a.point_exprs(sk).minus(b.point_exprs(sk)).magnitude()
    au, av = a.point_exprs_in_workplane(sk, wrkpl)
    bu, bv = b.point_exprs_in_workplane(sk, wrkpl)
    return ((au - bu).square() + (av - bv).square()).sqrt()


def is_degenerate_vector(v: np.ndarray) -> bool:
    return float(np.linalg.norm(v)) < Tolerances.LENGTH_DEGENERATE

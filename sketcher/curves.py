"""
ParaCore Sketcher - Curve numerics
==================================

Two views of sketch curves for the interactive operations:

- ParametricCurve: a line or arc parameterized on [0, 1], used to walk
  back along two curves when fitting a tangent arc.
- RationalBezier: lines, arcs, circles and cubics as (rational) Bezier
  pieces, used for intersections and splitting.

Everything here is numeric (numpy); nothing touches the solver.
"""

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np
from loguru import logger

from config.feature_flags import is_enabled
from config.tolerances import Tolerances
from sketcher.constraints import ConstraintType, CurveEnd, TangentEnds
from sketcher.entities import Entity, EntityType
from sketcher.errors import InvariantViolation
from sketcher.geometry import vec
from sketcher.handles import Handle
from sketcher.requests import RequestType

if TYPE_CHECKING:
    from sketcher.sketch import Sketch


# =============================================================================
# Parametric line / arc
# =============================================================================

@dataclass
class ParametricCurve:
    """
    A line from p0 to p1, or an arc around p0 of radius r sweeping dtheta
    from theta0 in the (u, v) frame. t = 0 is the start (or the finish,
    when built reversed).
    """
    is_line: bool
    p0: np.ndarray
    p1: np.ndarray = field(default_factory=vec)
    r: float = 0.0
    theta0: float = 0.0
    theta1: float = 0.0
    dtheta: float = 0.0
    u: np.ndarray = field(default_factory=lambda: vec(1, 0, 0))
    v: np.ndarray = field(default_factory=lambda: vec(0, 1, 0))

    @classmethod
    def from_entity(cls, sk: 'Sketch', e: Entity, reverse: bool = False) -> 'ParametricCurve':
        if e.type is EntityType.LINE_SEGMENT:
            p0, p1 = sk.point_num(e.point[0]), sk.point_num(e.point[1])
            if reverse:
                p0, p1 = p1, p0
            return cls(True, p0, p1)
        if e.type is EntityType.ARC_OF_CIRCLE:
            center = sk.point_num(e.point[0])
            r = float(np.linalg.norm(sk.point_num(e.point[1]) - center))
            theta0, theta1, dtheta = e.arc_angles(sk)
            if reverse:
                theta0, theta1 = theta1, theta0
                dtheta = -dtheta
            q = sk.entity(e.normal).normal_num(sk)
            return cls(False, center, r=r, theta0=theta0, theta1=theta1, dtheta=dtheta,
                       u=q.rotation_u(), v=q.rotation_v())
        raise InvariantViolation(f"No parametric curve for {e.type}")

    def length_for_auto(self) -> float:
        """How much of the curve an automatic-radius rounding may consume."""
        if self.is_line:
            return float(np.linalg.norm(self.p1 - self.p0)) / 3
        # Only a twentieth of an arc; shorter pieces are closer to linear
        return abs(self.dtheta) * self.r / 20

    def point_at(self, t: float) -> np.ndarray:
        if self.is_line:
            return self.p0 + (self.p1 - self.p0) * t
        theta = self.theta0 + self.dtheta * t
        return self.p0 + self.u * (self.r * math.cos(theta)) + self.v * (self.r * math.sin(theta))

    def tangent_at(self, t: float) -> np.ndarray:
        if self.is_line:
            return self.p1 - self.p0
        theta = self.theta0 + self.dtheta * t
        tan = self.u * (-self.r * math.sin(theta)) + self.v * (self.r * math.cos(theta))
        return tan * self.dtheta

    def create_request_trimmed_to(self, sk: 'Sketch', t: float, reuse_orig: bool, orig: Handle,
                                  arc: Handle, arc_finish: bool, pointf: bool) -> Handle:
        """
        Trims the original curve to t (or adds a trimmed copy on top of it)
        and makes it tangent to `arc` at the arc's start or finish.
        Returns the trimmed entity.
        """
        oe = sk.entity(orig)
        group, wrkpl = oe.group, oe.workplane
        arc_end = CurveEnd.FINISH if arc_finish else CurveEnd.START
        if self.is_line:
            if reuse_orig:
                e = oe
                i = 1 if pointf else 0
                sk.point_force_to(e.point[i], self.point_at(t))
                sk.constrain_point_if_coincident(e.point[i])
            else:
                req = sk.add_request(RequestType.LINE_SEGMENT, group, wrkpl)
                e = sk.entity(req.main_entity())
                sk.point_force_to(e.point[0], self.point_at(t))
                sk.point_force_to(e.point[1], self.point_at(1))
                sk.constrain_point_if_coincident(e.point[0])
                sk.constrain_point_if_coincident(e.point[1])
                sk.constrain(ConstraintType.PT_ON_LINE, group, workplane=wrkpl,
                             pt_a=e.point[0], entity_a=orig)
            sk.constrain(ConstraintType.ARC_LINE_TANGENT, group, workplane=wrkpl,
                         entity_a=arc, entity_b=e.h, end=arc_end)
        else:
            if reuse_orig:
                e = oe
                i = 2 if pointf else 1
                sk.point_force_to(e.point[i], self.point_at(t))
                sk.constrain_point_if_coincident(e.point[i])
            else:
                req = sk.add_request(RequestType.ARC_OF_CIRCLE, group, wrkpl)
                e = sk.entity(req.main_entity())
                sk.point_force_to(e.point[0], self.p0)
                if self.dtheta > 0:
                    sk.point_force_to(e.point[1], self.point_at(t))
                    sk.point_force_to(e.point[2], self.point_at(1))
                else:
                    sk.point_force_to(e.point[2], self.point_at(t))
                    sk.point_force_to(e.point[1], self.point_at(1))
                for p in e.point[:3]:
                    sk.constrain_point_if_coincident(p)
            # Tangency alone fixes the trimmed arc
            other_end = CurveEnd.FINISH if self.dtheta < 0 else CurveEnd.START
            sk.constrain(ConstraintType.CURVE_CURVE_TANGENT, group, workplane=wrkpl,
                         entity_a=arc, entity_b=e.h, ends=TangentEnds.of(arc_end, other_end))
        return e.h


# =============================================================================
# Rational Bezier pieces
# =============================================================================

class RationalBezier:
    """Rational Bezier curve of degree 1 to 3 in 3D."""

    def __init__(self, ctrl, weights=None):
        self.ctrl = np.array(ctrl, dtype=float)
        n = len(self.ctrl)
        if not 2 <= n <= 4:
            raise InvariantViolation(f"Bezier degree {n - 1} not supported")
        self.weights = np.ones(n) if weights is None else np.array(weights, dtype=float)

    @property
    def degree(self) -> int:
        return len(self.ctrl) - 1

    def start(self) -> np.ndarray:
        return self.ctrl[0].copy()

    def finish(self) -> np.ndarray:
        return self.ctrl[-1].copy()

    def _homogeneous(self) -> np.ndarray:
        return np.hstack([self.ctrl * self.weights[:, None], self.weights[:, None]])

    def _casteljau(self, t: float) -> List[np.ndarray]:
        """All rows of the de Casteljau triangle in homogeneous coordinates."""
        rows = [self._homogeneous()]
        while len(rows[-1]) > 1:
            h = rows[-1]
            rows.append((1 - t) * h[:-1] + t * h[1:])
        return rows

    def point_at(self, t: float) -> np.ndarray:
        h = self._casteljau(t)[-1][0]
        return h[:3] / h[3]

    def tangent_at(self, t: float) -> np.ndarray:
        rows = self._casteljau(t)
        a, b = rows[-2][0], rows[-2][1]
        h = rows[-1][0]
        # Derivative of the homogeneous curve: degree * (b - a)
        dh = self.degree * (b - a)
        return (dh[:3] * h[3] - h[:3] * dh[3]) / (h[3] * h[3])

    def split_at(self, t: float) -> Tuple['RationalBezier', 'RationalBezier']:
        rows = self._casteljau(t)
        left = np.array([r[0] for r in rows])
        right = np.array([r[-1] for r in reversed(rows)])
        return (RationalBezier(left[:, :3] / left[:, 3:], left[:, 3]),
                RationalBezier(right[:, :3] / right[:, 3:], right[:, 3]))

    def closest_point_to(self, p: np.ndarray) -> float:
        """Parameter of the point on the curve nearest to p, in [0, 1]."""
        p = np.asarray(p, dtype=float)
        samples = np.linspace(0.0, 1.0, 17)
        t = float(min(samples, key=lambda s: np.linalg.norm(self.point_at(s) - p)))
        for _ in range(Tolerances.CURVE_CLOSEST_ITERATIONS):
            tan = self.tangent_at(t)
            tt = float(np.dot(tan, tan))
            if tt < Tolerances.LENGTH_DEGENERATE:
                break
            dt = float(np.dot(p - self.point_at(t), tan)) / tt
            t = min(1.0, max(0.0, t + dt))
            if abs(dt) < 1e-12:
                break
        return t

    def polyline(self, n: int) -> np.ndarray:
        return np.array([self.point_at(t) for t in np.linspace(0.0, 1.0, n + 1)])

    def __repr__(self):
        return f"RationalBezier(deg={self.degree}, {self.start()} -> {self.finish()})"


def _arc_beziers(center: np.ndarray, r: float, u: np.ndarray, v: np.ndarray,
                 theta0: float, dtheta: float) -> List[RationalBezier]:
    n = max(1, math.ceil(dtheta / Tolerances.CURVE_MAX_BEZIER_SWEEP - 1e-9))
    step = dtheta / n
    w = math.cos(step / 2)
    out = []
    for i in range(n):
        ta = theta0 + i * step
        tb = ta + step
        tm = ta + step / 2
        pa = center + r * (math.cos(ta) * u + math.sin(ta) * v)
        pb = center + r * (math.cos(tb) * u + math.sin(tb) * v)
        pm = center + (r / w) * (math.cos(tm) * u + math.sin(tm) * v)
        out.append(RationalBezier([pa, pm, pb], [1.0, w, 1.0]))
    return out


def bezier_list_for_entity(sk: 'Sketch', e: Entity) -> List[RationalBezier]:
    """Exact Bezier representation of a line, cubic, circle or arc."""
    if e.type is EntityType.LINE_SEGMENT:
        return [RationalBezier([sk.point_num(e.point[0]), sk.point_num(e.point[1])])]
    if e.type is EntityType.CUBIC:
        return [RationalBezier([sk.point_num(p) for p in e.point[:4]])]
    if e.is_circle():
        q = sk.entity(e.normal).normal_num(sk)
        u, v = q.rotation_u(), q.rotation_v()
        center = sk.point_num(e.point[0])
        if e.type is EntityType.CIRCLE:
            return _arc_beziers(center, e.circle_radius_num(sk), u, v, 0.0, 2 * math.pi)
        theta0, _, dtheta = e.arc_angles(sk)
        return _arc_beziers(center, e.circle_radius_num(sk), u, v, theta0, dtheta)
    raise InvariantViolation(f"No Bezier representation for {e.type}")


@dataclass
class CurveIntersection:
    point: np.ndarray
    # Piece index and local parameter on each operand
    piece_a: int
    t_a: float
    piece_b: int
    t_b: float


def _refine(a: RationalBezier, b: RationalBezier, ta: float, tb: float) -> Optional[Tuple[float, float]]:
    for _ in range(Tolerances.CURVE_INTERSECTION_ITERATIONS):
        d = a.point_at(ta) - b.point_at(tb)
        if float(np.linalg.norm(d)) < Tolerances.LENGTH_EPS / 10:
            return ta, tb
        jac = np.column_stack([a.tangent_at(ta), -b.tangent_at(tb)])
        step, *_ = np.linalg.lstsq(jac, -d, rcond=None)
        if not np.all(np.isfinite(step)):
            return None
        ta += float(step[0])
        tb += float(step[1])
        # Allow slight overshoot so intersections at the piece ends still converge
        if not (-0.5 < ta < 1.5 and -0.5 < tb < 1.5):
            return None
    d = a.point_at(ta) - b.point_at(tb)
    if float(np.linalg.norm(d)) < Tolerances.LENGTH_EPS:
        return ta, tb
    return None


def all_intersections(la: List[RationalBezier], lb: List[RationalBezier]) -> List[CurveIntersection]:
    """
    Every point where a piece of `la` meets a piece of `lb`.

    Both curves are sampled; sample pairs closer than the local sample
    spacing seed a Newton refinement. Points found twice are reported once.
    """
    found: List[CurveIntersection] = []
    n = Tolerances.CURVE_INTERSECTION_SAMPLES
    margin = Tolerances.CURVE_PARAM_MARGIN
    for ia, a in enumerate(la):
        pa = a.polyline(n)
        sa = float(np.max(np.linalg.norm(np.diff(pa, axis=0), axis=1)))
        for ib, b in enumerate(lb):
            pb = b.polyline(n)
            sb = float(np.max(np.linalg.norm(np.diff(pb, axis=0), axis=1)))
            dist = np.linalg.norm(pa[:, None, :] - pb[None, :, :], axis=2)
            for i, j in zip(*np.nonzero(dist <= (sa + sb))):
                hit = _refine(a, b, i / n, j / n)
                if hit is None:
                    continue
                ta, tb = hit
                if not (-margin <= ta <= 1 + margin and -margin <= tb <= 1 + margin):
                    continue
                ta, tb = min(1.0, max(0.0, ta)), min(1.0, max(0.0, tb))
                p = a.point_at(ta)
                if any(np.linalg.norm(f.point - p) < Tolerances.LENGTH_EPS * 10 for f in found):
                    continue
                found.append(CurveIntersection(p, ia, ta, ib, tb))
    if is_enabled("curve_debug"):
        logger.debug(f"[Curves] {len(found)} intersections between {len(la)} and {len(lb)} pieces")
    return found


def is_interior_point(sk: 'Sketch', e: Entity, p: np.ndarray) -> bool:
    """True if p is not one of the entity's endpoints (circles have none)."""
    return all(float(np.linalg.norm(sk.point_num(h) - p)) > Tolerances.LENGTH_EPS * 10
               for h in e.endpoints())

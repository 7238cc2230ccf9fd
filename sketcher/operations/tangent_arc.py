"""
ParaCore - Tangent Arc Operation
================================

Rounds the corner where two non-construction line segments or arcs meet
with an arc tangent to both.

Usage:
    from sketcher.operations import TangentArcOperation, RadiusPolicy

    op = TangentArcOperation(sketch)
    result = op.execute(corner_point, RadiusPolicy(radius=5.0))

    if result.success:
        arc = result.data

The fit walks back along both curves from the corner with a Newton
iteration, ramping the radius up from a tenth of its final value for
most of the iterations and polishing at the full radius at the end.

Feature-Flag: "tangent_arc_modify_original"
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple, TYPE_CHECKING

import numpy as np
from loguru import logger

from config.feature_flags import is_enabled
from config.tolerances import Tolerances, points_coincident
from sketcher.constraints import ConstraintType
from sketcher.curves import ParametricCurve
from sketcher.entities import Entity
from sketcher.errors import SketchError
from sketcher.geometry import intersect_lines, unit
from sketcher.handles import Handle
from sketcher.requests import Request, RequestType

from .base import OperationResult, SketchOperation

if TYPE_CHECKING:
    from sketcher.sketch import Sketch


@dataclass
class RadiusPolicy:
    """A fixed radius, or (radius=None) the largest radius that keeps both curves mostly intact."""
    radius: Optional[float] = None
    auto_limit: float = Tolerances.TANGENT_ARC_AUTO_LIMIT

    @property
    def manual(self) -> bool:
        return self.radius is not None

    def radius_for(self, pc: List[ParametricCurve], theta: float) -> float:
        if self.manual:
            return self.radius
        r = self.auto_limit
        for c in pc:
            r = min(r, c.length_for_auto() * math.tan(theta / 2))
        return r


@dataclass
class TangentArcFit:
    t: Tuple[float, float]
    radius: float
    center: np.ndarray
    # Arc point slots (1 = start, 2 = finish) that land on curve 0 and curve 1
    slot_a: int
    slot_b: int
    iterations: int


def _same_point(a: np.ndarray, b: np.ndarray) -> bool:
    return points_coincident(a, b)


class TangentArcOperation(SketchOperation):
    """Fits and creates a tangent arc at a corner."""

    def find_corner(self, point: Handle) -> Optional[List[Tuple[Request, Entity, bool]]]:
        """
        The two requests meeting at `point`, each with its main entity and
        whether the corner is that entity's finish. None unless exactly two.
        """
        sk = self.sketch
        pt = sk.entity(point)
        pshared = pt.point_num(sk)
        found = []
        for r in sk.requests:
            if r.group != pt.group or r.workplane != pt.workplane or r.construction:
                continue
            if r.type not in (RequestType.LINE_SEGMENT, RequestType.ARC_OF_CIRCLE):
                continue
            e = sk.entity(r.main_entity())
            ps, pf = (sk.point_num(h) for h in e.endpoints())
            if _same_point(ps, pshared) or _same_point(pf, pshared):
                found.append((r, e, _same_point(pf, pshared)))
        if len(found) != 2:
            return None
        return found

    def fit(self, pc: List[ParametricCurve], wn: np.ndarray, policy: RadiusPolicy) -> Optional[TangentArcFit]:
        """Newton walk back along both curves. None if it does not settle."""
        iters = Tolerances.TANGENT_ARC_ITERATIONS
        total = iters + Tolerances.TANGENT_ARC_POLISH_ITERATIONS
        t = [0.0, 0.0]
        tp = [0.0, 0.0]
        r = vv = 0.0
        pinter = None
        for i in range(total):
            p0, p1 = pc[0].point_at(t[0]), pc[1].point_at(t[1])
            t0, t1 = pc[0].tangent_at(t[0]), pc[1].tangent_at(t[1])

            pinter = intersect_lines(p0, t0, p1, t1)
            if pinter is None:
                return None

            # The sign of vv says whether the short way round is clockwise
            vv = float(np.dot(t1, unit(np.cross(wn, t0))))

            dot = float(np.dot(unit(t0), unit(t1)))
            theta = math.acos(max(-1.0, min(1.0, dot)))

            r = policy.radius_for(pc, theta)
            if i < iters:
                r *= 0.1 + 0.9 * i / iters

            # Distance from the intersection of the tangents to the arc ends
            el = r / math.tan(theta / 2) if theta > 0 else math.inf
            pa0 = pinter + unit(t0) * el
            pa1 = pinter + unit(t1) * el

            tp = list(t)
            t[0] += float(np.dot(pa0 - p0, t0) / np.dot(t0, t0))
            t[1] += float(np.dot(pa1 - p1, t1) / np.dot(t1, t1))
            if not (math.isfinite(t[0]) and math.isfinite(t[1])):
                return None

        if is_enabled("curve_debug"):
            logger.debug(f"[TangentArc] t = ({t[0]:.6f}, {t[1]:.6f}), r = {r:.6g}")

        lo, hi = Tolerances.TANGENT_ARC_T_MIN, Tolerances.TANGENT_ARC_T_MAX
        if (abs(tp[0] - t[0]) > Tolerances.TANGENT_ARC_STABLE
                or abs(tp[1] - t[1]) > Tolerances.TANGENT_ARC_STABLE
                or not (lo <= t[0] <= hi) or not (lo <= t[1] <= hi)):
            return None

        center = pc[0].point_at(t[0])
        v0inter = pinter - center
        offset = unit(np.cross(v0inter, wn)) * r
        if vv < 0:
            return TangentArcFit((t[0], t[1]), r, center - offset, 1, 2, total)
        return TangentArcFit((t[0], t[1]), r, center + offset, 2, 1, total)

    def execute(self, point: Handle, policy: Optional[RadiusPolicy] = None,
                modify_original: Optional[bool] = None) -> OperationResult:
        sk = self.sketch
        policy = policy or RadiusPolicy()
        if modify_original is None:
            modify_original = is_enabled("tangent_arc_modify_original")

        pt = sk.entities.find(point)
        if pt is None or not pt.is_point() or pt.workplane is None:
            self._last_result = OperationResult.no_target(
                "Select a point in a workplane where two curves join")
            return self._last_result

        corner = self.find_corner(point)
        if corner is None:
            self._last_result = OperationResult.no_target(
                "To create a tangent arc, select a point where two non-construction "
                "lines or arcs in this group and workplane join")
            return self._last_result

        wrkpl = pt.workplane
        wn = sk.entity(wrkpl).workplane_normal(sk).normal_num(sk).rotation_n()
        pshared = pt.point_num(sk)
        pc = [ParametricCurve.from_entity(sk, e, pointf) for _, e, pointf in corner]

        fit = self.fit(pc, wn, policy)
        if fit is None:
            logger.warning(f"[TangentArc] Could not round corner at {pshared}")
            self._last_result = OperationResult.error(
                "Couldn't round this corner. Try a smaller radius, or create the "
                "geometry by hand with tangency constraints.")
            return self._last_result

        snap = sk.snapshot()
        try:
            arc = self._build(corner, pc, fit, pshared, wrkpl, modify_original)
        except SketchError as e:
            sk.restore(snap)
            logger.warning(f"[TangentArc] Rolled back: {e}")
            self._last_result = OperationResult.error(f"Couldn't round this corner: {e}")
            return self._last_result

        logger.success(f"[TangentArc] Rounded corner with r = {fit.radius:.4g}")
        self._last_result = OperationResult.ok("Tangent arc created", arc,
                                               radius=fit.radius, t=fit.t)
        return self._last_result

    def _build(self, corner, pc: List[ParametricCurve], fit: TangentArcFit,
               pshared: np.ndarray, wrkpl: Handle, modify_original: bool) -> Handle:
        sk = self.sketch
        group = corner[0][0].group
        if modify_original:
            # The corner coincidence goes away with the corner
            sk.constraints.remove_where(
                lambda c: c.group == group and c.workplane == wrkpl and c.is_coincidence()
                and _same_point(sk.point_num(c.pt_a), pshared))
        else:
            for req, _, _ in corner:
                req.construction = True
                for e in sk.entities_of_request(req.h):
                    e.construction = True

        areq = sk.add_request(RequestType.ARC_OF_CIRCLE, group, wrkpl)
        arc = sk.entity(areq.main_entity())
        sk.point_force_to(arc.point[0], fit.center)
        sk.point_force_to(arc.point[fit.slot_a], pc[0].point_at(fit.t[0]))
        sk.point_force_to(arc.point[fit.slot_b], pc[1].point_at(fit.t[1]))

        for k, (_, e, pointf) in enumerate(corner):
            # Curve 0 attaches to the arc's finish when curve 1 took its start
            arc_finish = (fit.slot_b == 1) if k == 0 else (fit.slot_a == 1)
            pc[k].create_request_trimmed_to(sk, fit.t[k], modify_original, e.h, arc.h,
                                            arc_finish, pointf)
        return arc.h

"""
ParaCore - Split Operation
==========================

Splits line segments, circles, arcs and cubics where they cross each
other, or at a point that lies on one of them.

Usage:
    from sketcher.operations import SplitOperation

    op = SplitOperation(sketch)
    result = op.execute([line_a, line_b], hint=(10.0, 5.0, 0.0))

    if result.success:
        split_point = result.details["split_point"]

Constraints on the old endpoints are moved to the new pieces; the two
halves (and the two operands) are joined by coincidences at the split
point.

Feature-Flag: "split_keep_construction"
"""

from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np
from loguru import logger

from config.feature_flags import is_enabled
from config.tolerances import Tolerances
from sketcher.constraints import Constraint
from sketcher.curves import all_intersections, bezier_list_for_entity, is_interior_point
from sketcher.entities import Entity, EntityType
from sketcher.errors import SketchError
from sketcher.geometry import as_vec
from sketcher.handles import Handle
from sketcher.requests import RequestType

from .base import OperationResult, SketchOperation

if TYPE_CHECKING:
    from sketcher.sketch import Sketch


_SPLITTABLE = (EntityType.LINE_SEGMENT, EntityType.CIRCLE, EntityType.ARC_OF_CIRCLE, EntityType.CUBIC)


class SplitOperation(SketchOperation):
    """Splits curves at their intersection or at a point on them."""

    def __init__(self, sketch: 'Sketch'):
        super().__init__(sketch)
        self._created: List[Handle] = []

    # ------------------------------------------------------------------
    # Finding the split point
    # ------------------------------------------------------------------

    def find_intersection(self, ha: Handle, hb: Handle, hint=None) -> Optional[np.ndarray]:
        """Intersection interior to both curves, nearest to the hint."""
        sk = self.sketch
        ea, eb = sk.entity(ha), sk.entity(hb)
        hits = [x.point for x in all_intersections(bezier_list_for_entity(sk, ea),
                                                   bezier_list_for_entity(sk, eb))
                if is_interior_point(sk, ea, x.point) and is_interior_point(sk, eb, x.point)]
        if not hits:
            return None
        if hint is None:
            return hits[0]
        h = as_vec(hint)
        return min(hits, key=lambda p: float(np.linalg.norm(p - h)))

    def find_point_on_curve(self, curve: Handle, point: Handle) -> Tuple[Optional[np.ndarray], Optional[Constraint]]:
        """
        Where `point` splits `curve`: the point's position if a constraint puts
        it on the curve (returned too, it gets replaced), or if it lies on the
        curve's interior numerically.
        """
        sk = self.sketch
        e = sk.entity(curve)
        p = sk.point_num(point)
        own_req = curve.request() if curve.is_from_request() else None
        for c in sk.constraints:
            if c.pt_a != point or c.entity_a is None:
                continue
            if c.entity_a != curve and not (own_req is not None and c.entity_a.is_from_request()
                                            and c.entity_a.request() == own_req):
                continue
            if self._on_interior(e, p):
                return p, c
        if self._on_interior(e, p):
            return p, None
        return None, None

    def _on_interior(self, e: Entity, p: np.ndarray) -> bool:
        sk = self.sketch
        if not is_interior_point(sk, e, p):
            return False
        for bz in bezier_list_for_entity(sk, e):
            t = bz.closest_point_to(p)
            if float(np.linalg.norm(bz.point_at(t) - p)) < Tolerances.LENGTH_EPS * 10:
                return True
        return False

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, selection: Sequence[Handle], hint=None) -> OperationResult:
        sk = self.sketch
        selected = [sk.entities.find(h) for h in selection]
        if any(e is None for e in selected):
            self._last_result = OperationResult.no_target("Selection references missing entities")
            return self._last_result
        curves = [e for e in selected if e.type in _SPLITTABLE]
        points = [e for e in selected if e.is_point()]
        if not ((len(curves) == 2 and not points) or (len(curves) == 1 and len(points) == 1)) \
                or len(selected) != len(curves) + len(points):
            self._last_result = OperationResult.no_target(
                "Select two entities that intersect each other "
                "(two lines/circles/arcs/cubics, or one of them and a point)")
            return self._last_result
        if any(e.workplane is None for e in curves):
            self._last_result = OperationResult.error("Curves must be drawn in a workplane to split")
            return self._last_result

        ha = curves[0].h
        replaced = None
        if points:
            hb = points[0].h
            pi, replaced = self.find_point_on_curve(ha, hb)
        else:
            hb = curves[1].h
            pi = self.find_intersection(ha, hb, hint)
        if pi is None:
            self._last_result = OperationResult.no_intersections("Can't split; no intersection found")
            return self._last_result

        snap = sk.snapshot()
        self._created = []
        try:
            if replaced is not None:
                sk.delete_constraint(replaced.h)
            hia = self.split_entity(ha, pi)
            if points:
                req = sk.request_for_entity(hb)
                if req is not None and req.type is RequestType.DATUM_POINT:
                    # The split point supersedes the datum point
                    sk.delete_request(req.h)
                else:
                    sk.constrain_coincident(sk.entity(hia).group, hia, hb)
            else:
                hib = self.split_entity(hb, pi)
                sk.constrain_coincident(sk.entity(hia).group, hia, hib)
        except SketchError as e:
            sk.restore(snap)
            logger.warning(f"[Split] Rolled back: {e}")
            self._last_result = OperationResult.error(f"Couldn't split: {e}")
            return self._last_result

        logger.success(f"[Split] Split at {np.round(pi, 6)} into {len(self._created)} pieces")
        self._last_result = OperationResult.ok("Split", list(self._created), split_point=hia)
        return self._last_result

    def _add_like(self, type: RequestType, orig: Entity) -> Entity:
        req = self.sketch.add_request(type, orig.group, orig.workplane, orig.construction)
        self._created.append(req.main_entity())
        return self.sketch.entity(req.main_entity())

    def split_entity(self, h: Handle, pi: np.ndarray) -> Handle:
        """Replaces entity `h` by its pieces; returns the point at the split."""
        sk = self.sketch
        e = sk.entity(h)
        if e.type is EntityType.LINE_SEGMENT:
            ret = self._split_line(e, pi)
        elif e.is_circle():
            ret = self._split_circle(e, pi)
        elif e.type is EntityType.CUBIC:
            ret = self._split_cubic(e, pi)
        else:
            raise SketchError("Couldn't split this entity; lines, circles, or cubics only")

        # Construction curves are left in place when the flag says so
        req = sk.request_for_entity(h)
        if req is not None and (not req.construction or not is_enabled("split_keep_construction")):
            sk.delete_request(req.h)
        return ret

    def _split_line(self, e: Entity, pi: np.ndarray) -> Handle:
        sk = self.sketch
        hep0, hep1 = e.point[0], e.point[1]
        p0, p1 = sk.point_num(hep0), sk.point_num(hep1)
        e0i = self._add_like(RequestType.LINE_SEGMENT, e)
        ei1 = self._add_like(RequestType.LINE_SEGMENT, e)
        sk.point_force_to(e0i.point[0], p0)
        sk.point_force_to(e0i.point[1], pi)
        sk.point_force_to(ei1.point[0], pi)
        sk.point_force_to(ei1.point[1], p1)
        sk.replace_point_in_constraints(hep0, e0i.point[0])
        sk.replace_point_in_constraints(hep1, ei1.point[1])
        sk.constrain_coincident(e.group, e0i.point[1], ei1.point[0])
        return e0i.point[1]

    def _split_circle(self, e: Entity, pi: np.ndarray) -> Handle:
        sk = self.sketch
        if e.type is EntityType.CIRCLE:
            # A full circle becomes a 360 degree arc
            center = sk.point_num(e.point[0])
            arc = self._add_like(RequestType.ARC_OF_CIRCLE, e)
            sk.point_force_to(arc.point[0], center)
            sk.point_force_to(arc.point[1], pi)
            sk.point_force_to(arc.point[2], pi)
            sk.replace_point_in_constraints(e.point[0], arc.point[0])
            sk.constrain_coincident(e.group, arc.point[1], arc.point[2])
            return arc.point[1]

        hc, hs, hf = e.point[0], e.point[1], e.point[2]
        center, start, finish = sk.point_num(hc), sk.point_num(hs), sk.point_num(hf)
        arc0 = self._add_like(RequestType.ARC_OF_CIRCLE, e)
        arc1 = self._add_like(RequestType.ARC_OF_CIRCLE, e)
        sk.point_force_to(arc0.point[0], center)
        sk.point_force_to(arc0.point[1], start)
        sk.point_force_to(arc0.point[2], pi)
        sk.point_force_to(arc1.point[0], center)
        sk.point_force_to(arc1.point[1], pi)
        sk.point_force_to(arc1.point[2], finish)
        sk.replace_point_in_constraints(hs, arc0.point[1])
        sk.replace_point_in_constraints(hf, arc1.point[2])
        sk.constrain_coincident(e.group, arc0.point[2], arc1.point[1])
        return arc0.point[2]

    def _split_cubic(self, e: Entity, pi: np.ndarray) -> Handle:
        sk = self.sketch
        hep0, hep1 = e.point[0], e.point[3]
        bz = bezier_list_for_entity(sk, e)[0]
        b0i, bi1 = bz.split_at(bz.closest_point_to(pi))
        e0i = self._add_like(RequestType.CUBIC, e)
        ei1 = self._add_like(RequestType.CUBIC, e)
        for j in range(4):
            sk.point_force_to(e0i.point[j], b0i.ctrl[j])
            sk.point_force_to(ei1.point[j], bi1.ctrl[j])
        sk.replace_point_in_constraints(hep0, e0i.point[0])
        sk.replace_point_in_constraints(hep1, ei1.point[3])
        sk.constrain_coincident(e.group, e0i.point[3], ei1.point[0])
        return e0i.point[3]

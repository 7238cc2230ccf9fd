"""
ParaCore Modeling - Polygon Loops
=================================

Chains the non-construction curves of a sketch group into closed
polygonal loops, ready to become the faces of an extrusion or a
revolution. Broken sketches are diagnosed instead of raising: the
result carries a PolyError and, where there is one, the point to blame.

Usage:
    from modeling.loops import assemble_loops

    loops = assemble_loops(sketch, group)
    if loops.error is PolyError.GOOD:
        for outer, holes in loops.faces():
            ...
"""

import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np
from loguru import logger
from shapely.geometry import LinearRing, Polygon
from shapely.validation import explain_validity

from config.feature_flags import is_enabled
from config.tolerances import Tolerances
from modeling.group import PolyError
from sketcher.curves import RationalBezier, bezier_list_for_entity
from sketcher.geometry import Quaternion, vec

if TYPE_CHECKING:
    from modeling.group import Group
    from sketcher.sketch import Sketch


@dataclass
class PolyLoops:
    """Closed loops of one group, in 3D, with the plane they lie in."""
    loops: List[np.ndarray] = field(default_factory=list)
    origin: np.ndarray = field(default_factory=vec)
    basis: Quaternion = field(default_factory=Quaternion.identity)
    error: PolyError = PolyError.GOOD
    error_at: Optional[np.ndarray] = None

    @property
    def normal(self) -> np.ndarray:
        if not self.loops:
            return vec()
        return self.basis.rotation_n()

    def to_2d(self, pts: np.ndarray) -> np.ndarray:
        d = np.asarray(pts, dtype=float) - self.origin
        return np.column_stack([d @ self.basis.rotation_u(), d @ self.basis.rotation_v()])

    def to_3d(self, uv) -> np.ndarray:
        uv = np.asarray(uv, dtype=float)
        return (self.origin + np.outer(uv[:, 0], self.basis.rotation_u())
                + np.outer(uv[:, 1], self.basis.rotation_v()))

    def faces(self) -> List[Tuple[np.ndarray, List[np.ndarray]]]:
        """
        (outer ring, hole rings) per face. Nesting is even-odd: a loop
        inside one other loop is a hole, inside two it is an island.
        """
        region = None
        for loop in self.loops:
            poly = Polygon(self.to_2d(loop))
            region = poly if region is None else region.symmetric_difference(poly)
        if region is None or region.is_empty:
            return []
        polys = [region] if region.geom_type == "Polygon" else list(region.geoms)
        out = []
        for p in polys:
            if p.geom_type != "Polygon" or p.area < Tolerances.LENGTH_EPS:
                continue
            outer = self.to_3d(np.asarray(p.exterior.coords)[:-1])
            holes = [self.to_3d(np.asarray(r.coords)[:-1]) for r in p.interiors]
            out.append((outer, holes))
        return out


def _segments_for(bz: RationalBezier) -> int:
    if bz.degree == 1:
        return 1
    hull = float(np.sum(np.linalg.norm(np.diff(bz.ctrl, axis=0), axis=1)))
    n = math.ceil(math.sqrt(hull / Tolerances.LOOP_CHORD_TOLERANCE))
    return int(min(Tolerances.LOOP_MAX_SEGMENTS, max(2, n)))


def _polyline(sk: 'Sketch', e) -> np.ndarray:
    pieces = [bz.polyline(_segments_for(bz)) for bz in bezier_list_for_entity(sk, e)]
    pts = [pieces[0]] + [p[1:] for p in pieces[1:]]
    return np.vstack(pts)


def _near(a: np.ndarray, b: np.ndarray) -> bool:
    return float(np.linalg.norm(a - b)) < Tolerances.LENGTH_EPS * 10


def _chain(edges: List[np.ndarray]) -> Tuple[List[np.ndarray], Optional[np.ndarray]]:
    """Joins open polylines end to end. Returns the rings, and a dangling end if any."""
    rings = []
    open_edges = []
    for pl in edges:
        if _near(pl[0], pl[-1]):
            rings.append(pl[:-1])
        else:
            open_edges.append(pl)

    while open_edges:
        ring = open_edges.pop(0)
        while not _near(ring[0], ring[-1]):
            for i, pl in enumerate(open_edges):
                if _near(pl[0], ring[-1]):
                    ring = np.vstack([ring, pl[1:]])
                elif _near(pl[-1], ring[-1]):
                    ring = np.vstack([ring, pl[::-1][1:]])
                else:
                    continue
                open_edges.pop(i)
                break
            else:
                return rings, ring[-1]
        rings.append(ring[:-1])
    return rings, None


def _self_intersection(loops: PolyLoops) -> Optional[np.ndarray]:
    for r in loops.loops:
        # Two curves doubling back on each other enclose nothing
        if len(r) < 3:
            return r[0]
    rings2d = [LinearRing(loops.to_2d(r)) for r in loops.loops]
    for ring in rings2d:
        if not ring.is_valid or not ring.is_simple:
            m = re.search(r"\[([-\d.eE+]+) ([-\d.eE+]+)", explain_validity(Polygon(ring)))
            if m:
                return loops.to_3d([[float(m.group(1)), float(m.group(2))]])[0]
            return loops.to_3d(np.asarray(ring.coords[:1]))[0]
    for i, a in enumerate(rings2d):
        for b in rings2d[i + 1:]:
            if a.intersects(b):
                x = a.intersection(b).representative_point()
                return loops.to_3d([[x.x, x.y]])[0]
    return None


def assemble_loops(sk: 'Sketch', group: 'Group') -> PolyLoops:
    """Closed loops from the group's non-construction curves in its workplane."""
    wp = sk.entity(group.workplane_h())
    result = PolyLoops(origin=sk.point_num(wp.point[0]),
                       basis=wp.workplane_normal(sk).normal_num(sk))
    n = result.basis.rotation_n()

    edges = []
    for e in sk.entities:
        if e.group != group.h or e.construction or not e.is_curve() or not e.h.is_from_request():
            continue
        pl = _polyline(sk, e)
        if float(np.sum(np.linalg.norm(np.diff(pl, axis=0), axis=1))) < Tolerances.LENGTH_EPS:
            result.error, result.error_at = PolyError.ZERO_LEN_EDGE, pl[0]
            return result
        off_plane = np.abs((pl - result.origin) @ n)
        if float(np.max(off_plane)) > Tolerances.LENGTH_EPS * 10:
            result.error = PolyError.NOT_COPLANAR
            result.error_at = pl[int(np.argmax(off_plane))]
            return result
        edges.append(pl)

    rings, dangling = _chain(edges)
    if dangling is not None:
        result.error, result.error_at = PolyError.NOT_CLOSED, dangling
        return result
    result.loops = rings

    crossing = _self_intersection(result)
    if crossing is not None:
        result.error, result.error_at = PolyError.SELF_INTERSECTING, crossing
        result.loops = []
        return result

    if is_enabled("regeneration_debug"):
        logger.debug(f"[Loops] {group.describe()}: {len(rings)} loops from {len(edges)} curves")
    return result

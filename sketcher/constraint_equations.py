"""
ParaCore Sketcher - Constraint compiler
=======================================

Turns one constraint into the ordered list of residual equations whose
simultaneous zero defines it. Also home to the construction-time checks
(validate_constraint), the one-shot initial-guess improvement and the
measurement of dimensions.

Equation handles are c.h.constraint_equation(i), in template order.
"""

import math
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

import numpy as np
from loguru import logger

from config.tolerances import Tolerances, is_zero_length
from sketcher.constraints import AngleSense, Constraint, ConstraintType, CurveEnd, WORKPLANE_TYPES
from sketcher.entities import Entity, EntityType, distance_expr, is_degenerate_vector
from sketcher.errors import ConstraintError, InvariantViolation
from sketcher.expr import Equation, Expr, ExprVector
from sketcher.geometry import div_projected
from sketcher.handles import Handle

if TYPE_CHECKING:
    from sketcher.sketch import Sketch

CT = ConstraintType


# =============================================================================
# Symbolic helpers
# =============================================================================

def point_line_distance(sk: 'Sketch', wrkpl: Optional[Handle], hpt: Handle, hln: Handle) -> Expr:
    """Distance from a point to a line; signed when measured in a workplane."""
    ln = sk.entity(hln)
    a = sk.entity(ln.point[0])
    b = sk.entity(ln.point[1])
    p = sk.entity(hpt)
    if wrkpl is None:
        ea, eb, ep = a.point_exprs(sk), b.point_exprs(sk), p.point_exprs(sk)
        eab = ea.minus(eb)
        return eab.cross(ea.minus(ep)).magnitude() / eab.magnitude()
    ua, va = a.point_exprs_in_workplane(sk, wrkpl)
    ub, vb = b.point_exprs_in_workplane(sk, wrkpl)
    u, v = p.point_exprs_in_workplane(sk, wrkpl)
    du = ua - ub
    dv = va - vb
    m = (du.square() + dv.square()).sqrt()
    return (dv * (ua - u) - du * (va - v)) / m


def plane_exprs(sk: 'Sketch', hplane: Handle) -> Tuple[ExprVector, ExprVector]:
    """(unit normal, point on plane) of a workplane or face."""
    plane = sk.entity(hplane)
    if plane.is_workplane():
        return plane.workplane_normal(sk).normal_exprs_n(sk), plane.workplane_origin_exprs(sk)
    if plane.is_face():
        return plane.face_normal_exprs(sk), plane.face_point_exprs(sk)
    raise InvariantViolation(f"{hplane!r} is not a plane")


def point_plane_distance(sk: 'Sketch', p: ExprVector, hplane: Handle) -> Expr:
    n, p0 = plane_exprs(sk, hplane)
    return p.minus(p0).dot(n)


def point_in_three_space(sk: 'Sketch', wrkpl: Handle, u: Expr, v: Expr) -> ExprVector:
    wp = sk.entity(wrkpl)
    q = wp.workplane_normal(sk).normal_exprs(sk)
    return wp.workplane_origin_exprs(sk).plus(q.rotation_u().scaled_by(u)).plus(q.rotation_v().scaled_by(v))


def direction_cosine(sk: 'Sketch', wrkpl: Optional[Handle], ae: ExprVector, be: ExprVector) -> Expr:
    if wrkpl is None:
        return ae.dot(be) / (ae.magnitude() * be.magnitude())
    q = sk.entity(wrkpl).workplane_normal(sk).normal_exprs(sk)
    u, v = q.rotation_u(), q.rotation_v()
    ua, va = u.dot(ae), v.dot(ae)
    ub, vb = u.dot(be), v.dot(be)
    maga = (ua.square() + va.square()).sqrt()
    magb = (ub.square() + vb.square()).sqrt()
    return (ua * ub + va * vb) / (maga * magb)


def vectors_parallel_3d(a: ExprVector, b: ExprVector, hp: Handle) -> ExprVector:
    return a.minus(b.scaled_by(Expr.param(hp)))


def line_length(sk: 'Sketch', wrkpl: Optional[Handle], hln: Handle) -> Expr:
    ln = sk.entity(hln)
    return distance_expr(sk, wrkpl, ln.point[0], ln.point[1])


def arc_length(sk: 'Sketch', harc: Handle) -> Expr:
    """r * theta; theta from acos or asin depending on the current sweep."""
    arc = sk.entity(harc)
    ao = sk.entity(arc.point[0]).point_exprs(sk)
    aos = sk.entity(arc.point[1]).point_exprs(sk).minus(ao)
    aof = sk.entity(arc.point[2]).point_exprs(sk).minus(ao)
    r = aof.magnitude()
    n = sk.entity(arc.normal).normal_exprs_n(sk)
    u = aos.with_magnitude(1.0)
    v = n.cross(u)
    costheta = aof.dot(u) / r
    sintheta = aof.dot(v) / r
    _, _, dtheta = arc.arc_angles(sk)
    if dtheta < 3 * math.pi / 4:
        theta = costheta.acos()
    elif dtheta < 5 * math.pi / 4:
        # cos is not invertible around pi
        theta = math.pi - sintheta.asin()
    else:
        theta = 2 * math.pi - costheta.acos()
    return r * theta


def _arc_end(arc: Entity, end: CurveEnd) -> Handle:
    return arc.point[2] if end is CurveEnd.FINISH else arc.point[1]


def _curve_end_point(e: Entity, end: CurveEnd) -> Handle:
    if e.type is EntityType.ARC_OF_CIRCLE:
        return _arc_end(e, end)
    if e.type is EntityType.CUBIC:
        return e.point[3] if end is CurveEnd.FINISH else e.point[0]
    if e.type is EntityType.LINE_SEGMENT:
        return e.point[1] if end is CurveEnd.FINISH else e.point[0]
    raise InvariantViolation(f"No curve end on {e.type}")


# =============================================================================
# Equation templates
# =============================================================================

def generate_equations(sk: 'Sketch', c: Constraint, for_reference: bool = False) -> List[Equation]:
    """
    Residual equations of one constraint, evaluated against the sketch's
    current layout where a template depends on it.

    Reference dimensions yield nothing unless for_reference is set.
    """
    if c.reference and not for_reference:
        return []
    exprs = _TEMPLATES[c.type](sk, c)
    return [Equation(c.h.constraint_equation(i), e) for i, e in enumerate(exprs)]


def _ex_a(c: Constraint) -> Expr:
    return Expr.const(c.value)


def _eq_coincident(sk, c):
    a, b = sk.entity(c.pt_a), sk.entity(c.pt_b)
    if c.workplane is None:
        return list(a.point_exprs(sk).minus(b.point_exprs(sk)).components())
    au, av = a.point_exprs_in_workplane(sk, c.workplane)
    bu, bv = b.point_exprs_in_workplane(sk, c.workplane)
    return [au - bu, av - bv]


def _eq_where_dragged(sk, c):
    ep = sk.entity(c.pt_a)
    if c.workplane is None:
        ev = ep.point_exprs(sk)
        at = ep.point_num(sk)
        return [ev.x - at[0], ev.y - at[1], ev.z - at[2]]
    u, v = ep.point_exprs_in_workplane(sk, c.workplane)
    return [u - u.eval(sk.values), v - v.eval(sk.values)]


def _eq_pt_pt_distance(sk, c):
    return [distance_expr(sk, c.workplane, c.pt_a, c.pt_b) - _ex_a(c)]


def _eq_proj_pt_distance(sk, c):
    dp = sk.entity(c.pt_b).point_exprs(sk).minus(sk.entity(c.pt_a).point_exprs(sk))
    pp = sk.entity(c.entity_a).vector_exprs(sk).with_magnitude(1.0)
    return [dp.dot(pp) - _ex_a(c)]


def _eq_pt_line_distance(sk, c):
    return [point_line_distance(sk, c.workplane, c.pt_a, c.entity_a) - _ex_a(c)]


def _eq_pt_plane_distance(sk, c):
    return [point_plane_distance(sk, sk.entity(c.pt_a).point_exprs(sk), c.entity_a) - _ex_a(c)]


def _eq_pt_in_plane(sk, c):
    return [point_plane_distance(sk, sk.entity(c.pt_a).point_exprs(sk), c.entity_a)]


def _eq_pt_on_line(sk, c):
    if c.workplane is not None:
        return [point_line_distance(sk, c.workplane, c.pt_a, c.entity_a)]
    ln = sk.entity(c.entity_a)
    ea = sk.entity(ln.point[0]).point_exprs(sk)
    eb = sk.entity(ln.point[1]).point_exprs(sk)
    ep = sk.entity(c.pt_a).point_exprs(sk)
    # p = a + t*(b - a)
    eq = ep.minus(ea).minus(eb.minus(ea).scaled_by(Expr.param(c.value_param)))
    return list(eq.components())


def _eq_pt_on_circle(sk, c):
    # Measured in the circle's plane, so this really constrains to the cylinder
    circle = sk.entity(c.entity_a)
    center = sk.entity(circle.point[0]).point_exprs(sk)
    pt = sk.entity(c.pt_a).point_exprs(sk)
    q = sk.entity(circle.normal).normal_exprs(sk)
    d = center.minus(pt)
    du, dv = d.dot(q.rotation_u()), d.dot(q.rotation_v())
    return [(du.square() + dv.square()).sqrt() - circle.circle_radius_expr(sk)]


def _eq_equal_length(sk, c):
    return [line_length(sk, c.workplane, c.entity_a) - line_length(sk, c.workplane, c.entity_b)]


def _eq_length_ratio(sk, c):
    return [line_length(sk, c.workplane, c.entity_a) / line_length(sk, c.workplane, c.entity_b) - _ex_a(c)]


def _eq_length_difference(sk, c):
    return [line_length(sk, c.workplane, c.entity_a) - line_length(sk, c.workplane, c.entity_b) - _ex_a(c)]


def _eq_len_pt_line_d(sk, c):
    return [line_length(sk, c.workplane, c.entity_a) - point_line_distance(sk, c.workplane, c.pt_a, c.entity_b)]


def _eq_pt_ln_distances(sk, c):
    return [point_line_distance(sk, c.workplane, c.pt_a, c.entity_a)
            - point_line_distance(sk, c.workplane, c.pt_b, c.entity_b)]


def _eq_line_arc_len(sk, c):
    return [arc_length(sk, c.entity_b) - line_length(sk, c.workplane, c.entity_a)]


def _eq_arc_arc_ratio(sk, c):
    return [arc_length(sk, c.entity_a) / arc_length(sk, c.entity_b) - _ex_a(c)]


def _eq_arc_line_ratio(sk, c):
    return [arc_length(sk, c.entity_a) / line_length(sk, c.workplane, c.entity_b) - _ex_a(c)]


def _eq_arc_arc_difference(sk, c):
    return [arc_length(sk, c.entity_a) - arc_length(sk, c.entity_b) - _ex_a(c)]


def _eq_arc_line_difference(sk, c):
    return [arc_length(sk, c.entity_a) - line_length(sk, c.workplane, c.entity_b) - _ex_a(c)]


def _eq_diameter(sk, c):
    return [sk.entity(c.entity_a).circle_radius_expr(sk) * 2.0 - _ex_a(c)]


def _eq_equal_radius(sk, c):
    return [sk.entity(c.entity_a).circle_radius_expr(sk) - sk.entity(c.entity_b).circle_radius_expr(sk)]


def _eq_symmetric(sk, c):
    ea, eb = sk.entity(c.pt_a), sk.entity(c.pt_b)
    if c.workplane is None:
        a, b = ea.point_exprs(sk), eb.point_exprs(sk)
        m = a.plus(b).scaled_by(0.5)
        # Projected into the plane of symmetry the points coincide
        au, av = ea.point_exprs_in_workplane(sk, c.entity_a)
        bu, bv = eb.point_exprs_in_workplane(sk, c.entity_a)
        return [point_plane_distance(sk, m, c.entity_a), au - bu, av - bv]
    au, av = ea.point_exprs_in_workplane(sk, c.workplane)
    bu, bv = eb.point_exprs_in_workplane(sk, c.workplane)
    m = point_in_three_space(sk, c.workplane, (au + bu) * 0.5, (av + bv) * 0.5)
    q = sk.entity(c.workplane).workplane_normal(sk).normal_exprs(sk)
    n, _ = plane_exprs(sk, c.entity_a)
    # In-workplane direction lying in the symmetry plane is perpendicular to a-b
    in_plane = n.cross(q.rotation_u().cross(q.rotation_v()))
    return [point_plane_distance(sk, m, c.entity_a),
            in_plane.dot(ea.point_exprs(sk).minus(eb.point_exprs(sk)))]


def _eq_symmetric_hv(sk, c):
    au, av = sk.entity(c.pt_a).point_exprs_in_workplane(sk, c.workplane)
    bu, bv = sk.entity(c.pt_b).point_exprs_in_workplane(sk, c.workplane)
    if c.type is CT.SYMMETRIC_HORIZ:
        return [av - bv, au + bu]
    return [au - bu, av + bv]


def _eq_symmetric_line(sk, c):
    pau, pav = sk.entity(c.pt_a).point_exprs_in_workplane(sk, c.workplane)
    pbu, pbv = sk.entity(c.pt_b).point_exprs_in_workplane(sk, c.workplane)
    ln = sk.entity(c.entity_a)
    lau, lav = sk.entity(ln.point[0]).point_exprs_in_workplane(sk, c.workplane)
    lbu, lbv = sk.entity(ln.point[1]).point_exprs_in_workplane(sk, c.workplane)
    dpu, dpv = pbu - pau, pbv - pav
    dlu, dlv = lbu - lau, lbv - lav
    mu, mv = (pau + pbu) * 0.5, (pav + pbv) * 0.5
    return [dlu * dpu + dlv * dpv,
            dlv * (lau - mu) - dlu * (lav - mv)]


def _eq_at_midpoint(sk, c):
    ln = sk.entity(c.entity_a)
    a, b = sk.entity(ln.point[0]), sk.entity(ln.point[1])
    if c.workplane is None:
        m = a.point_exprs(sk).plus(b.point_exprs(sk)).scaled_by(0.5)
        if c.pt_a is not None:
            return list(m.minus(sk.entity(c.pt_a).point_exprs(sk)).components())
        return [point_plane_distance(sk, m, c.entity_b)]
    au, av = a.point_exprs_in_workplane(sk, c.workplane)
    bu, bv = b.point_exprs_in_workplane(sk, c.workplane)
    mu, mv = (au + bu) * 0.5, (av + bv) * 0.5
    if c.pt_a is not None:
        pu, pv = sk.entity(c.pt_a).point_exprs_in_workplane(sk, c.workplane)
        return [pu - mu, pv - mv]
    return [point_plane_distance(sk, point_in_three_space(sk, c.workplane, mu, mv), c.entity_b)]


def _eq_horiz_vert(sk, c):
    if c.entity_a is not None:
        ln = sk.entity(c.entity_a)
        ha, hb = ln.point[0], ln.point[1]
    else:
        ha, hb = c.pt_a, c.pt_b
    au, av = sk.entity(ha).point_exprs_in_workplane(sk, c.workplane)
    bu, bv = sk.entity(hb).point_exprs_in_workplane(sk, c.workplane)
    return [av - bv] if c.type is CT.HORIZONTAL else [au - bu]


def _eq_same_orientation(sk, c):
    a, b = sk.entity(c.entity_a), sk.entity(c.entity_b)
    au, an = a.normal_exprs_u(sk), a.normal_exprs_n(sk)
    bu, bv, bn = b.normal_exprs_u(sk), b.normal_exprs_v(sk), b.normal_exprs_n(sk)
    eq = vectors_parallel_3d(an, bn, c.value_param)
    d1, d2 = au.dot(bv), au.dot(bu)
    # Either handedness of the in-plane axes is accepted, whichever is closer
    d = d1 if abs(d1.eval(sk.values)) < abs(d2.eval(sk.values)) else d2
    return list(eq.components()) + [d]


def _eq_angle(sk, c):
    ae = sk.entity(c.entity_a).vector_exprs(sk)
    be = sk.entity(c.entity_b).vector_exprs(sk)
    if c.sense is AngleSense.SUPPLEMENTARY:
        ae = ae.scaled_by(-1.0)
    cos_ab = direction_cosine(sk, c.workplane, ae, be)
    if c.type is CT.PERPENDICULAR:
        return [cos_ab]
    return [cos_ab - math.cos(math.radians(c.value))]


def _eq_equal_angle(sk, c):
    ae = sk.entity(c.entity_a).vector_exprs(sk)
    be = sk.entity(c.entity_b).vector_exprs(sk)
    ce = sk.entity(c.entity_c).vector_exprs(sk)
    de = sk.entity(c.entity_d).vector_exprs(sk)
    if c.sense is AngleSense.SUPPLEMENTARY:
        ae = ae.scaled_by(-1.0)
    return [direction_cosine(sk, c.workplane, ae, be) - direction_cosine(sk, c.workplane, ce, de)]


def _eq_parallel(sk, c):
    a = sk.entity(c.entity_a).vector_exprs_in_workplane(sk, c.workplane)
    b = sk.entity(c.entity_b).vector_exprs_in_workplane(sk, c.workplane)
    if c.workplane is None:
        return list(vectors_parallel_3d(a, b, c.value_param).components())
    # Both vectors are in workplane coordinates, so only z of the cross product survives
    return [a.cross(b).z]


def _eq_arc_line_tangent(sk, c):
    arc, line = sk.entity(c.entity_a), sk.entity(c.entity_b)
    ac = sk.entity(arc.point[0]).point_exprs(sk)
    ap = sk.entity(_arc_end(arc, c.end)).point_exprs(sk)
    return [line.vector_exprs(sk).dot(ac.minus(ap))]


def _eq_cubic_line_tangent(sk, c):
    cubic, line = sk.entity(c.entity_a), sk.entity(c.entity_b)
    if c.end is CurveEnd.FINISH:
        a = cubic.cubic_finish_tangent_exprs(sk)
    else:
        a = cubic.cubic_start_tangent_exprs(sk)
    b = line.vector_exprs(sk)
    if c.workplane is None:
        return list(vectors_parallel_3d(a, b, c.value_param).components())
    wn = sk.entity(c.workplane).workplane_normal(sk).normal_exprs_n(sk)
    return [a.cross(b).dot(wn)]


def _tangent_dirs(sk, c) -> Tuple[List[ExprVector], bool]:
    parallel = True
    dirs = []
    for h, end in ((c.entity_a, c.ends.end_a), (c.entity_b, c.ends.end_b)):
        e = sk.entity(h)
        if e.type is EntityType.ARC_OF_CIRCLE:
            center = sk.entity(e.point[0]).point_exprs(sk)
            endpoint = sk.entity(_arc_end(e, end)).point_exprs(sk)
            # Radius vector: normal to the tangent, not parallel
            dirs.append(endpoint.minus(center))
            parallel = not parallel
        elif e.type is EntityType.CUBIC:
            if end is CurveEnd.FINISH:
                dirs.append(e.cubic_finish_tangent_exprs(sk))
            else:
                dirs.append(e.cubic_start_tangent_exprs(sk))
        else:
            raise InvariantViolation(f"Unexpected entity {e.type} in curve-curve tangency")
    return dirs, parallel


def _eq_curve_curve_tangent(sk, c):
    dirs, parallel = _tangent_dirs(sk, c)
    if parallel:
        wn = sk.entity(c.workplane).workplane_normal(sk).normal_exprs_n(sk)
        return [dirs[0].cross(dirs[1]).dot(wn)]
    return [dirs[0].dot(dirs[1])]


def _eq_pt_face_distance(sk, c):
    face = sk.entity(c.entity_a)
    p = sk.entity(c.pt_a).point_exprs(sk)
    return [p.minus(face.face_point_exprs(sk)).dot(face.face_normal_exprs(sk)) - _ex_a(c)]


def _eq_pt_on_face(sk, c):
    face = sk.entity(c.entity_a)
    p = sk.entity(c.pt_a).point_exprs(sk)
    return [p.minus(face.face_point_exprs(sk)).dot(face.face_normal_exprs(sk))]


def _eq_none(sk, c):
    return []


_TEMPLATES: Dict[ConstraintType, Callable[['Sketch', Constraint], List[Expr]]] = {
    CT.POINTS_COINCIDENT: _eq_coincident,
    CT.PT_PT_DISTANCE: _eq_pt_pt_distance,
    CT.PT_PLANE_DISTANCE: _eq_pt_plane_distance,
    CT.PT_LINE_DISTANCE: _eq_pt_line_distance,
    CT.PT_FACE_DISTANCE: _eq_pt_face_distance,
    CT.PROJ_PT_DISTANCE: _eq_proj_pt_distance,
    CT.PT_IN_PLANE: _eq_pt_in_plane,
    CT.PT_ON_LINE: _eq_pt_on_line,
    CT.PT_ON_FACE: _eq_pt_on_face,
    CT.EQUAL_LENGTH_LINES: _eq_equal_length,
    CT.LENGTH_RATIO: _eq_length_ratio,
    CT.EQ_LEN_PT_LINE_D: _eq_len_pt_line_d,
    CT.EQ_PT_LN_DISTANCES: _eq_pt_ln_distances,
    CT.EQUAL_ANGLE: _eq_equal_angle,
    CT.EQUAL_LINE_ARC_LEN: _eq_line_arc_len,
    CT.LENGTH_DIFFERENCE: _eq_length_difference,
    CT.SYMMETRIC: _eq_symmetric,
    CT.SYMMETRIC_HORIZ: _eq_symmetric_hv,
    CT.SYMMETRIC_VERT: _eq_symmetric_hv,
    CT.SYMMETRIC_LINE: _eq_symmetric_line,
    CT.AT_MIDPOINT: _eq_at_midpoint,
    CT.HORIZONTAL: _eq_horiz_vert,
    CT.VERTICAL: _eq_horiz_vert,
    CT.DIAMETER: _eq_diameter,
    CT.PT_ON_CIRCLE: _eq_pt_on_circle,
    CT.SAME_ORIENTATION: _eq_same_orientation,
    CT.ANGLE: _eq_angle,
    CT.PARALLEL: _eq_parallel,
    CT.PERPENDICULAR: _eq_angle,
    CT.ARC_LINE_TANGENT: _eq_arc_line_tangent,
    CT.CUBIC_LINE_TANGENT: _eq_cubic_line_tangent,
    CT.CURVE_CURVE_TANGENT: _eq_curve_curve_tangent,
    CT.EQUAL_RADIUS: _eq_equal_radius,
    CT.WHERE_DRAGGED: _eq_where_dragged,
    CT.ARC_ARC_LEN_RATIO: _eq_arc_arc_ratio,
    CT.ARC_LINE_LEN_RATIO: _eq_arc_line_ratio,
    CT.ARC_ARC_DIFFERENCE: _eq_arc_arc_difference,
    CT.ARC_LINE_DIFFERENCE: _eq_arc_line_difference,
    CT.COMMENT: _eq_none,
}

if set(_TEMPLATES) != set(ConstraintType):
    raise InvariantViolation("Every constraint kind needs an equation template")


# =============================================================================
# Construction-time validation
# =============================================================================

_LINE = "line segment"
_CIRCLE = "circle or arc"
_ARC = "arc"
_CUBIC = "cubic"
_PLANE = "workplane or face"
_FACE = "face"
_VECTOR = "line segment or normal"
_NORMAL = "normal"
_POINT = "point"


def _is(e: Entity, kind: str) -> bool:
    return {
        _LINE: e.type is EntityType.LINE_SEGMENT,
        _CIRCLE: e.is_circle(),
        _ARC: e.type is EntityType.ARC_OF_CIRCLE,
        _CUBIC: e.type is EntityType.CUBIC,
        _PLANE: e.is_workplane() or e.is_face(),
        _FACE: e.is_face(),
        _VECTOR: e.has_vector(),
        _NORMAL: e.is_normal(),
        _POINT: e.is_point(),
    }[kind]


# (pt_a, pt_b, entity_a, entity_b, entity_c, entity_d); None = unused
_SIGNATURES: Dict[ConstraintType, tuple] = {
    CT.POINTS_COINCIDENT: (_POINT, _POINT, None, None, None, None),
    CT.PT_PT_DISTANCE: (_POINT, _POINT, None, None, None, None),
    CT.PT_PLANE_DISTANCE: (_POINT, None, _PLANE, None, None, None),
    CT.PT_LINE_DISTANCE: (_POINT, None, _LINE, None, None, None),
    CT.PT_FACE_DISTANCE: (_POINT, None, _FACE, None, None, None),
    CT.PROJ_PT_DISTANCE: (_POINT, _POINT, _VECTOR, None, None, None),
    CT.PT_IN_PLANE: (_POINT, None, _PLANE, None, None, None),
    CT.PT_ON_LINE: (_POINT, None, _LINE, None, None, None),
    CT.PT_ON_FACE: (_POINT, None, _FACE, None, None, None),
    CT.EQUAL_LENGTH_LINES: (None, None, _LINE, _LINE, None, None),
    CT.LENGTH_RATIO: (None, None, _LINE, _LINE, None, None),
    CT.EQ_LEN_PT_LINE_D: (_POINT, None, _LINE, _LINE, None, None),
    CT.EQ_PT_LN_DISTANCES: (_POINT, _POINT, _LINE, _LINE, None, None),
    CT.EQUAL_ANGLE: (None, None, _VECTOR, _VECTOR, _VECTOR, _VECTOR),
    CT.EQUAL_LINE_ARC_LEN: (None, None, _LINE, _ARC, None, None),
    CT.LENGTH_DIFFERENCE: (None, None, _LINE, _LINE, None, None),
    CT.SYMMETRIC: (_POINT, _POINT, _PLANE, None, None, None),
    CT.SYMMETRIC_HORIZ: (_POINT, _POINT, None, None, None, None),
    CT.SYMMETRIC_VERT: (_POINT, _POINT, None, None, None, None),
    CT.SYMMETRIC_LINE: (_POINT, _POINT, _LINE, None, None, None),
    CT.DIAMETER: (None, None, _CIRCLE, None, None, None),
    CT.PT_ON_CIRCLE: (_POINT, None, _CIRCLE, None, None, None),
    CT.SAME_ORIENTATION: (None, None, _NORMAL, _NORMAL, None, None),
    CT.ANGLE: (None, None, _VECTOR, _VECTOR, None, None),
    CT.PARALLEL: (None, None, _VECTOR, _VECTOR, None, None),
    CT.PERPENDICULAR: (None, None, _VECTOR, _VECTOR, None, None),
    CT.ARC_LINE_TANGENT: (None, None, _ARC, _LINE, None, None),
    CT.CUBIC_LINE_TANGENT: (None, None, _CUBIC, _LINE, None, None),
    CT.EQUAL_RADIUS: (None, None, _CIRCLE, _CIRCLE, None, None),
    CT.WHERE_DRAGGED: (_POINT, None, None, None, None, None),
    CT.ARC_ARC_LEN_RATIO: (None, None, _ARC, _ARC, None, None),
    CT.ARC_LINE_LEN_RATIO: (None, None, _ARC, _LINE, None, None),
    CT.ARC_ARC_DIFFERENCE: (None, None, _ARC, _ARC, None, None),
    CT.ARC_LINE_DIFFERENCE: (None, None, _ARC, _LINE, None, None),
    CT.COMMENT: (None, None, None, None, None, None),
}


def _check_signature(sk: 'Sketch', c: Constraint) -> None:
    if c.type is CT.AT_MIDPOINT:
        # Point at midpoint, or midpoint of a line in a plane
        sig = (_POINT, None, _LINE, None, None, None) if c.pt_a is not None \
            else (None, None, _LINE, _PLANE, None, None)
    elif c.type in (CT.HORIZONTAL, CT.VERTICAL):
        sig = (None, None, _LINE, None, None, None) if c.entity_a is not None \
            else (_POINT, _POINT, None, None, None, None)
    elif c.type is CT.CURVE_CURVE_TANGENT:
        for h in (c.entity_a, c.entity_b):
            e = sk.entities.find(h)
            if e is None or e.type not in (EntityType.ARC_OF_CIRCLE, EntityType.CUBIC):
                raise ConstraintError("Curve-curve tangency needs two arcs or cubics")
        return
    else:
        sig = _SIGNATURES[c.type]
    slots = (c.pt_a, c.pt_b, c.entity_a, c.entity_b, c.entity_c, c.entity_d)
    names = ("pt_a", "pt_b", "entity_a", "entity_b", "entity_c", "entity_d")
    for name, h, kind in zip(names, slots, sig):
        if kind is None:
            continue
        e = sk.entities.find(h)
        if e is None:
            raise ConstraintError(f"{c.type.name}: {name} must reference a {kind}")
        if not _is(e, kind):
            raise ConstraintError(f"{c.type.name}: {name} must be a {kind}, got {e.type.name}")


def _shares_point(sk: 'Sketch', pa: Handle, pb: Handle) -> bool:
    return float(np.linalg.norm(sk.point_num(pa) - sk.point_num(pb))) < Tolerances.LENGTH_EPS * 10


def validate_constraint(sk: 'Sketch', c: Constraint) -> None:
    """
    Rejects constraints that cannot be compiled sensibly for the current
    geometry. Raises ConstraintError with a user-facing message.
    """
    _check_signature(sk, c)

    if c.type in WORKPLANE_TYPES and c.workplane is None:
        raise ConstraintError(f"{c.type.name} needs a workplane")
    if c.workplane is not None and not sk.entity(c.workplane).is_workplane():
        raise ConstraintError("Constraint workplane must be a workplane entity")
    if c.type is CT.SYMMETRIC and c.workplane is None and not sk.entity(c.entity_a).is_workplane():
        raise ConstraintError("Symmetry about a face needs a workplane")

    if c.pt_a is not None and c.pt_a == c.pt_b:
        raise ConstraintError("A constraint cannot relate a point to itself")
    if c.type is CT.PT_PT_DISTANCE and not c.reference and c.value == 0:
        raise ConstraintError("A distance of zero is a coincidence; constrain the points coincident instead")

    if c.type in (CT.PARALLEL, CT.PERPENDICULAR, CT.ANGLE, CT.EQUAL_ANGLE, CT.PROJ_PT_DISTANCE,
                  CT.LENGTH_RATIO, CT.ARC_LINE_LEN_RATIO):
        for h in c.entities():
            e = sk.entity(h)
            if e.type is EntityType.LINE_SEGMENT and is_degenerate_vector(e.vector_num(sk)):
                raise ConstraintError(f"{c.type.name}: zero-length line segment")

    if c.type is CT.ARC_LINE_TANGENT:
        arc, line = sk.entity(c.entity_a), sk.entity(c.entity_b)
        p = _arc_end(arc, c.end)
        if not any(_shares_point(sk, p, lp) for lp in line.endpoints()):
            raise ConstraintError(
                "The arc and line segment must share an endpoint. "
                "Constrain them coincident before constraining tangent.")
    elif c.type is CT.CUBIC_LINE_TANGENT:
        cubic, line = sk.entity(c.entity_a), sk.entity(c.entity_b)
        p = _curve_end_point(cubic, c.end)
        if not any(_shares_point(sk, p, lp) for lp in line.endpoints()):
            raise ConstraintError(
                "The cubic and line segment must share an endpoint. "
                "Constrain them coincident before constraining tangent.")
        if is_degenerate_vector((cubic.cubic_finish_tangent_exprs(sk) if c.end is CurveEnd.FINISH
                                 else cubic.cubic_start_tangent_exprs(sk)).eval(sk.values)):
            raise ConstraintError("The cubic has no tangent direction at that end")
    elif c.type is CT.CURVE_CURVE_TANGENT:
        ea, eb = sk.entity(c.entity_a), sk.entity(c.entity_b)
        pa = _curve_end_point(ea, c.ends.end_a)
        pb = _curve_end_point(eb, c.ends.end_b)
        if not _shares_point(sk, pa, pb):
            raise ConstraintError(
                "The curves must share an endpoint. "
                "Constrain them coincident before constraining tangent.")
        _, parallel = _tangent_dirs(sk, c)
        if parallel and c.workplane is None:
            raise ConstraintError("Tangency involving a cubic needs a workplane")


# =============================================================================
# Initial guess and measurement
# =============================================================================

def improve_initial_guess(sk: 'Sketch', c: Constraint) -> None:
    """
    One-shot nudge of parameter values towards the feasible region of `c`.
    Seeds auxiliary unknowns from the current layout and picks the angle
    sense closest to what is drawn. Does not solve anything.
    """
    values = sk.values
    if c.value_param is not None and c.value_param in sk.params:
        aux = sk.params.get(c.value_param)
        if c.type is CT.PT_ON_LINE:
            ln = sk.entity(c.entity_a)
            a, b = sk.point_num(ln.point[0]), sk.point_num(ln.point[1])
            if not is_degenerate_vector(b - a):
                aux.val = div_projected(sk.point_num(c.pt_a) - a, b - a)
        else:
            if c.type is CT.SAME_ORIENTATION:
                va = sk.entity(c.entity_a).normal_exprs_n(sk).eval(values)
                vb = sk.entity(c.entity_b).normal_exprs_n(sk).eval(values)
            elif c.type is CT.CUBIC_LINE_TANGENT:
                cubic = sk.entity(c.entity_a)
                ta = (cubic.cubic_finish_tangent_exprs(sk) if c.end is CurveEnd.FINISH
                      else cubic.cubic_start_tangent_exprs(sk))
                va = ta.eval(values)
                vb = sk.entity(c.entity_b).vector_num(sk)
            else:
                va = sk.entity(c.entity_a).vector_num(sk)
                vb = sk.entity(c.entity_b).vector_num(sk)
            if not is_degenerate_vector(vb):
                aux.val = div_projected(va, vb)

    if c.type is CT.ANGLE:
        target = math.cos(math.radians(c.value))
        current = _eq_angle(sk, c)[0].eval(values) + target
        if math.isfinite(current) and abs(-current - target) < abs(current - target):
            c.sense = AngleSense.SUPPLEMENTARY if c.sense is AngleSense.DIRECT else AngleSense.DIRECT
    elif c.type is CT.EQUAL_ANGLE:
        ae = sk.entity(c.entity_a).vector_exprs(sk)
        if c.sense is AngleSense.SUPPLEMENTARY:
            ae = ae.scaled_by(-1.0)
        cab = direction_cosine(sk, c.workplane, ae, sk.entity(c.entity_b).vector_exprs(sk)).eval(values)
        ccd = direction_cosine(sk, c.workplane, sk.entity(c.entity_c).vector_exprs(sk),
                               sk.entity(c.entity_d).vector_exprs(sk)).eval(values)
        if math.isfinite(cab) and abs(-cab - ccd) < abs(cab - ccd):
            c.sense = AngleSense.SUPPLEMENTARY if c.sense is AngleSense.DIRECT else AngleSense.DIRECT
    elif c.type is CT.PT_PT_DISTANCE and not c.reference and c.value > 0:
        pa, pb = sk.point_num(c.pt_a), sk.point_num(c.pt_b)
        if is_zero_length(float(np.linalg.norm(pb - pa))):
            # Distance has no gradient at zero; pull the points apart
            if c.workplane is not None:
                u = sk.entity(c.workplane).workplane_normal(sk).normal_num(sk).rotation_u()
            else:
                u = np.array([1.0, 0.0, 0.0])
            sk.entity(c.pt_b).point_force_to(sk, pa + u * c.value)
            logger.debug(f"[Constraint] Separated coincident points for {c.describe()}")
    elif c.type is CT.DIAMETER:
        e = sk.entity(c.entity_a)
        if e.type is EntityType.CIRCLE and e.circle_radius_num(sk) < Tolerances.LENGTH_EPS:
            sk.entity(e.distance).distance_force_to(sk, c.value / 2)


def measure(sk: 'Sketch', c: Constraint) -> float:
    """Current value of a dimension (what `value` would have to be for zero residual)."""
    if c.type in (CT.ANGLE, CT.PERPENDICULAR):
        ae = sk.entity(c.entity_a).vector_exprs(sk)
        if c.sense is AngleSense.SUPPLEMENTARY:
            ae = ae.scaled_by(-1.0)
        cos_ab = direction_cosine(sk, c.workplane, ae, sk.entity(c.entity_b).vector_exprs(sk)).eval(sk.values)
        return math.degrees(math.acos(max(-1.0, min(1.0, cos_ab))))
    if not c.is_dimension():
        raise ConstraintError(f"{c.type.name} has no value to measure")
    eqs = _TEMPLATES[c.type](sk, c)
    return eqs[0].eval(sk.values) + c.value

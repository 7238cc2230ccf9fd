"""
Curve numerics: parametric lines/arcs and the rational Bezier pieces
used by split and loop assembly.
"""

import math

import numpy as np
import pytest

from sketcher.curves import (
    ParametricCurve, RationalBezier, all_intersections, bezier_list_for_entity, is_interior_point,
)

from paracore_test_utils import add_arc, add_circle, add_line

pytestmark = [pytest.mark.curves, pytest.mark.fast]


def _quarter_circle(r=1.0):
    w = math.cos(math.pi / 4)
    return RationalBezier([[r, 0, 0], [r, r, 0], [0, r, 0]], [1.0, w, 1.0])


class TestRationalBezier:
    def test_conic_points_lie_on_circle(self):
        bz = _quarter_circle(3.0)
        for t in np.linspace(0, 1, 11):
            assert np.linalg.norm(bz.point_at(t)) == pytest.approx(3.0)

    def test_tangent_matches_finite_difference(self):
        bz = RationalBezier([[0, 0, 0], [1, 2, 0], [3, 2, 1], [4, 0, 0]])
        for t in (0.1, 0.5, 0.9):
            h = 1e-6
            fd = (bz.point_at(t + h) - bz.point_at(t - h)) / (2 * h)
            np.testing.assert_allclose(bz.tangent_at(t), fd, rtol=1e-5, atol=1e-6)

    def test_split_halves_meet(self):
        bz = _quarter_circle()
        left, right = bz.split_at(0.3)
        np.testing.assert_allclose(left.finish(), right.start())
        np.testing.assert_allclose(left.finish(), bz.point_at(0.3))
        np.testing.assert_allclose(left.point_at(0.5), bz.point_at(0.15))
        assert np.linalg.norm(right.point_at(0.5)) == pytest.approx(1.0)

    def test_closest_point(self):
        bz = RationalBezier([[0, 0, 0], [10, 0, 0]])
        assert bz.closest_point_to([2.5, 3.0, 0]) == pytest.approx(0.25)
        assert bz.closest_point_to([-4, 0, 0]) == 0.0

    def test_degree_out_of_range(self):
        with pytest.raises(AssertionError):
            RationalBezier([[0, 0, 0]])


def test_line_crosses_circle_twice(doc, sketch_xy):
    sk = doc.sketch
    circle = add_circle(doc, sketch_xy, (0, 0), 5.0)
    line = add_line(doc, sketch_xy, (-10, 3), (10, 3))

    hits = all_intersections(bezier_list_for_entity(sk, sk.entity(circle.main_entity())),
                             bezier_list_for_entity(sk, sk.entity(line.main_entity())))

    xs = sorted(float(h.point[0]) for h in hits)
    np.testing.assert_allclose(xs, [-4, 4], atol=1e-7)


def test_circle_is_four_quarter_pieces(doc, sketch_xy):
    sk = doc.sketch
    circle = sk.entity(add_circle(doc, sketch_xy, (1, 1), 2.0).main_entity())
    pieces = bezier_list_for_entity(sk, circle)
    assert len(pieces) == 4
    np.testing.assert_allclose(pieces[0].start(), pieces[-1].finish(), atol=1e-12)


def test_interior_point(doc, sketch_xy):
    sk = doc.sketch
    line = sk.entity(add_line(doc, sketch_xy, (0, 0), (10, 0)).main_entity())
    assert is_interior_point(sk, line, np.array([5.0, 0, 0]))
    assert not is_interior_point(sk, line, np.array([10.0, 0, 0]))


def test_parametric_arc_walks_from_the_chosen_end(doc, sketch_xy):
    sk = doc.sketch
    arc = sk.entity(add_arc(doc, sketch_xy, (0, 0), (2, 0), (0, 2)).main_entity())

    fwd = ParametricCurve.from_entity(sk, arc)
    rev = ParametricCurve.from_entity(sk, arc, reverse=True)

    np.testing.assert_allclose(fwd.point_at(0), [2, 0, 0], atol=1e-12)
    np.testing.assert_allclose(rev.point_at(0), [0, 2, 0], atol=1e-12)
    np.testing.assert_allclose(fwd.point_at(1), rev.point_at(0), atol=1e-12)
    # Counter-clockwise tangent at the start
    np.testing.assert_allclose(fwd.tangent_at(0) / np.linalg.norm(fwd.tangent_at(0)), [0, 1, 0], atol=1e-12)
    assert fwd.length_for_auto() == pytest.approx(math.pi / 20)


def test_parametric_line(doc, sketch_xy):
    sk = doc.sketch
    line = sk.entity(add_line(doc, sketch_xy, (0, 0), (6, 0)).main_entity())
    pc = ParametricCurve.from_entity(sk, line, reverse=True)
    np.testing.assert_allclose(pc.point_at(0.5), [3, 0, 0])
    np.testing.assert_allclose(pc.tangent_at(0.0), [-6, 0, 0])
    assert pc.length_for_auto() == pytest.approx(2.0)

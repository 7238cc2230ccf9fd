"""
Build123dKernel against real OpenCascade solids.
"""

import math

import numpy as np
import pytest

pytest.importorskip("build123d")

from modeling.group import CombineAs
from modeling.kernel import Build123dKernel, KernelError
from modeling.loops import PolyLoops
from sketcher.geometry import Quaternion

pytestmark = [pytest.mark.regeneration]


def _square(x0, y0, size):
    ring = np.array([[x0, y0, 0], [x0 + size, y0, 0], [x0 + size, y0 + size, 0], [x0, y0 + size, 0]],
                    dtype=float)
    return PolyLoops(loops=[ring])


@pytest.fixture
def k():
    return Build123dKernel()


def test_extrude_volume(k):
    box = k.extrude(_square(0, 0, 2), np.zeros(3), np.array([0, 0, 3.0]))
    assert box.volume == pytest.approx(12.0, rel=1e-6)
    assert not k.is_empty(box)


def test_extrude_with_hole(k):
    loops = _square(0, 0, 4)
    loops.loops.append(_square(1, 1, 2).loops[0])
    solid = k.extrude(loops, np.zeros(3), np.array([0, 0, 1.0]))
    assert solid.volume == pytest.approx(12.0, rel=1e-6)


def test_two_sided_extrude_starts_below(k):
    box = k.extrude(_square(0, 0, 1), np.array([0, 0, -2.0]), np.array([0, 0, 2.0]))
    bb = box.bounding_box()
    assert bb.min.Z == pytest.approx(-2.0)
    assert bb.max.Z == pytest.approx(2.0)


def test_zero_depth_is_refused(k):
    with pytest.raises(KernelError):
        k.extrude(_square(0, 0, 1), np.zeros(3), np.zeros(3))


def test_no_loops_is_refused(k):
    with pytest.raises(KernelError):
        k.extrude(PolyLoops(), np.zeros(3), np.array([0, 0, 1.0]))


def test_booleans(k):
    a = k.extrude(_square(0, 0, 2), np.zeros(3), np.array([0, 0, 2.0]))
    b = k.extrude(_square(1, 1, 2), np.zeros(3), np.array([0, 0, 2.0]))

    assert k.combine(a, b, CombineAs.UNION).volume == pytest.approx(14.0, rel=1e-6)
    assert k.combine(a, b, CombineAs.DIFFERENCE).volume == pytest.approx(6.0, rel=1e-6)
    assert k.combine(a, b, CombineAs.INTERSECTION).volume == pytest.approx(2.0, rel=1e-6)


def test_full_revolution(k):
    # Unit square 2..3 from the y axis: Pappus gives 2*pi*2.5*1
    ring = np.array([[2, 0, 0], [3, 0, 0], [3, 1, 0], [2, 1, 0]], dtype=float)
    solid = k.revolve(PolyLoops(loops=[ring]), np.zeros(3), np.array([0, 1.0, 0]), 0.0, 2 * math.pi)
    assert solid.volume == pytest.approx(2 * math.pi * 2.5, rel=1e-4)


def test_transform_moves_copy(k):
    box = k.extrude(_square(0, 0, 2), np.zeros(3), np.array([0, 0, 2.0]))
    moved = k.transform(k.copy(box), np.array([10.0, 0, 0]), Quaternion.identity())
    c, m = box.center(), moved.center()
    np.testing.assert_allclose((m.X, m.Y, m.Z), (11, 1, 1), atol=1e-6)
    np.testing.assert_allclose((c.X, c.Y, c.Z), (1, 1, 1), atol=1e-6)


def test_triangulate(k):
    box = k.extrude(_square(0, 0, 2), np.zeros(3), np.array([0, 0, 2.0]))
    mesh = k.triangulate(box)
    assert not mesh.is_empty
    assert mesh.vertices.shape[1] == 3
    assert mesh.triangles.max() < len(mesh.vertices)
    assert k.triangulate(None).is_empty

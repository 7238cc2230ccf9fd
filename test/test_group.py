"""
Group tests: step-and-repeat numbering, remap handles, derived entities
of extrude/lathe/revolve/rotate/linked groups and their own equations.
"""

import math

import numpy as np
import pytest

from modeling.group import (
    CombineAs, EntityMap, Group, GroupType, RemapRole, Subtype,
)
from sketcher.entities import Entity, EntityType
from sketcher.handles import Handle, HandleKind, group_handle
from sketcher.requests import RequestType
from sketcher.solver import SolveStatus

from paracore_test_utils import add_rectangle

pytestmark = [pytest.mark.regeneration]


def _repeat(copies, two_sided=False, skip_first=False):
    return Group(group_handle(9), GroupType.TRANSLATE, copies=copies, skip_first=skip_first,
                 subtype=Subtype.TWO_SIDED if two_sided else Subtype.ONE_SIDED)


class TestStepCopies:
    def test_one_sided(self):
        assert _repeat(3).step_copies() == [(0, 0), (1, 1), (2, 2)]

    def test_one_sided_skip_first(self):
        assert _repeat(3, skip_first=True).step_copies() == [(1, 1), (2, 2), (3, 3)]

    def test_two_sided_odd(self):
        assert _repeat(3, two_sided=True).step_copies() == [(0, -2), (1, 0), (2, 2)]

    def test_two_sided_even(self):
        assert _repeat(2, two_sided=True).step_copies() == [(0, -1), (1, 1)]

    def test_two_sided_ignores_skip_first(self):
        assert _repeat(2, two_sided=True, skip_first=True).step_copies() == [(0, -1), (1, 1)]

    @pytest.mark.parametrize("subtype,expected", [
        (Subtype.ONE_SIDED, (0, 1)),
        (Subtype.TWO_SIDED, (-1, 1)),
    ])
    def test_sides(self, subtype, expected):
        g = Group(group_handle(9), GroupType.EXTRUDE, subtype=subtype)
        assert g.sides() == expected


class TestEntityMap:
    def test_indices_are_stable_and_dense(self):
        m = EntityMap()
        a = Handle(HandleKind.ENTITY, 1, 0x10001)
        b = Handle(HandleKind.ENTITY, 1, 0x10002)
        assert m.index(a, RemapRole.TOP) == 0
        assert m.index(b, RemapRole.TOP) == 1
        assert m.index(a, RemapRole.BOTTOM) == 2
        assert m.index(a, RemapRole.TOP) == 0
        assert m.index(a, RemapRole.COPY, 3) == 3
        assert m.index(a, RemapRole.COPY, 3) == 3
        assert len(m) == 4

    def test_remap_handles_belong_to_group(self):
        g = _repeat(2)
        src = Handle(HandleKind.ENTITY, 1, 0x10001)
        h = g.remap_h(src, RemapRole.LAST)
        assert h.group == g.h
        assert not h.is_from_request()
        assert g.remap_h(src, RemapRole.LAST) == h


def test_dependencies(doc, sketch_xy):
    ext = doc.add_extrude(sketch_xy, depth=5.0)
    assert ext.dependencies() == [sketch_xy.h]
    wp_group = doc.workplane_of(sketch_xy).group
    assert wp_group == sketch_xy.h
    assert sketch_xy.dependencies() == [doc.references.h]


@pytest.fixture
def profile(doc, sketch_xy):
    return add_rectangle(doc, sketch_xy, 1, 0, 2, 1)


class TestExtrude:
    def test_top_and_bottom_copies(self, doc, sketch_xy, profile):
        sk = doc.sketch
        ext = doc.add_extrude(sketch_xy, depth=5.0)
        doc.regenerate()

        p = profile[0].point(0)
        top = sk.entity(ext.remap_h(p, RemapRole.TOP))
        bottom = sk.entity(ext.remap_h(p, RemapRole.BOTTOM))
        assert top.type is EntityType.POINT_N_TRANS
        np.testing.assert_allclose(top.point_num(sk), [1, 0, 5], atol=1e-9)
        np.testing.assert_allclose(bottom.point_num(sk), [1, 0, 0], atol=1e-9)
        np.testing.assert_allclose(ext.extrusion_vector(sk), [0, 0, 5], atol=1e-9)

    def test_swept_lines_and_faces(self, doc, sketch_xy, profile):
        sk = doc.sketch
        ext = doc.add_extrude(sketch_xy, depth=5.0)
        doc.regenerate()

        edge = sk.entity(ext.remap_h(profile[0].point(0), RemapRole.PT_TO_LINE))
        assert edge.type is EntityType.LINE_SEGMENT
        np.testing.assert_allclose(edge.vector_num(sk), [0, 0, -5], atol=1e-9)

        side = sk.entity(ext.remap_h(profile[0].main_entity(), RemapRole.LINE_TO_FACE))
        assert side.type is EntityType.FACE_XPROD
        top = sk.entity(ext.remap_h(None, RemapRole.TOP))
        np.testing.assert_allclose(top.face_normal_num(sk), [0, 0, 1], atol=1e-9)
        np.testing.assert_allclose(top.face_point_num(sk)[2], 5.0, atol=1e-9)

    def test_two_sided_extends_below(self, doc, sketch_xy, profile):
        sk = doc.sketch
        ext = doc.add_extrude(sketch_xy, depth=2.0, two_sided=True)
        doc.regenerate()
        bottom = sk.entity(ext.remap_h(profile[0].point(0), RemapRole.BOTTOM))
        np.testing.assert_allclose(bottom.point_num(sk), [1, 0, -2], atol=1e-9)

    def test_direction_locked_to_normal(self, doc, sketch_xy, profile):
        sk = doc.sketch
        ext = doc.add_extrude(sketch_xy, depth=5.0)
        doc.regenerate()
        assert len(ext.generate_equations(sk)) == 2
        assert ext.solved.dof == 1

        # Dragging the top sideways only changes the depth
        sk.point_force_to(ext.remap_h(profile[0].point(0), RemapRole.TOP), (3, 1, 8))
        result = doc.solve_group(ext)
        assert result.success
        np.testing.assert_allclose(ext.extrusion_vector(sk), [0, 0, 8], atol=1e-6)

    def test_remap_handles_survive_regeneration(self, doc, sketch_xy, profile):
        ext = doc.add_extrude(sketch_xy, depth=5.0)
        doc.regenerate()
        before = [e.h for e in doc.sketch.entities if e.group == ext.h]

        doc.regenerate_from(ext.h)
        after = [e.h for e in doc.sketch.entities if e.group == ext.h]
        assert after == before


class TestLatheAndRevolve:
    @pytest.fixture
    def y_axis(self, doc):
        # The ZX plane's normal points along +y
        return doc.sketch.entity(doc.workplanes["ZX"]).normal

    def test_lathe_sweeps_full_circles(self, doc, sketch_xy, profile, y_axis):
        sk = doc.sketch
        lathe = doc.add_lathe(sketch_xy, doc.origin, y_axis)
        doc.regenerate()

        p = profile[0].point(1)
        circle = sk.entity(lathe.remap_h(p, RemapRole.PT_TO_ARC))
        assert circle.type is EntityType.CIRCLE
        assert circle.circle_radius_num(sk) == pytest.approx(2.0)
        assert sk.entity(circle.distance).type is EntityType.DISTANCE_N_COPY
        np.testing.assert_allclose(sk.point_num(circle.point[0]), [0, 0, 0], atol=1e-9)
        assert sk.entity(lathe.remap_h(p, RemapRole.LATHE_START)).type is EntityType.POINT_N_COPY
        assert lathe.generate_equations(sk) == []

    def test_points_on_axis_sweep_nothing(self, doc, sketch_xy, profile, y_axis):
        sk = doc.sketch
        on_axis = sk.add_request(RequestType.DATUM_POINT, sketch_xy.h, doc.workplane_of(sketch_xy))
        sk.point_force_to(on_axis.point(0), (0, 3, 0))
        lathe = doc.add_lathe(sketch_xy, doc.origin, y_axis)
        doc.regenerate()

        assert lathe.remap_h(on_axis.point(0), RemapRole.PT_TO_ARC) not in sk.entities
        assert lathe.remap_h(on_axis.point(0), RemapRole.LATHE_START) in sk.entities

    def test_revolve_makes_arcs(self, doc, sketch_xy, profile, y_axis):
        sk = doc.sketch
        rev = doc.add_revolve(sketch_xy, doc.origin, y_axis, angle=90.0)
        doc.regenerate()

        p = profile[0].point(1)
        arc = sk.entity(rev.remap_h(p, RemapRole.PT_TO_ARC))
        assert arc.type is EntityType.ARC_OF_CIRCLE
        assert arc.point[1] == rev.remap_h(p, RemapRole.LATHE_START)
        np.testing.assert_allclose(sk.point_num(arc.point[1]), [2, 0, 0], atol=1e-9)
        # 90 degrees about +y takes +x to -z
        np.testing.assert_allclose(sk.point_num(arc.point[2]), [0, 0, -2], atol=1e-9)

    def test_revolve_pins_center_and_axis(self, doc, sketch_xy, profile, y_axis):
        sk = doc.sketch
        rev = doc.add_revolve(sketch_xy, doc.origin, y_axis, angle=45.0)
        doc.regenerate()
        assert len(rev.generate_equations(sk)) == 6
        assert rev.solved.dof == 1
        center, axis, angle = rev.rotation_axis(sk)
        np.testing.assert_allclose(center, [0, 0, 0], atol=1e-12)
        np.testing.assert_allclose(axis, [0, 1, 0], atol=1e-12)
        assert angle == pytest.approx(math.radians(45.0))


class TestStepAndRepeat:
    @pytest.fixture
    def source(self, doc):
        g = doc.new_sketch_3d()
        pt = doc.sketch.add_request(RequestType.DATUM_POINT, g.h)
        doc.sketch.point_force_to(pt.point(0), (2, 0, 0))
        return g, pt.point(0)

    def test_rotate_copies(self, doc, source):
        sk = doc.sketch
        g, pt = source
        z = sk.entity(doc.workplanes["XY"]).normal
        rot = doc.add_rotate(g, copies=4, origin=doc.origin, axis=z, angle=90.0)
        doc.regenerate()

        np.testing.assert_allclose(sk.point_num(rot.remap_h(pt, RemapRole.COPY, 0)), [2, 0, 0], atol=1e-9)
        np.testing.assert_allclose(sk.point_num(rot.remap_h(pt, RemapRole.COPY, 1)), [0, 2, 0], atol=1e-9)
        # The last copy has its own role, so adding copies keeps its handle
        np.testing.assert_allclose(sk.point_num(rot.remap_h(pt, RemapRole.LAST)), [0, -2, 0], atol=1e-9)
        assert rot.remap_h(pt, RemapRole.COPY, 3) not in sk.entities

        translation, q = rot.copy_transform(sk, 1)
        np.testing.assert_allclose(q.rotate(np.array([2.0, 0, 0])) + translation, [0, 2, 0], atol=1e-9)
        assert len(rot.generate_equations(sk)) == 6

    def test_translate_copies(self, doc, source):
        sk = doc.sketch
        g, pt = source
        tr = doc.add_translate(g, copies=3, offset=(0, 0, 4))
        doc.regenerate()

        second = tr.remap_h(pt, RemapRole.COPY, 1)
        np.testing.assert_allclose(sk.point_num(second), [2, 0, 4])
        assert sk.entity(second).times_applied == 1
        np.testing.assert_allclose(sk.point_num(tr.remap_h(pt, RemapRole.LAST)), [2, 0, 8])
        translation, _ = tr.copy_transform(sk, 2)
        np.testing.assert_allclose(translation, [0, 0, 8])
        assert tr.generate_equations(sk) == []

    def test_translate_in_workplane(self, doc, source):
        sk = doc.sketch
        g, _ = source
        tr = doc.add_translate(g, copies=2, offset=(3, 1, 2), workplane=doc.workplanes["XY"])
        doc.regenerate()
        assert len(tr.generate_equations(sk)) == 1
        # The out-of-plane part of the step is solved away
        assert tr.extrusion_vector(sk)[2] == pytest.approx(0.0, abs=1e-9)


def test_linked_import(doc):
    sk = doc.sketch
    src = Entity(Handle(HandleKind.ENTITY, 99, 0x10001), EntityType.POINT_IN_3D, group_handle(99),
                 num_point=np.array([1.0, 2.0, 3.0]))
    link = doc.add_linked([src])
    doc.regenerate()

    copy = sk.entity(link.remap_h(src.h, RemapRole.COPY))
    assert copy.type is EntityType.POINT_N_ROT_TRANS
    np.testing.assert_allclose(copy.point_num(sk), [1, 2, 3])
    assert len(link.generate_equations(sk)) == 1
    assert link.solved.status is SolveStatus.UNDERCONSTRAINED
    assert link.solved.dof == 6
    assert link.combine_as is CombineAs.ASSEMBLE

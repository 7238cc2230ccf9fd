"""
Sketch editing tests: request deletion with coincidence fix-up,
snapshots, dirty marking and the point helpers.
"""

import numpy as np
import pytest

from sketcher.constraints import ConstraintType as CT
from sketcher.requests import RequestType

from paracore_test_utils import add_line

pytestmark = [pytest.mark.fast]


def _coincident_pairs(sk):
    return {frozenset((c.pt_a, c.pt_b)) for c in sk.constraints if c.is_coincidence()}


class TestDeleteRequest:
    def test_coincidences_through_deleted_point_are_chained(self, doc, sketch_xy):
        sk = doc.sketch
        l1 = add_line(doc, sketch_xy, (0, 0), (5, 0))
        l2 = add_line(doc, sketch_xy, (5, 0), (5, 5))
        l3 = add_line(doc, sketch_xy, (5, 0), (9, 3))
        sk.constrain_coincident(sketch_xy.h, l1.point(1), l2.point(0))
        sk.constrain_coincident(sketch_xy.h, l2.point(0), l3.point(0))

        sk.delete_request(l2.h)

        assert _coincident_pairs(sk) == {frozenset((l1.point(1), l3.point(0)))}
        assert l2.h not in sk.requests
        assert l2.main_entity() not in sk.entities
        assert not any(p.h.is_from_request() and p.h.request() == l2.h for p in sk.params)

    def test_other_constraints_on_request_are_removed(self, doc, sketch_xy):
        sk = doc.sketch
        wp = doc.workplane_of(sketch_xy)
        keep = add_line(doc, sketch_xy, (0, 0), (0, 5))
        gone = add_line(doc, sketch_xy, (1, 0), (6, 0))
        sk.constrain(CT.HORIZONTAL, sketch_xy.h, workplane=wp, entity_a=gone.main_entity())
        par = sk.constrain(CT.PERPENDICULAR, sketch_xy.h, workplane=wp,
                           entity_a=keep.main_entity(), entity_b=gone.main_entity())
        vert = sk.constrain(CT.VERTICAL, sketch_xy.h, workplane=wp, entity_a=keep.main_entity())

        sk.delete_request(gone.h)

        assert [c.h for c in sk.constraints] == [vert.h]
        assert par.h not in sk.constraints

    def test_aux_params_of_removed_constraints_go_too(self, doc):
        sk = doc.sketch
        g = doc.new_sketch_3d()
        a = sk.add_request(RequestType.LINE_SEGMENT, g.h)
        b = sk.add_request(RequestType.LINE_SEGMENT, g.h)
        sk.point_force_to(a.point(1), (1, 0, 0))
        sk.point_force_to(b.point(0), (0, 1, 0))
        sk.point_force_to(b.point(1), (2, 1, 0))
        c = sk.constrain(CT.PARALLEL, g.h, entity_a=a.main_entity(), entity_b=b.main_entity())
        assert c.value_param in sk.params

        sk.delete_request(b.h)
        assert c.value_param not in sk.params

    def test_delete_marks_group_dirty(self, doc, sketch_xy):
        line = add_line(doc, sketch_xy, (0, 0), (1, 1))
        doc.regenerate()
        assert sketch_xy.clean

        doc.sketch.delete_request(line.h)
        assert not sketch_xy.clean


class TestSnapshot:
    def test_restore_undoes_edits(self, doc, sketch_xy):
        sk = doc.sketch
        line = add_line(doc, sketch_xy, (0, 0), (4, 0))
        snap = sk.snapshot()

        sk.point_force_to(line.point(1), (9, 9, 0))
        extra = add_line(doc, sketch_xy, (1, 1), (2, 2))
        sk.constrain_coincident(sketch_xy.h, line.point(1), extra.point(0))

        sk.restore(snap)
        np.testing.assert_allclose(sk.point_num(line.point(1)), [4, 0, 0])
        assert extra.h not in sk.requests
        assert len(sk.constraints) == 0
        # Groups are not part of a snapshot
        assert sketch_xy.h in sk.groups

    def test_snapshot_can_be_restored_twice(self, doc, sketch_xy):
        sk = doc.sketch
        line = add_line(doc, sketch_xy, (0, 0), (4, 0))
        snap = sk.snapshot()
        for target in ((7, 7, 0), (8, 8, 0)):
            sk.point_force_to(line.point(0), target)
            sk.restore(snap)
            np.testing.assert_allclose(sk.point_num(line.point(0)), [0, 0, 0])

    def test_values_view_follows_restore(self, doc, sketch_xy):
        sk = doc.sketch
        line = add_line(doc, sketch_xy, (3, 0), (4, 0))
        snap = sk.snapshot()
        p = sk.entity(line.point(0)).param[0]
        sk.param(p).val = 42.0
        sk.restore(snap)
        assert sk.values[p] == 3.0

    def test_restore_brings_back_clean_flags(self, doc, sketch_xy):
        doc.regenerate()
        snap = doc.sketch.snapshot()
        add_line(doc, sketch_xy, (0, 0), (1, 0))
        assert not sketch_xy.clean
        doc.sketch.restore(snap)
        assert sketch_xy.clean


class TestPointHelpers:
    def test_constrain_point_if_coincident(self, doc, sketch_xy):
        sk = doc.sketch
        a = add_line(doc, sketch_xy, (0, 0), (5, 0))
        b = add_line(doc, sketch_xy, (5, 0), (5, 5))
        c = sk.constrain_point_if_coincident(b.point(0))
        assert c is not None
        assert {c.pt_a, c.pt_b} == {a.point(1), b.point(0)}
        assert sk.constrain_point_if_coincident(b.point(1)) is None

    def test_same_request_points_are_not_joined(self, doc, sketch_xy):
        line = add_line(doc, sketch_xy, (2, 2), (2, 2))
        assert doc.sketch.constrain_point_if_coincident(line.point(0)) is None

    def test_replace_point_in_constraints(self, doc, sketch_xy):
        sk = doc.sketch
        a = add_line(doc, sketch_xy, (0, 0), (5, 0))
        b = add_line(doc, sketch_xy, (5, 0), (5, 5))
        c = add_line(doc, sketch_xy, (9, 0), (9, 5))
        k = sk.constrain_coincident(sketch_xy.h, a.point(1), b.point(0))

        assert sk.replace_point_in_constraints(b.point(0), c.point(0)) == 1
        assert {k.pt_a, k.pt_b} == {a.point(1), c.point(0)}

    def test_values_view(self, doc, sketch_xy):
        sk = doc.sketch
        line = add_line(doc, sketch_xy, (1.5, -2), (0, 0))
        u, v = sk.entity(line.point(0)).param[:2]
        assert (sk.values[u], sk.values[v]) == (1.5, -2.0)
        assert len(sk.values) == len(sk.params)
        with pytest.raises(KeyError):
            sk.values[sketch_xy.h.group_param(99)]

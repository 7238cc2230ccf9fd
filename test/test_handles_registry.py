"""
Handle layout and IdList registry tests.
"""

import pytest

from sketcher.constraints import ConstraintType as CT
from sketcher.errors import InvariantViolation
from sketcher.handles import (
    FROM_CONSTRAINT, FROM_GROUP, FROM_REMAP, Handle, HandleKind, IdList, group_handle,
)
from sketcher.requests import RequestType

from paracore_test_utils import add_line

pytestmark = [pytest.mark.fast]


class _Item:
    def __init__(self, h):
        self.h = h
        self.tag = 0


def _req(owner, index):
    return Handle(HandleKind.REQUEST, owner, index)


class TestHandles:
    def test_request_entities_are_deterministic(self):
        r = _req(3, 5)
        assert r.request_entity(1) == _req(3, 5).request_entity(1)
        assert r.request_entity(1) != r.request_entity(2)
        assert r.request_entity(1).request() == r
        assert r.request_param(17).request() == r

    def test_provenance_flags(self):
        g = group_handle(4)
        assert not g.is_from_request()
        assert g.group_entity(0).index & FROM_GROUP
        assert g.remap_entity(7).index & FROM_REMAP
        assert not g.remap_entity(7).is_from_request()
        assert _req(4, 1).request_entity(0).is_from_request()

    def test_constraint_params_and_equations(self):
        c = Handle(HandleKind.CONSTRAINT, 2, 9)
        p = c.constraint_param(0)
        assert p.kind is HandleKind.PARAM
        assert p.index & FROM_CONSTRAINT
        assert not p.is_from_request()

        eq = c.constraint_equation(3)
        assert eq.is_from_constraint()
        assert eq.constraint() == c
        assert not group_handle(2).group_equation(0).is_from_constraint()

    def test_group_of_any_handle(self):
        h = _req(6, 2).request_entity(1)
        assert h.group == group_handle(6)

    def test_wrong_kind_is_an_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            _req(1, 1).group_entity(0)
        with pytest.raises(InvariantViolation):
            group_handle(1).request_entity(0)

    def test_ordering_is_total(self):
        hs = [_req(2, 1), _req(1, 3), group_handle(1), _req(1, 2)]
        assert sorted(hs)[0] == group_handle(1)


class TestIdList:
    def test_add_get_find(self):
        ids = IdList()
        a = ids.add(_Item(_req(1, 1)))
        assert ids.get(a.h) is a
        assert ids.find(_req(1, 2)) is None
        assert ids.find(None) is None
        assert a.h in ids
        assert len(ids) == 1

    def test_missing_and_duplicate_handles(self):
        ids = IdList([_Item(_req(1, 1))])
        with pytest.raises(InvariantViolation):
            ids.get(_req(1, 2))
        with pytest.raises(InvariantViolation):
            ids.add(_Item(_req(1, 1)))
        with pytest.raises(InvariantViolation):
            ids.remove(_req(1, 9))

    def test_next_index_per_owner(self):
        ids = IdList([_Item(_req(1, 1)), _Item(_req(1, 4)), _Item(_req(2, 7))])
        assert ids.next_index(1) == 5
        assert ids.next_index(2) == 8
        assert ids.next_index(3) == 1

    def test_next_index_ignores_derived_handles(self):
        g = group_handle(1)
        ids = IdList([_Item(g.group_entity(0)), _Item(g.remap_entity(3))])
        assert ids.next_index(1) == 1

    def test_insertion_order_and_removal_while_iterating(self):
        hs = [_req(1, i) for i in (3, 1, 2)]
        ids = IdList([_Item(h) for h in hs])
        assert ids.handles() == hs
        for item in ids:
            ids.remove(item.h)
        assert len(ids) == 0

    def test_remove_where_and_tags(self):
        ids = IdList([_Item(_req(1, i)) for i in range(1, 6)])
        removed = ids.remove_where(lambda it: it.h.index % 2 == 0)
        assert [it.h.index for it in removed] == [2, 4]

        ids.get(_req(1, 3)).tag = 1
        assert [it.h.index for it in ids.remove_tagged()] == [3]
        ids.clear_tags()
        assert all(it.tag == 0 for it in ids)

    def test_next_index_survives_removal_of_last_item(self):
        ids = IdList([_Item(_req(1, 1)), _Item(_req(1, 2))])
        ids.remove(_req(1, 2))
        assert ids.next_index(1) == 3
        ids.remove_where(lambda it: True)
        assert ids.next_index(1) == 3

    def test_reserve_indices_keeps_the_larger_counter(self):
        old = IdList([_Item(_req(1, 1))])
        newer = IdList([_Item(_req(1, 1)), _Item(_req(1, 6)), _Item(_req(2, 2))])
        old.reserve_indices(newer)
        assert old.next_index(1) == 7
        assert old.next_index(2) == 3
        newer.reserve_indices(IdList())
        assert newer.next_index(1) == 7


def test_request_handles_follow_next_index(doc, sketch_xy):
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    a = sk.add_request(RequestType.LINE_SEGMENT, sketch_xy.h, wp)
    b = sk.add_request(RequestType.LINE_SEGMENT, sketch_xy.h, wp)
    assert (a.h.index, b.h.index) == (1, 2)
    assert a.h.owner == sketch_xy.h.owner

    sk.delete_request(b.h)
    c = sk.add_request(RequestType.LINE_SEGMENT, sketch_xy.h, wp)
    assert c.h.index == 3
    assert b.h not in sk.requests
    assert c.main_entity().request() == c.h


def test_deleted_constraint_handle_is_not_reissued(doc, sketch_xy):
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    a = add_line(doc, sketch_xy, (0, 0), (10, 0))
    b = add_line(doc, sketch_xy, (10, 0), (10, 5))
    first = sk.constrain_coincident(sketch_xy.h, a.point(1), b.point(0))
    horizontal = sk.constrain(CT.HORIZONTAL, sketch_xy.h, workplane=wp, entity_a=a.main_entity())

    sk.delete_constraint(horizontal.h)
    vertical = sk.constrain(CT.VERTICAL, sketch_xy.h, workplane=wp, entity_a=b.main_entity())

    assert vertical.h != horizontal.h
    assert horizontal.h not in sk.constraints
    assert sk.constraint(first.h) is first


def test_handles_issued_before_restore_stay_retired(doc, sketch_xy):
    sk = doc.sketch
    wp = doc.workplane_of(sketch_xy)
    line = add_line(doc, sketch_xy, (0, 0), (10, 0))
    snap = sk.snapshot()
    rolled_back = sk.constrain(CT.HORIZONTAL, sketch_xy.h, workplane=wp, entity_a=line.main_entity())
    extra = sk.add_request(RequestType.DATUM_POINT, sketch_xy.h, wp)

    sk.restore(snap)
    again = sk.constrain(CT.HORIZONTAL, sketch_xy.h, workplane=wp, entity_a=line.main_entity())
    point = sk.add_request(RequestType.DATUM_POINT, sketch_xy.h, wp)

    assert rolled_back.h not in sk.constraints
    assert again.h.index > rolled_back.h.index
    assert point.h.index > extra.h.index

"""
ParaCore Sketcher - Sketch Object
=================================

The Sketch is the handle store: groups, requests, constraints, entities
and params, each in its own IdList. Everything else refers to it by
handle. It also owns the editing operations that must keep the
registries consistent (deleting a request removes the constraints on it,
and chains the coincidences it was part of).
"""

import copy
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional

import numpy as np
from loguru import logger

from config.tolerances import Tolerances
from sketcher.constraint_equations import improve_initial_guess, validate_constraint
from sketcher.constraints import (
    AngleSense, Constraint, ConstraintType, CurveEnd, TangentEnds,
)
from sketcher.entities import Entity, EntityType, Param
from sketcher.errors import ConstraintError, SketchError
from sketcher.handles import Handle, HandleKind, IdList
from sketcher.requests import Request, RequestType


class ParamValues(Mapping):
    """Read-only view of the current param values, keyed by handle."""

    def __init__(self, params: IdList):
        self._params = params

    def __getitem__(self, h: Handle) -> float:
        p = self._params.find(h)
        if p is None:
            raise KeyError(h)
        return p.val

    def __iter__(self) -> Iterator[Handle]:
        return iter(self._params.handles())

    def __len__(self) -> int:
        return len(self._params)


@dataclass
class SketchSnapshot:
    requests: IdList
    constraints: IdList
    entities: IdList
    params: IdList
    clean: Dict[Handle, bool] = field(default_factory=dict)


class Sketch:
    """
    Registries of one document.

    Example:
        sk = Sketch()
        line = sk.add_request(RequestType.LINE_SEGMENT, g, workplane=wp)
        sk.point_force_to(line.point(0), (0, 0, 0))
        sk.constrain(ConstraintType.HORIZONTAL, g, workplane=wp, entity_a=line.main_entity())
    """

    def __init__(self):
        self.groups: IdList = IdList()
        self.requests: IdList = IdList()
        self.constraints: IdList = IdList()
        self.entities: IdList = IdList()
        self.params: IdList = IdList()
        self.values = ParamValues(self.params)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def entity(self, h: Handle) -> Entity:
        return self.entities.get(h)

    def param(self, h: Handle) -> Param:
        return self.params.get(h)

    def request(self, h: Handle) -> Request:
        return self.requests.get(h)

    def constraint(self, h: Handle) -> Constraint:
        return self.constraints.get(h)

    def point_num(self, h: Handle) -> np.ndarray:
        return self.entity(h).point_num(self)

    def point_force_to(self, h: Handle, p) -> None:
        self.entity(h).point_force_to(self, np.asarray(p, dtype=float))

    def request_for_entity(self, h: Handle) -> Optional[Request]:
        if not h.is_from_request():
            return None
        return self.requests.find(h.request())

    def entities_of_request(self, req: Handle) -> List[Entity]:
        return [e for e in self.entities if e.h.is_from_request() and e.h.request() == req]

    def mark_group_dirty(self, h: Handle) -> None:
        g = self.groups.find(h)
        if g is not None:
            g.clean = False

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def add_request(self, type: RequestType, group: Handle, workplane: Optional[Handle] = None,
                    construction: bool = False) -> Request:
        """Adds a request and generates its entities and params right away."""
        if type is RequestType.ARC_OF_CIRCLE and workplane is None:
            raise SketchError("An arc of a circle must be drawn in a workplane")
        if workplane is not None and not self.entity(workplane).is_workplane():
            raise SketchError(f"{workplane!r} is not a workplane")
        h = Handle(HandleKind.REQUEST, group.owner, self.requests.next_index(group.owner))
        req = self.requests.add(Request(h, type, group, workplane, construction))
        req.generate(self.entities, self.params)
        self.mark_group_dirty(group)
        return req

    def delete_request(self, h: Handle) -> None:
        """
        Deletes a request with its entities and params. Constraints on those
        entities go too; points that were coincident through one of the
        deleted points stay coincident with each other.
        """
        req = self.request(h)
        owned = {e.h for e in self.entities_of_request(h)}
        for e in self.entities_of_request(h):
            if e.is_point():
                self._fix_coincidences_through(e.h, req.group)
        removed = self.constraints.remove_where(
            lambda c: any(r in owned for r in c.references()))
        for c in removed:
            self._drop_constraint_params(c)
        self.entities.remove_where(lambda e: e.h in owned)
        self.params.remove_where(lambda p: p.h.is_from_request() and p.h.request() == h)
        self.requests.remove(h)
        self.mark_group_dirty(req.group)
        logger.debug(f"[Sketch] Deleted request {h!r} and {len(removed)} constraints")

    def _fix_coincidences_through(self, pt: Handle, group: Handle) -> None:
        chained = []
        for c in self.constraints:
            if c.is_coincidence() and c.references_point(pt):
                other = c.pt_b if c.pt_a == pt else c.pt_a
                if other not in chained:
                    chained.append(other)
                self.constraints.remove(c.h)
        for prev, cur in zip(chained, chained[1:]):
            self.constrain_coincident(group, prev, cur)

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def new_constraint_handle(self, group: Handle) -> Handle:
        return Handle(HandleKind.CONSTRAINT, group.owner, self.constraints.next_index(group.owner))

    def add_constraint(self, c: Constraint) -> Constraint:
        """Validates, registers and seeds a constraint. Raises ConstraintError."""
        validate_constraint(self, c)
        self.constraints.add(c)
        c.generate_params(self.params)
        improve_initial_guess(self, c)
        self.mark_group_dirty(c.group)
        return c

    def constrain(self, type: ConstraintType, group: Handle, workplane: Optional[Handle] = None,
                  value: float = 0.0, pt_a: Optional[Handle] = None, pt_b: Optional[Handle] = None,
                  entity_a: Optional[Handle] = None, entity_b: Optional[Handle] = None,
                  entity_c: Optional[Handle] = None, entity_d: Optional[Handle] = None,
                  end: CurveEnd = CurveEnd.START, ends: TangentEnds = TangentEnds.START_START,
                  sense: AngleSense = AngleSense.DIRECT, reference: bool = False,
                  comment: str = "") -> Constraint:
        c = Constraint(self.new_constraint_handle(group), type, group, workplane=workplane,
                       value=value, pt_a=pt_a, pt_b=pt_b, entity_a=entity_a, entity_b=entity_b,
                       entity_c=entity_c, entity_d=entity_d, end=end, ends=ends, sense=sense,
                       reference=reference, comment=comment)
        return self.add_constraint(c)

    def common_workplane(self, *points: Handle) -> Optional[Handle]:
        """Workplane shared by all the given 2D points, if any."""
        wps = {self.entity(p).workplane if self.entity(p).type is EntityType.POINT_IN_2D else None
               for p in points}
        if len(wps) == 1:
            return wps.pop()
        return None

    def constrain_coincident(self, group: Handle, pt_a: Handle, pt_b: Handle) -> Constraint:
        return self.constrain(ConstraintType.POINTS_COINCIDENT, group,
                              workplane=self.common_workplane(pt_a, pt_b), pt_a=pt_a, pt_b=pt_b)

    def constrain_tangent(self, group: Handle, entity_a: Handle, entity_b: Handle,
                          workplane: Optional[Handle] = None) -> Constraint:
        """
        Tangency at whichever ends of the two curves currently touch.
        A line/arc pair is reordered so the arc (or cubic) comes first.
        """
        ea, eb = self.entity(entity_a), self.entity(entity_b)
        if ea.type is EntityType.LINE_SEGMENT:
            ea, eb = eb, ea
        if eb.type is EntityType.LINE_SEGMENT:
            kind = (ConstraintType.ARC_LINE_TANGENT if ea.type is EntityType.ARC_OF_CIRCLE
                    else ConstraintType.CUBIC_LINE_TANGENT)
            for end in CurveEnd:
                p = ea.endpoints()[0 if end is CurveEnd.START else 1]
                if any(self._touching(p, lp) for lp in eb.endpoints()):
                    return self.constrain(kind, group, workplane=workplane,
                                          entity_a=ea.h, entity_b=eb.h, end=end)
        else:
            for end_a in CurveEnd:
                for end_b in CurveEnd:
                    pa = ea.endpoints()[0 if end_a is CurveEnd.START else 1]
                    pb = eb.endpoints()[0 if end_b is CurveEnd.START else 1]
                    if self._touching(pa, pb):
                        return self.constrain(ConstraintType.CURVE_CURVE_TANGENT, group,
                                              workplane=workplane, entity_a=ea.h, entity_b=eb.h,
                                              ends=TangentEnds.of(end_a, end_b))
        raise ConstraintError("The curves must share an endpoint to be constrained tangent")

    def _touching(self, pa: Handle, pb: Handle) -> bool:
        return float(np.linalg.norm(self.point_num(pa) - self.point_num(pb))) < Tolerances.LENGTH_EPS * 10

    def delete_constraint(self, h: Handle) -> None:
        c = self.constraints.remove(h)
        self._drop_constraint_params(c)
        self.mark_group_dirty(c.group)

    def _drop_constraint_params(self, c: Constraint) -> None:
        if c.value_param is not None and c.value_param in self.params:
            self.params.remove(c.value_param)

    def replace_point_in_constraints(self, old: Handle, new: Handle) -> int:
        """Re-points every constraint on `old` to `new`; returns how many changed."""
        changed = 0
        for c in self.constraints:
            if not c.references_point(old):
                continue
            if c.pt_a == old:
                c.pt_a = new
            if c.pt_b == old:
                c.pt_b = new
            changed += 1
            self.mark_group_dirty(c.group)
        return changed

    def constrain_point_if_coincident(self, h: Handle) -> Optional[Constraint]:
        """
        Adds a coincidence between `h` and another request point of the same
        group that sits at the same place. Returns the constraint, or None.
        """
        pt = self.entity(h)
        where = pt.point_num(self)
        own_req = h.request() if h.is_from_request() else None
        for e in self.entities:
            if not e.is_point() or e.h == h or e.group != pt.group or not e.h.is_from_request():
                continue
            if e.workplane != pt.workplane:
                continue
            if own_req is not None and e.h.request() == own_req:
                continue
            if float(np.linalg.norm(e.point_num(self) - where)) < Tolerances.LENGTH_EPS * 10:
                return self.constrain_coincident(pt.group, e.h, h)
        return None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> SketchSnapshot:
        """Deep copy of the registries an interactive operation may touch."""
        return SketchSnapshot(
            requests=copy.deepcopy(self.requests),
            constraints=copy.deepcopy(self.constraints),
            entities=copy.deepcopy(self.entities),
            params=copy.deepcopy(self.params),
            clean={g.h: g.clean for g in self.groups},
        )

    def restore(self, snap: SketchSnapshot) -> None:
        # Restore from copies so the snapshot can be reused
        issued_requests, issued_constraints = self.requests, self.constraints
        self.requests = copy.deepcopy(snap.requests)
        self.constraints = copy.deepcopy(snap.constraints)
        self.requests.reserve_indices(issued_requests)
        self.constraints.reserve_indices(issued_constraints)
        self.entities = copy.deepcopy(snap.entities)
        self.params = copy.deepcopy(snap.params)
        self.values = ParamValues(self.params)
        for h, clean in snap.clean.items():
            g = self.groups.find(h)
            if g is not None:
                g.clean = clean

"""
ParaCore Sketcher - Requests
============================

A request is the user-level instruction ("add a line segment") that its
group expands into entities and params. Expansion is deterministic: the
same request always yields the same handles.

Entity slots: 0 main entity (a datum point is the point itself),
1..4 points, 32 normal, 64 distance.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Optional

from sketcher.entities import Entity, EntityType, Param
from sketcher.handles import Handle, IdList

SLOT_NORMAL = 32
SLOT_DISTANCE = 64


class RequestType(Enum):
    WORKPLANE = auto()
    DATUM_POINT = auto()
    LINE_SEGMENT = auto()
    CUBIC = auto()
    CIRCLE = auto()
    ARC_OF_CIRCLE = auto()


# (entity type, point count, has normal, has distance)
_LAYOUT: Dict[RequestType, tuple] = {
    RequestType.WORKPLANE: (EntityType.WORKPLANE, 1, True, False),
    RequestType.DATUM_POINT: (None, 1, False, False),
    RequestType.LINE_SEGMENT: (EntityType.LINE_SEGMENT, 2, False, False),
    RequestType.CUBIC: (EntityType.CUBIC, 4, False, False),
    RequestType.CIRCLE: (EntityType.CIRCLE, 1, True, True),
    RequestType.ARC_OF_CIRCLE: (EntityType.ARC_OF_CIRCLE, 3, True, False),
}


@dataclass
class Request:
    h: Handle
    type: RequestType
    group: Handle
    workplane: Optional[Handle] = None
    construction: bool = False
    tag: int = 0

    def main_entity(self) -> Handle:
        return self.h.request_entity(0)

    def point(self, i: int) -> Handle:
        """Handle of the i-th point entity."""
        if self.type is RequestType.DATUM_POINT:
            return self.h.request_entity(0)
        return self.h.request_entity(i + 1)

    def generate(self, entities: IdList, params: IdList) -> None:
        """Adds this request's entities and params with default values."""
        et, points, has_normal, has_distance = _LAYOUT[self.type]
        h = self.h

        def add_param(slot: int, val: float = 0.0) -> Handle:
            ph = h.request_param(slot)
            params.add(Param(ph, val))
            return ph

        main = Entity(h.request_entity(0), et, self.group, workplane=self.workplane,
                      construction=self.construction)
        for i in range(points):
            p = Entity(self.point(i), EntityType.POINT_IN_3D, self.group,
                       workplane=self.workplane, construction=self.construction)
            if self.workplane is None:
                p.param[:3] = [add_param(16 + 3 * i + k) for k in range(3)]
            else:
                p.type = EntityType.POINT_IN_2D
                p.param[:2] = [add_param(16 + 3 * i + k) for k in range(2)]
            entities.add(p)
            main.point[i] = p.h

        if has_normal:
            n = Entity(h.request_entity(SLOT_NORMAL), EntityType.NORMAL_IN_2D, self.group,
                       workplane=self.workplane, construction=self.construction)
            if self.workplane is None:
                n.type = EntityType.NORMAL_IN_3D
                n.param[:4] = [add_param(SLOT_NORMAL, 1.0)] + [add_param(SLOT_NORMAL + k) for k in (1, 2, 3)]
            n.point[0] = main.point[0]
            entities.add(n)
            main.normal = n.h

        if has_distance:
            d = Entity(h.request_entity(SLOT_DISTANCE), EntityType.DISTANCE, self.group,
                       workplane=self.workplane, construction=self.construction)
            d.param[0] = add_param(SLOT_DISTANCE)
            entities.add(d)
            main.distance = d.h

        if et is not None:
            entities.add(main)

"""
ParaCore Sketcher - Constraint definitions
==========================================

A constraint names a relation over up to two points and four entities,
plus an optional value. It is owned by a group and holds only handles,
never the entities themselves.

Which end of a curve a tangency or angle constraint refers to is stated
with explicit enums (CurveEnd, TangentEnds, AngleSense).

The equations of each kind live in sketcher.constraint_equations.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, List, Optional

from sketcher.entities import Param
from sketcher.handles import Handle, IdList


class ConstraintType(Enum):
    """Constraint kinds. Values are stable identifiers for serialization."""
    POINTS_COINCIDENT = 20
    PT_PT_DISTANCE = 30
    PT_PLANE_DISTANCE = 31
    PT_LINE_DISTANCE = 32
    PT_FACE_DISTANCE = 33
    PROJ_PT_DISTANCE = 34
    PT_IN_PLANE = 41
    PT_ON_LINE = 42
    PT_ON_FACE = 43
    EQUAL_LENGTH_LINES = 50
    LENGTH_RATIO = 51
    EQ_LEN_PT_LINE_D = 52
    EQ_PT_LN_DISTANCES = 53
    EQUAL_ANGLE = 54
    EQUAL_LINE_ARC_LEN = 55
    LENGTH_DIFFERENCE = 56
    SYMMETRIC = 60
    SYMMETRIC_HORIZ = 61
    SYMMETRIC_VERT = 62
    SYMMETRIC_LINE = 63
    AT_MIDPOINT = 70
    HORIZONTAL = 80
    VERTICAL = 81
    DIAMETER = 90
    PT_ON_CIRCLE = 100
    SAME_ORIENTATION = 110
    ANGLE = 120
    PARALLEL = 121
    PERPENDICULAR = 122
    ARC_LINE_TANGENT = 123
    CUBIC_LINE_TANGENT = 124
    CURVE_CURVE_TANGENT = 125
    EQUAL_RADIUS = 130
    WHERE_DRAGGED = 200
    ARC_ARC_LEN_RATIO = 210
    ARC_LINE_LEN_RATIO = 211
    ARC_ARC_DIFFERENCE = 212
    ARC_LINE_DIFFERENCE = 213
    COMMENT = 1000


class CurveEnd(Enum):
    """End of an arc or cubic a tangency refers to."""
    START = auto()
    FINISH = auto()


class TangentEnds(Enum):
    """Ends of (curve A, curve B) meeting in a curve-curve tangency."""
    START_START = auto()
    START_FINISH = auto()
    FINISH_START = auto()
    FINISH_FINISH = auto()

    @staticmethod
    def of(end_a: CurveEnd, end_b: CurveEnd) -> 'TangentEnds':
        return TangentEnds[f"{end_a.name}_{end_b.name}"]

    @property
    def end_a(self) -> CurveEnd:
        return CurveEnd[self.name.split("_")[0]]

    @property
    def end_b(self) -> CurveEnd:
        return CurveEnd[self.name.split("_")[1]]


class AngleSense(Enum):
    """DIRECT measures between the vectors as drawn, SUPPLEMENTARY flips the first."""
    DIRECT = auto()
    SUPPLEMENTARY = auto()


# Kinds whose `value` is a driving dimension
DIMENSION_TYPES = frozenset((
    ConstraintType.PT_PT_DISTANCE, ConstraintType.PT_PLANE_DISTANCE,
    ConstraintType.PT_LINE_DISTANCE, ConstraintType.PT_FACE_DISTANCE,
    ConstraintType.PROJ_PT_DISTANCE, ConstraintType.LENGTH_RATIO,
    ConstraintType.LENGTH_DIFFERENCE, ConstraintType.DIAMETER, ConstraintType.ANGLE,
    ConstraintType.ARC_ARC_LEN_RATIO, ConstraintType.ARC_LINE_LEN_RATIO,
    ConstraintType.ARC_ARC_DIFFERENCE, ConstraintType.ARC_LINE_DIFFERENCE,
))

# Kinds that only make sense projected into a workplane
WORKPLANE_TYPES = frozenset((
    ConstraintType.HORIZONTAL, ConstraintType.VERTICAL,
    ConstraintType.SYMMETRIC_HORIZ, ConstraintType.SYMMETRIC_VERT,
    ConstraintType.SYMMETRIC_LINE,
))

# Kinds that solve for one auxiliary unknown when free in 3D
_AUX_PARAM_TYPES = frozenset((
    ConstraintType.PARALLEL, ConstraintType.PT_ON_LINE,
    ConstraintType.CUBIC_LINE_TANGENT, ConstraintType.SAME_ORIENTATION,
))


@dataclass
class Constraint:
    h: Handle
    type: ConstraintType
    group: Handle
    workplane: Optional[Handle] = None
    value: float = 0.0
    pt_a: Optional[Handle] = None
    pt_b: Optional[Handle] = None
    entity_a: Optional[Handle] = None
    entity_b: Optional[Handle] = None
    entity_c: Optional[Handle] = None
    entity_d: Optional[Handle] = None
    end: CurveEnd = CurveEnd.START
    ends: TangentEnds = TangentEnds.START_START
    sense: AngleSense = AngleSense.DIRECT
    reference: bool = False
    comment: str = ""
    value_param: Optional[Handle] = None
    tag: int = 0

    def is_coincidence(self) -> bool:
        return self.type is ConstraintType.POINTS_COINCIDENT

    def is_dimension(self) -> bool:
        return self.type in DIMENSION_TYPES

    def needs_aux_param(self) -> bool:
        if self.type is ConstraintType.SAME_ORIENTATION:
            return True
        return self.type in _AUX_PARAM_TYPES and self.workplane is None

    def points(self) -> List[Handle]:
        return [p for p in (self.pt_a, self.pt_b) if p is not None]

    def entities(self) -> List[Handle]:
        return [e for e in (self.entity_a, self.entity_b, self.entity_c, self.entity_d) if e is not None]

    def references(self) -> Iterator[Handle]:
        """Every entity handle this constraint depends on."""
        yield from self.points()
        yield from self.entities()
        if self.workplane is not None:
            yield self.workplane

    def references_point(self, h: Handle) -> bool:
        return h in (self.pt_a, self.pt_b)

    def generate_params(self, params: IdList) -> None:
        """Adds the auxiliary unknown of kinds that need one."""
        if self.needs_aux_param():
            self.value_param = self.h.constraint_param(0)
            params.add(Param(self.value_param, 0.0))
        else:
            self.value_param = None

    def describe(self) -> str:
        label = self.type.name.lower()
        if self.is_dimension():
            label += f" = {self.value:g}"
        return f"{label} [{self.h!r}]"

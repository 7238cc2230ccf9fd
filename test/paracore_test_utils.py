"""
ParaCore Test Utilities - helpers shared by the test modules

RecordingKernel stands in for the solid kernel: it builds nothing, but
records every call so tests can check what the regeneration pipeline
asked for. The sketch helpers draw plain geometry in a workplane group.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from modeling.group import CombineAs
from modeling.kernel import KernelError, Mesh, SolidKernel
from sketcher.geometry import as_vec
from sketcher.requests import RequestType


@dataclass
class FakeShell:
    kind: str
    parts: Tuple[Any, ...] = ()
    translation: Optional[np.ndarray] = None


class RecordingKernel(SolidKernel):
    """SolidKernel that records calls. Booleans listed in `fail_on` raise KernelError."""

    def __init__(self, fail_on: Sequence[CombineAs] = ()):
        self.fail_on = set(fail_on)
        self.calls: List[tuple] = []

    def extrude(self, loops, bottom, top):
        self.calls.append(("extrude", np.array(bottom, dtype=float), np.array(top, dtype=float)))
        return FakeShell("extrude", (len(loops.loops),))

    def revolve(self, loops, axis_pos, axis_dir, start, finish):
        self.calls.append(("revolve", float(start), float(finish)))
        return FakeShell("revolve", (len(loops.loops),))

    def transform(self, shell, translation, rotation):
        self.calls.append(("transform", np.array(translation, dtype=float), rotation))
        return FakeShell("transform", (shell,), np.array(translation, dtype=float))

    def combine(self, a, b, how):
        self.calls.append(("combine", how))
        if how in self.fail_on:
            raise KernelError(f"{how.name.lower()} refused by test kernel")
        return FakeShell(how.name.lower(), (a, b))

    def copy(self, shell):
        return shell

    def is_empty(self, shell):
        return shell is None

    def triangulate(self, shell):
        return Mesh()

    def named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


def _world(doc, group, p) -> np.ndarray:
    """2D points are (u, v) in the group's workplane; 3D points are taken as they are."""
    if len(p) == 3:
        return as_vec(p)
    sk = doc.sketch
    wp = sk.entity(doc.workplane_of(group))
    q = wp.workplane_normal(sk).normal_num(sk)
    return sk.point_num(wp.point[0]) + q.rotation_u() * p[0] + q.rotation_v() * p[1]


def add_line(doc, group, a, b, construction: bool = False):
    """Line segment request from a to b in the group's workplane (see _world)."""
    sk = doc.sketch
    req = sk.add_request(RequestType.LINE_SEGMENT, group.h, doc.workplane_of(group),
                         construction=construction)
    sk.point_force_to(req.point(0), _world(doc, group, a))
    sk.point_force_to(req.point(1), _world(doc, group, b))
    return req


def add_arc(doc, group, center, start, finish):
    sk = doc.sketch
    req = sk.add_request(RequestType.ARC_OF_CIRCLE, group.h, doc.workplane_of(group))
    for i, p in enumerate((center, start, finish)):
        sk.point_force_to(req.point(i), _world(doc, group, p))
    return req


def add_circle(doc, group, center, radius: float):
    sk = doc.sketch
    req = sk.add_request(RequestType.CIRCLE, group.h, doc.workplane_of(group))
    circle = sk.entity(req.main_entity())
    sk.point_force_to(circle.point[0], _world(doc, group, center))
    sk.entity(circle.distance).distance_force_to(sk, radius)
    return req


def add_polygon(doc, group, corners, coincident: bool = True):
    """Closed polygon of line segments; corners joined by coincidences."""
    reqs = [add_line(doc, group, a, b) for a, b in zip(corners, corners[1:] + corners[:1])]
    if coincident:
        for prev, cur in zip(reqs, reqs[1:] + reqs[:1]):
            doc.sketch.constrain_coincident(group.h, prev.point(1), cur.point(0))
    return reqs


def add_rectangle(doc, group, x0: float, y0: float, x1: float, y1: float):
    return add_polygon(doc, group, [(x0, y0), (x1, y0), (x1, y1), (x0, y1)])


def requests_in(doc, group):
    return [r for r in doc.sketch.requests if r.group == group.h]

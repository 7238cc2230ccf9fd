"""
ParaCore Modeling - Solid Kernel Adapter
========================================

The regeneration pipeline builds solids only through SolidKernel, so the
geometry library stays replaceable (tests use a recording fake).
Build123dKernel is the production implementation on top of build123d.

Every kernel failure surfaces as KernelError; the pipeline turns a
failed boolean into a flag on the group instead of aborting.
"""

import copy
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List

import numpy as np
from loguru import logger

from config.tolerances import Tolerances, is_zero_length
from modeling.group import CombineAs
from modeling.loops import PolyLoops
from sketcher.geometry import Quaternion, magnitude


class KernelError(Exception):
    """The solid kernel could not perform an operation."""


@dataclass
class Mesh:
    """Triangle mesh: vertex positions and index triples."""
    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    triangles: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=int))

    @property
    def is_empty(self) -> bool:
        return len(self.triangles) == 0


class SolidKernel(ABC):
    """Solid modeling operations the regeneration pipeline needs."""

    @abstractmethod
    def extrude(self, loops: PolyLoops, bottom: np.ndarray, top: np.ndarray) -> Any:
        """Sweeps the loops' faces from `bottom` to `top` (offsets from the sketch plane)."""

    @abstractmethod
    def revolve(self, loops: PolyLoops, axis_pos: np.ndarray, axis_dir: np.ndarray,
                start: float, finish: float) -> Any:
        """Sweeps the loops' faces about an axis, from angle `start` to `finish` (radians)."""

    @abstractmethod
    def transform(self, shell: Any, translation: np.ndarray, rotation: Quaternion) -> Any:
        """Copy of `shell` mapped by p -> rotation(p) + translation."""

    @abstractmethod
    def combine(self, a: Any, b: Any, how: CombineAs) -> Any:
        """Boolean of `b` into `a`."""

    @abstractmethod
    def copy(self, shell: Any) -> Any:
        """Independent copy; later operations on it leave `shell` alone."""

    @abstractmethod
    def is_empty(self, shell: Any) -> bool:
        ...

    @abstractmethod
    def triangulate(self, shell: Any) -> Mesh:
        ...

    def combine_all(self, shells: List[Any], how: CombineAs) -> Any:
        """Folds `shells` together. Step copies are always merged as a union or assembly."""
        how = CombineAs.ASSEMBLE if how is CombineAs.ASSEMBLE else CombineAs.UNION
        out = None
        for s in shells:
            out = s if out is None else self.combine(out, s, how)
        return out


class Build123dKernel(SolidKernel):
    """SolidKernel on build123d (OpenCascade)."""

    def __init__(self, tolerance: float = None):
        self.tolerance = tolerance if tolerance is not None else Tolerances.TESSELLATION_QUALITY

    def _faces(self, loops: PolyLoops) -> list:
        from build123d import Wire, make_face

        faces = []
        for outer, holes in loops.faces():
            face = make_face(Wire.make_polygon([tuple(p) for p in outer], close=True))
            for hole in holes:
                face -= make_face(Wire.make_polygon([tuple(p) for p in hole], close=True))
            faces.append(face)
        if not faces:
            raise KernelError("No closed loops to build faces from")
        return faces

    def _checked(self, shape, what: str):
        if shape is None:
            raise KernelError(f"{what} produced nothing")
        if hasattr(shape, 'is_valid') and not shape.is_valid():
            try:
                shape = shape.fix()
            except Exception as e:
                raise KernelError(f"{what} produced an invalid solid: {e}") from e
            if not shape.is_valid():
                raise KernelError(f"{what} produced an invalid solid")
        return shape

    def extrude(self, loops: PolyLoops, bottom: np.ndarray, top: np.ndarray) -> Any:
        from build123d import Compound, Pos, Vector, extrude

        d = np.asarray(top, dtype=float) - np.asarray(bottom, dtype=float)
        amount = magnitude(d)
        if is_zero_length(amount):
            raise KernelError("Extrusion depth is zero")
        try:
            solids = [extrude(Pos(*bottom) * f, amount=amount, dir=Vector(*(d / amount)))
                      for f in self._faces(loops)]
        except KernelError:
            raise
        except Exception as e:
            raise KernelError(f"Extrude failed: {e}") from e
        shape = solids[0] if len(solids) == 1 else Compound(children=solids)
        return self._checked(shape, "Extrude")

    def revolve(self, loops: PolyLoops, axis_pos: np.ndarray, axis_dir: np.ndarray,
                start: float, finish: float) -> Any:
        from build123d import Axis, Compound, revolve

        axis = Axis(tuple(axis_pos), tuple(axis_dir))
        arc = math.degrees(finish - start)
        if abs(arc) < 1e-9:
            raise KernelError("Revolution angle is zero")
        try:
            solids = []
            for f in self._faces(loops):
                if start:
                    f = f.rotate(axis, math.degrees(start))
                solids.append(revolve(f, axis=axis, revolution_arc=min(arc, 360.0)))
        except KernelError:
            raise
        except Exception as e:
            raise KernelError(f"Revolve failed: {e}") from e
        shape = solids[0] if len(solids) == 1 else Compound(children=solids)
        return self._checked(shape, "Revolve")

    def transform(self, shell: Any, translation: np.ndarray, rotation: Quaternion) -> Any:
        from build123d import Axis, Pos

        try:
            q = rotation.normalized()
            angle = 2 * math.acos(max(-1.0, min(1.0, q.w)))
            out = shell
            if angle > 1e-12:
                out = out.rotate(Axis((0, 0, 0), tuple(q.vector())), math.degrees(angle))
            return Pos(*translation) * out
        except Exception as e:
            raise KernelError(f"Transform failed: {e}") from e

    def combine(self, a: Any, b: Any, how: CombineAs) -> Any:
        from build123d import Compound

        try:
            if how is CombineAs.UNION:
                out = a.fuse(b, tol=Tolerances.KERNEL_FUZZY)
            elif how is CombineAs.DIFFERENCE:
                out = a.cut(b)
            elif how is CombineAs.INTERSECTION:
                out = a.intersect(b)
            else:
                out = Compound(children=[a, b])
        except Exception as e:
            raise KernelError(f"Boolean {how.name.lower()} failed: {e}") from e
        logger.debug(f"[Kernel] Boolean {how.name.lower()} done")
        return self._checked(out, f"Boolean {how.name.lower()}")

    def copy(self, shell: Any) -> Any:
        try:
            return copy.deepcopy(shell)
        except Exception as e:
            raise KernelError(f"Could not copy shell: {e}") from e

    def is_empty(self, shell: Any) -> bool:
        if shell is None:
            return True
        try:
            return len(shell.solids()) == 0
        except Exception as e:
            raise KernelError(f"Could not inspect shell: {e}") from e

    def triangulate(self, shell: Any) -> Mesh:
        if self.is_empty(shell):
            return Mesh()
        try:
            verts, tris = shell.tessellate(self.tolerance)
        except Exception as e:
            raise KernelError(f"Tessellation failed: {e}") from e
        return Mesh(np.array([tuple(v) for v in verts], dtype=float).reshape(-1, 3),
                    np.array(tris, dtype=int).reshape(-1, 3))

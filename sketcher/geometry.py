"""
ParaCore Sketcher - Numeric geometry helpers
============================================

3D vectors are plain numpy arrays of shape (3,). Quaternions are small
immutable tuples. The symbolic counterparts live in sketcher.expr.
"""

import math
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np

from config.tolerances import Tolerances


def vec(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return np.array([float(x), float(y), float(z)])


def as_vec(p: Sequence[float]) -> np.ndarray:
    """Accepts 2D or 3D sequences; 2D points get z = 0."""
    if len(p) == 2:
        return vec(p[0], p[1], 0.0)
    return np.asarray(p, dtype=float).reshape(3).copy()


def magnitude(v: np.ndarray) -> float:
    return float(np.linalg.norm(v))


def unit(v: np.ndarray) -> np.ndarray:
    m = magnitude(v)
    if m < Tolerances.LENGTH_DEGENERATE:
        return vec()
    return v / m


def with_magnitude(v: np.ndarray, s: float) -> np.ndarray:
    return unit(v) * s


def div_projected(a: np.ndarray, b: np.ndarray) -> float:
    """Scalar t such that t*b is the projection of a onto b."""
    return float(np.dot(a, b) / np.dot(b, b))


def normal_basis(n: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Two unit vectors u, v with u x v parallel to n."""
    n = unit(n)
    # Cross with the axis least aligned to n
    axis = np.zeros(3)
    axis[int(np.argmin(np.abs(n)))] = 1.0
    u = unit(np.cross(axis, n))
    v = np.cross(n, u)
    return u, v


def closest_point_on_line(p: np.ndarray, p0: np.ndarray, dp: np.ndarray) -> np.ndarray:
    return p0 + dp * div_projected(p - p0, dp)


def intersect_lines(a0: np.ndarray, da: np.ndarray,
                    b0: np.ndarray, db: np.ndarray) -> Optional[np.ndarray]:
    """
    Closest approach of two lines given as point + direction. Returns the
    midpoint of the shortest connecting segment, or None for parallel lines.
    """
    w = a0 - b0
    a = np.dot(da, da)
    b = np.dot(da, db)
    c = np.dot(db, db)
    d = np.dot(da, w)
    e = np.dot(db, w)
    den = a * c - b * b
    if abs(den) < Tolerances.LENGTH_DEGENERATE * max(a * c, 1.0):
        return None
    s = (b * e - c * d) / den
    t = (a * e - b * d) / den
    return 0.5 * ((a0 + da * s) + (b0 + db * t))


class Quaternion(NamedTuple):
    """Rotation quaternion. rotation_u/v/n are the rotated x/y/z axes."""

    w: float
    vx: float
    vy: float
    vz: float

    @staticmethod
    def identity() -> 'Quaternion':
        return Quaternion(1.0, 0.0, 0.0, 0.0)

    @staticmethod
    def from_vector(v: np.ndarray) -> 'Quaternion':
        """Pure quaternion (w = 0); used to carry a direction numerically."""
        return Quaternion(0.0, float(v[0]), float(v[1]), float(v[2]))

    @staticmethod
    def from_axis_angle(axis: np.ndarray, theta: float) -> 'Quaternion':
        a = unit(axis)
        s = math.sin(theta / 2)
        return Quaternion(math.cos(theta / 2), a[0] * s, a[1] * s, a[2] * s)

    @staticmethod
    def from_uv(u: np.ndarray, v: np.ndarray) -> 'Quaternion':
        """Quaternion whose rotated x and y axes are the unit vectors u and v."""
        n = np.cross(u, v)
        tr = 1 + u[0] + v[1] + n[2]
        if tr > 1e-4:
            s = 2 * math.sqrt(tr)
            q = (s / 4, (v[2] - n[1]) / s, (n[0] - u[2]) / s, (u[1] - v[0]) / s)
        elif u[0] > v[1] and u[0] > n[2]:
            s = 2 * math.sqrt(1 + u[0] - v[1] - n[2])
            q = ((v[2] - n[1]) / s, s / 4, (u[1] + v[0]) / s, (n[0] + u[2]) / s)
        elif v[1] > n[2]:
            s = 2 * math.sqrt(1 - u[0] + v[1] - n[2])
            q = ((n[0] - u[2]) / s, (u[1] + v[0]) / s, s / 4, (v[2] + n[1]) / s)
        else:
            s = 2 * math.sqrt(1 - u[0] - v[1] + n[2])
            q = ((u[1] - v[0]) / s, (n[0] + u[2]) / s, (v[2] + n[1]) / s, s / 4)
        return Quaternion(*(float(c) for c in q)).normalized()

    @staticmethod
    def from_normal(n: np.ndarray) -> 'Quaternion':
        u, v = normal_basis(n)
        return Quaternion.from_uv(u, v)

    def magnitude(self) -> float:
        return math.sqrt(self.w ** 2 + self.vx ** 2 + self.vy ** 2 + self.vz ** 2)

    def normalized(self) -> 'Quaternion':
        m = self.magnitude()
        return Quaternion(self.w / m, self.vx / m, self.vy / m, self.vz / m)

    def vector(self) -> np.ndarray:
        return vec(self.vx, self.vy, self.vz)

    def rotation_u(self) -> np.ndarray:
        w, x, y, z = self
        return vec(w * w + x * x - y * y - z * z, 2 * (w * z + x * y), 2 * (x * z - w * y))

    def rotation_v(self) -> np.ndarray:
        w, x, y, z = self
        return vec(2 * (x * y - w * z), w * w - x * x + y * y - z * z, 2 * (w * x + y * z))

    def rotation_n(self) -> np.ndarray:
        w, x, y, z = self
        return vec(2 * (w * y + x * z), 2 * (y * z - w * x), w * w - x * x - y * y + z * z)

    def rotate(self, p: np.ndarray) -> np.ndarray:
        return self.rotation_u() * p[0] + self.rotation_v() * p[1] + self.rotation_n() * p[2]

    def times(self, b: 'Quaternion') -> 'Quaternion':
        va, vb = self.vector(), b.vector()
        w = self.w * b.w - float(np.dot(va, vb))
        v = vb * self.w + va * b.w + np.cross(va, vb)
        return Quaternion(w, float(v[0]), float(v[1]), float(v[2]))

    def inverse(self) -> 'Quaternion':
        return Quaternion(self.w, -self.vx, -self.vy, -self.vz)

    def to_power(self, n: int) -> 'Quaternion':
        r = Quaternion.identity()
        for _ in range(abs(n)):
            r = r.times(self)
        return r if n >= 0 else r.inverse()

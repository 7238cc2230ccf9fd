"""
ParaCore - Symbolic expressions
===============================

Immutable expression trees over parameter handles and literals. They
evaluate against a mapping of parameter values and differentiate
structurally.

Usage:
    x = Expr.param(hx)
    e = (x * x + 1.0).sqrt()
    e.eval(values)                 # float
    e.partial_wrt(hx).eval(values) # d e / d x

Only the folding needed to keep derivative trees small is performed:
constants combine, and additive/multiplicative identities collapse.
"""

import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import FrozenSet, Mapping, Optional, Sequence, Union

import numpy as np

from sketcher.handles import Handle


class ExprOp(Enum):
    PARAM = auto()
    CONSTANT = auto()
    PLUS = auto()
    MINUS = auto()
    TIMES = auto()
    DIV = auto()
    NEGATE = auto()
    SQRT = auto()
    SQUARE = auto()
    SIN = auto()
    COS = auto()
    ASIN = auto()
    ACOS = auto()


_BINARY = (ExprOp.PLUS, ExprOp.MINUS, ExprOp.TIMES, ExprOp.DIV)

Number = Union[int, float]


def _safe_div(a: float, b: float) -> float:
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a)
    return a / b


def _unit_domain(a: float) -> float:
    # Round-off can push a cosine a hair past +-1
    if abs(a) <= 1.0 + 1e-12:
        return max(-1.0, min(1.0, a))
    return math.nan


class Expr:
    __slots__ = ("op", "a", "b", "handle", "value", "_params")

    def __init__(self, op: ExprOp, a: 'Expr' = None, b: 'Expr' = None,
                 handle: Optional[Handle] = None, value: float = 0.0):
        self.op = op
        self.a = a
        self.b = b
        self.handle = handle
        self.value = value
        self._params: Optional[FrozenSet[Handle]] = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @staticmethod
    def param(h: Handle) -> 'Expr':
        return Expr(ExprOp.PARAM, handle=h)

    @staticmethod
    def const(v: Number) -> 'Expr':
        return Expr(ExprOp.CONSTANT, value=float(v))

    @staticmethod
    def of(x: Union['Expr', Number]) -> 'Expr':
        return x if isinstance(x, Expr) else Expr.const(x)

    def is_const(self, v: Optional[float] = None) -> bool:
        return self.op is ExprOp.CONSTANT and (v is None or self.value == v)

    @staticmethod
    def _binary(op: ExprOp, a: 'Expr', b: 'Expr') -> 'Expr':
        if a.is_const() and b.is_const():
            if op is ExprOp.PLUS:
                return Expr.const(a.value + b.value)
            if op is ExprOp.MINUS:
                return Expr.const(a.value - b.value)
            if op is ExprOp.TIMES:
                return Expr.const(a.value * b.value)
            if op is ExprOp.DIV and b.value != 0.0:
                return Expr.const(a.value / b.value)
        if op is ExprOp.PLUS:
            if a.is_const(0.0):
                return b
            if b.is_const(0.0):
                return a
        elif op is ExprOp.MINUS:
            if b.is_const(0.0):
                return a
            if a.is_const(0.0):
                return -b
        elif op is ExprOp.TIMES:
            if a.is_const(0.0) or b.is_const(0.0):
                return ZERO
            if a.is_const(1.0):
                return b
            if b.is_const(1.0):
                return a
        elif op is ExprOp.DIV:
            if b.is_const(1.0):
                return a
            if a.is_const(0.0) and not b.is_const(0.0):
                return ZERO
        return Expr(op, a, b)

    def _unary(self, op: ExprOp) -> 'Expr':
        if self.is_const():
            return Expr.const(_eval_unary(op, self.value))
        return Expr(op, self)

    def __add__(self, other):
        return Expr._binary(ExprOp.PLUS, self, Expr.of(other))

    def __radd__(self, other):
        return Expr._binary(ExprOp.PLUS, Expr.of(other), self)

    def __sub__(self, other):
        return Expr._binary(ExprOp.MINUS, self, Expr.of(other))

    def __rsub__(self, other):
        return Expr._binary(ExprOp.MINUS, Expr.of(other), self)

    def __mul__(self, other):
        return Expr._binary(ExprOp.TIMES, self, Expr.of(other))

    def __rmul__(self, other):
        return Expr._binary(ExprOp.TIMES, Expr.of(other), self)

    def __truediv__(self, other):
        return Expr._binary(ExprOp.DIV, self, Expr.of(other))

    def __rtruediv__(self, other):
        return Expr._binary(ExprOp.DIV, Expr.of(other), self)

    def __neg__(self):
        if self.op is ExprOp.NEGATE:
            return self.a
        return self._unary(ExprOp.NEGATE)

    def sqrt(self) -> 'Expr':
        return self._unary(ExprOp.SQRT)

    def square(self) -> 'Expr':
        return self._unary(ExprOp.SQUARE)

    def sin(self) -> 'Expr':
        return self._unary(ExprOp.SIN)

    def cos(self) -> 'Expr':
        return self._unary(ExprOp.COS)

    def asin(self) -> 'Expr':
        return self._unary(ExprOp.ASIN)

    def acos(self) -> 'Expr':
        return self._unary(ExprOp.ACOS)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def eval(self, values: Mapping[Handle, float]) -> float:
        """
        Evaluates the tree. Never raises on bad arithmetic: division by
        zero and out-of-domain operands produce inf/nan, which the solver
        treats as divergence.
        """
        op = self.op
        if op is ExprOp.CONSTANT:
            return self.value
        if op is ExprOp.PARAM:
            return values[self.handle]
        a = self.a.eval(values)
        if op in _BINARY:
            b = self.b.eval(values)
            if op is ExprOp.PLUS:
                return a + b
            if op is ExprOp.MINUS:
                return a - b
            if op is ExprOp.TIMES:
                return a * b
            return _safe_div(a, b)
        return _eval_unary(op, a)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def params(self) -> FrozenSet[Handle]:
        if self._params is None:
            if self.op is ExprOp.PARAM:
                self._params = frozenset((self.handle,))
            elif self.op is ExprOp.CONSTANT:
                self._params = frozenset()
            elif self.op in _BINARY:
                self._params = self.a.params() | self.b.params()
            else:
                self._params = self.a.params()
        return self._params

    def depends_on(self, h: Handle) -> bool:
        return h in self.params()

    def substitute(self, old: Handle, new: Handle) -> 'Expr':
        """Returns a copy with every reference to `old` replaced by `new`."""
        if not self.depends_on(old):
            return self
        if self.op is ExprOp.PARAM:
            return Expr.param(new)
        if self.op in _BINARY:
            return Expr._binary(self.op, self.a.substitute(old, new), self.b.substitute(old, new))
        return Expr(self.op, self.a.substitute(old, new))

    def partial_wrt(self, h: Handle) -> 'Expr':
        """Symbolic partial derivative with respect to parameter `h`."""
        if not self.depends_on(h):
            return ZERO
        op = self.op
        if op is ExprOp.PARAM:
            return ONE
        a = self.a
        da = a.partial_wrt(h)
        if op is ExprOp.PLUS:
            return da + self.b.partial_wrt(h)
        if op is ExprOp.MINUS:
            return da - self.b.partial_wrt(h)
        if op is ExprOp.TIMES:
            b = self.b
            return da * b + a * b.partial_wrt(h)
        if op is ExprOp.DIV:
            b = self.b
            return (da * b - a * b.partial_wrt(h)) / b.square()
        if op is ExprOp.NEGATE:
            return -da
        if op is ExprOp.SQRT:
            return (0.5 / a.sqrt()) * da
        if op is ExprOp.SQUARE:
            return (2.0 * a) * da
        if op is ExprOp.SIN:
            return a.cos() * da
        if op is ExprOp.COS:
            return -(a.sin() * da)
        if op is ExprOp.ASIN:
            return da / (1.0 - a.square()).sqrt()
        if op is ExprOp.ACOS:
            return -(da / (1.0 - a.square()).sqrt())
        raise AssertionError(f"Unexpected expression op {op}")

    def __repr__(self):
        op = self.op
        if op is ExprOp.CONSTANT:
            return f"{self.value:g}"
        if op is ExprOp.PARAM:
            return f"p[{self.handle!r}]"
        if op in _BINARY:
            sym = {ExprOp.PLUS: "+", ExprOp.MINUS: "-", ExprOp.TIMES: "*", ExprOp.DIV: "/"}[op]
            return f"({self.a!r} {sym} {self.b!r})"
        return f"{op.name.lower()}({self.a!r})"


def _eval_unary(op: ExprOp, a: float) -> float:
    if op is ExprOp.NEGATE:
        return -a
    if op is ExprOp.SQUARE:
        return a * a
    if op is ExprOp.SQRT:
        return math.sqrt(a) if a >= 0.0 else math.nan
    if not math.isfinite(a):
        return math.nan
    if op is ExprOp.SIN:
        return math.sin(a)
    if op is ExprOp.COS:
        return math.cos(a)
    if op is ExprOp.ASIN:
        a = _unit_domain(a)
        return math.asin(a) if not math.isnan(a) else math.nan
    if op is ExprOp.ACOS:
        a = _unit_domain(a)
        return math.acos(a) if not math.isnan(a) else math.nan
    raise AssertionError(f"Unexpected unary op {op}")


ZERO = Expr.const(0.0)
ONE = Expr.const(1.0)


class ExprVector:
    """Three symbolic components with the usual vector algebra."""

    __slots__ = ("x", "y", "z")

    def __init__(self, x: Expr, y: Expr, z: Expr):
        self.x = x
        self.y = y
        self.z = z

    @staticmethod
    def from_params(hx: Handle, hy: Handle, hz: Handle) -> 'ExprVector':
        return ExprVector(Expr.param(hx), Expr.param(hy), Expr.param(hz))

    @staticmethod
    def from_num(v: Sequence[float]) -> 'ExprVector':
        return ExprVector(Expr.const(v[0]), Expr.const(v[1]), Expr.const(v[2]))

    def plus(self, b: 'ExprVector') -> 'ExprVector':
        return ExprVector(self.x + b.x, self.y + b.y, self.z + b.z)

    def minus(self, b: 'ExprVector') -> 'ExprVector':
        return ExprVector(self.x - b.x, self.y - b.y, self.z - b.z)

    __add__ = plus
    __sub__ = minus

    def scaled_by(self, s: Union[Expr, Number]) -> 'ExprVector':
        s = Expr.of(s)
        return ExprVector(self.x * s, self.y * s, self.z * s)

    def dot(self, b: 'ExprVector') -> Expr:
        return self.x * b.x + self.y * b.y + self.z * b.z

    def cross(self, b: 'ExprVector') -> 'ExprVector':
        return ExprVector(
            self.y * b.z - self.z * b.y,
            self.z * b.x - self.x * b.z,
            self.x * b.y - self.y * b.x,
        )

    def magnitude(self) -> Expr:
        return (self.x.square() + self.y.square() + self.z.square()).sqrt()

    def with_magnitude(self, s: Union[Expr, Number]) -> 'ExprVector':
        return self.scaled_by(Expr.of(s) / self.magnitude())

    def components(self):
        return (self.x, self.y, self.z)

    def eval(self, values: Mapping[Handle, float]) -> np.ndarray:
        return np.array([self.x.eval(values), self.y.eval(values), self.z.eval(values)])

    def __repr__(self):
        return f"ExprVector({self.x!r}, {self.y!r}, {self.z!r})"


class ExprQuaternion:
    """Symbolic unit quaternion (w, vx, vy, vz) used for frames and rotations."""

    __slots__ = ("w", "vx", "vy", "vz")

    def __init__(self, w: Expr, vx: Expr, vy: Expr, vz: Expr):
        self.w = w
        self.vx = vx
        self.vy = vy
        self.vz = vz

    @staticmethod
    def from_params(hw: Handle, hx: Handle, hy: Handle, hz: Handle) -> 'ExprQuaternion':
        return ExprQuaternion(Expr.param(hw), Expr.param(hx), Expr.param(hy), Expr.param(hz))

    @staticmethod
    def from_num(q: Sequence[float]) -> 'ExprQuaternion':
        return ExprQuaternion(*(Expr.const(c) for c in q))

    @staticmethod
    def from_axis_angle(axis: ExprVector, theta: Expr) -> 'ExprQuaternion':
        half = theta * 0.5
        s = half.sin()
        return ExprQuaternion(half.cos(), axis.x * s, axis.y * s, axis.z * s)

    def rotation_u(self) -> ExprVector:
        w, x, y, z = self.w, self.vx, self.vy, self.vz
        return ExprVector(
            w.square() + x.square() - y.square() - z.square(),
            2.0 * (w * z + x * y),
            2.0 * (x * z - w * y),
        )

    def rotation_v(self) -> ExprVector:
        w, x, y, z = self.w, self.vx, self.vy, self.vz
        return ExprVector(
            2.0 * (x * y - w * z),
            w.square() - x.square() + y.square() - z.square(),
            2.0 * (w * x + y * z),
        )

    def rotation_n(self) -> ExprVector:
        w, x, y, z = self.w, self.vx, self.vy, self.vz
        return ExprVector(
            2.0 * (w * y + x * z),
            2.0 * (y * z - w * x),
            w.square() - x.square() - y.square() + z.square(),
        )

    def rotate(self, p: ExprVector) -> ExprVector:
        return (self.rotation_u().scaled_by(p.x)
                .plus(self.rotation_v().scaled_by(p.y))
                .plus(self.rotation_n().scaled_by(p.z)))

    def magnitude(self) -> Expr:
        return (self.w.square() + self.vx.square() + self.vy.square() + self.vz.square()).sqrt()

    def times(self, b: 'ExprQuaternion') -> 'ExprQuaternion':
        va = ExprVector(self.vx, self.vy, self.vz)
        vb = ExprVector(b.vx, b.vy, b.vz)
        w = self.w * b.w - va.dot(vb)
        vr = vb.scaled_by(self.w).plus(va.scaled_by(b.w)).plus(va.cross(vb))
        return ExprQuaternion(w, vr.x, vr.y, vr.z)


@dataclass
class Equation:
    """A residual that must vanish at a solution."""

    h: Handle
    e: Expr
    tag: int = 0

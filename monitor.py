"""CUPL value runtime.

Shape-checked arithmetic, relations and matrix functions over rank-tagged
values.  Every function returns a freshly allocated Value; operands are
never modified and never aliased by a result.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np
from numpy.typing import NDArray

from nodes import CuplRuntimeError

# Differences below this count as equal in relations.
FUZZ = 1e-14

SCALAR = 0
VECTOR = 1
MATRIX = 2


@dataclass(frozen=True)
class Value:
    rank: int
    width: int
    depth: int
    elements: NDArray[np.float64]

    def __post_init__(self) -> None:
        if self.elements.size != self.width * self.depth:
            raise CuplRuntimeError(
                f"value buffer holds {self.elements.size} elements, expected {self.width * self.depth}",
                rule="ALLOCATE",
            )

    @property
    def size(self) -> int:
        return self.width * self.depth

    def scalar(self) -> float:
        return float(self.elements[0])

    def grid(self) -> NDArray[np.float64]:
        return self.elements.reshape(self.depth, self.width)

    def describe(self) -> str:
        if self.rank == SCALAR:
            return "scalar"
        if self.rank == VECTOR:
            return f"vector({self.size})"
        return f"matrix({self.depth},{self.width})"


def _fresh(rank: int, width: int, depth: int, data: NDArray[np.float64]) -> Value:
    return Value(rank=rank, width=width, depth=depth, elements=np.array(data, dtype=np.float64).reshape(-1))


def make_scalar(x: float) -> Value:
    return Value(rank=SCALAR, width=1, depth=1, elements=np.array([x], dtype=np.float64))


def allocate_value(rank: int, depth: int, width: int) -> Value:
    """Zero-filled vector or matrix of ``depth`` rows by ``width`` columns."""
    if rank not in (VECTOR, MATRIX):
        raise CuplRuntimeError(f"cannot allocate a value of rank {rank}", rule="ALLOCATE")
    if depth <= 0 or width <= 0:
        raise CuplRuntimeError("array dimensions must be positive", rule="ALLOCATE")
    if rank == VECTOR and depth != 1:
        raise CuplRuntimeError("a vector has exactly one row", rule="ALLOCATE")
    return Value(rank=rank, width=width, depth=depth, elements=np.zeros(width * depth, dtype=np.float64))


def copy_value(v: Value) -> Value:
    return Value(rank=v.rank, width=v.width, depth=v.depth, elements=v.elements.copy())


def congruent(left: Value, right: Value) -> bool:
    return left.rank == right.rank and left.width == right.width and left.depth == right.depth


def _expect_congruent(left: Value, right: Value, rule: str, what: str) -> None:
    if not congruent(left, right):
        raise CuplRuntimeError(
            f"{what} failed, operands of different sizes ({left.describe()} and {right.describe()})",
            rule=rule,
        )


def _expect_scalar(v: Value, rule: str) -> float:
    if v.rank != SCALAR:
        raise CuplRuntimeError(f"{rule} is only defined for scalars", rule=rule)
    return v.scalar()


def _scalar_op(rule: str, fn: Callable[[float], float]) -> Callable[[Value], Value]:
    def apply(v: Value) -> Value:
        x = _expect_scalar(v, rule)
        with np.errstate(all="ignore"):
            return make_scalar(float(fn(np.float64(x))))

    apply.__name__ = rule.lower()
    return apply


# ---- Arithmetic ----

def add(left: Value, right: Value) -> Value:
    _expect_congruent(left, right, "PLUS", "addition")
    with np.errstate(all="ignore"):
        return _fresh(left.rank, left.width, left.depth, left.elements + right.elements)


def subtract(left: Value, right: Value) -> Value:
    _expect_congruent(left, right, "MINUS", "subtraction")
    with np.errstate(all="ignore"):
        return _fresh(left.rank, left.width, left.depth, left.elements - right.elements)


def multiply(left: Value, right: Value) -> Value:
    if left.rank == SCALAR and right.rank == SCALAR:
        with np.errstate(all="ignore"):
            return make_scalar(float(left.elements[0] * right.elements[0]))
    if left.rank == MATRIX and right.rank == MATRIX:
        if left.width != right.depth:
            raise CuplRuntimeError(
                f"multiplication failed, {left.describe()} and {right.describe()} are not conformable",
                rule="MULTIPLY",
            )
        with np.errstate(all="ignore"):
            product = np.matmul(left.grid(), right.grid())
        return _fresh(MATRIX, right.width, left.depth, product)
    raise CuplRuntimeError(
        f"multiplication of {left.describe()} by {right.describe()} is not yet supported",
        rule="MULTIPLY",
    )


def divide(left: Value, right: Value) -> Value:
    if right.rank != SCALAR:
        raise CuplRuntimeError(
            f"division of {left.describe()} by {right.describe()} is not yet supported",
            rule="DIVIDE",
        )
    with np.errstate(all="ignore"):
        return _fresh(left.rank, left.width, left.depth, left.elements / right.elements[0])


def power(left: Value, right: Value) -> Value:
    base = _expect_scalar(left, "POWER")
    exponent = _expect_scalar(right, "POWER")
    with np.errstate(all="ignore"):
        return make_scalar(float(np.power(np.float64(base), np.float64(exponent))))


def uminus(v: Value) -> Value:
    return _fresh(v.rank, v.width, v.depth, -v.elements)


abs_ = _scalar_op("ABS", np.abs)
atan = _scalar_op("ATAN", np.arctan)
cos = _scalar_op("COS", np.cos)
exp = _scalar_op("EXP", np.exp)
floor = _scalar_op("FLOOR", np.floor)
log = _scalar_op("LOG", np.log10)
ln = _scalar_op("LN", np.log)
sqrt = _scalar_op("SQRT", np.sqrt)


def maximum(left: Value, right: Value) -> Value:
    return make_scalar(max(_expect_scalar(left, "MAX"), _expect_scalar(right, "MAX")))


def minimum(left: Value, right: Value) -> Value:
    return make_scalar(min(_expect_scalar(left, "MIN"), _expect_scalar(right, "MIN")))


def rand(v: Value, rng: Optional[np.random.Generator] = None) -> Value:
    """Uniform deviate in [0, x) for x > 0, in [0, 1) otherwise."""
    x = _expect_scalar(v, "RAND")
    generator = rng if rng is not None else np.random.default_rng()
    sample = float(generator.random())
    return make_scalar(sample * x if x > 0 else sample)


# ---- Relations ----

def fuzzy_equal(a: float, b: float) -> bool:
    return abs(a - b) < FUZZ


def eq(left: Value, right: Value) -> bool:
    _expect_congruent(left, right, "EQ", "comparison")
    return bool(np.all(np.abs(left.elements - right.elements) < FUZZ))


def ne(left: Value, right: Value) -> bool:
    return not eq(left, right)


def le(left: Value, right: Value) -> bool:
    _expect_congruent(left, right, "LE", "comparison")
    close = np.abs(left.elements - right.elements) < FUZZ
    return bool(np.all((left.elements <= right.elements) | close))


def ge(left: Value, right: Value) -> bool:
    _expect_congruent(left, right, "GE", "comparison")
    close = np.abs(left.elements - right.elements) < FUZZ
    return bool(np.all((left.elements >= right.elements) | close))


# LT and GT are "<= and not =", not an elementwise strict comparison: a
# vector is less than another if no element is greater and at least one
# differs.
def lt(left: Value, right: Value) -> bool:
    return le(left, right) and not eq(left, right)


def gt(left: Value, right: Value) -> bool:
    return ge(left, right) and not eq(left, right)


# ---- Matrix functions ----

def dot(left: Value, right: Value) -> Value:
    if left.rank != VECTOR or right.rank != VECTOR:
        raise CuplRuntimeError("DOT is only defined for vectors", rule="DOT")
    _expect_congruent(left, right, "DOT", "inner product")
    with np.errstate(all="ignore"):
        return make_scalar(float(np.dot(left.elements, right.elements)))


def trc(v: Value) -> Value:
    if v.rank != MATRIX or v.width != v.depth:
        raise CuplRuntimeError("TRC is only defined for square matrices", rule="TRC")
    return make_scalar(float(np.trace(v.grid())))


def trn(v: Value) -> Value:
    """Transpose a matrix. Vectors are always one row, so TRN copies them unchanged."""
    if v.rank == VECTOR:
        return copy_value(v)
    return _fresh(v.rank, v.depth, v.width, v.grid().T)


def _position(v: Value, rule: str, pick: Callable[[NDArray[np.float64]], int]) -> Value:
    if v.rank == SCALAR:
        raise CuplRuntimeError(f"{rule} of a scalar is not meaningful", rule=rule)
    return make_scalar(float(pick(v.elements) + 1))


def posmax(v: Value) -> Value:
    return _position(v, "POSMAX", lambda data: int(np.argmax(data)))


def posmin(v: Value) -> Value:
    return _position(v, "POSMIN", lambda data: int(np.argmin(data)))


def sgm(v: Value) -> Value:
    return make_scalar(float(np.sum(np.abs(v.elements))))


def det(v: Value) -> Value:
    raise CuplRuntimeError("DET is not yet implemented", rule="DET")


def inv(v: Value) -> Value:
    raise CuplRuntimeError("INV is not yet implemented", rule="INV")


# ---- Subscripts ----

def element_offset(v: Value, indices: List[int], rule: str) -> int:
    """Row-major offset of 1-based ``indices`` (one per rank)."""
    if v.rank == SCALAR:
        raise CuplRuntimeError("a scalar cannot be subscripted", rule=rule)
    if len(indices) != v.rank:
        raise CuplRuntimeError(f"{v.describe()} needs {v.rank} subscript(s), got {len(indices)}", rule=rule)
    subscripts = ",".join(str(i) for i in indices)
    if v.rank == VECTOR:
        # vectors are addressed by position whichever way they are laid out
        if not 1 <= indices[0] <= v.size:
            raise CuplRuntimeError(f"subscript ({subscripts}) out of range for {v.describe()}", rule=rule)
        return indices[0] - 1
    row, col = indices
    if not (1 <= row <= v.depth and 1 <= col <= v.width):
        raise CuplRuntimeError(f"subscript ({subscripts}) out of range for {v.describe()}", rule=rule)
    return (row - 1) * v.width + (col - 1)


def element(v: Value, indices: List[int]) -> Value:
    return make_scalar(float(v.elements[element_offset(v, indices, "SUBSCRIPT")]))


def replace_element(v: Value, indices: List[int], x: float) -> Value:
    offset = element_offset(v, indices, "LET")
    data = v.elements.copy()
    data[offset] = x
    return Value(rank=v.rank, width=v.width, depth=v.depth, elements=data)


def subscripts_for(v: Value, offset: int) -> str:
    """The 1-based subscript suffix naming element ``offset``: ``(i)`` or ``(i,j)``."""
    if v.rank == SCALAR:
        return ""
    if v.rank == VECTOR:
        return f"({offset + 1})"
    # matrices are named row first
    return f"({offset // v.width + 1},{offset % v.width + 1})"


def as_count(v: Value, rule: str) -> int:
    x = _expect_scalar(v, rule)
    if math.isnan(x) or math.isinf(x):
        raise CuplRuntimeError(f"{rule} needs a finite count", rule=rule)
    return int(math.floor(x))


def as_subscript(v: Value, rule: str) -> int:
    x = _expect_scalar(v, rule)
    if math.isnan(x) or math.isinf(x):
        raise CuplRuntimeError(f"{rule} needs a finite subscript", rule=rule)
    # computed subscripts such as 0.29*100 land just below the integer
    return int(math.floor(x + 0.5))

"""
Closed interval arithmetic used by range analysis.

Every rule is conservative: the returned interval always contains every
value the matching kernel can produce for inputs taken from the operand
intervals. Bounds are plain Python floats (double precision) and may be
infinite. NaN never appears in a bound, an undefined result widens to the
whole real line instead.
"""
import math
from typing import Iterable

INF = float("inf")


def _prod(a: float, b: float) -> float:
    # 0 * inf is taken as 0 for interval corners
    if a == 0.0 or b == 0.0:
        return 0.0
    return a * b


def _safe_pow(base: float, exponent: float) -> float:
    try:
        return math.pow(base, exponent)
    except OverflowError:
        return INF if base > 0 or float(exponent).is_integer() and exponent % 2 == 0 else -INF
    except (ValueError, ZeroDivisionError):
        return math.nan


class Interval:
    __slots__ = ("min", "max")

    def __init__(self, min_value: float, max_value: float):
        min_value = float(min_value)
        max_value = float(max_value)
        if math.isnan(min_value) or math.isnan(max_value):
            min_value, max_value = -INF, INF
        elif min_value > max_value:
            min_value, max_value = max_value, min_value
        self.min = min_value
        self.max = max_value

    # ── Construction ─────────────────────────────────────────────────────

    @staticmethod
    def from_single_value(value: float) -> 'Interval':
        return Interval(value, value)

    @staticmethod
    def from_values(values: Iterable[float]) -> 'Interval':
        values = [float(v) for v in values]
        if any(math.isnan(v) for v in values):
            return Interval.infinite()
        return Interval(min(values), max(values))

    @staticmethod
    def infinite() -> 'Interval':
        return Interval(-INF, INF)

    # ── Queries ──────────────────────────────────────────────────────────

    def is_single_value(self) -> bool:
        return self.min == self.max and math.isfinite(self.min)

    def is_finite(self) -> bool:
        return math.isfinite(self.min) and math.isfinite(self.max)

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def width(self) -> float:
        return self.max - self.min

    def union(self, other: 'Interval') -> 'Interval':
        return Interval(min(self.min, other.min), max(self.max, other.max))

    # ── Arithmetic ───────────────────────────────────────────────────────

    def __add__(self, other) -> 'Interval':
        if isinstance(other, Interval):
            return Interval(self.min + other.min, self.max + other.max)
        return Interval(self.min + other, self.max + other)

    __radd__ = __add__

    def __sub__(self, other) -> 'Interval':
        if isinstance(other, Interval):
            return Interval(self.min - other.max, self.max - other.min)
        return Interval(self.min - other, self.max - other)

    def __rsub__(self, other) -> 'Interval':
        return Interval(other - self.max, other - self.min)

    def __neg__(self) -> 'Interval':
        return Interval(-self.max, -self.min)

    def __mul__(self, other) -> 'Interval':
        if not isinstance(other, Interval):
            other = Interval.from_single_value(other)
        return Interval.from_values((
            _prod(self.min, other.min), _prod(self.min, other.max),
            _prod(self.max, other.min), _prod(self.max, other.max)))

    __rmul__ = __mul__

    def __truediv__(self, other) -> 'Interval':
        if not isinstance(other, Interval):
            other = Interval.from_single_value(other)
        # Division by zero yields 0 in kernels, so 0 stays inside the result
        if other.min > 0.0 or other.max < 0.0:
            inv = Interval.from_values((1.0 / other.min, 1.0 / other.max))
            return self * inv
        if other.min == 0.0 and other.max == 0.0:
            return Interval.from_single_value(0.0)
        return Interval.infinite()

    def __eq__(self, other):
        if not isinstance(other, Interval):
            return NotImplemented
        return self.min == other.min and self.max == other.max

    def __hash__(self):
        return hash((self.min, self.max))

    def __repr__(self):
        return f"[{self.min}, {self.max}]"


# ── Functions ────────────────────────────────────────────────────────────

def min_interval(a: Interval, b: Interval) -> Interval:
    return Interval(min(a.min, b.min), min(a.max, b.max))


def max_interval(a: Interval, b: Interval) -> Interval:
    return Interval(max(a.min, b.min), max(a.max, b.max))


def clamp(x: Interval, lo: Interval, hi: Interval) -> Interval:
    return min_interval(max_interval(x, lo), hi)


def abs_interval(x: Interval) -> Interval:
    if x.min >= 0.0:
        return x
    if x.max <= 0.0:
        return -x
    return Interval(0.0, max(-x.min, x.max))


def squared(x: Interval) -> Interval:
    a = abs_interval(x)
    return Interval(_prod(a.min, a.min), _prod(a.max, a.max))


def sqrt(x: Interval) -> Interval:
    # Negative inputs are clamped to zero by the kernel
    return Interval(math.sqrt(max(x.min, 0.0)), math.sqrt(max(x.max, 0.0)))


def floor(x: Interval) -> Interval:
    lo = math.floor(x.min) if math.isfinite(x.min) else x.min
    hi = math.floor(x.max) if math.isfinite(x.max) else x.max
    return Interval(lo, hi)


def fract(x: Interval) -> Interval:
    if not x.is_finite():
        return Interval(0.0, 1.0)
    if math.floor(x.min) == math.floor(x.max):
        return Interval(x.min - math.floor(x.min), x.max - math.floor(x.max))
    return Interval(0.0, 1.0)


def sin(x: Interval) -> Interval:
    if not x.is_finite() or x.width() >= 2.0 * math.pi:
        return Interval(-1.0, 1.0)
    lo = min(math.sin(x.min), math.sin(x.max))
    hi = max(math.sin(x.min), math.sin(x.max))
    # Peaks at pi/2 + 2k.pi, troughs at -pi/2 + 2k.pi
    k = math.ceil((x.min - math.pi * 0.5) / (2.0 * math.pi))
    if math.pi * 0.5 + 2.0 * math.pi * k <= x.max:
        hi = 1.0
    k = math.ceil((x.min + math.pi * 0.5) / (2.0 * math.pi))
    if -math.pi * 0.5 + 2.0 * math.pi * k <= x.max:
        lo = -1.0
    return Interval(lo, hi)


def lerp(a: Interval, b: Interval, t: Interval) -> Interval:
    return a + t * (b - a)


def powi(x: Interval, exponent: int) -> Interval:
    if exponent == 0:
        return Interval.from_single_value(1.0)
    if exponent < 0:
        return Interval.from_single_value(1.0) / powi(x, -exponent)
    if exponent % 2 == 0:
        a = abs_interval(x)
        return Interval(_safe_pow(a.min, exponent), _safe_pow(a.max, exponent))
    return Interval(_safe_pow(x.min, exponent), _safe_pow(x.max, exponent))


def pow_interval(x: Interval, p: Interval) -> Interval:
    if p.is_single_value() and float(p.min).is_integer():
        return powi(x, int(p.min))
    if x.min > 0.0:
        return Interval.from_values((
            _safe_pow(x.min, p.min), _safe_pow(x.min, p.max),
            _safe_pow(x.max, p.min), _safe_pow(x.max, p.max)))
    return Interval.infinite()


def length_2d(x: Interval, y: Interval) -> Interval:
    return sqrt(squared(x) + squared(y))


def length_3d(x: Interval, y: Interval, z: Interval) -> Interval:
    return sqrt(squared(x) + squared(y) + squared(z))


def smoothstep(edge0: float, edge1: float, x: Interval) -> Interval:
    # Monotonic in x, increasing when edge1 > edge0
    def f(v: float) -> float:
        if edge0 == edge1:
            return 0.0 if v < edge0 else 1.0
        t = min(max((v - edge0) / (edge1 - edge0), 0.0), 1.0)
        return t * t * (3.0 - 2.0 * t)
    return Interval.from_values((f(x.min), f(x.max)))


def smooth_union(a: Interval, b: Interval, smoothness: float) -> Interval:
    # The blend never goes above min(a, b) and never below it minus k/4
    base = min_interval(a, b)
    if smoothness <= 0.0:
        return base
    return Interval(base.min - smoothness * 0.25, base.max)


def smooth_subtract(a: Interval, b: Interval, smoothness: float) -> Interval:
    base = max_interval(a, -b)
    if smoothness <= 0.0:
        return base
    return Interval(base.min, base.max + smoothness * 0.25)

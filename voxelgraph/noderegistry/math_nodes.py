import numpy as np

from ..core.Types import AutoConnect, Category, NodeTypeID, ParamType
from ..runtime import range_utility as ru
from ..runtime.range_utility import Interval
from .NodeRegistry import NodeType, NodeTypeDB, ParamSpec, PortSpec


def _div_or(a, b, fallback):
    # Elementwise a / b, `fallback` where b is zero
    a, b, fallback = np.broadcast_arrays(a, b, fallback)
    out = np.array(fallback, dtype=np.result_type(a, b), copy=True)
    np.divide(a, b, out=out, where=(b != 0))
    return out


def _ports(*names, **defaults):
    return [PortSpec(name, defaults.get(name, 0.0)) for name in names]


# ── Arithmetic ───────────────────────────────────────────────────────────

NodeTypeDB.register(NodeType(
    NodeTypeID.ADD, "Add", Category.MATH,
    inputs=_ports("a", "b"), outputs=["out"],
    kernel=lambda i, p: i[0] + i[1],
    range_rule=lambda r, p: r[0] + r[1]))

NodeTypeDB.register(NodeType(
    NodeTypeID.SUBTRACT, "Subtract", Category.MATH,
    inputs=_ports("a", "b"), outputs=["out"],
    kernel=lambda i, p: i[0] - i[1],
    range_rule=lambda r, p: r[0] - r[1]))

NodeTypeDB.register(NodeType(
    NodeTypeID.MULTIPLY, "Multiply", Category.MATH,
    inputs=_ports("a", "b"), outputs=["out"],
    kernel=lambda i, p: i[0] * i[1],
    range_rule=lambda r, p: r[0] * r[1]))

NodeTypeDB.register(NodeType(
    NodeTypeID.DIVIDE, "Divide", Category.MATH,
    inputs=_ports("a", "b", b=1.0), outputs=["out"],
    kernel=lambda i, p: _div_or(i[0], i[1], 0.0),
    range_rule=lambda r, p: r[0] / r[1]))

NodeTypeDB.register(NodeType(
    NodeTypeID.SIN, "Sin", Category.MATH,
    inputs=_ports("x"), outputs=["out"], expression_function="sin",
    kernel=lambda i, p: np.sin(i[0]),
    range_rule=lambda r, p: ru.sin(r[0])))

NodeTypeDB.register(NodeType(
    NodeTypeID.FLOOR, "Floor", Category.MATH,
    inputs=_ports("x"), outputs=["out"], expression_function="floor",
    kernel=lambda i, p: np.floor(i[0]),
    range_rule=lambda r, p: ru.floor(r[0])))

NodeTypeDB.register(NodeType(
    NodeTypeID.ABS, "Abs", Category.MATH,
    inputs=_ports("x"), outputs=["out"], expression_function="abs",
    kernel=lambda i, p: np.abs(i[0]),
    range_rule=lambda r, p: ru.abs_interval(r[0]),
    passthrough=lambda r, p: 0 if r[0].min >= 0.0 else None))

NodeTypeDB.register(NodeType(
    NodeTypeID.SQRT, "Sqrt", Category.MATH,
    inputs=_ports("x"), outputs=["out"], expression_function="sqrt",
    kernel=lambda i, p: np.sqrt(np.maximum(i[0], 0.0)),
    range_rule=lambda r, p: ru.sqrt(r[0])))

NodeTypeDB.register(NodeType(
    NodeTypeID.FRACT, "Fract", Category.MATH,
    inputs=_ports("x"), outputs=["out"], expression_function="fract",
    kernel=lambda i, p: i[0] - np.floor(i[0]),
    range_rule=lambda r, p: ru.fract(r[0])))


def _stepify(i, p):
    x, steps = i
    return _div_or(np.floor(x * steps), steps, x)


def _stepify_range(r, p):
    x, steps = r
    if steps.min > 0.0:
        return Interval(x.min - 1.0 / steps.min, x.max)
    if steps.max < 0.0:
        return Interval(x.min, x.max - 1.0 / steps.max)
    return Interval.infinite()


NodeTypeDB.register(NodeType(
    NodeTypeID.STEPIFY, "Stepify", Category.CONVERT,
    inputs=_ports("x", "steps", steps=1.0), outputs=["out"], expression_function="stepify",
    kernel=_stepify, range_rule=_stepify_range))


def _wrap(i, p):
    x, length = i
    return x - length * np.floor(_div_or(x, length, 0.0))


def _wrap_range(r, p):
    x, length = r
    if length.min > 0.0:
        if x.min >= 0.0 and x.max < length.min:
            return x
        return Interval(0.0, length.max)
    if length.max < 0.0:
        return Interval(length.min, 0.0)
    return x.union(Interval(min(length.min, 0.0), max(length.max, 0.0)))


NodeTypeDB.register(NodeType(
    NodeTypeID.WRAP, "Wrap", Category.CONVERT,
    inputs=_ports("x", "length", length=1.0), outputs=["out"], expression_function="wrap",
    kernel=_wrap, range_rule=_wrap_range))


# ── Min / max / clamp ────────────────────────────────────────────────────

def _min_passthrough(r, p):
    a, b = r[0], r[1]
    if a.max <= b.min:
        return 0
    if b.max <= a.min:
        return 1
    return None


def _max_passthrough(r, p):
    a, b = r[0], r[1]
    if a.min >= b.max:
        return 0
    if b.min >= a.max:
        return 1
    return None


NodeTypeDB.register(NodeType(
    NodeTypeID.MIN, "Min", Category.MATH,
    inputs=_ports("a", "b"), outputs=["out"], expression_function="min",
    kernel=lambda i, p: np.minimum(i[0], i[1]),
    range_rule=lambda r, p: ru.min_interval(r[0], r[1]),
    passthrough=_min_passthrough))

NodeTypeDB.register(NodeType(
    NodeTypeID.MAX, "Max", Category.MATH,
    inputs=_ports("a", "b"), outputs=["out"], expression_function="max",
    kernel=lambda i, p: np.maximum(i[0], i[1]),
    range_rule=lambda r, p: ru.max_interval(r[0], r[1]),
    passthrough=_max_passthrough))


def _clamp_passthrough(x: Interval, lo: Interval, hi: Interval):
    if lo.max <= x.min and x.max <= hi.min:
        return 0
    return None


def _clamp_simplify(constants, params):
    if constants[1] is not None and constants[2] is not None:
        return NodeTypeID.CLAMP_C, [0], [constants[1], constants[2]]
    return None


NodeTypeDB.register(NodeType(
    NodeTypeID.CLAMP, "Clamp", Category.MATH,
    inputs=_ports("x", "min", "max", min=-1.0, max=1.0), outputs=["out"], expression_function="clamp",
    kernel=lambda i, p: np.minimum(np.maximum(i[0], i[1]), i[2]),
    range_rule=lambda r, p: ru.clamp(r[0], r[1], r[2]),
    passthrough=lambda r, p: _clamp_passthrough(r[0], r[1], r[2]),
    simplify=_clamp_simplify))

NodeTypeDB.register(NodeType(
    NodeTypeID.CLAMP_C, "ClampC", Category.MATH,
    inputs=_ports("x"), outputs=["out"],
    params=[ParamSpec("min", ParamType.FLOAT, -1.0), ParamSpec("max", ParamType.FLOAT, 1.0)],
    kernel=lambda i, p: np.minimum(np.maximum(i[0], p[0]), p[1]),
    range_rule=lambda r, p: ru.clamp(r[0], Interval.from_single_value(p[0]), Interval.from_single_value(p[1])),
    passthrough=lambda r, p: _clamp_passthrough(
        r[0], Interval.from_single_value(p[0]), Interval.from_single_value(p[1]))))


# ── Interpolation ────────────────────────────────────────────────────────

NodeTypeDB.register(NodeType(
    NodeTypeID.MIX, "Mix", Category.MATH,
    inputs=_ports("a", "b", "ratio"), outputs=["out"], expression_function="lerp",
    kernel=lambda i, p: i[0] + i[2] * (i[1] - i[0]),
    range_rule=lambda r, p: ru.lerp(r[0], r[1], r[2])))


def _remap(i, p):
    min0, max0, min1, max1 = p
    if max0 == min0:
        return np.full_like(i[0], min1)
    return (i[0] - min0) * ((max1 - min1) / (max0 - min0)) + min1


def _remap_range(r, p):
    min0, max0, min1, max1 = p
    if max0 == min0:
        return Interval.from_single_value(min1)
    return (r[0] - min0) * ((max1 - min1) / (max0 - min0)) + min1


NodeTypeDB.register(NodeType(
    NodeTypeID.REMAP, "Remap", Category.CONVERT,
    inputs=_ports("x"), outputs=["out"],
    params=[ParamSpec("min0", ParamType.FLOAT, -1.0), ParamSpec("max0", ParamType.FLOAT, 1.0),
            ParamSpec("min1", ParamType.FLOAT, -1.0), ParamSpec("max1", ParamType.FLOAT, 1.0)],
    kernel=_remap, range_rule=_remap_range))


def _smoothstep(i, p):
    edge0, edge1 = p
    if edge0 == edge1:
        return np.where(i[0] < edge0, 0.0, 1.0).astype(i[0].dtype)
    t = np.clip((i[0] - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


NodeTypeDB.register(NodeType(
    NodeTypeID.SMOOTHSTEP, "Smoothstep", Category.MATH,
    inputs=_ports("x"), outputs=["out"],
    params=[ParamSpec("edge0", ParamType.FLOAT, 0.0), ParamSpec("edge1", ParamType.FLOAT, 1.0)],
    kernel=_smoothstep,
    range_rule=lambda r, p: ru.smoothstep(p[0], p[1], r[0])))


def _select_range(r, p):
    a, b, t = r
    if t.max < p[0]:
        return a
    if t.min >= p[0]:
        return b
    return a.union(b)


def _select_passthrough(r, p):
    t = r[2]
    if t.max < p[0]:
        return 0
    if t.min >= p[0]:
        return 1
    return None


NodeTypeDB.register(NodeType(
    NodeTypeID.SELECT, "Select", Category.CONVERT,
    inputs=_ports("a", "b", "t"), outputs=["out"],
    params=[ParamSpec("threshold", ParamType.FLOAT, 0.0)],
    kernel=lambda i, p: np.where(i[2] < p[0], i[0], i[1]),
    range_rule=_select_range, passthrough=_select_passthrough))


# ── Powers ───────────────────────────────────────────────────────────────

def _pow_simplify(constants, params):
    exponent = constants[1]
    if exponent is not None and float(exponent).is_integer():
        return NodeTypeID.POWI, [0], [int(exponent)]
    return None


NodeTypeDB.register(NodeType(
    NodeTypeID.POW, "Pow", Category.MATH,
    inputs=_ports("x", "p", p=2.0), outputs=["out"], expression_function="pow",
    kernel=lambda i, p: np.power(i[0], i[1]),
    range_rule=lambda r, p: ru.pow_interval(r[0], r[1]),
    simplify=_pow_simplify))

NodeTypeDB.register(NodeType(
    NodeTypeID.POWI, "Powi", Category.MATH,
    inputs=_ports("x"), outputs=["out"],
    params=[ParamSpec("power", ParamType.INT, 2)],
    kernel=lambda i, p: np.power(i[0], p[0]),
    range_rule=lambda r, p: ru.powi(r[0], p[0])))


# ── Vectors ──────────────────────────────────────────────────────────────

NodeTypeDB.register(NodeType(
    NodeTypeID.DISTANCE_2D, "Distance2D", Category.MATH,
    inputs=[PortSpec("x0", autoconnect=AutoConnect.X), PortSpec("y0", autoconnect=AutoConnect.Y),
            PortSpec("x1"), PortSpec("y1")],
    outputs=["out"], expression_function="distance_2d",
    kernel=lambda i, p: np.sqrt((i[2] - i[0]) ** 2 + (i[3] - i[1]) ** 2),
    range_rule=lambda r, p: ru.length_2d(r[2] - r[0], r[3] - r[1])))

NodeTypeDB.register(NodeType(
    NodeTypeID.DISTANCE_3D, "Distance3D", Category.MATH,
    inputs=[PortSpec("x0", autoconnect=AutoConnect.X), PortSpec("y0", autoconnect=AutoConnect.Y),
            PortSpec("z0", autoconnect=AutoConnect.Z), PortSpec("x1"), PortSpec("y1"), PortSpec("z1")],
    outputs=["out"], expression_function="distance_3d",
    kernel=lambda i, p: np.sqrt((i[3] - i[0]) ** 2 + (i[4] - i[1]) ** 2 + (i[5] - i[2]) ** 2),
    range_rule=lambda r, p: ru.length_3d(r[3] - r[0], r[4] - r[1], r[5] - r[2])))


def _normalize_3d(i, p):
    x, y, z = i
    length = np.sqrt(x * x + y * y + z * z)
    zero = np.zeros_like(length)
    return _div_or(x, length, zero), _div_or(y, length, zero), _div_or(z, length, zero)


def _normalize_3d_range(r, p):
    # Components keep the sign of their input
    return tuple(Interval(-1.0 if c.min < 0.0 else 0.0, 1.0 if c.max > 0.0 else 0.0) for c in r)


NodeTypeDB.register(NodeType(
    NodeTypeID.NORMALIZE_3D, "Normalize3D", Category.MATH,
    inputs=_ports("x", "y", "z"), outputs=["nx", "ny", "nz"],
    kernel=_normalize_3d, range_rule=_normalize_3d_range))

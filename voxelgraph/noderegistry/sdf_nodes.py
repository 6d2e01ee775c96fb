import numpy as np

from ..core.Types import AutoConnect, Category, NodeTypeID, ParamType
from ..runtime import range_utility as ru
from ..runtime.range_utility import Interval
from .NodeRegistry import NodeType, NodeTypeDB, ParamSpec, PortSpec


def _xyz_ports():
    return [PortSpec("x", autoconnect=AutoConnect.X), PortSpec("y", autoconnect=AutoConnect.Y),
            PortSpec("z", autoconnect=AutoConnect.Z)]


# ── Primitives ───────────────────────────────────────────────────────────

NodeTypeDB.register(NodeType(
    NodeTypeID.SDF_PLANE, "SdfPlane", Category.SDF,
    inputs=[PortSpec("y", autoconnect=AutoConnect.Y), PortSpec("height")],
    outputs=["sdf"],
    kernel=lambda i, p: i[0] - i[1],
    range_rule=lambda r, p: r[0] - r[1]))


def _box(i, p):
    x, y, z, sx, sy, sz = i
    qx = np.abs(x) - sx
    qy = np.abs(y) - sy
    qz = np.abs(z) - sz
    outside = np.sqrt(np.maximum(qx, 0.0) ** 2 + np.maximum(qy, 0.0) ** 2 + np.maximum(qz, 0.0) ** 2)
    inside = np.minimum(np.maximum(qx, np.maximum(qy, qz)), 0.0)
    return outside + inside


def _box_range(r, p):
    x, y, z, sx, sy, sz = r
    zero = Interval.from_single_value(0.0)
    qx = ru.abs_interval(x) - sx
    qy = ru.abs_interval(y) - sy
    qz = ru.abs_interval(z) - sz
    outside = ru.length_3d(ru.max_interval(qx, zero), ru.max_interval(qy, zero), ru.max_interval(qz, zero))
    inside = ru.min_interval(ru.max_interval(qx, ru.max_interval(qy, qz)), zero)
    return outside + inside


NodeTypeDB.register(NodeType(
    NodeTypeID.SDF_BOX, "SdfBox", Category.SDF,
    inputs=_xyz_ports() + [PortSpec("size_x", 10.0), PortSpec("size_y", 10.0), PortSpec("size_z", 10.0)],
    outputs=["sdf"],
    kernel=_box, range_rule=_box_range))

NodeTypeDB.register(NodeType(
    NodeTypeID.SDF_SPHERE, "SdfSphere", Category.SDF,
    inputs=_xyz_ports(), outputs=["sdf"],
    params=[ParamSpec("radius", ParamType.FLOAT, 1.0)],
    kernel=lambda i, p: np.sqrt(i[0] * i[0] + i[1] * i[1] + i[2] * i[2]) - p[0],
    range_rule=lambda r, p: ru.length_3d(r[0], r[1], r[2]) - p[0]))


def _torus(i, p):
    x, y, z = i
    radius1, radius2 = p
    qx = np.sqrt(x * x + z * z) - radius1
    return np.sqrt(qx * qx + y * y) - radius2


def _torus_range(r, p):
    x, y, z = r
    radius1, radius2 = p
    qx = ru.length_2d(x, z) - radius1
    return ru.length_2d(qx, y) - radius2


NodeTypeDB.register(NodeType(
    NodeTypeID.SDF_TORUS, "SdfTorus", Category.SDF,
    inputs=_xyz_ports(), outputs=["sdf"],
    params=[ParamSpec("radius1", ParamType.FLOAT, 16.0), ParamSpec("radius2", ParamType.FLOAT, 4.0)],
    kernel=_torus, range_rule=_torus_range))


# ── Combinators ──────────────────────────────────────────────────────────
# Written so that a fully saturated blend returns one operand bit for bit,
# which lets range analysis replace the node by a copy of that operand.

def _smooth_union(i, p):
    a, b = i
    k = p[0]
    if k <= 0.0:
        return np.minimum(a, b)
    h = np.clip(0.5 + 0.5 * (b - a) / k, 0.0, 1.0)
    return b * (1.0 - h) + a * h - k * h * (1.0 - h)


def _smooth_union_passthrough(r, p):
    a, b = r
    k = max(p[0], 0.0)
    if (b - a).min >= k:
        return 0
    if (a - b).min >= k:
        return 1
    return None


NodeTypeDB.register(NodeType(
    NodeTypeID.SDF_SMOOTH_UNION, "SdfSmoothUnion", Category.SDF,
    inputs=[PortSpec("a"), PortSpec("b")], outputs=["sdf"],
    params=[ParamSpec("smoothness", ParamType.FLOAT, 0.0)],
    kernel=_smooth_union,
    range_rule=lambda r, p: ru.smooth_union(r[0], r[1], p[0]),
    passthrough=_smooth_union_passthrough))


def _smooth_subtract(i, p):
    a, b = i
    k = p[0]
    if k <= 0.0:
        return np.maximum(a, -b)
    h = np.clip(0.5 - 0.5 * (b + a) / k, 0.0, 1.0)
    return a + h * (-b - a) + k * h * (1.0 - h)


def _smooth_subtract_passthrough(r, p):
    a, b = r
    if (a + b).min >= max(p[0], 0.0):
        return 0
    return None


NodeTypeDB.register(NodeType(
    NodeTypeID.SDF_SMOOTH_SUBTRACT, "SdfSmoothSubtract", Category.SDF,
    inputs=[PortSpec("a"), PortSpec("b")], outputs=["sdf"],
    params=[ParamSpec("smoothness", ParamType.FLOAT, 0.0)],
    kernel=_smooth_subtract,
    range_rule=lambda r, p: ru.smooth_subtract(r[0], r[1], p[0]),
    passthrough=_smooth_subtract_passthrough))

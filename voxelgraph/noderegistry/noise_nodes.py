import numpy as np

from ..core.Types import AutoConnect, Category, NodeTypeID, ParamType
from ..noise import ValueNoise
from ..runtime.range_utility import Interval
from .NodeRegistry import NodeType, NodeTypeDB, ParamSpec, PortSpec


def _noise_2d(i, p):
    noise = p[0]
    if noise is None:
        return np.zeros_like(i[0])
    return noise.get_noise_2d(i[0], i[1])


def _noise_3d(i, p):
    noise = p[0]
    if noise is None:
        return np.zeros_like(i[0])
    return noise.get_noise_3d(i[0], i[1], i[2])


def _noise_range(r, p):
    noise = p[0]
    if noise is None:
        return Interval.from_single_value(0.0)
    lo, hi = noise.get_range()
    return Interval(lo, hi)


NodeTypeDB.register(NodeType(
    NodeTypeID.NOISE_2D, "Noise2D", Category.NOISE,
    inputs=[PortSpec("x", autoconnect=AutoConnect.X), PortSpec("y", autoconnect=AutoConnect.Y)],
    outputs=["out"],
    params=[ParamSpec("noise", ParamType.RESOURCE, default_factory=ValueNoise)],
    is_pure=False,
    kernel=_noise_2d, range_rule=_noise_range))

NodeTypeDB.register(NodeType(
    NodeTypeID.NOISE_3D, "Noise3D", Category.NOISE,
    inputs=[PortSpec("x", autoconnect=AutoConnect.X), PortSpec("y", autoconnect=AutoConnect.Y),
            PortSpec("z", autoconnect=AutoConnect.Z)],
    outputs=["out"],
    params=[ParamSpec("noise", ParamType.RESOURCE, default_factory=ValueNoise)],
    is_pure=False,
    kernel=_noise_3d, range_rule=_noise_range))

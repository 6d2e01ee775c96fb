"""Central place for voxelgraph default settings."""
import math
from typing import Dict

# Generator execution
DEFAULT_USE_OPTIMIZED_EXECUTION_MAP: bool = True
DEFAULT_USE_SUBDIVISION: bool = True
DEFAULT_SUBDIVISION_SIZE: int = 16
MIN_SUBDIVISION_SIZE: int = 1

# Block size used when measuring generator performance
DEFAULT_PROFILING_BLOCK_SIZE: int = 16
DEFAULT_PROFILING_ITERATIONS: int = 4

# SDF channel quantization, keyed by channel depth in bits.
# Values are multiplied by the scale before being stored as snorm integers.
SDF_QUANTIZATION_SCALE_BY_DEPTH: Dict[int, float] = {
    8: 0.1,
    16: 0.002,
    32: 1.0,
    64: 1.0,
}
DEFAULT_SDF_DEPTH: int = 16
DEFAULT_CHANNEL_DEPTH: int = 16

# Acceptable difference between two SDF results, keyed by channel depth.
# 8/16-bit: in quantization steps of the encoded integer.
# 32/64-bit: relative epsilon (absolute below magnitude 1).
SDF_TOLERANCE_BY_DEPTH: Dict[int, float] = {
    8: 1,
    16: 1,
    32: 1e-4,
    64: 1e-4,
}
DEFAULT_FLOAT_EPSILON: float = 1e-4

# Texturing
MAX_WEIGHT_LAYERS: int = 16
PACKED_WEIGHT_SLOTS: int = 4

# Plane preset
DEFAULT_PLANE_HEIGHT: float = 0.0


def values_equal_approx(a: float, b: float, eps: float = DEFAULT_FLOAT_EPSILON) -> bool:
    if a == b:
        return True
    if math.isnan(a) or math.isnan(b):
        return math.isnan(a) and math.isnan(b)
    return abs(a - b) <= eps * max(1.0, abs(a), abs(b))

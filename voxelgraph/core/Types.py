from enum import Enum, IntEnum, auto
from typing import Any, NamedTuple, Optional


class NodeTypeID(IntEnum):
    # Inputs
    CONSTANT = 0
    INPUT_X = auto()
    INPUT_Y = auto()
    INPUT_Z = auto()
    INPUT_SDF = auto()
    CUSTOM_INPUT = auto()

    # Outputs
    OUTPUT_SDF = auto()
    OUTPUT_WEIGHT = auto()
    OUTPUT_TYPE = auto()
    CUSTOM_OUTPUT = auto()

    # Math
    ADD = auto()
    SUBTRACT = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    SIN = auto()
    FLOOR = auto()
    ABS = auto()
    SQRT = auto()
    FRACT = auto()
    STEPIFY = auto()
    WRAP = auto()
    MIN = auto()
    MAX = auto()
    DISTANCE_2D = auto()
    DISTANCE_3D = auto()
    CLAMP = auto()
    CLAMP_C = auto()
    MIX = auto()
    REMAP = auto()
    SMOOTHSTEP = auto()
    SELECT = auto()
    POW = auto()
    POWI = auto()
    NORMALIZE_3D = auto()

    # Noise
    NOISE_2D = auto()
    NOISE_3D = auto()

    # SDF
    SDF_PLANE = auto()
    SDF_BOX = auto()
    SDF_SPHERE = auto()
    SDF_TORUS = auto()
    SDF_SMOOTH_UNION = auto()
    SDF_SMOOTH_SUBTRACT = auto()
    SDF_PREVIEW = auto()

    # Misc
    EXPRESSION = auto()
    FUNCTION = auto()
    RELAY = auto()
    COMMENT = auto()


class Category(Enum):
    INPUT = "input"
    OUTPUT = "output"
    MATH = "math"
    CONVERT = "convert"
    SDF = "sdf"
    NOISE = "noise"
    MISC = "misc"
    DEBUG = "debug"
    FUNCTIONS = "functions"


# Unconnected inputs carrying one of these hints get bound to the matching
# coordinate input when the graph is compiled.
class AutoConnect(Enum):
    NONE = auto()
    X = auto()
    Y = auto()
    Z = auto()
    SDF = auto()


class ParamType(Enum):
    FLOAT = "float"
    INT = "int"
    STRING = "string"
    RESOURCE = "resource"
    STRING_LIST = "string_list"

    @staticmethod
    def validate(value: Any, param_type: 'ParamType') -> bool:
        if param_type == ParamType.FLOAT:
            return isinstance(value, (float, int)) and not isinstance(value, bool)
        elif param_type == ParamType.INT:
            return isinstance(value, int) and not isinstance(value, bool)
        elif param_type == ParamType.STRING:
            return isinstance(value, str)
        elif param_type == ParamType.STRING_LIST:
            return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)
        elif param_type == ParamType.RESOURCE:
            return value is None or hasattr(value, "hash_state")
        return False


class Channel(IntEnum):
    """Voxel buffer channels a generator can write or be queried for."""
    TYPE = 0
    SDF = 1
    INDICES = 2
    WEIGHTS = 3


class CompilationResult(NamedTuple):
    success: bool
    node_id: Optional[int] = None
    message: str = ""
    expanded_nodes_count: int = 0

    def __repr__(self):
        if self.success:
            return f"CompilationResult(ok, expanded_nodes={self.expanded_nodes_count})"
        return f"CompilationResult(failed at node {self.node_id}: {self.message})"

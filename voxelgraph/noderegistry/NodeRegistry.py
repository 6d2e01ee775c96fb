from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence
import importlib
import threading

import logging

import numpy as np

from ..core.Types import AutoConnect, Category, NodeTypeID, ParamType

logger = logging.getLogger(__name__)

# =========================================================================================
# NODE TYPE CATALOG
#
# Every node kind is described by one NodeType entry. Behaviour is data, not
# subclasses: the compiler, the interpreter and the range analysis all look up
# the entry of an instruction and call the function it carries.
#
#   kernel(inputs, params) -> array or tuple of arrays, one per output
#   range_rule(intervals, params) -> Interval or tuple of Intervals
#   passthrough(intervals, params) -> index of the input the output equals, or None
#   simplify(constant_inputs, params) -> (type_id, kept_input_indices, params) or None
#
# The catalog is filled once on first access and is read-only afterwards.
# =========================================================================================


@dataclass
class PortSpec:
    name: str
    default_value: float = 0.0
    autoconnect: AutoConnect = AutoConnect.NONE


@dataclass
class ParamSpec:
    name: str
    param_type: ParamType
    default_value: Any = None
    default_factory: Optional[Callable[[], Any]] = None

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if isinstance(self.default_value, list):
            return list(self.default_value)
        return self.default_value


@dataclass
class NodeType:
    type_id: NodeTypeID
    name: str
    category: Category
    inputs: List[PortSpec] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    params: List[ParamSpec] = field(default_factory=list)
    expression_function: Optional[str] = None
    # Pure kinds depend only on their inputs and literal params
    is_pure: bool = True
    # Ports are derived per node (expression variables, function I/O)
    has_dynamic_ports: bool = False
    # Only compiled in debug mode
    debug_only: bool = False
    kernel: Optional[Callable] = None
    range_rule: Optional[Callable] = None
    passthrough: Optional[Callable] = None
    simplify: Optional[Callable] = None

    def get_param_index(self, name: str) -> Optional[int]:
        for i, param in enumerate(self.params):
            if param.name == name:
                return i
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.type_id),
            "type": self.type_id.name,
            "name": self.name,
            "category": self.category.value,
            "inputs": [{"name": p.name, "default_value": p.default_value,
                        "autoconnect": p.autoconnect.name.lower()} for p in self.inputs],
            "outputs": list(self.outputs),
            "params": [{"name": p.name, "type": p.param_type.value,
                        "default_value": p.default_value if p.default_factory is None else None}
                       for p in self.params],
            "expression_function": self.expression_function,
            "dynamic_ports": self.has_dynamic_ports,
        }


class ExpressionFunction(NamedTuple):
    name: str
    argument_count: int
    evaluator: Callable[..., float]
    type_id: Optional[NodeTypeID] = None


def _make_evaluator(node_type: NodeType) -> Callable[..., float]:
    params = [p.make_default() for p in node_type.params]

    def evaluate(*args: float) -> float:
        inputs = [np.array([a], dtype=np.float64) for a in args]
        with np.errstate(all="ignore"):
            result = node_type.kernel(inputs, params)
        return float(np.asarray(result)[0])
    return evaluate


class NodeTypeDB:
    _types: Dict[NodeTypeID, NodeType] = {}
    _expression_functions: Dict[str, ExpressionFunction] = {}
    _loaded = False
    _lock = threading.Lock()

    # Modules registering node kinds, imported on first access
    _node_modules = ("io_nodes", "math_nodes", "noise_nodes", "sdf_nodes")

    @classmethod
    def register(cls, node_type: NodeType) -> NodeType:
        if node_type.type_id in cls._types:
            raise ValueError(f"Node type '{node_type.type_id.name}' is already registered.")
        cls._types[node_type.type_id] = node_type
        if node_type.expression_function is not None:
            assert(node_type.kernel is not None), f"{node_type.name} needs a kernel to be callable from expressions"
            cls._expression_functions[node_type.expression_function] = ExpressionFunction(
                node_type.expression_function, len(node_type.inputs),
                _make_evaluator(node_type), node_type.type_id)
        return node_type

    @classmethod
    def _ensure_loaded(cls):
        if cls._loaded:
            return
        with cls._lock:
            if cls._loaded:
                return
            for module_name in cls._node_modules:
                importlib.import_module(f"{__package__}.{module_name}")
            missing = [t.name for t in NodeTypeID if t not in cls._types]
            assert(not missing), f"Node types without catalog entry: {missing}"
            cls._loaded = True
            logger.debug(f"Loaded {len(cls._types)} node types")

    @classmethod
    def get_type(cls, type_id: NodeTypeID) -> NodeType:
        cls._ensure_loaded()
        try:
            return cls._types[NodeTypeID(type_id)]
        except (KeyError, ValueError):
            raise ValueError(f"Unknown node type '{type_id}'")

    @classmethod
    def get_types(cls) -> List[NodeType]:
        cls._ensure_loaded()
        return [cls._types[t] for t in sorted(cls._types)]

    @classmethod
    def find_type_by_name(cls, name: str) -> NodeType:
        cls._ensure_loaded()
        for node_type in cls._types.values():
            if node_type.type_id.name == name or node_type.name == name:
                return node_type
        raise ValueError(f"Unknown node type '{name}'")

    @classmethod
    def try_get_param_index_from_name(cls, type_id: NodeTypeID, name: str) -> Optional[int]:
        return cls.get_type(type_id).get_param_index(name)

    @classmethod
    def get_expression_functions(cls) -> Dict[str, ExpressionFunction]:
        cls._ensure_loaded()
        return dict(cls._expression_functions)

    @classmethod
    def get_types_in_category(cls, categories: Sequence[Category]) -> List[NodeType]:
        return [t for t in cls.get_types() if t.category in categories]

from typing import Any, Dict, List, Optional, TYPE_CHECKING, Union

import logging

from .NodePort import InputPort, OutputPort
from .Types import NodeTypeID, ParamType

if TYPE_CHECKING:
    from ..noderegistry.NodeRegistry import NodeType
    from .NodeNetwork import GraphFunction, PortDefinition

# Get a logger for this module
logger = logging.getLogger(__name__)


class GraphNode:
    """
    A single operation of a graph.

    Ports and params start from the catalog entry of the node kind. Expression
    and function nodes rebuild their ports later (variable names, function I/O).
    """

    def __init__(self,
                 node_id: int,
                 type_id: NodeTypeID,
                 name: str = "",
                 inputs: Optional[List[InputPort]] = None,
                 outputs: Optional[List[OutputPort]] = None,
                 params: Optional[List[Any]] = None):
        self.id = node_id
        self.type_id = type_id
        self.name = name
        self.inputs: List[InputPort] = inputs if inputs is not None else []
        self.outputs: List[OutputPort] = outputs if outputs is not None else []
        self.params: List[Any] = params if params is not None else []

        # Function nodes only: the embedded function and the I/O it had when
        # the ports were last derived
        self.function: Optional['GraphFunction'] = None
        self.input_definitions: List['PortDefinition'] = []
        self.output_definitions: List['PortDefinition'] = []

    @classmethod
    def from_type(cls, node_id: int, node_type: 'NodeType') -> 'GraphNode':
        node = cls(node_id, node_type.type_id)
        node.inputs = [InputPort(node_id, spec.name, spec.default_value, spec.autoconnect)
                       for spec in node_type.inputs]
        node.outputs = [OutputPort(node_id, name) for name in node_type.outputs]
        node.params = [spec.make_default() for spec in node_type.params]
        return node

    # ── Ports ────────────────────────────────────────────────────────────

    def get_input(self, port_index: int) -> InputPort:
        if not 0 <= port_index < len(self.inputs):
            raise ValueError(f"Input port {port_index} not found on node {self.id} ({self.type_id.name})")
        return self.inputs[port_index]

    def get_output(self, port_index: int) -> OutputPort:
        if not 0 <= port_index < len(self.outputs):
            raise ValueError(f"Output port {port_index} not found on node {self.id} ({self.type_id.name})")
        return self.outputs[port_index]

    def get_default_inputs(self) -> List[float]:
        return [port.default_value for port in self.inputs]

    # ── Params ───────────────────────────────────────────────────────────

    def resolve_param_index(self, node_type: 'NodeType', param: Union[int, str]) -> int:
        if isinstance(param, str):
            index = node_type.get_param_index(param)
            if index is None:
                raise KeyError(f"Param '{param}' not found on node {self.id} ({self.type_id.name})")
            return index
        if not 0 <= param < len(self.params):
            raise ValueError(f"Param index {param} out of range on node {self.id} ({self.type_id.name})")
        return param

    def set_param(self, node_type: 'NodeType', param: Union[int, str], value: Any):
        index = self.resolve_param_index(node_type, param)
        spec = node_type.params[index]
        if spec.param_type == ParamType.FLOAT and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        if not ParamType.validate(value, spec.param_type):
            raise ValueError(f"Invalid value {value!r} for param '{spec.name}' ({spec.param_type.value})"
                             f" of node {self.id}")
        if spec.param_type == ParamType.STRING_LIST:
            value = list(value)
        self.params[index] = value

    def get_param(self, node_type: 'NodeType', param: Union[int, str]) -> Any:
        return self.params[self.resolve_param_index(node_type, param)]

    def to_dict(self) -> Dict[str, Any]:
        params = []
        for value in self.params:
            if value is None or isinstance(value, (int, float, str, list)):
                params.append(value)
            else:
                params.append(repr(value))
        return {
            "id": self.id,
            "type": self.type_id.name,
            "name": self.name,
            "inputs": [port.to_dict() for port in self.inputs],
            "outputs": [port.to_dict() for port in self.outputs],
            "params": params,
        }

    def __repr__(self):
        return f"GraphNode({self.id}, {self.type_id.name})"

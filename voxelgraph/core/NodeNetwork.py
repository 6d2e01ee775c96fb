from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union
import hashlib
import weakref

from logging import getLogger

from .GraphPrimitives import Connection, PortLocation, ProgramGraph
from .Node import GraphNode
from .NodePort import InputPort, OutputPort
from .Types import AutoConnect, NodeTypeID
from ..noderegistry.NodeRegistry import NodeTypeDB

logger = getLogger(__name__)


INPUT_NODE_TYPES = (NodeTypeID.INPUT_X, NodeTypeID.INPUT_Y, NodeTypeID.INPUT_Z,
                    NodeTypeID.INPUT_SDF, NodeTypeID.CUSTOM_INPUT)
OUTPUT_NODE_TYPES = (NodeTypeID.OUTPUT_SDF, NodeTypeID.OUTPUT_WEIGHT,
                     NodeTypeID.OUTPUT_TYPE, NodeTypeID.CUSTOM_OUTPUT)

# Coordinate inputs, and the auto-connect hint that stands for each of them
AUTOCONNECT_INPUTS = {
    AutoConnect.X: NodeTypeID.INPUT_X,
    AutoConnect.Y: NodeTypeID.INPUT_Y,
    AutoConnect.Z: NodeTypeID.INPUT_Z,
    AutoConnect.SDF: NodeTypeID.INPUT_SDF,
}
_INPUT_AUTOCONNECT = {type_id: hint for hint, type_id in AUTOCONNECT_INPUTS.items()}

# Kinds matched to their definition by type alone, the others also by name
_UNIQUE_IO_NAMES = {
    NodeTypeID.INPUT_X: "x",
    NodeTypeID.INPUT_Y: "y",
    NodeTypeID.INPUT_Z: "z",
    NodeTypeID.INPUT_SDF: "sdf",
    NodeTypeID.OUTPUT_SDF: "sdf",
    NodeTypeID.OUTPUT_TYPE: "type",
}


class PortDefinition(NamedTuple):
    """One entry of a function's declared inputs or outputs."""
    type_id: NodeTypeID
    name: str


def get_definition_name(node: GraphNode) -> str:
    if node.type_id in _UNIQUE_IO_NAMES:
        return _UNIQUE_IO_NAMES[node.type_id]
    if node.type_id == NodeTypeID.OUTPUT_WEIGHT:
        return node.name or f"weight{node.params[0]}"
    return node.name


def definition_matches(definition: PortDefinition, node: GraphNode) -> bool:
    if definition.type_id != node.type_id:
        return False
    if node.type_id in _UNIQUE_IO_NAMES:
        return True
    return definition.name == get_definition_name(node)


class GraphFunction:
    """
    Editable node graph with declared inputs and outputs.

    A graph can be embedded into other graphs through function nodes. Those
    only reference it: editing the I/O of a function notifies every graph
    embedding it (held weakly), which must then reconcile its function nodes
    with `update_function_nodes` before it can compile again.
    """

    def __init__(self, name: str = "function"):
        self.name = name
        self.graph = ProgramGraph()
        self._input_definitions: List[PortDefinition] = []
        self._output_definitions: List[PortDefinition] = []
        self._dependents: 'weakref.WeakSet[GraphFunction]' = weakref.WeakSet()
        self._needs_update = False

    # ── Nodes ────────────────────────────────────────────────────────────

    def create_node(self, type_id: NodeTypeID, node_id: Optional[int] = None) -> int:
        node_type = NodeTypeDB.get_type(type_id)
        if node_type.type_id == NodeTypeID.FUNCTION:
            raise ValueError("Function nodes must be created with create_function_node()")
        if node_id is None:
            node_id = self.graph.generate_node_id()
        node = GraphNode.from_type(node_id, node_type)
        self.graph.add_node(node)
        logger.debug(f"Created node {node_id} ({node_type.name}) in '{self.name}'")
        return node_id

    def create_function_node(self, function: 'GraphFunction', node_id: Optional[int] = None) -> int:
        if not isinstance(function, GraphFunction):
            raise ValueError(f"Expected a GraphFunction, got {function!r}")
        if node_id is None:
            node_id = self.graph.generate_node_id()
        node = GraphNode(node_id, NodeTypeID.FUNCTION, name=function.name)
        node.function = function
        self._apply_function_ports(node)
        self.graph.add_node(node)
        function._dependents.add(self)
        logger.debug(f"Created function node {node_id} ('{function.name}') in '{self.name}'")
        return node_id

    def remove_node(self, node_id: int):
        self.graph.remove_node(node_id)
        logger.debug(f"Removed node {node_id} from '{self.name}'")

    def clear(self):
        self.graph.clear()
        self._input_definitions = []
        self._output_definitions = []

    def get_node(self, node_id: int) -> GraphNode:
        return self.graph.try_get_node(node_id)

    def has_node(self, node_id: int) -> bool:
        return self.graph.has_node(node_id)

    def get_node_ids(self) -> List[int]:
        return self.graph.get_node_ids()

    def get_nodes(self) -> List[GraphNode]:
        return [self.graph.nodes[node_id] for node_id in self.graph.get_node_ids()]

    def get_node_type_id(self, node_id: int) -> NodeTypeID:
        return self.get_node(node_id).type_id

    def get_node_input_count(self, node_id: int) -> int:
        return len(self.get_node(node_id).inputs)

    def get_node_output_count(self, node_id: int) -> int:
        return len(self.get_node(node_id).outputs)

    def set_node_name(self, node_id: int, name: str):
        self.get_node(node_id).name = name

    def get_node_name(self, node_id: int) -> str:
        return self.get_node(node_id).name

    def find_node_by_name(self, name: str) -> Optional[int]:
        for node in self.get_nodes():
            if node.name == name:
                return node.id
        return None

    # ── Connections ──────────────────────────────────────────────────────

    def can_connect(self, src_node_id: int, src_port_index: int, dst_node_id: int, dst_port_index: int) -> bool:
        return self.graph.can_connect(PortLocation(src_node_id, src_port_index),
                                      PortLocation(dst_node_id, dst_port_index))

    def add_connection(self, src_node_id: int, src_port_index: int, dst_node_id: int, dst_port_index: int):
        connection = self.graph.add_connection(PortLocation(src_node_id, src_port_index),
                                               PortLocation(dst_node_id, dst_port_index))
        logger.debug(f"Connected {connection!r} in '{self.name}'")

    def remove_connection(self, src_node_id: int, src_port_index: int, dst_node_id: int, dst_port_index: int) -> bool:
        return self.graph.remove_connection(PortLocation(src_node_id, src_port_index),
                                            PortLocation(dst_node_id, dst_port_index))

    def has_connection(self, src_node_id: int, src_port_index: int, dst_node_id: int, dst_port_index: int) -> bool:
        return self.graph.has_connection(PortLocation(src_node_id, src_port_index),
                                         PortLocation(dst_node_id, dst_port_index))

    def get_connections(self) -> List[Connection]:
        return list(self.graph.connections)

    def get_input_connection(self, node_id: int, port_index: int) -> Optional[Connection]:
        return self.graph.get_incoming(PortLocation(node_id, port_index))

    # ── Params and default inputs ────────────────────────────────────────

    def set_node_param(self, node_id: int, param: Union[int, str], value: Any):
        node = self.get_node(node_id)
        node.set_param(NodeTypeDB.get_type(node.type_id), param, value)

    def get_node_param(self, node_id: int, param: Union[int, str]) -> Any:
        node = self.get_node(node_id)
        return node.get_param(NodeTypeDB.get_type(node.type_id), param)

    def get_node_params(self, node_id: int) -> List[Any]:
        return list(self.get_node(node_id).params)

    def set_node_default_input(self, node_id: int, port_index: int, value: float):
        self.get_node(node_id).get_input(port_index).set_default_value(value)

    def get_node_default_input(self, node_id: int, port_index: int) -> float:
        return self.get_node(node_id).get_input(port_index).default_value

    def set_expression_node_inputs(self, node_id: int, names: Sequence[str]):
        """
        Declares the variables of an expression node, one input port each.
        Ports keeping their name keep their connection and default value.
        """
        node = self.get_node(node_id)
        if node.type_id != NodeTypeID.EXPRESSION:
            raise ValueError(f"Node {node_id} is not an expression node")
        names = [str(name) for name in names]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate variable names in {list(names)}")

        previous = {}
        for port_index, port in enumerate(node.inputs):
            connection = self.graph.get_incoming(PortLocation(node_id, port_index))
            previous[port.port_name] = (connection, port.default_value)
            if connection is not None:
                self.graph.remove_connection(connection.src, connection.dst)

        node.inputs = [InputPort(node_id, name) for name in names]
        for port_index, name in enumerate(names):
            if name not in previous:
                continue
            connection, default_value = previous[name]
            node.inputs[port_index].default_value = default_value
            if connection is not None:
                self.graph.add_connection(connection.src, PortLocation(node_id, port_index))

    # ── I/O definitions ──────────────────────────────────────────────────

    def get_input_definitions(self) -> List[PortDefinition]:
        return list(self._input_definitions)

    def get_output_definitions(self) -> List[PortDefinition]:
        return list(self._output_definitions)

    def set_io_definitions(self, inputs: Iterable[Tuple[NodeTypeID, str]], outputs: Iterable[Tuple[NodeTypeID, str]]):
        input_definitions = [PortDefinition(NodeTypeID(t), str(n)) for t, n in inputs]
        output_definitions = [PortDefinition(NodeTypeID(t), str(n)) for t, n in outputs]
        for definition in input_definitions:
            if definition.type_id not in INPUT_NODE_TYPES:
                raise ValueError(f"{definition.type_id.name} cannot be used as a function input")
        for definition in output_definitions:
            if definition.type_id not in OUTPUT_NODE_TYPES:
                raise ValueError(f"{definition.type_id.name} cannot be used as a function output")
        self._input_definitions = input_definitions
        self._output_definitions = output_definitions
        self._notify_dependents()

    def auto_pick_inputs_and_outputs(self):
        """
        Declares I/O from the nodes present: coordinate inputs first (X, Y, Z,
        SDF, including the ones only implied by auto-connect hints on
        unconnected ports), then custom inputs by node id. Outputs are SDF,
        weights, type, then custom outputs by node id.
        """
        nodes = self.get_nodes()

        used_inputs = set()
        for node in nodes:
            if node.type_id in _INPUT_AUTOCONNECT:
                used_inputs.add(node.type_id)
            for port_index, port in enumerate(node.inputs):
                if port.autoconnect != AutoConnect.NONE and \
                        not self.graph.is_input_connected(PortLocation(node.id, port_index)):
                    used_inputs.add(AUTOCONNECT_INPUTS[port.autoconnect])

        inputs: List[PortDefinition] = []
        for type_id in (NodeTypeID.INPUT_X, NodeTypeID.INPUT_Y, NodeTypeID.INPUT_Z, NodeTypeID.INPUT_SDF):
            if type_id in used_inputs:
                inputs.append(PortDefinition(type_id, _UNIQUE_IO_NAMES[type_id]))
        for node in nodes:
            if node.type_id == NodeTypeID.CUSTOM_INPUT:
                inputs.append(PortDefinition(node.type_id, get_definition_name(node)))

        outputs: List[PortDefinition] = []
        for type_id in OUTPUT_NODE_TYPES:
            for node in nodes:
                if node.type_id == type_id:
                    outputs.append(PortDefinition(node.type_id, get_definition_name(node)))

        self.set_io_definitions(_unique(inputs), _unique(outputs))

    def find_node_for_definition(self, definition: PortDefinition) -> Optional[GraphNode]:
        for node in self.get_nodes():
            if definition_matches(definition, node):
                return node
        return None

    def find_input_definition_index(self, type_id: NodeTypeID, name: str = "") -> Optional[int]:
        for index, definition in enumerate(self._input_definitions):
            if definition.type_id != type_id:
                continue
            if type_id in _UNIQUE_IO_NAMES or definition.name == name:
                return index
        return None

    def get_output_node_ids(self) -> List[int]:
        """Nodes the outputs of this graph are read from."""
        if self._output_definitions:
            ids = []
            for definition in self._output_definitions:
                node = self.find_node_for_definition(definition)
                if node is not None and node.id not in ids:
                    ids.append(node.id)
            return sorted(ids)
        return [node.id for node in self.get_nodes() if node.type_id in OUTPUT_NODE_TYPES]

    # ── Function nodes ───────────────────────────────────────────────────

    def _apply_function_ports(self, node: GraphNode):
        function = node.function
        assert(function is not None), f"Function node {node.id} has no function"
        node.input_definitions = function.get_input_definitions()
        node.output_definitions = function.get_output_definitions()
        node.inputs = [InputPort(node.id, d.name, 0.0, _INPUT_AUTOCONNECT.get(d.type_id, AutoConnect.NONE))
                       for d in node.input_definitions]
        node.outputs = [OutputPort(node.id, d.name) for d in node.output_definitions]

    def _notify_dependents(self):
        for dependent in list(self._dependents):
            dependent._needs_update = True
            logger.debug(f"'{dependent.name}' must update function nodes using '{self.name}'")

    def needs_update(self) -> bool:
        if self._needs_update:
            return True
        for node in self.get_nodes():
            if node.type_id == NodeTypeID.FUNCTION and node.function is not None and \
                    (node.input_definitions != node.function.get_input_definitions() or
                     node.output_definitions != node.function.get_output_definitions()):
                return True
        return False

    def update_function_nodes(self, function: Optional['GraphFunction'] = None):
        """
        Re-derives the ports of function nodes (all of them, or only those
        embedding `function`). Bindings on ports whose definition still exists
        are moved to the new port index, the others are dropped.
        """
        for node in self.get_nodes():
            if node.type_id != NodeTypeID.FUNCTION:
                continue
            if function is not None and node.function is not function:
                continue
            self._update_function_node(node)
        self._needs_update = False

    def _update_function_node(self, node: GraphNode):
        old_inputs = {}
        for port_index, definition in enumerate(node.input_definitions):
            if port_index >= len(node.inputs):
                break
            connection = self.graph.get_incoming(PortLocation(node.id, port_index))
            old_inputs.setdefault(definition, (connection, node.inputs[port_index].default_value))

        old_outputs = {}
        for port_index, definition in enumerate(node.output_definitions):
            if port_index >= len(node.outputs):
                break
            old_outputs.setdefault(definition, self.graph.get_outgoing(PortLocation(node.id, port_index)))

        for connection in [c for c in self.graph.connections
                           if c.src.node_id == node.id or c.dst.node_id == node.id]:
            self.graph.remove_connection(connection.src, connection.dst)

        self._apply_function_ports(node)

        for port_index, definition in enumerate(node.input_definitions):
            if definition not in old_inputs:
                continue
            connection, default_value = old_inputs.pop(definition)
            node.inputs[port_index].default_value = default_value
            dst = PortLocation(node.id, port_index)
            if connection is not None and self.graph.can_connect(connection.src, dst):
                self.graph.add_connection(connection.src, dst)

        for port_index, definition in enumerate(node.output_definitions):
            src = PortLocation(node.id, port_index)
            for connection in old_outputs.pop(definition, []):
                if self.graph.can_connect(src, connection.dst):
                    self.graph.add_connection(src, connection.dst)

        dropped = len(old_inputs) + len(old_outputs)
        if dropped:
            logger.debug(f"Function node {node.id}: dropped {dropped} port(s) no longer defined")

    # ── Hashing ──────────────────────────────────────────────────────────

    def get_output_graph_hash(self) -> int:
        """
        Hash of everything that can affect the outputs: kinds, params, default
        inputs and connections of the nodes the outputs depend on. Resources
        contribute their state, so equal copies hash the same.
        """
        return self._compute_output_graph_hash(frozenset())

    def _compute_output_graph_hash(self, visiting: frozenset) -> int:
        visiting = visiting | {id(self)}
        h = hashlib.blake2b(digest_size=8)
        order = self.graph.find_dependencies(self.get_output_node_ids())
        visit_index = {node_id: i for i, node_id in enumerate(order)}
        for node_id in order:
            node = self.graph.nodes[node_id]
            sources = []
            for port_index in range(len(node.inputs)):
                connection = self.graph.get_incoming(PortLocation(node_id, port_index))
                if connection is None:
                    sources.append(None)
                else:
                    sources.append((visit_index[connection.src.node_id], connection.src.port_index))
            state = (
                node.type_id.name,
                get_definition_name(node) if node.type_id in INPUT_NODE_TYPES + OUTPUT_NODE_TYPES else "",
                tuple(_param_state(p) for p in node.params),
                tuple(_default_state(port, source) for port, source in zip(node.inputs, sources)),
                tuple(port.port_name for port in node.inputs),
                tuple(sources),
            )
            if node.function is not None:
                # A function embedding itself fails to compile, it only needs a stable hash here
                if id(node.function) in visiting:
                    state += ("recursive", node.function.name)
                else:
                    state += (node.function._hash_state(visiting),)
            h.update(repr(state).encode("utf-8"))
        return int.from_bytes(h.digest(), "little")

    def hash_state(self) -> tuple:
        return self._hash_state(frozenset())

    def _hash_state(self, visiting: frozenset) -> tuple:
        return (tuple(self._input_definitions), tuple(self._output_definitions),
                self._compute_output_graph_hash(visiting))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [node.to_dict() for node in self.get_nodes()],
            "connections": [
                {"src_node_id": c.src.node_id, "src_port": c.src.port_index,
                 "dst_node_id": c.dst.node_id, "dst_port": c.dst.port_index}
                for c in self.graph.connections],
            "inputs": [{"type": d.type_id.name, "name": d.name} for d in self._input_definitions],
            "outputs": [{"type": d.type_id.name, "name": d.name} for d in self._output_definitions],
        }

    def __repr__(self):
        return f"GraphFunction('{self.name}', {len(self.graph.nodes)} nodes)"


def _default_state(port: InputPort, source: Any) -> Optional[float]:
    # Unconnected auto-connected inputs read a coordinate, never their default
    if source is None and port.autoconnect != AutoConnect.NONE:
        return None
    return port.default_value


def _param_state(value: Any) -> Any:
    if hasattr(value, "hash_state"):
        return value.hash_state()
    if isinstance(value, list):
        return tuple(value)
    return value


def _unique(definitions: List[PortDefinition]) -> List[PortDefinition]:
    result = []
    for definition in definitions:
        if definition not in result:
            result.append(definition)
    return result

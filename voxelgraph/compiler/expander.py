"""
Voxel Graph Compiler: Expander
==============================
Flattens a GraphFunction into an ExpandedGraph of primitive nodes.

  - Function nodes are inlined. Each embedding gets its own frame, keyed by
    the path of function node ids leading to it, so a function used twice is
    expanded twice (the scheduler merges what turns out identical).
  - Expression nodes are parsed and replaced by the nodes their tree calls.
  - Relays and input nodes forward the value they resolve to.
  - Nodes whose inputs are all constant are evaluated right away.
  - `simplify` hooks of the catalog run when a node is created.

The walk uses an explicit stack of (frame, node) tasks instead of recursion.
A frame remembers the functions it is nested in, which is how a function
embedding itself is reported.
"""

from __future__ import annotations

from typing import Any, Dict, List, NamedTuple, Optional, Set, Tuple

import logging

import numpy as np

from ..core.GraphPrimitives import PortLocation
from ..core.Node import GraphNode
from ..core.NodeNetwork import (
    AUTOCONNECT_INPUTS, INPUT_NODE_TYPES, OUTPUT_NODE_TYPES, GraphFunction, PortDefinition,
    get_definition_name,
)
from ..core.Types import AutoConnect, NodeTypeID
from ..defaults import MAX_WEIGHT_LAYERS
from ..expression import parser
from ..noderegistry.NodeRegistry import NodeType, NodeTypeDB
from ..noise import NoiseResource
from .ir import CompilationError, ExpandedGraph, ExpandedNode, ValueRef

logger = logging.getLogger(__name__)


_OPERATOR_TYPES = {
    parser.Operator.ADD: NodeTypeID.ADD,
    parser.Operator.SUBTRACT: NodeTypeID.SUBTRACT,
    parser.Operator.MULTIPLY: NodeTypeID.MULTIPLY,
    parser.Operator.DIVIDE: NodeTypeID.DIVIDE,
    parser.Operator.POWER: NodeTypeID.POW,
}

_ROOT_TYPES = OUTPUT_NODE_TYPES + (NodeTypeID.SDF_PREVIEW,)


# ── Frames ───────────────────────────────────────────────────────────────────

class _Frame:
    """One expansion of a function: the top-level graph, or a function node."""

    def __init__(self, key: Tuple[int, ...], function: GraphFunction, parent: Optional['_Frame'] = None,
                 function_node: Optional[GraphNode] = None, origin: Optional[int] = None,
                 chain: Tuple[int, ...] = ()):
        self.key = key
        self.function = function
        self.parent = parent
        self.function_node = function_node
        # Top-level node this frame was expanded from
        self.origin = origin
        # id() of every function this frame is nested in, itself included
        self.chain = chain + (id(function),)

    def origin_of(self, node: GraphNode) -> int:
        return node.id if self.origin is None else self.origin


class _Task(NamedTuple):
    frame: _Frame
    node_id: int


# ── Expander ─────────────────────────────────────────────────────────────────

class Expander:
    def __init__(self, function: GraphFunction, debug: bool = False):
        self.function = function
        self.debug = debug
        self.root = _Frame((), function)
        self.frames: Dict[Tuple[int, ...], _Frame] = {(): self.root}
        self.values: Dict[Tuple[Tuple[int, ...], int], List[ValueRef]] = {}
        self.graph = ExpandedGraph()
        self._next_id = 1
        self._expression_functions = NodeTypeDB.get_expression_functions()
        # Copies of the resources the graph references, keyed by id of the original
        self._resources: Dict[int, NoiseResource] = {}

    def expand(self) -> ExpandedGraph:
        stack = [_Task(self.root, node_id) for node_id in reversed(self._find_roots())]
        waiting: Set[Tuple[Tuple[int, ...], int]] = set()

        while stack:
            task = stack[-1]
            key = (task.frame.key, task.node_id)
            if key in self.values:
                stack.pop()
                continue

            node = task.frame.function.get_node(task.node_id)
            refs = self._gather(task.frame, node)
            pending = [r for r in refs if isinstance(r, _Task)]
            if pending:
                if key in waiting:
                    raise CompilationError(task.frame.origin_of(node), "Cycle detected while expanding the graph")
                waiting.add(key)
                stack.extend(pending)
                continue

            stack.pop()
            waiting.discard(key)
            values = self._expand_node(task.frame, node, refs)
            self.values[key] = values
            if task.frame is self.root and node.id not in self.graph.top_level_values:
                self.graph.top_level_values[node.id] = values

        logger.debug(f"Expanded '{self.function.name}' into {len(self.graph.nodes)} nodes "
                     f"({len(self.frames) - 1} function frames)")
        return self.graph

    # ── Roots ────────────────────────────────────────────────────────────

    def _find_roots(self) -> List[int]:
        roots = []
        has_sdf = False
        has_type = False
        layers: Set[int] = set()

        for node_id in self.function.get_output_node_ids():
            node = self.function.get_node(node_id)
            if node.type_id == NodeTypeID.OUTPUT_SDF:
                if has_sdf:
                    raise CompilationError(node_id, "Only one SDF output is allowed")
                has_sdf = True
            elif node.type_id == NodeTypeID.OUTPUT_TYPE:
                if has_type:
                    raise CompilationError(node_id, "Only one type output is allowed")
                has_type = True
            elif node.type_id == NodeTypeID.OUTPUT_WEIGHT:
                layer = node.params[0]
                if not 0 <= layer < MAX_WEIGHT_LAYERS:
                    raise CompilationError(node_id, f"Weight layer {layer} is out of range "
                                                    f"[0, {MAX_WEIGHT_LAYERS - 1}]")
                if layer in layers:
                    raise CompilationError(node_id, f"Weight layer {layer} is used by more than one output")
                layers.add(layer)
            roots.append(node_id)

        if not roots:
            raise CompilationError(None, "The graph has no output")

        if self.debug:
            for node in self.function.get_nodes():
                if node.type_id == NodeTypeID.SDF_PREVIEW:
                    roots.append(node.id)
        return roots

    # ── Value resolution ─────────────────────────────────────────────────
    # Each method returns a ValueRef, or a _Task when the value comes from a
    # node that was not expanded yet.

    def _resolve_source(self, frame: _Frame, src: PortLocation):
        values = self.values.get((frame.key, src.node_id))
        if values is None:
            return _Task(frame, src.node_id)
        assert(src.port_index < len(values)), f"Node {src.node_id} has no output {src.port_index}"
        return values[src.port_index]

    def _resolve_input(self, frame: _Frame, node: GraphNode, port_index: int):
        connection = frame.function.graph.get_incoming(PortLocation(node.id, port_index))
        if connection is not None:
            return self._resolve_source(frame, connection.src)
        port = node.inputs[port_index]
        if port.autoconnect != AutoConnect.NONE:
            return self._resolve_frame_input(frame, AUTOCONNECT_INPUTS[port.autoconnect], "")
        return float(port.default_value)

    def _resolve_frame_input(self, frame: _Frame, type_id: NodeTypeID, name: str):
        """Value of an input node as seen from inside `frame`."""
        while frame.parent is not None:
            index = frame.function.find_input_definition_index(type_id, name)
            if index is None:
                break
            parent = frame.parent
            function_node = frame.function_node
            connection = parent.function.graph.get_incoming(PortLocation(function_node.id, index))
            if connection is not None:
                return self._resolve_source(parent, connection.src)
            port = function_node.inputs[index]
            if port.autoconnect == AutoConnect.NONE:
                return float(port.default_value)
            type_id, name = AUTOCONNECT_INPUTS[port.autoconnect], ""
            frame = parent

        if type_id == NodeTypeID.CUSTOM_INPUT:
            return 0.0
        return self._global_input(type_id)

    def _resolve_function_output(self, frame: _Frame, definition: PortDefinition):
        output_node = frame.function.find_node_for_definition(definition)
        if output_node is None:
            return 0.0
        return self._resolve_input(frame, output_node, 0)

    def _get_child_frame(self, frame: _Frame, node: GraphNode) -> _Frame:
        key = frame.key + (node.id,)
        child = self.frames.get(key)
        if child is not None:
            return child

        origin = frame.origin_of(node)
        function = node.function
        if function is None:
            raise CompilationError(origin, "Function node has no function")
        if id(function) in frame.chain:
            raise CompilationError(origin, f"Function '{function.name}' cannot contain itself")
        if node.input_definitions != function.get_input_definitions() or \
                node.output_definitions != function.get_output_definitions():
            raise CompilationError(origin, f"Ports of the function node do not match '{function.name}', "
                                           f"function nodes need to be updated")

        child = _Frame(key, function, frame, node, origin, frame.chain)
        self.frames[key] = child
        return child

    def _gather(self, frame: _Frame, node: GraphNode) -> list:
        type_id = node.type_id
        if type_id == NodeTypeID.CONSTANT:
            return []
        if type_id in INPUT_NODE_TYPES:
            return [self._resolve_frame_input(frame, type_id, get_definition_name(node))]
        if type_id == NodeTypeID.FUNCTION:
            child = self._get_child_frame(frame, node)
            return [self._resolve_function_output(child, d) for d in node.output_definitions]
        return [self._resolve_input(frame, node, i) for i in range(len(node.inputs))]

    # ── Node expansion ───────────────────────────────────────────────────

    def _expand_node(self, frame: _Frame, node: GraphNode, refs: List[ValueRef]) -> List[ValueRef]:
        type_id = node.type_id
        origin = frame.origin_of(node)

        if type_id == NodeTypeID.CONSTANT:
            return [float(node.params[0])]
        if type_id in INPUT_NODE_TYPES or type_id == NodeTypeID.RELAY:
            return [refs[0]]
        if type_id == NodeTypeID.FUNCTION:
            return list(refs)
        if type_id == NodeTypeID.EXPRESSION:
            return [self._expand_expression(node, refs, origin)]
        if type_id in _ROOT_TYPES:
            assert(frame is self.root), f"Output node {node.id} expanded inside a function"
            self._add_output(node, refs[0])
            return []

        node_type = NodeTypeDB.get_type(type_id)
        if node_type.kernel is None:
            raise CompilationError(origin, f"{node_type.name} nodes cannot be compiled")
        return self.emit(type_id, refs, self._copy_params(node.params), origin)

    def _copy_params(self, params: List[Any]) -> List[Any]:
        """
        Params for an instruction. Resources are duplicated once per compilation,
        editing them afterwards does not change the compiled program.
        """
        copied = []
        for value in params:
            if isinstance(value, NoiseResource):
                resource = self._resources.get(id(value))
                if resource is None:
                    resource = value.duplicate()
                    self._resources[id(value)] = resource
                value = resource
            copied.append(value)
        return copied

    def _add_output(self, node: GraphNode, ref: ValueRef):
        output = ExpandedNode(self._generate_id(), node.type_id, [ref], tuple(node.params), 0, node.id,
                              get_definition_name(node))
        self.graph.nodes[output.id] = output
        self.graph.outputs.append(output.id)
        self.graph.top_level_values[node.id] = [ref]

    def _global_input(self, type_id: NodeTypeID) -> PortLocation:
        flat_id = self.graph.inputs.get(type_id)
        if flat_id is None:
            flat_id = self._generate_id()
            self.graph.nodes[flat_id] = ExpandedNode(flat_id, type_id)
            self.graph.inputs[type_id] = flat_id
        return PortLocation(flat_id, 0)

    def _generate_id(self) -> int:
        flat_id = self._next_id
        self._next_id += 1
        return flat_id

    def emit(self, type_id: NodeTypeID, inputs: List[ValueRef], params: List[Any],
             origin: Optional[int]) -> List[ValueRef]:
        """Adds a primitive node, or returns its values directly when they are known."""
        node_type = NodeTypeDB.get_type(type_id)

        if node_type.simplify is not None:
            constants = [ref if isinstance(ref, float) else None for ref in inputs]
            simplified = node_type.simplify(constants, params)
            if simplified is not None:
                type_id, kept, params = simplified
                inputs = [inputs[i] for i in kept]
                node_type = NodeTypeDB.get_type(type_id)

        if node_type.is_pure and inputs and all(isinstance(ref, float) for ref in inputs):
            return _fold(node_type, inputs, params)

        flat = ExpandedNode(self._generate_id(), type_id, list(inputs), tuple(params),
                            len(node_type.outputs), origin)
        self.graph.nodes[flat.id] = flat
        return [PortLocation(flat.id, i) for i in range(flat.output_count)]

    # ── Expressions ──────────────────────────────────────────────────────

    def _expand_expression(self, node: GraphNode, refs: List[ValueRef], origin: int) -> ValueRef:
        text = node.params[0]
        result = parser.parse(text, self._expression_functions)
        if not result.ok:
            raise CompilationError(origin, f"Invalid expression '{text}': {result.error.id.name} "
                                           f"at position {result.error.position}")
        if result.root is None:
            return 0.0
        variables = {port.port_name: refs[i] for i, port in enumerate(node.inputs)}
        return self._expand_tree(result.root, variables, origin)

    def _expand_tree(self, root: parser.ExpressionNode, variables: Dict[str, ValueRef], origin: int) -> ValueRef:
        """Post-order walk with an explicit stack. Each visited tree pushes its value on `values`."""
        values: List[ValueRef] = []
        stack: List[Tuple[parser.ExpressionNode, bool]] = [(root, False)]

        while stack:
            tree, children_done = stack.pop()

            if isinstance(tree, parser.NumberNode):
                values.append(float(tree.value))
                continue

            if isinstance(tree, parser.VariableNode):
                if tree.name not in variables:
                    raise CompilationError(origin, f"Expression uses '{tree.name}' but the node has no such input")
                values.append(variables[tree.name])
                continue

            if isinstance(tree, parser.OperatorNode):
                type_id = _OPERATOR_TYPES[tree.op]
                children = [tree.left, tree.right]
            else:
                type_id = tree.function.type_id
                children = list(tree.args)

            if not children_done:
                stack.append((tree, True))
                stack.extend((child, False) for child in reversed(children))
                continue

            start = len(values) - len(children)
            inputs = values[start:]
            del values[start:]
            params = [spec.make_default() for spec in NodeTypeDB.get_type(type_id).params]
            values.append(self.emit(type_id, inputs, params, origin)[0])

        assert(len(values) == 1), f"Expression expanded into {len(values)} values"
        return values[0]


def _fold(node_type: NodeType, inputs: List[float], params: List[Any]) -> List[float]:
    # float32 like the runtime buffers, so folded and computed values agree
    arrays = [np.array([value], dtype=np.float32) for value in inputs]
    with np.errstate(all="ignore"):
        results = node_type.kernel(arrays, params)
    if not isinstance(results, tuple):
        results = (results,)
    return [float(np.asarray(r, dtype=np.float32).reshape(-1)[0]) for r in results]


def expand(function: GraphFunction, debug: bool = False) -> ExpandedGraph:
    return Expander(function, debug).expand()

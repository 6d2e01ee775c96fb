"""
Voxel Graph Compiler: Intermediate Representation
=================================================
Data shared between the compiler phases and the runtime.

    GraphFunction  →  [expander]  →  ExpandedGraph
                                         ↓
                                  [scheduler]  →  Schedule
                                                     ↓
                                                [emitter]  →  Program

ExpandedGraph is the user graph with function and expression nodes replaced
by primitive nodes. Values flowing between expanded nodes are either a port
of another expanded node (PortLocation) or a literal float.

A Program is immutable: the generator replaces it as a whole when the graph
is recompiled, so several threads can execute one Program at the same time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..core.GraphPrimitives import PortLocation
from ..core.Types import NodeTypeID

# A port of an expanded node, or a constant
ValueRef = Union[PortLocation, float]


class CompilationError(Exception):
    """Raised inside the compiler, turned into a failed CompilationResult."""

    def __init__(self, node_id: Optional[int], message: str):
        super().__init__(message)
        self.node_id = node_id
        self.message = message


# ── Expanded graph ───────────────────────────────────────────────────────────

@dataclass
class ExpandedNode:
    id: int
    type_id: NodeTypeID
    inputs: List[ValueRef] = field(default_factory=list)
    params: Tuple[Any, ...] = ()
    output_count: int = 1
    # Node of the top-level graph this one was produced from
    origin: Optional[int] = None
    # Output nodes only: the name they are declared with
    name: str = ""

    def input_ports(self) -> List[PortLocation]:
        return [ref for ref in self.inputs if isinstance(ref, PortLocation)]


@dataclass
class ExpandedGraph:
    # In creation order, which is also a valid evaluation order
    nodes: Dict[int, ExpandedNode] = field(default_factory=dict)
    # Input kind (INPUT_X...) → expanded node providing it
    inputs: Dict[NodeTypeID, int] = field(default_factory=dict)
    # Output and preview nodes, in the order of the top-level graph
    outputs: List[int] = field(default_factory=list)
    # Top-level node id → value of each of its output ports
    top_level_values: Dict[int, List[ValueRef]] = field(default_factory=dict)


# ── Program ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Instruction:
    type_id: NodeTypeID
    inputs: Tuple[int, ...]
    outputs: Tuple[int, ...]
    params: Tuple[Any, ...] = ()
    # Debug programs only
    node_id: Optional[int] = None

    def __repr__(self):
        return f"Instruction({self.type_id.name}, in={list(self.inputs)}, out={list(self.outputs)})"


@dataclass(frozen=True)
class ProgramOutput:
    type_id: NodeTypeID
    name: str
    address: int
    node_id: int
    # Weight outputs only
    layer: int = -1


@dataclass(frozen=True)
class Program:
    instructions: Tuple[Instruction, ...]
    buffer_count: int
    # Address → literal value, filled once per state
    constants: Mapping[int, float]
    # INPUT_X/Y/Z/SDF → address the caller fills
    input_addresses: Mapping[NodeTypeID, int]
    outputs: Tuple[ProgramOutput, ...]
    # Top-level output ports → address holding their value
    port_addresses: Mapping[PortLocation, int]
    debug: bool = False
    expanded_nodes_count: int = 0

    def get_output(self, type_id: NodeTypeID, layer: int = -1) -> Optional[ProgramOutput]:
        for output in self.outputs:
            if output.type_id == type_id and (layer < 0 or output.layer == layer):
                return output
        return None

    def get_input_address(self, type_id: NodeTypeID) -> Optional[int]:
        return self.input_addresses.get(type_id)

    def uses_input(self, type_id: NodeTypeID) -> bool:
        return type_id in self.input_addresses

    def to_dict(self) -> Dict[str, Any]:
        return {
            "debug": self.debug,
            "buffer_count": self.buffer_count,
            "expanded_nodes_count": self.expanded_nodes_count,
            "inputs": {t.name: a for t, a in self.input_addresses.items()},
            "constants": {str(a): v for a, v in self.constants.items()},
            "instructions": [
                {"type": i.type_id.name, "inputs": list(i.inputs), "outputs": list(i.outputs),
                 "node_id": i.node_id}
                for i in self.instructions],
            "outputs": [
                {"type": o.type_id.name, "name": o.name, "address": o.address,
                 "node_id": o.node_id, "layer": o.layer}
                for o in self.outputs],
        }

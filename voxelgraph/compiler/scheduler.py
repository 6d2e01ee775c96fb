"""
Voxel Graph Compiler: Scheduler
===============================
Maps an ExpandedGraph → Schedule: the nodes left to evaluate, in order, with
a buffer address for every value.

Three passes:

  MERGE: nodes with the same kind, the same (already merged) inputs and the
           same params compute the same thing, the later ones are replaced by
           the first. Works in creation order, which is an evaluation order,
           so duplicated chains collapse from their inputs up. Resources such
           as noise generators are compared by identity.

  PRUNE: only nodes the outputs depend on are kept.

  ALLOCATE: one address per used input, per distinct constant and per output
           port of each kept node. Output nodes do not get an address of
           their own, they read the address of the value they receive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import logging

from ..core.GraphPrimitives import PortLocation
from ..core.NodeNetwork import INPUT_NODE_TYPES, OUTPUT_NODE_TYPES
from ..core.Types import NodeTypeID
from .ir import ExpandedGraph, ExpandedNode, ValueRef

logger = logging.getLogger(__name__)

_SINK_TYPES = OUTPUT_NODE_TYPES + (NodeTypeID.SDF_PREVIEW,)


# ── Schedule ─────────────────────────────────────────────────────────────────

@dataclass
class Schedule:
    # Nodes turning into instructions, in evaluation order
    order: List[ExpandedNode] = field(default_factory=list)
    outputs: List[ExpandedNode] = field(default_factory=list)
    input_addresses: Dict[NodeTypeID, int] = field(default_factory=dict)
    constant_addresses: Dict[float, int] = field(default_factory=dict)
    port_addresses: Dict[PortLocation, int] = field(default_factory=dict)
    top_level_values: Dict[int, List[ValueRef]] = field(default_factory=dict)
    buffer_count: int = 0
    expanded_nodes_count: int = 0
    merged_count: int = 0

    def address_of(self, ref: ValueRef) -> Optional[int]:
        if isinstance(ref, PortLocation):
            return self.port_addresses.get(ref)
        return self.constant_addresses.get(ref)

    def get_constants(self) -> Dict[int, float]:
        return {address: value for value, address in self.constant_addresses.items()}


def _param_key(value: Any) -> Any:
    if hasattr(value, "hash_state"):
        return ("resource", id(value))
    if isinstance(value, list):
        return tuple(value)
    return value


# ── Scheduler ────────────────────────────────────────────────────────────────

class Scheduler:
    def __init__(self, graph: ExpandedGraph):
        self.graph = graph
        self._canonical: Dict[int, int] = {}

    def build(self) -> Schedule:
        schedule = Schedule()
        schedule.merged_count = self._merge_equivalent()
        live = self._prune()
        self._allocate(schedule, live)
        schedule.top_level_values = {
            node_id: [self._canonical_ref(ref) for ref in refs]
            for node_id, refs in self.graph.top_level_values.items()
        }
        logger.debug(f"Scheduled {len(schedule.order)} instructions, {schedule.buffer_count} buffers, "
                     f"{schedule.merged_count} merged nodes")
        return schedule

    # ── MERGE ────────────────────────────────────────────────────────────

    def _canonical_ref(self, ref: ValueRef) -> ValueRef:
        if isinstance(ref, PortLocation):
            return PortLocation(self._canonical.get(ref.node_id, ref.node_id), ref.port_index)
        return ref

    def _merge_equivalent(self) -> int:
        seen: Dict[tuple, int] = {}
        merged = 0
        for node in self.graph.nodes.values():
            node.inputs = [self._canonical_ref(ref) for ref in node.inputs]
            if node.type_id in INPUT_NODE_TYPES or node.type_id in _SINK_TYPES:
                self._canonical[node.id] = node.id
                continue

            key = (
                node.type_id,
                tuple(("port", r.node_id, r.port_index) if isinstance(r, PortLocation) else ("constant", r)
                      for r in node.inputs),
                tuple(_param_key(p) for p in node.params),
            )
            existing = seen.get(key)
            if existing is None:
                seen[key] = node.id
                self._canonical[node.id] = node.id
            else:
                self._canonical[node.id] = existing
                merged += 1
        return merged

    # ── PRUNE ────────────────────────────────────────────────────────────

    def _prune(self) -> List[ExpandedNode]:
        reachable: Set[int] = set()
        stack = list(self.graph.outputs)
        while stack:
            node_id = stack.pop()
            if node_id in reachable:
                continue
            reachable.add(node_id)
            for ref in self.graph.nodes[node_id].input_ports():
                stack.append(ref.node_id)
        return [node for node in self.graph.nodes.values() if node.id in reachable]

    # ── ALLOCATE ─────────────────────────────────────────────────────────

    def _allocate(self, schedule: Schedule, live: List[ExpandedNode]):
        address = 0

        for node in live:
            if node.type_id in INPUT_NODE_TYPES:
                schedule.input_addresses[node.type_id] = address
                schedule.port_addresses[PortLocation(node.id, 0)] = address
                address += 1

        for node in live:
            for ref in node.inputs:
                if not isinstance(ref, PortLocation) and ref not in schedule.constant_addresses:
                    schedule.constant_addresses[ref] = address
                    address += 1

        for node in live:
            if node.type_id in INPUT_NODE_TYPES:
                continue
            if node.type_id in _SINK_TYPES:
                schedule.outputs.append(node)
                continue
            schedule.order.append(node)
            for port_index in range(node.output_count):
                schedule.port_addresses[PortLocation(node.id, port_index)] = address
                address += 1

        schedule.buffer_count = address
        schedule.expanded_nodes_count = len(live)


def schedule(graph: ExpandedGraph) -> Schedule:
    return Scheduler(graph).build()

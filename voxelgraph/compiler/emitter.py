"""
Voxel Graph Compiler: Emitter
=============================
Turns a Schedule into the immutable Program the runtime executes.

Debug programs keep, for each instruction, the id of the top-level node it
comes from, which is what profiling and the editor's inspectors report.
Release programs leave it out. Both contain the same instructions.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List

from ..core.GraphPrimitives import PortLocation
from ..core.Types import NodeTypeID
from .ir import Instruction, Program, ProgramOutput
from .scheduler import Schedule


def _instructions(schedule: Schedule, debug: bool) -> List[Instruction]:
    instructions = []
    for node in schedule.order:
        inputs = []
        for ref in node.inputs:
            address = schedule.address_of(ref)
            assert(address is not None), f"Input {ref!r} of expanded node {node.id} has no buffer"
            inputs.append(address)
        outputs = tuple(schedule.port_addresses[PortLocation(node.id, i)] for i in range(node.output_count))
        instructions.append(Instruction(
            node.type_id, tuple(inputs), outputs, tuple(node.params),
            node.origin if debug else None))
    return instructions


def _outputs(schedule: Schedule) -> List[ProgramOutput]:
    outputs = []
    for node in schedule.outputs:
        address = schedule.address_of(node.inputs[0])
        assert(address is not None), f"Output node {node.origin} has no buffer"
        layer = node.params[0] if node.type_id == NodeTypeID.OUTPUT_WEIGHT else -1
        outputs.append(ProgramOutput(node.type_id, node.name, address, node.origin, layer))
    return outputs


def _port_addresses(schedule: Schedule) -> Dict[PortLocation, int]:
    addresses = {}
    for node_id, refs in schedule.top_level_values.items():
        for port_index, ref in enumerate(refs):
            address = schedule.address_of(ref)
            if address is not None:
                addresses[PortLocation(node_id, port_index)] = address
    return addresses


def emit(schedule: Schedule, debug: bool = False) -> Program:
    return Program(
        instructions=tuple(_instructions(schedule, debug)),
        buffer_count=schedule.buffer_count,
        constants=MappingProxyType(schedule.get_constants()),
        input_addresses=MappingProxyType(dict(schedule.input_addresses)),
        outputs=tuple(_outputs(schedule)),
        port_addresses=MappingProxyType(_port_addresses(schedule)),
        debug=debug,
        expanded_nodes_count=schedule.expanded_nodes_count,
    )

"""
Graph serializer.

Converts GraphFunction / Program / Interval objects into JSON-safe dicts
for the editor.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from voxelgraph.compiler.ir import Program
from voxelgraph.core.GraphPrimitives import PortLocation
from voxelgraph.core.NodeNetwork import GraphFunction
from voxelgraph.core.Types import CompilationResult
from voxelgraph.runtime.range_utility import Interval

# Wire shapes
# SerializedNode keys: id, type, name, inputs, outputs, params, position
# SerializedConnection keys: src_node_id, src_port, dst_node_id, dst_port
# SerializedGraph keys: name, nodes, connections, inputs, outputs, hash


def _json_float(value: float) -> Optional[float]:
    """JSON has no infinity or NaN: unbounded values are sent as null."""
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def serialize_graph(function: GraphFunction, positions: Dict[int, Dict[str, float]]) -> Dict[str, Any]:
    data = function.to_dict()
    for node in data["nodes"]:
        node["position"] = positions.get(node["id"])
    data["hash"] = f"{function.get_output_graph_hash():016x}"
    return data


def serialize_compilation_result(result: CompilationResult, program: Optional[Program]) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "success": result.success,
        "node_id": result.node_id,
        "message": result.message,
        "expanded_nodes_count": result.expanded_nodes_count,
    }
    if result.success and program is not None:
        program_data = program.to_dict()
        program_data["constants"] = {a: _json_float(v) for a, v in program_data["constants"].items()}
        data["program"] = program_data
    return data


def serialize_interval(interval: Interval) -> Dict[str, Optional[float]]:
    return {"min": _json_float(interval.min), "max": _json_float(interval.max)}


def serialize_port_ranges(ranges: Dict[PortLocation, Interval]) -> List[Dict[str, Any]]:
    result = []
    for location in sorted(ranges.keys()):
        entry = {"node_id": location.node_id, "port": location.port_index}
        entry.update(serialize_interval(ranges[location]))
        result.append(entry)
    return result

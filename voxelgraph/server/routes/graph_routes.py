"""
Graph REST routes.

All routes are mounted under /api by main.py.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from logging import getLogger

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel

from voxelgraph.core.Types import Channel, NodeTypeID
from voxelgraph.expression.parser import get_variable_names, parse
from voxelgraph.noderegistry.NodeRegistry import NodeTypeDB
from voxelgraph.server.serializers.graph_serializer import (
    serialize_compilation_result, serialize_graph, serialize_port_ranges,
)
from voxelgraph.server.state import graph_state

logger = getLogger(__name__)

router = APIRouter()


def _require_node(node_id: int) -> None:
    if not graph_state.function.has_node(node_id):
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")


# ── GET /node-types ───────────────────────────────────────────────────────────

@router.get("/node-types")
async def list_node_types() -> List[Dict[str, Any]]:
    return [node_type.to_dict() for node_type in NodeTypeDB.get_types()]


# ── GET /graph ────────────────────────────────────────────────────────────────

@router.get("/graph")
async def get_graph() -> Dict[str, Any]:
    with graph_state.lock:
        return serialize_graph(graph_state.function, graph_state.positions)


# ── POST /graph/nodes ─────────────────────────────────────────────────────────

class CreateNodeBody(BaseModel):
    type: str
    name: Optional[str] = None
    position: Optional[Dict[str, float]] = None


@router.post("/graph/nodes", status_code=201)
async def create_node(body: CreateNodeBody) -> Dict[str, Any]:
    try:
        node_type = NodeTypeDB.find_type_by_name(body.type)
        with graph_state.lock:
            node_id = graph_state.function.create_node(node_type.type_id)
            if body.name:
                graph_state.function.set_node_name(node_id, body.name)
            if body.position:
                graph_state.set_position(node_id, body.position["x"], body.position["y"])
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"id": node_id, "type": node_type.type_id.name, "name": body.name or ""}


# ── DELETE /graph/nodes/:id ───────────────────────────────────────────────────

@router.delete("/graph/nodes/{node_id}", status_code=204)
async def delete_node(node_id: int) -> Response:
    _require_node(node_id)
    graph_state.remove_node(node_id)
    return Response(status_code=204)


# ── POST /graph/connections ───────────────────────────────────────────────────

class ConnectionBody(BaseModel):
    src_node_id: int
    src_port: int
    dst_node_id: int
    dst_port: int


@router.post("/graph/connections", status_code=201)
async def create_connection(body: ConnectionBody) -> Dict[str, Any]:
    _require_node(body.src_node_id)
    _require_node(body.dst_node_id)
    with graph_state.lock:
        g = graph_state.function
        if not g.can_connect(body.src_node_id, body.src_port, body.dst_node_id, body.dst_port):
            raise HTTPException(status_code=400, detail="Connection is not allowed")
        g.add_connection(body.src_node_id, body.src_port, body.dst_node_id, body.dst_port)
    return {"ok": True}


# ── DELETE /graph/connections ─────────────────────────────────────────────────

@router.delete("/graph/connections", status_code=204)
async def delete_connection(body: ConnectionBody) -> Response:
    with graph_state.lock:
        removed = graph_state.function.remove_connection(
            body.src_node_id, body.src_port, body.dst_node_id, body.dst_port)
    if not removed:
        raise HTTPException(status_code=404, detail="Connection not found")
    return Response(status_code=204)


# ── PUT /graph/nodes/:id/params/:name ─────────────────────────────────────────

class ValueBody(BaseModel):
    value: Any


@router.put("/graph/nodes/{node_id}/params/{name}")
async def set_param(node_id: int, name: str, body: ValueBody) -> Dict[str, Any]:
    _require_node(node_id)
    with graph_state.lock:
        g = graph_state.function
        # Parsed before being stored, a rejected expression leaves the node unchanged
        result = None
        if g.get_node_type_id(node_id) == NodeTypeID.EXPRESSION and isinstance(body.value, str):
            result = parse(body.value, NodeTypeDB.get_expression_functions())
            if not result.ok:
                raise HTTPException(status_code=400, detail={
                    "error": result.error.id.name, "position": result.error.position})

        try:
            g.set_node_param(node_id, name, body.value)
        except (ValueError, KeyError, IndexError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        # Expression nodes get one input per variable, like the editor does after typing
        if result is not None:
            g.set_expression_node_inputs(node_id, get_variable_names(result.root))
        return {"ok": True, "node": g.get_node(node_id).to_dict()}


# ── PUT /graph/nodes/:id/inputs/:index ────────────────────────────────────────

class DefaultInputBody(BaseModel):
    value: float


@router.put("/graph/nodes/{node_id}/inputs/{index}")
async def set_default_input(node_id: int, index: int, body: DefaultInputBody) -> Dict[str, Any]:
    _require_node(node_id)
    with graph_state.lock:
        try:
            graph_state.function.set_node_default_input(node_id, index, body.value)
        except (ValueError, IndexError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    return {"ok": True}


# ── POST /compile ─────────────────────────────────────────────────────────────

class CompileBody(BaseModel):
    debug: bool = False


@router.post("/compile")
async def compile_graph(body: CompileBody) -> Dict[str, Any]:
    result = graph_state.compile(body.debug)
    program = graph_state.generator.get_program() if result.success else None
    return serialize_compilation_result(result, program)


# ── POST /generate/single ─────────────────────────────────────────────────────

class GenerateSingleBody(BaseModel):
    position: List[int]
    channel: str = "SDF"


@router.post("/generate/single")
async def generate_single(body: GenerateSingleBody) -> Dict[str, Any]:
    if not graph_state.generator.is_good():
        raise HTTPException(status_code=400, detail="Graph is not compiled")
    try:
        channel = Channel[body.channel.upper()]
        value = graph_state.generator.generate_single(body.position, channel)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"value": value}


# ── POST /analyze-range ───────────────────────────────────────────────────────

class AnalyzeRangeBody(BaseModel):
    min: List[float]
    max: List[float]


@router.post("/analyze-range")
async def analyze_range(body: AnalyzeRangeBody) -> List[Dict[str, Any]]:
    if len(body.min) != 3 or len(body.max) != 3:
        raise HTTPException(status_code=400, detail="min and max must have 3 components")
    if not graph_state.generator.is_good():
        raise HTTPException(status_code=400, detail="Graph is not compiled")
    ranges = graph_state.generator.debug_analyze_range(body.min, body.max)
    return serialize_port_ranges(ranges)

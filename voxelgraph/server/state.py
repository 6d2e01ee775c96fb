"""
GraphState: the generator edited by the HTTP API.

Starts with the plane preset compiled so the editor has something to display
on first load. Route handlers mutate the graph under `lock`.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional

from logging import getLogger

from voxelgraph.core.NodeNetwork import GraphFunction
from voxelgraph.core.Types import CompilationResult
from voxelgraph.generator.VoxelGeneratorGraph import VoxelGeneratorGraph

logger = getLogger(__name__)


class GraphState:
    """Holds one generator and the UI layout positions of its nodes."""

    def __init__(self) -> None:
        self.generator = VoxelGeneratorGraph()
        self.lock = threading.RLock()
        # UI layout positions: node_id → {x, y}
        self.positions: Dict[int, Dict[str, float]] = {}
        self.last_result: Optional[CompilationResult] = None
        self.reset()

    @property
    def function(self) -> GraphFunction:
        return self.generator.get_main_function()

    def reset(self) -> None:
        with self.lock:
            self.generator.load_plane_preset()
            self.positions = {}
            for i, node_id in enumerate(self.function.get_node_ids()):
                self.positions[node_id] = {"x": 80.0 + 260.0 * i, "y": 180.0}
            self.last_result = self.generator.compile()

    def set_position(self, node_id: int, x: float, y: float) -> None:
        self.positions[node_id] = {"x": float(x), "y": float(y)}

    def remove_node(self, node_id: int) -> None:
        with self.lock:
            self.function.remove_node(node_id)
            self.positions.pop(node_id, None)

    def compile(self, debug: bool = False) -> CompilationResult:
        with self.lock:
            self.last_result = self.generator.compile(debug)
            return self.last_result


graph_state = GraphState()

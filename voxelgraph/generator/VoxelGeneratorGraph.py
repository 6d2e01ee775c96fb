from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple
import threading
import time

from logging import getLogger

import numpy as np

from ..compiler import compile_program
from ..compiler.ir import Program, ProgramOutput
from ..core.GraphPrimitives import PortLocation
from ..core.NodeNetwork import GraphFunction
from ..core.Types import Channel, CompilationResult, NodeTypeID
from ..defaults import (
    DEFAULT_PLANE_HEIGHT, DEFAULT_PROFILING_BLOCK_SIZE, DEFAULT_PROFILING_ITERATIONS, DEFAULT_SUBDIVISION_SIZE,
    DEFAULT_USE_OPTIMIZED_EXECUTION_MAP, DEFAULT_USE_SUBDIVISION, MAX_WEIGHT_LAYERS, MIN_SUBDIVISION_SIZE,
    PACKED_WEIGHT_SLOTS,
)
from ..runtime import Executor
from ..runtime.Executor import State
from ..runtime.RangeAnalysis import analyze_range, build_execution_map, get_port_ranges
from ..runtime.range_utility import Interval
from .VoxelBuffer import VoxelBuffer, encode_indices_to_packed_u16, encode_weights_to_packed_u16

logger = getLogger(__name__)

_thread_local = threading.local()

# Outputs written into blocks. Custom outputs and previews are only read back
# through generate_single_outputs.
_BLOCK_OUTPUT_TYPES = (NodeTypeID.OUTPUT_SDF, NodeTypeID.OUTPUT_TYPE, NodeTypeID.OUTPUT_WEIGHT)

_CHANNEL_OUTPUTS = {
    Channel.SDF: NodeTypeID.OUTPUT_SDF,
    Channel.TYPE: NodeTypeID.OUTPUT_TYPE,
}


class NodeProfilingInfo(NamedTuple):
    node_id: int
    microseconds: float


def _get_thread_state() -> State:
    state = getattr(_thread_local, "state", None)
    if state is None:
        state = State()
        _thread_local.state = state
    return state


def _as_position(position: Sequence[int]) -> Tuple[int, int, int]:
    if len(position) != 3:
        raise ValueError(f"Expected a 3D position, got {position!r}")
    return int(position[0]), int(position[1]), int(position[2])


class VoxelGeneratorGraph:
    """
    Generates voxels from a node graph.

    The graph is edited through `get_main_function()` and must be compiled
    before generating. A failed compilation keeps the previous program, so a
    generator that compiled once stays usable while its graph is being edited.
    Generation can run from several threads, each thread uses its own State.
    """

    def __init__(self):
        self._main_function = GraphFunction("main")
        self._program: Optional[Program] = None
        self._last_result: Optional[CompilationResult] = None
        self._use_optimized_execution_map = DEFAULT_USE_OPTIMIZED_EXECUTION_MAP
        self._use_subdivision = DEFAULT_USE_SUBDIVISION
        self._subdivision_size = DEFAULT_SUBDIVISION_SIZE

    # ── Graph ────────────────────────────────────────────────────────────

    def get_main_function(self) -> GraphFunction:
        return self._main_function

    def load_plane_preset(self, height: float = DEFAULT_PLANE_HEIGHT):
        """Replaces the graph with a flat ground: Y --- Plane --- OutputSDF."""
        g = self._main_function
        g.clear()
        n_y = g.create_node(NodeTypeID.INPUT_Y)
        n_plane = g.create_node(NodeTypeID.SDF_PLANE)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.set_node_default_input(n_plane, 1, height)
        g.add_connection(n_y, 0, n_plane, 0)
        g.add_connection(n_plane, 0, n_out, 0)

    def get_output_graph_hash(self) -> int:
        return self._main_function.get_output_graph_hash()

    # ── Compilation ──────────────────────────────────────────────────────

    def compile(self, debug: bool = False) -> CompilationResult:
        result, program = compile_program(self._main_function, debug)
        self._last_result = result
        if result.success:
            self._program = program
        return result

    def is_good(self) -> bool:
        return self._program is not None

    def get_program(self) -> Optional[Program]:
        return self._program

    def get_last_compilation_result(self) -> Optional[CompilationResult]:
        return self._last_result

    # ── Settings ─────────────────────────────────────────────────────────

    def set_use_optimized_execution_map(self, enabled: bool):
        self._use_optimized_execution_map = bool(enabled)

    def is_using_optimized_execution_map(self) -> bool:
        return self._use_optimized_execution_map

    def set_use_subdivision(self, enabled: bool):
        self._use_subdivision = bool(enabled)

    def is_using_subdivision(self) -> bool:
        return self._use_subdivision

    def set_subdivision_size(self, size: int):
        if int(size) < MIN_SUBDIVISION_SIZE:
            raise ValueError(f"Subdivision size must be at least {MIN_SUBDIVISION_SIZE}, got {size}")
        self._subdivision_size = int(size)

    def get_subdivision_size(self) -> int:
        return self._subdivision_size

    # ── Evaluation ───────────────────────────────────────────────────────

    @staticmethod
    def get_last_state_from_current_thread() -> State:
        """State used by the last generation on this thread, to read intermediate buffers."""
        return _get_thread_state()

    def try_get_output_port_address(self, port_location: Sequence[int]) -> Optional[int]:
        program = self._program
        if program is None:
            return None
        return program.port_addresses.get(PortLocation(int(port_location[0]), int(port_location[1])))

    def _get_ready_program(self) -> Optional[Program]:
        program = self._program
        if program is None:
            logger.warning("Generator graph is not compiled")
        return program

    def _run(self, program: Program, xs, ys, zs, sdf=None, steps=None) -> State:
        state = _get_thread_state()
        state.prepare(program, len(xs))
        state.set_input(NodeTypeID.INPUT_X, xs)
        state.set_input(NodeTypeID.INPUT_Y, ys)
        state.set_input(NodeTypeID.INPUT_Z, zs)
        state.set_input(NodeTypeID.INPUT_SDF, 0.0 if sdf is None else sdf)
        Executor.execute(state, steps)
        return state

    @staticmethod
    def _get_channel_output(program: Program, channel: Channel) -> Optional[ProgramOutput]:
        type_id = _CHANNEL_OUTPUTS.get(Channel(channel))
        if type_id is None:
            raise ValueError(f"Channel {Channel(channel).name} cannot be generated as a single value")
        return program.get_output(type_id)

    def generate_single(self, position: Sequence[int], channel: Channel = Channel.SDF) -> float:
        program = self._get_ready_program()
        if program is None:
            return 0.0
        output = self._get_channel_output(program, channel)
        x, y, z = _as_position(position)
        state = self._run(program, [x], [y], [z])
        if output is None:
            return 0.0
        return float(state.buffers[output.address][0])

    def generate_single_outputs(self, position: Sequence[int]) -> Dict[int, float]:
        """Value of every output of the program, keyed by output node id."""
        program = self._get_ready_program()
        if program is None:
            return {}
        x, y, z = _as_position(position)
        state = self._run(program, [x], [y], [z])
        return {output.node_id: float(state.buffers[output.address][0]) for output in program.outputs}

    def generate_series(self, xs, ys, zs, channel: Channel = Channel.SDF) -> np.ndarray:
        """Evaluates arbitrary positions at once."""
        xs = np.asarray(xs, dtype=np.float32).reshape(-1)
        ys = np.asarray(ys, dtype=np.float32).reshape(-1)
        zs = np.asarray(zs, dtype=np.float32).reshape(-1)
        if not len(xs) == len(ys) == len(zs):
            raise ValueError(f"Position arrays have different lengths: {len(xs)}, {len(ys)}, {len(zs)}")
        if len(xs) == 0:
            return np.zeros(0, dtype=np.float32)
        program = self._get_ready_program()
        if program is None:
            return np.zeros(len(xs), dtype=np.float32)
        output = self._get_channel_output(program, channel)
        state = self._run(program, xs, ys, zs)
        if output is None:
            return np.zeros(len(xs), dtype=np.float32)
        return state.buffers[output.address].copy()

    # ── Blocks ───────────────────────────────────────────────────────────

    def generate_block(self, buffer: VoxelBuffer, origin: Sequence[int] = (0, 0, 0), lod: int = 0):
        """
        Fills `buffer` with the block starting at `origin`. Voxel (i, j, k)
        samples position origin + (i, j, k) * 2^lod.
        """
        program = self._get_ready_program()
        if program is None:
            return
        origin = _as_position(origin)
        size = buffer.get_size()
        stride = 1 << int(lod)

        outputs = [o for o in program.outputs if o.type_id in _BLOCK_OUTPUT_TYPES]
        if not outputs:
            return
        results = {o.address: np.zeros(size, dtype=np.float32) for o in outputs}
        output_addresses = list(results.keys())

        sdf_input = None
        if program.uses_input(NodeTypeID.INPUT_SDF):
            sdf_input = buffer.get_sdf_values().astype(np.float32)

        sub_size = self._subdivision_size if self._use_subdivision else max(size)
        maps_built = 0

        for bx in range(0, size[0], sub_size):
            for by in range(0, size[1], sub_size):
                for bz in range(0, size[2], sub_size):
                    ex = min(bx + sub_size, size[0])
                    ey = min(by + sub_size, size[1])
                    ez = min(bz + sub_size, size[2])
                    region = (slice(bx, ex), slice(by, ey), slice(bz, ez))

                    xs = origin[0] + np.arange(bx, ex, dtype=np.float32) * stride
                    ys = origin[1] + np.arange(by, ey, dtype=np.float32) * stride
                    zs = origin[2] + np.arange(bz, ez, dtype=np.float32) * stride
                    gx, gy, gz = np.meshgrid(xs, ys, zs, indexing="ij")
                    sdf = None if sdf_input is None else sdf_input[region]

                    steps = None
                    if self._use_optimized_execution_map:
                        input_ranges = {
                            NodeTypeID.INPUT_X: Interval(xs[0], xs[-1]),
                            NodeTypeID.INPUT_Y: Interval(ys[0], ys[-1]),
                            NodeTypeID.INPUT_Z: Interval(zs[0], zs[-1]),
                        }
                        if sdf is not None:
                            input_ranges[NodeTypeID.INPUT_SDF] = Interval(float(sdf.min()), float(sdf.max()))
                        ranges = analyze_range(program, input_ranges)
                        steps = build_execution_map(program, ranges, output_addresses).steps
                        maps_built += 1

                    state = self._run(program, gx.reshape(-1), gy.reshape(-1), gz.reshape(-1),
                                      None if sdf is None else sdf.reshape(-1), steps)
                    shape = (ex - bx, ey - by, ez - bz)
                    for address, result in results.items():
                        result[region] = state.buffers[address].reshape(shape)

        logger.debug(f"Generated block at {origin} lod {lod}, size {size}, {maps_built} execution maps")
        self._write_outputs(buffer, outputs, results)

    def _write_outputs(self, buffer: VoxelBuffer, outputs: List[ProgramOutput], results: Dict[int, np.ndarray]):
        weights = []
        for output in outputs:
            values = results[output.address]
            if output.type_id == NodeTypeID.OUTPUT_SDF:
                buffer.set_sdf_values(values)
            elif output.type_id == NodeTypeID.OUTPUT_TYPE:
                types = buffer.get_channel_array(Channel.TYPE)
                limit = np.iinfo(types.dtype).max
                types[...] = np.clip(np.nan_to_num(values), 0, limit).astype(types.dtype)
            else:
                weights.append((output.layer, values))
        if weights:
            _write_weights(buffer, weights)

    # ── Debug ────────────────────────────────────────────────────────────

    def debug_analyze_range(self, min_pos: Sequence[float], max_pos: Sequence[float]) -> Dict[PortLocation, Interval]:
        """Interval of every node output of the graph over a box."""
        program = self._get_ready_program()
        if program is None:
            return {}
        input_ranges = {
            NodeTypeID.INPUT_X: Interval(min_pos[0], max_pos[0]),
            NodeTypeID.INPUT_Y: Interval(min_pos[1], max_pos[1]),
            NodeTypeID.INPUT_Z: Interval(min_pos[2], max_pos[2]),
        }
        return get_port_ranges(program, analyze_range(program, input_ranges))

    def debug_measure_microseconds_per_voxel(self, singular: bool = False,
                                             iterations: int = DEFAULT_PROFILING_ITERATIONS
                                             ) -> Tuple[float, List[NodeProfilingInfo]]:
        """
        Average time to generate one voxel, and time spent per node when the
        program was compiled in debug mode. Singular mode evaluates voxels
        one by one like generate_single does.
        """
        program = self._get_ready_program()
        if program is None:
            return 0.0, []

        if singular:
            side = max(DEFAULT_PROFILING_BLOCK_SIZE // 4, 1)
        else:
            side = DEFAULT_PROFILING_BLOCK_SIZE
        coords = np.arange(side, dtype=np.float32)
        gx, gy, gz = (a.reshape(-1) for a in np.meshgrid(coords, coords, coords, indexing="ij"))
        voxel_count = len(gx) * iterations

        state = _get_thread_state()
        per_node: Dict[Optional[int], float] = {}
        state.profiling = True
        try:
            start = time.perf_counter()
            for _ in range(iterations):
                if singular:
                    for i in range(len(gx)):
                        self._run(program, gx[i:i + 1], gy[i:i + 1], gz[i:i + 1])
                        for node_id, seconds in state.get_profiling_by_node().items():
                            per_node[node_id] = per_node.get(node_id, 0.0) + seconds
                else:
                    self._run(program, gx, gy, gz)
                    for node_id, seconds in state.get_profiling_by_node().items():
                        per_node[node_id] = per_node.get(node_id, 0.0) + seconds
            elapsed = time.perf_counter() - start
        finally:
            state.profiling = False

        infos = [NodeProfilingInfo(node_id, seconds * 1e6 / voxel_count)
                 for node_id, seconds in sorted(per_node.items(), key=lambda item: -item[1])
                 if node_id is not None]
        return elapsed * 1e6 / voxel_count, infos


def _write_weights(buffer: VoxelBuffer, weights: List[Tuple[int, np.ndarray]]):
    """
    Packs weight outputs into the INDICES and WEIGHTS channels: the 4
    strongest layers of each voxel, 4 bits of weight each.
    """
    weights = sorted(weights, key=lambda item: item[0])
    layers = [layer for layer, _ in weights]
    values = np.stack([(np.clip(np.nan_to_num(w), 0.0, 1.0) * 255.0).astype(np.uint8) for _, w in weights])
    size = values.shape[1:]

    if len(layers) > PACKED_WEIGHT_SLOTS:
        order = np.argsort(-values.astype(np.int16), axis=0, kind="stable")[:PACKED_WEIGHT_SLOTS]
        indices = np.asarray(layers, dtype=np.uint16)[order]
        packed_weights = np.take_along_axis(values, order, axis=0)
    else:
        unused = [layer for layer in range(MAX_WEIGHT_LAYERS) if layer not in layers]
        padding = PACKED_WEIGHT_SLOTS - len(layers)
        slot_layers = layers + unused[:padding]
        indices = np.stack([np.full(size, layer, dtype=np.uint16) for layer in slot_layers])
        packed_weights = np.concatenate([values, np.zeros((padding,) + size, dtype=np.uint8)])

    buffer.get_channel_array(Channel.INDICES)[...] = encode_indices_to_packed_u16(*indices)
    buffer.get_channel_array(Channel.WEIGHTS)[...] = encode_weights_to_packed_u16(*packed_weights)

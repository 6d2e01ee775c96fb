from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, TYPE_CHECKING
from enum import Enum, auto
import time

from logging import getLogger

import numpy as np

from ..core.Types import NodeTypeID
from ..noderegistry.NodeRegistry import NodeTypeDB

if TYPE_CHECKING:
    from ..compiler.ir import Program

logger = getLogger(__name__)

BUFFER_DTYPE = np.float32


class StepMode(Enum):
    EXECUTE = auto()    # Run the kernel of the instruction
    COPY = auto()       # Output equals one of the inputs in this block
    CONSTANT = auto()   # Output takes a single value in this block


class ExecutionStep(NamedTuple):
    instruction_index: int
    mode: StepMode = StepMode.EXECUTE
    # COPY: index of the input forwarded to the output
    source: int = 0
    # CONSTANT: one value per output
    values: tuple = ()


class ProfilingEntry(NamedTuple):
    instruction_index: int
    node_id: Optional[int]
    type_id: NodeTypeID
    seconds: float


class State:
    """
    Buffers of one evaluation context, one per program address.

    A State is reused between calls made by the same thread: buffers are only
    reallocated when the program or the number of samples changes. It must
    not be used by two evaluations at the same time.
    """

    def __init__(self):
        self.program: Optional['Program'] = None
        self.buffers: List[np.ndarray] = []
        self.buffer_size = 0
        self.profiling = False
        self.profiling_info: List[ProfilingEntry] = []
        self._kernels: List[Callable] = []

    def prepare(self, program: 'Program', buffer_size: int):
        assert(buffer_size > 0), "Buffers need at least one sample"
        if program is not self.program:
            self.program = program
            self._kernels = [NodeTypeDB.get_type(i.type_id).kernel for i in program.instructions]
            self.buffers = []
        if len(self.buffers) != program.buffer_count or buffer_size != self.buffer_size:
            self.buffers = [np.zeros(buffer_size, dtype=BUFFER_DTYPE) for _ in range(program.buffer_count)]
            self.buffer_size = buffer_size
            for address, value in program.constants.items():
                self.buffers[address].fill(value)
        self.profiling_info = []

    def set_input(self, type_id: NodeTypeID, values: Any):
        address = self.program.get_input_address(type_id)
        if address is None:
            return
        np.copyto(self.buffers[address], values, casting="unsafe")

    def get_buffer(self, address: int) -> np.ndarray:
        if not 0 <= address < len(self.buffers):
            raise ValueError(f"Buffer address {address} out of range ({len(self.buffers)} buffers)")
        return self.buffers[address]

    def get_kernel(self, instruction_index: int) -> Callable:
        return self._kernels[instruction_index]

    def get_profiling_by_node(self) -> Dict[Optional[int], float]:
        """Seconds spent per originating node."""
        totals: Dict[Optional[int], float] = {}
        for entry in self.profiling_info:
            totals[entry.node_id] = totals.get(entry.node_id, 0.0) + entry.seconds
        return totals


def _run_instruction(state: State, index: int):
    instruction = state.program.instructions[index]
    buffers = state.buffers
    inputs = [buffers[a] for a in instruction.inputs]
    results = state.get_kernel(index)(inputs, instruction.params)
    if len(instruction.outputs) == 1:
        buffers[instruction.outputs[0]][...] = results
    else:
        for address, result in zip(instruction.outputs, results):
            buffers[address][...] = result


def _run_step(state: State, step: ExecutionStep):
    if step.mode == StepMode.EXECUTE:
        _run_instruction(state, step.instruction_index)
        return
    instruction = state.program.instructions[step.instruction_index]
    if step.mode == StepMode.COPY:
        state.buffers[instruction.outputs[0]][...] = state.buffers[instruction.inputs[step.source]]
    else:
        for address, value in zip(instruction.outputs, step.values):
            state.buffers[address].fill(value)


def execute(state: State, steps: Optional[Sequence[ExecutionStep]] = None):
    """
    Runs the prepared program of `state`, whole, or only the given steps.
    Each instruction runs over all samples before the next one starts.
    """
    program = state.program
    assert(program is not None), "State must be prepared with a program before execution"
    if steps is None:
        steps = [ExecutionStep(i) for i in range(len(program.instructions))]

    with np.errstate(all="ignore"):
        if not state.profiling:
            for step in steps:
                _run_step(state, step)
            return

        for step in steps:
            start = time.perf_counter()
            _run_step(state, step)
            elapsed = time.perf_counter() - start
            instruction = program.instructions[step.instruction_index]
            state.profiling_info.append(
                ProfilingEntry(step.instruction_index, instruction.node_id, instruction.type_id, elapsed))

"""
Range analysis of compiled programs.

Given an interval for each input (the bounds of a block), every address of a
program gets an interval holding all values it can take inside the block.
An ExecutionMap then lists the instructions the requested outputs need,
walking the program backwards from them:

  - an instruction whose outputs are known to be a single value is replaced
    by a constant fill and its inputs are not needed. The fill value comes
    from the instruction kernel run on float32 samples, so it is the value
    plain execution would produce,
  - an instruction whose output equals one of its inputs in the block (a min
    where one side is always lower, a saturated smooth union...) becomes a
    copy, and only that input is needed,
  - anything else executes normally.
"""
from dataclasses import dataclass
from itertools import product
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

from logging import getLogger

import numpy as np

from ..core.Types import NodeTypeID
from ..noderegistry.NodeRegistry import NodeTypeDB
from .Executor import BUFFER_DTYPE, ExecutionStep, StepMode
from .range_utility import Interval

if TYPE_CHECKING:
    from ..compiler.ir import Program

logger = getLogger(__name__)


def analyze_range(program: 'Program', input_ranges: Mapping[NodeTypeID, Interval]) -> List[Interval]:
    """Interval of every address. Inputs without a given range are unbounded."""
    ranges = [Interval.infinite() for _ in range(program.buffer_count)]
    for type_id, address in program.input_addresses.items():
        ranges[address] = input_ranges.get(type_id, Interval.infinite())
    for address, value in program.constants.items():
        ranges[address] = Interval.from_single_value(value)

    for instruction in program.instructions:
        node_type = NodeTypeDB.get_type(instruction.type_id)
        assert(node_type.range_rule is not None), f"{node_type.name} has no range rule"
        result = node_type.range_rule([ranges[a] for a in instruction.inputs], instruction.params)
        if isinstance(result, Interval):
            result = (result,)
        assert(len(result) == len(instruction.outputs)), \
            f"Range rule of {node_type.name} returned {len(result)} intervals for {len(instruction.outputs)} outputs"
        for address, interval in zip(instruction.outputs, result):
            ranges[address] = interval
    return ranges


def _run_kernel(instruction, samples: List[np.ndarray]) -> List[np.ndarray]:
    count = len(samples[0]) if samples else 1
    with np.errstate(all="ignore"):
        results = NodeTypeDB.get_type(instruction.type_id).kernel(samples, instruction.params)
    if len(instruction.outputs) == 1:
        results = (results,)
    return [np.broadcast_to(np.asarray(r, dtype=BUFFER_DTYPE), (count,)) for r in results]


def _known_values(program: 'Program', ranges: Sequence[Interval]) -> Dict[int, np.floating]:
    """
    Addresses holding the same value in every sample of the block, with that
    value as the float32 buffers hold it.
    """
    known = {address: BUFFER_DTYPE(value) for address, value in program.constants.items()}
    for address in program.input_addresses.values():
        if ranges[address].is_single_value():
            known[address] = BUFFER_DTYPE(ranges[address].min)

    for instruction in program.instructions:
        if not all(address in known for address in instruction.inputs):
            continue
        samples = [np.full(1, known[a], dtype=BUFFER_DTYPE) for a in instruction.inputs]
        for address, values in zip(instruction.outputs, _run_kernel(instruction, samples)):
            known[address] = values[0]
    return known


def _saturated_values(instruction, ranges: Sequence[Interval],
                      known: Mapping[int, np.floating]) -> Optional[Tuple[float, ...]]:
    """
    Values of an instruction whose output ranges are single values while its
    inputs vary, such as a clamp with the input past one bound. The kernel
    runs on every corner of the input box and must give one finite value per
    output, otherwise None is returned.
    """
    corners = []
    for address in instruction.inputs:
        if address in known:
            corners.append((known[address],))
        else:
            corners.append((ranges[address].min, ranges[address].max))
    combinations = list(product(*corners))
    with np.errstate(all="ignore"):
        samples = [np.array(column, dtype=BUFFER_DTYPE) for column in zip(*combinations)]

    values = []
    for result in _run_kernel(instruction, samples):
        value = result[0]
        if not np.isfinite(value) or not np.all(result == value):
            return None
        values.append(float(value))
    return tuple(values)


@dataclass(frozen=True)
class ExecutionMap:
    steps: Tuple[ExecutionStep, ...]
    # Output addresses the map was built for
    output_addresses: Tuple[int, ...]

    def count(self, mode: StepMode) -> int:
        return sum(1 for step in self.steps if step.mode == mode)

    def __len__(self):
        return len(self.steps)


def build_execution_map(program: 'Program', ranges: Sequence[Interval],
                        output_addresses: Iterable[int]) -> ExecutionMap:
    output_addresses = tuple(output_addresses)
    needed = set(output_addresses)
    known = _known_values(program, ranges)
    steps: List[ExecutionStep] = []

    for index in range(len(program.instructions) - 1, -1, -1):
        instruction = program.instructions[index]
        if not any(address in needed for address in instruction.outputs):
            continue

        if all(address in known for address in instruction.outputs):
            values = tuple(float(known[a]) for a in instruction.outputs)
            steps.append(ExecutionStep(index, StepMode.CONSTANT, values=values))
            continue

        if all(ranges[a].is_single_value() for a in instruction.outputs):
            values = _saturated_values(instruction, ranges, known)
            if values is not None:
                steps.append(ExecutionStep(index, StepMode.CONSTANT, values=values))
                continue

        node_type = NodeTypeDB.get_type(instruction.type_id)
        if node_type.passthrough is not None and len(instruction.outputs) == 1:
            source = node_type.passthrough([ranges[a] for a in instruction.inputs], instruction.params)
            if source is not None:
                steps.append(ExecutionStep(index, StepMode.COPY, source=source))
                needed.add(instruction.inputs[source])
                continue

        steps.append(ExecutionStep(index))
        needed.update(instruction.inputs)

    steps.reverse()
    execution_map = ExecutionMap(tuple(steps), output_addresses)
    logger.debug(f"Execution map: {len(execution_map)}/{len(program.instructions)} steps, "
                 f"{execution_map.count(StepMode.CONSTANT)} constant, {execution_map.count(StepMode.COPY)} copies")
    return execution_map


def get_port_ranges(program: 'Program', ranges: Sequence[Interval]) -> Dict:
    """Intervals keyed by the top-level port locations they belong to."""
    return {location: ranges[address] for location, address in program.port_addresses.items()}

import math

import numpy as np
import pytest

from voxelgraph.compiler import compile_program
from voxelgraph.core.NodeNetwork import GraphFunction
from voxelgraph.core.Types import NodeTypeID
from voxelgraph.runtime import Executor
from voxelgraph.runtime import range_utility as ru
from voxelgraph.runtime.Executor import State, StepMode
from voxelgraph.runtime.RangeAnalysis import analyze_range, build_execution_map, get_port_ranges
from voxelgraph.runtime.range_utility import Interval


class TestInterval:

    def test_construction(self):
        i = Interval(3.0, 1.0)
        assert (i.min, i.max) == (1.0, 3.0)
        assert Interval.from_single_value(2.0).is_single_value()
        assert not Interval.infinite().is_finite()
        assert not Interval(math.inf, math.inf).is_single_value()
        assert Interval(math.nan, 1.0) == Interval.infinite()

    def test_arithmetic(self):
        a = Interval(1.0, 2.0)
        b = Interval(-3.0, 4.0)
        assert a + b == Interval(-2.0, 6.0)
        assert a - b == Interval(-3.0, 5.0)
        assert a * b == Interval(-6.0, 8.0)
        assert -a == Interval(-2.0, -1.0)
        assert a + 1.0 == Interval(2.0, 3.0)
        assert 10.0 - a == Interval(8.0, 9.0)

    def test_division(self):
        a = Interval(1.0, 2.0)
        assert a / Interval(2.0, 4.0) == Interval(0.25, 1.0)
        assert a / Interval(-1.0, 1.0) == Interval.infinite()
        # Division by zero gives 0 in kernels
        assert a / Interval(0.0, 0.0) == Interval.from_single_value(0.0)

    def test_functions(self):
        assert ru.abs_interval(Interval(-3.0, 2.0)) == Interval(0.0, 3.0)
        assert ru.squared(Interval(-3.0, 2.0)) == Interval(0.0, 9.0)
        assert ru.sqrt(Interval(-4.0, 9.0)) == Interval(0.0, 3.0)
        assert ru.floor(Interval(0.5, 2.5)) == Interval(0.0, 2.0)
        assert ru.fract(Interval(1.25, 1.75)) == Interval(0.25, 0.75)
        assert ru.fract(Interval(1.25, 2.75)) == Interval(0.0, 1.0)
        assert ru.powi(Interval(-2.0, 3.0), 2) == Interval(0.0, 9.0)
        assert ru.powi(Interval(-2.0, 3.0), 3) == Interval(-8.0, 27.0)
        assert ru.min_interval(Interval(0.0, 5.0), Interval(2.0, 3.0)) == Interval(0.0, 3.0)
        assert ru.max_interval(Interval(0.0, 5.0), Interval(2.0, 3.0)) == Interval(2.0, 5.0)

    def test_sin(self):
        assert ru.sin(Interval(0.0, 10.0)) == Interval(-1.0, 1.0)
        s = ru.sin(Interval(0.0, 2.0))
        assert s.max == 1.0
        assert s.min == pytest.approx(0.0)
        s = ru.sin(Interval(0.1, 0.2))
        assert s.min == pytest.approx(math.sin(0.1))
        assert s.max == pytest.approx(math.sin(0.2))

    @pytest.mark.parametrize("interval", [
        Interval(-5.0, 5.0), Interval(0.5, 3.0), Interval(-10.0, -1.0), Interval(-0.25, 0.25),
    ])
    def test_rules_contain_samples(self, interval):
        samples = np.linspace(interval.min, interval.max, 101)
        checks = [
            (ru.sin(interval), np.sin(samples)),
            (ru.abs_interval(interval), np.abs(samples)),
            (ru.squared(interval), samples * samples),
            (ru.floor(interval), np.floor(samples)),
            (ru.length_2d(interval, interval), np.sqrt(2.0 * samples * samples)),
        ]
        for result, values in checks:
            assert result.min <= values.min() + 1e-9
            assert values.max() - 1e-9 <= result.max


def _compile(g):
    result, program = compile_program(g)
    assert result.success, result.message
    return program


def _run(program, xs, steps=None):
    state = State()
    state.prepare(program, len(xs))
    state.set_input(NodeTypeID.INPUT_X, xs)
    Executor.execute(state, steps)
    return state


class TestRangeAnalysis:

    def setup_method(self):
        self.g = GraphFunction("main")

    def _single_node_program(self, type_id, params=None, defaults=None):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n = g.create_node(type_id)
        for name, value in (params or {}).items():
            g.set_node_param(n, name, value)
        for index, value in (defaults or {}).items():
            g.set_node_default_input(n, index, value)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_x, 0, n, 0)
        g.add_connection(n, 0, n_out, 0)
        return _compile(g), n

    def test_analyze_range(self):
        program, n_add = self._single_node_program(NodeTypeID.ADD, defaults={1: 1.0})
        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(0.0, 10.0)})
        output = program.get_output(NodeTypeID.OUTPUT_SDF)
        assert ranges[output.address] == Interval(1.0, 11.0)

        port_ranges = get_port_ranges(program, ranges)
        assert port_ranges[(n_add, 0)] == Interval(1.0, 11.0)

    def test_missing_input_range_is_infinite(self):
        program, _ = self._single_node_program(NodeTypeID.ADD)
        ranges = analyze_range(program, {})
        assert ranges[program.get_output(NodeTypeID.OUTPUT_SDF).address] == Interval.infinite()

    def test_execute_step(self):
        program, _ = self._single_node_program(NodeTypeID.CLAMP, {}, {})
        output = program.get_output(NodeTypeID.OUTPUT_SDF)
        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(-5.0, 5.0)})
        execution_map = build_execution_map(program, ranges, [output.address])
        assert [s.mode for s in execution_map.steps] == [StepMode.EXECUTE]

    def test_constant_step(self):
        program, _ = self._single_node_program(NodeTypeID.CLAMP)
        output = program.get_output(NodeTypeID.OUTPUT_SDF)
        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(5.0, 10.0)})
        execution_map = build_execution_map(program, ranges, [output.address])
        assert len(execution_map) == 1
        step = execution_map.steps[0]
        assert step.mode == StepMode.CONSTANT
        assert step.values == (1.0,)

        xs = np.linspace(5.0, 10.0, 8)
        state = _run(program, xs, execution_map.steps)
        assert np.all(state.get_buffer(output.address) == 1.0)

    def test_constant_step_matches_float32_execution(self):
        # floor(x * 0.7) at x = 90 is 63 in float32 buffers, 62 in double precision
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_mul = g.create_node(NodeTypeID.MULTIPLY)
        g.set_node_default_input(n_mul, 1, 0.7)
        n_floor = g.create_node(NodeTypeID.FLOOR)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_x, 0, n_mul, 0)
        g.add_connection(n_mul, 0, n_floor, 0)
        g.add_connection(n_floor, 0, n_out, 0)
        program = _compile(g)
        output = program.get_output(NodeTypeID.OUTPUT_SDF)

        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(90.0, 90.0)})
        execution_map = build_execution_map(program, ranges, [output.address])
        assert [s.mode for s in execution_map.steps] == [StepMode.CONSTANT]

        xs = np.full(4, 90.0)
        plain = _run(program, xs).get_buffer(output.address)
        optimized = _run(program, xs, execution_map.steps).get_buffer(output.address)
        assert plain[0] == 63.0
        assert np.array_equal(optimized, plain)

    def test_copy_step(self):
        program, _ = self._single_node_program(NodeTypeID.MIN, defaults={1: 100.0})
        output = program.get_output(NodeTypeID.OUTPUT_SDF)
        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(0.0, 10.0)})
        execution_map = build_execution_map(program, ranges, [output.address])
        assert execution_map.count(StepMode.COPY) == 1
        assert execution_map.steps[0].source == 0

        xs = np.linspace(0.0, 10.0, 16)
        state = _run(program, xs, execution_map.steps)
        assert np.array_equal(state.get_buffer(output.address), xs.astype(np.float32))

    def test_copy_skips_unneeded_inputs(self):
        # min(x, sin(x) + 100): with x in [0, 10] the sine is never needed
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_sin = g.create_node(NodeTypeID.SIN)
        n_add = g.create_node(NodeTypeID.ADD)
        g.set_node_default_input(n_add, 1, 100.0)
        n_min = g.create_node(NodeTypeID.MIN)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_x, 0, n_sin, 0)
        g.add_connection(n_sin, 0, n_add, 0)
        g.add_connection(n_x, 0, n_min, 0)
        g.add_connection(n_add, 0, n_min, 1)
        g.add_connection(n_min, 0, n_out, 0)
        program = _compile(g)
        assert len(program.instructions) == 3

        output = program.get_output(NodeTypeID.OUTPUT_SDF)
        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(0.0, 10.0)})
        execution_map = build_execution_map(program, ranges, [output.address])
        assert len(execution_map) == 1
        assert execution_map.steps[0].mode == StepMode.COPY

        # Where both sides overlap everything runs
        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(90.0, 110.0)})
        execution_map = build_execution_map(program, ranges, [output.address])
        assert len(execution_map) == 3
        assert execution_map.count(StepMode.EXECUTE) == 3

    def test_map_only_covers_requested_outputs(self):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_sin = g.create_node(NodeTypeID.SIN)
        n_abs = g.create_node(NodeTypeID.ABS)
        n_sdf = g.create_node(NodeTypeID.OUTPUT_SDF)
        n_type = g.create_node(NodeTypeID.OUTPUT_TYPE)
        g.add_connection(n_x, 0, n_sin, 0)
        g.add_connection(n_x, 0, n_abs, 0)
        g.add_connection(n_sin, 0, n_sdf, 0)
        g.add_connection(n_abs, 0, n_type, 0)
        program = _compile(g)
        ranges = analyze_range(program, {NodeTypeID.INPUT_X: Interval(-1.0, 1.0)})
        sdf_address = program.get_output(NodeTypeID.OUTPUT_SDF).address
        execution_map = build_execution_map(program, ranges, [sdf_address])
        assert len(execution_map) == 1
        assert program.instructions[execution_map.steps[0].instruction_index].type_id == NodeTypeID.SIN

    def test_smooth_union_saturates(self):
        # Plane far below a sphere: the union is a copy of one side
        g = self.g
        n_sphere = g.create_node(NodeTypeID.SDF_SPHERE)
        g.set_node_param(n_sphere, "radius", 4.0)
        n_plane = g.create_node(NodeTypeID.SDF_PLANE)
        g.set_node_default_input(n_plane, 1, -50.0)
        n_union = g.create_node(NodeTypeID.SDF_SMOOTH_UNION)
        g.set_node_param(n_union, "smoothness", 2.0)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_sphere, 0, n_union, 0)
        g.add_connection(n_plane, 0, n_union, 1)
        g.add_connection(n_union, 0, n_out, 0)
        program = _compile(g)

        ranges = analyze_range(program, {
            NodeTypeID.INPUT_X: Interval(-8.0, 8.0),
            NodeTypeID.INPUT_Y: Interval(-8.0, 8.0),
            NodeTypeID.INPUT_Z: Interval(-8.0, 8.0),
        })
        output = program.get_output(NodeTypeID.OUTPUT_SDF)
        execution_map = build_execution_map(program, ranges, [output.address])
        modes = [s.mode for s in execution_map.steps]
        assert StepMode.COPY in modes
        # The plane is not evaluated
        types = [program.instructions[s.instruction_index].type_id for s in execution_map.steps]
        assert NodeTypeID.SDF_PLANE not in types

import pytest

from voxelgraph.compiler import compile_program
from voxelgraph.core.GraphPrimitives import PortLocation
from voxelgraph.core.NodeNetwork import GraphFunction
from voxelgraph.core.Types import NodeTypeID
from voxelgraph.defaults import values_equal_approx
from voxelgraph.runtime import Executor
from voxelgraph.runtime.Executor import State


def evaluate(program, x=0.0, y=0.0, z=0.0, output_type=NodeTypeID.OUTPUT_SDF):
    state = State()
    state.prepare(program, 1)
    state.set_input(NodeTypeID.INPUT_X, x)
    state.set_input(NodeTypeID.INPUT_Y, y)
    state.set_input(NodeTypeID.INPUT_Z, z)
    Executor.execute(state)
    return float(state.get_buffer(program.get_output(output_type).address)[0])


def compile_ok(g, debug=False):
    result, program = compile_program(g, debug)
    assert result.success, result.message
    return program


class TestCompiler:

    def setup_method(self):
        self.g = GraphFunction("main")

    def test_no_output(self):
        self.g.create_node(NodeTypeID.INPUT_X)
        result, program = compile_program(self.g)
        assert not result.success
        assert result.node_id is None
        assert program is None

    def test_single_sdf_output(self):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_out1 = g.create_node(NodeTypeID.OUTPUT_SDF)
        n_out2 = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_x, 0, n_out1, 0)
        g.add_connection(n_x, 0, n_out2, 0)
        result, program = compile_program(g)
        assert not result.success
        assert result.node_id == n_out2

    def test_weight_layers_must_be_unique(self):
        g = self.g
        n_w0 = g.create_node(NodeTypeID.OUTPUT_WEIGHT)
        n_w1 = g.create_node(NodeTypeID.OUTPUT_WEIGHT)
        result, _ = compile_program(g)
        assert not result.success
        assert result.node_id == n_w1

        g.set_node_param(n_w1, "layer", 1)
        result, _ = compile_program(g)
        assert result.success

        g.set_node_param(n_w0, "layer", 16)
        result, _ = compile_program(g)
        assert not result.success
        assert result.node_id == n_w0

    def test_passthrough(self):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_x, 0, n_out, 0)
        program = compile_ok(g)
        assert len(program.instructions) == 0
        assert program.get_output(NodeTypeID.OUTPUT_SDF).address == program.get_input_address(NodeTypeID.INPUT_X)
        assert evaluate(program, x=42.0) == 42.0

    def test_unconnected_output_reads_default(self):
        g = self.g
        g.create_node(NodeTypeID.OUTPUT_SDF)
        program = compile_ok(g)
        assert evaluate(program) == 0.0

    def test_constant_folding(self):
        g = self.g
        n_c = g.create_node(NodeTypeID.CONSTANT)
        g.set_node_param(n_c, "value", 3.0)
        n_add = g.create_node(NodeTypeID.ADD)
        g.set_node_default_input(n_add, 1, 4.0)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_c, 0, n_add, 0)
        g.add_connection(n_add, 0, n_out, 0)

        program = compile_ok(g)
        assert len(program.instructions) == 0
        address = program.get_output(NodeTypeID.OUTPUT_SDF).address
        assert program.constants[address] == 7.0
        assert evaluate(program, x=100.0) == 7.0

    def test_equivalence_merging(self):
        # (x + 1) + (x + 1), built as two separate branches
        g = self.g
        n_x1 = g.create_node(NodeTypeID.INPUT_X)
        n_x2 = g.create_node(NodeTypeID.INPUT_X)
        n_add1 = g.create_node(NodeTypeID.ADD)
        n_add2 = g.create_node(NodeTypeID.ADD)
        n_sum = g.create_node(NodeTypeID.ADD)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.set_node_default_input(n_add1, 1, 1.0)
        g.set_node_default_input(n_add2, 1, 1.0)
        g.add_connection(n_x1, 0, n_add1, 0)
        g.add_connection(n_x2, 0, n_add2, 0)
        g.add_connection(n_add1, 0, n_sum, 0)
        g.add_connection(n_add2, 0, n_sum, 1)
        g.add_connection(n_sum, 0, n_out, 0)

        result, program = compile_program(g)
        assert result.success
        # x, x + 1, sum, output
        assert result.expanded_nodes_count == 4
        assert len(program.instructions) == 2
        assert evaluate(program, x=10.0) == 22.0

    def test_noise_nodes_are_not_merged(self):
        g = self.g
        n_noise1 = g.create_node(NodeTypeID.NOISE_2D)
        n_noise2 = g.create_node(NodeTypeID.NOISE_2D)
        n_sum = g.create_node(NodeTypeID.ADD)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_noise1, 0, n_sum, 0)
        g.add_connection(n_noise2, 0, n_sum, 1)
        g.add_connection(n_sum, 0, n_out, 0)
        program = compile_ok(g)
        types = [i.type_id for i in program.instructions]
        assert types.count(NodeTypeID.NOISE_2D) == 2

    def test_program_keeps_compiled_noise(self):
        g = self.g
        n_noise = g.create_node(NodeTypeID.NOISE_3D)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_noise, 0, n_out, 0)
        program = compile_ok(g)
        before = evaluate(program, x=10.0, y=3.0, z=7.0)

        noise = g.get_node_param(n_noise, "noise")
        assert program.instructions[0].params[0] is not noise
        noise.set_period(5.0)
        assert evaluate(program, x=10.0, y=3.0, z=7.0) == before

        # Recompiling picks the edit up
        assert evaluate(compile_ok(g), x=10.0, y=3.0, z=7.0) != before

    def test_nodes_sharing_a_noise_are_merged(self):
        g = self.g
        n_noise1 = g.create_node(NodeTypeID.NOISE_2D)
        n_noise2 = g.create_node(NodeTypeID.NOISE_2D)
        g.set_node_param(n_noise2, "noise", g.get_node_param(n_noise1, "noise"))
        n_sum = g.create_node(NodeTypeID.ADD)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_noise1, 0, n_sum, 0)
        g.add_connection(n_noise2, 0, n_sum, 1)
        g.add_connection(n_sum, 0, n_out, 0)
        program = compile_ok(g)
        types = [i.type_id for i in program.instructions]
        assert types.count(NodeTypeID.NOISE_2D) == 1

    def test_debug_and_release_agree(self):
        g = self.g
        n_sphere = g.create_node(NodeTypeID.SDF_SPHERE)
        g.set_node_param(n_sphere, "radius", 5.0)
        n_plane = g.create_node(NodeTypeID.SDF_PLANE)
        n_union = g.create_node(NodeTypeID.SDF_SMOOTH_UNION)
        g.set_node_param(n_union, "smoothness", 2.0)
        n_preview = g.create_node(NodeTypeID.SDF_PREVIEW)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_sphere, 0, n_union, 0)
        g.add_connection(n_plane, 0, n_union, 1)
        g.add_connection(n_sphere, 0, n_preview, 0)
        g.add_connection(n_union, 0, n_out, 0)

        release = compile_ok(g, debug=False)
        debug = compile_ok(g, debug=True)

        assert all(i.node_id is None for i in release.instructions)
        assert all(i.node_id is not None for i in debug.instructions)
        assert {i.node_id for i in debug.instructions} == {n_sphere, n_plane, n_union}

        assert release.get_output(NodeTypeID.SDF_PREVIEW) is None
        assert debug.get_output(NodeTypeID.SDF_PREVIEW) is not None

        for position in [(0, 0, 0), (3, 4, 0), (-7, 2, 9), (0, -20, 0)]:
            assert values_equal_approx(evaluate(release, *position), evaluate(debug, *position))

    def test_clamp_with_constant_bounds_is_simplified(self):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_clamp = g.create_node(NodeTypeID.CLAMP)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_x, 0, n_clamp, 0)
        g.add_connection(n_clamp, 0, n_out, 0)
        program = compile_ok(g)
        assert [i.type_id for i in program.instructions] == [NodeTypeID.CLAMP_C]
        assert program.instructions[0].params == (-1.0, 1.0)
        assert evaluate(program, x=5.0) == 1.0
        assert evaluate(program, x=-0.5) == -0.5

    def test_pow_with_integer_exponent_is_simplified(self):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_pow = g.create_node(NodeTypeID.POW)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.set_node_default_input(n_pow, 1, 3.0)
        g.add_connection(n_x, 0, n_pow, 0)
        g.add_connection(n_pow, 0, n_out, 0)
        program = compile_ok(g)
        assert [i.type_id for i in program.instructions] == [NodeTypeID.POWI]
        assert evaluate(program, x=-2.0) == -8.0

    def test_port_addresses(self):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_add = g.create_node(NodeTypeID.ADD)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_x, 0, n_add, 0)
        g.add_connection(n_add, 0, n_out, 0)
        program = compile_ok(g)
        assert program.port_addresses[PortLocation(n_add, 0)] == program.instructions[0].outputs[0]
        assert program.port_addresses[PortLocation(n_x, 0)] == program.get_input_address(NodeTypeID.INPUT_X)

    def test_program_to_dict(self):
        g = self.g
        n_sphere = g.create_node(NodeTypeID.SDF_SPHERE)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_sphere, 0, n_out, 0)
        data = compile_ok(g).to_dict()
        assert data["instructions"][0]["type"] == "SDF_SPHERE"
        assert data["outputs"][0]["type"] == "OUTPUT_SDF"
        assert set(data["inputs"].keys()) == {"INPUT_X", "INPUT_Y", "INPUT_Z"}


class TestExpressions:

    def setup_method(self):
        self.g = GraphFunction("main")

    def _expression_graph(self, text, names):
        g = self.g
        n_x = g.create_node(NodeTypeID.INPUT_X)
        n_y = g.create_node(NodeTypeID.INPUT_Y)
        n_expr = g.create_node(NodeTypeID.EXPRESSION)
        g.set_node_param(n_expr, "expression", text)
        g.set_expression_node_inputs(n_expr, names)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        if "x" in names:
            g.add_connection(n_x, 0, n_expr, names.index("x"))
        if "y" in names:
            g.add_connection(n_y, 0, n_expr, names.index("y"))
        g.add_connection(n_expr, 0, n_out, 0)
        return n_expr

    def test_expression(self):
        self._expression_graph("x * 2 + y", ["x", "y"])
        program = compile_ok(self.g)
        assert evaluate(program, x=3.0, y=4.0) == 10.0

    def test_expression_functions(self):
        self._expression_graph("max(x, y) + sqrt(16)", ["x", "y"])
        program = compile_ok(self.g)
        assert evaluate(program, x=3.0, y=-4.0) == 7.0

    def test_expression_power(self):
        self._expression_graph("x ^ 2", ["x"])
        program = compile_ok(self.g)
        assert [i.type_id for i in program.instructions] == [NodeTypeID.POWI]
        assert evaluate(program, x=-3.0) == 9.0

    def test_expression_unconnected_variable_uses_default(self):
        n_expr = self._expression_graph("x + a", ["x", "a"])
        self.g.set_node_default_input(n_expr, 1, 0.5)
        program = compile_ok(self.g)
        assert evaluate(program, x=1.0) == 1.5

    def test_long_expression(self):
        # Deeper than the interpreter recursion limit
        self._expression_graph("x" + " + 1" * 3000, ["x"])
        program = compile_ok(self.g)
        assert len(program.instructions) == 3000
        assert evaluate(program, x=5.0) == 3005.0

    def test_empty_expression(self):
        self._expression_graph("", [])
        program = compile_ok(self.g)
        assert evaluate(program, x=1.0) == 0.0

    def test_invalid_expression(self):
        n_expr = self._expression_graph("x +", ["x"])
        result, program = compile_program(self.g)
        assert not result.success
        assert result.node_id == n_expr
        assert program is None

    def test_expression_variable_without_input(self):
        n_expr = self._expression_graph("x + b", ["x"])
        result, _ = compile_program(self.g)
        assert not result.success
        assert result.node_id == n_expr

    def test_debug_instructions_point_at_expression(self):
        n_expr = self._expression_graph("x * y + 1", ["x", "y"])
        program = compile_ok(self.g, debug=True)
        assert len(program.instructions) == 2
        assert all(i.node_id == n_expr for i in program.instructions)


class TestFunctionCompilation:

    def setup_method(self):
        self.g = GraphFunction("main")

    @staticmethod
    def make_passthrough_function(name="passthrough"):
        func = GraphFunction(name)
        n_x = func.create_node(NodeTypeID.INPUT_X)
        n_out = func.create_node(NodeTypeID.OUTPUT_SDF)
        func.add_connection(n_x, 0, n_out, 0)
        func.auto_pick_inputs_and_outputs()
        return func

    def test_passthrough_function(self):
        func = self.make_passthrough_function()
        g = self.g
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f, 0, n_out, 0)
        program = compile_ok(g)
        assert evaluate(program, x=42.0) == 42.0

    def test_nested_passthrough_functions(self):
        inner = self.make_passthrough_function("inner")
        outer = GraphFunction("outer")
        n_inner = outer.create_function_node(inner)
        n_outer_out = outer.create_node(NodeTypeID.OUTPUT_SDF)
        outer.add_connection(n_inner, 0, n_outer_out, 0)
        outer.auto_pick_inputs_and_outputs()
        assert [d.type_id for d in outer.get_input_definitions()] == [NodeTypeID.INPUT_X]

        g = self.g
        n_outer = g.create_function_node(outer)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_outer, 0, n_out, 0)
        program = compile_ok(g)
        assert evaluate(program, x=42.0) == 42.0

    def test_function_input_connected(self):
        # f(x) = x + 1, called with y
        func = GraphFunction("inc")
        n_x = func.create_node(NodeTypeID.INPUT_X)
        n_add = func.create_node(NodeTypeID.ADD)
        func.set_node_default_input(n_add, 1, 1.0)
        n_fout = func.create_node(NodeTypeID.OUTPUT_SDF)
        func.add_connection(n_x, 0, n_add, 0)
        func.add_connection(n_add, 0, n_fout, 0)
        func.auto_pick_inputs_and_outputs()

        g = self.g
        n_y = g.create_node(NodeTypeID.INPUT_Y)
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_y, 0, n_f, 0)
        g.add_connection(n_f, 0, n_out, 0)
        program = compile_ok(g)
        assert evaluate(program, x=100.0, y=5.0) == 6.0

    def test_custom_input(self):
        func = GraphFunction("offset")
        n_y = func.create_node(NodeTypeID.INPUT_Y)
        n_offset = func.create_node(NodeTypeID.CUSTOM_INPUT)
        func.set_node_name(n_offset, "offset")
        n_add = func.create_node(NodeTypeID.ADD)
        n_fout = func.create_node(NodeTypeID.OUTPUT_SDF)
        func.add_connection(n_y, 0, n_add, 0)
        func.add_connection(n_offset, 0, n_add, 1)
        func.add_connection(n_add, 0, n_fout, 0)
        func.auto_pick_inputs_and_outputs()

        g = self.g
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f, 0, n_out, 0)

        # Y is auto-connected, the unconnected custom input reads its literal default
        g.set_node_default_input(n_f, 1, 5.0)
        program = compile_ok(g)
        assert evaluate(program, y=10.0) == 15.0

        n_c = g.create_node(NodeTypeID.CONSTANT)
        g.set_node_param(n_c, "value", -2.0)
        g.add_connection(n_c, 0, n_f, 1)
        program = compile_ok(g)
        assert evaluate(program, y=10.0) == 8.0

    def test_input_without_definition(self):
        # Input nodes a function does not declare behave like in a top-level graph
        func = GraphFunction("f")
        n_x = func.create_node(NodeTypeID.INPUT_X)
        n_custom = func.create_node(NodeTypeID.CUSTOM_INPUT)
        func.set_node_name(n_custom, "undeclared")
        n_add = func.create_node(NodeTypeID.ADD)
        n_fout = func.create_node(NodeTypeID.OUTPUT_SDF)
        func.add_connection(n_x, 0, n_add, 0)
        func.add_connection(n_custom, 0, n_add, 1)
        func.add_connection(n_add, 0, n_fout, 0)
        func.set_io_definitions([], [(NodeTypeID.OUTPUT_SDF, "sdf")])

        g = self.g
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f, 0, n_out, 0)
        program = compile_ok(g)
        assert evaluate(program, x=3.0) == 3.0

    def test_output_without_node(self):
        func = GraphFunction("f")
        func.set_io_definitions([], [(NodeTypeID.CUSTOM_OUTPUT, "missing")])
        g = self.g
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f, 0, n_out, 0)
        program = compile_ok(g)
        assert evaluate(program, x=3.0) == 0.0

    def test_function_used_twice_is_merged(self):
        # f(x) = x + 1
        func = GraphFunction("inc")
        n_x = func.create_node(NodeTypeID.INPUT_X)
        n_inc = func.create_node(NodeTypeID.ADD)
        func.set_node_default_input(n_inc, 1, 1.0)
        n_fout = func.create_node(NodeTypeID.OUTPUT_SDF)
        func.add_connection(n_x, 0, n_inc, 0)
        func.add_connection(n_inc, 0, n_fout, 0)
        func.auto_pick_inputs_and_outputs()

        g = self.g
        n_f1 = g.create_function_node(func)
        n_f2 = g.create_function_node(func)
        n_add = g.create_node(NodeTypeID.ADD)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f1, 0, n_add, 0)
        g.add_connection(n_f2, 0, n_add, 1)
        g.add_connection(n_add, 0, n_out, 0)
        result, program = compile_program(g)
        assert result.success
        assert result.expanded_nodes_count == 4
        assert len(program.instructions) == 2
        assert evaluate(program, x=4.0) == 10.0

    def test_io_mismatch(self):
        func = self.make_passthrough_function()
        g = self.g
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f, 0, n_out, 0)
        compile_ok(g)

        func.set_io_definitions([(NodeTypeID.INPUT_Y, "y")], [(NodeTypeID.OUTPUT_SDF, "sdf")])
        result, program = compile_program(g)
        assert not result.success
        assert result.node_id == n_f

        g.update_function_nodes()
        program = compile_ok(g)
        # The function reads an undeclared X input, which stays global
        assert evaluate(program, x=7.0, y=1.0) == 7.0

    def test_self_containing_function(self):
        func = GraphFunction("recursive")
        func.set_io_definitions([], [(NodeTypeID.OUTPUT_SDF, "sdf")])
        n_self = func.create_function_node(func)
        n_fout = func.create_node(NodeTypeID.OUTPUT_SDF)
        func.add_connection(n_self, 0, n_fout, 0)

        g = self.g
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f, 0, n_out, 0)
        result, program = compile_program(g)
        assert not result.success
        assert result.node_id == n_f
        assert program is None

    @pytest.mark.parametrize("debug", [False, True])
    def test_debug_origin_of_function_content(self, debug):
        func = GraphFunction("f")
        n_sphere = func.create_node(NodeTypeID.SDF_SPHERE)
        n_fout = func.create_node(NodeTypeID.OUTPUT_SDF)
        func.add_connection(n_sphere, 0, n_fout, 0)
        func.auto_pick_inputs_and_outputs()

        g = self.g
        n_f = g.create_function_node(func)
        n_out = g.create_node(NodeTypeID.OUTPUT_SDF)
        g.add_connection(n_f, 0, n_out, 0)
        program = compile_ok(g, debug)
        expected = n_f if debug else None
        assert [i.node_id for i in program.instructions] == [expected]
        assert values_equal_approx(evaluate(program, x=3.0), 2.0)

from ..core.Types import Category, NodeTypeID, ParamType
from .NodeRegistry import NodeType, NodeTypeDB, ParamSpec, PortSpec

# Inputs, outputs and structural nodes. None of them carries a kernel:
# inputs become buffers filled by the caller, outputs alias the buffer that
# feeds them, and the rest is expanded away by the compiler.

NodeTypeDB.register(NodeType(
    NodeTypeID.CONSTANT, "Constant", Category.INPUT,
    outputs=["value"],
    params=[ParamSpec("value", ParamType.FLOAT, 0.0)]))

NodeTypeDB.register(NodeType(NodeTypeID.INPUT_X, "InputX", Category.INPUT, outputs=["x"]))
NodeTypeDB.register(NodeType(NodeTypeID.INPUT_Y, "InputY", Category.INPUT, outputs=["y"]))
NodeTypeDB.register(NodeType(NodeTypeID.INPUT_Z, "InputZ", Category.INPUT, outputs=["z"]))
NodeTypeDB.register(NodeType(NodeTypeID.INPUT_SDF, "InputSDF", Category.INPUT, outputs=["sdf"]))
NodeTypeDB.register(NodeType(NodeTypeID.CUSTOM_INPUT, "CustomInput", Category.INPUT, outputs=["value"]))

NodeTypeDB.register(NodeType(
    NodeTypeID.OUTPUT_SDF, "OutputSDF", Category.OUTPUT,
    inputs=[PortSpec("sdf")]))

NodeTypeDB.register(NodeType(
    NodeTypeID.OUTPUT_WEIGHT, "OutputWeight", Category.OUTPUT,
    inputs=[PortSpec("weight")],
    params=[ParamSpec("layer", ParamType.INT, 0)]))

NodeTypeDB.register(NodeType(
    NodeTypeID.OUTPUT_TYPE, "OutputType", Category.OUTPUT,
    inputs=[PortSpec("type")]))

NodeTypeDB.register(NodeType(
    NodeTypeID.CUSTOM_OUTPUT, "CustomOutput", Category.OUTPUT,
    inputs=[PortSpec("value")]))

NodeTypeDB.register(NodeType(
    NodeTypeID.SDF_PREVIEW, "SdfPreview", Category.DEBUG,
    inputs=[PortSpec("value")],
    params=[ParamSpec("min_value", ParamType.FLOAT, -1.0), ParamSpec("max_value", ParamType.FLOAT, 1.0)],
    debug_only=True))

NodeTypeDB.register(NodeType(
    NodeTypeID.EXPRESSION, "Expression", Category.MISC,
    outputs=["out"],
    params=[ParamSpec("expression", ParamType.STRING, "0")],
    has_dynamic_ports=True))

NodeTypeDB.register(NodeType(
    NodeTypeID.FUNCTION, "Function", Category.FUNCTIONS,
    has_dynamic_ports=True))

NodeTypeDB.register(NodeType(
    NodeTypeID.RELAY, "Relay", Category.MISC,
    inputs=[PortSpec("in")], outputs=["out"]))

NodeTypeDB.register(NodeType(
    NodeTypeID.COMMENT, "Comment", Category.MISC,
    params=[ParamSpec("text", ParamType.STRING, "")]))

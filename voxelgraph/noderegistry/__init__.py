from .NodeRegistry import ExpressionFunction, NodeType, NodeTypeDB, ParamSpec, PortSpec

__all__ = ["ExpressionFunction", "NodeType", "NodeTypeDB", "ParamSpec", "PortSpec"]

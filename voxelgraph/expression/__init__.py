from .parser import (
    ErrorID, FunctionNode, NumberNode, OperatorNode, Operator, ParseError, ParseResult, VariableNode,
    get_variable_names, is_tree_equal, parse, tree_to_string,
)

__all__ = [
    "ErrorID", "FunctionNode", "NumberNode", "OperatorNode", "Operator", "ParseError", "ParseResult",
    "VariableNode", "get_variable_names", "is_tree_equal", "parse", "tree_to_string",
]

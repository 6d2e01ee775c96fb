"""
Expression parser
=================
Parses the arithmetic language of expression nodes into a small tree.

    text  →  [tokenize]  →  tokens  →  [_Parser]  →  ExpressionNode tree

Grammar: numbers, variable names, ``+ - * / ^`` (``^`` binds tightest and is
right-associative), unary minus, parentheses and calls to a table of known
functions. Fully literal sub-expressions are folded into a single number.

Syntax errors are returned in the result, never raised. An empty input (or
only empty parentheses) is valid and gives a tree with no root.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Union

import logging

import numpy as np

from ..noderegistry.NodeRegistry import ExpressionFunction

logger = logging.getLogger(__name__)


class ErrorID(Enum):
    NONE = auto()
    INVALID_TOKEN = auto()
    UNEXPECTED_TOKEN = auto()
    UNCLOSED_PARENTHESIS = auto()
    MISSING_OPERAND_ARGUMENTS = auto()
    MULTIPLE_OPERANDS = auto()
    TOO_MANY_ARGUMENTS = auto()
    TOO_FEW_ARGUMENTS = auto()
    EXPECTED_ARGUMENT = auto()
    UNKNOWN_FUNCTION = auto()


class ParseError(NamedTuple):
    id: ErrorID = ErrorID.NONE
    position: int = 0
    symbol: str = ""

    def __bool__(self):
        return self.id != ErrorID.NONE


# ── Tree ─────────────────────────────────────────────────────────────────────

class Operator(Enum):
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    POWER = "^"


@dataclass
class NumberNode:
    value: float


@dataclass
class VariableNode:
    name: str


@dataclass
class OperatorNode:
    op: Operator
    left: 'ExpressionNode'
    right: 'ExpressionNode'


@dataclass
class FunctionNode:
    function: ExpressionFunction
    args: List['ExpressionNode'] = field(default_factory=list)


ExpressionNode = Union[NumberNode, VariableNode, OperatorNode, FunctionNode]


class ParseResult(NamedTuple):
    root: Optional[ExpressionNode]
    error: ParseError = ParseError()

    @property
    def ok(self) -> bool:
        return self.error.id == ErrorID.NONE


# ── Tokens ───────────────────────────────────────────────────────────────────

class TokenType(Enum):
    NUMBER = auto()
    NAME = auto()
    OPERATOR = auto()
    PAREN_OPEN = auto()
    PAREN_CLOSE = auto()
    COMMA = auto()
    END = auto()


class Token(NamedTuple):
    type: TokenType
    text: str
    position: int


_PUNCTUATION = {
    "(": TokenType.PAREN_OPEN,
    ")": TokenType.PAREN_CLOSE,
    ",": TokenType.COMMA,
}
_OPERATORS = {op.value: op for op in Operator}

# Binding strength of binary operators. Unary minus sits between * and ^ so
# that -2^2 is -(2^2).
_PRECEDENCE = {
    Operator.ADD: 1,
    Operator.SUBTRACT: 1,
    Operator.MULTIPLY: 2,
    Operator.DIVIDE: 2,
    Operator.POWER: 4,
}
_UNARY_PRECEDENCE = 3
_RIGHT_ASSOCIATIVE = {Operator.POWER}


def _is_name_start(c: str) -> bool:
    return c.isalpha() or c == "_"


def tokenize(text: str):
    """Returns (tokens, error). Tokens end with an END token."""
    tokens: List[Token] = []
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c.isspace():
            i += 1
        elif c.isdigit() or (c == "." and i + 1 < n and text[i + 1].isdigit()):
            start = i
            while i < n and text[i].isdigit():
                i += 1
            if i < n and text[i] == ".":
                i += 1
                while i < n and text[i].isdigit():
                    i += 1
            tokens.append(Token(TokenType.NUMBER, text[start:i], start))
        elif _is_name_start(c):
            start = i
            while i < n and (text[i].isalnum() or text[i] == "_"):
                i += 1
            tokens.append(Token(TokenType.NAME, text[start:i], start))
        elif c in _OPERATORS:
            tokens.append(Token(TokenType.OPERATOR, c, i))
            i += 1
        elif c in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[c], c, i))
            i += 1
        else:
            return [], ParseError(ErrorID.INVALID_TOKEN, i, c)
    tokens.append(Token(TokenType.END, "", n))
    return tokens, ParseError()


# ── Folding ──────────────────────────────────────────────────────────────────

def apply_operator(op: Operator, a: float, b: float) -> float:
    if op == Operator.ADD:
        return a + b
    if op == Operator.SUBTRACT:
        return a - b
    if op == Operator.MULTIPLY:
        return a * b
    if op == Operator.DIVIDE:
        # Same convention as the Divide node
        return a / b if b != 0.0 else 0.0
    with np.errstate(all="ignore"):
        return float(np.power(np.float64(a), np.float64(b)))


def _fold_operator(op: Operator, left: ExpressionNode, right: ExpressionNode) -> ExpressionNode:
    if isinstance(left, NumberNode) and isinstance(right, NumberNode):
        return NumberNode(apply_operator(op, left.value, right.value))
    return OperatorNode(op, left, right)


def _fold_function(function: ExpressionFunction, args: List[ExpressionNode]) -> ExpressionNode:
    if all(isinstance(arg, NumberNode) for arg in args):
        return NumberNode(float(function.evaluator(*[arg.value for arg in args])))
    return FunctionNode(function, args)


# ── Parser ───────────────────────────────────────────────────────────────────

class _Parser:
    """
    Precedence climbing over a token list. Every parse method returns a node,
    or None for an empty operand, and stops early once `self.error` is set.
    """

    def __init__(self, tokens: List[Token], functions: Dict[str, ExpressionFunction]):
        self.tokens = tokens
        self.functions = functions
        self.pos = 0
        self.error = ParseError()

    def peek(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type != TokenType.END:
            self.pos += 1
        return token

    def fail(self, error_id: ErrorID, token: Token):
        if not self.error:
            self.error = ParseError(error_id, token.position, token.text)

    def parse_expression(self, min_precedence: int) -> Optional[ExpressionNode]:
        left = self.parse_operand()
        if self.error:
            return None

        while True:
            token = self.peek()
            if token.type == TokenType.OPERATOR:
                op = _OPERATORS[token.text]
                precedence = _PRECEDENCE[op]
                if precedence < min_precedence:
                    break
                self.advance()
                next_min = precedence if op in _RIGHT_ASSOCIATIVE else precedence + 1
                right = self.parse_expression(next_min)
                if self.error:
                    return None
                if left is None or right is None:
                    self.fail(ErrorID.MISSING_OPERAND_ARGUMENTS, token)
                    return None
                left = _fold_operator(op, left, right)

            elif token.type in (TokenType.NUMBER, TokenType.NAME, TokenType.PAREN_OPEN):
                # Two operands with nothing in between
                self.fail(ErrorID.MULTIPLE_OPERANDS, token)
                return None

            else:
                break

        return left

    def parse_operand(self) -> Optional[ExpressionNode]:
        token = self.peek()

        if token.type == TokenType.NUMBER:
            self.advance()
            return NumberNode(float(token.text))

        if token.type == TokenType.NAME:
            self.advance()
            if self.peek().type == TokenType.PAREN_OPEN:
                return self.parse_call(token)
            return VariableNode(token.text)

        if token.type == TokenType.PAREN_OPEN:
            self.advance()
            inner = self.parse_expression(0)
            if self.error:
                return None
            closing = self.peek()
            if closing.type == TokenType.END:
                self.fail(ErrorID.UNCLOSED_PARENTHESIS, token)
                return None
            if closing.type != TokenType.PAREN_CLOSE:
                self.fail(ErrorID.UNEXPECTED_TOKEN, closing)
                return None
            self.advance()
            return inner

        if token.type == TokenType.OPERATOR and token.text == Operator.SUBTRACT.value:
            self.advance()
            operand = self.parse_expression(_UNARY_PRECEDENCE)
            if self.error:
                return None
            if operand is None:
                self.fail(ErrorID.MISSING_OPERAND_ARGUMENTS, token)
                return None
            return _fold_operator(Operator.SUBTRACT, NumberNode(0.0), operand)

        # Empty operand, the caller decides whether that is allowed
        return None

    def parse_call(self, name_token: Token) -> Optional[ExpressionNode]:
        function = self.functions.get(name_token.text)
        if function is None:
            self.fail(ErrorID.UNKNOWN_FUNCTION, name_token)
            return None

        opening = self.advance()
        args: List[ExpressionNode] = []

        if self.peek().type == TokenType.PAREN_CLOSE:
            self.advance()
        else:
            while True:
                arg = self.parse_expression(0)
                if self.error:
                    return None
                if arg is None:
                    self.fail(ErrorID.EXPECTED_ARGUMENT, self.peek())
                    return None
                args.append(arg)

                token = self.peek()
                if token.type == TokenType.COMMA:
                    self.advance()
                elif token.type == TokenType.PAREN_CLOSE:
                    self.advance()
                    break
                elif token.type == TokenType.END:
                    self.fail(ErrorID.UNCLOSED_PARENTHESIS, opening)
                    return None
                else:
                    self.fail(ErrorID.UNEXPECTED_TOKEN, token)
                    return None

        if len(args) > function.argument_count:
            self.fail(ErrorID.TOO_MANY_ARGUMENTS, name_token)
            return None
        if len(args) < function.argument_count:
            self.fail(ErrorID.TOO_FEW_ARGUMENTS, name_token)
            return None

        return _fold_function(function, args)


def _function_table(functions) -> Dict[str, ExpressionFunction]:
    if functions is None:
        return {}
    if isinstance(functions, Mapping):
        return dict(functions)
    return {f.name: f for f in functions}


def parse(text: str,
          functions: Union[Mapping[str, ExpressionFunction], Iterable[ExpressionFunction], None] = None
          ) -> ParseResult:
    tokens, error = tokenize(text)
    if error:
        return ParseResult(None, error)

    parser = _Parser(tokens, _function_table(functions))
    root = parser.parse_expression(0)
    if not parser.error:
        trailing = parser.peek()
        if trailing.type != TokenType.END:
            parser.fail(ErrorID.UNEXPECTED_TOKEN, trailing)

    if parser.error:
        logger.debug(f"Failed to parse '{text}': {parser.error.id.name} at {parser.error.position}")
        return ParseResult(None, parser.error)
    return ParseResult(root)


# ── Tree helpers ─────────────────────────────────────────────────────────────

def is_tree_equal(a: Optional[ExpressionNode], b: Optional[ExpressionNode]) -> bool:
    stack = [(a, b)]
    while stack:
        x, y = stack.pop()
        if x is None or y is None:
            if x is not y:
                return False
            continue
        if type(x) is not type(y):
            return False
        if isinstance(x, NumberNode):
            if x.value != y.value:
                return False
        elif isinstance(x, VariableNode):
            if x.name != y.name:
                return False
        elif isinstance(x, OperatorNode):
            if x.op != y.op:
                return False
            stack.append((x.left, y.left))
            stack.append((x.right, y.right))
        else:
            if x.function.name != y.function.name or len(x.args) != len(y.args):
                return False
            stack.extend(zip(x.args, y.args))
    return True


def tree_to_string(node: Optional[ExpressionNode]) -> str:
    if node is None:
        return ""
    if isinstance(node, NumberNode):
        return f"{node.value:g}"
    if isinstance(node, VariableNode):
        return node.name
    if isinstance(node, OperatorNode):
        return f"({tree_to_string(node.left)} {node.op.value} {tree_to_string(node.right)})"
    return f"{node.function.name}({', '.join(tree_to_string(arg) for arg in node.args)})"


def get_variable_names(node: Optional[ExpressionNode]) -> List[str]:
    """Variable names in order of first appearance."""
    names: List[str] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current is None or isinstance(current, NumberNode):
            continue
        if isinstance(current, VariableNode):
            if current.name not in names:
                names.append(current.name)
        elif isinstance(current, OperatorNode):
            stack.append(current.right)
            stack.append(current.left)
        else:
            stack.extend(reversed(current.args))
    return names

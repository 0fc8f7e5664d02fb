"""Expression evaluation and statement execution for protocol method logic."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, auto

from .state_store import StateManager, StateValue

log = logging.getLogger(__name__)

_WHITESPACE = " \t"


class LogicEngineError(Exception):
    """Raised when logic cannot be parsed or executed."""


class ExpressionType(Enum):
    LITERAL = auto()
    VARIABLE = auto()
    BINARY_OP = auto()
    UNARY_OP = auto()
    FUNCTION_CALL = auto()


class OperatorType(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    EQ = "=="
    NE = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="
    AND = "&&"
    OR = "||"
    NOT = "!"
    ASSIGN = "="


def _parse_operator(symbol: str) -> OperatorType:
    """Map an operator symbol to its type, falling back to addition."""
    try:
        return OperatorType(symbol)
    except ValueError:
        return OperatorType.ADD


@dataclass
class ExpressionNode:
    """A node of a parsed expression tree."""

    type: ExpressionType = ExpressionType.LITERAL
    value: str = ""
    op: OperatorType = OperatorType.ADD
    left: ExpressionNode | None = None
    right: ExpressionNode | None = None


class VariableResolver(ABC):
    """Looks up and stores named variables for the logic engine."""

    @abstractmethod
    def resolve_variable(self, name: str) -> str: ...

    @abstractmethod
    def set_variable(self, name: str, value: str) -> None: ...

    @abstractmethod
    def has_variable(self, name: str) -> bool: ...


def _to_bool(value: str) -> bool:
    return StateValue.from_string(value).to_bool()


def _to_int(value: str) -> int:
    return StateValue.from_string(value).to_int()


def _to_float(value: str) -> float:
    return StateValue.from_string(value).to_float()


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def _float_text(value: float) -> str:
    return f"{value:f}"


def _split_statements(text: str) -> list[str]:
    """Split on ';', strip blanks and drop empty statements."""
    return [part for part in (raw.strip(_WHITESPACE) for raw in text.split(";")) if part]


class LogicEngine:
    """Evaluates expressions and runs method logic against a variable resolver."""

    def __init__(self, resolver: VariableResolver | None = None) -> None:
        self.resolver = resolver

    def _require_resolver(self) -> VariableResolver:
        if self.resolver is None:
            raise LogicEngineError("No variable resolver set")
        return self.resolver

    def parse_expression(self, expression: str) -> ExpressionNode:
        """Parse an expression into an assignment, a variable reference or a literal."""
        if "=" in expression:
            target, _, source = expression.partition("=")
            return ExpressionNode(
                type=ExpressionType.BINARY_OP,
                op=OperatorType.ASSIGN,
                left=ExpressionNode(ExpressionType.VARIABLE, target),
                right=ExpressionNode(ExpressionType.LITERAL, source),
            )
        first = expression[:1]
        if "." in expression or (first.isascii() and first.isalpha()):
            return ExpressionNode(ExpressionType.VARIABLE, expression)
        return ExpressionNode(ExpressionType.LITERAL, expression)

    def evaluate_expression(self, expression: str) -> str:
        self._require_resolver()
        return self.evaluate_node(self.parse_expression(expression))

    def evaluate_node(self, node: ExpressionNode) -> str:
        if node.type is ExpressionType.LITERAL:
            return self._parse_literal(node.value)
        if node.type is ExpressionType.VARIABLE:
            return self._parse_variable(node.value)
        if node.type is ExpressionType.BINARY_OP and node.left and node.right:
            left = self.evaluate_node(node.left)
            right = self.evaluate_node(node.right)
            return self._execute_binary_op(node.op, left, right)
        if node.type is ExpressionType.UNARY_OP and node.left:
            return self._execute_unary_op(node.op, self.evaluate_node(node.left))
        return ""

    def execute_assignment(self, assignment: str) -> None:
        """Evaluate the right side of 'name = expr' and store it under name."""
        resolver = self._require_resolver()
        if "=" not in assignment:
            raise LogicEngineError(f"Invalid assignment: {assignment}")
        target, _, source = assignment.partition("=")
        value = self.evaluate_expression(source.strip(_WHITESPACE))
        resolver.set_variable(target.strip(_WHITESPACE), value)

    def execute_condition(self, condition: str) -> bool:
        return _to_bool(self.evaluate_expression(condition))

    def _run_statement(self, statement: str) -> str | None:
        if statement.startswith("emit"):
            return None
        if "=" in statement:
            self.execute_assignment(statement)
            return None
        return self.evaluate_expression(statement)

    def _run_if(self, line: str) -> str | None:
        open_brace = line.find("{")
        close_brace = line.rfind("}")
        if open_brace < 0 or close_brace < 0:
            return None
        condition = line[2:open_brace].lstrip(" \t(").rstrip(" \t)")
        if close_brace > open_brace:
            body = line[open_brace + 1:close_brace]
        else:
            body = line[open_brace + 1:]
        log.debug("condition %r, body %r", condition, body)
        if not self.execute_condition(condition):
            return None
        result = None
        for statement in _split_statements(body):
            outcome = self._run_statement(statement)
            if outcome is not None:
                result = outcome
        return result

    def execute_method_logic(self, logic: str, args: Sequence[str] = ()) -> str:
        """Run ';'-separated statements and return the last evaluated expression."""
        del args  # parameters are bound on the resolver beforehand
        self._require_resolver()
        last_result = ""
        for line in _split_statements(logic):
            log.debug("processing %r", line)
            if line.startswith("emit"):
                continue
            if line.startswith("if"):
                outcome = self._run_if(line)
            else:
                outcome = self._run_statement(line)
            if outcome is not None:
                last_result = outcome
        return last_result

    def parse_parameters(self, param_str: str) -> list[str]:
        """Split a comma separated list, dropping blank entries."""
        stripped = (part.strip(_WHITESPACE) for part in param_str.split(","))
        return [part for part in stripped if part]

    @staticmethod
    def _parse_literal(literal: str) -> str:
        if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "\"'":
            return literal[1:-1]
        return literal

    def _parse_variable(self, name: str) -> str:
        if self.resolver is None:
            return ""
        for prefix in ("state.", "params."):
            if name.startswith(prefix):
                return self.resolver.resolve_variable(name[len(prefix):])
        return self.resolver.resolve_variable(name)

    def _execute_binary_op(self, op: OperatorType, left: str, right: str) -> str:
        if op is OperatorType.ADD:
            return _float_text(_to_float(left) + _to_float(right))
        if op is OperatorType.SUB:
            return _float_text(_to_float(left) - _to_float(right))
        if op is OperatorType.MUL:
            return _float_text(_to_float(left) * _to_float(right))
        if op is OperatorType.DIV:
            divisor = _to_float(right)
            if divisor == 0:
                return "0"
            return _float_text(_to_float(left) / divisor)
        if op is OperatorType.MOD:
            divisor = _to_int(right)
            if divisor == 0:
                raise LogicEngineError("Modulo by zero")
            return str(int(math.fmod(_to_int(left), divisor)))
        if op is OperatorType.EQ:
            return _bool_text(left == right)
        if op is OperatorType.NE:
            return _bool_text(left != right)
        if op is OperatorType.LT:
            return _bool_text(_to_float(left) < _to_float(right))
        if op is OperatorType.GT:
            return _bool_text(_to_float(left) > _to_float(right))
        if op is OperatorType.LE:
            return _bool_text(_to_float(left) <= _to_float(right))
        if op is OperatorType.GE:
            return _bool_text(_to_float(left) >= _to_float(right))
        if op is OperatorType.AND:
            return _bool_text(_to_bool(left) and _to_bool(right))
        if op is OperatorType.OR:
            return _bool_text(_to_bool(left) or _to_bool(right))
        if op is OperatorType.ASSIGN:
            if self.resolver is not None:
                self.resolver.set_variable(left, right)
            return right
        return left

    @staticmethod
    def _execute_unary_op(op: OperatorType, operand: str) -> str:
        if op is OperatorType.NOT:
            return _bool_text(not _to_bool(operand))
        if op is OperatorType.SUB:
            return _float_text(-_to_float(operand))
        return operand


class StateVariableResolver(VariableResolver):
    """Resolves names against method parameters first, then the state manager."""

    def __init__(self, state_manager: StateManager | None) -> None:
        self.state_manager = state_manager
        self._params: dict[str, str] = {}

    def set_parameters(self, parameters: Mapping[str, str]) -> None:
        self._params = dict(parameters)

    def set_parameter(self, name: str, value: str) -> None:
        self._params[name] = value

    def _state_string(self, key: str) -> str:
        if self.state_manager is None:
            return ""
        return self.state_manager.get_string(key)

    def resolve_variable(self, name: str) -> str:
        if name.startswith("params."):
            return self._params.get(name[len("params."):], "")
        if name.startswith("state."):
            return self._state_string(name[len("state."):])
        if name in self._params:
            return self._params[name]
        return self._state_string(name)

    def set_variable(self, name: str, value: str) -> None:
        if name.startswith("state."):
            if self.state_manager is not None:
                self.state_manager.set(name[len("state."):], value)
            return
        if name.startswith("params."):
            self._params[name[len("params."):]] = value
            return
        if self.state_manager is not None:
            self.state_manager.set(name, value)

    def has_variable(self, name: str) -> bool:
        if name in self._params:
            return True
        if self.state_manager is not None:
            return self.state_manager.has(name)
        return False
"""
Calculator Tool
===============

Safe arithmetic for tool_execution requests like "What is 15 + 27?".

The expression is parsed with the `ast` module and only numeric
literals, parentheses and the operators + - * / // % ** (and unary +/-)
are evaluated. Nothing is ever passed to eval().
"""

import ast
import math
import operator
import re

from memagent.tools import MCPTool, ToolRegistry, ToolResult
from memagent.utils.logger import Logger

logger = Logger("CalculatorTool")

ALLOWED_CHARACTERS = re.compile(r"^[0-9+\-*/%.()\s]+$")

# Guards against expressions like 9**9**9 and ((9**999)**999)**999
MAX_EXPONENT = 1000
MAX_RESULT_DIGITS = 1000
_MAX_RESULT_BITS = int(MAX_RESULT_DIGITS * math.log2(10)) + 1

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class CalculationError(ValueError):
    """The expression is not valid arithmetic or cannot be evaluated."""


def _check_size(value: int | float) -> int | float:
    if isinstance(value, int) and value.bit_length() > _MAX_RESULT_BITS:
        raise CalculationError(f"Result too large (more than {MAX_RESULT_DIGITS} digits)")
    return value


def _check_power(base: int | float, exponent: int | float) -> None:
    """Reject powers whose result would exceed the size bound before computing them."""
    if abs(exponent) > MAX_EXPONENT:
        raise CalculationError(f"Exponent too large: {exponent}")
    if isinstance(base, int) and isinstance(exponent, int) and exponent > 0:
        if (abs(base).bit_length() - 1) * exponent > _MAX_RESULT_BITS:
            raise CalculationError(f"Result too large (more than {MAX_RESULT_DIGITS} digits)")


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)

    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return _check_size(node.value)

    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        try:
            return _check_size(_BINARY_OPERATORS[type(node.op)](left, right))
        except ZeroDivisionError:
            raise CalculationError("Division by zero")
        except OverflowError:
            raise CalculationError("Result too large")

    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate(node.operand))

    raise CalculationError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> int | float:
    """
    Evaluate an arithmetic expression.

    Integral results are returned as int, so "15 + 27" gives 42, not 42.0.

    Raises:
        CalculationError: Invalid characters, syntax, or result
    """
    expression = expression.strip()
    if not expression or not ALLOWED_CHARACTERS.match(expression):
        raise CalculationError(
            "Expression contains invalid characters. Only numbers, + - * / % ( ) . and spaces are allowed."
        )

    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise CalculationError(f"Invalid expression: {e.msg}")
    except ValueError as e:
        raise CalculationError(f"Invalid expression: {e}")

    result = _evaluate(tree)
    if isinstance(result, complex) or (isinstance(result, float) and not math.isfinite(result)):
        raise CalculationError("Invalid mathematical expression or result")

    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result


# ==============================================================================
# Tool: Calculator
# ==============================================================================

async def _calculate(params: dict) -> ToolResult:
    """Evaluate the `expression` parameter."""
    expression = params["expression"]
    try:
        result = evaluate_expression(expression)
    except CalculationError as e:
        logger.debug(f"Calculation rejected: {e}")
        return ToolResult(success=False, error=str(e))

    return ToolResult(success=True, data={"expression": expression, "result": result})


calculator_tool = MCPTool(
    name="calculator",
    description="Perform basic arithmetic calculations safely",
    parameters={
        "type": "object",
        "properties": {
            "expression": {
                "type": "string",
                "description": 'Arithmetic expression to evaluate (e.g., "2 + 2", "10 * (5 - 1)", "100 / 4")'
            }
        },
        "required": ["expression"]
    },
    execute=_calculate
)


def register_calculator_tools(registry: ToolRegistry) -> None:
    registry.register(calculator_tool)

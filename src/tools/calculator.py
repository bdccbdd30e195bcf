"""Calculator tool - arithmetic on + - * / and parentheses."""

import ast
import math
import operator
import re
from typing import Any, Union

from tools.base import BaseTool

SAFE_EXPRESSION_RE = re.compile(r"^[0-9+\-*/().]+$")

BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

Number = Union[int, float]


def _check_brackets(expression: str) -> None:
    depth = 0
    for char in expression:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if depth < 0:
            raise ValueError("Unbalanced parentheses")
    if depth != 0:
        raise ValueError("Unbalanced parentheses")


def _evaluate_node(node: ast.AST) -> Number:
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in BINARY_OPERATORS:
        left = _evaluate_node(node.left)
        right = _evaluate_node(node.right)
        if isinstance(node.op, ast.Div) and right == 0:
            raise ValueError("Division by zero")
        return BINARY_OPERATORS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in UNARY_OPERATORS:
        return UNARY_OPERATORS[type(node.op)](_evaluate_node(node.operand))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def safe_evaluate(expression: str) -> Number:
    """
    Evaluate an arithmetic expression without eval().

    Raises:
        ValueError: On unsafe characters, unbalanced parentheses, syntax
            errors or a non-finite result
    """
    clean = re.sub(r"\s+", "", expression)
    if not clean or not SAFE_EXPRESSION_RE.match(clean):
        raise ValueError("Expression contains unsafe characters")

    _check_brackets(clean)

    try:
        tree = ast.parse(clean, mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid expression: {e.msg}")

    result = _evaluate_node(tree)
    if isinstance(result, float) and not math.isfinite(result):
        raise ValueError("Result is not a finite number")
    return result


class CalculatorTool(BaseTool):
    """Evaluate arithmetic expressions."""

    name = "Calculator"
    description = "Perform mathematical calculations"
    input_schema = {
        "type": "object",
        "properties": {
            "expression": {
                "type": "string",
                "description": "Arithmetic expression, e.g. 2 + 3 * 4"
            }
        },
        "required": ["expression"]
    }

    async def execute(self, input: dict[str, Any]) -> dict[str, Any]:
        expression = input["expression"]
        result = safe_evaluate(expression)

        return {
            "success": True,
            "expression": expression,
            "result": result,
            "type": type(result).__name__
        }

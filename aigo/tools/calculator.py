from __future__ import annotations

from typing import Any, Mapping

from aigo.tools.base import ToolBase
from aigo.tools.exceptions import ToolExecutionError


def _fmt(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class CalculatorTool(ToolBase):
    """Basic arithmetic on two numbers."""

    name = "calculator"
    description = "Performs basic arithmetic operations. Use this tool to calculate numbers."
    parameters = {
        "type": "object",
        "properties": {
            "operation": {
                "type": "string",
                "enum": ["add", "subtract", "multiply", "divide", "percent_of"],
                "description": "The operation to perform",
            },
            "a": {"type": "number", "description": "The first number"},
            "b": {"type": "number", "description": "The second number"},
        },
        "required": ["operation", "a", "b"],
    }

    def invoke(self, arguments: Mapping[str, Any]) -> str:
        operation = arguments.get("operation")
        try:
            a = float(arguments["a"])
            b = float(arguments["b"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ToolExecutionError(f"invalid operands: {exc}", self.name) from exc

        if operation == "add":
            return f"{_fmt(a)} + {_fmt(b)} = {_fmt(a + b)}"
        if operation == "subtract":
            return f"{_fmt(a)} - {_fmt(b)} = {_fmt(a - b)}"
        if operation == "multiply":
            return f"{_fmt(a)} × {_fmt(b)} = {_fmt(a * b)}"
        if operation == "divide":
            if b == 0:
                raise ToolExecutionError("division by zero", self.name)
            return f"{_fmt(a)} ÷ {_fmt(b)} = {_fmt(a / b)}"
        if operation == "percent_of":
            return f"{_fmt(a)}% of {_fmt(b)} = {_fmt(a * b / 100)}"
        raise ToolExecutionError(f"unknown operation: {operation!r}", self.name)

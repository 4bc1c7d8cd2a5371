from aigo.tools.base import ToolBase
from aigo.tools.calculator import CalculatorTool
from aigo.tools.exceptions import ToolError, ToolExecutionError, ToolNotFoundError
from aigo.tools.registry import ToolRegistry

__all__ = [
    "ToolBase",
    "ToolRegistry",
    "CalculatorTool",
    "ToolError",
    "ToolNotFoundError",
    "ToolExecutionError",
]

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping


class ToolBase(ABC):
    """A callable action the model can request.

    Subclasses set ``name``, ``description`` and ``parameters`` (a JSON
    schema object) and implement ``invoke``. ``invoke`` returns any value;
    non-string results are JSON-serialised by the loop. Raising signals a
    failed invocation.
    """

    name: str = ""
    description: str = ""
    parameters: Dict[str, Any] = {"type": "object", "properties": {}}

    @abstractmethod
    def invoke(self, arguments: Mapping[str, Any]) -> Any: ...

    async def ainvoke(self, arguments: Mapping[str, Any]) -> Any:
        """Async entry point used by the loop. Runs ``invoke`` off the event loop."""
        return await asyncio.to_thread(self.invoke, arguments)

    def to_schema(self) -> Dict[str, Any]:
        """OpenAI function-calling definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"

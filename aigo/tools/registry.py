from __future__ import annotations

import threading
from typing import Dict, List, Optional

from aigo.tools.base import ToolBase
from aigo.tools.exceptions import ToolNotFoundError
from utils.logger import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Thread-safe name -> tool mapping.

    One registry is normally built at startup and passed to the agent; it may
    be repopulated later (``clear`` then ``register``) while requests read it.
    """

    def __init__(self, tools: Optional[List[ToolBase]] = None) -> None:
        self._lock = threading.RLock()
        self._tools: Dict[str, ToolBase] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolBase) -> None:
        if not tool.name:
            raise ValueError(f"Tool {tool!r} has no name")
        with self._lock:
            if tool.name in self._tools:
                logger.warning("tool_replaced", tool_name=tool.name)
            self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def unregister(self, name: str) -> Optional[ToolBase]:
        with self._lock:
            return self._tools.pop(name, None)

    def get(self, name: str) -> Optional[ToolBase]:
        with self._lock:
            return self._tools.get(name)

    def require(self, name: str) -> ToolBase:
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool {name} not found", name)
        return tool

    def all(self) -> List[ToolBase]:
        with self._lock:
            return list(self._tools.values())

    def clear(self) -> None:
        with self._lock:
            self._tools.clear()
        logger.debug("tool_registry_cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools

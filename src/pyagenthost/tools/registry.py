from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional

from .base import Tool, ToolSpec

@dataclass
class ToolRegistry:
    _tools: Dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        name = tool.spec.name
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = tool

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise KeyError(f"Unknown tool: {name}")
        return self._tools[name]

    def get_optional(self, name: str) -> Optional[Tool]:
        """Return a tool if registered, otherwise None.

        Discovery uses this so a hallucinated tool name becomes a validation
        error instead of an exception.
        """
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_specs(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..types import ToolDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tool:
    """
    A callable capability exposed to the model.

    ``execute`` receives the parsed arguments dict and may be sync or async;
    non-string results are JSON-encoded by the registry.
    """
    name: str
    description: str
    parameters: Dict[str, Any]
    execute: Callable[[Dict[str, Any]], Any]

    def definition(self) -> ToolDefinition:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


class ToolRegistry:
    """Lookup from tool name to descriptor, built once at startup."""

    def __init__(self, tools: Iterable[Tool]):
        self._tools: Dict[str, Tool] = {tool.name: tool for tool in tools}

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def definitions_for(self, names: Optional[Iterable[str]]) -> List[ToolDefinition]:
        """
        Definitions for the enabled tools, in the order given.

        Unknown and duplicate names are skipped.
        """
        definitions = []
        seen = set()
        for name in names or []:
            tool = self._tools.get(name)
            if tool is None or name in seen:
                continue
            seen.add(name)
            definitions.append(tool.definition())
        return definitions

    async def execute(self, name: str, args: Optional[Dict[str, Any]] = None) -> str:
        """
        Run a tool and return its result as a string.

        Never raises: an unknown tool or a failing tool becomes a JSON
        ``{"error": ...}`` string, which the model receives as the result.
        """
        tool = self._tools.get(name)
        if tool is None:
            return json.dumps({"error": f"Unknown tool: {name}"})

        try:
            result = tool.execute(args or {})
            if asyncio.iscoroutine(result):
                result = await result
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return json.dumps({"error": str(e)})

        return result if isinstance(result, str) else json.dumps(result, default=str)

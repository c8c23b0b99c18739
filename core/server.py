from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from storage import QueryEngine, QueryExecutionError

from .executor import DEFAULT_SAMPLE_SIZE, SamplingExecutor
from .gateway import ResourceGateway
from .registry import ResourceRegistry

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised for invalid tool arguments."""
    pass


@dataclass
class Tool:
    name: str
    handler: Callable[[Dict[str, Any], "DualResponseServer"], Any]
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


class DualResponseServer:
    """Owns the shared pieces of the dual-response protocol and executes tool calls.

    One instance holds the query engine, the resource registry, the sampling
    executor (tool side) and the gateway (REST side), so both surfaces see the
    same resources.

    Config keys (all optional): db_path, base_url, sample_size, dual_response,
    resource_ttl_seconds, debug.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.debug = bool(self.config.get("debug", False))
        self.dual_response = bool(self.config.get("dual_response", True))
        self.base_url = str(self.config.get("base_url") or "http://localhost:3000").rstrip("/")
        self.engine = QueryEngine(self.config.get("db_path") or "insights.sqlite")
        self.resources = ResourceRegistry(default_ttl_seconds=self.config.get("resource_ttl_seconds"))
        self.executor = SamplingExecutor(
            self.engine,
            self.resources,
            self.base_url,
            sample_size=int(self.config.get("sample_size") or DEFAULT_SAMPLE_SIZE),
        )
        self.gateway = ResourceGateway(self.resources, self.engine)
        self._tools: Dict[str, Tool] = {}

    # --- Tool table ---
    def register(self, name: str, handler: Callable[..., Any], *, description: str = "",
                 input_schema: Optional[Dict[str, Any]] = None) -> None:
        if not isinstance(name, str) or not name:
            raise ValueError("Tool name must be a non-empty string")
        schema = input_schema or {"type": "object", "properties": {}}
        self._tools[name] = Tool(name, handler, description, schema)

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list_tools(self) -> Dict[str, List[Dict[str, Any]]]:
        return {"tools": [t.describe() for t in self._tools.values()]}

    # --- Public API ---
    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a tool and wrap its output as an MCP tool result.

        Dict results are sent both as JSON text content and as structuredContent.
        Query failures become an `isError` result carrying the engine message;
        ValidationError and unknown tools propagate to the caller.
        """
        tool = self.get_tool(name)
        if tool is None:
            raise LookupError(f"Unknown tool: {name}")
        try:
            result = tool.handler(arguments or {}, self)
        except QueryExecutionError as e:
            logger.warning("Tool %s failed: %s", name, e)
            return {
                "content": [{"type": "text", "text": f"SQL execution failed: {e}"}],
                "isError": True,
            }
        return self._tool_result(result)

    @staticmethod
    def _tool_result(result: Any) -> Dict[str, Any]:
        if isinstance(result, str):
            return {"content": [{"type": "text", "text": result}]}
        text = json.dumps(result, indent=2, ensure_ascii=False, default=str)
        payload: Dict[str, Any] = {"content": [{"type": "text", "text": text}]}
        if isinstance(result, dict):
            payload["structuredContent"] = result
        return payload

from __future__ import annotations

from importlib.metadata import entry_points
from typing import Callable, Dict, Any

from loguru import logger

_REGISTRY: Dict[str, Dict[str, Any]] = {}


def tool(name: str, description: str, input_schema: dict):
    """Decorator to register an MCP tool implementation.

    Example:
        @tool("hello", "Say hello", {"type": "object", "properties": {"name": {"type": "string"}}})
        async def hello_tool(name: str = "world") -> str:
            return f"Hello {name}!"
    """

    def _decorator(fn: Callable):
        _REGISTRY[name] = {
            "fn": fn,
            "description": description,
            "inputSchema": input_schema,
        }
        return fn

    return _decorator


def discover() -> Dict[str, Dict[str, Any]]:
    """Populate registry from the builtin module and entry-points; return the registry."""

    import importlib

    importlib.import_module("nano_banana.mcp.implementations_builtin")

    for ep in entry_points(group="nano_banana.tools"):
        try:
            ep.load()
        except Exception as exc:
            logger.warning(f"Failed to load tool entry-point {ep.name}: {exc}")

    return _REGISTRY

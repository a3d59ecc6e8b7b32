"""
Shared helper for running chuk-mcp-tilemachine MCP tools directly from Python.

Provides a ToolRunner class that registers all MCP tools and sets up
an in-memory artifact store, without requiring a full MCP transport layer.
Demo scripts use this to call tools as plain async functions and to read
rendered images back out of the store.

Usage:
    from tool_runner import ToolRunner

    async def main():
        runner = ToolRunner(raster_root="/data")
        result = await runner.run("tile_list_examples")
        print(result)
"""

from __future__ import annotations

import json
import os
from typing import Any

from chuk_artifacts import ArtifactStore
from chuk_mcp_server import set_global_artifact_store

from chuk_mcp_tilemachine.core.tile_manager import TileManager
from chuk_mcp_tilemachine.tools.discovery import register_discovery_tools
from chuk_mcp_tilemachine.tools.render import register_render_tools
from chuk_mcp_tilemachine.tools.script import register_script_tools


class _MiniMCP:
    """Minimal MCP server that captures tools registered via @mcp.tool."""

    def __init__(self) -> None:
        self._tools: dict[str, Any] = {}

    def tool(self) -> Any:
        """Decorator factory matching @mcp.tool() usage."""

        def decorator(fn: Any) -> Any:
            self._tools[fn.__name__] = fn
            return fn

        return decorator

    def get_tool(self, name: str) -> Any:
        return self._tools[name]


class ToolRunner:
    """
    Run chuk-mcp-tilemachine MCP tools directly from Python.

    All 9 tools are registered and callable via run(tool_name, **kwargs).
    Returns parsed JSON by default. Use run_text() for human-readable
    output. An in-memory artifact store is initialized automatically.
    """

    def __init__(self, raster_root: str | None = None, max_workers: int | None = None) -> None:
        os.environ.setdefault("CHUK_ARTIFACTS_PROVIDER", "memory")
        self.store = ArtifactStore(storage_provider="memory", session_provider="memory")
        set_global_artifact_store(self.store)

        self._mcp = _MiniMCP()
        self.manager = TileManager(raster_root=raster_root, max_workers=max_workers)
        register_discovery_tools(self._mcp, self.manager)
        register_script_tools(self._mcp, self.manager)
        register_render_tools(self._mcp, self.manager)

    @property
    def tool_names(self) -> list[str]:
        return list(self._mcp._tools.keys())

    async def run(self, tool_name: str, **kwargs: Any) -> dict[str, Any]:
        """Call a tool by name and return parsed JSON."""
        fn = self._mcp.get_tool(tool_name)
        raw = await fn(**kwargs)
        return json.loads(raw)

    async def run_text(self, tool_name: str, **kwargs: Any) -> str:
        """Call a tool by name with output_mode='text' and return plaintext."""
        fn = self._mcp.get_tool(tool_name)
        return await fn(output_mode="text", **kwargs)

    async def save_artifact(self, artifact_ref: str, path: str) -> int:
        """Write a stored image to disk; returns the byte count."""
        data = await self.store.retrieve(artifact_ref)
        with open(path, "wb") as f:
            f.write(data)
        return len(data)

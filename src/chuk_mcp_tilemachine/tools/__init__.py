"""MCP tool registration for chuk-mcp-tilemachine."""

from .discovery import register_discovery_tools
from .render import register_render_tools
from .script import register_script_tools

__all__ = ["register_discovery_tools", "register_render_tools", "register_script_tools"]

#!/usr/bin/env python3
"""
Async TileMachine MCP Server using chuk-mcp-server

Renders user pixel scripts over named raster inputs into PNG, JPEG or
GeoTIFF images (arbitrary windows or XYZ tiles) and stores them in
chuk-artifacts.

Storage is managed through chuk-mcp-server's built-in artifact store context.
"""

import logging

from chuk_mcp_server import ChukMCPServer

from .constants import ServerConfig
from .core.tile_manager import TileManager
from .tools.discovery import register_discovery_tools
from .tools.render import register_render_tools
from .tools.script import register_script_tools

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

mcp = ChukMCPServer(ServerConfig.NAME)

# Raster root and worker count come from the environment; server.main may override them
manager = TileManager()

register_discovery_tools(mcp, manager)
register_script_tools(mcp, manager)
register_render_tools(mcp, manager)

if __name__ == "__main__":
    logger.info("Starting TileMachine MCP Server...")
    logger.info("Storage: Using chuk-mcp-server artifact store context")
    mcp.run(stdio=True)

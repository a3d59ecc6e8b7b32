"""
Discovery tools: example catalog listing and description, status, capabilities.

These tools require no raster I/O and return information about the example
scripts and server configuration.
"""

import json
import logging
import os

from ...constants import (
    ALL_EXAMPLE_NAMES,
    BOUNDS_POLICIES,
    DEFAULT_EXAMPLE,
    MATH_FUNCTIONS,
    MAX_ZOOM,
    OUTPUT_FORMATS,
    SCRIPT_GLOBALS,
    SUPPORTED_SCHEMES,
    TILE_SIZES,
    EnvVar,
    ServerConfig,
    StorageProvider,
    SuccessMessages,
)
from ...models.responses import (
    CapabilitiesResponse,
    ErrorResponse,
    ExampleDetailResponse,
    ExampleInfo,
    ExamplesResponse,
    StatusResponse,
    format_response,
)

logger = logging.getLogger(__name__)

TOOL_COUNT = 9


def register_discovery_tools(mcp, manager):
    """Register discovery tools with the MCP server."""

    @mcp.tool()
    async def tile_list_examples(output_mode: str = "json") -> str:
        """List the example custom scripts with their named raster inputs.

        Use this to find a working request to start from before writing your own script.

        Args:
            output_mode: "json" for structured data, "text" for human-readable summary

        Returns:
            List of example scripts with their inputs
        """
        try:
            examples = [ExampleInfo(**e) for e in manager.list_examples()]
            response = ExamplesResponse(
                examples=examples,
                default=DEFAULT_EXAMPLE,
                message=SuccessMessages.EXAMPLES_LIST.format(len(examples)),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_list_examples failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

    @mcp.tool()
    async def tile_describe_example(name: str = DEFAULT_EXAMPLE, output_mode: str = "json") -> str:
        """Get one example script in full, including a serialized request that can be
        passed straight to tile_render, tile_render_xyz or tile_bounds.

        Args:
            name: Example name (nz_rgb, nz_dsm, palm_rgb, s2_ndvi, palm_dsm, palm_rgb_dsm)
            output_mode: "json" for structured data, "text" for human-readable summary

        Returns:
            Example inputs, script text and request JSON
        """
        try:
            data = manager.describe_example(name)
            response = ExampleDetailResponse(
                name=data["name"],
                title=data["title"],
                inputs=data["inputs"],
                script=data["script"],
                request=json.dumps(data["request"]),
                message=SuccessMessages.EXAMPLE_DESCRIBE.format(data["title"], len(data["inputs"])),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_describe_example failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

    @mcp.tool()
    async def tile_status(output_mode: str = "json") -> str:
        """Get server status including version, raster root and storage configuration.

        Args:
            output_mode: "json" for structured data, "text" for human-readable summary

        Returns:
            Server status information
        """
        try:
            provider = os.environ.get(EnvVar.ARTIFACTS_PROVIDER, StorageProvider.MEMORY)

            store_available = False
            try:
                manager._get_store()
                store_available = True
            except RuntimeError:
                pass

            response = StatusResponse(
                server=ServerConfig.NAME,
                version=ServerConfig.VERSION,
                example_count=len(ALL_EXAMPLE_NAMES),
                raster_root=manager.raster_root,
                max_workers=manager.max_workers,
                storage_provider=provider,
                artifact_store_available=store_available,
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_status failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

    @mcp.tool()
    async def tile_capabilities(output_mode: str = "json") -> str:
        """Get full server capabilities: source schemes, bounds policies, output formats,
        tile sizes and the script language surface.

        Args:
            output_mode: "json" for structured data, "text" for human-readable summary

        Returns:
            Complete server capabilities
        """
        try:
            response = CapabilitiesResponse(
                server=ServerConfig.NAME,
                version=ServerConfig.VERSION,
                examples=ALL_EXAMPLE_NAMES,
                source_schemes=SUPPORTED_SCHEMES,
                bounds_policies=BOUNDS_POLICIES,
                output_formats=OUTPUT_FORMATS,
                tile_sizes=TILE_SIZES,
                max_zoom=MAX_ZOOM,
                script_globals=SCRIPT_GLOBALS,
                math_functions=MATH_FUNCTIONS,
                tool_count=TOOL_COUNT,
                llm_guidance=(
                    "Requests are JSON: {\"inputs\": {name: source}, \"script\": text}. "
                    "The first input fixes the reference CRS. "
                    "Each input binds to an array of band values for the current pixel "
                    "(NaN where that input has no data). "
                    "The script must return [r, g, b] or [r, g, b, a] in 0-255. "
                    "Use tile_describe_example for working requests, "
                    "tile_compile to check a script, tile_bounds for the input extent, "
                    "then tile_render or tile_render_xyz to produce an image. "
                    "tile_wms_capabilities describes a request as a WMS layer."
                ),
                message=f"{ServerConfig.NAME} v{ServerConfig.VERSION} capabilities",
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_capabilities failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

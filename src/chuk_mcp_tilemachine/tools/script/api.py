"""
Script tools: compile check, combined input bounds and WMS capabilities.

tile_compile performs no raster I/O. tile_bounds and tile_wms_capabilities
open the declared inputs to read their extents and CRS but never evaluate the
script.
"""

import logging

from ...constants import (
    DEFAULT_BOUNDS_POLICY,
    OUTPUT_FORMATS,
    OUTPUT_MIME_TYPES,
    WMS_LAYER_NAME,
    WMS_VERSION,
    SuccessMessages,
)
from ...models.requests import CustomScriptRequest
from ...models.responses import (
    BoundsResponse,
    CompileResponse,
    ErrorResponse,
    WmsCapabilitiesResponse,
    format_response,
)

logger = logging.getLogger(__name__)


def register_script_tools(mcp, manager):
    """Register script tools with the MCP server."""

    @mcp.tool()
    async def tile_compile(request: str, output_mode: str = "json") -> str:
        """Check a custom script against its declared inputs without rendering.

        Reports syntax errors with line and column, forbidden constructs
        (loops, I/O, timers, Math.random) and references to undeclared inputs.

        Args:
            request: JSON {"inputs": {name: source}, "script": text}
            output_mode: "json" or "text"

        Returns:
            Referenced and unused inputs plus hoisted constants
        """
        try:
            parsed = CustomScriptRequest.from_json(request)
            result = manager.compile_request(parsed)

            response = CompileResponse(
                inputs=result.inputs,
                referenced_inputs=result.referenced_inputs,
                unused_inputs=result.unused_inputs,
                constants=result.constants,
                message=SuccessMessages.COMPILE_OK.format(
                    len(result.referenced_inputs), len(result.constants)
                ),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_compile failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

    @mcp.tool()
    async def tile_bounds(
        request: str,
        policy: str = DEFAULT_BOUNDS_POLICY,
        resolution: float | None = None,
        output_mode: str = "json",
    ) -> str:
        """Compute the combined bounding box of a request's inputs.

        Every input extent is reprojected into the CRS of the first input.
        The script is not evaluated.

        Args:
            request: JSON {"inputs": {name: source}, "script": text}
            policy: "intersection" (default) or "union"
            resolution: Pixel size in reference CRS units (None = finest input)
            output_mode: "json" or "text"

        Returns:
            Bounding box in the reference CRS and in WGS84, plus a GeoJSON polygon
        """
        try:
            parsed = CustomScriptRequest.from_json(request)
            bounds = await manager.get_bounds(parsed, policy=policy, resolution=resolution)

            width, height = bounds.default_shape()
            response = BoundsResponse(
                bbox=bounds.bbox,
                crs=bounds.crs_string,
                resolution=bounds.resolution,
                wgs84_bbox=bounds.to_wgs84(),
                polygon=bounds.as_polygon(),
                inputs=parsed.input_names,
                policy=bounds.policy,
                default_shape=[width, height],
                message=SuccessMessages.BOUNDS_COMPUTED.format(
                    len(parsed.input_names), bounds.policy
                ),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_bounds failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

    @mcp.tool()
    async def tile_wms_capabilities(
        request: str,
        policy: str = DEFAULT_BOUNDS_POLICY,
        layer_name: str = WMS_LAYER_NAME,
        service_url: str | None = None,
        output_mode: str = "json",
    ) -> str:
        """Describe a request as a single-layer WMS 1.3.0 service.

        The script is compiled first, then the combined input bounds become
        the layer extent. Inputs must carry a CRS.

        Args:
            request: JSON {"inputs": {name: source}, "script": text}
            policy: "intersection" (default) or "union"
            layer_name: Layer name advertised in the document
            service_url: Base URL for OnlineResource links (omitted if None)
            output_mode: "json" or "text"

        Returns:
            GetCapabilities XML with the layer extent and GetMap formats
        """
        try:
            parsed = CustomScriptRequest.from_json(request)
            bounds, document = await manager.get_wms_capabilities(
                parsed, policy=policy, layer_name=layer_name, service_url=service_url
            )

            response = WmsCapabilitiesResponse(
                layer_name=layer_name,
                version=WMS_VERSION,
                crs=bounds.crs_string,
                bbox=bounds.bbox,
                wgs84_bbox=bounds.to_wgs84(),
                formats=[OUTPUT_MIME_TYPES[fmt] for fmt in OUTPUT_FORMATS],
                capabilities_xml=document,
                message=SuccessMessages.WMS_CAPABILITIES.format(
                    WMS_VERSION, layer_name, bounds.crs_string
                ),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_wms_capabilities failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

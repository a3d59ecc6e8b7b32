"""
Render tools: custom-script window render and XYZ tile render.

These tools read raster data, evaluate the script per output pixel and store
the encoded image in the artifact store.
"""

import logging

from ...constants import (
    DEFAULT_BOUNDS_POLICY,
    DEFAULT_OUTPUT_FORMAT,
    TILE_SIZE,
    WGS84,
    SuccessMessages,
)
from ...models.requests import CustomScriptRequest
from ...models.responses import (
    ErrorResponse,
    RenderResponse,
    TileResponse,
    format_response,
)

logger = logging.getLogger(__name__)


def register_render_tools(mcp, manager):
    """Register render tools with the MCP server."""

    @mcp.tool()
    async def tile_render(
        request: str,
        bbox: list[float] | None = None,
        bbox_crs: str = WGS84,
        width: int | None = None,
        height: int | None = None,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
        policy: str = DEFAULT_BOUNDS_POLICY,
        output_mode: str = "json",
    ) -> str:
        """Render a custom script over a window and store the image as an artifact.

        Pixels where every input is nodata are transparent. Pixels whose script
        evaluation fails are transparent and counted in fault_count; the render
        itself still succeeds.

        Args:
            request: JSON {"inputs": {name: source}, "script": text}
            bbox: Window [xmin, ymin, xmax, ymax] in bbox_crs (None = input bounds)
            bbox_crs: CRS of bbox (default EPSG:4326)
            width: Output width in pixels (None = derived)
            height: Output height in pixels (None = derived)
            output_format: png, jpeg or geotiff
            policy: Bounds policy when bbox is omitted (intersection or union)
            output_mode: "json" or "text"

        Returns:
            Artifact reference with shape, window and fault counts
        """
        try:
            parsed = CustomScriptRequest.from_json(request)
            result = await manager.render_window(
                parsed,
                bbox=bbox,
                bbox_crs=bbox_crs,
                width=width,
                height=height,
                output_format=output_format,
                policy=policy,
            )

            response = RenderResponse(
                artifact_ref=result.artifact_ref,
                output_format=result.output_format,
                crs=result.crs,
                bbox=result.bbox,
                shape=result.shape,
                fault_count=result.fault_count,
                nodata_pixels=result.nodata_pixels,
                message=SuccessMessages.RENDER_COMPLETE.format(
                    result.shape[1],
                    result.shape[0],
                    result.output_format,
                    result.fault_count,
                    result.nodata_pixels,
                ),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_render failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

    @mcp.tool()
    async def tile_render_xyz(
        request: str,
        z: int,
        x: int,
        y: int,
        tile_size: int = TILE_SIZE,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
        output_mode: str = "json",
    ) -> str:
        """Render one XYZ map tile (EPSG:3857, y counted from the top).

        Args:
            request: JSON {"inputs": {name: source}, "script": text}
            z: Zoom level (0-24)
            x: Tile column
            y: Tile row
            tile_size: Tile edge in pixels (256 or 512)
            output_format: png, jpeg or geotiff
            output_mode: "json" or "text"

        Returns:
            Artifact reference for the tile image with fault counts
        """
        try:
            parsed = CustomScriptRequest.from_json(request)
            result = await manager.render_tile(
                parsed, z, x, y, tile_size=tile_size, output_format=output_format
            )

            response = TileResponse(
                artifact_ref=result.artifact_ref,
                output_format=result.output_format,
                z=z,
                x=x,
                y=y,
                tile_size=tile_size,
                bbox=result.bbox,
                fault_count=result.fault_count,
                nodata_pixels=result.nodata_pixels,
                message=SuccessMessages.TILE_COMPLETE.format(
                    z, x, y, result.fault_count, result.nodata_pixels
                ),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tile_render_xyz failed: {e}")
            return format_response(ErrorResponse.from_exception(e), output_mode)

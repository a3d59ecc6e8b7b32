"""
Tile Manager: central orchestrator for custom-script rendering.

Compiles the script, resolves sources, computes bounds, renders and encodes,
and stores the encoded image in the artifact store. Compile and bounds errors
are raised before any pixel work starts. All blocking raster work runs in
asyncio.to_thread(); cancelling the awaiting task stops the render between
row blocks.
"""

import asyncio
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any

from ..constants import (
    ALL_EXAMPLE_NAMES,
    DEFAULT_BOUNDS_POLICY,
    DEFAULT_MAX_DIMENSION,
    DEFAULT_MAX_WORKERS,
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_ROW_BLOCK,
    MAX_RENDER_PIXELS,
    OUTPUT_FORMATS,
    OUTPUT_MIME_TYPES,
    OUTPUT_SUFFIXES,
    SCRIPT_EXAMPLES,
    TILE_SIZE,
    WGS84,
    WMS_LAYER_NAME,
    BoundsPolicy,
    EnvVar,
    ErrorMessages,
)
from ..models.requests import CustomScriptRequest
from . import engine, raster_io, tiles, wms
from .bounds import BoundsResult, compute_bounds
from .errors import IncompatibleCRS
from .script import CompiledPixelFunction, compile_script
from .sources import SourceRegistry

logger = logging.getLogger(__name__)


@dataclass
class CompileResult:
    """Result of compiling a request's script."""

    inputs: list[str]
    referenced_inputs: list[str]
    unused_inputs: list[str]
    constants: list[str]
    pixel_fn: CompiledPixelFunction = field(repr=False)


@dataclass
class RenderResult:
    """Result of a window or tile render."""

    artifact_ref: str
    output_format: str
    crs: str | None
    bbox: list[float]
    shape: list[int]
    fault_count: int
    nodata_pixels: int
    tile: list[int] | None = None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default
    return value if value > 0 else default


class TileManager:
    """Central manager for custom-script rendering."""

    def __init__(
        self,
        raster_root: str | None = None,
        max_workers: int | None = None,
        row_block: int = DEFAULT_ROW_BLOCK,
    ) -> None:
        self.raster_root = raster_root or os.environ.get(EnvVar.RASTER_ROOT) or None
        self.max_workers = max_workers or _env_int(EnvVar.MAX_WORKERS, DEFAULT_MAX_WORKERS)
        self.row_block = row_block

    # ------------------------------------------------------------------
    # Discovery (sync, no I/O)
    # ------------------------------------------------------------------

    def list_examples(self) -> list[dict]:
        """List the example script catalog."""
        return [
            {
                "name": example.name,
                "title": example.title,
                "inputs": dict(example.inputs),
            }
            for example in SCRIPT_EXAMPLES.values()
        ]

    def describe_example(self, name: str) -> dict:
        """Full catalog entry including the script text."""
        example = SCRIPT_EXAMPLES.get(name)
        if example is None:
            raise ValueError(ErrorMessages.UNKNOWN_EXAMPLE.format(name, ", ".join(ALL_EXAMPLE_NAMES)))
        return {
            "name": example.name,
            "title": example.title,
            "inputs": dict(example.inputs),
            "script": example.script,
            "request": example.request_dict(),
        }

    # ------------------------------------------------------------------
    # Compilation (sync, no I/O)
    # ------------------------------------------------------------------

    def compile_request(self, request: CustomScriptRequest) -> CompileResult:
        """Compile the request's script against its declared inputs."""
        names = request.input_names
        pixel_fn = compile_script(request.script, names)
        referenced = [name for name in names if name in pixel_fn.referenced_inputs]
        return CompileResult(
            inputs=names,
            referenced_inputs=referenced,
            unused_inputs=[name for name in names if name not in pixel_fn.referenced_inputs],
            constants=list(pixel_fn.constants.keys()),
            pixel_fn=pixel_fn,
        )

    # ------------------------------------------------------------------
    # Bounds (async)
    # ------------------------------------------------------------------

    async def get_bounds(
        self,
        request: CustomScriptRequest,
        policy: str = DEFAULT_BOUNDS_POLICY,
        resolution: float | None = None,
    ) -> BoundsResult:
        """Combined extent of the request's inputs."""
        return await asyncio.to_thread(self._bounds_sync, request, policy, resolution)

    def _bounds_sync(
        self, request: CustomScriptRequest, policy: str, resolution: float | None
    ) -> BoundsResult:
        with self._registry() as registry:
            sources = registry.resolve_all(request.input_pairs())
            return compute_bounds(sources, policy, resolution)

    async def get_wms_capabilities(
        self,
        request: CustomScriptRequest,
        policy: str = DEFAULT_BOUNDS_POLICY,
        layer_name: str = WMS_LAYER_NAME,
        service_url: str | None = None,
    ) -> tuple[BoundsResult, str]:
        """Compile the script, then describe its bounds as a WMS layer."""
        self.compile_request(request)
        bounds = await self.get_bounds(request, policy=policy)
        return bounds, wms.capabilities_xml(bounds, layer_name, service_url)

    # ------------------------------------------------------------------
    # Rendering (async)
    # ------------------------------------------------------------------

    async def render_window(
        self,
        request: CustomScriptRequest,
        bbox: list[float] | None = None,
        bbox_crs: str = WGS84,
        width: int | None = None,
        height: int | None = None,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
        policy: str = DEFAULT_BOUNDS_POLICY,
    ) -> RenderResult:
        """
        Render the script over a window and store the encoded image.

        Args:
            request: Inputs and script
            bbox: [xmin, ymin, xmax, ymax] in bbox_crs; defaults to the input bounds
            bbox_crs: CRS of bbox (ignored for inputs without a CRS)
            width: Output width in pixels (derived from height/aspect if omitted)
            height: Output height in pixels
            output_format: png, jpeg or geotiff
            policy: Bounds policy used when bbox is omitted

        Returns:
            RenderResult
        """
        self._validate_format(output_format)
        if bbox is not None:
            self._validate_bbox(bbox)
        if width is not None or height is not None:
            self._validate_size(1 if width is None else width, 1 if height is None else height)

        compiled = self.compile_request(request)

        cancel_event = threading.Event()
        try:
            buffer, data = await asyncio.to_thread(
                self._render_window_sync,
                request,
                compiled.pixel_fn,
                bbox,
                bbox_crs,
                width,
                height,
                output_format,
                policy,
                cancel_event,
            )
        except asyncio.CancelledError:
            cancel_event.set()
            raise

        return await self._finish(request, buffer, data, output_format)

    def _render_window_sync(
        self,
        request: CustomScriptRequest,
        pixel_fn: CompiledPixelFunction,
        bbox: list[float] | None,
        bbox_crs: str,
        width: int | None,
        height: int | None,
        output_format: str,
        policy: str,
        cancel_event: threading.Event,
    ) -> tuple[engine.PixelBuffer, bytes]:
        with self._registry() as registry:
            sources = registry.resolve_all(request.input_pairs())
            bounds = compute_bounds(sources, policy)

            if bbox is None:
                window = bounds
            else:
                window_bbox = tuple(bbox)
                if bounds.crs is not None:
                    window_bbox = raster_io.transform_extent(
                        window_bbox, raster_io.to_crs(bbox_crs), bounds.crs
                    )
                window = BoundsResult(
                    *window_bbox, bounds.crs, bounds.resolution, BoundsPolicy.WINDOW
                )

            size = self._output_size(window, width, height)
            buffer = engine.render(
                pixel_fn,
                sources,
                window,
                size,
                max_workers=self.max_workers,
                row_block=self.row_block,
                cancel_event=cancel_event,
            )

        data = raster_io.encode_rgba(buffer.rgba, output_format, window.crs, buffer.transform)
        return buffer, data

    async def render_tile(
        self,
        request: CustomScriptRequest,
        z: int,
        x: int,
        y: int,
        tile_size: int = TILE_SIZE,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
    ) -> RenderResult:
        """Render one XYZ (EPSG:3857) tile and store the encoded image."""
        self._validate_format(output_format)
        window = tiles.tile_window(z, x, y, tile_size)

        compiled = self.compile_request(request)

        cancel_event = threading.Event()
        try:
            buffer, data = await asyncio.to_thread(
                self._render_tile_sync,
                request,
                compiled.pixel_fn,
                window,
                tile_size,
                output_format,
                cancel_event,
            )
        except asyncio.CancelledError:
            cancel_event.set()
            raise

        return await self._finish(request, buffer, data, output_format, tile=[z, x, y])

    def _render_tile_sync(
        self,
        request: CustomScriptRequest,
        pixel_fn: CompiledPixelFunction,
        window: BoundsResult,
        tile_size: int,
        output_format: str,
        cancel_event: threading.Event,
    ) -> tuple[engine.PixelBuffer, bytes]:
        with self._registry() as registry:
            sources = registry.resolve_all(request.input_pairs())
            for name, source in sources:
                if source.crs is None:
                    raise IncompatibleCRS(ErrorMessages.TILE_NEEDS_CRS.format(name))
            compute_bounds(sources, DEFAULT_BOUNDS_POLICY)

            buffer = engine.render(
                pixel_fn,
                sources,
                window,
                (tile_size, tile_size),
                max_workers=self.max_workers,
                row_block=self.row_block,
                cancel_event=cancel_event,
            )

        data = raster_io.encode_rgba(buffer.rgba, output_format, window.crs, buffer.transform)
        return buffer, data

    async def _finish(
        self,
        request: CustomScriptRequest,
        buffer: engine.PixelBuffer,
        data: bytes,
        output_format: str,
        tile: list[int] | None = None,
    ) -> RenderResult:
        window = buffer.window
        shape = [buffer.height, buffer.width]
        artifact_ref = await self._store_image(
            data,
            output_format,
            {
                "schema_version": "1.0",
                "type": "tilemachine_tile" if tile else "tilemachine_render",
                "inputs": dict(request.inputs),
                "bbox": window.bbox,
                "crs": window.crs_string,
                "tile": tile,
                "shape": shape,
                "format": output_format,
                "fault_count": buffer.fault_count,
                "nodata_pixels": buffer.nodata_pixels,
            },
        )
        return RenderResult(
            artifact_ref=artifact_ref,
            output_format=output_format,
            crs=window.crs_string,
            bbox=window.bbox,
            shape=shape,
            fault_count=buffer.fault_count,
            nodata_pixels=buffer.nodata_pixels,
            tile=tile,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _registry(self) -> SourceRegistry:
        return SourceRegistry(self.raster_root)

    def _validate_format(self, output_format: str) -> None:
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(
                ErrorMessages.INVALID_OUTPUT_FORMAT.format(output_format, ", ".join(OUTPUT_FORMATS))
            )

    def _validate_bbox(self, bbox: list[float]) -> None:
        """Validate bounding box."""
        if len(bbox) != 4:
            raise ValueError(ErrorMessages.INVALID_BBOX)
        xmin, ymin, xmax, ymax = bbox
        if xmin >= xmax:
            raise ValueError(ErrorMessages.INVALID_BBOX_VALUES.format(xmin, xmax))
        if ymin >= ymax:
            raise ValueError(ErrorMessages.INVALID_BBOX_Y.format(ymin, ymax))

    def _validate_size(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(ErrorMessages.INVALID_SIZE.format(width, height))
        if width * height > MAX_RENDER_PIXELS:
            raise ValueError(ErrorMessages.SIZE_TOO_LARGE.format(width, height, MAX_RENDER_PIXELS))

    def _output_size(
        self, window: BoundsResult, width: int | None, height: int | None
    ) -> tuple[int, int]:
        """Explicit size, or one derived from the window aspect ratio and resolution."""
        extent_x, extent_y = window.extent
        if width is None and height is None:
            width, height = window.default_shape(DEFAULT_MAX_DIMENSION)
        elif width is None:
            width = max(1, round(height * extent_x / extent_y))
        elif height is None:
            height = max(1, round(width * extent_y / extent_x))
        self._validate_size(width, height)
        return width, height

    def _get_store(self) -> Any:
        """Get the artifact store instance."""
        from chuk_mcp_server import get_artifact_store

        store = get_artifact_store()
        if store is None:
            raise RuntimeError(ErrorMessages.NO_ARTIFACT_STORE)
        return store

    async def _store_image(self, data: bytes, output_format: str, metadata: dict) -> str:
        """Store an encoded image in the artifact store."""
        try:
            store = self._get_store()
            ref = f"tiles/{uuid.uuid4().hex[:12]}{OUTPUT_SUFFIXES[output_format]}"

            await store.store(
                ref,
                data,
                mime_type=OUTPUT_MIME_TYPES[output_format],
                metadata=metadata,
                summary=f"Custom script render ({metadata.get('type', 'unknown')})",
            )
            return ref
        except Exception as e:
            logger.error(f"Failed to store image: {e}")
            raise

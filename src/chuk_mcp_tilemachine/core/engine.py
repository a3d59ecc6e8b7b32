"""
Pixel Evaluation Engine.

Runs a compiled pixel function over every output pixel of a render window.
Source windows are prefetched and pixel centres located in the calling thread;
row blocks are then evaluated on a thread pool that only reads numpy arrays
and the shared, read-only compiled function.

Per pixel:
    - a source that is nodata there binds an all-NaN band vector
    - a pixel where every source is nodata is transparent, whatever the script returns
    - an EvaluationFailure makes that pixel transparent and is counted
    - channels are rounded and clamped to [0, 255] (NaN -> 0)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from ..constants import DEFAULT_MAX_WORKERS, DEFAULT_ROW_BLOCK, ErrorMessages
from . import raster_io
from .bounds import BoundsResult
from .errors import EvaluationFailure, RenderCancelled

logger = logging.getLogger(__name__)

PixelFunction = Callable[[Mapping[str, Any]], tuple[float, float, float, float]]

_TRANSPARENT = (0.0, 0.0, 0.0, 0.0)


@dataclass
class PixelBuffer:
    """Rendered RGBA pixels plus evaluation metadata."""

    rgba: NDArray[np.uint8]
    fault_count: int
    nodata_pixels: int
    window: BoundsResult

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def transform(self) -> Any:
        return raster_io.window_transform(tuple(self.window.bbox), self.width, self.height)


@dataclass
class _BlockResult:
    start: int
    stop: int
    rgba: NDArray[np.uint8]
    faults: int
    nodata: int
    first_fault: str | None


def pixel_centres(window: BoundsResult, width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    """x coordinates of column centres and y coordinates of row centres (top row first)."""
    step_x = (window.xmax - window.xmin) / width
    step_y = (window.ymax - window.ymin) / height
    xs = window.xmin + (np.arange(width) + 0.5) * step_x
    ys = window.ymax - (np.arange(height) + 0.5) * step_y
    return xs, ys


def _evaluate_block(
    pixel_fn: PixelFunction,
    located: list[tuple[str, Any, np.ndarray, np.ndarray]],
    start: int,
    stop: int,
    width: int,
    cancel_event: threading.Event | None,
) -> _BlockResult | None:
    if cancel_event is not None and cancel_event.is_set():
        return None

    count = (stop - start) * width
    covered = np.zeros(count, dtype=bool)
    bound = []
    for name, source, rows, cols in located:
        values, valid = source.gather(rows[start:stop].ravel(), cols[start:stop].ravel())
        covered |= valid
        bound.append((name, values.tolist(), valid.tolist(), source.nodata_sentinel))

    results: list[tuple[float, float, float, float]] = [_TRANSPARENT] * count
    faults = 0
    first_fault = None
    for i, has_data in enumerate(covered.tolist()):
        if not has_data:
            continue
        env = {
            name: values[i] if valid[i] else list(sentinel)
            for name, values, valid, sentinel in bound
        }
        try:
            results[i] = pixel_fn(env)
        except EvaluationFailure as e:
            faults += 1
            if first_fault is None:
                first_fault = str(e)

    rgba = raster_io.clamp_channels(np.array(results, dtype=np.float64)).reshape(stop - start, width, 4)
    return _BlockResult(start, stop, rgba, faults, count - int(covered.sum()), first_fault)


def render(
    pixel_fn: PixelFunction,
    sources: Sequence[tuple[str, Any]],
    window: BoundsResult,
    output_size: tuple[int, int],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    row_block: int = DEFAULT_ROW_BLOCK,
    cancel_event: threading.Event | None = None,
) -> PixelBuffer:
    """
    Evaluate pixel_fn over a width x height grid covering window.

    Args:
        pixel_fn: Compiled pixel function, shared read-only by all workers
        sources: Ordered (name, RasterSource) pairs for every declared input
        window: Render extent and its CRS
        output_size: (width, height) in pixels
        max_workers: Thread pool size
        row_block: Rows per work item; cancellation is checked between blocks
        cancel_event: Set to stop the render

    Returns:
        PixelBuffer

    Raises:
        SamplingFailure: a source could not be read
        RenderCancelled: cancel_event was set before all blocks completed
    """
    width, height = output_size
    if width <= 0 or height <= 0:
        raise ValueError(ErrorMessages.INVALID_SIZE.format(width, height))

    xs, ys = pixel_centres(window, width, height)
    grid_x, grid_y = np.meshgrid(xs, ys)
    resolution = (window.xmax - window.xmin) / width

    located = []
    for name, source in sources:
        source.prefetch(tuple(window.bbox), window.crs, resolution)
        rows, cols = source.locate(grid_x.ravel(), grid_y.ravel(), window.crs)
        located.append((name, source, rows.reshape(height, width), cols.reshape(height, width)))

    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    blocks = [(start, min(start + row_block, height)) for start in range(0, height, max(1, row_block))]
    faults = 0
    nodata = 0
    rows_done = 0
    first_fault = None

    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="tilemachine-render") as pool:
        futures = [
            pool.submit(_evaluate_block, pixel_fn, located, start, stop, width, cancel_event)
            for start, stop in blocks
        ]
        for future in as_completed(futures):
            block = future.result()
            if block is None or (cancel_event is not None and cancel_event.is_set()):
                for pending in futures:
                    pending.cancel()
                logger.info(ErrorMessages.RENDER_CANCELLED.format(rows_done, height))
                raise RenderCancelled(ErrorMessages.RENDER_CANCELLED.format(rows_done, height))
            rgba[block.start:block.stop] = block.rgba
            rows_done += block.stop - block.start
            faults += block.faults
            nodata += block.nodata
            if first_fault is None and block.first_fault is not None:
                first_fault = block.first_fault

    if faults:
        logger.warning(f"Render of {width}x{height} had {faults} faulted pixels")
        logger.debug(f"First pixel fault: {first_fault}")
    logger.info(f"Rendered {width}x{height} window: {faults} faults, {nodata} nodata pixels")

    return PixelBuffer(rgba=rgba, fault_count=faults, nodata_pixels=nodata, window=window)

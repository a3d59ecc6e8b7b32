"""
XYZ tile math in EPSG:3857 (slippy-map convention, y counted from the top).
"""

from ..constants import (
    EQUATOR_LENGTH_M,
    INITIAL_RESOLUTION,
    MAX_ZOOM,
    ORIGIN_SHIFT,
    TILE_SIZE,
    TILE_SIZES,
    WEB_MERCATOR,
    XYZ_BASE_TILE_SIZE,
    BoundsPolicy,
    ErrorMessages,
)
from . import raster_io
from .bounds import BoundsResult


def validate_tile(z: int, x: int, y: int) -> None:
    """Raise ValueError unless 0 <= z <= MAX_ZOOM and 0 <= x, y < 2**z."""
    if not 0 <= z <= MAX_ZOOM:
        raise ValueError(ErrorMessages.INVALID_TILE.format(z, x, y))
    n = 2**z
    if not (0 <= x < n and 0 <= y < n):
        raise ValueError(ErrorMessages.INVALID_TILE.format(z, x, y))


def validate_tile_size(tile_size: int) -> None:
    if tile_size not in TILE_SIZES:
        raise ValueError(
            ErrorMessages.INVALID_TILE_SIZE.format(tile_size, ", ".join(str(s) for s in TILE_SIZES))
        )


def resolution_at_zoom(z: int, tile_size: int = TILE_SIZE) -> float:
    """Metres per pixel at zoom z for tiles of tile_size pixels."""
    return INITIAL_RESOLUTION * XYZ_BASE_TILE_SIZE / tile_size / 2**z


def tile_bounds(z: int, x: int, y: int) -> tuple[float, float, float, float]:
    """(xmin, ymin, xmax, ymax) of tile z/x/y in EPSG:3857 metres."""
    validate_tile(z, x, y)
    span = EQUATOR_LENGTH_M / 2**z
    xmin = -ORIGIN_SHIFT + x * span
    ymax = ORIGIN_SHIFT - y * span
    return xmin, ymax - span, xmin + span, ymax


def tile_window(z: int, x: int, y: int, tile_size: int = TILE_SIZE) -> BoundsResult:
    """Render window of one tile."""
    validate_tile_size(tile_size)
    xmin, ymin, xmax, ymax = tile_bounds(z, x, y)
    return BoundsResult(
        xmin,
        ymin,
        xmax,
        ymax,
        raster_io.to_crs(WEB_MERCATOR),
        resolution_at_zoom(z, tile_size),
        policy=BoundsPolicy.TILE,
    )

"""
Raster I/O helpers for custom-script rendering.

All functions are synchronous; callers wrap them in asyncio.to_thread().
Handles GDAL environment setup, extent reprojection, channel clamping and
output format encoding (PNG, JPEG, GeoTIFF).
"""

import io
import logging
import math
import os
from typing import Any, Mapping

import numpy as np
from numpy.typing import NDArray
from PIL import Image
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..constants import (
    BOUNDS_DENSIFY_POINTS,
    CHANNEL_MAX,
    CHANNEL_MIN,
    GDAL_BASE_OPTIONS,
    GDAL_ENV_PASSTHROUGH,
    JPEG_QUALITY,
    OUTPUT_FORMATS,
    ErrorMessages,
)

logger = logging.getLogger(__name__)

# Type aliases
FloatArray = NDArray[np.floating[Any]]
ByteArray = NDArray[np.uint8]
Transform = Any  # rasterio.Affine
Bounds = tuple[float, float, float, float]


# ---------------------------------------------------------------------------
# Retry decorator for network I/O
# ---------------------------------------------------------------------------

_retry_network = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    reraise=True,
)


# ---------------------------------------------------------------------------
# GDAL environment
# ---------------------------------------------------------------------------


def gdal_env_options(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """
    Build rasterio.Env options from the base GDAL settings and the process env.

    AWS_S3_ENDPOINT, AWS_VIRTUAL_HOSTING and AWS_HTTPS are forwarded when set,
    so S3-compatible stores (e.g. MinIO) work for s3: sources.
    """
    environ = os.environ if environ is None else environ
    options = dict(GDAL_BASE_OPTIONS)
    for var in GDAL_ENV_PASSTHROUGH:
        value = environ.get(var)
        if value:
            options[var] = value
    return options


# ---------------------------------------------------------------------------
# CRS helpers
# ---------------------------------------------------------------------------


def to_crs(value: Any) -> Any:
    """Normalise a CRS-like value (string, EPSG code, rasterio CRS) to a rasterio CRS."""
    from rasterio.crs import CRS

    if value is None or isinstance(value, CRS):
        return value
    return CRS.from_user_input(value)


def crs_to_string(crs: Any) -> str | None:
    """Short CRS label, preferring the EPSG authority code."""
    if crs is None:
        return None
    epsg = crs.to_epsg() if hasattr(crs, "to_epsg") else None
    if epsg is not None:
        return f"EPSG:{epsg}"
    return crs.to_string() if hasattr(crs, "to_string") else str(crs)


def same_crs(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return bool(a == b)


def transform_extent(bounds: Bounds, src_crs: Any, dst_crs: Any) -> Bounds:
    """
    Reproject an extent rectangle, densifying edges so curved borders are covered.

    Returns the input unchanged when both CRSs are equal.
    """
    from rasterio.warp import transform_bounds

    if same_crs(src_crs, dst_crs):
        return tuple(float(v) for v in bounds)
    out = transform_bounds(src_crs, dst_crs, *bounds, densify_pts=BOUNDS_DENSIFY_POINTS)
    return tuple(float(v) for v in out)


def make_transformer(src_crs: Any, dst_crs: Any) -> Any:
    """pyproj Transformer in x/y (lon/lat) axis order."""
    from pyproj import Transformer

    return Transformer.from_crs(src_crs, dst_crs, always_xy=True)


def window_transform(bounds: Bounds, width: int, height: int) -> Transform:
    """Affine transform mapping a width x height raster onto bounds."""
    from rasterio.transform import from_bounds

    return from_bounds(*bounds, width, height)


# ---------------------------------------------------------------------------
# Channel policy
# ---------------------------------------------------------------------------


def clamp_channels(values: FloatArray) -> ByteArray:
    """
    Round to nearest integer (halves up) and clamp into [0, 255].

    NaN becomes 0; +Infinity becomes 255 and -Infinity 0. Channels are clamped
    independently.
    """
    rounded = np.floor(np.asarray(values, dtype=np.float64) + 0.5)
    rounded = np.nan_to_num(rounded, nan=0.0)
    return np.clip(rounded, CHANNEL_MIN, CHANNEL_MAX).astype(np.uint8)


# ---------------------------------------------------------------------------
# Output encoding
# ---------------------------------------------------------------------------


def rgba_to_png(rgba: ByteArray) -> bytes:
    """Encode an (H, W, 4) uint8 array as an RGBA PNG."""
    img = Image.fromarray(np.ascontiguousarray(rgba))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def rgba_to_jpeg(rgba: ByteArray, quality: int = JPEG_QUALITY) -> bytes:
    """Encode as RGB JPEG. JPEG has no alpha channel, so alpha is dropped."""
    img = Image.fromarray(np.ascontiguousarray(rgba[:, :, :3]))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def rgba_to_geotiff(rgba: ByteArray, crs: Any = None, transform: Transform | None = None) -> bytes:
    """
    Encode as a 4-band uint8 GeoTIFF with RGBA colour interpretation.

    Args:
        rgba: (H, W, 4) uint8 array
        crs: Coordinate reference system of the rendered window
        transform: Affine transform of the rendered window

    Returns:
        GeoTIFF bytes
    """
    from rasterio.enums import ColorInterp
    from rasterio.io import MemoryFile

    height, width, count = rgba.shape
    memfile = MemoryFile()
    with memfile.open(
        driver="GTiff",
        height=height,
        width=width,
        count=count,
        dtype="uint8",
        crs=crs,
        transform=transform,
    ) as dst:
        dst.write(np.transpose(rgba, (2, 0, 1)))
        dst.colorinterp = [ColorInterp.red, ColorInterp.green, ColorInterp.blue, ColorInterp.alpha]

    return memfile.read()


def encode_rgba(
    rgba: ByteArray,
    output_format: str,
    crs: Any = None,
    transform: Transform | None = None,
) -> bytes:
    """Serialise an RGBA pixel buffer into the requested output format."""
    if output_format == "png":
        return rgba_to_png(rgba)
    if output_format == "jpeg":
        return rgba_to_jpeg(rgba)
    if output_format == "geotiff":
        return rgba_to_geotiff(rgba, crs, transform)
    raise ValueError(
        ErrorMessages.INVALID_OUTPUT_FORMAT.format(output_format, ", ".join(OUTPUT_FORMATS))
    )


def fit_shape(extent_x: float, extent_y: float, resolution: float, max_dimension: int) -> tuple[int, int]:
    """
    Pixel (width, height) covering an extent at a resolution, scaled down so the
    longer side is at most max_dimension.
    """
    width = max(1, math.ceil(extent_x / resolution - 1e-9))
    height = max(1, math.ceil(extent_y / resolution - 1e-9))
    longest = max(width, height)
    if longest > max_dimension:
        scale = max_dimension / longest
        width = max(1, round(width * scale))
        height = max(1, round(height * scale))
    return width, height

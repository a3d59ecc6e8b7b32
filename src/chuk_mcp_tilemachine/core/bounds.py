"""
Bounds Resolver.

Computes the rendering extent shared by a request's sources: every source
extent is reprojected into the CRS of the first declared input and the
rectangles are intersected (or unioned). The resolution is the finest
reprojected source pixel size unless overridden.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ..constants import (
    BOUNDS_POLICIES,
    DEFAULT_BOUNDS_POLICY,
    DEFAULT_MAX_DIMENSION,
    WGS84,
    BoundsPolicy,
    ErrorMessages,
)
from . import raster_io
from .errors import EmptyIntersection, IncompatibleCRS

logger = logging.getLogger(__name__)


class SourceExtent(Protocol):
    """What the resolver needs from a source (RasterSource satisfies it)."""

    crs: Any
    bounds: tuple[float, float, float, float]
    width: int
    height: int


@dataclass
class BoundsResult:
    """A rectangle in a reference CRS plus the resolution to render it at."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float
    crs: Any
    resolution: float
    policy: str = DEFAULT_BOUNDS_POLICY

    @property
    def bbox(self) -> list[float]:
        return [self.xmin, self.ymin, self.xmax, self.ymax]

    @property
    def crs_string(self) -> str | None:
        return raster_io.crs_to_string(self.crs)

    @property
    def extent(self) -> tuple[float, float]:
        return self.xmax - self.xmin, self.ymax - self.ymin

    def to_wgs84(self) -> list[float] | None:
        """[west, south, east, north] in EPSG:4326, or None for sources without a CRS."""
        if self.crs is None:
            return None
        west, south, east, north = raster_io.transform_extent(
            tuple(self.bbox), self.crs, raster_io.to_crs(WGS84)
        )
        return [west, south, east, north]

    def as_polygon(self) -> dict | None:
        """GeoJSON Polygon of the WGS84 bounding box (closed ring)."""
        wgs84 = self.to_wgs84()
        if wgs84 is None:
            return None
        west, south, east, north = wgs84
        return {
            "type": "Polygon",
            "coordinates": [
                [[west, south], [east, south], [east, north], [west, north], [west, south]]
            ],
        }

    def default_shape(self, max_dimension: int = DEFAULT_MAX_DIMENSION) -> tuple[int, int]:
        """Raster (width, height) at the bounds resolution, capped at max_dimension."""
        extent_x, extent_y = self.extent
        return raster_io.fit_shape(extent_x, extent_y, self.resolution, max_dimension)


def _reproject(
    name: str, source: SourceExtent, ref_name: str, ref_crs: Any
) -> tuple[float, float, float, float]:
    if source.crs is None and ref_crs is not None:
        raise IncompatibleCRS(
            ErrorMessages.MIXED_CRS.format(name, ref_name, raster_io.crs_to_string(ref_crs))
        )
    if ref_crs is None and source.crs is not None:
        raise IncompatibleCRS(
            ErrorMessages.MIXED_CRS_REFERENCE.format(
                ref_name, name, raster_io.crs_to_string(source.crs)
            )
        )
    try:
        out = raster_io.transform_extent(tuple(source.bounds), source.crs, ref_crs)
    except Exception as e:
        raise IncompatibleCRS(
            ErrorMessages.INCOMPATIBLE_CRS.format(
                name, raster_io.crs_to_string(source.crs), raster_io.crs_to_string(ref_crs), ref_name
            )
            + f": {e}"
        ) from e
    if not all(math.isfinite(v) for v in out):
        raise IncompatibleCRS(
            ErrorMessages.INCOMPATIBLE_CRS.format(
                name, raster_io.crs_to_string(source.crs), raster_io.crs_to_string(ref_crs), ref_name
            )
        )
    return out


def compute_bounds(
    sources: Sequence[tuple[str, SourceExtent]],
    policy: str = DEFAULT_BOUNDS_POLICY,
    resolution: float | None = None,
) -> BoundsResult:
    """
    Combined extent of the sources in the CRS of the first one.

    Args:
        sources: Ordered (name, source) pairs; the first fixes the reference CRS
        policy: "intersection" (default) or "union"
        resolution: Explicit pixel size in reference CRS units

    Returns:
        BoundsResult

    Raises:
        EmptyIntersection: intersection has non-positive area
        IncompatibleCRS: a source cannot be reprojected into the reference CRS
    """
    if policy not in BOUNDS_POLICIES:
        raise ValueError(ErrorMessages.INVALID_POLICY.format(policy, ", ".join(BOUNDS_POLICIES)))
    if resolution is not None and not resolution > 0:
        raise ValueError(ErrorMessages.INVALID_RESOLUTION.format(resolution))
    if not sources:
        raise ValueError(ErrorMessages.NO_SOURCES)

    ref_name, ref_source = sources[0]
    ref_crs = ref_source.crs

    rects = []
    finest = math.inf
    for name, source in sources:
        xmin, ymin, xmax, ymax = _reproject(name, source, ref_name, ref_crs)
        rects.append((xmin, ymin, xmax, ymax))
        if source.width > 0:
            finest = min(finest, (xmax - xmin) / source.width)
        if source.height > 0:
            finest = min(finest, (ymax - ymin) / source.height)

    if policy == BoundsPolicy.UNION:
        xmin = min(r[0] for r in rects)
        ymin = min(r[1] for r in rects)
        xmax = max(r[2] for r in rects)
        ymax = max(r[3] for r in rects)
    else:
        xmin = max(r[0] for r in rects)
        ymin = max(r[1] for r in rects)
        xmax = min(r[2] for r in rects)
        ymax = min(r[3] for r in rects)
        if xmax <= xmin or ymax <= ymin:
            names = ", ".join(name for name, _ in sources)
            raise EmptyIntersection(ErrorMessages.EMPTY_INTERSECTION.format(names))

    if resolution is None:
        resolution = finest if math.isfinite(finest) and finest > 0 else max(xmax - xmin, ymax - ymin)

    result = BoundsResult(xmin, ymin, xmax, ymax, ref_crs, float(resolution), policy)
    logger.debug(
        f"Bounds ({policy}) of {len(sources)} sources: {result.bbox} "
        f"in {result.crs_string}, resolution {result.resolution}"
    )
    return result

"""
Raster Source Registry.

Resolves (name, source identifier) pairs to opened raster handles for the
duration of one request. Handles are cached per resolved path and closed when
the registry exits, so no decode state is shared across requests.

Source identifiers:
    file:<path>            local file
    s3:<bucket>/<key>      GDAL /vsis3/
    http(s)://...          GDAL /vsicurl/
    <path>                 local file, relative to the raster root
"""

import logging
import math
import re
from pathlib import Path
from typing import Any, Iterable

import numpy as np

from ..constants import (
    PREFETCH_DECIMATION_FACTOR,
    SourceScheme,
    ErrorMessages,
)
from . import raster_io
from .errors import DecodeFailure, SamplingFailure, SourceNotFound, UnsupportedFormat

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]+):")
_NOT_FOUND_HINTS = ("No such file", "does not exist", "HTTP response code: 404")
_UNRECOGNISED_HINTS = ("not recognized as", "not recognised as", "not a supported file format")


class RasterSource:
    """
    One opened raster source.

    Exposes band count, per-band nodata, geotransform, CRS and pixel extent.
    prefetch() loads the window needed by a render into memory so that the
    parallel pixel loop only touches numpy arrays.
    """

    def __init__(self, name: str, path: str, dataset: Any) -> None:
        self.name = name
        self.path = path
        self.dataset = dataset
        self.band_count: int = dataset.count
        self.nodata: tuple[float | None, ...] = tuple(dataset.nodatavals)
        self.transform = dataset.transform
        self.crs = dataset.crs
        self.width: int = dataset.width
        self.height: int = dataset.height
        left, bottom, right, top = dataset.bounds
        self.bounds: tuple[float, float, float, float] = (
            min(left, right),
            min(bottom, top),
            max(left, right),
            max(bottom, top),
        )
        self.resolution: tuple[float, float] = tuple(dataset.res)

        self._values: np.ndarray | None = None
        self._valid: np.ndarray | None = None
        self._inverse = None

    def __repr__(self) -> str:
        return f"RasterSource({self.name!r}, {self.path!r}, bands={self.band_count})"

    def close(self) -> None:
        self._values = None
        self._valid = None
        self.dataset.close()

    @property
    def nodata_sentinel(self) -> tuple[float, ...]:
        """Band vector bound for this source where it has no data."""
        return (math.nan,) * self.band_count

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    def _invalid_mask(self, data: np.ndarray) -> np.ndarray:
        """Pixels where any band is nodata or NaN. data is (bands, H, W)."""
        invalid = np.isnan(data).any(axis=0)
        for band, nodata in enumerate(self.nodata):
            if nodata is None:
                continue
            if isinstance(nodata, float) and math.isnan(nodata):
                continue
            invalid |= data[band] == nodata
        return invalid

    # ------------------------------------------------------------------
    # Window prefetch
    # ------------------------------------------------------------------

    def prefetch(self, bounds: tuple[float, float, float, float], crs: Any, resolution: float) -> None:
        """
        Read all bands of the part of this source covering bounds.

        Args:
            bounds: Render window (xmin, ymin, xmax, ymax) in crs
            crs: CRS of the render window
            resolution: Output pixel size in crs units; sources much finer than
                this are read decimated with nearest resampling

        Raises:
            SamplingFailure: the source could not be read
        """
        from rasterio.enums import Resampling
        from rasterio.windows import Window, from_bounds

        try:
            native = raster_io.transform_extent(bounds, crs, self.crs)
        except Exception as e:
            raise SamplingFailure(ErrorMessages.SAMPLING_FAILURE.format(self.name, e)) from e

        window = from_bounds(*native, transform=self.transform)
        col_start = max(0, math.floor(window.col_off))
        row_start = max(0, math.floor(window.row_off))
        col_stop = min(self.width, math.ceil(window.col_off + window.width))
        row_stop = min(self.height, math.ceil(window.row_off + window.height))

        if col_stop <= col_start or row_stop <= row_start:
            # Window lies outside this source
            self._values = np.full((0, 0, self.band_count), np.nan)
            self._valid = np.zeros((0, 0), dtype=bool)
            self._inverse = ~self.transform
            return

        win_width = col_stop - col_start
        win_height = row_stop - row_start
        window = Window(col_start, row_start, win_width, win_height)

        out_width, out_height = win_width, win_height
        native_extent = native[2] - native[0]
        window_extent = bounds[2] - bounds[0]
        if native_extent > 0 and window_extent > 0 and resolution > 0:
            target_res = resolution * native_extent / window_extent
            factor = target_res / abs(self.transform.a)
            if factor > PREFETCH_DECIMATION_FACTOR:
                out_width = max(1, math.ceil(win_width / factor))
                out_height = max(1, math.ceil(win_height / factor))

        try:
            data = self.dataset.read(
                window=window,
                out_shape=(self.band_count, out_height, out_width),
                resampling=Resampling.nearest,
            ).astype(np.float64)
        except Exception as e:
            raise SamplingFailure(ErrorMessages.SAMPLING_FAILURE.format(self.name, e)) from e

        data_transform = self.dataset.window_transform(window)
        if (out_width, out_height) != (win_width, win_height):
            from rasterio.transform import Affine

            data_transform = data_transform * Affine.scale(
                win_width / out_width, win_height / out_height
            )

        self._valid = ~self._invalid_mask(data)
        self._values = np.moveaxis(data, 0, -1)
        self._inverse = ~data_transform

        logger.debug(
            f"Prefetched {self.name}: window {win_width}x{win_height} read as "
            f"{out_width}x{out_height}, {int(self._valid.sum())} valid pixels"
        )

    def locate(self, xs: np.ndarray, ys: np.ndarray, crs: Any) -> tuple[np.ndarray, np.ndarray]:
        """
        Map coordinates in crs to (row, col) indices into the prefetched window.

        Coordinates that cannot be transformed map to -1.
        """
        if self._inverse is None:
            raise RuntimeError(f"Source {self.name} must be prefetched before locate()")

        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        crs = raster_io.to_crs(crs)
        if not raster_io.same_crs(crs, self.crs):
            transformer = raster_io.make_transformer(crs, self.crs)
            xs, ys = transformer.transform(xs, ys)
            xs = np.asarray(xs, dtype=np.float64)
            ys = np.asarray(ys, dtype=np.float64)

        inv = self._inverse
        cols_f = inv.a * xs + inv.b * ys + inv.c
        rows_f = inv.d * xs + inv.e * ys + inv.f
        finite = np.isfinite(cols_f) & np.isfinite(rows_f)
        rows = np.where(finite, np.floor(np.where(finite, rows_f, 0.0)), -1).astype(np.int64)
        cols = np.where(finite, np.floor(np.where(finite, cols_f, 0.0)), -1).astype(np.int64)
        return rows, cols

    def gather(self, rows: np.ndarray, cols: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Band values and validity for located pixels.

        Returns:
            Tuple of (values (N, bands) float64, valid (N,) bool)
        """
        if self._values is None or self._valid is None:
            raise RuntimeError(f"Source {self.name} must be prefetched before gather()")

        height, width = self._valid.shape
        count = len(rows)
        if height == 0 or width == 0:
            return np.full((count, self.band_count), np.nan), np.zeros(count, dtype=bool)

        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
        r = np.where(inside, rows, 0)
        c = np.where(inside, cols, 0)
        values = self._values[r, c]
        valid = inside & self._valid[r, c]
        return values, valid

    # ------------------------------------------------------------------
    # Point sampling
    # ------------------------------------------------------------------

    def sample(self, x: float, y: float, crs: Any = None) -> list[float] | None:
        """
        Band values at one coordinate, or None when outside the pixel extent or
        when any band at that pixel is nodata.
        """
        from rasterio.windows import Window

        crs = raster_io.to_crs(crs)
        if crs is not None and not raster_io.same_crs(crs, self.crs):
            transformer = raster_io.make_transformer(crs, self.crs)
            x, y = transformer.transform(x, y)
        if not (math.isfinite(x) and math.isfinite(y)):
            return None

        inv = ~self.transform
        col_f, row_f = inv * (x, y)
        row, col = math.floor(row_f), math.floor(col_f)
        if not (0 <= row < self.height and 0 <= col < self.width):
            return None

        try:
            data = self.dataset.read(window=Window(col, row, 1, 1)).astype(np.float64)
        except Exception as e:
            raise SamplingFailure(ErrorMessages.SAMPLING_FAILURE.format(self.name, e)) from e

        if self._invalid_mask(data)[0, 0]:
            return None
        return [float(v) for v in data[:, 0, 0]]


class SourceRegistry:
    """
    Per-request registry of opened raster sources.

    Use as a context manager: entering configures GDAL through rasterio.Env,
    exiting closes every dataset opened during the request.
    """

    def __init__(
        self,
        raster_root: str | Path | None = None,
        gdal_options: dict[str, str] | None = None,
    ) -> None:
        self.raster_root = Path(raster_root) if raster_root else None
        self.gdal_options = gdal_options if gdal_options is not None else raster_io.gdal_env_options()
        self._handles: dict[str, RasterSource] = {}
        self._env: Any = None

    def __enter__(self) -> "SourceRegistry":
        import rasterio

        self._env = rasterio.Env(**self.gdal_options)
        self._env.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
        if self._env is not None:
            self._env.__exit__(exc_type, exc, tb)
            self._env = None

    def close(self) -> None:
        for handle in self._handles.values():
            handle.close()
        self._handles.clear()

    def __len__(self) -> int:
        return len(self._handles)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def gdal_path(self, path: str) -> tuple[str, bool]:
        """
        Translate a source identifier to a GDAL path.

        Returns:
            Tuple of (gdal_path, is_remote)
        """
        path = path.strip()
        if path.startswith("/vsi"):
            return path, True

        match = _SCHEME_RE.match(path)
        if match:
            scheme = match.group(1).lower()
            rest = path[match.end():]
            if scheme == SourceScheme.FILE:
                if rest.startswith("//"):
                    rest = rest[2:]
                return self._local_path(rest), False
            if scheme == SourceScheme.S3:
                return f"/vsis3/{rest.lstrip('/')}", True
            if scheme in (SourceScheme.HTTP, SourceScheme.HTTPS):
                return f"/vsicurl/{path}", True
            raise UnsupportedFormat(ErrorMessages.UNSUPPORTED_SCHEME.format(scheme, path))

        return self._local_path(path), False

    def _local_path(self, path: str) -> str:
        local = Path(path).expanduser()
        if not local.is_absolute() and self.raster_root is not None:
            local = self.raster_root / local
        return str(local)

    def resolve(self, name: str, path: str) -> RasterSource:
        """
        Open (or return the already-open) raster for a source identifier.

        Raises:
            SourceNotFound, UnsupportedFormat, DecodeFailure
        """
        gdal_path, remote = self.gdal_path(path)
        cached = self._handles.get(gdal_path)
        if cached is not None:
            return cached

        if not remote and not Path(gdal_path).exists():
            raise SourceNotFound(ErrorMessages.SOURCE_NOT_FOUND.format(path))

        dataset = self._open(path, gdal_path, remote)
        if dataset.count == 0:
            dataset.close()
            raise DecodeFailure(ErrorMessages.NO_BANDS.format(path))

        handle = RasterSource(name, path, dataset)
        self._handles[gdal_path] = handle
        logger.info(
            f"Opened source '{name}' from {path}: {handle.band_count} bands, "
            f"{handle.width}x{handle.height}, crs={raster_io.crs_to_string(handle.crs)}"
        )
        return handle

    def resolve_all(self, pairs: Iterable[tuple[str, str]]) -> list[tuple[str, RasterSource]]:
        """Resolve ordered (name, source) pairs, preserving their order."""
        return [(name, self.resolve(name, path)) for name, path in pairs]

    def _open(self, path: str, gdal_path: str, remote: bool) -> Any:
        import rasterio
        from rasterio.errors import RasterioError

        try:
            if remote:
                return _open_remote(gdal_path)
            return rasterio.open(gdal_path)
        except RasterioError as e:
            message = str(e)
            if remote and any(hint in message for hint in _NOT_FOUND_HINTS):
                raise SourceNotFound(ErrorMessages.SOURCE_NOT_FOUND.format(path)) from e
            if any(hint in message for hint in _UNRECOGNISED_HINTS):
                raise UnsupportedFormat(ErrorMessages.UNSUPPORTED_FORMAT.format(path, message)) from e
            raise DecodeFailure(ErrorMessages.DECODE_FAILURE.format(path, message)) from e
        except OSError as e:
            raise DecodeFailure(ErrorMessages.DECODE_FAILURE.format(path, e)) from e

    def sample(self, handle: RasterSource, geo_x: float, geo_y: float, crs: Any = None) -> list[float] | None:
        """Band values of handle at a coordinate, None for nodata or outside."""
        return handle.sample(geo_x, geo_y, crs)


@raster_io._retry_network
def _open_remote(gdal_path: str) -> Any:
    import rasterio

    return rasterio.open(gdal_path)

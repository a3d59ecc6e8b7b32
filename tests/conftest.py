"""Shared test fixtures for chuk-mcp-tilemachine."""

import json

import numpy as np
import pytest
from unittest.mock import AsyncMock, MagicMock


def write_geotiff(path, data, bounds, crs="EPSG:4326", nodata=None, dtype=None):
    """Write a (bands, H, W) array as a GeoTIFF covering bounds."""
    import rasterio
    from rasterio.transform import from_bounds

    data = np.asarray(data)
    if data.ndim == 2:
        data = data[np.newaxis, ...]
    count, height, width = data.shape
    dtype = dtype or data.dtype
    profile = {
        "driver": "GTiff",
        "height": height,
        "width": width,
        "count": count,
        "dtype": str(np.dtype(dtype)),
        "transform": from_bounds(*bounds, width, height),
    }
    if crs is not None:
        profile["crs"] = crs
    if nodata is not None:
        profile["nodata"] = nodata
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data.astype(dtype))
    return str(path)


def make_request(inputs, script):
    """Serialize a request the way clients send it."""
    return json.dumps({"inputs": inputs, "script": script})


@pytest.fixture
def rgb_tif(tmp_path):
    """3-band uint8 2x2 raster over [10, 40] x [11, 41] degrees."""
    data = np.array(
        [
            [[10, 20], [30, 40]],
            [[50, 60], [70, 80]],
            [[90, 100], [110, 250]],
        ],
        dtype=np.uint8,
    )
    return write_geotiff(tmp_path / "rgb.tif", data, (10.0, 40.0, 11.0, 41.0))


@pytest.fixture
def dsm_tif(tmp_path):
    """Single-band float32 4x4 DSM over the same extent, nodata=-9999 in the top-left pixel."""
    data = np.arange(16, dtype=np.float32).reshape(4, 4) * 10.0
    data[0, 0] = -9999.0
    return write_geotiff(tmp_path / "dsm.tif", data, (10.0, 40.0, 11.0, 41.0), nodata=-9999.0)


@pytest.fixture
def nodata_tif(tmp_path):
    """2x2 single-band raster whose every pixel is nodata."""
    data = np.full((2, 2), -1.0, dtype=np.float32)
    return write_geotiff(tmp_path / "empty.tif", data, (10.0, 40.0, 11.0, 41.0), nodata=-1.0)


@pytest.fixture
def half_nodata_tif(tmp_path):
    """2x2 single-band raster whose left column is nodata."""
    data = np.array([[-1.0, 5.0], [-1.0, 7.0]], dtype=np.float32)
    return write_geotiff(tmp_path / "half.tif", data, (10.0, 40.0, 11.0, 41.0), nodata=-1.0)


@pytest.fixture
def far_tif(tmp_path):
    """Raster far away from rgb_tif (no overlap)."""
    data = np.ones((1, 2, 2), dtype=np.uint8)
    return write_geotiff(tmp_path / "far.tif", data, (100.0, -10.0, 101.0, -9.0))


@pytest.fixture
def mercator_tif(tmp_path):
    """Single-band raster in EPSG:3857 overlapping the east half of rgb_tif."""
    from rasterio.warp import transform_bounds

    bounds = transform_bounds("EPSG:4326", "EPSG:3857", 10.5, 40.0, 11.5, 41.0)
    data = np.full((1, 8, 8), 42, dtype=np.uint8)
    return write_geotiff(tmp_path / "merc.tif", data, bounds, crs="EPSG:3857")


@pytest.fixture
def mock_artifact_store():
    """Mock artifact store."""
    store = AsyncMock()
    store.store = AsyncMock(return_value=None)
    store.retrieve = AsyncMock(return_value=b"fake-png-bytes")
    return store


@pytest.fixture
def mock_manager(mock_artifact_store):
    """TileManager with mocked store and a single render worker."""
    from chuk_mcp_tilemachine.core.tile_manager import TileManager

    manager = TileManager(max_workers=1)
    manager._get_store = MagicMock(return_value=mock_artifact_store)
    return manager


@pytest.fixture
def mock_mcp():
    """Mock ChukMCPServer."""
    mcp = MagicMock()
    mcp.tool = MagicMock(return_value=lambda fn: fn)
    return mcp


@pytest.fixture
def capture_tools():
    """Register tools through a fake mcp and return a dict name -> coroutine function."""

    def _capture(register, manager):
        tools = {}
        mcp = MagicMock()

        def capture_tool(**kwargs):
            def decorator(fn):
                tools[fn.__name__] = fn
                return fn

            return decorator

        mcp.tool = capture_tool
        register(mcp, manager)
        return tools

    return _capture

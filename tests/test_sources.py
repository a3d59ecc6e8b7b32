"""Tests for the per-request Raster Source Registry."""

import math

import numpy as np
import pytest
from unittest.mock import patch

from chuk_mcp_tilemachine.core.errors import (
    DecodeFailure,
    SourceNotFound,
    UnsupportedFormat,
)
from chuk_mcp_tilemachine.core.sources import RasterSource, SourceRegistry


class TestGdalPath:
    def setup_method(self):
        self.registry = SourceRegistry(raster_root="/data", gdal_options={})

    def test_bare_relative_path_uses_root(self):
        assert self.registry.gdal_path("rasters/a.tif") == ("/data/rasters/a.tif", False)

    def test_absolute_path_ignores_root(self):
        assert self.registry.gdal_path("/tmp/a.tif") == ("/tmp/a.tif", False)

    def test_file_scheme(self):
        assert self.registry.gdal_path("file:///tmp/a.tif") == ("/tmp/a.tif", False)
        assert self.registry.gdal_path("file:rasters/a.tif") == ("/data/rasters/a.tif", False)

    def test_s3_scheme(self):
        assert self.registry.gdal_path("s3://bucket/key.tif") == ("/vsis3/bucket/key.tif", True)
        assert self.registry.gdal_path("s3:bucket/key.tif") == ("/vsis3/bucket/key.tif", True)

    def test_http_scheme(self):
        url = "https://example.com/a.tif"
        assert self.registry.gdal_path(url) == (f"/vsicurl/{url}", True)

    def test_vsi_passthrough(self):
        assert self.registry.gdal_path("/vsimem/x.tif") == ("/vsimem/x.tif", True)

    def test_unsupported_scheme(self):
        with pytest.raises(UnsupportedFormat, match="wms"):
            self.registry.gdal_path("wms://server/layer")

    def test_no_root(self):
        registry = SourceRegistry(gdal_options={})
        assert registry.gdal_path("a.tif") == ("a.tif", False)


class TestResolve:
    def test_opens_and_describes_source(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            assert source.band_count == 3
            assert (source.width, source.height) == (2, 2)
            assert source.bounds == pytest.approx((10.0, 40.0, 11.0, 41.0))
            assert source.crs.to_epsg() == 4326
            assert source.nodata == (None, None, None)

    def test_handles_are_cached_per_path(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            first = registry.resolve("a", rgb_tif)
            second = registry.resolve("b", rgb_tif)
            assert first is second
            assert len(registry) == 1

    def test_exit_closes_handles(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
        assert len(registry) == 0
        assert source.dataset.closed

    def test_missing_file(self, tmp_path):
        with SourceRegistry(gdal_options={}) as registry:
            with pytest.raises(SourceNotFound, match="missing.tif"):
                registry.resolve("x", str(tmp_path / "missing.tif"))

    def test_unrecognised_file(self, tmp_path):
        path = tmp_path / "notes.tif"
        path.write_text("this is not a raster")
        with SourceRegistry(gdal_options={}) as registry:
            with pytest.raises((UnsupportedFormat, DecodeFailure)):
                registry.resolve("x", str(path))

    def test_raster_root(self, rgb_tif, tmp_path):
        with SourceRegistry(raster_root=tmp_path, gdal_options={}) as registry:
            source = registry.resolve("rgb", "rgb.tif")
            assert source.band_count == 3

    def test_resolve_all_preserves_order(self, rgb_tif, dsm_tif):
        with SourceRegistry(gdal_options={}) as registry:
            pairs = registry.resolve_all([("dsm", dsm_tif), ("rgb", rgb_tif)])
            assert [name for name, _ in pairs] == ["dsm", "rgb"]

    def test_remote_sources_go_through_retrying_open(self):
        from rasterio.errors import RasterioIOError

        registry = SourceRegistry(gdal_options={})
        with patch(
            "chuk_mcp_tilemachine.core.sources._open_remote",
            side_effect=RasterioIOError("HTTP response code: 404"),
        ) as opener:
            with pytest.raises(SourceNotFound):
                registry.resolve("x", "https://example.com/a.tif")
        opener.assert_called_once_with("/vsicurl/https://example.com/a.tif")


class TestSampling:
    def test_sample_inside(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            # Top-left pixel centre
            assert registry.sample(source, 10.25, 40.75) == [10.0, 50.0, 90.0]
            # Bottom-right pixel centre
            assert source.sample(10.75, 40.25) == [40.0, 80.0, 250.0]

    def test_sample_outside_is_none(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            assert source.sample(50.0, 50.0) is None

    def test_sample_nodata_is_none(self, dsm_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("dsm", dsm_tif)
            assert source.sample(10.1, 40.9) is None
            assert source.sample(10.9, 40.1) == [150.0]

    def test_sample_with_other_crs(self, rgb_tif):
        from pyproj import Transformer

        x, y = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True).transform(10.25, 40.75)
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            assert source.sample(x, y, "EPSG:3857") == [10.0, 50.0, 90.0]


class TestPrefetch:
    def test_prefetch_locate_gather(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            source.prefetch((10.0, 40.0, 11.0, 41.0), source.crs, 0.5)
            rows, cols = source.locate(np.array([10.25, 10.75]), np.array([40.75, 40.25]), source.crs)
            values, valid = source.gather(rows, cols)
            assert valid.tolist() == [True, True]
            assert values.tolist() == [[10.0, 50.0, 90.0], [40.0, 80.0, 250.0]]

    def test_outside_points_are_invalid(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            source.prefetch((10.0, 40.0, 11.0, 41.0), source.crs, 0.5)
            rows, cols = source.locate(np.array([12.0]), np.array([40.5]), source.crs)
            values, valid = source.gather(rows, cols)
            assert valid.tolist() == [False]

    def test_window_outside_source(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            source.prefetch((20.0, 40.0, 21.0, 41.0), source.crs, 0.5)
            rows, cols = source.locate(np.array([20.5]), np.array([40.5]), source.crs)
            values, valid = source.gather(rows, cols)
            assert valid.tolist() == [False]
            assert values.shape == (1, 3)
            assert math.isnan(values[0, 0])

    def test_nodata_is_invalid(self, dsm_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("dsm", dsm_tif)
            source.prefetch((10.0, 40.0, 11.0, 41.0), source.crs, 0.25)
            rows, cols = source.locate(np.array([10.1, 10.9]), np.array([40.9, 40.1]), source.crs)
            _, valid = source.gather(rows, cols)
            assert valid.tolist() == [False, True]

    def test_locate_requires_prefetch(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            with pytest.raises(RuntimeError, match="prefetched"):
                source.locate(np.array([10.5]), np.array([40.5]), source.crs)

    def test_nodata_sentinel(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            sentinel = source.nodata_sentinel
            assert isinstance(sentinel, tuple)
            assert len(sentinel) == 3
            assert all(math.isnan(v) for v in sentinel)

    def test_repr(self, rgb_tif):
        with SourceRegistry(gdal_options={}) as registry:
            source = registry.resolve("rgb", rgb_tif)
            assert isinstance(source, RasterSource)
            assert "bands=3" in repr(source)

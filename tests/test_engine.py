"""Tests for the Pixel Evaluation Engine."""

import threading

import numpy as np
import pytest

from chuk_mcp_tilemachine.core import raster_io
from chuk_mcp_tilemachine.core.bounds import BoundsResult
from chuk_mcp_tilemachine.core.engine import pixel_centres, render
from chuk_mcp_tilemachine.core.errors import RenderCancelled
from chuk_mcp_tilemachine.core.script import compile_script
from chuk_mcp_tilemachine.core.sources import SourceRegistry

WINDOW = BoundsResult(10.0, 40.0, 11.0, 41.0, raster_io.to_crs("EPSG:4326"), 0.5)


def render_files(script, files, size=(2, 2), window=WINDOW, **kwargs):
    """Compile script against the named files and render them."""
    names = list(files)
    pixel_fn = compile_script(script, names)
    with SourceRegistry(gdal_options={}) as registry:
        sources = registry.resolve_all(files.items())
        return render(pixel_fn, sources, window, size, max_workers=kwargs.pop("max_workers", 1), **kwargs)


class TestPixelCentres:
    def test_centres(self):
        window = BoundsResult(0.0, 0.0, 4.0, 2.0, None, 1.0)
        xs, ys = pixel_centres(window, 4, 2)
        assert xs.tolist() == [0.5, 1.5, 2.5, 3.5]
        assert ys.tolist() == [1.5, 0.5]


class TestRender:
    def test_rgb_passthrough(self, rgb_tif):
        buf = render_files("return [rgb[0], rgb[1], rgb[2]]", {"rgb": rgb_tif})
        assert buf.rgba.shape == (2, 2, 4)
        assert buf.rgba[0, 0].tolist() == [10, 50, 90, 255]
        assert buf.rgba[0, 1].tolist() == [20, 60, 100, 255]
        assert buf.rgba[1, 1].tolist() == [40, 80, 250, 255]
        assert buf.fault_count == 0
        assert buf.nodata_pixels == 0

    def test_buffer_geometry(self, rgb_tif):
        buf = render_files("return [0, 0, 0]", {"rgb": rgb_tif}, size=(4, 2))
        assert (buf.width, buf.height) == (4, 2)
        assert buf.transform.a == pytest.approx(0.25)
        assert buf.transform.e == pytest.approx(-0.5)
        assert buf.window is WINDOW

    def test_channel_clamping(self, rgb_tif):
        buf = render_files("return [300, -5, 127.5, Infinity]", {"rgb": rgb_tif})
        assert buf.rgba[0, 0].tolist() == [255, 0, 128, 255]

    def test_nan_channel_is_zero(self, rgb_tif):
        buf = render_files("return [NaN, 0.4, 0.5, NaN]", {"rgb": rgb_tif})
        assert buf.rgba[1, 0].tolist() == [0, 0, 1, 0]

    def test_all_nodata_pixel_is_transparent(self, nodata_tif):
        buf = render_files("return [255, 255, 255, 255]", {"v": nodata_tif})
        assert not buf.rgba.any()
        assert buf.nodata_pixels == 4
        assert buf.fault_count == 0

    def test_partial_nodata(self, half_nodata_tif):
        buf = render_files("return [v[0], 0, 0]", {"v": half_nodata_tif})
        assert buf.rgba[0, 0].tolist() == [0, 0, 0, 0]
        assert buf.rgba[0, 1].tolist() == [5, 0, 0, 255]
        assert buf.rgba[1, 1].tolist() == [7, 0, 0, 255]
        assert buf.nodata_pixels == 2

    def test_nodata_source_binds_nan_when_others_have_data(self, rgb_tif, half_nodata_tif):
        script = "return [isNaN(v[0]) ? 1 : v[0], rgb[0], v.length]"
        buf = render_files(script, {"rgb": rgb_tif, "v": half_nodata_tif})
        assert buf.rgba[0, 0].tolist() == [1, 10, 1, 255]
        assert buf.rgba[0, 1].tolist() == [5, 20, 1, 255]
        assert buf.nodata_pixels == 0

    def test_nodata_values_are_writable(self, rgb_tif, half_nodata_tif):
        script = "let px = v\npx[0] = isNaN(px[0]) ? 9 : px[0]\nreturn [px[0], rgb[0], 0]"
        buf = render_files(script, {"rgb": rgb_tif, "v": half_nodata_tif})
        assert buf.rgba[0, 0].tolist() == [9, 10, 0, 255]
        assert buf.rgba[0, 1].tolist() == [5, 20, 0, 255]
        assert buf.fault_count == 0

    def test_hoisted_array_is_fresh_for_every_pixel(self, rgb_tif):
        script = (
            "const acc = []\n"
            "function push(a, x) { a[a.length] = x }\n"
            "push(acc, rgb[0])\n"
            "return [acc.length, acc[0], 0]"
        )
        buf = render_files(script, {"rgb": rgb_tif})
        assert buf.fault_count == 0
        assert buf.rgba[0, 0].tolist() == [1, 10, 0, 255]
        assert buf.rgba[1, 1].tolist() == [1, 40, 0, 255]

    def test_fault_is_contained_to_its_pixel(self, half_nodata_tif):
        script = "if (v[0] > 6) { return 5 }\nreturn [v[0], 0, 0]"
        buf = render_files(script, {"v": half_nodata_tif})
        assert buf.fault_count == 1
        assert buf.rgba[1, 1].tolist() == [0, 0, 0, 0]
        assert buf.rgba[0, 1].tolist() == [5, 0, 0, 255]

    def test_every_pixel_faulting(self, rgb_tif):
        buf = render_files("return [1, 2]", {"rgb": rgb_tif})
        assert buf.fault_count == 4
        assert not buf.rgba.any()

    def test_sources_in_other_crs(self, rgb_tif, mercator_tif):
        script = "return [isNaN(m[0]) ? 0 : m[0], rgb[0], 0]"
        buf = render_files(script, {"rgb": rgb_tif, "m": mercator_tif})
        assert buf.rgba[:, 0, 0].tolist() == [0, 0]
        assert buf.rgba[:, 1, 0].tolist() == [42, 42]

    def test_window_outside_all_sources(self, rgb_tif):
        window = BoundsResult(50.0, 50.0, 51.0, 51.0, raster_io.to_crs("EPSG:4326"), 0.5)
        buf = render_files("return [255, 255, 255]", {"rgb": rgb_tif}, window=window)
        assert buf.nodata_pixels == 4
        assert not buf.rgba.any()

    def test_parallel_blocks_match_serial(self, dsm_tif):
        script = "return [dsm[0], 255 - dsm[0], 0]"
        serial = render_files(script, {"dsm": dsm_tif}, size=(4, 4), max_workers=1, row_block=4)
        parallel = render_files(script, {"dsm": dsm_tif}, size=(4, 4), max_workers=4, row_block=1)
        assert np.array_equal(serial.rgba, parallel.rgba)
        assert parallel.nodata_pixels == serial.nodata_pixels == 1
        assert parallel.rgba[3, 3].tolist() == [150, 105, 0, 255]

    def test_invalid_size(self, rgb_tif):
        with pytest.raises(ValueError, match="must be positive"):
            render_files("return [0, 0, 0]", {"rgb": rgb_tif}, size=(0, 2))

    def test_cancellation(self, rgb_tif):
        event = threading.Event()
        event.set()
        with pytest.raises(RenderCancelled, match="cancelled"):
            render_files("return [0, 0, 0]", {"rgb": rgb_tif}, cancel_event=event)

    def test_unset_event_does_not_cancel(self, rgb_tif):
        buf = render_files("return [0, 0, 0]", {"rgb": rgb_tif}, cancel_event=threading.Event())
        assert buf.fault_count == 0

"""Tests for chuk_mcp_tilemachine.tools.script.api (tile_compile, tile_bounds, tile_wms_capabilities)."""

import json
import xml.etree.ElementTree as ET

import numpy as np
import pytest
from unittest.mock import AsyncMock

from chuk_mcp_tilemachine.tools.script.api import register_script_tools

from conftest import make_request, write_geotiff


@pytest.fixture
def script_tools(capture_tools, mock_manager):
    return capture_tools(register_script_tools, mock_manager)


class TestRegistration:
    def test_registers_three_tools(self, script_tools):
        assert set(script_tools) == {"tile_compile", "tile_bounds", "tile_wms_capabilities"}


# ── tile_compile ───────────────────────────────────────────────────


class TestCompile:
    async def test_compiles(self, script_tools):
        request = make_request(
            {"rgb": "a.tif", "dsm": "b.tif"}, "const K = 10\nreturn [K * dsm[0], 0, 0]"
        )
        data = json.loads(await script_tools["tile_compile"](request))
        assert data["inputs"] == ["rgb", "dsm"]
        assert data["referenced_inputs"] == ["dsm"]
        assert data["unused_inputs"] == ["rgb"]
        assert data["constants"] == ["K"]
        assert "1 inputs referenced" in data["message"]

    async def test_compile_does_not_open_sources(self, script_tools):
        # Sources are never opened, so nonexistent paths are fine
        request = make_request({"rgb": "/definitely/not/here.tif"}, "return [rgb[0], 0, 0]")
        data = json.loads(await script_tools["tile_compile"](request))
        assert "error" not in data

    async def test_syntax_error(self, script_tools):
        request = make_request({"rgb": "a.tif"}, "let a = 1\nlet b = )")
        data = json.loads(await script_tools["tile_compile"](request))
        assert data["error_type"] == "ScriptSyntaxError"
        assert data["error"].startswith("script:2: SyntaxError:")

    async def test_undeclared_input(self, script_tools):
        request = make_request({"dsm": "b.tif"}, "return [rgb[0], rgb[1], rgb[2]]")
        data = json.loads(await script_tools["tile_compile"](request))
        assert data["error_type"] == "UndeclaredInputReference"
        assert "rgb" in data["error"]

    async def test_capability_violation(self, script_tools):
        request = make_request({"rgb": "a.tif"}, "while (true) { }\nreturn [0, 0, 0]")
        data = json.loads(await script_tools["tile_compile"](request))
        assert data["error_type"] == "CapabilityViolation"

    async def test_malformed_request(self, script_tools):
        data = json.loads(await script_tools["tile_compile"]("{not json"))
        assert data["error_type"] == "ValueError"
        assert "Invalid custom script request" in data["error"]

    async def test_reserved_input_name(self, script_tools):
        request = make_request({"Math": "a.tif"}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_compile"](request))
        assert "reserved word" in data["error"]

    async def test_text_output(self, script_tools):
        request = make_request({"rgb": "a.tif", "dsm": "b.tif"}, "return [rgb[0], 0, 0]")
        result = await script_tools["tile_compile"](request, output_mode="text")
        assert "Referenced: rgb" in result
        assert "Unused: dsm" in result

    async def test_error_text_output(self, script_tools):
        request = make_request({"rgb": "a.tif"}, "return [Math.random(), 0, 0]")
        result = await script_tools["tile_compile"](request, output_mode="text")
        assert result.startswith("Error (CapabilityViolation):")


# ── tile_bounds ────────────────────────────────────────────────────


class TestBounds:
    async def test_bounds(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_bounds"](request))
        assert data["bbox"] == pytest.approx([10.0, 40.0, 11.0, 41.0])
        assert data["crs"] == "EPSG:4326"
        assert data["resolution"] == pytest.approx(0.5)
        assert data["wgs84_bbox"] == pytest.approx([10.0, 40.0, 11.0, 41.0])
        assert data["polygon"]["type"] == "Polygon"
        assert data["inputs"] == ["rgb"]
        assert data["policy"] == "intersection"
        assert data["default_shape"] == [2, 2]

    async def test_bounds_does_not_evaluate_script(self, script_tools, rgb_tif):
        # The script faults on every pixel, but bounds never evaluates it
        request = make_request({"rgb": rgb_tif}, "return [1, 2]")
        data = json.loads(await script_tools["tile_bounds"](request))
        assert "error" not in data

    async def test_union_policy(self, script_tools, rgb_tif, far_tif):
        request = make_request({"rgb": rgb_tif, "far": far_tif}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_bounds"](request, policy="union"))
        assert data["bbox"] == pytest.approx([10.0, -10.0, 101.0, 41.0])
        assert data["policy"] == "union"

    async def test_explicit_resolution(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_bounds"](request, resolution=0.1))
        assert data["default_shape"] == [10, 10]

    async def test_empty_intersection(self, script_tools, rgb_tif, far_tif):
        request = make_request({"rgb": rgb_tif, "far": far_tif}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_bounds"](request))
        assert data["error_type"] == "EmptyIntersection"

    async def test_missing_source(self, script_tools, tmp_path):
        request = make_request({"a": str(tmp_path / "nope.tif")}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_bounds"](request))
        assert data["error_type"] == "SourceNotFound"

    async def test_invalid_policy(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_bounds"](request, policy="hull"))
        assert "Invalid bounds policy" in data["error"]

    async def test_manager_failure(self, capture_tools, mock_manager):
        mock_manager.get_bounds = AsyncMock(side_effect=RuntimeError("disk on fire"))
        tools = capture_tools(register_script_tools, mock_manager)
        data = json.loads(await tools["tile_bounds"](make_request({"a": "a.tif"}, "return [0,0,0]")))
        assert data["error"] == "disk on fire"

    async def test_text_output(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [0, 0, 0]")
        result = await script_tools["tile_bounds"](request, output_mode="text")
        assert "EPSG:4326" in result
        assert "Default size: 2x2" in result
        assert "WGS84:" in result


# ── tile_wms_capabilities ──────────────────────────────────────────

WMS = {"wms": "http://www.opengis.net/wms"}


class TestWmsCapabilities:
    async def test_capabilities(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [rgb[0], 0, 0]")
        data = json.loads(await script_tools["tile_wms_capabilities"](request))
        assert data["layer_name"] == "image"
        assert data["version"] == "1.3.0"
        assert data["crs"] == "EPSG:4326"
        assert data["wgs84_bbox"] == pytest.approx([10.0, 40.0, 11.0, 41.0])
        assert "image/png" in data["formats"]
        root = ET.fromstring(data["capabilities_xml"].split("\n", 1)[1])
        assert root.find("wms:Capability/wms:Layer/wms:Name", WMS).text == "image"

    async def test_layer_name_and_service_url(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [0, 0, 0]")
        data = json.loads(
            await script_tools["tile_wms_capabilities"](
                request, layer_name="ndvi", service_url="http://localhost:8000/wms"
            )
        )
        assert data["layer_name"] == "ndvi"
        assert "http://localhost:8000/wms" in data["capabilities_xml"]
        assert "'ndvi'" in data["message"]

    async def test_script_is_compiled_first(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [dsm[0], 0, 0]")
        data = json.loads(await script_tools["tile_wms_capabilities"](request))
        assert data["error_type"] == "UndeclaredInputReference"

    async def test_unreferenced_inputs(self, script_tools, tmp_path):
        path = write_geotiff(
            tmp_path / "plain.tif", np.ones((2, 2), dtype=np.uint8), (0, 0, 2, 2), crs=None
        )
        request = make_request({"plain": path}, "return [0, 0, 0]")
        data = json.loads(await script_tools["tile_wms_capabilities"](request))
        assert data["error_type"] == "IncompatibleCRS"
        assert "WMS layer" in data["error"]

    async def test_text_output(self, script_tools, rgb_tif):
        request = make_request({"rgb": rgb_tif}, "return [0, 0, 0]")
        result = await script_tools["tile_wms_capabilities"](request, output_mode="text")
        assert result.startswith("WMS 1.3.0 capabilities for layer 'image' (EPSG:4326)")
        assert "<WMS_Capabilities" in result

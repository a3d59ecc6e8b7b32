#!/usr/bin/env python3
"""
Synthetic Render Demo -- chuk-mcp-tilemachine

Generates two small GeoTIFFs (a 4-band "satellite" scene in EPSG:4326 and
an elevation model in EPSG:3857 that only half overlaps it), then runs the
full pipeline: compile, bounds, window render, XYZ tile render. Images are
written to ./output/.

Usage:
    python examples/synthetic_render_demo.py
"""

import asyncio
import json
import tempfile
from pathlib import Path

import numpy as np
import rasterio
from rasterio.transform import from_bounds
from rasterio.warp import transform_bounds

from tool_runner import ToolRunner

OUTPUT_DIR = Path(__file__).parent / "output"

SCENE_BOUNDS = (6.5, 46.4, 6.8, 46.6)

NDVI_SCRIPT = """
const stops = [[-0.2, 165, 0, 38], [0.2, 253, 174, 97], [0.5, 217, 239, 139], [0.8, 26, 152, 80]]

function ramp(v) {
  if (v <= stops[0][0]) { return [stops[0][1], stops[0][2], stops[0][3]] }
  if (v <= stops[1][0]) { return [stops[1][1], stops[1][2], stops[1][3]] }
  if (v <= stops[2][0]) { return [stops[2][1], stops[2][2], stops[2][3]] }
  return [stops[3][1], stops[3][2], stops[3][3]]
}

const ndvi = (s2[3] - s2[2]) / (s2[3] + s2[2])
return ramp(ndvi)
"""

SHADE_SCRIPT = """
// Elevation tints the scene where the DSM has data
const [r, g, b] = [s2[2] * 255, s2[1] * 255, s2[0] * 255]
if (isNaN(dsm[0])) {
  return [r, g, b]
}
const k = Math.min(1, Math.max(0, (dsm[0] - 400) / 600))
return [r * (1 - k) + 255 * k, g * (1 - k), b * (1 - k), 255]
"""


def write_scene(path: Path) -> None:
    """4-band reflectance (blue, green, red, nir) with a vegetated circle."""
    height, width = 120, 180
    yy, xx = np.mgrid[0:height, 0:width]
    circle = ((xx - 90) ** 2 + (yy - 60) ** 2) < 40**2
    red = np.where(circle, 0.05, 0.25).astype(np.float32)
    nir = np.where(circle, 0.55, 0.30).astype(np.float32)
    blue = np.full_like(red, 0.08)
    green = np.where(circle, 0.12, 0.18).astype(np.float32)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=4,
        dtype="float32",
        crs="EPSG:4326",
        transform=from_bounds(*SCENE_BOUNDS, width, height),
    ) as dst:
        dst.write(np.stack([blue, green, red, nir]))


def write_dsm(path: Path) -> None:
    """Elevation ramp in Web Mercator covering the east half of the scene."""
    west, south, east, north = transform_bounds("EPSG:4326", "EPSG:3857", 6.65, 46.4, 6.95, 46.6)
    height, width = 100, 100
    dsm = np.linspace(400.0, 1000.0, width, dtype=np.float32)[np.newaxis, :].repeat(height, axis=0)
    dsm[40:60, 40:60] = -9999.0
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype="float32",
        crs="EPSG:3857",
        transform=from_bounds(west, south, east, north, width, height),
        nodata=-9999.0,
    ) as dst:
        dst.write(dsm, 1)


async def main() -> None:
    OUTPUT_DIR.mkdir(exist_ok=True)

    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        write_scene(root / "scene.tif")
        write_dsm(root / "dsm.tif")
        runner = ToolRunner(raster_root=str(root))

        print("=" * 60)
        print("chuk-mcp-tilemachine -- Synthetic Render")
        print("=" * 60)

        ndvi_request = json.dumps({"inputs": {"s2": "scene.tif"}, "script": NDVI_SCRIPT})
        compiled = await runner.run("tile_compile", request=ndvi_request)
        print(f"\n{compiled['message']}")
        print(f"  Constants hoisted: {compiled['constants']}")

        bounds = await runner.run("tile_bounds", request=ndvi_request)
        print(f"\n{bounds['message']}")
        print(f"  BBox: {bounds['bbox']} ({bounds['crs']})")
        print(f"  Default size: {bounds['default_shape']}")

        render = await runner.run("tile_render", request=ndvi_request, width=360)
        print(f"\n{render['message']}")
        size = await runner.save_artifact(render["artifact_ref"], str(OUTPUT_DIR / "ndvi.png"))
        print(f"  Saved output/ndvi.png ({size:,} bytes)")

        # Mixed CRS: the scene fixes the reference CRS, the DSM is reprojected on the fly
        mixed_request = json.dumps(
            {"inputs": {"s2": "scene.tif", "dsm": "dsm.tif"}, "script": SHADE_SCRIPT}
        )
        for policy in ("intersection", "union"):
            b = await runner.run("tile_bounds", request=mixed_request, policy=policy)
            print(f"\n{policy}: {[round(v, 3) for v in b['bbox']]}")
            r = await runner.run("tile_render", request=mixed_request, policy=policy, width=300)
            print(f"  {r['message']}")
            await runner.save_artifact(r["artifact_ref"], str(OUTPUT_DIR / f"shade_{policy}.png"))

        # GeoTIFF keeps georeferencing
        geo = await runner.run(
            "tile_render", request=mixed_request, output_format="geotiff", width=200
        )
        await runner.save_artifact(geo["artifact_ref"], str(OUTPUT_DIR / "shade.tif"))
        print(f"\nGeoTIFF: {geo['message']}")

        # The same request described as a WMS layer
        wms = await runner.run("tile_wms_capabilities", request=mixed_request, layer_name="shade")
        print(f"\n{wms['message']}")
        (OUTPUT_DIR / "shade_capabilities.xml").write_text(wms["capabilities_xml"])

        # XYZ tile containing the scene (z12, lon 6.65, lat 46.5)
        tile = await runner.run("tile_render_xyz", request=ndvi_request, z=12, x=2123, y=1450)
        print(f"\n{tile['message']}")
        await runner.save_artifact(tile["artifact_ref"], str(OUTPUT_DIR / "tile_12_2123_1450.png"))

        # A script that faults on some pixels still renders
        faulty = json.dumps(
            {
                "inputs": {"s2": "scene.tif"},
                "script": "if (s2[3] > 0.5) { return 0 }\nreturn [s2[2] * 255, 0, 0]",
            }
        )
        print("\n" + await runner.run_text("tile_render", request=faulty, width=90))

    print("\n" + "=" * 60)
    print(f"Images written to {OUTPUT_DIR}")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())

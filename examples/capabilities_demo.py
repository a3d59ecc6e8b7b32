#!/usr/bin/env python3
"""
Capabilities Demo -- chuk-mcp-tilemachine

Quick-start script showing what the server can do, without opening any
raster. Lists the example scripts, server status, full capabilities,
compiles every catalog script and demonstrates the dual output mode
(JSON vs text).

Usage:
    python examples/capabilities_demo.py
"""

import asyncio

from tool_runner import ToolRunner


async def main() -> None:
    runner = ToolRunner()

    print("=" * 60)
    print("chuk-mcp-tilemachine -- Server Capabilities")
    print("=" * 60)

    print(f"\nRegistered tools ({len(runner.tool_names)}):")
    for name in sorted(runner.tool_names):
        print(f"  - {name}")

    examples = await runner.run("tile_list_examples")
    print(f"\nExample scripts ({len(examples['examples'])}):")
    print(f"  Default: {examples['default']}")
    for e in examples["examples"]:
        print(f"  {e['name']:14s}  {e['title']:30s}  inputs: {', '.join(e['inputs'])}")

    # Every catalog script compiles without touching its rasters
    print("\nCompile check:")
    for e in examples["examples"]:
        detail = await runner.run("tile_describe_example", name=e["name"])
        compiled = await runner.run("tile_compile", request=detail["request"])
        if "error" in compiled:
            print(f"  {e['name']:14s}  FAILED: {compiled['error']}")
        else:
            constants = ", ".join(compiled["constants"]) or "none"
            print(f"  {e['name']:14s}  reads {compiled['referenced_inputs']}, constants: {constants}")

    # A script that breaks the sandbox
    bad = await runner.run(
        "tile_compile",
        request='{"inputs": {"rgb": "x.tif"}, "script": "return [Math.random() * 255, 0, 0]"}',
    )
    print(f"\nRejected script: ({bad['error_type']}) {bad['error']}")

    status = await runner.run("tile_status")
    print("\nServer Status:")
    print(f"  {status['server']} v{status['version']}")
    print(f"  Storage: {status['storage_provider']}")
    print(f"  Render workers: {status['max_workers']}")

    caps = await runner.run("tile_capabilities")
    print("\nCapabilities:")
    print(f"  Tools: {caps['tool_count']}")
    print(f"  Source schemes: {', '.join(caps['source_schemes'])}")
    print(f"  Output formats: {', '.join(caps['output_formats'])}")
    print(f"  Math: {', '.join(caps['math_functions'])}")

    print("\n" + "-" * 60)
    print("Dual Output Mode Demo")
    print("-" * 60)

    print("\ntile_status (output_mode='text'):")
    print(await runner.run_text("tile_status"))

    print("\ntile_describe_example (output_mode='text'):")
    print(await runner.run_text("tile_describe_example", name="palm_dsm"))

    print("\n" + "=" * 60)
    print("Run synthetic_render_demo.py to render images from generated rasters.")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())

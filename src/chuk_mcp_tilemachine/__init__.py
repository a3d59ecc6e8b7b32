"""
chuk-mcp-tilemachine: Custom-Script Raster Rendering MCP Server

Renders user pixel scripts over one or more named raster inputs (local files,
S3 or HTTP sources read through GDAL) into PNG, JPEG or GeoTIFF images for an
arbitrary window or an XYZ map tile, and stores results in chuk-artifacts.
"""

__version__ = "0.1.0"

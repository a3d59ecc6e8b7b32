"""
Response models for chuk-mcp-tilemachine tools.

All tool responses are Pydantic models for type safety and consistent API.
"""

from pydantic import BaseModel, ConfigDict, Field


def format_response(model: BaseModel, output_mode: str = "json") -> str:
    """Format a response model as JSON or human-readable text.

    Args:
        model: Pydantic response model instance
        output_mode: "json" (default) or "text"

    Returns:
        Formatted string
    """
    if output_mode == "text" and hasattr(model, "to_text"):
        return str(model.to_text())
    return str(model.model_dump_json())


class ErrorResponse(BaseModel):
    """Error response model for tool failures."""

    model_config = ConfigDict(extra="forbid")

    error: str = Field(..., description="Error message describing what went wrong")
    error_type: str | None = Field(
        None, description="Error category (e.g. EmptyIntersection, ScriptSyntaxError)"
    )

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorResponse":
        """Build from an exception; TileMachineError subclasses carry their own error_type."""
        return cls(error=str(exc), error_type=getattr(exc, "error_type", type(exc).__name__))

    def to_text(self) -> str:
        if self.error_type:
            return f"Error ({self.error_type}): {self.error}"
        return f"Error: {self.error}"


# ---------------------------------------------------------------------------
# Discovery responses
# ---------------------------------------------------------------------------


class ExampleInfo(BaseModel):
    """Summary of one catalog example."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Example identifier (e.g., nz_rgb)")
    title: str = Field(..., description="Human-readable title")
    inputs: dict[str, str] = Field(..., description="Input name -> raster source")

    def to_text(self) -> str:
        return f"{self.name}: {self.title} (inputs: {', '.join(self.inputs)})"


class ExamplesResponse(BaseModel):
    """Response model for listing the example catalog."""

    model_config = ConfigDict(extra="forbid")

    examples: list[ExampleInfo] = Field(..., description="Available example scripts")
    default: str = Field(..., description="Default example name")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [self.message, f"Default: {self.default}", ""]
        for e in self.examples:
            lines.append(f"  {e.to_text()}")
        return "\n".join(lines)


class ExampleDetailResponse(BaseModel):
    """Response model for a single catalog example, including its script."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Example identifier")
    title: str = Field(..., description="Human-readable title")
    inputs: dict[str, str] = Field(..., description="Input name -> raster source")
    script: str = Field(..., description="Pixel script text")
    request: str = Field(..., description="Serialized request, ready for tile_render")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [f"{self.title} ({self.name})", "Inputs:"]
        for name, source in self.inputs.items():
            lines.append(f"  {name}: {source}")
        lines.append("Script:")
        lines.append(self.script)
        return "\n".join(lines)


class StatusResponse(BaseModel):
    """Response model for server status queries."""

    model_config = ConfigDict(extra="forbid")

    server: str = Field(default="chuk-mcp-tilemachine", description="Server name")
    version: str = Field(default="0.1.0", description="Server version")
    example_count: int = Field(..., description="Number of catalog examples", ge=0)
    raster_root: str | None = Field(None, description="Base directory for bare source paths")
    max_workers: int = Field(..., description="Render thread pool size", ge=1)
    storage_provider: str = Field(..., description="Active storage provider (memory/filesystem/s3)")
    artifact_store_available: bool = Field(
        default=False, description="Whether artifact store is available"
    )

    def to_text(self) -> str:
        store_status = "available" if self.artifact_store_available else "not available"
        lines = [
            f"{self.server} v{self.version}",
            f"Examples: {self.example_count}",
            f"Raster root: {self.raster_root or '(not set)'}",
            f"Render workers: {self.max_workers}",
            f"Storage: {self.storage_provider}",
            f"Artifact store: {store_status}",
        ]
        return "\n".join(lines)


class CapabilitiesResponse(BaseModel):
    """Response model for server capabilities listing."""

    model_config = ConfigDict(extra="forbid")

    server: str = Field(..., description="Server name")
    version: str = Field(..., description="Server version")
    examples: list[str] = Field(..., description="Catalog example names")
    source_schemes: list[str] = Field(..., description="Supported source URI schemes")
    bounds_policies: list[str] = Field(..., description="Supported bounds policies")
    output_formats: list[str] = Field(..., description="Supported output formats")
    tile_sizes: list[int] = Field(..., description="Supported XYZ tile sizes")
    max_zoom: int = Field(..., description="Highest XYZ zoom level", ge=0)
    script_globals: list[str] = Field(..., description="Globals available to scripts")
    math_functions: list[str] = Field(..., description="Math.* functions available to scripts")
    tool_count: int = Field(..., description="Number of available tools", ge=0)
    llm_guidance: str = Field(..., description="LLM-friendly usage guidance for the server")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [
            f"{self.server} v{self.version}",
            f"Tools: {self.tool_count}",
            f"Examples: {', '.join(self.examples)}",
            f"Source schemes: {', '.join(self.source_schemes)}",
            f"Bounds policies: {', '.join(self.bounds_policies)}",
            f"Output formats: {', '.join(self.output_formats)}",
            f"Tile sizes: {', '.join(str(s) for s in self.tile_sizes)} (max zoom {self.max_zoom})",
            f"Script globals: {', '.join(self.script_globals)}",
            f"Math: {', '.join(self.math_functions)}",
            f"Guidance: {self.llm_guidance}",
        ]
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Script responses
# ---------------------------------------------------------------------------


class CompileResponse(BaseModel):
    """Response model for a successful script compilation."""

    model_config = ConfigDict(extra="forbid")

    inputs: list[str] = Field(..., description="Declared input names, in reference order")
    referenced_inputs: list[str] = Field(..., description="Inputs the script reads")
    unused_inputs: list[str] = Field(..., description="Declared inputs the script never reads")
    constants: list[str] = Field(..., description="Top-level bindings evaluated once")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [
            self.message,
            f"Inputs: {', '.join(self.inputs)}",
            f"Referenced: {', '.join(self.referenced_inputs) or 'none'}",
        ]
        if self.unused_inputs:
            lines.append(f"Unused: {', '.join(self.unused_inputs)}")
        if self.constants:
            lines.append(f"Constants: {', '.join(self.constants)}")
        return "\n".join(lines)


class BoundsResponse(BaseModel):
    """Response model for the combined extent of a request's inputs."""

    model_config = ConfigDict(extra="forbid")

    bbox: list[float] = Field(
        ..., description="Bounding box [xmin, ymin, xmax, ymax] in the reference CRS"
    )
    crs: str | None = Field(None, description="Reference CRS (first input), None if unreferenced")
    resolution: float = Field(..., description="Pixel size in reference CRS units", gt=0)
    wgs84_bbox: list[float] | None = Field(
        None, description="Bounding box [west, south, east, north] in EPSG:4326"
    )
    polygon: dict | None = Field(None, description="GeoJSON Polygon of the WGS84 bounding box")
    inputs: list[str] = Field(..., description="Inputs the bounds were computed from")
    policy: str = Field(..., description="Bounds policy (intersection or union)")
    default_shape: list[int] = Field(
        ..., description="Output [width, height] at the bounds resolution"
    )
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        bbox = ", ".join(f"{b:.6f}" for b in self.bbox)
        lines = [
            self.message,
            f"BBox: [{bbox}] ({self.crs or 'no CRS'})",
            f"Resolution: {self.resolution:.6g}",
            f"Default size: {self.default_shape[0]}x{self.default_shape[1]}",
        ]
        if self.wgs84_bbox:
            wgs84 = ", ".join(f"{b:.6f}" for b in self.wgs84_bbox)
            lines.append(f"WGS84: [{wgs84}]")
        return "\n".join(lines)


class WmsCapabilitiesResponse(BaseModel):
    """Response model for a WMS GetCapabilities document."""

    model_config = ConfigDict(extra="forbid")

    layer_name: str = Field(..., description="Layer name advertised in the document")
    version: str = Field(..., description="WMS version")
    crs: str = Field(..., description="Reference CRS of the layer")
    bbox: list[float] = Field(..., description="Layer extent in the reference CRS")
    wgs84_bbox: list[float] = Field(..., description="Layer extent [west, south, east, north]")
    formats: list[str] = Field(..., description="GetMap image MIME types")
    capabilities_xml: str = Field(..., description="GetCapabilities XML document")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        return f"{self.message}\n\n{self.capabilities_xml}"


# ---------------------------------------------------------------------------
# Render responses
# ---------------------------------------------------------------------------


class RenderResponse(BaseModel):
    """Response model for a rendered window."""

    model_config = ConfigDict(extra="forbid")

    artifact_ref: str = Field(..., description="Artifact store reference for the image")
    output_format: str = Field(..., description="Image format (png, jpeg, geotiff)")
    crs: str | None = Field(None, description="CRS of the rendered window")
    bbox: list[float] = Field(..., description="Rendered window [xmin, ymin, xmax, ymax]")
    shape: list[int] = Field(..., description="Image shape [height, width]")
    fault_count: int = Field(..., description="Pixels whose script evaluation failed", ge=0)
    nodata_pixels: int = Field(..., description="Pixels with no data in any input", ge=0)
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [
            self.message,
            f"Artifact: {self.artifact_ref}",
            f"Shape: {self.shape[0]}x{self.shape[1]} {self.output_format} ({self.crs or 'no CRS'})",
            f"BBox: [{', '.join(f'{b:.6f}' for b in self.bbox)}]",
            f"Faulted pixels: {self.fault_count}",
            f"NoData pixels: {self.nodata_pixels}",
        ]
        return "\n".join(lines)


class TileResponse(BaseModel):
    """Response model for a rendered XYZ tile."""

    model_config = ConfigDict(extra="forbid")

    artifact_ref: str = Field(..., description="Artifact store reference for the tile image")
    output_format: str = Field(..., description="Image format (png, jpeg, geotiff)")
    z: int = Field(..., description="Zoom level", ge=0)
    x: int = Field(..., description="Tile column", ge=0)
    y: int = Field(..., description="Tile row, counted from the top", ge=0)
    tile_size: int = Field(..., description="Tile edge length in pixels")
    bbox: list[float] = Field(..., description="Tile bounds in EPSG:3857 metres")
    fault_count: int = Field(..., description="Pixels whose script evaluation failed", ge=0)
    nodata_pixels: int = Field(..., description="Pixels with no data in any input", ge=0)
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [
            self.message,
            f"Artifact: {self.artifact_ref}",
            f"Tile: {self.z}/{self.x}/{self.y} ({self.tile_size}px {self.output_format})",
            f"Faulted pixels: {self.fault_count}",
            f"NoData pixels: {self.nodata_pixels}",
        ]
        return "\n".join(lines)

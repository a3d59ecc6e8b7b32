"""Request and response models for chuk-mcp-tilemachine."""

from .requests import CustomScriptRequest
from .responses import (
    BoundsResponse,
    CapabilitiesResponse,
    CompileResponse,
    ErrorResponse,
    ExampleDetailResponse,
    ExampleInfo,
    ExamplesResponse,
    RenderResponse,
    StatusResponse,
    TileResponse,
    WmsCapabilitiesResponse,
    format_response,
)

__all__ = [
    "CustomScriptRequest",
    "ErrorResponse",
    "ExampleInfo",
    "ExamplesResponse",
    "ExampleDetailResponse",
    "StatusResponse",
    "CapabilitiesResponse",
    "CompileResponse",
    "BoundsResponse",
    "RenderResponse",
    "TileResponse",
    "WmsCapabilitiesResponse",
    "format_response",
]

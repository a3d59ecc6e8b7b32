"""
Constants for chuk-mcp-tilemachine server.

All magic strings, defaults, the example script catalog and configuration
values live here.
"""

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


class ServerConfig:
    NAME = "chuk-mcp-tilemachine"
    VERSION = "0.1.0"
    DESCRIPTION = "Custom-Script Raster Rendering MCP Server"


class StorageProvider:
    MEMORY = "memory"
    S3 = "s3"
    FILESYSTEM = "filesystem"


class SessionProvider:
    MEMORY = "memory"
    REDIS = "redis"


class EnvVar:
    ARTIFACTS_PROVIDER = "CHUK_ARTIFACTS_PROVIDER"
    BUCKET_NAME = "BUCKET_NAME"
    REDIS_URL = "REDIS_URL"
    ARTIFACTS_PATH = "CHUK_ARTIFACTS_PATH"
    AWS_ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
    AWS_SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"
    AWS_ENDPOINT_URL_S3 = "AWS_ENDPOINT_URL_S3"
    MCP_STDIO = "MCP_STDIO"
    RASTER_ROOT = "TILEMACHINE_RASTER_ROOT"
    MAX_WORKERS = "TILEMACHINE_MAX_WORKERS"
    # GDAL S3 options, forwarded into rasterio.Env
    AWS_S3_ENDPOINT = "AWS_S3_ENDPOINT"
    AWS_VIRTUAL_HOSTING = "AWS_VIRTUAL_HOSTING"
    AWS_HTTPS = "AWS_HTTPS"


class SourceScheme:
    FILE = "file"
    S3 = "s3"
    HTTP = "http"
    HTTPS = "https"


SUPPORTED_SCHEMES = [SourceScheme.FILE, SourceScheme.S3, SourceScheme.HTTP, SourceScheme.HTTPS]

# GDAL configuration applied to every request's rasterio.Env
GDAL_BASE_OPTIONS: Mapping[str, str] = MappingProxyType(
    {
        "VSI_CACHE": "TRUE",
        "GDAL_DISABLE_READDIR_ON_OPEN": "TRUE",
    }
)
GDAL_ENV_PASSTHROUGH = [EnvVar.AWS_S3_ENDPOINT, EnvVar.AWS_VIRTUAL_HOSTING, EnvVar.AWS_HTTPS]


# Bounds policies
class BoundsPolicy:
    INTERSECTION = "intersection"
    UNION = "union"
    # Origins of render windows that are not computed from the sources
    WINDOW = "window"
    TILE = "tile"


BOUNDS_POLICIES = [BoundsPolicy.INTERSECTION, BoundsPolicy.UNION]
DEFAULT_BOUNDS_POLICY = BoundsPolicy.INTERSECTION
BOUNDS_DENSIFY_POINTS = 21
WGS84 = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"

# Output
OUTPUT_FORMATS = ["png", "jpeg", "geotiff"]
DEFAULT_OUTPUT_FORMAT = "png"
OUTPUT_MIME_TYPES: Mapping[str, str] = MappingProxyType(
    {"png": "image/png", "jpeg": "image/jpeg", "geotiff": "image/tiff"}
)
OUTPUT_SUFFIXES: Mapping[str, str] = MappingProxyType(
    {"png": ".png", "jpeg": ".jpg", "geotiff": ".tif"}
)
JPEG_QUALITY = 90

# Channel policy
CHANNEL_MIN = 0
CHANNEL_MAX = 255
DEFAULT_ALPHA = 255.0

# Render limits
DEFAULT_MAX_DIMENSION = 1024
MAX_RENDER_PIXELS = 4096 * 4096
DEFAULT_ROW_BLOCK = 32
DEFAULT_MAX_WORKERS = 4
# Read a decimated window once a source is this many times finer than the output
PREFETCH_DECIMATION_FACTOR = 2.0

# XYZ tiles (EPSG:3857). 256 is the pixel count covered at zoom 0 by definition
# of the XYZ scheme, independent of the rendered tile size.
EARTH_RADIUS_M = 6378137.0
EQUATOR_LENGTH_M = 2.0 * math.pi * EARTH_RADIUS_M
XYZ_BASE_TILE_SIZE = 256
INITIAL_RESOLUTION = EQUATOR_LENGTH_M / XYZ_BASE_TILE_SIZE
ORIGIN_SHIFT = EQUATOR_LENGTH_M / 2.0
TILE_SIZE = 256
TILE_SIZES = [256, 512]
MAX_ZOOM = 24

# WMS capabilities document (one layer covering the request bounds)
WMS_VERSION = "1.3.0"
WMS_SERVICE_NAME = "tilemachine"
WMS_LAYER_NAME = "image"
WMS_NAMESPACE = "http://www.opengis.net/wms"
XLINK_NAMESPACE = "http://www.w3.org/1999/xlink"

# Script language
MAX_SCRIPT_LENGTH = 64 * 1024
MATH_FUNCTIONS = [
    "abs", "min", "max", "floor", "ceil", "round", "trunc", "sign", "sqrt", "cbrt",
    "pow", "exp", "log", "log2", "log10", "sin", "cos", "tan", "asin", "acos",
    "atan", "atan2", "hypot",
]
MATH_CONSTANTS = ["PI", "E", "LN2", "LN10", "SQRT2"]
SCRIPT_GLOBALS = ["Math", "isNaN", "isFinite", "NaN", "Infinity", "undefined"]

# Identifiers that name I/O, timers, reflection or global state
FORBIDDEN_GLOBALS = frozenset(
    {
        "console", "fetch", "XMLHttpRequest", "WebSocket", "setTimeout", "setInterval",
        "setImmediate", "clearTimeout", "clearInterval", "requestAnimationFrame",
        "queueMicrotask", "Date", "eval", "Function", "require", "process", "globalThis",
        "global", "window", "document", "self", "navigator", "location", "localStorage",
        "sessionStorage", "indexedDB", "WebAssembly", "Atomics", "SharedArrayBuffer",
        "performance", "Reflect", "Proxy", "Promise", "Worker", "importScripts", "alert",
        "prompt", "Deno", "Bun", "Object", "Symbol", "crypto",
    }
)
IMPURE_MATH_MEMBERS = frozenset({"random"})

# Keywords the script language parses but refuses
FORBIDDEN_KEYWORDS = frozenset(
    {
        "new", "this", "class", "import", "export", "await", "async", "yield", "with",
        "delete", "throw", "try", "catch", "finally", "for", "while", "do", "switch",
        "case", "default", "break", "continue", "typeof", "instanceof", "in",
        "debugger", "super", "extends", "void",
    }
)
SCRIPT_KEYWORDS = frozenset(
    {"let", "const", "var", "function", "return", "if", "else", "true", "false", "null"}
)
# Words that may not be used as input names
RESERVED_WORDS = SCRIPT_KEYWORDS | FORBIDDEN_KEYWORDS | frozenset(SCRIPT_GLOBALS)

MAX_CALL_DEPTH = 64
# Statement and expression nesting accepted by the parser
MAX_NESTING_DEPTH = 32
# Total script function calls allowed while evaluating one pixel
MAX_CALLS_PER_PIXEL = 10_000


# ---------------------------------------------------------------------------
# Example script catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScriptExample:
    """One catalog entry: ordered (name, source) inputs plus a script."""

    name: str
    title: str
    inputs: tuple[tuple[str, str], ...]
    script: str

    def request_dict(self) -> dict:
        return {"inputs": dict(self.inputs), "script": self.script}


_NORMALIZE_FN = """
function normalize(v, vmin, vmax) {
  return 255 * (v - vmin) / (vmax - vmin)
}
"""

_NZ_INPUTS = (
    ("rgb", "rasters/new_zealand_1_rgb.tif"),
    ("dsm", "rasters/new_zealand_1_dsm.tif"),
)

SCRIPT_EXAMPLES: Mapping[str, ScriptExample] = MappingProxyType(
    {
        "nz_rgb": ScriptExample(
            name="nz_rgb",
            title="New zealand RGB",
            inputs=_NZ_INPUTS,
            script="return [rgb[0], rgb[1], rgb[2], 255]",
        ),
        "nz_dsm": ScriptExample(
            name="nz_dsm",
            title="New zealand DSM",
            inputs=_NZ_INPUTS,
            script="return [10 * dsm[0], 10 * dsm[0], 10 * dsm[0], 255]",
        ),
        "palm_rgb": ScriptExample(
            name="palm_rgb",
            title="Palm trees RGB",
            inputs=(("optical", "rasters/palm_rgb.tif"),),
            script="""
// From QGIS
let min_maxes = [
  [0.0, 0.2],
  [0.0, 0.2],
  [0.0, 0.2],
  [0.00879835, 0.14448],
  [0.0244771, 0.275814]
]

function normalize(i) {
  const [vmin, vmax] = min_maxes[i]
  return 255 * (optical[i] - vmin) / (vmax - vmin)
}

return [normalize(0), normalize(1), normalize(2), 255]
""",
        ),
        "s2_ndvi": ScriptExample(
            name="s2_ndvi",
            title="Sentinel 2 NDVI",
            inputs=(("s2", "rasters/s2_lausanne.tiff"),),
            script="""
let red = s2[3];
let nir = s2[7];
let ndvi = (nir - red) / (nir + red);
// https://custom-scripts.sentinel-hub.com/custom-scripts/sentinel-2/ndvi/
function cmap(v) {
  if (v < -0.2) {
    return [0, 0, 0, 255]
  } else if (v <= 0) {
    return [165, 0, 38, 255]
  } else if (v <= 0.1) {
    return [215, 48, 39, 255]
  } else if (v <= 0.2) {
    return [244, 109, 67, 255]
  } else if (v <= 0.3) {
    return [253, 174, 97, 255]
  } else if (v <= 0.4) {
    return [254, 224, 139, 255]
  } else if (v <= 0.5) {
    return [255, 255, 191, 255]
  } else if (v <= 0.6) {
    return [217, 239, 139, 255]
  } else if (v <= 0.7) {
    return [166, 217, 106, 255]
  } else if (v <= 0.8) {
    return [102, 189, 99, 255]
  } else if (v <= 0.9) {
    return [26, 152, 80, 255]
  } else if (v <= 1.0) {
    return [0, 104, 55, 255]
  } else {
    return [0, 0, 0, 0]
  }
}

return cmap(ndvi)
""",
        ),
        "palm_dsm": ScriptExample(
            name="palm_dsm",
            title="Palm trees DSM",
            inputs=(("dsm", "rasters/palm_dsm.tif"),),
            script=_NORMALIZE_FN
            + """
// min/maxes from QGIS
return [
  normalize(dsm[0], 20, 28),
  normalize(dsm[0], 20, 28),
  normalize(dsm[0], 20, 28),
  255
]
""",
        ),
        "palm_rgb_dsm": ScriptExample(
            name="palm_rgb_dsm",
            title="Palm trees mixing DSM and RGB",
            inputs=(("optical", "rasters/palm_rgb.tif"), ("dsm", "rasters/palm_dsm.tif")),
            script=_NORMALIZE_FN
            + """
// min/maxes from QGIS
return [
  normalize(optical[0], 0.002, 0.031),
  normalize(dsm[0], 20, 28),
  normalize(dsm[0], 20, 28),
  255
]
""",
        ),
    }
)

ALL_EXAMPLE_NAMES = list(SCRIPT_EXAMPLES.keys())
DEFAULT_EXAMPLE = "nz_rgb"


class ErrorMessages:
    # Requests
    NO_INPUTS = "A custom script needs at least one input"
    INVALID_INPUT_NAME = "Invalid input name '{}': must be an identifier"
    RESERVED_INPUT_NAME = "Invalid input name '{}': reserved word"
    EMPTY_SOURCE = "Input '{}' has an empty source identifier"
    INVALID_REQUEST_JSON = "Invalid custom script request: {}"
    UNKNOWN_EXAMPLE = "Unknown example '{}'. Available: {}"
    # Registry
    SOURCE_NOT_FOUND = "Raster source not found: {}"
    UNSUPPORTED_SCHEME = "Unsupported source scheme '{}' in {}"
    UNSUPPORTED_FORMAT = "Unsupported raster format: {} ({})"
    DECODE_FAILURE = "Failed to decode raster {}: {}"
    NO_BANDS = "Raster {} has no bands"
    SAMPLING_FAILURE = "Failed to read source '{}' during render: {}"
    # Bounds
    EMPTY_INTERSECTION = "Input extents do not intersect: {}"
    INCOMPATIBLE_CRS = "Cannot reproject '{}' ({}) into reference CRS {} of '{}'"
    MIXED_CRS = "Input '{}' has no CRS while reference input '{}' has {}"
    MIXED_CRS_REFERENCE = "Reference input '{}' has no CRS while input '{}' has {}"
    INVALID_POLICY = "Invalid bounds policy '{}'. Available: {}"
    INVALID_RESOLUTION = "resolution must be > 0, got {}"
    NO_SOURCES = "Cannot compute bounds without at least one source"
    # Script
    SCRIPT_TOO_LONG = "Script is {} characters long, maximum is {}"
    UNDECLARED_INPUT = "Script references undeclared input(s): {}. Declared: {}"
    FORBIDDEN_KEYWORD = "'{}' is not allowed in pixel scripts"
    FORBIDDEN_GLOBAL = "'{}' is not available in pixel scripts (no I/O, timers or globals)"
    FORBIDDEN_MEMBER = "Property access '.{}' is not allowed"
    FORBIDDEN_MATH_MEMBER = "Math.{} is not available in pixel scripts"
    READ_ONLY_BINDING = "Cannot assign to read-only binding '{}'"
    INVALID_ASSIGN_TARGET = "Invalid assignment target"
    MISSING_RETURN = "Script must return an array of 3 or 4 channel values"
    REDECLARED = "Identifier '{}' has already been declared"
    CONST_ASSIGN = "Assignment to constant variable '{}'"
    NESTING_TOO_DEEP = "Script is nested too deeply (limit {} levels)"
    # Evaluation
    BAD_RETURN_TYPE = "Expected an array as return value, got {}"
    BAD_RETURN_LENGTH = "Expected 3 or 4 channel values, got {}"
    NOT_A_FUNCTION = "{} is not a function"
    NOT_INDEXABLE = "Cannot index {}"
    NOT_A_NUMBER = "Cannot use {} as a number"
    NOT_DEFINED = "{} is not defined"
    DESTRUCTURE_NON_ARRAY = "Cannot destructure {} as an array"
    RECURSION_LIMIT = "Maximum call depth exceeded"
    CALL_BUDGET = "Exceeded {} function calls for one pixel"
    FROZEN_ARRAY = "Cannot modify a constant array"
    INDEX_ASSIGN_RANGE = "Cannot assign array index {} (length {})"
    # Render
    INVALID_OUTPUT_FORMAT = "Invalid output format '{}'. Available: {}"
    INVALID_BBOX = "Invalid bounding box: must be [xmin, ymin, xmax, ymax]"
    INVALID_BBOX_VALUES = "Invalid bounding box values: xmin ({}) must be < xmax ({})"
    INVALID_BBOX_Y = "Invalid bounding box values: ymin ({}) must be < ymax ({})"
    INVALID_SIZE = "Output size must be positive, got {}x{}"
    SIZE_TOO_LARGE = "Output size {}x{} exceeds limit of {} pixels"
    INVALID_TILE = "Invalid tile z={} x={} y={}"
    INVALID_TILE_SIZE = "Invalid tile size {}. Available: {}"
    TILE_NEEDS_CRS = "Input '{}' has no CRS; XYZ tiles need georeferenced inputs"
    WMS_NEEDS_CRS = "Input bounds have no CRS; a WMS layer needs georeferenced inputs"
    RENDER_CANCELLED = "Render cancelled after {} of {} rows"
    NO_ARTIFACT_STORE = (
        "No artifact store available. Configure CHUK_ARTIFACTS_PROVIDER "
        "environment variable (memory, filesystem, or s3)."
    )


class SuccessMessages:
    EXAMPLES_LIST = "{} example scripts available"
    EXAMPLE_DESCRIBE = "Example: {} ({} inputs)"
    COMPILE_OK = "Script compiled ({} inputs referenced, {} constants hoisted)"
    BOUNDS_COMPUTED = "Bounds computed from {} inputs ({})"
    RENDER_COMPLETE = "Rendered {}x{} {} ({} faults, {} nodata pixels)"
    TILE_COMPLETE = "Rendered tile {}/{}/{} ({} faults, {} nodata pixels)"
    WMS_CAPABILITIES = "WMS {} capabilities for layer '{}' ({})"
    STATUS = "TileMachine MCP Server v{} ({} examples, storage: {})"

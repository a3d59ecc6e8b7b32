"""
WMS 1.3.0 capabilities for a custom-script layer.

A request is published as a single layer whose extent is the combined bounds
of its inputs. Only the capabilities document is produced; maps themselves
are rendered through the window and tile renderers.
"""

import logging
import xml.etree.ElementTree as ET

from ..constants import (
    OUTPUT_FORMATS,
    OUTPUT_MIME_TYPES,
    WGS84,
    WMS_LAYER_NAME,
    WMS_NAMESPACE,
    WMS_SERVICE_NAME,
    WMS_VERSION,
    XLINK_NAMESPACE,
    ErrorMessages,
)
from .bounds import BoundsResult
from .errors import IncompatibleCRS

logger = logging.getLogger(__name__)


def _fmt(value: float) -> str:
    return f"{value:.6f}"


def _text(parent: ET.Element, tag: str, text: str) -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = text
    return element


def _online_resource(parent: ET.Element, url: str) -> None:
    ET.SubElement(parent, "OnlineResource", {"xlink:type": "simple", "xlink:href": url})


def _bounding_box(parent: ET.Element, crs: str, bbox: list[float]) -> None:
    xmin, ymin, xmax, ymax = bbox
    if crs == WGS84:
        # EPSG:4326 is latitude/longitude ordered in WMS 1.3.0
        xmin, ymin, xmax, ymax = ymin, xmin, ymax, xmax
    ET.SubElement(
        parent,
        "BoundingBox",
        {"CRS": crs, "minx": _fmt(xmin), "miny": _fmt(ymin), "maxx": _fmt(xmax), "maxy": _fmt(ymax)},
    )


def capabilities_xml(
    bounds: BoundsResult,
    layer_name: str = WMS_LAYER_NAME,
    service_url: str | None = None,
) -> str:
    """
    Build the GetCapabilities document for one layer.

    Args:
        bounds: Combined input bounds (must carry a CRS)
        layer_name: Name advertised for the layer
        service_url: Base URL for OnlineResource links (omitted when None)

    Returns:
        XML text with declaration

    Raises:
        IncompatibleCRS: bounds without a CRS cannot be placed on a map
    """
    crs = bounds.crs_string
    wgs84 = bounds.to_wgs84()
    if crs is None or wgs84 is None:
        raise IncompatibleCRS(ErrorMessages.WMS_NEEDS_CRS)
    west, south, east, north = wgs84

    attrs = {"version": WMS_VERSION, "xmlns": WMS_NAMESPACE}
    if service_url:
        attrs["xmlns:xlink"] = XLINK_NAMESPACE
    root = ET.Element("WMS_Capabilities", attrs)

    service = ET.SubElement(root, "Service")
    _text(service, "Name", "WMS")
    _text(service, "Title", WMS_SERVICE_NAME)
    if service_url:
        _online_resource(service, service_url)

    capability = ET.SubElement(root, "Capability")
    request = ET.SubElement(capability, "Request")
    get_capabilities = ET.SubElement(request, "GetCapabilities")
    _text(get_capabilities, "Format", "text/xml")
    get_map = ET.SubElement(request, "GetMap")
    for fmt in OUTPUT_FORMATS:
        _text(get_map, "Format", OUTPUT_MIME_TYPES[fmt])
    if service_url:
        for operation in (get_capabilities, get_map):
            http = ET.SubElement(ET.SubElement(ET.SubElement(operation, "DCPType"), "HTTP"), "Get")
            _online_resource(http, service_url)
    exception = ET.SubElement(capability, "Exception")
    _text(exception, "Format", "XML")

    layer = ET.SubElement(capability, "Layer", {"queryable": "0"})
    _text(layer, "Name", layer_name)
    _text(layer, "Title", layer_name)
    _text(layer, "CRS", crs)
    if crs != WGS84:
        _text(layer, "CRS", WGS84)
    geographic = ET.SubElement(layer, "EX_GeographicBoundingBox")
    _text(geographic, "westBoundLongitude", _fmt(west))
    _text(geographic, "eastBoundLongitude", _fmt(east))
    _text(geographic, "southBoundLatitude", _fmt(south))
    _text(geographic, "northBoundLatitude", _fmt(north))
    _bounding_box(layer, crs, bounds.bbox)
    if crs != WGS84:
        _bounding_box(layer, WGS84, wgs84)

    ET.indent(root)
    logger.debug(f"WMS capabilities for layer {layer_name} in {crs}")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")

"""Geometry wrapper classes and the process-wide class registry."""

from geobridge.models.geometry import (
    Geometry,
    GeometryCollection,
    LinearRing,
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)
from geobridge.models.registry import ClassRegistry, get_registry, init_registry

__all__ = [
    "ClassRegistry",
    "Geometry",
    "GeometryCollection",
    "LineString",
    "LinearRing",
    "MultiLineString",
    "MultiPoint",
    "MultiPolygon",
    "Point",
    "Polygon",
    "get_registry",
    "init_registry",
]

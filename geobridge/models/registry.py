"""Process-wide class registry used for geometry type inference.

The registry maps every ``GeometryKind`` to the Python class that wraps
geometries of that kind.  It is installed once per process, before any
factory is created, and is read-only afterwards.  Factories capture the
registry reference at construction; inference always reads it from the
factory rather than from this module's global.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from geobridge.core.constants import GeometryKind
from geobridge.core.exceptions import RegistryError
from geobridge.models import geometry

logger = logging.getLogger(__name__)

# Kind -> ClassRegistry field.  Kinds not listed resolve to ``generic``.
_KIND_FIELDS: dict[GeometryKind, str] = {
    GeometryKind.POINT: "point",
    GeometryKind.LINE_STRING: "line_string",
    GeometryKind.LINEAR_RING: "linear_ring",
    GeometryKind.POLYGON: "polygon",
    GeometryKind.MULTI_POINT: "multi_point",
    GeometryKind.MULTI_LINE_STRING: "multi_line_string",
    GeometryKind.MULTI_POLYGON: "multi_polygon",
    GeometryKind.GEOMETRY_COLLECTION: "geometry_collection",
}


@dataclass(frozen=True, slots=True)
class ClassRegistry:
    """Immutable kind -> wrapper class table."""

    point: type[geometry.Geometry] = geometry.Point
    line_string: type[geometry.Geometry] = geometry.LineString
    linear_ring: type[geometry.Geometry] = geometry.LinearRing
    polygon: type[geometry.Geometry] = geometry.Polygon
    multi_point: type[geometry.Geometry] = geometry.MultiPoint
    multi_line_string: type[geometry.Geometry] = geometry.MultiLineString
    multi_polygon: type[geometry.Geometry] = geometry.MultiPolygon
    geometry_collection: type[geometry.Geometry] = geometry.GeometryCollection
    generic: type[geometry.Geometry] = geometry.Geometry

    def class_for(self, kind: GeometryKind) -> type[geometry.Geometry]:
        """Return the wrapper class registered for *kind*."""
        return getattr(self, _KIND_FIELDS.get(kind, "generic"))  # type: ignore[no-any-return]


_registry: ClassRegistry | None = None
_registry_lock = threading.Lock()


def init_registry(registry: ClassRegistry | None = None) -> ClassRegistry:
    """Install the process-wide registry exactly once.

    Calling again with no argument, or with an equal registry, returns
    the installed one.

    Raises:
        RegistryError: If a different registry is already installed.
    """
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = registry if registry is not None else ClassRegistry()
            logger.debug("Class registry installed | registry=%r", _registry)
        elif registry is not None and registry != _registry:
            msg = "A different class registry is already installed for this process"
            raise RegistryError(msg)
        return _registry


def get_registry() -> ClassRegistry:
    """Return the installed registry, installing the default on first use."""
    if _registry is not None:
        return _registry
    return init_registry()

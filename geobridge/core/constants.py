"""Shared constants — geometry kind tags, factory flags and defaults.

``GeometryKind`` values are the GEOS geometry type ids, so the kind of a
native handle is a direct conversion of ``shapely.get_type_id``.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag

# ---------------------------------------------------------------------------
# Factory defaults
# ---------------------------------------------------------------------------

DEFAULT_SRID: int = 0
"""SRID assigned to geometries when the factory is not given one."""

DEFAULT_BUFFER_RESOLUTION: int = 16
"""Segments per quadrant used by buffer approximations."""

ENGINE_MESSAGES_LOG = "log"
ENGINE_MESSAGES_QUIET = "quiet"
ENGINE_MESSAGE_MODES: frozenset[str] = frozenset({ENGINE_MESSAGES_LOG, ENGINE_MESSAGES_QUIET})


class GeometryKind(IntEnum):
    """Enumerated geometry category of a native handle."""

    GENERIC = -1
    POINT = 0
    LINE_STRING = 1
    LINEAR_RING = 2
    POLYGON = 3
    MULTI_POINT = 4
    MULTI_LINE_STRING = 5
    MULTI_POLYGON = 6
    GEOMETRY_COLLECTION = 7

    @classmethod
    def from_type_id(cls, type_id: int) -> GeometryKind:
        """Map an engine type id to a kind; unknown ids become ``GENERIC``."""
        try:
            return cls(int(type_id))
        except ValueError:
            return cls.GENERIC

    @property
    def is_collection(self) -> bool:
        return self in COLLECTION_KINDS

    @property
    def has_coordinate_sequence(self) -> bool:
        """Whether the engine exposes a coordinate sequence for this kind."""
        return self in (GeometryKind.POINT, GeometryKind.LINE_STRING, GeometryKind.LINEAR_RING)


COLLECTION_KINDS: frozenset[GeometryKind] = frozenset(
    {
        GeometryKind.MULTI_POINT,
        GeometryKind.MULTI_LINE_STRING,
        GeometryKind.MULTI_POLYGON,
        GeometryKind.GEOMETRY_COLLECTION,
    }
)

# Element kind expected inside each homogeneous multi kind.
MULTI_ELEMENT_KINDS: dict[GeometryKind, GeometryKind] = {
    GeometryKind.MULTI_POINT: GeometryKind.POINT,
    GeometryKind.MULTI_LINE_STRING: GeometryKind.LINE_STRING,
    GeometryKind.MULTI_POLYGON: GeometryKind.POLYGON,
}


class FactoryFlags(IntFlag):
    """Bitmask of factory capabilities."""

    NONE = 0
    LENIENT_MULTI_POLYGON = 1
    HAS_Z = 2
    HAS_M = 4


ALL_FACTORY_FLAGS = FactoryFlags.LENIENT_MULTI_POLYGON | FactoryFlags.HAS_Z | FactoryFlags.HAS_M

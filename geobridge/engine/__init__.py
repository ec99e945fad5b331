"""Engine layer — GEOS contexts, geometry handles, readers and writers."""

from geobridge.engine.context import (
    CoordinateSequence,
    EngineContext,
    EngineStats,
    GeometryEngine,
    MessageHandler,
    NativeGeometry,
    default_engine,
)
from geobridge.engine.io import HelperHandle, WKBReader, WKBWriter, WKTReader, WKTWriter

__all__ = [
    "CoordinateSequence",
    "EngineContext",
    "EngineStats",
    "GeometryEngine",
    "HelperHandle",
    "MessageHandler",
    "NativeGeometry",
    "WKBReader",
    "WKBWriter",
    "WKTReader",
    "WKTWriter",
    "default_engine",
]

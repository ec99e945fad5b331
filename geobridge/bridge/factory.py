"""Geometry factory — owns one engine context and its helper handles.

A ``Factory`` allocates a fresh engine context on construction and
creates its WKT/WKB readers and writers lazily, on first use, caching
them for its lifetime.  When the factory is collected (or ``close()`` is
called) a ``weakref.finalize`` hook destroys the helpers, in the order
WKT reader, WKB reader, WKT writer, WKB writer, and then finishes the
context.

Every geometry created by a factory holds a strong reference to it, so
a factory is only collected once all of its geometries are, or in the
same collector sweep as them.  The context defers its final teardown
while any owned handle is still live, which covers the latter case.

Usage::

    from geobridge.bridge.factory import Factory

    factory = Factory.create(srid=4326)
    point = factory.parse_wkt("POINT (1 2)")
    point.x, point.y          # (1.0, 2.0)
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Callable, Iterable, Iterator
from contextlib import ExitStack
from typing import TYPE_CHECKING

from geobridge.bridge.protocol import ClassHint, detach, unwrap, wrap
from geobridge.core.config import (
    ConfigValidationError,
    FactoryConfig,
    validate_config,
    validate_settings,
)
from geobridge.core.constants import (
    DEFAULT_BUFFER_RESOLUTION,
    DEFAULT_SRID,
    ENGINE_MESSAGE_MODES,
    ENGINE_MESSAGES_LOG,
    ENGINE_MESSAGES_QUIET,
    MULTI_ELEMENT_KINDS,
    FactoryFlags,
    GeometryKind,
)
from geobridge.core.exceptions import EngineError, GeoBridgeError
from geobridge.engine.context import default_engine
from geobridge.models.geometry import Geometry, GeometryCollection
from geobridge.models.registry import ClassRegistry, get_registry

if TYPE_CHECKING:
    from pyproj import CRS

    from geobridge.engine.context import EngineContext, GeometryEngine, NativeGeometry
    from geobridge.engine.io import HelperHandle, WKBReader, WKBWriter, WKTReader, WKTWriter

logger = logging.getLogger(__name__)
engine_logger = logging.getLogger("geobridge.engine")

# Release order: readers before writers, all before the context.
_HELPER_NAMES = ("wkt_reader", "wkb_reader", "wkt_writer", "wkb_writer")


# ---------------------------------------------------------------------------
# Engine message routing
# ---------------------------------------------------------------------------


def _discard(_message: str) -> None:
    pass


def _log_notice(message: str) -> None:
    engine_logger.debug("Engine notice | %s", message)


def _log_error(message: str) -> None:
    engine_logger.warning("Engine error | %s", message)


def _message_handlers(mode: str) -> tuple[Callable[[str], None], Callable[[str], None]]:
    if mode == ENGINE_MESSAGES_QUIET:
        return _discard, _discard
    return _log_notice, _log_error


# ---------------------------------------------------------------------------
# Owned resources
# ---------------------------------------------------------------------------


class _FactoryResources:
    """Engine context plus the lazily created helper handles of one factory.

    Held by the factory's finalizer, never by the factory's geometries.
    """

    def __init__(self, context: EngineContext) -> None:
        self.context = context
        self.wkt_reader: WKTReader | None = None
        self.wkb_reader: WKBReader | None = None
        self.wkt_writer: WKTWriter | None = None
        self.wkb_writer: WKBWriter | None = None

    def teardown(self) -> None:
        """Destroy the helpers that exist, then finish the context.

        Tolerates any subset of helpers never having been created and
        never raises.
        """
        context = self.context
        with context.lock:
            for name in _HELPER_NAMES:
                helper: HelperHandle | None = getattr(self, name)
                setattr(self, name, None)
                if helper is None or helper.destroyed:
                    continue
                try:
                    context.destroy_helper(helper)
                except GeoBridgeError:
                    logger.exception("Helper teardown failed | helper=%s", name)
            if context.finished or context.finishing:
                return
            try:
                context.finish()
            except GeoBridgeError:
                logger.exception("Context teardown failed")
        logger.debug(
            "Factory resources released | live_handles=%d | deferred=%s",
            context.live_handles,
            context.finishing,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class Factory:
    """Creates, parses and serialises geometries in one engine context.

    Use ``Factory.create`` (or ``create_factory``) rather than the
    constructor: construction can fail, and ``create`` reports that as
    ``None`` after releasing anything it had allocated.
    """

    def __init__(
        self,
        context: EngineContext,
        *,
        srid: int,
        buffer_resolution: int,
        flags: FactoryFlags,
        registry: ClassRegistry,
    ) -> None:
        self._resources = _FactoryResources(context)
        self._srid = srid
        self._buffer_resolution = buffer_resolution
        self._flags = flags
        self._registry = registry
        self._finalizer = weakref.finalize(self, self._resources.teardown)

    @classmethod
    def create(
        cls,
        flags: int = 0,
        srid: int = DEFAULT_SRID,
        buffer_resolution: int = DEFAULT_BUFFER_RESOLUTION,
        *,
        registry: ClassRegistry | None = None,
        engine: GeometryEngine | None = None,
        engine_messages: str = ENGINE_MESSAGES_LOG,
    ) -> Factory | None:
        """Allocate a new engine context and build a factory around it.

        Args:
            flags: ``FactoryFlags`` bitmask.
            srid: SRID stamped on every geometry of this factory.
            buffer_resolution: Segments per quadrant for buffers.
            registry: Class registry for type inference (default: the
                process-wide registry).
            engine: Engine to allocate the context from (default: the
                process-wide engine).
            engine_messages: ``"log"`` or ``"quiet"``.

        Returns:
            The factory, or ``None`` if the context (or the factory's own
            storage) could not be allocated.

        Raises:
            ConfigValidationError: If a setting is out of range.
        """
        validate_settings(int(flags), srid, buffer_resolution)
        if engine_messages not in ENGINE_MESSAGE_MODES:
            raise ConfigValidationError(
                "engine_messages",
                engine_messages,
                f"must be one of {sorted(ENGINE_MESSAGE_MODES)}",
            )
        registry = registry if registry is not None else get_registry()
        engine = engine if engine is not None else default_engine()
        notice_handler, error_handler = _message_handlers(engine_messages)

        try:
            with ExitStack() as stack:
                context = engine.create_context(notice_handler, error_handler)
                stack.callback(context.finish)
                factory = cls(
                    context,
                    srid=srid,
                    buffer_resolution=buffer_resolution,
                    flags=FactoryFlags(int(flags)),
                    registry=registry,
                )
                stack.pop_all()
        except (EngineError, MemoryError) as exc:
            logger.warning(
                "Factory creation failed | srid=%d | flags=%d | error=%s",
                srid,
                int(flags),
                exc,
            )
            return None

        logger.debug(
            "Factory created | srid=%d | buffer_resolution=%d | flags=%d",
            srid,
            buffer_resolution,
            int(flags),
        )
        return factory

    @classmethod
    def from_config(
        cls,
        config: FactoryConfig,
        *,
        registry: ClassRegistry | None = None,
        engine: GeometryEngine | None = None,
    ) -> Factory | None:
        """Create a factory from a validated ``FactoryConfig``."""
        validate_config(config)
        return cls.create(
            int(config.flags),
            config.srid,
            config.buffer_resolution,
            registry=registry,
            engine=engine,
            engine_messages=config.engine_messages,
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def srid(self) -> int:
        return self._srid

    @property
    def buffer_resolution(self) -> int:
        return self._buffer_resolution

    @property
    def flags(self) -> FactoryFlags:
        return self._flags

    @property
    def has_z(self) -> bool:
        return bool(self._flags & FactoryFlags.HAS_Z)

    @property
    def has_m(self) -> bool:
        return bool(self._flags & FactoryFlags.HAS_M)

    @property
    def lenient_multi_polygon_assertions(self) -> bool:
        return bool(self._flags & FactoryFlags.LENIENT_MULTI_POLYGON)

    @property
    def registry(self) -> ClassRegistry:
        return self._registry

    @property
    def context(self) -> EngineContext:
        return self._resources.context

    @property
    def crs(self) -> CRS | None:
        """pyproj CRS for the factory's SRID (EPSG); ``None`` for SRID 0.

        Raises:
            pyproj.exceptions.CRSError: If the SRID is not a known EPSG code.
        """
        if self._srid == 0:
            return None
        from pyproj import CRS

        return CRS.from_epsg(self._srid)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Release helpers and the context now instead of at collection.

        Geometries still alive keep the context open until they are
        collected.  They stay readable, but calls on them that would create
        a new handle (``clone``, member access, ``as_text``, comparison
        with a foreign geometry) return ``None`` or ``False``.  Calling
        ``close()`` again does nothing.
        """
        self._finalizer()

    def __enter__(self) -> Factory:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_open(self, operation: str) -> None:
        if self.closed:
            msg = f"Factory is closed; cannot {operation}"
            raise EngineError(msg, operation=operation, code="FACTORY_CLOSED")

    # ------------------------------------------------------------------
    # Helper handles (lazy)
    # ------------------------------------------------------------------

    def _helper(self, name: str, create: Callable[[], HelperHandle]) -> HelperHandle | None:
        resources = self._resources
        with resources.context.lock:
            helper = getattr(resources, name)
            if helper is None:
                try:
                    helper = create()
                except EngineError as exc:
                    logger.warning("Helper creation failed | helper=%s | error=%s", name, exc)
                    return None
                if hasattr(helper, "output_dimension"):
                    helper.output_dimension = 3 if self.has_z else 2
                setattr(resources, name, helper)
            return helper

    def _wkt_reader(self) -> WKTReader | None:
        return self._helper("wkt_reader", self.context.create_wkt_reader)  # type: ignore[return-value]

    def _wkb_reader(self) -> WKBReader | None:
        return self._helper("wkb_reader", self.context.create_wkb_reader)  # type: ignore[return-value]

    def _wkt_writer(self) -> WKTWriter | None:
        return self._helper("wkt_writer", self.context.create_wkt_writer)  # type: ignore[return-value]

    def _wkb_writer(self) -> WKBWriter | None:
        return self._helper("wkb_writer", self.context.create_wkb_writer)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def read_wkt_handle(self, text: str) -> NativeGeometry | None:
        """Parse WKT into an owned, unwrapped handle (caller owns it)."""
        self._check_open("parse WKT")
        reader = self._wkt_reader()
        return None if reader is None else reader.read(text)

    def read_wkb_handle(self, data: bytes) -> NativeGeometry | None:
        """Parse WKB into an owned, unwrapped handle (caller owns it)."""
        self._check_open("parse WKB")
        reader = self._wkb_reader()
        return None if reader is None else reader.read(data)

    def parse_wkt(self, text: str) -> Geometry | None:
        """Parse WKT text into a geometry; ``None`` if it is malformed.

        Raises:
            TypeError: If *text* is not a ``str``.
        """
        if not isinstance(text, str):
            msg = f"WKT input must be str, got {type(text).__name__}"
            raise TypeError(msg)
        return self._adopt(self.read_wkt_handle(text))

    def parse_wkb(self, data: bytes | bytearray | memoryview) -> Geometry | None:
        """Parse WKB bytes into a geometry; ``None`` if they are malformed.

        Raises:
            TypeError: If *data* is not bytes-like.
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            msg = f"WKB input must be bytes, got {type(data).__name__}"
            raise TypeError(msg)
        return self._adopt(self.read_wkb_handle(bytes(data)))

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def generate_wkt(self, geometry: object) -> str | None:
        """WKT for *geometry* (coerced into this factory if needed)."""
        self._check_open("write WKT")
        with unwrap(geometry, self) as handle:
            writer = self._wkt_writer() if handle is not None else None
            return None if writer is None else writer.write(handle)  # type: ignore[arg-type]

    def generate_wkb(self, geometry: object) -> bytes | None:
        """WKB for *geometry* (coerced into this factory if needed)."""
        self._check_open("write WKB")
        with unwrap(geometry, self) as handle:
            writer = self._wkb_writer() if handle is not None else None
            return None if writer is None else writer.write(handle)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def point(self, x: float, y: float, z: float | None = None) -> Geometry | None:
        """A point; Z defaults to 0 when the factory has Z and is ignored otherwise."""
        self._check_open("build point")
        coords = (x, y, 0.0 if z is None else z) if self.has_z else (x, y)
        return self._adopt(self.context.create_point(coords), self._registry.point)

    def line_string(self, points: Iterable[object]) -> Geometry | None:
        self._check_open("build line string")
        coords = self._point_coords(points)
        if coords is None:
            return None
        return self._adopt(self.context.create_line_string(coords), self._registry.line_string)

    def linear_ring(self, points: Iterable[object]) -> Geometry | None:
        """A closed ring through *points*; closes it if the ends differ."""
        self._check_open("build linear ring")
        coords = self._point_coords(points)
        if coords is None:
            return None
        if coords and coords[0] != coords[-1]:
            coords.append(coords[0])
        handle = self.context.create_line_string(coords, ring=True)
        return self._adopt(handle, self._registry.linear_ring)

    def polygon(self, outer_ring: object, inner_rings: Iterable[object] = ()) -> Geometry | None:
        """A polygon; the rings are copied and their copies consumed."""
        self._check_open("build polygon")
        handles: list[NativeGeometry] = []
        for ring in (outer_ring, *inner_rings):
            handle, _classes = detach(ring, self, GeometryKind.LINEAR_RING)
            if handle is None:
                self._destroy_all(handles)
                return None
            handles.append(handle)
        native = self.context.create_polygon(handles[0], handles[1:])
        if native is None:
            self._destroy_all(handles)
            return None
        return self._adopt(native, self._registry.polygon)

    def collection(self, elements: Iterable[object]) -> Geometry | None:
        """A heterogeneous collection that remembers each member's class."""
        self._check_open("build collection")
        handles: list[NativeGeometry] = []
        classes: list[object] = []
        for element in elements:
            handle, member_classes = detach(element, self)
            if handle is None:
                self._destroy_all(handles)
                return None
            handles.append(handle)
            classes.append(member_classes)
        return self._build_collection(GeometryKind.GEOMETRY_COLLECTION, handles, classes)

    def multi_point(self, elements: Iterable[object]) -> Geometry | None:
        return self._build_multi(GeometryKind.MULTI_POINT, elements)

    def multi_line_string(self, elements: Iterable[object]) -> Geometry | None:
        return self._build_multi(GeometryKind.MULTI_LINE_STRING, elements)

    def multi_polygon(self, elements: Iterable[object]) -> Geometry | None:
        """A multipolygon; rejected when invalid unless the factory is lenient."""
        result = self._build_multi(GeometryKind.MULTI_POLYGON, elements)
        if result is None or self.lenient_multi_polygon_assertions:
            return result
        handle = result.handle
        if handle is not None and not self.context.is_valid(handle):
            logger.debug("Multipolygon rejected | reason=invalid")
            return None
        return result

    def _build_multi(self, kind: GeometryKind, elements: Iterable[object]) -> Geometry | None:
        self._check_open(f"build {kind.name.lower()}")
        element_kind = MULTI_ELEMENT_KINDS[kind]
        handles: list[NativeGeometry] = []
        for element in _flatten(elements):
            handle, _classes = detach(element, self, element_kind)
            if handle is None:
                logger.debug(
                    "Element rejected | collection=%s | element=%r",
                    kind.name,
                    element,
                )
                self._destroy_all(handles)
                return None
            handles.append(handle)
        # Members take the class of their native kind, so a ring added to a
        # multi line string reads back as a line string.
        return self._build_collection(kind, handles, None)

    def _build_collection(
        self,
        kind: GeometryKind,
        handles: list[NativeGeometry],
        classes: list[object] | None,
    ) -> Geometry | None:
        native = self.context.create_collection(kind, handles)
        if native is None:
            self._destroy_all(handles)
            return None
        return self._adopt(native, classes)

    def _point_coords(self, points: Iterable[object]) -> list[tuple[float, ...]] | None:
        context = self.context
        coords: list[tuple[float, ...]] = []
        for point in points:
            with unwrap(point, self, GeometryKind.POINT) as handle:
                seq = None if handle is None else context.coord_seq(handle)
                if seq is None or seq.size == 0:
                    return None
                x, y = seq.get_x(0), seq.get_y(0)
                if x is None or y is None:
                    return None
                if self.has_z:
                    z = seq.get_z(0) if context.has_z(handle) else 0.0  # type: ignore[arg-type]
                    coords.append((x, y, 0.0 if z is None else z))
                else:
                    coords.append((x, y))
        return coords

    # ------------------------------------------------------------------
    # Ownership helpers
    # ------------------------------------------------------------------

    def _adopt(self, handle: NativeGeometry | None, hint: ClassHint = None) -> Geometry | None:
        """Wrap a freshly created handle, destroying it if wrapping fails."""
        if handle is None:
            return None
        geometry = wrap(self, handle, hint)
        if geometry is None:
            self.context.destroy(handle)
        return geometry

    def _destroy_all(self, handles: Iterable[NativeGeometry]) -> None:
        context = self.context
        for handle in handles:
            if not handle.destroyed:
                context.destroy(handle)

    # ------------------------------------------------------------------
    # Equality
    # ------------------------------------------------------------------

    def _key(self) -> tuple[int, int, int]:
        return (self._srid, self._buffer_resolution, int(self._flags))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Factory):
            return NotImplemented
        return type(self) is type(other) and self._key() == other._key()

    def __hash__(self) -> int:
        return hash((type(self).__name__, *self._key()))

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} srid={self._srid} "
            f"buffer_resolution={self._buffer_resolution} flags={int(self._flags)}>"
        )


def _flatten(elements: Iterable[object]) -> Iterator[object]:
    """Yield elements, expanding nested collections into their members."""
    for element in elements:
        if isinstance(element, GeometryCollection):
            yield from _flatten(element.geometries())
        else:
            yield element


def create_factory(
    *,
    srid: int = DEFAULT_SRID,
    has_z: bool = False,
    has_m: bool = False,
    lenient_multi_polygon_assertions: bool = False,
    buffer_resolution: int = DEFAULT_BUFFER_RESOLUTION,
    engine_messages: str = ENGINE_MESSAGES_LOG,
    registry: ClassRegistry | None = None,
    engine: GeometryEngine | None = None,
) -> Factory | None:
    """Create a factory from keyword options.

    Raises:
        ConfigValidationError: If an option is out of range.
    """
    config = FactoryConfig(
        srid=srid,
        buffer_resolution=buffer_resolution,
        has_z=has_z,
        has_m=has_m,
        lenient_multi_polygon_assertions=lenient_multi_polygon_assertions,
        engine_messages=engine_messages,
    )
    return Factory.from_config(config, registry=registry, engine=engine)

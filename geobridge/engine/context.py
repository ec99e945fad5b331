"""Context-scoped engine handles over GEOS (via shapely).

GEOS is reentrant only through context handles: every call names the
context it runs in, and every geometry, reader and writer created in a
context belongs to it.  shapely hides that model behind immutable
geometry objects, so this module puts it back in place: an
``EngineContext`` hands out ``NativeGeometry`` handles, counts the live
ones, refuses handles from other contexts and refuses to touch a handle
after it has been destroyed.

Lifecycle rules:
- Owned handles are destroyed exactly once, through their own context.
- Borrowed handles (members, rings) belong to their parent and are
  never destroyed directly; they become invalid with the parent.
- ``finish()`` on a context with live handles or helpers defers the
  teardown until the last of them is destroyed, so geometries reclaimed
  in the same collector sweep as their factory stay valid.
- All operations on one context are serialised by the context's lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import shapely
from shapely.errors import ShapelyError

from geobridge.core.constants import GeometryKind
from geobridge.core.exceptions import EngineError, HandleError
from geobridge.engine.io import WKBReader, WKBWriter, WKTReader, WKTWriter

if TYPE_CHECKING:
    import numpy as np
    from shapely.geometry.base import BaseGeometry

    from geobridge.engine.io import HelperHandle

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]

_COLLECTION_CONSTRUCTORS = {
    GeometryKind.MULTI_POINT: shapely.MultiPoint,
    GeometryKind.MULTI_LINE_STRING: shapely.MultiLineString,
    GeometryKind.MULTI_POLYGON: shapely.MultiPolygon,
    GeometryKind.GEOMETRY_COLLECTION: shapely.GeometryCollection,
}

# Member kinds accepted by each homogeneous collection.
_MEMBER_KINDS = {
    GeometryKind.MULTI_POINT: frozenset({GeometryKind.POINT}),
    GeometryKind.MULTI_LINE_STRING: frozenset({GeometryKind.LINE_STRING, GeometryKind.LINEAR_RING}),
    GeometryKind.MULTI_POLYGON: frozenset({GeometryKind.POLYGON}),
}


def _discard(_message: str) -> None:
    pass


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------


class NativeGeometry:
    """Opaque engine geometry handle.

    Owned handles must be destroyed exactly once via
    ``EngineContext.destroy``.  Borrowed handles point into a parent
    geometry and are valid only while the parent is.
    """

    __slots__ = ("__weakref__", "_borrowed", "_context", "_destroyed", "_geom", "_parent")

    def __init__(
        self,
        context: EngineContext,
        geom: BaseGeometry,
        *,
        parent: NativeGeometry | None = None,
    ) -> None:
        self._context = context
        self._geom: BaseGeometry | None = geom
        self._parent = parent
        self._borrowed = parent is not None
        self._destroyed = False

    @property
    def context(self) -> EngineContext:
        return self._context

    @property
    def borrowed(self) -> bool:
        return self._borrowed

    @property
    def destroyed(self) -> bool:
        if self._parent is not None:
            return self._parent.destroyed
        return self._destroyed

    @property
    def geom(self) -> BaseGeometry:
        """Return the underlying shapely geometry.

        Raises:
            HandleError: If the handle (or its parent) has been destroyed.
        """
        if self.destroyed or self._geom is None:
            msg = "Native geometry handle used after destruction"
            raise HandleError(msg, operation="read", code="HANDLE_DESTROYED")
        return self._geom

    def _replace(self, geom: BaseGeometry) -> None:
        self._geom = geom

    def _release(self) -> None:
        self._destroyed = True
        self._geom = None

    def __repr__(self) -> str:
        state = "destroyed" if self.destroyed else ("borrowed" if self._borrowed else "owned")
        return f"<NativeGeometry {state} at 0x{id(self):x}>"


class CoordinateSequence:
    """Read-only view of a handle's coordinates.

    Reads outside the sequence fail with ``None`` rather than raising,
    mirroring the engine's status-code accessors.
    """

    def __init__(self, coords: np.ndarray) -> None:
        self._coords = coords

    @property
    def size(self) -> int:
        return int(self._coords.shape[0])

    def get_x(self, index: int) -> float | None:
        return self._get(index, 0)

    def get_y(self, index: int) -> float | None:
        return self._get(index, 1)

    def get_z(self, index: int) -> float | None:
        """Z value at *index*; ``nan`` for two-dimensional geometries."""
        return self._get(index, 2)

    def _get(self, index: int, column: int) -> float | None:
        if not 0 <= index < self.size:
            return None
        return float(self._coords[index, column])


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class EngineContext:
    """One engine context and the bookkeeping for everything created in it."""

    def __init__(
        self,
        engine: GeometryEngine,
        notice_handler: MessageHandler | None = None,
        error_handler: MessageHandler | None = None,
    ) -> None:
        self._engine = engine
        self._notice = notice_handler or _discard
        self._error = error_handler or _discard
        self._lock = threading.RLock()
        self._live_handles = 0
        self._live_helpers = 0
        self._finishing = False
        self._finished = False

    @property
    def lock(self) -> threading.RLock:
        """Reentrant lock serialising all operations on this context."""
        return self._lock

    @property
    def live_handles(self) -> int:
        return self._live_handles

    @property
    def live_helpers(self) -> int:
        return self._live_helpers

    @property
    def finishing(self) -> bool:
        """True once ``finish()`` was requested but handles are still live."""
        return self._finishing

    @property
    def finished(self) -> bool:
        return self._finished

    # -- messages ----------------------------------------------------------

    def notice(self, message: str) -> None:
        self._notice(message)

    def error(self, message: str) -> None:
        self._error(message)

    # -- lifecycle -------------------------------------------------------

    def finish(self) -> None:
        """Tear the context down, deferring while owned resources are live.

        Raises:
            EngineError: If the context was already finished or finishing.
        """
        with self._lock:
            if self._finished or self._finishing:
                msg = "Engine context already finished"
                raise EngineError(msg, operation="finish", code="CONTEXT_FINISHED")
            self._finishing = True
            if self._live_handles or self._live_helpers:
                logger.debug(
                    "Context finish deferred | live_handles=%d | live_helpers=%d",
                    self._live_handles,
                    self._live_helpers,
                )
                return
            self._complete_finish()

    def _complete_finish(self) -> None:
        self._finishing = False
        self._finished = True
        self._engine._context_finished()

    def _maybe_complete_finish(self) -> None:
        if self._finishing and not self._live_handles and not self._live_helpers:
            self._complete_finish()

    def _check_accepting(self, operation: str) -> None:
        if self._finished or self._finishing:
            msg = f"Engine context is finished; cannot {operation}"
            raise EngineError(msg, operation=operation, code="CONTEXT_FINISHED")

    def _check_handle(self, handle: NativeGeometry, operation: str) -> BaseGeometry:
        if handle.context is not self:
            msg = "Native geometry handle belongs to a different context"
            raise EngineError(msg, operation=operation, code="FOREIGN_HANDLE")
        return handle.geom

    # -- handle ownership ------------------------------------------------

    def adopt(self, geom: BaseGeometry) -> NativeGeometry:
        """Take ownership of a shapely geometry as a new owned handle."""
        with self._lock:
            self._check_accepting("adopt")
            handle = NativeGeometry(self, geom)
            self._live_handles += 1
            self._engine._handle_created()
            return handle

    def destroy(self, handle: NativeGeometry) -> None:
        """Destroy an owned handle.

        Raises:
            EngineError: If the handle belongs to another context.
            HandleError: If the handle is borrowed or already destroyed.
        """
        with self._lock:
            if handle.context is not self:
                msg = "Native geometry handle belongs to a different context"
                raise EngineError(msg, operation="destroy", code="FOREIGN_HANDLE")
            if handle.borrowed:
                msg = "Borrowed handles are owned by their parent geometry"
                raise HandleError(msg, operation="destroy", code="HANDLE_BORROWED")
            if handle.destroyed:
                msg = "Native geometry handle destroyed twice"
                raise HandleError(msg, operation="destroy", code="HANDLE_DOUBLE_DESTROY")
            handle._release()
            self._live_handles -= 1
            self._engine._handle_destroyed()
            self._maybe_complete_finish()

    def clone(self, handle: NativeGeometry) -> NativeGeometry:
        with self._lock:
            return self.adopt(self._check_handle(handle, "clone"))

    def import_handle(self, handle: NativeGeometry) -> NativeGeometry:
        """Copy a handle owned by another context into this one."""
        source = handle.context
        if source is self:
            return self.clone(handle)
        with source.lock:
            geom = source._check_handle(handle, "import")
        return self.adopt(geom)

    # -- helper handles ----------------------------------------------------

    def create_wkt_reader(self) -> WKTReader:
        return self._register_helper(WKTReader(self))

    def create_wkb_reader(self) -> WKBReader:
        return self._register_helper(WKBReader(self))

    def create_wkt_writer(self) -> WKTWriter:
        return self._register_helper(WKTWriter(self))

    def create_wkb_writer(self) -> WKBWriter:
        return self._register_helper(WKBWriter(self))

    def _register_helper(self, helper: HelperHandle) -> HelperHandle:
        with self._lock:
            self._check_accepting(f"create {type(helper).__name__}")
            self._live_helpers += 1
            return helper

    def destroy_helper(self, helper: HelperHandle) -> None:
        """Destroy a reader or writer created in this context."""
        with self._lock:
            if helper.context is not self:
                msg = f"{type(helper).__name__} belongs to a different context"
                raise EngineError(msg, operation="destroy_helper", code="FOREIGN_HANDLE")
            if helper.destroyed:
                msg = f"{type(helper).__name__} destroyed twice"
                raise HandleError(msg, operation="destroy_helper", code="HANDLE_DOUBLE_DESTROY")
            helper._release()
            self._live_helpers -= 1
            self._maybe_complete_finish()

    # -- queries -----------------------------------------------------------

    def geom_type_id(self, handle: NativeGeometry) -> int:
        with self._lock:
            return int(shapely.get_type_id(self._check_handle(handle, "geom_type_id")))

    def kind(self, handle: NativeGeometry) -> GeometryKind:
        return GeometryKind.from_type_id(self.geom_type_id(handle))

    def get_srid(self, handle: NativeGeometry) -> int:
        with self._lock:
            return int(shapely.get_srid(self._check_handle(handle, "get_srid")))

    def set_srid(self, handle: NativeGeometry, srid: int) -> None:
        with self._lock:
            geom = self._check_handle(handle, "set_srid")
            handle._replace(shapely.set_srid(geom, srid))

    def has_z(self, handle: NativeGeometry) -> bool:
        with self._lock:
            return bool(shapely.has_z(self._check_handle(handle, "has_z")))

    def is_empty(self, handle: NativeGeometry) -> bool:
        with self._lock:
            return bool(shapely.is_empty(self._check_handle(handle, "is_empty")))

    def dimension(self, handle: NativeGeometry) -> int:
        """Topological dimension; -1 for an empty geometry."""
        with self._lock:
            geom = self._check_handle(handle, "dimension")
            if shapely.is_empty(geom):
                return -1
            return int(shapely.get_dimensions(geom))

    def is_valid(self, handle: NativeGeometry) -> bool:
        with self._lock:
            return bool(shapely.is_valid(self._check_handle(handle, "is_valid")))

    def coord_seq(self, handle: NativeGeometry) -> CoordinateSequence | None:
        """Coordinate sequence of a point, line string or ring; else ``None``."""
        with self._lock:
            geom = self._check_handle(handle, "coord_seq")
            if not GeometryKind.from_type_id(shapely.get_type_id(geom)).has_coordinate_sequence:
                return None
            return CoordinateSequence(shapely.get_coordinates(geom, include_z=True))

    def num_geometries(self, handle: NativeGeometry) -> int:
        with self._lock:
            return int(shapely.get_num_geometries(self._check_handle(handle, "num_geometries")))

    def get_geometry_n(self, handle: NativeGeometry, index: int) -> NativeGeometry | None:
        """Borrowed handle to member *index* of a collection."""
        with self._lock:
            member = shapely.get_geometry(self._check_handle(handle, "get_geometry_n"), index)
            return None if member is None else NativeGeometry(self, member, parent=handle)

    def get_exterior_ring(self, handle: NativeGeometry) -> NativeGeometry | None:
        with self._lock:
            ring = shapely.get_exterior_ring(self._check_handle(handle, "get_exterior_ring"))
            return None if ring is None else NativeGeometry(self, ring, parent=handle)

    def num_interior_rings(self, handle: NativeGeometry) -> int:
        with self._lock:
            return int(shapely.get_num_interior_rings(self._check_handle(handle, "num_interior_rings")))

    def get_interior_ring_n(self, handle: NativeGeometry, index: int) -> NativeGeometry | None:
        with self._lock:
            ring = shapely.get_interior_ring(self._check_handle(handle, "get_interior_ring_n"), index)
            return None if ring is None else NativeGeometry(self, ring, parent=handle)

    def spatially_equal(self, first: NativeGeometry, second: NativeGeometry) -> bool:
        with self._lock:
            return bool(
                shapely.equals(
                    self._check_handle(first, "equals"),
                    self._check_handle(second, "equals"),
                )
            )

    # -- constructors ------------------------------------------------------

    def create_point(self, coords: Sequence[float]) -> NativeGeometry | None:
        with self._lock:
            self._check_accepting("create_point")
            try:
                geom = shapely.Point(*coords) if coords else shapely.Point()
            except (ShapelyError, TypeError, ValueError) as exc:
                self.error(f"Cannot create point: {exc}")
                return None
            return self.adopt(geom)

    def create_line_string(
        self,
        coords: Sequence[Sequence[float]],
        *,
        ring: bool = False,
    ) -> NativeGeometry | None:
        with self._lock:
            self._check_accepting("create_line_string")
            constructor = shapely.LinearRing if ring else shapely.LineString
            try:
                geom = constructor(coords) if coords else constructor()
            except (ShapelyError, TypeError, ValueError) as exc:
                self.error(f"Cannot create {constructor.__name__}: {exc}")
                return None
            return self.adopt(geom)

    def create_polygon(
        self,
        shell: NativeGeometry,
        holes: Sequence[NativeGeometry] = (),
    ) -> NativeGeometry | None:
        """Build a polygon, taking ownership of *shell* and *holes* on success.

        On failure the inputs stay owned by the caller.
        """
        with self._lock:
            self._check_accepting("create_polygon")
            shell_geom = self._check_handle(shell, "create_polygon")
            hole_geoms = [self._check_handle(h, "create_polygon") for h in holes]
            try:
                geom = shapely.Polygon(shell_geom, hole_geoms)
            except (ShapelyError, TypeError, ValueError) as exc:
                self.error(f"Cannot create polygon: {exc}")
                return None
            self._consume([shell, *holes])
            return self.adopt(geom)

    def create_collection(
        self,
        kind: GeometryKind,
        handles: Sequence[NativeGeometry],
    ) -> NativeGeometry | None:
        """Build a collection of *kind*, taking ownership of *handles* on success.

        On failure the inputs stay owned by the caller.
        """
        constructor = _COLLECTION_CONSTRUCTORS.get(kind)
        if constructor is None:
            msg = f"{kind.name} is not a collection kind"
            raise EngineError(msg, operation="create_collection", code="NOT_A_COLLECTION")
        with self._lock:
            self._check_accepting("create_collection")
            members = [self._check_handle(h, "create_collection") for h in handles]
            allowed = _MEMBER_KINDS.get(kind)
            if allowed is not None:
                for member in members:
                    member_kind = GeometryKind.from_type_id(shapely.get_type_id(member))
                    if member_kind not in allowed:
                        self.error(f"Cannot create {kind.name}: member is {member_kind.name}")
                        return None
            try:
                geom = constructor(members) if members else constructor()
            except (ShapelyError, TypeError, ValueError) as exc:
                self.error(f"Cannot create {kind.name}: {exc}")
                return None
            self._consume(handles)
            return self.adopt(geom)

    def _consume(self, handles: Sequence[NativeGeometry]) -> None:
        for handle in handles:
            self.destroy(handle)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EngineStats:
    """Snapshot of engine resource counters."""

    contexts_created: int = 0
    contexts_finished: int = 0
    handles_created: int = 0
    handles_destroyed: int = 0

    @property
    def open_contexts(self) -> int:
        return self.contexts_created - self.contexts_finished

    @property
    def live_handles(self) -> int:
        return self.handles_created - self.handles_destroyed


class GeometryEngine:
    """Entry point to the engine library.

    Creates contexts and counts every context and geometry handle it has
    handed out, so construct/destroy pairing can be checked.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._contexts_created = 0
        self._contexts_finished = 0
        self._handles_created = 0
        self._handles_destroyed = 0

    def create_context(
        self,
        notice_handler: MessageHandler | None = None,
        error_handler: MessageHandler | None = None,
    ) -> EngineContext:
        """Allocate a new context with the given message handlers."""
        context = EngineContext(self, notice_handler, error_handler)
        with self._lock:
            self._contexts_created += 1
        return context

    def stats(self) -> EngineStats:
        with self._lock:
            return EngineStats(
                contexts_created=self._contexts_created,
                contexts_finished=self._contexts_finished,
                handles_created=self._handles_created,
                handles_destroyed=self._handles_destroyed,
            )

    def _context_finished(self) -> None:
        with self._lock:
            self._contexts_finished += 1

    def _handle_created(self) -> None:
        with self._lock:
            self._handles_created += 1

    def _handle_destroyed(self) -> None:
        with self._lock:
            self._handles_destroyed += 1


_DEFAULT_ENGINE = GeometryEngine()


def default_engine() -> GeometryEngine:
    """Return the process-wide engine instance."""
    return _DEFAULT_ENGINE

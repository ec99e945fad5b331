"""Geometry wrapper objects.

A ``Geometry`` owns zero or one native geometry handle and holds a strong
reference to the ``Factory`` that created it, so the factory (and its
engine context) outlives every geometry still pointing into it.  The
handle is destroyed when the wrapper is collected, through a
``weakref.finalize`` hook that runs at most once and does nothing if the
handle was detached first.

Instances are produced by ``geobridge.bridge.protocol.wrap`` (directly or
through the factory's parse and build methods); the concrete class is
inferred from the native geometry kind via the factory's class registry.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Iterator
from typing import TYPE_CHECKING, ClassVar, Union

from geobridge.bridge.equality import classes_and_factories_equal, structurally_equal
from geobridge.core.constants import FactoryFlags, GeometryKind
from geobridge.core.exceptions import GeoBridgeError

if TYPE_CHECKING:
    from geobridge.bridge.factory import Factory
    from geobridge.engine.context import EngineContext, NativeGeometry

logger = logging.getLogger(__name__)

MemberClasses = tuple[Union[type["Geometry"], "MemberClasses"], ...]


class _HandleSlot:
    """Holds a wrapper's owned handle and destroys it at most once."""

    __slots__ = ("handle",)

    def __init__(self, handle: NativeGeometry | None) -> None:
        self.handle = handle

    def take(self) -> NativeGeometry | None:
        handle, self.handle = self.handle, None
        return handle

    def release(self) -> None:
        handle = self.take()
        if handle is None or handle.destroyed:
            return
        try:
            handle.context.destroy(handle)
        except GeoBridgeError:
            logger.exception("Geometry teardown failed | handle=%r", handle)


class Geometry:
    """Generic geometry wrapper; base class of every concrete kind."""

    kind: ClassVar[GeometryKind] = GeometryKind.GENERIC

    def __init__(
        self,
        factory: Factory | None,
        handle: NativeGeometry | None,
        member_classes: MemberClasses | None = None,
    ) -> None:
        self._factory = factory
        self._slot = _HandleSlot(handle)
        self._member_classes = member_classes
        self._finalizer = weakref.finalize(self, self._slot.release)

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    @property
    def factory(self) -> Factory | None:
        """Owning factory; ``None`` once the geometry has been detached."""
        return self._factory

    @property
    def handle(self) -> NativeGeometry | None:
        """Borrowed native handle, or ``None`` for an empty wrapper.

        The caller must not destroy it.
        """
        return self._slot.handle

    @property
    def context(self) -> EngineContext | None:
        handle = self._slot.handle
        return None if handle is None else handle.context

    @property
    def member_classes(self) -> MemberClasses | None:
        """Per-member classes of a heterogeneous collection, if retained."""
        return self._member_classes

    @property
    def is_detached(self) -> bool:
        """True once ownership of the handle has moved out of this wrapper."""
        return self._factory is None and self._slot.handle is None

    def _detach(self) -> tuple[NativeGeometry | None, MemberClasses | None]:
        """Move the handle and member classes out, leaving an empty wrapper."""
        handle = self._slot.take()
        member_classes = self._member_classes
        self._factory = None
        self._member_classes = None
        return handle, member_classes

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def geometry_type(self) -> GeometryKind:
        return type(self).kind

    @property
    def srid(self) -> int | None:
        handle = self._slot.handle
        if handle is not None:
            return handle.context.get_srid(handle)
        return None if self._factory is None else self._factory.srid

    @property
    def is_empty(self) -> bool | None:
        handle = self._slot.handle
        return None if handle is None else handle.context.is_empty(handle)

    @property
    def dimension(self) -> int | None:
        handle = self._slot.handle
        return None if handle is None else handle.context.dimension(handle)

    def coordinates(self) -> list[tuple[float, ...]] | None:
        """Coordinates of a point, line string or ring.

        Returns ``None`` for detached wrappers and for kinds without a
        coordinate sequence.
        """
        handle = self._slot.handle
        if handle is None:
            return None
        context = handle.context
        seq = context.coord_seq(handle)
        if seq is None:
            return None
        with_z = context.has_z(handle)
        coords: list[tuple[float, ...]] = []
        for i in range(seq.size):
            x, y = seq.get_x(i), seq.get_y(i)
            if x is None or y is None:
                return None
            coords.append((x, y, seq.get_z(i)) if with_z else (x, y))  # type: ignore[arg-type]
        return coords

    def _open_factory(self) -> Factory | None:
        """Owning factory while it can still create helpers and handles."""
        factory = self._factory
        return None if factory is None or factory.closed else factory

    def as_text(self) -> str | None:
        factory = self._open_factory()
        return None if factory is None else factory.generate_wkt(self)

    def as_binary(self) -> bytes | None:
        factory = self._open_factory()
        return None if factory is None else factory.generate_wkb(self)

    def clone(self) -> Geometry | None:
        """Copy into a new wrapper; ``None`` if detached or the factory is closed."""
        from geobridge.bridge.protocol import wrap_clone

        if self._factory is None or self._slot.handle is None:
            return None
        hint = self._member_classes if self._member_classes is not None else type(self)
        return wrap_clone(self._factory, self._slot.handle, hint)

    # ------------------------------------------------------------------
    # Equality
    # ------------------------------------------------------------------

    def eql(self, other: object) -> bool | None:
        """Structural (representational) equality.

        Same class, equal factories and identical coordinates, compared
        exactly.  Returns ``None`` when equality cannot be determined,
        e.g. because either side is empty, or because *other* would have
        to be copied into a factory that is already closed.
        """
        from geobridge.bridge.protocol import unwrap

        if not isinstance(other, Geometry) or not classes_and_factories_equal(self, other):
            return False
        first = self._slot.handle
        if first is None or other.handle is None or self._factory is None:
            return None
        # An equal factory may still own a different context.
        with unwrap(other, self._factory) as second:
            if second is None:
                return None
            context = first.context
            check_z = False
            if self._factory.flags & FactoryFlags.HAS_Z:
                first_z, second_z = context.has_z(first), context.has_z(second)
                if first_z != second_z:
                    return False
                check_z = first_z
            return structurally_equal(context, first, second, check_z)

    def equals(self, other: object) -> bool:
        """Spatial (topological) equality, computed by the engine.

        ``False`` when *other* cannot be brought into this geometry's
        factory, which includes every foreign object once it is closed.
        """
        from geobridge.bridge.protocol import unwrap

        handle = self._slot.handle
        if handle is None or self._factory is None:
            return False
        with unwrap(other, self._factory) as other_handle:
            if other_handle is None:
                return False
            return handle.context.spatially_equal(handle, other_handle)

    def __repr__(self) -> str:
        if self._slot.handle is None:
            return f"<{type(self).__name__} (empty)>"
        return f"<{type(self).__name__} srid={self.srid} at 0x{id(self):x}>"

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _wrap_member(
        self,
        borrowed: NativeGeometry | None,
        hint: type[Geometry] | MemberClasses | None,
    ) -> Geometry | None:
        from geobridge.bridge.protocol import wrap_clone

        if borrowed is None or self._factory is None:
            return None
        return wrap_clone(self._factory, borrowed, hint)


class Point(Geometry):
    kind = GeometryKind.POINT

    def _ordinate(self, index: int) -> float | None:
        handle = self._slot.handle
        if handle is None:
            return None
        seq = handle.context.coord_seq(handle)
        if seq is None or seq.size == 0:
            return None
        if index == 0:
            return seq.get_x(0)
        if index == 1:
            return seq.get_y(0)
        return seq.get_z(0)

    @property
    def x(self) -> float | None:
        return self._ordinate(0)

    @property
    def y(self) -> float | None:
        return self._ordinate(1)

    @property
    def z(self) -> float | None:
        """Z ordinate; ``None`` when the point is two-dimensional."""
        handle = self._slot.handle
        if handle is None or not handle.context.has_z(handle):
            return None
        return self._ordinate(2)


class LineString(Geometry):
    kind = GeometryKind.LINE_STRING

    @property
    def num_points(self) -> int:
        coords = self.coordinates()
        return 0 if coords is None else len(coords)

    def point_n(self, index: int) -> Point | None:
        factory = self._open_factory()
        coords = self.coordinates()
        if factory is None or coords is None or not 0 <= index < len(coords):
            return None
        return factory.point(*coords[index])

    def points(self) -> list[Point]:
        return [p for p in (self.point_n(i) for i in range(self.num_points)) if p is not None]


class LinearRing(LineString):
    kind = GeometryKind.LINEAR_RING


class Polygon(Geometry):
    kind = GeometryKind.POLYGON

    def exterior_ring(self) -> LinearRing | None:
        handle = self._slot.handle
        if handle is None or self._factory is None:
            return None
        ring = handle.context.get_exterior_ring(handle)
        return self._wrap_member(ring, self._factory.registry.linear_ring)  # type: ignore[return-value]

    @property
    def num_interior_rings(self) -> int:
        handle = self._slot.handle
        return 0 if handle is None else handle.context.num_interior_rings(handle)

    def interior_ring_n(self, index: int) -> LinearRing | None:
        handle = self._slot.handle
        if handle is None or self._factory is None or not 0 <= index < self.num_interior_rings:
            return None
        ring = handle.context.get_interior_ring_n(handle, index)
        return self._wrap_member(ring, self._factory.registry.linear_ring)  # type: ignore[return-value]

    def interior_rings(self) -> list[LinearRing]:
        rings = (self.interior_ring_n(i) for i in range(self.num_interior_rings))
        return [r for r in rings if r is not None]


class GeometryCollection(Geometry):
    kind = GeometryKind.GEOMETRY_COLLECTION

    @property
    def num_geometries(self) -> int:
        handle = self._slot.handle
        return 0 if handle is None else handle.context.num_geometries(handle)

    def geometry_n(self, index: int) -> Geometry | None:
        """Copy of member *index*, typed with its retained class when known."""
        handle = self._slot.handle
        if handle is None or not 0 <= index < self.num_geometries:
            return None
        hint = None
        if self._member_classes is not None and index < len(self._member_classes):
            hint = self._member_classes[index]
        return self._wrap_member(handle.context.get_geometry_n(handle, index), hint)

    def geometries(self) -> list[Geometry]:
        members = (self.geometry_n(i) for i in range(self.num_geometries))
        return [m for m in members if m is not None]

    def __iter__(self) -> Iterator[Geometry]:
        return iter(self.geometries())


class MultiPoint(GeometryCollection):
    kind = GeometryKind.MULTI_POINT


class MultiLineString(GeometryCollection):
    kind = GeometryKind.MULTI_LINE_STRING


class MultiPolygon(GeometryCollection):
    kind = GeometryKind.MULTI_POLYGON

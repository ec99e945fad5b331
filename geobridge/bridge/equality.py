"""Deep coordinate equality.

Structural equality compares the stored coordinates exactly, without an
epsilon: it answers "are these the same representation", not "do these
cover the same space" (for that, see ``Geometry.equals``).

The comparison functions are tri-state: ``True``, ``False`` or ``None``
for indeterminate.  ``None`` means the comparison could not be completed
(a missing handle, a kind without a coordinate sequence, a failed read)
and must never be read as "not equal".
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from geobridge.core.constants import GeometryKind

if TYPE_CHECKING:
    from geobridge.engine.context import EngineContext, NativeGeometry


def coordinates_equal(
    context: EngineContext | None,
    first: NativeGeometry | None,
    second: NativeGeometry | None,
    check_z: bool,
) -> bool | None:
    """Compare the coordinate sequences of two handles component-wise.

    Lengths are compared first, then X, Y and (if *check_z*) Z at each
    index; the first mismatch short-circuits with ``False``.

    Returns:
        ``True``/``False``, or ``None`` if either handle is missing, lacks
        a coordinate sequence, or a coordinate read fails.
    """
    if context is None or first is None or second is None:
        return None
    first_seq = context.coord_seq(first)
    second_seq = context.coord_seq(second)
    if first_seq is None or second_seq is None:
        return None
    if first_seq.size != second_seq.size:
        return False

    for i in range(first_seq.size):
        ordinates = [
            (first_seq.get_x(i), second_seq.get_x(i)),
            (first_seq.get_y(i), second_seq.get_y(i)),
        ]
        if check_z:
            ordinates.append((first_seq.get_z(i), second_seq.get_z(i)))
        for value1, value2 in ordinates:
            if value1 is None or value2 is None:
                return None
            if value1 != value2:
                return False
    return True


def classes_and_factories_equal(first: object, second: object) -> bool:
    """True iff both are geometries of one concrete class with equal factories.

    Used as the gate before structural equality is attempted.  Objects
    without an owning factory, including detached wrappers, never pass.
    """
    from geobridge.models.geometry import Geometry

    if not isinstance(first, Geometry) or type(first) is not type(second):
        return False
    first_factory, second_factory = first.factory, second.factory  # type: ignore[attr-defined]
    if first_factory is None or second_factory is None:
        return False
    return bool(first_factory == second_factory)


def structurally_equal(
    context: EngineContext,
    first: NativeGeometry,
    second: NativeGeometry,
    check_z: bool,
) -> bool | None:
    """Recursive structural equality over any geometry kind.

    Points, line strings and rings compare their coordinate sequences;
    polygons compare the exterior then each interior ring in order;
    collections compare member-wise.
    """
    kind = context.kind(first)
    if kind != context.kind(second):
        return False

    if kind.has_coordinate_sequence:
        return coordinates_equal(context, first, second, check_z)

    if kind == GeometryKind.POLYGON:
        holes = context.num_interior_rings(first)
        if holes != context.num_interior_rings(second):
            return False
        pairs = [(context.get_exterior_ring(first), context.get_exterior_ring(second))]
        pairs.extend(
            (context.get_interior_ring_n(first, i), context.get_interior_ring_n(second, i))
            for i in range(holes)
        )
    elif kind.is_collection:
        count = context.num_geometries(first)
        if count != context.num_geometries(second):
            return False
        pairs = [
            (context.get_geometry_n(first, i), context.get_geometry_n(second, i))
            for i in range(count)
        ]
    else:
        return None

    for member1, member2 in pairs:
        if member1 is None or member2 is None:
            # An empty polygon has no exterior ring on either side.
            if member1 is None and member2 is None:
                continue
            return None
        result = structurally_equal(context, member1, member2, check_z)
        if result is not True:
            return result
    return True

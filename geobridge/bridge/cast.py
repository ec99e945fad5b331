"""Coercion of convertible objects into a factory's geometries.

``cast`` accepts ``Geometry`` wrappers (from the same factory or another
one) and shapely geometries, and produces a wrapper in the target
factory, optionally constrained to a kind.  Wrappers from another factory
live in another engine context, so their handle is copied into the
target context rather than shared.

Kind compatibility:
- identical kinds, or no kind / ``GENERIC`` requested;
- a linear ring satisfies ``LINE_STRING``;
- any multi kind satisfies ``GEOMETRY_COLLECTION``.

A compatible but different kind is converted natively (ring to line
string, multi to generic collection) unless ``keep_subtype`` is set.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shapely.geometry.base import BaseGeometry

from geobridge.bridge.protocol import ClassHint, wrap
from geobridge.core.constants import GeometryKind
from geobridge.models.geometry import Geometry

if TYPE_CHECKING:
    from geobridge.bridge.factory import Factory
    from geobridge.engine.context import EngineContext, NativeGeometry

logger = logging.getLogger(__name__)


def cast(
    obj: object,
    factory: Factory,
    kind: GeometryKind | None = None,
    *,
    force_new: bool = False,
    keep_subtype: bool = False,
) -> Geometry | None:
    """Coerce *obj* into a geometry of *factory*, or ``None`` if impossible.

    A closed factory cannot take new handles, so any cast that would
    allocate one returns ``None``.

    Args:
        obj: A ``Geometry`` or a shapely geometry.
        factory: Target factory.
        kind: Required kind, or ``None`` for any.
        force_new: Always return a new wrapper around a new handle, even
            when *obj* already satisfies the request.
        keep_subtype: Keep the source's concrete class (and native kind)
            when it is a compatible subtype of *kind*.
    """
    target = GeometryKind.GENERIC if kind is None else GeometryKind(kind)
    if isinstance(obj, Geometry):
        return _cast_geometry(obj, factory, target, force_new, keep_subtype)
    if isinstance(obj, BaseGeometry):
        return _cast_shapely(obj, factory, target, keep_subtype)
    return None


def is_compatible(source: GeometryKind, target: GeometryKind) -> bool:
    """Whether a *source* geometry may stand in for a *target* one."""
    if target in (GeometryKind.GENERIC, source):
        return True
    if target == GeometryKind.LINE_STRING and source == GeometryKind.LINEAR_RING:
        return True
    return target == GeometryKind.GEOMETRY_COLLECTION and source.is_collection


def _cast_geometry(
    obj: Geometry,
    factory: Factory,
    target: GeometryKind,
    force_new: bool,
    keep_subtype: bool,
) -> Geometry | None:
    handle = obj.handle
    if handle is None or obj.factory is None:
        return None
    source = handle.context.kind(handle)
    if not is_compatible(source, target):
        logger.debug("Cast rejected | source=%s | target=%s", source.name, target.name)
        return None

    convert = target not in (GeometryKind.GENERIC, source) and not keep_subtype
    same_factory = obj.factory is factory
    if same_factory and not force_new and not convert:
        return obj

    if factory.closed:
        return None
    copy = factory.context.clone(handle) if same_factory else factory.context.import_handle(handle)

    if convert:
        return _wrap_converted(factory, copy, target)
    hint: ClassHint = obj.member_classes if obj.member_classes is not None else type(obj)
    return _wrap_or_destroy(factory, copy, hint)


def _cast_shapely(
    geom: BaseGeometry,
    factory: Factory,
    target: GeometryKind,
    keep_subtype: bool,
) -> Geometry | None:
    if factory.closed:
        return None
    context = factory.context
    handle = context.adopt(geom)
    source = context.kind(handle)
    if not is_compatible(source, target):
        context.destroy(handle)
        return None
    if target not in (GeometryKind.GENERIC, source) and not keep_subtype:
        return _wrap_converted(factory, handle, target)
    return _wrap_or_destroy(factory, handle, None)


def _wrap_converted(factory: Factory, handle: NativeGeometry, target: GeometryKind) -> Geometry | None:
    converted = _convert(factory.context, handle, target)
    if converted is None:
        return None
    return _wrap_or_destroy(factory, converted, factory.registry.class_for(target))


def _wrap_or_destroy(factory: Factory, handle: NativeGeometry, hint: ClassHint) -> Geometry | None:
    result = wrap(factory, handle, hint)
    if result is None:
        factory.context.destroy(handle)
    return result


def _convert(
    context: EngineContext,
    handle: NativeGeometry,
    target: GeometryKind,
) -> NativeGeometry | None:
    """Rebuild *handle* natively as *target*, consuming *handle*."""
    if target == GeometryKind.LINE_STRING:
        seq = context.coord_seq(handle)
        with_z = context.has_z(handle)
        coords = []
        if seq is not None:
            for i in range(seq.size):
                point = (seq.get_x(i), seq.get_y(i), seq.get_z(i)) if with_z else (seq.get_x(i), seq.get_y(i))
                coords.append(point)
        converted = context.create_line_string(coords)
        context.destroy(handle)
        return converted

    members = []
    for i in range(context.num_geometries(handle)):
        member = context.get_geometry_n(handle, i)
        if member is not None:
            members.append(context.clone(member))
    converted = context.create_collection(GeometryKind.GEOMETRY_COLLECTION, members)
    if converted is None:
        for member in members:
            context.destroy(member)
    context.destroy(handle)
    return converted

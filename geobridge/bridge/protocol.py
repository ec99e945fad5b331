"""Wrap / Unwrap / Detach protocol.

These are the only ways a native geometry handle moves into or out of a
``Geometry`` wrapper:

- **wrap** gives a handle an owner: infers its class from the engine
  kind (through the factory's registry) and stamps the factory's SRID.
- **unwrap** lends a handle to engine calls without transferring
  ownership.
- **detach** moves ownership out of a wrapper, leaving it empty, so the
  handle can become part of another structure (a collection member, a
  polygon ring) without being destroyed twice.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, NamedTuple, Union

from geobridge.core.constants import GeometryKind
from geobridge.core.exceptions import EngineError, HandleError
from geobridge.models.geometry import Geometry, MemberClasses

if TYPE_CHECKING:
    from geobridge.bridge.factory import Factory
    from geobridge.engine.context import NativeGeometry

logger = logging.getLogger(__name__)

ClassHint = Union[type[Geometry], Sequence[object], None]


class DetachedGeometry(NamedTuple):
    """An owned handle moved out of a wrapper, with the classes it carried.

    ``classes`` is the wrapper's member-classes tuple when it had one,
    otherwise the wrapper's own class.
    """

    handle: NativeGeometry | None
    classes: type[Geometry] | MemberClasses | None


def wrap(
    factory: Factory,
    handle: NativeGeometry | None,
    class_hint: ClassHint = None,
) -> Geometry | None:
    """Give *handle* a Python owner.

    Args:
        factory: Factory whose context owns *handle*.
        handle: Owned native handle, or ``None`` for a typed placeholder.
        class_hint: A concrete ``Geometry`` subclass to use as-is; or a
            sequence of per-member classes (kept only when the handle is a
            collection); or ``None`` to infer the class from the engine.

    Returns:
        The new wrapper, or ``None`` if there is nothing to wrap (no handle
        and no concrete class) or wrapper storage could not be allocated.
        On ``None`` the caller still owns *handle*.

    Raises:
        HandleError: If *handle* is a borrowed handle.
        EngineError: If *handle* belongs to another context.
    """
    concrete = isinstance(class_hint, type)
    if concrete and not issubclass(class_hint, Geometry):  # type: ignore[arg-type]
        msg = f"class_hint must be a Geometry subclass, got {class_hint!r}"
        raise TypeError(msg)
    if handle is None and not concrete:
        return None

    if handle is not None:
        if handle.borrowed:
            msg = "Cannot take ownership of a borrowed handle; clone it first"
            raise HandleError(msg, operation="wrap", code="HANDLE_BORROWED")
        if handle.context is not factory.context:
            msg = "Handle does not belong to the factory's context"
            raise EngineError(msg, operation="wrap", code="FOREIGN_HANDLE")

    member_classes: MemberClasses | None = None
    if concrete:
        cls: type[Geometry] = class_hint  # type: ignore[assignment]
    else:
        kind = factory.context.kind(handle)  # type: ignore[arg-type]
        cls = factory.registry.class_for(kind)
        if class_hint is not None and kind.is_collection:
            member_classes = tuple(class_hint)  # type: ignore[arg-type]

    if handle is not None:
        _stamp_srid(factory, handle)

    try:
        return cls(factory, handle, member_classes)
    except MemoryError:
        logger.error("Geometry wrapper allocation failed | class=%s", cls.__name__)
        return None


def wrap_clone(
    factory: Factory,
    handle: NativeGeometry | None,
    class_hint: ClassHint = None,
) -> Geometry | None:
    """Wrap a copy of *handle* (which may be borrowed) in *factory*.

    Returns ``None`` when there is nothing to copy or *factory* is closed.
    """
    if handle is None or factory.closed:
        return None
    context = factory.context
    copy = context.clone(handle)
    result = wrap(factory, copy, class_hint)
    if result is None:
        context.destroy(copy)
    return result


@contextmanager
def unwrap(
    obj: object,
    factory: Factory,
    kind: GeometryKind | None = None,
) -> Iterator[NativeGeometry | None]:
    """Lend the native handle of *obj* in *factory*'s context.

    A wrapper already belonging to *factory* lends its own handle when no
    kind is required.  Anything else is coerced with ``cast``; the
    coerced temporary is kept alive until the ``with`` block exits.
    Yields ``None`` if coercion produced nothing.  The handle is borrowed:
    never destroy it.
    """
    if kind is None and isinstance(obj, Geometry) and obj.factory is factory:
        yield obj.handle
        return

    from geobridge.bridge.cast import cast

    coerced = cast(obj, factory, kind)
    yield None if coerced is None else coerced.handle


def detach(
    obj: object,
    factory: Factory,
    kind: GeometryKind | None = None,
) -> DetachedGeometry:
    """Take ownership of a fresh native copy of *obj*.

    Coerces with ``force_new`` and ``keep_subtype``, then strips the
    resulting wrapper: its handle and member classes move to the caller
    and the wrapper is left detached.  The caller must hand the handle to
    a constructor that consumes it or destroy it exactly once.
    """
    from geobridge.bridge.cast import cast

    coerced = cast(obj, factory, kind, force_new=True, keep_subtype=True)
    if coerced is None:
        return DetachedGeometry(None, None)
    fallback = type(coerced)
    handle, member_classes = coerced._detach()
    return DetachedGeometry(handle, member_classes if member_classes is not None else fallback)


def is_native_geometry(obj: object) -> bool:
    """True iff *obj* is a wrapper whose handle may be read."""
    return isinstance(obj, Geometry)


def handle_or_none(obj: object) -> NativeGeometry | None:
    """Borrowed handle of *obj*, or ``None`` for anything else."""
    return obj.handle if isinstance(obj, Geometry) else None


def _stamp_srid(factory: Factory, handle: NativeGeometry) -> None:
    context = factory.context
    current = context.get_srid(handle)
    if current not in (0, factory.srid):
        logger.debug(
            "SRID overridden by factory | source_srid=%d | factory_srid=%d",
            current,
            factory.srid,
        )
    context.set_srid(handle, factory.srid)

"""Tests for Wrap / Unwrap / Detach.

Covers:
- Wrap infers the class, stamps the SRID and keeps member classes
- Wrap of an empty handle with a concrete class skips inference
- Ownership misuse (borrowed or foreign handles) raises
- Unwrap lends without transferring and keeps coerced temporaries alive
- Detach empties the wrapper and hands over exactly one destroy
"""

from __future__ import annotations

import gc
from unittest.mock import patch

import pytest
import shapely

from geobridge.bridge import protocol
from geobridge.bridge.factory import Factory
from geobridge.bridge.protocol import (
    DetachedGeometry,
    detach,
    handle_or_none,
    is_native_geometry,
    unwrap,
    wrap,
    wrap_clone,
)
from geobridge.core.constants import GeometryKind
from geobridge.core.exceptions import EngineError, HandleError
from geobridge.engine.context import GeometryEngine
from geobridge.models.geometry import Geometry, GeometryCollection, LinearRing, LineString, Point


class TestWrap:
    def test_infers_class_from_kind(self, factory: Factory) -> None:
        handle = factory.context.adopt(shapely.LineString([(0, 0), (1, 1)]))
        result = wrap(factory, handle)
        assert type(result) is LineString
        assert result.handle is handle  # type: ignore[union-attr]

    def test_stamps_factory_srid(self, engine: GeometryEngine) -> None:
        factory = Factory.create(srid=2154, engine=engine)
        assert factory is not None
        handle = factory.context.adopt(shapely.Point(0, 0))
        result = wrap(factory, handle)
        assert result is not None
        assert factory.context.get_srid(handle) == 2154

    def test_empty_handle_with_concrete_class(self, factory: Factory) -> None:
        result = wrap(factory, None, Point)
        assert type(result) is Point
        assert result.handle is None  # type: ignore[union-attr]
        assert result.x is None  # type: ignore[union-attr]
        assert result.srid == factory.srid  # type: ignore[union-attr]

    def test_empty_handle_without_class_is_none(self, factory: Factory) -> None:
        assert wrap(factory, None) is None
        assert wrap(factory, None, [Point]) is None

    def test_non_geometry_class_rejected(self, factory: Factory) -> None:
        with pytest.raises(TypeError):
            wrap(factory, None, dict)

    def test_member_classes_kept_for_collections(self, factory: Factory) -> None:
        handle = factory.context.adopt(shapely.GeometryCollection([shapely.Point(0, 0)]))
        result = wrap(factory, handle, [Point])
        assert isinstance(result, GeometryCollection)
        assert result.member_classes == (Point,)

    def test_member_classes_ignored_for_simple_kinds(self, factory: Factory) -> None:
        handle = factory.context.adopt(shapely.Point(0, 0))
        result = wrap(factory, handle, [Point])
        assert type(result) is Point
        assert result.member_classes is None  # type: ignore[union-attr]

    def test_borrowed_handle_rejected(self, factory: Factory) -> None:
        parent = factory.context.adopt(shapely.MultiPoint([(0, 0)]))
        member = factory.context.get_geometry_n(parent, 0)
        with pytest.raises(HandleError):
            wrap(factory, member)
        factory.context.destroy(parent)

    def test_foreign_handle_rejected(self, factory: Factory, other_factory: Factory) -> None:
        handle = other_factory.context.adopt(shapely.Point(0, 0))
        with pytest.raises(EngineError) as exc_info:
            wrap(factory, handle)
        assert exc_info.value.code == "FOREIGN_HANDLE"
        other_factory.context.destroy(handle)

    def test_allocation_failure_leaves_handle_with_caller(self, factory: Factory) -> None:
        handle = factory.context.adopt(shapely.Point(0, 0))
        with patch.object(Point, "__init__", side_effect=MemoryError):
            assert wrap(factory, handle) is None
        assert not handle.destroyed
        factory.context.destroy(handle)

    def test_wrapper_destroys_handle_on_collection(self, factory: Factory) -> None:
        handle = factory.context.adopt(shapely.Point(0, 0))
        result = wrap(factory, handle)
        del result
        gc.collect()
        assert handle.destroyed
        assert factory.context.live_handles == 0


class TestWrapClone:
    def test_clones_borrowed_member(self, factory: Factory) -> None:
        parent = factory.context.adopt(shapely.MultiPoint([(0, 0), (3, 4)]))
        member = factory.context.get_geometry_n(parent, 1)
        result = wrap_clone(factory, member)
        factory.context.destroy(parent)
        assert isinstance(result, Point)
        assert (result.x, result.y) == (3.0, 4.0)

    def test_none_handle(self, factory: Factory) -> None:
        assert wrap_clone(factory, None, Point) is None


class TestUnwrap:
    def test_same_factory_lends_own_handle(self, factory: Factory) -> None:
        point = factory.point(1, 2)
        assert point is not None
        with unwrap(point, factory) as handle:
            assert handle is point.handle
        assert not point.handle.destroyed  # type: ignore[union-attr]

    def test_coerced_temporary_alive_inside_block(self, factory: Factory) -> None:
        with unwrap(shapely.Point(1, 2), factory) as handle:
            assert handle is not None
            assert not handle.destroyed
            assert factory.context.kind(handle) == GeometryKind.POINT
        gc.collect()
        assert handle.destroyed

    def test_kind_mismatch_yields_none(self, factory: Factory) -> None:
        point = factory.point(1, 2)
        with unwrap(point, factory, GeometryKind.POLYGON) as handle:
            assert handle is None

    def test_unconvertible_yields_none(self, factory: Factory) -> None:
        with unwrap(object(), factory) as handle:
            assert handle is None

    def test_other_factory_is_copied(self, factory: Factory, other_factory: Factory) -> None:
        point = other_factory.point(1, 2)
        with unwrap(point, factory) as handle:
            assert handle is not None
            assert handle is not point.handle  # type: ignore[union-attr]
            assert handle.context is factory.context


class TestDetach:
    def test_detach_moves_ownership(self, factory: Factory) -> None:
        point = factory.point(1, 2)
        assert point is not None
        with patch("geobridge.bridge.cast.cast", return_value=point):
            handle, classes = detach(point, factory)
        assert handle is not None
        assert classes is Point
        assert point.is_detached
        assert point.handle is None
        assert point.factory is None
        assert point.x is None
        assert point.coordinates() is None
        factory.context.destroy(handle)
        with pytest.raises(HandleError):
            factory.context.destroy(handle)

    def test_detached_wrapper_collection_does_not_destroy(self, factory: Factory) -> None:
        point = factory.point(1, 2)
        with patch("geobridge.bridge.cast.cast", return_value=point):
            detached = detach(point, factory)
        del point
        gc.collect()
        assert detached.handle is not None
        assert not detached.handle.destroyed
        factory.context.destroy(detached.handle)

    def test_detach_copies_the_source(self, factory: Factory) -> None:
        point = factory.point(1, 2)
        assert point is not None
        handle, _classes = detach(point, factory)
        assert handle is not point.handle
        assert not point.is_detached
        factory.context.destroy(handle)  # type: ignore[arg-type]

    def test_detach_keeps_subtype(self, factory: Factory) -> None:
        ring = factory.parse_wkt("LINEARRING (0 0, 1 0, 1 1, 0 0)")
        handle, classes = detach(ring, factory, GeometryKind.LINE_STRING)
        assert classes is LinearRing
        assert factory.context.kind(handle) == GeometryKind.LINEAR_RING  # type: ignore[arg-type]
        factory.context.destroy(handle)  # type: ignore[arg-type]

    def test_detach_returns_member_classes(self, factory: Factory) -> None:
        collection = factory.collection([factory.point(0, 0)])
        detached = detach(collection, factory)
        assert detached.classes == (Point,)
        factory.context.destroy(detached.handle)  # type: ignore[arg-type]

    def test_failed_detach(self, factory: Factory) -> None:
        assert detach("nope", factory) == DetachedGeometry(None, None)


class TestPredicates:
    def test_is_native_geometry(self, factory: Factory) -> None:
        assert is_native_geometry(factory.point(0, 0))
        assert not is_native_geometry(shapely.Point(0, 0))

    def test_handle_or_none(self, factory: Factory) -> None:
        point = factory.point(0, 0)
        assert handle_or_none(point) is point.handle  # type: ignore[union-attr]
        assert handle_or_none(shapely.Point(0, 0)) is None

    def test_base_class_detached_state(self, factory: Factory) -> None:
        empty = protocol.wrap(factory, None, Geometry)
        assert empty is not None
        assert not empty.is_detached
        assert empty.eql(empty) is None

"""Tests for deep coordinate equality.

Covers:
- Tri-state results, including indeterminate when a side is missing
- Symmetry of ``coordinates_equal``
- Length mismatch, X/Y/Z component mismatch
- Class and factory gate
- Recursive structural equality for polygons and collections
"""

from __future__ import annotations

import pytest
import shapely

from geobridge.bridge.equality import (
    classes_and_factories_equal,
    coordinates_equal,
    structurally_equal,
)
from geobridge.bridge.factory import Factory
from geobridge.engine.context import EngineContext, GeometryEngine


@pytest.fixture()
def adopt(context: EngineContext):
    def _adopt(wkt: str):
        return context.adopt(shapely.from_wkt(wkt))

    return _adopt


class TestCoordinatesEqual:
    def test_identical_sequences(self, context: EngineContext, adopt) -> None:
        first = adopt("LINESTRING (0 0, 1 2, 3 4)")
        second = adopt("LINESTRING (0 0, 1 2, 3 4)")
        assert coordinates_equal(context, first, second, False) is True

    def test_different_lengths_are_unequal(self, context: EngineContext, adopt) -> None:
        first = adopt("LINESTRING (0 0, 1 2)")
        second = adopt("LINESTRING (0 0, 1 2, 3 4)")
        assert coordinates_equal(context, first, second, False) is False

    @pytest.mark.parametrize(
        ("wkt1", "wkt2"),
        [
            ("POINT (1 2)", "POINT (1.5 2)"),
            ("POINT (1 2)", "POINT (1 2.5)"),
            ("LINESTRING (0 0, 1 1)", "LINESTRING (0 0, 1 2)"),
        ],
    )
    def test_component_mismatch(self, context: EngineContext, adopt, wkt1: str, wkt2: str) -> None:
        assert coordinates_equal(context, adopt(wkt1), adopt(wkt2), False) is False

    def test_z_only_checked_when_requested(self, context: EngineContext, adopt) -> None:
        first = adopt("POINT Z (1 2 3)")
        second = adopt("POINT Z (1 2 4)")
        assert coordinates_equal(context, first, second, False) is True
        assert coordinates_equal(context, first, second, True) is False

    def test_no_exact_tolerance(self, context: EngineContext, adopt) -> None:
        first = adopt("POINT (0.1 0.2)")
        second = context.adopt(shapely.Point(0.1 + 1e-15, 0.2))
        assert coordinates_equal(context, first, second, False) is False

    @pytest.mark.parametrize("missing", ["first", "second", "context"])
    def test_missing_input_is_indeterminate(self, context: EngineContext, adopt, missing: str) -> None:
        handle = adopt("POINT (0 0)")
        args = {"context": context, "first": handle, "second": handle}
        args[missing] = None
        assert coordinates_equal(args["context"], args["first"], args["second"], False) is None

    def test_no_sequence_is_indeterminate(self, context: EngineContext, adopt) -> None:
        polygon = adopt("POLYGON ((0 0, 1 0, 1 1, 0 0))")
        assert coordinates_equal(context, polygon, polygon, False) is None

    @pytest.mark.parametrize(
        ("wkt1", "wkt2"),
        [
            ("LINESTRING (0 0, 1 1)", "LINESTRING (0 0, 1 1)"),
            ("LINESTRING (0 0, 1 1)", "LINESTRING (0 0, 2 1)"),
            ("LINESTRING (0 0, 1 1)", "LINESTRING EMPTY"),
            ("POINT (0 0)", "POLYGON ((0 0, 1 0, 1 1, 0 0))"),
        ],
    )
    def test_symmetric(self, context: EngineContext, adopt, wkt1: str, wkt2: str) -> None:
        first, second = adopt(wkt1), adopt(wkt2)
        assert coordinates_equal(context, first, second, True) == coordinates_equal(
            context, second, first, True
        )


class TestClassesAndFactoriesEqual:
    def test_same_class_equal_factories(self, factory: Factory, other_factory: Factory) -> None:
        assert classes_and_factories_equal(factory.point(0, 0), other_factory.point(5, 5))

    def test_different_classes(self, factory: Factory) -> None:
        line = factory.parse_wkt("LINESTRING (0 0, 1 1)")
        assert not classes_and_factories_equal(factory.point(0, 0), line)

    def test_different_factories(self, engine: GeometryEngine, factory: Factory) -> None:
        other = Factory.create(srid=4326, engine=engine)
        assert other is not None
        assert not classes_and_factories_equal(factory.point(0, 0), other.point(0, 0))

    def test_plain_objects(self) -> None:
        assert classes_and_factories_equal(object(), object()) is False
        assert classes_and_factories_equal(1, 2) is False
        assert classes_and_factories_equal(1, "1") is False

    def test_detached_wrappers(self, factory: Factory) -> None:
        first, second = factory.point(0, 0), factory.point(0, 0)
        handles = [first._detach()[0], second._detach()[0]]  # type: ignore[union-attr]
        try:
            assert classes_and_factories_equal(first, second) is False
            assert first.eql(second) is False  # type: ignore[union-attr]
        finally:
            for handle in handles:
                factory.context.destroy(handle)  # type: ignore[arg-type]


class TestStructurallyEqual:
    def test_polygons_with_holes(self, context: EngineContext, adopt) -> None:
        wkt = "POLYGON ((0 0, 4 0, 4 4, 0 0), (1 1, 2 1, 2 2, 1 1))"
        assert structurally_equal(context, adopt(wkt), adopt(wkt), False) is True

    def test_polygon_hole_count_differs(self, context: EngineContext, adopt) -> None:
        first = adopt("POLYGON ((0 0, 4 0, 4 4, 0 0), (1 1, 2 1, 2 2, 1 1))")
        second = adopt("POLYGON ((0 0, 4 0, 4 4, 0 0))")
        assert structurally_equal(context, first, second, False) is False

    def test_ring_start_point_matters(self, context: EngineContext, adopt) -> None:
        first = adopt("POLYGON ((0 0, 4 0, 4 4, 0 0))")
        second = adopt("POLYGON ((4 0, 4 4, 0 0, 4 0))")
        assert structurally_equal(context, first, second, False) is False

    def test_collections_member_wise(self, context: EngineContext, adopt) -> None:
        first = adopt("GEOMETRYCOLLECTION (POINT (0 0), LINESTRING (0 0, 1 1))")
        second = adopt("GEOMETRYCOLLECTION (POINT (0 0), LINESTRING (0 0, 1 1))")
        third = adopt("GEOMETRYCOLLECTION (POINT (0 0), LINESTRING (0 0, 1 2))")
        assert structurally_equal(context, first, second, False) is True
        assert structurally_equal(context, first, third, False) is False

    def test_kind_mismatch(self, context: EngineContext, adopt) -> None:
        first = adopt("MULTIPOINT ((0 0))")
        second = adopt("GEOMETRYCOLLECTION (POINT (0 0))")
        assert structurally_equal(context, first, second, False) is False

    def test_empty_polygons(self, context: EngineContext, adopt) -> None:
        assert structurally_equal(context, adopt("POLYGON EMPTY"), adopt("POLYGON EMPTY"), False) is True


class TestGeometryEql:
    """Wrapper-level structural vs spatial equality."""

    def test_eql_vs_equals(self, factory: Factory) -> None:
        first = factory.parse_wkt("LINESTRING (0 0, 2 2)")
        second = factory.parse_wkt("LINESTRING (0 0, 1 1, 2 2)")
        assert first.eql(second) is False  # type: ignore[union-attr]
        assert first.equals(second) is True  # type: ignore[union-attr]

    def test_eql_across_equal_factories(self, factory: Factory, other_factory: Factory) -> None:
        assert factory.point(1, 2).eql(other_factory.point(1, 2)) is True  # type: ignore[union-attr]

    def test_eql_with_non_geometry(self, factory: Factory) -> None:
        assert factory.point(1, 2).eql(shapely.Point(1, 2)) is False  # type: ignore[union-attr]

    def test_z_factory_compares_z(self, factory_z: Factory) -> None:
        first = factory_z.point(1, 2, 3)
        assert first.eql(factory_z.point(1, 2, 3)) is True  # type: ignore[union-attr]
        assert first.eql(factory_z.point(1, 2, 4)) is False  # type: ignore[union-attr]

    def test_z_presence_mismatch(self, factory_z: Factory) -> None:
        flat = factory_z.parse_wkt("POINT (1 2)")
        raised = factory_z.parse_wkt("POINT Z (1 2 0)")
        assert flat.eql(raised) is False  # type: ignore[union-attr]

    def test_2d_factory_ignores_z(self, factory: Factory) -> None:
        first = factory.parse_wkt("POINT Z (1 2 3)")
        second = factory.parse_wkt("POINT Z (1 2 4)")
        assert first.eql(second) is True  # type: ignore[union-attr]

    def test_equals_with_shapely_geometry(self, factory: Factory) -> None:
        polygon = factory.parse_wkt("POLYGON ((0 0, 1 0, 1 1, 0 0))")
        other = shapely.Polygon([(1, 0), (1, 1), (0, 0), (1, 0)])
        assert polygon.equals(other) is True  # type: ignore[union-attr]

"""Shared pytest fixtures for the geobridge test suite."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from geobridge.bridge.factory import Factory
from geobridge.core.constants import FactoryFlags
from geobridge.engine.context import EngineContext, GeometryEngine

# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> GeometryEngine:
    """A private engine so that handle counters start at zero."""
    return GeometryEngine()


@pytest.fixture()
def context(engine: GeometryEngine) -> EngineContext:
    """A bare engine context with discarding message handlers."""
    return engine.create_context()


# ---------------------------------------------------------------------------
# Factory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def factory(engine: GeometryEngine) -> Iterator[Factory]:
    """A 2D factory with SRID 0 on a private engine."""
    result = Factory.create(engine=engine)
    assert result is not None
    yield result
    result.close()


@pytest.fixture()
def factory_z(engine: GeometryEngine) -> Iterator[Factory]:
    """A factory with Z support on the same private engine."""
    result = Factory.create(FactoryFlags.HAS_Z, engine=engine)
    assert result is not None
    yield result
    result.close()


@pytest.fixture()
def other_factory(engine: GeometryEngine) -> Iterator[Factory]:
    """A second, equal-settings factory with its own context."""
    result = Factory.create(engine=engine)
    assert result is not None
    yield result
    result.close()


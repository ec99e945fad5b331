"""WKT/WKB reader and writer handles.

Readers and writers are context-scoped children: they are created by an
``EngineContext``, must be destroyed through it, and must be destroyed
before the context itself is finished.  The grammar work is delegated to
GEOS through shapely; a reader turns a parse failure into a ``None``
result and reports the engine message through the context's error
handler instead of raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import shapely
from shapely.errors import ShapelyError

from geobridge.core.exceptions import HandleError

if TYPE_CHECKING:
    from geobridge.engine.context import EngineContext, NativeGeometry

# Full precision so that re-parsed output is coordinate-identical.
FULL_PRECISION = -1


class HelperHandle:
    """Base for context-scoped reader/writer handles."""

    def __init__(self, context: EngineContext) -> None:
        self._context = context
        self._destroyed = False

    @property
    def context(self) -> EngineContext:
        return self._context

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def _release(self) -> None:
        self._destroyed = True

    def _check_live(self, operation: str) -> None:
        if self._destroyed:
            msg = f"{type(self).__name__} used after destruction"
            raise HandleError(msg, operation=operation, code="HANDLE_DESTROYED")

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "live"
        return f"<{type(self).__name__} {state} at 0x{id(self):x}>"


class WKTReader(HelperHandle):
    """Parses WKT text into owned geometry handles."""

    def read(self, text: str) -> NativeGeometry | None:
        """Parse *text*; ``None`` if the engine rejects it."""
        self._check_live("read_wkt")
        with self._context.lock:
            try:
                geom = shapely.from_wkt(text, on_invalid="raise")
            except (ShapelyError, ValueError) as exc:
                self._context.error(f"WKT parse failed: {exc}")
                return None
            if geom is None:
                self._context.error("WKT parse produced no geometry")
                return None
            return self._context.adopt(geom)


class WKBReader(HelperHandle):
    """Parses (extended) WKB bytes into owned geometry handles."""

    def read(self, data: bytes) -> NativeGeometry | None:
        """Parse *data*; ``None`` if the engine rejects it."""
        self._check_live("read_wkb")
        with self._context.lock:
            try:
                geom = shapely.from_wkb(data, on_invalid="raise")
            except (ShapelyError, ValueError) as exc:
                self._context.error(f"WKB parse failed: {exc}")
                return None
            if geom is None:
                self._context.error("WKB parse produced no geometry")
                return None
            return self._context.adopt(geom)


class WKTWriter(HelperHandle):
    """Serialises handles to WKT at full precision."""

    def __init__(self, context: EngineContext) -> None:
        super().__init__(context)
        self.output_dimension = 2

    def write(self, handle: NativeGeometry) -> str:
        self._check_live("write_wkt")
        with self._context.lock:
            return str(
                shapely.to_wkt(
                    self._context._check_handle(handle, "write_wkt"),
                    rounding_precision=FULL_PRECISION,
                    trim=True,
                    output_dimension=self.output_dimension,
                )
            )


class WKBWriter(HelperHandle):
    """Serialises handles to ISO/extended WKB without an embedded SRID."""

    def __init__(self, context: EngineContext) -> None:
        super().__init__(context)
        self.output_dimension = 2

    def write(self, handle: NativeGeometry) -> bytes:
        self._check_live("write_wkb")
        with self._context.lock:
            return bytes(
                shapely.to_wkb(
                    self._context._check_handle(handle, "write_wkb"),
                    output_dimension=self.output_dimension,
                    include_srid=False,
                )
            )

"""Factory configuration loaded from environment variables.

All configuration values have defaults matching ``Factory.create``.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any value is out of
    its valid range, so a bad deployment setting is caught at startup
    rather than when the first geometry is parsed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from geobridge.core.constants import (
    ALL_FACTORY_FLAGS,
    DEFAULT_BUFFER_RESOLUTION,
    DEFAULT_SRID,
    ENGINE_MESSAGE_MODES,
    ENGINE_MESSAGES_LOG,
    FactoryFlags,
)
from geobridge.core.exceptions import ValidationError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


class ConfigValidationError(ValidationError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_operation = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class FactoryConfig:
    """Immutable factory configuration.

    Attributes:
        srid: Spatial reference id stamped on every geometry of the factory.
        buffer_resolution: Segments per quadrant for buffer approximations.
        has_z: Whether geometries carry a Z coordinate.
        has_m: Whether geometries carry an M coordinate.
        lenient_multi_polygon_assertions: Skip multipolygon validity checks.
        engine_messages: ``"log"`` routes engine diagnostics to logging,
            ``"quiet"`` discards them.
    """

    srid: int = DEFAULT_SRID
    buffer_resolution: int = DEFAULT_BUFFER_RESOLUTION
    has_z: bool = False
    has_m: bool = False
    lenient_multi_polygon_assertions: bool = False
    engine_messages: str = ENGINE_MESSAGES_LOG

    @property
    def flags(self) -> FactoryFlags:
        """Return the factory flag bitmask for these settings."""
        flags = FactoryFlags.NONE
        if self.lenient_multi_polygon_assertions:
            flags |= FactoryFlags.LENIENT_MULTI_POLYGON
        if self.has_z:
            flags |= FactoryFlags.HAS_Z
        if self.has_m:
            flags |= FactoryFlags.HAS_M
        return flags

    @classmethod
    def from_env(cls) -> FactoryConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or a flag
                variable is not a recognised boolean.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``GEOBRIDGE_SRID=abc``).
        """
        config = cls(
            srid=int(os.getenv("GEOBRIDGE_SRID", str(DEFAULT_SRID))),
            buffer_resolution=int(
                os.getenv("GEOBRIDGE_BUFFER_RESOLUTION", str(DEFAULT_BUFFER_RESOLUTION))
            ),
            has_z=_env_flag("GEOBRIDGE_HAS_Z"),
            has_m=_env_flag("GEOBRIDGE_HAS_M"),
            lenient_multi_polygon_assertions=_env_flag("GEOBRIDGE_LENIENT_MULTI_POLYGON"),
            engine_messages=os.getenv("GEOBRIDGE_ENGINE_MESSAGES", ENGINE_MESSAGES_LOG),
        )
        validate_config(config)
        return config


def validate_config(config: FactoryConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    validate_settings(int(config.flags), config.srid, config.buffer_resolution)

    if config.engine_messages not in ENGINE_MESSAGE_MODES:
        raise ConfigValidationError(
            "GEOBRIDGE_ENGINE_MESSAGES",
            config.engine_messages,
            f"must be one of {sorted(ENGINE_MESSAGE_MODES)}",
        )


def validate_settings(flags: int, srid: int, buffer_resolution: int) -> None:
    """Validate raw factory settings.  Raises ``ConfigValidationError``."""
    if srid < 0:
        raise ConfigValidationError("GEOBRIDGE_SRID", srid, "must be >= 0")

    if buffer_resolution < 1:
        raise ConfigValidationError(
            "GEOBRIDGE_BUFFER_RESOLUTION",
            buffer_resolution,
            "must be >= 1 (segments per quadrant)",
        )

    if flags < 0 or flags & ~int(ALL_FACTORY_FLAGS):
        raise ConfigValidationError(
            "flags",
            flags,
            f"must only combine known factory flags (mask {int(ALL_FACTORY_FLAGS)})",
        )


def _env_flag(key: str) -> bool:
    raw = os.getenv(key, "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigValidationError(key, raw, "must be a boolean (true/false, 1/0, yes/no)")

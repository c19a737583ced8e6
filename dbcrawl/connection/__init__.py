"""Database connection handling."""

from .credentials import UserCredentials, SingleUseUserCredentials
from .drivers import (
    Driver,
    DriverProperty,
    DriverRegistry,
    SQLiteDriver,
    DuckDBDriver,
    PostgreSQLDriver,
    SnowflakeDriver,
    default_driver_registry,
)
from .options import DatabaseConnectionOptions, safe_properties, mask_url, parse_urlx

__all__ = [
    "UserCredentials",
    "SingleUseUserCredentials",
    "Driver",
    "DriverProperty",
    "DriverRegistry",
    "SQLiteDriver",
    "DuckDBDriver",
    "PostgreSQLDriver",
    "SnowflakeDriver",
    "default_driver_registry",
    "DatabaseConnectionOptions",
    "safe_properties",
    "mask_url",
    "parse_urlx",
]

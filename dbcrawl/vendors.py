"""Database vendor profiles.

A profile ties a vendor to its metadata retriever, the directory holding its
SQL resources and the categories it cannot provide. Profiles are looked up
from a fixed table rather than discovered at run time.
"""

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping, Type, Tuple

from .database.base import MetadataRetriever, InformationSchemaRetriever
from .database.duckdb import DuckDBRetriever
from .database.postgresql import PostgreSQLRetriever
from .database.snowflake import SnowflakeRetriever
from .database.sqlite import SQLiteRetriever
from .registry import MetadataCategory

logger = logging.getLogger(__name__)


class DatabaseVendor(str, Enum):
    """Supported database vendors."""
    GENERIC = "generic"
    SQLITE = "sqlite"
    DUCKDB = "duckdb"
    POSTGRESQL = "postgresql"
    SNOWFLAKE = "snowflake"


@dataclass(frozen=True)
class VendorProfile:
    """How metadata is retrieved for one database vendor.

    Attributes:
        vendor: Vendor identifier
        display_name: Human readable product name
        retriever_class: Retriever for the native categories
        unsupported_categories: Categories the vendor cannot provide
        connection_modules: Top-level modules of the vendor's DB-API driver,
            used to recognise a live connection
        shares_connections: Whether one connection may serve several threads
    """
    vendor: DatabaseVendor
    display_name: str
    retriever_class: Type[MetadataRetriever]
    unsupported_categories: FrozenSet[MetadataCategory] = frozenset()
    connection_modules: Tuple[str, ...] = ()
    shares_connections: bool = True

    @property
    def resource_dir(self) -> str:
        return self.vendor.value

    def create_retriever(self, connection) -> MetadataRetriever:
        return self.retriever_class(connection)

    def can_share_connection(self, connection) -> bool:
        """Check whether the connection may be used from several threads at once.

        Requires DB-API `threadsafety` of 2 or more in the driver module.
        """
        if not self.shares_connections:
            return False
        module = sys.modules.get(type(connection).__module__.split(".")[0])
        return getattr(module, "threadsafety", 0) >= 2


VENDOR_PROFILES: Mapping[DatabaseVendor, VendorProfile] = MappingProxyType({
    DatabaseVendor.GENERIC: VendorProfile(
        vendor=DatabaseVendor.GENERIC,
        display_name="generic information_schema database",
        retriever_class=InformationSchemaRetriever,
    ),
    DatabaseVendor.SQLITE: VendorProfile(
        vendor=DatabaseVendor.SQLITE,
        display_name="SQLite",
        retriever_class=SQLiteRetriever,
        unsupported_categories=frozenset({
            MetadataCategory.ROUTINES,
            MetadataCategory.ROUTINE_COLUMNS,
            MetadataCategory.SEQUENCES,
            MetadataCategory.TABLE_CONSTRAINTS,
        }),
        connection_modules=("sqlite3", "_sqlite3"),
        shares_connections=False,
    ),
    DatabaseVendor.DUCKDB: VendorProfile(
        vendor=DatabaseVendor.DUCKDB,
        display_name="DuckDB",
        retriever_class=DuckDBRetriever,
        unsupported_categories=frozenset({
            MetadataCategory.TRIGGERS,
            MetadataCategory.ROUTINES,
            MetadataCategory.ROUTINE_COLUMNS,
        }),
        connection_modules=("duckdb", "_duckdb"),
        shares_connections=False,
    ),
    DatabaseVendor.POSTGRESQL: VendorProfile(
        vendor=DatabaseVendor.POSTGRESQL,
        display_name="PostgreSQL",
        retriever_class=PostgreSQLRetriever,
        connection_modules=("psycopg2",),
    ),
    DatabaseVendor.SNOWFLAKE: VendorProfile(
        vendor=DatabaseVendor.SNOWFLAKE,
        display_name="Snowflake",
        retriever_class=SnowflakeRetriever,
        unsupported_categories=frozenset({
            MetadataCategory.INDEXES,
            MetadataCategory.TRIGGERS,
        }),
        connection_modules=("snowflake",),
    ),
})

if set(VENDOR_PROFILES) != set(DatabaseVendor):
    raise RuntimeError("Every database vendor needs a profile")


def get_vendor_profile(vendor) -> VendorProfile:
    """Look up the profile for a vendor or vendor name.

    Raises:
        ValueError: If the vendor is unknown
    """
    try:
        return VENDOR_PROFILES[DatabaseVendor(vendor)]
    except ValueError:
        known = ", ".join(v.value for v in DatabaseVendor)
        raise ValueError(f"Unknown database vendor '{vendor}'. Known vendors: {known}") from None


def detect_vendor(connection) -> VendorProfile:
    """Pick a vendor profile from the module that created a live connection.

    Connections from unknown drivers get the generic information_schema profile.
    """
    module = type(connection).__module__.split(".")[0]
    for profile in VENDOR_PROFILES.values():
        if module in profile.connection_modules:
            break
    else:
        profile = VENDOR_PROFILES[DatabaseVendor.GENERIC]
    logger.debug("Detected %s from connection module %s", profile.display_name, module)
    return profile

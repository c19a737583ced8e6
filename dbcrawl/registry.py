"""Metadata categories and where each one is retrieved from.

`MetadataCategory` is a fixed table: every category carries its source kind,
a stable lookup key and the name of the SQL resource that backs it.
`MetadataSourceRegistry` combines that table with the active vendor profile
and a property bag to decide, per category, which query (if any) to run.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from types import MappingProxyType
from typing import Optional, Dict, Mapping, TYPE_CHECKING

if TYPE_CHECKING:
    from .vendors import VendorProfile

logger = logging.getLogger(__name__)

SQL_PACKAGE = "dbcrawl.sql"
GENERIC_RESOURCE_DIR = "generic"


class SourceKind(str, Enum):
    """How a metadata category is retrieved."""
    NATIVE = "native"
    VENDOR_EXTENSION = "extension"
    ADDITIONAL_INFO = "additional"


class MetadataCategory(str, Enum):
    """Metadata categories, in crawl dependency order."""
    SCHEMATA = "SCHEMATA"
    TABLES = "TABLES"
    VIEWS = "VIEWS"
    TABLE_COLUMNS = "TABLE_COLUMNS"
    PRIMARY_KEYS = "PRIMARY_KEYS"
    FOREIGN_KEYS = "FOREIGN_KEYS"
    INDEXES = "INDEXES"
    TRIGGERS = "TRIGGERS"
    TABLE_CONSTRAINTS = "TABLE_CONSTRAINTS"
    ADDITIONAL_TABLE_ATTRIBUTES = "ADDITIONAL_TABLE_ATTRIBUTES"
    ADDITIONAL_COLUMN_ATTRIBUTES = "ADDITIONAL_COLUMN_ATTRIBUTES"
    ROUTINES = "ROUTINES"
    ROUTINE_COLUMNS = "ROUTINE_COLUMNS"
    SEQUENCES = "SEQUENCES"

    @property
    def source_kind(self) -> SourceKind:
        return SOURCE_KINDS[self]

    @property
    def lookup_key(self) -> str:
        return f"select.{self.source_kind.value}.{self.name}"

    @property
    def resource(self) -> str:
        return f"{self.name}.sql"

    @property
    def is_required(self) -> bool:
        return self in REQUIRED_CATEGORIES

    @property
    def is_per_table(self) -> bool:
        return self in PER_TABLE_CATEGORIES


SOURCE_KINDS: Mapping[MetadataCategory, SourceKind] = MappingProxyType({
    MetadataCategory.SCHEMATA: SourceKind.NATIVE,
    MetadataCategory.TABLES: SourceKind.NATIVE,
    MetadataCategory.VIEWS: SourceKind.VENDOR_EXTENSION,
    MetadataCategory.TABLE_COLUMNS: SourceKind.NATIVE,
    MetadataCategory.PRIMARY_KEYS: SourceKind.NATIVE,
    MetadataCategory.FOREIGN_KEYS: SourceKind.NATIVE,
    MetadataCategory.INDEXES: SourceKind.NATIVE,
    MetadataCategory.TRIGGERS: SourceKind.VENDOR_EXTENSION,
    MetadataCategory.TABLE_CONSTRAINTS: SourceKind.VENDOR_EXTENSION,
    MetadataCategory.ADDITIONAL_TABLE_ATTRIBUTES: SourceKind.ADDITIONAL_INFO,
    MetadataCategory.ADDITIONAL_COLUMN_ATTRIBUTES: SourceKind.ADDITIONAL_INFO,
    MetadataCategory.ROUTINES: SourceKind.VENDOR_EXTENSION,
    MetadataCategory.ROUTINE_COLUMNS: SourceKind.VENDOR_EXTENSION,
    MetadataCategory.SEQUENCES: SourceKind.VENDOR_EXTENSION,
})

if set(SOURCE_KINDS) != set(MetadataCategory):
    raise RuntimeError("Every metadata category needs a source kind")


REQUIRED_CATEGORIES = frozenset({MetadataCategory.SCHEMATA, MetadataCategory.TABLES})

PER_TABLE_CATEGORIES = frozenset({
    MetadataCategory.TABLE_COLUMNS,
    MetadataCategory.PRIMARY_KEYS,
    MetadataCategory.FOREIGN_KEYS,
    MetadataCategory.INDEXES,
    MetadataCategory.TRIGGERS,
    MetadataCategory.TABLE_CONSTRAINTS,
    MetadataCategory.ADDITIONAL_TABLE_ATTRIBUTES,
    MetadataCategory.ADDITIONAL_COLUMN_ATTRIBUTES,
})

_BY_LOOKUP_KEY: Dict[str, MetadataCategory] = {c.lookup_key: c for c in MetadataCategory}


def category_for_lookup_key(lookup_key: str) -> MetadataCategory:
    """Find a category by its lookup key.

    Raises:
        KeyError: If no category has that lookup key
    """
    try:
        return _BY_LOOKUP_KEY[lookup_key]
    except KeyError:
        raise KeyError(f"Unknown metadata lookup key: {lookup_key}") from None


class QueryOrigin(str, Enum):
    """Where the SQL for a category came from."""
    USER_OVERRIDE = "user override"
    VENDOR = "vendor resource"
    GENERIC = "generic resource"


@dataclass(frozen=True)
class QuerySource:
    """SQL to run for one category, and where it came from."""
    category: MetadataCategory
    sql: str
    origin: QueryOrigin

    @property
    def is_override(self) -> bool:
        """Vendor resources and user overrides replace the generic query."""
        return self.origin is not QueryOrigin.GENERIC


def load_sql_resource(directory: str, resource: str) -> Optional[str]:
    """Read a packaged SQL resource, or return None if it does not exist."""
    path = resources.files(SQL_PACKAGE).joinpath(directory, resource)
    if not path.is_file():
        return None
    sql = path.read_text(encoding="utf-8").strip()
    return sql or None


class MetadataSourceRegistry:
    """Per-crawl lookup of query sources, built once from explicit inputs.

    Args:
        vendor: Vendor profile of the connected database
        properties: Property bag; entries under a category's lookup key
            override any packaged SQL resource
    """

    def __init__(self, vendor: "VendorProfile", properties: Optional[Mapping[str, str]] = None):
        self.vendor = vendor
        self.properties = dict(properties or {})
        self._cache: Dict[MetadataCategory, Optional[QuerySource]] = {}

    def source_kind(self, category: MetadataCategory) -> SourceKind:
        return category.source_kind

    def is_supported(self, category: MetadataCategory) -> bool:
        return category not in self.vendor.unsupported_categories

    def query_source(self, category: MetadataCategory) -> Optional[QuerySource]:
        """Resolve the SQL for a category.

        Order: user override, vendor resource, generic resource. Returns None
        when no SQL exists or the vendor does not support the category.
        """
        if category in self._cache:
            return self._cache[category]

        source = None
        if self.is_supported(category):
            override = self.properties.get(category.lookup_key)
            if override and override.strip():
                source = QuerySource(category, override.strip(), QueryOrigin.USER_OVERRIDE)
            else:
                sql = load_sql_resource(self.vendor.resource_dir, category.resource)
                if sql is not None:
                    source = QuerySource(category, sql, QueryOrigin.VENDOR)
                else:
                    sql = load_sql_resource(GENERIC_RESOURCE_DIR, category.resource)
                    if sql is not None:
                        source = QuerySource(category, sql, QueryOrigin.GENERIC)

        if source is not None:
            logger.debug("Using %s for %s", source.origin.value, category.lookup_key)
        self._cache[category] = source
        return source

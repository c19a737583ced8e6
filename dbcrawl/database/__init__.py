"""Database metadata retrieval and the catalog model.

Retrievers read raw records for one database vendor; the builder merges
them into an immutable `Catalog`.
"""

from .models import (
    SchemaKey,
    ObjectKey,
    ColumnKey,
    ProductInfo,
    Column,
    PrimaryKey,
    ForeignKey,
    ForeignKeyColumnReference,
    Index,
    Trigger,
    TableConstraint,
    Table,
    RoutineColumn,
    Routine,
    Sequence,
    Schema,
    Catalog,
)
from .base import MetadataRetriever, InformationSchemaRetriever
from .builder import CatalogBuilder
from .sqlite import SQLiteRetriever
from .duckdb import DuckDBRetriever
from .postgresql import PostgreSQLRetriever
from .snowflake import SnowflakeRetriever

__all__ = [
    # Data models
    "SchemaKey",
    "ObjectKey",
    "ColumnKey",
    "ProductInfo",
    "Column",
    "PrimaryKey",
    "ForeignKey",
    "ForeignKeyColumnReference",
    "Index",
    "Trigger",
    "TableConstraint",
    "Table",
    "RoutineColumn",
    "Routine",
    "Sequence",
    "Schema",
    "Catalog",
    # Retrieval
    "MetadataRetriever",
    "InformationSchemaRetriever",
    "CatalogBuilder",
    # Retrievers
    "SQLiteRetriever",
    "DuckDBRetriever",
    "PostgreSQLRetriever",
    "SnowflakeRetriever",
]

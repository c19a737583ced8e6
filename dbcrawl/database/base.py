"""Abstract base class for metadata retrieval."""

import logging
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Iterable, Set

from ..errors import CategoryUnsupported
from ..registry import MetadataCategory, QuerySource
from .models import SchemaKey, ObjectKey
from .records import (
    SchemaRecord,
    TableRecord,
    ColumnRecord,
    PrimaryKeyRecord,
    ForeignKeyRecord,
    IndexRecord,
    normalize_table_type,
    records_from_rows,
)

logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    """Quote an identifier with double quotes."""
    return '"' + str(name).replace('"', '""') + '"'


class MetadataRetriever(ABC):
    """Abstract base class for metadata retrieval over a DB-API connection.

    Subclasses implement the native categories (schemas, tables, columns,
    keys, indexes) for one database. Every other category comes from SQL
    resources run through `fetch_extension`.

    Per-table methods receive the tables that survived filtering and must
    only return records for those tables.
    """

    # Override in subclasses to exclude system schemas
    EXCLUDED_SCHEMAS: set = {'INFORMATION_SCHEMA'}

    def __init__(self, connection):
        self.connection = connection

    def execute(self, sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        """Execute a SQL query and return rows as dicts keyed by upper-case column name.

        Args:
            sql: SQL query to execute
            params: Query parameters, in the driver's paramstyle

        Returns:
            List of result rows
        """
        cursor = self.connection.cursor()
        try:
            params = tuple(params)
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            if cursor.description is None:
                return []
            names = [str(d[0]).upper() for d in cursor.description]
            return [dict(zip(names, row)) for row in cursor.fetchall()]
        except Exception:
            self._rollback()
            raise
        finally:
            cursor.close()

    def _rollback(self):
        # A failed statement can leave the transaction aborted (PostgreSQL)
        rollback = getattr(self.connection, "rollback", None)
        if rollback is None:
            return
        try:
            rollback()
        except Exception as e:
            logger.debug("Rollback after failed query did not succeed: %s", e)

    def is_excluded_schema(self, schema: Optional[str]) -> bool:
        excluded = {s.upper() for s in self.EXCLUDED_SCHEMAS}
        return schema is not None and schema.upper() in excluded

    @abstractmethod
    def get_schemas(self) -> List[SchemaRecord]:
        """Get all user schemas in the database.

        Returns:
            List of schema records (excluding system schemas)
        """
        pass

    @abstractmethod
    def get_tables(self, schemas: List[SchemaKey]) -> List[TableRecord]:
        """Get all tables and views in the given schemas."""
        pass

    @abstractmethod
    def get_columns(self, tables: List[ObjectKey]) -> List[ColumnRecord]:
        """Get all columns for the given tables."""
        pass

    @abstractmethod
    def get_primary_keys(self, tables: List[ObjectKey]) -> List[PrimaryKeyRecord]:
        """Get primary key columns for the given tables."""
        pass

    @abstractmethod
    def get_foreign_keys(self, tables: List[ObjectKey]) -> List[ForeignKeyRecord]:
        """Get foreign key column pairs where either side is one of the given tables."""
        pass

    def get_indexes(self, tables: List[ObjectKey]) -> List[IndexRecord]:
        """Get index columns for the given tables.

        Raises:
            CategoryUnsupported: If the database has no way to list indexes
        """
        raise CategoryUnsupported(MetadataCategory.INDEXES.value)

    def fetch_extension(self, source: QuerySource) -> list:
        """Run the SQL for a non-native category and convert its rows to records."""
        logger.debug("Running %s query for %s", source.origin.value, source.category.value)
        return records_from_rows(source.category, self.execute(source.sql))

    def close(self):
        """Close the underlying connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _table_set(tables: List[ObjectKey]) -> Set[ObjectKey]:
    return set(tables)


class InformationSchemaRetriever(MetadataRetriever):
    """Retriever for databases that implement the SQL-standard information_schema."""

    EXCLUDED_SCHEMAS = {'information_schema', 'pg_catalog'}

    def get_schemas(self) -> List[SchemaRecord]:
        """Get all user schemas in the database."""
        rows = self.execute("""
            SELECT catalog_name, schema_name
            FROM information_schema.schemata
            ORDER BY catalog_name, schema_name
        """)
        return [
            SchemaRecord(row["CATALOG_NAME"], row["SCHEMA_NAME"])
            for row in rows
            if not self.is_excluded_schema(row["SCHEMA_NAME"])
        ]

    def get_tables(self, schemas: List[SchemaKey]) -> List[TableRecord]:
        """Get all tables and views in the given schemas."""
        wanted = set(schemas)
        rows = self.execute("""
            SELECT table_catalog, table_schema, table_name, table_type
            FROM information_schema.tables
            ORDER BY table_schema, table_name
        """)
        tables = []
        for row in rows:
            record = TableRecord(
                catalog=row["TABLE_CATALOG"],
                schema=row["TABLE_SCHEMA"],
                name=row["TABLE_NAME"],
                table_type=normalize_table_type(row["TABLE_TYPE"]),
            )
            if record.key.schema in wanted:
                tables.append(record)
        return tables

    def get_columns(self, tables: List[ObjectKey]) -> List[ColumnRecord]:
        """Get all columns for the given tables."""
        wanted = _table_set(tables)
        rows = self.execute("""
            SELECT
                table_catalog,
                table_schema,
                table_name,
                column_name,
                ordinal_position,
                data_type,
                is_nullable,
                column_default
            FROM information_schema.columns
            ORDER BY table_schema, table_name, ordinal_position
        """)
        return [c for c in records_from_rows(MetadataCategory.TABLE_COLUMNS, rows) if c.table_key in wanted]

    def get_primary_keys(self, tables: List[ObjectKey]) -> List[PrimaryKeyRecord]:
        """Get primary key columns for the given tables."""
        wanted = _table_set(tables)
        rows = self.execute("""
            SELECT
                tc.table_catalog,
                tc.table_schema,
                tc.table_name,
                kcu.column_name,
                kcu.ordinal_position AS key_seq,
                tc.constraint_name AS pk_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
              AND tc.table_schema = kcu.table_schema
              AND tc.table_name = kcu.table_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
            ORDER BY tc.table_schema, tc.table_name, kcu.ordinal_position
        """)
        return [pk for pk in records_from_rows(MetadataCategory.PRIMARY_KEYS, rows) if pk.table_key in wanted]

    def get_foreign_keys(self, tables: List[ObjectKey]) -> List[ForeignKeyRecord]:
        """Get foreign key column pairs touching the given tables."""
        wanted = _table_set(tables)
        rows = self.execute("""
            SELECT
                rc.constraint_name AS fk_name,
                fk.ordinal_position AS key_seq,
                pk.table_catalog AS pktable_cat,
                pk.table_schema AS pktable_schem,
                pk.table_name AS pktable_name,
                pk.column_name AS pkcolumn_name,
                fk.table_catalog AS fktable_cat,
                fk.table_schema AS fktable_schem,
                fk.table_name AS fktable_name,
                fk.column_name AS fkcolumn_name,
                rc.update_rule,
                rc.delete_rule
            FROM information_schema.referential_constraints rc
            JOIN information_schema.key_column_usage fk
              ON fk.constraint_schema = rc.constraint_schema
              AND fk.constraint_name = rc.constraint_name
            JOIN information_schema.key_column_usage pk
              ON pk.constraint_schema = rc.unique_constraint_schema
              AND pk.constraint_name = rc.unique_constraint_name
              AND pk.ordinal_position = fk.position_in_unique_constraint
            ORDER BY fk.table_schema, fk.table_name, rc.constraint_name, fk.ordinal_position
        """)
        return [
            fk for fk in records_from_rows(MetadataCategory.FOREIGN_KEYS, rows)
            if fk.fk_table_key in wanted or fk.pk_table_key in wanted
        ]

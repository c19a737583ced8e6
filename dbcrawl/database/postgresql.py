"""PostgreSQL metadata retriever."""

from typing import List

from .base import InformationSchemaRetriever
from .models import SchemaKey, ObjectKey
from .records import SchemaRecord, IndexRecord


class PostgreSQLRetriever(InformationSchemaRetriever):
    """Retrieves PostgreSQL metadata.

    information_schema covers everything except indexes, which are read
    from pg_catalog.
    """

    EXCLUDED_SCHEMAS = {'information_schema', 'pg_catalog', 'pg_toast'}

    def get_schemas(self) -> List[SchemaRecord]:
        """Get user schemas, skipping per-session temporary schemas."""
        return [
            s for s in super().get_schemas()
            if not (s.schema or "").startswith(("pg_temp_", "pg_toast_temp_"))
        ]

    def get_indexes(self, tables: List[ObjectKey]) -> List[IndexRecord]:
        """Get index columns from pg_catalog."""
        wanted = set(tables)
        rows = self.execute("""
            SELECT
                current_database() AS table_catalog,
                n.nspname AS table_schema,
                t.relname AS table_name,
                i.relname AS index_name,
                ix.indisunique AS is_unique,
                k.ord AS ordinal_position,
                a.attname AS column_name,
                pg_get_indexdef(ix.indexrelid) AS index_definition
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            CROSS JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord)
            LEFT JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
            WHERE n.nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
            ORDER BY n.nspname, t.relname, i.relname, k.ord
        """)
        indexes = []
        for row in rows:
            key = ObjectKey(SchemaKey(row["TABLE_CATALOG"], row["TABLE_SCHEMA"]), row["TABLE_NAME"])
            if key in wanted:
                indexes.append(IndexRecord(
                    catalog=row["TABLE_CATALOG"],
                    schema=row["TABLE_SCHEMA"],
                    table=row["TABLE_NAME"],
                    name=row["INDEX_NAME"],
                    is_unique=bool(row["IS_UNIQUE"]),
                    ordinal_position=row["ORDINAL_POSITION"],
                    column=row["COLUMN_NAME"],
                    definition=row["INDEX_DEFINITION"],
                ))
        return indexes

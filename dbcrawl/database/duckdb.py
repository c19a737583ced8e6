"""DuckDB metadata retriever."""

import logging
from typing import List, Dict, Any

from .base import InformationSchemaRetriever
from .models import SchemaKey, ObjectKey
from .records import SchemaRecord, PrimaryKeyRecord, ForeignKeyRecord, IndexRecord

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


class DuckDBRetriever(InformationSchemaRetriever):
    """Retrieves DuckDB metadata.

    Schemas, tables and columns come from information_schema; keys and
    indexes come from the duckdb_constraints() and duckdb_indexes() table
    functions, which carry more detail.
    """

    EXCLUDED_SCHEMAS = {'information_schema', 'pg_catalog'}
    EXCLUDED_CATALOGS = {'system', 'temp'}

    def get_schemas(self) -> List[SchemaRecord]:
        """Get all user schemas, skipping DuckDB's internal catalogs."""
        return [
            s for s in super().get_schemas()
            if (s.catalog or "").lower() not in self.EXCLUDED_CATALOGS
        ]

    def _constraints(self, constraint_type: str) -> List[Dict[str, Any]]:
        return self.execute(
            "SELECT * FROM duckdb_constraints() WHERE constraint_type = ? ORDER BY schema_name, table_name",
            (constraint_type,),
        )

    def get_primary_keys(self, tables: List[ObjectKey]) -> List[PrimaryKeyRecord]:
        """Get primary key columns using duckdb_constraints()."""
        wanted = set(tables)
        keys = []
        for row in self._constraints("PRIMARY KEY"):
            key = ObjectKey(SchemaKey(row["DATABASE_NAME"], row["SCHEMA_NAME"]), row["TABLE_NAME"])
            if key not in wanted:
                continue
            for position, column in enumerate(_as_list(row.get("CONSTRAINT_COLUMN_NAMES")), start=1):
                keys.append(PrimaryKeyRecord(
                    catalog=row["DATABASE_NAME"],
                    schema=row["SCHEMA_NAME"],
                    table=row["TABLE_NAME"],
                    column=column,
                    key_sequence=position,
                    name=row.get("CONSTRAINT_NAME"),
                ))
        return keys

    def get_foreign_keys(self, tables: List[ObjectKey]) -> List[ForeignKeyRecord]:
        """Get foreign key column pairs using duckdb_constraints().

        Referenced tables are always in the same database and schema.
        """
        wanted = set(tables)
        keys = []
        for row in self._constraints("FOREIGN KEY"):
            catalog, schema = row["DATABASE_NAME"], row["SCHEMA_NAME"]
            referenced = row.get("REFERENCED_TABLE")
            if not referenced:
                logger.debug("No referenced table reported for %s", row.get("CONSTRAINT_TEXT"))
                continue
            fk_key = ObjectKey(SchemaKey(catalog, schema), row["TABLE_NAME"])
            pk_key = ObjectKey(SchemaKey(catalog, schema), referenced)
            if fk_key not in wanted and pk_key not in wanted:
                continue
            name = row.get("CONSTRAINT_NAME") or f"fk_{row['TABLE_NAME']}_{row['CONSTRAINT_INDEX']}"
            pairs = zip(
                _as_list(row.get("CONSTRAINT_COLUMN_NAMES")),
                _as_list(row.get("REFERENCED_COLUMN_NAMES")),
            )
            for position, (fk_column, pk_column) in enumerate(pairs, start=1):
                keys.append(ForeignKeyRecord(
                    name=name,
                    key_sequence=position,
                    pk_catalog=catalog,
                    pk_schema=schema,
                    pk_table=referenced,
                    pk_column=pk_column,
                    fk_catalog=catalog,
                    fk_schema=schema,
                    fk_table=row["TABLE_NAME"],
                    fk_column=fk_column,
                ))
        return keys

    def get_indexes(self, tables: List[ObjectKey]) -> List[IndexRecord]:
        """Get indexes using duckdb_indexes().

        DuckDB reports index expressions rather than columns, so only the
        index itself and its definition are recorded.
        """
        wanted = set(tables)
        rows = self.execute("SELECT * FROM duckdb_indexes() ORDER BY schema_name, table_name, index_name")
        indexes = []
        for row in rows:
            key = ObjectKey(SchemaKey(row["DATABASE_NAME"], row["SCHEMA_NAME"]), row["TABLE_NAME"])
            if key in wanted:
                indexes.append(IndexRecord(
                    catalog=row["DATABASE_NAME"],
                    schema=row["SCHEMA_NAME"],
                    table=row["TABLE_NAME"],
                    name=row["INDEX_NAME"],
                    is_unique=bool(row.get("IS_UNIQUE")),
                    definition=row.get("SQL"),
                ))
        return indexes

"""SQLite metadata retriever."""

import logging
from typing import List, Dict, Optional

from .base import MetadataRetriever, quote_identifier
from .models import SchemaKey, ObjectKey
from .records import (
    SchemaRecord,
    TableRecord,
    ColumnRecord,
    PrimaryKeyRecord,
    ForeignKeyRecord,
    IndexRecord,
)

logger = logging.getLogger(__name__)


class SQLiteRetriever(MetadataRetriever):
    """Retrieves SQLite metadata through PRAGMA statements and sqlite_master.

    SQLite has no catalog; every attached database is a schema ("main",
    plus any ATTACHed databases).
    """

    EXCLUDED_SCHEMAS = {'temp'}

    def _pragma(self, schema: Optional[str], pragma: str, argument: str) -> List[Dict]:
        prefix = f"{quote_identifier(schema)}." if schema else ""
        return self.execute(f"PRAGMA {prefix}{pragma}({quote_identifier(argument)})")

    def get_schemas(self) -> List[SchemaRecord]:
        """Get all attached databases as schemas."""
        rows = self.execute("PRAGMA database_list")
        return [
            SchemaRecord(None, row["NAME"])
            for row in rows
            if not self.is_excluded_schema(row["NAME"])
        ]

    def get_tables(self, schemas: List[SchemaKey]) -> List[TableRecord]:
        """Get all tables and views in the given schemas."""
        tables = []
        for schema in schemas:
            rows = self.execute(f"""
                SELECT name, type
                FROM {quote_identifier(schema.schema)}.sqlite_master
                WHERE type IN ('table', 'view')
                  AND name NOT LIKE 'sqlite_%'
                ORDER BY name
            """)
            for row in rows:
                tables.append(TableRecord(
                    catalog=None,
                    schema=schema.schema,
                    name=row["NAME"],
                    table_type=row["TYPE"].upper(),
                ))
        return tables

    def get_columns(self, tables: List[ObjectKey]) -> List[ColumnRecord]:
        """Get all columns for the given tables."""
        columns = []
        for table in tables:
            for row in self._pragma(table.schema.schema, "table_info", table.name):
                columns.append(ColumnRecord(
                    catalog=None,
                    schema=table.schema.schema,
                    table=table.name,
                    name=row["NAME"],
                    ordinal_position=row["CID"] + 1,
                    data_type=row["TYPE"] or "",
                    is_nullable=not row["NOTNULL"],
                    default_value=row["DFLT_VALUE"],
                ))
        return columns

    def get_primary_keys(self, tables: List[ObjectKey]) -> List[PrimaryKeyRecord]:
        """Get primary key columns for the given tables.

        SQLite does not name primary keys; `pk` in table_info is the
        position of the column within the key.
        """
        keys = []
        for table in tables:
            for row in self._pragma(table.schema.schema, "table_info", table.name):
                if row["PK"]:
                    keys.append(PrimaryKeyRecord(
                        catalog=None,
                        schema=table.schema.schema,
                        table=table.name,
                        column=row["NAME"],
                        key_sequence=row["PK"],
                    ))
        return keys

    def _primary_key_columns(self, schema: Optional[str], table: str) -> List[str]:
        rows = self._pragma(schema, "table_info", table)
        return [row["NAME"] for row in sorted((r for r in rows if r["PK"]), key=lambda r: r["PK"])]

    def _table_spellings(self, schema: Optional[str]) -> Dict[str, str]:
        rows = self.execute(
            f"SELECT name FROM {quote_identifier(schema)}.sqlite_master WHERE type = 'table'"
        )
        return {row["NAME"].lower(): row["NAME"] for row in rows}

    def _column_spellings(self, schema: Optional[str], table: str) -> Dict[str, str]:
        return {row["NAME"].lower(): row["NAME"] for row in self._pragma(schema, "table_info", table)}

    def get_foreign_keys(self, tables: List[ObjectKey]) -> List[ForeignKeyRecord]:
        """Get foreign key column pairs declared on the given tables.

        Foreign keys are unnamed in SQLite, so names are generated from the
        table name and the key id. A missing target column means the
        referenced table's primary key. SQLite reports referenced names as
        written in the constraint, so they are mapped back to the
        declared spelling of the table and column.
        """
        keys = []
        table_spellings: Dict[Optional[str], Dict[str, str]] = {}
        for table in tables:
            schema = table.schema.schema
            if schema not in table_spellings:
                table_spellings[schema] = self._table_spellings(schema)
            rows = self._pragma(schema, "foreign_key_list", table.name)
            referenced_pks: Dict[str, List[str]] = {}
            referenced_columns: Dict[str, Dict[str, str]] = {}
            own_columns = self._column_spellings(schema, table.name) if rows else {}
            for row in rows:
                ref_table = table_spellings[schema].get(row["TABLE"].lower(), row["TABLE"])
                target = row["TO"]
                if target is None:
                    if ref_table not in referenced_pks:
                        referenced_pks[ref_table] = self._primary_key_columns(schema, ref_table)
                    pk_columns = referenced_pks[ref_table]
                    if row["SEQ"] < len(pk_columns):
                        target = pk_columns[row["SEQ"]]
                    else:
                        logger.debug("No primary key column %d on %s", row["SEQ"], ref_table)
                        continue
                else:
                    if ref_table not in referenced_columns:
                        referenced_columns[ref_table] = self._column_spellings(schema, ref_table)
                    target = referenced_columns[ref_table].get(target.lower(), target)
                keys.append(ForeignKeyRecord(
                    name=f"fk_{table.name}_{row['ID']}",
                    key_sequence=row["SEQ"] + 1,
                    pk_catalog=None,
                    pk_schema=schema,
                    pk_table=ref_table,
                    pk_column=target,
                    fk_catalog=None,
                    fk_schema=schema,
                    fk_table=table.name,
                    fk_column=own_columns.get(row["FROM"].lower(), row["FROM"]),
                    update_rule=row["ON_UPDATE"],
                    delete_rule=row["ON_DELETE"],
                ))
        return keys

    def get_indexes(self, tables: List[ObjectKey]) -> List[IndexRecord]:
        """Get index columns for the given tables."""
        indexes = []
        for table in tables:
            schema = table.schema.schema
            definitions = {
                row["NAME"]: row["SQL"]
                for row in self.execute(
                    f"SELECT name, sql FROM {quote_identifier(schema)}.sqlite_master "
                    f"WHERE type = 'index' AND tbl_name = ?",
                    (table.name,),
                )
            }
            for index in self._pragma(schema, "index_list", table.name):
                name = index["NAME"]
                for column in self._pragma(schema, "index_info", name):
                    indexes.append(IndexRecord(
                        catalog=None,
                        schema=schema,
                        table=table.name,
                        name=name,
                        is_unique=bool(index["UNIQUE"]),
                        ordinal_position=column["SEQNO"] + 1,
                        column=column["NAME"],
                        definition=definitions.get(name),
                    ))
        return indexes

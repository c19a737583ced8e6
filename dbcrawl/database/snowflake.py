"""Snowflake metadata retriever."""

from typing import List

from .base import InformationSchemaRetriever
from .models import SchemaKey, ObjectKey
from .records import SchemaRecord, PrimaryKeyRecord, ForeignKeyRecord


class SnowflakeRetriever(InformationSchemaRetriever):
    """Retrieves Snowflake metadata for the connection's current database.

    Keys come from SHOW commands, which are cheaper than joining the
    information_schema constraint views. Snowflake has no indexes.
    """

    EXCLUDED_SCHEMAS = {'INFORMATION_SCHEMA'}

    def get_schemas(self) -> List[SchemaRecord]:
        """Get all schemas in the current database (excludes INFORMATION_SCHEMA)."""
        rows = self.execute("SHOW SCHEMAS IN DATABASE")
        return [
            SchemaRecord(row["DATABASE_NAME"], row["NAME"])
            for row in rows
            if not self.is_excluded_schema(row["NAME"])
        ]

    def get_primary_keys(self, tables: List[ObjectKey]) -> List[PrimaryKeyRecord]:
        """Get primary key columns using SHOW PRIMARY KEYS."""
        wanted = set(tables)
        keys = []
        for row in self.execute("SHOW PRIMARY KEYS IN DATABASE"):
            key = ObjectKey(SchemaKey(row["DATABASE_NAME"], row["SCHEMA_NAME"]), row["TABLE_NAME"])
            if key in wanted:
                keys.append(PrimaryKeyRecord(
                    catalog=row["DATABASE_NAME"],
                    schema=row["SCHEMA_NAME"],
                    table=row["TABLE_NAME"],
                    column=row["COLUMN_NAME"],
                    key_sequence=int(row["KEY_SEQUENCE"]),
                    name=row["CONSTRAINT_NAME"],
                ))
        return keys

    def get_foreign_keys(self, tables: List[ObjectKey]) -> List[ForeignKeyRecord]:
        """Get foreign key column pairs using SHOW IMPORTED KEYS."""
        wanted = set(tables)
        keys = []
        for row in self.execute("SHOW IMPORTED KEYS IN DATABASE"):
            record = ForeignKeyRecord(
                name=row["FK_NAME"],
                key_sequence=int(row["KEY_SEQUENCE"]),
                pk_catalog=row["PK_DATABASE_NAME"],
                pk_schema=row["PK_SCHEMA_NAME"],
                pk_table=row["PK_TABLE_NAME"],
                pk_column=row["PK_COLUMN_NAME"],
                fk_catalog=row["FK_DATABASE_NAME"],
                fk_schema=row["FK_SCHEMA_NAME"],
                fk_table=row["FK_TABLE_NAME"],
                fk_column=row["FK_COLUMN_NAME"],
                update_rule=row.get("UPDATE_RULE"),
                delete_rule=row.get("DELETE_RULE"),
            )
            if record.fk_table_key in wanted or record.pk_table_key in wanted:
                keys.append(record)
        return keys

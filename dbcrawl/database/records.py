"""Raw metadata records, one type per metadata category.

Retrievers and SQL resources both produce these records; the crawler filters
them and merges them into a `CatalogBuilder`. SQL result columns follow
`information_schema` naming and are matched case-insensitively.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Mapping, Tuple, Callable

from ..registry import MetadataCategory
from .models import SchemaKey, ObjectKey, ColumnKey


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Upper-case the keys of a result row."""
    return {str(k).upper(): v for k, v in row.items()}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "Y", "TRUE", "T", "1")
    return bool(value)


def _first(row: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if row.get(name) is not None:
            return row[name]
    return None


def normalize_table_type(table_type: Optional[str]) -> str:
    """Map vendor table types onto TABLE / VIEW / ... ('BASE TABLE' becomes 'TABLE')."""
    if not table_type:
        return "TABLE"
    value = str(table_type).strip().upper()
    if value in ("BASE TABLE", "BASE_TABLE"):
        return "TABLE"
    return value


@dataclass(frozen=True)
class SchemaRecord:
    catalog: Optional[str]
    schema: Optional[str]

    @property
    def key(self) -> SchemaKey:
        return SchemaKey(self.catalog, self.schema)


@dataclass(frozen=True)
class TableRecord:
    catalog: Optional[str]
    schema: Optional[str]
    name: str
    table_type: str = "TABLE"
    remarks: Optional[str] = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.name)


@dataclass(frozen=True)
class ViewRecord:
    catalog: Optional[str]
    schema: Optional[str]
    name: str
    definition: Optional[str] = None

    @property
    def table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.name)


@dataclass(frozen=True)
class ColumnRecord:
    catalog: Optional[str]
    schema: Optional[str]
    table: str
    name: str
    ordinal_position: int
    data_type: str
    is_nullable: bool = True
    default_value: Optional[str] = None
    remarks: Optional[str] = None

    @property
    def table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.table)

    @property
    def key(self) -> ColumnKey:
        return ColumnKey(self.table_key, self.name)


@dataclass(frozen=True)
class PrimaryKeyRecord:
    catalog: Optional[str]
    schema: Optional[str]
    table: str
    column: str
    key_sequence: int = 1
    name: Optional[str] = None

    @property
    def table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.table)


@dataclass(frozen=True)
class ForeignKeyRecord:
    name: str
    key_sequence: int
    pk_catalog: Optional[str]
    pk_schema: Optional[str]
    pk_table: str
    pk_column: str
    fk_catalog: Optional[str]
    fk_schema: Optional[str]
    fk_table: str
    fk_column: str
    update_rule: Optional[str] = None
    delete_rule: Optional[str] = None

    @property
    def pk_table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.pk_catalog, self.pk_schema), self.pk_table)

    @property
    def fk_table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.fk_catalog, self.fk_schema), self.fk_table)

    @property
    def pk_column_key(self) -> ColumnKey:
        return ColumnKey(self.pk_table_key, self.pk_column)

    @property
    def fk_column_key(self) -> ColumnKey:
        return ColumnKey(self.fk_table_key, self.fk_column)


@dataclass(frozen=True)
class IndexRecord:
    catalog: Optional[str]
    schema: Optional[str]
    table: str
    name: str
    is_unique: bool = False
    ordinal_position: int = 0
    column: Optional[str] = None
    definition: Optional[str] = None

    @property
    def table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.table)


@dataclass(frozen=True)
class TriggerRecord:
    catalog: Optional[str]
    schema: Optional[str]
    table: str
    name: str
    event_manipulation: Optional[str] = None
    action_timing: Optional[str] = None
    action_orientation: Optional[str] = None
    action_order: Optional[int] = None
    action_condition: Optional[str] = None
    action_statement: Optional[str] = None

    @property
    def table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.table)


@dataclass(frozen=True)
class TableConstraintRecord:
    catalog: Optional[str]
    schema: Optional[str]
    table: str
    name: str
    constraint_type: str
    definition: Optional[str] = None

    @property
    def table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.table)


@dataclass(frozen=True)
class AttributeRecord:
    """Extra attributes of a table, or of a column when `column` is set."""
    catalog: Optional[str]
    schema: Optional[str]
    table: str
    column: Optional[str] = None
    attributes: Tuple[Tuple[str, Any], ...] = field(default=())

    @property
    def table_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.table)


@dataclass(frozen=True)
class RoutineRecord:
    catalog: Optional[str]
    schema: Optional[str]
    name: str
    routine_type: str = "PROCEDURE"
    specific_name: Optional[str] = None
    return_type: Optional[str] = None
    definition: Optional[str] = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.name)


@dataclass(frozen=True)
class RoutineColumnRecord:
    catalog: Optional[str]
    schema: Optional[str]
    routine: str
    name: str
    ordinal_position: int = 0
    column_type: str = "IN"
    data_type: Optional[str] = None
    specific_name: Optional[str] = None

    @property
    def routine_key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.routine)


@dataclass(frozen=True)
class SequenceRecord:
    catalog: Optional[str]
    schema: Optional[str]
    name: str
    start_value: Optional[int] = None
    increment: Optional[int] = None
    minimum_value: Optional[int] = None
    maximum_value: Optional[int] = None
    cycle: bool = False

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(SchemaKey(self.catalog, self.schema), self.name)


# Row converters for SQL resources. Column names are information_schema style.

def _schema_rows(rows: List[Dict[str, Any]]) -> List[SchemaRecord]:
    return [
        SchemaRecord(_text(_first(r, "CATALOG_NAME", "TABLE_CATALOG")), _text(_first(r, "SCHEMA_NAME", "TABLE_SCHEMA")))
        for r in rows
    ]


def _table_rows(rows):
    return [
        TableRecord(
            catalog=_text(r.get("TABLE_CATALOG")),
            schema=_text(r.get("TABLE_SCHEMA")),
            name=str(r["TABLE_NAME"]),
            table_type=normalize_table_type(r.get("TABLE_TYPE")),
            remarks=_text(_first(r, "REMARKS", "COMMENT")),
        )
        for r in rows
    ]


def _view_rows(rows):
    return [
        ViewRecord(
            catalog=_text(r.get("TABLE_CATALOG")),
            schema=_text(r.get("TABLE_SCHEMA")),
            name=str(r["TABLE_NAME"]),
            definition=_text(r.get("VIEW_DEFINITION")),
        )
        for r in rows
    ]


def _column_rows(rows):
    return [
        ColumnRecord(
            catalog=_text(r.get("TABLE_CATALOG")),
            schema=_text(r.get("TABLE_SCHEMA")),
            table=str(r["TABLE_NAME"]),
            name=str(r["COLUMN_NAME"]),
            ordinal_position=_int(r.get("ORDINAL_POSITION")) or 0,
            data_type=_text(_first(r, "DATA_TYPE", "TYPE_NAME")) or "",
            is_nullable=_bool(r.get("IS_NULLABLE", True)),
            default_value=_text(r.get("COLUMN_DEFAULT")),
            remarks=_text(_first(r, "REMARKS", "COMMENT")),
        )
        for r in rows
    ]


def _primary_key_rows(rows):
    return [
        PrimaryKeyRecord(
            catalog=_text(r.get("TABLE_CATALOG")),
            schema=_text(r.get("TABLE_SCHEMA")),
            table=str(r["TABLE_NAME"]),
            column=str(r["COLUMN_NAME"]),
            key_sequence=_int(_first(r, "KEY_SEQ", "ORDINAL_POSITION")) or 1,
            name=_text(_first(r, "PK_NAME", "CONSTRAINT_NAME")),
        )
        for r in rows
    ]


def _foreign_key_rows(rows):
    return [
        ForeignKeyRecord(
            name=str(_first(r, "FK_NAME", "CONSTRAINT_NAME")),
            key_sequence=_int(_first(r, "KEY_SEQ", "ORDINAL_POSITION")) or 1,
            pk_catalog=_text(r.get("PKTABLE_CAT")),
            pk_schema=_text(r.get("PKTABLE_SCHEM")),
            pk_table=str(r["PKTABLE_NAME"]),
            pk_column=str(r["PKCOLUMN_NAME"]),
            fk_catalog=_text(r.get("FKTABLE_CAT")),
            fk_schema=_text(r.get("FKTABLE_SCHEM")),
            fk_table=str(r["FKTABLE_NAME"]),
            fk_column=str(r["FKCOLUMN_NAME"]),
            update_rule=_text(r.get("UPDATE_RULE")),
            delete_rule=_text(r.get("DELETE_RULE")),
        )
        for r in rows
    ]


def _index_rows(rows):
    return [
        IndexRecord(
            catalog=_text(r.get("TABLE_CATALOG")),
            schema=_text(r.get("TABLE_SCHEMA")),
            table=str(r["TABLE_NAME"]),
            name=str(r["INDEX_NAME"]),
            is_unique=_bool(r.get("IS_UNIQUE", False)),
            ordinal_position=_int(r.get("ORDINAL_POSITION")) or 0,
            column=_text(r.get("COLUMN_NAME")),
            definition=_text(_first(r, "INDEX_DEFINITION", "DEFINITION")),
        )
        for r in rows
    ]


def _trigger_rows(rows):
    return [
        TriggerRecord(
            catalog=_text(r.get("EVENT_OBJECT_CATALOG")),
            schema=_text(r.get("EVENT_OBJECT_SCHEMA")),
            table=str(r["EVENT_OBJECT_TABLE"]),
            name=str(r["TRIGGER_NAME"]),
            event_manipulation=_text(r.get("EVENT_MANIPULATION")),
            action_timing=_text(_first(r, "ACTION_TIMING", "CONDITION_TIMING")),
            action_orientation=_text(r.get("ACTION_ORIENTATION")),
            action_order=_int(r.get("ACTION_ORDER")),
            action_condition=_text(r.get("ACTION_CONDITION")),
            action_statement=_text(r.get("ACTION_STATEMENT")),
        )
        for r in rows
    ]


def _constraint_rows(rows):
    return [
        TableConstraintRecord(
            catalog=_text(r.get("TABLE_CATALOG")),
            schema=_text(r.get("TABLE_SCHEMA")),
            table=str(r["TABLE_NAME"]),
            name=str(r["CONSTRAINT_NAME"]),
            constraint_type=_text(r.get("CONSTRAINT_TYPE")) or "UNKNOWN",
            definition=_text(_first(r, "CHECK_CLAUSE", "CONSTRAINT_DEFINITION")),
        )
        for r in rows
    ]


_ATTRIBUTE_KEY_COLUMNS = ("TABLE_CATALOG", "TABLE_SCHEMA", "TABLE_NAME", "COLUMN_NAME")


def _attribute_rows(rows, with_column: bool):
    records = []
    for r in rows:
        attributes = tuple(
            (k, v) for k, v in r.items() if k not in _ATTRIBUTE_KEY_COLUMNS
        )
        records.append(AttributeRecord(
            catalog=_text(r.get("TABLE_CATALOG")),
            schema=_text(r.get("TABLE_SCHEMA")),
            table=str(r["TABLE_NAME"]),
            column=str(r["COLUMN_NAME"]) if with_column else None,
            attributes=attributes,
        ))
    return records


def _routine_rows(rows):
    return [
        RoutineRecord(
            catalog=_text(r.get("ROUTINE_CATALOG")),
            schema=_text(r.get("ROUTINE_SCHEMA")),
            name=str(r["ROUTINE_NAME"]),
            routine_type=_text(r.get("ROUTINE_TYPE")) or "PROCEDURE",
            specific_name=_text(r.get("SPECIFIC_NAME")),
            return_type=_text(_first(r, "DATA_TYPE", "RETURN_TYPE")),
            definition=_text(r.get("ROUTINE_DEFINITION")),
        )
        for r in rows
    ]


def _routine_column_rows(rows):
    records = []
    for r in rows:
        ordinal = _int(r.get("ORDINAL_POSITION")) or 0
        name = _text(r.get("PARAMETER_NAME")) or f"${ordinal}"
        records.append(RoutineColumnRecord(
            catalog=_text(_first(r, "ROUTINE_CATALOG", "SPECIFIC_CATALOG")),
            schema=_text(_first(r, "ROUTINE_SCHEMA", "SPECIFIC_SCHEMA")),
            routine=str(_first(r, "ROUTINE_NAME", "SPECIFIC_NAME")),
            name=name,
            ordinal_position=ordinal,
            column_type=_text(_first(r, "PARAMETER_MODE", "COLUMN_TYPE")) or "IN",
            data_type=_text(r.get("DATA_TYPE")),
            specific_name=_text(r.get("SPECIFIC_NAME")),
        ))
    return records


def _sequence_rows(rows):
    return [
        SequenceRecord(
            catalog=_text(r.get("SEQUENCE_CATALOG")),
            schema=_text(r.get("SEQUENCE_SCHEMA")),
            name=str(r["SEQUENCE_NAME"]),
            start_value=_int(r.get("START_VALUE")),
            increment=_int(r.get("INCREMENT")),
            minimum_value=_int(r.get("MINIMUM_VALUE")),
            maximum_value=_int(r.get("MAXIMUM_VALUE")),
            cycle=_bool(r.get("CYCLE_OPTION", False)),
        )
        for r in rows
    ]


ROW_CONVERTERS: Dict[MetadataCategory, Callable[[List[Dict[str, Any]]], list]] = {
    MetadataCategory.SCHEMATA: _schema_rows,
    MetadataCategory.TABLES: _table_rows,
    MetadataCategory.VIEWS: _view_rows,
    MetadataCategory.TABLE_COLUMNS: _column_rows,
    MetadataCategory.PRIMARY_KEYS: _primary_key_rows,
    MetadataCategory.FOREIGN_KEYS: _foreign_key_rows,
    MetadataCategory.INDEXES: _index_rows,
    MetadataCategory.TRIGGERS: _trigger_rows,
    MetadataCategory.TABLE_CONSTRAINTS: _constraint_rows,
    MetadataCategory.ADDITIONAL_TABLE_ATTRIBUTES: lambda rows: _attribute_rows(rows, with_column=False),
    MetadataCategory.ADDITIONAL_COLUMN_ATTRIBUTES: lambda rows: _attribute_rows(rows, with_column=True),
    MetadataCategory.ROUTINES: _routine_rows,
    MetadataCategory.ROUTINE_COLUMNS: _routine_column_rows,
    MetadataCategory.SEQUENCES: _sequence_rows,
}


def records_from_rows(category: MetadataCategory, rows: List[Mapping[str, Any]]) -> list:
    """Convert query result rows into records for a category.

    Raises:
        KeyError: If a row lacks a column the category requires
    """
    return ROW_CONVERTERS[category]([normalize_row(r) for r in rows])

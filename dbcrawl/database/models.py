"""Catalog data models produced by a crawl.

Every model is a frozen dataclass holding tuples, so a finished catalog can be
shared freely. Cross-references (foreign keys, index columns, primary key
columns) are stored as keys and resolved through the owning `Catalog`.
"""

from types import MappingProxyType
from typing import Optional, List, Tuple, Dict, Any, Mapping, Iterator, Union
from dataclasses import dataclass, field
from datetime import datetime


def _empty_attributes() -> Mapping[str, Any]:
    return MappingProxyType({})


def _join(*parts: Optional[str]) -> str:
    return ".".join(p for p in parts if p)


@dataclass(frozen=True)
class SchemaKey:
    """Identifies a schema by its catalog and schema name (either may be None)."""
    catalog: Optional[str] = None
    schema: Optional[str] = None

    @property
    def full_name(self) -> str:
        return _join(self.catalog, self.schema)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class ObjectKey:
    """Identifies a table, routine or sequence within a schema."""
    schema: SchemaKey
    name: str

    @property
    def full_name(self) -> str:
        return _join(self.schema.catalog, self.schema.schema, self.name)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class ColumnKey:
    """Identifies a column of a table or routine."""
    parent: ObjectKey
    name: str

    @property
    def full_name(self) -> str:
        return _join(self.parent.full_name, self.name)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class ProductInfo:
    """Database product and driver reported at connection time."""
    product_name: str = "<unknown>"
    product_version: str = ""
    driver_name: str = "<unknown>"
    driver_version: str = ""


@dataclass(frozen=True)
class Column:
    """Represents a table column."""
    key: ColumnKey
    ordinal_position: int
    data_type: str
    is_nullable: bool = True
    default_value: Optional[str] = None
    is_part_of_primary_key: bool = False
    is_part_of_foreign_key: bool = False
    remarks: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes, hash=False)

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def table_key(self) -> ObjectKey:
        return self.key.parent

    @property
    def full_name(self) -> str:
        return self.key.full_name


@dataclass(frozen=True)
class PrimaryKey:
    """Primary key of a table; columns in key sequence."""
    name: Optional[str]
    columns: Tuple[ColumnKey, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


@dataclass(frozen=True)
class ForeignKeyColumnReference:
    """One column pair of a foreign key."""
    key_sequence: int
    foreign_key_column: ColumnKey
    primary_key_column: ColumnKey


@dataclass(frozen=True)
class ForeignKey:
    """A foreign key edge between two tables.

    The edge does not own either table; both sides are keys that resolve
    through the catalog.
    """
    name: str
    column_references: Tuple[ForeignKeyColumnReference, ...]
    update_rule: Optional[str] = None
    delete_rule: Optional[str] = None

    @property
    def foreign_key_table(self) -> ObjectKey:
        return self.column_references[0].foreign_key_column.parent

    @property
    def primary_key_table(self) -> ObjectKey:
        return self.column_references[0].primary_key_column.parent


@dataclass(frozen=True)
class Index:
    """Represents a table index."""
    name: str
    table_key: ObjectKey
    is_unique: bool = False
    columns: Tuple[ColumnKey, ...] = ()
    definition: Optional[str] = None


@dataclass(frozen=True)
class Trigger:
    """Represents a table trigger."""
    name: str
    table_key: ObjectKey
    event_manipulation: Optional[str] = None
    action_timing: Optional[str] = None
    action_orientation: Optional[str] = None
    action_order: Optional[int] = None
    action_condition: Optional[str] = None
    action_statement: Optional[str] = None


@dataclass(frozen=True)
class TableConstraint:
    """A named table constraint (check, unique, ...)."""
    name: str
    constraint_type: str
    definition: Optional[str] = None


@dataclass(frozen=True)
class Table:
    """Represents a database table or view."""
    key: ObjectKey
    table_type: str = "TABLE"
    remarks: Optional[str] = None
    definition: Optional[str] = None
    columns: Tuple[Column, ...] = ()
    primary_key: Optional[PrimaryKey] = None
    foreign_keys: Tuple[ForeignKey, ...] = ()
    indexes: Tuple[Index, ...] = ()
    triggers: Tuple[Trigger, ...] = ()
    constraints: Tuple[TableConstraint, ...] = ()
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes, hash=False)

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def schema(self) -> SchemaKey:
        return self.key.schema

    @property
    def full_name(self) -> str:
        return self.key.full_name

    @property
    def is_view(self) -> bool:
        return "VIEW" in self.table_type.upper()

    def get_column(self, name: str) -> Optional[Column]:
        """Find a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def get_imported_foreign_keys(self) -> List[ForeignKey]:
        """Foreign keys where this table holds the referencing columns."""
        return [fk for fk in self.foreign_keys if fk.foreign_key_table == self.key]

    def get_exported_foreign_keys(self) -> List[ForeignKey]:
        """Foreign keys where this table is referenced."""
        return [fk for fk in self.foreign_keys if fk.primary_key_table == self.key]


@dataclass(frozen=True)
class RoutineColumn:
    """A parameter or result column of a routine."""
    key: ColumnKey
    ordinal_position: int
    column_type: str = "IN"
    data_type: Optional[str] = None

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def full_name(self) -> str:
        return self.key.full_name


@dataclass(frozen=True)
class Routine:
    """Represents a stored procedure or function."""
    key: ObjectKey
    routine_type: str = "PROCEDURE"
    specific_name: Optional[str] = None
    return_type: Optional[str] = None
    definition: Optional[str] = None
    columns: Tuple[RoutineColumn, ...] = ()

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def full_name(self) -> str:
        return self.key.full_name


@dataclass(frozen=True)
class Sequence:
    """Represents a database sequence."""
    key: ObjectKey
    start_value: Optional[int] = None
    increment: Optional[int] = None
    minimum_value: Optional[int] = None
    maximum_value: Optional[int] = None
    cycle: bool = False

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def full_name(self) -> str:
        return self.key.full_name


@dataclass(frozen=True)
class Schema:
    """Represents a database schema and the objects it owns."""
    key: SchemaKey
    tables: Tuple[Table, ...] = ()
    routines: Tuple[Routine, ...] = ()
    sequences: Tuple[Sequence, ...] = ()

    @property
    def name(self) -> str:
        return self.key.full_name


@dataclass(frozen=True)
class Catalog:
    """Root of the crawled object graph."""
    name: str
    schemas: Tuple[Schema, ...] = ()
    product_info: ProductInfo = field(default_factory=ProductInfo)
    crawl_timestamp: datetime = field(default_factory=datetime.now, compare=False)
    _tables: Dict[ObjectKey, Table] = field(init=False, repr=False, compare=False, hash=False)
    _columns: Dict[ColumnKey, Column] = field(init=False, repr=False, compare=False, hash=False)

    def __post_init__(self):
        tables = {t.key: t for s in self.schemas for t in s.tables}
        columns = {c.key: c for t in tables.values() for c in t.columns}
        object.__setattr__(self, "_tables", tables)
        object.__setattr__(self, "_columns", columns)

    def get_all_tables(self) -> List[Table]:
        """Get all tables across all schemas."""
        tables = []
        for schema in self.schemas:
            tables.extend(schema.tables)
        return tables

    def get_all_routines(self) -> List[Routine]:
        routines = []
        for schema in self.schemas:
            routines.extend(schema.routines)
        return routines

    def get_all_sequences(self) -> List[Sequence]:
        sequences = []
        for schema in self.schemas:
            sequences.extend(schema.sequences)
        return sequences

    def get_foreign_keys(self) -> List[ForeignKey]:
        """All distinct foreign keys in the catalog, ordered by name."""
        seen: Dict[Tuple[ObjectKey, str], ForeignKey] = {}
        for table in self.get_all_tables():
            for fk in table.foreign_keys:
                seen.setdefault((fk.foreign_key_table, fk.name), fk)
        return sorted(seen.values(), key=lambda fk: (fk.foreign_key_table.full_name.lower(), fk.name.lower()))

    def iter_columns(self) -> Iterator[Column]:
        for table in self.get_all_tables():
            yield from table.columns

    def lookup_schema(self, full_name: str) -> Optional[Schema]:
        for schema in self.schemas:
            if schema.key.full_name == full_name:
                return schema
        return None

    def lookup_table(self, key: Union[ObjectKey, str]) -> Optional[Table]:
        """Find a table by key or by full name."""
        if isinstance(key, ObjectKey):
            return self._tables.get(key)
        for table in self._tables.values():
            if table.full_name == key:
                return table
        return None

    def lookup_column(self, key: ColumnKey) -> Optional[Column]:
        return self._columns.get(key)

    def get_table_by_name(self, table_name: str) -> Optional[Table]:
        """Find a table by its unqualified name."""
        for schema in self.schemas:
            for table in schema.tables:
                if table.name == table_name:
                    return table
        return None

"""Mutable staging area that turns retrieved records into an immutable catalog.

Records are indexed by key as they arrive. Nothing references another model
object until `build`, which resolves foreign keys, applies the final
filters and sort order, and freezes the result into a `Catalog`.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Optional, List, Dict, Any, Tuple, Iterable

from ..errors import MergeInconsistency
from ..options import CrawlOptions
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
from .records import (
    SchemaRecord,
    TableRecord,
    ViewRecord,
    ColumnRecord,
    PrimaryKeyRecord,
    ForeignKeyRecord,
    IndexRecord,
    TriggerRecord,
    TableConstraintRecord,
    AttributeRecord,
    RoutineRecord,
    RoutineColumnRecord,
    SequenceRecord,
)

logger = logging.getLogger(__name__)


def _name_key(name: str) -> str:
    return name.lower()


@dataclass
class _TableDraft:
    record: TableRecord
    definition: Optional[str] = None
    columns: Dict[str, ColumnRecord] = field(default_factory=dict)
    filtered_columns: int = 0
    column_attributes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    primary_key: Dict[str, PrimaryKeyRecord] = field(default_factory=dict)
    indexes: Dict[str, Dict[int, IndexRecord]] = field(default_factory=dict)
    triggers: Dict[str, TriggerRecord] = field(default_factory=dict)
    constraints: Dict[str, TableConstraintRecord] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _RoutineDraft:
    record: RoutineRecord
    columns: Dict[str, RoutineColumnRecord] = field(default_factory=dict)


class CatalogBuilder:
    """Collects records during a crawl.

    Adding a record that is already present is a no-op, so merging the
    same batch twice gives the same catalog. Child records whose parent
    table or routine is unknown are dropped; those parents were filtered out.
    """

    def __init__(self):
        self._schemas: Dict[SchemaKey, SchemaRecord] = {}
        self._tables: Dict[ObjectKey, _TableDraft] = {}
        self._foreign_keys: Dict[Tuple[ObjectKey, str], Dict[int, ForeignKeyRecord]] = {}
        self._routines: Dict[ObjectKey, _RoutineDraft] = {}
        self._sequences: Dict[ObjectKey, SequenceRecord] = {}

    # Schemas and tables

    def add_schema(self, record: SchemaRecord):
        self._schemas.setdefault(record.key, record)

    def has_schema(self, key: SchemaKey) -> bool:
        return key in self._schemas

    @property
    def schema_keys(self) -> List[SchemaKey]:
        return list(self._schemas)

    def add_table(self, record: TableRecord):
        if record.key.schema not in self._schemas:
            self._schemas[record.key.schema] = SchemaRecord(record.catalog, record.schema)
        self._tables.setdefault(record.key, _TableDraft(record))

    def has_table(self, key: ObjectKey) -> bool:
        return key in self._tables

    @property
    def table_keys(self) -> List[ObjectKey]:
        return list(self._tables)

    def remove_table(self, key: ObjectKey):
        self._tables.pop(key, None)

    def _draft(self, key: ObjectKey) -> Optional[_TableDraft]:
        return self._tables.get(key)

    def add_view_definition(self, record: ViewRecord) -> bool:
        draft = self._draft(record.table_key)
        if draft is None:
            return False
        if draft.definition is None:
            draft.definition = record.definition
        return True

    # Per-table records

    def add_column(self, record: ColumnRecord) -> bool:
        draft = self._draft(record.table_key)
        if draft is None:
            return False
        draft.columns.setdefault(record.name, record)
        return True

    def note_filtered_column(self, table_key: ObjectKey):
        """Record that a column of this table was excluded by an inclusion rule."""
        draft = self._draft(table_key)
        if draft is not None:
            draft.filtered_columns += 1

    def add_primary_key_column(self, record: PrimaryKeyRecord) -> bool:
        draft = self._draft(record.table_key)
        if draft is None:
            return False
        draft.primary_key.setdefault(record.column, record)
        return True

    def add_foreign_key_column(self, record: ForeignKeyRecord):
        """Stage one column pair of a foreign key; resolved in `build`."""
        columns = self._foreign_keys.setdefault((record.fk_table_key, record.name), {})
        columns.setdefault(record.key_sequence, record)

    def add_index_column(self, record: IndexRecord) -> bool:
        draft = self._draft(record.table_key)
        if draft is None:
            return False
        columns = draft.indexes.setdefault(record.name, {})
        columns.setdefault(record.ordinal_position, record)
        return True

    def add_trigger(self, record: TriggerRecord) -> bool:
        draft = self._draft(record.table_key)
        if draft is None:
            return False
        draft.triggers.setdefault(record.name, record)
        return True

    def add_constraint(self, record: TableConstraintRecord) -> bool:
        draft = self._draft(record.table_key)
        if draft is None:
            return False
        draft.constraints.setdefault(record.name, record)
        return True

    def add_attributes(self, record: AttributeRecord) -> bool:
        """Add extra attributes to a table, or to one of its columns."""
        draft = self._draft(record.table_key)
        if draft is None:
            return False
        if record.column is None:
            target = draft.attributes
        else:
            if record.column not in draft.columns:
                return False
            target = draft.column_attributes.setdefault(record.column, {})
        for name, value in record.attributes:
            target.setdefault(name, value)
        return True

    # Routines and sequences

    def add_routine(self, record: RoutineRecord):
        if record.key.schema not in self._schemas:
            return False
        self._routines.setdefault(record.key, _RoutineDraft(record))
        return True

    def add_routine_column(self, record: RoutineColumnRecord) -> bool:
        draft = self._routines.get(record.routine_key)
        if draft is None:
            return False
        draft.columns.setdefault(record.name, record)
        return True

    def add_sequence(self, record: SequenceRecord) -> bool:
        if record.key.schema not in self._schemas:
            return False
        self._sequences.setdefault(record.key, record)
        return True

    # Finishing

    def _apply_column_filters(self, options: CrawlOptions):
        if options.grep_columns is not None and not options.include_tables_without_matching_columns:
            for key, draft in list(self._tables.items()):
                names = [ColumnKey(key, name).full_name for name in draft.columns]
                if not options.grep_columns.matches_any(names):
                    logger.debug("Table %s has no columns matching %s", key, options.grep_columns)
                    del self._tables[key]

        if not options.include_tables_without_matching_columns:
            for key, draft in list(self._tables.items()):
                if not draft.columns and draft.filtered_columns:
                    logger.debug("Dropping table %s, all of its columns were excluded", key)
                    del self._tables[key]

        if options.grep_routine_columns is not None:
            for key, draft in list(self._routines.items()):
                names = [ColumnKey(key, name).full_name for name in draft.columns]
                if not options.grep_routine_columns.matches_any(names):
                    del self._routines[key]

    def _resolve_foreign_keys(self) -> Tuple[Dict[ObjectKey, List[ForeignKey]], List[MergeInconsistency]]:
        by_table: Dict[ObjectKey, List[ForeignKey]] = {}
        problems: List[MergeInconsistency] = []
        for (fk_table, name), pairs in self._foreign_keys.items():
            references = []
            missing = None
            for sequence in sorted(pairs):
                pair = pairs[sequence]
                for side in (pair.fk_column_key, pair.pk_column_key):
                    draft = self._draft(side.parent)
                    if draft is None:
                        missing = f"table {side.parent}"
                    elif side.name not in draft.columns:
                        missing = f"column {side}"
                if missing:
                    break
                references.append(ForeignKeyColumnReference(
                    key_sequence=sequence,
                    foreign_key_column=pair.fk_column_key,
                    primary_key_column=pair.pk_column_key,
                ))
            if missing:
                problems.append(MergeInconsistency(
                    f"Foreign key {name} on {fk_table} references {missing}, which is not in the catalog",
                    details={"foreign_key": name, "table": str(fk_table)},
                ))
                continue
            first = pairs[min(pairs)]
            fk = ForeignKey(
                name=name,
                column_references=tuple(references),
                update_rule=first.update_rule,
                delete_rule=first.delete_rule,
            )
            by_table.setdefault(fk.foreign_key_table, []).append(fk)
            if fk.primary_key_table != fk.foreign_key_table:
                by_table.setdefault(fk.primary_key_table, []).append(fk)
        return by_table, problems

    def _build_table(
        self,
        draft: _TableDraft,
        foreign_keys: List[ForeignKey],
        options: CrawlOptions,
    ) -> Table:
        key = draft.record.key
        pk_columns = set(draft.primary_key)
        fk_columns = {
            ref.foreign_key_column.name
            for fk in foreign_keys
            for ref in fk.column_references
            if ref.foreign_key_column.parent == key
        }

        records = sorted(draft.columns.values(), key=lambda c: c.ordinal_position)
        if options.sort_columns:
            records = sorted(records, key=lambda c: _name_key(c.name))
        columns = tuple(
            Column(
                key=record.key,
                ordinal_position=record.ordinal_position,
                data_type=record.data_type,
                is_nullable=record.is_nullable,
                default_value=record.default_value,
                is_part_of_primary_key=record.name in pk_columns,
                is_part_of_foreign_key=record.name in fk_columns,
                remarks=record.remarks,
                attributes=MappingProxyType(dict(draft.column_attributes.get(record.name, {}))),
            )
            for record in records
        )

        primary_key = None
        pk_records = sorted(
            (r for r in draft.primary_key.values() if r.column in draft.columns),
            key=lambda r: r.key_sequence,
        )
        if pk_records:
            primary_key = PrimaryKey(
                name=pk_records[0].name,
                columns=tuple(ColumnKey(key, r.column) for r in pk_records),
            )

        indexes = []
        for name in sorted(draft.indexes, key=_name_key):
            parts = draft.indexes[name]
            ordered = [parts[i] for i in sorted(parts)]
            indexes.append(Index(
                name=name,
                table_key=key,
                is_unique=ordered[0].is_unique,
                columns=tuple(ColumnKey(key, p.column) for p in ordered if p.column and p.column in draft.columns),
                definition=ordered[0].definition,
            ))

        triggers = tuple(
            Trigger(
                name=t.name,
                table_key=key,
                event_manipulation=t.event_manipulation,
                action_timing=t.action_timing,
                action_orientation=t.action_orientation,
                action_order=t.action_order,
                action_condition=t.action_condition,
                action_statement=t.action_statement,
            )
            for t in sorted(draft.triggers.values(), key=lambda t: _name_key(t.name))
        )

        constraints = tuple(
            TableConstraint(c.name, c.constraint_type, c.definition)
            for c in sorted(draft.constraints.values(), key=lambda c: _name_key(c.name))
        )

        return Table(
            key=key,
            table_type=draft.record.table_type,
            remarks=draft.record.remarks,
            definition=draft.definition,
            columns=columns,
            primary_key=primary_key,
            foreign_keys=tuple(sorted(foreign_keys, key=lambda fk: _name_key(fk.name))),
            indexes=tuple(indexes),
            triggers=triggers,
            constraints=constraints,
            attributes=MappingProxyType(dict(draft.attributes)),
        )

    def _build_routine(self, draft: _RoutineDraft, options: CrawlOptions) -> Routine:
        record = draft.record
        records = sorted(draft.columns.values(), key=lambda c: c.ordinal_position)
        if options.sort_routine_columns:
            records = sorted(records, key=lambda c: _name_key(c.name))
        return Routine(
            key=record.key,
            routine_type=record.routine_type,
            specific_name=record.specific_name,
            return_type=record.return_type,
            definition=record.definition,
            columns=tuple(
                RoutineColumn(
                    key=ColumnKey(record.key, c.name),
                    ordinal_position=c.ordinal_position,
                    column_type=c.column_type,
                    data_type=c.data_type,
                )
                for c in records
            ),
        )

    def build(
        self,
        name: str,
        options: Optional[CrawlOptions] = None,
        product_info: Optional[ProductInfo] = None,
        crawl_timestamp: Optional[datetime] = None,
    ) -> Tuple[Catalog, List[MergeInconsistency]]:
        """Freeze the collected records into a catalog.

        Applies grep rules, drops tables whose columns were all excluded,
        resolves foreign keys and sorts every collection.

        Returns:
            The catalog, and one `MergeInconsistency` per foreign key that
            could not be resolved (those keys are left out of the catalog)
        """
        options = options or CrawlOptions()
        self._apply_column_filters(options)
        foreign_keys, problems = self._resolve_foreign_keys()
        for problem in problems:
            logger.warning(problem.message)

        def by_full_name(key: ObjectKey):
            return key.full_name.lower()

        schemas = []
        for schema_key in sorted(self._schemas, key=lambda k: k.full_name.lower()):
            tables = tuple(
                self._build_table(self._tables[k], foreign_keys.get(k, []), options)
                for k in sorted((k for k in self._tables if k.schema == schema_key), key=by_full_name)
            )
            routines = tuple(
                self._build_routine(self._routines[k], options)
                for k in sorted((k for k in self._routines if k.schema == schema_key), key=by_full_name)
            )
            sequences = tuple(
                Sequence(
                    key=r.key,
                    start_value=r.start_value,
                    increment=r.increment,
                    minimum_value=r.minimum_value,
                    maximum_value=r.maximum_value,
                    cycle=r.cycle,
                )
                for r in sorted(
                    (r for k, r in self._sequences.items() if k.schema == schema_key),
                    key=lambda r: by_full_name(r.key),
                )
            )
            schemas.append(Schema(key=schema_key, tables=tables, routines=routines, sequences=sequences))

        catalog = Catalog(
            name=name,
            schemas=tuple(schemas),
            product_info=product_info or ProductInfo(),
            crawl_timestamp=crawl_timestamp or datetime.now(),
        )
        return catalog, problems


def merge_records(builder: CatalogBuilder, records: Iterable[Any]):
    """Add a batch of records of any type to the builder."""
    for record in records:
        _MERGERS[type(record)](builder, record)


_MERGERS = {
    SchemaRecord: CatalogBuilder.add_schema,
    TableRecord: CatalogBuilder.add_table,
    ViewRecord: CatalogBuilder.add_view_definition,
    ColumnRecord: CatalogBuilder.add_column,
    PrimaryKeyRecord: CatalogBuilder.add_primary_key_column,
    ForeignKeyRecord: CatalogBuilder.add_foreign_key_column,
    IndexRecord: CatalogBuilder.add_index_column,
    TriggerRecord: CatalogBuilder.add_trigger,
    TableConstraintRecord: CatalogBuilder.add_constraint,
    AttributeRecord: CatalogBuilder.add_attributes,
    RoutineRecord: CatalogBuilder.add_routine,
    RoutineColumnRecord: CatalogBuilder.add_routine_column,
    SequenceRecord: CatalogBuilder.add_sequence,
}

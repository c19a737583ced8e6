"""Options that control what a crawl retrieves and how the catalog is shaped."""

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from .rules import InclusionRule, GrepRule

DEFAULT_TABLE_TYPES: Tuple[str, ...] = ("TABLE", "VIEW")


def _normalize_table_types(table_types) -> Optional[Tuple[str, ...]]:
    if table_types is None:
        return None
    if isinstance(table_types, str):
        table_types = table_types.split(",")
    normalized = []
    for table_type in table_types:
        value = table_type.strip().upper()
        if value == "BASE TABLE":
            value = "TABLE"
        if value and value not in normalized:
            normalized.append(value)
    return tuple(normalized)


@dataclass(frozen=True)
class CrawlOptions:
    """Crawl options.

    Attributes:
        schema_inclusion_rule: Schemas to crawl, matched on the schema full name
        table_inclusion_rule: Tables to keep, matched on full or bare table name
        column_inclusion_rule: Columns to keep, matched on full, table-qualified
            or bare column name
        routine_inclusion_rule: Routines to keep, matched like tables
        routine_column_inclusion_rule: Routine columns to keep
        grep_columns: Keep only tables with a column whose full name matches
        grep_routine_columns: Keep only routines with a matching column
        table_types: Table types to keep; None keeps every type
        sort_columns: Sort columns by name instead of ordinal position
        sort_routine_columns: Sort routine columns by name
        show_stored_procedures: Retrieve routines and their columns
        include_tables_without_matching_columns: Keep tables whose columns
            were all excluded by the column rule, or none of whose columns
            match the column grep
        max_workers: Upper bound on concurrent retrievals (1 means sequential)
    """
    schema_inclusion_rule: InclusionRule = field(default_factory=InclusionRule)
    table_inclusion_rule: InclusionRule = field(default_factory=InclusionRule)
    column_inclusion_rule: InclusionRule = field(default_factory=InclusionRule)
    routine_inclusion_rule: InclusionRule = field(default_factory=InclusionRule)
    routine_column_inclusion_rule: InclusionRule = field(default_factory=InclusionRule)
    grep_columns: Optional[GrepRule] = None
    grep_routine_columns: Optional[GrepRule] = None
    table_types: Optional[Tuple[str, ...]] = DEFAULT_TABLE_TYPES
    sort_columns: bool = False
    sort_routine_columns: bool = False
    show_stored_procedures: bool = False
    include_tables_without_matching_columns: bool = False
    max_workers: int = 1

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")
        object.__setattr__(self, "table_types", _normalize_table_types(self.table_types))

    def includes_table_type(self, table_type: str) -> bool:
        if self.table_types is None:
            return True
        return _normalize_table_types([table_type or "TABLE"])[0] in self.table_types

    def with_changes(self, **changes) -> "CrawlOptions":
        """Return a copy with some options replaced."""
        return replace(self, **changes)

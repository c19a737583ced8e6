"""Tests for the catalog builder."""

from datetime import datetime

from dbcrawl.database.builder import CatalogBuilder, merge_records
from dbcrawl.database.models import ColumnKey, ProductInfo
from dbcrawl.database.records import (
    SchemaRecord,
    TableRecord,
    ColumnRecord,
    PrimaryKeyRecord,
    ForeignKeyRecord,
    IndexRecord,
    AttributeRecord,
    RoutineRecord,
    RoutineColumnRecord,
    SequenceRecord,
)
from dbcrawl.options import CrawlOptions
from dbcrawl.rules import GrepRule

from .fixtures import MAIN, BOOKS, AUTHORS


def books_records():
    return [
        SchemaRecord(None, "main"),
        TableRecord(None, "main", "BOOKS"),
        TableRecord(None, "main", "AUTHORS"),
        ColumnRecord(None, "main", "AUTHORS", "ID", 1, "INTEGER", is_nullable=False),
        ColumnRecord(None, "main", "AUTHORS", "NAME", 2, "VARCHAR"),
        ColumnRecord(None, "main", "BOOKS", "TITLE", 2, "VARCHAR"),
        ColumnRecord(None, "main", "BOOKS", "ID", 1, "INTEGER", is_nullable=False),
        ColumnRecord(None, "main", "BOOKS", "AUTHOR_ID", 3, "INTEGER"),
        PrimaryKeyRecord(None, "main", "BOOKS", "ID", 1, "pk_books"),
        PrimaryKeyRecord(None, "main", "AUTHORS", "ID", 1),
        ForeignKeyRecord(
            name="fk_books_authors",
            key_sequence=1,
            pk_catalog=None,
            pk_schema="main",
            pk_table="AUTHORS",
            pk_column="ID",
            fk_catalog=None,
            fk_schema="main",
            fk_table="BOOKS",
            fk_column="AUTHOR_ID",
            delete_rule="CASCADE",
        ),
        IndexRecord(None, "main", "BOOKS", "IDX_TITLE", True, 1, "TITLE"),
    ]


def build(records, **options):
    builder = CatalogBuilder()
    merge_records(builder, records)
    return builder.build("books", options=CrawlOptions(**options), crawl_timestamp=datetime(2024, 1, 1))


class TestCatalogBuilder:
    """Test merging records into a catalog."""

    def test_build(self):
        catalog, problems = build(books_records())

        assert problems == []
        assert catalog.name == "books"
        assert catalog.product_info == ProductInfo()
        assert [t.name for t in catalog.get_all_tables()] == ["AUTHORS", "BOOKS"]

        books = catalog.lookup_table(BOOKS)
        assert [c.name for c in books.columns] == ["ID", "TITLE", "AUTHOR_ID"]
        assert books.primary_key.name == "pk_books"
        assert books.get_column("AUTHOR_ID").is_part_of_foreign_key
        assert books.indexes[0].columns == (ColumnKey(BOOKS, "TITLE"),)

    def test_merge_is_idempotent(self):
        """Merging every record twice gives the same catalog."""
        once, _ = build(books_records())
        twice, _ = build(books_records() + books_records())
        assert once == twice

    def test_first_record_wins(self):
        records = books_records() + [ColumnRecord(None, "main", "BOOKS", "TITLE", 2, "TEXT")]
        catalog, _ = build(records)
        assert catalog.lookup_table(BOOKS).get_column("TITLE").data_type == "VARCHAR"

    def test_table_adds_schema(self):
        builder = CatalogBuilder()
        builder.add_table(TableRecord("db", "sales", "ORDERS"))
        assert [k.full_name for k in builder.schema_keys] == ["db.sales"]

    def test_children_of_unknown_table_dropped(self):
        builder = CatalogBuilder()
        builder.add_schema(SchemaRecord(None, "main"))
        assert not builder.add_column(ColumnRecord(None, "main", "GHOST", "ID", 1, "INTEGER"))
        catalog, _ = builder.build("empty")
        assert catalog.get_all_tables() == []

    def test_unresolved_foreign_key(self):
        records = [r for r in books_records() if getattr(r, "name", None) != "AUTHORS"
                   and getattr(r, "table", None) != "AUTHORS"]
        catalog, problems = build(records)

        assert catalog.lookup_table(AUTHORS) is None
        assert catalog.get_foreign_keys() == []
        assert len(problems) == 1
        assert problems[0].code == "MERGE_INCONSISTENCY"
        assert "fk_books_authors" in problems[0].message
        assert problems[0].details["table"] == "main.BOOKS"

    def test_foreign_key_to_missing_column(self):
        records = [r for r in books_records() if not (
            isinstance(r, ColumnRecord) and r.table == "AUTHORS" and r.name == "ID"
        )]
        catalog, problems = build(records)
        assert len(problems) == 1
        assert "column main.AUTHORS.ID" in problems[0].message

    def test_sort_columns(self):
        catalog, _ = build(books_records(), sort_columns=True)
        assert [c.name for c in catalog.lookup_table(BOOKS).columns] == ["AUTHOR_ID", "ID", "TITLE"]

    def test_tables_sorted_case_insensitively(self):
        records = [
            TableRecord(None, "main", "beta"),
            TableRecord(None, "main", "Alpha"),
            TableRecord(None, "main", "GAMMA"),
        ]
        catalog, _ = build(records)
        assert [t.name for t in catalog.get_all_tables()] == ["Alpha", "beta", "GAMMA"]

    def test_grep_columns(self):
        catalog, problems = build(books_records(), grep_columns=GrepRule(".*\\.NAME"))
        assert [t.name for t in catalog.get_all_tables()] == ["AUTHORS"]
        # The foreign key lost its referencing table
        assert len(problems) == 1

    def test_attributes(self):
        records = books_records() + [
            AttributeRecord(None, "main", "BOOKS", None, (("ROW_COUNT", 10),)),
            AttributeRecord(None, "main", "BOOKS", "TITLE", (("COLLATION", "NOCASE"),)),
        ]
        catalog, _ = build(records)
        books = catalog.lookup_table(BOOKS)
        assert books.attributes["ROW_COUNT"] == 10
        assert books.get_column("TITLE").attributes == {"COLLATION": "NOCASE"}
        assert dict(books.get_column("ID").attributes) == {}

    def test_routines_and_sequences(self):
        records = [
            SchemaRecord(None, "main"),
            RoutineRecord(None, "main", "ADD_BOOK", "PROCEDURE"),
            RoutineColumnRecord(None, "main", "ADD_BOOK", "TITLE", 2, "IN", "VARCHAR"),
            RoutineColumnRecord(None, "main", "ADD_BOOK", "AUTHOR", 1, "IN", "INTEGER"),
            RoutineColumnRecord(None, "main", "UNKNOWN", "X", 1),
            SequenceRecord(None, "main", "BOOK_IDS", start_value=1, increment=1),
        ]
        catalog, _ = build(records)

        routine = catalog.get_all_routines()[0]
        assert routine.full_name == "main.ADD_BOOK"
        assert [c.name for c in routine.columns] == ["AUTHOR", "TITLE"]
        assert [s.name for s in catalog.get_all_sequences()] == ["BOOK_IDS"]
        assert catalog.lookup_schema("main").key == MAIN

    def test_grep_routine_columns(self):
        records = [
            SchemaRecord(None, "main"),
            RoutineRecord(None, "main", "ADD_BOOK"),
            RoutineRecord(None, "main", "NO_ARGS"),
            RoutineColumnRecord(None, "main", "ADD_BOOK", "TITLE", 1),
        ]
        catalog, _ = build(records, grep_routine_columns=GrepRule(".*\\.TITLE"))
        assert [r.name for r in catalog.get_all_routines()] == ["ADD_BOOK"]

    def test_routine_needs_schema(self):
        builder = CatalogBuilder()
        assert not builder.add_routine(RoutineRecord(None, "other", "ADD_BOOK"))

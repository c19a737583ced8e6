"""Tests for the schema crawler against SQLite databases."""

import dataclasses
import sqlite3
import threading

import pytest

from dbcrawl.connection import DatabaseConnectionOptions, SingleUseUserCredentials
from dbcrawl.crawler import SchemaCrawler, CrawlState, CancellationToken, get_catalog
from dbcrawl.database.models import ColumnKey, ObjectKey
from dbcrawl.database.sqlite import SQLiteRetriever
from dbcrawl.errors import CategoryUnsupported, CategoryRetrievalError, CrawlCancelledError
from dbcrawl.options import CrawlOptions
from dbcrawl.registry import MetadataCategory, MetadataSourceRegistry
from dbcrawl.rules import InclusionRule, GrepRule

from .fixtures import MAIN, BOOKS, AUTHORS, SQLITE, create_database


class NoTriggersRetriever(SQLiteRetriever):
    def fetch_extension(self, source):
        if source.category is MetadataCategory.TRIGGERS:
            raise CategoryUnsupported(source.category.value)
        return super().fetch_extension(source)


class BrokenIndexRetriever(SQLiteRetriever):
    def get_indexes(self, tables):
        raise RuntimeError("index catalog unavailable")


class BrokenTablesRetriever(SQLiteRetriever):
    def get_tables(self, schemas):
        raise sqlite3.OperationalError("no such table: sqlite_master")


def cancelling_retriever(token, calls, gate=None):
    """Retriever that cancels `token` while retrieving primary keys.

    With a `gate`, column retrieval waits until the cancellation happened,
    so both are in flight together on two workers.
    """

    class CancellingRetriever(SQLiteRetriever):
        def fetch_extension(self, source):
            calls.append(source.category.value)
            return super().fetch_extension(source)

        def get_columns(self, tables):
            calls.append("TABLE_COLUMNS")
            if gate is not None:
                gate.wait(timeout=5)
            return super().get_columns(tables)

        def get_primary_keys(self, tables):
            calls.append("PRIMARY_KEYS")
            token.cancel()
            if gate is not None:
                gate.set()
            return super().get_primary_keys(tables)

        def get_foreign_keys(self, tables):
            calls.append("FOREIGN_KEYS")
            return super().get_foreign_keys(tables)

        def get_indexes(self, tables):
            calls.append("INDEXES")
            return super().get_indexes(tables)

    return CancellingRetriever


def profile_with(retriever_class):
    return dataclasses.replace(SQLITE, retriever_class=retriever_class)


class TestBasicCrawl:
    """Test a default crawl of the BOOKS/AUTHORS schema."""

    def test_tables_and_columns(self, books_connection, crawl_sqlite):
        """Both tables with their five columns are crawled."""
        result = crawl_sqlite(books_connection)
        catalog = result.catalog

        assert result.state is CrawlState.DONE
        assert not result.has_warnings
        assert [t.full_name for t in catalog.get_all_tables()] == ["main.AUTHORS", "main.BOOKS"]
        assert sum(len(t.columns) for t in catalog.get_all_tables()) == 5

        books = catalog.lookup_table(BOOKS)
        assert [c.name for c in books.columns] == ["ID", "TITLE", "AUTHOR_ID"]
        assert books.get_column("TITLE").full_name == "main.BOOKS.TITLE"
        assert books.get_column("TITLE").is_nullable is False

    def test_schema(self, books_connection, crawl_sqlite):
        catalog = crawl_sqlite(books_connection).catalog
        assert [s.key for s in catalog.schemas] == [MAIN]
        assert catalog.name == "books"

    def test_primary_keys(self, books_connection, crawl_sqlite):
        catalog = crawl_sqlite(books_connection).catalog
        books = catalog.lookup_table(BOOKS)
        assert books.primary_key.column_names == ["ID"]
        assert books.get_column("ID").is_part_of_primary_key
        assert not books.get_column("TITLE").is_part_of_primary_key

    def test_foreign_key(self, books_connection, crawl_sqlite):
        """The single foreign key links BOOKS.AUTHOR_ID to AUTHORS.ID."""
        catalog = crawl_sqlite(books_connection).catalog
        foreign_keys = catalog.get_foreign_keys()

        assert len(foreign_keys) == 1
        fk = foreign_keys[0]
        assert fk.name == "fk_BOOKS_0"
        assert fk.foreign_key_table == BOOKS
        assert fk.primary_key_table == AUTHORS
        assert fk.delete_rule == "CASCADE"
        assert fk.column_references[0].foreign_key_column == ColumnKey(BOOKS, "AUTHOR_ID")
        assert fk.column_references[0].primary_key_column == ColumnKey(AUTHORS, "ID")

    def test_foreign_key_on_both_tables(self, books_connection, crawl_sqlite):
        catalog = crawl_sqlite(books_connection).catalog
        books = catalog.lookup_table(BOOKS)
        authors = catalog.lookup_table(AUTHORS)

        assert [fk.name for fk in books.get_imported_foreign_keys()] == ["fk_BOOKS_0"]
        assert [fk.name for fk in authors.get_exported_foreign_keys()] == ["fk_BOOKS_0"]
        assert authors.get_imported_foreign_keys() == []
        assert books.get_column("AUTHOR_ID").is_part_of_foreign_key

    def test_index(self, books_connection, crawl_sqlite):
        catalog = crawl_sqlite(books_connection).catalog
        books = catalog.lookup_table(BOOKS)

        index = next(i for i in books.indexes if i.name == "IDX_BOOKS_TITLE")
        assert index.is_unique
        assert index.columns == (ColumnKey(BOOKS, "TITLE"),)
        assert "CREATE UNIQUE INDEX" in index.definition

    def test_trigger(self, books_connection, crawl_sqlite):
        catalog = crawl_sqlite(books_connection).catalog
        books = catalog.lookup_table(BOOKS)

        assert [t.name for t in books.triggers] == ["TRG_BOOKS_INSERT"]
        trigger = books.triggers[0]
        assert trigger.event_manipulation == "INSERT"
        assert trigger.action_timing == "AFTER"
        assert catalog.lookup_table(AUTHORS).triggers == ()

    def test_vendor_detected_from_connection(self, books_connection):
        crawler = SchemaCrawler(books_connection)
        assert crawler.vendor.vendor.value == "sqlite"
        result = crawler.crawl()
        assert len(result.catalog.get_all_tables()) == 2

    def test_connection_left_open(self, books_connection, crawl_sqlite):
        crawl_sqlite(books_connection)
        assert books_connection.execute("SELECT COUNT(*) FROM BOOKS").fetchone() == (0,)


class TestCatalogIntegrity:
    """Test that every cross-reference in a catalog resolves."""

    def test_references_resolve(self, library_connection, crawl_sqlite):
        catalog = crawl_sqlite(library_connection).catalog

        for fk in catalog.get_foreign_keys():
            for reference in fk.column_references:
                assert catalog.lookup_column(reference.foreign_key_column) is not None
                assert catalog.lookup_column(reference.primary_key_column) is not None
        for table in catalog.get_all_tables():
            if table.primary_key:
                for column in table.primary_key.columns:
                    assert catalog.lookup_column(column) is not None
            for index in table.indexes:
                for column in index.columns:
                    assert catalog.lookup_column(column) is not None

    def test_tables_sorted_by_full_name(self, library_connection, crawl_sqlite):
        catalog = crawl_sqlite(library_connection).catalog
        names = [t.full_name.lower() for t in catalog.get_all_tables()]
        assert names == sorted(names)

    def test_lower_case_references_resolve(self, tmp_path, crawl_sqlite):
        """SQLite names are case-insensitive, so a lower-case REFERENCES still links."""
        path = create_database(tmp_path / "lower.db", """
            CREATE TABLE AUTHORS (ID INTEGER NOT NULL PRIMARY KEY, NAME TEXT);
            CREATE TABLE BOOKS (
                ID INTEGER NOT NULL PRIMARY KEY,
                AUTHOR_ID INTEGER REFERENCES authors(id)
            );
        """)
        connection = sqlite3.connect(str(path))
        try:
            result = crawl_sqlite(connection)
        finally:
            connection.close()

        assert not result.has_warnings
        fk = result.catalog.get_foreign_keys()[0]
        assert fk.primary_key_table == AUTHORS
        assert fk.column_references[0].primary_key_column == ColumnKey(AUTHORS, "ID")

    def test_crawl_is_repeatable(self, books_connection, crawl_sqlite):
        """Two crawls of an unchanged database give equal catalogs."""
        first = crawl_sqlite(books_connection)
        second = crawl_sqlite(books_connection)
        assert first.catalog == second.catalog
        assert first.warnings == second.warnings


class TestLibraryCrawl:
    """Test composite keys, views and table type filters."""

    def test_composite_primary_key(self, library_connection, crawl_sqlite):
        catalog = crawl_sqlite(library_connection).catalog
        shelves = catalog.lookup_table("main.SHELVES")
        assert shelves.primary_key.column_names == ["ROOM", "SHELF_NO"]

    def test_composite_foreign_key(self, library_connection, crawl_sqlite):
        catalog = crawl_sqlite(library_connection).catalog
        copies = catalog.lookup_table("main.COPIES")
        shelves_key = ObjectKey(MAIN, "SHELVES")

        imported = copies.get_imported_foreign_keys()
        assert len(imported) == 2
        to_shelves = next(fk for fk in imported if fk.primary_key_table == shelves_key)
        assert [r.key_sequence for r in to_shelves.column_references] == [1, 2]
        assert [r.foreign_key_column.name for r in to_shelves.column_references] == ["ROOM", "SHELF_NO"]
        assert [r.primary_key_column.name for r in to_shelves.column_references] == ["ROOM", "SHELF_NO"]

    def test_exported_foreign_keys(self, library_connection, crawl_sqlite):
        catalog = crawl_sqlite(library_connection).catalog
        books = catalog.lookup_table(BOOKS)
        exported = {fk.foreign_key_table.name for fk in books.get_exported_foreign_keys()}
        assert exported == {"COPIES"}
        assert len(catalog.get_foreign_keys()) == 3

    def test_view_definition(self, library_connection, crawl_sqlite):
        catalog = crawl_sqlite(library_connection).catalog
        view = catalog.lookup_table("main.AUTHOR_TITLES")

        assert view.is_view
        assert view.table_type == "VIEW"
        assert view.definition.startswith("CREATE VIEW AUTHOR_TITLES")
        assert [c.name for c in view.columns] == ["NAME", "TITLE"]

    def test_only_views(self, library_connection, crawl_sqlite):
        result = crawl_sqlite(library_connection, table_types=("VIEW",))
        assert [t.name for t in result.catalog.get_all_tables()] == ["AUTHOR_TITLES"]
        assert not result.has_warnings

    def test_only_tables(self, library_connection, crawl_sqlite):
        result = crawl_sqlite(library_connection, table_types="TABLE")
        names = [t.name for t in result.catalog.get_all_tables()]
        assert "AUTHOR_TITLES" not in names
        assert len(names) == 4

    def test_every_table_type(self, library_connection, crawl_sqlite):
        result = crawl_sqlite(library_connection, table_types=None)
        assert len(result.catalog.get_all_tables()) == 5


class TestInclusionRules:
    """Test how inclusion rules shape the catalog."""

    def test_excluded_table_drops_foreign_key(self, books_connection, crawl_sqlite):
        """Excluding AUTHORS leaves BOOKS and an unresolved foreign key warning."""
        result = crawl_sqlite(books_connection, table_inclusion_rule=InclusionRule.exclude_only("AUTHORS"))
        catalog = result.catalog

        assert [t.name for t in catalog.get_all_tables()] == ["BOOKS"]
        assert catalog.get_foreign_keys() == []
        assert not catalog.lookup_table(BOOKS).get_column("AUTHOR_ID").is_part_of_foreign_key
        assert [w.code for w in result.warnings] == ["MERGE_INCONSISTENCY"]
        assert "fk_BOOKS_0" in result.warnings[0].message
        assert result.state is CrawlState.DONE

    def test_table_rule_on_full_name(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(books_connection, table_inclusion_rule=InclusionRule.include_only("main\\.AUTHORS"))
        assert [t.name for t in result.catalog.get_all_tables()] == ["AUTHORS"]

    def test_schema_rule(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(books_connection, schema_inclusion_rule=InclusionRule.include_only("other"))
        assert result.catalog.schemas == ()
        assert result.catalog.get_all_tables() == []

    def test_column_rule(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(books_connection, column_inclusion_rule=InclusionRule.exclude_only("TITLE"))
        books = result.catalog.lookup_table(BOOKS)

        assert [c.name for c in books.columns] == ["ID", "AUTHOR_ID"]
        # Index columns follow the retained columns
        index = next(i for i in books.indexes if i.name == "IDX_BOOKS_TITLE")
        assert index.columns == ()

    def test_table_without_columns_dropped(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(
            books_connection,
            column_inclusion_rule=InclusionRule.exclude_only("main\\.AUTHORS\\..*"),
        )
        assert [t.name for t in result.catalog.get_all_tables()] == ["BOOKS"]

    def test_table_without_columns_kept(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(
            books_connection,
            column_inclusion_rule=InclusionRule.exclude_only("main\\.AUTHORS\\..*"),
            include_tables_without_matching_columns=True,
        )
        authors = result.catalog.lookup_table(AUTHORS)
        assert authors is not None
        assert authors.columns == ()
        assert authors.primary_key is None


class TestGrepAndSorting:
    """Test grep filters and column ordering."""

    def test_grep_columns(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(books_connection, grep_columns=GrepRule(".*\\.TITLE"))
        assert [t.name for t in result.catalog.get_all_tables()] == ["BOOKS"]

    def test_grep_columns_inverted(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(books_connection, grep_columns=GrepRule(".*\\.TITLE", invert=True))
        assert [t.name for t in result.catalog.get_all_tables()] == ["AUTHORS"]

    def test_grep_columns_keeps_tables_with_override(self, books_connection, crawl_sqlite):
        """Tables without a matching column stay when the override is set."""
        result = crawl_sqlite(
            books_connection,
            grep_columns=GrepRule(".*\\.TITLE"),
            include_tables_without_matching_columns=True,
        )
        catalog = result.catalog

        assert [t.name for t in catalog.get_all_tables()] == ["AUTHORS", "BOOKS"]
        assert [c.name for c in catalog.lookup_table(AUTHORS).columns] == ["ID", "NAME"]
        assert len(catalog.get_foreign_keys()) == 1
        assert not result.has_warnings

    def test_columns_in_ordinal_order(self, books_connection, crawl_sqlite):
        books = crawl_sqlite(books_connection).catalog.lookup_table(BOOKS)
        assert [c.ordinal_position for c in books.columns] == [1, 2, 3]

    def test_sort_columns_by_name(self, books_connection, crawl_sqlite):
        books = crawl_sqlite(books_connection, sort_columns=True).catalog.lookup_table(BOOKS)
        assert [c.name for c in books.columns] == ["AUTHOR_ID", "ID", "TITLE"]


class TestDegradation:
    """Test warnings for categories that cannot be retrieved."""

    def test_unsupported_category_warns_per_table(self, books_connection, crawl_sqlite):
        """An unsupported per-table category gives one warning per table."""
        result = crawl_sqlite(books_connection, vendor=profile_with(NoTriggersRetriever))

        assert result.state is CrawlState.DONE
        assert len(result.warnings) == 2
        assert {w.code for w in result.warnings} == {"CATEGORY_UNSUPPORTED"}
        assert [w.object_name for w in result.warnings] == ["main.AUTHORS", "main.BOOKS"]
        assert all(w.category == "TRIGGERS" for w in result.warnings)
        assert result.catalog.lookup_table(BOOKS).triggers == ()
        assert len(result.catalog.get_all_tables()) == 2

    def test_failing_optional_native_category(self, books_connection, crawl_sqlite):
        result = crawl_sqlite(books_connection, vendor=profile_with(BrokenIndexRetriever))

        assert result.state is CrawlState.DONE
        assert [w.category for w in result.warnings] == ["INDEXES", "INDEXES"]
        assert "index catalog unavailable" in result.warnings[0].message
        assert result.catalog.lookup_table(BOOKS).indexes == ()
        assert len(result.catalog.get_foreign_keys()) == 1

    def test_unsupported_by_profile_is_silent(self, books_connection, crawl_sqlite):
        """Categories the vendor never provides are skipped without warnings."""
        profile = dataclasses.replace(
            SQLITE,
            unsupported_categories=SQLITE.unsupported_categories | {MetadataCategory.TRIGGERS},
        )
        result = crawl_sqlite(books_connection, vendor=profile)
        assert not result.has_warnings
        assert result.catalog.lookup_table(BOOKS).triggers == ()

    def test_failing_override_is_fatal(self, books_connection):
        registry = MetadataSourceRegistry(SQLITE, {
            MetadataCategory.TRIGGERS.lookup_key: "SELECT * FROM NO_SUCH_TABLE",
        })
        crawler = SchemaCrawler(books_connection, registry=registry)

        with pytest.raises(CategoryRetrievalError) as exc_info:
            crawler.crawl()
        assert exc_info.value.category == "TRIGGERS"
        assert crawler.state is CrawlState.FAILED

    def test_override_replaces_packaged_query(self, books_connection, crawl_sqlite):
        sql = """
            SELECT NULL AS table_catalog, 'main' AS table_schema,
                   'BOOKS' AS table_name, 'custom' AS view_definition
        """
        result = crawl_sqlite(books_connection, properties={MetadataCategory.VIEWS.lookup_key: sql})
        assert result.catalog.lookup_table(BOOKS).definition == "custom"

    def test_failing_required_category_is_fatal(self, books_connection):
        crawler = SchemaCrawler(
            books_connection,
            registry=MetadataSourceRegistry(profile_with(BrokenTablesRetriever)),
        )
        with pytest.raises(CategoryRetrievalError) as exc_info:
            crawler.crawl()
        assert exc_info.value.category == "TABLES"
        assert crawler.state is CrawlState.FAILED

    def test_required_category_unsupported_by_profile(self, books_connection):
        profile = dataclasses.replace(SQLITE, unsupported_categories=frozenset({MetadataCategory.SCHEMATA}))
        crawler = SchemaCrawler(books_connection, registry=MetadataSourceRegistry(profile))
        with pytest.raises(CategoryRetrievalError):
            crawler.crawl()


class TestCancellation:
    """Test cooperative cancellation."""

    def test_cancelled_before_start(self, books_connection):
        token = CancellationToken()
        token.cancel()
        crawler = SchemaCrawler(books_connection)

        with pytest.raises(CrawlCancelledError, match="Crawl cancelled"):
            crawler.crawl(cancel_token=token)
        assert crawler.state is CrawlState.FAILED

    def test_deadline_passed(self, books_connection):
        token = CancellationToken(timeout=0)
        crawler = SchemaCrawler(books_connection)

        with pytest.raises(CrawlCancelledError, match="Crawl timed out"):
            crawler.crawl(cancel_token=token)
        assert crawler.state is CrawlState.FAILED

    def test_cancelled_during_table_details(self, books_connection):
        """Categories after the cancelling one never start and nothing is returned."""
        token = CancellationToken()
        calls = []
        crawler = SchemaCrawler(
            books_connection,
            registry=MetadataSourceRegistry(profile_with(cancelling_retriever(token, calls))),
        )

        with pytest.raises(CrawlCancelledError, match="Crawl cancelled") as exc_info:
            crawler.crawl(cancel_token=token)
        assert exc_info.value.details["category"] == "FOREIGN_KEYS"
        assert crawler.state is CrawlState.FAILED
        assert calls == ["VIEWS", "TABLE_COLUMNS", "PRIMARY_KEYS"]

    def test_cancelled_during_concurrent_table_details(self, books_connection, books_db_path):
        """Work in flight finishes, queued categories are never retrieved."""
        token = CancellationToken()
        calls = []
        gate = threading.Event()
        crawler = SchemaCrawler(
            books_connection,
            registry=MetadataSourceRegistry(profile_with(cancelling_retriever(token, calls, gate))),
            connection_factory=lambda: sqlite3.connect(str(books_db_path)),
        )

        with pytest.raises(CrawlCancelledError):
            crawler.crawl(CrawlOptions(max_workers=2), cancel_token=token)
        assert crawler.state is CrawlState.FAILED
        assert sorted(calls) == ["PRIMARY_KEYS", "TABLE_COLUMNS", "VIEWS"]

    def test_token_not_cancelled(self):
        token = CancellationToken(timeout=60)
        assert not token.is_cancelled
        token.raise_if_cancelled()


class TestConcurrency:
    """Test that concurrent retrieval gives the sequential result."""

    def test_workers_match_sequential(self, library_connection, library_db_path, crawl_sqlite):
        sequential = crawl_sqlite(library_connection)
        concurrent = crawl_sqlite(
            library_connection,
            connection_factory=lambda: sqlite3.connect(str(library_db_path)),
            max_workers=4,
        )

        assert concurrent.state is CrawlState.DONE
        assert concurrent.catalog == sequential.catalog
        assert concurrent.warnings == sequential.warnings

    def test_without_factory_runs_sequentially(self, books_connection, crawl_sqlite):
        """A SQLite connection cannot be shared, so no factory means one thread."""
        result = crawl_sqlite(books_connection, max_workers=4)
        assert len(result.catalog.get_all_tables()) == 2

    def test_concurrent_degradation_warnings_in_order(self, books_connection, books_db_path, crawl_sqlite):
        result = crawl_sqlite(
            books_connection,
            vendor=profile_with(NoTriggersRetriever),
            connection_factory=lambda: sqlite3.connect(str(books_db_path)),
            max_workers=3,
        )
        assert [w.object_name for w in result.warnings] == ["main.AUTHORS", "main.BOOKS"]


class TestGetCatalog:
    """Test connecting, crawling and closing in one call."""

    def test_crawl_from_url(self, books_db_path):
        options = DatabaseConnectionOptions.from_url(f"sqlite:///{books_db_path}")
        result = get_catalog(options, CrawlOptions())

        assert result.catalog.name == "books"
        assert result.catalog.product_info.product_name == "SQLite"
        assert len(result.catalog.get_all_tables()) == 2

    def test_single_use_credentials(self, books_db_path):
        credentials = SingleUseUserCredentials("reader", "secret")
        options = DatabaseConnectionOptions(credentials, {"url": f"sqlite:///{books_db_path}"})
        result = get_catalog(options, CrawlOptions(max_workers=4))

        assert len(result.catalog.get_all_tables()) == 2
        assert credentials.password is None

    def test_override_from_properties(self, books_db_path):
        options = DatabaseConnectionOptions.from_url(
            f"sqlite:///{books_db_path}",
            **{MetadataCategory.TRIGGERS.lookup_key: "SELECT * FROM NO_SUCH_TABLE"},
        )
        with pytest.raises(CategoryRetrievalError):
            get_catalog(options)

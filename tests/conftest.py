"""Shared pytest fixtures for dbcrawl tests."""

import sqlite3

import pytest

from dbcrawl.crawler import SchemaCrawler
from dbcrawl.options import CrawlOptions
from dbcrawl.registry import MetadataSourceRegistry

from .fixtures import BOOKS_DDL, LIBRARY_DDL, SQLITE, create_database


@pytest.fixture
def books_db_path(tmp_path):
    """SQLite file holding the BOOKS/AUTHORS schema."""
    return create_database(tmp_path / "books.db", BOOKS_DDL)


@pytest.fixture
def library_db_path(tmp_path):
    """SQLite file with BOOKS/AUTHORS plus a composite key table and a view."""
    return create_database(tmp_path / "library.db", BOOKS_DDL, LIBRARY_DDL)


@pytest.fixture
def books_connection(books_db_path):
    connection = sqlite3.connect(str(books_db_path))
    yield connection
    connection.close()


@pytest.fixture
def library_connection(library_db_path):
    connection = sqlite3.connect(str(library_db_path))
    yield connection
    connection.close()


@pytest.fixture
def crawl_sqlite():
    """Crawl a SQLite connection; keyword arguments become `CrawlOptions`."""

    def _crawl(connection, properties=None, vendor=SQLITE, connection_factory=None, **options):
        crawler = SchemaCrawler(
            connection,
            registry=MetadataSourceRegistry(vendor, properties),
            connection_factory=connection_factory,
            catalog_name="books",
        )
        return crawler.crawl(CrawlOptions(**options))

    return _crawl

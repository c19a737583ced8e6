"""Test fixtures package."""

from .sample_databases import BOOKS_DDL, LIBRARY_DDL, MAIN, BOOKS, AUTHORS, SQLITE, create_database

__all__ = [
    "BOOKS_DDL",
    "LIBRARY_DDL",
    "MAIN",
    "BOOKS",
    "AUTHORS",
    "SQLITE",
    "create_database",
]

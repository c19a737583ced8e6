"""Tests for the command line interface."""

import pytest
from typer.testing import CliRunner

from dbcrawl import main as cli
from dbcrawl.config import Settings
from dbcrawl.rules import GrepRule

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Run every command with default settings, ignoring the environment."""
    for name in ("DBCRAWL_CONNECTION_URL", "DBCRAWL_USER", "DBCRAWL_PASSWORD", "DBCRAWL_CONFIG_FILES"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "settings", Settings(_env_file=None))


class TestBuildCrawlOptions:
    """Test translation of command line options."""

    def test_defaults(self):
        options = cli.build_crawl_options()
        assert options.table_inclusion_rule.is_default
        assert options.table_types == ("TABLE", "VIEW")
        assert options.grep_columns is None
        assert options.max_workers == 1

    def test_rules(self):
        options = cli.build_crawl_options(
            tables="BOOKS",
            exclude_columns=".*_ID",
            grep_columns=".*TITLE",
            invert_match=True,
            table_types="table",
            workers=3,
        )
        assert options.table_inclusion_rule.include == "BOOKS"
        assert options.column_inclusion_rule.exclude == ".*_ID"
        assert options.grep_columns == GrepRule(".*TITLE", invert=True)
        assert options.table_types == ("TABLE",)
        assert options.max_workers == 3


class TestCrawlCommand:
    """Test the crawl command."""

    def test_crawl_sqlite_file(self, books_db_path):
        result = runner.invoke(cli.app, ["crawl", f"sqlite:///{books_db_path}"])
        assert result.exit_code == 0, result.output
        assert "AUTHORS" in result.output
        assert "BOOKS" in result.output
        assert "fk_BOOKS_0" in result.output
        assert "IDX_BOOKS_TITLE" in result.output

    def test_crawl_with_vendor_template(self, books_db_path):
        result = runner.invoke(cli.app, ["crawl", "--vendor", "sqlite", "-p", f"database={books_db_path}"])
        assert result.exit_code == 0, result.output
        assert "TITLE" in result.output

    def test_warnings_printed(self, books_db_path):
        result = runner.invoke(cli.app, ["crawl", f"sqlite:///{books_db_path}", "--tables", "BOOKS"])
        assert result.exit_code == 0, result.output
        assert "1 warning(s)" in result.output
        assert "MERGE_INCONSISTENCY" in result.output

    def test_sort_and_workers(self, books_db_path):
        result = runner.invoke(
            cli.app,
            ["crawl", f"sqlite:///{books_db_path}", "--sort-columns", "--workers", "2"],
        )
        assert result.exit_code == 0, result.output
        assert result.output.index("AUTHOR_ID") < result.output.index("TITLE")

    def test_unknown_scheme(self):
        result = runner.invoke(cli.app, ["crawl", "oracle://db/orcl"])
        assert result.exit_code == 1
        assert "CONNECTION_ERROR" in result.output

    def test_no_connection_properties(self):
        result = runner.invoke(cli.app, ["crawl"])
        assert result.exit_code == 1
        assert "CONFIG_ERROR" in result.output

    def test_invalid_property(self, books_db_path):
        result = runner.invoke(cli.app, ["crawl", f"sqlite:///{books_db_path}", "-p", "timeout"])
        assert result.exit_code == 1
        assert "expected key=value" in result.output

    def test_invalid_regex(self, books_db_path):
        result = runner.invoke(cli.app, ["crawl", f"sqlite:///{books_db_path}", "--tables", "(["])
        assert result.exit_code == 1
        assert "Invalid regex" in result.output


class TestConfigCommand:
    """Test the config command."""

    def test_shows_settings(self):
        result = runner.invoke(cli.app, ["config"])
        assert result.exit_code == 0
        assert "Max workers: 4" in result.output
        assert "Password configured: No" in result.output

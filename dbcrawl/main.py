"""dbcrawl - Main entry point."""

import logging
from typing import Optional, List

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.tree import Tree

from .config import settings, load_properties, parse_property_assignments
from .connection import DatabaseConnectionOptions, UserCredentials, mask_url
from .crawler import CrawlResult, get_catalog
from .database.models import Table, Routine
from .errors import CrawlError, format_error_for_display
from .options import CrawlOptions
from .rules import InclusionRule, GrepRule, ALL, NONE

app = typer.Typer(
    name="dbcrawl",
    help="Crawl database metadata into a catalog of schemas, tables, columns and keys",
    add_completion=False,
)

console = Console()


def setup_logging(level: str):
    """Send library log records to a rich handler on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False, show_path=False)],
        force=True,
    )


def _grep(pattern: Optional[str], invert: bool) -> Optional[GrepRule]:
    if not pattern:
        return None
    return GrepRule(pattern, invert=invert)


def build_crawl_options(
    schemas: Optional[str] = None,
    tables: Optional[str] = None,
    exclude_columns: Optional[str] = None,
    procedures: Optional[str] = None,
    exclude_inout: Optional[str] = None,
    grep_columns: Optional[str] = None,
    grep_inout: Optional[str] = None,
    invert_match: bool = False,
    sort_columns: bool = False,
    sort_inout: bool = False,
    table_types: Optional[str] = None,
    show_stored_procedures: bool = False,
    workers: int = 1,
) -> CrawlOptions:
    """Translate command line options into `CrawlOptions`."""
    return CrawlOptions(
        schema_inclusion_rule=InclusionRule(schemas or ALL, NONE),
        table_inclusion_rule=InclusionRule(tables or ALL, NONE),
        column_inclusion_rule=InclusionRule(ALL, exclude_columns or NONE),
        routine_inclusion_rule=InclusionRule(procedures or ALL, NONE),
        routine_column_inclusion_rule=InclusionRule(ALL, exclude_inout or NONE),
        grep_columns=_grep(grep_columns, invert_match),
        grep_routine_columns=_grep(grep_inout, invert_match),
        table_types=table_types if table_types is not None else settings.table_type_list,
        sort_columns=sort_columns,
        sort_routine_columns=sort_inout,
        show_stored_procedures=show_stored_procedures,
        max_workers=workers,
    )


def _table_node(parent: Tree, table: Table):
    label = f"[bold]{table.name}[/bold] [dim]{table.table_type}[/dim]"
    node = parent.add(label)
    for column in table.columns:
        flags = []
        if column.is_part_of_primary_key:
            flags.append("PK")
        if column.is_part_of_foreign_key:
            flags.append("FK")
        suffix = f" [cyan]{', '.join(flags)}[/cyan]" if flags else ""
        nullable = "" if column.is_nullable else " not null"
        node.add(f"{column.name} [dim]{column.data_type}{nullable}[/dim]{suffix}")
    for fk in table.get_imported_foreign_keys():
        target = fk.primary_key_table.full_name
        node.add(f"[magenta]{fk.name}[/magenta] -> {target}")
    for index in table.indexes:
        unique = "unique " if index.is_unique else ""
        node.add(f"[yellow]{unique}index {index.name}[/yellow]")
    for trigger in table.triggers:
        node.add(f"[green]trigger {trigger.name}[/green]")


def _routine_node(parent: Tree, routine: Routine):
    node = parent.add(f"[bold]{routine.name}[/bold] [dim]{routine.routine_type}[/dim]")
    for column in routine.columns:
        node.add(f"{column.name} [dim]{column.column_type} {column.data_type or ''}[/dim]")


def print_result(result: CrawlResult):
    """Print a catalog as a tree, followed by any warnings."""
    catalog = result.catalog
    info = catalog.product_info
    tree = Tree(f"[bold blue]{catalog.name}[/bold blue] [dim]{info.product_name} {info.product_version}[/dim]")
    for schema in catalog.schemas:
        schema_node = tree.add(f"[bold]{schema.name or '(default)'}[/bold]")
        for table in schema.tables:
            _table_node(schema_node, table)
        for routine in schema.routines:
            _routine_node(schema_node, routine)
        for sequence in schema.sequences:
            schema_node.add(f"[dim]sequence[/dim] {sequence.name}")
    console.print(tree)

    if result.warnings:
        console.print(f"\n[yellow]{len(result.warnings)} warning(s):[/yellow]")
        for warning in result.warnings:
            where = f" ({warning.object_name})" if warning.object_name else ""
            console.print(f"  [yellow]{warning.code}[/yellow]{where}: {warning.message}")


@app.command()
def crawl(
    url: Optional[str] = typer.Argument(None, help="Connection URL, e.g. sqlite:///books.db (default: DBCRAWL_CONNECTION_URL)"),
    vendor: Optional[str] = typer.Option(None, "--vendor", help="Use the vendor's URL template (sqlite, duckdb, postgresql, snowflake)"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Database user (or DBCRAWL_USER env)"),
    password: Optional[str] = typer.Option(None, "--password", help="Database password (or DBCRAWL_PASSWORD env)"),
    properties: Optional[List[str]] = typer.Option(None, "--property", "-p", help="Connection or query property key=value (repeatable)"),
    config_files: Optional[List[str]] = typer.Option(None, "--config", "-c", help="Property file in dotenv format (repeatable)"),
    schemas: Optional[str] = typer.Option(None, "--schemas", help="Regular expression for schemas to include"),
    tables: Optional[str] = typer.Option(None, "--tables", help="Regular expression for tables to include"),
    exclude_columns: Optional[str] = typer.Option(None, "--exclude-columns", help="Regular expression for columns to exclude"),
    procedures: Optional[str] = typer.Option(None, "--procedures", help="Regular expression for routines to include"),
    exclude_inout: Optional[str] = typer.Option(None, "--exclude-inout", help="Regular expression for routine columns to exclude"),
    grep_columns: Optional[str] = typer.Option(None, "--grep-columns", help="Keep only tables with a column whose full name matches"),
    grep_inout: Optional[str] = typer.Option(None, "--grep-inout", help="Keep only routines with a column whose full name matches"),
    invert_match: bool = typer.Option(False, "--invert-match", "-v", help="Invert the grep matches"),
    sort_columns: bool = typer.Option(False, "--sort-columns", help="Sort columns by name instead of position"),
    sort_inout: bool = typer.Option(False, "--sort-inout", help="Sort routine columns by name instead of position"),
    table_types: Optional[str] = typer.Option(None, "--table-types", help="Comma separated table types (default: TABLE,VIEW)"),
    show_stored_procedures: bool = typer.Option(False, "--show-stored-procedures", help="Crawl stored procedures and functions"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Concurrent retrievals (default: DBCRAWL_MAX_WORKERS)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (default: DBCRAWL_LOG_LEVEL)"),
):
    """Crawl a database and print its catalog."""
    setup_logging(log_level or settings.log_level)

    try:
        overrides = parse_property_assignments(properties or [])
        if url:
            overrides["url"] = url
        bag = load_properties(
            vendor=vendor,
            files=settings.config_file_list + list(config_files or []),
            overrides=overrides,
            defaults=None if vendor else settings.connection_defaults(),
        )
        secret = settings.password.get_secret_value() if settings.password else None
        credentials = UserCredentials(user or settings.user, password if password is not None else secret)
        connection_options = DatabaseConnectionOptions(credentials, bag)
        crawl_options = build_crawl_options(
            schemas=schemas,
            tables=tables,
            exclude_columns=exclude_columns,
            procedures=procedures,
            exclude_inout=exclude_inout,
            grep_columns=grep_columns,
            grep_inout=grep_inout,
            invert_match=invert_match,
            sort_columns=sort_columns,
            sort_inout=sort_inout,
            table_types=table_types,
            show_stored_procedures=show_stored_procedures,
            workers=workers or settings.max_workers,
        )
        result = get_catalog(connection_options, crawl_options)
    except CrawlError as e:
        console.print(f"[red]{format_error_for_display(e)}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    print_result(result)


@app.command()
def config():
    """Show current configuration."""
    console.print("[bold]Current Configuration[/bold]")
    console.print(f"  Log level: {settings.log_level}")
    console.print(f"  Max workers: {settings.max_workers}")
    console.print(f"  Table types: {settings.default_table_types}")
    console.print(f"  Config files: {settings.config_files or 'Not set'}")
    console.print(f"  Connection URL: {mask_url(settings.connection_url) or 'Not set'}")
    console.print(f"  User: {settings.user or 'Not set'}")
    console.print(f"  Password configured: {'Yes' if settings.password else 'No'}")


@app.callback()
def main():
    """
    dbcrawl - Crawl database metadata.

    Examples:

        dbcrawl crawl sqlite:///books.db

        dbcrawl crawl --vendor postgresql -p host=db -p database=shop --user app

        dbcrawl crawl duckdb:///warehouse.duckdb --tables ".*ORDERS" --sort-columns
    """
    pass


if __name__ == "__main__":
    app()

"""Crawl a database into an immutable `Catalog`.

The crawl runs in phases. Schemas and tables are retrieved first; their
keys scope every later query. Columns, keys, indexes and the other per-table
categories are then retrieved, concurrently when allowed, and merged one
batch at a time in category order on the calling thread.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Tuple, Callable, Any

from .connection.options import DatabaseConnectionOptions
from .database.base import MetadataRetriever
from .database.builder import CatalogBuilder, merge_records
from .database.models import SchemaKey, ObjectKey, ProductInfo, Catalog
from .errors import (
    CrawlError,
    CrawlFailure,
    CategoryUnsupported,
    CategoryRetrievalError,
    CrawlCancelledError,
)
from .options import CrawlOptions
from .registry import MetadataCategory, MetadataSourceRegistry, QuerySource, SourceKind
from .vendors import VendorProfile, detect_vendor, get_vendor_profile

logger = logging.getLogger(__name__)


class CrawlState(str, Enum):
    """Lifecycle of a crawl."""
    INIT = "init"
    CONNECTION_OPEN = "connection_open"
    RETRIEVING_SCHEMAS = "retrieving_schemas"
    RETRIEVING_TABLES = "retrieving_tables"
    RETRIEVING_COLUMNS_AND_KEYS = "retrieving_columns_and_keys"
    RETRIEVING_ROUTINES = "retrieving_routines"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


TABLE_DETAIL_CATEGORIES: Tuple[MetadataCategory, ...] = (
    MetadataCategory.VIEWS,
    MetadataCategory.TABLE_COLUMNS,
    MetadataCategory.PRIMARY_KEYS,
    MetadataCategory.FOREIGN_KEYS,
    MetadataCategory.INDEXES,
    MetadataCategory.TRIGGERS,
    MetadataCategory.TABLE_CONSTRAINTS,
    MetadataCategory.ADDITIONAL_TABLE_ATTRIBUTES,
    MetadataCategory.ADDITIONAL_COLUMN_ATTRIBUTES,
)

ROUTINE_CATEGORIES: Tuple[MetadataCategory, ...] = (
    MetadataCategory.ROUTINES,
    MetadataCategory.ROUTINE_COLUMNS,
)

NATIVE_METHODS = {
    MetadataCategory.TABLE_COLUMNS: "get_columns",
    MetadataCategory.PRIMARY_KEYS: "get_primary_keys",
    MetadataCategory.FOREIGN_KEYS: "get_foreign_keys",
    MetadataCategory.INDEXES: "get_indexes",
}


@dataclass(frozen=True)
class CrawlWarning:
    """A recoverable problem recorded during a crawl."""
    code: str
    message: str
    category: Optional[str] = None
    object_name: Optional[str] = None

    @classmethod
    def from_error(cls, error: CrawlError, object_name: Optional[str] = None) -> "CrawlWarning":
        return cls(
            code=error.code,
            message=error.message,
            category=error.details.get("category"),
            object_name=object_name,
        )


@dataclass(frozen=True)
class CrawlResult:
    """A finished catalog and the warnings recorded while building it."""
    catalog: Catalog
    warnings: Tuple[CrawlWarning, ...] = ()
    state: CrawlState = CrawlState.DONE

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


class CancellationToken:
    """Cooperative cancellation, with an optional deadline.

    Checked before each category is started and between phases. Work
    already running is allowed to finish; its results are discarded.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._timed_out = False

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if not self._event.is_set() and self._deadline is not None and time.monotonic() >= self._deadline:
            self._timed_out = True
            self._event.set()
        return self._event.is_set()

    def raise_if_cancelled(self, category: Optional[str] = None):
        """Raise `CrawlCancelledError` if the crawl was cancelled or timed out."""
        if self.is_cancelled:
            message = "Crawl timed out" if self._timed_out else "Crawl cancelled"
            raise CrawlCancelledError(message, category=category)


@dataclass(frozen=True)
class _Scope:
    schemas: Tuple[SchemaKey, ...] = ()
    tables: Tuple[ObjectKey, ...] = ()


@dataclass(frozen=True)
class _Batch:
    category: MetadataCategory
    records: Tuple[Any, ...] = ()
    unsupported: Optional[CategoryUnsupported] = None
    skipped: bool = False


@dataclass
class _Collector:
    builder: CatalogBuilder = field(default_factory=CatalogBuilder)
    warnings: List[CrawlWarning] = field(default_factory=list)


class SchemaCrawler:
    """Crawls database metadata over an open DB-API connection.

    Args:
        connection: Open connection; not closed by the crawler
        registry: Query source registry; defaults to one for the vendor
            detected from the connection, with no overrides
        connection_factory: Opens extra connections for concurrent
            retrieval when the main connection cannot be shared
        catalog_name: Name of the resulting catalog
        product_info: Product information to record in the catalog
    """

    def __init__(
        self,
        connection,
        registry: Optional[MetadataSourceRegistry] = None,
        connection_factory: Optional[Callable[[], Any]] = None,
        catalog_name: Optional[str] = None,
        product_info: Optional[ProductInfo] = None,
    ):
        self.connection = connection
        self.registry = registry or MetadataSourceRegistry(detect_vendor(connection))
        self.vendor: VendorProfile = self.registry.vendor
        self.connection_factory = connection_factory
        self.catalog_name = catalog_name or "catalog"
        self.product_info = product_info
        self._retriever = self.vendor.create_retriever(connection)
        self._shareable = self.vendor.can_share_connection(connection)
        self._state = CrawlState.INIT
        self._state_lock = threading.Lock()

    @property
    def state(self) -> CrawlState:
        return self._state

    def _set_state(self, state: CrawlState):
        with self._state_lock:
            logger.debug("Crawl state %s -> %s", self._state.value, state.value)
            self._state = state

    def crawl(
        self,
        options: Optional[CrawlOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CrawlResult:
        """Run the crawl.

        Args:
            options: Crawl options (defaults to `CrawlOptions()`)
            cancel_token: Token to cancel the crawl or bound its duration

        Returns:
            The catalog with any warnings

        Raises:
            CategoryRetrievalError: If a required category, or a vendor or
                user override query, fails
            CrawlCancelledError: If the crawl was cancelled
            ConnectionError: If a worker connection cannot be opened
        """
        options = options or CrawlOptions()
        token = cancel_token or CancellationToken()
        logger.info("Using database plugin for %s", self.vendor.display_name)
        logger.debug("Crawl options: %r", options)

        collector = _Collector()
        try:
            self._set_state(CrawlState.CONNECTION_OPEN)
            token.raise_if_cancelled()

            self._set_state(CrawlState.RETRIEVING_SCHEMAS)
            self._merge_all(collector, self._run_phase((MetadataCategory.SCHEMATA,), _Scope(), options, token), options)

            self._set_state(CrawlState.RETRIEVING_TABLES)
            scope = _Scope(schemas=tuple(collector.builder.schema_keys))
            self._merge_all(collector, self._run_phase((MetadataCategory.TABLES,), scope, options, token), options)
            logger.info(
                "Retrieved %d tables in %d schemas",
                len(collector.builder.table_keys),
                len(collector.builder.schema_keys),
            )

            self._set_state(CrawlState.RETRIEVING_COLUMNS_AND_KEYS)
            scope = _Scope(schemas=scope.schemas, tables=tuple(collector.builder.table_keys))
            if scope.tables:
                self._merge_all(collector, self._run_phase(TABLE_DETAIL_CATEGORIES, scope, options, token), options)

            self._set_state(CrawlState.RETRIEVING_ROUTINES)
            categories: Tuple[MetadataCategory, ...] = (MetadataCategory.SEQUENCES,)
            if options.show_stored_procedures:
                categories = ROUTINE_CATEGORIES + categories
            self._merge_all(collector, self._run_phase(categories, scope, options, token), options)

            self._set_state(CrawlState.MERGING)
            token.raise_if_cancelled()
            catalog, problems = collector.builder.build(
                self.catalog_name,
                options=options,
                product_info=self.product_info,
            )
            collector.warnings.extend(CrawlWarning.from_error(p) for p in problems)
            self._set_state(CrawlState.DONE)
        except Exception:
            self._set_state(CrawlState.FAILED)
            raise

        logger.info(
            "Crawled %d tables and %d routines with %d warnings",
            len(catalog.get_all_tables()),
            len(catalog.get_all_routines()),
            len(collector.warnings),
        )
        return CrawlResult(catalog=catalog, warnings=tuple(collector.warnings), state=self._state)

    # Retrieval

    def _run_phase(
        self,
        categories: Tuple[MetadataCategory, ...],
        scope: _Scope,
        options: CrawlOptions,
        token: CancellationToken,
    ) -> List[_Batch]:
        """Retrieve a group of categories, returning batches in category order."""
        planned = [(c, self.registry.query_source(c)) for c in categories]
        parallel = (
            options.max_workers > 1
            and len(planned) > 1
            and (self._shareable or self.connection_factory is not None)
        )
        if not parallel:
            return [self._retrieve(self._retriever, c, s, scope, token) for c, s in planned]

        workers = min(options.max_workers, len(planned))
        logger.debug("Retrieving %d categories with %d workers", len(planned), workers)
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dbcrawl")
        try:
            futures = [pool.submit(self._retrieve_in_worker, c, s, scope, token) for c, s in planned]
            return [f.result() for f in futures]
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def _retrieve_in_worker(
        self,
        category: MetadataCategory,
        source: Optional[QuerySource],
        scope: _Scope,
        token: CancellationToken,
    ) -> _Batch:
        if self._shareable:
            return self._retrieve(self._retriever, category, source, scope, token)
        token.raise_if_cancelled(category.value)
        with self.vendor.create_retriever(self.connection_factory()) as retriever:
            return self._retrieve(retriever, category, source, scope, token)

    def _fetch(
        self,
        retriever: MetadataRetriever,
        category: MetadataCategory,
        source: Optional[QuerySource],
        scope: _Scope,
    ) -> Optional[list]:
        if source is not None and (category.source_kind is not SourceKind.NATIVE or source.is_override):
            return retriever.fetch_extension(source)
        if category is MetadataCategory.SCHEMATA:
            return retriever.get_schemas()
        if category is MetadataCategory.TABLES:
            return retriever.get_tables(list(scope.schemas))
        method = NATIVE_METHODS.get(category)
        if method is None:
            return None
        return getattr(retriever, method)(list(scope.tables))

    def _retrieve(
        self,
        retriever: MetadataRetriever,
        category: MetadataCategory,
        source: Optional[QuerySource],
        scope: _Scope,
        token: CancellationToken,
    ) -> _Batch:
        token.raise_if_cancelled(category.value)
        vendor = self.vendor.display_name
        if not self.registry.is_supported(category):
            if category.is_required:
                raise CategoryRetrievalError(category.value, vendor, CategoryUnsupported(category.value))
            logger.debug("%s does not support %s", vendor, category.value)
            return _Batch(category, skipped=True)

        try:
            records = self._fetch(retriever, category, source, scope)
        except CategoryUnsupported as e:
            if category.is_required:
                raise CategoryRetrievalError(category.value, vendor, e) from e
            return _Batch(category, unsupported=e)
        except CrawlFailure:
            raise
        except Exception as e:
            if category.is_required or (source is not None and source.is_override):
                raise CategoryRetrievalError(category.value, vendor, e) from e
            return _Batch(
                category,
                unsupported=CategoryUnsupported(category.value, f"Could not retrieve {category.value}: {e}"),
            )

        if records is None:
            logger.debug("No query for %s, skipping", category.value)
            return _Batch(category, skipped=True)
        logger.debug("Retrieved %d %s records", len(records), category.value)
        return _Batch(category, records=tuple(records))

    # Merging

    def _merge_all(self, collector: _Collector, batches: List[_Batch], options: CrawlOptions):
        for batch in batches:
            self._merge(collector, batch, options)

    def _merge(self, collector: _Collector, batch: _Batch, options: CrawlOptions):
        builder = collector.builder
        category = batch.category
        if batch.unsupported is not None:
            logger.warning("%s: %s", self.vendor.display_name, batch.unsupported.message)
            if category.is_per_table:
                for key in sorted(builder.table_keys, key=lambda k: k.full_name.lower()):
                    collector.warnings.append(CrawlWarning.from_error(batch.unsupported, key.full_name))
            else:
                collector.warnings.append(CrawlWarning.from_error(batch.unsupported))
            return
        merge_records(builder, [r for r in batch.records if self._accept(category, r, options, builder)])

    @staticmethod
    def _accept(category: MetadataCategory, record, options: CrawlOptions, builder: CatalogBuilder) -> bool:
        if category is MetadataCategory.SCHEMATA:
            return options.schema_inclusion_rule.matches_object(record.key.full_name, record.schema)
        if category is MetadataCategory.TABLES:
            return (
                builder.has_schema(record.key.schema)
                and options.includes_table_type(record.table_type)
                and options.table_inclusion_rule.matches_object(record.key.full_name, record.name)
            )
        if category is MetadataCategory.TABLE_COLUMNS:
            if not builder.has_table(record.table_key):
                return False
            if options.column_inclusion_rule.matches_object(
                record.key.full_name, f"{record.table}.{record.name}", record.name
            ):
                return True
            builder.note_filtered_column(record.table_key)
            return False
        if category is MetadataCategory.ROUTINES:
            return (
                builder.has_schema(record.key.schema)
                and options.routine_inclusion_rule.matches_object(record.key.full_name, record.name)
            )
        if category is MetadataCategory.ROUTINE_COLUMNS:
            return options.routine_column_inclusion_rule.matches_object(
                f"{record.routine_key.full_name}.{record.name}", f"{record.routine}.{record.name}", record.name
            )
        return True


def get_catalog(
    connection_options: DatabaseConnectionOptions,
    options: Optional[CrawlOptions] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> CrawlResult:
    """Connect, crawl and close the connection.

    The connection options' properties also supply SQL overrides. Extra
    connections for concurrent retrieval are opened only with reusable
    credentials.
    """
    connection = connection_options.get_connection()
    try:
        driver = connection_options.driver
        factory = connection_options.get_connection if connection_options.credentials.is_reusable else None
        registry = MetadataSourceRegistry(get_vendor_profile(driver.vendor), connection_options.properties)
        crawler = SchemaCrawler(
            connection,
            registry=registry,
            connection_factory=factory,
            catalog_name=driver.database_name(connection_options.connection_url),
            product_info=connection_options.product_info,
        )
        return crawler.crawl(options, cancel_token)
    finally:
        connection.close()

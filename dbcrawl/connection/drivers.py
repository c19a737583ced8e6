"""DB-API drivers, selected by connection URL scheme.

Each driver imports its database module lazily, so only the drivers that are
actually used need their packages installed.
"""

import logging
import platform
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Any, Callable, Tuple
from urllib.parse import urlparse, parse_qsl, unquote

from ..database.models import ProductInfo
from ..errors import NoDriverError
from ..vendors import DatabaseVendor

logger = logging.getLogger(__name__)


def to_bool(value: Any) -> bool:
    """Convert a property value such as 'true', 'yes' or '1' to a bool."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "y", "1", "on"):
        return True
    if text in ("false", "no", "n", "0", "off", ""):
        return False
    raise ValueError(f"Not a boolean value: {value!r}")


@dataclass(frozen=True)
class DriverProperty:
    """A connection property a driver accepts, and how to convert it."""
    name: str
    convert: Callable[[str], Any] = str
    description: str = ""


def url_scheme(url: str) -> str:
    return url.split(":", 1)[0].lower() if ":" in url else ""


class Driver(ABC):
    """A DB-API driver for one or more URL schemes."""

    name: str = ""
    vendor: DatabaseVendor = DatabaseVendor.GENERIC
    schemes: Tuple[str, ...] = ()
    properties: Tuple[DriverProperty, ...] = ()

    def accepts_url(self, url: str) -> bool:
        return url_scheme(url) in self.schemes

    def property_info(self) -> Dict[str, DriverProperty]:
        """Accepted connection properties, keyed by lower-case name."""
        return {p.name.lower(): p for p in self.properties}

    def database_name(self, url: str) -> str:
        """Extract a database name from the connection URL."""
        path = urlparse(url).path.strip("/")
        return path or self.name

    @abstractmethod
    def connect(self, url: str, user: Optional[str], password: Optional[str], properties: Dict[str, Any]):
        """Open a DB-API connection.

        Raises:
            NoDriverError: If the driver's package is not installed
            Exception: Whatever the database module raises on failure
        """
        pass

    @abstractmethod
    def product_info(self, connection) -> ProductInfo:
        """Read product and driver versions from an open connection."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(schemes={self.schemes})"


def _missing_driver(package: str, extra: str) -> NoDriverError:
    return NoDriverError(
        f"{package} is required. Install it with: pip install {package} (or dbcrawl[{extra}])",
        details={"package": package},
    )


class SQLiteDriver(Driver):
    """sqlite:///relative/path.db, sqlite:////absolute/path.db or sqlite:// for memory."""

    name = "sqlite3"
    vendor = DatabaseVendor.SQLITE
    schemes = ("sqlite",)
    properties = (
        DriverProperty("timeout", float, "Seconds to wait for a database lock"),
        DriverProperty("detect_types", int),
        DriverProperty("isolation_level", str),
        DriverProperty("check_same_thread", to_bool),
        DriverProperty("cached_statements", int),
        DriverProperty("uri", to_bool, "Treat the path as a file: URI"),
    )

    @staticmethod
    def database_path(url: str) -> str:
        path = url[len("sqlite:"):]
        if path.startswith("//"):
            path = path[2:]
        if path.startswith("/"):
            path = path[1:]
        if "?" in path:
            path = path.split("?")[0]
        return path or ":memory:"

    def database_name(self, url: str) -> str:
        path = self.database_path(url)
        if path == ":memory:":
            return "memory"
        return Path(path).stem

    def connect(self, url, user, password, properties):
        import sqlite3

        return sqlite3.connect(self.database_path(url), **properties)

    def product_info(self, connection) -> ProductInfo:
        import sqlite3

        return ProductInfo(
            product_name="SQLite",
            product_version=sqlite3.sqlite_version,
            driver_name="sqlite3",
            driver_version=platform.python_version(),
        )


class DuckDBDriver(Driver):
    """duckdb:///path/to/file.duckdb or duckdb:///:memory:"""

    name = "duckdb"
    vendor = DatabaseVendor.DUCKDB
    schemes = ("duckdb",)
    properties = (
        DriverProperty("read_only", to_bool, "Open the database read-only"),
    )

    @staticmethod
    def database_path(url: str) -> str:
        path = url
        if path.startswith('duckdb:///'):
            path = path[10:]
        elif path.startswith('duckdb://'):
            path = path[9:]
        elif path.startswith('duckdb:'):
            path = path[7:]
        if '?' in path:
            path = path.split('?')[0]
        return path or ":memory:"

    def database_name(self, url: str) -> str:
        path = self.database_path(url)
        if path == ":memory:":
            return "memory"
        return Path(path).stem

    def connect(self, url, user, password, properties):
        try:
            import duckdb
        except ImportError:
            raise _missing_driver("duckdb", "duckdb") from None

        return duckdb.connect(self.database_path(url), **properties)

    def product_info(self, connection) -> ProductInfo:
        import duckdb

        version = connection.execute("SELECT version()").fetchone()[0]
        return ProductInfo(
            product_name="DuckDB",
            product_version=str(version),
            driver_name="duckdb",
            driver_version=duckdb.__version__,
        )


class PostgreSQLDriver(Driver):
    """postgresql://host:port/database"""

    name = "psycopg2"
    vendor = DatabaseVendor.POSTGRESQL
    schemes = ("postgresql", "postgres")
    properties = (
        DriverProperty("connect_timeout", int),
        DriverProperty("sslmode", str),
        DriverProperty("application_name", str),
        DriverProperty("options", str),
    )

    def connect(self, url, user, password, properties):
        try:
            import psycopg2
        except ImportError:
            raise _missing_driver("psycopg2-binary", "postgres") from None

        kwargs = dict(properties)
        if user:
            kwargs["user"] = user
        if password is not None:
            kwargs["password"] = password
        return psycopg2.connect(url, **kwargs)

    def product_info(self, connection) -> ProductInfo:
        import psycopg2

        version = connection.server_version
        return ProductInfo(
            product_name="PostgreSQL",
            product_version=f"{version // 10000}.{version % 10000}",
            driver_name="psycopg2",
            driver_version=psycopg2.__version__.split(" ")[0],
        )


class SnowflakeDriver(Driver):
    """snowflake://account/database[/schema][?warehouse=...&role=...]"""

    name = "snowflake-connector-python"
    vendor = DatabaseVendor.SNOWFLAKE
    schemes = ("snowflake",)
    properties = (
        DriverProperty("warehouse", str),
        DriverProperty("role", str),
        DriverProperty("schema", str),
        DriverProperty("login_timeout", int),
        DriverProperty("authenticator", str),
    )

    def database_name(self, url: str) -> str:
        parts = urlparse(url).path.strip("/").split("/")
        return unquote(parts[0]) if parts and parts[0] else "snowflake"

    def url_properties(self, url: str) -> Dict[str, Any]:
        """Declared properties given as URL query parameters; others are dropped."""
        accepted = self.property_info()
        found = {}
        for key, value in parse_qsl(urlparse(url).query):
            prop = accepted.get(key.lower())
            if prop is None:
                logger.debug("Ignoring unknown URL parameter %s", key)
                continue
            found[prop.name] = prop.convert(value)
        return found

    def connect(self, url, user, password, properties):
        try:
            import snowflake.connector
        except ImportError:
            raise _missing_driver("snowflake-connector-python", "snowflake") from None

        parsed = urlparse(url)
        path = [unquote(p) for p in parsed.path.strip("/").split("/") if p]
        kwargs: Dict[str, Any] = {"account": parsed.hostname}
        if path:
            kwargs["database"] = path[0]
        if len(path) > 1:
            kwargs["schema"] = path[1]
        kwargs.update(self.url_properties(url))
        kwargs.update(properties)
        return snowflake.connector.connect(user=user, password=password, **kwargs)

    def product_info(self, connection) -> ProductInfo:
        import snowflake.connector

        cursor = connection.cursor()
        try:
            cursor.execute("SELECT CURRENT_VERSION()")
            version = cursor.fetchone()[0]
        finally:
            cursor.close()
        return ProductInfo(
            product_name="Snowflake",
            product_version=str(version),
            driver_name="snowflake-connector-python",
            driver_version=snowflake.connector.__version__,
        )


class DriverRegistry:
    """Ordered list of drivers; the first one that accepts a URL wins."""

    def __init__(self, drivers: Optional[List[Driver]] = None):
        self._drivers: List[Driver] = list(drivers or [])

    def register(self, driver: Driver):
        self._drivers.append(driver)

    @property
    def drivers(self) -> List[Driver]:
        return list(self._drivers)

    def find_driver(self, url: str) -> Driver:
        """Find the driver for a connection URL.

        Raises:
            NoDriverError: If no driver accepts the URL
        """
        for driver in self._drivers:
            if driver.accepts_url(url):
                logger.debug("Using %r for %s", driver, url_scheme(url))
                return driver
        schemes = sorted({s for d in self._drivers for s in d.schemes})
        raise NoDriverError(
            f"No database driver accepts URL scheme '{url_scheme(url)}'",
            details={"supported_schemes": ", ".join(schemes)},
        )


def default_driver_registry() -> DriverRegistry:
    """Registry with every built-in driver."""
    return DriverRegistry([SQLiteDriver(), DuckDBDriver(), PostgreSQLDriver(), SnowflakeDriver()])


"""Connection options: a property bag, credentials and the driver they resolve to."""

import logging
from typing import Optional, Dict, Any, Mapping

from ..database.models import ProductInfo
from ..errors import ConfigError, InvalidURLError, NoDriverError, ConnectFailedError
from ..templating import substitute_variables, extract_template_variables
from .credentials import UserCredentials
from .drivers import Driver, DriverRegistry, default_driver_registry

logger = logging.getLogger(__name__)

# Properties used to build the URL, never passed to the driver
SKIP_PROPERTIES = frozenset({"server", "host", "port", "database", "urlx", "user", "password", "url"})

MASK = "*****"


def safe_properties(properties: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of a property map with the password masked, for logging."""
    return {k: (MASK if k.lower() == "password" else v) for k, v in properties.items()}


def mask_url(url: Optional[str]) -> Optional[str]:
    """Copy of a URL with any password in its user info masked, for logging."""
    if not url or "@" not in url or "//" not in url:
        return url
    scheme, _, rest = url.partition("//")
    authority, slash, path = rest.partition("/")
    userinfo, at, host = authority.rpartition("@")
    user, colon, _ = userinfo.partition(":")
    if not at or not colon:
        return url
    return f"{scheme}//{user}:{MASK}@{host}{slash}{path}"


def parse_urlx(urlx: Optional[str]) -> Dict[str, str]:
    """Parse `key=value;key=value` extra connection properties."""
    extras: Dict[str, str] = {}
    if not urlx:
        return extras
    for part in urlx.split(";"):
        part = part.strip()
        if not part:
            continue
        if "=" not in part:
            raise ConfigError(f"Invalid urlx entry '{part}', expected key=value")
        key, value = part.split("=", 1)
        extras[key.strip()] = value.strip()
    return extras


class DatabaseConnectionOptions:
    """Everything needed to open a database connection.

    Args:
        credentials: User credentials
        properties: Connection properties; `url` is a `${name}` template
            expanded against the other properties
        drivers: Driver registry (defaults to every built-in driver)

    Raises:
        ConfigError: If credentials or properties are missing
    """

    def __init__(
        self,
        credentials: Optional[UserCredentials],
        properties: Optional[Mapping[str, Optional[str]]],
        drivers: Optional[DriverRegistry] = None,
    ):
        if credentials is None:
            raise ConfigError("No user credentials provided")
        if not properties:
            raise ConfigError("No connection properties provided")
        self.credentials = credentials
        self._properties = substitute_variables(properties)
        self._drivers = drivers or default_driver_registry()
        self.last_connection_properties: Dict[str, Any] = {}
        self.product_info: Optional[ProductInfo] = None

    @classmethod
    def from_url(
        cls,
        url: str,
        credentials: Optional[UserCredentials] = None,
        drivers: Optional[DriverRegistry] = None,
        **properties: str,
    ) -> "DatabaseConnectionOptions":
        """Options for a literal connection URL plus extra properties."""
        return cls(credentials or UserCredentials(), {**properties, "url": url}, drivers=drivers)

    @property
    def properties(self) -> Dict[str, Optional[str]]:
        return dict(self._properties)

    @property
    def connection_url(self) -> str:
        """The expanded connection URL.

        Raises:
            InvalidURLError: If the URL is blank or has unresolved placeholders
        """
        url = self._properties.get("url")
        if not url or not url.strip():
            raise InvalidURLError("No database connection URL provided")
        unresolved = extract_template_variables(url)
        if unresolved:
            raise InvalidURLError(
                "Insufficient parameters for database connection URL: missing "
                + ", ".join(f"${{{name}}}" for name in sorted(unresolved)),
                details={"url": mask_url(url)},
            )
        return url.strip()

    @property
    def driver(self) -> Driver:
        return self._drivers.find_driver(self.connection_url)

    def connection_properties(self, driver: Optional[Driver] = None) -> Dict[str, Any]:
        """Properties to pass to the driver, converted to the driver's types.

        Only properties the driver declares are passed; `urlx` entries are
        merged in and take precedence over plain properties.

        Raises:
            ConfigError: If a property value cannot be converted
        """
        driver = driver or self.driver
        accepted = driver.property_info()
        candidates: Dict[str, Any] = {
            k: v for k, v in self._properties.items()
            if k.lower() not in SKIP_PROPERTIES and v is not None
        }
        candidates.update(parse_urlx(self._properties.get("urlx")))

        converted: Dict[str, Any] = {}
        for key, value in candidates.items():
            prop = accepted.get(key.lower())
            if prop is None:
                continue
            try:
                converted[prop.name] = prop.convert(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(
                    f"Invalid value for connection property '{prop.name}': {value!r}",
                    details={"property": prop.name, "error": str(e)},
                ) from e
        return converted

    def get_connection(self):
        """Open a new connection and log the database product.

        Raises:
            InvalidURLError: If the URL cannot be resolved
            NoDriverError: If no driver accepts the URL
            ConnectFailedError: If the driver cannot connect
        """
        url = self.connection_url
        driver = self._drivers.find_driver(url)
        properties = self.connection_properties(driver)
        shown_url = mask_url(url)

        logged = dict(properties, user=self.credentials.user)
        if self.credentials.has_password:
            logged["password"] = self.credentials.password
        logged = safe_properties(logged)
        logger.info(
            "Making connection to %s for user '%s', with properties %s",
            shown_url,
            self.credentials.user or "",
            logged,
        )

        try:
            connection = driver.connect(url, self.credentials.user, self.credentials.password, properties)
        except NoDriverError:
            raise
        except Exception as e:
            raise ConnectFailedError(
                f"Could not connect to {shown_url}, with properties {logged}: {e}",
                details={"driver": driver.name, "url": shown_url},
            ) from e
        self.credentials.clear_password()
        self.last_connection_properties = dict(properties, user=self.credentials.user)

        try:
            self.product_info = driver.product_info(connection)
            logger.info(
                "Connected to %s %s using driver %s %s",
                self.product_info.product_name,
                self.product_info.product_version,
                self.product_info.driver_name,
                self.product_info.driver_version,
            )
        except Exception as e:
            logger.warning("Could not log connection information: %s", e)
        return connection

    def __repr__(self) -> str:
        try:
            url = self.connection_url
        except InvalidURLError:
            url = self._properties.get("url")
        return f"DatabaseConnectionOptions(url={mask_url(url)!r}, credentials={self.credentials!r})"

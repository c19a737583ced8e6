"""Configuration management for dbcrawl."""

import io
import os
from importlib import resources
from pathlib import Path
from typing import Optional, Dict, List, Mapping, Iterable

from dotenv import dotenv_values
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings

from .errors import ConfigError
from .options import DEFAULT_TABLE_TYPES
from .registry import SQL_PACKAGE
from .templating import substitute_variables

CONNECTION_RESOURCE = "connection.env"


def _find_env_file() -> Optional[str]:
    """Find .env file in multiple locations.

    Search order:
    1. Current working directory
    2. ~/.dbcrawl/.env
    """
    if os.path.exists(".env"):
        return ".env"

    user_env = Path.home() / ".dbcrawl" / ".env"
    if user_env.exists():
        return str(user_env)

    return None


class Settings(BaseSettings):
    """Application settings loaded from DBCRAWL_* environment variables."""

    log_level: str = Field(
        default="WARNING",
        description="Log level for the command line (DEBUG, INFO, WARNING, ERROR)"
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        description="Maximum number of concurrent metadata retrievals"
    )
    default_table_types: str = Field(
        default=",".join(DEFAULT_TABLE_TYPES),
        description="Comma separated table types to crawl"
    )
    config_files: str = Field(
        default="",
        description="Comma separated property files loaded before command line properties"
    )

    # Connection defaults
    connection_url: Optional[str] = Field(
        default=None,
        description="Database connection URL, may contain ${name} placeholders"
    )
    user: Optional[str] = Field(
        default=None,
        description="Database user"
    )
    password: Optional[SecretStr] = Field(
        default=None,
        description="Database password"
    )

    class Config:
        env_prefix = "DBCRAWL_"
        env_file = _find_env_file()
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def config_file_list(self) -> List[str]:
        return [f.strip() for f in self.config_files.split(",") if f.strip()]

    @property
    def table_type_list(self) -> List[str]:
        return [t.strip() for t in self.default_table_types.split(",") if t.strip()]

    def connection_defaults(self) -> Dict[str, str]:
        """Connection properties taken from settings (the lowest property layer)."""
        defaults = {}
        if self.connection_url:
            defaults["url"] = self.connection_url
        return defaults


def _clean(values: Mapping[str, Optional[str]]) -> Dict[str, str]:
    return {k: v for k, v in values.items() if v is not None}


def read_properties_file(path) -> Dict[str, str]:
    """Read a dotenv-style property file.

    Raises:
        ConfigError: If the file does not exist or cannot be read
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}", details={"path": str(path)})
    try:
        return _clean(dotenv_values(path, interpolate=False))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}", details={"path": str(path)}) from e


def load_vendor_properties(vendor: Optional[str]) -> Dict[str, str]:
    """Read the `connection.env` shipped with a vendor, if there is one."""
    if not vendor:
        return {}
    path = resources.files(SQL_PACKAGE).joinpath(str(vendor), CONNECTION_RESOURCE)
    if not path.is_file():
        return {}
    stream = io.StringIO(path.read_text(encoding="utf-8"))
    return _clean(dotenv_values(stream=stream, interpolate=False))


def load_properties(
    vendor: Optional[str] = None,
    files: Iterable = (),
    overrides: Optional[Mapping[str, str]] = None,
    defaults: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Build a property bag from layered sources, later layers winning.

    Layers: `defaults`, the vendor's packaged `connection.env`, each file in
    order, then `overrides`. `${name}` placeholders are expanded against the
    merged bag and the environment.

    Raises:
        ConfigError: If a file cannot be read
    """
    merged: Dict[str, str] = {}
    merged.update(defaults or {})
    merged.update(load_vendor_properties(vendor))
    for path in files:
        merged.update(read_properties_file(path))
    merged.update(overrides or {})
    return substitute_variables(merged, os.environ)


def parse_property_assignments(assignments: Iterable[str]) -> Dict[str, str]:
    """Parse `key=value` strings from the command line.

    Raises:
        ConfigError: If an entry has no '='
    """
    properties = {}
    for assignment in assignments:
        if "=" not in assignment:
            raise ConfigError(f"Invalid property '{assignment}', expected key=value")
        key, value = assignment.split("=", 1)
        properties[key.strip()] = value
    return properties


# Global settings instance
settings = Settings()

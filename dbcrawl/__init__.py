"""dbcrawl - crawl relational database metadata into an immutable catalog."""

from .crawler import SchemaCrawler, CrawlResult, CrawlWarning, CrawlState, CancellationToken, get_catalog
from .connection import DatabaseConnectionOptions, UserCredentials, SingleUseUserCredentials
from .options import CrawlOptions
from .rules import InclusionRule, GrepRule

__version__ = "0.1.0"

__all__ = [
    "SchemaCrawler",
    "CrawlResult",
    "CrawlWarning",
    "CrawlState",
    "CancellationToken",
    "get_catalog",
    "DatabaseConnectionOptions",
    "UserCredentials",
    "SingleUseUserCredentials",
    "CrawlOptions",
    "InclusionRule",
    "GrepRule",
]

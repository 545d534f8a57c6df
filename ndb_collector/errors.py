"""
Exception types raised by scrapers, the registry and the collector driver.

Per-scraper failures (query, decode, cancellation) are recovered by the
driver and surfaced as meta-metrics. Registration and handle errors are
fatal for the caller that hits them.
"""


class ExporterError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(ExporterError):
    """Configuration file missing or malformed."""


class RegistrationError(ExporterError):
    """A scraper could not be registered (duplicate name or bad contract)."""


class ScraperNotFound(ExporterError, KeyError):
    def __init__(self, name):
        super().__init__(name)
        self.name = name

    def __str__(self):
        return f"no scraper registered under '{self.name}'"


class HandleUnavailable(ExporterError):
    """No database connection could be obtained at all."""


class QueryError(ExporterError):
    def __init__(self, sql, cause):
        super().__init__(f"query failed: {cause}")
        self.sql = sql
        self.cause = cause


class DecodeError(ExporterError):
    def __init__(self, column, value, cause=None):
        super().__init__(f"cannot decode column '{column}' from {value!r}")
        self.column = column
        self.value = value
        self.cause = cause


class ScrapeCancelled(ExporterError):
    """The scrape context was cancelled before the scraper finished."""

    reason = "cancelled"


class ScrapeTimeout(ScrapeCancelled):
    """The scrape context deadline expired."""

    reason = "timeout"


class LabelArityError(ValueError):
    """Label values do not match the descriptor's label names."""


class ScrapeError(ExporterError):
    """A scraper failure annotated with the scraper name."""

    def __init__(self, scraper_name, cause):
        super().__init__(f"{scraper_name}: {cause}")
        self.scraper_name = scraper_name
        self.cause = cause

    @property
    def reason(self):
        if isinstance(self.cause, ScrapeCancelled):
            return self.cause.reason
        return "error"

"""Scraper contract, registry and collector driver for the NDB exporter."""

from .context import ScrapeContext
from .driver import CollectorDriver, CycleResult, ScrapeOutcome
from .registry import REGISTRY, ScraperRegistry, register_scraper
from .scraper import Scraper, ScraperDescriptor
from . import scrapers  # noqa: F401,E402

__all__ = [
    "REGISTRY",
    "CollectorDriver",
    "CycleResult",
    "ScrapeContext",
    "ScrapeOutcome",
    "Scraper",
    "ScraperDescriptor",
    "ScraperRegistry",
    "register_scraper",
]

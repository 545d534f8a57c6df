"""
The scraper contract.

A scraper runs one fixed query against the diagnostic tables and turns
each result row into zero or more metrics. Scrapers keep no per-scrape
state: descriptors are built in __init__ and the same instance may serve
several cycles at once.
"""

from collections import namedtuple

from .errors import DecodeError
from .version import parse_version

ScraperDescriptor = namedtuple("ScraperDescriptor", ["name", "help", "min_version"])


class Scraper:
    """
    Base class for table scrapers.

    Subclasses set `name`, `help`, `min_version`, `query` and `columns`,
    and implement metrics_for_row(). Scrapers that need more than one
    query override scrape() instead.
    """

    name = None
    help = None
    min_version = (8, 0)
    query = None
    columns = ()

    def scrape(self, ctx, db, sink, logger):
        """
        Run the query and send the metrics of each row to sink.

        Every row is decoded in full before any of its metrics are sent. If
        row k fails to decode, the metrics of rows before k have already been
        sent and the DecodeError propagates.
        """
        count = 0
        with db.query(ctx, self.query) as rows:
            for row in rows:
                sink.send_all(self.metrics_for_row(row))
                count += 1
        logger.debug(f"Scraped {count} rows")

    def decode(self, row):
        return decode_row(row, self.columns)

    def metrics_for_row(self, row):
        raise NotImplementedError(f"{type(self).__name__} must implement metrics_for_row()")

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


def check_scraper(scraper, descriptor=None):
    """
    Return a list of reasons why scraper does not satisfy the contract;
    empty when it does.
    """
    problems = []
    for attr in ("name", "help", "min_version"):
        if getattr(scraper, attr, None) in (None, ""):
            problems.append(f"missing '{attr}'")
    if not callable(getattr(scraper, "scrape", None)):
        problems.append("missing callable 'scrape'")
    if descriptor is not None and getattr(scraper, "name", None) != descriptor.name:
        problems.append(f"name '{getattr(scraper, 'name', None)}' does not match descriptor '{descriptor.name}'")
    if getattr(scraper, "min_version", None) is not None:
        try:
            parse_version(scraper.min_version)
        except ValueError as e:
            problems.append(str(e))
    return problems


def decode_row(row, columns):
    """
    Decode a result row with `columns`, a sequence of (column_name, decoder)
    pairs. The whole row is decoded before anything is returned.
    """
    if len(row) != len(columns):
        raise DecodeError(
            "*", row, ValueError(f"expected {len(columns)} columns, got {len(row)}")
        )
    return [decode(value, column) for (column, decode), value in zip(columns, row)]

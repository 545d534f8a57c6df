# Importing the modules registers their scrapers.
from . import info_schema, ndbinfo, perf_schema  # noqa: F401

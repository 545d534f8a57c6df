"""Scrapers for NDB tables in `performance_schema`."""

from ..metrics import PERFORMANCE_SCHEMA, UNTYPED, coalesce_text as TEXT, new_const_metric, new_desc
from ..registry import register_scraper
from ..scraper import Scraper


@register_scraper
class ScrapeNDBSyncPendingObjects(Scraper):
    name = PERFORMANCE_SCHEMA + ".ndb_sync_pending_objects"
    help = "Collect metrics from performance_schema.ndb_sync_pending_objects"
    min_version = (8, 0)
    query = """
        SELECT
            SCHEMA_NAME,
            NAME,
            TYPE
        FROM performance_schema.ndb_sync_pending_objects;
    """
    columns = (
        ("schema_name", TEXT),
        ("name", TEXT),
        ("type", TEXT),
    )

    def __init__(self):
        self.object_desc = new_desc(
            PERFORMANCE_SCHEMA, "ndb_sync_pending_objects",
            "Objects waiting to be synchronised between NDB dictionary and MySQL data dictionary. Always 1.",
            ["schema_name", "name", "type"],
        )

    def metrics_for_row(self, row):
        schema_name, name, object_type = self.decode(row)
        return [new_const_metric(self.object_desc, UNTYPED, 1, schema_name, name, object_type)]


@register_scraper
class ScrapeNDBSyncExcludedObjects(Scraper):
    name = PERFORMANCE_SCHEMA + ".ndb_sync_excluded_objects"
    help = "Collect metrics from performance_schema.ndb_sync_excluded_objects"
    min_version = (8, 0)
    query = """
        SELECT
            SCHEMA_NAME,
            NAME,
            TYPE,
            REASON
        FROM performance_schema.ndb_sync_excluded_objects;
    """
    columns = (
        ("schema_name", TEXT),
        ("name", TEXT),
        ("type", TEXT),
        ("reason", TEXT),
    )

    def __init__(self):
        self.object_desc = new_desc(
            PERFORMANCE_SCHEMA, "ndb_sync_excluded_objects",
            "Objects excluded from NDB dictionary synchronisation by schema_name/name/type/reason. Always 1.",
            ["schema_name", "name", "type", "reason"],
        )

    def metrics_for_row(self, row):
        schema_name, name, object_type, reason = self.decode(row)
        return [new_const_metric(self.object_desc, UNTYPED, 1, schema_name, name, object_type, reason)]

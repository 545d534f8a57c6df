"""Scrapers for NDB tables in `information_schema`."""

from ..metrics import GAUGE, INFORMATION_SCHEMA, coalesce_text as TEXT, new_const_metric, new_desc
from ..registry import register_scraper
from ..scraper import Scraper


@register_scraper
class ScrapeNDBTransIDConnectionMap(Scraper):
    name = INFORMATION_SCHEMA + ".ndb_transid_mysql_connection_map"
    help = "Collect metrics from information_schema.ndb_transid_mysql_connection_map"
    min_version = (5, 1)
    query = """
        SELECT
            mysql_connection_id,
            node_id,
            ndb_transid
        FROM information_schema.ndb_transid_mysql_connection_map;
    """
    columns = (
        ("mysql_connection_id", TEXT),
        ("node_id", TEXT),
        ("ndb_transid", TEXT),
    )

    def __init__(self):
        self.connection_desc = new_desc(
            INFORMATION_SCHEMA, "ndb_transid_mysql_connection_map",
            "NDB connections by mysql_connection_id/node_id/ndb_transid. Always 1 for a listed connection.",
            ["mysql_connection_id", "node_id", "ndb_transid"],
        )

    def metrics_for_row(self, row):
        mysql_connection_id, node_id, ndb_transid = self.decode(row)
        return [new_const_metric(self.connection_desc, GAUGE, 1, mysql_connection_id, node_id, ndb_transid)]

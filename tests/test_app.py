"""Tests for the Flask endpoints of ndb_exporter."""

import gzip

import pytest

import ndb_exporter
from conftest import FakeDatabase
from ndb_collector.context import ScrapeContext

TARGET = """
global:
  scrape_timeout: 10s
  cancel_grace: 500ms
target:
  name: ndb_test
  data_source_name: ndb
  scrapers:
    - "ndbinfo.*"
  exclude_scrapers:
    - ndbinfo.cpustat
"""

SETTINGS = """
global:
  scrape_timeout: 30s
data_sources:
  ndb:
    host: db
    user: exporter
    password: secret
    max_connections: 2
"""


@pytest.fixture
def fake_db():
    return FakeDatabase(tables={"ndbinfo.nodes": [(1, 3600, "STARTED", "0", 1)]})


@pytest.fixture
def client(tmp_path, monkeypatch, fake_db):
    target_dir = tmp_path / "targets" / "ndb_test"
    target_dir.mkdir(parents=True)
    (target_dir / "ndb_exporter.yml").write_text(TARGET)
    (tmp_path / "targets" / "broken").mkdir()
    (tmp_path / "targets" / "broken" / "ndb_exporter.yml").write_text("target: {}\n")
    settings = tmp_path / "settings.yml"
    settings.write_text(SETTINGS)

    monkeypatch.setenv("NDB_EXPORTER_TARGETS_DIR", str(tmp_path / "targets"))
    monkeypatch.setenv("NDB_EXPORTER_SETTINGS", str(settings))
    monkeypatch.setattr(ndb_exporter, "shutdown_ctx", ScrapeContext())
    monkeypatch.setattr(ndb_exporter, "get_or_create_database", lambda name, conn_config: fake_db)

    ndb_exporter.app.config["TESTING"] = True
    with ndb_exporter.app.test_client() as c:
        yield c


class TestMetricsEndpoint:
    def test_missing_exporter(self, client):
        assert client.get("/metrics").status_code == 400

    def test_invalid_exporter(self, client):
        assert client.get("/metrics?exporter=../etc").status_code == 400

    def test_unknown_exporter(self, client):
        response = client.get("/metrics?exporter=nope")
        assert response.status_code == 400
        assert b"Unknown exporter" in response.data

    def test_target_without_data_source(self, client):
        response = client.get("/metrics?exporter=broken")
        assert response.status_code == 500
        assert b"mysql_up 0" in response.data

    def test_successful_scrape(self, client, fake_db):
        response = client.get("/metrics?exporter=ndb_test")
        assert response.status_code == 200
        assert response.headers["Content-Type"].startswith("text/plain")
        body = response.data.decode()
        assert 'mysql_ndbinfo_nodes_uptime_total{node_id="1",status="STARTED",start_phase="0"} 3600.0' in body
        assert 'mysql_exporter_scraper_success{scraper="ndbinfo.nodes"} 1.0' in body
        assert "mysql_up 1.0" in body
        assert "ndbinfo.cpustat" not in fake_db.queries
        assert "perf_schema.ndb_sync_pending_objects" not in body

    def test_collect_filter(self, client, fake_db):
        response = client.get("/metrics?exporter=ndb_test&collect[]=ndbinfo.nodes&collect[]=ndbinfo.counters")
        assert response.status_code == 200
        assert sorted(fake_db.queries) == ["ndbinfo.counters", "ndbinfo.nodes"]

    def test_exclude_param(self, client, fake_db):
        response = client.get("/metrics?exporter=ndb_test&exclude[]=ndbinfo.*")
        assert response.status_code == 400
        assert b"Available scrapers" in response.data

    def test_all_scrapers_failed(self, client, fake_db):
        fake_db.errors = {"ndbinfo.nodes": Exception("table missing")}
        response = client.get("/metrics?exporter=ndb_test&collect[]=ndbinfo.nodes")
        assert response.status_code == 500
        assert b'mysql_exporter_scraper_success{scraper="ndbinfo.nodes"} 0.0' in response.data

    def test_partial_failure_is_still_ok(self, client, fake_db):
        fake_db.errors = {"ndbinfo.nodes": Exception("table missing")}
        response = client.get("/metrics?exporter=ndb_test&collect[]=ndbinfo.nodes&collect[]=ndbinfo.counters")
        assert response.status_code == 200

    def test_gzip(self, client):
        response = client.get("/metrics?exporter=ndb_test", headers={"Accept-Encoding": "gzip"})
        assert response.status_code == 200
        assert response.headers["Content-Encoding"] == "gzip"
        assert b"mysql_up 1.0" in gzip.decompress(response.data)

    def test_prometheus_timeout_header(self, client):
        response = client.get("/metrics?exporter=ndb_test", headers={"X-Prometheus-Scrape-Timeout-Seconds": "5"})
        assert response.status_code == 200


def test_scrapers_listing(client):
    response = client.get("/scrapers")
    assert response.status_code == 200
    lines = response.data.decode().splitlines()
    assert "ndbinfo.transporter_details\t8.4\tCollect metrics from ndbinfo.transporter_details" in lines


def test_index(client):
    assert b"/metrics" in client.get("/").data


@pytest.mark.parametrize("raw, seconds", [
    ("500ms", 0.5),
    ("10s", 10),
    ("5m", 300),
    ("2h", 7200),
    ("15", 15),
    (3, 3),
])
def test_parse_duration(raw, seconds):
    assert ndb_exporter.parse_duration(raw) == seconds


def test_parse_duration_rejects_garbage():
    with pytest.raises(ValueError):
        ndb_exporter.parse_duration("soon")


def test_failure_body():
    assert ndb_exporter.failure_body("bad\nsecond line") == "# scrape failed: bad\nmysql_up 0\n"


def test_mask_passwords():
    masked = ndb_exporter.mask_passwords({"data_sources": {"ndb": {"user": "u", "password": "secret"}}})
    assert masked["data_sources"]["ndb"]["password"] == "***"


def test_graceful_shutdown_closes_databases(monkeypatch):
    closed = []

    class Handle:
        def __init__(self, name):
            self.name = name

        def close(self):
            closed.append(self.name)

    ctx = ScrapeContext()
    monkeypatch.setattr(ndb_exporter, "shutdown_ctx", ctx)
    monkeypatch.setattr(ndb_exporter, "databases", {"a": Handle("a"), "b": Handle("b")})
    ndb_exporter.graceful_shutdown()
    assert sorted(closed) == ["a", "b"]
    assert ndb_exporter.databases == {}
    assert ctx.done()


def test_missing_settings_file(client, monkeypatch, tmp_path):
    monkeypatch.setenv("NDB_EXPORTER_SETTINGS", str(tmp_path / "gone.yml"))
    response = client.get("/metrics?exporter=ndb_test")
    assert response.status_code == 500
    assert response.data.startswith(b"# scrape failed: Cannot read")
    assert b"mysql_up 0" in response.data


def test_unreachable_database_reports_cause(client, fake_db, caplog):
    from ndb_collector.errors import HandleUnavailable

    fake_db.version = HandleUnavailable("connection refused")
    response = client.get("/metrics?exporter=ndb_test")
    assert response.status_code == 500
    assert b"mysql_up 0.0" in response.data
    assert "Scrape of 'ndb_test' failed" in caplog.text
    assert "connection refused" in caplog.text

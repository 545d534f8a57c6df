"""Tests for the collector driver: isolation, gating, cancellation and meta-metrics."""

import threading
import time

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from conftest import FakeDatabase, metric_map
from ndb_collector.context import ScrapeContext
from ndb_collector.driver import CollectorDriver
from ndb_collector.errors import HandleUnavailable, ScrapeCancelled
from ndb_collector.metrics import GAUGE, new_const_metric, new_desc
from ndb_collector.registry import ScraperRegistry
from ndb_collector.scraper import Scraper, ScraperDescriptor


def make_registry(*scrapers):
    registry = ScraperRegistry()
    for scraper in scrapers:
        registry.register(ScraperDescriptor(scraper.name, scraper.help, scraper.min_version), lambda s=scraper: s)
    return registry


class ValueScraper(Scraper):
    help = "test scraper"

    def __init__(self, name, value=1.0, min_version=(8, 0), calls=None):
        self.name = name
        self.min_version = min_version
        self.value = value
        self.calls = calls
        self.desc = new_desc("test", name.replace(".", "_"), "test value")

    def scrape(self, ctx, db, sink, logger):
        if self.calls is not None:
            self.calls.append(self.name)
        sink.send(new_const_metric(self.desc, GAUGE, self.value))


class FailingScraper(ValueScraper):
    def scrape(self, ctx, db, sink, logger):
        raise RuntimeError("boom")


class PatientScraper(ValueScraper):
    """Waits on the context like a scraper blocked in a cancellable query."""

    def scrape(self, ctx, db, sink, logger):
        ctx.wait(30)
        ctx.check()
        sink.send(new_const_metric(self.desc, GAUGE, self.value))


class StubbornScraper(ValueScraper):
    """Ignores cancellation entirely."""

    def __init__(self, name, release):
        super().__init__(name)
        self.release = release

    def scrape(self, ctx, db, sink, logger):
        self.release.wait(10)


def outcomes_by_name(result):
    return {outcome.scraper_name: outcome for outcome in result.outcomes}


class TestCycle:
    def test_failure_is_isolated(self):
        registry = make_registry(ValueScraper("ndbinfo.a", 1), FailingScraper("ndbinfo.b"), ValueScraper("ndbinfo.c", 3))
        result = CollectorDriver(FakeDatabase(), registry=registry).run(ScrapeContext(timeout=5))

        outcomes = outcomes_by_name(result)
        assert outcomes["ndbinfo.a"].success and outcomes["ndbinfo.c"].success
        assert not outcomes["ndbinfo.b"].success
        assert outcomes["ndbinfo.b"].reason == "error"
        assert outcomes["ndbinfo.b"].error.scraper_name == "ndbinfo.b"
        assert isinstance(outcomes["ndbinfo.b"].error.cause, RuntimeError)
        assert result.ok

        values = metric_map(result.metrics)
        assert values[("mysql_test_ndbinfo_a", ())] == 1.0
        assert values[("mysql_test_ndbinfo_c", ())] == 3.0
        assert values[("mysql_exporter_scraper_success", ("ndbinfo.a",))] == 1.0
        assert values[("mysql_exporter_scraper_success", ("ndbinfo.b",))] == 0.0
        assert values[("mysql_up", ())] == 1.0

    def test_outcomes_in_registry_order(self):
        registry = make_registry(ValueScraper("ndbinfo.z"), ValueScraper("ndbinfo.a"), ValueScraper("ndbinfo.m"))
        result = CollectorDriver(FakeDatabase(), registry=registry).run(ScrapeContext(timeout=5))
        assert [o.scraper_name for o in result.outcomes] == ["ndbinfo.a", "ndbinfo.m", "ndbinfo.z"]

    def test_sequential_mode_runs_in_order(self):
        calls = []
        registry = make_registry(*(ValueScraper(f"ndbinfo.{c}", calls=calls) for c in "dcba"))
        CollectorDriver(FakeDatabase(), registry=registry, max_workers=1).run(ScrapeContext(timeout=5))
        assert calls == ["ndbinfo.a", "ndbinfo.b", "ndbinfo.c", "ndbinfo.d"]

    def test_version_gating_and_filters(self):
        calls = []
        registry = make_registry(
            ValueScraper("ndbinfo.old", calls=calls),
            ValueScraper("ndbinfo.new", min_version=(8, 4), calls=calls),
            ValueScraper("perf_schema.other", calls=calls),
        )
        driver = CollectorDriver(FakeDatabase(version="8.0.40"), registry=registry, include=["ndbinfo.*"])
        assert [d.name for d in driver.candidates((8, 4))] == ["ndbinfo.new", "ndbinfo.old"]
        result = driver.run(ScrapeContext(timeout=5))
        assert calls == ["ndbinfo.old"]
        assert result.engine_version == (8, 0)

    def test_exclude(self):
        registry = make_registry(ValueScraper("ndbinfo.a"), ValueScraper("ndbinfo.b"))
        driver = CollectorDriver(FakeDatabase(), registry=registry, exclude=["ndbinfo.b"])
        result = driver.run(ScrapeContext(timeout=5))
        assert [o.scraper_name for o in result.outcomes] == ["ndbinfo.a"]

    def test_meta_metrics(self):
        registry = make_registry(ValueScraper("ndbinfo.a"))
        result = CollectorDriver(FakeDatabase(), registry=registry).run(ScrapeContext(timeout=5))
        values = metric_map(result.metrics)
        assert ("mysql_exporter_scraper_duration_seconds", ("ndbinfo.a",)) in values
        assert values[("mysql_exporter_last_scrape_duration_seconds", ())] >= 0
        assert values[("mysql_exporter_last_scrape_duration_seconds", ())] == pytest.approx(result.duration)

    def test_no_candidates(self):
        result = CollectorDriver(FakeDatabase(), registry=ScraperRegistry()).run(ScrapeContext(timeout=5))
        assert result.outcomes == []
        assert result.ok


class TestCycleFailure:
    def test_handle_unavailable(self):
        calls = []
        registry = make_registry(ValueScraper("ndbinfo.a", calls=calls))
        db = FakeDatabase(version=HandleUnavailable("connection refused"))
        result = CollectorDriver(db, registry=registry).run(ScrapeContext(timeout=5))
        assert not result.ok
        assert not result.handle_available
        assert calls == []
        assert metric_map(result.metrics)[("mysql_up", ())] == 0.0

    def test_all_scrapers_failed(self):
        registry = make_registry(FailingScraper("ndbinfo.a"), FailingScraper("ndbinfo.b"))
        result = CollectorDriver(FakeDatabase(), registry=registry).run(ScrapeContext(timeout=5))
        assert len(result.failed) == 2
        assert not result.ok

    def test_all_failed_tolerated_when_disabled(self):
        registry = make_registry(FailingScraper("ndbinfo.a"))
        driver = CollectorDriver(FakeDatabase(), registry=registry, fail_on_all_scrapers_failed=False)
        assert driver.run(ScrapeContext(timeout=5)).ok


class TestCancellation:
    def test_deadline_stops_cooperative_scraper(self):
        registry = make_registry(PatientScraper("ndbinfo.slow"), ValueScraper("ndbinfo.fast"))
        start = time.monotonic()
        result = CollectorDriver(FakeDatabase(), registry=registry, cancel_grace=1.0).run(ScrapeContext(timeout=0.3))
        elapsed = time.monotonic() - start

        assert elapsed < 3
        outcomes = outcomes_by_name(result)
        assert outcomes["ndbinfo.fast"].success
        assert not outcomes["ndbinfo.slow"].success
        assert outcomes["ndbinfo.slow"].reason == "timeout"
        assert ("mysql_test_ndbinfo_slow", ()) not in metric_map(result.metrics)

    def test_deadline_does_not_wait_for_stubborn_scraper(self):
        release = threading.Event()
        registry = make_registry(StubbornScraper("ndbinfo.stuck", release))
        try:
            start = time.monotonic()
            result = CollectorDriver(FakeDatabase(), registry=registry, cancel_grace=0.2).run(
                ScrapeContext(timeout=0.2)
            )
            elapsed = time.monotonic() - start
        finally:
            release.set()
        assert elapsed < 2
        (outcome,) = result.outcomes
        assert not outcome.success
        assert outcome.reason == "timeout"

    def test_parent_cancellation(self):
        parent = ScrapeContext()
        registry = make_registry(PatientScraper("ndbinfo.slow"))
        driver = CollectorDriver(FakeDatabase(), registry=registry, cancel_grace=1.0)
        ctx = ScrapeContext(timeout=30, parent=parent)
        threading.Timer(0.2, parent.cancel, args=(ScrapeCancelled("shutting down"),)).start()

        start = time.monotonic()
        result = driver.run(ctx)
        assert time.monotonic() - start < 5
        (outcome,) = result.outcomes
        assert outcome.reason == "cancelled"

    def test_pre_cancelled_context(self):
        ctx = ScrapeContext()
        ctx.cancel()
        registry = make_registry(ValueScraper("ndbinfo.a"))
        result = CollectorDriver(FakeDatabase(), registry=registry).run(ctx)
        assert all(not o.success for o in result.outcomes)


class TestPrometheusCollector:
    def test_collect_through_registry(self):
        registry = make_registry(ValueScraper("ndbinfo.a", 5), FailingScraper("ndbinfo.b"))
        driver = CollectorDriver(FakeDatabase(), registry=registry, timeout=5)
        collector_registry = CollectorRegistry(auto_describe=False)
        collector_registry.register(driver)

        output = generate_latest(collector_registry).decode()
        assert "mysql_test_ndbinfo_a 5.0" in output
        assert 'mysql_exporter_scraper_success{scraper="ndbinfo.b"} 0.0' in output
        assert "mysql_up 1.0" in output
        assert driver.last_result.ok

    def test_collect_detaches_from_parent(self):
        parent = ScrapeContext()
        registry = make_registry(ValueScraper("ndbinfo.a"))
        driver = CollectorDriver(FakeDatabase(), registry=registry, timeout=5, parent_ctx=parent)
        list(driver.collect())
        list(driver.collect())
        assert parent._callbacks == []

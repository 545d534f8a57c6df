"""
Collector driver: runs one scrape cycle over the selected scrapers.

Every scraper runs in isolation. A failing, cancelled or timed-out scraper
is logged and reported through the scraper_success meta-metric; it never
stops the other scrapers of the cycle.
"""

import logging
import time
from collections import namedtuple
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait

from .context import ScrapeContext
from .errors import HandleUnavailable, ScrapeCancelled, ScrapeError
from .metrics import Desc, GAUGE, NAMESPACE, build_fq_name, new_const_metric
from .registry import REGISTRY
from .sink import MetricSink, to_families
from .version import detect_engine_version, format_version, gate

ScrapeOutcome = namedtuple("ScrapeOutcome", ["scraper_name", "success", "duration", "error", "reason"])

EXPORTER = "exporter"


class CycleResult:
    def __init__(self, outcomes, metrics, engine_version, duration, handle_available=True,
                 error=None, fail_on_all_scrapers_failed=True):
        self.outcomes = outcomes
        self.metrics = metrics
        self.engine_version = engine_version
        self.duration = duration
        self.handle_available = handle_available
        self.error = error
        self._fail_on_all = fail_on_all_scrapers_failed

    @property
    def failed(self):
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def ok(self):
        """False when the database was unreachable or every scraper failed."""
        if not self.handle_available:
            return False
        if self._fail_on_all and self.outcomes and len(self.failed) == len(self.outcomes):
            return False
        return True


class CollectorDriver:
    """
    Runs the scrapers of `registry` that match include/exclude and the
    detected engine version against `db`.

    max_workers=1 runs scrapers one after another in registry order. The
    driver is also a prometheus_client collector: collect() runs a cycle
    bounded by `timeout` seconds.
    """

    def __init__(self, db, registry=None, include=None, exclude=None, max_workers=4,
                 timeout=None, cancel_grace=1.0, fail_on_all_scrapers_failed=True,
                 parent_ctx=None, logger=None):
        self.db = db
        self.registry = registry if registry is not None else REGISTRY
        self.include = list(include or [])
        self.exclude = list(exclude or [])
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.cancel_grace = cancel_grace
        self.fail_on_all_scrapers_failed = fail_on_all_scrapers_failed
        self.parent_ctx = parent_ctx
        self.logger = logger or logging.getLogger("ndb_collector")
        self.last_result = None

        self._up_desc = Desc(
            build_fq_name(NAMESPACE, "", "up"),
            "Whether the database could be reached (1) or not (0).",
        )
        self._success_desc = Desc(
            build_fq_name(NAMESPACE, EXPORTER, "scraper_success"),
            "Whether the scraper succeeded (1) or failed (0) in this scrape.",
            ["scraper"],
        )
        self._duration_desc = Desc(
            build_fq_name(NAMESPACE, EXPORTER, "scraper_duration_seconds"),
            "Time the scraper took in this scrape, in seconds.",
            ["scraper"],
        )
        self._cycle_duration_desc = Desc(
            build_fq_name(NAMESPACE, EXPORTER, "last_scrape_duration_seconds"),
            "Duration of the whole scrape cycle, in seconds.",
        )

    def candidates(self, engine_version):
        enabled = self.registry.select(self.include, self.exclude)
        return gate(enabled, engine_version)

    def run(self, ctx):
        start = time.monotonic()
        sink = MetricSink()
        try:
            engine_version = detect_engine_version(self.db, ctx)
        except HandleUnavailable as e:
            self.logger.error(f"Database handle unavailable, skipping all scrapers: {e}")
            sink.close()
            duration = time.monotonic() - start
            metrics = [
                new_const_metric(self._up_desc, GAUGE, 0),
                new_const_metric(self._cycle_duration_desc, GAUGE, duration),
            ]
            return CycleResult([], metrics, None, duration, handle_available=False, error=e,
                               fail_on_all_scrapers_failed=self.fail_on_all_scrapers_failed)

        candidates = self.candidates(engine_version)
        self.logger.info(
            f"Scraping {len(candidates)} scraper(s) for engine version {format_version(engine_version)}: "
            f"{[d.name for d in candidates]}"
        )
        outcomes = self._run_candidates(ctx, candidates, sink)
        sink.close()

        duration = time.monotonic() - start
        metrics = sink.metrics()
        metrics.append(new_const_metric(self._up_desc, GAUGE, 1))
        for outcome in outcomes:
            metrics.append(new_const_metric(self._success_desc, GAUGE, 1 if outcome.success else 0, outcome.scraper_name))
            metrics.append(new_const_metric(self._duration_desc, GAUGE, outcome.duration, outcome.scraper_name))
        metrics.append(new_const_metric(self._cycle_duration_desc, GAUGE, duration))

        failed = [outcome.scraper_name for outcome in outcomes if not outcome.success]
        if failed:
            self.logger.warning(f"Scrape finished in {duration:.3f}s with {len(failed)} failed scraper(s): {failed}")
        else:
            self.logger.info(f"Scrape finished in {duration:.3f}s")
        return CycleResult(outcomes, metrics, engine_version, duration,
                           fail_on_all_scrapers_failed=self.fail_on_all_scrapers_failed)

    def _run_candidates(self, ctx, candidates, sink):
        if not candidates:
            return []
        started = {}
        results = {}
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(candidates)),
            thread_name_prefix="scraper",
        )
        try:
            futures = {
                executor.submit(self._run_one, ctx, descriptor, sink, started): descriptor
                for descriptor in candidates
            }
            pending = set(futures)
            while pending and not ctx.done():
                remaining = ctx.remaining()
                timeout = 0.1 if remaining is None else min(0.1, remaining)
                done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = future.result()
                    results[outcome.scraper_name] = outcome

            if pending:
                error = ctx.err() or ScrapeCancelled("scrape context cancelled")
                self.logger.warning(
                    f"Scrape context ended ({error.reason}) with {len(pending)} scraper(s) still running; "
                    f"waiting up to {self.cancel_grace}s for them to stop"
                )
                done, pending = wait(pending, timeout=self.cancel_grace)
                for future in done:
                    outcome = future.result()
                    results[outcome.scraper_name] = outcome
                now = time.monotonic()
                for future in pending:
                    name = futures[future].name
                    future.cancel()
                    cause = ScrapeError(name, error)
                    duration = now - started[name] if name in started else 0.0
                    self.logger.error(f"Scraper '{name}' did not finish: {error}")
                    results[name] = ScrapeOutcome(name, False, duration, cause, cause.reason)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return [results[descriptor.name] for descriptor in candidates]

    def _run_one(self, ctx, descriptor, sink, started):
        name = descriptor.name
        start = time.monotonic()
        started[name] = start
        logger = self.logger.getChild(name)
        try:
            ctx.check()
            scraper = self.registry.lookup(name)
            scraper.scrape(ctx, self.db, sink, logger)
        except Exception as e:
            duration = time.monotonic() - start
            error = e if isinstance(e, ScrapeError) else ScrapeError(name, e)
            if isinstance(error.cause, ScrapeCancelled):
                logger.warning(f"Scraper '{name}' was interrupted after {duration:.3f}s: {error.cause}")
            else:
                logger.error(f"Error from scraper '{name}' after {duration:.3f}s: {error.cause}")
            return ScrapeOutcome(name, False, duration, error, error.reason)
        duration = time.monotonic() - start
        logger.debug(f"Scraper '{name}' finished in {duration:.3f}s")
        return ScrapeOutcome(name, True, duration, None, "ok")

    # prometheus_client collector protocol

    def describe(self):
        return []

    def collect(self):
        ctx = ScrapeContext(timeout=self.timeout, parent=self.parent_ctx)
        try:
            self.last_result = self.run(ctx)
        finally:
            ctx.release()
        return iter(to_families(self.last_result.metrics))

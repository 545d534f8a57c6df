import logging
import threading
import time
from threading import Lock

from .errors import ScrapeCancelled, ScrapeTimeout


class ScrapeContext:
    """
    Cancellation and deadline shared by every scraper of one scrape cycle.

    Scrapers call check() between rows; the database handle registers a
    callback with on_cancel() to abort an in-flight query.
    """

    def __init__(self, timeout=None, parent=None):
        self._event = threading.Event()
        self._lock = Lock()
        self._callbacks = []
        self._error = None
        self.deadline = time.monotonic() + timeout if timeout else None
        self._detach = lambda: None
        if parent is not None:
            if parent.deadline is not None and (self.deadline is None or parent.deadline < self.deadline):
                self.deadline = parent.deadline
            self._detach = parent.on_cancel(lambda: self.cancel(parent.err()))

    def remaining(self):
        """Seconds until the deadline, None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self):
        return self.deadline is not None and time.monotonic() >= self.deadline

    def cancel(self, error=None):
        with self._lock:
            if self._event.is_set():
                return
            self._error = error or ScrapeCancelled("scrape context cancelled")
            callbacks = list(self._callbacks)
            self._callbacks.clear()
            self._event.set()
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logging.warning(f"Cancel callback failed: {e}")

    def done(self):
        if not self._event.is_set() and self.expired():
            self.cancel(ScrapeTimeout("scrape deadline exceeded"))
        return self._event.is_set()

    def err(self):
        """The cancellation error, or None while the context is live."""
        if self.done():
            return self._error
        return None

    def check(self):
        error = self.err()
        if error is not None:
            raise error

    def wait(self, timeout=None):
        """Block until cancelled, the deadline passes or timeout elapses."""
        remaining = self.remaining()
        if remaining is not None and (timeout is None or remaining < timeout):
            timeout = remaining
        self._event.wait(timeout)
        return self.done()

    def on_cancel(self, callback):
        """
        Run callback once when the context is cancelled. Returns a function
        that unregisters it. Runs immediately if already cancelled.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def unregister():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)
                return unregister
        callback()
        return lambda: None

    def release(self):
        """Stop following the parent context."""
        self._detach()

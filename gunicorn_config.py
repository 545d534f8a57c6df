import os

bind = os.environ.get("NDB_EXPORTER_BIND", "0.0.0.0:9104")
workers = 2  # Each worker keeps its own database handles
threads = 4  # Concurrent scrapes per worker; scrapers run on their own thread pool
worker_class = "gthread"

loglevel = "info"
accesslog = "-"  # Log to stdout
errorlog = "-"   # Log to stderr

# Timeout settings for client disconnects and stuck requests
timeout = 45      # Worker timeout - should be > scrape_timeout + cancel_grace
keepalive = 2     # Keep-alive for HTTP connections
graceful_timeout = 30  # Graceful shutdown timeout

max_requests = 500        # Restart workers after this many requests
max_requests_jitter = 50  # Add randomness to worker restart
preload_app = False       # Don't preload so each worker opens its own connections

# Enable proper signal handling for Docker
enable_stdio_inheritance = True

wsgi_app = "ndb_exporter:app"


def worker_timeout(worker):
    """Called when a worker times out (client disconnect or stuck request)."""
    import logging
    logging.warning(f"Worker {worker.pid} timed out - likely a scrape exceeding the gunicorn timeout")


def worker_exit(server, worker):
    """Called when a worker is exiting: cancel scrapes and close pooled connections."""
    import logging
    logging.info(f"Worker {worker.pid} exiting - cleanup initiated")
    from ndb_exporter import graceful_shutdown
    graceful_shutdown()


def on_exit(server):
    """Called when the master process is exiting."""
    import logging
    logging.info("Gunicorn master process exiting")

import yaml                     # For loading .yml settings and target files
import fnmatch                  # For matching scraper name patterns
import time                     # For scrape duration tracking
import logging                  # For structured logging
import os
import re
import signal
from pathlib import Path        # For clean file path handling
from flask import Flask, request, Response  # For HTTP metrics endpoint
import gzip
import datetime                 # For timezone-aware log timestamps
from threading import Lock      # For guarding the shared database handles
import pytz
import tzlocal
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from ndb_collector import REGISTRY, CollectorDriver, ScrapeContext
from ndb_collector.database import Database
from ndb_collector.errors import ConfigError, ScrapeCancelled


# Configure logging
logging.basicConfig(
    level=os.environ.get("NDB_EXPORTER_LOG_LEVEL", "INFO").upper(),
    format='[%(asctime)s] %(levelname)s %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


class TZFormatter(logging.Formatter):
    """Logging formatter that renders times in a given tzinfo (pytz).

    Usage: set handler.setFormatter(TZFormatter(fmt, datefmt, tz=tzobj))
    """
    def __init__(self, fmt=None, datefmt=None, tz=None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.tz = tz

    def formatTime(self, record, datefmt=None):
        dt = datetime.datetime.fromtimestamp(record.created, tz=self.tz or datetime.timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec='seconds')


def apply_logging_timezone(tzinfo):
    fmt = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'
    datefmt = '%Y-%m-%d %H:%M:%S %Z'
    for h in logging.root.handlers:
        h.setFormatter(TZFormatter(fmt=fmt, datefmt=datefmt, tz=tzinfo))


def resolve_timezone(tz_name):
    """'system' uses the local zone (tzlocal); anything else is a pytz name. Falls back to UTC."""
    if not tz_name or tz_name == 'system':
        return tzlocal.get_localzone()
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logging.warning(f"Invalid timezone '{tz_name}' in settings; falling back to UTC")
        return datetime.timezone.utc


app = Flask(__name__)

# Scrape cycles in flight are children of this context; graceful_shutdown cancels it.
shutdown_ctx = ScrapeContext()


def parse_duration(s):
    """
    Converts a duration string like '500ms', '10s', '5m', or '2h' into seconds (float).
    """
    units = {
        'ms': 0.001,
        's': 1,
        'm': 60,
        'h': 3600
    }

    s = str(s).strip().lower()
    for unit, factor in units.items():
        if s.endswith(unit):
            try:
                return float(s[:-len(unit)]) * factor
            except ValueError:
                raise ValueError(f"Invalid numeric value in duration: {s}")
    # Default fallback: assume it's raw seconds
    try:
        return float(s)
    except ValueError:
        raise ValueError(f"Unrecognized duration format: {s}")


def settings_path():
    return Path(os.environ.get("NDB_EXPORTER_SETTINGS", Path(__file__).parent / 'settings.yml'))


def targets_dir():
    return Path(os.environ.get("NDB_EXPORTER_TARGETS_DIR", "./targets"))


def mask_passwords(config):
    """Deep copy of a settings/target dict with data source passwords masked, for logging."""
    masked = yaml.safe_load(yaml.dump(config)) or {}
    for ds in (masked.get('data_sources') or {}).values():
        if isinstance(ds, dict) and 'password' in ds:
            ds['password'] = '***'
    return masked


def _load_yaml(path):
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return data


def load_target_config(exporter_name):
    """
    Loads targets/<exporter>/ndb_exporter.yml.
    Returns the parsed config dictionary and the base directory path.
    """
    config_path = targets_dir() / exporter_name / 'ndb_exporter.yml'
    logging.info(f"Loading config from: {config_path}")

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    config = _load_yaml(config_path)
    target = config.get('target')
    if not isinstance(target, dict) or not target.get('data_source_name'):
        raise ConfigError(f"{config_path}: 'target.data_source_name' is required")
    logging.debug(f"Loaded config: {mask_passwords(config)}")
    return config, config_path.parent


def load_settings(path=None):
    """
    Loads the settings.yml file containing data source connection info.
    """
    return _load_yaml(path or settings_path())


def get_connection_config_from_settings(data_source_name, settings):
    data_sources = settings.get('data_sources') or {}
    if data_source_name not in data_sources:
        raise ConfigError(f"Data source '{data_source_name}' not found in settings.yml")
    conn_config = data_sources[data_source_name]
    if not isinstance(conn_config, dict) or 'user' not in conn_config:
        raise ConfigError(f"Data source '{data_source_name}' needs at least a 'user'")
    return conn_config


# Shared database handles per data source
databases = {}
databases_lock = Lock()


def get_or_create_database(data_source_name, conn_config):
    """
    Get or create the shared database handle for the given data source.
    """
    with databases_lock:
        db = databases.get(data_source_name)
        if db is None:
            max_lifetime = parse_duration(conn_config.get('max_connection_lifetime', '0'))
            db = Database(
                data_source_name, conn_config,
                max_idle=conn_config.get('max_idle_connections'),
                max_lifetime=max_lifetime,
            )
            databases[data_source_name] = db
        return db


def select_scrapers(target, include_params, exclude_params):
    """
    Names of the scrapers enabled for this scrape: the target's `scrapers`
    patterns minus its `exclude_scrapers`, narrowed by the request's
    collect[] and exclude[] parameters.
    """
    exclude = list(target.get('exclude_scrapers') or []) + list(exclude_params)
    enabled = REGISTRY.select(target.get('scrapers') or None, exclude)
    names = [descriptor.name for descriptor in enabled]
    if include_params:
        names = [name for name in names if any(fnmatch.fnmatch(name, p) for p in include_params)]
    return names


def effective_timeout(global_config, settings):
    settings_scrape_timeout = (settings.get('global') or {}).get('scrape_timeout', settings.get('scrape_timeout', 30))
    scrape_timeout = parse_duration(global_config.get('scrape_timeout', settings_scrape_timeout))
    scrape_timeout_offset = parse_duration(global_config.get('scrape_timeout_offset', '0'))

    # --- Get Prometheus scrape timeout from header ---
    prometheus_timeout = request.headers.get('X-Prometheus-Scrape-Timeout-Seconds')
    if prometheus_timeout:
        try:
            prometheus_timeout = float(prometheus_timeout)
        except ValueError:
            logging.warning(f"Ignoring invalid X-Prometheus-Scrape-Timeout-Seconds: {prometheus_timeout!r}")
            prometheus_timeout = None
    if prometheus_timeout:
        return max(prometheus_timeout - scrape_timeout_offset, 0.1)
    return scrape_timeout


def make_text_response(body_text, status=200, content_type='text/plain; charset=utf-8'):
    """Create a text response, gzip-compressed when the client supports it via Accept-Encoding."""
    body_bytes = body_text.encode('utf-8') if isinstance(body_text, str) else body_text

    accept_enc = request.headers.get('Accept-Encoding', '') or ''
    logging.debug(f"Client Accept-Encoding header: '{accept_enc}'")
    if 'gzip' in accept_enc.lower():
        compressed = gzip.compress(body_bytes)
        logging.debug(f"Compressed response: {len(body_bytes)} -> {len(compressed)} bytes")
        resp = Response(compressed, status=status)
        resp.headers['Content-Encoding'] = 'gzip'
        resp.headers['Content-Type'] = content_type
        resp.headers['Content-Length'] = str(len(compressed))
        return resp

    resp = Response(body_bytes, status=status)
    resp.headers['Content-Type'] = content_type
    resp.headers['Content-Length'] = str(len(body_bytes))
    return resp


def failure_body(message):
    # Comment lines are valid exposition format, so the message cannot break parsing.
    first_line = str(message).splitlines()[0] if str(message) else "unknown error"
    return f"# scrape failed: {first_line}\nmysql_up 0\n"


@app.route('/')
def index():
    return make_text_response(
        "NDB Cluster exporter\n\n"
        "/metrics?exporter=<target>[&collect[]=<scraper>...][&exclude[]=<scraper>...]\n"
        "/scrapers\n"
    )


@app.route('/scrapers')
def scrapers():
    lines = [
        f"{d.name}\t{'.'.join(str(p) for p in d.min_version)}\t{d.help}"
        for d in REGISTRY.all()
    ]
    return make_text_response("\n".join(lines) + "\n")


@app.route('/metrics')
def metrics():
    exporter = request.args.get('exporter')
    if not exporter:
        logging.warning("Missing 'exporter' parameter in request")
        return make_text_response("Missing 'exporter' parameter", status=400)
    # Sanitize exporter name: only allow alphanumeric, underscore, dash
    if not re.match(r'^[A-Za-z0-9_-]+$', exporter):
        logging.warning(f"Invalid exporter parameter: {exporter}")
        return make_text_response("Invalid 'exporter' parameter", status=400)

    try:
        config, _ = load_target_config(exporter)
    except FileNotFoundError as e:
        logging.warning(str(e))
        return make_text_response(f"Unknown exporter '{exporter}'", status=400)
    except ConfigError as e:
        logging.error(f"Error loading config for exporter '{exporter}': {e}")
        return make_text_response(failure_body(e), status=500, content_type=CONTENT_TYPE_LATEST)

    try:
        start = time.time()
        global_config = config.get('global') or {}
        target = config['target']
        settings = load_settings()
        conn_config = get_connection_config_from_settings(target['data_source_name'], settings)
        timeout = effective_timeout(global_config, settings)

        include_params = request.args.getlist('collect[]')
        exclude_params = request.args.getlist('exclude[]')
        enabled = select_scrapers(target, include_params, exclude_params)
        if not enabled:
            available_names = [d.name for d in REGISTRY.all()]
            msg = (
                f"No scrapers selected for exporter '{exporter}' (target patterns {target.get('scrapers')}, "
                f"collect[]={include_params}, exclude[]={exclude_params}). Available scrapers: {available_names}"
            )
            logging.error(msg)
            return make_text_response(msg, status=400)

        db = get_or_create_database(target['data_source_name'], conn_config)
        driver = CollectorDriver(
            db,
            include=enabled,
            max_workers=global_config.get('max_workers', db.pool_size),
            timeout=timeout,
            cancel_grace=parse_duration(global_config.get('cancel_grace', '1s')),
            fail_on_all_scrapers_failed=global_config.get('fail_on_all_scrapers_failed', True),
            parent_ctx=shutdown_ctx,
        )
        registry = CollectorRegistry(auto_describe=False)
        registry.register(driver)
        body = generate_latest(registry)
        result = driver.last_result

        # Log metrics if enabled (from settings.yml)
        if (settings.get('global') or {}).get('log_scraped_metrics', False):
            log_time = datetime.datetime.now().isoformat()
            logging.info(f"--- Metrics scrape at {log_time} ---\n" + body.decode('utf-8') + "--- End scrape ---")

        duration = time.time() - start
        target_name = target.get('name', exporter)
        if not result.ok:
            cause = result.error or f"all {len(result.outcomes)} scraper(s) failed"
            logging.error(f"Scrape of '{target_name}' failed after {duration:.3f} seconds: {cause}")
            return make_text_response(body, status=500, content_type=CONTENT_TYPE_LATEST)
        logging.info(f"Scrape of '{target_name}' completed in {duration:.3f} seconds")
        return make_text_response(body, status=200, content_type=CONTENT_TYPE_LATEST)

    except (ConfigError, ValueError) as e:
        logging.error(f"Error during scrape: {e}")
        return make_text_response(failure_body(e), status=500, content_type=CONTENT_TYPE_LATEST)


def graceful_shutdown():
    """Cancel in-flight scrapes and close every pooled connection."""
    logging.info("Graceful shutdown: cancelling in-flight scrapes")
    shutdown_ctx.cancel(ScrapeCancelled("exporter shutting down"))
    with databases_lock:
        handles = list(databases.values())
        databases.clear()
    for db in handles:
        db.close()
    logging.info("Graceful shutdown complete")


def signal_handler(signum, frame):
    logging.info(f"Received signal {signal.Signals(signum).name}")
    graceful_shutdown()
    raise SystemExit(0)


# --- Pre-populate connection pools at startup ---
def initialize_databases():
    path = settings_path()
    if not path.exists():
        logging.warning(f"Settings file {path} not found; database handles will be created on first scrape")
        return
    try:
        settings = load_settings(path)
    except ConfigError as e:
        logging.error(f"Error loading settings: {e}")
        return
    settings_to_log = mask_passwords(settings)
    global_settings = settings_to_log.get('global') or {}
    logging.info(f"Loaded settings.yml (passwords hidden): {settings_to_log}")
    logging.info(f"log_scraped_metrics enabled: {global_settings.get('log_scraped_metrics', False)}")

    # Apply timezone from settings.yml to logging output so container logs use the desired timezone
    tz_name = global_settings.get('timezone', 'system')
    apply_logging_timezone(resolve_timezone(tz_name))
    logging.info(f"Applied logging timezone from settings.yml: {tz_name}")

    if not global_settings.get('prepopulate_connections', True):
        return
    for data_source_name, conn_config in (settings.get('data_sources') or {}).items():
        try:
            db = get_or_create_database(data_source_name, get_connection_config_from_settings(data_source_name, settings))
        except (ConfigError, ValueError) as e:
            logging.error(f"Skipping data source '{data_source_name}': {e}")
            continue
        db.prepopulate()


# Call this at startup
initialize_databases()

if __name__ == '__main__':
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    app.run(host='0.0.0.0', port=int(os.environ.get('NDB_EXPORTER_PORT', 9104)))

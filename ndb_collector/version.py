"""
Engine version parsing and version gating of scrapers.

Versions are compared as integer tuples so that 8.10 sorts after 8.4.
"""

import logging
import re

from .errors import HandleUnavailable

# Oldest engine any registered scraper supports. Used when the server
# version cannot be determined so that version-gated scrapers are skipped.
LOWEST_SUPPORTED_VERSION = (5, 1)

_VERSION_RE = re.compile(r"^\s*(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def parse_version(value):
    """
    Accepts '8.4', '8.4.2-cluster', 8.4, (8, 4) and returns (major, minor).
    Raises ValueError for anything else.
    """
    if isinstance(value, tuple):
        if not value or not all(isinstance(part, int) for part in value):
            raise ValueError(f"invalid version: {value!r}")
        return (value + (0,))[:2]
    if isinstance(value, bool):
        raise ValueError(f"invalid version: {value!r}")
    if isinstance(value, (int, float)):
        value = repr(float(value)) if isinstance(value, float) else f"{value}.0"
    if not isinstance(value, str):
        raise ValueError(f"invalid version: {value!r}")
    match = _VERSION_RE.match(value)
    if not match:
        raise ValueError(f"invalid version: {value!r}")
    return (int(match.group(1)), int(match.group(2) or 0))


def format_version(version):
    return ".".join(str(part) for part in version)


def detect_engine_version(db, ctx):
    """
    Ask the server for its version. Falls back to LOWEST_SUPPORTED_VERSION
    when the query fails or the reply cannot be parsed.
    """
    try:
        raw = db.engine_version(ctx)
    except HandleUnavailable:
        raise
    except Exception as e:
        logging.warning(f"Could not detect engine version, assuming {format_version(LOWEST_SUPPORTED_VERSION)}: {e}")
        return LOWEST_SUPPORTED_VERSION
    try:
        return parse_version(raw)
    except ValueError:
        logging.warning(f"Unparsable engine version {raw!r}, assuming {format_version(LOWEST_SUPPORTED_VERSION)}")
        return LOWEST_SUPPORTED_VERSION


def is_supported(descriptor, engine_version):
    return parse_version(descriptor.min_version) <= parse_version(engine_version)


def gate(descriptors, engine_version):
    """Descriptors whose min_version is at or below engine_version, order kept."""
    engine_version = parse_version(engine_version)
    selected = []
    for descriptor in descriptors:
        if is_supported(descriptor, engine_version):
            selected.append(descriptor)
        else:
            logging.debug(
                f"Skipping scraper '{descriptor.name}': needs {format_version(parse_version(descriptor.min_version))}, "
                f"engine is {format_version(engine_version)}"
            )
    return selected

"""
Metric descriptors and constant metrics emitted by scrapers.

A Desc is built once per scraper instance; a Metric is one observation
for a Desc. Metrics are checked for label arity when they are built so a
malformed series never reaches the sink.
"""

import datetime
import decimal
import re
from collections import namedtuple
from threading import Lock

from .errors import DecodeError, LabelArityError

NAMESPACE = "mysql"

NDBINFO = "ndbinfo"
INFORMATION_SCHEMA = "info_schema"
PERFORMANCE_SCHEMA = "perf_schema"

COUNTER = "counter"
GAUGE = "gauge"
UNTYPED = "untyped"
VALUE_TYPES = (COUNTER, GAUGE, UNTYPED)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")


def build_fq_name(namespace, subsystem, name):
    """Join non-empty parts with underscores: namespace_subsystem_name."""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def sanitize_metric_name(name):
    name = _INVALID_NAME_CHARS.sub("_", name)
    if name and name[0].isdigit():
        name = "_" + name
    return name


class Desc(namedtuple("Desc", ["fq_name", "help", "label_names"])):
    __slots__ = ()

    def __new__(cls, fq_name, help, label_names=()):
        return super().__new__(cls, fq_name, help, tuple(label_names))


def new_desc(subsystem, name, help, label_names=()):
    return Desc(build_fq_name(NAMESPACE, subsystem, name), help, label_names)


Metric = namedtuple("Metric", ["desc", "value_type", "value", "label_values", "timestamp"])


def new_const_metric(desc, value_type, value, *label_values, timestamp=None):
    """
    Build a Metric for desc. Raises LabelArityError when the number of label
    values differs from the descriptor's label names, and ValueError for an
    unknown value type.
    """
    if value_type not in VALUE_TYPES:
        raise ValueError(f"unknown value type '{value_type}' for {desc.fq_name}")
    if len(label_values) != len(desc.label_names):
        raise LabelArityError(
            f"{desc.fq_name}: expected {len(desc.label_names)} label values "
            f"{list(desc.label_names)}, got {len(label_values)}"
        )
    for label_value in label_values:
        if not isinstance(label_value, str):
            raise LabelArityError(f"{desc.fq_name}: label value {label_value!r} is not a string")
    return Metric(desc, value_type, float(value), tuple(label_values), timestamp)


def coalesce_text(value, column=None):
    """NULL becomes ''; everything else becomes its string form."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(column, value, e)
    if isinstance(value, decimal.Decimal) and value == value.to_integral_value():
        return str(value.quantize(decimal.Decimal(1)))
    return str(value)


def coalesce_number(value, column=None):
    """NULL becomes 0.0; numbers, numeric strings and datetimes become float."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, decimal.Decimal)):
        return float(value)
    if isinstance(value, datetime.datetime):
        return value.timestamp()
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, (bytes, bytearray)):
        value = coalesce_text(value, column)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError as e:
            raise DecodeError(column, value, e)
    raise DecodeError(column, value)


class DescCache:
    """
    Descriptors created on the fly for values the scraper has no static
    mapping for (unknown counter names). Each name is built once.
    """

    def __init__(self, factory):
        self._factory = factory
        self._descs = {}
        self._lock = Lock()

    def get(self, key):
        with self._lock:
            desc = self._descs.get(key)
            if desc is None:
                desc = self._factory(key)
                self._descs[key] = desc
            return desc

    def __len__(self):
        return len(self._descs)

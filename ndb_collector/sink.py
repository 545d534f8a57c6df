from collections import OrderedDict
from threading import Lock

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, UnknownMetricFamily

from .errors import ScrapeCancelled
from .metrics import COUNTER, GAUGE

_FAMILY_TYPES = {
    COUNTER: CounterMetricFamily,
    GAUGE: GaugeMetricFamily,
}


class MetricSink:
    """
    Collects the metrics of one scrape cycle. Safe for concurrent senders.
    Once closed, any further send raises ScrapeCancelled so a scraper that
    outlives its cycle stops instead of leaking series into the next one.
    """

    def __init__(self):
        self._metrics = []
        self._lock = Lock()
        self._closed = False

    def send(self, metric):
        with self._lock:
            if self._closed:
                raise ScrapeCancelled("metric sink closed")
            self._metrics.append(metric)

    def send_all(self, metrics):
        metrics = list(metrics)
        with self._lock:
            if self._closed:
                raise ScrapeCancelled("metric sink closed")
            self._metrics.extend(metrics)

    def close(self):
        with self._lock:
            self._closed = True

    @property
    def closed(self):
        return self._closed

    def metrics(self):
        with self._lock:
            return list(self._metrics)

    def __len__(self):
        with self._lock:
            return len(self._metrics)


def to_families(metrics):
    """
    Group metrics by fully-qualified name into prometheus_client metric
    families, keeping first-seen order.
    """
    families = OrderedDict()
    for metric in metrics:
        desc = metric.desc
        key = (desc.fq_name, metric.value_type)
        family = families.get(key)
        if family is None:
            family_type = _FAMILY_TYPES.get(metric.value_type, UnknownMetricFamily)
            family = family_type(desc.fq_name, desc.help, labels=list(desc.label_names))
            families[key] = family
        family.add_metric(list(metric.label_values), metric.value, timestamp=metric.timestamp)
    return list(families.values())

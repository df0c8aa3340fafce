"""graphite-client - Aggregating metrics emitter for Graphite.

Records sums, counters, averages and active/inactive states in memory and
sends them to a carbon collector in the plaintext line protocol, over TCP
or UDP, on demand or periodically.
"""

__version__ = "0.1.0"

from graphite_client.aggregator import Aggregator
from graphite_client.config import Config, AggregatorConfig, get_metric_path
from graphite_client.metrics import (
    Metric,
    MetricActive,
    MetricAverage,
    MetricSum,
    MetricTypeError,
)
from graphite_client.transport import GraphiteClient, Transport, TransportError

__all__ = [
    "Aggregator",
    "AggregatorConfig",
    "Config",
    "get_metric_path",
    "GraphiteClient",
    "Metric",
    "MetricActive",
    "MetricAverage",
    "MetricSum",
    "MetricTypeError",
    "Transport",
    "TransportError",
]

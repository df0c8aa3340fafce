"""Metrics aggregator for graphite-client.

Collects metric updates in memory and sends them to graphite in batches,
either on demand (flush) or periodically from a background thread (run).

Usage:
    client = GraphiteClient.tcp(Config(host="carbon.local", namespace="api"))
    agg = client.new_aggregator().run(period=10.0)

    agg.increase("requests")               # api.requests       1
    agg.add_sum("bytes.sent", 512)         # api.bytes.sent     512
    agg.add_average("latency.ms", 42)      # api.latency.ms     42.000000
    agg.set_active("worker.busy")          # api.worker.busy    1

    agg.stop()

A batch is only discarded once the transport accepted it. When a send
fails the metrics go back into the store and are part of the next flush.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable

from graphite_client.metrics import Metric, MetricActive, MetricAverage, MetricSum
from graphite_client.transport import ENCODING, format_line

if TYPE_CHECKING:
    from graphite_client.config import Config
    from graphite_client.transport import Transport

logger = logging.getLogger(__name__)


class Aggregator:
    """Thread-safe accumulator of metrics keyed by full metric path.

    Update calls may come from any number of threads. Each one runs its
    lookup, update and store under the aggregator lock, so concurrent
    updates to the same path are never lost.
    """

    def __init__(self, config: Config, client: Transport):
        """Initialize the aggregator.

        Args:
            config: Configuration providing the metric namespace.
            client: Transport used to deliver flushed metrics.
        """
        self.config = config
        self.client = client
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        # batch being sent, keyed like _metrics
        self._in_flight: dict[str, Metric] = {}
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    def get_metrics(self) -> dict[str, Metric]:
        """Return the metrics stored since the last successful flush."""
        with self._lock:
            return dict(self._metrics)

    @property
    def running(self) -> bool:
        """Whether the periodic flush loop is active."""
        return self._thread is not None and self._thread.is_alive()

    def add_sum(self, path: str, value: int) -> None:
        """Add a value to a metric sent as the total of all values.

        Adding 5, 10 and 15 to the same path sends 30 on the next flush.
        """
        self._update_metric(path, value, MetricSum)

    def increase(self, path: str) -> None:
        """Add 1 to a sum metric."""
        self._update_metric(path, 1, MetricSum)

    def add_average(self, path: str, value: int) -> None:
        """Add a value to a metric sent as the mean of all values.

        Adding 2, 10 and 10 to the same path sends 7.333333 on the next flush.
        """
        self._update_metric(path, value, MetricAverage)

    def set_active(self, path: str) -> None:
        """Mark a status metric as active (sent as 1)."""
        self._update_metric(path, True, MetricActive)

    def set_inactive(self, path: str) -> None:
        """Mark a status metric as inactive (sent as 0)."""
        self._update_metric(path, False, MetricActive)

    def flush(self) -> int:
        """Send every stored metric to graphite in a single batch.

        All lines of the batch share one timestamp. Only one flush runs at
        a time; updates keep going into a fresh store while the batch is
        being sent. Metrics whose path cannot be encoded are logged and
        dropped so they never block the rest of the batch.

        Returns:
            Number of bytes written, 0 if there was nothing to send.

        Raises:
            TransportError: If the batch could not be delivered. The
                metrics of the batch are kept for the next flush.
        """
        with self._flush_lock:
            with self._lock:
                if not self._metrics:
                    return 0
                snapshot, self._metrics = self._metrics, {}
                self._in_flight = snapshot

            try:
                buffer = self._render(snapshot, int(time.time()))
                written = self.client.send_buffer(buffer) if buffer else 0
            except Exception:
                self._restore(snapshot)
                raise
            with self._lock:
                self._in_flight = {}
            return written

    def retry(self) -> int:
        """Reconnect the transport and flush once more.

        Meant to be called after a failed flush. It never retries again on
        its own.

        Returns:
            Number of bytes written by the second attempt.

        Raises:
            TransportError: If reconnecting or the second flush fails.
        """
        self.client.reconnect()
        return self.flush()

    def run(self, period: float, stop: threading.Event | None = None) -> Aggregator:
        """Flush periodically from a background thread.

        Returns immediately. A failed flush is retried once; failures are
        logged and the metrics stay queued for the next tick. Setting the
        stop event (or calling stop()) ends the loop without a final flush.

        Args:
            period: Seconds between flushes.
            stop: Event that ends the loop when set. Created if not given.

        Returns:
            The aggregator itself, so construction and run can be chained.

        Raises:
            ValueError: If period is not positive.
            RuntimeError: If the loop is already running.
        """
        if period <= 0:
            raise ValueError(f"Flush period must be positive, got {period}")
        if self.running:
            raise RuntimeError("Aggregator is already running")

        self._stop_event = stop if stop is not None else threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(period, self._stop_event),
            name="graphite-aggregator",
            daemon=True,
        )
        self._thread.start()
        return self

    def stop(self, timeout: float | None = None) -> None:
        """Stop the periodic loop and wait for its thread to exit.

        Metrics not flushed yet stay in the store; call flush() first to
        send them. If the thread is still busy sending when the timeout
        expires, the aggregator keeps counting as running until it exits.
        """
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Periodic flush still running after stop timeout")
                return
        self._thread = None
        self._stop_event = None

    def _run_loop(self, period: float, stop: threading.Event) -> None:
        logger.info(f"Flushing metrics every {period}s")
        while not stop.wait(period):
            self._flush_with_retry(stop)
        logger.info("Periodic flush stopped")

    def _flush_with_retry(self, stop: threading.Event) -> None:
        try:
            self.flush()
            return
        except Exception as e:
            logger.warning(f"Unable to send metrics: {e}")

        if stop.is_set():
            return

        try:
            self.retry()
        except Exception as e:
            logger.error(f"Unable to send metrics after reconnecting: {e}")

    def _update_metric(
        self, path: str, value: Any, factory: Callable[[], Metric]
    ) -> None:
        metric_path = self.config.metric_path(path)
        with self._lock:
            metric = self._metrics.get(metric_path)
            if metric is None:
                # A path keeps its kind until the batch holding it is delivered
                pending = self._in_flight.get(metric_path)
                metric = type(pending)() if pending is not None else factory()
            metric.update(value)
            self._metrics[metric_path] = metric

    def _render(self, snapshot: dict[str, Metric], timestamp: int) -> bytes:
        """Format a batch, dropping lines that cannot be encoded."""
        lines: list[bytes] = []
        unencodable: list[str] = []
        for path, metric in snapshot.items():
            line = format_line(path, metric.calculate(), timestamp)
            try:
                lines.append(line.encode(ENCODING))
            except UnicodeEncodeError as e:
                logger.error(f"Dropping metric {path!r}: cannot encode path: {e}")
                unencodable.append(path)
        if unencodable:
            with self._lock:
                for path in unencodable:
                    del snapshot[path]
        return b"".join(lines)

    def _restore(self, snapshot: dict[str, Metric]) -> None:
        """Put an unsent batch back, merging updates made in the meantime."""
        with self._lock:
            for path, newer in self._metrics.items():
                older = snapshot.get(path)
                if older is None:
                    snapshot[path] = newer
                else:
                    older.merge(newer)
            self._metrics = snapshot
            self._in_flight = {}

import errno
import logging
from pathlib import Path
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from typing import Dict, Optional


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False
_METRICS_PORT: Optional[int] = None

_STATUS_VALUES = {'online': 1, 'pause': 0, 'stop': -1}


def _write_port_file(port: int, port_file: Optional[str]) -> None:
    if not port_file:
        return
    path = Path(port_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(str(port))
    except Exception as exc:
        logger.warning("Failed to persist metrics port file %s: %s", path, exc)


class MetricsCollector:
    def __init__(self):
        self.ticks = Counter('price_ticks_total', 'Total scheduler ticks completed')
        self.tick_duration = Histogram('price_tick_duration_seconds', 'Wall time of one fetch-validate-apply cycle')
        self.tick_overruns = Counter('price_tick_overruns_total', 'Ticks that took longer than the scheduler interval')

        self.fetch_failures = Counter('page_fetch_failures_total', 'Failed or timed out page fetches', ['source'])
        self.extraction_failures = Counter('extraction_failures_total', 'Pages that yielded no valid price', ['source'])
        self.rejected_fields = Counter(
            'rejected_price_fields_total',
            'Candidate fields rejected by range validation',
            ['instrument', 'field'],
        )

        self.price = Gauge('instrument_price', 'Current quote per instrument', ['instrument', 'field'])
        self.status = Gauge('instrument_status', 'Operator status (1=online, 0=pause, -1=stop)', ['instrument'])

        self.transactions = Counter('transactions_recorded_total', 'Transactions appended to the log', ['side'])
        self.rejected_requests = Counter('rejected_requests_total', 'Requests rejected by validation', ['kind'])

        self.subscribers = Gauge('broadcast_subscribers', 'Currently registered snapshot subscribers')
        self.broadcast_messages = Counter('broadcast_messages_total', 'Messages fanned out to subscribers', ['event'])
        self.dropped_messages = Counter('broadcast_dropped_total', 'Messages dropped for slow subscribers')

    def record_tick(self, duration_seconds: float, overrun: bool = False):
        self.ticks.inc()
        self.tick_duration.observe(duration_seconds)
        if overrun:
            self.tick_overruns.inc()

    def record_fetch_failure(self, source: str):
        self.fetch_failures.labels(source=source).inc()

    def record_extraction_failure(self, source: str):
        self.extraction_failures.labels(source=source).inc()

    def record_rejected_field(self, instrument: str, field: str):
        self.rejected_fields.labels(instrument=instrument, field=field).inc()

    def update_price(self, instrument: str, buy: float, sell: float):
        self.price.labels(instrument=instrument, field='buy').set(buy)
        self.price.labels(instrument=instrument, field='sell').set(sell)

    def update_statuses(self, statuses: Dict[str, str]):
        for instrument, status in statuses.items():
            self.status.labels(instrument=instrument).set(_STATUS_VALUES.get(status, 0))

    def record_transaction(self, side: str):
        self.transactions.labels(side=side).inc()

    def record_rejected_request(self, kind: str):
        self.rejected_requests.labels(kind=kind).inc()

    def update_subscribers(self, count: int):
        self.subscribers.set(count)

    def record_broadcast(self, event: str, recipients: int):
        if recipients:
            self.broadcast_messages.labels(event=event).inc(recipients)

    def record_dropped_message(self, count: int = 1):
        self.dropped_messages.inc(count)


def start_metrics_server(port: int = 9090, port_scan: int = 0, port_file: Optional[str] = None) -> int:
    """Start the exposition server on ``port`` or the next free one within ``port_scan``."""
    global _METRICS_SERVER_STARTED, _METRICS_PORT
    if _METRICS_SERVER_STARTED:
        return _METRICS_PORT
    port_scan_limit = max(0, int(port_scan or 0))
    last_error: Optional[OSError] = None
    for offset in range(port_scan_limit + 1):
        candidate = port + offset
        try:
            start_http_server(candidate)
        except OSError as exc:
            last_error = exc
            if exc.errno == errno.EADDRINUSE:
                logger.warning(
                    "Prometheus metrics server port %s already in use; trying next candidate",
                    candidate,
                )
                continue
            raise
        _METRICS_SERVER_STARTED = True
        _METRICS_PORT = candidate
        _write_port_file(candidate, port_file)
        logger.info("Prometheus metrics server started on port %s", candidate)
        return candidate
    if last_error and last_error.errno == errno.EADDRINUSE:
        raise RuntimeError(
            f"Unable to bind Prometheus metrics server on ports {port}-{port + port_scan_limit}"
        ) from last_error
    raise last_error


metrics = MetricsCollector()

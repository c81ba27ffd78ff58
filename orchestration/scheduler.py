import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from api.alerts import AlertWebhook
from api.broadcaster import PRICE_UPDATE, Broadcaster
from api.metrics import metrics
from ingest.extractor import ExtractionFailed, Extractor
from ingest.page_client import PageFetchError
from ingest.validator import complete_quotes, validate
from market.instruments import Instrument, InstrumentSpec
from market.prices import PriceStore
from market.status import Status, StatusController


logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> str:
        ...


@dataclass
class PriceSource:
    """One origin page and the instruments quoted on it."""

    name: str
    urls: Sequence[str]
    extractor: Extractor
    instruments: Tuple[Instrument, ...]


@dataclass
class SourceResult:
    quotes: Dict[Instrument, Tuple[float, float]] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class TickReport:
    started_at: float
    duration_s: float = 0.0
    fetched_sources: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    zeroed: List[str] = field(default_factory=list)
    paused: List[str] = field(default_factory=list)
    retained: List[str] = field(default_factory=list)
    failed_sources: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'started_at': self.started_at,
            'duration_s': self.duration_s,
            'fetched_sources': list(self.fetched_sources),
            'updated': list(self.updated),
            'zeroed': list(self.zeroed),
            'paused': list(self.paused),
            'retained': list(self.retained),
            'failed_sources': dict(self.failed_sources),
        }


class PriceUpdateScheduler:
    """Fixed-interval fetch → extract → validate → apply → broadcast loop.

    Ticks are single-flight: ``tick`` holds a lock for the whole cycle, and the
    run loop only schedules the next tick after the current one returns. All
    store writes for a tick happen in one synchronous apply step after every
    fetch has settled, so readers see either the pre-tick or post-tick state.
    """

    def __init__(
        self,
        specs: Mapping[Instrument, InstrumentSpec],
        price_store: PriceStore,
        status_controller: StatusController,
        broadcaster: Broadcaster,
        fetcher: PageFetcher,
        sources: Sequence[PriceSource],
        interval_s: float = 10.0,
        fetch_timeout_s: float = 60.0,
        alerts: Optional[AlertWebhook] = None,
        failure_alert_threshold: int = 0,
    ):
        self.specs = specs
        self.price_store = price_store
        self.status_controller = status_controller
        self.broadcaster = broadcaster
        self.fetcher = fetcher
        self.sources: Dict[str, PriceSource] = {source.name: source for source in sources}
        self.interval_s = float(interval_s)
        self.fetch_timeout_s = float(fetch_timeout_s)
        self.alerts = alerts
        self.failure_alert_threshold = int(failure_alert_threshold or 0)

        self.running = False
        self.last_report: Optional[TickReport] = None
        self._tick_lock = asyncio.Lock()
        self._failure_streaks: Dict[str, int] = {name: 0 for name in self.sources}
        self._source_of: Dict[Instrument, str] = {}
        for source in sources:
            for instrument in source.instruments:
                self._source_of[instrument] = source.name
        for instrument in specs:
            if instrument not in self._source_of:
                logger.warning("No price source configured for %s; it will never auto-update", instrument.value)

    @property
    def tick_in_flight(self) -> bool:
        return self._tick_lock.locked()

    async def tick(self) -> TickReport:
        async with self._tick_lock:
            started = time.monotonic()
            report = TickReport(started_at=time.time())

            statuses = self.status_controller.all()
            due = [
                name for name, source in self.sources.items()
                if any(statuses.get(i) is Status.ONLINE for i in source.instruments)
            ]
            report.fetched_sources = list(due)
            results = await asyncio.gather(*(self._collect(self.sources[name]) for name in due))
            outcomes: Dict[str, SourceResult] = dict(zip(due, results))

            self._apply(outcomes, report)
            self.broadcaster.publish(PRICE_UPDATE, self.price_store.to_dict())

            await self._track_failures(outcomes)

            report.duration_s = time.monotonic() - started
            overrun = report.duration_s > self.interval_s
            if overrun:
                logger.warning(
                    "Price tick took %.1fs, longer than the %.1fs interval; next tick deferred",
                    report.duration_s,
                    self.interval_s,
                )
            metrics.record_tick(report.duration_s, overrun=overrun)
            self.last_report = report
            logger.debug("Tick complete: %s", report.to_dict())
            return report

    async def _collect(self, source: PriceSource) -> SourceResult:
        try:
            content = await self._fetch_source(source)
        except PageFetchError as exc:
            metrics.record_fetch_failure(source.name)
            logger.warning("Fetch failed for %s, keeping previous quotes: %s", source.name, exc)
            return SourceResult(error=str(exc))

        try:
            candidates = source.extractor.extract(content)
            validated = validate(candidates, self.specs, family=source.extractor.name)
        except ExtractionFailed as exc:
            metrics.record_extraction_failure(source.name)
            logger.warning("%s; keeping previous quotes for %s", exc, source.name)
            return SourceResult(error=str(exc))

        return SourceResult(quotes=complete_quotes(validated))

    async def _fetch_source(self, source: PriceSource) -> str:
        last_error: Optional[PageFetchError] = None
        for url in source.urls:
            try:
                return await asyncio.wait_for(self.fetcher.fetch(url), timeout=self.fetch_timeout_s)
            except asyncio.TimeoutError:
                last_error = PageFetchError(url, reason=f"timed out after {self.fetch_timeout_s:g}s")
            except PageFetchError as exc:
                last_error = exc
            except Exception as exc:
                last_error = PageFetchError(url, reason=str(exc) or type(exc).__name__)
            logger.info("Fetch attempt failed for %s (%s)", url, last_error.reason)
        if last_error is None:
            raise PageFetchError(source.name, reason="no urls configured")
        raise last_error

    def _apply(self, outcomes: Mapping[str, SourceResult], report: TickReport) -> None:
        # Statuses are re-read here so an operator change made while fetches
        # were in flight wins over the fetched price.
        statuses = self.status_controller.all()
        for instrument, status in statuses.items():
            if status is Status.STOP:
                self.price_store.zero(instrument)
                report.zeroed.append(instrument.value)
                metrics.update_price(instrument.value, 0.0, 0.0)
                continue
            if status is Status.PAUSE:
                report.paused.append(instrument.value)
                continue

            source_name = self._source_of.get(instrument)
            result = outcomes.get(source_name) if source_name else None
            if result is None:
                report.retained.append(instrument.value)
                continue
            if result.failed:
                report.failed_sources[source_name] = result.error
                report.retained.append(instrument.value)
                continue
            quote = result.quotes.get(instrument)
            if quote is None:
                logger.warning(
                    "No complete quote for %s from %s; keeping previous value",
                    instrument.value,
                    source_name,
                )
                report.retained.append(instrument.value)
                continue
            buy, sell = quote
            self.price_store.update(instrument, buy, sell)
            metrics.update_price(instrument.value, buy, sell)
            report.updated.append(instrument.value)

    async def _track_failures(self, outcomes: Mapping[str, SourceResult]) -> None:
        for name, result in outcomes.items():
            previous = self._failure_streaks.get(name, 0)
            if result.failed:
                streak = previous + 1
                self._failure_streaks[name] = streak
                if self.alerts and self.failure_alert_threshold and streak == self.failure_alert_threshold:
                    await self.alerts.source_failure_alert(name, streak, result.error)
            else:
                self._failure_streaks[name] = 0
                if self.alerts and self.failure_alert_threshold and previous >= self.failure_alert_threshold:
                    await self.alerts.source_recovered_alert(name, previous)

    async def run(self):
        self.running = True
        delay = self.interval_s
        try:
            while self.running:
                try:
                    await asyncio.sleep(delay)
                except asyncio.CancelledError:
                    break
                if not self.running:
                    break
                try:
                    report = await self.tick()
                    delay = max(0.0, self.interval_s - report.duration_s)
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Price tick failed")
                    delay = self.interval_s
        finally:
            self.running = False

    def stop(self):
        self.running = False

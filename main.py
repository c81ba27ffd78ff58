import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from api.alerts import AlertWebhook
from api.broadcaster import NEW_TRANSACTION, PRICE_UPDATE, STATUS_UPDATE, Broadcaster
from api.metrics import metrics, start_metrics_server
from config import config, get_config_section
from ingest.extractor import DEFAULT_SOURCES, build_extractor
from ingest.page_client import PageClient
from market.instruments import Instrument, group_instruments, load_instrument_specs
from market.prices import PriceStore
from market.status import Status, StatusController
from market.transactions import Transaction, TransactionLog
from monitoring.async_utils import cancel_and_wait, run_tasks_with_cleanup
from monitoring.logging_utils import setup_logging
from orchestration.scheduler import PageFetcher, PriceSource, PriceUpdateScheduler, TickReport


logger = logging.getLogger(__name__)


class PriceBoardSystem:
    """Own price, status and transaction state and run the update loop around it."""

    def __init__(
        self,
        config_obj: Optional[Mapping] = None,
        fetcher: Optional[PageFetcher] = None,
        alerts: Optional[AlertWebhook] = None,
    ):
        self.config = config_obj if config_obj is not None else config
        self.scheduler_cfg = get_config_section(self.config, 'scheduler')
        self.transactions_cfg = get_config_section(self.config, 'transactions')
        self.broadcast_cfg = get_config_section(self.config, 'broadcast')
        self.monitoring_cfg = get_config_section(self.config, 'monitoring')

        self.specs = load_instrument_specs(self.config)
        self.price_store = PriceStore(self.specs)
        self.status_controller = StatusController(self.specs)
        self.transaction_log = TransactionLog(
            max_entries=int(self.transactions_cfg.get('max_entries', 1000)),
            default_symbol=self.transactions_cfg.get('default_symbol', 'GOLD'),
        )
        self.snapshot_transactions = self.broadcast_cfg.get('snapshot_transactions')
        self.broadcaster = Broadcaster(self.snapshot, queue_size=self.broadcast_cfg.get('queue_size', 256))

        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher if fetcher is not None else PageClient(self.config)
        if alerts is None:
            alerts = AlertWebhook(self.monitoring_cfg.get('alert_webhook') or '')

        self.scheduler = PriceUpdateScheduler(
            specs=self.specs,
            price_store=self.price_store,
            status_controller=self.status_controller,
            broadcaster=self.broadcaster,
            fetcher=self.fetcher,
            sources=self._build_sources(),
            interval_s=float(self.scheduler_cfg.get('interval_s', 10)),
            fetch_timeout_s=float(self.scheduler_cfg.get('fetch_timeout_s', 60)),
            alerts=alerts,
            failure_alert_threshold=int(self.monitoring_cfg.get('failure_alert_threshold', 0) or 0),
        )

        self.running = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self._closed = False

    def _build_sources(self) -> List[PriceSource]:
        sources_cfg = get_config_section(self.config, 'sources') or DEFAULT_SOURCES
        sources: List[PriceSource] = []
        for group, instruments in group_instruments(self.specs).items():
            source_cfg = sources_cfg.get(group)
            if not source_cfg:
                logger.warning("No source configured for group %s", group)
                continue
            urls = source_cfg.get('urls') or ([source_cfg['url']] if source_cfg.get('url') else [])
            extractor = build_extractor(group, source_cfg, self.specs)
            unsupported = [i.value for i in instruments if i not in extractor.instruments]
            if unsupported:
                raise RuntimeError(
                    f"Extractor '{extractor.name}' for source '{group}' cannot quote {', '.join(unsupported)}"
                )
            sources.append(PriceSource(group, tuple(urls), extractor, tuple(instruments)))
        return sources

    def snapshot(self) -> Dict[str, Any]:
        """Prices, statuses and recent transactions captured in one synchronous step."""
        return {
            'prices': self.price_store.to_dict(),
            'statuses': self.status_controller.to_dict(),
            'recentTransactions': [t.to_dict() for t in self.transaction_log.list(self.snapshot_transactions)],
        }

    def update_statuses(self, batch: Mapping[Any, Any]) -> Dict[str, str]:
        self.status_controller.apply(batch)

        stopped = [
            Instrument.parse(instrument)
            for instrument, status in batch.items()
            if Status.parse(status) is Status.STOP
        ]
        for instrument in stopped:
            self.price_store.zero(instrument)
            metrics.update_price(instrument.value, 0.0, 0.0)
            logger.info("Setting %s price to 0 due to stop status", instrument.value)
        if stopped:
            self.broadcaster.publish(PRICE_UPDATE, self.price_store.to_dict())

        statuses = self.status_controller.to_dict()
        metrics.update_statuses(statuses)
        self.broadcaster.publish(STATUS_UPDATE, statuses)
        return statuses

    def record_transaction(self, symbol: Optional[str], price: Any, side: Any) -> Transaction:
        transaction = self.transaction_log.append(symbol, price, side)
        metrics.record_transaction(transaction.side.value)
        self.broadcaster.publish(NEW_TRANSACTION, transaction.to_dict())
        return transaction

    async def refresh(self) -> TickReport:
        return await self.scheduler.tick()

    async def start(self):
        self.running = True
        self._closed = False
        if self.monitoring_cfg.get('metrics_enabled'):
            start_metrics_server(
                int(self.monitoring_cfg.get('prometheus_port', 9090)),
                port_scan=int(self.monitoring_cfg.get('prometheus_port_scan', 0) or 0),
                port_file=self.monitoring_cfg.get('metrics_port_file'),
            )
        metrics.update_statuses(self.status_controller.to_dict())

        if self.scheduler_cfg.get('refresh_on_startup', True):
            try:
                await self.refresh()
            except Exception:
                logger.exception("Initial price refresh failed")

        self._scheduler_task = asyncio.create_task(self.scheduler.run())

        async def _cleanup():
            await self.stop()

        await run_tasks_with_cleanup([self._scheduler_task], cleanup=_cleanup)

    async def stop(self):
        self.running = False
        self.scheduler.stop()
        await cancel_and_wait(self._scheduler_task)
        self._scheduler_task = None
        if self._closed:
            return
        self._closed = True
        self.broadcaster.close()
        if self._owns_fetcher and hasattr(self.fetcher, 'close'):
            await self.fetcher.close()


def run():
    import uvicorn
    from api.fastapi_server import create_app

    setup_logging(config.monitoring.get('log_level', 'INFO'))
    uvicorn.run(
        create_app(),
        host=config.api['host'],
        port=int(config.api['port']),
        log_level="info"
    )


if __name__ == "__main__":
    run()

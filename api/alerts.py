import logging
from datetime import datetime, timezone
from typing import Dict

import aiohttp


logger = logging.getLogger(__name__)

SERVICE_NAME = 'gold-price-board'


class AlertWebhook:
    """Post operator alerts to a webhook; without a URL alerts are only logged."""

    def __init__(self, url: str = None, timeout_s: float = 5.0):
        # Empty or placeholder URLs mean log-only
        if url and 'your-webhook-url' not in str(url):
            self.webhook_url = url
            self.enabled = True
        else:
            self.webhook_url = None
            self.enabled = False
        self.timeout_s = timeout_s

    async def send_alert(self, alert_type: str, message: str, severity: str = 'warning',
                         metadata: Dict = None):
        if not self.enabled:
            logger.warning("[Alert] %s: %s - %s", severity.upper(), alert_type, message)
            return

        payload = {
            'service': SERVICE_NAME,
            'type': alert_type,
            'message': message,
            'severity': severity,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'metadata': metadata or {},
        }

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as session:
                async with session.post(self.webhook_url, json=payload) as response:
                    if response.status >= 300:
                        body = await response.text()
                        logger.error("[Alert] Webhook rejected %s alert (%s): %s", alert_type, response.status, body[:200])
        except Exception as e:
            logger.error("[Alert] Webhook error for %s alert: %s", alert_type, e)

    async def source_failure_alert(self, source: str, consecutive_failures: int, reason: str):
        await self.send_alert(
            'source_failure',
            f'{source} has failed {consecutive_failures} consecutive ticks: {reason}',
            'critical',
            {'source': source, 'consecutive_failures': consecutive_failures, 'reason': reason}
        )

    async def source_recovered_alert(self, source: str, failures: int):
        await self.send_alert(
            'source_recovered',
            f'{source} recovered after {failures} failed ticks',
            'info',
            {'source': source, 'failures': failures}
        )

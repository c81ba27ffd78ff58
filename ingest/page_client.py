import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from config.utils import get_config_section


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class PageFetchError(Exception):
    def __init__(self, url: str, status: Optional[int] = None, reason: Optional[str] = None):
        self.url = url
        self.status = status
        self.reason = reason
        text = f"Page fetch failed (url={url}, status={status}, reason={reason})"
        super().__init__(text)


class PageClient:
    """Fetch raw page markup over HTTP with a shared, lazily created session."""

    def __init__(self, config_obj=None):
        http_cfg = get_config_section(config_obj, 'http')
        self.user_agent: str = http_cfg.get('user_agent') or DEFAULT_USER_AGENT
        self.request_timeout_s = float(http_cfg.get('request_timeout_s', 30))
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    headers=self._default_headers(),
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout_s),
                )
            return self._session

    def _default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "th-TH,th;q=0.9,en;q=0.8",
        }

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    async def fetch(self, url: str) -> str:
        session = await self._get_session()
        try:
            async with session.get(url, allow_redirects=True) as resp:
                text = await resp.text(errors='replace')
                if resp.status >= 400:
                    raise PageFetchError(url, resp.status, resp.reason)
                logger.debug("Fetched %s (%s bytes, final url %s)", url, len(text), resp.url)
                return text
        except aiohttp.ClientError as exc:
            raise PageFetchError(url, reason=str(exc)) from exc

"""
Tick Subscription Client

Asks the broker WebSocket bridge to stream ticks (and OI) for a
newly traded instrument, so the price cache is populated while the
position is monitored.
"""

import httpx
from typing import Optional

from app.config.settings import get_settings
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)


def exchange_type_for(exchange: Optional[str], instrument_type: Optional[str]) -> str:
    """
    Exchange segment code expected by the bridge.

    "D" (derivatives) for MCX and currency, "U" for NSE futures,
    "D" for everything else.
    """
    if exchange in ("M", "C"):
        return "D"
    if (instrument_type or "").upper() == "FUTURES":
        return "U"
    return "D"


class TickSubscriptionClient:
    """
    HTTP client for the tick subscription bridge.

    Failures are logged and swallowed: a missing subscription only
    delays price updates, it never blocks a trade.

    Usage:
        client = TickSubscriptionClient("http://localhost:8208")
        await client.ensure_subscribed("N", "D", "52431", "NIFTY 24500 CE")
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.TICK_SUBSCRIPTION_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.TICK_SUBSCRIPTION_TIMEOUT_SECONDS
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def ensure_subscribed(
        self,
        exchange: Optional[str],
        exchange_type: Optional[str],
        scrip_code: str,
        company_name: Optional[str]
    ) -> bool:
        """Ensure tick subscription for an instrument."""
        return await self._subscribe("/api/ws/subscribe", "Tick", exchange, exchange_type, scrip_code, company_name)

    async def ensure_oi_subscribed(
        self,
        exchange: Optional[str],
        exchange_type: Optional[str],
        scrip_code: str,
        company_name: Optional[str]
    ) -> bool:
        """Ensure OI subscription for an instrument."""
        return await self._subscribe("/api/ws/subscribe-oi", "OI", exchange, exchange_type, scrip_code, company_name)

    async def _subscribe(
        self,
        path: str,
        kind: str,
        exchange: Optional[str],
        exchange_type: Optional[str],
        scrip_code: str,
        company_name: Optional[str]
    ) -> bool:
        payload = {
            "exch": exchange or "N",
            "exchType": exchange_type or "D",
            "scripCode": scrip_code,
            "companyName": company_name or "",
        }
        try:
            client = await self._get_client()
            response = await client.post(path, json=payload)
            response.raise_for_status()
            logger.info(
                f"{TRADE_LOG_PREFIX} {kind} subscription ensured for {company_name} "
                f"({payload['exch']}:{payload['exchType']}:{scrip_code})"
            )
            return True
        except httpx.HTTPError as e:
            logger.warning(f"{TRADE_LOG_PREFIX} Failed {kind} subscription for {scrip_code}: {e}")
            return False

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

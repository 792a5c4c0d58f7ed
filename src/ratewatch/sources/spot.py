"""Spot crypto price adapter via ccxt async.

Wraps ccxt.async_support.binance for the public 24h ticker. No API keys
are needed; markets are loaded lazily by ccxt on the first call.
"""

from decimal import Decimal

import ccxt.async_support as ccxt_async
from ccxt.async_support.base.exchange import Exchange as CcxtExchange
from ccxt.base.errors import BaseError as CcxtError

from ratewatch.config import MarketSettings
from ratewatch.exceptions import UpstreamError
from ratewatch.logging import get_logger
from ratewatch.models import Rate, SpotStats
from ratewatch.sources.client import bounded
from ratewatch.sources.types import to_decimal, to_decimal_or_default

logger = get_logger(__name__)

SOURCE = "binance_spot"


class SpotPriceSource:
    """Spot ticker reader backed by a ccxt exchange instance."""

    name = SOURCE

    def __init__(
        self,
        settings: MarketSettings,
        exchange: CcxtExchange | None = None,
        timeout: float = 8.0,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._exchange = exchange or ccxt_async.binance({"enableRateLimit": True})

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid leaked sessions."""
        await self._exchange.close()
        logger.info("spot_source_closed")

    async def fetch_stats(self, symbol: str | None = None) -> SpotStats:
        """Fetch 24h statistics for ``symbol`` (defaults to the configured pair)."""
        symbol = symbol or self._settings.spot_symbol
        try:
            ticker = await bounded(self._exchange.fetch_ticker(symbol), self._timeout, SOURCE)
        except CcxtError as exc:
            raise UpstreamError(SOURCE, f"{type(exc).__name__}: {exc}") from exc

        return SpotStats(
            symbol=symbol,
            last_price=to_decimal(ticker.get("last"), SOURCE, "last"),
            change_pct_24h=to_decimal_or_default(ticker.get("percentage"), SOURCE, "percentage"),
            high_24h=to_decimal_or_default(ticker.get("high"), SOURCE, "high"),
            low_24h=to_decimal_or_default(ticker.get("low"), SOURCE, "low"),
            quote_volume_24h=to_decimal_or_default(
                ticker.get("quoteVolume"), SOURCE, "quoteVolume"
            ),
        )

    async def fetch_price(self, symbol: str | None = None) -> Rate:
        """Fetch the last traded price as a Rate."""
        stats = await self.fetch_stats(symbol)
        if stats.last_price <= Decimal("0"):
            raise UpstreamError(SOURCE, f"non-positive last price for {stats.symbol}")
        return Rate(source=SOURCE, symbol=stats.symbol, value=stats.last_price)

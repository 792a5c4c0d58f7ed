"""Abstract source adapter interfaces.

Defines the contract for every upstream. Reconciliation and ranging code
depends only on these interfaces, keeping scrape and API specifics in the
concrete adapters.

Contract: an adapter returns normalized models or raises UpstreamError.
An empty offer list is a valid answer, not a failure.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from decimal import Decimal
from typing import TypeVar

from ratewatch.exceptions import UpstreamError
from ratewatch.models import OfficialRates, OrderBook, OrderBookEntry, TradeSide

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float, source: str) -> T:
    """Await an adapter call, converting a timeout into UpstreamError."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise UpstreamError(source, f"timed out after {timeout}s") from exc


class RateSource(ABC):
    """Official rate provider."""

    name: str

    @abstractmethod
    async def fetch(self) -> OfficialRates:
        """Fetch the currently published official rates."""
        ...


class Marketplace(ABC):
    """P2P marketplace order-book provider."""

    name: str

    @abstractmethod
    async def fetch_offers(
        self,
        side: TradeSide,
        amount: Decimal | None = None,
        payment_method: str | None = None,
    ) -> list[OrderBookEntry]:
        """Fetch the top offers for one side, best price first.

        Args:
            side: Taker side (BUY = taker acquires the crypto asset).
            amount: Optional trade size in fiat used to filter offers.
            payment_method: Optional marketplace payment identifier.
        """
        ...

    async def fetch_book(
        self,
        amount: Decimal | None = None,
        payment_method: str | None = None,
    ) -> OrderBook:
        """Fetch both sides concurrently. Fails if either side fails."""
        buy, sell = await asyncio.gather(
            self.fetch_offers(TradeSide.BUY, amount, payment_method),
            self.fetch_offers(TradeSide.SELL, amount, payment_method),
        )
        return OrderBook(self.name, buy, sell)

"""P2P depth sampling at representative trade sizes.

Each probe is a USD amount converted to fiat with a reference rate (the
reference marketplace's live buy quote). Probes run one after another to
keep request bursts small; within a probe every marketplace is queried
concurrently. A marketplace failure only empties that marketplace's book
for that probe.
"""

import asyncio
from decimal import Decimal

from ratewatch.config import P2PSettings
from ratewatch.exceptions import UpstreamError
from ratewatch.logging import get_logger
from ratewatch.market_data.reconciler import side_price
from ratewatch.models import OrderBook, ProbeRange, ProbeResult, RangeScan
from ratewatch.sources.client import Marketplace, bounded

logger = get_logger(__name__)

_AMOUNT_QUANTUM = Decimal("0.01")

CUSTOM_PROBE_ID = "custom"
DASHBOARD_PROBE_ID = "dashboard"


class P2PRanger:
    """Runs probe scans, ad-hoc amount lookups and the dashboard widget query."""

    def __init__(
        self,
        marketplaces: list[Marketplace],
        settings: P2PSettings,
        timeout: float = 8.0,
        reference_marketplace: str = "binance",
    ) -> None:
        self._marketplaces = marketplaces
        self._settings = settings
        self._timeout = timeout
        self._reference = reference_marketplace

    def default_probes(self) -> list[ProbeRange]:
        return [
            ProbeRange(id=probe_id, label=label, amount_usd=Decimal(amount))
            for probe_id, label, amount in self._settings.probes
        ]

    async def reference_rate(self) -> Decimal | None:
        """Live buy quote of the reference marketplace, or None if unavailable."""
        marketplace = next(
            (m for m in self._marketplaces if m.name == self._reference), None
        )
        if marketplace is None:
            return None
        try:
            book = await bounded(marketplace.fetch_book(), self._timeout, marketplace.name)
        except UpstreamError as exc:
            logger.warning("reference_rate_unavailable", source=marketplace.name, error=str(exc))
            return None
        return side_price(book.buy)

    def _effective_reference(self, reference_rate: Decimal | None) -> tuple[Decimal, bool]:
        if reference_rate is not None and reference_rate > 0:
            return reference_rate, False
        fallback = self._settings.fallback_reference_rate
        logger.warning("reference_rate_fallback", fallback=str(fallback))
        return fallback, True

    async def _query_one(
        self,
        marketplace: Marketplace,
        amount: Decimal,
        payment_method: str | None = None,
    ) -> OrderBook:
        try:
            return await bounded(
                marketplace.fetch_book(amount, payment_method),
                self._timeout,
                marketplace.name,
            )
        except UpstreamError as exc:
            logger.warning(
                "p2p_query_failed",
                marketplace=marketplace.name,
                amount=str(amount),
                error=str(exc),
            )
            return OrderBook(marketplace.name, error=str(exc))

    async def _query_all(
        self, amount: Decimal, payment_method: str | None = None
    ) -> dict[str, OrderBook]:
        books = await asyncio.gather(
            *(self._query_one(m, amount, payment_method) for m in self._marketplaces)
        )
        return {book.marketplace: book for book in books}

    async def range_scan(
        self,
        probes: list[ProbeRange] | None = None,
        reference_rate: Decimal | None = None,
    ) -> RangeScan:
        """Sample every probe against every marketplace.

        When ``reference_rate`` is not given the live reference is fetched;
        an unavailable or non-positive reference degrades to the configured
        fallback rate and the scan is flagged ``reference_degraded``.
        """
        probes = probes if probes is not None else self.default_probes()
        if reference_rate is None:
            reference_rate = await self.reference_rate()
        rate, degraded = self._effective_reference(reference_rate)

        scan = RangeScan(reference_rate=rate, reference_degraded=degraded)
        for probe in probes:
            amount = (probe.amount_usd * rate).quantize(_AMOUNT_QUANTUM)
            books = await self._query_all(amount)
            scan.results.append(ProbeResult(probe=probe, amount_quote=amount, books=books))
            logger.debug(
                "probe_completed",
                probe=probe.id,
                amount=str(amount),
                failed=[name for name, book in books.items() if book.error],
            )

        logger.info(
            "range_scan_completed",
            probes=len(scan.results),
            reference_rate=str(rate),
            reference_degraded=degraded,
        )
        return scan

    async def calculate(
        self, amount_quote: Decimal, payment_method: str | None = None
    ) -> ProbeResult:
        """Offers for an ad-hoc fiat amount, optionally for one payment method."""
        amount = amount_quote.quantize(_AMOUNT_QUANTUM)
        books = await self._query_all(amount, payment_method)
        # Amount is given in fiat; no USD equivalent is implied
        probe = ProbeRange(id=CUSTOM_PROBE_ID, label="Custom amount", amount_usd=Decimal("0"))
        return ProbeResult(probe=probe, amount_quote=amount, books=books)

    async def top_offers(self, reference_rate: Decimal | None = None) -> ProbeResult:
        """Best few offers per marketplace at the dashboard probe size."""
        if reference_rate is None:
            reference_rate = await self.reference_rate()
        rate, _ = self._effective_reference(reference_rate)
        probe_usd = self._settings.dashboard_probe_usd
        amount = (probe_usd * rate).quantize(_AMOUNT_QUANTUM)
        books = await self._query_all(amount)
        limit = self._settings.dashboard_top_n
        probe = ProbeRange(id=DASHBOARD_PROBE_ID, label=f"${probe_usd}", amount_usd=probe_usd)
        return ProbeResult(
            probe=probe,
            amount_quote=amount,
            books={name: book.truncated(limit) for name, book in books.items()},
        )

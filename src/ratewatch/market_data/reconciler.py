"""Rate reconciliation: one fallback policy for every consumer.

Every rate field (official USD, official EUR, each marketplace buy and
sell) is resolved independently through the same chain:

    live value > 0        -> confidence "live"
    else history value > 0 -> confidence "historical"
    else                   -> value 0, confidence "unknown"

Comparison metrics are computed from resolved values only and are zero
whenever an input is unknown, so a missing official rate never produces a
division by zero.

The pure functions at module level hold the policy. RateReconciler does the
I/O around them: it gathers the official rate and both marketplace books
concurrently, each bounded by the adapter timeout, and reads the history
tail and the last persisted snapshot as the historical source.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ratewatch.data.history import HistoryService
from ratewatch.exceptions import UpstreamError
from ratewatch.logging import get_logger
from ratewatch.models import (
    AggregatedSnapshot,
    Confidence,
    HistoryPoint,
    MarketplaceQuote,
    OfficialRates,
    OrderBook,
    OrderBookEntry,
    RateMetrics,
    RatesView,
    ResolvedRate,
)
from ratewatch.sources.client import Marketplace, RateSource, bounded

logger = get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
UNKNOWN_RATE = ResolvedRate(ZERO, Confidence.UNKNOWN)

_PCT_QUANTUM = Decimal("0.01")


# ──────────────────────────────────────────────
# Fallback policy
# ──────────────────────────────────────────────


def _positive(value: object) -> Decimal | None:
    """Coerce ``value`` to a positive finite Decimal, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not number.is_finite() or number <= ZERO:
        return None
    return number


def resolve_rate(live_value: object, history_value: object = None) -> ResolvedRate:
    """Resolve one rate field. Never raises, never returns a negative value."""
    live = _positive(live_value)
    if live is not None:
        return ResolvedRate(live, Confidence.LIVE)
    historical = _positive(history_value)
    if historical is not None:
        return ResolvedRate(historical, Confidence.HISTORICAL)
    return UNKNOWN_RATE


# ──────────────────────────────────────────────
# Metrics
# ──────────────────────────────────────────────


def percent_change(value: Decimal, base: Decimal) -> Decimal:
    """``(value - base) / base * 100``, or 0 when either side is not positive."""
    if base <= ZERO or value <= ZERO:
        return ZERO
    return (value - base) / base * HUNDRED


def round_pct(value: Decimal) -> Decimal:
    """Round a percentage to 2 decimals for presentation."""
    return value.quantize(_PCT_QUANTUM, rounding=ROUND_HALF_UP)


def spread_pct(market: ResolvedRate, official: ResolvedRate) -> Decimal:
    if not (market.is_available and official.is_available):
        return ZERO
    return percent_change(market.value, official.value)


def mix_average(usd: ResolvedRate, eur: ResolvedRate) -> Decimal:
    """Mean of the official USD and EUR rates."""
    if not (usd.is_available and eur.is_available):
        return ZERO
    return (usd.value + eur.value) / 2


def market_average(market: ResolvedRate, usd: ResolvedRate) -> Decimal:
    """Mean of the marketplace rate and the official USD rate."""
    if not (market.is_available and usd.is_available):
        return ZERO
    return (market.value + usd.value) / 2


def soft_spread_pct(market_avg: Decimal, usd: ResolvedRate) -> Decimal:
    if not usd.is_available:
        return ZERO
    return percent_change(market_avg, usd.value)


def compute_metrics(usd: ResolvedRate, eur: ResolvedRate, market: ResolvedRate) -> RateMetrics:
    avg = market_average(market, usd)
    return RateMetrics(
        spread_pct=round_pct(spread_pct(market, usd)),
        mix_average=mix_average(usd, eur),
        market_average=avg,
        soft_spread_pct=round_pct(soft_spread_pct(avg, usd)),
    )


def side_price(entries: list[OrderBookEntry]) -> Decimal | None:
    """Representative price of one book side: mean of its listed prices."""
    prices = [e.price for e in entries if e.price > ZERO]
    if not prices:
        return None
    return sum(prices, ZERO) / len(prices)


def quote_from_book(
    marketplace: str,
    book: OrderBook | None,
    history: MarketplaceQuote | None = None,
) -> MarketplaceQuote | None:
    """Resolve a marketplace's buy and sell rate from its live book.

    Falls back per side to the last persisted quote. Returns None when
    neither side resolves.
    """
    live_buy = side_price(book.buy) if book is not None else None
    live_sell = side_price(book.sell) if book is not None else None
    buy = resolve_rate(live_buy, history.buy_rate.value if history else None)
    sell = resolve_rate(live_sell, history.sell_rate.value if history else None)
    if not (buy.is_available or sell.is_available):
        return None
    return MarketplaceQuote(marketplace, buy, sell)


# ──────────────────────────────────────────────
# Reconciler
# ──────────────────────────────────────────────


@dataclass
class SourceReadings:
    """Raw results of one concurrent fetch round.

    A failed source is None and has its error message in ``errors``.
    """

    official: OfficialRates | None
    books: dict[str, OrderBook | None] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.errors


class RateReconciler:
    """Builds the reconciled rates view from live sources and history.

    Args:
        official: Official rate source.
        marketplaces: P2P marketplaces, in display order.
        history: History reads (store with bundled fallback).
        timeout: Per-adapter call timeout in seconds.
        reference_marketplace: Marketplace whose buy rate is the market rate.
    """

    def __init__(
        self,
        official: RateSource,
        marketplaces: list[Marketplace],
        history: HistoryService,
        timeout: float = 8.0,
        reference_marketplace: str = "binance",
    ) -> None:
        self._official = official
        self._marketplaces = marketplaces
        self._history = history
        self._timeout = timeout
        self._reference = reference_marketplace

    @property
    def marketplace_names(self) -> list[str]:
        return [m.name for m in self._marketplaces]

    async def gather_sources(self) -> SourceReadings:
        """Fetch the official rates and every marketplace book concurrently.

        UpstreamError from any source is recorded, never raised. Anything
        else is a bug and propagates.
        """
        names = [self._official.name, *self.marketplace_names]
        results = await asyncio.gather(
            bounded(self._official.fetch(), self._timeout, self._official.name),
            *(
                bounded(m.fetch_book(), self._timeout, m.name)
                for m in self._marketplaces
            ),
            return_exceptions=True,
        )

        readings = SourceReadings(official=None)
        for name, result in zip(names, results):
            if isinstance(result, UpstreamError):
                logger.warning("source_unavailable", source=name, error=str(result))
                readings.errors[name] = str(result)
                result = None
            elif isinstance(result, BaseException):
                raise result
            if name == self._official.name:
                readings.official = result
            else:
                readings.books[name] = result
        return readings

    def reconcile(
        self,
        readings: SourceReadings,
        history_point: HistoryPoint | None,
        last_snapshot: AggregatedSnapshot | None,
    ) -> RatesView:
        """Apply the fallback chain to one fetch round. Pure."""
        official = readings.official
        usd = resolve_rate(
            official.usd if official else None,
            history_point.value_for("USD") if history_point else None,
        )
        eur = resolve_rate(
            official.eur if official else None,
            history_point.value_for("EUR") if history_point else None,
        )

        previous = last_snapshot.marketplace_rates if last_snapshot else {}
        marketplaces: dict[str, MarketplaceQuote | None] = {}
        for name in self.marketplace_names:
            marketplaces[name] = quote_from_book(
                name, readings.books.get(name), previous.get(name)
            )

        market = self._market_rate(marketplaces)
        notes = [f"{source} unavailable: {error}" for source, error in readings.errors.items()]
        if usd.confidence is Confidence.HISTORICAL:
            notes.append("official rate served from history")
        elif not usd.is_available:
            notes.append("official rate unknown")

        official_date = official.valid_date if official else None
        if official_date is None and history_point is not None and usd.is_available:
            official_date = history_point.date

        return RatesView(
            usd=usd,
            eur=eur,
            marketplaces=marketplaces,
            metrics=compute_metrics(usd, eur, market),
            official_date=official_date,
            notes=notes,
        )

    def _market_rate(self, quotes: dict[str, MarketplaceQuote | None]) -> ResolvedRate:
        ordered = sorted(quotes, key=lambda name: name != self._reference)
        for name in ordered:
            quote = quotes[name]
            if quote is not None and quote.buy_rate.is_available:
                return quote.buy_rate
        return UNKNOWN_RATE

    async def aggregate(self) -> RatesView:
        """Fetch, then reconcile against the history tail and last snapshot."""
        readings, history_point, last_snapshot = await asyncio.gather(
            self.gather_sources(),
            self._history.latest_point(),
            self._history.latest_snapshot(),
        )
        view = self.reconcile(readings, history_point, last_snapshot)
        logger.info(
            "rates_reconciled",
            usd=str(view.usd.value),
            usd_confidence=view.usd.confidence.value,
            spread_pct=str(view.metrics.spread_pct),
            degraded=sorted(readings.errors),
        )
        return view

    async def market_context(self) -> dict[str, str]:
        """Resolved rates and spread as flat strings for prompt building."""
        view = await self.aggregate()
        context = {
            "official_usd": str(view.usd.value),
            "official_usd_confidence": view.usd.confidence.value,
            "official_eur": str(view.eur.value),
            "spread_pct": str(view.metrics.spread_pct),
        }
        for name, quote in view.marketplaces.items():
            if quote is None:
                context[f"{name}_buy"] = "unknown"
                context[f"{name}_sell"] = "unknown"
                continue
            context[f"{name}_buy"] = str(quote.buy_rate.value)
            context[f"{name}_sell"] = str(quote.sell_rate.value)
        return context


def snapshot_from_view(view: RatesView) -> AggregatedSnapshot:
    """Project a reconciled view onto the persisted snapshot shape."""
    return AggregatedSnapshot(
        official_rate=view.usd,
        marketplace_rates={n: q for n, q in view.marketplaces.items() if q is not None},
        spread_pct=view.metrics.spread_pct,
        captured_at=view.captured_at,
    )

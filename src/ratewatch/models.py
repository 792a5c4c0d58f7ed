"""Shared data models for the rate aggregation service.

All rate and price values use Decimal. A rate of zero is never a real
rate: it is represented as an absent value with ``Confidence.UNKNOWN``.
"""

import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


class Confidence(str, Enum):
    """Provenance of a resolved rate."""

    LIVE = "live"
    HISTORICAL = "historical"
    UNKNOWN = "unknown"


class TradeSide(str, Enum):
    """P2P side from the taker's perspective.

    BUY: taker pays fiat and receives the crypto asset.
    SELL: taker hands over the crypto asset and receives fiat.
    """

    BUY = "buy"
    SELL = "sell"


@dataclass
class Rate:
    """A single normalized rate reading from one source."""

    source: str
    symbol: str
    value: Decimal
    captured_at: float = field(default_factory=time.time)
    confidence: Confidence = Confidence.LIVE


@dataclass(frozen=True)
class ResolvedRate:
    """Best available value for one rate field after the fallback chain."""

    value: Decimal
    confidence: Confidence

    @property
    def is_available(self) -> bool:
        return self.confidence is not Confidence.UNKNOWN


@dataclass
class OfficialRates:
    """Official USD and EUR rates as published for ``valid_date``.

    A rate the page did not carry is None, never zero.
    """

    usd: Decimal | None
    eur: Decimal | None
    valid_date: date
    captured_at: float = field(default_factory=time.time)
    source: str = "bcv"


@dataclass
class HistoryPoint:
    """Official rates for one calendar day, keyed by currency code."""

    date: date
    values: dict[str, Decimal] = field(default_factory=dict)

    def value_for(self, currency: str) -> Decimal | None:
        value = self.values.get(currency.upper())
        if value is None or value <= 0:
            return None
        return value


@dataclass(frozen=True)
class OrderBookEntry:
    """One P2P advertisement, normalized across marketplaces."""

    advertiser_id: str
    advertiser: str
    price: Decimal
    min_amount: Decimal
    max_amount: Decimal
    available_amount: Decimal
    payment_methods: frozenset[str] = frozenset()
    order_count: int = 0
    completion_rate: Decimal = Decimal("0")  # 0-100


@dataclass
class OrderBook:
    """Best-first buy and sell offers from one marketplace for one query.

    ``error`` is set when the marketplace could not be queried; the lists
    are then empty. An empty book without error is a legitimate answer.
    """

    marketplace: str
    buy: list[OrderBookEntry] = field(default_factory=list)
    sell: list[OrderBookEntry] = field(default_factory=list)
    error: str | None = None

    def truncated(self, limit: int) -> "OrderBook":
        return OrderBook(self.marketplace, self.buy[:limit], self.sell[:limit], self.error)


@dataclass(frozen=True)
class ProbeRange:
    """A representative trade size used to sample marketplace depth."""

    id: str
    label: str
    amount_usd: Decimal


@dataclass
class ProbeResult:
    """Order books from every marketplace for one probe."""

    probe: ProbeRange
    amount_quote: Decimal  # probe amount converted to the fiat currency
    books: dict[str, OrderBook] = field(default_factory=dict)


@dataclass
class RangeScan:
    """Result of a full probe scan.

    ``reference_degraded`` is True when the fallback constant replaced an
    unavailable live reference rate.
    """

    reference_rate: Decimal
    reference_degraded: bool
    results: list[ProbeResult] = field(default_factory=list)


@dataclass(frozen=True)
class MarketplaceQuote:
    """Representative buy and sell rate for one marketplace."""

    marketplace: str
    buy_rate: ResolvedRate
    sell_rate: ResolvedRate

    @property
    def average(self) -> Decimal:
        if not (self.buy_rate.is_available and self.sell_rate.is_available):
            return Decimal("0")
        return (self.buy_rate.value + self.sell_rate.value) / 2


@dataclass(frozen=True)
class RateMetrics:
    """Comparison metrics derived from resolved rates only."""

    spread_pct: Decimal
    mix_average: Decimal
    market_average: Decimal
    soft_spread_pct: Decimal


@dataclass
class AggregatedSnapshot:
    """The unit persisted hourly by the scheduler."""

    official_rate: ResolvedRate
    marketplace_rates: dict[str, MarketplaceQuote]
    spread_pct: Decimal
    captured_at: float = field(default_factory=time.time)


@dataclass
class RatesView:
    """Reconciled view served by ``GET /rates``."""

    usd: ResolvedRate
    eur: ResolvedRate
    marketplaces: dict[str, MarketplaceQuote | None]
    metrics: RateMetrics
    official_date: date | None
    captured_at: float = field(default_factory=time.time)
    notes: list[str] = field(default_factory=list)


@dataclass
class SpotStats:
    """24h statistics for a spot pair."""

    symbol: str
    last_price: Decimal
    change_pct_24h: Decimal
    high_24h: Decimal
    low_24h: Decimal
    quote_volume_24h: Decimal


@dataclass
class TopCoin:
    """Market-cap ranked coin summary."""

    id: str
    rank: int | None
    name: str
    symbol: str
    image: str
    current_price: Decimal
    market_cap: Decimal
    volume_24h: Decimal
    change_pct_24h: Decimal | None
    change_pct_7d: Decimal | None
    sparkline: list[Decimal] = field(default_factory=list)


@dataclass
class NewsArticle:
    """A relevant headline from the news corpus."""

    url: str
    title: str
    source: str
    published_at: float
    summary: str = ""


@dataclass
class MarketReport:
    """Narrative artifact produced by the daily job."""

    report_type: str
    content: str
    sentiment_label: str
    created_at: float = field(default_factory=time.time)
    id: int | None = None

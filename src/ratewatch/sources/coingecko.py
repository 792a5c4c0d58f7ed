"""CoinGecko public API adapter: market-cap leaders and price charts."""

from decimal import Decimal

from ratewatch.config import MarketSettings
from ratewatch.exceptions import DataIntegrityError
from ratewatch.models import TopCoin
from ratewatch.sources.http import HttpClient
from ratewatch.sources.types import to_decimal, to_decimal_or_default

SOURCE = "coingecko"

# Upper bound on chart points returned to the dashboard
MAX_CHART_POINTS = 100


def _optional_decimal(value: object, field: str) -> Decimal | None:
    if value is None:
        return None
    return to_decimal(value, SOURCE, field)


def parse_coin(raw: dict) -> TopCoin:
    """Normalize one ``/coins/markets`` row."""
    if not isinstance(raw, dict) or "id" not in raw:
        raise DataIntegrityError(SOURCE, "market row without id")
    sparkline = (raw.get("sparkline_in_7d") or {}).get("price") or []
    return TopCoin(
        id=raw["id"],
        rank=raw.get("market_cap_rank"),
        name=raw.get("name", ""),
        symbol=str(raw.get("symbol", "")).upper(),
        image=raw.get("image", ""),
        current_price=to_decimal_or_default(raw.get("current_price"), SOURCE, "current_price"),
        market_cap=to_decimal_or_default(raw.get("market_cap"), SOURCE, "market_cap"),
        volume_24h=to_decimal_or_default(raw.get("total_volume"), SOURCE, "total_volume"),
        change_pct_24h=_optional_decimal(
            raw.get("price_change_percentage_24h"), "price_change_percentage_24h"
        ),
        change_pct_7d=_optional_decimal(
            raw.get("price_change_percentage_7d_in_currency"),
            "price_change_percentage_7d_in_currency",
        ),
        sparkline=[to_decimal(p, SOURCE, "sparkline") for p in sparkline if p is not None],
    )


def downsample(points: list, max_points: int = MAX_CHART_POINTS) -> list:
    """Keep every n-th point so that at most ``max_points`` remain."""
    if len(points) <= max_points:
        return points
    step = -(-len(points) // max_points)
    return points[::step]


class CoinGeckoClient:
    """Thin async client over the CoinGecko v3 endpoints used by the dashboard."""

    name = SOURCE

    def __init__(self, http: HttpClient, settings: MarketSettings) -> None:
        self._http = http
        self._base_url = settings.coingecko_url.rstrip("/")

    async def fetch_top_coins(self, limit: int = 5) -> list[TopCoin]:
        data = await self._http.get_json(
            SOURCE,
            f"{self._base_url}/coins/markets",
            params={
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": limit,
                "page": 1,
                "sparkline": "true",
                "price_change_percentage": "24h,7d",
            },
        )
        if not isinstance(data, list):
            raise DataIntegrityError(SOURCE, "coins/markets did not return a list")
        return [parse_coin(row) for row in data]

    async def fetch_market_chart(
        self, coin_id: str = "bitcoin", days: str = "1"
    ) -> list[tuple[int, Decimal]]:
        """Return ``(timestamp_ms, price)`` pairs, downsampled for charting."""
        data = await self._http.get_json(
            SOURCE,
            f"{self._base_url}/coins/{coin_id}/market_chart",
            params={"vs_currency": "usd", "days": days},
        )
        prices = data.get("prices") if isinstance(data, dict) else None
        if not isinstance(prices, list):
            raise DataIntegrityError(SOURCE, "market_chart without prices")
        points = [(int(ts), to_decimal(price, SOURCE, "price")) for ts, price in prices]
        return downsample(points)

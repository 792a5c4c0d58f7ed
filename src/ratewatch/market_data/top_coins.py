"""Cached market-cap leaders for the dashboard table."""

from ratewatch.exceptions import UpstreamError
from ratewatch.logging import get_logger
from ratewatch.market_data.cache import ExpiringCache
from ratewatch.models import TopCoin
from ratewatch.sources.coingecko import CoinGeckoClient

logger = get_logger(__name__)


class TopCoinsService:
    """Serves the top coins from cache, refetching once the TTL passes.

    A failed refetch serves the expired entry if there is one; with no
    cached entry the UpstreamError propagates to the route.
    """

    def __init__(self, client: CoinGeckoClient, ttl_seconds: float = 300.0) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._cache: ExpiringCache[list[TopCoin]] = ExpiringCache()

    async def get_top_coins(self, limit: int = 5) -> list[TopCoin]:
        key = f"top:{limit}"
        entry = self._cache.get(key)
        if entry is not None and not entry.is_expired(self._ttl):
            return entry.value

        try:
            coins = await self._client.fetch_top_coins(limit)
        except UpstreamError as exc:
            if entry is None:
                raise
            logger.warning(
                "top_coins_serving_stale",
                limit=limit,
                age_seconds=round(entry.age(), 1),
                error=str(exc),
            )
            return entry.value

        self._cache.set(key, coins)
        logger.debug("top_coins_refreshed", limit=limit, coins=len(coins))
        return coins

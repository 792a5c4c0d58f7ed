"""Tests for ExpiringCache and the cached TopCoinsService."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from ratewatch.exceptions import UpstreamError
from ratewatch.market_data.cache import CacheEntry, ExpiringCache
from ratewatch.market_data.top_coins import TopCoinsService
from ratewatch.models import TopCoin


def _coin(coin_id: str = "bitcoin", price: str = "65000") -> TopCoin:
    return TopCoin(
        id=coin_id,
        rank=1,
        name=coin_id.title(),
        symbol="BTC",
        image="",
        current_price=Decimal(price),
        market_cap=Decimal("1"),
        volume_24h=Decimal("1"),
        change_pct_24h=None,
        change_pct_7d=None,
    )


class TestExpiringCache:
    """Tests for caller-checked expiry."""

    def test_entry_expiry(self) -> None:
        entry = CacheEntry("value", stored_at=1000.0)
        assert not entry.is_expired(300, now=1299.0)
        assert entry.is_expired(300, now=1300.0)
        assert entry.age(now=1100.0) == 100.0

    def test_get_returns_expired_entries(self) -> None:
        cache: ExpiringCache[str] = ExpiringCache()
        cache.set("k", "v", now=0.0)
        entry = cache.get("k")
        assert entry is not None
        assert entry.is_expired(1)
        assert entry.value == "v"

    def test_last_writer_wins(self) -> None:
        cache: ExpiringCache[int] = ExpiringCache()
        cache.set("k", 1)
        cache.set("k", 2)
        assert cache.get("k").value == 2
        assert len(cache) == 1

    def test_invalidate(self) -> None:
        cache: ExpiringCache[int] = ExpiringCache()
        cache.set("k", 1)
        cache.invalidate("k")
        cache.invalidate("missing")
        assert cache.get("k") is None


class TestTopCoinsService:
    """Tests for the cached market-cap leaders."""

    @pytest.mark.asyncio
    async def test_fresh_entry_is_served_from_cache(self) -> None:
        client = AsyncMock()
        client.fetch_top_coins = AsyncMock(return_value=[_coin()])
        service = TopCoinsService(client, ttl_seconds=300)

        first = await service.get_top_coins(5)
        second = await service.get_top_coins(5)

        assert first == second
        client.fetch_top_coins.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self) -> None:
        client = AsyncMock()
        client.fetch_top_coins = AsyncMock(side_effect=[[_coin(price="1")], [_coin(price="2")]])
        service = TopCoinsService(client, ttl_seconds=0)

        await service.get_top_coins(5)
        coins = await service.get_top_coins(5)

        assert coins[0].current_price == Decimal("2")
        assert client.fetch_top_coins.await_count == 2

    @pytest.mark.asyncio
    async def test_stale_entry_served_when_refetch_fails(self) -> None:
        client = AsyncMock()
        client.fetch_top_coins = AsyncMock(
            side_effect=[[_coin(price="1")], UpstreamError("coingecko", "HTTP 429")]
        )
        service = TopCoinsService(client, ttl_seconds=0)

        await service.get_top_coins(5)
        coins = await service.get_top_coins(5)

        assert coins[0].current_price == Decimal("1")

    @pytest.mark.asyncio
    async def test_failure_without_cache_raises(self) -> None:
        client = AsyncMock()
        client.fetch_top_coins = AsyncMock(side_effect=UpstreamError("coingecko", "down"))
        service = TopCoinsService(client)

        with pytest.raises(UpstreamError):
            await service.get_top_coins(5)

    @pytest.mark.asyncio
    async def test_limits_are_cached_separately(self) -> None:
        client = AsyncMock()
        client.fetch_top_coins = AsyncMock(return_value=[_coin()])
        service = TopCoinsService(client)

        await service.get_top_coins(5)
        await service.get_top_coins(10)

        assert client.fetch_top_coins.await_count == 2

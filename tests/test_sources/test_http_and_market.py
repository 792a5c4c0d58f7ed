"""Tests for the shared HTTP client, numeric parsing, spot and CoinGecko adapters."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as UpstreamServer
from ccxt.base.errors import NetworkError

from ratewatch.config import HttpSettings, MarketSettings
from ratewatch.exceptions import DataIntegrityError, UpstreamError
from ratewatch.sources.client import bounded
from ratewatch.sources.coingecko import CoinGeckoClient, downsample, parse_coin
from ratewatch.sources.http import HttpClient
from ratewatch.sources.spot import SpotPriceSource
from ratewatch.sources.types import to_decimal, to_decimal_or_default, to_int


class TestToDecimal:
    """Tests for upstream numeric parsing."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("240,50", Decimal("240.50")),
            ("1.240,50", Decimal("1240.50")),
            ("1,240.50", Decimal("1240.50")),
            (" 36.5 ", Decimal("36.5")),
            (270, Decimal("270")),
            (0.987, Decimal("0.987")),
        ],
    )
    def test_formats(self, raw, expected) -> None:
        assert to_decimal(raw, "src", "price") == expected

    @pytest.mark.parametrize("raw", [None, True, "", "abc", "NaN", "Infinity"])
    def test_rejects(self, raw) -> None:
        with pytest.raises(DataIntegrityError):
            to_decimal(raw, "src", "price")

    def test_defaults(self) -> None:
        assert to_decimal_or_default(None, "src", "f") == Decimal("0")
        assert to_decimal_or_default("", "src", "f", Decimal("1")) == Decimal("1")
        assert to_int("12") == 12
        assert to_int(None) == 0


class TestBounded:
    """Tests for the adapter timeout guard."""

    @pytest.mark.asyncio
    async def test_timeout_becomes_upstream_error(self) -> None:
        with pytest.raises(UpstreamError, match="timed out"):
            await bounded(asyncio.sleep(1), 0.01, "slow")

    @pytest.mark.asyncio
    async def test_result_passes_through(self) -> None:
        async def answer() -> int:
            return 42

        assert await bounded(answer(), 1, "fast") == 42


# ---------------------------------------------------------------------------
# HttpClient against a local aiohttp server
# ---------------------------------------------------------------------------


async def _ok(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "ua": request.headers.get("User-Agent")})


async def _echo(request: web.Request) -> web.Response:
    return web.json_response(await request.json())


async def _server_error(request: web.Request) -> web.Response:
    return web.Response(status=503, text="maintenance")


async def _not_json(request: web.Request) -> web.Response:
    return web.Response(text="<html>captcha</html>", content_type="text/html")


@pytest.fixture
def upstream_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/ok", _ok)
    app.router.add_post("/echo", _echo)
    app.router.add_get("/error", _server_error)
    app.router.add_get("/html", _not_json)
    return app


class TestHttpClient:
    """Tests for failure normalization."""

    @pytest.mark.asyncio
    async def test_requires_connect(self) -> None:
        with pytest.raises(RuntimeError):
            HttpClient(HttpSettings()).session

    @pytest.mark.asyncio
    async def test_json_text_and_errors(self, upstream_app) -> None:
        async with UpstreamServer(upstream_app) as server:
            http = HttpClient(HttpSettings(user_agent="ratewatch-test"))
            await http.connect()
            try:
                data = await http.get_json("test", str(server.make_url("/ok")))
                assert data == {"ok": True, "ua": "ratewatch-test"}

                echoed = await http.post_json("test", str(server.make_url("/echo")), {"side": "1"})
                assert echoed == {"side": "1"}

                html = await http.get_text("test", str(server.make_url("/html")))
                assert "captcha" in html

                with pytest.raises(UpstreamError, match="HTTP 503"):
                    await http.get_json("test", str(server.make_url("/error")))

                with pytest.raises(DataIntegrityError):
                    await http.get_json("test", str(server.make_url("/html")))
            finally:
                await http.close()

    @pytest.mark.asyncio
    async def test_connection_error_is_upstream_error(self) -> None:
        http = HttpClient(HttpSettings(timeout_seconds=1))
        await http.connect()
        try:
            with pytest.raises(UpstreamError) as info:
                await http.get_json("test", "http://127.0.0.1:1/unreachable")
            assert info.value.source == "test"
            assert isinstance(info.value.__cause__, aiohttp.ClientError)
        finally:
            await http.close()


# ---------------------------------------------------------------------------
# Spot (ccxt) and CoinGecko
# ---------------------------------------------------------------------------


class TestSpotPriceSource:
    """Tests for the ccxt-backed spot adapter."""

    @pytest.mark.asyncio
    async def test_fetch_stats(self) -> None:
        exchange = AsyncMock()
        exchange.fetch_ticker = AsyncMock(
            return_value={
                "symbol": "BTC/USDT",
                "last": 65123.45,
                "percentage": -1.25,
                "high": 66000.0,
                "low": 64000.0,
                "quoteVolume": 1234567.89,
            }
        )
        source = SpotPriceSource(MarketSettings(), exchange=exchange)

        stats = await source.fetch_stats()

        assert stats.symbol == "BTC/USDT"
        assert stats.last_price == Decimal("65123.45")
        assert stats.change_pct_24h == Decimal("-1.25")
        exchange.fetch_ticker.assert_awaited_once_with("BTC/USDT")

    @pytest.mark.asyncio
    async def test_missing_percentage_defaults_to_zero(self) -> None:
        exchange = AsyncMock()
        exchange.fetch_ticker = AsyncMock(return_value={"last": 100.0, "percentage": None})
        source = SpotPriceSource(MarketSettings(), exchange=exchange)

        rate = await source.fetch_price("ETH/USDT")

        assert rate.value == Decimal("100.0")
        assert rate.symbol == "ETH/USDT"
        assert rate.source == "binance_spot"

    @pytest.mark.asyncio
    async def test_ccxt_error_becomes_upstream_error(self) -> None:
        exchange = AsyncMock()
        exchange.fetch_ticker = AsyncMock(side_effect=NetworkError("binance GET failed"))
        source = SpotPriceSource(MarketSettings(), exchange=exchange)

        with pytest.raises(UpstreamError, match="NetworkError"):
            await source.fetch_stats()

    @pytest.mark.asyncio
    async def test_slow_ticker_is_bounded(self) -> None:
        async def hang(symbol):
            await asyncio.sleep(1)

        exchange = AsyncMock()
        exchange.fetch_ticker = hang
        source = SpotPriceSource(MarketSettings(), exchange=exchange, timeout=0.01)

        with pytest.raises(UpstreamError, match="timed out"):
            await source.fetch_stats()

    @pytest.mark.asyncio
    async def test_close_closes_exchange(self) -> None:
        exchange = AsyncMock()
        source = SpotPriceSource(MarketSettings(), exchange=exchange)
        await source.close()
        exchange.close.assert_awaited_once()


COINGECKO_ROW = {
    "id": "bitcoin",
    "symbol": "btc",
    "name": "Bitcoin",
    "image": "https://img/btc.png",
    "current_price": 65000,
    "market_cap": 1280000000000,
    "market_cap_rank": 1,
    "total_volume": 31000000000,
    "price_change_percentage_24h": 1.5,
    "price_change_percentage_7d_in_currency": None,
    "sparkline_in_7d": {"price": [64000.1, None, 65000.2]},
}


class TestCoinGecko:
    """Tests for the CoinGecko adapter."""

    def test_parse_coin(self) -> None:
        coin = parse_coin(COINGECKO_ROW)
        assert coin.symbol == "BTC"
        assert coin.rank == 1
        assert coin.change_pct_24h == Decimal("1.5")
        assert coin.change_pct_7d is None
        assert coin.sparkline == [Decimal("64000.1"), Decimal("65000.2")]

    def test_downsample(self) -> None:
        points = list(range(250))
        sampled = downsample(points, 100)
        assert len(sampled) <= 100
        assert sampled[0] == 0
        assert downsample([1, 2, 3], 100) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_fetch_top_coins(self) -> None:
        http = AsyncMock()
        http.get_json = AsyncMock(return_value=[COINGECKO_ROW])
        client = CoinGeckoClient(http, MarketSettings())

        coins = await client.fetch_top_coins(5)

        assert [c.id for c in coins] == ["bitcoin"]
        assert http.get_json.await_args.kwargs["params"]["per_page"] == 5

    @pytest.mark.asyncio
    async def test_market_chart(self) -> None:
        http = AsyncMock()
        http.get_json = AsyncMock(return_value={"prices": [[1700000000000, 65000.5], [1700000300000, 65010.0]]})
        client = CoinGeckoClient(http, MarketSettings())

        points = await client.fetch_market_chart("bitcoin", "1")

        assert points == [(1700000000000, Decimal("65000.5")), (1700000300000, Decimal("65010.0"))]

    @pytest.mark.asyncio
    async def test_unexpected_shape_raises(self) -> None:
        http = AsyncMock()
        http.get_json = AsyncMock(return_value={"status": {"error_code": 429}})
        client = CoinGeckoClient(http, MarketSettings())

        with pytest.raises(DataIntegrityError):
            await client.fetch_top_coins()

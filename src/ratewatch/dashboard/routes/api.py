"""JSON API endpoints for the dashboard: rates, history, P2P, market data and news."""

from __future__ import annotations

import time
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from ratewatch.exceptions import NarrativeUnavailableError, UpstreamError
from ratewatch.models import (
    HistoryPoint,
    MarketplaceQuote,
    MarketReport,
    NewsArticle,
    OrderBook,
    OrderBookEntry,
    ProbeResult,
    RatesView,
    ResolvedRate,
    SpotStats,
    TopCoin,
)

log = structlog.get_logger(__name__)

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_str(item) for item in obj]
    return obj


# ──────────────────────────────────────────────
# Serializers
# ──────────────────────────────────────────────


def _rate(rate: ResolvedRate) -> dict:
    return {"value": str(rate.value), "confidence": rate.confidence.value}


def _quote(quote: MarketplaceQuote | None) -> dict | None:
    if quote is None:
        return None
    return {
        "buy": _rate(quote.buy_rate),
        "sell": _rate(quote.sell_rate),
        "average": str(quote.average),
    }


def _rates_view(view: RatesView) -> dict:
    return {
        "usd": _rate(view.usd),
        "eur": _rate(view.eur),
        "official_date": view.official_date.isoformat() if view.official_date else None,
        "marketplaces": {name: _quote(q) for name, q in view.marketplaces.items()},
        "metrics": {
            "spread_pct": str(view.metrics.spread_pct),
            "mix_average": str(view.metrics.mix_average),
            "market_average": str(view.metrics.market_average),
            "soft_spread_pct": str(view.metrics.soft_spread_pct),
        },
        "captured_at": view.captured_at,
        "notes": view.notes,
    }


def _history_point(point: HistoryPoint) -> dict:
    return {
        "date": point.date.isoformat(),
        "usd": str(point.values["USD"]) if "USD" in point.values else None,
        "eur": str(point.values["EUR"]) if "EUR" in point.values else None,
    }


def _entry(entry: OrderBookEntry) -> dict:
    return {
        "advertiser_id": entry.advertiser_id,
        "advertiser": entry.advertiser,
        "price": str(entry.price),
        "min_amount": str(entry.min_amount),
        "max_amount": str(entry.max_amount),
        "available_amount": str(entry.available_amount),
        "payment_methods": sorted(entry.payment_methods),
        "order_count": entry.order_count,
        "completion_rate": str(entry.completion_rate),
    }


def _book(book: OrderBook) -> dict:
    return {
        "buy": [_entry(e) for e in book.buy],
        "sell": [_entry(e) for e in book.sell],
        "error": book.error,
    }


def _probe_result(result: ProbeResult) -> dict:
    return {
        "id": result.probe.id,
        "label": result.probe.label,
        "amount_usd": str(result.probe.amount_usd),
        "amount_quote": str(result.amount_quote),
        "books": {name: _book(book) for name, book in result.books.items()},
    }


def _spot(stats: SpotStats) -> dict:
    return {
        "symbol": stats.symbol,
        "last_price": str(stats.last_price),
        "change_pct_24h": str(stats.change_pct_24h),
        "high_24h": str(stats.high_24h),
        "low_24h": str(stats.low_24h),
        "quote_volume_24h": str(stats.quote_volume_24h),
    }


def _coin(coin: TopCoin) -> dict:
    return _decimal_to_str({
        "id": coin.id,
        "rank": coin.rank,
        "name": coin.name,
        "symbol": coin.symbol,
        "image": coin.image,
        "current_price": coin.current_price,
        "market_cap": coin.market_cap,
        "volume_24h": coin.volume_24h,
        "change_pct_24h": coin.change_pct_24h,
        "change_pct_7d": coin.change_pct_7d,
        "sparkline": coin.sparkline,
    })


def _article(article: NewsArticle) -> dict:
    return {
        "url": article.url,
        "title": article.title,
        "source": article.source,
        "published_at": article.published_at,
        "summary": article.summary,
    }


def _report(report: MarketReport) -> dict:
    return {
        "id": report.id,
        "report_type": report.report_type,
        "content": report.content,
        "sentiment_label": report.sentiment_label,
        "created_at": report.created_at,
    }


def _upstream_unavailable(exc: UpstreamError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"error": f"{exc.source} unavailable", "detail": exc.message},
    )


def _narrative_unavailable(exc: NarrativeUnavailableError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"error": "Narrative unavailable", "detail": str(exc)},
    )


# ──────────────────────────────────────────────
# Rates and history
# ──────────────────────────────────────────────


@router.get("/rates")
async def get_rates(request: Request) -> JSONResponse:
    """Reconciled official and marketplace rates with comparison metrics.

    Degraded sources are reported through confidences and ``notes``; only
    an unexpected error produces a 5xx.
    """
    reconciler = request.app.state.reconciler
    view = await reconciler.aggregate()
    return JSONResponse(content=_rates_view(view))


@router.get("/history")
async def get_history(request: Request) -> JSONResponse:
    """Official rate history, oldest first."""
    history = request.app.state.history_service
    points, source = await history.get_history()
    return JSONResponse(content={
        "source": source,
        "points": [_history_point(p) for p in points],
    })


# ──────────────────────────────────────────────
# P2P
# ──────────────────────────────────────────────


@router.get("/p2p/ranges")
async def get_p2p_ranges(request: Request) -> JSONResponse:
    """Offers per marketplace at each probe trade size."""
    ranger = request.app.state.ranger
    scan = await ranger.range_scan()
    return JSONResponse(content={
        "reference_rate": str(scan.reference_rate),
        "reference_degraded": scan.reference_degraded,
        "ranges": [_probe_result(r) for r in scan.results],
    })


@router.get("/p2p/calculate")
async def calculate_p2p(
    request: Request,
    amount: str | None = None,
    payment_method: str | None = Query(default=None, alias="paymentMethod"),
) -> JSONResponse:
    """Offers for an arbitrary fiat amount."""
    try:
        value = Decimal(amount) if amount is not None else None
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite() or value <= 0:
        return JSONResponse(status_code=400, content={"error": "Invalid amount"})

    ranger = request.app.state.ranger
    result = await ranger.calculate(value, payment_method)
    return JSONResponse(content=_probe_result(result))


@router.get("/p2p/dashboard")
async def get_p2p_dashboard(request: Request) -> JSONResponse:
    """Top offers per marketplace for the dashboard widget."""
    ranger = request.app.state.ranger
    result = await ranger.top_offers()
    return JSONResponse(content=_probe_result(result))


@router.get("/p2p/history")
async def get_p2p_history(request: Request, days: int = Query(default=7, ge=1, le=365)) -> JSONResponse:
    """Logged order-book slices from the hourly snapshots."""
    store = request.app.state.store
    since_ms = int((time.time() - days * 86400) * 1000)
    rows = await store.get_p2p_history(since_ms)
    return JSONResponse(content=_decimal_to_str(rows))


@router.get("/p2p/arbitrage")
async def get_p2p_arbitrage(request: Request) -> JSONResponse:
    """Marketplace averages with a generated arbitrage commentary."""
    advisor = request.app.state.advisor
    try:
        result = await advisor.arbitrage()
    except NarrativeUnavailableError as exc:
        log.warning("arbitrage_analysis_unavailable", error=str(exc))
        return _narrative_unavailable(exc)
    return JSONResponse(content={
        "marketplaces": {name: _quote(q) for name, q in result.marketplaces.items()},
        "analysis": result.analysis,
    })


# ──────────────────────────────────────────────
# Market data
# ──────────────────────────────────────────────


@router.get("/crypto/top")
async def get_top_coins(request: Request, limit: int = Query(default=5, ge=1, le=100)) -> JSONResponse:
    """Market-cap leaders (cached)."""
    top_coins = request.app.state.top_coins
    try:
        coins = await top_coins.get_top_coins(limit)
    except UpstreamError as exc:
        log.warning("top_coins_unavailable", error=str(exc))
        return _upstream_unavailable(exc)
    return JSONResponse(content=[_coin(c) for c in coins])


@router.get("/crypto/chart")
async def get_chart(
    request: Request,
    coin: str = "bitcoin",
    days: str = "1",
) -> JSONResponse:
    """Price chart points for one coin."""
    coingecko = request.app.state.coingecko
    try:
        points = await coingecko.fetch_market_chart(coin, days)
    except UpstreamError as exc:
        log.warning("chart_unavailable", coin=coin, error=str(exc))
        return _upstream_unavailable(exc)
    return JSONResponse(content=[{"timestamp": ts, "price": str(price)} for ts, price in points])


@router.get("/btc/stats")
async def get_btc_stats(request: Request) -> JSONResponse:
    """24h spot statistics for the configured BTC pair."""
    spot = request.app.state.spot_source
    try:
        stats = await spot.fetch_stats()
    except UpstreamError as exc:
        log.warning("btc_stats_unavailable", error=str(exc))
        return _upstream_unavailable(exc)
    return JSONResponse(content=_spot(stats))


# ──────────────────────────────────────────────
# News and narrative reports
# ──────────────────────────────────────────────


@router.get("/news")
async def get_news(request: Request, limit: int = Query(default=20, ge=1, le=100)) -> JSONResponse:
    """Most recent stored headlines."""
    store = request.app.state.store
    articles = await store.get_news(limit=limit)
    return JSONResponse(content=[_article(a) for a in articles])


@router.get("/analysis")
async def get_analysis(
    request: Request,
    type: str | None = None,
    limit: int = Query(default=1, ge=1, le=50),
) -> JSONResponse:
    """Latest narrative reports, optionally filtered by report type."""
    store = request.app.state.store
    reports = await store.get_reports(report_type=type, limit=limit)
    return JSONResponse(content=[_report(r) for r in reports])


@router.post("/ai/chat")
async def chat(request: Request) -> JSONResponse:
    """Answer a question about the current rates.

    Expects JSON body with: message.
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    message = body.get("message") if isinstance(body, dict) else None
    if not isinstance(message, str) or not message.strip():
        return JSONResponse(status_code=400, content={"error": "Missing required field: message"})

    advisor = request.app.state.advisor
    try:
        reply = await advisor.chat(message.strip())
    except NarrativeUnavailableError as exc:
        log.warning("chat_unavailable", error=str(exc))
        return _narrative_unavailable(exc)
    return JSONResponse(content={"reply": reply})

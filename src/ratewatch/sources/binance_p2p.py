"""Binance P2P marketplace adapter.

Binance's ``tradeType`` is already expressed from the taker's point of
view: "BUY" lists ads where the taker buys the asset. Results come back
ranked best price first.
"""

from decimal import Decimal

from ratewatch.config import P2PSettings
from ratewatch.exceptions import DataIntegrityError
from ratewatch.logging import get_logger
from ratewatch.models import OrderBookEntry, TradeSide
from ratewatch.sources.client import Marketplace
from ratewatch.sources.http import HttpClient
from ratewatch.sources.types import to_decimal, to_decimal_or_default, to_int

logger = get_logger(__name__)

SOURCE = "binance"

_TRADE_TYPES = {TradeSide.BUY: "BUY", TradeSide.SELL: "SELL"}


def parse_binance_ad(item: dict) -> OrderBookEntry:
    """Normalize one Binance ``adv``/``advertiser`` record."""
    try:
        adv = item["adv"]
        advertiser = item["advertiser"]
    except (KeyError, TypeError) as exc:
        raise DataIntegrityError(SOURCE, "ad without adv/advertiser block") from exc

    methods = frozenset(
        m.get("tradeMethodName") or m.get("identifier") or ""
        for m in adv.get("tradeMethods") or []
    ) - {""}
    # monthFinishRate is a 0-1 fraction
    finish_rate = to_decimal_or_default(
        advertiser.get("monthFinishRate"), SOURCE, "monthFinishRate"
    )

    return OrderBookEntry(
        advertiser_id=str(advertiser.get("userNo") or ""),
        advertiser=str(advertiser.get("nickName") or ""),
        price=to_decimal(adv.get("price"), SOURCE, "price"),
        min_amount=to_decimal_or_default(
            adv.get("minSingleTransAmount"), SOURCE, "minSingleTransAmount"
        ),
        max_amount=to_decimal_or_default(
            adv.get("maxSingleTransAmount"), SOURCE, "maxSingleTransAmount"
        ),
        available_amount=to_decimal_or_default(
            adv.get("surplusAmount"), SOURCE, "surplusAmount"
        ),
        payment_methods=methods,
        order_count=to_int(advertiser.get("monthOrderCount")),
        completion_rate=finish_rate * 100,
    )


class BinanceP2P(Marketplace):
    """Queries the public Binance C2C advertisement search."""

    name = SOURCE

    def __init__(self, http: HttpClient, settings: P2PSettings) -> None:
        self._http = http
        self._settings = settings

    def build_payload(
        self,
        side: TradeSide,
        amount: Decimal | None,
        payment_method: str | None,
    ) -> dict:
        payload = {
            "fiat": self._settings.fiat,
            "asset": self._settings.asset,
            "tradeType": _TRADE_TYPES[side],
            "page": 1,
            "rows": self._settings.top_n,
            "countries": [],
            "proMerchantAds": False,
            "shieldMerchantAds": False,
            "publisherType": None,
            "payTypes": [payment_method] if payment_method and payment_method != "all" else [],
            "classifies": ["mass", "profession"],
        }
        if amount is not None and amount > 0:
            payload["transAmount"] = str(amount)
        return payload

    async def fetch_offers(
        self,
        side: TradeSide,
        amount: Decimal | None = None,
        payment_method: str | None = None,
    ) -> list[OrderBookEntry]:
        data = await self._http.post_json(
            SOURCE,
            self._settings.binance_url,
            self.build_payload(side, amount, payment_method),
        )
        if not isinstance(data, dict):
            raise DataIntegrityError(SOURCE, "unexpected response shape")
        if data.get("success") is False:
            raise DataIntegrityError(SOURCE, f"search rejected: {data.get('message')}")

        items = data.get("data") or []
        if not isinstance(items, list):
            raise DataIntegrityError(SOURCE, "data is not a list")

        entries = [parse_binance_ad(item) for item in items]
        offers = [e for e in entries if e.price > 0]
        logger.debug(
            "binance_offers_fetched",
            side=side.value,
            amount=str(amount),
            count=len(offers),
        )
        return offers

"""Bybit P2P marketplace adapter.

Bybit encodes the side as a string flag on its OTC listing endpoint:
"1" lists the ads a taker buys from and "0" the ads a taker sells to.
The flag is mapped onto the canonical TradeSide here so downstream code
never sees Bybit's encoding.
"""

from decimal import Decimal

from ratewatch.config import P2PSettings
from ratewatch.exceptions import DataIntegrityError, UpstreamError
from ratewatch.logging import get_logger
from ratewatch.models import OrderBookEntry, TradeSide
from ratewatch.sources.client import Marketplace
from ratewatch.sources.http import HttpClient
from ratewatch.sources.types import to_decimal, to_decimal_or_default, to_int

logger = get_logger(__name__)

SOURCE = "bybit"

_SIDE_FLAGS = {TradeSide.BUY: "1", TradeSide.SELL: "0"}


def parse_bybit_item(item: dict) -> OrderBookEntry:
    """Normalize one Bybit OTC listing item."""
    if not isinstance(item, dict):
        raise DataIntegrityError(SOURCE, "listing item is not an object")

    available = item.get("lastQuantity")
    if available in (None, ""):
        available = item.get("quantity")

    return OrderBookEntry(
        advertiser_id=str(item.get("userId") or item.get("id") or ""),
        advertiser=str(item.get("nickName") or ""),
        price=to_decimal(item.get("price"), SOURCE, "price"),
        min_amount=to_decimal_or_default(item.get("minAmount"), SOURCE, "minAmount"),
        max_amount=to_decimal_or_default(item.get("maxAmount"), SOURCE, "maxAmount"),
        available_amount=to_decimal_or_default(available, SOURCE, "quantity"),
        payment_methods=frozenset(str(p) for p in item.get("payments") or []),
        order_count=to_int(item.get("recentOrderNum")),
        # Already a 0-100 percentage
        completion_rate=to_decimal_or_default(
            item.get("recentExecuteRate"), SOURCE, "recentExecuteRate"
        ),
    )


class BybitP2P(Marketplace):
    """Queries the public Bybit OTC online listings."""

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
        return {
            "userId": "",
            "tokenId": self._settings.asset,
            "currencyId": self._settings.fiat,
            "payment": [payment_method] if payment_method and payment_method != "all" else [],
            "side": _SIDE_FLAGS[side],
            "size": str(self._settings.top_n),
            "page": "1",
            "amount": str(amount) if amount is not None and amount > 0 else "",
        }

    async def fetch_offers(
        self,
        side: TradeSide,
        amount: Decimal | None = None,
        payment_method: str | None = None,
    ) -> list[OrderBookEntry]:
        data = await self._http.post_json(
            SOURCE,
            self._settings.bybit_url,
            self.build_payload(side, amount, payment_method),
            headers={"Content-Type": "application/json"},
        )
        if not isinstance(data, dict):
            raise DataIntegrityError(SOURCE, "unexpected response shape")

        ret_code = data.get("ret_code", 0)
        if ret_code not in (0, "0"):
            raise UpstreamError(SOURCE, f"ret_code={ret_code} {data.get('ret_msg', '')}".strip())

        result = data.get("result") or {}
        items = result.get("items") or []
        if not isinstance(items, list):
            raise DataIntegrityError(SOURCE, "result.items is not a list")

        offers = [e for e in (parse_bybit_item(item) for item in items) if e.price > 0]
        logger.debug(
            "bybit_offers_fetched",
            side=side.value,
            amount=str(amount),
            count=len(offers),
        )
        return offers

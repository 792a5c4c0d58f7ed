"""On-demand narrative answers built from the reconciled rates.

Backs the P2P arbitrage commentary and the rate chat. Both read the
market through RateReconciler and answer through the NarrativeGenerator
chain, so they see the same fallback-resolved values as the dashboard.
"""

from dataclasses import dataclass

from ratewatch.exceptions import UpstreamError
from ratewatch.logging import get_logger
from ratewatch.market_data.reconciler import RateReconciler
from ratewatch.models import MarketplaceQuote
from ratewatch.sources.llm import NarrativeGenerator
from ratewatch.sources.spot import SpotPriceSource

logger = get_logger(__name__)


@dataclass
class ArbitrageAnalysis:
    """Marketplace quotes and the generated commentary on them."""

    marketplaces: dict[str, MarketplaceQuote | None]
    analysis: str


def _quote_lines(marketplaces: dict[str, MarketplaceQuote | None]) -> str:
    lines = []
    for name, quote in marketplaces.items():
        if quote is None:
            lines.append(f"{name}: unavailable")
            continue
        lines.append(
            f"{name}: buy avg {quote.buy_rate.value} VES ({quote.buy_rate.confidence.value}), "
            f"sell avg {quote.sell_rate.value} VES ({quote.sell_rate.confidence.value})"
        )
    return "\n".join(lines)


class MarketAdvisor:
    """Answers arbitrage and free-form rate questions.

    Raises NarrativeUnavailableError from the generator when no provider
    produces an answer.
    """

    def __init__(
        self,
        reconciler: RateReconciler,
        generator: NarrativeGenerator,
        spot_source: SpotPriceSource | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._generator = generator
        self._spot = spot_source

    async def arbitrage(self) -> ArbitrageAnalysis:
        view = await self._reconciler.aggregate()
        prompt = (
            "You are a P2P crypto trader in Venezuela.\n"
            "Average USDT/VES prices from the top offers on each marketplace:\n"
            f"{_quote_lines(view.marketplaces)}\n\n"
            "Is there an arbitrage opportunity between buying on one marketplace "
            "and selling on another? Account for the buy/sell gap on each side "
            "and answer in 3-4 sentences."
        )
        analysis = await self._generator.generate(prompt)
        logger.info("arbitrage_analysis_generated", marketplaces=sorted(view.marketplaces))
        return ArbitrageAnalysis(marketplaces=view.marketplaces, analysis=analysis)

    async def chat(self, message: str) -> str:
        context = await self._reconciler.market_context()
        if self._spot is not None:
            try:
                btc = await self._spot.fetch_price()
            except UpstreamError as e:
                logger.warning("chat_spot_price_unavailable", error=str(e))
            else:
                context[f"spot_{btc.symbol}"] = str(btc.value)

        context_lines = "\n".join(f"{key}: {value}" for key, value in context.items())
        prompt = (
            "You are an assistant for the Venezuelan exchange market.\n"
            "Current market data:\n"
            f"{context_lines}\n\n"
            "Answer the user's question using only this data. Be brief.\n"
            f"User: {message}"
        )
        return await self._generator.generate(prompt)

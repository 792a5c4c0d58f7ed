"""Official rate adapter: scrapes the BCV home page.

The page carries the USD and EUR rates inside ``#dolar strong`` and
``#euro strong`` with a comma decimal separator, and the effective date as
"Fecha Valor: <weekday>, <day> <month> <year>" in Spanish.
"""

import re
from datetime import date

from bs4 import BeautifulSoup

from ratewatch.config import OfficialRateSettings
from ratewatch.exceptions import DataIntegrityError
from ratewatch.logging import get_logger
from ratewatch.models import OfficialRates
from ratewatch.sources.client import RateSource
from ratewatch.sources.http import HttpClient
from ratewatch.sources.types import to_decimal

logger = get_logger(__name__)

SOURCE = "bcv"

_SPANISH_MONTHS = {
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "setiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}

_VALID_DATE_RE = re.compile(
    r"Fecha\s+Valor:\s*[^\d]*?(\d{1,2})\s+([a-záéíóú]+)\s+(\d{4})", re.IGNORECASE
)


def parse_valid_date(text: str, today: date) -> date:
    """Extract the "Fecha Valor" date, defaulting to ``today``."""
    match = _VALID_DATE_RE.search(text)
    if match is None:
        return today
    month = _SPANISH_MONTHS.get(match.group(2).lower())
    if month is None:
        return today
    try:
        return date(int(match.group(3)), month, int(match.group(1)))
    except ValueError:
        return today


def _rate_text(soup: BeautifulSoup, element_id: str) -> str | None:
    node = soup.select_one(f"#{element_id} strong")
    if node is None:
        return None
    return node.get_text(strip=True)


def parse_bcv_page(html: str, today: date | None = None) -> OfficialRates:
    """Parse official rates from the BCV home page HTML.

    Each rate is read only from its own element, so a missing ``#dolar``
    value never picks up the EUR figure.

    Raises:
        DataIntegrityError: The USD rate is missing or unparsable. A missing
            or unparsable EUR rate only yields ``eur=None``.
    """
    today = today or date.today()
    soup = BeautifulSoup(html, "html.parser")

    raw_usd = _rate_text(soup, "dolar")
    if raw_usd is None:
        raise DataIntegrityError(SOURCE, "USD rate element not found")
    usd = to_decimal(raw_usd, SOURCE, "usd")

    eur = None
    raw_eur = _rate_text(soup, "euro")
    if raw_eur is not None:
        try:
            eur = to_decimal(raw_eur, SOURCE, "eur")
        except DataIntegrityError:
            logger.warning("bcv_eur_unparsable", raw=raw_eur)

    text = soup.get_text(" ", strip=True)
    return OfficialRates(
        usd=usd if usd > 0 else None,
        eur=eur if eur is not None and eur > 0 else None,
        valid_date=parse_valid_date(text, today),
        source=SOURCE,
    )


class BcvRateSource(RateSource):
    """Scrapes the central bank home page for the official rates."""

    name = SOURCE

    def __init__(self, http: HttpClient, settings: OfficialRateSettings) -> None:
        self._http = http
        self._settings = settings

    async def fetch(self) -> OfficialRates:
        html = await self._http.get_text(
            SOURCE, self._settings.url, verify_ssl=self._settings.verify_ssl
        )
        rates = parse_bcv_page(html)
        logger.debug(
            "bcv_rates_fetched",
            usd=str(rates.usd),
            eur=str(rates.eur),
            valid_date=rates.valid_date.isoformat(),
        )
        return rates

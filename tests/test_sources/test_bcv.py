"""Tests for the BCV page parser and the official rate adapter."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from ratewatch.config import OfficialRateSettings
from ratewatch.exceptions import DataIntegrityError, UpstreamError
from ratewatch.sources.bcv import BcvRateSource, parse_bcv_page, parse_valid_date

BCV_PAGE = """
<div class="view-content">
  <div id="euro" class="col-sm-12 col-xs-12">
    <div class="field-content">
      <div class="row recuadrotsmc">
        <div class="col-sm-6 col-xs-6"><span> EUR </span></div>
        <div class="col-sm-6 col-xs-6 centrado"><strong> 260,00123456 </strong></div>
      </div>
    </div>
  </div>
  <div id="dolar" class="col-sm-12 col-xs-12">
    <div class="field-content">
      <div class="row recuadrotsmc">
        <div class="col-sm-6 col-xs-6"><span> USD </span></div>
        <div class="col-sm-6 col-xs-6 centrado"><strong> 240,50210000 </strong></div>
      </div>
    </div>
  </div>
  <div class="pull-right dinpro center">
    Fecha Valor: <span class="date-display-single">Viernes, 14 Marzo  2025</span>
  </div>
</div>
"""

TODAY = date(2025, 3, 13)


class TestParseBcvPage:
    """Tests for HTML extraction."""

    def test_parses_usd_eur_and_valid_date(self) -> None:
        rates = parse_bcv_page(BCV_PAGE, today=TODAY)
        assert rates.usd == Decimal("240.50210000")
        assert rates.eur == Decimal("260.00123456")
        assert rates.valid_date == date(2025, 3, 14)
        assert rates.source == "bcv"

    def test_missing_usd_raises(self) -> None:
        with pytest.raises(DataIntegrityError):
            parse_bcv_page("<html><body>mantenimiento</body></html>", today=TODAY)

    def test_unparsable_usd_raises(self) -> None:
        page = BCV_PAGE.replace("240,50210000", "N/D")
        with pytest.raises(DataIntegrityError):
            parse_bcv_page(page, today=TODAY)

    def test_bad_eur_is_absent_not_zero(self) -> None:
        page = BCV_PAGE.replace("260,00123456", "--")
        rates = parse_bcv_page(page, today=TODAY)
        assert rates.eur is None
        assert rates.usd == Decimal("240.50210000")

    def test_zero_usd_is_absent(self) -> None:
        page = BCV_PAGE.replace("240,50210000", "0,00")
        assert parse_bcv_page(page, today=TODAY).usd is None

    def test_usd_without_value_does_not_borrow_eur(self) -> None:
        page = (
            '<div id="dolar"><span>USD</span></div>'
            '<div id="euro"><strong> 260,00 </strong></div>'
        )
        with pytest.raises(DataIntegrityError, match="USD rate element not found"):
            parse_bcv_page(page, today=TODAY)

    def test_rates_are_read_from_their_own_element(self) -> None:
        page = BCV_PAGE.replace("<strong> 260,00123456 </strong>", "<span>sin dato</span>")
        rates = parse_bcv_page(page, today=TODAY)
        assert rates.usd == Decimal("240.50210000")
        assert rates.eur is None

    def test_missing_date_defaults_to_today(self) -> None:
        page = BCV_PAGE.replace("Fecha Valor:", "")
        assert parse_bcv_page(page, today=TODAY).valid_date == TODAY


class TestParseValidDate:
    """Tests for the Spanish "Fecha Valor" date."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Fecha Valor: Lunes, 2 Diciembre 2024", date(2024, 12, 2)),
            ("Fecha Valor: Martes, 1 setiembre 2025", date(2025, 9, 1)),
            ("Fecha Valor: Jueves, 31 Febrero 2025", TODAY),
            ("Fecha Valor: Jueves, 3 Brumario 2025", TODAY),
        ],
    )
    def test_dates(self, text, expected) -> None:
        assert parse_valid_date(text, TODAY) == expected


class TestBcvRateSource:
    """Tests for the adapter wiring."""

    @pytest.mark.asyncio
    async def test_fetch_uses_unverified_ssl(self) -> None:
        http = AsyncMock()
        http.get_text = AsyncMock(return_value=BCV_PAGE)
        source = BcvRateSource(http, OfficialRateSettings())

        rates = await source.fetch()

        assert rates.usd == Decimal("240.50210000")
        http.get_text.assert_awaited_once_with("bcv", "https://www.bcv.org.ve", verify_ssl=False)

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self) -> None:
        http = AsyncMock()
        http.get_text = AsyncMock(side_effect=UpstreamError("bcv", "HTTP 503"))
        source = BcvRateSource(http, OfficialRateSettings())

        with pytest.raises(UpstreamError):
            await source.fetch()

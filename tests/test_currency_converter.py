import asyncio
import pytest
from decimal import Decimal

import httpx

from itinerary_engine.models.component_models import Money
from itinerary_engine.services.currency_converter import CurrencyConverter
from itinerary_engine.utils.errors import UnsupportedCurrencyError


def _converter(payload, status_code=200, **kwargs):
    def handler(request):
        return httpx.Response(status_code, json=payload)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CurrencyConverter(api_url="https://rates.example/latest", http_client=client, **kwargs)


def test_conversion_goes_through_usd():
    converter = CurrencyConverter()
    assert converter.convert(Decimal("17"), "EUR", "USD") == Decimal("20")
    assert converter.convert(100, "usd", "usd") == Decimal("100")
    money = converter.convert_money(Money(amount=Decimal("100"), currency="USD"), "GBP")
    assert money.currency == "GBP"
    assert money.amount == Decimal("73")


def test_round_trip_is_close():
    converter = CurrencyConverter()
    there = converter.convert(Decimal("250"), "JPY", "CHF")
    back = converter.convert(there, "CHF", "JPY")
    assert abs(back - Decimal("250")) < Decimal("0.0001")


def test_unknown_currency():
    with pytest.raises(UnsupportedCurrencyError):
        CurrencyConverter().convert(1, "XYZ", "USD")


def test_refresh_applies_new_rates():
    converter = _converter({"rates": {"eur": 0.9, "BRL": "5.1"}})
    assert asyncio.run(converter.refresh_rates(force=True))
    assert converter.rate("EUR") == Decimal("0.9")
    assert "BRL" in converter.supported_currencies()


def test_invalid_payload_keeps_rates():
    """A refresh that cannot be parsed leaves the table untouched"""
    converter = _converter({"rates": {"EUR": "not-a-number"}})
    assert not asyncio.run(converter.refresh_rates(force=True))
    assert converter.rate("EUR") == Decimal("0.85")

    empty = _converter({"rates": {}})
    assert not asyncio.run(empty.refresh_rates(force=True))


def test_http_error_keeps_rates():
    converter = _converter({"error": "down"}, status_code=503)
    assert not asyncio.run(converter.refresh_rates(force=True))
    assert converter.rate("GBP") == Decimal("0.73")


def test_refresh_respects_interval():
    """Without force, nothing happens until the interval has passed"""
    now = [0.0]
    converter = _converter({"rates": {"EUR": 0.95}}, clock=lambda: now[0], refresh_interval_minutes=60)
    assert not converter.needs_refresh()
    assert not asyncio.run(converter.refresh_rates())

    now[0] = 3600.0
    assert converter.needs_refresh()
    assert asyncio.run(converter.refresh_rates())
    assert converter.rate("EUR") == Decimal("0.95")


def test_no_source_configured():
    assert not asyncio.run(CurrencyConverter().refresh_rates(force=True))

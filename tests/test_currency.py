import asyncio

import httpx
import pytest
import respx

from expense_flow.services.currency import CurrencyService

RATES_URL = "https://rates.example.com/latest/USD"


@pytest.fixture
def currency():
    return CurrencyService(rates={"USD": 1, "INR": 83, "EUR": 0.9})


def test_inr_is_returned_unchanged(currency):
    assert currency.convert_to_inr(250, "inr") == 250


def test_usd_uses_inr_rate(currency):
    assert currency.convert_to_inr(10, "USD") == pytest.approx(830)


def test_other_currencies_go_through_usd(currency):
    assert currency.convert_to_inr(90, "EUR") == pytest.approx(8300)


def test_unknown_currency_is_treated_as_usd(currency):
    assert currency.convert_to_inr(2, "XYZ") == pytest.approx(166)


def test_zero_and_missing_amounts(currency):
    assert currency.convert_to_inr(0, "USD") == 0.0
    assert currency.convert_to_inr(None, "USD") == 0.0
    assert currency.convert_to_inr(5, None) == 5


def test_convert_from_inr(currency):
    assert currency.convert_from_inr(8300, "EUR") == pytest.approx(90)
    assert currency.convert_from_inr(100, "XYZ") == 100


def test_default_inr_rate_when_table_lacks_inr():
    service = CurrencyService(rates={"USD": 1}, default_inr_rate=80)
    assert service.convert_to_inr(1, "USD") == 80


@respx.mock
def test_refresh_rates_replaces_table(currency):
    respx.get(RATES_URL).mock(return_value=httpx.Response(200, json={"base": "USD", "rates": {"INR": 84, "GBP": 0.8}}))

    rates = asyncio.run(currency.refresh_rates(RATES_URL))

    assert rates == {"INR": 84.0, "GBP": 0.8}
    assert currency.convert_to_inr(8, "GBP") == pytest.approx(840)


@respx.mock
def test_refresh_failure_keeps_current_rates(currency):
    respx.get(RATES_URL).mock(return_value=httpx.Response(503))

    rates = asyncio.run(currency.refresh_rates(RATES_URL))

    assert rates["INR"] == 83
    assert currency.convert_to_inr(1, "USD") == 83


@pytest.mark.integration
def test_refresh_from_public_api():
    service = CurrencyService()
    rates = asyncio.run(service.refresh_rates("https://api.exchangerate-api.com/v4/latest/USD"))
    assert rates["INR"] > 0

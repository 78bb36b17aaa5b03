"""
Currency normalisation for dashboard totals.

Rates are kept as "units per 1 USD" (the shape exchangerate-api returns), so
any currency converts to INR through USD.
"""

from typing import Optional

import httpx
from loguru import logger

from ..core.config import settings

DEFAULT_RATES_URL = "https://api.exchangerate-api.com/v4/latest/USD"


class CurrencyService:
    def __init__(self, rates: Optional[dict[str, float]] = None, default_inr_rate: Optional[float] = None):
        self.rates = {k.upper(): float(v) for k, v in (rates or settings.exchange_rates()).items()}
        self.default_inr_rate = default_inr_rate or settings.default_usd_inr_rate

    @property
    def inr_rate(self) -> float:
        return self.rates.get("INR") or self.default_inr_rate

    def convert_to_inr(self, amount: float | None, currency: str | None) -> float:
        """
        Convert ``amount`` in ``currency`` to INR.

        Unknown currencies are treated as USD (with a warning) so a missing
        rate never drops an amount from a total.
        """
        if not amount:
            return 0.0
        code = (currency or "INR").upper()
        if code == "INR":
            return float(amount)
        if code == "USD":
            return float(amount) * self.inr_rate

        usd_rate = self.rates.get(code)
        if not usd_rate:
            logger.warning("Exchange rate not found, assuming USD", currency=code)
            return float(amount) * self.inr_rate
        return float(amount) / usd_rate * self.inr_rate

    def convert_from_inr(self, amount: float | None, currency: str | None) -> float:
        if not amount:
            return 0.0
        code = (currency or "INR").upper()
        if code == "INR":
            return float(amount)
        usd_rate = self.rates.get(code)
        if not usd_rate:
            logger.warning("Exchange rate not found, returning INR amount", currency=code)
            return float(amount)
        return float(amount) / self.inr_rate * usd_rate

    async def refresh_rates(self, url: Optional[str] = None) -> dict[str, float]:
        """
        Fetch USD-based rates and replace the in-memory table.

        Keeps the current rates and logs the error when the fetch fails.
        """
        url = url or settings.exchange_rate_api_url or DEFAULT_RATES_URL
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                r = await client.get(url)
                r.raise_for_status()
                rates = r.json().get("rates") or {}
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Exchange rate refresh failed, keeping current rates", url=url, error=str(exc))
            return dict(self.rates)

        if "INR" not in rates:
            logger.warning("Exchange rate response missing INR, keeping current rates", url=url)
            return dict(self.rates)

        self.rates = {k.upper(): float(v) for k, v in rates.items()}
        logger.info("Exchange rates refreshed", url=url, currencies=len(self.rates))
        return dict(self.rates)


_currency_service: Optional[CurrencyService] = None


def get_currency_service() -> CurrencyService:
    global _currency_service
    if _currency_service is None:
        _currency_service = CurrencyService()
    return _currency_service

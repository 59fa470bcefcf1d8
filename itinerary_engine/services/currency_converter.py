"""
Exchange-rate table with an optional HTTP refresh source.
Rates are units of currency per 1 USD. A failed refresh keeps serving the
last-known-good table.
"""
import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Union

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from itinerary_engine.models.component_models import Money
from itinerary_engine.utils.errors import UnsupportedCurrencyError

DEFAULT_RATES: Dict[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.85"),
    "GBP": Decimal("0.73"),
    "JPY": Decimal("110"),
    "CAD": Decimal("1.25"),
    "AUD": Decimal("1.35"),
    "CHF": Decimal("0.92"),
    "CNY": Decimal("6.45"),
    "SEK": Decimal("8.75"),
    "NOK": Decimal("8.50"),
}

Number = Union[Decimal, int, float, str]


class CurrencyConverter:
    def __init__(
        self,
        rates: Optional[Dict[str, Number]] = None,
        refresh_interval_minutes: int = 60,
        api_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        source = rates if rates is not None else DEFAULT_RATES
        self._rates: Dict[str, Decimal] = {k.upper(): Decimal(str(v)) for k, v in source.items()}
        self.refresh_interval_seconds = refresh_interval_minutes * 60
        self.api_url = api_url
        self._http_client = http_client
        self._clock = clock
        self._last_refresh = clock()
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    def supported_currencies(self) -> List[str]:
        return sorted(self._rates)

    def rate(self, currency: str) -> Decimal:
        try:
            return self._rates[currency.upper()]
        except KeyError:
            raise UnsupportedCurrencyError(f"No exchange rate for {currency}") from None

    def convert(self, amount: Number, from_currency: str, to_currency: str) -> Decimal:
        """amount / rate[from] * rate[to]"""
        value = Decimal(str(amount))
        if from_currency.upper() == to_currency.upper():
            return value
        return value / self.rate(from_currency) * self.rate(to_currency)

    def convert_money(self, money: Money, to_currency: str) -> Money:
        return Money(amount=self.convert(money.amount, money.currency, to_currency), currency=to_currency)

    def needs_refresh(self) -> bool:
        return self._clock() - self._last_refresh >= self.refresh_interval_seconds

    async def refresh_rates(self, force: bool = False) -> bool:
        """Refresh the table when the interval has elapsed. Returns True when new rates were applied."""
        async with self._lock:
            if not force and not self.needs_refresh():
                return False
            self._last_refresh = self._clock()
            if not self.api_url:
                return False
            try:
                fresh = await self._fetch_rates()
            except (httpx.HTTPError, InvalidOperation, ValueError, KeyError, TypeError) as e:
                self.logger.warning(
                    "[currency] Rate refresh failed, keeping last known rates",
                    extra={"error": str(e), "url": self.api_url},
                )
                return False
            self._rates.update(fresh)
            self.logger.info("[currency] Exchange rates refreshed", extra={"currencies": len(fresh)})
            return True

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        reraise=True
    )
    async def _fetch_rates(self) -> Dict[str, Decimal]:
        client = self._client()
        response = await client.get(self.api_url)
        response.raise_for_status()
        payload = response.json()
        rates = payload["rates"]
        if not isinstance(rates, dict) or not rates:
            raise ValueError("Exchange-rate payload has no rates")
        return {str(k).upper(): Decimal(str(v)) for k, v in rates.items()}

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=10.0,
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=50)
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

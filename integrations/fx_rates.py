"""Point-in-time FX rates from Frankfurter, with a rate-of-1 degraded mode."""

import json
import logging
from datetime import date, datetime
from http.client import HTTPException
from typing import Dict, Optional, Tuple
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from core.exceptions import ExternalServiceError
from core.normalizer import parse_date

logger = logging.getLogger(__name__)


def _date_key(as_of) -> str:
    if as_of is None:
        return "latest"
    if isinstance(as_of, datetime):
        return as_of.date().isoformat()
    if isinstance(as_of, date):
        return as_of.isoformat()
    parsed = parse_date(as_of)
    if parsed is None:
        raise ExternalServiceError(f"Invalid FX date: {as_of!r}")
    return parsed.date().isoformat()


class FrankfurterRateProvider:
    def __init__(self, base_url: str = "https://api.frankfurter.app", timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._cache: Dict[Tuple[str, str, str], Optional[float]] = {}

    def get_rate(self, base: str, quote: str, as_of=None) -> Optional[float]:
        """Units of ``quote`` per 1 ``base`` on ``as_of``; None when the provider has no rate."""
        base, quote = base.strip().upper(), quote.strip().upper()
        key = (base, quote, _date_key(as_of))
        if key not in self._cache:
            self._cache[key] = self._fetch(*key)
        return self._cache[key]

    def _fetch(self, base: str, quote: str, date_key: str) -> Optional[float]:
        url = f"{self.base_url}/{date_key}?{urlencode({'from': base, 'to': quote})}"
        req = Request(url, headers={"Accept": "application/json"})
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, OSError, HTTPException, ValueError) as exc:
            raise ExternalServiceError(f"Failed to fetch FX rate {base}/{quote} for {date_key}") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise ExternalServiceError("Unexpected FX provider response")
        rate = rates.get(quote)
        if isinstance(rate, bool) or not isinstance(rate, (int, float)):
            return None
        return float(rate)


class CurrencyConverter:
    """Wraps a rate provider and never lets an FX problem fail a report."""

    def __init__(self, provider, base_currency: str = "USD"):
        self.provider = provider
        self.base_currency = base_currency.upper()

    def get_rate(self, base: str, quote: str, as_of=None) -> float:
        base, quote = (base or "").strip().upper(), (quote or "").strip().upper()
        if base == quote:
            return 1.0

        try:
            rate = self.provider.get_rate(base, quote, as_of)
        except ExternalServiceError as e:
            logger.warning(f"FX lookup {base}/{quote} failed, using rate 1: {e}")
            return 1.0

        if rate is None or rate <= 0:
            logger.warning(f"No usable FX rate for {base}/{quote} on {as_of}, using rate 1")
            return 1.0
        return rate

    def to_base(self, amount: float, currency: str, as_of=None) -> Tuple[float, float]:
        """Convert ``amount`` in ``currency`` to the base currency. Returns (rate, converted)."""
        rate = self.get_rate(self.base_currency, currency, as_of)
        return rate, amount / rate

"""Minimal client for the PocketSmith-style ledger API."""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from http.client import HTTPException
from typing import Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

_NEXT_LINK = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?')


@dataclass(frozen=True)
class LedgerApiConfig:
    base_url: str
    api_key: str
    user_id: str
    timeout: float = 10.0
    page_size: int = 1000

    @classmethod
    def from_settings(cls, settings):
        return cls(
            base_url=settings.LEDGER_API_URL,
            api_key=settings.LEDGER_API_KEY,
            user_id=settings.LEDGER_USER_ID,
            timeout=settings.LEDGER_API_TIMEOUT_SECS,
            page_size=settings.LEDGER_PAGE_SIZE,
        )


def _next_page(link_header: Optional[str]) -> Optional[str]:
    if not link_header:
        return None
    match = _NEXT_LINK.search(link_header)
    return match.group(1) if match else None


def _format_since(since) -> str:
    if isinstance(since, datetime):
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return str(since)


class LedgerApiClient:
    def __init__(self, config: LedgerApiConfig):
        if not config.api_key:
            raise ExternalServiceError("Ledger API key is not configured")
        self.config = config

    def _request(self, url: str):
        req = Request(
            url,
            headers={"Accept": "application/json", "X-Developer-Key": self.config.api_key},
        )
        try:
            with urlopen(req, timeout=self.config.timeout) as resp:
                body = resp.read().decode("utf-8")
                link = resp.headers.get("Link")
        except HTTPError as e:
            raise ExternalServiceError(f"Ledger API request failed ({e.code}): {url}") from e
        except (URLError, OSError, HTTPException, UnicodeDecodeError) as e:
            raise ExternalServiceError(f"Ledger API unreachable: {e}") from e

        try:
            data = json.loads(body) if body.strip() else None
        except json.JSONDecodeError as e:
            raise ExternalServiceError("Ledger API returned invalid JSON") from e
        return data, link

    def get_transactions(self, updated_since) -> List[Dict]:
        """All transactions changed since ``updated_since``, following every page."""
        params = {"updated_since": _format_since(updated_since), "per_page": self.config.page_size}
        url = f"{self.config.base_url.rstrip('/')}/users/{self.config.user_id}/transactions?{urlencode(params)}"

        transactions: List[Dict] = []
        page = 0
        while url:
            data, link = self._request(url)
            page += 1
            if isinstance(data, list):
                transactions.extend(data)
            elif data is not None:
                raise ExternalServiceError("Ledger API returned an unexpected transactions payload")
            url = _next_page(link)

        logger.info(f"Fetched {len(transactions)} transactions over {page} pages")
        return transactions

    def get_category_title(self, category_id: int) -> Optional[str]:
        data, _ = self._request(f"{self.config.base_url.rstrip('/')}/categories/{category_id}")
        if isinstance(data, dict) and data.get("title"):
            return str(data["title"])
        return None

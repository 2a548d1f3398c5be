"""Turns raw CSV rows and raw ledger API transactions into canonical documents."""

import logging
import math
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from core.exceptions import ExternalServiceError
from core.models import EXTERNAL_ID

logger = logging.getLogger(__name__)

# CSV export header -> canonical field. Canonical names are accepted as-is.
CSV_COLUMNS = {
    "ID": EXTERNAL_ID,
    "Date": "Date",
    "Merchant": "Description1",
    "Merchant Changed From": "Description2",
    "Amount": "Amount",
    "Currency": "Currency",
    "Amount in base currency": "BaseAmount",
    "Base currency": "BaseCurrency",
    "Transaction Type": "TransactionType",
    "Account": "Account",
    "Closing Balance": "ClosingBalance",
    "Category": "Category",
    "Parent Categories": "ParentCategories",
    "Labels": "Labels",
    "Memo": "Memo",
    "Note": "Note",
    "Bank": "Bank",
    EXTERNAL_ID: EXTERNAL_ID,
    "Description1": "Description1",
    "Description2": "Description2",
    "BaseAmount": "BaseAmount",
    "BaseCurrency": "BaseCurrency",
    "TransactionType": "TransactionType",
    "ClosingBalance": "ClosingBalance",
    "ParentCategories": "ParentCategories",
}

NUMERIC_FIELDS = frozenset({"Amount", "BaseAmount", "ClosingBalance"})
DATE_FIELDS = frozenset({"Date"})

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


def parse_number(value) -> Optional[float]:
    """Parse an amount, dropping thousands separators. Returns None, never 0, on garbage."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    clean = value.strip().replace(",", "")
    if not clean:
        return None
    try:
        number = float(clean)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_date(value) -> Optional[datetime]:
    """Parse a date into a naive UTC datetime, the way MongoDB hands it back."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _convert(field: str, raw):
    if field in NUMERIC_FIELDS:
        return parse_number(raw)
    if field in DATE_FIELDS:
        return parse_date(raw)
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def record_from_csv_row(row: Dict[str, str]) -> Optional[Dict]:
    """Build a sparse transaction from one CSV row keyed by header name."""
    record = {}
    for column, raw in row.items():
        field = CSV_COLUMNS.get(column.strip() if isinstance(column, str) else column)
        if field is None:
            continue
        value = _convert(field, raw)
        if value is not None:
            record[field] = value
    return record or None


def record_from_api(transaction: Dict, base_currency: str = "USD") -> Optional[Dict]:
    """Build a sparse transaction from one ledger API transaction object."""
    if not isinstance(transaction, dict):
        return None

    account = transaction.get("transaction_account") or {}
    category = transaction.get("category") or {}
    institution = account.get("institution") or {}
    labels = transaction.get("labels")
    currency = account.get("currency_code")
    txn_id = transaction.get("id")

    candidates = {
        EXTERNAL_ID: str(txn_id) if txn_id not in (None, "", 0) else None,
        "Date": parse_date(transaction.get("date")),
        "Description1": transaction.get("payee") or None,
        "Description2": transaction.get("original_payee") or None,
        "Amount": parse_number(transaction.get("amount")),
        "Currency": currency.upper() if isinstance(currency, str) and currency else None,
        "BaseAmount": parse_number(transaction.get("amount_in_base_currency")),
        "BaseCurrency": base_currency,
        "TransactionType": transaction.get("type") or None,
        "Account": account.get("name") or None,
        "ClosingBalance": parse_number(transaction.get("closing_balance")),
        "Category": category.get("title") or None,
        "ParentCategories": category.get("parent_id"),
        "Labels": ",".join(str(label) for label in labels) if isinstance(labels, list) and labels else None,
        "Memo": transaction.get("memo") or None,
        "Note": transaction.get("note") or None,
        "Bank": institution.get("title") or None,
    }
    record = {key: value for key, value in candidates.items() if value is not None}
    return record or None


def _category_id(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def resolve_parent_categories(
    records: List[Dict],
    lookup: Callable[[int], Optional[str]],
) -> List[Dict]:
    """Replace numeric ParentCategories with category titles.

    Each distinct id is looked up once per call. A failed or empty lookup
    leaves the id in place as a string.
    """
    titles: Dict[int, Optional[str]] = {}

    for record in records:
        value = record.get("ParentCategories")
        category_id = _category_id(value)
        if category_id is None:
            continue

        if category_id not in titles:
            try:
                titles[category_id] = lookup(category_id)
            except ExternalServiceError as e:
                logger.error(f"Category lookup failed for {category_id}: {e}")
                titles[category_id] = None

        title = titles[category_id]
        record["ParentCategories"] = str(title) if title else str(value)

    return records


def records_from_api(
    transactions: Iterable[Dict],
    lookup: Optional[Callable[[int], Optional[str]]] = None,
    base_currency: str = "USD",
) -> List[Dict]:
    records = []
    for transaction in transactions:
        record = record_from_api(transaction, base_currency=base_currency)
        if record:
            records.append(record)

    if lookup is not None:
        resolve_parent_categories(records, lookup)
    logger.info(f"Prepared {len(records)} transaction records from API payload")
    return records

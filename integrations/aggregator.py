"""Read-only queries against the transaction collection."""

from datetime import date, datetime, time
from typing import Optional
import logging

from core.exceptions import ValidationError
from core.models import AccountBalance
from core.normalizer import parse_date, parse_number

logger = logging.getLogger(__name__)


def _upper_bound(value) -> datetime:
    # A bare date covers the whole day.
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.max)
    if isinstance(value, str) and len(value.strip()) == 10:
        parsed = parse_date(value)
        if parsed is not None:
            return datetime.combine(parsed.date(), time.max)
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid date: {value!r}")
    return parsed


def _lower_bound(value) -> datetime:
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid date: {value!r}")
    return parsed


class Aggregator:
    def __init__(self, collection):
        self.collection = collection

    def get_account_balance_as_of(self, account: str, as_of) -> Optional[AccountBalance]:
        """Latest provider-reported closing balance on or before ``as_of``.

        Ties on the same date go to the most recently inserted record. Returns
        None when the account has no record by then.
        """
        if not isinstance(account, str) or not account.strip():
            raise ValidationError("Account is required")
        if as_of is None:
            raise ValidationError("As-of date is required")

        account = account.strip()
        record = self.collection.find_one(
            {"Account": account, "Date": {"$lte": _upper_bound(as_of)}},
            sort=[("Date", -1), ("_id", -1)],
        )
        if not record:
            return None

        currency = record.get("Currency")
        currency = currency.strip().upper() if isinstance(currency, str) and currency.strip() else "USD"
        balance = parse_number(record.get("ClosingBalance")) or 0.0
        return AccountBalance(account=account, currency=currency, raw_balance=balance)

    def get_category_range_sum(self, category: str, from_date, to_date) -> float:
        """Sum of BaseAmount (falling back to Amount) over [from_date, to_date], computed server-side."""
        if not isinstance(category, str) or not category.strip():
            raise ValidationError("Category is required")
        if from_date is None or to_date is None:
            raise ValidationError("Both from and to dates are required")

        pipeline = [
            {
                "$match": {
                    "Category": category.strip(),
                    "Date": {"$gte": _lower_bound(from_date), "$lte": _upper_bound(to_date)},
                }
            },
            {
                "$group": {
                    "_id": None,
                    "total": {"$sum": {"$ifNull": ["$BaseAmount", "$Amount"]}},
                }
            },
        ]
        results = list(self.collection.aggregate(pipeline))
        if not results:
            return 0.0
        return float(results[0].get("total") or 0.0)

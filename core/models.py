from dataclasses import dataclass, field
from typing import Dict, Optional

# Canonical transaction document fields. Documents are sparse dicts: a field
# is only present when the source supplied a value for it.
EXTERNAL_ID = "ExternalID"
TRANSACTION_FIELDS = (
    EXTERNAL_ID,
    "Date",
    "Description1",
    "Description2",
    "Amount",
    "Currency",
    "BaseAmount",
    "BaseCurrency",
    "TransactionType",
    "Account",
    "ClosingBalance",
    "Category",
    "ParentCategories",
    "Labels",
    "Memo",
    "Note",
    "Bank",
)

BALANCE_SHEET_SECTION = "Balance Sheet Accounts"
PROFIT_AND_LOSS_SECTION = "Profit & Loss Accounts"


@dataclass(frozen=True)
class IngestionReport:
    inserted_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    total: int = 0
    failed_count: int = 0
    malformed_count: int = 0
    artifacts: Optional[Dict[str, int]] = field(default=None)

    def to_dict(self) -> Dict:
        data = {
            "insertedCount": self.inserted_count,
            "updatedCount": self.updated_count,
            "skippedCount": self.skipped_count,
            "total": self.total,
            "failedCount": self.failed_count,
            "malformedCount": self.malformed_count,
        }
        if self.artifacts is not None:
            data["artifacts"] = dict(self.artifacts)
        return data


@dataclass(frozen=True)
class AccountBalance:
    """Provider-reported closing balance of an account at a point in time."""

    account: str
    currency: str
    raw_balance: float

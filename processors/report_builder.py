import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from core.chart_of_accounts import Leaf, get_section, ledger_keys, load_coa
from core.exceptions import ConfigMissing, ValidationError
from core.models import BALANCE_SHEET_SECTION, PROFIT_AND_LOSS_SECTION
from core.normalizer import parse_date
from core.report_tree import TRANSFER_MODES, balance_sheet_tree, cash_flow_filter, cash_flow_tree

logger = logging.getLogger(__name__)


def _require_date(value, label: str):
    if value is None or parse_date(value) is None:
        raise ValidationError(f"{label} must be a valid date, got {value!r}")
    return value


def _kept_keys(nodes, keep) -> List[str]:
    keys = set()
    for node in nodes:
        if not keep(node):
            continue
        if isinstance(node, Leaf):
            keys.add(node.ledger_key)
        else:
            keys.update(_kept_keys(node.children, keep))
    return sorted(keys)


class ReportBuilder:
    """Builds the balance sheet and cash flow reports from the COA and the store.

    Leaf values are resolved on a bounded thread pool, one query per distinct
    ledger key, and the tree is folded once every value is in.
    """

    def __init__(self, aggregator, converter, coa_path, concurrency: int = 8):
        self.aggregator = aggregator
        self.converter = converter
        self.coa_path = coa_path
        self.concurrency = max(1, int(concurrency))

    def _section(self, section: str):
        nodes = get_section(load_coa(self.coa_path), section)
        if nodes is None:
            raise ConfigMissing(f"Chart of accounts has no {section!r} section")
        return nodes

    def _resolve(self, keys: Iterable[str], resolver: Callable[[str], object]) -> Dict[str, object]:
        keys = list(keys)
        if not keys:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(keys))) as pool:
            values = pool.map(resolver, keys)
            return dict(zip(keys, values))

    def _balance(self, account: str, as_of) -> Optional[list]:
        balance = self.aggregator.get_account_balance_as_of(account, as_of)
        if balance is None:
            return None
        rate, converted = self.converter.to_base(balance.raw_balance, balance.currency, as_of)
        return [balance.currency, balance.raw_balance, rate, converted]

    def build_balance_sheet(self, as_of) -> Dict[str, List[Dict]]:
        _require_date(as_of, "as_of")
        try:
            nodes = self._section(BALANCE_SHEET_SECTION)
        except ConfigMissing as e:
            logger.warning(f"{e}; returning an empty balance sheet")
            return {BALANCE_SHEET_SECTION: []}

        keys = sorted(ledger_keys(nodes))
        logger.info(f"Resolving {len(keys)} account balances as of {as_of}")
        resolved = self._resolve(keys, lambda account: self._balance(account, as_of))
        balances = {key: value for key, value in resolved.items() if value is not None}

        missing = len(keys) - len(balances)
        if missing:
            logger.info(f"{missing} accounts have no records on or before {as_of}")
        return {BALANCE_SHEET_SECTION: balance_sheet_tree(nodes, balances)}

    def build_cash_flow(
        self,
        from_date,
        to_date,
        transfers: str = "exclude",
        include_unrealized: bool = False,
    ) -> Dict[str, List[Dict]]:
        if transfers not in TRANSFER_MODES:
            raise ValidationError(f"transfers must be one of {', '.join(TRANSFER_MODES)}, got {transfers!r}")
        _require_date(from_date, "from_date")
        _require_date(to_date, "to_date")
        if parse_date(from_date) > parse_date(to_date):
            raise ValidationError(f"from_date {from_date} is after to_date {to_date}")

        try:
            nodes = self._section(PROFIT_AND_LOSS_SECTION)
        except ConfigMissing as e:
            logger.warning(f"{e}; returning an empty cash flow report")
            return {PROFIT_AND_LOSS_SECTION: []}

        roots, keep, _ = cash_flow_filter(nodes, transfers, include_unrealized)
        keys = _kept_keys(roots, keep)
        logger.info(f"Summing {len(keys)} categories from {from_date} to {to_date} (transfers={transfers})")
        totals = self._resolve(
            keys,
            lambda category: self.aggregator.get_category_range_sum(category, from_date, to_date),
        )
        return {PROFIT_AND_LOSS_SECTION: cash_flow_tree(nodes, totals, transfers, include_unrealized)}


def write_report(report: Dict, path) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(report, fh, indent=2, default=str)
    logger.info(f"Report written to {path}")
    return str(path)

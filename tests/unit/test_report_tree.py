"""Unit tests for folding COA trees into report nodes."""
import pytest

from core.chart_of_accounts import get_section
from core.exceptions import ValidationError
from core.models import BALANCE_SHEET_SECTION, PROFIT_AND_LOSS_SECTION
from core.report_tree import balance_sheet_tree, cash_flow_tree


def names(nodes):
    return [n["name"] for n in nodes]


def child(nodes, name):
    return next(n for n in nodes if n["name"] == name)


@pytest.fixture
def balance_nodes(coa):
    return get_section(coa, BALANCE_SHEET_SECTION)


@pytest.fixture
def pnl_nodes(coa):
    return get_section(coa, PROFIT_AND_LOSS_SECTION)


@pytest.fixture
def totals():
    return {
        "Salary": 5000.0,
        "Unrealized G/L": 300.0,
        "Groceries": -400.0,
        "Rent": -1500.0,
        "Credit Card Payment": -700.0,
        "Internal Transfer": 0.0,
    }


class TestBalanceSheetTree:
    def test_group_totals_roll_up(self, balance_nodes):
        balances = {
            "Chase Checking": ["USD", 10.0, 1.0, 10.0],
            "Savings": ["EUR", 40.0, 0.8, 50.0],
            "Schwab": ["USD", 1000.0, 1.0, 1000.0],
        }

        tree = balance_sheet_tree(balance_nodes, balances)

        assets = child(tree, "Assets")
        cash = child(assets["children"], "Cash")
        assert cash["totalUSD"] == 60.0
        assert assets["totalUSD"] == 1060.0
        assert child(cash["children"], "Checking") == {
            "name": "Checking",
            "value": ["USD", 10.0, 1.0, 10.0],
            "totalUSD": 10.0,
        }

    def test_missing_account_gets_empty_balance(self, balance_nodes):
        tree = balance_sheet_tree(balance_nodes, {})

        amex = child(child(tree, "Liabilities")["children"], "Amex")
        assert amex["value"] == [None, 0, None, 0]
        assert child(tree, "Liabilities")["totalUSD"] == 0


class TestCashFlowTree:
    def test_exclude_drops_transfers_and_unrealized(self, pnl_nodes, totals):
        tree = cash_flow_tree(pnl_nodes, totals)

        assert names(tree) == ["Income", "Expenses"]
        income = child(tree, "Income")
        assert names(income["children"]) == ["Salary"]
        assert income["total"] == 5000.0
        assert child(tree, "Expenses")["total"] == -1900.0

    def test_include_keeps_transfers(self, pnl_nodes, totals):
        tree = cash_flow_tree(pnl_nodes, totals, transfers="include")

        assert names(tree) == ["Income", "Expenses", "Transfers"]
        assert child(tree, "Transfers")["total"] == -700.0

    def test_only_keeps_transfer_leaves_and_prunes_empty_groups(self, pnl_nodes, totals):
        tree = cash_flow_tree(pnl_nodes, totals, transfers="only")

        assert names(tree) == ["Transfers"]
        assert names(tree[0]["children"]) == ["Credit Card Payment", "Internal"]
        assert tree[0]["total"] == -700.0

    def test_include_unrealized(self, pnl_nodes, totals):
        tree = cash_flow_tree(pnl_nodes, totals, include_unrealized=True)

        income = child(tree, "Income")
        assert names(income["children"]) == ["Salary", "Unrealized G/L"]
        assert income["total"] == 5300.0

    def test_leaf_without_total_is_zero(self, pnl_nodes):
        tree = cash_flow_tree(pnl_nodes, {})

        assert child(tree, "Expenses")["total"] == 0.0

    def test_invalid_transfer_mode(self, pnl_nodes, totals):
        with pytest.raises(ValidationError):
            cash_flow_tree(pnl_nodes, totals, transfers="sometimes")

"""Unit tests for loading and parsing the chart of accounts."""
import pytest

from core.chart_of_accounts import (
    Group,
    Leaf,
    get_section,
    iter_leaves,
    load_coa,
    parse_section,
    transfer_keys,
)
from core.exceptions import ParseError
from core.models import BALANCE_SHEET_SECTION, PROFIT_AND_LOSS_SECTION


class TestParseSection:
    def test_string_is_leaf_named_after_key(self):
        assert parse_section(["Savings"]) == [Leaf("Savings", "Savings")]

    def test_override_ledger_key(self):
        assert parse_section([{"Checking": "Chase Checking"}]) == [Leaf("Checking", "Chase Checking")]

    @pytest.mark.parametrize("value", ["", None, 0, "   "])
    def test_empty_override_uses_name(self, value):
        assert parse_section([{"Rent": value}]) == [Leaf("Rent", "Rent")]

    def test_nested_groups(self):
        nodes = parse_section([{"Assets": [{"Cash": ["Savings"]}, "Brokerage"]}])

        assert nodes == [
            Group("Assets", (
                Group("Cash", (Leaf("Savings", "Savings"),)),
                Leaf("Brokerage", "Brokerage"),
            ))
        ]

    def test_empty_names_are_skipped(self):
        assert parse_section(["", {" ": "x"}, None]) == []

    @pytest.mark.parametrize("entries", [[42], [{"Bad": {"nested": "dict"}}], "not a list"])
    def test_invalid_shapes_raise(self, entries):
        with pytest.raises(ParseError):
            parse_section(entries)


class TestLoadCoa:
    def test_loads_sections(self, coa_path):
        coa = load_coa(coa_path)

        assert get_section(coa, BALANCE_SHEET_SECTION)[0].name == "Assets"
        assert get_section(coa, PROFIT_AND_LOSS_SECTION)[-1].name == "Transfers"

    def test_missing_section_is_none(self, coa):
        assert get_section(coa, "Nope") is None

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ParseError):
            load_coa(tmp_path / "missing.json")

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "coa.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ParseError):
            load_coa(path)

    def test_top_level_must_be_array(self, tmp_path):
        path = tmp_path / "coa.json"
        path.write_text("{}", encoding="utf-8")

        with pytest.raises(ParseError):
            load_coa(path)


class TestLeaves:
    def test_iter_leaves_walks_depth_first(self, coa):
        names = [leaf.ledger_key for leaf in iter_leaves(get_section(coa, BALANCE_SHEET_SECTION))]

        assert names == ["Chase Checking", "Savings", "Schwab", "Amex"]

    def test_transfer_keys(self, coa):
        assert transfer_keys(get_section(coa, PROFIT_AND_LOSS_SECTION)) == {
            "Credit Card Payment",
            "Internal Transfer",
        }

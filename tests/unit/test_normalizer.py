"""
Unit tests for record normalization.

Covers CSV rows, ledger API payloads and parent category resolution.
"""
from datetime import date, datetime
from unittest.mock import Mock

import pytest

from core.exceptions import ExternalServiceError
from core.normalizer import (
    parse_date,
    parse_number,
    record_from_api,
    record_from_csv_row,
    records_from_api,
    resolve_parent_categories,
)


class TestParseNumber:
    @pytest.mark.parametrize("raw, expected", [
        ("1,234.50", 1234.5),
        (" -12 ", -12.0),
        (7, 7.0),
        (2.5, 2.5),
    ])
    def test_parses_amounts(self, raw, expected):
        assert parse_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", None, True, "nan", float("inf"), [1]])
    def test_garbage_is_none_not_zero(self, raw):
        assert parse_number(raw) is None


class TestParseDate:
    def test_iso_date(self):
        assert parse_date("2025-01-15") == datetime(2025, 1, 15)

    def test_iso_with_zulu_becomes_naive_utc(self):
        assert parse_date("2025-01-15T10:30:00Z") == datetime(2025, 1, 15, 10, 30)

    def test_offset_is_converted_to_utc(self):
        assert parse_date("2025-01-15T10:30:00+02:00") == datetime(2025, 1, 15, 8, 30)

    def test_slash_format(self):
        assert parse_date("2025/01/15") == datetime(2025, 1, 15)

    def test_date_object(self):
        assert parse_date(date(2025, 3, 1)) == datetime(2025, 3, 1)

    def test_unparseable_is_none(self):
        assert parse_date("not a date") is None
        assert parse_date("") is None


class TestRecordFromCsvRow:
    def test_maps_export_headers_to_canonical_fields(self):
        row = {
            "ID": "101",
            "Date": "2025-01-15",
            "Merchant": "Coffee Shop",
            "Amount": "-4.50",
            "Currency": "USD",
            "Account": "Chase Checking",
            "Closing Balance": "1,000.00",
            "Category": "Groceries",
        }

        record = record_from_csv_row(row)

        assert record == {
            "ExternalID": "101",
            "Date": datetime(2025, 1, 15),
            "Description1": "Coffee Shop",
            "Amount": -4.5,
            "Currency": "USD",
            "Account": "Chase Checking",
            "ClosingBalance": 1000.0,
            "Category": "Groceries",
        }

    def test_blank_and_unknown_columns_are_omitted(self):
        record = record_from_csv_row({"ID": "1", "Memo": "  ", "Whatever": "x", "Amount": "n/a"})

        assert record == {"ExternalID": "1"}

    def test_accepts_canonical_headers(self):
        record = record_from_csv_row({"ExternalID": "5", "BaseAmount": "10"})

        assert record == {"ExternalID": "5", "BaseAmount": 10.0}

    def test_empty_row_is_none(self):
        assert record_from_csv_row({"Memo": ""}) is None


class TestRecordFromApi:
    def test_maps_nested_payload(self, api_transaction):
        record = record_from_api(api_transaction)

        assert record["ExternalID"] == "9001"
        assert record["Date"] == datetime(2025, 1, 15)
        assert record["Description1"] == "Grocer"
        assert record["Amount"] == -25.0
        assert record["Currency"] == "EUR"
        assert record["BaseAmount"] == -27.5
        assert record["BaseCurrency"] == "USD"
        assert record["Account"] == "Revolut"
        assert record["Bank"] == "Revolut Ltd"
        assert record["Category"] == "Groceries"
        assert record["ParentCategories"] == 12
        assert record["Labels"] == "food,weekly"

    def test_absent_fields_are_not_coerced(self):
        record = record_from_api({"id": 1, "amount": "12"})

        assert record == {"ExternalID": "1", "Amount": 12.0, "BaseCurrency": "USD"}
        assert "Memo" not in record

    def test_non_dict_is_none(self):
        assert record_from_api("nope") is None


class TestResolveParentCategories:
    def test_each_id_looked_up_once(self):
        lookup = Mock(return_value="Food")
        records = [{"ParentCategories": 12}, {"ParentCategories": 12}, {"ParentCategories": "12"}]

        resolve_parent_categories(records, lookup)

        lookup.assert_called_once_with(12)
        assert [r["ParentCategories"] for r in records] == ["Food", "Food", "Food"]

    def test_failed_lookup_keeps_id_as_string(self):
        lookup = Mock(side_effect=ExternalServiceError("boom"))
        records = [{"ParentCategories": 7}]

        resolve_parent_categories(records, lookup)

        assert records[0]["ParentCategories"] == "7"

    def test_records_from_api_resolves_titles(self, api_transaction):
        records = records_from_api([api_transaction, "junk"], lookup=lambda _id: "Food")

        assert len(records) == 1
        assert records[0]["ParentCategories"] == "Food"


@pytest.fixture
def api_transaction():
    return {
        "id": 9001,
        "date": "2025-01-15",
        "payee": "Grocer",
        "original_payee": "",
        "amount": -25.0,
        "amount_in_base_currency": -27.5,
        "type": "debit",
        "closing_balance": 500.0,
        "labels": ["food", "weekly"],
        "memo": None,
        "transaction_account": {
            "name": "Revolut",
            "currency_code": "eur",
            "institution": {"title": "Revolut Ltd"},
        },
        "category": {"title": "Groceries", "parent_id": 12},
        "created_at": "2025-01-15T09:00:00Z",
        "updated_at": "2025-01-15T09:00:30Z",
    }

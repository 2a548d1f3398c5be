"""Shared fixtures: an in-memory stand-in for the pymongo collections we touch."""
import copy
import json
from types import SimpleNamespace

import pytest
from pymongo import InsertOne, UpdateOne
from pymongo.errors import BulkWriteError

from core.models import BALANCE_SHEET_SECTION, EXTERNAL_ID, PROFIT_AND_LOSS_SECTION
from integrations.mongo_handler import TransactionRepository


def _matches_condition(value, condition):
    if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in" and value not in operand:
                return False
            if op in ("$lte", "$gte", "$lt", "$gt") and value is None:
                return False
            if op == "$lte" and not value <= operand:
                return False
            if op == "$gte" and not value >= operand:
                return False
            if op == "$lt" and not value < operand:
                return False
            if op == "$gt" and not value > operand:
                return False
        return True
    return value == condition


def _matches(doc, query):
    return all(_matches_condition(doc.get(field), cond) for field, cond in (query or {}).items())


def _evaluate(doc, expr):
    if isinstance(expr, str) and expr.startswith("$"):
        return doc.get(expr[1:])
    if isinstance(expr, dict) and "$ifNull" in expr:
        for candidate in expr["$ifNull"]:
            value = _evaluate(doc, candidate)
            if value is not None:
                return value
        return None
    return expr


class FakeCollection:
    """Just enough of pymongo's Collection for the repository, aggregator and staging store.

    ``fail_ids`` makes writes of documents with those external IDs fail the
    way an unordered bulk write reports per-document errors.
    """

    def __init__(self, docs=None):
        self.docs = []
        self._next_id = 1
        self.fail_ids = set()
        self.find_calls = 0
        for doc in docs or []:
            self._store(doc)

    def _store(self, doc):
        doc = copy.deepcopy(doc)
        if "_id" not in doc:
            doc["_id"] = self._next_id
            self._next_id += 1
        self.docs.append(doc)
        return doc

    def _fails(self, doc):
        return doc.get(EXTERNAL_ID) in self.fail_ids

    def find(self, query=None, projection=None):
        self.find_calls += 1
        results = []
        for doc in self.docs:
            if not _matches(doc, query):
                continue
            if projection:
                doc = {k: v for k, v in doc.items() if k == "_id" or projection.get(k)}
            results.append(copy.deepcopy(doc))
        return results

    def find_one(self, query=None, sort=None):
        results = [d for d in self.docs if _matches(d, query)]
        for field, direction in reversed(sort or []):
            results.sort(key=lambda d: d.get(field), reverse=direction < 0)
        return copy.deepcopy(results[0]) if results else None

    def aggregate(self, pipeline):
        docs = list(self.docs)
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _matches(d, stage["$match"])]
            elif "$group" in stage:
                grouping = stage["$group"]
                if not docs:
                    return []
                group = {"_id": None}
                for name, accumulator in grouping.items():
                    if name == "_id":
                        continue
                    values = [_evaluate(d, accumulator["$sum"]) for d in docs]
                    group[name] = sum(v for v in values if isinstance(v, (int, float)))
                docs = [group]
        return docs

    def _update(self, query, update, upsert):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return 1, 0
        if upsert:
            seed = {k: v for k, v in query.items() if not isinstance(v, dict)}
            seed.update(update.get("$set", {}))
            self._store(seed)
            return 0, 1
        return 0, 0

    def bulk_write(self, operations, ordered=True):
        matched = upserted = inserted = 0
        errors = []
        for index, op in enumerate(operations):
            if isinstance(op, InsertOne):
                if self._fails(op._doc):
                    errors.append({"index": index, "errmsg": "simulated insert failure"})
                    continue
                self._store(op._doc)
                inserted += 1
            elif isinstance(op, UpdateOne):
                if self._fails(op._doc.get("$set", {})) or self._fails(op._filter):
                    errors.append({"index": index, "errmsg": "simulated update failure"})
                    continue
                m, u = self._update(op._filter, op._doc, op._upsert)
                matched += m
                upserted += u
        if errors:
            raise BulkWriteError({
                "writeErrors": errors,
                "nInserted": inserted,
                "nMatched": matched,
                "nUpserted": upserted,
            })
        return SimpleNamespace(inserted_count=inserted, matched_count=matched, upserted_count=upserted)

    def insert_many(self, documents, ordered=True):
        errors = []
        inserted = 0
        for index, doc in enumerate(documents):
            if self._fails(doc):
                errors.append({"index": index, "errmsg": "simulated insert failure"})
                continue
            self._store(doc)
            inserted += 1
        if errors:
            raise BulkWriteError({"writeErrors": errors, "nInserted": inserted})
        return SimpleNamespace(inserted_ids=list(range(inserted)))

    def update_one(self, query, update, upsert=False):
        matched, upserted = self._update(query, update, upsert)
        return SimpleNamespace(matched_count=matched, upserted_id=None if not upserted else self._next_id - 1)

    def replace_one(self, query, replacement, upsert=False):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                self.docs[i] = copy.deepcopy(replacement)
                return SimpleNamespace(matched_count=1)
        if upsert:
            self._store(replacement)
        return SimpleNamespace(matched_count=0)

    def distinct(self, field):
        values = []
        for doc in self.docs:
            value = doc.get(field)
            if value is not None and value not in values:
                values.append(value)
        return values

    def delete_many(self, query):
        keep = [d for d in self.docs if not _matches(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)


@pytest.fixture
def transactions():
    return FakeCollection()


@pytest.fixture
def appdata():
    return FakeCollection()


@pytest.fixture
def repository(transactions, appdata):
    return TransactionRepository(transactions, appdata)


@pytest.fixture
def coa():
    return [
        {
            BALANCE_SHEET_SECTION: [
                {"Assets": [
                    {"Cash": [
                        {"Checking": "Chase Checking"},
                        "Savings",
                    ]},
                    {"Brokerage": "Schwab"},
                ]},
                {"Liabilities": [
                    "Amex",
                ]},
            ]
        },
        {
            PROFIT_AND_LOSS_SECTION: [
                {"Income": [
                    "Salary",
                    {"Unrealized G/L": ""},
                ]},
                {"Expenses": [
                    "Groceries",
                    "Rent",
                ]},
                {"Transfers": [
                    "Credit Card Payment",
                    {"Internal": "Internal Transfer"},
                ]},
            ]
        },
    ]


@pytest.fixture
def coa_path(tmp_path, coa):
    path = tmp_path / "coa.json"
    path.write_text(json.dumps(coa), encoding="utf-8")
    return path


@pytest.fixture
def make_collection():
    return FakeCollection

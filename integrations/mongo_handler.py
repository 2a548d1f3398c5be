from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
import logging

from pymongo import InsertOne, MongoClient, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from core.exceptions import PersistenceError
from core.models import EXTERNAL_ID
from core.reconciliation import INSERT, UPDATE, ReconciliationPlan

logger = logging.getLogger(__name__)


@contextmanager
def get_mongo_connection(mongo_uri: str, timeout_ms: int = 5000):
    client = None
    try:
        client = MongoClient(mongo_uri, serverSelectionTimeoutMS=timeout_ms)
        yield client
    finally:
        if client:
            client.close()


@dataclass
class BulkWriteSummary:
    inserted: int = 0
    updated: int = 0
    upserted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def _failed_indexes(exc: BulkWriteError) -> List[int]:
    return [err.get("index", -1) for err in exc.details.get("writeErrors", [])]


class TransactionRepository:
    """Canonical transaction collection plus the small ``appdata`` state document."""

    def __init__(self, collection, appdata=None):
        self.collection = collection
        self.appdata = appdata

    @classmethod
    def from_client(cls, client, db_name: str, collection_name: str, appdata_name: Optional[str] = None):
        db = client[db_name]
        appdata = db[appdata_name] if appdata_name else None
        return cls(db[collection_name], appdata)

    def find_existing(self, ids: Iterable[str]) -> Dict[str, Dict]:
        """Snapshots of persisted transactions keyed by external ID, in one round trip."""
        ids = list(ids)
        if not ids:
            return {}
        try:
            docs = self.collection.find({EXTERNAL_ID: {"$in": ids}})
            return {str(doc[EXTERNAL_ID]): doc for doc in docs}
        except PyMongoError as e:
            raise PersistenceError(f"Existence lookup failed: {e}") from e

    def existing_ids(self, ids: Iterable[str]) -> set:
        ids = list(ids)
        if not ids:
            return set()
        try:
            docs = self.collection.find({EXTERNAL_ID: {"$in": ids}}, {EXTERNAL_ID: 1})
            return {str(doc[EXTERNAL_ID]) for doc in docs}
        except PyMongoError as e:
            raise PersistenceError(f"Existence lookup failed: {e}") from e

    def apply_plan(self, plan: ReconciliationPlan) -> BulkWriteSummary:
        """Write a reconciliation plan as one unordered bulk operation."""
        operations, actions = [], []
        for decision in plan.writes:
            if decision.action == INSERT:
                operations.append(InsertOne(dict(decision.incoming)))
            else:
                payload = {k: v for k, v in decision.incoming.items() if k != "_id"}
                operations.append(UpdateOne({"_id": decision.existing["_id"]}, {"$set": payload}))
            actions.append(decision.action)

        summary = BulkWriteSummary(
            inserted=actions.count(INSERT),
            updated=actions.count(UPDATE),
        )
        if not operations:
            return summary

        try:
            self.collection.bulk_write(operations, ordered=False)
        except BulkWriteError as e:
            for index in _failed_indexes(e):
                if 0 <= index < len(actions):
                    if actions[index] == INSERT:
                        summary.inserted -= 1
                    else:
                        summary.updated -= 1
                summary.failed += 1
            summary.errors = [err.get("errmsg", "") for err in e.details.get("writeErrors", [])]
            logger.error(f"Bulk write finished with {summary.failed} failed operations")
        return summary

    def insert_many(self, records: List[Dict]) -> BulkWriteSummary:
        summary = BulkWriteSummary(inserted=len(records))
        if not records:
            return summary
        try:
            self.collection.insert_many([dict(r) for r in records], ordered=False)
        except BulkWriteError as e:
            failed = len(_failed_indexes(e))
            summary.inserted = e.details.get("nInserted", len(records) - failed)
            summary.failed = failed
            logger.error(f"Insert finished with {failed} failed documents")
        return summary

    def upsert_by_external_id(self, records: List[Dict]) -> BulkWriteSummary:
        """Insert-if-absent, update-if-present, keyed by external ID."""
        operations = [
            UpdateOne({EXTERNAL_ID: str(r[EXTERNAL_ID])}, {"$set": r}, upsert=True)
            for r in records
            if r.get(EXTERNAL_ID) is not None
        ]
        summary = BulkWriteSummary()
        if not operations:
            return summary
        try:
            result = self.collection.bulk_write(operations, ordered=False)
            summary.updated = result.matched_count
            summary.upserted = result.upserted_count
        except BulkWriteError as e:
            details = e.details
            summary.updated = details.get("nMatched", 0)
            summary.upserted = details.get("nUpserted", 0)
            summary.failed = len(_failed_indexes(e))
            logger.error(f"Upsert finished with {summary.failed} failed operations")
        return summary

    def distinct(self, field_name: str) -> List:
        return self.collection.distinct(field_name)

    def clear_all(self) -> int:
        """Delete every transaction. Destructive; only ever called explicitly."""
        result = self.collection.delete_many({})
        logger.warning(f"Cleared {result.deleted_count} transactions")
        return result.deleted_count

    def set_app_state(self, key: str, value=None) -> datetime:
        value = value or datetime.now(timezone.utc).replace(tzinfo=None)
        if self.appdata is not None:
            self.appdata.update_one({}, {"$set": {key: value}}, upsert=True)
        return value

    def get_app_state(self, key: str):
        if self.appdata is None:
            return None
        doc = self.appdata.find_one({})
        return doc.get(key) if doc else None

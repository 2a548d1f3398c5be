"""Durable storage for intermediate refresh artifacts, so a failed run can resume."""

import json
import logging
import os
from datetime import date, datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class FileStagingStore:
    """One JSON file per artifact under ``directory``."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def save(self, name: str, payload) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(name)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, default=_json_default)
        os.replace(tmp_path, path)
        logger.debug(f"Staged {name} -> {path}")

    def load(self, name: str, default=None):
        path = self._path(name)
        if not path.exists():
            return default
        raw = path.read_text(encoding="utf-8")
        return json.loads(raw) if raw.strip() else default

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def clear(self) -> None:
        if not self.directory.exists():
            return
        for path in self.directory.glob("*.json"):
            path.unlink()


class MongoStagingStore:
    """One document per artifact in a MongoDB collection."""

    def __init__(self, collection):
        self.collection = collection

    def save(self, name: str, payload) -> None:
        self.collection.replace_one(
            {"_id": name},
            {"_id": name, "payload": payload, "staged_at": datetime.now(timezone.utc).replace(tzinfo=None)},
            upsert=True,
        )

    def load(self, name: str, default=None):
        doc = self.collection.find_one({"_id": name})
        return doc["payload"] if doc else default

    def exists(self, name: str) -> bool:
        return self.collection.find_one({"_id": name}) is not None

    def clear(self) -> None:
        self.collection.delete_many({})


def build_staging_store(settings, db=None):
    if settings.STAGING_BACKEND == "mongo":
        if db is None:
            raise ValueError("A MongoDB database is required for the mongo staging backend")
        return MongoStagingStore(db[settings.STAGING_COLLECTION])
    return FileStagingStore(settings.STAGING_DIR)

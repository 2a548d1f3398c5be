"""Incremental refresh from the ledger API, run as five resumable stages.

Every stage reads its input from the staging store and saves its output there
before returning, so each one can run as a separate Airflow task and a failed
run can pick up where it stopped.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.models import EXTERNAL_ID, IngestionReport
from core.normalizer import parse_date, records_from_api

logger = logging.getLogger(__name__)

STAGES = ("fetch", "classify", "detect_modified", "import_new", "apply_modified")
ARTIFACTS = ("all", "new", "existing", "modified", "import_report", "update_report")
MANIFEST = "manifest"


def _cutoff_key(since) -> str:
    if isinstance(since, datetime):
        return since.isoformat()
    return str(since)


def _api_id(transaction: Dict) -> Optional[str]:
    txn_id = transaction.get("id")
    if txn_id in (None, "") or isinstance(txn_id, bool):
        return None
    return str(txn_id)


def _last_per_external_id(records: List[Dict]) -> List[Dict]:
    """Collapse repeated ExternalIDs to their last occurrence, keeping first-seen order."""
    latest: Dict[str, Dict] = {}
    anonymous: List[Dict] = []
    for record in records:
        if EXTERNAL_ID in record:
            latest[record[EXTERNAL_ID]] = record
        else:
            anonymous.append(record)
    return list(latest.values()) + anonymous


class LedgerRefreshPipeline:
    def __init__(self, client, repository, staging, modified_threshold: float = 60.0, base_currency: str = "USD"):
        self.client = client
        self.repository = repository
        self.staging = staging
        self.modified_threshold = modified_threshold
        self.base_currency = base_currency

    # -- manifest -----------------------------------------------------------

    def _manifest(self) -> Dict:
        return self.staging.load(MANIFEST, default={}) or {}

    def _mark_complete(self, stage: str) -> None:
        manifest = self._manifest()
        completed = manifest.get("completed", [])
        if stage not in completed:
            completed.append(stage)
        manifest["completed"] = completed
        self.staging.save(MANIFEST, manifest)

    # -- stages -------------------------------------------------------------

    def fetch(self, since) -> int:
        """Pull every transaction changed since ``since`` into the ``all`` artifact."""
        logger.info(f"Fetching ledger transactions updated since {_cutoff_key(since)}")
        started_at = datetime.now(timezone.utc).replace(tzinfo=None)
        transactions = self.client.get_transactions(since)

        self.staging.save("all", transactions)
        self.staging.save(
            MANIFEST,
            {"since": _cutoff_key(since), "fetched_at": started_at.isoformat(), "completed": ["fetch"]},
        )
        logger.info(f"Staged {len(transactions)} fetched transactions")
        return len(transactions)

    def classify(self) -> Dict[str, int]:
        """Split fetched transactions into ``new`` and ``existing`` with one lookup."""
        transactions = self.staging.load("all", default=[])
        ids = {_api_id(t) for t in transactions} - {None}
        known = self.repository.existing_ids(ids)

        new: List[Dict] = []
        existing: List[Dict] = []
        for transaction in transactions:
            txn_id = _api_id(transaction)
            if txn_id is not None and txn_id in known:
                existing.append(transaction)
            else:
                new.append(transaction)

        self.staging.save("new", new)
        self.staging.save("existing", existing)
        self._mark_complete("classify")
        logger.info(f"Classified {len(transactions)} transactions: {len(new)} new, {len(existing)} existing")
        return {"new": len(new), "existing": len(existing)}

    def detect_modified(self) -> int:
        """Keep existing transactions edited after creation.

        A transaction counts as modified when ``created_at`` and ``updated_at``
        differ by more than the threshold, in either direction. Entries missing
        either timestamp are dropped.
        """
        existing = self.staging.load("existing", default=[])
        modified: List[Dict] = []
        dropped = 0

        for transaction in existing:
            created = parse_date(transaction.get("created_at"))
            updated = parse_date(transaction.get("updated_at"))
            if created is None or updated is None:
                dropped += 1
                continue
            if abs((updated - created).total_seconds()) > self.modified_threshold:
                modified.append(transaction)

        if dropped:
            logger.warning(f"Dropped {dropped} existing transactions without created_at/updated_at")
        self.staging.save("modified", modified)
        self._mark_complete("detect_modified")
        logger.info(f"Detected {len(modified)} modified transactions out of {len(existing)} existing")
        return len(modified)

    def import_new(self) -> Dict[str, int]:
        new = self.staging.load("new", default=[])
        converted = records_from_api(new, self.client.get_category_title, self.base_currency)
        # a paged feed can return a transaction twice when it changes mid-fetch
        records = _last_per_external_id(converted)

        # another writer may have inserted some of these since classify ran
        present = self.repository.existing_ids(r[EXTERNAL_ID] for r in records if EXTERNAL_ID in r)
        survivors = [r for r in records if r.get(EXTERNAL_ID) not in present]
        summary = self.repository.insert_many(survivors)

        report = {
            "total": len(new),
            "inserted": summary.inserted,
            "skipped": len(converted) - len(survivors),
            "failed": summary.failed,
        }
        self.staging.save("import_report", report)
        self._mark_complete("import_new")
        logger.info(
            f"Imported {summary.inserted} new transactions "
            f"({report['skipped']} skipped, {summary.failed} failed)"
        )
        return report

    def apply_modified(self) -> Dict[str, int]:
        modified = self.staging.load("modified", default=[])
        records = _last_per_external_id(
            records_from_api(modified, self.client.get_category_title, self.base_currency)
        )
        summary = self.repository.upsert_by_external_id(records)

        report = {
            "total": len(modified),
            "updated": summary.updated,
            "upserted": summary.upserted,
            "skipped": len(modified) - len(records),
            "failed": summary.failed,
        }
        self.staging.save("update_report", report)
        self._mark_complete("apply_modified")
        logger.info(
            f"Applied {summary.updated} updates, {summary.upserted} upserts, {summary.failed} failed"
        )
        return report

    # -- orchestration ------------------------------------------------------

    def run(self, since, resume: bool = False) -> IngestionReport:
        """Run every stage in order.

        With ``resume`` the stages the manifest already records as complete
        for the same cutoff are skipped.
        """
        completed = set()
        if resume:
            manifest = self._manifest()
            if manifest.get("since") == _cutoff_key(since):
                completed = set(manifest.get("completed", []))
            elif manifest:
                logger.info("Staged artifacts belong to a different cutoff, starting over")

        for stage in STAGES:
            if stage in completed:
                logger.info(f"Skipping completed stage: {stage}")
                continue
            if stage == "fetch":
                self.fetch(since)
            else:
                getattr(self, stage)()

        return self.finish()

    def finish(self) -> IngestionReport:
        """Build the run report and record the fetch start as the next cutoff."""
        manifest = self._manifest()
        report = self.build_report()
        self.repository.set_app_state("lastRefresh", parse_date(manifest.get("fetched_at")))
        _log_summary(manifest.get("since", ""), report)
        return report

    def build_report(self) -> IngestionReport:
        fetched = self.staging.load("all", default=[])
        existing = self.staging.load("existing", default=[])
        modified = self.staging.load("modified", default=[])
        imported = self.staging.load("import_report", default={}) or {}
        updated = self.staging.load("update_report", default={}) or {}

        return IngestionReport(
            inserted_count=imported.get("inserted", 0) + updated.get("upserted", 0),
            updated_count=updated.get("updated", 0),
            skipped_count=imported.get("skipped", 0) + updated.get("skipped", 0) + len(existing) - len(modified),
            total=len(fetched),
            failed_count=imported.get("failed", 0) + updated.get("failed", 0),
            artifacts=self.artifact_counts(),
        )

    def artifact_counts(self) -> Dict[str, int]:
        """Entry count of every staged artifact; reports count their source entries."""
        counts = {}
        for name in ARTIFACTS:
            if not self.staging.exists(name):
                continue
            payload = self.staging.load(name)
            if isinstance(payload, dict):
                counts[name] = payload.get("total", 0)
            else:
                counts[name] = len(payload or [])
        return counts


def _log_summary(since: str, report: IngestionReport) -> None:
    logger.info("=" * 70)
    logger.info("REFRESH SUMMARY")
    logger.info("=" * 70)
    logger.info(f"Updated Since:               {since}")
    logger.info(f"Fetched:                     {report.total}")
    logger.info(f"  - Inserted:                {report.inserted_count}")
    logger.info(f"  - Updated:                 {report.updated_count}")
    logger.info(f"  - Skipped:                 {report.skipped_count}")
    logger.info(f"  - Failed:                  {report.failed_count}")
    for name, count in (report.artifacts or {}).items():
        logger.info(f"Artifact {name:<21}{count}")
    logger.info("=" * 70)

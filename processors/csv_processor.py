import csv
import logging
from pathlib import Path
from typing import Dict, Iterator, List

from core.exceptions import ParseError
from core.models import IngestionReport
from core.normalizer import record_from_csv_row
from core.reconciliation import reconcile

logger = logging.getLogger(__name__)


def read_csv_rows(csv_path, stats: Dict[str, int]) -> Iterator[Dict[str, str]]:
    """Stream a CSV export as header-keyed rows.

    The first non-blank row is the header. Rows shorter than the header are
    malformed and skipped; ``stats["malformed"]`` counts them.
    """
    headers = None
    with open(csv_path, "r", encoding="utf-8-sig", newline="") as fh:
        for values in csv.reader(fh):
            if not any(v.strip() for v in values):
                continue
            if headers is None:
                headers = [h.strip() for h in values]
                continue
            if len(values) < len(headers):
                stats["malformed"] = stats.get("malformed", 0) + 1
                continue
            yield {headers[i]: values[i].strip() for i in range(len(headers))}


def read_records_in_batches(csv_path, batch_size: int, stats: Dict[str, int]) -> Iterator[List[Dict]]:
    batch = []
    for row in read_csv_rows(csv_path, stats):
        record = record_from_csv_row(row)
        if not record:
            continue
        batch.append(record)

        if len(batch) == batch_size:
            yield batch
            batch = []

    if batch:
        yield batch


class CsvIngestor:
    def __init__(self, repository, batch_size: int = 1000):
        self.repository = repository
        self.batch_size = batch_size

    def ingest_from_csv(self, csv_path) -> IngestionReport:
        """Reconcile a CSV export into the store, one batch at a time."""
        if not Path(csv_path).is_file():
            raise ParseError(f"CSV file not found: {csv_path}")

        logger.info(f"Ingesting transactions from CSV: {csv_path}")
        stats: Dict[str, int] = {}
        inserted = updated = skipped = failed = total = 0
        batch_no = 0

        for batch in read_records_in_batches(csv_path, self.batch_size, stats):
            batch_no += 1
            plan = reconcile(batch, self.repository.find_existing)
            result = self.repository.apply_plan(plan)

            inserted += result.inserted
            updated += result.updated
            skipped += plan.skips
            failed += result.failed
            total += len(batch)
            logger.info(
                f"Batch {batch_no}: {len(batch)} records, {result.inserted} inserted, "
                f"{result.updated} updated, {plan.skips} skipped, {result.failed} failed"
            )

        report = IngestionReport(
            inserted_count=inserted,
            updated_count=updated,
            skipped_count=skipped,
            total=total,
            failed_count=failed,
            malformed_count=stats.get("malformed", 0),
        )
        self.repository.set_app_state("lastIngest")
        _log_summary(str(csv_path), report)
        return report

    def clear_all_records(self) -> int:
        """Delete every stored transaction. Never part of an ingestion run."""
        return self.repository.clear_all()


def _log_summary(source: str, report: IngestionReport) -> None:
    logger.info("=" * 70)
    logger.info("INGESTION SUMMARY")
    logger.info("=" * 70)
    logger.info(f"Source:                      {source}")
    logger.info(f"Total Records:               {report.total}")
    logger.info(f"  - Inserted:                {report.inserted_count}")
    logger.info(f"  - Updated:                 {report.updated_count}")
    logger.info(f"  - Skipped:                 {report.skipped_count}")
    logger.info(f"  - Failed:                  {report.failed_count}")
    logger.info(f"  - Malformed Rows:          {report.malformed_count}")
    logger.info("=" * 70)

"""CSV ingest DAG - download ledger exports, reconcile them in, then check the COA."""

from airflow.sdk import DAG, task
from datetime import datetime, timedelta
from pathlib import Path
import logging
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import settings
from core.chart_of_accounts import load_coa
from core.models import BALANCE_SHEET_SECTION, PROFIT_AND_LOSS_SECTION
from integrations.mongo_handler import TransactionRepository, get_mongo_connection
from integrations.sftp_client import SFTPClient
from processors.csv_processor import CsvIngestor
from processors.integrity import (
    load_name_dictionary,
    report_missing,
    report_unknown,
    write_name_dictionary,
)

logger = logging.getLogger(__name__)


def _repository(client):
    return TransactionRepository.from_client(
        client, settings.DB_NAME, settings.TRANSACTIONS_COLLECTION, settings.APPDATA_COLLECTION
    )


@task
def download_exports():
    with SFTPClient.from_settings(settings) as client:
        if not client.connect():
            return []
        return client.download_exports(settings.SFTP_REMOTE_DIR, settings.SFTP_DOWNLOAD_DIR)


@task
def ingest_exports(paths):
    paths = paths or []
    if not paths and Path(settings.CSV_EXPORT_PATH).is_file():
        logger.info(f"No downloaded exports, falling back to {settings.CSV_EXPORT_PATH}")
        paths = [settings.CSV_EXPORT_PATH]

    reports = []
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        ingestor = CsvIngestor(_repository(client), batch_size=settings.CSV_BATCH_SIZE)
        for path in paths:
            reports.append(ingestor.ingest_from_csv(path).to_dict())
    return reports


@task
def check_integrity():
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        repository = _repository(client)
        write_name_dictionary(repository, "Account", settings.ACCOUNT_NAMES_PATH)
        write_name_dictionary(repository, "Category", settings.CATEGORY_NAMES_PATH)

    coa = load_coa(settings.COA_PATH)
    accounts = load_name_dictionary(settings.ACCOUNT_NAMES_PATH)
    categories = load_name_dictionary(settings.CATEGORY_NAMES_PATH)
    return {
        "missing_accounts": report_missing(accounts, coa, BALANCE_SHEET_SECTION),
        "unknown_accounts": report_unknown(accounts, coa, BALANCE_SHEET_SECTION),
        "missing_categories": report_missing(categories, coa, PROFIT_AND_LOSS_SECTION),
        "unknown_categories": report_unknown(categories, coa, PROFIT_AND_LOSS_SECTION),
    }


with DAG(
    dag_id="ledger_csv_ingest",
    start_date=datetime(2025, 1, 1),
    schedule=None,
    catchup=False,
    default_args={
        "owner": "ledger",
        "retries": 3,
        "retry_delay": timedelta(seconds=10),
    },
    tags=["ledger", "csv"],
) as dag:

    downloaded = download_exports()
    ingested = ingest_exports(downloaded)
    integrity = check_integrity()

    downloaded >> ingested >> integrity

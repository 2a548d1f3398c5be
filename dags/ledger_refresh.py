"""Ledger refresh DAG - incremental pull from the ledger API in five staged tasks."""

from airflow.sdk import DAG, task
from datetime import datetime, timedelta
import logging
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import settings
from integrations.ledger_api import LedgerApiClient, LedgerApiConfig
from integrations.mongo_handler import TransactionRepository, get_mongo_connection
from integrations.staging_store import build_staging_store
from processors.ledger_refresh import LedgerRefreshPipeline

logger = logging.getLogger(__name__)


def build_pipeline(client):
    repository = TransactionRepository.from_client(
        client, settings.DB_NAME, settings.TRANSACTIONS_COLLECTION, settings.APPDATA_COLLECTION
    )
    staging = build_staging_store(settings, client[settings.DB_NAME])
    api = LedgerApiClient(LedgerApiConfig.from_settings(settings))
    return LedgerRefreshPipeline(
        api,
        repository,
        staging,
        modified_threshold=settings.MODIFIED_THRESHOLD_SECS,
        base_currency=settings.BASE_CURRENCY,
    )


@task
def fetch_transactions():
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        pipeline = build_pipeline(client)
        since = pipeline.repository.get_app_state("lastRefresh") or settings.LEDGER_REFRESH_SINCE
        return pipeline.fetch(since)


@task
def classify_transactions():
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        return build_pipeline(client).classify()


@task
def detect_modified():
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        return build_pipeline(client).detect_modified()


@task
def import_new():
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        return build_pipeline(client).import_new()


@task
def apply_modified():
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        pipeline = build_pipeline(client)
        pipeline.apply_modified()
        return pipeline.finish().to_dict()


with DAG(
    dag_id="ledger_refresh",
    start_date=datetime(2025, 1, 1),
    schedule="@daily",
    catchup=False,
    default_args={
        "owner": "ledger",
        "retries": 3,
        "retry_delay": timedelta(seconds=30),
    },
    tags=["ledger", "refresh"],
) as dag:

    fetched = fetch_transactions()
    classified = classify_transactions()
    modified = detect_modified()
    imported = import_new()
    applied = apply_modified()

    fetched >> classified >> modified >> imported >> applied

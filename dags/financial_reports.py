"""Financial reports DAG - balance sheet and cash flow written as JSON."""

from airflow.sdk import DAG, task
from datetime import date, datetime, timedelta
import logging
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import settings
from integrations.aggregator import Aggregator
from integrations.fx_rates import CurrencyConverter, FrankfurterRateProvider
from integrations.mongo_handler import get_mongo_connection
from processors.report_builder import ReportBuilder, write_report

logger = logging.getLogger(__name__)


def build_report_builder(client):
    collection = client[settings.DB_NAME][settings.TRANSACTIONS_COLLECTION]
    converter = CurrencyConverter(
        FrankfurterRateProvider(settings.FX_BASE_URL, settings.FX_TIMEOUT_SECS),
        base_currency=settings.BASE_CURRENCY,
    )
    return ReportBuilder(Aggregator(collection), converter, settings.COA_PATH, settings.REPORT_CONCURRENCY)


def _report_date(ds=None) -> date:
    return date.fromisoformat(ds) if ds else date.today()


@task
def balance_sheet(ds=None):
    as_of = _report_date(ds)
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        report = build_report_builder(client).build_balance_sheet(as_of)
    return write_report(report, os.path.join(settings.REPORTS_DIR, f"balance_sheet_{as_of.isoformat()}.json"))


@task
def cash_flow(ds=None):
    to_date = _report_date(ds)
    from_date = to_date.replace(day=1)
    with get_mongo_connection(settings.MONGO_URI, settings.MONGO_TIMEOUT_MS) as client:
        report = build_report_builder(client).build_cash_flow(from_date, to_date)
    return write_report(
        report,
        os.path.join(settings.REPORTS_DIR, f"cash_flow_{from_date.isoformat()}_{to_date.isoformat()}.json"),
    )


with DAG(
    dag_id="ledger_financial_reports",
    start_date=datetime(2025, 1, 1),
    schedule="@daily",
    catchup=False,
    default_args={
        "owner": "ledger",
        "retries": 1,
        "retry_delay": timedelta(minutes=1),
    },
    tags=["ledger", "reports"],
) as dag:

    balance_sheet()
    cash_flow()

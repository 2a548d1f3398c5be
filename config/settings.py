import os


class Settings:
    """Configuration settings for ledger ingestion and reporting."""

    # MongoDB Configuration
    MONGO_URI = os.getenv("MONGO_URI", "mongodb://host.docker.internal:27017")
    DB_NAME = os.getenv("MONGO_DB_NAME", "ledger")
    TRANSACTIONS_COLLECTION = os.getenv("TRANSACTIONS_COLLECTION", "psdata")
    APPDATA_COLLECTION = os.getenv("APPDATA_COLLECTION", "appdata")
    STAGING_COLLECTION = os.getenv("STAGING_COLLECTION", "refresh_staging")
    MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

    # Data files
    DATA_DIR = os.getenv("LEDGER_DATA_DIR", "/opt/airflow/ledger_data")
    CSV_EXPORT_PATH = os.getenv("CSV_EXPORT_PATH", f"{DATA_DIR}/ps-transactions.csv")
    CSV_BATCH_SIZE = int(os.getenv("CSV_BATCH_SIZE", "1000"))
    COA_PATH = os.getenv("COA_PATH", f"{DATA_DIR}/coa.json")
    ACCOUNT_NAMES_PATH = os.getenv("ACCOUNT_NAMES_PATH", f"{DATA_DIR}/account_names.json")
    CATEGORY_NAMES_PATH = os.getenv("CATEGORY_NAMES_PATH", f"{DATA_DIR}/category_names.json")
    REPORTS_DIR = os.getenv("REPORTS_DIR", f"{DATA_DIR}/reports")
    REPORT_CONCURRENCY = int(os.getenv("REPORT_CONCURRENCY", "8"))

    # Staging for the incremental refresh ("file" or "mongo")
    STAGING_BACKEND = os.getenv("STAGING_BACKEND", "file")
    STAGING_DIR = os.getenv("STAGING_DIR", f"{DATA_DIR}/.staging")

    # Ledger API Configuration
    LEDGER_API_URL = os.getenv("LEDGER_API_URL", "https://api.pocketsmith.com/v2")
    LEDGER_API_KEY = os.getenv("LEDGER_API_KEY", "")
    LEDGER_USER_ID = os.getenv("LEDGER_USER_ID", "")
    LEDGER_API_TIMEOUT_SECS = float(os.getenv("LEDGER_API_TIMEOUT_SECS", "10"))
    LEDGER_PAGE_SIZE = int(os.getenv("LEDGER_PAGE_SIZE", "1000"))
    LEDGER_REFRESH_SINCE = os.getenv("LEDGER_REFRESH_SINCE", "2025-01-01T00:00:00Z")
    MODIFIED_THRESHOLD_SECS = float(os.getenv("MODIFIED_THRESHOLD_SECS", "60"))

    # FX Configuration
    BASE_CURRENCY = os.getenv("BASE_CURRENCY", "USD")
    FX_BASE_URL = os.getenv("FX_BASE_URL", "https://api.frankfurter.app")
    FX_TIMEOUT_SECS = float(os.getenv("FX_TIMEOUT_SECS", "5"))

    # SFTP Configuration
    SFTP_HOST = os.getenv("SFTP_HOST", "sftp-server")
    SFTP_PORT = int(os.getenv("SFTP_PORT", "22"))
    SFTP_USERNAME = os.getenv("SFTP_USERNAME", "testuser")
    SFTP_PASSWORD = os.getenv("SFTP_PASSWORD", "testpass")
    SFTP_REMOTE_DIR = os.getenv("SFTP_REMOTE_DIR", "/uploads")
    SFTP_DOWNLOAD_DIR = os.getenv("SFTP_DOWNLOAD_DIR", f"{DATA_DIR}/downloads")


# Create a singleton instance
settings = Settings()

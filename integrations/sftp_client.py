import paramiko
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class SFTPClient:
    """Pulls ledger CSV exports off the drop-box SFTP server."""

    def __init__(self, host, port, username, password):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.ssh_client = None
        self.sftp_client = None

    @classmethod
    def from_settings(cls, settings):
        return cls(
            host=settings.SFTP_HOST,
            port=settings.SFTP_PORT,
            username=settings.SFTP_USERNAME,
            password=settings.SFTP_PASSWORD,
        )

    def connect(self):
        try:
            self.ssh_client = paramiko.SSHClient()
            # Unknown host keys are logged, never silently trusted.
            self.ssh_client.set_missing_host_key_policy(paramiko.WarningPolicy())
            self.ssh_client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                timeout=10
            )
            self.sftp_client = self.ssh_client.open_sftp()
            logger.info(f"Connected to SFTP server {self.host}:{self.port}")
            return True

        except Exception as e:
            logger.error(f"SFTP connection to {self.host}:{self.port} failed: {e}")
            return False

    def disconnect(self):
        if self.sftp_client:
            self.sftp_client.close()
            self.sftp_client = None
        if self.ssh_client:
            self.ssh_client.close()
            self.ssh_client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()

    def list_files(self, remote_dir="/uploads"):
        try:
            names = self.sftp_client.listdir(remote_dir)
        except Exception as e:
            logger.error(f"Failed to list files in {remote_dir}: {e}")
            return []
        logger.info(f"Found {len(names)} entries in {remote_dir}")
        return names

    def download_exports(self, remote_dir="/uploads", local_dir="/opt/airflow/ledger_data/downloads", suffix=".csv"):
        """Download every ledger export ending in ``suffix``; returns the local paths."""
        exports = sorted(f for f in self.list_files(remote_dir) if f.lower().endswith(suffix))
        Path(local_dir).mkdir(parents=True, exist_ok=True)

        downloaded = []
        for filename in exports:
            local_path = Path(local_dir) / filename
            try:
                self.sftp_client.get(f"{remote_dir.rstrip('/')}/{filename}", str(local_path))
            except Exception as e:
                logger.error(f"Failed to download {filename}: {e}")
                continue
            logger.info(f"Downloaded {filename} ({local_path.stat().st_size} bytes)")
            downloaded.append(str(local_path))

        logger.info(f"Downloaded {len(downloaded)}/{len(exports)} exports from {remote_dir}")
        return downloaded

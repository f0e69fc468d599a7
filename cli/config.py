"""Configuration management for the upload client."""

import json
import os
import shutil
from pathlib import Path

from common.constants import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WORKERS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BACKOFF_MULTIPLIER,
    SERVER_PORT,
)


class Config:
    """Manages client configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "server_host": os.environ.get("UPLOAD_SERVER_HOST", "localhost"),
        "server_port": int(os.environ.get("UPLOAD_SERVER_PORT", str(SERVER_PORT))),
        "timeout": DEFAULT_REQUEST_TIMEOUT_SECONDS,
        "max_retries": DEFAULT_MAX_RETRIES,
        "retry_backoff_multiplier": DEFAULT_RETRY_BACKOFF_MULTIPLIER,
        "retry_base_delay": 1.0,
        "chunk_size": DEFAULT_CHUNK_SIZE_BYTES,
        "max_workers": DEFAULT_MAX_WORKERS,
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunkup/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            import tempfile
            self.config_path = Path(tempfile.gettempdir()) / '.chunkup' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (ValueError, IOError):
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError:
                    pass
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except IOError:
                pass
            return config

    def get_base_url(self) -> str:
        """
        Get server base URL.

        Returns:
            Base URL string (e.g., "http://localhost:8080")
        """
        host = self.data.get('server_host', 'localhost')
        port = self.data.get('server_port', SERVER_PORT)
        return f"http://{host}:{port}"

    def get_timeout(self) -> float:
        """
        Get per-request timeout in seconds.
        """
        return self.data.get('timeout', DEFAULT_REQUEST_TIMEOUT_SECONDS)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries', 'retry_backoff_multiplier' and 'retry_base_delay'
        """
        return {
            'max_retries': self.data.get('max_retries', DEFAULT_MAX_RETRIES),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', DEFAULT_RETRY_BACKOFF_MULTIPLIER),
            'retry_base_delay': self.data.get('retry_base_delay', 1.0),
        }

    def get_chunk_size(self) -> int:
        return int(self.data.get('chunk_size', DEFAULT_CHUNK_SIZE_BYTES))

    def get_max_workers(self) -> int:
        return int(self.data.get('max_workers', DEFAULT_MAX_WORKERS))

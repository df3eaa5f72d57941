"""Where the event journal and the HTTP cache live on disk."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "skinsync"
JOURNAL_FILENAME: Final[str] = "journal.db"
HTTP_CACHE_FILENAME: Final[str] = "http_cache.db"


def _platform_data_dir() -> Path:
    if os.name == "nt":
        root = os.getenv("LOCALAPPDATA")
        return Path(root) if root else Path.home() / "AppData" / "Local"
    root = os.getenv("XDG_DATA_HOME")
    return Path(root) if root else Path.home() / ".local" / "share"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """``database_uri`` overrides the SQLite journal inside ``data_dir``."""

    data_dir: Path
    database_uri: str | None = None

    @property
    def root(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def journal_uri(self) -> str:
        if self.database_uri:
            return self.database_uri
        return f"sqlite+pysqlite:///{self.ensure_root() / JOURNAL_FILENAME}"

    def http_cache_path(self) -> Path:
        return self.ensure_root() / HTTP_CACHE_FILENAME


def get_storage_config() -> StorageConfig:
    env_dir = os.getenv("SKINSYNC_DATA_DIR")
    data_dir = Path(env_dir) if env_dir else _platform_data_dir() / APP_DIR_NAME
    return StorageConfig(data_dir=data_dir, database_uri=os.getenv("DATABASE_URI") or None)

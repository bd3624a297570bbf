"""On-disk layout of the Courier data directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_HOME = Path.home() / ".courier"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


@dataclass(frozen=True)
class DataPaths:
    """Files kept under the Courier home directory.

    The SQLite database holds encrypted wallet credentials, so the whole
    tree is created owner-only.
    """

    home: Path

    @property
    def database(self) -> Path:
        return self.home / "courier.sqlite3"

    @property
    def audit_log(self) -> Path:
        return self.home / "audit.jsonl"

    @property
    def audit_key(self) -> Path:
        return self.home / "secrets" / "audit_hmac.key"

    def prepare(self) -> "DataPaths":
        ensure_private_dir(self.home)
        ensure_private_dir(self.audit_key.parent)
        return self

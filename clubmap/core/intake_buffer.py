"""
Durable intake buffer: a write-ahead log of submissions kept on the local
filesystem, independent of the authoritative store.

Layout under INTAKE_DIR::

    pending/<receipt>.json     written at intake, not yet confirmed in the store
    consumed/<receipt>.json    confirmed (kept only when INTAKE_ARCHIVE=true)

A receipt is ``<UTC timestamp>Z-<uuid4 hex>``, so names sort by intake time
and concurrent writers never collide.
"""

import json
import os
import re
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from . import config
from .errors import IntakeBufferError
from .schema import IntakeRecord
from util.logging import logger

RECEIPT_RE = re.compile(r"^(\d{8}T\d{12})Z-[0-9a-f]{32}$")
RECORD_SUFFIX = ".json"


def new_receipt(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%dT%H%M%S%f}Z-{uuid.uuid4().hex}"


def receipt_time(receipt: str) -> datetime:
    """Intake time encoded in a receipt."""
    match = RECEIPT_RE.match(receipt)
    if not match:
        raise ValueError(f"Malformed intake receipt: {receipt!r}")
    return datetime.strptime(match.group(1), "%Y%m%dT%H%M%S%f").replace(tzinfo=timezone.utc)


def _fsync_directory(path: Path) -> None:
    if os.name != "posix":
        return
    dir_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


class IntakeBuffer:
    """Append-only store of intake records with atomic per-record writes."""

    def __init__(self, root: Optional[str] = None, archive: Optional[bool] = None):
        self._root = root
        self._archive = archive

    @property
    def root(self) -> Path:
        return Path(self._root or config.INTAKE_DIR)

    @property
    def archive(self) -> bool:
        return config.INTAKE_ARCHIVE if self._archive is None else self._archive

    @property
    def pending_dir(self) -> Path:
        return self.root / "pending"

    @property
    def consumed_dir(self) -> Path:
        return self.root / "consumed"

    def _pending_path(self, receipt: str) -> Path:
        if not RECEIPT_RE.match(receipt):
            raise ValueError(f"Malformed intake receipt: {receipt!r}")
        return self.pending_dir / f"{receipt}{RECORD_SUFFIX}"

    def persist(self, record: IntakeRecord) -> str:
        """Write one record durably and return its receipt.

        The record is written to a hidden temp file, fsynced, then renamed into
        place, so a reader sees either nothing or the complete record.
        """
        path = self._pending_path(record.receipt)
        tmp = path.with_name(f".{path.name}.tmp")
        data = json.dumps(record.to_dict(), ensure_ascii=False, indent=2)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            tmp.replace(path)
            _fsync_directory(path.parent)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise IntakeBufferError(f"Failed to persist intake record {record.receipt}: {e}") from e

        return record.receipt

    def load(self, receipt: str) -> IntakeRecord:
        """Read a pending record. Raises FileNotFoundError once it has been consumed."""
        path = self._pending_path(receipt)
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = handle.read()
            return IntakeRecord.from_dict(json.loads(raw))
        except FileNotFoundError:
            raise
        except (OSError, ValueError, KeyError, TypeError) as e:
            # UnicodeDecodeError is a ValueError
            raise IntakeBufferError(f"Unreadable intake record {receipt}: {e}") from e

    def list_pending(self, older_than_sec: float = 0, now: Optional[datetime] = None) -> List[str]:
        """Receipts still pending, oldest first, limited to those older than the grace period."""
        if not self.pending_dir.exists():
            return []

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=older_than_sec)
        receipts = []
        for entry in self.pending_dir.iterdir():
            name = entry.name
            if name.startswith(".") or not name.endswith(RECORD_SUFFIX):
                continue
            receipt = name[:-len(RECORD_SUFFIX)]
            if not RECEIPT_RE.match(receipt):
                logger.warning(f"Ignoring unexpected file in intake buffer: {name}")
                continue
            if receipt_time(receipt) <= cutoff:
                receipts.append(receipt)
        return sorted(receipts)

    def pending_count(self) -> int:
        return len(self.list_pending())

    def mark_consumed(self, receipt: str) -> bool:
        """Retire a record whose submission is confirmed in the store.

        Returns False when another sweep already consumed it.
        """
        path = self._pending_path(receipt)
        try:
            if self.archive:
                self.consumed_dir.mkdir(parents=True, exist_ok=True)
                os.replace(path, self.consumed_dir / path.name)
            else:
                path.unlink()
        except FileNotFoundError:
            return False
        return True


# Global buffer instance bound to the configured directory
intake_buffer = IntakeBuffer()

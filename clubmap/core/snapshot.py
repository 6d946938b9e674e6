"""
Snapshot synchronizer: derives the read-only ``clubs.json`` from the
published clubs in the authoritative store, and the inverse one-shot
``migrate`` that bootstraps the store from an existing snapshot.

Every rebuild is a full projection. The previous file is copied to a fixed
backup path first, and both writes go through a temp file plus rename, so
readers never see a partial snapshot.
"""

import hashlib
import json
import os
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import config, dao
from .errors import DuplicateRecordError, NotFoundError
from .schema import (
    RECORD_ID_RE,
    ClubPayload,
    ContactInfo,
    ExternalLink,
    PublishedRecord,
    new_record_id,
    utcnow_iso,
)
from util.logging import logger

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def get_executor() -> ThreadPoolExecutor:
    """Shared pool for background rebuilds."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=config.SYNC_WORKERS, thread_name_prefix="snapshot-sync")
        return _executor


def shutdown_executor(wait: bool = True) -> None:
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=wait)
            _executor = None


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write to a unique temporary file and atomically replace the destination."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with tmp.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def project(record: PublishedRecord) -> Dict[str, Any]:
    """Snapshot entry for one club. Coordinates are (longitude, latitude)."""
    p = record.payload
    return {
        "id": str(record.id),
        "name": p.name,
        "school": p.school,
        "province": p.province,
        "city": p.city or "",
        "coordinates": [p.longitude, p.latitude],
        "latitude": p.latitude,
        "longitude": p.longitude,
        "img_name": p.logo or "",
        "short_description": p.short_description or "",
        "long_description": p.long_description or "",
        "tags": list(p.tags),
        "website": p.website or "",
        "external_links": [{"type": link.type, "url": link.url} for link in p.external_links],
        "contact": p.contact.to_dict(),
    }


def render(records: Iterable[PublishedRecord]) -> bytes:
    """Deterministic serialization: same records, same bytes."""
    ordered = sorted(records, key=lambda r: (r.created_at, r.id))
    text = json.dumps([project(r) for r in ordered], ensure_ascii=False, indent=2)
    return (text + "\n").encode("utf-8")


@dataclass
class SyncResult:
    path: str
    backup_path: Optional[str]
    record_count: int
    checksum: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SnapshotSynchronizer:
    """Rebuilds the snapshot and notifies subscribers after each replace."""

    def __init__(self, snapshot_path: Optional[str] = None, backup_path: Optional[str] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self._snapshot_path = snapshot_path
        self._backup_path = backup_path
        self._executor = executor
        self._listeners: List[Callable[[SyncResult], None]] = []

    @property
    def snapshot_path(self) -> Path:
        return Path(self._snapshot_path or config.SNAPSHOT_PATH)

    @property
    def backup_path(self) -> Path:
        return Path(self._backup_path or config.SNAPSHOT_BACKUP_PATH)

    def subscribe(self, listener: Callable[[SyncResult], None]) -> None:
        """Register a callback run after every successful rebuild."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[SyncResult], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def rebuild(self) -> SyncResult:
        """Project every published club and replace the snapshot file."""
        records = dao.list_published_records()
        data = render(records)

        path = self.snapshot_path
        backup = None
        if path.exists():
            atomic_write_bytes(self.backup_path, path.read_bytes())
            backup = str(self.backup_path)

        atomic_write_bytes(path, data)

        result = SyncResult(
            path=str(path),
            backup_path=backup,
            record_count=len(records),
            checksum=hashlib.sha256(data).hexdigest(),
        )
        logger.log_sync("rebuild", "success", {"records": result.record_count, "checksum": result.checksum[:12]})
        self._emit(result)
        return result

    def trigger(self) -> Future:
        """Schedule a rebuild in the background.

        Failures are logged and not raised; the next trigger retries with a
        full rebuild.
        """
        executor = self._executor or get_executor()
        return executor.submit(self._rebuild_logged)

    def _rebuild_logged(self) -> Optional[SyncResult]:
        try:
            return self.rebuild()
        except Exception as e:
            logger.log_sync("rebuild", "failed", {"error": str(e)})
            return None

    def _emit(self, result: SyncResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Snapshot listener {listener!r} failed: {e}")


# ---------------------------------------------------------------------------
# Migration (snapshot -> store)
# ---------------------------------------------------------------------------

@dataclass
class MigrationSummary:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def entry_to_payload(entry: Dict[str, Any]) -> ClubPayload:
    """Read a snapshot entry in either the current or the legacy field spelling."""
    name = (entry.get("name") or "").strip()
    school = (entry.get("school") or "").strip()
    if not name or not school:
        raise ValueError("entry needs both name and school")

    coords = entry.get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) == 2:
        longitude, latitude = coords
    else:
        latitude, longitude = entry["latitude"], entry["longitude"]

    short_description = entry.get("short_description")
    if short_description is None:
        short_description = entry.get("shortDescription")
    long_description = entry.get("long_description")
    if long_description is None:
        long_description = entry.get("description")

    return ClubPayload(
        name=name,
        school=school,
        province=entry.get("province") or "",
        city=entry.get("city") or "",
        latitude=float(latitude),
        longitude=float(longitude),
        short_description=short_description or "",
        long_description=long_description or "",
        tags=list(entry.get("tags") or []),
        logo=entry.get("img_name") or entry.get("logo") or None,
        website=entry.get("website") or "",
        external_links=[ExternalLink(type=link["type"], url=link["url"])
                        for link in entry.get("external_links") or []],
        contact=ContactInfo(**{k: v for k, v in (entry.get("contact") or {}).items()
                               if k in ("email", "qq", "wechat")}),
    )


def _pick_record_id(entry: Dict[str, Any]) -> str:
    """Keep the snapshot's id when it is usable and free, so links survive."""
    legacy = entry.get("id")
    if legacy is None:
        return new_record_id()
    legacy = str(legacy)
    if not RECORD_ID_RE.match(legacy):
        return new_record_id()
    try:
        dao.get_published_record(legacy)
    except NotFoundError:
        return legacy
    return new_record_id()


def migrate(source_path: Optional[str] = None, actor: str = "migration") -> MigrationSummary:
    """Bulk-load a snapshot file into the store, matching clubs by (name, school).

    Entries whose stored club already has identical content are left
    untouched, so running the same migration twice changes nothing.
    """
    path = Path(source_path or config.SNAPSHOT_PATH)
    with path.open("r", encoding="utf-8") as handle:
        entries = json.load(handle)
    if not isinstance(entries, list):
        raise ValueError(f"Snapshot {path} must contain a JSON array")

    summary = MigrationSummary()
    # Later entries for the same (name, school) supersede earlier ones
    latest: Dict[Any, Any] = {}
    for index, entry in enumerate(entries):
        try:
            payload = entry_to_payload(entry)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            summary.skipped += 1
            summary.errors.append(f"entry {index}: {e}")
            logger.warning(f"Migration skipped entry {index}: {e}")
            continue

        key = payload.natural_key()
        if key in latest:
            earlier = latest.pop(key)[0]
            summary.skipped += 1
            summary.errors.append(f"entry {earlier}: superseded by entry {index} for the same club")
        latest[key] = (index, entry, payload)

    for index, entry, payload in latest.values():
        existing = dao.find_published_record(payload.name, payload.school)
        if existing is not None:
            if existing.payload.to_dict() == payload.to_dict():
                summary.unchanged += 1
            else:
                dao.update_published_record(existing.id, payload.to_dict(), actor=actor)
                summary.updated += 1
            continue

        now = utcnow_iso()
        record = PublishedRecord(
            id=_pick_record_id(entry),
            payload=payload,
            created_at=now,
            updated_at=now,
            verified_by=actor,
        )
        try:
            dao.insert_published_record(record)
        except DuplicateRecordError as e:
            summary.skipped += 1
            summary.errors.append(f"entry {index}: {e.message}")
            continue
        summary.created += 1

    logger.log_migration({k: v for k, v in summary.to_dict().items() if k != "errors"}, str(path))
    return summary


# Global synchronizer bound to the configured snapshot paths
snapshot_synchronizer = SnapshotSynchronizer()

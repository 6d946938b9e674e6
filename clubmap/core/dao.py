"""
Authoritative store adapter: submissions (review queue) and published clubs.

Every write that depends on current state is a single conditional statement
so several API processes can share one database file.
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional, Tuple

from .db import get_db, transaction
from .errors import (
    DuplicateRecordError,
    InvalidStatusError,
    NotFoundError,
    PayloadValidationError,
)
from .schema import (
    ClubPayload,
    DuplicateCheckResult,
    OriginMetadata,
    PublishedRecord,
    Submission,
    SubmissionKind,
    SubmissionStatus,
    check_record_id,
    check_submission_id,
    new_record_id,
    new_submission_id,
    parse_status,
    utcnow_iso,
)
from util.logging import logger

SUBMISSION_SORT_FIELDS = {"submitted_at", "reviewed_at", "name", "school", "status"}
MAX_PAGE_SIZE = 100
PAYLOAD_FIELDS = {f.name for f in fields(ClubPayload)}


@dataclass
class SubmissionPage:
    items: List[Submission]
    total: int
    page: int
    page_size: int


@contextmanager
def _connection(conn: Optional[sqlite3.Connection]):
    """Reuse the caller's connection or open a short-lived one for reads."""
    if conn is not None:
        yield conn
    else:
        with get_db() as own:
            yield own


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _search_clause(search: Optional[str]) -> Tuple[str, List[str]]:
    if not search or not search.strip():
        return "", []
    pattern = _like_pattern(search.strip())
    clause = ("(name LIKE ? ESCAPE '\\' OR school LIKE ? ESCAPE '\\' "
              "OR province LIKE ? ESCAPE '\\' OR city LIKE ? ESCAPE '\\')")
    return clause, [pattern] * 4


def _row_to_submission(row: sqlite3.Row) -> Submission:
    return Submission(
        id=row["id"],
        kind=SubmissionKind(row["kind"]),
        status=SubmissionStatus(row["status"]),
        target_record_id=row["target_record_id"],
        payload=ClubPayload.from_dict(json.loads(row["payload"])),
        origin=OriginMetadata(
            submitter_email=row["submitter_email"],
            client_ip=row["client_ip"],
            user_agent=row["user_agent"],
            submitted_at=row["submitted_at"],
        ),
        duplicate_check=DuplicateCheckResult.from_dict(
            json.loads(row["duplicate_check"]) if row["duplicate_check"] else None
        ),
        intake_receipt=row["intake_receipt"],
        reviewed_by=row["reviewed_by"],
        reviewed_at=row["reviewed_at"],
        rejection_reason=row["rejection_reason"],
    )


def _row_to_record(row: sqlite3.Row) -> PublishedRecord:
    payload = ClubPayload.from_dict({
        "name": row["name"],
        "school": row["school"],
        "province": row["province"],
        "city": row["city"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "logo": row["logo"],
        "short_description": row["short_description"],
        "long_description": row["long_description"],
        "tags": json.loads(row["tags"]),
        "website": row["website"],
        "external_links": json.loads(row["external_links"]),
        "contact": json.loads(row["contact"]),
    })
    return PublishedRecord(
        id=row["id"],
        payload=payload,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        source_submission=row["source_submission"],
        verified_by=row["verified_by"],
    )


def _record_params(record: PublishedRecord) -> Dict[str, Any]:
    p = record.payload
    return {
        "id": record.id,
        "name": p.name.strip(),
        "school": p.school.strip(),
        "province": p.province,
        "city": p.city,
        "latitude": p.latitude,
        "longitude": p.longitude,
        "logo": p.logo,
        "short_description": p.short_description,
        "long_description": p.long_description,
        "tags": json.dumps(p.tags, ensure_ascii=False),
        "website": p.website,
        "external_links": json.dumps([{"type": link.type, "url": link.url} for link in p.external_links], ensure_ascii=False),
        "contact": json.dumps(p.contact.to_dict(), ensure_ascii=False),
        "source_submission": record.source_submission,
        "verified_by": record.verified_by,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------

def create_submission(submission: Submission) -> Tuple[Submission, bool]:
    """Insert a PENDING submission and assign its id.

    Idempotent on ``intake_receipt``: replaying the same buffer record returns
    the submission already stored for it with ``created=False``.
    """
    if submission.id is not None:
        raise PayloadValidationError("Submission ids are assigned by the store")
    if submission.status is not SubmissionStatus.PENDING:
        raise PayloadValidationError("New submissions must be PENDING")
    if submission.kind is SubmissionKind.EDIT:
        if not submission.target_record_id:
            raise PayloadValidationError("EDIT submissions need a target record id")
        check_record_id(submission.target_record_id)
    elif submission.target_record_id:
        raise PayloadValidationError("NEW submissions cannot target a record")

    stored = replace(submission, id=new_submission_id())
    p = stored.payload
    try:
        with transaction() as conn:
            conn.execute('''
                INSERT INTO submissions (
                    id, kind, target_record_id, status, name, school, province, city,
                    payload, submitter_email, client_ip, user_agent, submitted_at,
                    duplicate_check, intake_receipt
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                stored.id, stored.kind.value, stored.target_record_id, stored.status.value,
                p.name.strip(), p.school.strip(), p.province, p.city,
                json.dumps(p.to_dict(), ensure_ascii=False),
                stored.origin.submitter_email, stored.origin.client_ip, stored.origin.user_agent,
                stored.origin.submitted_at,
                json.dumps(stored.duplicate_check.to_dict(), ensure_ascii=False),
                stored.intake_receipt,
            ))
    except sqlite3.IntegrityError:
        if stored.intake_receipt:
            existing = find_submission_by_receipt(stored.intake_receipt)
            if existing is not None:
                logger.info(f"Submission for receipt {stored.intake_receipt} already stored as {existing.id}")
                return existing, False
        raise

    return stored, True


def get_submission(submission_id: str, conn: Optional[sqlite3.Connection] = None) -> Submission:
    check_submission_id(submission_id)
    with _connection(conn) as c:
        row = c.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Submission {submission_id} not found", {"submission_id": submission_id})
    return _row_to_submission(row)


def find_submission_by_receipt(receipt: str) -> Optional[Submission]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM submissions WHERE intake_receipt = ?", (receipt,)).fetchone()
    return _row_to_submission(row) if row else None


def list_submissions(status: Optional[str] = None, search: Optional[str] = None,
                     page: int = 1, page_size: int = 20, sort: str = "-submitted_at") -> SubmissionPage:
    """List the review queue with filtering, paging and sorting."""
    if page < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
        raise PayloadValidationError(f"page must be >= 1 and page_size within 1..{MAX_PAGE_SIZE}")

    sort_field = sort.lstrip("-")
    if sort_field not in SUBMISSION_SORT_FIELDS:
        raise PayloadValidationError(f"sort must be one of {sorted(SUBMISSION_SORT_FIELDS)}")
    direction = "DESC" if sort.startswith("-") else "ASC"

    clauses, params = [], []
    if status:
        clauses.append("status = ?")
        params.append(parse_status(status).value)
    search_clause, search_params = _search_clause(search)
    if search_clause:
        clauses.append(search_clause)
        params.extend(search_params)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    with get_db() as conn:
        total = conn.execute(f"SELECT COUNT(*) FROM submissions {where}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM submissions {where} ORDER BY {sort_field} {direction}, id {direction} LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size],
        ).fetchall()

    return SubmissionPage(
        items=[_row_to_submission(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


def transition_submission(submission_id: str, target_status: str, actor: str,
                          reason: Optional[str] = None,
                          conn: Optional[sqlite3.Connection] = None) -> Submission:
    """Move a PENDING submission to a terminal status.

    Compare-and-set on ``status``: of several concurrent callers exactly one
    updates the row, the rest get InvalidStatusError with the status they lost to.
    """
    check_submission_id(submission_id)
    target = parse_status(target_status)
    if not target.is_terminal:
        raise PayloadValidationError("Submissions can only move to APPROVED or REJECTED")
    if not actor or not actor.strip():
        raise PayloadValidationError("A reviewer identity is required")

    with transaction(conn) as c:
        cursor = c.execute('''
            UPDATE submissions
            SET status = ?, reviewed_by = ?, reviewed_at = ?, rejection_reason = ?
            WHERE id = ? AND status = 'PENDING'
        ''', (target.value, actor.strip(), utcnow_iso(), reason, submission_id))

        if cursor.rowcount == 0:
            row = c.execute("SELECT status FROM submissions WHERE id = ?", (submission_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Submission {submission_id} not found", {"submission_id": submission_id})
            raise InvalidStatusError(submission_id, row["status"])

        return get_submission(submission_id, conn=c)


def count_submissions(status: Optional[str] = None) -> int:
    with get_db() as conn:
        if status:
            row = conn.execute("SELECT COUNT(*) FROM submissions WHERE status = ?",
                               (parse_status(status).value,)).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) FROM submissions").fetchone()
    return row[0]


# ---------------------------------------------------------------------------
# Published records
# ---------------------------------------------------------------------------

def insert_published_record(record: PublishedRecord, conn: Optional[sqlite3.Connection] = None) -> PublishedRecord:
    """Insert a fully formed record (ids and timestamps supplied by the caller)."""
    check_record_id(record.id)
    params = _record_params(record)
    try:
        with transaction(conn) as c:
            c.execute('''
                INSERT INTO clubs (
                    id, name, school, province, city, latitude, longitude, logo,
                    short_description, long_description, tags, website, external_links,
                    contact, source_submission, verified_by, created_at, updated_at
                ) VALUES (
                    :id, :name, :school, :province, :city, :latitude, :longitude, :logo,
                    :short_description, :long_description, :tags, :website, :external_links,
                    :contact, :source_submission, :verified_by, :created_at, :updated_at
                )
            ''', params)
    except sqlite3.IntegrityError as e:
        raise DuplicateRecordError(
            f"Club {params['name']!r} at {params['school']!r} conflicts with an existing record",
            {"id": record.id, "name": params["name"], "school": params["school"]},
        ) from e
    return record


def create_published_record(submission: Submission, actor: str,
                            conn: Optional[sqlite3.Connection] = None) -> PublishedRecord:
    """Materialize an approved submission. Description fields are copied as-is."""
    now = utcnow_iso()
    record = PublishedRecord(
        id=new_record_id(),
        payload=submission.payload,
        created_at=now,
        updated_at=now,
        source_submission=submission.id,
        verified_by=actor,
    )
    return insert_published_record(record, conn=conn)


def get_published_record(record_id: str, conn: Optional[sqlite3.Connection] = None) -> PublishedRecord:
    check_record_id(record_id)
    with _connection(conn) as c:
        row = c.execute("SELECT * FROM clubs WHERE id = ?", (record_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Club {record_id} not found", {"record_id": record_id})
    return _row_to_record(row)


def find_published_record(name: str, school: str,
                          conn: Optional[sqlite3.Connection] = None) -> Optional[PublishedRecord]:
    """Look up a club by its natural key (name, school)."""
    with _connection(conn) as c:
        row = c.execute("SELECT * FROM clubs WHERE name = ? AND school = ?",
                        ((name or "").strip(), (school or "").strip())).fetchone()
    return _row_to_record(row) if row else None


def list_published_records(search: Optional[str] = None, limit: Optional[int] = None) -> List[PublishedRecord]:
    """All published clubs in creation order, optionally filtered."""
    clause, params = _search_clause(search)
    sql = "SELECT * FROM clubs"
    if clause:
        sql += f" WHERE {clause}"
    sql += " ORDER BY created_at, id"
    if limit is not None:
        sql += " LIMIT ?"
        params = params + [limit]

    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_row_to_record(r) for r in rows]


def update_published_record(record_id: str, changes: Dict[str, Any], actor: Optional[str] = None,
                            source_submission: Optional[str] = None,
                            conn: Optional[sqlite3.Connection] = None) -> PublishedRecord:
    """Apply field changes to a club in place, keeping its id and bumping ``updated_at``."""
    unknown = set(changes) - PAYLOAD_FIELDS
    if unknown:
        raise PayloadValidationError(f"Unknown club fields: {sorted(unknown)}")

    with transaction(conn) as c:
        current = get_published_record(record_id, conn=c)
        merged = current.payload.to_dict()
        merged.update(changes)
        updated = replace(
            current,
            payload=ClubPayload.from_dict(merged),
            updated_at=utcnow_iso(),
            verified_by=actor or current.verified_by,
            source_submission=source_submission or current.source_submission,
        )
        params = _record_params(updated)
        try:
            c.execute('''
                UPDATE clubs SET
                    name = :name, school = :school, province = :province, city = :city,
                    latitude = :latitude, longitude = :longitude, logo = :logo,
                    short_description = :short_description, long_description = :long_description,
                    tags = :tags, website = :website, external_links = :external_links,
                    contact = :contact, source_submission = :source_submission,
                    verified_by = :verified_by, updated_at = :updated_at
                WHERE id = :id
            ''', params)
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(
                f"Club {params['name']!r} at {params['school']!r} conflicts with an existing record",
                {"id": record_id, "name": params["name"], "school": params["school"]},
            ) from e

    return updated


def delete_published_record(record_id: str) -> None:
    check_record_id(record_id)
    with transaction() as conn:
        cursor = conn.execute("DELETE FROM clubs WHERE id = ?", (record_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Club {record_id} not found", {"record_id": record_id})


def count_published_records() -> int:
    with get_db() as conn:
        return conn.execute("SELECT COUNT(*) FROM clubs").fetchone()[0]

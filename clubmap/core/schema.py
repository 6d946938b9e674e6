"""
Typed records for submissions, published clubs and intake buffer entries.
"""

import re
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import PayloadValidationError

SUBMISSION_ID_RE = re.compile(r"^sub_[0-9a-f]{32}$")
RECORD_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class SubmissionKind(str, Enum):
    NEW = "NEW"
    EDIT = "EDIT"


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionStatus.PENDING


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_submission_id() -> str:
    return f"sub_{uuid.uuid4().hex}"


def new_record_id() -> str:
    return f"club_{uuid.uuid4().hex}"


def check_submission_id(submission_id: str) -> str:
    """Reject ids that cannot have been issued by the store."""
    if not isinstance(submission_id, str) or not SUBMISSION_ID_RE.match(submission_id):
        raise PayloadValidationError(f"Malformed submission id: {submission_id!r}")
    return submission_id


def check_record_id(record_id: str) -> str:
    if not isinstance(record_id, str) or not RECORD_ID_RE.match(record_id):
        raise PayloadValidationError(f"Malformed record id: {record_id!r}")
    return record_id


def parse_status(value: Any) -> SubmissionStatus:
    if isinstance(value, SubmissionStatus):
        return value
    try:
        return SubmissionStatus(str(value).upper())
    except ValueError:
        raise PayloadValidationError(f"Unknown submission status: {value!r}")


@dataclass
class ExternalLink:
    type: str
    url: str


@dataclass
class ContactInfo:
    email: Optional[str] = None
    qq: Optional[str] = None
    wechat: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        """Only the channels that were provided."""
        return {k: v for k, v in asdict(self).items() if v}


@dataclass
class ClubPayload:
    """Club fields as submitted. Already validated by the API layer."""
    name: str
    school: str
    province: str
    latitude: float
    longitude: float
    city: str = ""
    short_description: str = ""
    long_description: str = ""
    tags: List[str] = field(default_factory=list)
    logo: Optional[str] = None
    website: str = ""
    external_links: List[ExternalLink] = field(default_factory=list)
    contact: ContactInfo = field(default_factory=ContactInfo)

    def natural_key(self):
        return natural_key(self.name, self.school)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["contact"] = self.contact.to_dict()
        return data

    def edit_changes(self) -> Dict[str, Any]:
        """Fields an EDIT applies to a published club. Blank logo, website and contact keep the stored value."""
        data = self.to_dict()
        for key in ("logo", "website", "contact"):
            if not data[key]:
                del data[key]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClubPayload":
        return cls(
            name=data["name"],
            school=data["school"],
            province=data.get("province", ""),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            city=data.get("city") or "",
            short_description=data.get("short_description") or "",
            long_description=data.get("long_description") or "",
            tags=list(data.get("tags") or []),
            logo=data.get("logo") or None,
            website=data.get("website") or "",
            external_links=[ExternalLink(**link) for link in data.get("external_links") or []],
            contact=ContactInfo(**(data.get("contact") or {})),
        )


@dataclass
class OriginMetadata:
    submitter_email: str
    client_ip: Optional[str]
    user_agent: Optional[str]
    submitted_at: str = field(default_factory=utcnow_iso)


@dataclass
class DuplicateMatch:
    record_id: str
    name: str
    school: str
    score: float


@dataclass
class DuplicateCheckResult:
    passed: bool = True
    matches: List[DuplicateMatch] = field(default_factory=list)
    degraded: bool = False

    @classmethod
    def permissive(cls) -> "DuplicateCheckResult":
        """Result used when the check itself could not run."""
        return cls(passed=True, matches=[], degraded=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DuplicateCheckResult":
        if not data:
            return cls()
        return cls(
            passed=bool(data.get("passed", True)),
            matches=[DuplicateMatch(**m) for m in data.get("matches") or []],
            degraded=bool(data.get("degraded", False)),
        )


@dataclass
class Submission:
    id: Optional[str]
    kind: SubmissionKind
    status: SubmissionStatus
    payload: ClubPayload
    origin: OriginMetadata
    duplicate_check: DuplicateCheckResult = field(default_factory=DuplicateCheckResult)
    target_record_id: Optional[str] = None
    intake_receipt: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "target_record_id": self.target_record_id,
            "payload": self.payload.to_dict(),
            "origin": asdict(self.origin),
            "duplicate_check": self.duplicate_check.to_dict(),
            "intake_receipt": self.intake_receipt,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at,
            "rejection_reason": self.rejection_reason,
        }


@dataclass
class PublishedRecord:
    id: str
    payload: ClubPayload
    created_at: str
    updated_at: str
    source_submission: Optional[str] = None
    verified_by: Optional[str] = None

    def natural_key(self):
        return self.payload.natural_key()

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id}
        data.update(self.payload.to_dict())
        data.update({
            "source_submission": self.source_submission,
            "verified_by": self.verified_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        })
        return data


@dataclass
class IntakeRecord:
    """One intake attempt, self-contained so it can be replayed into the store."""
    receipt: str
    created_at: str
    kind: SubmissionKind
    payload: ClubPayload
    origin: OriginMetadata
    duplicate_check: DuplicateCheckResult
    target_record_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "receipt": self.receipt,
            "created_at": self.created_at,
            "kind": self.kind.value,
            "target_record_id": self.target_record_id,
            "payload": self.payload.to_dict(),
            "origin": asdict(self.origin),
            "duplicate_check": self.duplicate_check.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntakeRecord":
        return cls(
            receipt=data["receipt"],
            created_at=data["created_at"],
            kind=SubmissionKind(data["kind"]),
            target_record_id=data.get("target_record_id"),
            payload=ClubPayload.from_dict(data["payload"]),
            origin=OriginMetadata(**data["origin"]),
            duplicate_check=DuplicateCheckResult.from_dict(data.get("duplicate_check")),
        )

    def to_submission(self) -> Submission:
        """Pending submission for this record; the store assigns the id."""
        return Submission(
            id=None,
            kind=self.kind,
            status=SubmissionStatus.PENDING,
            payload=self.payload,
            origin=self.origin,
            duplicate_check=self.duplicate_check,
            target_record_id=self.target_record_id,
            intake_receipt=self.receipt,
        )


def natural_key(name: str, school: str):
    return ((name or "").strip(), (school or "").strip())

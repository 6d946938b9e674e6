"""
Intake path for user submissions.

Order of work: advisory duplicate check, durable buffer write, store write.
Only the buffer write can fail the request; a store failure after it leaves
the record for the reconciliation sweep and the caller still gets a receipt.
"""

from dataclasses import dataclass
from typing import Optional

from . import dao
from .errors import PayloadValidationError, StoreUnavailableError
from .intake_buffer import IntakeBuffer, intake_buffer, new_receipt
from .schema import (
    ClubPayload,
    DuplicateCheckResult,
    IntakeRecord,
    OriginMetadata,
    SubmissionKind,
    check_record_id,
    utcnow_iso,
)
from .similarity import DuplicateChecker, duplicate_checker
from util.logging import logger

STATUS_STORED = "stored"
STATUS_BUFFERED = "buffered"


@dataclass
class IntakeResult:
    receipt: str
    status: str  # stored | buffered
    submission_id: Optional[str]
    duplicate_check: DuplicateCheckResult

    @property
    def stored(self) -> bool:
        return self.status == STATUS_STORED


class IntakeService:
    """Accepts validated payloads and guarantees they are never silently lost."""

    def __init__(self, buffer: Optional[IntakeBuffer] = None, checker: Optional[DuplicateChecker] = None):
        self.buffer = buffer or intake_buffer
        self.checker = checker or duplicate_checker

    def submit(self, payload: ClubPayload, origin: OriginMetadata,
               kind: SubmissionKind = SubmissionKind.NEW,
               target_record_id: Optional[str] = None) -> IntakeResult:
        kind = SubmissionKind(kind)
        if kind is SubmissionKind.EDIT:
            if not target_record_id:
                raise PayloadValidationError("Edit submissions must reference the club being edited")
            check_record_id(target_record_id)
        elif target_record_id:
            raise PayloadValidationError("New submissions cannot reference an existing club")

        duplicate_check = self.checker.check(payload, exclude_record_id=target_record_id)

        record = IntakeRecord(
            receipt=new_receipt(),
            created_at=utcnow_iso(),
            kind=kind,
            target_record_id=target_record_id,
            payload=payload,
            origin=origin,
            duplicate_check=duplicate_check,
        )
        # IntakeBufferError propagates: this write is the one that must not fail silently
        receipt = self.buffer.persist(record)
        logger.log_intake(receipt, "buffered", {"name": payload.name, "kind": kind.value})

        try:
            submission, _ = dao.create_submission(record.to_submission())
        except StoreUnavailableError as e:
            logger.log_intake(receipt, "deferred", {"reason": e.message})
            return IntakeResult(receipt, STATUS_BUFFERED, None, duplicate_check)
        except Exception:
            logger.exception(f"Store write failed for intake record {receipt}; left for reconciliation")
            return IntakeResult(receipt, STATUS_BUFFERED, None, duplicate_check)

        try:
            self.buffer.mark_consumed(receipt)
        except OSError as e:
            # The next sweep finds the stored submission by receipt and retires the record
            logger.warning(f"Could not retire intake record {receipt}: {e}")

        logger.log_intake(receipt, STATUS_STORED, {"submission_id": submission.id})
        return IntakeResult(receipt, STATUS_STORED, submission.id, duplicate_check)


# Global intake service instance
intake_service = IntakeService()


def submit(payload: ClubPayload, origin: OriginMetadata,
           kind: SubmissionKind = SubmissionKind.NEW,
           target_record_id: Optional[str] = None) -> IntakeResult:
    """Submit through the global intake service."""
    return intake_service.submit(payload, origin, kind, target_record_id)

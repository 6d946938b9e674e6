"""
Approval state machine: the admin decision that moves a submission out of
the review queue and, on approval, publishes it.

Claim and publish share one store transaction, so a failed publish leaves
the submission PENDING. The snapshot is rebuilt after commit and its
failure never undoes a decision.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from . import dao
from .db import transaction
from .errors import NotFoundError, PayloadValidationError
from .schema import PublishedRecord, Submission, SubmissionKind, SubmissionStatus
from .snapshot import SnapshotSynchronizer, snapshot_synchronizer
from util.logging import audit_event, logger


@dataclass
class ReviewResult:
    submission: Submission
    record: Optional[PublishedRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission": self.submission.to_dict(),
            "record": self.record.to_dict() if self.record else None,
        }


def _require_actor(actor: Optional[str]) -> str:
    if not actor or not actor.strip():
        raise PayloadValidationError("A reviewer identity is required")
    return actor.strip()


class ApprovalWorkflow:
    """Approve and reject submissions; administer published clubs."""

    def __init__(self, synchronizer: Optional[SnapshotSynchronizer] = None):
        self.synchronizer = synchronizer or snapshot_synchronizer

    def approve(self, submission_id: str, actor: str) -> ReviewResult:
        """
        Approve a PENDING submission and publish it.

        NEW creates a published club. EDIT updates the referenced club in
        place, keeping its id.

        Raises:
            InvalidStatusError: submission is no longer PENDING
            NotFoundError: unknown submission, or EDIT target gone
            DuplicateRecordError: (name, school) already published
        """
        actor = _require_actor(actor)

        try:
            with transaction() as conn:
                submission = dao.transition_submission(
                    submission_id, SubmissionStatus.APPROVED, actor, conn=conn
                )
                if submission.kind is SubmissionKind.EDIT:
                    try:
                        record = dao.update_published_record(
                            submission.target_record_id,
                            submission.payload.edit_changes(),
                            actor=actor,
                            source_submission=submission.id,
                            conn=conn,
                        )
                    except NotFoundError as e:
                        raise NotFoundError(
                            f"Club {submission.target_record_id} targeted by {submission_id} no longer exists",
                            {"submission_id": submission_id, "record_id": submission.target_record_id},
                        ) from e
                else:
                    record = dao.create_published_record(submission, actor, conn=conn)
        except Exception as e:
            code = getattr(e, "code", type(e).__name__)
            logger.log_transition(submission_id, SubmissionStatus.APPROVED.value, actor, "failed", {"error": code})
            raise

        logger.log_transition(submission_id, SubmissionStatus.APPROVED.value, actor,
                              details={"record_id": record.id, "kind": submission.kind.value})
        audit_event("submission.approve", {"submission_id": submission_id, "record_id": record.id, "actor": actor})
        self._trigger_sync()
        return ReviewResult(submission=submission, record=record)

    def reject(self, submission_id: str, actor: str, reason: str) -> ReviewResult:
        """Reject a PENDING submission. A non-blank reason is required."""
        if not reason or not reason.strip():
            raise PayloadValidationError("A rejection reason is required", {"submission_id": submission_id})
        actor = _require_actor(actor)

        try:
            submission = dao.transition_submission(
                submission_id, SubmissionStatus.REJECTED, actor, reason=reason.strip()
            )
        except Exception as e:
            code = getattr(e, "code", type(e).__name__)
            logger.log_transition(submission_id, SubmissionStatus.REJECTED.value, actor, "failed", {"error": code})
            raise

        logger.log_transition(submission_id, SubmissionStatus.REJECTED.value, actor)
        audit_event("submission.reject", {"submission_id": submission_id, "actor": actor},
                    {"reason": submission.rejection_reason})
        return ReviewResult(submission=submission)

    def update_record(self, record_id: str, changes: Dict[str, Any], actor: str) -> PublishedRecord:
        """Administrative edit of a published club."""
        actor = _require_actor(actor)
        if not changes:
            raise PayloadValidationError("No fields to update", {"record_id": record_id})

        record = dao.update_published_record(record_id, changes, actor=actor)
        audit_event("club.update", {"record_id": record_id, "actor": actor}, {"fields": sorted(changes)})
        self._trigger_sync()
        return record

    def delete_record(self, record_id: str, actor: str) -> None:
        actor = _require_actor(actor)
        dao.delete_published_record(record_id)
        audit_event("club.delete", {"record_id": record_id, "actor": actor})
        self._trigger_sync()

    def _trigger_sync(self) -> None:
        try:
            self.synchronizer.trigger()
        except Exception as e:
            logger.log_sync("trigger", "failed", {"error": str(e)})


# Global workflow instance
approval_workflow = ApprovalWorkflow()


def approve_submission(submission_id: str, actor: str) -> ReviewResult:
    """Approve through the global workflow."""
    return approval_workflow.approve(submission_id, actor)


def reject_submission(submission_id: str, actor: str, reason: str) -> ReviewResult:
    """Reject through the global workflow."""
    return approval_workflow.reject(submission_id, actor, reason)

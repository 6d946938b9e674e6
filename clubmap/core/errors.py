"""
Error taxonomy shared by the store adapter, the approval workflow and the API.
"""

from typing import Any, Dict, Optional


class ClubMapError(Exception):
    """Base error carrying a stable code for callers."""

    code = "ERROR"
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class PayloadValidationError(ClubMapError):
    code = "VALIDATION"
    http_status = 400


class NotFoundError(ClubMapError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidStatusError(ClubMapError):
    """Transition attempted on a submission that is no longer PENDING."""

    code = "INVALID_STATUS"
    http_status = 409

    def __init__(self, submission_id: str, current_status: str):
        super().__init__(
            f"Submission {submission_id} is already {current_status}",
            {"submission_id": submission_id, "status": current_status},
        )
        self.submission_id = submission_id
        self.current_status = current_status


class DuplicateRecordError(ClubMapError):
    """A published record with the same name and school already exists."""

    code = "DUPLICATE"
    http_status = 409


class StoreUnavailableError(ClubMapError):
    code = "STORE_UNAVAILABLE"
    http_status = 503
    retryable = True


class IntakeBufferError(ClubMapError):
    """The durable intake buffer could not be written. Always fatal to intake."""

    code = "INTAKE_BUFFER"
    http_status = 500

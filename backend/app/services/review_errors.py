"""Error taxonomy for the SSC review workflow.

Every rejected operation raises a ``ReviewError`` subclass carrying a
stable ``code`` and structured ``details`` so callers can tell committee
members exactly which precondition failed.  Routers translate these into
HTTP responses via ``status_code``.
"""

from typing import Any


class ReviewError(Exception):
    """Base class for all expected, recoverable review-workflow failures."""

    code = "review_error"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFound(ReviewError):
    code = "not_found"
    status_code = 404


class IncompleteChecklist(ReviewError):
    code = "incomplete_checklist"
    status_code = 422


class IncompleteVerification(ReviewError):
    code = "incomplete_verification"
    status_code = 422


class MissingReason(ReviewError):
    code = "missing_reason"
    status_code = 422


class InvalidPayload(ReviewError):
    code = "invalid_payload"
    status_code = 422


class ApplicationClosed(ReviewError):
    code = "application_closed"
    status_code = 409


class ApplicationNotSubmitted(ReviewError):
    code = "application_not_submitted"
    status_code = 409


class PrerequisiteStagesIncomplete(ReviewError):
    code = "prerequisite_stages_incomplete"
    status_code = 409


class StageAlreadyDecided(ReviewError):
    code = "stage_already_decided"
    status_code = 409


class StageNotDecided(ReviewError):
    code = "stage_not_decided"
    status_code = 409


class InvalidTransition(ReviewError):
    code = "invalid_transition"
    status_code = 409


class PersistenceError(ReviewError):
    """Storage failure; the surrounding transaction has been rolled back."""

    code = "persistence_error"
    status_code = 500

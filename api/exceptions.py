"""
Domain errors raised by the case-management services.

Routers never translate these by hand: ``api.main`` registers one exception
handler per class that maps it to an HTTP status and a JSON body.
"""
from datetime import datetime
from typing import Optional


class CaseManagementError(Exception):
    """Base class for every domain error"""

    status_code = 500
    code = "case_management_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(CaseManagementError):
    """Bad or missing input. Raised before any write happens."""

    status_code = 400
    code = "validation_error"


class InvalidStatusTransition(ValidationError):
    """A case status change that the lifecycle policy does not allow"""

    code = "invalid_status_transition"

    def __init__(self, current_status: str, requested_status: str, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid case status transition: {current_status} -> {requested_status}"
        )
        self.current_status = current_status
        self.requested_status = requested_status


class NotFound(CaseManagementError):
    status_code = 404
    code = "not_found"


class PermissionDenied(CaseManagementError):
    status_code = 403
    code = "permission_denied"


class AlreadyProcessed(CaseManagementError):
    """
    Approval or rejection attempted on an incident that is no longer pending.

    Carries who decided it and when so the UI can say "already handled by X".
    """

    status_code = 409
    code = "already_processed"

    def __init__(
        self,
        current_status: str,
        decided_by: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ):
        super().__init__(f"Incident already processed (status: {current_status})")
        self.current_status = current_status
        self.decided_by = decided_by
        self.decided_at = decided_at

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["current_status"] = self.current_status
        body["decided_by"] = self.decided_by
        body["decided_at"] = self.decided_at.isoformat() if self.decided_at else None
        return body


class PersistenceError(CaseManagementError):
    """The record store rejected a write"""

    status_code = 500
    code = "persistence_error"


class PartialSideEffectFailure(CaseManagementError):
    """
    A side effect failed after the transition committed.

    Never propagated out of a transition; converted into a warning on the
    result instead.
    """

    code = "partial_side_effect_failure"

    def __init__(self, effect: str, message: str):
        super().__init__(f"{effect}: {message}")
        self.effect = effect

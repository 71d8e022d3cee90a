"""
ApprovalService - the pending -> approved / rejected transition of incidents.

Each incident is decided at most once. The decision is written with a
conditional update on ``approval_status == pending_approval`` so two
concurrent decisions cannot both win; the loser gets ``AlreadyProcessed``.

Approving also opens the case. The incident update and the case insert run
in one transaction when transactions are enabled; otherwise a failed case
insert reverts the incident to pending before the error is raised. Schedule
deactivation happens after that unit and only produces warnings.

Inside a transaction the losing approval sees a write conflict instead of a
non-matching filter. It is retried from the read, which then reports
``AlreadyProcessed`` once the winner has committed.
"""
import asyncio
import logging
from datetime import datetime, timezone as dt_timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import OperationFailure

from ..database import db, transaction
from ..exceptions import (
    AlreadyProcessed,
    NotFound,
    PartialSideEffectFailure,
    PersistenceError,
    ValidationError,
)
from ..models.cases import ApprovalResponse, CaseType
from ..models.incidents import ApprovalStatus, IncidentResponse, IncidentType
from . import status_codec
from .case_service import case_to_response, ensure_utc_aware
from .incident_service import incident_to_response, parse_incident_id
from .schedule_service import ScheduleService

logger = logging.getLogger(__name__)

# Attempts at approving when a concurrent transaction holds the incident
_CLAIM_ATTEMPTS = 3

CASE_TYPE_BY_INCIDENT_TYPE = {
    IncidentType.INCIDENT.value: CaseType.ACCIDENT,
}


def case_type_for(incident_type: str) -> CaseType:
    """Generic incidents open accident cases; every other type opens an 'other' case"""
    return CASE_TYPE_BY_INCIDENT_TYPE.get(incident_type, CaseType.OTHER)


class ApprovalService:
    """Approves or rejects pending incidents."""

    @staticmethod
    def _ensure_pending(incident: dict) -> None:
        current_status = incident.get("approval_status")
        if current_status != ApprovalStatus.PENDING_APPROVAL.value:
            raise AlreadyProcessed(
                current_status,
                decided_by=incident.get("approved_by"),
                decided_at=ensure_utc_aware(incident.get("approved_at")),
            )

    async def _load_pending(self, incident_id: str):
        object_id = parse_incident_id(incident_id)
        incident = await db.Incidents.find_one({"_id": object_id})
        if not incident:
            raise NotFound("Incident not found")
        self._ensure_pending(incident)
        return object_id, incident

    async def _claim(self, object_id, decision: dict, session=None) -> dict:
        """Write the decision only if the incident is still pending."""
        try:
            updated = await db.Incidents.find_one_and_update(
                {"_id": object_id, "approval_status": ApprovalStatus.PENDING_APPROVAL.value},
                {"$set": decision},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        except OperationFailure as e:
            if session is not None and e.has_error_label("TransientTransactionError"):
                # Write conflict with a concurrent decision; the caller re-reads and retries
                raise
            logger.error("Error updating incident %s: %s", object_id, e)
            raise PersistenceError("Failed to update incident") from e
        except Exception as e:
            logger.error("Error updating incident %s: %s", object_id, e)
            raise PersistenceError("Failed to update incident") from e

        if updated is None:
            # Another request decided it between our read and our write
            current = await db.Incidents.find_one({"_id": object_id})
            if current is None:
                raise NotFound("Incident not found")
            self._ensure_pending(current)
            raise PersistenceError("Failed to update incident")
        return updated

    async def _release_claim(self, incident: dict, approver_id: str) -> None:
        """Put an approved incident back to pending after its case insert failed"""
        try:
            await db.Incidents.update_one(
                {
                    "_id": incident["_id"],
                    "approval_status": ApprovalStatus.APPROVED.value,
                    "approved_by": approver_id,
                },
                {"$set": {
                    "approval_status": ApprovalStatus.PENDING_APPROVAL.value,
                    "approved_by": None,
                    "approved_at": None,
                    "updated_at": incident.get("updated_at"),
                }}
            )
        except Exception as e:
            logger.critical(
                "Incident %s is approved without a case and could not be reverted: %s",
                incident["_id"], e
            )

    @staticmethod
    def _build_case(
        incident: dict,
        approver_id: str,
        approver_name: Optional[str],
        notes: Optional[str],
        now: datetime,
    ) -> dict:
        case_notes = None
        if notes and notes.strip():
            case_notes = status_codec.encode(None, status_codec.payload_from({
                "clinical_notes": notes.strip(),
                "approved_by": approver_name or approver_id,
                "approved_at": now,
            }))

        return {
            "user_id": incident["user_id"],
            "team_id": incident["team_id"],
            "exception_type": case_type_for(incident.get("incident_type")).value,
            "reason": f"Approved incident: {incident.get('description', '')}",
            "start_date": incident["incident_date"],
            "end_date": None,
            "is_active": True,
            "created_by": approver_id,
            "notes": case_notes,
            "incident_id": str(incident["_id"]),
            "clinician_id": None,
            "return_to_work_duty_type": None,
            "return_to_work_date": None,
            "created_at": now,
            "updated_at": now,
        }

    async def _open_case(self, object_id, decision: dict, case_doc: dict, approver_id: str) -> dict:
        """Claim the incident and insert its case as one unit; sets the case _id"""
        async with transaction() as session:
            incident = await self._claim(object_id, decision, session=session)
            try:
                result = await db.WorkerExceptions.insert_one(case_doc, session=session)
            except Exception as e:
                logger.error("Error creating case for incident %s: %s", object_id, e)
                if session is None:
                    await self._release_claim(incident, approver_id)
                if isinstance(e, OperationFailure) and e.has_error_label("TransientTransactionError"):
                    raise
                raise PersistenceError("Failed to create case") from e
            case_doc["_id"] = result.inserted_id
        return incident

    async def approve(
        self,
        incident_id: str,
        approver_id: str,
        notes: Optional[str] = None,
        approver_name: Optional[str] = None,
    ) -> ApprovalResponse:
        """
        Approve a pending incident and open its case.

        Raises:
            ValidationError: If the id is malformed or the notes are not a
                valid clinical note. Nothing is written.
            NotFound: If the incident does not exist.
            AlreadyProcessed: If the incident was already approved or rejected,
                including by a concurrent transaction that won the write.
            PersistenceError: If the incident update or case insert fails.
                The incident is left pending and no case exists.
        """
        for attempt in range(1, _CLAIM_ATTEMPTS + 1):
            object_id, pending = await self._load_pending(incident_id)

            now = datetime.now(dt_timezone.utc)
            # Built before anything is written so a bad payload aborts cleanly
            case_doc = self._build_case(pending, approver_id, approver_name, notes, now)
            decision = {
                "approval_status": ApprovalStatus.APPROVED.value,
                "approved_by": approver_id,
                "approved_at": now,
                "updated_at": now,
            }

            try:
                incident = await self._open_case(object_id, decision, case_doc, approver_id)
                break
            except OperationFailure as e:
                if not e.has_error_label("TransientTransactionError"):
                    logger.error("Error approving incident %s: %s", incident_id, e)
                    raise PersistenceError("Failed to approve incident") from e
                logger.warning(
                    "Incident %s is being decided concurrently (attempt %d): %s",
                    incident_id, attempt, e
                )
                await asyncio.sleep(0.05 * attempt)
        else:
            # Still held by another transaction; report it once it has been decided
            await self._load_pending(incident_id)
            raise PersistenceError("Incident is being decided concurrently, please retry")

        logger.info(
            "Incident %s approved by %s, case %s opened",
            incident_id, approver_id, case_doc["_id"]
        )

        warnings = []
        try:
            await ScheduleService.deactivate_worker_schedules(incident["user_id"])
        except PartialSideEffectFailure as e:
            # Approval and case stay authoritative; schedules are reconciled later
            logger.error(
                "Schedules of worker %s not deactivated after approving incident %s: %s",
                incident["user_id"], incident_id, e
            )
            warnings.append("Worker schedules could not be deactivated")

        return ApprovalResponse(
            incident=incident_to_response(incident),
            case=case_to_response(case_doc),
            warnings=warnings,
        )

    async def reject(self, incident_id: str, rejector_id: str, reason: str) -> IncidentResponse:
        """
        Reject a pending incident. No case is created.

        Raises:
            ValidationError: If the reason is empty or the id is malformed.
            NotFound: If the incident does not exist.
            AlreadyProcessed: If the incident was already approved or rejected.
            PersistenceError: If the update fails.
        """
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")

        object_id, _ = await self._load_pending(incident_id)

        now = datetime.now(dt_timezone.utc)
        incident = await self._claim(object_id, {
            "approval_status": ApprovalStatus.REJECTED.value,
            "approved_by": rejector_id,
            "approved_at": now,
            "rejection_reason": reason.strip(),
            "updated_at": now,
        })

        logger.info("Incident %s rejected by %s", incident_id, rejector_id)
        return incident_to_response(incident)

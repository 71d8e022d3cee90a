"""
IncidentIntakeService - worker-submitted incident reports.

An incident is created in ``pending_approval`` and waits for its team
leader. No case and no notification is ever created here; the router sends
notifications once the incident is stored.
"""
import json
import logging
from datetime import date, datetime, timezone as dt_timezone
from typing import Any, List, Optional

from bson import ObjectId

from ..database import db, convert_id
from ..exceptions import NotFound, PersistenceError, ValidationError
from ..models.incidents import ApprovalStatus, IncidentResponse, IncidentSeverity, IncidentType
from . import lifecycle_policy
from .case_service import CaseService, day_to_datetime, ensure_utc_aware

logger = logging.getLogger(__name__)


def parse_incident_id(incident_id: str) -> ObjectId:
    try:
        return ObjectId(incident_id)
    except Exception:
        raise ValidationError("Invalid incident ID format")


def incident_to_response(document: dict) -> IncidentResponse:
    """Convert an Incidents document into an IncidentResponse"""
    data = convert_id(dict(document))
    data["incident_date"] = lifecycle_policy.to_day(data.get("incident_date"))
    for field in ("approved_at", "created_at", "updated_at"):
        data[field] = ensure_utc_aware(data.get(field))
    return IncidentResponse(**data)


class IncidentIntakeService:
    """Creates and reads incidents awaiting approval."""

    async def submit(
        self,
        worker_id: str,
        team_id: str,
        incident_type: str,
        incident_date: Optional[date],
        description: str,
        severity: str,
        photo_url: Optional[str] = None,
        ai_analysis: Optional[Any] = None,
        location: Optional[str] = None,
    ) -> IncidentResponse:
        """
        Create an incident in pending_approval state.

        Raises:
            ValidationError: Missing or invalid fields, or the worker already
                has a currently active case or a report pending approval.
            PersistenceError: If the store rejects the insert.
        """
        missing = [
            name for name, value in (
                ("worker_id", worker_id),
                ("team_id", team_id),
                ("incident_type", incident_type),
                ("incident_date", incident_date),
                ("description", description.strip() if isinstance(description, str) else description),
                ("severity", severity),
            )
            if not value
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        try:
            incident_type = IncidentType(incident_type)
        except ValueError:
            raise ValidationError(
                f"incident_type must be one of: {', '.join(t.value for t in IncidentType)}"
            )
        try:
            severity = IncidentSeverity(severity)
        except ValueError:
            raise ValidationError(
                f"severity must be one of: {', '.join(s.value for s in IncidentSeverity)}"
            )
        incident_day = lifecycle_policy.to_day(incident_date)

        if await CaseService().worker_has_active_case(worker_id):
            raise ValidationError(
                "You already have an active incident report. Please wait until your "
                "current case is closed before submitting a new report."
            )
        if await db.Incidents.find_one({
            "user_id": worker_id,
            "approval_status": ApprovalStatus.PENDING_APPROVAL.value,
        }):
            raise ValidationError(
                "You already have an incident report waiting for team leader approval."
            )

        full_description = description.strip()
        if location and location.strip():
            full_description = f"{full_description}\n\nLocation: {location.strip()}"

        if isinstance(ai_analysis, (dict, list)):
            ai_analysis = json.dumps(ai_analysis)

        current_time = datetime.now(dt_timezone.utc)
        incident_doc = {
            "user_id": worker_id,
            "team_id": team_id,
            "incident_type": incident_type.value,
            "incident_date": day_to_datetime(incident_day),
            "description": full_description,
            "severity": severity.value,
            "photo_url": photo_url or None,
            "ai_analysis_result": ai_analysis or None,
            "approval_status": ApprovalStatus.PENDING_APPROVAL.value,
            "approved_by": None,
            "approved_at": None,
            "rejection_reason": None,
            "created_at": current_time,
            "updated_at": current_time,
        }

        try:
            result = await db.Incidents.insert_one(incident_doc)
        except Exception as e:
            logger.error("Error creating incident for worker %s: %s", worker_id, e)
            raise PersistenceError("Failed to create incident report") from e

        incident_doc["_id"] = result.inserted_id
        logger.info(
            "Incident %s submitted by worker %s (type=%s, severity=%s)",
            result.inserted_id, worker_id, incident_type.value, severity.value
        )
        return incident_to_response(incident_doc)

    async def get_incident(self, incident_id: str) -> IncidentResponse:
        """
        Raises:
            ValidationError: If the id is malformed.
            NotFound: If no incident has this id.
        """
        incident = await db.Incidents.find_one({"_id": parse_incident_id(incident_id)})
        if not incident:
            raise NotFound("Incident not found")
        return incident_to_response(incident)

    async def list_pending_for_team(self, team_id: str) -> List[IncidentResponse]:
        """Pending incidents of a team, most recent incident date first"""
        incidents = []
        cursor = db.Incidents.find({
            "team_id": team_id,
            "approval_status": ApprovalStatus.PENDING_APPROVAL.value
        }).sort([("incident_date", -1), ("created_at", -1)])
        async for incident in cursor:
            incidents.append(incident_to_response(incident))
        return incidents

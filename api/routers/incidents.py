from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from bson.objectid import ObjectId
import logging

from ..models.incidents import (
    IncidentCreate,
    IncidentApprove,
    IncidentReject,
    IncidentResponse,
    RejectionResponse,
)
from ..models.cases import ApprovalResponse
from ..models.auth import APIUser
from ..database import db
from ..exceptions import NotFound, PermissionDenied, ValidationError
from ..auth.permissions import PermissionChecker
from ..services.approval_service import ApprovalService
from ..services.incident_service import IncidentIntakeService
from ..services.notification_service import NotificationService

router = APIRouter()
logger = logging.getLogger(__name__)


async def _get_team(team_id: str) -> Optional[dict]:
    try:
        return await db.Teams.find_one({"_id": ObjectId(team_id)})
    except Exception as e:
        logger.error(f"Error fetching team {team_id}: {e}")
        return None


async def _get_user_name(user_id: str) -> str:
    try:
        user = await db.Users.find_one({"_id": ObjectId(user_id)})
    except Exception:
        user = None
    if not user:
        return "Unknown Worker"
    if user.get("full_name"):
        return user["full_name"]
    if user.get("first_name") and user.get("last_name"):
        return f"{user['first_name']} {user['last_name']}"
    return user.get("email") or "Unknown Worker"


def _ensure_team_access(team: Optional[dict], current_user: APIUser) -> None:
    """Team leaders and supervisors only act on the teams they run"""
    if current_user.role == "admin":
        return
    if not team:
        raise NotFound("Team not found")
    if current_user.role == "team_leader" and team.get("team_leader_id") != current_user.id:
        raise PermissionDenied("You are not the team leader of this team")
    if current_user.role == "supervisor" and team.get("supervisor_id") != current_user.id:
        raise PermissionDenied("You are not the supervisor of this team")


@router.post("/incidents/", response_model=IncidentResponse, status_code=status.HTTP_201_CREATED)
async def create_incident(
    incident_data: IncidentCreate,
    current_user: APIUser = Depends(PermissionChecker("submit_incidents"))
):
    """
    Report an incident. The worker's team is taken from their profile and
    the incident waits for the team leader's approval.
    """
    if not current_user.team_id:
        raise ValidationError("You must belong to a team to report an incident")

    team = await _get_team(current_user.team_id)
    if not team:
        raise NotFound("Team not found")

    incident = await IncidentIntakeService().submit(
        worker_id=current_user.id,
        team_id=current_user.team_id,
        incident_type=incident_data.incident_type,
        incident_date=incident_data.incident_date,
        description=incident_data.description,
        severity=incident_data.severity,
        photo_url=incident_data.photo_url,
        ai_analysis=incident_data.ai_analysis,
        location=incident_data.location,
    )

    notifications = NotificationService()
    if team.get("team_leader_id"):
        await notifications.safe_send(
            notifications.notify_team_leader_pending_incident(
                team_leader_id=team["team_leader_id"],
                incident_id=incident.id,
                worker_id=current_user.id,
                worker_name=current_user.display_name,
                worker_email=current_user.email,
                incident_type=incident.incident_type,
                severity=incident.severity,
                location=incident_data.location,
            ),
            f"approval needed for incident {incident.id}",
        )
    await notifications.safe_send(
        notifications.notify_worker_report_submitted(current_user.id, incident.id, incident.incident_type),
        f"submission confirmation for incident {incident.id}",
    )

    return incident


@router.get("/incidents/pending", response_model=List[IncidentResponse])
async def list_pending_incidents(
    team_id: Optional[str] = Query(None, description="Team to list; defaults to the team you lead"),
    current_user: APIUser = Depends(PermissionChecker("view_incidents"))
):
    """
    List incidents awaiting approval for a team, most recent first.
    """
    if not team_id:
        if current_user.role != "team_leader":
            raise ValidationError("team_id is required")
        team = await db.Teams.find_one({"team_leader_id": current_user.id})
        if not team:
            raise NotFound("You do not lead any team")
        team_id = str(team["_id"])
    else:
        team = await _get_team(team_id)
        if current_user.role in ("team_leader", "supervisor"):
            _ensure_team_access(team, current_user)

    return await IncidentIntakeService().list_pending_for_team(team_id)


@router.get("/incidents/{incident_id}", response_model=IncidentResponse)
async def get_incident(
    incident_id: str,
    current_user: APIUser = Depends(PermissionChecker("view_incidents"))
):
    """
    Get a single incident by ID.
    """
    incident = await IncidentIntakeService().get_incident(incident_id)
    if current_user.role in ("team_leader", "supervisor"):
        _ensure_team_access(await _get_team(incident.team_id), current_user)
    return incident


@router.post("/incidents/{incident_id}/approve", response_model=ApprovalResponse)
async def approve_incident(
    incident_id: str,
    approval: IncidentApprove,
    current_user: APIUser = Depends(PermissionChecker("approve_incidents"))
):
    """
    Approve a pending incident and open its case.

    Returns 409 if the incident was already approved or rejected.
    Schedule and notification failures come back as warnings.
    """
    incident = await IncidentIntakeService().get_incident(incident_id)
    team = await _get_team(incident.team_id)
    _ensure_team_access(team, current_user)

    result = await ApprovalService().approve(
        incident_id,
        approver_id=current_user.id,
        notes=approval.notes,
        approver_name=current_user.display_name,
    )

    notifications = NotificationService()
    warning = await notifications.safe_send(
        notifications.notify_incident_approved(
            worker_id=result.incident.user_id,
            supervisor_id=team.get("supervisor_id") if team else None,
            incident_id=result.incident.id,
            case_id=result.case.id,
            worker_name=await _get_user_name(result.incident.user_id),
            approver_name=current_user.display_name,
        ),
        f"approval of incident {incident_id}",
    )
    if warning:
        result.warnings.append(warning)

    return result


@router.post("/incidents/{incident_id}/reject", response_model=RejectionResponse)
async def reject_incident(
    incident_id: str,
    rejection: IncidentReject,
    current_user: APIUser = Depends(PermissionChecker("approve_incidents"))
):
    """
    Reject a pending incident with a reason. No case is created.

    Returns 409 if the incident was already approved or rejected.
    """
    if not rejection.reason.strip():
        raise ValidationError("Rejection reason is required")

    incident = await IncidentIntakeService().get_incident(incident_id)
    _ensure_team_access(await _get_team(incident.team_id), current_user)

    rejected = await ApprovalService().reject(incident_id, current_user.id, rejection.reason)

    notifications = NotificationService()
    warnings = []
    warning = await notifications.safe_send(
        notifications.notify_incident_rejected(
            worker_id=rejected.user_id,
            incident_id=rejected.id,
            rejection_reason=rejected.rejection_reason,
            rejector_name=current_user.display_name,
        ),
        f"rejection of incident {incident_id}",
    )
    if warning:
        warnings.append(warning)

    return RejectionResponse(incident=rejected, warnings=warnings)

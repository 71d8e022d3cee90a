from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from bson.objectid import ObjectId
import logging

from ..models.cases import (
    CaseStatusUpdate,
    CaseSummary,
    CaseView,
    ClinicalNotesUpdate,
)
from ..models.auth import APIUser
from ..database import db
from ..exceptions import NotFound, PermissionDenied
from ..auth.auth_handler import get_current_active_user
from ..auth.permissions import PermissionChecker, has_permission
from ..services.case_service import CaseService

router = APIRouter()
logger = logging.getLogger(__name__)


async def _ensure_team_member_access(team_id: str, current_user: APIUser) -> None:
    if current_user.role not in ("team_leader", "supervisor"):
        return
    try:
        team = await db.Teams.find_one({"_id": ObjectId(team_id)})
    except Exception:
        team = None
    if not team:
        raise NotFound("Team not found")
    if current_user.id not in (team.get("team_leader_id"), team.get("supervisor_id")):
        raise PermissionDenied("You do not have access to this team's cases")


@router.get("/cases/my", response_model=List[CaseView])
async def list_my_cases(current_user: APIUser = Depends(PermissionChecker("view_own_cases"))):
    """
    The current worker's own cases, newest first.
    """
    return await CaseService().list_worker_cases(current_user.id)


@router.get("/cases/team/{team_id}", response_model=List[CaseView])
async def list_team_cases(
    team_id: str,
    current_user: APIUser = Depends(PermissionChecker("view_team_cases"))
):
    await _ensure_team_member_access(team_id, current_user)
    return await CaseService().list_team_cases(team_id)


@router.get("/cases/whs/queue", response_model=List[CaseView])
async def list_whs_queue(current_user: APIUser = Depends(PermissionChecker("view_whs_queue"))):
    """
    Currently active cases that still need WHS attention.
    """
    return await CaseService().list_whs_queue()


@router.get("/cases/clinician/assigned", response_model=List[CaseView])
async def list_assigned_cases(current_user: APIUser = Depends(PermissionChecker("view_assigned_cases"))):
    return await CaseService().list_clinician_cases(current_user.id)


@router.get("/cases/summary", response_model=CaseSummary)
async def get_case_summary(
    team_id: Optional[str] = Query(None, description="Restrict the summary to one team"),
    current_user: APIUser = Depends(PermissionChecker("view_case_summary"))
):
    """
    Case counts per lifecycle status, for the executive and WHS dashboards.
    """
    return await CaseService().summarize_cases(team_id)


@router.get("/cases/{case_id}", response_model=CaseView)
async def get_case(case_id: str, current_user: APIUser = Depends(get_current_active_user)):
    """
    A single case. Workers can only see their own; team roles only their team's.
    """
    service = CaseService()
    case = await service.get_case(case_id)

    if has_permission(current_user, "view_cases"):
        return service.project_case(case)

    if has_permission(current_user, "view_team_cases"):
        await _ensure_team_member_access(case.team_id, current_user)
    elif has_permission(current_user, "view_own_cases"):
        if case.user_id != current_user.id:
            raise NotFound("Case not found")
    else:
        raise PermissionDenied("You do not have access to cases")

    return service.project_case(case)


@router.patch("/cases/{case_id}/status", response_model=CaseView)
async def update_case_status(
    case_id: str,
    update: CaseStatusUpdate,
    current_user: APIUser = Depends(PermissionChecker("update_case_status"))
):
    """
    Move a case through its lifecycle (clinician or WHS).

    Clinicians can only update cases assigned to them.
    """
    service = CaseService()
    case = await service.get_case(case_id)
    if current_user.role == "clinician" and case.clinician_id != current_user.id:
        raise NotFound("Case not found or not assigned to you")

    updated = await service.update_case_status(
        case_id,
        update.status,
        actor_id=current_user.id,
        actor_name=current_user.display_name,
        return_to_work_duty_type=update.return_to_work_duty_type,
        return_to_work_date=update.return_to_work_date,
    )
    return service.project_case(updated)


@router.patch("/cases/{case_id}/clinical-notes", response_model=CaseView)
async def update_clinical_notes(
    case_id: str,
    update: ClinicalNotesUpdate,
    current_user: APIUser = Depends(PermissionChecker("update_clinical_notes"))
):
    service = CaseService()
    case = await service.get_case(case_id)
    if current_user.role == "clinician" and case.clinician_id != current_user.id:
        raise NotFound("Case not found or not assigned to you")

    updated = await service.update_clinical_notes(case_id, update.clinical_notes, current_user.id)
    return service.project_case(updated)

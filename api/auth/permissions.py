from fastapi import Depends, HTTPException, status

from ..models.auth import APIUser
from .auth_handler import get_current_active_user

# Role -> permissions. Team-scoped checks (own team, own cases) are done
# in the routers after the role check passes.
ROLE_PERMISSIONS = {
    "worker": {
        "submit_incidents",
        "view_own_cases",
    },
    "team_leader": {
        "view_incidents",
        "approve_incidents",
        "view_team_cases",
    },
    "supervisor": {
        "view_incidents",
        "view_team_cases",
    },
    "clinician": {
        "view_cases",
        "view_assigned_cases",
        "update_case_status",
        "update_clinical_notes",
    },
    "whs_control_center": {
        "view_incidents",
        "view_cases",
        "view_whs_queue",
        "update_case_status",
        "view_case_summary",
    },
    "executive": {
        "view_cases",
        "view_case_summary",
    },
    "admin": {
        "submit_incidents",
        "view_incidents",
        "approve_incidents",
        "view_cases",
        "view_own_cases",
        "view_team_cases",
        "view_whs_queue",
        "view_assigned_cases",
        "update_case_status",
        "update_clinical_notes",
        "view_case_summary",
    },
}


def has_permission(user: APIUser, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(user.role, set())


class PermissionChecker:
    """FastAPI dependency that requires the current user to hold a permission"""

    def __init__(self, permission: str):
        self.permission = permission

    async def __call__(self, current_user: APIUser = Depends(get_current_active_user)) -> APIUser:
        if not has_permission(current_user, self.permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{self.permission}' required"
            )
        return current_user

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import date, datetime
from enum import Enum

from .incidents import IncidentResponse


class CaseStatus(str, Enum):
    """Clinical/administrative lifecycle of a case, in order of progression"""
    NEW = "new"
    TRIAGED = "triaged"
    ASSESSED = "assessed"
    IN_REHAB = "in_rehab"
    RETURN_TO_WORK = "return_to_work"
    CLOSED = "closed"


class CaseType(str, Enum):
    """Worker exception type of a case"""
    ACCIDENT = "accident"
    INJURY = "injury"
    MEDICAL_LEAVE = "medical_leave"
    TRANSFER = "transfer"
    OTHER = "other"


class DutyType(str, Enum):
    MODIFIED = "modified"
    FULL = "full"


class DisplayStatus(str, Enum):
    """Labels shown by every role-specific case view"""
    NEW_CASE = "NEW CASE"
    IN_PROGRESS = "IN PROGRESS"
    TRIAGED = "TRIAGED"
    ASSESSED = "ASSESSED"
    IN_REHAB = "IN REHAB"
    RETURN_TO_WORK = "RETURN TO WORK"
    CLOSED = "CLOSED"


class LifecyclePayload(BaseModel):
    """
    Status and audit data embedded in a case's notes field.

    Every field is optional; the status codec only writes fields that were
    explicitly set.
    """
    case_status: Optional[CaseStatus] = None
    case_status_updated_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    whs_approved_by: Optional[str] = None
    whs_approved_at: Optional[datetime] = None
    clinical_notes: Optional[str] = Field(None, max_length=10000)
    clinical_notes_updated_at: Optional[datetime] = None
    return_to_work_duty_type: Optional[DutyType] = None
    return_to_work_date: Optional[date] = None


class CaseResponse(BaseModel):
    """Stored case (worker exception) record"""
    id: str
    user_id: str
    team_id: str
    exception_type: str
    reason: str
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    created_by: str
    notes: Optional[str] = None
    clinician_id: Optional[str] = None
    return_to_work_duty_type: Optional[str] = None
    return_to_work_date: Optional[date] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class CaseView(BaseModel):
    """Case projection rendered by role views"""
    id: str
    case_number: str
    user_id: str
    team_id: str
    exception_type: str
    reason: str
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    case_status: CaseStatus
    display_status: DisplayStatus
    is_currently_active: bool
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    clinical_notes: Optional[str] = None
    clinical_notes_updated_at: Optional[datetime] = None
    legacy_notes: Optional[str] = None  # free text written before the payload
    return_to_work_duty_type: Optional[str] = None
    return_to_work_date: Optional[date] = None
    created_at: datetime


class CaseStatusUpdate(BaseModel):
    status: CaseStatus
    return_to_work_duty_type: Optional[DutyType] = None
    return_to_work_date: Optional[date] = None


class ClinicalNotesUpdate(BaseModel):
    clinical_notes: str = Field(..., min_length=1, max_length=10000)


class CaseSummary(BaseModel):
    """Case counts per lifecycle status"""
    total: int = 0
    active: int = 0
    completed: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)


class ApprovalResponse(BaseModel):
    incident: IncidentResponse
    case: CaseResponse
    warnings: List[str] = Field(default_factory=list)

from pydantic import BaseModel, Field
from typing import Any, List, Optional
from datetime import date, datetime
from enum import Enum


class IncidentType(str, Enum):
    """Incident category reported by the worker"""
    INCIDENT = "incident"
    NEAR_MISS = "near_miss"
    INJURY = "injury"
    ILLNESS = "illness"
    PROPERTY_DAMAGE = "property_damage"
    OTHER = "other"


class IncidentSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ApprovalStatus(str, Enum):
    """Approval workflow status. Pending exactly once, then terminal."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class IncidentCreate(BaseModel):
    """Schema for a worker-submitted incident report"""
    incident_type: IncidentType
    incident_date: date
    description: str = Field(..., min_length=1, max_length=2000)
    severity: IncidentSeverity
    location: Optional[str] = Field(None, max_length=200)
    photo_url: Optional[str] = Field(None, max_length=1000)
    ai_analysis: Optional[Any] = None


class IncidentApprove(BaseModel):
    """Schema for approving an incident (team leader)"""
    notes: Optional[str] = Field(None, max_length=10000)


class IncidentReject(BaseModel):
    """Schema for rejecting an incident (team leader)"""
    reason: str = Field(..., max_length=2000)


class IncidentResponse(BaseModel):
    """Incident response model (converts _id to id)"""
    id: str
    user_id: str
    team_id: str
    incident_type: str
    incident_date: date
    description: str
    severity: str
    photo_url: Optional[str] = None
    ai_analysis_result: Optional[str] = None
    approval_status: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class RejectionResponse(BaseModel):
    incident: IncidentResponse
    warnings: List[str] = Field(default_factory=list)

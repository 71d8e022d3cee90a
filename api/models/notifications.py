from pydantic import BaseModel, Field
from typing import Any, Dict
from datetime import datetime
from enum import Enum


class NotificationType(str, Enum):
    INCIDENT_APPROVAL_NEEDED = "incident_approval_needed"
    INCIDENT_APPROVED = "incident_approved"
    INCIDENT_REJECTED = "incident_rejected"
    SYSTEM = "system"


class NotificationInDB(BaseModel):
    """In-app notification as stored in MongoDB"""
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime

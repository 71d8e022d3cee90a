from pydantic import BaseModel, EmailStr
from typing import Optional, ClassVar, Literal
from datetime import datetime
from bson import ObjectId

Role = Literal[
    "worker",
    "team_leader",
    "supervisor",
    "clinician",
    "whs_control_center",
    "executive",
    "admin",
]


class APIUserBase(BaseModel):
    username: str
    email: EmailStr
    is_active: bool = True
    role: Role = "worker"  # Default role is worker
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    team_id: Optional[str] = None  # Team the user belongs to (workers)


class APIUserCreate(APIUserBase):
    password: str


class APIUser(APIUserBase):
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config: ClassVar[dict] = {
        "populate_by_name": True,
        "arbitrary_types_allowed": True,
        "json_encoders": {ObjectId: str}
    }

    @property
    def display_name(self) -> str:
        """Full name, then first + last, then email"""
        if self.full_name:
            return self.full_name
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.email


class APIUserInDB(APIUser):
    hashed_password: str


class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    username: Optional[str] = None

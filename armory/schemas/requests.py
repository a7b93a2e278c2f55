import uuid
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .equipment import ItemCondition, APPROVAL_CONDITIONS


class RequestType(str, Enum):
    issue = "Issue"
    return_ = "Return"
    maintenance = "Maintenance"
    lost = "Lost"


class RequestStatus(str, Enum):
    pending = "Pending"
    approved = "Approved"
    rejected = "Rejected"
    completed = "Completed"
    cancelled = "Cancelled"


class Priority(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"
    urgent = "Urgent"


# Officer payloads
class IssueRequestCreate(BaseModel):
    pool_id: uuid.UUID
    reason: str = Field(min_length=1, max_length=1000)
    priority: Optional[Priority] = None


class ItemRequestCreate(BaseModel):
    """Return / Maintenance / Lost request for an item currently held by the caller"""
    request_type: RequestType
    pool_id: uuid.UUID
    unique_id: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=1000)
    condition: Optional[ItemCondition] = None
    priority: Optional[Priority] = None

    # Lost reports
    fir_number: Optional[str] = None
    fir_date: Optional[datetime] = None
    police_station: Optional[str] = None
    date_of_loss: Optional[datetime] = None
    place_of_loss: Optional[str] = None
    duty_at_time_of_loss: Optional[str] = None
    remedial_action_taken: Optional[str] = None
    witnesses: Optional[str] = None

    @field_validator("request_type")
    @classmethod
    def _not_issue(cls, v: RequestType) -> RequestType:
        if v == RequestType.issue:
            raise ValueError("Issue requests are raised against a pool, not an item")
        return v


# Admin payloads
class ApprovePayload(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)
    condition: Optional[ItemCondition] = None

    @field_validator("condition")
    @classmethod
    def _returnable(cls, v: Optional[ItemCondition]) -> Optional[ItemCondition]:
        if v is not None and v not in APPROVAL_CONDITIONS:
            raise ValueError("Valid condition is required")
        return v


class RejectPayload(BaseModel):
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Rejection reason is required")
        return v.strip()


# Responses
class StatusChangeResponse(BaseModel):
    status: str
    changed_by: Optional[uuid.UUID] = None
    changed_date: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class RequestResponse(BaseModel):
    id: uuid.UUID
    request_id: str
    requested_by: uuid.UUID
    pool_id: Optional[uuid.UUID] = None
    pool_name: Optional[str] = None
    assigned_unique_id: Optional[str] = None
    assigned_from_pool: bool = False
    request_type: str
    status: str
    priority: str
    requested_date: datetime
    expected_return_date: Optional[datetime] = None
    reason: str
    condition: Optional[str] = None
    fir_number: Optional[str] = None
    fir_date: Optional[datetime] = None
    police_station: Optional[str] = None
    date_of_loss: Optional[datetime] = None
    place_of_loss: Optional[str] = None
    duty_at_time_of_loss: Optional[str] = None
    remedial_action_taken: Optional[str] = None
    witnesses: Optional[str] = None
    admin_notes: Optional[str] = None
    processed_by: Optional[uuid.UUID] = None
    processed_date: Optional[datetime] = None
    approved_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    status_history: List[StatusChangeResponse] = []

    class Config:
        from_attributes = True

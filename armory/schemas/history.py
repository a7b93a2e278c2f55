import uuid
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel


class HistoryStatus(str, Enum):
    pending_return = "Pending Return"
    completed = "Completed"


class HistoryEntryResponse(BaseModel):
    record_id: str
    request_id: Optional[str] = None
    request_date: Optional[datetime] = None
    equipment_pool_id: Optional[uuid.UUID] = None
    equipment_pool_name: Optional[str] = None
    item_unique_id: str
    category: Optional[str] = None
    issued_date: datetime
    issued_by: Optional[uuid.UUID] = None
    purpose: Optional[str] = None
    condition_at_issue: Optional[str] = None
    expected_return_date: Optional[datetime] = None
    returned_date: Optional[datetime] = None
    returned_to: Optional[uuid.UUID] = None
    condition_at_return: Optional[str] = None
    remarks: Optional[str] = None
    status: str

    class Config:
        from_attributes = True


class OfficerHistoryResponse(BaseModel):
    user_id: uuid.UUID
    officer_id: str
    officer_name: Optional[str] = None
    designation: Optional[str] = None
    posting: Optional[str] = None
    entries: List[HistoryEntryResponse] = []


class ReconcileReport(BaseModel):
    closed: int = 0
    opened: int = 0
    checked_entries: int = 0
    checked_items: int = 0

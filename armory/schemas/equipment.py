import uuid
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Enums
class EquipmentCategory(str, Enum):
    firearm = "Firearm"
    ammunition = "Ammunition"
    protective_gear = "Protective Gear"
    communication_device = "Communication Device"
    vehicle = "Vehicle"
    tactical_equipment = "Tactical Equipment"
    less_lethal_weapon = "Less-Lethal Weapon"
    forensic_equipment = "Forensic Equipment"
    medical_supplies = "Medical Supplies"
    office_equipment = "Office Equipment"
    other = "Other"


class Designation(str, Enum):
    dgp = "Director General of Police (DGP)"
    sp = "Superintendent of Police (SP)"
    dcp = "Deputy Commissioner of Police (DCP)"
    dsp = "Deputy Superintendent of Police (DSP)"
    pi = "Police Inspector (PI)"
    si = "Sub-Inspector (SI)"
    psi = "Police Sub-Inspector (PSI)"
    hc = "Head Constable (HC)"
    pc = "Police Constable (PC)"


class ItemStatus(str, Enum):
    available = "Available"
    issued = "Issued"
    maintenance = "Maintenance"
    damaged = "Damaged"
    lost = "Lost"
    retired = "Retired"


class ItemCondition(str, Enum):
    excellent = "Excellent"
    good = "Good"
    fair = "Fair"
    poor = "Poor"
    out_of_service = "Out of Service"
    lost = "Lost"


class MaintenanceType(str, Enum):
    routine = "Routine"
    repair = "Repair"
    inspection = "Inspection"
    upgrade = "Upgrade"
    cleaning = "Cleaning"


class LossStatus(str, Enum):
    under_investigation = "Under Investigation"
    closed = "Closed"


# Conditions accepted on each admin edge
RETURN_CONDITIONS = (ItemCondition.excellent, ItemCondition.good, ItemCondition.fair, ItemCondition.poor)
APPROVAL_CONDITIONS = RETURN_CONDITIONS + (ItemCondition.out_of_service,)
REPAIRED_CONDITIONS = (ItemCondition.excellent, ItemCondition.good)


# Pool Schemas
class PoolCreate(BaseModel):
    pool_name: str = Field(min_length=1, max_length=100)
    category: EquipmentCategory
    sub_category: Optional[str] = None
    model: str = Field(min_length=1)
    manufacturer: Optional[str] = None
    total_quantity: int = Field(ge=1)
    prefix: str = Field(min_length=2, max_length=5)
    authorized_designations: List[Designation] = Field(min_length=1)
    location: str = Field(min_length=1)
    purchase_date: Optional[datetime] = None
    total_cost: Optional[float] = Field(default=None, ge=0)
    supplier: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("pool_name", "model", "location", "prefix")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class PoolUpdate(BaseModel):
    pool_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    location: Optional[str] = Field(default=None, min_length=1)
    authorized_designations: Optional[List[Designation]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class IssuePayload(BaseModel):
    user_id: uuid.UUID
    purpose: Optional[str] = None


class ReturnPayload(BaseModel):
    unique_id: str = Field(min_length=1)
    condition: ItemCondition
    remarks: Optional[str] = None

    @field_validator("condition")
    @classmethod
    def _returnable(cls, v: ItemCondition) -> ItemCondition:
        if v not in RETURN_CONDITIONS:
            raise ValueError("Valid condition is required")
        return v


class CompleteMaintenancePayload(BaseModel):
    pool_id: uuid.UUID
    unique_id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    condition: ItemCondition
    cost: Optional[float] = Field(default=None, ge=0)

    @field_validator("condition")
    @classmethod
    def _repaired(cls, v: ItemCondition) -> ItemCondition:
        if v not in REPAIRED_CONDITIONS:
            raise ValueError("Final condition must be Excellent or Good")
        return v


class MarkRecoveredPayload(BaseModel):
    pool_id: uuid.UUID
    unique_id: str = Field(min_length=1)
    notes: str = Field(min_length=1)
    condition: ItemCondition

    @field_validator("condition")
    @classmethod
    def _returnable(cls, v: ItemCondition) -> ItemCondition:
        if v not in RETURN_CONDITIONS:
            raise ValueError("Valid condition is required")
        return v


class WriteOffPayload(BaseModel):
    pool_id: uuid.UUID
    unique_id: str = Field(min_length=1)
    notes: str = Field(min_length=1)


class RetireItemPayload(BaseModel):
    pool_id: uuid.UUID
    unique_id: str = Field(min_length=1)
    notes: str = Field(min_length=1)


# Response Schemas
class UsageRecordResponse(BaseModel):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    officer_id: str
    officer_name: str
    designation: str
    issued_date: datetime
    returned_date: Optional[datetime] = None
    days_used: Optional[int] = None
    purpose: Optional[str] = None
    condition_at_issue: Optional[str] = None
    condition_at_return: Optional[str] = None
    remarks: Optional[str] = None
    issued_by: Optional[uuid.UUID] = None
    returned_to: Optional[uuid.UUID] = None

    class Config:
        from_attributes = True


class MaintenanceRecordResponse(BaseModel):
    id: uuid.UUID
    reported_date: datetime
    reported_by: Optional[uuid.UUID] = None
    reason: str
    maintenance_type: str
    fixed_date: Optional[datetime] = None
    action: Optional[str] = None
    fixed_by: Optional[uuid.UUID] = None
    cost: Optional[float] = None

    class Config:
        from_attributes = True


class LossRecordResponse(BaseModel):
    id: uuid.UUID
    reported_date: datetime
    reported_by: Optional[uuid.UUID] = None
    fir_number: str
    fir_date: Optional[datetime] = None
    police_station: Optional[str] = None
    date_of_loss: Optional[datetime] = None
    place_of_loss: Optional[str] = None
    duty_at_time_of_loss: Optional[str] = None
    description: Optional[str] = None
    remedial_action_taken: Optional[str] = None
    witnesses: Optional[str] = None
    status: str

    class Config:
        from_attributes = True


class CustodyResponse(BaseModel):
    user_id: Optional[uuid.UUID] = None
    officer_id: Optional[str] = None
    officer_name: Optional[str] = None
    designation: Optional[str] = None
    issued_date: Optional[datetime] = None
    expected_return_date: Optional[datetime] = None
    purpose: Optional[str] = None


class ItemResponse(BaseModel):
    unique_id: str
    status: str
    condition: str
    location: Optional[str] = None
    currently_issued_to: Optional[CustodyResponse] = None

    class Config:
        from_attributes = True


class PoolSummaryResponse(BaseModel):
    id: uuid.UUID
    pool_name: str
    category: str
    sub_category: Optional[str] = None
    model: str
    manufacturer: Optional[str] = None
    location: str
    authorized_designations: List[str] = []
    total_quantity: int
    available_count: int
    issued_count: int
    maintenance_count: int
    damaged_count: int
    lost_count: int
    retired_count: int
    utilization_rate: float
    created_at: datetime

    class Config:
        from_attributes = True


class PoolResponse(PoolSummaryResponse):
    purchase_date: Optional[datetime] = None
    total_cost: Optional[float] = None
    supplier: Optional[str] = None
    notes: Optional[str] = None
    added_by: Optional[uuid.UUID] = None
    last_modified_by: Optional[uuid.UUID] = None
    items: List[ItemResponse] = []

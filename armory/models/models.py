import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    officer_id: Mapped[str] = mapped_column(String(18), unique=True, nullable=False, index=True)  # e.g. INDGP20250001
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    rank: Mapped[Optional[str]] = mapped_column(String(50))
    designation: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), default="officer", index=True)  # admin|officer
    police_station: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# =====================
# Equipment pool aggregate
# =====================

class EquipmentPool(Base):
    """A named group of interchangeable items of one model; owns its items and their histories"""
    __tablename__ = "equipment_pools"

    id: Mapped[uuid.UUID] = uuid_pk()
    pool_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    sub_category: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    manufacturer: Mapped[Optional[str]] = mapped_column(String(255))
    authorized_designations: Mapped[list] = mapped_column(JSON, default=list)  # designation labels allowed to request

    # Derived counters, recomputed from items[].status before every save
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_count: Mapped[int] = mapped_column(Integer, default=0)
    issued_count: Mapped[int] = mapped_column(Integer, default=0)
    maintenance_count: Mapped[int] = mapped_column(Integer, default=0)
    damaged_count: Mapped[int] = mapped_column(Integer, default=0)
    lost_count: Mapped[int] = mapped_column(Integer, default=0)
    retired_count: Mapped[int] = mapped_column(Integer, default=0)

    purchase_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    total_cost: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    supplier: Mapped[Optional[str]] = mapped_column(String(255))
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    warranty_info: Mapped[Optional[dict]] = mapped_column(JSON)  # {warranty_period, warranty_expiry, warranty_provider}
    notes: Mapped[Optional[str]] = mapped_column(String(1000))
    added_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    last_modified_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    items = relationship(
        "PoolItem",
        back_populates="pool",
        cascade="all, delete-orphan",
        order_by="PoolItem.position",
        collection_class=ordering_list("position"),
    )

    @property
    def utilization_rate(self) -> float:
        if not self.total_quantity:
            return 0.0
        return round(self.issued_count / self.total_quantity * 100, 2)


class PoolItem(Base):
    """One physical, individually tracked unit within a pool"""
    __tablename__ = "pool_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    pool_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_pools.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # e.g. GLK-001
    status: Mapped[str] = mapped_column(String(20), default="Available", index=True)  # Available|Issued|Maintenance|Damaged|Lost|Retired
    condition: Mapped[str] = mapped_column(String(20), default="Good")  # Excellent|Good|Fair|Poor|Out of Service|Lost
    location: Mapped[Optional[str]] = mapped_column(String(255))

    # Current custody; populated iff status == Issued
    issued_to_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    issued_to_officer_id: Mapped[Optional[str]] = mapped_column(String(18))
    issued_to_name: Mapped[Optional[str]] = mapped_column(String(100))
    issued_to_designation: Mapped[Optional[str]] = mapped_column(String(100))
    issued_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expected_return_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    issue_purpose: Mapped[Optional[str]] = mapped_column(Text)

    last_inspection_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    next_inspection_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    pool = relationship("EquipmentPool", back_populates="items")
    usage_history = relationship(
        "ItemUsageRecord",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="ItemUsageRecord.seq",
        collection_class=ordering_list("seq"),
    )
    maintenance_history = relationship(
        "ItemMaintenanceRecord",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="ItemMaintenanceRecord.seq",
        collection_class=ordering_list("seq"),
    )
    lost_history = relationship(
        "ItemLossRecord",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="ItemLossRecord.seq",
        collection_class=ordering_list("seq"),
    )

    @property
    def currently_issued_to(self) -> Optional[dict]:
        if self.issued_to_user_id is None:
            return None
        return {
            "user_id": self.issued_to_user_id,
            "officer_id": self.issued_to_officer_id,
            "officer_name": self.issued_to_name,
            "designation": self.issued_to_designation,
            "issued_date": self.issued_date,
            "expected_return_date": self.expected_return_date,
            "purpose": self.issue_purpose,
        }

    __table_args__ = (
        UniqueConstraint("pool_id", "unique_id", name="uq_pool_item_unique_id"),
        Index("idx_pool_item_status", "pool_id", "status"),
    )


class ItemUsageRecord(Base):
    """One custody episode of an item; returned_date is unset while the episode is open"""
    __tablename__ = "item_usage_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("pool_items.id", ondelete="CASCADE"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    officer_id: Mapped[str] = mapped_column(String(18), nullable=False)
    officer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    designation: Mapped[str] = mapped_column(String(100), nullable=False)
    issued_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    returned_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    days_used: Mapped[Optional[int]] = mapped_column(Integer)
    purpose: Mapped[Optional[str]] = mapped_column(Text)
    condition_at_issue: Mapped[Optional[str]] = mapped_column(String(20))
    condition_at_return: Mapped[Optional[str]] = mapped_column(String(20))
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    issued_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    returned_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))

    item = relationship("PoolItem", back_populates="usage_history")


class ItemMaintenanceRecord(Base):
    """Repair episode; open while fixed_by is unset"""
    __tablename__ = "item_maintenance_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("pool_items.id", ondelete="CASCADE"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reported_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reported_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    maintenance_type: Mapped[str] = mapped_column(String(20), default="Repair")  # Routine|Repair|Inspection|Upgrade|Cleaning
    fixed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    action: Mapped[Optional[str]] = mapped_column(Text)
    fixed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    cost: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    next_maintenance_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    item = relationship("PoolItem", back_populates="maintenance_history")


class ItemLossRecord(Base):
    """Loss report backed by an FIR"""
    __tablename__ = "item_loss_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("pool_items.id", ondelete="CASCADE"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reported_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reported_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    fir_number: Mapped[str] = mapped_column(String(100), nullable=False)
    fir_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    police_station: Mapped[Optional[str]] = mapped_column(String(255))
    date_of_loss: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    place_of_loss: Mapped[Optional[str]] = mapped_column(String(255))
    duty_at_time_of_loss: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)  # incident details, later suffixed with recovery/final notes
    remedial_action_taken: Mapped[Optional[str]] = mapped_column(Text)
    witnesses: Mapped[Optional[str]] = mapped_column(Text)
    document_url: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(30), default="Under Investigation")  # Under Investigation|Closed

    item = relationship("PoolItem", back_populates="lost_history")


# =====================
# Request workflow
# =====================

class EquipmentRequest(Base):
    """An officer's Issue/Return/Maintenance/Lost ask and its approval lifecycle"""
    __tablename__ = "equipment_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)  # REQ-YYYYMMDD-NNNN
    requested_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    pool_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_pools.id", ondelete="CASCADE"), index=True)
    pool_name: Mapped[Optional[str]] = mapped_column(String(100))
    assigned_unique_id: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    assigned_from_pool: Mapped[bool] = mapped_column(Boolean, default=False)

    request_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # Issue|Return|Maintenance|Lost
    status: Mapped[str] = mapped_column(String(20), default="Pending", index=True)  # Pending|Approved|Rejected|Completed|Cancelled
    priority: Mapped[str] = mapped_column(String(10), default="Medium")  # Low|Medium|High|Urgent
    requested_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    expected_return_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    condition: Mapped[Optional[str]] = mapped_column(String(20))

    # Lost reports
    fir_number: Mapped[Optional[str]] = mapped_column(String(100))
    fir_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    police_station: Mapped[Optional[str]] = mapped_column(String(255))
    date_of_loss: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    place_of_loss: Mapped[Optional[str]] = mapped_column(String(255))
    duty_at_time_of_loss: Mapped[Optional[str]] = mapped_column(String(255))
    remedial_action_taken: Mapped[Optional[str]] = mapped_column(Text)
    witnesses: Mapped[Optional[str]] = mapped_column(Text)

    admin_notes: Mapped[Optional[str]] = mapped_column(String(500))
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    processed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    requester = relationship("User", foreign_keys=[requested_by])
    processor = relationship("User", foreign_keys=[processed_by])
    pool = relationship("EquipmentPool")
    status_history = relationship(
        "RequestStatusChange",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestStatusChange.seq",
        collection_class=ordering_list("seq"),
    )

    __table_args__ = (
        Index("idx_request_requester_status", "requested_by", "status"),
        Index("idx_request_type_status", "request_type", "status"),
    )


class RequestStatusChange(Base):
    __tablename__ = "request_status_changes"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_pk: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    changed_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    request = relationship("EquipmentRequest", back_populates="status_history")


# =====================
# Officer history ledger
# =====================

class OfficerHistory(Base):
    """One consolidated custody log per officer"""
    __tablename__ = "officer_histories"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    officer_id: Mapped[str] = mapped_column(String(18), unique=True, nullable=False)
    officer_name: Mapped[Optional[str]] = mapped_column(String(100))
    designation: Mapped[Optional[str]] = mapped_column(String(100))
    posting: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    entries = relationship(
        "OfficerHistoryEntry",
        back_populates="history",
        cascade="all, delete-orphan",
        order_by="OfficerHistoryEntry.seq",
        collection_class=ordering_list("seq"),
    )


class OfficerHistoryEntry(Base):
    __tablename__ = "officer_history_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    history_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("officer_histories.id", ondelete="CASCADE"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    record_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)  # UH-YYYYMMDD-NNNN
    request_id: Mapped[Optional[str]] = mapped_column(String(20))  # REQ-YYYYMMDD-NNNN
    request_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    equipment_pool_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_pools.id", ondelete="CASCADE"), index=True)
    equipment_pool_name: Mapped[Optional[str]] = mapped_column(String(100))
    item_unique_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(50))
    issued_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    issued_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    purpose: Mapped[Optional[str]] = mapped_column(Text)
    condition_at_issue: Mapped[Optional[str]] = mapped_column(String(20))
    expected_return_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    returned_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    returned_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    condition_at_return: Mapped[Optional[str]] = mapped_column(String(20))
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="Pending Return", index=True)  # Pending Return|Completed

    history = relationship("OfficerHistory", back_populates="entries")

    __table_args__ = (
        Index("idx_history_entry_item_status", "item_unique_id", "status"),
    )


class AuditLog(Base):
    """Append-only audit log for custody actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # pool|item|request
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # APPROVE|REJECT|CANCEL|COMPLETE_MAINTENANCE|WRITE_OFF|RECOVER|RETIRE|DELETE
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # admin|officer|system
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|script|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)  # {request_id, unique_id, pool_id, ...}
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'timestamp_utc'),
    )

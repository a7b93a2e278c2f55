"""
Equipment pool aggregate.

A pool owns its items and every item's usage, maintenance and loss history.
Item state only changes through the functions in this module; each one
checks all of its preconditions before touching the item, so a failed call
leaves the pool exactly as it was. Counters are recomputed from
``items[].status`` on every mutation, never adjusted piecemeal.

Item lifecycle::

    Available -> Issued -> Available | Maintenance      (return + triage)
    Issued -> Maintenance                               (maintenance request)
    Issued -> Maintenance[lost] -> Lost                 (loss report, write-off)
    Maintenance[lost] -> Available | Maintenance        (recovery)
    Maintenance -> Available                            (repair completed)
    Available | Maintenance -> Retired
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from slugify import slugify
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.models import (
    EquipmentPool,
    EquipmentRequest,
    ItemLossRecord,
    ItemMaintenanceRecord,
    ItemUsageRecord,
    OfficerHistoryEntry,
    PoolItem,
    User,
)
from ..schemas.equipment import ItemCondition, ItemStatus, LossStatus, MaintenanceType
from .errors import CustodyError, NotFoundError, ValidationFailed
from .time_rules import days_used, ensure_utc, utcnow


logger = structlog.get_logger(__name__)

# Preference order for automatic selection; Poor / Out of Service items are never picked
SELECTION_TIERS = (ItemCondition.excellent.value, ItemCondition.good.value, ItemCondition.fair.value)
TRIAGE_CONDITIONS = {ItemCondition.poor.value, ItemCondition.out_of_service.value}
LOSS_MARKER = "ITEM REPORTED LOST"
DEFAULT_PURPOSE = "Regular Duty"

COUNTER_FIELDS = {
    ItemStatus.available.value: "available_count",
    ItemStatus.issued.value: "issued_count",
    ItemStatus.maintenance.value: "maintenance_count",
    ItemStatus.damaged.value: "damaged_count",
    ItemStatus.lost.value: "lost_count",
    ItemStatus.retired.value: "retired_count",
}


@dataclass
class LossReport:
    fir_number: Optional[str]
    reason: str
    fir_date: Optional[datetime] = None
    police_station: Optional[str] = None
    date_of_loss: Optional[datetime] = None
    place_of_loss: Optional[str] = None
    duty_at_time_of_loss: Optional[str] = None
    remedial_action_taken: Optional[str] = None
    witnesses: Optional[str] = None


# ---------- LOOKUPS ----------
def update_counts(pool: EquipmentPool) -> None:
    tallies = {field: 0 for field in COUNTER_FIELDS.values()}
    for item in pool.items:
        field = COUNTER_FIELDS.get(item.status)
        if field:
            tallies[field] += 1
    for field, value in tallies.items():
        setattr(pool, field, value)


def find_item(pool: EquipmentPool, unique_id: str) -> Optional[PoolItem]:
    for item in pool.items:
        if item.unique_id == unique_id:
            return item
    return None


def require_item(pool: EquipmentPool, unique_id: str) -> PoolItem:
    item = find_item(pool, unique_id)
    if item is None:
        raise NotFoundError("Item not found in pool")
    return item


def get_next_available_item(pool: EquipmentPool) -> Optional[PoolItem]:
    """First Available item of the best condition tier, or None."""
    available = [item for item in pool.items if item.status == ItemStatus.available.value]
    for tier in SELECTION_TIERS:
        for item in available:
            if item.condition == tier:
                return item
    return None


def open_usage_record(item: PoolItem) -> Optional[ItemUsageRecord]:
    for record in reversed(item.usage_history):
        if record.returned_date is None:
            return record
    return None


def open_maintenance_record(item: PoolItem, reason_prefix: Optional[str] = None) -> Optional[ItemMaintenanceRecord]:
    """Oldest unfixed maintenance entry, optionally restricted to a reason prefix."""
    for record in item.maintenance_history:
        if record.fixed_by is not None:
            continue
        if reason_prefix and not (record.reason or "").startswith(reason_prefix):
            continue
        return record
    return None


def open_loss_record(item: PoolItem) -> Optional[ItemLossRecord]:
    for record in item.lost_history:
        if record.status == LossStatus.under_investigation.value:
            return record
    return None


def is_issued_to(item: PoolItem, user_id: uuid.UUID) -> bool:
    return item.status == ItemStatus.issued.value and item.issued_to_user_id == user_id


def check_invariants(pool: EquipmentPool) -> List[str]:
    """Describe every broken aggregate invariant; empty when the pool is consistent."""
    problems = []
    if pool.total_quantity != len(pool.items):
        problems.append(f"total_quantity {pool.total_quantity} != {len(pool.items)} items")
    for status, field in COUNTER_FIELDS.items():
        actual = sum(1 for item in pool.items if item.status == status)
        if getattr(pool, field) != actual:
            problems.append(f"{field} {getattr(pool, field)} != {actual}")
    for item in pool.items:
        issued = item.status == ItemStatus.issued.value
        if issued != (item.currently_issued_to is not None):
            problems.append(f"{item.unique_id}: custody does not match status {item.status}")
        open_count = sum(1 for r in item.usage_history if r.returned_date is None)
        if open_count > 1:
            problems.append(f"{item.unique_id}: {open_count} open usage records")
    return problems


# ---------- INTERNAL MUTATORS ----------
def _clear_custody(item: PoolItem) -> None:
    item.issued_to_user_id = None
    item.issued_to_officer_id = None
    item.issued_to_name = None
    item.issued_to_designation = None
    item.issued_date = None
    item.expected_return_date = None
    item.issue_purpose = None


def _close_usage(
    item: PoolItem,
    *,
    condition: str,
    remarks: str,
    returned_to: Optional[uuid.UUID],
    now: datetime,
) -> Optional[ItemUsageRecord]:
    record = open_usage_record(item)
    if record is None:
        return None
    record.returned_date = now
    record.condition_at_return = condition
    record.remarks = remarks
    record.returned_to = returned_to
    record.days_used = days_used(record.issued_date, now)
    return record


def _touch(pool: EquipmentPool, now: datetime) -> None:
    update_counts(pool)
    pool.updated_at = now


# ---------- POOL CREATION ----------
def normalize_prefix(prefix: str) -> str:
    cleaned = slugify(prefix or "", separator="", lowercase=False).upper()
    if not 2 <= len(cleaned) <= 5:
        raise ValidationFailed(
            "Validation errors",
            [{"field": "prefix", "msg": "Prefix must be 2-5 letters or digits"}],
        )
    return cleaned


def build_pool(
    *,
    pool_name: str,
    category: str,
    model: str,
    total_quantity: int,
    prefix: str,
    authorized_designations: List[str],
    location: str,
    added_by: Optional[uuid.UUID],
    sub_category: Optional[str] = None,
    manufacturer: Optional[str] = None,
    purchase_date: Optional[datetime] = None,
    total_cost: Optional[float] = None,
    supplier: Optional[str] = None,
    notes: Optional[str] = None,
) -> EquipmentPool:
    """Materialize a pool with ``PREFIX-001..N`` items, all Available and Excellent."""
    if total_quantity < 1:
        raise ValidationFailed(
            "Validation errors",
            [{"field": "total_quantity", "msg": "Total quantity must be at least 1"}],
        )
    if not authorized_designations:
        raise ValidationFailed(
            "Validation errors",
            [{"field": "authorized_designations", "msg": "At least one authorized designation is required"}],
        )
    prefix = normalize_prefix(prefix)
    pool = EquipmentPool(
        pool_name=pool_name,
        category=category,
        sub_category=sub_category,
        model=model,
        manufacturer=manufacturer,
        total_quantity=total_quantity,
        authorized_designations=list(authorized_designations),
        location=location,
        purchase_date=purchase_date,
        total_cost=total_cost,
        supplier=supplier,
        notes=notes,
        added_by=added_by,
    )
    for n in range(1, total_quantity + 1):
        pool.items.append(
            PoolItem(
                unique_id=f"{prefix}-{n:03d}",
                status=ItemStatus.available.value,
                condition=ItemCondition.excellent.value,
                location=location,
            )
        )
    update_counts(pool)
    return pool


# ---------- ITEM STATE MACHINE ----------
def issue_item(
    pool: EquipmentPool,
    officer: User,
    purpose: Optional[str],
    issued_by: Optional[uuid.UUID],
    *,
    expected_return_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> PoolItem:
    item = get_next_available_item(pool)
    if item is None:
        raise CustodyError("No available items in pool")
    if officer.designation not in (pool.authorized_designations or []):
        raise CustodyError(f"This equipment is not authorized for {officer.designation}")

    now = now or utcnow()
    purpose = purpose or DEFAULT_PURPOSE
    item.status = ItemStatus.issued.value
    item.issued_to_user_id = officer.id
    item.issued_to_officer_id = officer.officer_id
    item.issued_to_name = officer.full_name
    item.issued_to_designation = officer.designation
    item.issued_date = now
    item.expected_return_date = expected_return_date
    item.issue_purpose = purpose
    item.usage_history.append(
        ItemUsageRecord(
            user_id=officer.id,
            officer_id=officer.officer_id,
            officer_name=officer.full_name,
            designation=officer.designation,
            issued_date=now,
            purpose=purpose,
            condition_at_issue=item.condition,
            issued_by=issued_by,
        )
    )
    _touch(pool, now)
    logger.info("item_issued", pool_id=str(pool.id), unique_id=item.unique_id, officer_id=officer.officer_id)
    return item


def return_item(
    pool: EquipmentPool,
    unique_id: str,
    condition: Optional[str],
    remarks: Optional[str],
    returned_to: Optional[uuid.UUID],
    *,
    now: Optional[datetime] = None,
) -> PoolItem:
    item = require_item(pool, unique_id)
    if item.status != ItemStatus.issued.value:
        raise CustodyError("Item is not currently issued")

    now = now or utcnow()
    final_condition = condition or item.condition
    record = _close_usage(item, condition=final_condition, remarks=remarks or "", returned_to=returned_to, now=now)
    _clear_custody(item)
    item.condition = final_condition

    # Triage: Poor / Out of Service returns go straight to the repair queue
    if final_condition in TRIAGE_CONDITIONS:
        item.status = ItemStatus.maintenance.value
        item.maintenance_history.append(
            ItemMaintenanceRecord(
                reported_date=now,
                reported_by=record.user_id if record else None,
                reason=f"Item returned in {final_condition} condition. Reason: {remarks or 'N/A'}.",
                maintenance_type=MaintenanceType.inspection.value,
                action="Awaiting repair...",
            )
        )
    else:
        item.status = ItemStatus.available.value

    _touch(pool, now)
    logger.info("item_returned", pool_id=str(pool.id), unique_id=unique_id, condition=final_condition, status=item.status)
    return item


def send_to_maintenance(
    pool: EquipmentPool,
    unique_id: str,
    *,
    reason: str,
    condition: Optional[str],
    reported_by: Optional[uuid.UUID],
    returned_to: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> PoolItem:
    """Approved maintenance request: the item goes to repair whatever condition is reported."""
    item = require_item(pool, unique_id)
    if item.status != ItemStatus.issued.value:
        raise CustodyError("Item is not currently issued")

    now = now or utcnow()
    condition = condition or ItemCondition.poor.value
    _close_usage(item, condition=condition, remarks=f"Maintenance: {reason}", returned_to=returned_to, now=now)
    _clear_custody(item)
    item.status = ItemStatus.maintenance.value
    item.condition = condition
    item.maintenance_history.append(
        ItemMaintenanceRecord(
            reported_date=now,
            reported_by=reported_by,
            reason=reason,
            maintenance_type=MaintenanceType.repair.value,
            action="Awaiting repair...",
        )
    )
    _touch(pool, now)
    logger.info("item_sent_to_maintenance", pool_id=str(pool.id), unique_id=unique_id)
    return item


def report_lost(
    pool: EquipmentPool,
    unique_id: str,
    report: LossReport,
    *,
    reported_by: Optional[uuid.UUID],
    returned_to: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> PoolItem:
    """Approved loss report: park the item in Maintenance until it is written off or recovered."""
    item = require_item(pool, unique_id)
    if item.status != ItemStatus.issued.value:
        raise CustodyError("Item is not currently issued")

    now = now or utcnow()
    fir = report.fir_number or "N/A"
    _close_usage(
        item,
        condition=ItemCondition.poor.value,
        remarks=loss_remarks(report),
        returned_to=returned_to,
        now=now,
    )
    _clear_custody(item)
    item.status = ItemStatus.maintenance.value
    item.condition = ItemCondition.out_of_service.value
    item.lost_history.append(
        ItemLossRecord(
            reported_date=now,
            reported_by=reported_by,
            fir_number=fir,
            fir_date=report.fir_date,
            police_station=report.police_station,
            date_of_loss=report.date_of_loss,
            place_of_loss=report.place_of_loss,
            duty_at_time_of_loss=report.duty_at_time_of_loss,
            description=report.reason,
            remedial_action_taken=report.remedial_action_taken,
            witnesses=report.witnesses,
            status=LossStatus.under_investigation.value,
        )
    )
    item.maintenance_history.append(
        ItemMaintenanceRecord(
            reported_date=now,
            reported_by=reported_by,
            reason=f"{LOSS_MARKER}. FIR: {fir}.",
            maintenance_type=MaintenanceType.repair.value,
            action="Awaiting investigation...",
        )
    )
    _touch(pool, now)
    logger.warning("item_reported_lost", pool_id=str(pool.id), unique_id=unique_id, fir_number=fir)
    return item


def loss_remarks(report: LossReport) -> str:
    return f"Reported Lost. FIR: {report.fir_number or 'N/A'}. {report.reason}"


def complete_maintenance(
    pool: EquipmentPool,
    unique_id: str,
    *,
    description: str,
    condition: str,
    cost: Optional[float],
    fixed_by: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> PoolItem:
    item = require_item(pool, unique_id)
    if item.status != ItemStatus.maintenance.value:
        raise CustodyError("Item is not currently under maintenance")
    if open_loss_record(item) is not None:
        raise CustodyError("Item is a lost item under investigation; write it off or mark it recovered")

    now = now or utcnow()
    record = open_maintenance_record(item)
    if record is not None:
        record.fixed_date = now
        record.action = description
        record.fixed_by = fixed_by
        record.cost = cost
    else:
        item.maintenance_history.append(
            ItemMaintenanceRecord(
                reported_date=now,
                reported_by=fixed_by,
                reason="Repair completed (no initial report found)",
                maintenance_type=MaintenanceType.repair.value,
                fixed_date=now,
                action=description,
                fixed_by=fixed_by,
                cost=cost,
            )
        )
    item.status = ItemStatus.available.value
    item.condition = condition
    _touch(pool, now)
    logger.info("maintenance_completed", pool_id=str(pool.id), unique_id=unique_id, condition=condition)
    return item


def write_off_lost(
    pool: EquipmentPool,
    unique_id: str,
    *,
    notes: str,
    admin_id: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> PoolItem:
    item = require_item(pool, unique_id)
    if item.status == ItemStatus.lost.value:
        raise CustodyError("This item has already been written off.")
    record = open_maintenance_record(item, reason_prefix=LOSS_MARKER)
    if record is None:
        raise CustodyError("Item is not a lost item awaiting write-off.")

    now = now or utcnow()
    item.status = ItemStatus.lost.value
    item.condition = ItemCondition.out_of_service.value
    record.fixed_date = now
    record.fixed_by = admin_id
    record.action = f"ITEM WRITTEN OFF. Status: Lost. Final Report: {notes}"
    loss = open_loss_record(item)
    if loss is not None:
        loss.status = LossStatus.closed.value
        loss.description = (loss.description or "") + f" | FINAL REPORT: {notes}"
    _touch(pool, now)
    logger.warning("item_written_off", pool_id=str(pool.id), unique_id=unique_id)
    return item


def mark_recovered(
    pool: EquipmentPool,
    unique_id: str,
    *,
    notes: str,
    condition: str,
    admin_id: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> PoolItem:
    item = require_item(pool, unique_id)
    loss = open_loss_record(item)
    if item.status != ItemStatus.maintenance.value or loss is None:
        raise CustodyError("Item is not in maintenance (lost) status")

    now = now or utcnow()
    item.condition = condition
    # Recovered in poor shape: stays in the repair queue
    if condition == ItemCondition.poor.value:
        item.status = ItemStatus.maintenance.value
    else:
        item.status = ItemStatus.available.value

    record = open_maintenance_record(item, reason_prefix=LOSS_MARKER)
    if record is not None:
        record.fixed_date = now
        record.fixed_by = admin_id
        record.action = f"ITEM RECOVERED. Status: {item.status}. Notes: {notes}"
    loss.status = LossStatus.closed.value
    loss.description = (loss.description or "") + f" | RECOVERY NOTES: {notes}"

    if item.status == ItemStatus.maintenance.value:
        item.maintenance_history.append(
            ItemMaintenanceRecord(
                reported_date=now,
                reported_by=admin_id,
                reason=f"Recovered in {condition} condition. Notes: {notes}",
                maintenance_type=MaintenanceType.repair.value,
                action="Awaiting repair...",
            )
        )
    _touch(pool, now)
    logger.info("item_recovered", pool_id=str(pool.id), unique_id=unique_id, status=item.status)
    return item


def retire_item(
    pool: EquipmentPool,
    unique_id: str,
    *,
    notes: str,
    admin_id: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> PoolItem:
    item = require_item(pool, unique_id)
    if item.status not in (ItemStatus.available.value, ItemStatus.maintenance.value):
        raise CustodyError(f"Cannot retire an item with status {item.status}")
    if open_loss_record(item) is not None:
        raise CustodyError("Item is a lost item under investigation; write it off or mark it recovered")

    now = now or utcnow()
    for record in item.maintenance_history:
        if record.fixed_by is None:
            record.fixed_date = now
            record.fixed_by = admin_id
            record.action = f"ITEM RETIRED. {notes}"
    item.status = ItemStatus.retired.value
    item.condition = ItemCondition.out_of_service.value
    _touch(pool, now)
    logger.info("item_retired", pool_id=str(pool.id), unique_id=unique_id)
    return item


# ---------- PERSISTENCE ----------
def get_pool(db: Session, pool_id: uuid.UUID) -> EquipmentPool:
    pool = db.query(EquipmentPool).filter(EquipmentPool.id == pool_id).first()
    if not pool:
        raise NotFoundError("Equipment pool not found")
    return pool


def save_pool(db: Session, pool: EquipmentPool) -> EquipmentPool:
    update_counts(pool)
    db.add(pool)
    db.commit()
    db.refresh(pool)
    return pool


def update_pool_metadata(
    pool: EquipmentPool,
    *,
    modified_by: Optional[uuid.UUID],
    pool_name: Optional[str] = None,
    location: Optional[str] = None,
    authorized_designations: Optional[List[str]] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EquipmentPool:
    """Metadata only; items and counters are untouched."""
    if authorized_designations is not None and not authorized_designations:
        raise ValidationFailed(
            "Validation errors",
            [{"field": "authorized_designations", "msg": "At least one authorized designation is required"}],
        )
    if pool_name is not None:
        pool.pool_name = pool_name
    if location is not None:
        pool.location = location
    if authorized_designations is not None:
        pool.authorized_designations = list(authorized_designations)
    if notes is not None:
        pool.notes = notes
    pool.last_modified_by = modified_by
    pool.updated_at = now or utcnow()
    return pool


def delete_pool(db: Session, pool: EquipmentPool) -> None:
    """Remove a pool with everything hanging off it; refused while any item is in custody."""
    issued = [item.unique_id for item in pool.items if item.status == ItemStatus.issued.value]
    if issued:
        raise CustodyError(f"Cannot delete a pool with issued items: {', '.join(issued)}")

    db.query(OfficerHistoryEntry).filter(OfficerHistoryEntry.equipment_pool_id == pool.id).delete(synchronize_session=False)
    for request in db.query(EquipmentRequest).filter(EquipmentRequest.pool_id == pool.id).all():
        db.delete(request)
    db.delete(pool)
    logger.info("pool_deleted", pool_id=str(pool.id), pool_name=pool.pool_name)


# ---------- LISTINGS ----------
def list_pools(
    db: Session,
    category: Optional[str] = None,
    designation: Optional[str] = None,
    search: Optional[str] = None,
) -> List[EquipmentPool]:
    query = db.query(EquipmentPool)
    if category:
        query = query.filter(EquipmentPool.category == category)
    if search:
        like = f"%{search}%"
        query = query.filter(
            or_(
                EquipmentPool.pool_name.ilike(like),
                EquipmentPool.model.ilike(like),
                EquipmentPool.manufacturer.ilike(like),
            )
        )
    pools = query.order_by(EquipmentPool.created_at.desc()).all()
    # JSON column; filtered here to stay portable across SQLite and PostgreSQL
    if designation:
        pools = [p for p in pools if designation in (p.authorized_designations or [])]
    return pools


def items_issued_to(db: Session, user_id: uuid.UUID) -> List[PoolItem]:
    return (
        db.query(PoolItem)
        .filter(PoolItem.issued_to_user_id == user_id, PoolItem.status == ItemStatus.issued.value)
        .order_by(PoolItem.issued_date.desc())
        .all()
    )


def currently_issued_items(db: Session) -> List[PoolItem]:
    return (
        db.query(PoolItem)
        .filter(PoolItem.status == ItemStatus.issued.value)
        .order_by(PoolItem.issued_date.desc())
        .all()
    )


def maintenance_items(db: Session) -> List[PoolItem]:
    """Items in the repair/investigation queue, latest report first."""
    items = db.query(PoolItem).filter(PoolItem.status == ItemStatus.maintenance.value).all()

    def latest_report(item: PoolItem):
        dates = [ensure_utc(r.reported_date) for r in item.maintenance_history]
        return max(dates) if dates else datetime.min.replace(tzinfo=timezone.utc)

    return sorted(items, key=latest_report, reverse=True)


def item_history(item: PoolItem) -> dict:
    """Usage, maintenance and loss records, newest first."""
    return {
        "usage_history": sorted(item.usage_history, key=lambda r: ensure_utc(r.issued_date), reverse=True),
        "maintenance_history": sorted(item.maintenance_history, key=lambda r: ensure_utc(r.reported_date), reverse=True),
        "lost_history": sorted(item.lost_history, key=lambda r: ensure_utc(r.reported_date), reverse=True),
    }

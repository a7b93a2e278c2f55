"""
Officer history ledger.

One history per officer, one entry per custody episode. Entries are opened
when an Issue request is approved and closed when the item comes back
(return, maintenance or loss). The ledger is written after the pool change
has been committed, so it can lag behind; ``reconcile`` repairs that.
"""
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..models.models import (
    EquipmentPool,
    EquipmentRequest,
    OfficerHistory,
    OfficerHistoryEntry,
    PoolItem,
    User,
)
from ..schemas.equipment import ItemStatus
from ..schemas.history import HistoryStatus
from ..schemas.requests import RequestStatus, RequestType
from .pool_service import open_usage_record
from .sequences import next_history_record_id
from .time_rules import ensure_utc, utcnow


logger = structlog.get_logger(__name__)


def get_or_create_history(db: Session, officer: User) -> OfficerHistory:
    history = db.query(OfficerHistory).filter(OfficerHistory.user_id == officer.id).first()
    if history is None:
        history = OfficerHistory(
            user_id=officer.id,
            officer_id=officer.officer_id,
            officer_name=officer.full_name,
            designation=officer.designation,
            posting=officer.police_station,
        )
        db.add(history)
    return history


def upsert_open_entry(
    db: Session,
    officer: User,
    *,
    pool: EquipmentPool,
    item: PoolItem,
    issued_date: datetime,
    issued_by: Optional[uuid.UUID],
    purpose: Optional[str],
    condition_at_issue: Optional[str],
    expected_return_date: Optional[datetime] = None,
    request_id: Optional[str] = None,
    request_date: Optional[datetime] = None,
) -> OfficerHistoryEntry:
    """Create the officer's history if needed and append a Pending Return entry."""
    history = get_or_create_history(db, officer)
    history.officer_name = officer.full_name
    history.designation = officer.designation
    history.updated_at = utcnow()

    entry = OfficerHistoryEntry(
        record_id=next_history_record_id(db, issued_date),
        request_id=request_id,
        request_date=request_date,
        equipment_pool_id=pool.id,
        equipment_pool_name=pool.pool_name,
        item_unique_id=item.unique_id,
        category=pool.category,
        issued_date=issued_date,
        issued_by=issued_by,
        purpose=purpose,
        condition_at_issue=condition_at_issue,
        expected_return_date=expected_return_date,
        status=HistoryStatus.pending_return.value,
    )
    history.entries.append(entry)
    # Next record id is read back from the table
    db.flush()
    return entry


def open_entries_for_item(db: Session, user_id: uuid.UUID, item_unique_id: str) -> List[OfficerHistoryEntry]:
    return (
        db.query(OfficerHistoryEntry)
        .join(OfficerHistory, OfficerHistoryEntry.history_id == OfficerHistory.id)
        .filter(
            OfficerHistory.user_id == user_id,
            OfficerHistoryEntry.item_unique_id == item_unique_id,
            OfficerHistoryEntry.status == HistoryStatus.pending_return.value,
        )
        .all()
    )


def close_open_entry(
    db: Session,
    user_id: uuid.UUID,
    item_unique_id: str,
    *,
    returned_date: datetime,
    returned_to: Optional[uuid.UUID],
    condition_at_return: Optional[str],
    remarks: Optional[str],
) -> Optional[OfficerHistoryEntry]:
    """Complete the most recently issued Pending Return entry for this item."""
    entries = open_entries_for_item(db, user_id, item_unique_id)
    if not entries:
        logger.warning("no_open_history_entry", user_id=str(user_id), unique_id=item_unique_id)
        return None
    if len(entries) > 1:
        logger.warning(
            "duplicate_open_history_entries",
            user_id=str(user_id),
            unique_id=item_unique_id,
            count=len(entries),
        )
    entry = max(entries, key=lambda e: ensure_utc(e.issued_date))
    entry.returned_date = returned_date
    entry.returned_to = returned_to
    entry.condition_at_return = condition_at_return
    entry.remarks = remarks
    entry.status = HistoryStatus.completed.value
    return entry


def _sort_key(entry: OfficerHistoryEntry):
    return ensure_utc(entry.request_date or entry.issued_date)


def get_history(db: Session, user_id: uuid.UUID) -> Tuple[Optional[OfficerHistory], List[OfficerHistoryEntry]]:
    """The officer's history and its entries, newest request first."""
    history = db.query(OfficerHistory).filter(OfficerHistory.user_id == user_id).first()
    if history is None:
        return None, []
    return history, sorted(history.entries, key=_sort_key, reverse=True)


def _episode_usage(item: PoolItem, entry: OfficerHistoryEntry, holder_id: uuid.UUID):
    """Usage record of the custody episode an entry describes.

    The record issued at the entry's ``issued_date`` wins; otherwise the
    earliest record for the holder issued at or after it.
    """
    issued = ensure_utc(entry.issued_date)
    candidates = [r for r in item.usage_history if r.user_id == holder_id and r.issued_date is not None]
    for record in candidates:
        if ensure_utc(record.issued_date) == issued:
            return record
    later = [r for r in candidates if ensure_utc(r.issued_date) >= issued]
    if not later:
        return None
    return min(later, key=lambda r: ensure_utc(r.issued_date))


def reconcile(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Bring the ledger back in line with item custody.

    - Pending Return entries whose custody episode has ended are completed
      from that episode's usage record, even when the same officer holds the
      item again. Entries with no usage record left are closed at ``now``
      once the officer no longer holds the item.
    - Issued items without an open entry for their holder get one, built from
      the open usage record and the approved Issue request if it can be found.
    """
    now = now or utcnow()
    report = {"closed": 0, "opened": 0, "checked_entries": 0, "checked_items": 0}

    open_entries = (
        db.query(OfficerHistoryEntry)
        .filter(OfficerHistoryEntry.status == HistoryStatus.pending_return.value)
        .all()
    )
    for entry in open_entries:
        report["checked_entries"] += 1
        holder_id = entry.history.user_id
        item = (
            db.query(PoolItem)
            .filter(
                PoolItem.pool_id == entry.equipment_pool_id,
                PoolItem.unique_id == entry.item_unique_id,
            )
            .first()
        )
        held = item is not None and item.status == ItemStatus.issued.value and item.issued_to_user_id == holder_id
        usage = _episode_usage(item, entry, holder_id) if item is not None else None
        closed_usage = usage if usage is not None and usage.returned_date is not None else None
        if closed_usage is None and held:
            continue

        if closed_usage is not None:
            entry.returned_date = closed_usage.returned_date
            entry.returned_to = closed_usage.returned_to
            entry.condition_at_return = closed_usage.condition_at_return
            entry.remarks = closed_usage.remarks
        else:
            entry.returned_date = now
            entry.remarks = "Closed by reconciliation: item no longer held"
        entry.status = HistoryStatus.completed.value
        report["closed"] += 1
        logger.info("history_entry_reconciled", record_id=entry.record_id, unique_id=entry.item_unique_id)

    db.flush()

    issued_items = db.query(PoolItem).filter(PoolItem.status == ItemStatus.issued.value).all()
    for item in issued_items:
        report["checked_items"] += 1
        if item.issued_to_user_id is None:
            continue
        if open_entries_for_item(db, item.issued_to_user_id, item.unique_id):
            continue
        officer = db.query(User).filter(User.id == item.issued_to_user_id).first()
        if officer is None:
            continue
        usage = open_usage_record(item)
        request = (
            db.query(EquipmentRequest)
            .filter(
                EquipmentRequest.requested_by == officer.id,
                EquipmentRequest.pool_id == item.pool_id,
                EquipmentRequest.assigned_unique_id == item.unique_id,
                EquipmentRequest.request_type == RequestType.issue.value,
                EquipmentRequest.status == RequestStatus.approved.value,
            )
            .order_by(EquipmentRequest.approved_date.desc())
            .first()
        )
        upsert_open_entry(
            db,
            officer,
            pool=item.pool,
            item=item,
            issued_date=item.issued_date or now,
            issued_by=usage.issued_by if usage else None,
            purpose=item.issue_purpose,
            condition_at_issue=usage.condition_at_issue if usage else item.condition,
            expected_return_date=item.expected_return_date,
            request_id=request.request_id if request else None,
            request_date=request.requested_date if request else None,
        )
        report["opened"] += 1
        logger.info("history_entry_reopened", unique_id=item.unique_id, officer_id=officer.officer_id)

    db.commit()
    logger.info("history_reconciled", **report)
    return report

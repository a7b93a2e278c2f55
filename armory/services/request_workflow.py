"""
Request workflow: officers raise Issue/Return/Maintenance/Lost requests,
admins approve or reject them, officers may cancel their own pending ones.

Approval is a two-step write. The pool mutation and the request status are
committed together first; the officer history ledger is updated afterwards
and a failure there is logged, never surfaced. ``officer_history.reconcile``
repairs any drift.
"""
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import EquipmentRequest, RequestStatusChange, User
from ..schemas.equipment import ItemCondition
from ..schemas.requests import (
    IssueRequestCreate,
    ItemRequestCreate,
    Priority,
    RequestStatus,
    RequestType,
)
from . import officer_history, pool_service
from .audit import create_audit_log
from .errors import CustodyError, NotFoundError, PermissionDeniedError, ValidationFailed
from .sequences import next_request_id
from .time_rules import utcnow


logger = structlog.get_logger(__name__)

LOST_REQUIRED_FIELDS = (
    "fir_number",
    "fir_date",
    "date_of_loss",
    "place_of_loss",
    "duty_at_time_of_loss",
    "remedial_action_taken",
)


def _record_status(request: EquipmentRequest, status: str, changed_by: Optional[uuid.UUID], notes: Optional[str], now: datetime) -> None:
    request.status = status
    request.updated_at = now
    request.status_history.append(
        RequestStatusChange(status=status, changed_by=changed_by, changed_date=now, notes=notes)
    )


def get_request(db: Session, request_pk: uuid.UUID) -> EquipmentRequest:
    request = db.query(EquipmentRequest).filter(EquipmentRequest.id == request_pk).first()
    if not request:
        raise NotFoundError("Request not found")
    return request


def _has_pending_request(db: Session, user_id: uuid.UUID, pool_id: uuid.UUID, unique_id: Optional[str] = None) -> bool:
    query = db.query(EquipmentRequest).filter(
        EquipmentRequest.requested_by == user_id,
        EquipmentRequest.pool_id == pool_id,
        EquipmentRequest.status == RequestStatus.pending.value,
    )
    if unique_id is not None:
        query = query.filter(EquipmentRequest.assigned_unique_id == unique_id)
    return query.first() is not None


# ---------- CREATION ----------
def create_issue_request(db: Session, officer: User, payload: IssueRequestCreate, now: Optional[datetime] = None) -> EquipmentRequest:
    pool = pool_service.get_pool(db, payload.pool_id)
    pool_service.update_counts(pool)
    if pool.available_count <= 0:
        raise CustodyError("No items available in this pool")
    if officer.designation not in (pool.authorized_designations or []):
        raise PermissionDeniedError("Your designation is not authorized for this equipment")
    if _has_pending_request(db, officer.id, pool.id):
        raise CustodyError("You already have a pending request for this equipment")
    if any(pool_service.is_issued_to(item, officer.id) for item in pool.items):
        raise CustodyError("You already have an item issued from this pool")

    now = now or utcnow()
    request = EquipmentRequest(
        request_id=next_request_id(db, now),
        requested_by=officer.id,
        pool_id=pool.id,
        pool_name=pool.pool_name,
        request_type=RequestType.issue.value,
        priority=(payload.priority or Priority.medium).value,
        requested_date=now,
        expected_return_date=now + timedelta(days=settings.default_issue_days),
        reason=payload.reason,
        created_at=now,
    )
    _record_status(request, RequestStatus.pending.value, officer.id, "Request created", now)
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info("request_created", request_id=request.request_id, request_type=request.request_type, officer_id=officer.officer_id)
    return request


def _validate_item_request(payload: ItemRequestCreate) -> None:
    errors = []
    if payload.request_type == RequestType.lost:
        if payload.condition != ItemCondition.lost:
            errors.append({"field": "condition", "msg": "Condition must be 'Lost' for a lost report"})
        for field in LOST_REQUIRED_FIELDS:
            value = getattr(payload, field)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors.append({"field": field, "msg": "This field is required for a lost report"})
    elif payload.condition == ItemCondition.lost:
        errors.append({"field": "condition", "msg": "Use a Lost request to report a lost item"})
    if errors:
        raise ValidationFailed("Validation errors", errors)


def create_item_request(db: Session, officer: User, payload: ItemRequestCreate, now: Optional[datetime] = None) -> EquipmentRequest:
    _validate_item_request(payload)
    pool = pool_service.get_pool(db, payload.pool_id)
    item = pool_service.require_item(pool, payload.unique_id)
    if not pool_service.is_issued_to(item, officer.id):
        raise CustodyError("This item is not currently issued to you")
    if _has_pending_request(db, officer.id, pool.id, item.unique_id):
        raise CustodyError("A pending request already exists for this item")

    now = now or utcnow()
    is_lost = payload.request_type == RequestType.lost
    default_priority = Priority.urgent if is_lost else Priority.medium
    request = EquipmentRequest(
        request_id=next_request_id(db, now),
        requested_by=officer.id,
        pool_id=pool.id,
        pool_name=pool.pool_name,
        assigned_unique_id=item.unique_id,
        assigned_from_pool=True,
        request_type=payload.request_type.value,
        priority=(payload.priority or default_priority).value,
        requested_date=now,
        reason=payload.reason,
        condition=payload.condition.value if payload.condition else None,
        created_at=now,
    )
    if is_lost:
        request.fir_number = payload.fir_number
        request.fir_date = payload.fir_date
        request.police_station = payload.police_station or officer.police_station
        request.date_of_loss = payload.date_of_loss
        request.place_of_loss = payload.place_of_loss
        request.duty_at_time_of_loss = payload.duty_at_time_of_loss
        request.remedial_action_taken = payload.remedial_action_taken
        request.witnesses = payload.witnesses
    _record_status(request, RequestStatus.pending.value, officer.id, "Request created", now)
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info(
        "request_created",
        request_id=request.request_id,
        request_type=request.request_type,
        unique_id=item.unique_id,
        officer_id=officer.officer_id,
    )
    return request


# ---------- APPROVAL ----------
def _loss_report(request: EquipmentRequest) -> pool_service.LossReport:
    return pool_service.LossReport(
        fir_number=request.fir_number,
        reason=request.reason,
        fir_date=request.fir_date,
        police_station=request.police_station,
        date_of_loss=request.date_of_loss,
        place_of_loss=request.place_of_loss,
        duty_at_time_of_loss=request.duty_at_time_of_loss,
        remedial_action_taken=request.remedial_action_taken,
        witnesses=request.witnesses,
    )


def _apply_to_pool(db: Session, request: EquipmentRequest, admin: User, condition: Optional[str], now: datetime) -> Callable[[], None]:
    """Mutate the pool for an approved request; returns the deferred ledger update."""
    pool = pool_service.get_pool(db, request.pool_id)
    officer = request.requester

    if request.request_type == RequestType.issue.value:
        item = pool_service.issue_item(
            pool,
            officer,
            request.reason,
            admin.id,
            expected_return_date=request.expected_return_date,
            now=now,
        )
        request.assigned_unique_id = item.unique_id
        request.assigned_from_pool = True

        def ledger():
            officer_history.upsert_open_entry(
                db,
                officer,
                pool=pool,
                item=item,
                issued_date=now,
                issued_by=admin.id,
                purpose=item.issue_purpose,
                condition_at_issue=item.condition,
                expected_return_date=request.expected_return_date,
                request_id=request.request_id,
                request_date=request.requested_date,
            )
        return ledger

    unique_id = request.assigned_unique_id
    if request.request_type == RequestType.return_.value:
        final_condition = condition or request.condition or ItemCondition.good.value
        remarks = request.reason
        pool_service.return_item(pool, unique_id, final_condition, remarks, admin.id, now=now)
    elif request.request_type == RequestType.maintenance.value:
        final_condition = request.condition or ItemCondition.poor.value
        remarks = f"Maintenance: {request.reason}"
        pool_service.send_to_maintenance(
            pool,
            unique_id,
            reason=request.reason,
            condition=final_condition,
            reported_by=request.requested_by,
            returned_to=admin.id,
            now=now,
        )
    elif request.request_type == RequestType.lost.value:
        report = _loss_report(request)
        final_condition = ItemCondition.poor.value
        remarks = pool_service.loss_remarks(report)
        pool_service.report_lost(
            pool,
            unique_id,
            report,
            reported_by=request.requested_by,
            returned_to=admin.id,
            now=now,
        )
    else:
        raise CustodyError(f"Unknown request type {request.request_type}")

    def ledger():
        officer_history.close_open_entry(
            db,
            request.requested_by,
            unique_id,
            returned_date=now,
            returned_to=admin.id,
            condition_at_return=final_condition,
            remarks=remarks,
        )
    return ledger


def approve(
    db: Session,
    request_pk: uuid.UUID,
    admin: User,
    notes: Optional[str] = None,
    condition: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EquipmentRequest:
    request = get_request(db, request_pk)
    if request.status != RequestStatus.pending.value:
        raise CustodyError(f"Request is already {request.status}")

    now = now or utcnow()
    try:
        ledger = _apply_to_pool(db, request, admin, condition, now)
        request.processed_by = admin.id
        request.processed_date = now
        request.approved_date = now
        request.admin_notes = notes
        _record_status(request, RequestStatus.approved.value, admin.id, notes, now)
        create_audit_log(
            db,
            entity_type="request",
            entity_id=request.id,
            action="APPROVE",
            actor_id=admin.id,
            actor_role=admin.role,
            source="api",
            context={
                "request_id": request.request_id,
                "request_type": request.request_type,
                "unique_id": request.assigned_unique_id,
                "pool_id": str(request.pool_id),
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "request_approved",
        request_id=request.request_id,
        request_type=request.request_type,
        unique_id=request.assigned_unique_id,
    )

    # Ledger is best-effort; the pool change above stands regardless
    try:
        ledger()
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(
            "officer_history_update_failed",
            request_id=request.request_id,
            unique_id=request.assigned_unique_id,
            error=str(e),
        )

    db.refresh(request)
    return request


def reject(db: Session, request_pk: uuid.UUID, admin: User, reason: str, now: Optional[datetime] = None) -> EquipmentRequest:
    request = get_request(db, request_pk)
    if request.status != RequestStatus.pending.value:
        raise CustodyError(f"Request is already {request.status}")
    if not (reason or "").strip():
        raise ValidationFailed("Validation errors", [{"field": "reason", "msg": "Rejection reason is required"}])

    now = now or utcnow()
    request.processed_by = admin.id
    request.processed_date = now
    request.admin_notes = reason
    _record_status(request, RequestStatus.rejected.value, admin.id, reason, now)
    create_audit_log(
        db,
        entity_type="request",
        entity_id=request.id,
        action="REJECT",
        actor_id=admin.id,
        actor_role=admin.role,
        source="api",
        context={"request_id": request.request_id, "reason": reason},
    )
    db.commit()
    db.refresh(request)
    logger.info("request_rejected", request_id=request.request_id)
    return request


def cancel(db: Session, request_pk: uuid.UUID, officer: User, now: Optional[datetime] = None) -> EquipmentRequest:
    request = get_request(db, request_pk)
    if request.requested_by != officer.id:
        raise PermissionDeniedError("You can only cancel your own requests")
    if request.status != RequestStatus.pending.value:
        raise CustodyError("Only pending requests can be cancelled")

    now = now or utcnow()
    _record_status(request, RequestStatus.cancelled.value, officer.id, "Cancelled by officer", now)
    create_audit_log(
        db,
        entity_type="request",
        entity_id=request.id,
        action="CANCEL",
        actor_id=officer.id,
        actor_role=officer.role,
        source="api",
        context={"request_id": request.request_id},
    )
    db.commit()
    db.refresh(request)
    logger.info("request_cancelled", request_id=request.request_id)
    return request


def complete_for_item(
    db: Session,
    pool_id: uuid.UUID,
    unique_id: str,
    request_type: RequestType,
    actor_id: Optional[uuid.UUID],
    notes: Optional[str],
    now: Optional[datetime] = None,
) -> List[EquipmentRequest]:
    """Mark the approved request that routed this item to an admin queue as Completed."""
    now = now or utcnow()
    requests = (
        db.query(EquipmentRequest)
        .filter(
            EquipmentRequest.pool_id == pool_id,
            EquipmentRequest.assigned_unique_id == unique_id,
            EquipmentRequest.request_type == request_type.value,
            EquipmentRequest.status == RequestStatus.approved.value,
        )
        .all()
    )
    for request in requests:
        request.completed_date = now
        _record_status(request, RequestStatus.completed.value, actor_id, notes, now)
    return requests


# ---------- LISTINGS ----------
def list_requests(
    db: Session,
    status: Optional[str] = None,
    request_type: Optional[str] = None,
    requested_by: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[EquipmentRequest], int]:
    query = db.query(EquipmentRequest)
    if status:
        query = query.filter(EquipmentRequest.status == status)
    if request_type:
        query = query.filter(EquipmentRequest.request_type == request_type)
    if requested_by:
        query = query.filter(EquipmentRequest.requested_by == requested_by)
    total = query.count()
    items = (
        query.order_by(EquipmentRequest.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


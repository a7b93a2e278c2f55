import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user, require_roles
from ..models.models import User
from ..schemas.equipment import (
    PoolCreate,
    PoolUpdate,
    PoolResponse,
    PoolSummaryResponse,
    ItemResponse,
    UsageRecordResponse,
    MaintenanceRecordResponse,
    LossRecordResponse,
    IssuePayload,
    ReturnPayload,
    CompleteMaintenancePayload,
    WriteOffPayload,
    MarkRecoveredPayload,
    RetireItemPayload,
)
from ..schemas.requests import RequestType
from ..services import pool_service
from ..services.audit import compute_diff, create_audit_log
from ..services.errors import NotFoundError
from ..services.request_workflow import complete_for_item
from ..services.time_rules import utcnow

router = APIRouter(prefix="/equipment", tags=["equipment"])


def _pool_data(pool) -> dict:
    return PoolResponse.model_validate(pool).model_dump()


def _item_data(item) -> dict:
    data = ItemResponse.model_validate(item).model_dump()
    data["pool_id"] = item.pool_id
    data["pool_name"] = item.pool.pool_name if item.pool else None
    return data


def _metadata(pool) -> dict:
    return {
        "pool_name": pool.pool_name,
        "location": pool.location,
        "authorized_designations": list(pool.authorized_designations or []),
        "notes": pool.notes,
    }


def _audit(db: Session, action: str, user: User, pool, unique_id: Optional[str] = None, **extra):
    context = {"pool_id": str(pool.id), "pool_name": pool.pool_name}
    if unique_id:
        context["unique_id"] = unique_id
    context.update(extra)
    create_audit_log(
        db,
        entity_type="item" if unique_id else "pool",
        entity_id=pool.id,
        action=action,
        actor_id=user.id,
        actor_role=user.role,
        source="api",
        context=context,
    )


# ---------- POOLS ----------
@router.get("/pools")
def list_pools(
    category: Optional[str] = Query(None),
    designation: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    pools = pool_service.list_pools(db, category=category, designation=designation, search=search)
    return {
        "success": True,
        "data": [PoolSummaryResponse.model_validate(p).model_dump() for p in pools],
    }


@router.post("/pools", status_code=201)
def create_pool(
    payload: PoolCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.build_pool(
        pool_name=payload.pool_name,
        category=payload.category.value,
        sub_category=payload.sub_category,
        model=payload.model,
        manufacturer=payload.manufacturer,
        total_quantity=payload.total_quantity,
        prefix=payload.prefix,
        authorized_designations=[d.value for d in payload.authorized_designations],
        location=payload.location,
        purchase_date=payload.purchase_date,
        total_cost=payload.total_cost,
        supplier=payload.supplier,
        notes=payload.notes,
        added_by=user.id,
    )
    db.add(pool)
    db.flush()
    _audit(db, "CREATE", user, pool, total_quantity=pool.total_quantity)
    pool = pool_service.save_pool(db, pool)
    return {
        "success": True,
        "message": f"Pool created with {pool.total_quantity} items",
        "data": _pool_data(pool),
    }


@router.get("/authorized-pools")
def authorized_pools(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    pools = pool_service.list_pools(db, designation=user.designation)
    return {
        "success": True,
        "data": [PoolSummaryResponse.model_validate(p).model_dump() for p in pools],
    }


@router.get("/pools/{pool_id}")
def get_pool(
    pool_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return {"success": True, "data": _pool_data(pool_service.get_pool(db, pool_id))}


@router.put("/pools/{pool_id}")
def update_pool(
    pool_id: uuid.UUID,
    payload: PoolUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, pool_id)
    before = _metadata(pool)
    designations = payload.authorized_designations
    pool_service.update_pool_metadata(
        pool,
        modified_by=user.id,
        pool_name=payload.pool_name,
        location=payload.location,
        authorized_designations=[d.value for d in designations] if designations is not None else None,
        notes=payload.notes,
    )
    changes = compute_diff(before, _metadata(pool))
    if changes:
        create_audit_log(
            db,
            entity_type="pool",
            entity_id=pool.id,
            action="UPDATE",
            actor_id=user.id,
            actor_role=user.role,
            source="api",
            changes_json=changes,
        )
    pool = pool_service.save_pool(db, pool)
    return {"success": True, "message": "Pool updated", "data": _pool_data(pool)}


@router.delete("/pools/{pool_id}")
def delete_pool(
    pool_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, pool_id)
    pool_service.delete_pool(db, pool)
    _audit(db, "DELETE", user, pool)
    db.commit()
    return {"success": True, "message": "Pool deleted"}


# ---------- DIRECT CUSTODY ----------
@router.post("/pools/{pool_id}/issue")
def issue_from_pool(
    pool_id: uuid.UUID,
    payload: IssuePayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, pool_id)
    officer = db.query(User).filter(User.id == payload.user_id).first()
    if not officer:
        raise NotFoundError("Officer not found")
    item = pool_service.issue_item(pool, officer, payload.purpose, user.id)
    pool_service.save_pool(db, pool)
    return {
        "success": True,
        "message": f"Issued {item.unique_id} to {officer.full_name}",
        "data": _item_data(item),
    }


@router.post("/pools/{pool_id}/return")
def return_to_pool(
    pool_id: uuid.UUID,
    payload: ReturnPayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, pool_id)
    item = pool_service.return_item(pool, payload.unique_id, payload.condition.value, payload.remarks, user.id)
    pool_service.save_pool(db, pool)
    return {
        "success": True,
        "message": f"{item.unique_id} returned ({item.status})",
        "data": _item_data(item),
    }


@router.get("/pools/{pool_id}/items/{unique_id}/history")
def item_history(
    pool_id: uuid.UUID,
    unique_id: str,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, pool_id)
    item = pool_service.require_item(pool, unique_id)
    history = pool_service.item_history(item)
    return {
        "success": True,
        "data": {
            "item": _item_data(item),
            "usage_history": [UsageRecordResponse.model_validate(r).model_dump() for r in history["usage_history"]],
            "maintenance_history": [MaintenanceRecordResponse.model_validate(r).model_dump() for r in history["maintenance_history"]],
            "lost_history": [LossRecordResponse.model_validate(r).model_dump() for r in history["lost_history"]],
        },
    }


@router.get("/currently-issued")
def currently_issued(
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    items = pool_service.currently_issued_items(db)
    return {"success": True, "data": [_item_data(item) for item in items]}


@router.get("/maintenance-items")
def maintenance_items(
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    data = []
    for item in pool_service.maintenance_items(db):
        row = _item_data(item)
        open_record = pool_service.open_maintenance_record(item)
        row["open_maintenance"] = MaintenanceRecordResponse.model_validate(open_record).model_dump() if open_record else None
        row["lost_pending"] = pool_service.open_loss_record(item) is not None
        data.append(row)
    return {"success": True, "data": data}


# ---------- ADMIN QUEUE RESOLUTION ----------
@router.post("/pools/complete-maintenance")
def complete_maintenance(
    payload: CompleteMaintenancePayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, payload.pool_id)
    now = utcnow()
    item = pool_service.complete_maintenance(
        pool,
        payload.unique_id,
        description=payload.description,
        condition=payload.condition.value,
        cost=payload.cost,
        fixed_by=user.id,
        now=now,
    )
    complete_for_item(db, pool.id, item.unique_id, RequestType.maintenance, user.id, payload.description, now)
    _audit(db, "COMPLETE_MAINTENANCE", user, pool, item.unique_id, condition=item.condition)
    pool_service.save_pool(db, pool)
    return {"success": True, "message": f"{item.unique_id} is back in service", "data": _item_data(item)}


@router.post("/pools/write-off-lost")
def write_off_lost(
    payload: WriteOffPayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, payload.pool_id)
    now = utcnow()
    item = pool_service.write_off_lost(pool, payload.unique_id, notes=payload.notes, admin_id=user.id, now=now)
    complete_for_item(db, pool.id, item.unique_id, RequestType.lost, user.id, payload.notes, now)
    _audit(db, "WRITE_OFF", user, pool, item.unique_id)
    pool_service.save_pool(db, pool)
    return {"success": True, "message": f"{item.unique_id} written off as lost", "data": _item_data(item)}


@router.post("/pools/mark-recovered")
def mark_recovered(
    payload: MarkRecoveredPayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, payload.pool_id)
    now = utcnow()
    item = pool_service.mark_recovered(
        pool,
        payload.unique_id,
        notes=payload.notes,
        condition=payload.condition.value,
        admin_id=user.id,
        now=now,
    )
    complete_for_item(db, pool.id, item.unique_id, RequestType.lost, user.id, payload.notes, now)
    _audit(db, "RECOVER", user, pool, item.unique_id, status=item.status, condition=item.condition)
    pool_service.save_pool(db, pool)
    return {"success": True, "message": f"{item.unique_id} recovered ({item.status})", "data": _item_data(item)}


@router.post("/pools/retire-item")
def retire_item(
    payload: RetireItemPayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    pool = pool_service.get_pool(db, payload.pool_id)
    item = pool_service.retire_item(pool, payload.unique_id, notes=payload.notes, admin_id=user.id)
    _audit(db, "RETIRE", user, pool, item.unique_id)
    pool_service.save_pool(db, pool)
    return {"success": True, "message": f"{item.unique_id} retired", "data": _item_data(item)}

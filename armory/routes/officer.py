import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_roles
from ..models.models import User
from ..schemas.equipment import ItemResponse
from ..schemas.history import HistoryEntryResponse
from ..schemas.requests import IssueRequestCreate, ItemRequestCreate, RequestResponse, RequestStatus
from ..services import officer_history, pool_service, request_workflow

router = APIRouter(prefix="/officer", tags=["officer"])


def _request_data(request) -> dict:
    return RequestResponse.model_validate(request).model_dump()


@router.post("/requests", status_code=201)
def create_item_request(
    payload: ItemRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("officer")),
):
    request = request_workflow.create_item_request(db, user, payload)
    return {
        "success": True,
        "message": f"{request.request_type} request {request.request_id} submitted",
        "data": _request_data(request),
    }


@router.post("/equipment-requests/from-pool", status_code=201)
def create_issue_request(
    payload: IssueRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("officer")),
):
    request = request_workflow.create_issue_request(db, user, payload)
    return {
        "success": True,
        "message": f"Issue request {request.request_id} submitted",
        "data": _request_data(request),
    }


@router.put("/requests/{request_pk}/cancel")
def cancel_request(
    request_pk: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("officer")),
):
    request = request_workflow.cancel(db, request_pk, user)
    return {"success": True, "message": "Request cancelled", "data": _request_data(request)}


@router.get("/requests")
def my_requests(
    status: Optional[RequestStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("officer")),
):
    items, total = request_workflow.list_requests(
        db,
        status=status.value if status else None,
        requested_by=user.id,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": [_request_data(r) for r in items],
        "pagination": {"page": page, "limit": limit, "total": total},
    }


@router.get("/equipment/issued")
def issued_equipment(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("officer")),
):
    data = []
    for item in pool_service.items_issued_to(db, user.id):
        row = ItemResponse.model_validate(item).model_dump()
        row["pool_id"] = item.pool_id
        row["pool_name"] = item.pool.pool_name
        row["category"] = item.pool.category
        row["model"] = item.pool.model
        data.append(row)
    return {"success": True, "data": data}


@router.get("/my-history")
def my_history(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("officer")),
):
    _, entries = officer_history.get_history(db, user.id)
    return {
        "success": True,
        "data": [HistoryEntryResponse.model_validate(e).model_dump() for e in entries],
    }

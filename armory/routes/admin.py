import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_roles
from ..models.models import User
from ..schemas.history import HistoryEntryResponse, OfficerHistoryResponse, ReconcileReport
from ..schemas.requests import ApprovePayload, RejectPayload, RequestResponse, RequestStatus, RequestType
from ..services import officer_history, request_workflow
from ..services.errors import NotFoundError

router = APIRouter(prefix="/admin", tags=["admin"])


def _request_data(request) -> dict:
    data = RequestResponse.model_validate(request).model_dump()
    requester = request.requester
    if requester is not None:
        data["requester"] = {
            "officer_id": requester.officer_id,
            "full_name": requester.full_name,
            "designation": requester.designation,
            "police_station": requester.police_station,
        }
    return data


@router.get("/requests")
def list_requests(
    status: Optional[RequestStatus] = Query(None),
    request_type: Optional[RequestType] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    items, total = request_workflow.list_requests(
        db,
        status=status.value if status else None,
        request_type=request_type.value if request_type else None,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": [_request_data(r) for r in items],
        "pagination": {"page": page, "limit": limit, "total": total},
    }


@router.put("/requests/{request_pk}/approve")
def approve_request(
    request_pk: uuid.UUID,
    payload: Optional[ApprovePayload] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    payload = payload or ApprovePayload()
    request = request_workflow.approve(
        db,
        request_pk,
        user,
        notes=payload.notes,
        condition=payload.condition.value if payload.condition else None,
    )
    message = f"Request {request.request_id} approved"
    if request.assigned_unique_id:
        message += f" ({request.assigned_unique_id})"
    return {"success": True, "message": message, "data": _request_data(request)}


@router.put("/requests/{request_pk}/reject")
def reject_request(
    request_pk: uuid.UUID,
    payload: RejectPayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    request = request_workflow.reject(db, request_pk, user, payload.reason)
    return {"success": True, "message": f"Request {request.request_id} rejected", "data": _request_data(request)}


@router.get("/users/{user_id}/history")
def officer_history_view(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    history, entries = officer_history.get_history(db, user_id)
    if history is None:
        officer = db.query(User).filter(User.id == user_id).first()
        if not officer:
            raise NotFoundError("Officer not found")
        return {
            "success": True,
            "data": OfficerHistoryResponse(
                user_id=officer.id,
                officer_id=officer.officer_id,
                officer_name=officer.full_name,
                designation=officer.designation,
                posting=officer.police_station,
            ).model_dump(),
        }
    return {
        "success": True,
        "data": OfficerHistoryResponse(
            user_id=history.user_id,
            officer_id=history.officer_id,
            officer_name=history.officer_name,
            designation=history.designation,
            posting=history.posting,
            entries=[HistoryEntryResponse.model_validate(e) for e in entries],
        ).model_dump(),
    }


@router.post("/history/reconcile")
def reconcile_history(
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    report = officer_history.reconcile(db)
    return {"success": True, "message": "Officer history reconciled", "data": ReconcileReport(**report).model_dump()}

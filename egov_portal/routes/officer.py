from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..models.models import Department, Role
from ..schemas.requests import AssignRequest, DecisionRequest, ReopenRequest
from ..services import request_service
from ..services.permissions import Actor
from ..services.reports import review_stats
from ..storage.provider import StorageProvider
from .citizen import document_response, get_storage
from .serializers import serialize_detail, serialize_request, serialize_user


router = APIRouter(prefix="/officer", tags=["officer"])

# Admins can use the officer pages too
reviewer = require_roles(Role.OFFICER, Role.DEPARTMENT_HEAD, Role.ADMIN)

DASHBOARD_LIMIT = 50


@router.get("/dashboard")
def dashboard(
    status: Optional[str] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(reviewer),
):
    """
    Open requests in the reviewer's scope.

    Department heads see their whole department, officers see unassigned
    requests and their own, admins see everything.
    """
    requests = request_service.list_for_actor(
        db, actor, status=status, search=q, open_only=status is None, limit=DASHBOARD_LIMIT
    )
    department_name = "No Department"
    if actor.department_id:
        dept = db.get(Department, actor.department_id)
        department_name = dept.name if dept else department_name
    return {
        "requests": [serialize_request(r) for r in requests],
        "stats": review_stats(db, actor.id),
        "department_name": department_name,
    }


@router.get("/requests/{request_id}")
def get_request(request_id: str, db: Session = Depends(get_db), actor: Actor = Depends(reviewer)):
    return serialize_detail(request_service.get_detail(db, actor, request_id))


@router.get("/requests/{request_id}/documents/{document_id}")
def download_document(
    request_id: str,
    document_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(reviewer),
    storage: StorageProvider = Depends(get_storage),
):
    doc = request_service.get_document(db, actor, request_id, document_id)
    return document_response(doc, storage)


@router.post("/requests/{request_id}/status")
def update_status(
    request_id: str,
    payload: DecisionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(reviewer),
):
    req = request_service.decide(
        db, actor, request_id, payload.status, notes=payload.officer_notes, reason=payload.reason
    )
    return {"message": "Status updated successfully", "request": serialize_request(req)}


@router.post("/requests/{request_id}/assign")
def assign(
    request_id: str,
    payload: AssignRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(reviewer),
):
    req = request_service.assign(db, actor, request_id, payload.officer_id)
    return {"message": "Request assigned successfully", "request": serialize_request(req)}


@router.post("/requests/{request_id}/start")
def start_review(request_id: str, db: Session = Depends(get_db), actor: Actor = Depends(reviewer)):
    req = request_service.start_review(db, actor, request_id)
    return {"message": "Review started", "request": serialize_request(req)}


@router.post("/requests/{request_id}/reopen")
def reopen(
    request_id: str,
    payload: ReopenRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(reviewer),
):
    req = request_service.reopen(db, actor, request_id, reason=payload.reason)
    return {"message": "Request reopened", "request": serialize_request(req)}


@router.get("/department/officers")
def department_officers(
    department_id: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(reviewer),
):
    officers = request_service.assignable_officers(db, actor, department_id)
    return [serialize_user(u) for u in officers]

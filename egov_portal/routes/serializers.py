from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ..models.models import (
    Department,
    Document,
    Notification,
    Payment,
    RequestEvent,
    Service,
    ServiceRequest,
    User,
)
from ..services.request_service import RequestDetail


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return f"{Decimal(value):.2f}" if value is not None else None


def _id(value) -> Optional[str]:
    return str(value) if value else None


def serialize_department(d: Department) -> Dict[str, Any]:
    return {"id": str(d.id), "name": d.name, "description": d.description}


def serialize_service(s: Service) -> Dict[str, Any]:
    return {
        "id": str(s.id),
        "name": s.name,
        "description": s.description,
        "department_id": str(s.department_id),
        "department_name": s.department.name if s.department else None,
        "fee": _money(s.fee),
        "requirements": s.requirements,
    }


def serialize_user(u: User) -> Dict[str, Any]:
    return {
        "id": str(u.id),
        "national_id": u.national_id,
        "name": u.name,
        "email": u.email,
        "role": u.role.value,
        "department_id": _id(u.department_id),
        "department_name": u.department.name if u.department else None,
        "job_title": u.job_title,
        "created_at": _iso(u.created_at),
    }


def serialize_request(r: ServiceRequest) -> Dict[str, Any]:
    service = r.service
    return {
        "id": str(r.id),
        "status": r.status.value,
        "notes": r.notes,
        "submitted_at": _iso(r.submitted_at),
        "reviewed_at": _iso(r.reviewed_at),
        "citizen": {
            "id": str(r.citizen_id),
            "name": r.citizen.name if r.citizen else None,
            "national_id": r.citizen.national_id if r.citizen else None,
        },
        "service": {
            "id": str(r.service_id),
            "name": service.name if service else None,
            "fee": _money(service.fee) if service else None,
            "department_id": _id(service.department_id) if service else None,
            "department_name": service.department.name if service and service.department else None,
        },
        "reviewed_by": {
            "id": _id(r.reviewed_by),
            "name": r.reviewer.name if r.reviewer else None,
        },
    }


def serialize_document(d: Document) -> Dict[str, Any]:
    return {
        "id": str(d.id),
        "filename": d.filename,
        "locator": d.locator,
        "content_type": d.content_type,
        "size_bytes": d.size_bytes,
        "uploaded_at": _iso(d.uploaded_at),
    }


def serialize_payment(p: Optional[Payment]) -> Optional[Dict[str, Any]]:
    if p is None:
        return None
    return {
        "id": str(p.id),
        "amount": _money(p.amount),
        "status": p.status.value,
        "payment_date": _iso(p.payment_date),
    }


def serialize_event(e: RequestEvent) -> Dict[str, Any]:
    return {
        "action": e.action.value,
        "date": _iso(e.created_at),
        "actor_id": _id(e.actor_id),
        "actor_name": e.actor.name if e.actor else None,
        "detail": e.detail,
    }


def serialize_detail(detail: RequestDetail) -> Dict[str, Any]:
    data = serialize_request(detail.request)
    service = detail.request.service
    data["service"]["requirements"] = service.requirements if service else None
    data["documents"] = [serialize_document(d) for d in detail.documents]
    data["payment"] = serialize_payment(detail.payment)
    data["history"] = [serialize_event(e) for e in detail.history]
    return data


def serialize_notification(n: Notification) -> Dict[str, Any]:
    return {"id": str(n.id), "message": n.message, "created_at": _iso(n.created_at)}

"""
Service request lifecycle.

States: submitted -> under_review -> approved | rejected, with an explicit
reopen transition from the terminal states back to under_review. Every
operation takes the acting identity explicitly, authorizes it through
``permissions.ensure_can_act`` and writes its side effects (documents,
payment, notifications, history) in a single transaction.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..db import unit_of_work
from ..errors import ConflictError, NotFound, StorageError, ValidationError
from ..models.models import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    Document,
    Payment,
    PaymentStatus,
    RequestAction,
    RequestEvent,
    RequestStatus,
    Role,
    Service,
    ServiceRequest,
    User,
)
from ..storage.provider import StorageProvider, document_key
from .audit import get_history, record_event
from .notifications import create_notification, send_email
from .permissions import (
    REVIEW_ROLES,
    SUPERVISOR_ROLES,
    Actor,
    ensure_can_act,
    ensure_role,
    worklist_clause,
)


logger = structlog.get_logger(__name__)

DECISIONS = {RequestStatus.APPROVED, RequestStatus.REJECTED}


@dataclass
class UploadedDocument:
    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class RequestDetail:
    request: ServiceRequest
    documents: List[Document] = field(default_factory=list)
    payment: Optional[Payment] = None
    history: List[RequestEvent] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: Union[str, uuid.UUID], what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFound(f"{what} not found")


def _get_request(db: Session, request_id: Union[str, uuid.UUID]) -> ServiceRequest:
    req = db.get(ServiceRequest, _as_uuid(request_id, "Request"))
    if req is None:
        raise NotFound("Request not found")
    return req


def _parse_status(value: Union[str, RequestStatus]) -> RequestStatus:
    try:
        return RequestStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown status: {value}")


def _append_notes(existing: Optional[str], officer_notes: Optional[str]) -> Optional[str]:
    officer_notes = (officer_notes or "").strip()
    if not officer_notes:
        return existing
    if not existing:
        return f"Officer notes: {officer_notes}"
    return f"{existing}\n\nOfficer notes: {officer_notes}"


def _ensure_open(req: ServiceRequest) -> None:
    if req.status.is_terminal:
        raise ConflictError(f"Request has already been {req.status.value}")


def validate_documents(documents: Sequence[UploadedDocument]) -> None:
    if len(documents) > settings.max_upload_files:
        raise ValidationError(f"At most {settings.max_upload_files} documents may be uploaded")
    allowed = {t.lower() for t in settings.allowed_upload_types}
    for doc in documents:
        if (doc.content_type or "").lower() not in allowed:
            raise ValidationError("Only PDF, JPG, JPEG, PNG files allowed")
        if doc.size > settings.max_upload_bytes:
            limit_mb = settings.max_upload_bytes // (1024 * 1024)
            raise ValidationError(f"{doc.filename} exceeds the {limit_mb} MB upload limit")


def _store_documents(
    storage: StorageProvider, documents: Sequence[UploadedDocument]
) -> List[Tuple[UploadedDocument, str, str]]:
    stored: List[Tuple[UploadedDocument, str, str]] = []
    try:
        for doc in documents:
            key = document_key(doc.filename)
            locator = storage.store(doc.data, key, doc.content_type)
            stored.append((doc, key, locator))
    except Exception:
        _discard_stored(storage, stored)
        raise
    return stored


def _discard_stored(storage: Optional[StorageProvider], stored: Iterable[Tuple[UploadedDocument, str, str]]) -> None:
    if storage is None:
        return
    for _, key, _ in stored:
        storage.delete(key)


def submit_create(
    db: Session,
    actor: Actor,
    service_id: Union[str, uuid.UUID],
    notes: Optional[str] = None,
    documents: Sequence[UploadedDocument] = (),
    storage: Optional[StorageProvider] = None,
) -> ServiceRequest:
    """
    Submit a new request for a service on behalf of the acting citizen.

    Files are written to storage first; the request, its documents, the
    pending payment (for services with a fee) and the confirmation
    notification are then committed together. If the database write fails
    the stored files are removed again.
    """
    ensure_role(actor, {Role.CITIZEN})
    service = db.get(Service, _as_uuid(service_id, "Service"))
    if service is None:
        raise NotFound("Service not found")
    ensure_can_act(actor, service, {Role.CITIZEN})

    documents = list(documents)
    validate_documents(documents)
    if documents and storage is None:
        raise StorageError("No storage provider configured for uploads")

    stored = _store_documents(storage, documents) if documents else []
    fee = Decimal(service.fee or 0)
    try:
        with unit_of_work(db):
            req = ServiceRequest(
                citizen_id=actor.id,
                service_id=service.id,
                status=RequestStatus.SUBMITTED,
                notes=(notes or "").strip() or None,
                submitted_at=_utcnow(),
            )
            db.add(req)
            db.flush()
            for doc, key, locator in stored:
                db.add(
                    Document(
                        request_id=req.id,
                        filename=doc.filename,
                        locator=locator,
                        storage_key=key,
                        content_type=doc.content_type,
                        size_bytes=doc.size,
                    )
                )
            if fee > 0:
                db.add(Payment(request_id=req.id, amount=fee, status=PaymentStatus.PENDING))
            create_notification(db, actor.id, f"Your {service.name} request has been submitted successfully.")
            record_event(db, req.id, RequestAction.SUBMITTED, actor.id)
    except Exception:
        _discard_stored(storage, stored)
        raise

    logger.info(
        "request_submitted",
        request_id=str(req.id),
        citizen_id=str(actor.id),
        service_id=str(service.id),
        documents=len(stored),
        fee=str(fee),
    )
    return req


def list_for_actor(
    db: Session,
    actor: Actor,
    status: Optional[Union[str, RequestStatus]] = None,
    search: Optional[str] = None,
    open_only: bool = False,
    department_id: Optional[Union[str, uuid.UUID]] = None,
    limit: Optional[int] = None,
) -> List[ServiceRequest]:
    """Requests visible to the actor, most recently submitted first."""
    citizen = aliased(User)
    query = (
        db.query(ServiceRequest)
        .join(Service, ServiceRequest.service_id == Service.id)
        .join(citizen, ServiceRequest.citizen_id == citizen.id)
        .filter(worklist_clause(actor))
    )
    if status:
        query = query.filter(ServiceRequest.status == _parse_status(status))
    if open_only:
        query = query.filter(ServiceRequest.status.in_(OPEN_STATUSES))
    if department_id:
        query = query.filter(Service.department_id == _as_uuid(department_id, "Department"))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(
                citizen.name.ilike(like),
                citizen.national_id.ilike(like),
                Service.name.ilike(like),
            )
        )
    query = query.order_by(ServiceRequest.submitted_at.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_detail(db: Session, actor: Actor, request_id: Union[str, uuid.UUID]) -> RequestDetail:
    req = _get_request(db, request_id)
    ensure_can_act(actor, req)
    return RequestDetail(
        request=req,
        documents=list(req.documents),
        payment=req.payment,
        history=get_history(db, req.id),
    )


def get_document(
    db: Session,
    actor: Actor,
    request_id: Union[str, uuid.UUID],
    document_id: Union[str, uuid.UUID],
) -> Document:
    """A document attached to a request the actor may see."""
    req = _get_request(db, request_id)
    ensure_can_act(actor, req)
    doc = db.get(Document, _as_uuid(document_id, "Document"))
    if doc is None or doc.request_id != req.id or not doc.storage_key:
        raise NotFound("Document not found")
    return doc


def decide(
    db: Session,
    actor: Actor,
    request_id: Union[str, uuid.UUID],
    decision: Union[str, RequestStatus],
    notes: Optional[str] = None,
    reason: Optional[str] = None,
) -> ServiceRequest:
    """
    Approve or reject an open request.

    The status change is a compare-and-set against the open states, so a
    request that was decided in the meantime raises ConflictError instead of
    flipping the earlier outcome.
    """
    decision = _parse_status(decision)
    if decision not in DECISIONS:
        raise ValidationError("Decision must be 'approved' or 'rejected'")
    req = _get_request(db, request_id)
    ensure_can_act(actor, req, REVIEW_ROLES)
    _ensure_open(req)

    service_name = req.service.name
    citizen_email = req.citizen.email if req.citizen else None
    message = f"Your {service_name} request has been {decision.value}."
    reason = (reason or "").strip() or None
    if decision == RequestStatus.REJECTED and reason:
        message += f" Reason: {reason}"

    with unit_of_work(db):
        updated = (
            db.query(ServiceRequest)
            .filter(ServiceRequest.id == req.id, ServiceRequest.status.in_(OPEN_STATUSES))
            .update(
                {
                    ServiceRequest.status: decision,
                    ServiceRequest.reviewed_by: actor.id,
                    ServiceRequest.reviewed_at: _utcnow(),
                    ServiceRequest.notes: _append_notes(req.notes, notes),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError("Request was already decided by another reviewer")
        create_notification(db, req.citizen_id, message)
        action = RequestAction.APPROVED if decision == RequestStatus.APPROVED else RequestAction.REJECTED
        record_event(db, req.id, action, actor.id, reason or (notes or "").strip() or None)

    logger.info("request_decided", request_id=str(req.id), decision=decision.value, reviewer_id=str(actor.id))
    send_email(citizen_email, f"{settings.app_name}: request {decision.value}", message)
    return req


def assign(
    db: Session,
    actor: Actor,
    request_id: Union[str, uuid.UUID],
    officer_id: Union[str, uuid.UUID],
) -> ServiceRequest:
    """Hand an open request to an officer of its department (department head or admin only)."""
    req = _get_request(db, request_id)
    ensure_can_act(actor, req, SUPERVISOR_ROLES)
    officer = db.get(User, _as_uuid(officer_id, "Officer"))
    if officer is None:
        raise NotFound("Officer not found")
    if officer.role not in (Role.OFFICER, Role.DEPARTMENT_HEAD) or officer.department_id != req.service.department_id:
        raise ValidationError("Requests can only be assigned to officers of the service's department")
    _ensure_open(req)

    with unit_of_work(db):
        updated = (
            db.query(ServiceRequest)
            .filter(ServiceRequest.id == req.id, ServiceRequest.status.in_(OPEN_STATUSES))
            .update(
                {
                    ServiceRequest.reviewed_by: officer.id,
                    ServiceRequest.status: RequestStatus.UNDER_REVIEW,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError("Request was decided before it could be assigned")
        create_notification(
            db,
            officer.id,
            f"You have been assigned the {req.service.name} request from {req.citizen.name}.",
        )
        record_event(db, req.id, RequestAction.ASSIGNED, actor.id, officer.name)

    logger.info("request_assigned", request_id=str(req.id), officer_id=str(officer.id), assigned_by=str(actor.id))
    return req


def start_review(db: Session, actor: Actor, request_id: Union[str, uuid.UUID]) -> ServiceRequest:
    """Let a reviewer take an open request; plain officers may only take unassigned ones."""
    req = _get_request(db, request_id)
    ensure_can_act(actor, req, REVIEW_ROLES)
    _ensure_open(req)
    if actor.role == Role.OFFICER and req.reviewed_by not in (None, actor.id):
        raise ConflictError("Request is assigned to another officer")

    with unit_of_work(db):
        query = db.query(ServiceRequest).filter(
            ServiceRequest.id == req.id, ServiceRequest.status.in_(OPEN_STATUSES)
        )
        if actor.role == Role.OFFICER:
            query = query.filter(
                or_(ServiceRequest.reviewed_by.is_(None), ServiceRequest.reviewed_by == actor.id)
            )
        updated = query.update(
            {
                ServiceRequest.reviewed_by: actor.id,
                ServiceRequest.status: RequestStatus.UNDER_REVIEW,
            },
            synchronize_session=False,
        )
        if updated != 1:
            raise ConflictError("Request was taken by another reviewer")
        record_event(db, req.id, RequestAction.REVIEW_STARTED, actor.id)

    logger.info("request_review_started", request_id=str(req.id), reviewer_id=str(actor.id))
    return req


def reopen(
    db: Session,
    actor: Actor,
    request_id: Union[str, uuid.UUID],
    reason: Optional[str] = None,
) -> ServiceRequest:
    """Move an approved or rejected request back to under_review (department head or admin only)."""
    req = _get_request(db, request_id)
    ensure_can_act(actor, req, SUPERVISOR_ROLES)
    if req.status not in TERMINAL_STATUSES:
        raise ConflictError("Only approved or rejected requests can be reopened")

    reason = (reason or "").strip() or None
    message = f"Your {req.service.name} request has been reopened for review."
    if reason:
        message += f" Reason: {reason}"

    with unit_of_work(db):
        updated = (
            db.query(ServiceRequest)
            .filter(ServiceRequest.id == req.id, ServiceRequest.status.in_(TERMINAL_STATUSES))
            .update(
                {
                    ServiceRequest.status: RequestStatus.UNDER_REVIEW,
                    ServiceRequest.reviewed_at: None,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError("Request was reopened by another reviewer")
        create_notification(db, req.citizen_id, message)
        record_event(db, req.id, RequestAction.REOPENED, actor.id, reason)

    logger.info("request_reopened", request_id=str(req.id), actor_id=str(actor.id))
    return req


def confirm_payment(db: Session, actor: Actor, request_id: Union[str, uuid.UUID]) -> Payment:
    """
    Mark the simulated payment of the actor's own request as completed.

    Confirming an already completed payment changes nothing.
    """
    req = _get_request(db, request_id)
    ensure_can_act(actor, req, {Role.CITIZEN})
    payment = req.payment
    if payment is None:
        raise NotFound("No payment is due for this request")
    if payment.status == PaymentStatus.COMPLETED:
        return payment

    with unit_of_work(db):
        updated = (
            db.query(Payment)
            .filter(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
            .update(
                {Payment.status: PaymentStatus.COMPLETED, Payment.payment_date: _utcnow()},
                synchronize_session=False,
            )
        )
        if updated == 1:
            record_event(db, req.id, RequestAction.PAYMENT_COMPLETED, actor.id, str(payment.amount))

    logger.info("payment_confirmed", request_id=str(req.id), payment_id=str(payment.id))
    return payment


def assignable_officers(
    db: Session, actor: Actor, department_id: Optional[Union[str, uuid.UUID]] = None
) -> List[User]:
    """Officers and department heads of a department; only admins may pick another department."""
    ensure_role(actor, REVIEW_ROLES)
    target = actor.department_id
    if actor.role == Role.ADMIN and department_id:
        target = _as_uuid(department_id, "Department")
    if target is None:
        return []
    return (
        db.query(User)
        .filter(
            User.department_id == target,
            User.role.in_([Role.OFFICER, Role.DEPARTMENT_HEAD]),
        )
        .order_by(User.role.desc(), User.name.asc())
        .all()
    )

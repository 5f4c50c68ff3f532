import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, require_roles
from ..db import get_db, unit_of_work
from ..errors import ConflictError, NotFound, ValidationError
from ..logging import structlog
from ..models.models import (
    OPEN_STATUSES,
    Department,
    Notification,
    RequestEvent,
    Role,
    Service,
    ServiceRequest,
    User,
)
from ..schemas.admin import DepartmentIn, ServiceIn, UserCreate, UserUpdate
from ..services import reports, request_service
from ..services.permissions import REVIEW_ROLES, Actor, can_act
from .serializers import serialize_department, serialize_request, serialize_service, serialize_user


router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_roles(Role.ADMIN)

logger = structlog.get_logger(__name__)


def _uuid(value: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFound(f"{what} not found")


def _department_or_404(db: Session, department_id: Optional[str]) -> Optional[Department]:
    if not department_id:
        return None
    dept = db.get(Department, _uuid(department_id, "Department"))
    if dept is None:
        raise NotFound("Department not found")
    return dept


def _check_staff_department(role: Role, dept: Optional[Department]) -> Optional[uuid.UUID]:
    """Officers and department heads belong to exactly one department; other roles to none."""
    if role.needs_department:
        if dept is None:
            raise ValidationError("Officers and department heads must be assigned to a department")
        return dept.id
    return None


def _ensure_keeps_open_reviews(db: Session, user: User, role: Role, department_id: Optional[uuid.UUID]) -> None:
    """Refuse a role or department change that would strand requests the user is reviewing."""
    if role == user.role and department_id == user.department_id:
        return
    reviewing = (
        db.query(ServiceRequest)
        .filter(ServiceRequest.reviewed_by == user.id, ServiceRequest.status.in_(OPEN_STATUSES))
        .all()
    )
    after = Actor(id=user.id, role=role, department_id=department_id)
    stranded = [r for r in reviewing if not can_act(after, r, REVIEW_ROLES)]
    if stranded:
        raise ConflictError(
            f"User is reviewing {len(stranded)} open request(s); reassign them before changing role or department"
        )


def _plain_money(rows, key):
    for row in rows:
        row[key] = f"{row[key]:.2f}"
    return rows


# ----- Dashboard & reports -----

@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), _: Actor = Depends(admin_only)):
    data = reports.dashboard(db)
    data["stats"]["total_revenue"] = f"{data['stats']['total_revenue']:.2f}"
    data["recent_requests"] = [serialize_request(r) for r in data["recent_requests"]]
    return data


@router.get("/reports")
def period_report(period: str = "month", db: Session = Depends(get_db), _: Actor = Depends(admin_only)):
    data = reports.period_report(db, period)
    _plain_money(data["revenue_report"], "total_amount")
    return data


@router.get("/requests")
def list_requests(
    status: Optional[str] = None,
    department: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(admin_only),
):
    rows = request_service.list_for_actor(db, actor, status=status, search=search, department_id=department)
    return {"requests": [serialize_request(r) for r in rows]}


# ----- Users -----

@router.get("/users")
def list_users(
    role: Optional[Role] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    _: Actor = Depends(admin_only),
):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(User.name.ilike(like), User.email.ilike(like), User.national_id.ilike(like)))
    users = query.order_by(User.created_at.desc()).all()
    departments = db.query(Department).order_by(Department.name.asc()).all()
    return {
        "users": [serialize_user(u) for u in users],
        "departments": [serialize_department(d) for d in departments],
    }


@router.post("/users", status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db), actor: Actor = Depends(admin_only)):
    email = payload.email.lower()
    if db.query(User).filter(or_(User.email == email, User.national_id == payload.national_id)).first():
        raise ConflictError("Email or National ID already exists")
    dept = _department_or_404(db, payload.department_id)
    user = User(
        national_id=payload.national_id.strip(),
        name=payload.name.strip(),
        email=email,
        password_hash=get_password_hash(payload.password),
        role=payload.role,
        department_id=_check_staff_department(payload.role, dept),
        job_title=payload.job_title,
        date_of_birth=payload.date_of_birth,
        contact_info=payload.contact_info,
    )
    try:
        with unit_of_work(db):
            db.add(user)
    except IntegrityError:
        raise ConflictError("Email or National ID already exists")
    logger.info("user_created", user_id=str(user.id), role=user.role.value, by=str(actor.id))
    return {"message": "User created successfully", "user": serialize_user(user)}


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(admin_only),
):
    user = db.get(User, _uuid(user_id, "User"))
    if user is None:
        raise NotFound("User not found")

    data = payload.model_dump(exclude_unset=True)
    role = data.get("role") or user.role
    if "department_id" in data:
        dept = _department_or_404(db, data["department_id"])
    else:
        dept = user.department
    department_id = _check_staff_department(role, dept)
    _ensure_keeps_open_reviews(db, user, role, department_id)

    if "email" in data and data["email"]:
        email = data["email"].lower()
        clash = db.query(User).filter(User.email == email, User.id != user.id).first()
        if clash:
            raise ConflictError("Email or National ID already exists")
        user.email = email
    if data.get("national_id"):
        clash = db.query(User).filter(User.national_id == data["national_id"], User.id != user.id).first()
        if clash:
            raise ConflictError("Email or National ID already exists")
        user.national_id = data["national_id"].strip()
    if data.get("name"):
        user.name = data["name"].strip()
    if data.get("password"):
        user.password_hash = get_password_hash(data["password"])
    for field in ("job_title", "contact_info"):
        if field in data:
            setattr(user, field, data[field])

    user.role = role
    user.department_id = department_id

    try:
        with unit_of_work(db):
            db.add(user)
    except IntegrityError:
        raise ConflictError("Email or National ID already exists")
    logger.info("user_updated", user_id=str(user.id), by=str(actor.id))
    return {"message": "User updated successfully", "user": serialize_user(user)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, db: Session = Depends(get_db), actor: Actor = Depends(admin_only)):
    uid = _uuid(user_id, "User")
    if uid == actor.id:
        raise ValidationError("You cannot delete your own account")
    user = db.get(User, uid)
    if user is None:
        raise NotFound("User not found")

    referenced = (
        db.query(ServiceRequest.id)
        .filter(or_(ServiceRequest.citizen_id == uid, ServiceRequest.reviewed_by == uid))
        .first()
        or db.query(RequestEvent.id).filter(RequestEvent.actor_id == uid).first()
    )
    if referenced:
        raise ConflictError("User has service request history and cannot be deleted")

    with unit_of_work(db):
        db.query(Notification).filter(Notification.user_id == uid).delete(synchronize_session=False)
        db.delete(user)
    logger.info("user_deleted", user_id=str(uid), by=str(actor.id))
    return {"message": "User deleted successfully"}


# ----- Departments -----

@router.get("/departments")
def list_departments(db: Session = Depends(get_db), _: Actor = Depends(admin_only)):
    service_counts = dict(
        db.query(Service.department_id, func.count(Service.id)).group_by(Service.department_id).all()
    )
    staff_counts = dict(
        db.query(User.department_id, func.count(User.id))
        .filter(User.department_id.isnot(None))
        .group_by(User.department_id)
        .all()
    )
    out = []
    for d in db.query(Department).order_by(Department.name.asc()).all():
        item = serialize_department(d)
        item["service_count"] = int(service_counts.get(d.id, 0))
        item["user_count"] = int(staff_counts.get(d.id, 0))
        out.append(item)
    return {"departments": out}


def _save_department(db: Session, dept: Department, payload: DepartmentIn) -> None:
    name = payload.name.strip()
    clash = db.query(Department).filter(Department.name == name)
    if dept.id is not None:
        clash = clash.filter(Department.id != dept.id)
    if clash.first():
        raise ConflictError("A department with this name already exists")
    dept.name = name
    dept.description = payload.description
    try:
        with unit_of_work(db):
            db.add(dept)
    except IntegrityError:
        raise ConflictError("A department with this name already exists")


@router.post("/departments", status_code=201)
def create_department(payload: DepartmentIn, db: Session = Depends(get_db), _: Actor = Depends(admin_only)):
    dept = Department()
    _save_department(db, dept, payload)
    return {"message": "Department created successfully", "department": serialize_department(dept)}


@router.put("/departments/{department_id}")
def update_department(
    department_id: str,
    payload: DepartmentIn,
    db: Session = Depends(get_db),
    _: Actor = Depends(admin_only),
):
    dept = _department_or_404(db, department_id)
    _save_department(db, dept, payload)
    return {"message": "Department updated successfully", "department": serialize_department(dept)}


# ----- Services -----

@router.get("/services")
def list_services(db: Session = Depends(get_db), _: Actor = Depends(admin_only)):
    request_counts = dict(
        db.query(ServiceRequest.service_id, func.count(ServiceRequest.id)).group_by(ServiceRequest.service_id).all()
    )
    out = []
    rows = (
        db.query(Service)
        .join(Department, Service.department_id == Department.id)
        .order_by(Department.name.asc(), Service.name.asc())
        .all()
    )
    for s in rows:
        item = serialize_service(s)
        item["request_count"] = int(request_counts.get(s.id, 0))
        out.append(item)
    return {"services": out}


def _apply_service(db: Session, svc: Service, payload: ServiceIn) -> None:
    dept = _department_or_404(db, payload.department_id)
    if dept is None:
        raise ValidationError("Department is required")
    svc.name = payload.name.strip()
    svc.description = payload.description
    svc.department_id = dept.id
    # Existing payments keep the amount captured at submission
    svc.fee = Decimal(payload.fee)
    svc.requirements = payload.requirements
    with unit_of_work(db):
        db.add(svc)


@router.post("/services", status_code=201)
def create_service(payload: ServiceIn, db: Session = Depends(get_db), _: Actor = Depends(admin_only)):
    svc = Service()
    _apply_service(db, svc, payload)
    return {"message": "Service created successfully", "service": serialize_service(svc)}


@router.put("/services/{service_id}")
def update_service(
    service_id: str,
    payload: ServiceIn,
    db: Session = Depends(get_db),
    _: Actor = Depends(admin_only),
):
    svc = db.get(Service, _uuid(service_id, "Service"))
    if svc is None:
        raise NotFound("Service not found")
    _apply_service(db, svc, payload)
    return {"message": "Service updated successfully", "service": serialize_service(svc)}

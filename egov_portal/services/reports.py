"""
Aggregate statistics for the admin dashboard, admin reports and the
officer dashboard.
"""
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models.models import (
    Department,
    Payment,
    PaymentStatus,
    RequestStatus,
    Service,
    ServiceRequest,
    User,
)


PERIOD_DAYS: Dict[str, Optional[int]] = {
    "week": 7,
    "month": 30,
    "year": 365,
    "all": None,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Handle naive datetimes from SQLite by assuming UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    if period not in PERIOD_DAYS:
        raise ValidationError(f"Unknown report period: {period}")
    days = PERIOD_DAYS[period]
    if days is None:
        return None
    now = now or datetime.now(timezone.utc)
    start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
    return start


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def review_stats(db: Session, reviewer_id: uuid.UUID) -> Dict[str, int]:
    row = (
        db.query(
            func.count(ServiceRequest.id),
            func.count(case((ServiceRequest.status == RequestStatus.UNDER_REVIEW, 1))),
            func.count(case((ServiceRequest.status == RequestStatus.APPROVED, 1))),
            func.count(case((ServiceRequest.status == RequestStatus.REJECTED, 1))),
        )
        .filter(ServiceRequest.reviewed_by == reviewer_id)
        .one()
    )
    return {
        "total_assigned": int(row[0] or 0),
        "in_progress": int(row[1] or 0),
        "approved": int(row[2] or 0),
        "rejected": int(row[3] or 0),
    }


def dashboard(db: Session) -> Dict[str, Any]:
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    total_requests = db.query(func.count(ServiceRequest.id)).scalar() or 0
    total_users = db.query(func.count(User.id)).scalar() or 0
    requests_today = (
        db.query(func.count(ServiceRequest.id)).filter(ServiceRequest.submitted_at >= today_start).scalar() or 0
    )
    pending_requests = (
        db.query(func.count(ServiceRequest.id))
        .filter(ServiceRequest.status == RequestStatus.SUBMITTED)
        .scalar()
        or 0
    )
    total_revenue = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == PaymentStatus.COMPLETED)
        .scalar()
    )

    by_status = (
        db.query(ServiceRequest.status, func.count(ServiceRequest.id))
        .group_by(ServiceRequest.status)
        .all()
    )
    by_department = (
        db.query(Department.name, func.count(ServiceRequest.id))
        .outerjoin(Service, Service.department_id == Department.id)
        .outerjoin(ServiceRequest, ServiceRequest.service_id == Service.id)
        .group_by(Department.id, Department.name)
        .order_by(func.count(ServiceRequest.id).desc())
        .all()
    )
    recent = (
        db.query(ServiceRequest)
        .order_by(ServiceRequest.submitted_at.desc())
        .limit(10)
        .all()
    )

    return {
        "stats": {
            "total_requests": int(total_requests),
            "total_users": int(total_users),
            "requests_today": int(requests_today),
            "pending_requests": int(pending_requests),
            "total_revenue": _money(total_revenue),
        },
        "requests_by_status": [{"status": RequestStatus(s).value, "count": int(c)} for s, c in by_status],
        "requests_by_department": [{"department_name": n, "request_count": int(c)} for n, c in by_department],
        "recent_requests": recent,
    }


def _requests_over_time(db: Session, start: Optional[datetime]) -> List[Dict[str, Any]]:
    day = func.date(ServiceRequest.submitted_at)
    query = db.query(day, ServiceRequest.status, func.count(ServiceRequest.id))
    if start is not None:
        query = query.filter(ServiceRequest.submitted_at >= start)
    rows = query.group_by(day, ServiceRequest.status).order_by(day.desc()).limit(30).all()
    return [{"date": str(d), "status": RequestStatus(s).value, "count": int(c)} for d, s, c in rows]


def _department_performance(db: Session, start: Optional[datetime]) -> List[Dict[str, Any]]:
    departments = db.query(Department).order_by(Department.name.asc()).all()
    query = db.query(
        Service.department_id, ServiceRequest.status, ServiceRequest.submitted_at, ServiceRequest.reviewed_at
    ).join(Service, ServiceRequest.service_id == Service.id)
    if start is not None:
        query = query.filter(ServiceRequest.submitted_at >= start)

    totals: Dict[uuid.UUID, Dict[str, Any]] = defaultdict(
        lambda: {"total_requests": 0, "approved": 0, "rejected": 0, "durations": []}
    )
    for department_id, status, submitted_at, reviewed_at in query.all():
        bucket = totals[department_id]
        bucket["total_requests"] += 1
        if status == RequestStatus.APPROVED:
            bucket["approved"] += 1
        elif status == RequestStatus.REJECTED:
            bucket["rejected"] += 1
        if reviewed_at is not None and submitted_at is not None:
            elapsed = _as_utc(reviewed_at) - _as_utc(submitted_at)
            bucket["durations"].append(elapsed.total_seconds() / 86400)

    result = []
    for dept in departments:
        bucket = totals[dept.id]
        durations = bucket["durations"]
        result.append(
            {
                "name": dept.name,
                "total_requests": bucket["total_requests"],
                "approved": bucket["approved"],
                "rejected": bucket["rejected"],
                "avg_processing_days": round(sum(durations) / len(durations), 2) if durations else None,
            }
        )
    result.sort(key=lambda r: r["total_requests"], reverse=True)
    return result


def _service_popularity(db: Session, start: Optional[datetime]) -> List[Dict[str, Any]]:
    join_on = ServiceRequest.service_id == Service.id
    if start is not None:
        join_on = join_on & (ServiceRequest.submitted_at >= start)
    rows = (
        db.query(Service.name, Department.name, func.count(ServiceRequest.id))
        .join(Department, Service.department_id == Department.id)
        .outerjoin(ServiceRequest, join_on)
        .group_by(Service.id, Service.name, Department.name)
        .order_by(func.count(ServiceRequest.id).desc())
        .limit(10)
        .all()
    )
    return [{"name": s, "department_name": d, "request_count": int(c)} for s, d, c in rows]


def _revenue(db: Session, start: Optional[datetime]) -> List[Dict[str, Any]]:
    day = func.date(Payment.payment_date)
    query = (
        db.query(day, Service.name, func.count(Payment.id), func.sum(Payment.amount))
        .join(ServiceRequest, Payment.request_id == ServiceRequest.id)
        .join(Service, ServiceRequest.service_id == Service.id)
        .filter(Payment.status == PaymentStatus.COMPLETED)
    )
    if start is not None:
        query = query.filter(Payment.payment_date >= start)
    rows = query.group_by(day, Service.name).order_by(day.desc()).limit(30).all()
    return [
        {"date": str(d), "service_name": s, "payment_count": int(c), "total_amount": _money(total)}
        for d, s, c, total in rows
    ]


def period_report(db: Session, period: str = "month") -> Dict[str, Any]:
    start = period_start(period)
    return {
        "period": period,
        "requests_over_time": _requests_over_time(db, start),
        "department_performance": _department_performance(db, start),
        "service_popularity": _service_popularity(db, start),
        "revenue_report": _revenue(db, start),
    }

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    ForeignKey,
    Numeric,
    Integer,
    Text,
    Index,
    CheckConstraint,
    Uuid,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    CITIZEN = "citizen"
    OFFICER = "officer"
    DEPARTMENT_HEAD = "department_head"
    ADMIN = "admin"

    @property
    def needs_department(self) -> bool:
        return self in (Role.OFFICER, Role.DEPARTMENT_HEAD)


class RequestStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


OPEN_STATUSES = (RequestStatus.SUBMITTED, RequestStatus.UNDER_REVIEW)
TERMINAL_STATUSES = (RequestStatus.APPROVED, RequestStatus.REJECTED)


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class RequestAction(str, enum.Enum):
    SUBMITTED = "submitted"
    REVIEW_STARTED = "review_started"
    ASSIGNED = "assigned"
    APPROVED = "approved"
    REJECTED = "rejected"
    REOPENED = "reopened"
    PAYMENT_COMPLETED = "payment_completed"


def _enum_column(enum_cls, name: str):
    # Persist the lowercase values and guard them with a CHECK constraint
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    services = relationship("Service", back_populates="department")
    staff = relationship("User", back_populates="department")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    national_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(_enum_column(Role, "user_role"), nullable=False, default=Role.CITIZEN)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL")
    )
    job_title: Mapped[Optional[str]] = mapped_column(String(150))
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date)
    contact_info: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    department = relationship("Department", back_populates="staff")


class Service(Base):
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=False, index=True
    )
    fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    requirements: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    department = relationship("Department", back_populates="services")

    __table_args__ = (CheckConstraint("fee >= 0", name="ck_services_fee_non_negative"),)


class ServiceRequest(Base):
    """A citizen's application for a service; aggregate root for documents and payment."""
    __tablename__ = "requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    citizen_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("services.id"), nullable=False, index=True
    )
    status: Mapped[RequestStatus] = mapped_column(
        _enum_column(RequestStatus, "request_status"), nullable=False, default=RequestStatus.SUBMITTED
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    citizen = relationship("User", foreign_keys=[citizen_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
    service = relationship("Service")
    documents = relationship(
        "Document", back_populates="request", cascade="all, delete-orphan", order_by="Document.uploaded_at.desc()"
    )
    payments = relationship("Payment", back_populates="request", cascade="all, delete-orphan")
    events = relationship(
        "RequestEvent", back_populates="request", cascade="all, delete-orphan", order_by="RequestEvent.created_at"
    )

    __table_args__ = (
        Index("idx_requests_status_submitted", "status", "submitted_at"),
    )

    @property
    def payment(self) -> Optional["Payment"]:
        return self.payments[0] if self.payments else None


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)  # original name from the upload
    locator: Mapped[str] = mapped_column(String(1024), nullable=False)  # path or URL returned by storage
    storage_key: Mapped[Optional[str]] = mapped_column(String(1024))  # key for reading the file back
    content_type: Mapped[Optional[str]] = mapped_column(String(100))
    size_bytes: Mapped[Optional[int]] = mapped_column(Integer)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    request = relationship("ServiceRequest", back_populates="documents")


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # fee snapshot at submission
    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    request = relationship("ServiceRequest", back_populates="payments")


class Notification(Base):
    """Append-only messages to a user"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )


class RequestEvent(Base):
    """Review history: one row per lifecycle transition"""
    __tablename__ = "request_events"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[RequestAction] = mapped_column(_enum_column(RequestAction, "request_action"), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"))
    detail: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    request = relationship("ServiceRequest", back_populates="events")
    actor = relationship("User")

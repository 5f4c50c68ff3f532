"""
Seed the local database with sample departments, services and one user per role.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (name for departments, email for users,
name + department for services).
"""

from decimal import Decimal
from typing import Optional

from egov_portal.auth.security import get_password_hash
from egov_portal.db import Base, SessionLocal, engine
from egov_portal.models.models import Department, Role, Service, User


def ensure_department(session, name: str, description: str = "") -> Department:
    dept = session.query(Department).filter(Department.name == name).first()
    if dept:
        if description and dept.description != description:
            dept.description = description
            session.add(dept)
        return dept
    dept = Department(name=name, description=description or None)
    session.add(dept)
    session.flush()
    return dept


def ensure_service(session, department: Department, name: str, fee: str, description: str = "", requirements: str = "") -> Service:
    svc = (
        session.query(Service)
        .filter(Service.department_id == department.id, Service.name == name)
        .first()
    )
    if svc:
        svc.fee = Decimal(fee)
        svc.description = description or svc.description
        svc.requirements = requirements or svc.requirements
        session.add(svc)
        session.flush()
        return svc
    svc = Service(
        name=name,
        department_id=department.id,
        fee=Decimal(fee),
        description=description or None,
        requirements=requirements or None,
    )
    session.add(svc)
    session.flush()
    return svc


def ensure_user(
    session,
    national_id: str,
    name: str,
    email: str,
    password: str,
    role: Role,
    department: Optional[Department] = None,
    job_title: Optional[str] = None,
) -> User:
    user = session.query(User).filter((User.email == email) | (User.national_id == national_id)).first()
    if user:
        user.name = name
        user.role = role
        user.department_id = department.id if (department and role.needs_department) else None
        user.job_title = job_title
        # Keep existing password
        if not user.password_hash:
            user.password_hash = get_password_hash(password)
        session.add(user)
        session.flush()
        return user
    user = User(
        national_id=national_id,
        name=name,
        email=email,
        password_hash=get_password_hash(password),
        role=role,
        department_id=department.id if (department and role.needs_department) else None,
        job_title=job_title,
    )
    session.add(user)
    session.flush()
    return user


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        civil = ensure_department(session, "Civil Registration", "Births, marriages and identity documents")
        transport = ensure_department(session, "Transport", "Driving licences and vehicle registration")
        lands = ensure_department(session, "Lands", "Property and land records")

        ensure_service(session, civil, "Birth Certificate", "250.00", "Certified copy of a birth record", "Hospital notification, parent ID")
        ensure_service(session, civil, "National ID Renewal", "0.00", "Renew an expiring national ID card", "Old ID card, passport photo")
        ensure_service(session, transport, "Driving Licence Renewal", "1200.00", "Renew a driving licence", "Current licence, medical certificate")
        ensure_service(session, lands, "Land Title Search", "500.00", "Official search of the land register", "Parcel number")

        ensure_user(session, "ADM-0001", "Portal Admin", "admin@portal.example.com", "TestAdmin123!", Role.ADMIN, job_title="System Administrator")
        ensure_user(session, "DH-0001", "Dana Head", "dana.head@portal.example.com", "TestUser123!", Role.DEPARTMENT_HEAD, civil, "Head of Civil Registration")
        ensure_user(session, "OFF-0001", "Omar Officer", "omar.officer@portal.example.com", "TestUser123!", Role.OFFICER, civil, "Registration Officer")
        ensure_user(session, "OFF-0002", "Tess Transport", "tess.transport@portal.example.com", "TestUser123!", Role.OFFICER, transport, "Licensing Officer")
        ensure_user(session, "CIT-0001", "Carla Citizen", "carla@example.com", "TestUser123!", Role.CITIZEN)

        session.commit()
        print("Seed completed.")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()

"""
Test configuration and fixtures
"""
import os
from decimal import Decimal

import pytest

# Set testing environment before the app reads its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["ENABLE_EMAIL"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["JWT_SECRET"] = "test-jwt-secret-for-testing-only"

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from egov_portal.auth.security import create_access_token, get_password_hash
from egov_portal.db import Base, get_db
from egov_portal.main import app
from egov_portal.models.models import Department, Role, Service, User
from egov_portal.routes.citizen import get_storage
from egov_portal.services.permissions import Actor
from egov_portal.services.request_service import UploadedDocument
from egov_portal.storage.local_provider import LocalStorageProvider


PASSWORD = "testpassword123"

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=test_engine, autoflush=False, autocommit=False)


@pytest.fixture
def db():
    """Fresh schema and session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def client(db, storage):
    """Test client sharing the test session and storage"""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _add(db, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


def make_user(db, role, name, email, national_id, department=None):
    return _add(
        db,
        User(
            national_id=national_id,
            name=name,
            email=email,
            password_hash=get_password_hash(PASSWORD),
            role=role,
            department_id=department.id if department else None,
        ),
    )


@pytest.fixture
def civil(db):
    return _add(db, Department(name="Civil Registration", description="Births and identity documents"))


@pytest.fixture
def transport(db):
    return _add(db, Department(name="Transport", description="Licences and vehicles"))


@pytest.fixture
def birth_certificate(db, civil):
    return _add(db, Service(name="Birth Certificate", department_id=civil.id, fee=Decimal("250.00")))


@pytest.fixture
def free_service(db, civil):
    return _add(db, Service(name="National ID Renewal", department_id=civil.id, fee=Decimal("0.00")))


@pytest.fixture
def licence_renewal(db, transport):
    return _add(db, Service(name="Driving Licence Renewal", department_id=transport.id, fee=Decimal("1200.00")))


@pytest.fixture
def citizen(db):
    return make_user(db, Role.CITIZEN, "Carla Citizen", "carla@example.com", "CIT-001")


@pytest.fixture
def other_citizen(db):
    return make_user(db, Role.CITIZEN, "Chris Citizen", "chris@example.com", "CIT-002")


@pytest.fixture
def officer(db, civil):
    return make_user(db, Role.OFFICER, "Omar Officer", "omar@example.com", "OFF-001", civil)


@pytest.fixture
def second_officer(db, civil):
    return make_user(db, Role.OFFICER, "Olga Officer", "olga@example.com", "OFF-002", civil)


@pytest.fixture
def transport_officer(db, transport):
    return make_user(db, Role.OFFICER, "Tess Transport", "tess@example.com", "OFF-003", transport)


@pytest.fixture
def department_head(db, civil):
    return make_user(db, Role.DEPARTMENT_HEAD, "Dana Head", "dana@example.com", "DH-001", civil)


@pytest.fixture
def admin(db):
    return make_user(db, Role.ADMIN, "Ada Admin", "ada@example.com", "ADM-001")


def actor(user):
    return Actor.from_user(user)


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def pdf(name="form.pdf", size=128):
    return UploadedDocument(filename=name, content_type="application/pdf", data=b"%PDF" + b"0" * size)


def png(name="photo.png", size=64):
    return UploadedDocument(filename=name, content_type="image/png", data=b"\x89PNG" + b"0" * size)

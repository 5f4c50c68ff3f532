from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import ConflictError, ValidationError
from ..logging import structlog
from ..models.models import Role, User
from ..schemas.auth import LoginRequest, MeResponse, RegisterRequest, TokenResponse
from .security import (
    create_access_token,
    dashboard_path,
    get_current_user,
    get_password_hash,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])

DUPLICATE_ACCOUNT = "Email or National ID already exists"


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    if payload.password != payload.confirm_password:
        raise ValidationError("Passwords do not match")
    email = payload.email.lower()
    existing = (
        db.query(User)
        .filter(or_(User.email == email, User.national_id == payload.national_id))
        .first()
    )
    if existing:
        raise ConflictError(DUPLICATE_ACCOUNT)
    user = User(
        national_id=payload.national_id.strip(),
        name=payload.name.strip(),
        email=email,
        password_hash=get_password_hash(payload.password),
        role=Role.CITIZEN,
        date_of_birth=payload.date_of_birth,
        contact_info=payload.contact_info,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same identity
        db.rollback()
        raise ConflictError(DUPLICATE_ACCOUNT)
    structlog.get_logger().info("citizen_registered", user_id=str(user.id))
    return {"message": "Registration successful. Please login.", "id": str(user.id)}


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    role = Role(user.role)
    return TokenResponse(
        access_token=create_access_token(user),
        role=role.value,
        redirect_to=dashboard_path(role),
    )


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=str(user.id),
        national_id=user.national_id,
        name=user.name,
        email=user.email,
        role=Role(user.role).value,
        department_id=str(user.department_id) if user.department_id else None,
        department_name=user.department.name if user.department else None,
        job_title=user.job_title,
    )

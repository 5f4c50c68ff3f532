from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..models.models import Role


class UserCreate(BaseModel):
    national_id: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(min_length=8)
    role: Role
    department_id: Optional[str] = None
    job_title: Optional[str] = None
    date_of_birth: Optional[date] = None
    contact_info: Optional[str] = None


class UserUpdate(BaseModel):
    national_id: Optional[str] = Field(default=None, min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    # Blank keeps the current password
    password: Optional[str] = None
    role: Optional[Role] = None
    department_id: Optional[str] = None
    job_title: Optional[str] = None
    contact_info: Optional[str] = None

    @field_validator("password")
    @classmethod
    def _password_length(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v or None


class DepartmentIn(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    description: Optional[str] = None


class ServiceIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    department_id: str
    fee: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    requirements: Optional[str] = None

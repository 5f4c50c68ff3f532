from datetime import date
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    national_id: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(min_length=8)
    confirm_password: str
    date_of_birth: Optional[date] = None
    contact_info: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    redirect_to: str


class MeResponse(BaseModel):
    id: str
    national_id: str
    name: str
    email: EmailStr
    role: str
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    job_title: Optional[str] = None

from typing import Literal

from pydantic import BaseModel, EmailStr, field_validator


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: str
    # Admin hesabı kayıtla açılmaz; /admin/users/{id}/role ile verilir
    role: Literal["patient", "doctor"] = "patient"

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("Password must be at least 6 characters.")
        return v

    @field_validator("full_name")
    @classmethod
    def full_name_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Please enter your full name.")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str
    # Hangi giriş ekranından gelindi; hesabın rolü ile uyuşmazsa 403
    portal: Literal["patient", "doctor", "admin"] | None = None


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    role: str


class UserUpdate(BaseModel):
    full_name: str | None = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str

from datetime import datetime

from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str = ""
    role: str = Field(default="patient", index=True)  # "patient" | "doctor" | "admin"
    created_at: datetime | None = Field(default_factory=datetime.utcnow)
    is_banned: bool = False  # askıya alınmış hesap: her istekte 403
    last_login_at: datetime | None = None

"""Beklenmeyen sunucu hataları: global exception handler yazar, /admin/errors listeler.

request_id, hatalı yanıtın gövdesindeki request_id ile aynıdır (destek talebinde eşleştirmek için)."""
from datetime import datetime

from sqlmodel import Field, SQLModel


class ErrorLog(SQLModel, table=True):
    __tablename__ = "error_logs"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, index=True)
    request_id: str | None = Field(default=None, index=True)
    endpoint: str | None = None
    method: str | None = None
    error_message: str | None = None
    stack_trace: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

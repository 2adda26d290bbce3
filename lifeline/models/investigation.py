"""Vaka kaydı: hasta başına bir klinik inceleme (adımlar + durum)."""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return uuid4().hex


class Investigation(SQLModel, table=True):
    __tablename__ = "investigations"
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    user_name: str = ""
    status: str = Field(default="pending_review", index=True)
    # Adımlar sıralı, sadece sona eklenir; son eleman "güncel" adımdır
    steps: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    doctor_plan: dict | None = Field(default=None, sa_column=Column(JSON))
    final_diagnosis: list | None = Field(default=None, sa_column=Column(JSON))
    final_treatment_plan: dict | None = Field(default=None, sa_column=Column(JSON))
    doctor_note: str | None = None
    reviewed_by_uid: int | None = Field(default=None, index=True)
    reviewed_by_name: str | None = None
    urgency: str | None = None  # kuyruk sıralaması için ilk triyaj analizinden kopyalanır
    version: int = 1  # her workflow yazımında +1 (optimistic concurrency)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    last_message_at: datetime | None = None
    last_message_preview: str | None = None

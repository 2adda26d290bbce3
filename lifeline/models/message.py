"""Vaka içi mesajlaşma: hasta ↔ vakayı üstlenen doktor."""
from datetime import datetime

from sqlmodel import Field, SQLModel


class CaseMessage(SQLModel, table=True):
    __tablename__ = "case_messages"
    id: int | None = Field(default=None, primary_key=True)
    investigation_id: str = Field(foreign_key="investigations.id", index=True)
    author_id: int = Field(foreign_key="user.id", index=True)
    author_name: str = ""
    author_role: str = "patient"
    content: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    edited: bool = False
    edited_at: datetime | None = None

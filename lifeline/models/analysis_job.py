"""AI analiz kuyruğu: pending → processing → done | failed."""
from datetime import datetime

from sqlmodel import Field, SQLModel


class AnalysisJob(SQLModel, table=True):
    __tablename__ = "analysis_jobs"
    id: int | None = Field(default=None, primary_key=True)
    investigation_id: str = Field(foreign_key="investigations.id", index=True)
    step_index: int = 0  # Investigation.steps içindeki adım
    kind: str = "triage"  # triage | follow_up
    status: str = Field(default="pending", index=True)  # pending | processing | done | failed
    duration_ms: int | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)

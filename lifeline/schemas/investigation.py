"""
Vaka (investigation) belgesi ve adımları.

Alan adları belge biçiminde camelCase (userId, doctorPlan, aiAnalysis...);
Python tarafında snake_case. to_document / from_document ikisi arasında birebir dönüşüm yapar.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class InvestigationStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    AWAITING_LAB_RESULTS = "awaiting_lab_results"
    AWAITING_FOLLOW_UP_VISIT = "awaiting_follow_up_visit"
    PENDING_FINAL_REVIEW = "pending_final_review"
    COMPLETED = "completed"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({InvestigationStatus.COMPLETED, InvestigationStatus.REJECTED})


class StepType(str, Enum):
    INITIAL_SUBMISSION = "initial_submission"
    LAB_RESULT_SUBMISSION = "lab_result_submission"
    FOLLOW_UP_SUBMISSION = "follow_up_submission"


Urgency = Literal["Low", "Medium", "High", "Critical"]
AnalysisStatus = Literal["pending", "done", "failed"]


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Medication(DocumentModel):
    name: str
    dosage: str = ""


class Condition(DocumentModel):
    condition: str
    probability: int = Field(ge=0, le=100)
    reasoning: str = ""


class SuggestedNextSteps(DocumentModel):
    preliminary_medications: list[Medication] = Field(default_factory=list)
    suggested_lab_tests: list[str] = Field(default_factory=list)


class TreatmentPlan(DocumentModel):
    medications: list[str] = Field(default_factory=list)
    lifestyle_changes: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(m.strip() for m in self.medications) and not any(c.strip() for c in self.lifestyle_changes)


class TriageAnalysis(DocumentModel):
    """İlk başvurunun AI triyaj çıktısı (initial_submission)."""

    kind: Literal["triage"] = "triage"
    analysis_summary: str
    potential_conditions: list[Condition] = Field(default_factory=list)
    suggested_next_steps: SuggestedNextSteps = Field(default_factory=SuggestedNextSteps)
    justification: str = ""
    urgency: Urgency = "Medium"
    follow_up_plan: str = ""
    is_final_diagnosis_possible: bool = False


class FollowUpAnalysis(DocumentModel):
    """Tahlil sonuçları geldikten sonraki derin analiz (lab_result / follow_up adımları)."""

    kind: Literal["follow_up"] = "follow_up"
    refined_analysis: str
    final_diagnosis: list[Condition] = Field(default_factory=list)
    final_treatment_plan: TreatmentPlan = Field(default_factory=TreatmentPlan)
    justification: str = ""
    is_final_diagnosis_possible: bool = True


AIAnalysis = Annotated[Union[TriageAnalysis, FollowUpAnalysis], Field(discriminator="kind")]


class LabResult(DocumentModel):
    test_name: str
    image_data_uri: str


class StepInput(DocumentModel):
    chat_transcript: str | None = None
    image_data_uri: str | None = None
    lab_results: list[LabResult] | None = None
    note: str | None = None


class InvestigationStep(DocumentModel):
    type: StepType
    timestamp: datetime
    user_input: StepInput = Field(default_factory=StepInput)
    ai_analysis: AIAnalysis | None = None
    analysis_status: AnalysisStatus = "pending"
    analysis_error: str | None = None


class DoctorPlan(DocumentModel):
    preliminary_medications: list[Medication] = Field(default_factory=list)
    suggested_lab_tests: list[str] = Field(default_factory=list)
    note: str | None = None


class InvestigationRecord(DocumentModel):
    id: str
    user_id: int
    user_name: str = ""
    status: InvestigationStatus = InvestigationStatus.PENDING_REVIEW
    steps: list[InvestigationStep] = Field(default_factory=list)
    doctor_plan: DoctorPlan | None = None
    final_diagnosis: list[Condition] | None = None
    final_treatment_plan: TreatmentPlan | None = None
    doctor_note: str | None = None
    reviewed_by_uid: int | None = None
    reviewed_by_name: str | None = None
    version: int = 1
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime | None = None
    last_message_preview: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self) -> InvestigationStep:
        return self.steps[-1]

    @property
    def urgency(self) -> str | None:
        triage = self.latest_analysis(TriageAnalysis)
        return triage.urgency if triage else None

    def latest_analysis(self, kind: type) -> Any:
        """Adımlar içinde verilen türdeki en son AI analizini döner (yoksa None)."""
        for step in reversed(self.steps):
            if isinstance(step.ai_analysis, kind):
                return step.ai_analysis
        return None

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, doc: dict) -> "InvestigationRecord":
        return cls.model_validate(doc)


# --- İstek gövdeleri ---


class ChatMessage(DocumentModel):
    role: Literal["user", "model"]
    content: str
    # İstemci, /interview/next yanıtındaki isFinalQuestion bayrağını model mesajıyla geri gönderir
    is_final_question: bool = False


class SubmitInvestigationRequest(DocumentModel):
    """Görüşme dökümü (hazır metin) veya mesaj listesi; ikisinden biri zorunlu."""

    chat_transcript: str | None = None
    messages: list[ChatMessage] | None = None
    image_data_uri: str | None = None


class LabResultsRequest(DocumentModel):
    version: int
    lab_results: list[LabResult]
    note: str | None = None


class PlanRequest(DocumentModel):
    version: int
    plan: DoctorPlan | None = None  # boşsa AI'ın önerdiği sonraki adımlar kullanılır


class VersionRequest(DocumentModel):
    version: int


class CompleteRequest(DocumentModel):
    version: int
    final_diagnosis: list[Condition] | None = None
    final_treatment_plan: TreatmentPlan | None = None
    note: str | None = None


class RejectRequest(DocumentModel):
    version: int
    note: str = ""


class InvestigationSummary(DocumentModel):
    """Liste görünümü: adımların tamamı (görseller) gönderilmez."""

    id: str
    user_id: int
    user_name: str
    status: InvestigationStatus
    urgency: str | None = None
    step_count: int
    analysis_status: AnalysisStatus
    reviewed_by_name: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime | None = None

    @classmethod
    def from_record(cls, record: InvestigationRecord) -> "InvestigationSummary":
        return cls(
            id=record.id,
            user_id=record.user_id,
            user_name=record.user_name,
            status=record.status,
            urgency=record.urgency,
            step_count=len(record.steps),
            analysis_status=record.current_step.analysis_status,
            reviewed_by_name=record.reviewed_by_name,
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
            last_message_at=record.last_message_at,
        )


class SubmitResponse(DocumentModel):
    investigation: InvestigationRecord
    analysis_job_id: int | None = None

"""
Vaka iş akışı (state machine).

Saf fonksiyonlar: (kayıt, aktör, eylem) -> yeni kayıt veya WorkflowError.
Veritabanına dokunmaz; servis katmanı sonucu versiyon kontrolüyle yazar.

    pending_review ──request_lab_tests──────► awaiting_lab_results ──submit──┐
          │ ──dispatch_follow_up_visit──► awaiting_follow_up_visit ──submit──┤
          │ ──escalate_final_review──────────────────────────────────────────┤
          │                                                                 ▼
          ├──complete / reject──► completed | rejected ◄── pending_final_review
"""
from datetime import datetime
from enum import Enum
from typing import ClassVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from lifeline.schemas.investigation import (
    Condition,
    DoctorPlan,
    FollowUpAnalysis,
    InvestigationRecord,
    InvestigationStatus,
    InvestigationStep,
    LabResult,
    StepInput,
    StepType,
    TreatmentPlan,
    TriageAnalysis,
)

S = InvestigationStatus


class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: int
    name: str = ""
    role: Role


# --- Hatalar ---


class WorkflowError(Exception):
    """İş akışı kuralı ihlali. status_code: HTTP karşılığı (main'deki handler kullanır)."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PermissionDenied(WorkflowError):
    status_code = 403


class InvalidTransition(WorkflowError):
    status_code = 409


class VersionConflict(WorkflowError):
    status_code = 409


class WorkflowValidationError(WorkflowError):
    status_code = 422


class InvestigationNotFound(WorkflowError):
    status_code = 404


# --- Eylemler ---


class Action(BaseModel):
    name: ClassVar[str]
    role: ClassVar[Role] = Role.DOCTOR


class RequestLabTests(Action):
    name: ClassVar[str] = "request_lab_tests"
    plan: DoctorPlan | None = None


class DispatchFollowUpVisit(Action):
    name: ClassVar[str] = "dispatch_follow_up_visit"
    plan: DoctorPlan | None = None


class EscalateFinalReview(Action):
    name: ClassVar[str] = "escalate_final_review"


class Complete(Action):
    name: ClassVar[str] = "complete"
    final_diagnosis: list[Condition] | None = None
    final_treatment_plan: TreatmentPlan | None = None
    note: str | None = None


class Reject(Action):
    name: ClassVar[str] = "reject"
    note: str = ""


class SubmitLabResults(Action):
    name: ClassVar[str] = "submit_lab_results"
    role: ClassVar[Role] = Role.PATIENT
    lab_results: list[LabResult] = Field(default_factory=list)
    note: str | None = None


# (mevcut durum, eylem) -> hedef durum. Tabloda olmayan her çift geçersizdir.
TRANSITIONS: dict[tuple[InvestigationStatus, str], InvestigationStatus] = {
    (S.PENDING_REVIEW, RequestLabTests.name): S.AWAITING_LAB_RESULTS,
    (S.PENDING_REVIEW, DispatchFollowUpVisit.name): S.AWAITING_FOLLOW_UP_VISIT,
    (S.PENDING_REVIEW, EscalateFinalReview.name): S.PENDING_FINAL_REVIEW,
    (S.PENDING_REVIEW, Complete.name): S.COMPLETED,
    (S.PENDING_REVIEW, Reject.name): S.REJECTED,
    (S.AWAITING_LAB_RESULTS, SubmitLabResults.name): S.PENDING_FINAL_REVIEW,
    (S.AWAITING_FOLLOW_UP_VISIT, SubmitLabResults.name): S.PENDING_FINAL_REVIEW,
    (S.PENDING_FINAL_REVIEW, Complete.name): S.COMPLETED,
    (S.PENDING_FINAL_REVIEW, Reject.name): S.REJECTED,
}

DOCTOR_ONLY_FIELDS = ("status", "doctor_plan", "final_diagnosis", "final_treatment_plan", "doctor_note")


def allowed_actions(status: InvestigationStatus) -> list[str]:
    return [action for (src, action), _ in TRANSITIONS.items() if src == status]


def new_investigation(
    actor: Actor,
    chat_transcript: str,
    image_data_uri: str | None = None,
    now: datetime | None = None,
) -> InvestigationRecord:
    """Hastanın ilk başvurusu: tek initial_submission adımı, durum pending_review, analiz bekliyor."""
    if actor.role != Role.PATIENT:
        raise PermissionDenied("Only patients can open an investigation.")
    transcript = (chat_transcript or "").strip()
    if not transcript:
        raise WorkflowValidationError("The interview transcript is empty.")
    now = now or datetime.utcnow()
    step = InvestigationStep(
        type=StepType.INITIAL_SUBMISSION,
        timestamp=now,
        user_input=StepInput(chat_transcript=transcript, image_data_uri=image_data_uri or None),
    )
    return InvestigationRecord(
        id=uuid4().hex,
        user_id=actor.uid,
        user_name=actor.name or "User",
        status=S.PENDING_REVIEW,
        steps=[step],
        version=1,
        created_at=now,
        updated_at=now,
    )


def apply(
    record: InvestigationRecord,
    actor: Actor,
    action: Action,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> InvestigationRecord:
    """
    Eylemi kayda uygular ve yeni kaydı döner; orijinal kayıt değişmez.

    Kontrol sırası: versiyon, rol, sahiplik, kapalı vaka, geçiş tablosu, yük doğrulaması.
    Hata olursa hiçbir şey yazılmamış olur (saf fonksiyon).
    """
    if expected_version is not None and expected_version != record.version:
        raise VersionConflict(
            f"Investigation was modified (version {record.version}, you sent {expected_version}). Reload and try again."
        )
    _check_actor(record, actor, action)
    if record.is_terminal:
        raise InvalidTransition(f"Investigation is closed ({record.status.value}); no further changes are allowed.")
    target = TRANSITIONS.get((record.status, action.name))
    if target is None:
        raise InvalidTransition(f"Action '{action.name}' is not allowed while the investigation is {record.status.value}.")

    now = now or datetime.utcnow()
    updates = _HANDLERS[action.name](record, action, now)
    updates["status"] = target
    updates["version"] = record.version + 1
    updates["updated_at"] = now
    if action.role == Role.DOCTOR and record.reviewed_by_uid is None:
        updates["reviewed_by_uid"] = actor.uid
        updates["reviewed_by_name"] = actor.name or None
    return record.model_copy(update=updates)


def _check_actor(record: InvestigationRecord, actor: Actor, action: Action) -> None:
    if actor.role != action.role:
        if action.role == Role.DOCTOR:
            raise PermissionDenied("Only a doctor can change the status, plan or diagnosis of an investigation.")
        raise PermissionDenied("Only the patient can submit results for this investigation.")
    if action.role == Role.PATIENT and record.user_id != actor.uid:
        raise PermissionDenied("You can only submit results for your own investigation.")
    if action.role == Role.DOCTOR and record.reviewed_by_uid is not None and record.reviewed_by_uid != actor.uid:
        raise PermissionDenied("This investigation is assigned to another doctor.")


def _plan_updates(record: InvestigationRecord, plan: DoctorPlan | None) -> dict:
    if plan is None:
        triage: TriageAnalysis | None = record.latest_analysis(TriageAnalysis)
        if triage is None:
            raise WorkflowValidationError("No plan given and the AI analysis is not available yet.")
        plan = DoctorPlan(
            preliminary_medications=list(triage.suggested_next_steps.preliminary_medications),
            suggested_lab_tests=list(triage.suggested_next_steps.suggested_lab_tests),
        )
    tests = [t.strip() for t in plan.suggested_lab_tests if t and t.strip()]
    if not tests:
        raise WorkflowValidationError("The plan must request at least one lab test.")
    if len(set(tests)) != len(tests):
        raise WorkflowValidationError("Lab tests in the plan must be unique.")
    note = (plan.note or "").strip() or None
    return {"doctor_plan": plan.model_copy(update={"suggested_lab_tests": tests, "note": note})}


def _request_lab_tests(record: InvestigationRecord, action: RequestLabTests, now: datetime) -> dict:
    return _plan_updates(record, action.plan)


def _dispatch_follow_up_visit(record: InvestigationRecord, action: DispatchFollowUpVisit, now: datetime) -> dict:
    return _plan_updates(record, action.plan)


def _escalate_final_review(record: InvestigationRecord, action: EscalateFinalReview, now: datetime) -> dict:
    return {}


def _complete(record: InvestigationRecord, action: Complete, now: datetime) -> dict:
    follow_up: FollowUpAnalysis | None = record.latest_analysis(FollowUpAnalysis)
    diagnosis = action.final_diagnosis
    if diagnosis is None and follow_up is not None:
        diagnosis = list(follow_up.final_diagnosis)
    treatment = action.final_treatment_plan
    if treatment is None and follow_up is not None:
        treatment = follow_up.final_treatment_plan
    diagnosis = [d for d in (diagnosis or []) if d.condition.strip()]
    if not diagnosis:
        raise WorkflowValidationError("A final diagnosis is required to complete the investigation.")
    if treatment is None or treatment.is_empty():
        raise WorkflowValidationError("A treatment plan is required to complete the investigation.")
    return {
        "final_diagnosis": diagnosis,
        "final_treatment_plan": treatment,
        "doctor_note": (action.note or "").strip() or None,
    }


def _reject(record: InvestigationRecord, action: Reject, now: datetime) -> dict:
    note = (action.note or "").strip()
    if not note:
        raise WorkflowValidationError("A note is required to reject the investigation.")
    return {"doctor_note": note}


def _submit_lab_results(record: InvestigationRecord, action: SubmitLabResults, now: datetime) -> dict:
    required = list(record.doctor_plan.suggested_lab_tests) if record.doctor_plan else []
    names = [r.test_name.strip() for r in action.lab_results]
    if len(set(names)) != len(names):
        raise WorkflowValidationError("Each lab test can only be uploaded once.")
    uploaded = {r.test_name.strip(): r for r in action.lab_results if r.image_data_uri and r.image_data_uri.strip()}
    missing = [t for t in required if t not in uploaded]
    if missing:
        raise WorkflowValidationError("Please upload all required lab test results. Missing: " + ", ".join(missing))
    if not uploaded:
        raise WorkflowValidationError("No lab results were uploaded.")
    # Önce istenen testler (plandaki sırayla), sonra ekstra yüklenenler
    ordered = [uploaded[t] for t in required] + [r for name, r in uploaded.items() if name not in required]
    step_type = (
        StepType.FOLLOW_UP_SUBMISSION
        if record.status == S.AWAITING_FOLLOW_UP_VISIT
        else StepType.LAB_RESULT_SUBMISSION
    )
    step = InvestigationStep(
        type=step_type,
        timestamp=now,
        user_input=StepInput(lab_results=ordered, note=(action.note or "").strip() or None),
    )
    return {"steps": [*record.steps, step]}


_HANDLERS = {
    RequestLabTests.name: _request_lab_tests,
    DispatchFollowUpVisit.name: _dispatch_follow_up_visit,
    EscalateFinalReview.name: _escalate_final_review,
    Complete.name: _complete,
    Reject.name: _reject,
    SubmitLabResults.name: _submit_lab_results,
}


# --- AI analizinin adıma bağlanması (sistem yazımı; aktör kontrolü yok) ---


def attach_analysis(
    record: InvestigationRecord,
    step_index: int,
    analysis: TriageAnalysis | FollowUpAnalysis,
    now: datetime | None = None,
) -> InvestigationRecord:
    steps = list(record.steps)
    steps[step_index] = steps[step_index].model_copy(
        update={"ai_analysis": analysis, "analysis_status": "done", "analysis_error": None}
    )
    return record.model_copy(
        update={"steps": steps, "version": record.version + 1, "updated_at": now or datetime.utcnow()}
    )


def mark_analysis(
    record: InvestigationRecord,
    step_index: int,
    status: str,
    error: str | None = None,
    now: datetime | None = None,
) -> InvestigationRecord:
    """Adımın analiz durumunu değiştirir (failed / yeniden deneme için pending)."""
    steps = list(record.steps)
    steps[step_index] = steps[step_index].model_copy(update={"analysis_status": status, "analysis_error": error})
    return record.model_copy(
        update={"steps": steps, "version": record.version + 1, "updated_at": now or datetime.utcnow()}
    )

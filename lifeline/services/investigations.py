"""
Vaka servis katmanı: DB satırı <-> InvestigationRecord dönüşümü, versiyon kontrollü yazım,
iki aşamalı başvuru (önce kayıt, sonra arka planda AI analizi) ve listeleme sorguları.
"""
import base64
import binascii
import logging
import re
import time
from datetime import datetime

from sqlalchemy import case, update
from sqlmodel import Session, select

from lifeline.core.config import settings
from lifeline.core.database import engine
from lifeline.models import AnalysisJob, AuditLog, Investigation
from lifeline.schemas.investigation import (
    FollowUpAnalysis,
    InvestigationRecord,
    InvestigationStatus,
    StepType,
    TriageAnalysis,
)
from lifeline.services import ai, workflow
from lifeline.services.workflow import (
    Action,
    Actor,
    InvestigationNotFound,
    PermissionDenied,
    Role,
    SubmitLabResults,
    VersionConflict,
    WorkflowValidationError,
)

log = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:image/(png|jpeg|jpg|webp);base64,(?P<data>[A-Za-z0-9+/=\s]+)$")
URGENCY_RANK = {"Critical": 0, "High": 1, "Medium": 2, "Low": 3}
# Arka plan analizi yazarken versiyon çakışırsa kaç kez yeniden okunup denenecek
SYSTEM_WRITE_ATTEMPTS = 3


def validate_image_data_uri(uri: str | None, field: str = "image") -> str | None:
    """data:image/...;base64,... biçimi ve boyut kontrolü. Boşsa None."""
    if not uri or not uri.strip():
        return None
    m = DATA_URI_RE.match(uri.strip())
    if not m:
        raise WorkflowValidationError(f"{field}: only PNG, JPEG or WEBP images are accepted (data URI).")
    try:
        raw = base64.b64decode(m.group("data"), validate=False)
    except (binascii.Error, ValueError):
        raise WorkflowValidationError(f"{field}: image data could not be decoded.")
    if not raw:
        raise WorkflowValidationError(f"{field}: image is empty.")
    if len(raw) > settings.upload_max_mb * 1024 * 1024:
        raise WorkflowValidationError(f"{field}: image must be at most {settings.upload_max_mb} MB.")
    return uri.strip()


# --- Satır dönüşümleri ---


def row_to_record(row: Investigation) -> InvestigationRecord:
    return InvestigationRecord.model_validate(
        {
            "id": row.id,
            "user_id": row.user_id,
            "user_name": row.user_name,
            "status": row.status,
            "steps": row.steps or [],
            "doctor_plan": row.doctor_plan,
            "final_diagnosis": row.final_diagnosis,
            "final_treatment_plan": row.final_treatment_plan,
            "doctor_note": row.doctor_note,
            "reviewed_by_uid": row.reviewed_by_uid,
            "reviewed_by_name": row.reviewed_by_name,
            "version": row.version,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
            "last_message_at": row.last_message_at,
            "last_message_preview": row.last_message_preview,
        }
    )


def _row_values(record: InvestigationRecord) -> dict:
    """Kayıttaki workflow alanlarını DB sütun değerlerine çevirir (JSON alanlar belge biçiminde)."""
    doc = record.to_document()
    return {
        "status": record.status.value,
        "steps": doc["steps"],
        "doctor_plan": doc["doctorPlan"],
        "final_diagnosis": doc["finalDiagnosis"],
        "final_treatment_plan": doc["finalTreatmentPlan"],
        "doctor_note": record.doctor_note,
        "reviewed_by_uid": record.reviewed_by_uid,
        "reviewed_by_name": record.reviewed_by_name,
        "urgency": record.urgency,
        "version": record.version,
        "updated_at": record.updated_at,
    }


def _audit(db: Session, event: str, user_id: int | None, investigation_id: str | None) -> None:
    try:
        db.add(AuditLog(event=event, user_id=user_id, investigation_id=investigation_id))
        db.commit()
    except Exception as e:
        db.rollback()
        log.warning("AuditLog write failed (%s): %s", event, e)


# --- Okuma ---


def load_investigation(db: Session, investigation_id: str) -> InvestigationRecord:
    row = db.get(Investigation, investigation_id)
    if row is None:
        raise InvestigationNotFound("Investigation not found.")
    db.refresh(row)
    return row_to_record(row)


def can_view(actor: Actor, record: InvestigationRecord) -> bool:
    if actor.role == Role.ADMIN:
        return True
    if actor.role == Role.PATIENT:
        return record.user_id == actor.uid
    return actor.role == Role.DOCTOR


def get_for_actor(db: Session, actor: Actor, investigation_id: str) -> InvestigationRecord:
    record = load_investigation(db, investigation_id)
    if not can_view(actor, record):
        # Başkasının vakasının varlığını sızdırma
        raise InvestigationNotFound("Investigation not found.")
    return record


def list_for_patient(db: Session, user_id: int) -> list[InvestigationRecord]:
    stmt = select(Investigation).where(Investigation.user_id == user_id).order_by(Investigation.created_at.desc())
    return [row_to_record(r) for r in db.exec(stmt).all()]


def doctor_queue(db: Session, statuses: list[InvestigationStatus], limit: int = 200) -> list[InvestigationRecord]:
    """Doktor kuyruğu: aciliyete göre (Critical önce, analizi olmayan en sonda), sonra en eski başvuru önce."""
    # Sıralama limitten önce, SQL'de
    urgency_rank = case(URGENCY_RANK, value=Investigation.urgency, else_=len(URGENCY_RANK))
    stmt = (
        select(Investigation)
        .where(Investigation.status.in_([s.value for s in statuses]))
        .order_by(urgency_rank, Investigation.created_at.asc())
        .limit(limit)
    )
    return [row_to_record(r) for r in db.exec(stmt).all()]


def doctor_patients(db: Session, doctor_uid: int) -> list[InvestigationRecord]:
    stmt = (
        select(Investigation)
        .where(Investigation.reviewed_by_uid == doctor_uid)
        .order_by(Investigation.updated_at.desc())
    )
    return [row_to_record(r) for r in db.exec(stmt).all()]


def list_all(db: Session, status: InvestigationStatus | None = None, limit: int = 200) -> list[InvestigationRecord]:
    stmt = select(Investigation).order_by(Investigation.created_at.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(Investigation.status == status.value)
    return [row_to_record(r) for r in db.exec(stmt).all()]


# --- Yazım ---


def save_record(db: Session, record: InvestigationRecord, read_version: int) -> None:
    """
    Koşullu UPDATE: sadece DB'deki versiyon okunan versiyonla aynıysa yazar.
    Eşleşmezse (araya başka yazım girdi) VersionConflict; hiçbir şey değişmez.
    """
    stmt = (
        update(Investigation)
        .where(Investigation.id == record.id, Investigation.version == read_version)
        .values(**_row_values(record))
    )
    result = db.exec(stmt)
    if result.rowcount != 1:
        db.rollback()
        raise VersionConflict("Investigation was modified by someone else. Reload and try again.")
    db.commit()


def _enqueue_analysis(db: Session, record: InvestigationRecord, step_index: int) -> int:
    """Analiz işini kuyruğa ekler; iş id'sini döner."""
    kind = "triage" if record.steps[step_index].type == StepType.INITIAL_SUBMISSION else "follow_up"
    job = AnalysisJob(investigation_id=record.id, step_index=step_index, kind=kind, status="pending")
    db.add(job)
    db.commit()
    db.refresh(job)
    return job.id


def submit_investigation(
    db: Session,
    actor: Actor,
    chat_transcript: str,
    image_data_uri: str | None = None,
) -> tuple[InvestigationRecord, int]:
    """
    1. aşama: hastanın girdisini hemen kalıcı yapar (pending_review, analiz bekliyor) ve iş kuyruğa girer.
    AI analizi run_analysis_job ile arka planda eklenir; AI hatası başvuruyu kaybettirmez.
    """
    image = validate_image_data_uri(image_data_uri)
    record = workflow.new_investigation(actor, chat_transcript, image)
    values = _row_values(record)
    row = Investigation(
        id=record.id,
        user_id=record.user_id,
        user_name=record.user_name,
        created_at=record.created_at,
        **values,
    )
    db.add(row)
    db.commit()
    job_id = _enqueue_analysis(db, record, 0)
    _audit(db, "investigation_submit", actor.uid, record.id)
    log.info("investigation submitted: id=%s user_id=%s job_id=%s", record.id, actor.uid, job_id)
    return record, job_id


def perform_action(
    db: Session,
    actor: Actor,
    investigation_id: str,
    action: Action,
    expected_version: int,
) -> tuple[InvestigationRecord, int | None]:
    """Doktor/hasta eylemi: oku -> workflow.apply (saf) -> versiyon kontrollü yaz."""
    record = load_investigation(db, investigation_id)
    if actor.role == Role.PATIENT and record.user_id != actor.uid:
        raise InvestigationNotFound("Investigation not found.")
    if isinstance(action, SubmitLabResults):
        for r in action.lab_results:
            validate_image_data_uri(r.image_data_uri, field=r.test_name or "lab result")
    updated = workflow.apply(record, actor, action, expected_version=expected_version)
    save_record(db, updated, read_version=record.version)
    _audit(db, action.name, actor.uid, updated.id)
    log.info(
        "investigation %s: %s by %s uid=%s -> %s (v%s)",
        updated.id, action.name, actor.role.value, actor.uid, updated.status.value, updated.version,
    )
    job_id = None
    if isinstance(action, SubmitLabResults):
        job_id = _enqueue_analysis(db, updated, len(updated.steps) - 1)
    return updated, job_id


def retry_analysis(db: Session, actor: Actor, investigation_id: str) -> tuple[InvestigationRecord, int]:
    """Son adımın analizi başarısızsa yeniden kuyruğa alır."""
    record = get_for_actor(db, actor, investigation_id)
    if actor.role == Role.DOCTOR and record.reviewed_by_uid not in (None, actor.uid):
        raise PermissionDenied("This investigation is assigned to another doctor.")
    index = len(record.steps) - 1
    if record.steps[index].analysis_status != "failed":
        raise WorkflowValidationError("Only a failed analysis can be retried.")
    updated = workflow.mark_analysis(record, index, "pending")
    save_record(db, updated, read_version=record.version)
    job_id = _enqueue_analysis(db, updated, index)
    _audit(db, "analysis_retry", actor.uid, record.id)
    return updated, job_id


# --- Arka plan: AI analizi (2. aşama) ---


def _write_system_update(db: Session, investigation_id: str, mutate) -> InvestigationRecord:
    """Sistem yazımı: versiyon çakışırsa kaydı yeniden okuyup mutate'i tekrar uygular."""
    for attempt in range(SYSTEM_WRITE_ATTEMPTS):
        record = load_investigation(db, investigation_id)
        updated = mutate(record)
        try:
            save_record(db, updated, read_version=record.version)
            return updated
        except VersionConflict:
            log.warning("system write conflict on %s (attempt %s)", investigation_id, attempt + 1)
    raise VersionConflict(f"Could not update investigation {investigation_id} after {SYSTEM_WRITE_ATTEMPTS} attempts.")


def _analysis_context(record: InvestigationRecord, step_index: int) -> dict:
    """AI'a gönderilecek bağlam: yeni adımdan önceki her şey, görseller çıkarılmış."""
    doc = record.model_copy(update={"steps": record.steps[:step_index]}).to_document()
    for step in doc["steps"]:
        user_input = step.get("userInput") or {}
        if user_input.get("imageDataUri"):
            user_input["imageDataUri"] = "[image omitted]"
        for lab in user_input.get("labResults") or []:
            lab["imageDataUri"] = "[image omitted]"
    return doc


def _run_ai(record: InvestigationRecord, step_index: int) -> TriageAnalysis | FollowUpAnalysis:
    step = record.steps[step_index]
    if step.type == StepType.INITIAL_SUBMISSION:
        return ai.triage_investigation(step.user_input.chat_transcript or "", step.user_input.image_data_uri)
    return ai.follow_up_investigation(_analysis_context(record, step_index), step.user_input.lab_results or [])


def run_analysis_job(job_id: int) -> None:
    """
    BackgroundTasks ile çalışır; kendi oturumunu açar.
    Başarılı: analiz adıma eklenir, iş done. Hata: adım ve iş failed (kayıt ve hasta girdisi korunur).
    """
    with Session(engine) as db:
        job = db.get(AnalysisJob, job_id)
        if job is None or job.status != "pending":
            return
        job.status = "processing"
        job.updated_at = datetime.utcnow()
        db.add(job)
        db.commit()
        t0 = time.perf_counter()
        investigation_id, step_index = job.investigation_id, job.step_index
        try:
            record = load_investigation(db, investigation_id)
            analysis = _run_ai(record, step_index)
            _write_system_update(db, investigation_id, lambda r: workflow.attach_analysis(r, step_index, analysis))
            job.status = "done"
            job.error_message = None
        except ai.AIServiceError as e:
            log.error("AI analysis failed: job_id=%s investigation=%s detail=%s", job_id, investigation_id, e.detail)
            _fail_job(db, job, e.detail)
        except Exception as e:
            log.exception("Analysis job error: job_id=%s: %s", job_id, e)
            _fail_job(db, job, str(e))
        job.duration_ms = int((time.perf_counter() - t0) * 1000)
        job.updated_at = datetime.utcnow()
        db.add(job)
        db.commit()


def _fail_job(db: Session, job: AnalysisJob, message: str) -> None:
    db.rollback()
    error = (message or "")[:500]
    investigation_id, step_index = job.investigation_id, job.step_index
    try:
        _write_system_update(db, investigation_id, lambda r: workflow.mark_analysis(r, step_index, "failed", error))
    except Exception as e:
        db.rollback()
        log.warning("Could not mark step analysis failed for %s: %s", investigation_id, e)
    job.status = "failed"
    job.error_message = error
